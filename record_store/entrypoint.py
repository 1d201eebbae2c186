"""
デバッグ用 CLI エントリポイント。

設定ファイル（TOML）に従ってストアを開き、件数表示/全件ダンプ/全削除を行う。
ストアを開けない場合はメッセージを出して終了コード 1 で終わる。
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from record_store.config import load_config
from record_store.db import StoreManager
from record_store.errors import ConfigError, StoreOpenError
from record_store.logging_setup import setup_logging


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    """CLI 引数パーサを作る。"""

    parser = argparse.ArgumentParser(prog="record-store", description="record_store debug tool")
    parser.add_argument("--config", required=True, help="path to the TOML config file")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("info", help="show the database path, schema version and record counts")
    sub.add_parser("dump", help="print every record (loads the whole store into memory)")
    reset = sub.add_parser("reset", help="delete every record of every entity")
    reset.add_argument("--yes", action="store_true", help="confirm deleting everything")
    return parser


def _print_info(manager: StoreManager) -> None:
    """DBパス/版/件数を表示する。"""

    print(f"db_path: {manager.db_path}")
    print(f"schema_version: {manager.schema_version}")
    for entity_type in manager.entity_types():
        name = entity_type.entity_name()
        print(f"{name}: {manager.count(name)}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI エントリポイント。終了コードを返す。"""

    # --- 引数を読む ---
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "reset" and not args.yes:
        parser.error("reset deletes every record; pass --yes to confirm")

    # --- 設定を読み、ログを先に確定する ---
    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"[record_store] {exc}", file=sys.stderr)
        return 1
    setup_logging(
        config.log_level,
        log_file_enabled=config.log_file_enabled,
        log_file_path=config.log_file_path,
        log_file_max_bytes=config.log_file_max_bytes,
    )

    # --- ストアを開く（失敗したら続行できない） ---
    try:
        manager = StoreManager.open(
            config.schema,
            config.db_name,
            data_dir=config.data_dir,
            sqlite_timeout_seconds=config.sqlite_timeout_seconds,
        )
    except StoreOpenError as exc:
        logger.critical("store open failed: %s", exc)
        print(f"[record_store] failed to open store: {exc}", file=sys.stderr)
        return 1

    try:
        if args.command == "info":
            _print_info(manager)
        elif args.command == "dump":
            manager.dump_all()
        elif args.command == "reset":
            manager.reset_all()
            print("all records deleted")
    finally:
        manager.close()
    return 0


def run() -> None:
    """console_scripts 用（終了コードでプロセスを終える）。"""
    sys.exit(main())


if __name__ == "__main__":
    run()
