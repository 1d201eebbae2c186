"""
設定読み込み

TOML設定ファイルを読み込み、ストアの起動とログに使う Config を組み立てる。
"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from typing import Any, Optional

import tomli

from record_store import paths
from record_store.errors import ConfigError


@dataclass(frozen=True)
class Config:
    """
    TOML起動設定（起動時のみ使用、変更不可）。
    """
    db_name: str               # DBファイル名（データディレクトリ直下）
    schema: str                # スキーマ（エンティティ定義）モジュール名
    data_dir: Optional[str]    # DB保存先（未指定ならユーザーデータディレクトリ）
    log_level: str             # ログレベル（DEBUG, INFO, WARNING, ERROR, CRITICAL）
    log_file_enabled: bool     # ファイルログ有効/無効
    log_file_path: str         # ファイルログの保存先パス
    log_file_max_bytes: int    # ファイルログのローテーションサイズ（bytes）
    sqlite_timeout_seconds: float  # SQLiteロック待ちのタイムアウト秒数


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_ALLOWED_KEYS = {
    "db_name",
    "schema",
    "data_dir",
    "log_level",
    "log_file_enabled",
    "log_file_path",
    "log_file_max_bytes",
    "sqlite_timeout_seconds",
}


def _require(config_dict: dict, key: str) -> Any:
    """
    設定辞書から必須キーを取得する。
    キーが存在しないか空の場合は ConfigError を発生させる。
    """
    if key not in config_dict or config_dict[key] in (None, ""):
        raise ConfigError(f"config key '{key}' is required")
    return config_dict[key]


def load_config(path: str | pathlib.Path) -> Config:
    """
    TOML設定ファイルを読み込む。
    許可されていないキーが含まれる場合はエラーを発生させる。
    """
    config_path = pathlib.Path(path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"config file not found: {config_path}")

    # TOMLファイルをパース
    with config_path.open("rb") as f:
        try:
            data = tomli.load(f)
        except tomli.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {config_path}: {exc}") from exc

    # 許可されたキーのみを受け付ける
    unknown_keys = sorted(set(data.keys()) - _ALLOWED_KEYS)
    if unknown_keys:
        keys = ", ".join(repr(k) for k in unknown_keys)
        raise ConfigError(f"unknown config key(s): {keys} (allowed: {sorted(_ALLOWED_KEYS)})")

    # --- 相対パスは設定ファイルのディレクトリ基準で解決する ---
    base_dir = config_path.parent
    raw_data_dir = data.get("data_dir")
    data_dir = str(paths.resolve_path(str(raw_data_dir), base_dir)) if raw_data_dir else None

    raw_log_file_path = data.get("log_file_path")
    if raw_log_file_path:
        log_file_path = str(paths.resolve_path(str(raw_log_file_path), base_dir))
    else:
        log_file_path = str(paths.get_logs_dir() / "record_store.log")

    # --- SQLiteロック待ち（正の数） ---
    try:
        sqlite_timeout_seconds = float(data.get("sqlite_timeout_seconds", 10.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError("sqlite_timeout_seconds must be a number") from exc
    if sqlite_timeout_seconds <= 0:
        raise ConfigError("sqlite_timeout_seconds must be positive")

    # --- ファイルログのローテーションサイズ（正の整数） ---
    try:
        log_file_max_bytes = int(data.get("log_file_max_bytes", 200_000))
    except (TypeError, ValueError) as exc:
        raise ConfigError("log_file_max_bytes must be an integer") from exc
    if log_file_max_bytes <= 0:
        raise ConfigError("log_file_max_bytes must be a positive integer")

    log_level = str(data.get("log_level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(_LOG_LEVELS)}: {data.get('log_level')!r}")

    return Config(
        db_name=str(_require(data, "db_name")),
        schema=str(_require(data, "schema")),
        data_dir=data_dir,
        log_level=log_level,
        log_file_enabled=bool(data.get("log_file_enabled", False)),
        log_file_path=log_file_path,
        log_file_max_bytes=log_file_max_bytes,
        sqlite_timeout_seconds=sqlite_timeout_seconds,
    )
