"""
保存先パスの解決。

目的:
    - DBファイル/ログファイルの置き場所（ユーザーごとのアプリデータディレクトリ）を1箇所で決める。
    - テストや配布形態に合わせて環境変数で上書きできるようにする。
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "record_store"

# 保存先ディレクトリの上書き用環境変数
DATA_DIR_ENV = "RECORD_STORE_DATA_DIR"


def _platform_data_root() -> Path:
    """OSごとのユーザーデータ置き場を返す。"""

    # --- Windows: LOCALAPPDATA（無ければ APPDATA） ---
    if sys.platform.startswith("win"):
        root = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
        if root:
            return Path(root)
        return Path.home() / "AppData" / "Local"

    # --- macOS ---
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"

    # --- それ以外は XDG に従う ---
    xdg = os.environ.get("XDG_DATA_HOME", "").strip()
    if xdg:
        return Path(xdg)
    return Path.home() / ".local" / "share"


def get_data_dir() -> Path:
    """アプリデータディレクトリを返す（無ければ作成する）。"""

    override = os.environ.get(DATA_DIR_ENV, "").strip()
    data_dir = Path(override) if override else (_platform_data_root() / APP_DIR_NAME)
    data_dir = data_dir.expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_logs_dir() -> Path:
    """ログ保存先ディレクトリを返す（無ければ作成する）。"""

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def resolve_path(path: str | Path, base: str | Path) -> Path:
    """相対パスなら base 基準で解決する。"""

    p = Path(path).expanduser()
    if p.is_absolute():
        return p.resolve()
    return (Path(base) / p).resolve()
