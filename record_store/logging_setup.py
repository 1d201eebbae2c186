"""
ログ設定。

各モジュールは logging.getLogger(__name__) を使い、ここではハンドラだけを組み立てる。
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "record_store"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# setup_logging が付けたハンドラ（再設定時に差し替える）
_installed_handlers: list[logging.Handler] = []


def setup_logging(
    level: str = "INFO",
    *,
    log_file_enabled: bool = False,
    log_file_path: Optional[str] = None,
    log_file_max_bytes: int = 200_000,
) -> logging.Logger:
    """
    record_store ロガーにコンソール（と任意でファイル）ハンドラを設定する。

    何度呼んでもハンドラは重複しない。
    """

    logger = logging.getLogger(ROOT_LOGGER_NAME)

    # --- 既存ハンドラを外す（冪等） ---
    for handler in _installed_handlers:
        logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    numeric_level = getattr(logging, str(level or "INFO").upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"unknown log level: {level!r}")
    logger.setLevel(numeric_level)

    formatter = logging.Formatter(_LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    _installed_handlers.append(console)

    # --- ファイルログ（ローテーション） ---
    if log_file_enabled:
        if not log_file_path:
            raise ValueError("log_file_path is required when log_file_enabled is true")
        path = Path(log_file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(path),
            maxBytes=int(log_file_max_bytes),
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        _installed_handlers.append(file_handler)

    for handler in _installed_handlers:
        logger.addHandler(handler)
    return logger
