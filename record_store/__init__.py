"""
record_store パッケージ。

SQLite + SQLAlchemy ORM の上に置く薄い永続化層。

方針:
    - StoreManager（db）がストア接続と作業セットを持ち、PersistentEntity（models）が取得/upsert/削除を提供する。
    - package import 時に DB を開かない（StoreManager.open() を明示的に呼ぶ）。
"""

from __future__ import annotations

from record_store.db import StoreManager, get_current_manager, set_current_manager
from record_store.errors import (
    CommitError,
    ConfigError,
    ManagerNotInitializedError,
    RecordStoreError,
    StoreOpenError,
)
from record_store.models import FetchResult, PersistentEntity, UpsertResult

__all__ = [
    "CommitError",
    "ConfigError",
    "FetchResult",
    "ManagerNotInitializedError",
    "PersistentEntity",
    "RecordStoreError",
    "StoreManager",
    "StoreOpenError",
    "UpsertResult",
    "get_current_manager",
    "set_current_manager",
]
