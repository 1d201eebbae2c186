"""
ストア接続とセッション管理

SQLite をバックエンドにした SQLAlchemy ORM の薄い管理層。
1プロセスにつき1つの StoreManager が、1つのDBファイルと1つの Session（作業セット）を持つ。

前提:
    - Session はオーナースレッド（open したスレッド。通常はメインスレッド）専用。
    - マージポリシーは上書き（メモリ上の値が常に勝つ）。楽観ロック列は使わない。
    - エンティティは models.PersistentEntity のサブクラスとしてスキーマモジュールに定義する。
"""

from __future__ import annotations

import importlib
import logging
import sys
import threading
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, ClassVar, Optional, TextIO

from sqlalchemy import create_engine, delete, event, func, inspect as sa_inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from record_store import db_migrations, paths
from record_store.errors import ManagerNotInitializedError, StoreOpenError

if TYPE_CHECKING:
    from record_store.models import PersistentEntity


logger = logging.getLogger(__name__)

# エンティティ定義用 Base
EntityBase = declarative_base()

# マージポリシー名（上書き: メモリ上の値が勝つ）
MERGE_POLICY_OVERWRITE = "overwrite"

_DEFAULT_SCHEMA_VERSION = 1
_DEFAULT_SQLITE_TIMEOUT_SECONDS = 10.0


def _create_engine(db_url: str, *, timeout_seconds: float):
    """
    SQLite 用の SQLAlchemy エンジンを作成する。
    接続ごとに外部キー制約を有効化する（ON DELETE CASCADE を効かせるため）。
    """

    # SQLiteの場合はスレッドチェックを無効化し、ロック解消を待つ。
    connect_args = {"check_same_thread": False, "timeout": float(timeout_seconds)}
    engine = create_engine(db_url, future=True, connect_args=connect_args)

    @event.listens_for(engine, "connect")
    def apply_sqlite_pragmas(dbapi_conn, connection_record):
        """接続ごとに必要なPRAGMAを適用する（foreign_keysは接続ごとに有効化が必要）。"""
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    return engine


def _apply_store_pragmas(engine) -> None:
    """DBファイル単位のPRAGMAを適用する。"""
    with engine.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))      # WALモードで読み書きの競合を減らす
        conn.execute(text("PRAGMA synchronous=NORMAL"))    # 書き込み性能最適化
        conn.commit()


def _load_schema_module(schema: str | ModuleType) -> ModuleType:
    """スキーマ（エンティティ定義）モジュールを import する。"""

    if isinstance(schema, ModuleType):
        return schema
    try:
        return importlib.import_module(str(schema))
    except ImportError as exc:
        raise StoreOpenError(f"Failed to locate schema module {schema!r}: {exc}") from exc
    except Exception as exc:  # noqa: BLE001
        raise StoreOpenError(f"Failed to load schema module {schema!r}: {exc}") from exc


def _schema_entity_types(module: ModuleType) -> list[type["PersistentEntity"]]:
    """
    スキーマモジュールが宣言するエンティティ型を、依存の浅い順（親→子）で返す。
    """
    from record_store.models import PersistentEntity

    found: list[type[PersistentEntity]] = []
    for obj in vars(module).values():
        if not isinstance(obj, type) or not issubclass(obj, PersistentEntity):
            continue
        if obj is PersistentEntity or obj.__dict__.get("__abstract__", False):
            continue
        if obj in found:
            continue
        found.append(obj)

    # --- FK 依存順（sorted_tables は親が先） ---
    order = {table: i for i, table in enumerate(EntityBase.metadata.sorted_tables)}
    found.sort(key=lambda cls: (order.get(cls.__table__, len(order)), cls.__name__))
    return found


class StoreManager:
    """
    ストア（SQLiteファイル + Session）を管理する。

    1つの StoreManager が1つの Session を持ち、各エンティティ操作はここを経由する。
    通常は起動時に open() で1つだけ作り、StoreManager.current に登録して使う。
    """

    # 便宜上のカレント（アプリに1つだけの想定）
    current: ClassVar[Optional["StoreManager"]] = None

    merge_policy = MERGE_POLICY_OVERWRITE

    def __init__(
        self,
        *,
        engine,
        db_path: Path,
        entity_types: list[type["PersistentEntity"]],
        schema_version: int,
    ) -> None:
        self._engine = engine
        self._db_path = db_path
        self._entity_types = list(entity_types)
        self._schema_version = int(schema_version)
        # NOTE:
        # - autoflush=False: 未コミットの挿入は fetch 側で作業セットから拾う。
        # - expire_on_commit=False: コミット後もメモリ上の値をそのまま使う（上書きマージ）。
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        self._session: Session = self._session_factory()
        self._owner_thread_id = threading.get_ident()

    # --- 起動 ---

    @classmethod
    def open(
        cls,
        schema: str | ModuleType,
        db_name: str,
        *,
        data_dir: str | Path | None = None,
        sqlite_timeout_seconds: float = _DEFAULT_SQLITE_TIMEOUT_SECONDS,
        register: bool = True,
    ) -> "StoreManager":
        """
        スキーマを読み込み、DBファイルを開く（無ければ作成、古ければマイグレーション）。

        失敗した場合は StoreOpenError を送出する。アプリはこの状態では動作できない。
        """

        # --- 1. スキーマ（エンティティ定義）を読み込む ---
        module = _load_schema_module(schema)
        entity_types = _schema_entity_types(module)
        if not entity_types:
            raise StoreOpenError(f"schema module {module.__name__!r} declares no entity types")
        try:
            schema_version = int(getattr(module, "SCHEMA_VERSION", _DEFAULT_SCHEMA_VERSION))
        except (TypeError, ValueError) as exc:
            raise StoreOpenError(f"schema module {module.__name__!r} has an invalid SCHEMA_VERSION") from exc
        if schema_version < 1:
            raise StoreOpenError(f"SCHEMA_VERSION must be >= 1 (got {schema_version})")
        migrations = dict(getattr(module, "MIGRATIONS", None) or {})

        # --- 2. DBファイルの場所を決める ---
        try:
            base_dir = Path(data_dir).expanduser().resolve() if data_dir is not None else paths.get_data_dir()
            base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreOpenError(f"Failed to resolve data directory: {exc}") from exc
        db_path = base_dir / str(db_name)
        logger.info("store db path: %s", db_path)

        # --- 3. 開く/作る/マイグレーションする ---
        engine = _create_engine(f"sqlite:///{db_path}", timeout_seconds=sqlite_timeout_seconds)
        tables = [entity.__table__ for entity in entity_types]
        try:
            _apply_store_pragmas(engine)
            db_migrations.migrate_if_needed(
                engine=engine,
                target_user_version=schema_version,
                migrations=migrations,
                logger=logger,
            )
            db_migrations.add_missing_columns(engine=engine, tables=tables, logger=logger)
            EntityBase.metadata.create_all(bind=engine, tables=tables)
            with engine.connect() as conn:
                db_migrations.set_sqlite_user_version(conn, schema_version)
                conn.commit()
        except StoreOpenError:
            engine.dispose()
            raise
        except (SQLAlchemyError, OSError) as exc:
            engine.dispose()
            raise StoreOpenError(f"Failed to open store at {db_path}: {exc}") from exc

        manager = cls(
            engine=engine,
            db_path=db_path,
            entity_types=entity_types,
            schema_version=schema_version,
        )
        if register:
            set_current_manager(manager)
        logger.info(
            "store opened: %s (user_version=%d, entities=%s)",
            db_path,
            schema_version,
            ",".join(t.entity_name() for t in entity_types),
        )
        return manager

    def close(self) -> None:
        """Session とエンジンを閉じる（テスト/CLI用）。"""
        self._session.close()
        self._engine.dispose()
        if StoreManager.current is self:
            StoreManager.current = None

    # --- 属性 ---

    @property
    def session(self) -> Session:
        """作業セットを持つ Session。"""
        return self._session

    @property
    def engine(self):
        return self._engine

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def db_url(self) -> str:
        return f"sqlite:///{self._db_path}"

    @property
    def schema_version(self) -> int:
        return self._schema_version

    @property
    def needs_rollback(self) -> bool:
        """フラッシュ失敗で Session が無効化されている（rollback() するまで読み書きできない）。"""
        return not self._session.is_active

    def assert_owner_thread(self) -> None:
        """書き込み経路はオーナースレッド専用（ロックではなく assert で契約を表す）。"""
        assert threading.get_ident() == self._owner_thread_id, (
            "StoreManager write operations must run on the thread that opened the store"
        )

    # --- エンティティ型 ---

    def entity_types(self) -> list[type["PersistentEntity"]]:
        """スキーマが宣言する具象エンティティ型（親→子の順）。"""
        return list(self._entity_types)

    def entity_class(self, entity_name: str) -> Optional[type["PersistentEntity"]]:
        """エンティティ名から型を引く（無ければ None）。"""
        for entity_type in self._entity_types:
            if entity_type.entity_name() == entity_name:
                return entity_type
        return None

    def entity_name_for_class(self, entity_type: type) -> Optional[str]:
        """型からエンティティ名を引く（スキーマ外なら None）。"""
        if entity_type in self._entity_types:
            return entity_type.entity_name()
        return None

    # --- 書き込み ---

    def update_fields(self, existing: "PersistentEntity", new: "PersistentEntity") -> None:
        """
        new の宣言済み列の値を existing へ上書きコピーする。

        主キー（ストア採番の識別子）と関連（relationship）はコピーしない。
        """
        mapper = sa_inspect(type(existing))
        for prop in mapper.column_attrs:
            if any(getattr(col, "primary_key", False) for col in prop.columns):
                continue
            setattr(existing, prop.key, getattr(new, prop.key))

    def commit(self) -> Optional[Exception]:
        """
        作業セットをDBへ反映する。

        失敗時は例外を送出せず、ログに残して返す。自動ロールバックはしない。

        NOTE: フラッシュ中の失敗（制約違反など）の後は needs_rollback が True になり、
        rollback() を呼ぶまで検索も書き込みもエラーを返す。rollback() は未コミットの変更をすべて破棄する。
        """
        self.assert_owner_thread()
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            logger.error("*** failure to commit session: %s", exc)
            return exc
        return None

    def rollback(self) -> None:
        """未コミットの変更を破棄する。"""
        self.assert_owner_thread()
        self._session.rollback()

    def replace(self, existing: "PersistentEntity", new: "PersistentEntity") -> Optional[Exception]:
        """existing を削除し new を挿入してコミットする。"""
        self.assert_owner_thread()
        state = sa_inspect(existing)
        if state.pending:
            self._session.expunge(existing)
        elif state.persistent:
            self._session.delete(existing)
        self._session.add(new)
        error = self.commit()
        if error is not None:
            logger.error("*** replace() failed: %s", error)
        return error

    def delete_all_of_type(self, entity_name: str) -> Optional[Exception]:
        """
        指定エンティティの全レコードを一括削除してコミットする。

        注意:
            - 取り扱い注意。参照元レコードは ON DELETE CASCADE で一緒に消える。
            - 参照整合性のチェックやドライランは行わない（呼び出し側の責任）。
        """
        self.assert_owner_thread()
        entity_type = self.entity_class(entity_name)
        if entity_type is None:
            error = LookupError(f"unknown entity: {entity_name!r}")
            logger.error("*** delete_all_of_type() failed with %s", error)
            return error

        # --- 未フラッシュの挿入は作業セットから外す ---
        for obj in list(self._session.new):
            if isinstance(obj, entity_type):
                self._session.expunge(obj)

        try:
            self._session.execute(delete(entity_type))
        except SQLAlchemyError as exc:
            logger.error("*** delete_all_of_type() failed with %s", exc)
            return exc

        error = self.commit()
        if error is not None:
            logger.error("*** delete_all_of_type() failed with %s", error)
        return error

    def reset_all(self) -> None:
        """
        全エンティティの全レコードを削除し、メモリ上の状態も破棄する。
        テスト/デバッグ専用。
        """
        self.assert_owner_thread()
        # --- 子→親の順に消す ---
        for entity_type in reversed(self._entity_types):
            self.delete_all_of_type(entity_type.entity_name())
        self._session.expunge_all()

    # --- 読み取り ---

    def count(self, entity_name: str) -> int:
        """指定エンティティのDB上の件数。"""
        entity_type = self.entity_class(entity_name)
        if entity_type is None:
            raise LookupError(f"unknown entity: {entity_name!r}")
        return int(self._session.scalar(select(func.count()).select_from(entity_type)) or 0)

    def dump_all(self, stream: TextIO | None = None) -> None:
        """
        全レコードの属性を出力する。

        警告: オブジェクトグラフ全体をメモリに載せる。デバッグ専用。
        """
        out = stream if stream is not None else sys.stdout
        for entity_type in self._entity_types:
            try:
                records = self._session.scalars(select(entity_type)).all()
            except SQLAlchemyError as exc:
                logger.error("*** dump_all() fetch failed for %s: %s", entity_type.entity_name(), exc)
                continue
            for record in records:
                print(record.dump_attributes(), file=out)


def set_current_manager(manager: Optional[StoreManager]) -> None:
    """カレントの StoreManager を設定する。起動時に一度だけ呼び出される。"""
    StoreManager.current = manager


def get_current_manager() -> StoreManager:
    """
    カレントの StoreManager を取得する。
    初期化されていない場合は ManagerNotInitializedError を発生させる。
    """
    manager = StoreManager.current
    if manager is None:
        raise ManagerNotInitializedError("StoreManager not initialized. Call StoreManager.open() first.")
    return manager


def resolve_manager(manager: Optional[StoreManager] = None) -> StoreManager:
    """明示指定があればそれを、無ければカレントを返す。"""
    return manager if manager is not None else get_current_manager()
