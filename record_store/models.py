"""
永続エンティティの抽象基底クラス

各エンティティ型は PersistentEntity を継承して列を宣言するだけで、
id による取得・挿入または更新（upsert）・削除を使える。

NOTE:
    - id は呼び出し側が決める文字列（採番しない）。
    - (エンティティ型, id) の一意性は「挿入前に検索する」ことで協調的に守る（UNIQUE制約は置かない）。
    - ストアが採番する識別子は pk（初回フラッシュまで None）。
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional

from sqlalchemy import Integer, Text, inspect as sa_inspect, select
from sqlalchemy.exc import PendingRollbackError, SQLAlchemyError
from sqlalchemy.orm import Mapped, make_transient, mapped_column

from record_store.db import EntityBase, StoreManager, resolve_manager
from record_store.errors import CommitError


logger = logging.getLogger(__name__)


class FetchResult(NamedTuple):
    """lookup() の結果。未検出（record=None, error=None）と検索失敗（error あり）を区別する。"""

    record: Optional["PersistentEntity"]
    error: Optional[Exception]


class UpsertResult(NamedTuple):
    """insert_or_update() の結果（record, was_created, error）。"""

    record: Optional["PersistentEntity"]
    was_created: bool
    error: Optional[Exception]


class PersistentEntity(EntityBase):
    """永続エンティティの抽象基底クラス。"""

    __abstract__ = True

    # --- ストア採番の識別子 ---
    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # --- 呼び出し側が決める識別子 ---
    id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    @classmethod
    def entity_name(cls) -> str:
        """エンティティ名（= クラス名）。"""
        return cls.__name__

    @classmethod
    def create(cls, record_id: str, *, manager: Optional[StoreManager] = None, **fields):
        """インスタンスを作り、作業セットへ挿入する（コミットはしない）。"""
        mgr = resolve_manager(manager)
        mgr.assert_owner_thread()
        record = cls(id=record_id, **fields)
        mgr.session.add(record)
        return record

    # --- 取得 ---

    @classmethod
    def lookup(cls, record_id: str, *, manager: Optional[StoreManager] = None) -> FetchResult:
        """
        id が一致するレコードを取得する。

        - 未コミットの挿入も対象にする（作業セットを先に見る）。
        - 削除予定のレコードは対象外。
        - 検索自体が失敗した場合は error に入れて返す。
        - コミット失敗後で rollback() 待ちの Session では PendingRollbackError を返す。
        """
        mgr = resolve_manager(manager)
        session = mgr.session

        if mgr.needs_rollback:
            exc = PendingRollbackError("session needs rollback() after a failed commit")
            logger.error("*** fetch on a session pending rollback: entity=%s id=%s", cls.entity_name(), record_id)
            return FetchResult(None, exc)

        # --- 作業セット（未フラッシュの挿入）を先に見る ---
        for obj in session.new:
            if isinstance(obj, cls) and obj.id == record_id:
                return FetchResult(obj, None)

        try:
            rows = session.scalars(select(cls).where(cls.id == record_id)).all()
        except SQLAlchemyError as exc:
            logger.exception("*** fetch failed: entity=%s id=%s", cls.entity_name(), record_id)
            return FetchResult(None, exc)

        for row in rows:
            if row in session.deleted:
                continue
            return FetchResult(row, None)
        return FetchResult(None, None)

    @classmethod
    def fetch(cls, record_id: str, *, manager: Optional[StoreManager] = None):
        """
        id が一致するレコードを返す（無ければ None）。

        NOTE: 検索失敗もログを残して None を返すため、「無い」と区別できない。区別したい場合は lookup() を使う。
        """
        return cls.lookup(record_id, manager=manager).record

    # --- 書き込み ---

    def insert_or_update(self, commit: bool = True, *, manager: Optional[StoreManager] = None) -> UpsertResult:
        """
        ストアへ追加する。同じエンティティ型・同じ id のレコードが既にあれば、そちらを更新する。

        Args:
            commit: 追加後にコミットするか。大量に更新する場合は False にして最後に commit() する。

        Returns:
            (record, was_created, error)。コミット失敗時は (None, False, CommitError)。
            検索自体に失敗した場合（コミット失敗後で rollback() 待ちの Session など）は
            何も追加せず (None, False, 検索のエラー)。
        """
        mgr = resolve_manager(manager)
        mgr.assert_owner_thread()

        existing, lookup_error = type(self).lookup(self.id, manager=mgr)
        if lookup_error is not None:
            return UpsertResult(None, False, lookup_error)

        if existing is not None:
            # --- 既存レコードの識別子を保ったまま値を上書き ---
            if existing is not self:
                mgr.update_fields(existing, self)
            record = existing
            was_created = False
        else:
            # --- 削除済み（または削除後に切り離された）インスタンスは新規として入れ直す ---
            state = sa_inspect(self)
            if state.deleted or (state.detached and state.has_identity):
                make_transient(self)
                self.pk = None
            mgr.session.add(self)
            record = self
            was_created = True

        if commit:
            error = mgr.commit()
            if error is not None:
                # NOTE: 作業セット上の変更は残っている（自動では戻さない）。
                return UpsertResult(None, False, CommitError(error, record=record, was_created=was_created))
        return UpsertResult(record, was_created, None)

    def delete(self, commit: bool = True, *, manager: Optional[StoreManager] = None) -> Optional[Exception]:
        """
        ストアから削除する（任意でコミット）。

        - 一度も追加されていないインスタンスは何もしない。
        - 切り離されたインスタンス（閉じたマネージャ由来など）は pk で行を引き直して削除する。
        返すのは行の検索エラーかコミットのエラー。
        """
        mgr = resolve_manager(manager)
        mgr.assert_owner_thread()

        state = sa_inspect(self)
        if state.pending:
            mgr.session.expunge(self)
        elif state.persistent:
            mgr.session.delete(self)
        elif state.detached and state.has_identity:
            try:
                current = mgr.session.get(type(self), state.identity)
            except SQLAlchemyError as exc:
                logger.exception("*** delete lookup failed: entity=%s id=%s", self.entity_name(), self.id)
                return exc
            if current is not None and current not in mgr.session.deleted:
                mgr.session.delete(current)
        else:
            logger.debug("delete() on a record outside the store: entity=%s id=%s", self.entity_name(), self.id)

        if commit:
            return mgr.commit()
        return None

    # --- 状態 ---

    @property
    def is_persisted(self) -> bool:
        """ストア採番の識別子を持っているか（一度でもフラッシュされたか）。"""
        return bool(sa_inspect(self).has_identity)

    def dump_attributes(self) -> str:
        """
        全列の値を文字列にする。

        警告: デバッグ専用。ホットパスで使わないこと。
        """
        lines = ["--", f"Entity: {self.entity_name()}", ""]
        for prop in sa_inspect(type(self)).column_attrs:
            value = getattr(self, prop.key)
            lines.append(f"{prop.key}: {'nil' if value is None else value}")
        lines.append("--")
        return "\n".join(lines) + "\n\n"

    def __repr__(self) -> str:
        return f"<{self.entity_name()} id={self.id!r} pk={self.pk!r}>"
