"""テスト用スキーマ（Person / Note / Tag）。"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import ForeignKey, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from record_store.models import PersistentEntity

SCHEMA_VERSION = 1


class Person(PersistentEntity):
    __tablename__ = "people"

    name: Mapped[Optional[str]] = mapped_column(Text)
    age: Mapped[Optional[int]] = mapped_column(Integer)

    notes: Mapped[List["Note"]] = relationship(back_populates="owner", passive_deletes=True)


class Note(PersistentEntity):
    __tablename__ = "notes"

    body: Mapped[Optional[str]] = mapped_column(Text)
    # 持ち主が消えたらノートも消える
    owner_pk: Mapped[Optional[int]] = mapped_column(ForeignKey("people.pk", ondelete="CASCADE"))

    owner: Mapped[Optional["Person"]] = relationship(back_populates="notes")


class Tag(PersistentEntity):
    __tablename__ = "tags"

    label: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
