from __future__ import annotations

import logging
import sqlite3
import types

import pytest
from sqlalchemy import create_engine, text

from record_store import db_migrations
from record_store.db import StoreManager
from record_store.errors import StoreOpenError
from tests import sample_schema
from tests.sample_schema import Person


def _seed_old_store(path, *, user_version: int, people_ddl: str, rows=()):
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    try:
        conn.execute(people_ddl)
        for row in rows:
            conn.execute("INSERT INTO people (id, name) VALUES (?, ?)", row)
        conn.execute(f"PRAGMA user_version={user_version}")
        conn.commit()
    finally:
        conn.close()


def _schema(version: int, migrations=None) -> types.ModuleType:
    module = types.ModuleType(f"schema_v{version}")
    module.Person = sample_schema.Person
    module.Note = sample_schema.Note
    module.Tag = sample_schema.Tag
    module.SCHEMA_VERSION = version
    if migrations is not None:
        module.MIGRATIONS = migrations
    return module


def _user_version(path) -> int:
    conn = sqlite3.connect(str(path))
    try:
        return int(conn.execute("PRAGMA user_version").fetchone()[0])
    finally:
        conn.close()


def _columns(path, table) -> set[str]:
    conn = sqlite3.connect(str(path))
    try:
        return {str(r[1]) for r in conn.execute(f"PRAGMA table_info({table})")}
    finally:
        conn.close()


OLD_PEOPLE_DDL = "CREATE TABLE people (pk INTEGER PRIMARY KEY, id TEXT NOT NULL, name TEXT)"


def test_new_store_is_stamped_with_schema_version(manager):
    assert _user_version(manager.db_path) == sample_schema.SCHEMA_VERSION
    assert manager.schema_version == sample_schema.SCHEMA_VERSION


def test_missing_nullable_column_is_added(store_dir):
    db_path = store_dir / "test.db"
    _seed_old_store(db_path, user_version=1, people_ddl=OLD_PEOPLE_DDL, rows=[("p1", "Ada")])

    mgr = StoreManager.open("tests.sample_schema", "test.db", data_dir=store_dir)
    try:
        assert "age" in _columns(db_path, "people")
        fetched = Person.fetch("p1")
        assert fetched.name == "Ada"
        assert fetched.age is None
        # 追加の無かったテーブルは新規作成される
        assert {"pk", "id", "label"} <= _columns(db_path, "tags")
    finally:
        mgr.close()


def test_missing_defaulted_not_null_column_is_added(store_dir):
    db_path = store_dir / "test.db"
    store_dir.mkdir(parents=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE tags (pk INTEGER PRIMARY KEY, id TEXT NOT NULL)")
    conn.execute("INSERT INTO tags (id) VALUES ('t1')")
    conn.execute("PRAGMA user_version=1")
    conn.commit()
    conn.close()

    mgr = StoreManager.open("tests.sample_schema", "test.db", data_dir=store_dir)
    try:
        assert sample_schema.Tag.fetch("t1").label == ""
    finally:
        mgr.close()


def test_missing_required_column_is_fatal(store_dir):
    _seed_old_store(
        store_dir / "test.db",
        user_version=1,
        people_ddl="CREATE TABLE people (pk INTEGER PRIMARY KEY, name TEXT)",
    )

    with pytest.raises(StoreOpenError):
        StoreManager.open("tests.sample_schema", "test.db", data_dir=store_dir)


def test_explicit_migrations_run_in_order(store_dir):
    db_path = store_dir / "test.db"
    _seed_old_store(db_path, user_version=1, people_ddl=OLD_PEOPLE_DDL, rows=[("p1", "ada")])
    applied = []

    def v1_to_v2(conn):
        applied.append(1)
        conn.execute(text("UPDATE people SET name = upper(name)"))

    def v2_to_v3(conn):
        applied.append(2)
        conn.execute(text("UPDATE people SET name = name || '!'"))

    mgr = StoreManager.open(_schema(3, {1: v1_to_v2, 2: v2_to_v3}), "test.db", data_dir=store_dir)
    try:
        assert applied == [1, 2]
        assert _user_version(db_path) == 3
        assert Person.fetch("p1").name == "ADA!"
    finally:
        mgr.close()


def test_missing_migration_step_is_fatal(store_dir):
    _seed_old_store(store_dir / "test.db", user_version=1, people_ddl=OLD_PEOPLE_DDL)

    with pytest.raises(StoreOpenError):
        StoreManager.open(_schema(2), "test.db", data_dir=store_dir)


def test_failing_migration_step_is_fatal_and_keeps_version(store_dir):
    db_path = store_dir / "test.db"
    _seed_old_store(db_path, user_version=1, people_ddl=OLD_PEOPLE_DDL)

    def broken(conn):
        conn.execute(text("UPDATE no_such_table SET x = 1"))

    with pytest.raises(StoreOpenError):
        StoreManager.open(_schema(2, {1: broken}), "test.db", data_dir=store_dir)
    assert _user_version(db_path) == 1


def test_store_newer_than_schema_is_fatal(store_dir):
    _seed_old_store(store_dir / "test.db", user_version=5, people_ddl=OLD_PEOPLE_DDL)

    with pytest.raises(StoreOpenError):
        StoreManager.open("tests.sample_schema", "test.db", data_dir=store_dir)


def test_migrate_if_needed_reports_initial_version(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'plain.db'}", future=True)
    try:
        with engine.connect() as conn:
            db_migrations.set_sqlite_user_version(conn, 2)
            conn.commit()

        initial = db_migrations.migrate_if_needed(
            engine=engine,
            target_user_version=2,
            migrations={},
            logger=logging.getLogger(__name__),
        )

        assert initial == 2
    finally:
        engine.dispose()
