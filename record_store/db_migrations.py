"""
DB マイグレーション処理。

役割:
- SQLite user_version ベースで、スキーマモジュールが持つ段階的マイグレーションを順送りで適用する。
- 既存テーブルに足りない列（NULL可 or 既定値あり）を ALTER TABLE で自動追加する（推論マイグレーション）。
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping

from sqlalchemy import Table, text
from sqlalchemy.schema import CreateColumn

from record_store.errors import StoreOpenError

# from_version -> (conn) を受け取り from_version + 1 へ進める関数
MigrationStep = Callable[..., None]


def get_sqlite_user_version(conn) -> int:
    """SQLite PRAGMA user_version を整数で取得する。"""

    # --- SQLite の schema version 識別値を読む ---
    row = conn.execute(text("PRAGMA user_version")).fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def set_sqlite_user_version(conn, version: int) -> None:
    """SQLite PRAGMA user_version を更新する（commit は呼び出し側）。"""

    conn.execute(text(f"PRAGMA user_version={int(version)}"))


def get_table_columns(conn, table_name: str) -> set[str]:
    """指定テーブルのカラム名セットを返す（テーブルが無ければ空）。"""

    # --- PRAGMA table_info で列一覧を取得する ---
    rows = conn.execute(text(f'PRAGMA table_info("{table_name}")')).fetchall()
    return {str(r[1]) for r in rows}


def has_user_tables(conn) -> bool:
    """sqlite_ 系以外のテーブルが1つでもあるか。"""

    row = conn.execute(
        text("SELECT 1 FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' LIMIT 1")
    ).fetchone()
    return row is not None


def migrate_if_needed(
    *,
    engine,
    target_user_version: int,
    migrations: Mapping[int, MigrationStep],
    logger: logging.Logger,
) -> int:
    """
    スキーマモジュールの MIGRATIONS を現行版から目標版まで順に適用する。

    Returns:
        適用前の user_version。

    NOTE:
        - user_version=0 は「未刻印」。テーブルが無ければ新規作成扱い、あれば推論マイグレーションのみ行う。
        - 目標より新しいDBは扱えない（ダウングレードしない）。
    """

    target = int(target_user_version)
    with engine.connect() as conn:
        initial = get_sqlite_user_version(conn)

    if initial > target:
        raise StoreOpenError(
            f"store user_version mismatch: db={initial}, expected<={target}. "
            "the store was written by a newer schema."
        )

    current = initial
    while 0 < current < target:
        step = migrations.get(current)
        if step is None:
            raise StoreOpenError(
                f"no migration registered from user_version {current} to {current + 1}"
            )

        # --- 1段ずつ進める（失敗したらその版で止まる） ---
        with engine.connect() as conn:
            try:
                step(conn)
                set_sqlite_user_version(conn, current + 1)
                conn.commit()
            except Exception as exc:
                conn.rollback()
                raise StoreOpenError(
                    f"migration from user_version {current} to {current + 1} failed: {exc}"
                ) from exc

        logger.info("store migrated: user_version %d -> %d", current, current + 1)
        current += 1

    return initial


def add_missing_columns(*, engine, tables: Iterable[Table], logger: logging.Logger) -> list[str]:
    """
    既存テーブルに無い列を ALTER TABLE ADD COLUMN で追加する。

    - テーブル自体が無い場合は何もしない（create_all に任せる）。
    - NOT NULL かつサーバ側既定値の無い列は追加できないため、エラーにする。

    Returns:
        追加した "table.column" の一覧。
    """

    added: list[str] = []
    with engine.connect() as conn:
        for table in tables:
            existing = get_table_columns(conn, table.name)
            if not existing:
                continue

            for column in table.columns:
                if column.name in existing:
                    continue

                # --- 既存行を埋められない列は推論できない ---
                if not column.nullable and column.server_default is None:
                    raise StoreOpenError(
                        f"cannot infer migration for {table.name}.{column.name}: "
                        "NOT NULL column without a server default"
                    )

                column_ddl = CreateColumn(column).compile(dialect=engine.dialect)
                conn.execute(text(f'ALTER TABLE "{table.name}" ADD COLUMN {column_ddl}'))
                added.append(f"{table.name}.{column.name}")

        conn.commit()

    for name in added:
        logger.info("store column added by inferred migration: %s", name)
    return added
