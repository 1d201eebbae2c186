"""
record_store の例外定義。

方針:
    - 起動時に回復不能なもの（StoreOpenError）と、書き込み経路で値として返すもの（CommitError）を分ける。
    - ストア由来の例外（SQLAlchemyError）は握りつぶさず、cause として保持する。
"""

from __future__ import annotations

from typing import Any


class RecordStoreError(Exception):
    """record_store が送出する例外の基底クラス。"""


class StoreOpenError(RecordStoreError):
    """ストアを開けない（スキーマ不在/解析失敗/ファイルを開けない/マイグレーション失敗）。

    アプリはこの状態では動作できないため、エントリポイントはプロセスを終了する。
    """


class ConfigError(RecordStoreError, ValueError):
    """設定ファイルの内容が不正。"""


class ManagerNotInitializedError(RecordStoreError, RuntimeError):
    """カレントの StoreManager が未登録。"""


class CommitError(RecordStoreError):
    """
    insert_or_update のコミット失敗。

    NOTE:
        - コミットに失敗しても、作業セット（Session）上の挿入/更新は既に行われている。
        - 呼び出し側が「何が作業セットに残ったか」を判別できるよう、record / was_created を保持する。
        - フラッシュ中の失敗（IntegrityError など）の後は Session が無効化される。
          StoreManager.rollback() を呼ぶまで lookup / insert_or_update はエラーを返す。
    """

    def __init__(self, cause: BaseException, *, record: Any = None, was_created: bool = False) -> None:
        super().__init__(f"commit failed: {cause}")
        self.cause = cause
        self.record = record
        self.was_created = bool(was_created)

