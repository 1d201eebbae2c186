from __future__ import annotations

import pytest

from record_store.db import StoreManager, set_current_manager


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """ユーザーデータディレクトリをテストごとの一時ディレクトリへ向ける。"""
    data_dir = tmp_path / "user_data"
    monkeypatch.setenv("RECORD_STORE_DATA_DIR", str(data_dir))
    yield data_dir
    set_current_manager(None)


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def manager(store_dir):
    mgr = StoreManager.open("tests.sample_schema", "test.db", data_dir=store_dir)
    yield mgr
    mgr.close()
