"""
conftest.py - テスト共通 fixture

- 固定 seed の LocalIdentity
- tmp_path 配下の SQLite を使う LogStoreProvider
- 環境変数とグローバルシングルトンのリセット
"""
from __future__ import annotations

import os

import pytest

from rumi_space.identity import LocalIdentity
from rumi_space.log_store import LogStoreProvider

TEST_SEED = "0123456789abcdef" * 4


_ENV_VARS = (
    "RUMI_SPACE_DATA_DIR",
    "RUMI_SPACE_SEED",
    "RUMI_SPACE_SEED_FILE",
    "RUMI_SPACE_LOG_LEVEL",
    "RUMI_SPACE_LOG_FORMAT",
    "RUMI_SPACE_BLOCK_SIZE",
)


@pytest.fixture(autouse=True)
def _clean_env_vars(monkeypatch):
    """テスト間で環境変数が漏れないようにする（load_dotenv が直接書いた分も消す）"""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield
    for var in _ENV_VARS:
        os.environ.pop(var, None)


@pytest.fixture(autouse=True)
def _reset_singletons():
    """各テスト後にグローバルシングルトンをリセットする"""
    yield
    from rumi_space import space_registry as _sr
    _sr._global_space_registry = None
    from rumi_space import logging_utils as _lu
    _lu.reset_logger_cache()
    _lu.reset_configuration()


@pytest.fixture()
def seed():
    return TEST_SEED.encode("utf-8")


@pytest.fixture()
def identity(seed):
    return LocalIdentity(seed)


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "spaces.db")


@pytest.fixture()
def engine(db_path, identity):
    provider = LogStoreProvider(db_path, identity.did)
    yield provider
    provider.close()
