import pytest

from relay_server.config import Settings


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "messenger.db"


@pytest.fixture
def make_config(db_path):
    def _make(**overrides):
        values = dict(SERVER_HOST="127.0.0.1", SERVER_PORT=0, DATABASE_PATH=db_path)
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()
