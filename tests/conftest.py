import pytest

from rank_tracker.storage import Database
from rank_tracker.utils.config import Config


@pytest.fixture
def db():
    return Database("sqlite:///:memory:")


@pytest.fixture
def config():
    cfg = Config()
    cfg.search.delay_ms = 0
    cfg.search.backoff_ms = 0
    cfg.refresh.concurrency = 4
    cfg.history.timezone = "UTC"
    return cfg
