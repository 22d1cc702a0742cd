from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from database import mongodb_client
from database.mongodb_client import MongoDBClient


@pytest.fixture(autouse=True)
def fresh_singleton(monkeypatch):
    MongoDBClient._instance = None
    monkeypatch.setenv("MONGODB_URI", "mongodb://db.internal:27017")
    monkeypatch.delenv("MONGODB_DATABASE", raising=False)
    monkeypatch.delenv("MONGODB_COLLECTION_RATE_LIMITS", raising=False)
    yield
    MongoDBClient._instance = None


def test_missing_uri_raises(monkeypatch):
    monkeypatch.delenv("MONGODB_URI")
    with pytest.raises(ValueError):
        MongoDBClient()


def test_collections_get_sweep_and_time_indexes():
    with patch.object(mongodb_client, "MongoClient") as mongo_cls:
        client = MongoDBClient()

        rate_limits = client.get_rate_limits_collection()
        events = client.get_security_events_collection()

    db = mongo_cls.return_value.__getitem__.return_value
    mongo_cls.return_value.__getitem__.assert_called_with("recipe_book")
    db.__getitem__.assert_any_call("rate_limits")
    db.__getitem__.assert_any_call("security_events")
    rate_limits.create_index.assert_any_call([("window_start", 1)])
    events.create_index.assert_any_call([("timestamp", -1)])


def test_single_connection_per_process():
    with patch.object(mongodb_client, "MongoClient") as mongo_cls:
        assert MongoDBClient() is MongoDBClient()
    assert mongo_cls.call_count == 1


def test_retries_with_backoff_then_gives_up():
    failing = MagicMock()
    failing.admin.command.side_effect = ServerSelectionTimeoutError("no servers")

    with patch.object(mongodb_client, "MongoClient", return_value=failing), \
            patch.object(mongodb_client.time, "sleep") as sleep:
        with pytest.raises(ConnectionError):
            MongoDBClient(max_retries=3, retry_delay=0.5)

    assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]
    assert failing.close.call_count == 3
