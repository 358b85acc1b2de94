from datetime import datetime

import mongomock
import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from eduquery.errors import QueryExecutionError
from eduquery.services.activity_log_service import ActivityLogger


class BrokenCollection:
    def insert_one(self, document):
        raise ServerSelectionTimeoutError("no servers")

    def aggregate(self, pipeline):
        raise OperationFailure("aggregation failed")


@pytest.fixture
def collection():
    return mongomock.MongoClient().eduquery.activity_logs


def test_append_stores_action_data_and_timestamp(collection):
    ActivityLogger(collection, asynchronous=False).append("view_map", {"zone": "EAST"})

    entry = collection.find_one()
    assert entry["action"] == "view_map"
    assert entry["data"] == {"zone": "EAST"}
    assert entry["timestamp"] is not None


def test_append_never_raises_on_store_failure():
    ActivityLogger(BrokenCollection(), asynchronous=False).append("view_map", {})


def test_async_append_never_raises_on_store_failure():
    logger = ActivityLogger(BrokenCollection(), asynchronous=True)
    logger.append("view_map", {})
    logger.flush()


def test_disabled_logger_drops_events():
    logger = ActivityLogger(None)
    assert not logger.enabled
    logger.append("view_map", {})
    assert logger.recent() == []
    assert logger.popular_searches() == []


def test_async_append_lands_after_flush(collection):
    logger = ActivityLogger(collection, asynchronous=True)
    for n in range(5):
        logger.append("search_schools", {"query": f"q{n}", "results_count": n})
    logger.flush()

    assert collection.count_documents({"action": "search_schools"}) == 5


def test_from_config_without_uri_is_disabled():
    logger = ActivityLogger.from_config({"MONGO_URI": None})
    assert not logger.enabled


def test_recent_is_newest_first_and_serialisable(collection):
    collection.insert_many([
        {"timestamp": datetime(2024, 1, 1, 8, 0), "action": "first", "data": {}},
        {"timestamp": datetime(2024, 1, 2, 8, 0), "action": "second", "data": {}},
    ])

    entries = ActivityLogger(collection, asynchronous=False).recent(limit=1)

    assert [e["action"] for e in entries] == ["second"]
    assert isinstance(entries[0]["_id"], str)
    assert isinstance(entries[0]["timestamp"], str)


def test_popular_searches_counts_queries(collection):
    logger = ActivityLogger(collection, asynchronous=False)
    for query in ("raffles", "raffles", "nanyang"):
        logger.append("search_schools", {"query": query, "results_count": 1})
    logger.append("view_map", {"zone": "all"})

    popular = logger.popular_searches()

    assert popular[0] == {"_id": "raffles", "count": 2}
    assert {p["_id"] for p in popular} == {"raffles", "nanyang"}


def test_read_failures_become_query_errors():
    logger = ActivityLogger(BrokenCollection(), asynchronous=False)
    with pytest.raises(QueryExecutionError):
        logger.popular_searches()
