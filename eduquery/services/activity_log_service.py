# eduquery/services/activity_log_service.py
import logging
from concurrent.futures import ThreadPoolExecutor

from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from eduquery.errors import QueryExecutionError
from eduquery.models.school import get_sgt_time

logger = logging.getLogger(__name__)

SEARCH_ACTIONS = [
    "search_schools",
    "search_subjects",
    "search_ccas",
    "search_programmes",
    "search_distinctives",
]


class ActivityLogger:
    """
    Append-only usage log in a MongoDB collection.

    append() is fire-and-forget: it never raises into the caller and, when
    asynchronous, hands the insert to a single background worker so the
    response is not held up by the document store.
    """

    def __init__(self, collection=None, asynchronous=True):
        self.collection = collection
        self._executor = None
        if collection is not None and asynchronous:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="activity-log"
            )

    @classmethod
    def from_config(cls, config):
        uri = config.get("MONGO_URI")
        if not uri:
            logger.info("MONGO_URI not set; activity logging disabled")
            return cls(None)

        try:
            client = MongoClient(uri, serverSelectionTimeoutMS=5000)
            collection = client[config["MONGO_DB"]][config["MONGO_COLLECTION"]]
        except PyMongoError as e:
            logger.error("Could not configure MongoDB activity log: %s", e)
            return cls(None)

        return cls(collection, asynchronous=config.get("ACTIVITY_LOG_ASYNC", True))

    @property
    def enabled(self):
        return self.collection is not None

    # ----------------------------
    # WRITE
    # ----------------------------

    def append(self, action: str, data: dict):
        if not self.enabled:
            logger.debug("Activity %s dropped (no log sink)", action)
            return

        document = {"timestamp": get_sgt_time(), "action": action, "data": data}

        if self._executor is None:
            self._insert(document)
            return

        try:
            self._executor.submit(self._insert, document)
        except RuntimeError:
            # executor already shut down (interpreter exit)
            logger.warning("Activity %s dropped; log worker stopped", action)

    def _insert(self, document):
        try:
            self.collection.insert_one(document)
        except Exception:
            logger.exception("Failed to log activity %s", document.get("action"))

    def flush(self):
        """Wait for queued inserts; used on shutdown and in tests."""
        if self._executor is not None:
            self._executor.submit(lambda: None).result()

    # ----------------------------
    # READ (admin dashboards)
    # ----------------------------

    def _aggregate(self, pipeline):
        if not self.enabled:
            return []
        try:
            return [_serialize(doc) for doc in self.collection.aggregate(pipeline)]
        except PyMongoError as e:
            raise QueryExecutionError(str(e), original=e) from e

    def recent(self, limit=50):
        if not self.enabled:
            return []
        try:
            cursor = self.collection.find({}).sort("timestamp", DESCENDING).limit(limit)
            return [_serialize(doc) for doc in cursor]
        except PyMongoError as e:
            raise QueryExecutionError(str(e), original=e) from e

    def popular_searches(self, limit=10):
        return self._aggregate([
            {"$match": {"action": "search_schools"}},
            {"$group": {"_id": "$data.query", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
            {"$limit": limit},
        ])

    def activity_trends(self, limit=50):
        return self._aggregate([
            {
                "$group": {
                    "_id": {
                        "year": {"$year": "$timestamp"},
                        "month": {"$month": "$timestamp"},
                        "action": "$action",
                    },
                    "count": {"$sum": 1},
                }
            },
            {"$sort": {"_id.year": -1, "_id.month": -1, "count": -1}},
            {"$limit": limit},
        ])

    def search_patterns(self, limit=20):
        return self._aggregate([
            {"$match": {"action": {"$in": SEARCH_ACTIONS}}},
            {
                "$group": {
                    "_id": {"action": "$action", "query": "$data.query"},
                    "search_count": {"$sum": 1},
                    "avg_results": {"$avg": "$data.results_count"},
                    "last_searched": {"$max": "$timestamp"},
                }
            },
            {"$sort": {"search_count": -1}},
            {"$limit": limit},
        ])


def _serialize(document):
    doc = dict(document)
    if "_id" in doc and not isinstance(doc["_id"], (dict, str, type(None))):
        doc["_id"] = str(doc["_id"])
    for key in ("timestamp", "last_searched"):
        value = doc.get(key)
        if hasattr(value, "isoformat"):
            doc[key] = value.isoformat()
    return doc
