"""
MongoDB access for Civic-Sense.

A Store wraps one MongoClient and one database. It is built once by the app factory,
kept on app.state and handed to route handlers through the get_store dependency.
Collection name = lowercase snake case of the entity (Report -> "report").
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import ASCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.collection import Collection

from errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)

USER = "user"
REPORT = "report"
REPORT_VOTE = "report_vote"
REPORT_AUTHORITY = "report_authority"
REPORT_RESOLUTION = "report_resolution"
REPORT_FLAG = "report_flag"
STATUS_LOG = "status_log"
DRIVE = "drive"
DRIVE_VOTE = "drive_vote"
DRIVE_REPORT = "drive_report"
DRIVE_VOLUNTEER = "drive_volunteer"
DRIVE_COMPLETION = "drive_completion"
AUTHORITY = "authority"
TASK = "task"
VOLUNTEER = "volunteer"
MONITORING = "monitoring"
DISCUSSION = "discussion"
ENHANCEMENT = "enhancement"

UNIQUE_INDEXES = {
    USER: [("email", ASCENDING)],
    REPORT_VOTE: [("userId", ASCENDING), ("reportId", ASCENDING)],
    DRIVE_VOTE: [("userId", ASCENDING), ("driveId", ASCENDING)],
    REPORT_AUTHORITY: [("reportId", ASCENDING), ("authorityId", ASCENDING)],
    DRIVE_VOLUNTEER: [("driveId", ASCENDING), ("volunteerId", ASCENDING)],
    DRIVE_REPORT: [("driveId", ASCENDING), ("reportId", ASCENDING)],
    VOLUNTEER: [("userId", ASCENDING)],
}

# Volunteers registered without an account carry userId None and stay outside the index.
INDEX_OPTIONS = {
    VOLUNTEER: {"partialFilterExpression": {"userId": {"$type": "string"}}},
}


def utcnow() -> datetime:
    """Naive UTC now, truncated to the millisecond precision BSON dates keep."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidInput(f"Invalid {label}")


def serialize(doc: Any) -> Any:
    """Turn a stored document into JSON-ready data: _id becomes a string id."""
    if isinstance(doc, list):
        return [serialize(item) for item in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if not isinstance(doc, dict):
        return doc
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        else:
            out[key] = serialize(value)
    return out


class Store:
    def __init__(self, client: MongoClient, database_name: str, transactions: bool = False):
        self.client = client
        self.db = client[database_name]
        self.transactions = transactions

    def __getitem__(self, collection_name: str) -> Collection:
        return self.db[collection_name]

    def ensure_indexes(self) -> None:
        for collection_name, keys in UNIQUE_INDEXES.items():
            self.db[collection_name].create_index(keys, unique=True, **INDEX_OPTIONS.get(collection_name, {}))
        logger.info("Ensured %d unique indexes", len(UNIQUE_INDEXES))

    @contextmanager
    def unit_of_work(self) -> Iterator[Optional[ClientSession]]:
        """
        Scope for a multi-document state transition.

        Yields a session bound to a transaction when transactions are enabled (replica
        set deployments), otherwise None. Pass the yielded value as `session=` to every
        collection call made inside the block.
        """
        if not self.transactions:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    def create_document(self, collection_name: str, data: Dict[str, Any],
                        session: Optional[ClientSession] = None) -> Dict[str, Any]:
        now = utcnow()
        doc = dict(data)
        doc.setdefault("createdAt", now)
        doc["updatedAt"] = now
        result = self.db[collection_name].insert_one(doc, session=session)
        doc["_id"] = result.inserted_id
        return doc

    def get_documents(self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                      limit: Optional[int] = None, sort: Optional[List] = None,
                      session: Optional[ClientSession] = None) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {}, session=session)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_by_id(self, collection_name: str, doc_id: Any,
                   session: Optional[ClientSession] = None) -> Optional[Dict[str, Any]]:
        return self.db[collection_name].find_one({"_id": parse_object_id(doc_id)}, session=session)

    def require(self, collection_name: str, doc_id: Any, label: str,
                session: Optional[ClientSession] = None) -> Dict[str, Any]:
        """find_by_id that raises NotFound("<label> not found") for missing documents."""
        oid = parse_object_id(doc_id, f"{label.lower()} id")
        doc = self.db[collection_name].find_one({"_id": oid}, session=session)
        if doc is None:
            raise NotFound(f"{label} not found")
        return doc


def create_store(settings) -> Store:
    client = MongoClient(settings.database_url)
    return Store(client, settings.database_name, transactions=settings.mongo_transactions)


def get_store(request: Request) -> Store:
    return request.app.state.store
