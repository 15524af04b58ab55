"""
MongoDB access for the Global Tracker API.

A single ``Database`` handle is opened when the app starts and closed when it
shuts down. Handlers receive it through the ``get_db`` dependency instead of
importing a module-level connection.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

from bson import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from errors import ServerError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

COUNTRY = "country"
COMPANY = "company"
PERSON = "person"
USER = "user"
SESSION = "session"
ACTIVITY = "activity"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    """Process-wide store handle.

    ``transactions`` is decided once at startup and selects how multi-step
    deletes run: inside ``with_transaction`` or as plain sequential writes.
    """

    def __init__(self, client: MongoClient, name: str, transactions: bool = False):
        self.client = client
        self.name = name
        self.db = client[name]
        self.transactions = transactions

    def __getitem__(self, collection: str):
        return self.db[collection]

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def run_multi_step(self, work: Callable[[Any], T]) -> T:
        """Run ``work(session)`` atomically when the deployment allows it.

        On a standalone server ``work`` receives ``None`` and its writes are
        applied one after another with no rollback.
        """
        if not self.transactions:
            return work(None)
        with self.client.start_session() as session:
            return session.with_transaction(work)

    def close(self) -> None:
        self.client.close()


def session_kwargs(session) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


def supports_transactions(client: MongoClient) -> bool:
    """Multi-document transactions need a replica set member or a mongos."""
    try:
        hello = client.admin.command("hello")
    except PyMongoError as e:
        logger.warning("Could not determine transaction support: %s", e)
        return False
    return bool(hello.get("setName")) or hello.get("msg") == "isdbgrid"


def ensure_indexes(db: Database) -> None:
    db[COUNTRY].create_index([("name", ASCENDING)], unique=True)
    db[COUNTRY].create_index([("code", ASCENDING)], unique=True)
    db[COMPANY].create_index([("name", ASCENDING)], unique=True)
    db[COMPANY].create_index([("country", ASCENDING)])
    db[COMPANY].create_index([("industry", ASCENDING)])
    db[PERSON].create_index([("email", ASCENDING)], unique=True)
    db[PERSON].create_index([("firstName", ASCENDING), ("lastName", ASCENDING)])
    db[PERSON].create_index([("company", ASCENDING)])
    db[PERSON].create_index([("country", ASCENDING)])
    db[USER].create_index([("email", ASCENDING)], unique=True)
    db[SESSION].create_index([("token", ASCENDING)], unique=True)
    db[ACTIVITY].create_index([("priority", DESCENDING), ("timestamp", DESCENDING)])


def connect(settings: Settings) -> Database:
    client = MongoClient(
        settings.DATABASE_URL,
        serverSelectionTimeoutMS=settings.SERVER_SELECTION_TIMEOUT_MS,
        tz_aware=True,
    )
    transactions = supports_transactions(client)
    db = Database(client, settings.DATABASE_NAME, transactions=transactions)
    try:
        ensure_indexes(db)
    except PyMongoError as e:
        logger.warning("Index creation skipped: %s", e)
    logger.info(
        "Connected to MongoDB database %s (transactions=%s)",
        settings.DATABASE_NAME,
        transactions,
    )
    return db


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise ServerError("Database not available")
    return db


def to_dict(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make a stored document JSON friendly: ``_id`` becomes ``id`` and
    ObjectId references become hex strings."""
    if not doc:
        return doc
    d: Dict[str, Any] = {}
    for key, value in doc.items():
        if key == "_id":
            d["id"] = str(value) if isinstance(value, ObjectId) else value
        elif isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, dict):
            d[key] = to_dict(value)
        elif isinstance(value, list):
            d[key] = [
                to_dict(v) if isinstance(v, dict) else str(v) if isinstance(v, ObjectId) else v
                for v in value
            ]
        else:
            d[key] = value
    return d


def object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValidationError(f"Invalid {label}")


def create_document(db: Database, collection_name: str, data: Any, session=None) -> ObjectId:
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    else:
        data = dict(data)
    now = utcnow()
    data["createdAt"] = now
    data["updatedAt"] = now
    result = db[collection_name].insert_one(data, **session_kwargs(session))
    return result.inserted_id


def create_unique_document(db: Database, collection_name: str, data: Any, message: str, session=None) -> ObjectId:
    """Insert like ``create_document``; a unique index collision becomes a 400 with ``message``."""
    try:
        return create_document(db, collection_name, data, session=session)
    except DuplicateKeyError:
        logger.info("Duplicate key on insert into %s", collection_name, extra={"collection": collection_name})
        raise ValidationError(message)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
