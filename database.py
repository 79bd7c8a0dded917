"""
MongoDB access for the storefront.

Every feature module talks to ``db`` directly. Collection names are the
lowercase singular entity names (product, order_item, ...); references
between documents are stored as string ids.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

import config
from errors import NotFound

logger = logging.getLogger(__name__)


def _make_client(url: str):
    if url.startswith("mongomock://"):
        import mongomock

        return mongomock.MongoClient()
    return MongoClient(url)


client = _make_client(config.DATABASE_URL)
db = client[config.DATABASE_NAME]


def utcnow() -> datetime:
    # stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def object_id(value: Any, label: str = "Resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(f"{label} not found")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


def create_document(collection_name: str, data: Any, **kwargs) -> str:
    if hasattr(data, "model_dump"):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc, **kwargs)
    return str(result.inserted_id)


# Transactions

class Transaction:
    """One unit of work.

    With a session, MongoDB commits or aborts everything. Without one
    (standalone server, mongomock) each write registers an undo action and
    ``rollback`` replays them newest first.
    """

    def __init__(self, session=None):
        self.session = session
        self._undo = []

    @property
    def opts(self) -> Dict[str, Any]:
        return {"session": self.session} if self.session is not None else {}

    def on_rollback(self, func, *args, **kwargs):
        if self.session is None:
            self._undo.append((func, args, kwargs))

    def rollback(self):
        while self._undo:
            func, args, kwargs = self._undo.pop()
            try:
                func(*args, **kwargs)
            except PyMongoError:
                logger.exception("Undo step %s failed during rollback", getattr(func, "__name__", func))

    # Writes. Each records how to undo itself when there is no session.

    def insert_one(self, collection_name: str, doc: dict) -> ObjectId:
        coll = db[collection_name]
        inserted_id = coll.insert_one(doc, **self.opts).inserted_id
        self.on_rollback(coll.delete_one, {"_id": inserted_id})
        return inserted_id

    def insert_many(self, collection_name: str, docs: List[dict]) -> List[ObjectId]:
        if not docs:
            return []
        coll = db[collection_name]
        inserted_ids = coll.insert_many(docs, **self.opts).inserted_ids
        self.on_rollback(coll.delete_many, {"_id": {"$in": list(inserted_ids)}})
        return list(inserted_ids)

    def delete_many(self, collection_name: str, filter_dict: Dict[str, Any]) -> int:
        coll = db[collection_name]
        removed = [] if self.session is not None else list(coll.find(filter_dict))
        deleted = coll.delete_many(filter_dict, **self.opts).deleted_count
        if removed:
            self.on_rollback(coll.insert_many, removed)
        return deleted

    def delete_one(self, collection_name: str, filter_dict: Dict[str, Any]) -> int:
        coll = db[collection_name]
        removed = None if self.session is not None else coll.find_one(filter_dict)
        deleted = coll.delete_one(filter_dict, **self.opts).deleted_count
        if removed is not None and deleted:
            self.on_rollback(coll.insert_one, removed)
        return deleted

    def inc(self, collection_name: str, filter_dict: Dict[str, Any], field: str, amount: int) -> bool:
        """Atomic relative adjustment; ``filter_dict`` must name the ``_id``."""
        coll = db[collection_name]
        result = coll.update_one(filter_dict, {"$inc": {field: amount}}, **self.opts)
        if result.matched_count:
            self.on_rollback(coll.update_one, {"_id": filter_dict["_id"]}, {"$inc": {field: -amount}})
        return bool(result.matched_count)

    def set_fields(self, collection_name: str, filter_dict: Dict[str, Any], values: Dict[str, Any]) -> int:
        """``$set`` on every matching document; returns the number matched."""
        coll = db[collection_name]
        before = [] if self.session is not None else list(coll.find(filter_dict, {k: 1 for k in values}))
        matched = coll.update_many(filter_dict, {"$set": values}, **self.opts).matched_count
        for doc in before:
            restore = {k: doc[k] for k in values if k in doc}
            missing = {k: "" for k in values if k not in doc}
            update: Dict[str, Any] = {}
            if restore:
                update["$set"] = restore
            if missing:
                update["$unset"] = missing
            self.on_rollback(coll.update_one, {"_id": doc["_id"]}, update)
        return matched

    def pull_all(self, collection_name: str, filter_dict: Dict[str, Any], field: str, values: List[Any]) -> int:
        """``$pullAll`` from an array field; rollback restores each array as it was."""
        coll = db[collection_name]
        before = [] if self.session is not None else list(coll.find(filter_dict, {field: 1}))
        modified = coll.update_many(filter_dict, {"$pullAll": {field: values}}, **self.opts).modified_count
        for doc in before:
            self.on_rollback(coll.update_one, {"_id": doc["_id"]}, {"$set": {field: doc.get(field, [])}})
        return modified


_transactions_supported: Optional[bool] = None


def supports_transactions() -> bool:
    global _transactions_supported
    if _transactions_supported is not None:
        return _transactions_supported
    if config.DATABASE_TRANSACTIONS == "off" or config.DATABASE_URL.startswith("mongomock://"):
        _transactions_supported = False
    elif config.DATABASE_TRANSACTIONS == "on":
        _transactions_supported = True
    else:
        try:
            hello = client.admin.command("hello")
            _transactions_supported = bool(hello.get("setName")) or hello.get("msg") == "isdbgrid"
        except PyMongoError as e:
            logger.warning("Could not detect transaction support: %s", e)
            _transactions_supported = False
    logger.info("Database transactions %s", "enabled" if _transactions_supported else "emulated")
    return _transactions_supported


@contextmanager
def transaction():
    if supports_transactions():
        with client.start_session() as session:
            with session.start_transaction():
                yield Transaction(session)
        return

    tx = Transaction()
    try:
        yield tx
    except BaseException:
        logger.warning("Rolling back %d write(s)", len(tx._undo))
        tx.rollback()
        raise


def ensure_indexes():
    db["user"].create_index("email", unique=True)
    db["product"].create_index("sku", unique=True)
    db["product"].create_index("category_id")
    db["product_image"].create_index([("product_id", 1), ("order", 1)])
    db["product_variant"].create_index("product_id")
    db["cart_item"].create_index([("user_id", 1), ("product_id", 1), ("color", 1), ("size", 1)], unique=True)
    db["favorite"].create_index([("user_id", 1), ("product_id", 1)], unique=True)
    db["order"].create_index([("user_id", 1), ("created_at", -1)])
    db["order_item"].create_index("order_id")
    db["sale"].create_index("product_ids")
    db["address"].create_index("user_id")
