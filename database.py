"""
Record store used by the membership and circulation services.

A store hands out named collections (``store["book"]``) that all speak the
same CRUD contract. Besides plain ``get/find/list/create/update/delete``,
collections offer two conditional writes that run as one step in the store:

- ``update_if``: set fields only while the record still matches ``expected``
- ``increment``: add to a counter only if it stays within ``[0, ceiling]``

Two implementations are provided: ``MemoryStore`` for tests and local runs,
and ``MongoStore`` backed by pymongo.
"""

import logging
import re
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Set

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import settings
from errors import DuplicateRecord, RepositoryFailure


logger = logging.getLogger("library.database")

Document = Dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_str_id(doc: Optional[Document]) -> Optional[Document]:
    if not doc:
        return doc
    doc["id"] = str(doc.get("_id"))
    doc.pop("_id", None)
    return doc


class Collection(ABC):
    """Uniform per-entity record contract."""

    name: str

    @abstractmethod
    def get(self, record_id: str) -> Optional[Document]: ...

    @abstractmethod
    def find(self, filters: Document, ignore_case: bool = False) -> List[Document]: ...

    @abstractmethod
    def list(self) -> List[Document]: ...

    @abstractmethod
    def create(self, fields: Document) -> Document: ...

    @abstractmethod
    def update(self, record_id: str, fields: Document) -> Optional[Document]: ...

    @abstractmethod
    def delete(self, record_id: str) -> bool: ...

    @abstractmethod
    def update_if(self, record_id: str, expected: Document, fields: Document) -> Optional[Document]: ...

    @abstractmethod
    def increment(
        self, record_id: str, field: str, amount: int, ceiling: Optional[str] = None
    ) -> Optional[Document]: ...

    @abstractmethod
    def ensure_unique(self, field: str) -> None: ...

    def find_one(self, filters: Document, ignore_case: bool = False) -> Optional[Document]:
        found = self.find(filters, ignore_case=ignore_case)
        return found[0] if found else None

    def count(self, filters: Optional[Document] = None) -> int:
        return len(self.find(filters)) if filters else len(self.list())


class Store(ABC):
    @abstractmethod
    def __getitem__(self, name: str) -> Collection: ...


# In-memory store

def _matches(doc: Document, filters: Document, ignore_case: bool) -> bool:
    for key, expected in filters.items():
        actual = doc.get(key)
        if ignore_case and isinstance(expected, str) and isinstance(actual, str):
            if actual.casefold() != expected.casefold():
                return False
        elif actual != expected:
            return False
    return True


class MemoryCollection(Collection):
    def __init__(self, name: str, lock: threading.RLock) -> None:
        self.name = name
        self._lock = lock
        self._docs: Dict[str, Document] = {}
        self._unique: Set[str] = set()

    def _check_unique(self, fields: Document, record_id: Optional[str] = None) -> None:
        for key in self._unique:
            if key not in fields:
                continue
            for other_id, doc in self._docs.items():
                if other_id != record_id and doc.get(key) == fields[key]:
                    raise DuplicateRecord(f"{self.name}.{key} already exists: {fields[key]}")

    def get(self, record_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._docs.get(record_id)
            return dict(doc) if doc else None

    def find(self, filters: Document, ignore_case: bool = False) -> List[Document]:
        with self._lock:
            return [dict(d) for d in self._docs.values() if _matches(d, filters or {}, ignore_case)]

    def list(self) -> List[Document]:
        with self._lock:
            return [dict(d) for d in self._docs.values()]

    def create(self, fields: Document) -> Document:
        with self._lock:
            self._check_unique(fields)
            now = utcnow()
            doc = {k: v for k, v in fields.items() if k != "id"}
            doc.update(id=str(uuid.uuid4()), created_at=now, updated_at=now)
            self._docs[doc["id"]] = doc
            return dict(doc)

    def update(self, record_id: str, fields: Document) -> Optional[Document]:
        return self.update_if(record_id, {}, fields)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._docs.pop(record_id, None) is not None

    def update_if(self, record_id: str, expected: Document, fields: Document) -> Optional[Document]:
        with self._lock:
            doc = self._docs.get(record_id)
            if doc is None or not _matches(doc, expected, False):
                return None
            changes = {k: v for k, v in fields.items() if k != "id"}
            self._check_unique(changes, record_id)
            doc.update(changes, updated_at=utcnow())
            return dict(doc)

    def increment(
        self, record_id: str, field: str, amount: int, ceiling: Optional[str] = None
    ) -> Optional[Document]:
        with self._lock:
            doc = self._docs.get(record_id)
            if doc is None:
                return None
            value = (doc.get(field) or 0) + amount
            if value < 0:
                return None
            if ceiling is not None and value > (doc.get(ceiling) or 0):
                return None
            doc[field] = value
            doc["updated_at"] = utcnow()
            return dict(doc)

    def ensure_unique(self, field: str) -> None:
        self._unique.add(field)


class MemoryStore(Store):
    """Process-local store. One lock guards all collections."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: Dict[str, MemoryCollection] = {}

    def __getitem__(self, name: str) -> MemoryCollection:
        with self._lock:
            if name not in self._collections:
                self._collections[name] = MemoryCollection(name, self._lock)
            return self._collections[name]


# MongoDB store

@contextmanager
def _driver_errors(collection: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as e:
        raise DuplicateRecord(f"Duplicate key in {collection}") from e
    except PyMongoError as e:
        logger.error("Database error on %s: %s", collection, e)
        raise RepositoryFailure(f"Database error on {collection}") from e


class MongoCollection(Collection):
    def __init__(self, collection) -> None:
        self.name = collection.name
        self._col = collection

    @staticmethod
    def _oid(record_id: str) -> Optional[ObjectId]:
        if not record_id or not ObjectId.is_valid(record_id):
            return None
        return ObjectId(record_id)

    @staticmethod
    def _query(filters: Document, ignore_case: bool) -> Document:
        query: Document = {}
        for key, value in (filters or {}).items():
            if ignore_case and isinstance(value, str):
                query[key] = {"$regex": f"^{re.escape(value)}$", "$options": "i"}
            else:
                query[key] = value
        return query

    def _find_and_set(self, query: Document, update: Document) -> Optional[Document]:
        with _driver_errors(self.name):
            doc = self._col.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        return to_str_id(doc)

    def get(self, record_id: str) -> Optional[Document]:
        oid = self._oid(record_id)
        if oid is None:
            return None
        with _driver_errors(self.name):
            return to_str_id(self._col.find_one({"_id": oid}))

    def find(self, filters: Document, ignore_case: bool = False) -> List[Document]:
        with _driver_errors(self.name):
            docs = self._col.find(self._query(filters, ignore_case)).sort("created_at", 1)
            return [to_str_id(d) for d in docs]

    def list(self) -> List[Document]:
        return self.find({})

    def count(self, filters: Optional[Document] = None) -> int:
        with _driver_errors(self.name):
            return self._col.count_documents(filters or {})

    def create(self, fields: Document) -> Document:
        now = utcnow()
        doc = {k: v for k, v in fields.items() if k != "id"}
        doc.update(created_at=now, updated_at=now)
        with _driver_errors(self.name):
            result = self._col.insert_one(doc)
        doc["_id"] = result.inserted_id
        return to_str_id(doc)

    def update(self, record_id: str, fields: Document) -> Optional[Document]:
        return self.update_if(record_id, {}, fields)

    def delete(self, record_id: str) -> bool:
        oid = self._oid(record_id)
        if oid is None:
            return False
        with _driver_errors(self.name):
            return self._col.delete_one({"_id": oid}).deleted_count > 0

    def update_if(self, record_id: str, expected: Document, fields: Document) -> Optional[Document]:
        oid = self._oid(record_id)
        if oid is None:
            return None
        changes = {k: v for k, v in fields.items() if k != "id"}
        changes["updated_at"] = utcnow()
        return self._find_and_set({"_id": oid, **expected}, {"$set": changes})

    def increment(
        self, record_id: str, field: str, amount: int, ceiling: Optional[str] = None
    ) -> Optional[Document]:
        oid = self._oid(record_id)
        if oid is None:
            return None
        query: Document = {"_id": oid}
        if amount < 0:
            query[field] = {"$gte": -amount}
        if ceiling is not None:
            query["$expr"] = {"$lte": [{"$add": [f"${field}", amount]}, f"${ceiling}"]}
        update = {"$inc": {field: amount}, "$set": {"updated_at": utcnow()}}
        return self._find_and_set(query, update)

    def ensure_unique(self, field: str) -> None:
        with _driver_errors(self.name):
            self._col.create_index(field, unique=True)


class MongoStore(Store):
    def __init__(self, url: str, name: str, timeout_ms: int = 5000) -> None:
        self.client = MongoClient(url, tz_aware=True, serverSelectionTimeoutMS=timeout_ms)
        self.db = self.client[name]

    def __getitem__(self, name: str) -> MongoCollection:
        return MongoCollection(self.db[name])


def get_store() -> Store:
    if settings.database_url:
        logger.info("Using MongoDB store (database=%s)", settings.database_name)
        return MongoStore(settings.database_url, settings.database_name, settings.database_timeout_ms)
    logger.warning("DATABASE_URL not set; using in-memory store")
    return MemoryStore()
