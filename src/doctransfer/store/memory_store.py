"""
In-memory document store.

Provides a deterministic store with MongoDB-like identifier semantics and
no external dependencies. Used for unit tests and local dry runs.

Several MemoryDocumentStore connections can share one MemoryServer, the
same way several MongoClient connections see one mongod.
"""

import copy
import logging
import threading
from typing import Any, Dict, Hashable, List, Optional, Sequence

from bson import ObjectId, json_util

from ..core.exceptions import StoreConnectionError
from ..core.models import ID_FIELD, PRIMARY_INDEX_NAME, IndexDescriptor
from .base import (
    DocumentStore,
    DuplicateIdError,
    InsertManyResult,
    StoreCollection,
    StoreDatabase,
)

logger = logging.getLogger(__name__)

PRIMARY_INDEX = IndexDescriptor(key=((ID_FIELD, 1),), name=PRIMARY_INDEX_NAME)


def _id_key(value: Any) -> Hashable:
    """Map an identifier to a hashable key (documents are legal _id values)."""
    try:
        hash(value)
        return value
    except TypeError:
        return json_util.dumps(value, sort_keys=True)


class _CollectionData:
    def __init__(self):
        self.documents: Dict[Hashable, Dict[str, Any]] = {}
        self.indexes: List[IndexDescriptor] = [PRIMARY_INDEX]


class MemoryServer:
    """
    Shared state behind one or more in-memory connections.

    Attributes:
        version: Reported server version
        reachable: When False, connect() fails as an unreachable server would
    """

    def __init__(self, version: str = "7.0.0-memory", reachable: bool = True):
        self.version = version
        self.reachable = reachable
        self.lock = threading.RLock()
        self.databases: Dict[str, Dict[str, _CollectionData]] = {}

    def create_collection(self, database: str, name: str) -> None:
        """Create an empty collection (a no-op if it exists)."""
        with self.lock:
            self.databases.setdefault(database, {}).setdefault(name, _CollectionData())

    def seed(self, database: str, name: str, documents: Sequence[Dict[str, Any]]) -> None:
        """Create a collection holding copies of the given documents."""
        self.create_collection(database, name)
        MemoryCollection(self, database, name).insert_many(documents)

    def documents(self, database: str, name: str) -> List[Dict[str, Any]]:
        """Return copies of all documents in a collection (empty if absent)."""
        with self.lock:
            data = self.databases.get(database, {}).get(name)
            if data is None:
                return []
            return [copy.deepcopy(doc) for doc in data.documents.values()]


class MemoryCollection(StoreCollection):
    """StoreCollection over a MemoryServer."""

    def __init__(self, server: MemoryServer, database: str, name: str):
        self._server = server
        self._database = database
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def _data(self, create: bool = False) -> Optional[_CollectionData]:
        collections = self._server.databases.get(self._database)
        if collections is None:
            if not create:
                return None
            collections = self._server.databases.setdefault(self._database, {})
        if self._name not in collections and create:
            collections[self._name] = _CollectionData()
        return collections.get(self._name)

    def drop(self) -> bool:
        with self._server.lock:
            collections = self._server.databases.get(self._database, {})
            return collections.pop(self._name, None) is not None

    def find_all(self) -> List[Dict[str, Any]]:
        return self._server.documents(self._database, self._name)

    def estimated_count(self) -> int:
        with self._server.lock:
            data = self._data()
            return len(data.documents) if data else 0

    def _store(self, data: _CollectionData, document: Dict[str, Any]) -> bool:
        doc = copy.deepcopy(document)
        if ID_FIELD not in doc:
            doc[ID_FIELD] = ObjectId()
        key = _id_key(doc[ID_FIELD])
        if key in data.documents:
            return False
        data.documents[key] = doc
        return True

    def insert_many(self, documents: Sequence[Dict[str, Any]]) -> InsertManyResult:
        result = InsertManyResult()
        if not documents:
            return result
        with self._server.lock:
            data = self._data(create=True)
            for position, document in enumerate(documents):
                if self._store(data, document):
                    result.inserted_count += 1
                else:
                    result.collisions.append(position)
        return result

    def insert_one(self, document: Dict[str, Any]) -> None:
        with self._server.lock:
            if not self._store(self._data(create=True), document):
                raise DuplicateIdError(
                    f"duplicate key error collection: {self._database}.{self._name}",
                    document_id=document.get(ID_FIELD),
                )

    def upsert(self, document: Dict[str, Any]) -> None:
        with self._server.lock:
            data = self._data(create=True)
            data.documents[_id_key(document[ID_FIELD])] = copy.deepcopy(document)

    def exists(self, document_id: Any) -> bool:
        with self._server.lock:
            data = self._data()
            return data is not None and _id_key(document_id) in data.documents

    def list_indexes(self) -> List[IndexDescriptor]:
        with self._server.lock:
            data = self._data()
            return list(data.indexes) if data else []

    def create_indexes(self, indexes: Sequence[IndexDescriptor]) -> List[str]:
        with self._server.lock:
            data = self._data(create=True)
            existing = {index.name for index in data.indexes}
            for index in indexes:
                if index.name not in existing:
                    data.indexes.append(index)
                    existing.add(index.name)
            return [index.name for index in indexes]


class MemoryDatabase(StoreDatabase):
    def __init__(self, server: MemoryServer, name: str):
        self._server = server
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def list_collection_names(self) -> List[str]:
        with self._server.lock:
            return list(self._server.databases.get(self._name, {}).keys())

    def get_collection(self, name: str) -> MemoryCollection:
        return MemoryCollection(self._server, self._name, name)


class MemoryDocumentStore(DocumentStore):
    """
    One connection to a MemoryServer.

    Example:
        >>> server = MemoryServer()
        >>> server.seed("shop", "users", [{"_id": 1, "name": "a"}])
        >>> with MemoryDocumentStore(server) as store:
        ...     store.get_database("shop").list_collection_names()
        ['users']
    """

    def __init__(self, server: Optional[MemoryServer] = None):
        self.server = server or MemoryServer()
        self.connected = False
        self.close_count = 0

    def connect(self) -> None:
        if not self.server.reachable:
            raise StoreConnectionError("In-memory server is unreachable", target="memory")
        self.connected = True
        logger.debug("Connected to in-memory store")

    def _require_connection(self) -> None:
        if not self.connected:
            raise StoreConnectionError("Store is not connected", target="memory")

    def get_database(self, name: str) -> MemoryDatabase:
        self._require_connection()
        return MemoryDatabase(self.server, name)

    def server_version(self) -> Optional[str]:
        return self.server.version

    def close(self) -> None:
        if self.connected:
            self.connected = False
            self.close_count += 1
