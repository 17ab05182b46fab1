"""
MongoDB implementation of the store interface.

Wraps pymongo and translates its bulk-write and duplicate-key errors into
the engine's InsertManyResult / DuplicateIdError vocabulary.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from pymongo import IndexModel, MongoClient
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from ..core.exceptions import StoreConnectionError
from ..core.models import ID_FIELD, IndexDescriptor
from .base import (
    DocumentStore,
    DuplicateIdError,
    InsertManyResult,
    StoreCollection,
    StoreDatabase,
)

logger = logging.getLogger(__name__)

# Server error codes meaning "a unique key already exists"
DUPLICATE_KEY_CODES = {11000, 11001, 12582}


class MongoCollection(StoreCollection):
    """StoreCollection backed by a pymongo Collection."""

    def __init__(self, collection, database: "MongoDatabase"):
        self._collection = collection
        self._database = database

    @property
    def name(self) -> str:
        return self._collection.name

    def drop(self) -> bool:
        existed = self.name in self._database.list_collection_names()
        self._collection.drop()
        return existed

    def find_all(self) -> List[Dict[str, Any]]:
        return list(self._collection.find({}))

    def estimated_count(self) -> int:
        return self._collection.estimated_document_count()

    def insert_many(self, documents: Sequence[Dict[str, Any]]) -> InsertManyResult:
        if not documents:
            return InsertManyResult()

        # pymongo assigns _id in place; keep the caller's documents untouched
        batch = [dict(doc) for doc in documents]
        try:
            result = self._collection.insert_many(batch, ordered=False)
        except BulkWriteError as e:
            details = e.details or {}
            outcome = InsertManyResult(inserted_count=details.get("nInserted", 0))
            for write_error in details.get("writeErrors", []):
                if write_error.get("code") in DUPLICATE_KEY_CODES:
                    outcome.collisions.append(write_error["index"])
                else:
                    outcome.failures.append(
                        (write_error["index"], write_error.get("errmsg", "write error"))
                    )
            return outcome

        return InsertManyResult(inserted_count=len(result.inserted_ids))

    def insert_one(self, document: Dict[str, Any]) -> None:
        try:
            self._collection.insert_one(dict(document))
        except DuplicateKeyError as e:
            raise DuplicateIdError(str(e), document_id=document.get(ID_FIELD)) from e

    def upsert(self, document: Dict[str, Any]) -> None:
        self._collection.replace_one({ID_FIELD: document[ID_FIELD]}, document, upsert=True)

    def exists(self, document_id: Any) -> bool:
        return self._collection.count_documents({ID_FIELD: document_id}, limit=1) > 0

    def list_indexes(self) -> List[IndexDescriptor]:
        return [IndexDescriptor.from_dict(dict(index)) for index in self._collection.list_indexes()]

    def create_indexes(self, indexes: Sequence[IndexDescriptor]) -> List[str]:
        models = [
            IndexModel(list(index.key), name=index.name, **dict(index.options))
            for index in indexes
        ]
        return self._collection.create_indexes(models)


class MongoDatabase(StoreDatabase):
    """StoreDatabase backed by a pymongo Database."""

    def __init__(self, database):
        self._database = database

    @property
    def name(self) -> str:
        return self._database.name

    def list_collection_names(self) -> List[str]:
        return self._database.list_collection_names()

    def get_collection(self, name: str) -> MongoCollection:
        return MongoCollection(self._database[name], self)


class MongoDocumentStore(DocumentStore):
    """
    MongoDB connection for one run.

    Example:
        >>> with MongoDocumentStore("mongodb://localhost:27017") as store:
        ...     db = store.get_database("shop")
    """

    def __init__(self, uri: str, server_selection_timeout_ms: int = 5000):
        """
        Initialize the store.

        Args:
            uri: MongoDB connection string
            server_selection_timeout_ms: Driver timeout for reaching a server
        """
        self.uri = uri
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client: Optional[MongoClient] = None

    @property
    def client(self) -> MongoClient:
        if self._client is None:
            raise StoreConnectionError("Store is not connected", target=self.uri)
        return self._client

    def connect(self) -> None:
        try:
            self._client = MongoClient(
                self.uri,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            )
            self._client.admin.command("ping")
        except PyMongoError as e:
            self.close()
            raise StoreConnectionError(f"Cannot connect to MongoDB: {e}", target=self.uri) from e
        logger.info("Connected to MongoDB")

    def get_database(self, name: str) -> MongoDatabase:
        return MongoDatabase(self.client[name])

    def server_version(self) -> Optional[str]:
        try:
            return self.client.server_info().get("version")
        except PyMongoError as e:
            logger.warning(f"Could not read server version: {e}")
            return None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
