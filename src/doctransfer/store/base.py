"""
Store interface for the transfer engine.

A DocumentStore is one connection to a document server. The engine only
ever talks to these seams, so the batch writer and orchestrator are
indifferent to whether documents land in MongoDB or in the in-memory
store used by tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import DocumentError
from ..core.models import IndexDescriptor


class DuplicateIdError(DocumentError):
    """A single insert collided with an existing identifier."""
    pass


@dataclass
class InsertManyResult:
    """
    Result of one unordered bulk insert.

    Attributes:
        inserted_count: Documents the store confirmed inserted
        collisions: Batch positions rejected for identifier collision
        failures: (batch position, message) for any other per-document rejection
    """
    inserted_count: int = 0
    collisions: List[int] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)

    @property
    def has_collisions(self) -> bool:
        return bool(self.collisions)


class StoreCollection(ABC):
    """
    Abstract handle to one collection on a connected store.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the collection name."""
        pass

    @abstractmethod
    def drop(self) -> bool:
        """
        Drop the collection.

        Returns:
            True if it existed, False if there was nothing to drop
        """
        pass

    @abstractmethod
    def find_all(self) -> List[Dict[str, Any]]:
        """Return every document in natural order."""
        pass

    @abstractmethod
    def estimated_count(self) -> int:
        """Return the store's (possibly approximate) document count."""
        pass

    @abstractmethod
    def insert_many(self, documents: Sequence[Dict[str, Any]]) -> InsertManyResult:
        """
        Insert documents unordered: one rejection never blocks the others.

        Per-document rejections are reported in the result. Raises only
        when the batch as a whole could not be applied.
        """
        pass

    @abstractmethod
    def insert_one(self, document: Dict[str, Any]) -> None:
        """
        Insert a single document.

        Raises:
            DuplicateIdError if its identifier already exists
        """
        pass

    @abstractmethod
    def upsert(self, document: Dict[str, Any]) -> None:
        """Replace the document with the same identifier wholesale, creating it if absent."""
        pass

    @abstractmethod
    def exists(self, document_id: Any) -> bool:
        """Check whether a document with this identifier exists."""
        pass

    @abstractmethod
    def list_indexes(self) -> List[IndexDescriptor]:
        """Return all index descriptors, the primary-key index included."""
        pass

    @abstractmethod
    def create_indexes(self, indexes: Sequence[IndexDescriptor]) -> List[str]:
        """
        Create indexes in one bulk operation.

        Returns:
            Names of the created indexes
        """
        pass


class StoreDatabase(ABC):
    """Abstract handle to one database on a connected store."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def list_collection_names(self) -> List[str]:
        pass

    @abstractmethod
    def get_collection(self, name: str) -> StoreCollection:
        pass


class DocumentStore(ABC):
    """
    Abstract base class for document store connections.

    Connections are scoped to one run: acquire with ``with store:`` (or
    connect()/close()) and never share across concurrent runs.
    """

    @abstractmethod
    def connect(self) -> None:
        """
        Open the connection and verify the server is reachable.

        Raises:
            StoreConnectionError if the server cannot be reached
        """
        pass

    @abstractmethod
    def get_database(self, name: str) -> StoreDatabase:
        pass

    def server_version(self) -> Optional[str]:
        """Return the server version if the store reports one."""
        return None

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass

    def __enter__(self) -> "DocumentStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
