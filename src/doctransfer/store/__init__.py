"""
Document store connections for the transfer engine.
"""

from typing import Callable

from ..core.exceptions import ConfigurationError
from .base import (
    DocumentStore,
    StoreDatabase,
    StoreCollection,
    InsertManyResult,
    DuplicateIdError,
)
from .memory_store import MemoryDocumentStore, MemoryServer
from .mongo_store import MongoDocumentStore

StoreFactory = Callable[[str], DocumentStore]

MONGO_SCHEMES = ("mongodb://", "mongodb+srv://")


def open_store(connection_target: str, server_selection_timeout_ms: int = 5000) -> DocumentStore:
    """
    Build an (unconnected) store for a connection target.

    Args:
        connection_target: A mongodb:// or mongodb+srv:// connection string
        server_selection_timeout_ms: Driver timeout for reaching a server

    Raises:
        ConfigurationError if the target scheme is not recognised
    """
    if not connection_target:
        raise ConfigurationError("Connection target is required")
    if connection_target.startswith(MONGO_SCHEMES):
        return MongoDocumentStore(
            connection_target,
            server_selection_timeout_ms=server_selection_timeout_ms,
        )
    raise ConfigurationError(f"Unsupported connection target: {connection_target.split('://')[0]}")


__all__ = [
    "DocumentStore",
    "StoreDatabase",
    "StoreCollection",
    "InsertManyResult",
    "DuplicateIdError",
    "MemoryDocumentStore",
    "MemoryServer",
    "MongoDocumentStore",
    "StoreFactory",
    "open_store",
]
