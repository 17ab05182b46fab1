"""
Core subpackage for the transfer engine.

Contains the data model, exceptions, and logging utilities.
"""

from .models import (
    ID_FIELD,
    PRIMARY_INDEX_NAME,
    WritePolicy,
    Outcome,
    IndexDescriptor,
    CollectionSnapshot,
    TransferMetadata,
    WriteResult,
    CollectionResult,
    TransferResult,
    ExportResult,
)
from .exceptions import (
    TransferError,
    ConfigurationError,
    UnsupportedFileError,
    StoreConnectionError,
    NoCollectionsError,
    CollectionError,
    DocumentError,
    BatchError,
    IndexReplicationError,
    ArchiveError,
    ArchiveReadError,
    ArchiveWriteError,
)

__all__ = [
    # Models
    "ID_FIELD",
    "PRIMARY_INDEX_NAME",
    "WritePolicy",
    "Outcome",
    "IndexDescriptor",
    "CollectionSnapshot",
    "TransferMetadata",
    "WriteResult",
    "CollectionResult",
    "TransferResult",
    "ExportResult",
    # Exceptions
    "TransferError",
    "ConfigurationError",
    "UnsupportedFileError",
    "StoreConnectionError",
    "NoCollectionsError",
    "CollectionError",
    "DocumentError",
    "BatchError",
    "IndexReplicationError",
    "ArchiveError",
    "ArchiveReadError",
    "ArchiveWriteError",
]
