"""
Custom exceptions for the document transfer engine.

Only configuration, connection, enumeration and archive I/O failures are
meant to escape a run. Collection, batch and document failures are raised
inside the engine's seams and folded into the run result.
"""


class TransferError(Exception):
    """Base exception for all transfer errors."""
    pass


class ConfigurationError(TransferError):
    """
    Missing or invalid run parameters.

    Raised when:
    - A connection target or database name is missing
    - A write policy is not one of replace/merge/append
    - A writer is handed no target collection
    """
    pass


class UnsupportedFileError(ConfigurationError):
    """
    Uploaded file rejected before the engine runs.

    Raised when the extension is outside the allow-list or the file is
    larger than the configured upload limit.
    """

    def __init__(self, message: str, filename: str = None):
        super().__init__(message)
        self.filename = filename


class StoreConnectionError(TransferError):
    """
    Document store unreachable.

    Raised during CONNECT; the run aborts before enumeration.
    """

    def __init__(self, message: str, target: str = None):
        super().__init__(message)
        self.target = target


class NoCollectionsError(TransferError):
    """Enumeration produced an empty collection set."""

    def __init__(self, message: str, database: str = None):
        super().__init__(message)
        self.database = database


class CollectionError(TransferError):
    """
    Fetch, read or parse failure scoped to one collection.

    Recorded in that collection's result entry; the run continues.
    """

    def __init__(self, message: str, collection: str = None):
        super().__init__(message)
        self.collection = collection


class DocumentError(TransferError):
    """Single-document apply failure; recorded as skipped."""

    def __init__(self, message: str, document_id=None):
        super().__init__(message)
        self.document_id = document_id


class BatchError(TransferError):
    """Whole-batch apply failure not explained by identifier collision."""

    def __init__(self, message: str, batch_number: int = None):
        super().__init__(message)
        self.batch_number = batch_number


class IndexReplicationError(TransferError):
    """Index creation failed on the target. Non-fatal; logged as a warning."""
    pass


class ArchiveError(TransferError):
    """Base class for archive codec failures."""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class ArchiveReadError(ArchiveError):
    """Archive is corrupt, truncated or contains unsafe entry names."""
    pass


class ArchiveWriteError(ArchiveError):
    """Archive destination could not be created or a source file could not be read."""
    pass