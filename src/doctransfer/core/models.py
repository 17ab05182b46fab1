"""
Core data models for the transfer engine.

Documents themselves stay plain dicts; these types describe everything
around them: write policies, index descriptors, captured snapshots,
export metadata and the per-tier outcomes that flow up into a run result.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

ID_FIELD = "_id"
PRIMARY_INDEX_NAME = "_id_"

# Server-reported index fields that describe the index rather than configure it
_NON_OPTION_INDEX_FIELDS = {"key", "name", "v", "ns"}


class WritePolicy(str, Enum):
    """How incoming documents interact with existing target documents."""
    REPLACE = "replace"
    MERGE = "merge"
    APPEND = "append"


class Outcome(str, Enum):
    """Tagged outcome of applying a document, a batch or a collection."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class IndexDescriptor:
    """
    Secondary index specification, independent of any store connection.

    Attributes:
        key: Ordered (field, direction) pairs
        name: Index name
        options: Remaining creation options (unique, sparse, expireAfterSeconds, ...)
    """
    key: Tuple[Tuple[str, Any], ...]
    name: str
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_primary(self) -> bool:
        return self.name == PRIMARY_INDEX_NAME

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the on-disk index file shape."""
        data: Dict[str, Any] = {"key": dict(self.key), "name": self.name}
        data.update(self.options)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexDescriptor":
        """Create from a server index document or an index file entry."""
        key = data["key"]
        if isinstance(key, Mapping):
            pairs = tuple(key.items())
        else:
            pairs = tuple((k, v) for k, v in key)
        options = {k: v for k, v in data.items() if k not in _NON_OPTION_INDEX_FIELDS}
        return cls(key=pairs, name=data["name"], options=MappingProxyType(options))


@dataclass(frozen=True)
class CollectionSnapshot:
    """Full contents of one source collection at capture time."""
    name: str
    documents: Tuple[Dict[str, Any], ...]

    @property
    def count(self) -> int:
        return len(self.documents)

    @classmethod
    def capture(cls, name: str, documents: Sequence[Dict[str, Any]]) -> "CollectionSnapshot":
        return cls(name=name, documents=tuple(documents))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.name,
            "count": self.count,
            "documents": list(self.documents),
        }


@dataclass
class TransferMetadata:
    """
    Export metadata written into every archive as metadata.json.

    Built incrementally: the skeleton is written before the collection loop,
    then rewritten with totals and stats after it.
    """
    database: str
    collections: List[str]
    exported_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    server_version: Optional[str] = None
    total_documents: Optional[int] = None
    export_stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    export_duration: Optional[int] = None

    @property
    def total_collections(self) -> int:
        return len(self.collections)

    def record_collection(
        self,
        name: str,
        documents: int,
        estimated_count: int,
        file_size: int,
    ) -> None:
        self.export_stats[name] = {
            "documents": documents,
            "estimated_count": estimated_count,
            "file_size": file_size,
        }

    def record_collection_error(self, name: str, error: str) -> None:
        self.export_stats[name] = {"error": error, "documents": 0}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: Dict[str, Any] = {
            "database": self.database,
            "exported_at": self.exported_at.isoformat(),
            "collections": list(self.collections),
            "total_collections": self.total_collections,
        }
        if self.server_version is not None:
            data["server_version"] = self.server_version
        if self.total_documents is not None:
            data["total_documents"] = self.total_documents
            data["export_stats"] = self.export_stats
            data["export_duration"] = self.export_duration
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferMetadata":
        exported_at = data.get("exported_at")
        if isinstance(exported_at, str):
            exported_at = datetime.fromisoformat(exported_at.replace("Z", "+00:00"))
        return cls(
            database=data.get("database", ""),
            collections=list(data.get("collections", [])),
            exported_at=exported_at or datetime.now(timezone.utc),
            server_version=data.get("server_version"),
            total_documents=data.get("total_documents"),
            export_stats=data.get("export_stats", {}),
            export_duration=data.get("export_duration"),
        )


@dataclass
class WriteResult:
    """
    Result of applying one document sequence to one collection.

    Attributes:
        processed: Documents the store confirmed written
        skipped: Documents rejected individually (collisions, bad documents)
        errors: Batch-level failures
        error_details: Human-readable detail for every skip and batch error
    """
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)

    def record(self, outcome: Outcome, count: int = 1, detail: Optional[str] = None) -> None:
        if outcome is Outcome.APPLIED:
            self.processed += count
        elif outcome is Outcome.SKIPPED:
            self.skipped += count
        else:
            self.errors += count
        if detail:
            self.error_details.append(detail)

    def merge(self, other: "WriteResult") -> None:
        self.processed += other.processed
        self.skipped += other.skipped
        self.errors += other.errors
        self.error_details.extend(other.error_details)


@dataclass(frozen=True)
class CollectionResult:
    """
    Outcome of transferring one collection (or one import file).

    Attributes:
        details: Per-document and per-batch messages behind skipped and batch_errors
        index_warning: Index replication problem; never fails the collection
    """
    name: str
    outcome: Outcome
    processed: int = 0
    skipped: int = 0
    total: int = 0
    batch_errors: int = 0
    error: Optional[str] = None
    index_warning: Optional[str] = None
    details: Tuple[str, ...] = ()

    @classmethod
    def failed(cls, name: str, error: str) -> "CollectionResult":
        return cls(name=name, outcome=Outcome.ERROR, error=error)

    @classmethod
    def from_write(cls, name: str, write: WriteResult, total: int,
                   index_warning: Optional[str] = None) -> "CollectionResult":
        outcome = Outcome.APPLIED if write.errors == 0 else Outcome.ERROR
        return cls(
            name=name,
            outcome=outcome,
            processed=write.processed,
            skipped=write.skipped,
            total=total,
            batch_errors=write.errors,
            index_warning=index_warning,
            details=tuple(write.error_details),
        )

    def combine(self, other: "CollectionResult") -> "CollectionResult":
        """Fold a second result for the same target (two import files naming one collection)."""
        outcome = Outcome.ERROR if Outcome.ERROR in (self.outcome, other.outcome) else Outcome.APPLIED
        warnings = [w for w in (self.index_warning, other.index_warning) if w]
        return CollectionResult(
            name=self.name,
            outcome=outcome,
            processed=self.processed + other.processed,
            skipped=self.skipped + other.skipped,
            total=self.total + other.total,
            batch_errors=self.batch_errors + other.batch_errors,
            error=self.error or other.error,
            index_warning="; ".join(warnings) or None,
            details=self.details + other.details,
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            data: Dict[str, Any] = {"error": self.error, "processed": self.processed, "skipped": self.skipped}
        else:
            data = {"processed": self.processed, "skipped": self.skipped, "total": self.total}
        if self.details:
            data["errors"] = list(self.details)
        if self.index_warning:
            data["warnings"] = [self.index_warning]
        return data


@dataclass(frozen=True)
class TransferResult:
    """
    Aggregated result of one import or sync run.

    Never mutated after the run completes.
    """
    operation: str
    collections: Tuple[CollectionResult, ...]
    total_processed: int
    total_errors: int
    duration_ms: int
    cancelled: bool = False

    @property
    def total_collections(self) -> int:
        return len(self.collections)

    def collection(self, name: str) -> Optional[CollectionResult]:
        for entry in self.collections:
            if entry.name == name:
                return entry
        return None

    def per_collection_stats(self) -> Dict[str, Dict[str, Any]]:
        return {entry.name: entry.to_dict() for entry in self.collections}


@dataclass(frozen=True)
class ExportResult:
    """Result of one export run."""
    filename: str
    archive_path: str
    database: str
    collections: int
    total_documents: int
    file_size: int
    duration_ms: int
    download_reference: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "database": self.database,
            "collections": self.collections,
            "total_documents": self.total_documents,
            "file_size": self.file_size,
            "duration_ms": self.duration_ms,
            "download_reference": self.download_reference,
        }
