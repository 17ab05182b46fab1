"""
Request layer for the transfer engine.

Validates export, import and sync requests before any connection is made,
enforces the upload allow-list, and shapes engine results into the plain
dictionaries handed back to callers (HTTP handlers, the CLI, scripts).
"""

import logging
import random
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config.config_loader import TransferConfig
from .core.exceptions import ConfigurationError, UnsupportedFileError
from .core.models import TransferResult, WritePolicy
from .engine.orchestrator import CancellationToken, TransferOrchestrator
from .store import StoreFactory

logger = logging.getLogger(__name__)

DEFAULT_MODE = WritePolicy.MERGE.value

DOWNLOAD_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.(zip|json)$")


def _require(value: Optional[str], message: str) -> None:
    if value is None or not str(value).strip():
        raise ConfigurationError(message)


def _mode(value: Optional[str]) -> WritePolicy:
    try:
        return WritePolicy(value or DEFAULT_MODE)
    except ValueError:
        valid = ", ".join(p.value for p in WritePolicy)
        raise ConfigurationError(f"Invalid mode {value!r}; expected one of: {valid}") from None


@dataclass
class ExportRequest:
    connection_target: str
    database_name: str
    collections: Optional[Union[str, List[str]]] = None

    def validate(self) -> None:
        _require(self.connection_target, "Connection string and database name are required")
        _require(self.database_name, "Connection string and database name are required")


@dataclass
class ImportRequest:
    connection_target: str
    database_name: str
    upload_path: Path
    original_filename: Optional[str] = None
    import_mode: str = DEFAULT_MODE

    def validate(self) -> WritePolicy:
        if self.upload_path is None:
            raise ConfigurationError("No file uploaded")
        _require(self.connection_target, "Connection string and database name are required")
        _require(self.database_name, "Connection string and database name are required")
        return _mode(self.import_mode)

    @property
    def filename(self) -> str:
        return self.original_filename or Path(self.upload_path).name


@dataclass
class SyncRequest:
    source_connection_target: str
    target_connection_target: str
    source_database_name: str
    target_database_name: str
    sync_mode: str = DEFAULT_MODE
    collections: Optional[Union[str, List[str]]] = None

    def validate(self) -> WritePolicy:
        message = "Source and target connection strings and database names are required"
        _require(self.source_connection_target, message)
        _require(self.target_connection_target, message)
        _require(self.source_database_name, message)
        _require(self.target_database_name, message)
        return _mode(self.sync_mode)


def ensure_directories(config: TransferConfig) -> None:
    """Create the uploads, exports and temp directories if missing."""
    for directory in (config.uploads_dir, config.exports_dir, config.temp_dir):
        directory.mkdir(parents=True, exist_ok=True)


def transfer_summary(result: TransferResult) -> Dict[str, Any]:
    """Fields shared by import and sync responses."""
    return {
        "total_documents_processed": result.total_processed,
        "total_collections": result.total_collections,
        "total_errors": result.total_errors,
        "duration_ms": result.duration_ms,
        "per_collection_stats": result.per_collection_stats(),
        "cancelled": result.cancelled,
    }


class TransferService:
    """
    Entry point for callers: one method per request type.

    Each call is an independent run; the service holds no per-run state.
    """

    def __init__(
        self,
        config: Optional[TransferConfig] = None,
        store_factory: Optional[StoreFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or TransferConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.orchestrator = TransferOrchestrator(
            config=self.config,
            store_factory=store_factory,
            logger=self.logger,
        )

    def export(self, request: ExportRequest, cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        request.validate()
        result = self.orchestrator.export(
            request.connection_target,
            request.database_name,
            collections=request.collections,
            cancel_token=cancel_token,
        )
        response = result.to_dict()
        response["cancelled"] = result.cancelled
        return response

    def import_upload(self, request: ImportRequest, cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        """
        Import an uploaded archive or document file.

        A rejected upload is deleted before the error is raised; an accepted
        one is deleted by the engine when the run ends.

        Raises:
            ConfigurationError: missing fields or unknown mode
            UnsupportedFileError: extension not allowed or file too large
        """
        try:
            policy = request.validate()
            self.check_upload(request.filename, Path(request.upload_path))
        except ConfigurationError:
            if request.upload_path is not None:
                _discard(Path(request.upload_path))
            raise

        result = self.orchestrator.import_upload(
            request.connection_target,
            request.database_name,
            Path(request.upload_path),
            policy=policy,
            original_filename=request.filename,
            cancel_token=cancel_token,
        )
        response: Dict[str, Any] = {
            "database": request.database_name,
            "import_mode": policy.value,
        }
        response.update(transfer_summary(result))
        response["original_file"] = request.filename
        return response

    def sync(self, request: SyncRequest, cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        policy = request.validate()
        result = self.orchestrator.sync(
            request.source_connection_target,
            request.target_connection_target,
            request.source_database_name,
            request.target_database_name,
            policy=policy,
            collections=request.collections,
            cancel_token=cancel_token,
        )
        response: Dict[str, Any] = {
            "source_database": request.source_database_name,
            "target_database": request.target_database_name,
            "sync_mode": policy.value,
        }
        response.update(transfer_summary(result))
        return response

    def check_upload(self, filename: str, upload_path: Path) -> None:
        """Apply the extension allow-list and the size limit."""
        extension = Path(filename).suffix.lower()
        if extension not in self.config.allowed_extensions:
            allowed = ", ".join(self.config.allowed_extensions)
            raise UnsupportedFileError(
                f"Only {allowed} files are allowed",
                filename=filename,
            )
        if upload_path.exists() and upload_path.stat().st_size > self.config.max_upload_bytes:
            raise UnsupportedFileError(
                f"File exceeds the {self.config.max_upload_bytes} byte upload limit",
                filename=filename,
            )

    def allocate_upload_path(self, original_filename: str) -> Path:
        """Unique destination in the uploads directory, keeping the original extension."""
        extension = Path(original_filename).suffix.lower()
        name = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{extension}"
        return self.config.uploads_dir / name

    def resolve_download(self, filename: str) -> Path:
        """
        Map a download name to a file in the exports directory.

        Raises:
            ConfigurationError: name outside the allowed pattern
            FileNotFoundError: no such export
        """
        if not filename or not DOWNLOAD_NAME_PATTERN.match(filename):
            raise ConfigurationError(f"Invalid download name: {filename!r}")
        path = self.config.exports_dir / filename
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {filename}")
        return path


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Warning cleaning up uploaded file: {e}")
