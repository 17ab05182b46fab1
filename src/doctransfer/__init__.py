"""
doctransfer: export, import and sync for document stores.

Subpackages:
    core: data model, exceptions, logging
    config: YAML/environment configuration
    store: store connection seam (MongoDB and in-memory)
    engine: archive codec, batch writer, index replication, orchestrator
"""

from .config import TransferConfig
from .core import TransferError, WritePolicy
from .engine import CancellationToken, TransferOrchestrator
from .service import (
    ExportRequest,
    ImportRequest,
    SyncRequest,
    TransferService,
    ensure_directories,
)

__version__ = "0.1.0"

__all__ = [
    "TransferConfig",
    "TransferError",
    "WritePolicy",
    "CancellationToken",
    "TransferOrchestrator",
    "ExportRequest",
    "ImportRequest",
    "SyncRequest",
    "TransferService",
    "ensure_directories",
]
