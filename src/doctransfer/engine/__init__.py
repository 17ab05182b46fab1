"""
Transfer engine: archive codec, batch writer, index replication and the
orchestrator that drives export, import and sync runs.
"""

from .archive import ArchiveCodec
from .batch_writer import DocumentBatchWriter, iter_batches
from .index_replicator import IndexReplicator, IndexReplicationResult, secondary_indexes
from .orchestrator import CancellationToken, TransferOrchestrator, parse_collection_selection
from .stats import RunStatistics

__all__ = [
    "ArchiveCodec",
    "DocumentBatchWriter",
    "iter_batches",
    "IndexReplicator",
    "IndexReplicationResult",
    "secondary_indexes",
    "CancellationToken",
    "TransferOrchestrator",
    "parse_collection_selection",
    "RunStatistics",
]
