"""
Index replication: carries secondary index definitions to a target collection.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..core.exceptions import IndexReplicationError
from ..core.models import IndexDescriptor
from ..store.base import StoreCollection

logger = logging.getLogger(__name__)


@dataclass
class IndexReplicationResult:
    """Outcome of one replicate() call. A warning never fails the collection."""
    created: List[str] = field(default_factory=list)
    warning: Optional[str] = None


def secondary_indexes(indexes: Sequence[IndexDescriptor]) -> List[IndexDescriptor]:
    """Drop the implicit primary-key index, keeping the rest in order."""
    return [index for index in indexes if not index.is_primary]


class IndexReplicator:
    """Creates a source's secondary indexes on a target in one bulk call."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def replicate(
        self,
        source_indexes: Sequence[IndexDescriptor],
        target: StoreCollection,
    ) -> IndexReplicationResult:
        """
        Replicate secondary indexes onto target.

        Key order, name and options are passed through verbatim. With no
        secondary indexes this is a no-op.

        Args:
            source_indexes: Descriptors read from the source or an index file
            target: Target collection

        Returns:
            IndexReplicationResult; failures are reported in .warning
        """
        to_create = secondary_indexes(source_indexes)
        if not to_create:
            return IndexReplicationResult()

        try:
            created = target.create_indexes(to_create)
        except Exception as e:
            error = IndexReplicationError(f"Index creation failed on {target.name}: {e}")
            self.logger.warning(f"Warning restoring indexes: {error}")
            return IndexReplicationResult(warning=str(error))

        self.logger.info(f"Restored {len(to_create)} indexes for {target.name}")
        return IndexReplicationResult(created=list(created))
