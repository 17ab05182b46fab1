"""
Run statistics aggregation.

Collects per-collection outcomes and totals for one run. Updates are
lock-guarded so collections may be transferred concurrently.
"""

import threading
import time
from typing import Dict, List, Optional

from ..core.models import CollectionResult, Outcome, TransferResult


class RunStatistics:
    """
    Accumulates per-collection counters and timing into a TransferResult.

    Attributes:
        operation: "import" or "sync"
    """

    def __init__(self, operation: str, clock=time.monotonic):
        self.operation = operation
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._entries: Dict[str, CollectionResult] = {}
        self._order: List[str] = []
        self._total_processed = 0
        self._total_errors = 0
        self._cancelled = False
        self._result: Optional[TransferResult] = None

    def record(self, entry: CollectionResult) -> None:
        """
        Fold one collection's outcome into the run.

        A collection-level error counts once; batch errors count one each.
        Every call adds to the totals. A name seen before (two import files
        naming one collection) is combined into the existing entry.
        """
        with self._lock:
            if self._result is not None:
                raise RuntimeError("Run statistics already finalized")
            previous = self._entries.get(entry.name)
            if previous is not None:
                self._entries[entry.name] = previous.combine(entry)
            else:
                self._order.append(entry.name)
                self._entries[entry.name] = entry
            self._total_processed += entry.processed
            self._total_errors += self._error_weight(entry)

    @staticmethod
    def _error_weight(entry: CollectionResult) -> int:
        if entry.error is not None:
            return 1
        return entry.batch_errors

    def mark_cancelled(self) -> None:
        with self._lock:
            self._cancelled = True

    @property
    def total_processed(self) -> int:
        with self._lock:
            return self._total_processed

    @property
    def total_errors(self) -> int:
        with self._lock:
            return self._total_errors

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def finalize(self) -> TransferResult:
        """Freeze the statistics into a TransferResult; later calls return the same result."""
        with self._lock:
            if self._result is None:
                self._result = TransferResult(
                    operation=self.operation,
                    collections=tuple(self._entries[name] for name in self._order),
                    total_processed=self._total_processed,
                    total_errors=self._total_errors,
                    duration_ms=self.elapsed_ms(),
                    cancelled=self._cancelled,
                )
            return self._result

    def failed_collections(self) -> List[str]:
        with self._lock:
            return [name for name in self._order if self._entries[name].outcome is Outcome.ERROR]
