"""
Document batch writer.

Applies an ordered document sequence to one target collection under a
write policy. Every tier reports a tagged Outcome instead of raising:
a document resolves to applied/skipped, a batch folds its documents into
a WriteResult, and only a missing target collection is a caller error.
"""

import logging
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

from ..core.exceptions import BatchError, ConfigurationError
from ..core.models import ID_FIELD, Outcome, WritePolicy, WriteResult
from ..store.base import DuplicateIdError, StoreCollection

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


def iter_batches(documents: Sequence[Dict[str, Any]], batch_size: int) -> Iterator[Tuple[int, Sequence[Dict[str, Any]]]]:
    """Yield (batch_number, batch) slices in input order; the last may be shorter."""
    for batch_number, start in enumerate(range(0, len(documents), batch_size), 1):
        yield batch_number, documents[start:start + batch_size]


def _describe(document: Dict[str, Any]) -> str:
    if ID_FIELD in document:
        return f"{ID_FIELD}={document[ID_FIELD]!r}"
    return "document without _id"


class DocumentBatchWriter:
    """
    Applies documents in fixed-size batches under a WritePolicy.

    Stateless between calls; one instance can serve a whole run.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, logger: Optional[logging.Logger] = None):
        """
        Initialize the writer.

        Args:
            batch_size: Default number of documents per batch
            logger: Logger (or run-context adapter) to report through
        """
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.logger = logger or logging.getLogger(__name__)

    def apply(
        self,
        target: StoreCollection,
        documents: Sequence[Dict[str, Any]],
        policy: WritePolicy,
        batch_size: Optional[int] = None,
    ) -> WriteResult:
        """
        Apply documents to the target collection.

        Args:
            target: Target collection handle
            documents: Documents in input order
            policy: replace, merge or append
            batch_size: Override the writer's batch size for this call

        Returns:
            WriteResult with processed/skipped counts, batch error count and detail

        Raises:
            ConfigurationError if target is None or the policy is unknown
        """
        if target is None:
            raise ConfigurationError("Target collection is required")
        policy = WritePolicy(policy)
        size = batch_size or self.batch_size
        if size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {size}")

        result = WriteResult()

        if policy is WritePolicy.REPLACE:
            self._drop(target)

        for batch_number, batch in iter_batches(documents, size):
            try:
                if policy is WritePolicy.REPLACE:
                    batch_result = self._insert_batch(target, batch, batch_number)
                elif policy is WritePolicy.MERGE:
                    batch_result = self._merge_batch(target, batch)
                else:
                    batch_result = self._append_batch(target, batch, batch_number)
            except Exception as e:
                error = BatchError(str(e), batch_number=batch_number)
                self.logger.error(
                    f"Error processing batch {batch_number} in {target.name}: {error}"
                )
                result.record(Outcome.ERROR, detail=f"batch {batch_number}: {error}")
                continue
            result.merge(batch_result)

        self.logger.debug(
            f"{target.name}: {result.processed} processed, {result.skipped} skipped, "
            f"{result.errors} batch errors"
        )
        return result

    def _drop(self, target: StoreCollection) -> None:
        # A missing collection is not an error; any other drop failure
        # surfaces as the first insert's batch error.
        try:
            if target.drop():
                self.logger.info(f"Dropped existing collection: {target.name}")
        except Exception as e:
            self.logger.warning(f"Warning dropping collection {target.name}: {e}")

    def _batch_failure(
        self,
        target: StoreCollection,
        failures: Sequence[Tuple[int, str]],
        batch_number: int,
    ) -> str:
        error = BatchError("; ".join(message for _, message in failures), batch_number=batch_number)
        self.logger.error(f"Error processing batch {batch_number} in {target.name}: {error}")
        return f"batch {batch_number}: {error}"

    def _insert_batch(
        self,
        target: StoreCollection,
        batch: Sequence[Dict[str, Any]],
        batch_number: int,
    ) -> WriteResult:
        """
        Unordered insert; every rejected document is skipped individually.

        Rejections other than duplicate identifiers also fail the batch once.
        """
        result = WriteResult()
        inserted = target.insert_many(batch)
        result.record(Outcome.APPLIED, count=inserted.inserted_count)
        for position in inserted.collisions:
            result.record(
                Outcome.SKIPPED,
                detail=f"duplicate identifier: {_describe(batch[position])}",
            )
        for position, message in inserted.failures:
            result.record(Outcome.SKIPPED, detail=f"{_describe(batch[position])}: {message}")
        if inserted.failures:
            result.record(Outcome.ERROR, detail=self._batch_failure(target, inserted.failures, batch_number))
        return result

    def _merge_batch(self, target: StoreCollection, batch: Sequence[Dict[str, Any]]) -> WriteResult:
        result = WriteResult()
        for document in batch:
            outcome, detail = self._merge_document(target, document)
            result.record(outcome, detail=detail)
        return result

    def _merge_document(self, target: StoreCollection, document: Dict[str, Any]) -> Tuple[Outcome, Optional[str]]:
        try:
            if ID_FIELD in document and document[ID_FIELD] is not None:
                target.upsert(document)
            else:
                target.insert_one(document)
        except Exception as e:
            self.logger.warning(f"Warning processing document {_describe(document)}: {e}")
            return Outcome.SKIPPED, f"{_describe(document)}: {e}"
        return Outcome.APPLIED, None

    def _append_batch(
        self,
        target: StoreCollection,
        batch: Sequence[Dict[str, Any]],
        batch_number: int,
    ) -> WriteResult:
        inserted = target.insert_many(batch)

        result = WriteResult()
        result.record(Outcome.APPLIED, count=inserted.inserted_count)

        if inserted.failures:
            for position in inserted.collisions:
                result.record(
                    Outcome.SKIPPED,
                    detail=f"duplicate identifier: {_describe(batch[position])}",
                )
            result.record(Outcome.ERROR, detail=self._batch_failure(target, inserted.failures, batch_number))
            return result

        if not inserted.has_collisions:
            return result

        # Only the colliding documents are revisited; whatever the bulk
        # insert accepted is already counted and never re-inserted.
        self.logger.debug(
            f"Batch {batch_number} in {target.name}: {len(inserted.collisions)} collisions, "
            "retrying individually"
        )
        for position in inserted.collisions:
            try:
                outcome, detail = self._append_document(target, batch[position])
            except Exception as e:
                self.logger.error(f"Error processing batch {batch_number} in {target.name}: {e}")
                result.record(Outcome.ERROR, detail=f"batch {batch_number}: {e}")
                break
            result.record(outcome, detail=detail)
        return result

    def _append_document(self, target: StoreCollection, document: Dict[str, Any]) -> Tuple[Outcome, Optional[str]]:
        """Check-then-insert; a collision is a skip, anything else fails the batch."""
        document_id = document.get(ID_FIELD)
        if document_id is not None and target.exists(document_id):
            return Outcome.SKIPPED, f"duplicate identifier: {_describe(document)}"
        try:
            target.insert_one(document)
        except DuplicateIdError:
            return Outcome.SKIPPED, f"duplicate identifier: {_describe(document)}"
        return Outcome.APPLIED, None
