"""
Transfer orchestrator: export, import and sync runs.

Every run follows CONNECT -> ENUMERATE -> PER-COLLECTION LOOP -> FINALIZE
-> DISCONNECT. Store connections, scratch directories and uploaded files
are released on every exit path. Inside the loop each collection resolves
to a CollectionResult; only configuration, connection, enumeration and
archive failures end a run early.
"""

import logging
import shutil
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Union

from ..config.config_loader import TransferConfig
from ..core.exceptions import (
    ArchiveWriteError,
    CollectionError,
    ConfigurationError,
    NoCollectionsError,
    TransferError,
    UnsupportedFileError,
)
from ..core.logging import RunContext
from ..core.models import (
    CollectionResult,
    CollectionSnapshot,
    ExportResult,
    TransferMetadata,
    TransferResult,
    WritePolicy,
)
from ..store import DocumentStore, StoreDatabase, StoreFactory, open_store
from .archive import ArchiveCodec
from .batch_writer import DocumentBatchWriter
from .index_replicator import IndexReplicator
from .layout import (
    DECODE_ERRORS,
    discover_document_files,
    index_file_name,
    read_document_file,
    read_index_file,
    read_metadata,
    write_document_file,
    write_index_file,
    write_metadata,
)
from .stats import RunStatistics

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".zip"
DOCUMENT_EXTENSION = ".json"

CollectionSelection = Union[str, Sequence[str], None]


class CancellationToken:
    """
    Cooperative cancellation for one run.

    Checked at the top of every per-collection iteration; a batch already
    in flight always completes.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _TargetLocks:
    """One lock per target collection name, so no two tasks write the same collection."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks[name]
        with lock:
            yield


def parse_collection_selection(collections: CollectionSelection) -> Optional[List[str]]:
    """
    Normalize an explicit collection selection.

    Accepts a comma-separated string or a sequence of names. Names are
    trimmed, empties dropped and duplicates removed (first one wins).

    Returns:
        The names, or None when no selection was given
    """
    if collections is None:
        return None
    if isinstance(collections, str):
        if not collections:
            return None
        raw = collections.split(",")
    else:
        if len(collections) == 0:
            return None
        raw = list(collections)
    names: List[str] = []
    for name in raw:
        name = str(name).strip()
        if name and name not in names:
            names.append(name)
    return names


def export_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with ':' and '.' replaced, safe for file names."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


class TransferOrchestrator:
    """
    Drives export, import and sync runs.

    The orchestrator holds only configuration and collaborators; all
    per-run state lives in locals, so one instance may serve concurrent
    runs, each with its own connections.
    """

    def __init__(
        self,
        config: Optional[TransferConfig] = None,
        store_factory: Optional[StoreFactory] = None,
        codec: Optional[ArchiveCodec] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Transfer configuration (defaults + environment if not provided)
            store_factory: Builds an unconnected DocumentStore for a connection target
            codec: Archive codec (default: maximum compression)
            logger: Base logger; each run wraps it with its run context
        """
        self.config = config or TransferConfig()
        self.store_factory = store_factory or self._default_store_factory
        self.codec = codec or ArchiveCodec()
        self.logger = logger or logging.getLogger(__name__)

    def _default_store_factory(self, connection_target: str) -> DocumentStore:
        return open_store(
            connection_target,
            server_selection_timeout_ms=self.config.server_selection_timeout_ms,
        )

    @property
    def max_workers(self) -> int:
        return max(1, self.config.max_workers)

    # ------------------------------------------------------------------
    # Shared states
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self, connection_target: str, log: logging.LoggerAdapter, role: str) -> Iterator[DocumentStore]:
        """CONNECT ... DISCONNECT for one store."""
        if not connection_target:
            raise ConfigurationError(f"{role.capitalize()} connection target is required")
        store = self.store_factory(connection_target)
        with store:
            log.info(f"Connected to {role} store")
            yield store
        log.debug(f"Disconnected from {role} store")

    def _enumerate(
        self,
        database: StoreDatabase,
        collections: CollectionSelection,
        log: logging.LoggerAdapter,
    ) -> List[str]:
        """ENUMERATE: explicit selection, else every collection in the database."""
        names = parse_collection_selection(collections)
        if names is None:
            try:
                names = list(database.list_collection_names())
            except Exception as e:
                raise TransferError(f"Cannot list collections in {database.name}: {e}") from e

        if not names:
            raise NoCollectionsError(
                f"No collections found in {database.name}",
                database=database.name,
            )
        log.info(f"Collections: {', '.join(names)}")
        return names

    def _existing_collections(self, database: StoreDatabase) -> set:
        try:
            return set(database.list_collection_names())
        except Exception as e:
            raise TransferError(f"Cannot list collections in {database.name}: {e}") from e

    def _for_each(
        self,
        items: Sequence[str],
        work: Callable[[str], None],
        token: CancellationToken,
        log: logging.LoggerAdapter,
    ) -> bool:
        """
        PER-COLLECTION LOOP.

        work() must absorb its own failures. Sequential unless max_workers > 1;
        either way the cancellation checkpoint sits before each item.

        Returns:
            True if the loop was cancelled before every item started
        """
        def run(item: str) -> bool:
            if token.cancelled:
                return False
            work(item)
            return True

        if self.max_workers == 1 or len(items) <= 1:
            for item in items:
                if not run(item):
                    log.warning(f"Run cancelled before {item}")
                    return True
            return False

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="transfer") as executor:
            futures = [executor.submit(run, item) for item in items]
            started = [future.result() for future in futures]

        skipped = [item for item, ran in zip(items, started) if not ran]
        if skipped:
            log.warning(f"Run cancelled; not started: {', '.join(skipped)}")
        return bool(skipped)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(
        self,
        connection_target: str,
        database_name: str,
        collections: CollectionSelection = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExportResult:
        """
        Export a database's collections to a zip archive.

        Args:
            connection_target: Source store connection string
            database_name: Database to export
            collections: Optional comma-separated names or list; default all
            cancel_token: Optional cooperative cancellation

        Returns:
            ExportResult describing the archive

        Raises:
            ConfigurationError, StoreConnectionError, NoCollectionsError, ArchiveWriteError
        """
        if not database_name:
            raise ConfigurationError("Database name is required")
        token = cancel_token or CancellationToken()
        started = time.monotonic()
        log = RunContext(self.logger, operation="export", database=database_name)
        log.info(f"Starting export for database: {database_name}")

        exports_dir = self.config.exports_dir
        with self._connect(connection_target, log, "source") as store:
            database = store.get_database(database_name)
            names = self._enumerate(database, collections, log)
            existing = self._existing_collections(database)

            timestamp = export_timestamp()
            scratch = exports_dir / f"{database_name}_{timestamp}"
            scratch.mkdir(parents=True, exist_ok=True)
            try:
                metadata = TransferMetadata(
                    database=database_name,
                    collections=names,
                    server_version=store.server_version(),
                )
                write_metadata(scratch, metadata)
                log.info("Wrote metadata.json")

                metadata_lock = threading.Lock()
                totals = {"documents": 0}

                def export_one(name: str) -> None:
                    clog = log.for_collection(name)
                    try:
                        if name not in existing:
                            raise CollectionError(f"Collection not found: {name}", collection=name)
                        clog.info(f"Exporting collection: {name}")
                        collection = database.get_collection(name)
                        estimated = collection.estimated_count()
                        snapshot = CollectionSnapshot.capture(name, collection.find_all())
                        file_size = write_document_file(scratch, snapshot)
                        write_index_file(scratch, name, collection.list_indexes())
                    except Exception as e:
                        clog.error(f"Error exporting collection {name}: {e}")
                        with metadata_lock:
                            metadata.record_collection_error(name, str(e))
                        return
                    with metadata_lock:
                        metadata.record_collection(name, snapshot.count, estimated, file_size)
                        totals["documents"] += snapshot.count
                    clog.info(f"Exported {snapshot.count} documents from {name}")

                cancelled = self._for_each(names, export_one, token, log)

                metadata.total_documents = totals["documents"]
                metadata.export_duration = int((time.monotonic() - started) * 1000)
                write_metadata(scratch, metadata)

                filename = f"{database_name}_backup_{timestamp}{ARCHIVE_EXTENSION}"
                archive_path = exports_dir / filename
                try:
                    self.codec.pack(scratch, archive_path)
                except ArchiveWriteError:
                    archive_path.unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise ArchiveWriteError(f"Cannot write export files: {e}", path=str(scratch)) from e
            finally:
                shutil.rmtree(scratch, ignore_errors=True)

        file_size = archive_path.stat().st_size
        duration_ms = int((time.monotonic() - started) * 1000)
        log.info(f"Export completed: {filename} ({file_size / 1024 / 1024:.2f} MB) in {duration_ms / 1000}s")

        return ExportResult(
            filename=filename,
            archive_path=str(archive_path),
            database=database_name,
            collections=len(names),
            total_documents=metadata.total_documents,
            file_size=file_size,
            duration_ms=duration_ms,
            download_reference=f"{self.config.download_base_path}/{filename}",
            metadata=metadata.to_dict(),
            cancelled=cancelled,
        )

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_upload(
        self,
        connection_target: str,
        database_name: str,
        upload_path: Path,
        policy: Union[WritePolicy, str] = WritePolicy.MERGE,
        original_filename: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TransferResult:
        """
        Import an archive or a single document file into a database.

        The upload and the scratch directory are deleted whatever happens.

        Args:
            connection_target: Target store connection string
            database_name: Database to import into
            upload_path: Path of the uploaded file
            policy: replace, merge or append
            original_filename: Client-side file name; decides archive vs. document file
            cancel_token: Optional cooperative cancellation

        Returns:
            TransferResult with per-collection stats
        """
        upload_path = Path(upload_path)
        original_filename = original_filename or upload_path.name
        token = cancel_token or CancellationToken()
        scratch = self.config.temp_dir / f"import_{int(time.time() * 1000)}_{threading.get_ident()}"
        log = RunContext(self.logger, operation="import", database=database_name)

        try:
            policy = _parse_policy(policy)
            if not database_name:
                raise ConfigurationError("Database name is required")
            stats = RunStatistics("import")
            log.info(f"Starting import to database: {database_name}")
            log.info(f"File: {original_filename}; import mode: {policy.value}")

            with self._connect(connection_target, log, "target") as store:
                database = store.get_database(database_name)
                scratch.mkdir(parents=True, exist_ok=True)
                extracted = self._stage_upload(upload_path, original_filename, scratch)
                log.info(f"Extracted {len(extracted)} files")

                metadata = read_metadata(scratch)
                if metadata is not None:
                    log.info(
                        f"Metadata found: {metadata.total_collections} collections, "
                        f"{metadata.total_documents} documents"
                    )

                document_files = discover_document_files(extracted)
                log.info(f"Processing {len(document_files)} collections...")
                locks = _TargetLocks()
                writer_for = self._writer_factory()

                def import_one(file_name: str) -> None:
                    stats.record(
                        self._import_file(database, scratch, file_name, policy, locks, writer_for, log)
                    )

                if self._for_each(document_files, import_one, token, log):
                    stats.mark_cancelled()
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
            _remove_upload(upload_path, log)

        _warn_failed(stats, log)
        result = stats.finalize()
        log.info(
            f"Import completed: {result.total_processed} documents processed, "
            f"{result.total_errors} errors in {result.duration_ms / 1000}s"
        )
        return result

    def _stage_upload(self, upload_path: Path, original_filename: str, scratch: Path) -> List[str]:
        """Unpack an archive, or copy a single document file, into scratch."""
        extension = Path(original_filename).suffix.lower()
        if extension == ARCHIVE_EXTENSION:
            return self.codec.unpack(upload_path, scratch)
        if extension == DOCUMENT_EXTENSION:
            name = Path(original_filename).name
            shutil.copyfile(upload_path, scratch / name)
            return [name]
        raise UnsupportedFileError(
            f"Unsupported file type: {extension or original_filename}",
            filename=original_filename,
        )

    def _import_file(
        self,
        database: StoreDatabase,
        scratch: Path,
        file_name: str,
        policy: WritePolicy,
        locks: _TargetLocks,
        writer_for: Callable[[logging.LoggerAdapter], DocumentBatchWriter],
        log: RunContext,
    ) -> CollectionResult:
        try:
            name, snapshot = read_document_file(scratch / file_name)
        except CollectionError as e:
            log.error(f"Error processing {file_name}: {e}")
            return CollectionResult.failed(file_name, str(e))

        clog = log.for_collection(name)
        clog.info(f"Processing collection: {name} ({snapshot.count} documents)")
        try:
            with locks.hold(name):
                target = database.get_collection(name)
                write = writer_for(clog).apply(target, snapshot.documents, policy)
                index_warning = self._restore_indexes_from_file(scratch, name, target, clog)
        except Exception as e:
            clog.error(f"Error processing {file_name}: {e}")
            return CollectionResult.failed(file_name, str(e))

        clog.info(f"Collection {name}: {write.processed} processed, {write.skipped} skipped")
        return CollectionResult.from_write(name, write, snapshot.count, index_warning)

    def _restore_indexes_from_file(self, scratch: Path, name: str, target, log) -> Optional[str]:
        index_path = scratch / index_file_name(name)
        if not index_path.exists():
            return None
        try:
            indexes = read_index_file(index_path)
        except DECODE_ERRORS + (KeyError,) as e:
            log.warning(f"Warning restoring indexes for {name}: {e}")
            return str(e)
        return IndexReplicator(logger=log).replicate(indexes, target).warning

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(
        self,
        source_target: str,
        target_target: str,
        source_database_name: str,
        target_database_name: str,
        policy: Union[WritePolicy, str] = WritePolicy.MERGE,
        collections: CollectionSelection = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TransferResult:
        """
        Replicate collections directly from one database to another.

        Args:
            source_target: Source store connection string
            target_target: Target store connection string
            source_database_name: Database to read
            target_database_name: Database to write
            policy: replace, merge or append
            collections: Optional names (list or comma-separated); default all
            cancel_token: Optional cooperative cancellation

        Returns:
            TransferResult with per-collection stats
        """
        policy = _parse_policy(policy)
        if not source_database_name or not target_database_name:
            raise ConfigurationError("Source and target database names are required")
        token = cancel_token or CancellationToken()
        stats = RunStatistics("sync")
        log = RunContext(self.logger, operation="sync", database=target_database_name)
        log.info(
            f"Starting sync from {source_database_name} to {target_database_name} "
            f"(mode: {policy.value})"
        )

        with self._connect(source_target, log, "source") as source_store, \
                self._connect(target_target, log, "target") as target_store:
            source_db = source_store.get_database(source_database_name)
            target_db = target_store.get_database(target_database_name)
            names = self._enumerate(source_db, collections, log)
            existing = self._existing_collections(source_db)
            locks = _TargetLocks()
            writer_for = self._writer_factory()

            def sync_one(name: str) -> None:
                stats.record(
                    self._sync_collection(source_db, target_db, name, existing, policy, locks, writer_for, log)
                )

            if self._for_each(names, sync_one, token, log):
                stats.mark_cancelled()

        _warn_failed(stats, log)
        result = stats.finalize()
        log.info(
            f"Sync completed: {result.total_processed} documents processed, "
            f"{result.total_errors} errors in {result.duration_ms / 1000}s"
        )
        return result

    def _sync_collection(
        self,
        source_db: StoreDatabase,
        target_db: StoreDatabase,
        name: str,
        existing: set,
        policy: WritePolicy,
        locks: _TargetLocks,
        writer_for: Callable[[logging.LoggerAdapter], DocumentBatchWriter],
        log: RunContext,
    ) -> CollectionResult:
        clog = log.for_collection(name)
        try:
            if name not in existing:
                raise CollectionError(f"Collection not found: {name}", collection=name)
            clog.info(f"Syncing collection: {name}")
            source = source_db.get_collection(name)
            snapshot = CollectionSnapshot.capture(name, source.find_all())
            with locks.hold(name):
                target = target_db.get_collection(name)
                write = writer_for(clog).apply(target, snapshot.documents, policy)
                index_warning = self._replicate_source_indexes(source, target, clog)
        except Exception as e:
            clog.error(f"Error syncing {name}: {e}")
            return CollectionResult.failed(name, str(e))

        clog.info(f"Collection {name}: {write.processed} processed, {write.skipped} skipped")
        return CollectionResult.from_write(name, write, snapshot.count, index_warning)

    def _replicate_source_indexes(self, source, target, log) -> Optional[str]:
        try:
            indexes = source.list_indexes()
        except Exception as e:
            log.warning(f"Warning reading indexes for {source.name}: {e}")
            return str(e)
        return IndexReplicator(logger=log).replicate(indexes, target).warning

    def _writer_factory(self) -> Callable[[logging.LoggerAdapter], DocumentBatchWriter]:
        batch_size = self.config.batch_size

        def build(log: logging.LoggerAdapter) -> DocumentBatchWriter:
            return DocumentBatchWriter(batch_size=batch_size, logger=log)

        return build


def _parse_policy(policy: Union[WritePolicy, str]) -> WritePolicy:
    try:
        return WritePolicy(policy)
    except ValueError:
        valid = ", ".join(p.value for p in WritePolicy)
        raise ConfigurationError(f"Invalid write policy {policy!r}; expected one of: {valid}") from None


def _remove_upload(upload_path: Path, log: logging.LoggerAdapter) -> None:
    try:
        upload_path.unlink(missing_ok=True)
    except OSError as e:
        log.warning(f"Warning cleaning up uploaded file: {e}")


def _warn_failed(stats: RunStatistics, log: logging.LoggerAdapter) -> None:
    failed = stats.failed_collections()
    if failed:
        log.warning(f"Collections with errors: {', '.join(failed)}")
