"""
Ingestion pipeline: stream raw entries, normalize them and commit them to the store in batches.

One run at a time (IDLE -> RUNNING -> DONE | ERROR | CANCELLED); a run requested
while another is RUNNING is logged and ignored. Batches already committed stay
committed when a run fails or is cancelled; re-running upserts by id.
"""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from contextlib import closing
from datetime import UTC, datetime
from functools import lru_cache

from app.core.config import get_settings
from app.schemas.ingestion import IngestionProgress, IngestionState, IngestionStatus
from app.schemas.vulnerability import CanonicalVulnerability
from app.services.errors import IngestionError, describe_attempts
from app.services.normalize import normalize
from app.services.source_reader import DEFAULT_TIMEOUT_SEC, Checkpoint, SourceReader
from app.services.store import VulnerabilityStore, get_store

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5000

ProgressCallback = Callable[[IngestionProgress], None]
ReaderFactory = Callable[[list[str], Checkpoint], SourceReader]


class _Cancelled(Exception):
    """Raised at a checkpoint once cancel() has been requested."""


class IngestionPipeline:
    """Drives SourceReader -> normalize -> VulnerabilityStore with single-flight and cancellation."""

    def __init__(
        self,
        store: VulnerabilityStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        reader_factory: ReaderFactory | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size
        self._timeout = timeout
        self._reader_factory = reader_factory or self._default_reader
        self._lock = threading.Lock()
        self._cancel_requested = threading.Event()
        self._status = IngestionStatus()
        self._thread: threading.Thread | None = None

    def _default_reader(self, sources: list[str], checkpoint: Checkpoint) -> SourceReader:
        return SourceReader(sources, timeout=self._timeout, checkpoint=checkpoint)

    @property
    def state(self) -> IngestionState:
        with self._lock:
            return self._status.state

    def status(self) -> IngestionStatus:
        """Snapshot of the current or last run."""
        with self._lock:
            return self._status.model_copy(deep=True)

    def run(self, sources: Sequence[str], progress: ProgressCallback | None = None) -> int | None:
        """
        Ingest sources synchronously. Returns the number of records committed, or
        None when another run is already in flight.

        Raises the SourceReader/store error that aborted the run; batches committed
        before the failure remain in the store.
        """
        if not self._begin(sources):
            return None
        return self._execute(list(sources), progress)

    def start(
        self,
        sources: Sequence[str],
        progress: ProgressCallback | None = None,
    ) -> threading.Thread | None:
        """Run ingestion on a worker thread. Returns None when another run is in flight."""
        if not self._begin(sources):
            return None
        thread = threading.Thread(
            target=self._run_in_background,
            args=(list(sources), progress),
            name="ingestion-worker",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return thread

    def wait(self, timeout: float | None = None) -> bool:
        """Join the background worker, if any. True when no worker is left running."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def cancel(self) -> bool:
        """Ask the active run to stop. No further batches are requested; committed ones stay."""
        with self._lock:
            if self._status.state != IngestionState.RUNNING:
                return False
            self._cancel_requested.set()
        logger.info("Ingestion cancellation requested")
        return True

    def _begin(self, sources: Sequence[str]) -> bool:
        with self._lock:
            if self._status.state == IngestionState.RUNNING:
                logger.warning(
                    "Ingestion already running; ignoring duplicate run request",
                    extra={"sources": list(sources)},
                )
                return False
            self._cancel_requested.clear()
            self._status = IngestionStatus(
                state=IngestionState.RUNNING,
                sources=list(sources),
                started_at=datetime.now(UTC),
            )
            return True

    def _run_in_background(self, sources: list[str], progress: ProgressCallback | None) -> None:
        try:
            self._execute(sources, progress)
        except IngestionError:
            # Already logged and recorded in status by _execute; callers poll status().
            return

    def _checkpoint(self) -> None:
        if self._cancel_requested.is_set():
            raise _Cancelled()
        time.sleep(0)

    def _commit(
        self,
        batch: list[CanonicalVulnerability],
        processed: int,
        expected_total: int | None,
        progress: ProgressCallback | None,
    ) -> None:
        written = self.store.upsert_batch(batch)
        with self._lock:
            self._status.processed = processed
            self._status.committed += written
            self._status.batches += 1
            self._status.expected_total = expected_total
            snapshot = IngestionProgress(
                processed=processed,
                committed=self._status.committed,
                batches=self._status.batches,
                expected_total=expected_total,
            )
        logger.debug(
            "Batch committed",
            extra={"batch_rows": written, "committed": snapshot.committed, "batches": snapshot.batches},
        )
        if progress is not None:
            progress(snapshot)

    def _finish(self, state: IngestionState, processed: int, error: str | None = None) -> int:
        with self._lock:
            self._status.state = state
            self._status.processed = processed
            self._status.error = error
            self._status.finished_at = datetime.now(UTC)
            return self._status.committed

    def _execute(self, sources: list[str], progress: ProgressCallback | None) -> int:
        logger.info(
            "Ingestion started",
            extra={"sources": sources, "batch_size": self.batch_size},
        )
        reader = self._reader_factory(sources, self._checkpoint)
        batch: list[CanonicalVulnerability] = []
        ordinal = 0
        try:
            with closing(reader.open()) as entries:
                expected_total = reader.expected_total
                for entry in entries:
                    if self._cancel_requested.is_set():
                        raise _Cancelled()
                    batch.append(normalize(entry.raw, entry.context, ordinal))
                    ordinal += 1
                    if len(batch) >= self.batch_size:
                        self._commit(batch, ordinal, expected_total, progress)
                        batch = []
                if batch:
                    self._commit(batch, ordinal, expected_total, progress)
        except _Cancelled:
            committed = self._finish(IngestionState.CANCELLED, ordinal)
            logger.info(
                "Ingestion cancelled",
                extra={"processed": ordinal, "committed": committed, "discarded": len(batch)},
            )
            return committed
        except IngestionError as e:
            attempts = getattr(e, "attempts", None)
            self._finish(IngestionState.ERROR, ordinal, error=e.message)
            logger.error(
                "Ingestion failed",
                extra={
                    "error_type": type(e).__name__,
                    "reason": e.message[:500],
                    "attempts": describe_attempts(attempts) if attempts else None,
                    "processed": ordinal,
                },
            )
            raise
        except Exception as e:
            self._finish(IngestionState.ERROR, ordinal, error=str(e) or type(e).__name__)
            logger.exception("Ingestion failed unexpectedly")
            raise

        committed = self._finish(IngestionState.DONE, ordinal)
        logger.info(
            "Ingestion completed",
            extra={"processed": ordinal, "committed": committed},
        )
        if progress is not None:
            progress(
                IngestionProgress(
                    processed=ordinal,
                    committed=committed,
                    batches=self.status().batches,
                    expected_total=reader.expected_total,
                )
            )
        return committed


@lru_cache
def get_ingestion_pipeline() -> IngestionPipeline:
    """Process-wide pipeline bound to the application database (safe to call from dependencies)."""
    settings = get_settings()
    return IngestionPipeline(
        get_store(),
        batch_size=settings.INGEST_BATCH_SIZE,
        timeout=settings.SOURCE_REQUEST_TIMEOUT_SEC,
    )
