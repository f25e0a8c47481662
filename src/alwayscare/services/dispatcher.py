import logging
from concurrent.futures import Future, as_completed, TimeoutError as AnalyzerTimeout
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError

from src.alwayscare.core.settings import Settings
from src.alwayscare.domain.contracts.analyzer import Analyzer
from src.alwayscare.domain.contracts.uow import UoW
from src.alwayscare.domain.entities.analysis_record import AnalysisRecord
from src.alwayscare.domain.enums import AnalysisEvent, AnalysisStatus
from src.alwayscare.domain.errors import AnalysisError, StoreUnavailable
from src.alwayscare.domain.value_objects import AnalysisResult, BatchReport
from src.alwayscare.services.analyzer_pool import AnalyzerPool

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Dispatcher:
    """
    Moves records through claim -> analyze -> finalize.

    A batch is fully claimed (pending -> processing, committed) before the
    first analyzer call starts. Analyzer calls of one batch run side by side
    on an `AnalyzerPool` and share a single deadline; whatever has not
    finished by then is failed as timed out. A pass never claims more records
    than the pool has free workers, so calls hung past their deadline hold
    back new claims instead of adding threads. One record's failure never
    touches its siblings. A store failure aborts the pass: unclaimed records
    stay pending, claimed-but-unfinished ones stay processing until the
    stale reclaim picks them up.

    The pool is usually long-lived and shared (see `WorkerRuntime`); without
    one the dispatcher builds its own, sized to its largest pass, and `close()`
    releases it. No other state is kept between passes.
    """

    def __init__(
        self,
        uow: UoW,
        analyzer: Analyzer,
        batch_size: int = 5,
        retry_batch_size: int = 10,
        analyzer_timeout: float = 30.0,
        stale_after: float = 600.0,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = _utc_now,
        pool: Optional[AnalyzerPool] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if retry_batch_size < 1:
            raise ValueError("retry_batch_size must be >= 1")
        if analyzer_timeout <= 0:
            raise ValueError("analyzer_timeout must be > 0")

        self.uow = uow
        self.analyzer = analyzer
        self.batch_size = batch_size
        self.retry_batch_size = retry_batch_size
        self.analyzer_timeout = analyzer_timeout
        self.stale_after = stale_after
        self.max_attempts = max_attempts
        self.clock = clock

        self._owns_pool = pool is None
        self.pool = pool if pool is not None else AnalyzerPool(max(batch_size, retry_batch_size))

    @classmethod
    def from_settings(
        cls,
        uow: UoW,
        analyzer: Analyzer,
        settings: Settings,
        pool: Optional[AnalyzerPool] = None,
    ) -> "Dispatcher":
        return cls(
            uow,
            analyzer,
            batch_size=settings.DISPATCH_BATCH_SIZE,
            retry_batch_size=settings.RETRY_BATCH_SIZE,
            analyzer_timeout=settings.ANALYZER_TIMEOUT_SECONDS,
            stale_after=settings.STALE_PROCESSING_SECONDS,
            max_attempts=settings.MAX_ATTEMPTS,
            pool=pool,
        )

    def close(self) -> None:
        if self._owns_pool:
            self.pool.shutdown()

    # passes
    def run_once(self) -> BatchReport:
        """Scheduled pass: reclaim stuck records, then process the oldest pending ones."""
        report = self.reclaim_stuck()
        limit = self._capacity(self.batch_size)
        if limit:
            claimed = self._claim(AnalysisStatus.PENDING, limit, event=AnalysisEvent.CLAIMED)
            report = report.merge(self._process(claimed))

        if report.attempted or report.reclaimed or report.abandoned:
            logger.info(
                "dispatch pass: attempted=%d succeeded=%d failed=%d timed_out=%d reclaimed=%d abandoned=%d",
                report.attempted, report.succeeded, report.failed,
                report.timed_out, report.reclaimed, report.abandoned,
            )
        return report

    def retry_failed(self, owner_id: Optional[int] = None, limit: Optional[int] = None) -> BatchReport:
        """Explicit retry pass over failed records (failed -> processing). Never run by the scheduler."""
        if limit is None:
            limit = self.retry_batch_size
        if limit < 1:
            raise ValueError("limit must be >= 1")

        limit = self._capacity(limit)
        if not limit:
            return BatchReport()

        claimed = self._claim(
            AnalysisStatus.FAILED,
            limit,
            owner_id=owner_id,
            event=AnalysisEvent.RETRIED,
        )
        report = self._process(claimed)
        logger.info(
            "retry pass: attempted=%d succeeded=%d failed=%d",
            report.attempted, report.succeeded, report.failed,
        )
        return report

    def reclaim_stuck(self) -> BatchReport:
        cutoff = self.clock() - timedelta(seconds=self.stale_after)
        with self._store("reclaim"):
            outcome = self.uow.records.reclaim_stale(cutoff, self.max_attempts)
            self.uow.commit()

        for record_id in outcome.requeued:
            logger.warning("record %s stuck in processing, returned to pending", record_id)
        for record_id in outcome.abandoned:
            logger.warning("record %s stuck in processing too many times, marked failed", record_id)

        return BatchReport(reclaimed=len(outcome.requeued), abandoned=len(outcome.abandoned))

    def process_claimed(self, record_id: int) -> BatchReport:
        """Finishes a record that a manual trigger has already moved to processing."""
        with self._store("load"):
            record = self.uow.records.get_by_id(record_id)

        if record is None:
            logger.warning("record %s not found, nothing to process", record_id)
            return BatchReport()
        if record.status != AnalysisStatus.PROCESSING:
            logger.info("record %s is %s, not processing; skipped", record_id, record.status.value)
            return BatchReport()

        return self._process([record])

    # steps
    def _capacity(self, wanted: int) -> int:
        free = self.pool.free
        if free == 0:
            logger.warning("all %d analyzer workers busy, nothing claimed", self.pool.size)
        return min(wanted, free)

    def _claim(
        self,
        status: AnalysisStatus,
        limit: int,
        owner_id: Optional[int] = None,
        event: AnalysisEvent = AnalysisEvent.CLAIMED,
    ) -> list[AnalysisRecord]:
        with self._store("claim"):
            candidates = self.uow.records.list_by_status(status, limit, owner_id=owner_id)
            claimed: list[AnalysisRecord] = []
            for rec in candidates:
                got = self.uow.records.claim(rec.id, from_status=status, event=event)
                if got is None:
                    logger.info("record %s was claimed by another pass", rec.id)
                    continue
                claimed.append(got)
            self.uow.commit()
        return claimed

    def _process(self, records: list[AnalysisRecord]) -> BatchReport:
        if not records:
            return BatchReport()

        succeeded = failed = timed_out = 0

        # the deadline also covers time spent queued behind busy workers
        futures: dict[Future, AnalysisRecord] = {
            self.pool.submit(self.analyzer.analyze, rec.artifact_location): rec for rec in records
        }
        unfinished = set(futures)
        try:
            for fut in as_completed(futures, timeout=self.analyzer_timeout):
                unfinished.discard(fut)
                if self._finalize(futures[fut], fut):
                    succeeded += 1
                else:
                    failed += 1
        except AnalyzerTimeout:
            # queued calls are dropped; running ones keep their worker until they return
            for fut in unfinished:
                fut.cancel()
                rec = futures[fut]
                logger.warning(
                    "record %s: analyzer exceeded %.1fs, marking failed",
                    rec.id, self.analyzer_timeout,
                )
                self._write_failed(rec, f"analysis timed out after {self.analyzer_timeout:g}s")
                failed += 1
                timed_out += 1

        return BatchReport(
            attempted=len(records),
            succeeded=succeeded,
            failed=failed,
            timed_out=timed_out,
        )

    def _finalize(self, rec: AnalysisRecord, fut: Future) -> bool:
        try:
            result = fut.result()
        except AnalysisError as exc:
            logger.warning("record %s: analysis failed: %s", rec.id, exc)
            self._write_failed(rec, str(exc))
            return False
        except Exception as exc:
            logger.exception("record %s: analyzer raised unexpectedly", rec.id)
            self._write_failed(rec, f"{type(exc).__name__}: {exc}")
            return False

        return self._write_completed(rec, result)

    def _write_completed(self, rec: AnalysisRecord, result: AnalysisResult) -> bool:
        with self._store("finalize"):
            ok = self.uow.records.complete(rec.id, result)
            self.uow.commit()
        if not ok:
            logger.warning("record %s left processing before its result was written", rec.id)
            return False
        logger.info("record %s completed, risk_level=%s", rec.id, result.risk_level.value)
        return True

    def _write_failed(self, rec: AnalysisRecord, error_info: str) -> None:
        with self._store("finalize"):
            ok = self.uow.records.fail(rec.id, error_info)
            self.uow.commit()
        if not ok:
            logger.warning("record %s left processing before its failure was written", rec.id)

    @contextmanager
    def _store(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            try:
                self.uow.rollback()
            except SQLAlchemyError:
                logger.warning("rollback failed after store error", exc_info=True)
            raise StoreUnavailable(f"record store failed during {action}: {exc}") from exc
