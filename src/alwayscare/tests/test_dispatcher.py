import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from src.alwayscare.domain.enums import AnalysisEvent, AnalysisStatus, RiskLevel
from src.alwayscare.domain.errors import AnalysisError, StoreUnavailable
from src.alwayscare.infra.uow import SqlAlchemyUoW
from src.alwayscare.services.analysis_service import AnalysisService
from src.alwayscare.services.analyzer_pool import AnalyzerPool
from src.alwayscare.services.dispatcher import Dispatcher


def _store_down(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def _later(seconds: float):
    return lambda: datetime.now(timezone.utc) + timedelta(seconds=seconds)


def test_knife_image_completes_with_high_risk(uow, make_record, make_analyzer, status_of):
    rec = make_record("knife.png")
    analyzer = make_analyzer({"knife.png": [("knife", 0.9)]})

    report = Dispatcher(uow, analyzer).run_once()

    assert (report.attempted, report.succeeded, report.failed) == (1, 1, 0)
    done = status_of(rec.id)
    assert done.status == AnalysisStatus.COMPLETED
    assert done.error_info is None
    assert done.result.risk_level == RiskLevel.HIGH
    assert done.result.risk_description == "Sharp knife - cut risk"
    assert [(d.name, d.confidence) for d in done.result.detections] == [("knife", 0.9)]


def test_undecodable_image_fails_with_reason(uow, make_record, make_analyzer, status_of):
    rec = make_record("broken.png")
    analyzer = make_analyzer({"broken.png": AnalysisError("decode failed: cannot identify image file")})

    report = Dispatcher(uow, analyzer).run_once()

    assert report.failed == 1
    failed = status_of(rec.id)
    assert failed.status == AnalysisStatus.FAILED
    assert "decode failed" in failed.error_info
    assert failed.result is None


def test_pass_takes_oldest_pending_first(uow, make_record, make_analyzer, status_of):
    records = [make_record(f"r{i}.png") for i in range(7)]
    analyzer = make_analyzer()
    dispatcher = Dispatcher(uow, analyzer, batch_size=5)

    first = dispatcher.run_once()

    assert first.attempted == 5
    assert sorted(analyzer.calls) == sorted(r.artifact_location for r in records[:5])
    assert [status_of(r.id).status for r in records[5:]] == [AnalysisStatus.PENDING] * 2

    second = dispatcher.run_once()

    assert second.attempted == 2
    assert all(status_of(r.id).status == AnalysisStatus.COMPLETED for r in records)


def test_whole_batch_is_claimed_before_analysis_starts(uow, make_record, make_analyzer, status_of):
    records = [make_record(f"c{i}.png") for i in range(3)]
    seen = []

    def observe(_location):
        seen.append({status_of(r.id).status for r in records})
        return []

    analyzer = make_analyzer(default=observe)
    Dispatcher(uow, analyzer).run_once()

    assert len(seen) == 3
    # completed shows up once a sibling has finished; pending never does
    assert all(AnalysisStatus.PENDING not in s for s in seen)


def test_one_failure_does_not_touch_siblings(uow, make_record, make_analyzer, status_of):
    ok1 = make_record("ok1.png")
    bad = make_record("bad.png")
    ok2 = make_record("ok2.png")
    analyzer = make_analyzer({"bad.png": RuntimeError("boom"), "ok2.png": [("stairs", 0.8)]})

    report = Dispatcher(uow, analyzer).run_once()

    assert (report.succeeded, report.failed) == (2, 1)
    assert status_of(ok1.id).status == AnalysisStatus.COMPLETED
    assert status_of(ok2.id).result.risk_level == RiskLevel.MEDIUM
    broken = status_of(bad.id)
    assert broken.status == AnalysisStatus.FAILED
    assert broken.error_info == "RuntimeError: boom"


def test_slow_analysis_is_failed_as_timed_out(uow, make_record, make_analyzer, status_of):
    gate = threading.Event()

    def slow(_location):
        gate.wait(5)
        return [("knife", 0.9)]

    slow_rec = make_record("slow.png")
    fast_rec = make_record("fast.png")
    analyzer = make_analyzer({"slow.png": slow})
    try:
        report = Dispatcher(uow, analyzer, analyzer_timeout=0.3).run_once()
    finally:
        gate.set()

    assert report.timed_out == 1
    assert report.succeeded == 1
    timed_out = status_of(slow_rec.id)
    assert timed_out.status == AnalysisStatus.FAILED
    assert timed_out.error_info == "analysis timed out after 0.3s"
    assert status_of(fast_rec.id).status == AnalysisStatus.COMPLETED


def test_overlapping_dispatchers_never_analyze_twice(uow, session_factory, make_record, make_analyzer, status_of):
    records = [make_record(f"o{i}.png") for i in range(4)]
    analyzer = make_analyzer()

    db_b = session_factory()
    try:
        uow_b = SqlAlchemyUoW(db_b)
        # B read the queue before A claimed it
        snapshot = uow_b.records.list_by_status(AnalysisStatus.PENDING, 10)
        uow_b.records.list_by_status = lambda *args, **kwargs: snapshot

        report_a = Dispatcher(uow, analyzer).run_once()
        report_b = Dispatcher(uow_b, analyzer).run_once()
    finally:
        db_b.close()

    assert report_a.attempted == 4
    assert report_b.attempted == 0
    assert sorted(analyzer.calls) == sorted(r.artifact_location for r in records)
    assert all(status_of(r.id).attempts == 1 for r in records)


def test_store_failure_during_claim_leaves_records_pending(uow, make_record, make_analyzer, status_of, monkeypatch):
    rec = make_record()
    analyzer = make_analyzer()
    monkeypatch.setattr(uow.records, "list_by_status", _store_down)

    with pytest.raises(StoreUnavailable):
        Dispatcher(uow, analyzer).run_once()

    assert analyzer.calls == []
    assert status_of(rec.id).status == AnalysisStatus.PENDING


def test_store_failure_while_finalizing_is_recovered_later(uow, make_record, make_analyzer, status_of, monkeypatch):
    rec = make_record("late.png")
    analyzer = make_analyzer({"late.png": [("fire", 0.8)]})
    monkeypatch.setattr(uow.records, "complete", _store_down)

    with pytest.raises(StoreUnavailable):
        Dispatcher(uow, analyzer).run_once()
    assert status_of(rec.id).status == AnalysisStatus.PROCESSING

    monkeypatch.undo()
    report = Dispatcher(uow, analyzer, stale_after=600, clock=_later(601)).run_once()

    assert report.reclaimed == 1
    assert report.succeeded == 1
    done = status_of(rec.id)
    assert done.status == AnalysisStatus.COMPLETED
    assert done.attempts == 2


def test_stuck_record_is_abandoned_after_max_attempts(uow, make_record, make_analyzer, status_of):
    rec = make_record()
    uow.records.claim(rec.id)
    uow.commit()

    report = Dispatcher(uow, make_analyzer(), max_attempts=1, clock=_later(3600)).run_once()

    assert report.abandoned == 1
    assert report.attempted == 0
    failed = status_of(rec.id)
    assert failed.status == AnalysisStatus.FAILED
    assert failed.error_info.startswith("analysis abandoned")


def test_failed_records_wait_for_explicit_retry(uow, make_record, make_analyzer, status_of):
    rec = make_record("flaky.png")
    analyzer = make_analyzer({"flaky.png": AnalysisError("detection failed: model not ready")})
    dispatcher = Dispatcher(uow, analyzer)

    dispatcher.run_once()
    assert status_of(rec.id).status == AnalysisStatus.FAILED

    # the scheduled pass never picks failed records up again
    assert dispatcher.run_once().attempted == 0

    analyzer.outcomes["flaky.png"] = [("coin", 0.7)]
    report = dispatcher.retry_failed()

    assert report.succeeded == 1
    done = status_of(rec.id)
    assert done.status == AnalysisStatus.COMPLETED
    assert done.attempts == 2
    events = [e["event"] for e in uow.records.list_events(rec.id)]
    assert AnalysisEvent.RETRIED.value in events


def test_retry_is_scoped_to_owner(uow, make_user, make_record, make_analyzer, status_of):
    other = make_user()
    mine = make_record("m.png")
    theirs = make_record("t.png", owner_id=other)
    analyzer = make_analyzer(default=AnalysisError("decode failed: x"))
    dispatcher = Dispatcher(uow, analyzer)
    dispatcher.run_once()

    analyzer.default = ()
    dispatcher.retry_failed(owner_id=mine.owner_id)

    assert status_of(mine.id).status == AnalysisStatus.COMPLETED
    assert status_of(theirs.id).status == AnalysisStatus.FAILED


def test_process_claimed_finishes_triggered_record(uow, make_record, make_analyzer, status_of):
    rec = make_record("manual.png")
    AnalysisService(uow).trigger(rec.owner_id, rec.id)

    report = Dispatcher(uow, make_analyzer({"manual.png": [("pool", 0.9)]})).process_claimed(rec.id)

    assert report.succeeded == 1
    assert status_of(rec.id).result.risk_level == RiskLevel.HIGH


def test_process_claimed_skips_records_not_processing(uow, make_record, make_analyzer, status_of):
    rec = make_record()
    analyzer = make_analyzer()
    dispatcher = Dispatcher(uow, analyzer)

    assert dispatcher.process_claimed(rec.id).attempted == 0
    assert dispatcher.process_claimed(999_999).attempted == 0
    assert analyzer.calls == []
    assert status_of(rec.id).status == AnalysisStatus.PENDING


def test_invalid_configuration_is_rejected(uow, make_analyzer):
    with pytest.raises(ValueError):
        Dispatcher(uow, make_analyzer(), batch_size=0)
    with pytest.raises(ValueError):
        Dispatcher(uow, make_analyzer(), retry_batch_size=0)
    with pytest.raises(ValueError):
        Dispatcher(uow, make_analyzer(), analyzer_timeout=0)


def test_retry_limit_must_be_positive(uow, make_record, make_analyzer, status_of):
    rec = make_record("f.png")
    analyzer = make_analyzer(default=AnalysisError("decode failed: x"))
    dispatcher = Dispatcher(uow, analyzer)
    dispatcher.run_once()

    with pytest.raises(ValueError, match="limit must be >= 1"):
        dispatcher.retry_failed(limit=0)
    assert status_of(rec.id).status == AnalysisStatus.FAILED

    assert dispatcher.retry_failed(limit=1).attempted == 1


def test_hung_analyzer_calls_hold_back_claims_instead_of_adding_threads(
    uow, make_record, make_analyzer, status_of
):
    gate = threading.Event()

    def hang(_location):
        gate.wait(10)
        return []

    records = [make_record(f"h{i}.png") for i in range(6)]
    analyzer = make_analyzer(default=hang)
    pool = AnalyzerPool(2, name="hung-analyzer")
    dispatcher = Dispatcher(uow, analyzer, batch_size=5, analyzer_timeout=0.1, pool=pool)
    try:
        try:
            reports = [dispatcher.run_once() for _ in range(3)]
            workers = [t for t in threading.enumerate() if t.name.startswith("hung-analyzer")]
        finally:
            gate.set()

        assert [r.attempted for r in reports] == [2, 0, 0]
        assert reports[0].timed_out == 2
        assert len(workers) == 2
        assert all(t.daemon for t in workers)
        assert [status_of(r.id).status for r in records].count(AnalysisStatus.PENDING) == 4

        # once the hung calls return, the same two workers take new claims
        deadline = time.monotonic() + 5
        while pool.free < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        report = dispatcher.run_once()

        assert (report.attempted, report.succeeded) == (2, 2)
        assert pool.threads == 2
    finally:
        pool.shutdown()


def test_threads_with_own_sessions_never_analyze_twice(session_factory, make_record, make_analyzer, status_of):
    records = [make_record(f"c{i}.png") for i in range(12)]
    analyzer = make_analyzer()
    barrier = threading.Barrier(3)
    lock = threading.Lock()
    reports, errors = [], []

    def run():
        db = session_factory()
        dispatcher = Dispatcher(SqlAlchemyUoW(db), analyzer, batch_size=5)
        try:
            barrier.wait(5)
            report = dispatcher.run_once()
            with lock:
                reports.append(report)
        except Exception as exc:
            with lock:
                errors.append(exc)
        finally:
            dispatcher.close()
            db.close()

    threads = [threading.Thread(target=run) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert errors == []
    assert len(analyzer.calls) == len(set(analyzer.calls))
    assert sum(r.attempted for r in reports) == len(analyzer.calls)
    assert 5 <= len(analyzer.calls) <= 12

    stored = [status_of(r.id) for r in records]
    completed = [s for s in stored if s.status == AnalysisStatus.COMPLETED]
    assert len(completed) == len(analyzer.calls)
    assert all(s.attempts == 1 for s in completed)
    assert all(s.status in (AnalysisStatus.COMPLETED, AnalysisStatus.PENDING) for s in stored)
