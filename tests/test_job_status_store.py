from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from app.core.errors import AlreadyRunningError
from app.core.timeutils import ensure_utc, utcnow
from app.db import SessionLocal
from app.models.sync_job_run import SyncJobRun
from app.models.sync_job_status import SyncJobStatus
from app.services.sync_job_status_store import JobDefaults, SyncJobStatusStore

JOB = "test_job"
DEFAULTS = JobDefaults(interval_ms=300_000, lookback_ms=86_400_000, overlap_ms=60_000)


@pytest.fixture
def store():
    return SyncJobStatusStore()


def test_start_run_creates_row_and_takes_lock(db, store):
    before = utcnow()
    start = store.start_run(db, JOB, defaults=DEFAULTS)

    row = db.query(SyncJobStatus).filter(SyncJobStatus.job_name == JOB).one()
    assert row.running is True
    assert row.enabled is True
    assert start.interval_ms == 300_000
    assert start.lookback_ms == 86_400_000
    assert start.overlap_ms == 60_000

    # sin watermark: now - lookback
    expected = before - timedelta(milliseconds=86_400_000)
    assert abs((start.reference_used - expected).total_seconds()) < 5
    assert ensure_utc(row.last_reference_used) == start.reference_used

    run = db.get(SyncJobRun, start.run_id)
    assert run is not None
    assert run.finished_at is None
    assert run.success is None


def test_second_start_fails_while_running_from_another_session(db, store):
    store.start_run(db, JOB, defaults=DEFAULTS)

    other = SessionLocal()
    try:
        with pytest.raises(AlreadyRunningError) as exc:
            store.start_run(other, JOB, manual=True, defaults=DEFAULTS)
    finally:
        other.close()

    assert exc.value.job_name == JOB
    assert "already running" in str(exc.value)
    assert db.query(SyncJobRun).count() == 1


def test_exactly_one_of_two_concurrent_starts_succeeds(store):
    barrier = threading.Barrier(2)
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker():
        s = SessionLocal()
        try:
            barrier.wait(5)
            try:
                store.start_run(s, JOB, defaults=DEFAULTS)
                outcome = "ok"
            except AlreadyRunningError:
                outcome = "busy"
            with outcomes_lock:
                outcomes.append(outcome)
        finally:
            s.close()

    # fila creada antes: los dos compiten solo por el UPDATE condicional
    setup = SessionLocal()
    try:
        store.upsert_configuration(setup, JOB)
    finally:
        setup.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert sorted(outcomes) == ["busy", "ok"]


def test_finish_success_releases_lock_and_sets_watermark(db, store):
    start = store.start_run(db, JOB, defaults=DEFAULTS)
    next_ref = utcnow() - timedelta(seconds=60)

    store.finish_run(db, start.run_id, success=True, next_reference=next_ref, result={"inserted": 2})

    snap = store.fetch_status(db, JOB)
    assert snap.running is False
    assert snap.last_success_at is not None
    assert snap.last_result == {"inserted": 2}
    assert snap.next_reference == next_ref

    # el siguiente run parte del watermark guardado
    start2 = store.start_run(db, JOB, defaults=DEFAULTS)
    assert start2.reference_used == next_ref


def test_finish_failure_releases_lock_and_keeps_watermark(db, store):
    first = store.start_run(db, JOB, defaults=DEFAULTS)
    watermark = utcnow() - timedelta(minutes=10)
    store.finish_run(db, first.run_id, success=True, next_reference=watermark, result={})

    second = store.start_run(db, JOB, defaults=DEFAULTS)
    store.finish_run(db, second.run_id, success=False, error="RequestError: boom")

    snap = store.fetch_status(db, JOB)
    assert snap.running is False
    assert snap.next_reference == watermark
    assert snap.last_error_message == "RequestError: boom"
    assert snap.last_error_at is not None

    run = db.get(SyncJobRun, second.run_id)
    assert run.success is False
    assert run.error_message == "RequestError: boom"

    third = store.start_run(db, JOB, defaults=DEFAULTS)
    assert third.reference_used == watermark


def test_manual_start_records_manual_trigger(db, store):
    store.start_run(db, JOB, manual=True, defaults=DEFAULTS)
    snap = store.fetch_status(db, JOB)
    assert snap.last_manual_trigger_at is not None
    assert snap.last_run_at is not None


def test_effective_config_override_then_persisted_then_default(db, store):
    store.upsert_configuration(db, JOB, interval_ms=120_000)

    start = store.start_run(db, JOB, lookback_ms=3_600_000, defaults=DEFAULTS)
    assert start.interval_ms == 120_000  # persistido
    assert start.lookback_ms == 3_600_000  # override
    assert start.overlap_ms == 60_000  # default

    snap = store.fetch_status(db, JOB)
    assert snap.interval_ms == 120_000
    assert snap.lookback_ms == 3_600_000
    assert snap.overlap_ms == 60_000


def test_upsert_configuration_merges_and_does_not_touch_lock(db, store):
    store.start_run(db, JOB, defaults=DEFAULTS)

    snap = store.upsert_configuration(db, JOB, enabled=False)
    assert snap.enabled is False
    assert snap.running is True
    assert snap.interval_ms == 300_000

    snap = store.upsert_configuration(db, JOB, overlap_ms=0)
    assert snap.enabled is False
    assert snap.overlap_ms == 0


def test_fetch_status_unknown_job_is_none_and_read_only(db, store):
    assert store.fetch_status(db, "missing") is None
    assert db.query(SyncJobStatus).count() == 0


def test_snapshot_next_run_at(db, store):
    store.start_run(db, JOB, defaults=DEFAULTS)
    snap = store.fetch_status(db, JOB)
    assert snap.next_run_at == snap.last_run_at + timedelta(milliseconds=300_000)
    assert snap.to_dict()["next_run_at"] is not None


def test_release_stale_run(db, store):
    start = store.start_run(db, JOB, defaults=DEFAULTS)

    # recién tomado: no es huérfano
    assert store.release_stale_run(db, JOB, 60_000) is False

    row = db.query(SyncJobStatus).filter(SyncJobStatus.job_name == JOB).one()
    row.last_run_at = utcnow() - timedelta(hours=2)
    db.commit()

    assert store.release_stale_run(db, JOB, 3_600_000) is True
    snap = store.fetch_status(db, JOB)
    assert snap.running is False
    assert "stale run released" in snap.last_error_message

    run = db.get(SyncJobRun, start.run_id)
    db.refresh(run)
    assert run.success is False
    assert run.finished_at is not None

    # el lock vuelve a estar disponible
    store.start_run(db, JOB, defaults=DEFAULTS)


def test_late_finish_after_stale_release_keeps_new_owner_lock(db, store):
    slow = store.start_run(db, JOB, defaults=DEFAULTS)

    row = db.query(SyncJobStatus).filter(SyncJobStatus.job_name == JOB).one()
    row.last_run_at = utcnow() - timedelta(hours=2)
    db.commit()
    assert store.release_stale_run(db, JOB, 3_600_000) is True

    current = store.start_run(db, JOB, defaults=DEFAULTS)
    watermark_before = store.fetch_status(db, JOB).next_reference

    # el run liberado termina tarde: no debe soltar el lock del run actual
    store.finish_run(
        db,
        slow.run_id,
        success=True,
        next_reference=utcnow(),
        result={"inserted": 99},
    )

    snap = store.fetch_status(db, JOB)
    assert snap.running is True
    assert snap.next_reference == watermark_before
    assert snap.last_result != {"inserted": 99}

    other = SessionLocal()
    try:
        with pytest.raises(AlreadyRunningError):
            store.start_run(other, JOB, defaults=DEFAULTS)
    finally:
        other.close()

    late = db.get(SyncJobRun, slow.run_id)
    db.refresh(late)
    assert late.success is True
    assert late.finished_at is not None
    assert late.next_reference is None

    # el dueño actual sí libera
    store.finish_run(db, current.run_id, success=True, next_reference=utcnow(), result={"inserted": 1})
    snap = store.fetch_status(db, JOB)
    assert snap.running is False
    assert snap.last_result == {"inserted": 1}


def test_start_records_lock_owner(db, store):
    start = store.start_run(db, JOB, defaults=DEFAULTS)
    row = db.query(SyncJobStatus).filter(SyncJobStatus.job_name == JOB).populate_existing().one()
    assert row.current_run_id == start.run_id

    store.finish_run(db, start.run_id, success=False, error="boom")
    db.refresh(row)
    assert row.current_run_id is None
    assert row.running is False
