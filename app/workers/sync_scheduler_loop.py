# app/workers/sync_scheduler_loop.py
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import AlreadyRunningError, ConfigurationError
from app.core.timeutils import ensure_utc, utcnow
from app.jobs.job_config import read_job_overrides
from app.jobs.registry import get_registry
from app.jobs.sync_runner import SyncRunner

logger = logging.getLogger("jurisync.scheduler")


def is_due(runner: SyncRunner, db: Session, now: datetime) -> bool:
    """
    Debe correr si está habilitado y pasó el intervalo desde last_run_at.
    Sin fila todavía: corre ya (la fila se crea en start_run).
    """
    status = runner.store.fetch_status(db, runner.job_name)
    if status is None:
        return True
    if not status.enabled:
        return False
    if status.running:
        return False

    # entorno > configuración guardada > default
    override = read_job_overrides(runner.env_prefix, runner.defaults, runner.env).interval_ms
    interval_ms = override or status.interval_ms or runner.defaults.interval_ms

    last = ensure_utc(status.last_run_at)
    if last is None:
        return True
    return now >= last + timedelta(milliseconds=interval_ms)


def tick(runner: SyncRunner, stale_seconds: int) -> bool:
    """Un ciclo del loop. True si se ejecutó el job."""
    db: Session = runner.session_factory()
    try:
        if stale_seconds > 0:
            runner.store.release_stale_run(db, runner.job_name, stale_seconds * 1000)
        due = is_due(runner, db, utcnow())
    finally:
        db.close()

    if not due:
        return False

    try:
        runner.execute(manual=False)
        return True
    except AlreadyRunningError:
        # otra instancia tiene el lock: se salta este tick
        logger.info("job=%s already running elsewhere, skipping tick", runner.job_name)
    except ConfigurationError as e:
        logger.warning("job=%s not configured: %s", runner.job_name, e)
    except Exception:
        # el fallo ya quedó en sync_job_status; el loop sigue
        logger.exception("job=%s run failed", runner.job_name)
    return False


def run_loop(
    runner: SyncRunner,
    *,
    poll_seconds: int,
    stale_seconds: int,
    stop: Optional[threading.Event] = None,
) -> None:
    stop = stop or threading.Event()
    logger.info("scheduler start job=%s poll=%ss stale=%ss", runner.job_name, poll_seconds, stale_seconds)

    while not stop.is_set():
        try:
            tick(runner, stale_seconds)
        except Exception:
            logger.exception("scheduler tick error job=%s", runner.job_name)
        stop.wait(poll_seconds)


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    poll_seconds = max(1, int(settings.SYNC_SCHEDULER_POLL_SECONDS))
    stale_seconds = max(0, int(settings.SYNC_JOB_STALE_SECONDS))

    registry = get_registry()
    threads: List[threading.Thread] = []
    for runner in registry.all():
        t = threading.Thread(
            target=run_loop,
            kwargs={"runner": runner, "poll_seconds": poll_seconds, "stale_seconds": stale_seconds},
            name=f"sync-{runner.job_name}",
            daemon=True,
        )
        t.start()
        threads.append(t)

    # los jobs corren en paralelo; cada uno con su fila de lock
    while True:
        time.sleep(60)


if __name__ == "__main__":
    main()
