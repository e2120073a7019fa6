# app/jobs/sync_runner.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.orm import Session

from app.core.errors import AlreadyRunningError, ConfigurationError
from app.core.timeutils import utcnow
from app.db import SessionLocal
from app.jobs.job_config import JobConfig, read_job_overrides
from app.services.sync_job_status_store import (
    SyncJobStart,
    SyncJobStatusSnapshot,
    SyncJobStatusStore,
    sync_job_status_store,
)

logger = logging.getLogger("jurisync.sync_runner")


@dataclass
class SyncExecution:
    result: Any
    start: SyncJobStart


@dataclass
class TriggerOutcome:
    triggered: bool
    status: Optional[SyncJobStatusSnapshot]

    def to_dict(self) -> dict:
        return {
            "triggered": self.triggered,
            "status": self.status.to_dict() if self.status else None,
        }


def describe_error(exc: BaseException) -> str:
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


class SyncRunner:
    """
    Pegamento entre SyncJobStatusStore y un servicio de sincronización.
    Sin lógica de dominio: lock, referencia, invocación, resultado.

    Subclases definen job_name/env_prefix/defaults y los hooks
    build_service / run_service / compute_next_reference.
    """

    job_name: str = ""
    env_prefix: str = ""
    defaults: JobConfig = JobConfig(interval_ms=60_000)

    def __init__(
        self,
        *,
        service: Any = None,
        session_factory: Callable[[], Session] = SessionLocal,
        store: Optional[SyncJobStatusStore] = None,
        env: Optional[Mapping[str, str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._service = service
        self._service_lock = threading.Lock()
        self.session_factory = session_factory
        self.store = store or sync_job_status_store
        self.env = env
        self.clock = clock

    # ---- hooks ----
    def build_service(self) -> Any:
        raise NotImplementedError

    def run_service(self, service: Any, db: Session, start: SyncJobStart, reference: Optional[datetime]) -> Any:
        raise NotImplementedError

    def compute_next_reference(self, start: SyncJobStart, finished_at: datetime) -> Optional[datetime]:
        return None

    # ---- API ----
    def get_service(self) -> Any:
        # una instancia por runner (p.ej. la sesión de Projudi se reutiliza entre runs)
        with self._service_lock:
            if self._service is None:
                self._service = self.build_service()
            return self._service

    def execute(
        self,
        *,
        manual: bool = False,
        service: Any = None,
        reference: Optional[datetime] = None,
    ) -> SyncExecution:
        svc = service if service is not None else self.get_service()
        if not svc.is_configured():
            raise ConfigurationError(f'Sync job "{self.job_name}" is not configured.')

        overrides = read_job_overrides(self.env_prefix, self.defaults, self.env)

        db = self.session_factory()
        try:
            start = self.store.start_run(
                db,
                self.job_name,
                manual=manual,
                interval_ms=overrides.interval_ms,
                lookback_ms=overrides.lookback_ms,
                overlap_ms=overrides.overlap_ms,
                defaults=self.defaults.as_defaults(),
            )

            try:
                result = self.run_service(svc, db, start, reference)
            except Exception as e:
                db.rollback()
                self.store.finish_run(db, start.run_id, success=False, error=describe_error(e))
                logger.warning("run failed job=%s run_id=%s error=%s", self.job_name, start.run_id, describe_error(e))
                raise

            next_reference = self.compute_next_reference(start, self.clock())
            payload = result.to_dict() if hasattr(result, "to_dict") else result
            self.store.finish_run(
                db,
                start.run_id,
                success=True,
                next_reference=next_reference,
                result=payload,
            )
            return SyncExecution(result=result, start=start)
        finally:
            db.close()

    def trigger_now(self) -> TriggerOutcome:
        """
        Disparo manual (admin). Si ya hay un run en curso no es error: triggered=False.
        ConfigurationError y fallos del servicio se propagan.
        """
        try:
            self.execute(manual=True)
        except AlreadyRunningError:
            logger.info("manual trigger skipped: job=%s already running", self.job_name)
            return TriggerOutcome(triggered=False, status=self.get_status())
        return TriggerOutcome(triggered=True, status=self.get_status())

    def get_status(self) -> Optional[SyncJobStatusSnapshot]:
        db = self.session_factory()
        try:
            return self.store.fetch_status(db, self.job_name)
        finally:
            db.close()
