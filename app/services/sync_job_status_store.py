# app/services/sync_job_status_store.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import AlreadyRunningError, SyncError
from app.core.timeutils import ensure_utc, isoformat_or_none, utcnow
from app.models.sync_job_run import SyncJobRun
from app.models.sync_job_status import SyncJobStatus

logger = logging.getLogger("jurisync.job_status")


@dataclass(frozen=True)
class JobDefaults:
    interval_ms: int
    lookback_ms: Optional[int] = None
    overlap_ms: Optional[int] = None


@dataclass(frozen=True)
class SyncJobStart:
    run_id: int
    reference_used: datetime
    interval_ms: Optional[int]
    lookback_ms: Optional[int]
    overlap_ms: Optional[int]


@dataclass
class SyncJobStatusSnapshot:
    job_name: str
    enabled: bool
    running: bool
    interval_ms: Optional[int]
    lookback_ms: Optional[int]
    overlap_ms: Optional[int]
    last_run_at: Optional[datetime]
    last_success_at: Optional[datetime]
    last_error_at: Optional[datetime]
    last_error_message: Optional[str]
    last_result: Optional[Dict[str, Any]]
    last_reference_used: Optional[datetime]
    next_reference: Optional[datetime]
    last_manual_trigger_at: Optional[datetime]

    @property
    def next_run_at(self) -> Optional[datetime]:
        if self.last_run_at is None or not self.interval_ms:
            return None
        return self.last_run_at + timedelta(milliseconds=int(self.interval_ms))

    @classmethod
    def from_row(cls, row: SyncJobStatus) -> "SyncJobStatusSnapshot":
        return cls(
            job_name=row.job_name,
            enabled=bool(row.enabled),
            running=bool(row.running),
            interval_ms=row.interval_ms,
            lookback_ms=row.lookback_ms,
            overlap_ms=row.overlap_ms,
            last_run_at=ensure_utc(row.last_run_at),
            last_success_at=ensure_utc(row.last_success_at),
            last_error_at=ensure_utc(row.last_error_at),
            last_error_message=row.last_error_message,
            last_result=dict(row.last_result) if isinstance(row.last_result, dict) else row.last_result,
            last_reference_used=ensure_utc(row.last_reference_used),
            next_reference=ensure_utc(row.next_reference),
            last_manual_trigger_at=ensure_utc(row.last_manual_trigger_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_name": self.job_name,
            "enabled": self.enabled,
            "running": self.running,
            "interval_ms": self.interval_ms,
            "lookback_ms": self.lookback_ms,
            "overlap_ms": self.overlap_ms,
            "last_run_at": isoformat_or_none(self.last_run_at),
            "last_success_at": isoformat_or_none(self.last_success_at),
            "last_error_at": isoformat_or_none(self.last_error_at),
            "last_error_message": self.last_error_message,
            "last_result": self.last_result,
            "last_reference_used": isoformat_or_none(self.last_reference_used),
            "next_reference": isoformat_or_none(self.next_reference),
            "last_manual_trigger_at": isoformat_or_none(self.last_manual_trigger_at),
            "next_run_at": isoformat_or_none(self.next_run_at),
        }


def _pick(override: Optional[int], persisted: Optional[int], default: Optional[int]) -> Optional[int]:
    if override is not None:
        return int(override)
    if persisted is not None:
        return int(persisted)
    return int(default) if default is not None else None


class SyncJobStatusStore:
    """
    Estado persistente de los jobs + lock de ejecución.

    El lock es la columna running. start_run la pasa de false a true con un único
    UPDATE condicional y anota el run dueño en current_run_id; si no afecta filas,
    otro proceso tiene el job.
    Todas las operaciones hacen commit antes de volver.
    """

    def _ensure_row(self, db: Session, job_name: str) -> None:
        exists = db.query(SyncJobStatus.id).filter(SyncJobStatus.job_name == job_name).first()
        if exists:
            return
        try:
            db.add(SyncJobStatus(job_name=job_name, enabled=True, running=False))
            db.commit()
        except IntegrityError:
            # carrera normal: otro proceso creó la fila primero
            db.rollback()

    def _load(self, db: Session, job_name: str) -> SyncJobStatus:
        return (
            db.query(SyncJobStatus)
            .filter(SyncJobStatus.job_name == job_name)
            .populate_existing()
            .one()
        )

    def start_run(
        self,
        db: Session,
        job_name: str,
        *,
        manual: bool = False,
        interval_ms: Optional[int] = None,
        lookback_ms: Optional[int] = None,
        overlap_ms: Optional[int] = None,
        defaults: JobDefaults,
    ) -> SyncJobStart:
        now = utcnow()
        self._ensure_row(db, job_name)

        values: Dict[str, Any] = {"running": True, "last_run_at": now, "updated_at": now}
        if manual:
            values["last_manual_trigger_at"] = now

        res = db.execute(
            update(SyncJobStatus)
            .where(SyncJobStatus.job_name == job_name, SyncJobStatus.running.is_(False))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise AlreadyRunningError(job_name)

        row = self._load(db, job_name)

        eff_interval = _pick(interval_ms, row.interval_ms, defaults.interval_ms)
        eff_lookback = _pick(lookback_ms, row.lookback_ms, defaults.lookback_ms)
        eff_overlap = _pick(overlap_ms, row.overlap_ms, defaults.overlap_ms)

        row.interval_ms = eff_interval
        row.lookback_ms = eff_lookback
        row.overlap_ms = eff_overlap

        reference_used = ensure_utc(row.next_reference)
        if reference_used is None:
            reference_used = now - timedelta(milliseconds=eff_lookback or 0)
        row.last_reference_used = reference_used

        run = SyncJobRun(
            job_name=job_name,
            manual=bool(manual),
            started_at=now,
            reference_used=reference_used,
        )
        db.add(run)
        db.flush()
        row.current_run_id = run.id
        db.commit()

        logger.info(
            "run started job=%s run_id=%s manual=%s reference=%s",
            job_name,
            run.id,
            manual,
            reference_used.isoformat(),
        )
        return SyncJobStart(
            run_id=int(run.id),
            reference_used=reference_used,
            interval_ms=eff_interval,
            lookback_ms=eff_lookback,
            overlap_ms=eff_overlap,
        )

    def finish_run(
        self,
        db: Session,
        run_id: int,
        *,
        success: bool,
        next_reference: Optional[datetime] = None,
        error: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Libera el lock solo si este run todavía lo tiene. Si release_stale_run
        ya lo soltó (y quizá otro run lo tomó), la fila del job no se toca:
        solo se cierra el registro en sync_job_runs.
        """
        run = db.get(SyncJobRun, run_id)
        if run is None:
            raise SyncError(f"Unknown sync run id={run_id}")

        now = utcnow()
        message = None if success else (error or "unknown error")[:8000]

        values: Dict[str, Any] = {"running": False, "current_run_id": None, "updated_at": now}
        if success:
            values["last_success_at"] = now
            values["last_result"] = result
            if next_reference is not None:
                values["next_reference"] = next_reference
        else:
            # next_reference intacto: el próximo intento repite la misma ventana
            values["last_error_at"] = now
            values["last_error_message"] = message

        res = db.execute(
            update(SyncJobStatus)
            .where(
                SyncJobStatus.job_name == run.job_name,
                SyncJobStatus.running.is_(True),
                SyncJobStatus.current_run_id == run.id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        owned = res.rowcount == 1

        run.finished_at = now
        run.success = bool(success)
        run.error_message = message
        run.next_reference = next_reference if success and owned else None
        run.result = result

        db.commit()
        if owned:
            logger.info("run finished job=%s run_id=%s success=%s", run.job_name, run_id, success)
        else:
            logger.warning(
                "run finished after losing the lock job=%s run_id=%s success=%s (job status untouched)",
                run.job_name,
                run_id,
                success,
            )

    def upsert_configuration(
        self,
        db: Session,
        job_name: str,
        *,
        enabled: Optional[bool] = None,
        interval_ms: Optional[int] = None,
        lookback_ms: Optional[int] = None,
        overlap_ms: Optional[int] = None,
    ) -> SyncJobStatusSnapshot:
        self._ensure_row(db, job_name)
        row = self._load(db, job_name)

        # solo columnas de configuración; running no se toca
        if enabled is not None:
            row.enabled = bool(enabled)
        if interval_ms is not None:
            row.interval_ms = int(interval_ms)
        if lookback_ms is not None:
            row.lookback_ms = int(lookback_ms)
        if overlap_ms is not None:
            row.overlap_ms = int(overlap_ms)

        db.commit()
        return SyncJobStatusSnapshot.from_row(row)

    def fetch_status(self, db: Session, job_name: str) -> Optional[SyncJobStatusSnapshot]:
        row = (
            db.query(SyncJobStatus)
            .filter(SyncJobStatus.job_name == job_name)
            .populate_existing()
            .first()
        )
        if not row:
            return None
        return SyncJobStatusSnapshot.from_row(row)

    def list_statuses(self, db: Session) -> List[SyncJobStatusSnapshot]:
        rows = db.query(SyncJobStatus).order_by(SyncJobStatus.job_name.asc()).populate_existing().all()
        return [SyncJobStatusSnapshot.from_row(r) for r in rows]

    def release_stale_run(self, db: Session, job_name: str, stale_after_ms: int) -> bool:
        """
        Libera un lock huérfano (proceso muerto a mitad de un run).
        Solo si last_run_at es más viejo que stale_after_ms.
        """
        if stale_after_ms <= 0:
            return False

        now = utcnow()
        cutoff = now - timedelta(milliseconds=int(stale_after_ms))
        msg = f"stale run released after {int(stale_after_ms) // 1000}s at {now.isoformat()}"

        res = db.execute(
            update(SyncJobStatus)
            .where(
                SyncJobStatus.job_name == job_name,
                SyncJobStatus.running.is_(True),
                SyncJobStatus.last_run_at < cutoff,
            )
            .values(running=False, current_run_id=None, last_error_at=now, last_error_message=msg, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            return False

        open_runs = (
            db.query(SyncJobRun)
            .filter(SyncJobRun.job_name == job_name, SyncJobRun.finished_at.is_(None))
            .all()
        )
        for run in open_runs:
            run.finished_at = now
            run.success = False
            run.error_message = msg

        db.commit()
        logger.warning("stale lock released job=%s open_runs=%s", job_name, len(open_runs))
        return True


sync_job_status_store = SyncJobStatusStore()
