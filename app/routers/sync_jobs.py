# app/routers/sync_jobs.py
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import ConfigurationError
from app.db import get_db
from app.jobs.registry import RunnerRegistry, get_registry
from app.jobs.sync_runner import SyncRunner, describe_error
from app.schemas.sync_jobs import SyncJobConfigIn, SyncJobStatusOut, SyncJobTriggerOut
from app.services.sync_job_status_store import SyncJobStatusSnapshot, sync_job_status_store

logger = logging.getLogger("jurisync.api")


def require_admin_token(x_admin_token: Optional[str] = Header(default=None)) -> None:
    expected = (settings.ADMIN_API_TOKEN or "").strip()
    if not expected:
        return
    if (x_admin_token or "").strip() != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


router = APIRouter(prefix="/sync-jobs", tags=["Sync jobs"], dependencies=[Depends(require_admin_token)])


def _out(snapshot: Optional[SyncJobStatusSnapshot], job_name: str) -> SyncJobStatusOut:
    if snapshot is None:
        # job que nunca corrió: fila todavía no existe
        return SyncJobStatusOut(job_name=job_name)
    return SyncJobStatusOut(**snapshot.to_dict())


def _get_runner(job_name: str, registry: RunnerRegistry) -> SyncRunner:
    runner = registry.get(job_name)
    if runner is None:
        raise HTTPException(status_code=404, detail=f"Unknown sync job: {job_name}")
    return runner


@router.get("", response_model=List[SyncJobStatusOut])
def list_sync_jobs(
    db: Session = Depends(get_db),
    registry: RunnerRegistry = Depends(get_registry),
) -> List[SyncJobStatusOut]:
    by_name = {s.job_name: s for s in sync_job_status_store.list_statuses(db)}
    return [_out(by_name.get(name), name) for name in registry.job_names()]


@router.get("/{job_name}/status", response_model=SyncJobStatusOut)
def get_sync_job_status(
    job_name: str,
    db: Session = Depends(get_db),
    registry: RunnerRegistry = Depends(get_registry),
) -> SyncJobStatusOut:
    _get_runner(job_name, registry)
    return _out(sync_job_status_store.fetch_status(db, job_name), job_name)


@router.post("/{job_name}/trigger", response_model=SyncJobTriggerOut)
def trigger_sync_job(
    job_name: str,
    registry: RunnerRegistry = Depends(get_registry),
) -> SyncJobTriggerOut:
    runner = _get_runner(job_name, registry)
    try:
        outcome = runner.trigger_now()
    except ConfigurationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "message": str(e),
                "status": _out(runner.get_status(), job_name).model_dump(mode="json"),
            },
        )
    except Exception as e:
        logger.exception("manual trigger failed job=%s", job_name)
        raise HTTPException(
            status_code=500,
            detail={
                "message": describe_error(e),
                "status": _out(runner.get_status(), job_name).model_dump(mode="json"),
            },
        )

    return SyncJobTriggerOut(triggered=outcome.triggered, status=_out(outcome.status, job_name))


@router.put("/{job_name}/config", response_model=SyncJobStatusOut)
def update_sync_job_config(
    job_name: str,
    payload: SyncJobConfigIn,
    db: Session = Depends(get_db),
    registry: RunnerRegistry = Depends(get_registry),
) -> SyncJobStatusOut:
    _get_runner(job_name, registry)
    snapshot = sync_job_status_store.upsert_configuration(
        db,
        job_name,
        enabled=payload.enabled,
        interval_ms=payload.interval_ms,
        lookback_ms=payload.lookback_ms,
        overlap_ms=payload.overlap_ms,
    )
    return _out(snapshot, job_name)
