# app/models/sync_job_status.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text, false, true

from app.db import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncJobStatus(Base):
    """
    Una fila por job de sincronización.

    IMPORTANTE:
      running=True es el lock del job. Solo se modifica con el UPDATE condicional
      de SyncJobStatusStore (start_run / finish_run / release_stale_run);
      ningún flag en memoria lo sustituye.
    """
    __tablename__ = "sync_job_status"

    id = Column(Integer, primary_key=True)
    job_name = Column(String(128), nullable=False, unique=True, index=True)

    enabled = Column(Boolean, nullable=False, default=True, server_default=true())
    running = Column(Boolean, nullable=False, default=False, server_default=false())
    # dueño del lock (sync_job_runs.id); solo ese run puede liberarlo
    current_run_id = Column(Integer, nullable=True)

    interval_ms = Column(BigInteger, nullable=True)
    lookback_ms = Column(BigInteger, nullable=True)
    overlap_ms = Column(BigInteger, nullable=True)

    last_run_at = Column(DateTime(timezone=True), nullable=True)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_error_at = Column(DateTime(timezone=True), nullable=True)
    last_error_message = Column(Text, nullable=True)
    last_result = Column(JSONType, nullable=True)

    last_reference_used = Column(DateTime(timezone=True), nullable=True)
    next_reference = Column(DateTime(timezone=True), nullable=True)
    last_manual_trigger_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
