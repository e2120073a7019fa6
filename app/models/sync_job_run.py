# app/models/sync_job_run.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, false

from app.db import Base, JSONType


class SyncJobRun(Base):
    """Historial de ejecuciones; el id es el run_id que devuelve start_run."""
    __tablename__ = "sync_job_runs"

    id = Column(Integer, primary_key=True)
    job_name = Column(String(128), nullable=False, index=True)
    manual = Column(Boolean, nullable=False, default=False, server_default=false())

    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    # NULL mientras corre
    success = Column(Boolean, nullable=True)
    error_message = Column(Text, nullable=True)

    reference_used = Column(DateTime(timezone=True), nullable=True)
    next_reference = Column(DateTime(timezone=True), nullable=True)
    result = Column(JSONType, nullable=True)
