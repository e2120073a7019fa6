from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SyncJobStatusOut(BaseModel):
    job_name: str
    enabled: bool = True
    running: bool = False

    interval_ms: Optional[int] = None
    lookback_ms: Optional[int] = None
    overlap_ms: Optional[int] = None

    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    last_error_message: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None

    last_reference_used: Optional[datetime] = None
    next_reference: Optional[datetime] = None
    last_manual_trigger_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None


class SyncJobTriggerOut(BaseModel):
    triggered: bool
    status: Optional[SyncJobStatusOut] = None


class SyncJobConfigIn(BaseModel):
    enabled: Optional[bool] = None
    interval_ms: Optional[int] = Field(default=None, ge=1)
    lookback_ms: Optional[int] = Field(default=None, ge=1)
    overlap_ms: Optional[int] = Field(default=None, ge=0)
