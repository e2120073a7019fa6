# app/jobs/registry.py
from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional

from app.jobs.asaas_charge_sync import JOB_NAME as ASAAS_JOB_NAME
from app.jobs.asaas_charge_sync import AsaasChargeSyncRunner
from app.jobs.projudi_sync import JOB_NAME as PROJUDI_JOB_NAME
from app.jobs.projudi_sync import ProjudiSyncRunner
from app.jobs.sync_runner import SyncRunner

_FACTORIES: Dict[str, Callable[[], SyncRunner]] = {
    PROJUDI_JOB_NAME: ProjudiSyncRunner,
    ASAAS_JOB_NAME: AsaasChargeSyncRunner,
}


class RunnerRegistry:
    """
    Runners por nombre de job, construidos bajo demanda (una instancia por proceso).
    Los tests inyectan los suyos con RunnerRegistry(runners={...}).
    """

    def __init__(self, runners: Optional[Dict[str, SyncRunner]] = None) -> None:
        self._runners: Dict[str, SyncRunner] = dict(runners or {})
        self._fixed = runners is not None
        self._lock = threading.Lock()

    def job_names(self) -> List[str]:
        if self._fixed:
            return sorted(self._runners)
        return sorted(_FACTORIES)

    def get(self, job_name: str) -> Optional[SyncRunner]:
        with self._lock:
            runner = self._runners.get(job_name)
            if runner is None and not self._fixed and job_name in _FACTORIES:
                runner = _FACTORIES[job_name]()
                self._runners[job_name] = runner
            return runner

    def all(self) -> List[SyncRunner]:
        return [r for r in (self.get(n) for n in self.job_names()) if r is not None]


_default_registry: Optional[RunnerRegistry] = None
_default_lock = threading.Lock()


def get_registry() -> RunnerRegistry:
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = RunnerRegistry()
        return _default_registry
