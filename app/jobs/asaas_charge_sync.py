# app/jobs/asaas_charge_sync.py
from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import AlreadyRunningError, ConfigurationError
from app.jobs.job_config import ASAAS_DEFAULTS
from app.jobs.sync_runner import SyncRunner
from app.services.asaas_charge_sync import AsaasChargeSyncService, AsaasSyncResult
from app.services.sync_job_status_store import SyncJobStart

logger = logging.getLogger("jurisync.asaas_sync")

JOB_NAME = "asaas_charges"


class AsaasChargeSyncRunner(SyncRunner):
    """No es incremental: sin referencia de entrada ni next_reference."""

    job_name = JOB_NAME
    env_prefix = "ASAAS"
    defaults = ASAAS_DEFAULTS

    def build_service(self) -> AsaasChargeSyncService:
        return AsaasChargeSyncService()

    def run_service(
        self,
        service: AsaasChargeSyncService,
        db: Session,
        start: SyncJobStart,
        reference: Optional[datetime],
    ) -> AsaasSyncResult:
        return service.sync_pending_charges(db)


def main() -> None:
    ap = argparse.ArgumentParser(description="Reconcilia cobranzas locales con Asaas")
    ap.add_argument("--manual", action="store_true", help="Marca el run como disparo manual")
    args = ap.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    runner = AsaasChargeSyncRunner()
    try:
        execution = runner.execute(manual=args.manual)
    except AlreadyRunningError as e:
        logger.warning("%s", e)
        raise SystemExit(2)
    except ConfigurationError as e:
        logger.error("%s", e)
        raise SystemExit(3)

    print(json.dumps(execution.result.to_dict(), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
