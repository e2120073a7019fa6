# app/jobs/projudi_sync.py
from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import AlreadyRunningError, ConfigurationError
from app.core.timeutils import parse_source_timestamp
from app.jobs.job_config import PROJUDI_DEFAULTS
from app.jobs.sync_runner import SyncRunner
from app.services.projudi_notifications import FetchIntimacoesResult, ProjudiNotificationService
from app.services.sync_job_status_store import SyncJobStart

logger = logging.getLogger("jurisync.projudi_sync")

JOB_NAME = "projudi_intimacoes"


class ProjudiSyncRunner(SyncRunner):
    """
    Run incremental: pide intimaciones actualizadas después de la referencia
    y deja como próxima referencia now - overlap (watermark con margen).
    """

    job_name = JOB_NAME
    env_prefix = "PROJUDI"
    defaults = PROJUDI_DEFAULTS

    def build_service(self) -> ProjudiNotificationService:
        return ProjudiNotificationService()

    def run_service(
        self,
        service: ProjudiNotificationService,
        db: Session,
        start: SyncJobStart,
        reference: Optional[datetime],
    ) -> FetchIntimacoesResult:
        # referencia manual > watermark guardado > now - lookback
        effective = reference or start.reference_used
        if effective is None:
            effective = self.clock() - timedelta(milliseconds=start.lookback_ms or 0)
        return service.fetch_new_intimacoes(db, effective)

    def compute_next_reference(self, start: SyncJobStart, finished_at: datetime) -> Optional[datetime]:
        return finished_at - timedelta(milliseconds=start.overlap_ms or 0)


def main() -> None:
    ap = argparse.ArgumentParser(description="Sincroniza intimaciones de Projudi")
    ap.add_argument("--manual", action="store_true", help="Marca el run como disparo manual")
    ap.add_argument("--reference", type=str, default=None, help="ISO8601; pisa el watermark guardado")
    args = ap.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    reference = None
    if args.reference:
        reference = parse_source_timestamp(args.reference)
        if reference is None:
            ap.error(f"--reference inválido: {args.reference}")

    runner = ProjudiSyncRunner()
    try:
        execution = runner.execute(manual=args.manual, reference=reference)
    except AlreadyRunningError as e:
        logger.warning("%s", e)
        raise SystemExit(2)
    except ConfigurationError as e:
        logger.error("%s", e)
        raise SystemExit(3)

    summary = execution.result.to_dict()
    summary.pop("items", None)
    print(json.dumps(summary, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
