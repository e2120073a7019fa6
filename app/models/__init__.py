# app/models/__init__.py

from app.models.plan import Plan
from app.models.company import Company
from app.models.financial_flow import FinancialFlow
from app.models.asaas_charge import AsaasCharge
from app.models.intimacao import Intimacao
from app.models.notification import Notification
from app.models.sync_job_status import SyncJobStatus
from app.models.sync_job_run import SyncJobRun


__all__ = [
    "Plan",
    "Company",
    "FinancialFlow",
    "AsaasCharge",
    "Intimacao",
    "Notification",
    "SyncJobStatus",
    "SyncJobRun",
]
