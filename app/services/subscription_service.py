# app/services/subscription_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.enums import (
    DEFAULT_GRACE_DAYS,
    GRACE_DAYS,
    PERIOD_DAYS,
    TRIAL_DAYS,
    BlockingReason,
    SubscriptionCadence,
    SubscriptionStatus,
)
from app.core.timeutils import ensure_utc, isoformat_or_none, utcnow
from app.models.company import Company
from app.models.financial_flow import FinancialFlow
from app.models.plan import Plan

logger = logging.getLogger("jurisync.subscription")


# =========================================================
# Estado derivado (puro)
# =========================================================

@dataclass(frozen=True)
class ResolvedSubscription:
    plan_id: Optional[int]
    status: SubscriptionStatus
    cadence: Optional[SubscriptionCadence]
    started_at: Optional[datetime]
    trial_ends_at: Optional[datetime]
    current_period_ends_at: Optional[datetime]
    grace_period_ends_at: Optional[datetime]
    is_in_good_standing: bool
    blocking_reason: Optional[BlockingReason]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "status": self.status.value,
            "cadence": self.cadence.value if self.cadence else None,
            "started_at": isoformat_or_none(self.started_at),
            "trial_ends_at": isoformat_or_none(self.trial_ends_at),
            "current_period_ends_at": isoformat_or_none(self.current_period_ends_at),
            "grace_period_ends_at": isoformat_or_none(self.grace_period_ends_at),
            "is_in_good_standing": self.is_in_good_standing,
            "blocking_reason": self.blocking_reason.value if self.blocking_reason else None,
        }


def parse_cadence(value: Any) -> Optional[SubscriptionCadence]:
    if isinstance(value, SubscriptionCadence):
        return value
    if not isinstance(value, str):
        return None
    try:
        return SubscriptionCadence(value.strip().lower())
    except ValueError:
        return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _max_dt(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def calculate_trial_end(start: datetime) -> datetime:
    return start + timedelta(days=TRIAL_DAYS)


def resolve_subscription(row: Any, now: Optional[datetime] = None) -> ResolvedSubscription:
    """
    Mapea los campos temporales de la empresa a un estado de suscripción.
    Reglas en orden (la primera que aplica gana):
      1) sin plan -> inactive (bloqueado)
      2) active=False -> inactive (bloqueado)
      3) now < fin de trial -> trialing
      4) now <= fin del período -> active
      5) now <= fin de gracia -> grace_period
      6) sin ninguna fecha límite -> active (empresa no gestionada)
      7) expired, con motivo

    Pura: no escribe nada. row puede ser un Company o cualquier objeto con esos atributos.
    """
    now = ensure_utc(now) or utcnow()

    plan_id = _to_int(getattr(row, "plan_id", None))
    active = getattr(row, "active", None)
    cadence = parse_cadence(getattr(row, "subscription_cadence", None))

    trial_started_at = ensure_utc(getattr(row, "trial_started_at", None))
    trial_ends_at = ensure_utc(getattr(row, "trial_ends_at", None))
    period_start = ensure_utc(getattr(row, "current_period_start", None))
    period_end = ensure_utc(getattr(row, "current_period_end", None))
    grace_persisted = ensure_utc(getattr(row, "grace_expires_at", None))

    if trial_ends_at is None and trial_started_at is not None:
        trial_ends_at = calculate_trial_end(trial_started_at)

    grace_computed = period_end + timedelta(days=DEFAULT_GRACE_DAYS) if period_end else None
    # nunca acortar una gracia extendida a mano
    grace_ends_at = _max_dt(grace_persisted, grace_computed)

    started_at = period_start or trial_started_at

    def _build(status: SubscriptionStatus, good: bool, reason: Optional[BlockingReason]) -> ResolvedSubscription:
        return ResolvedSubscription(
            plan_id=plan_id,
            status=status,
            cadence=cadence,
            started_at=started_at,
            trial_ends_at=trial_ends_at,
            current_period_ends_at=period_end,
            grace_period_ends_at=grace_ends_at,
            is_in_good_standing=good,
            blocking_reason=reason,
        )

    if plan_id is None or active is False:
        return _build(SubscriptionStatus.INACTIVE, False, BlockingReason.INACTIVE)

    if trial_ends_at is not None and now < trial_ends_at:
        return _build(SubscriptionStatus.TRIALING, True, None)

    if period_end is not None and now <= period_end:
        return _build(SubscriptionStatus.ACTIVE, True, None)

    if grace_ends_at is not None and now <= grace_ends_at:
        return _build(SubscriptionStatus.GRACE_PERIOD, True, None)

    if trial_ends_at is None and period_end is None and grace_ends_at is None:
        return _build(SubscriptionStatus.ACTIVE, True, None)

    if grace_ends_at is not None and now > grace_ends_at:
        reason = BlockingReason.GRACE_PERIOD_EXPIRED
    elif trial_ends_at is not None and now >= trial_ends_at and period_end is None:
        reason = BlockingReason.TRIAL_EXPIRED
    else:
        reason = BlockingReason.INACTIVE
    return _build(SubscriptionStatus.EXPIRED, False, reason)


# =========================================================
# Períodos / cadencia
# =========================================================

def calculate_billing_period(start: datetime, cadence: SubscriptionCadence) -> Tuple[datetime, datetime]:
    start = ensure_utc(start)
    return start, start + timedelta(days=PERIOD_DAYS[cadence])


def calculate_grace_deadline(period_end: datetime, cadence: SubscriptionCadence) -> datetime:
    return ensure_utc(period_end) + timedelta(days=GRACE_DAYS[cadence])


def _has_positive_amount(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return Decimal(str(value).strip()) > 0
    except (InvalidOperation, ValueError):
        return False


def resolve_plan_cadence(
    db: Session,
    plan_id: int,
    preferred: Optional[SubscriptionCadence] = None,
) -> SubscriptionCadence:
    """Deduce la cadencia por los precios del plan (solo mensual / solo anual)."""
    plan = db.get(Plan, plan_id)
    if plan is None:
        raise LookupError(f"Plano informado não foi encontrado (id={plan_id}).")

    has_monthly = _has_positive_amount(plan.monthly_price)
    has_annual = _has_positive_amount(plan.annual_price)

    if preferred == SubscriptionCadence.MONTHLY and has_monthly:
        return preferred
    if preferred == SubscriptionCadence.ANNUAL and has_annual:
        return preferred
    if has_monthly and not has_annual:
        return SubscriptionCadence.MONTHLY
    if has_annual and not has_monthly:
        return SubscriptionCadence.ANNUAL
    return preferred or SubscriptionCadence.MONTHLY


# =========================================================
# Lecturas
# =========================================================

@dataclass(frozen=True)
class CompanySubscription:
    company_id: int
    plan_id: Optional[int]
    cadence: Optional[SubscriptionCadence]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    grace_expires_at: Optional[datetime]


def find_company_id_for_financial_flow(db: Session, financial_flow_id: Optional[int]) -> Optional[int]:
    if not financial_flow_id or int(financial_flow_id) <= 0:
        return None
    row = db.query(FinancialFlow.company_id).filter(FinancialFlow.id == int(financial_flow_id)).first()
    if not row:
        return None
    return _to_int(row[0])


def fetch_company_subscription(db: Session, company_id: Optional[int]) -> Optional[CompanySubscription]:
    if not company_id or int(company_id) <= 0:
        return None
    company = db.get(Company, int(company_id))
    if company is None:
        return None
    return CompanySubscription(
        company_id=int(company.id),
        plan_id=_to_int(company.plan_id),
        cadence=parse_cadence(company.subscription_cadence),
        current_period_start=ensure_utc(company.current_period_start),
        current_period_end=ensure_utc(company.current_period_end),
        grace_expires_at=ensure_utc(company.grace_expires_at),
    )


def _resolve_effective_cadence(
    db: Session,
    snapshot: CompanySubscription,
    hint: Optional[SubscriptionCadence],
) -> SubscriptionCadence:
    if hint:
        return hint
    if snapshot.cadence:
        return snapshot.cadence
    if snapshot.plan_id:
        try:
            return resolve_plan_cadence(db, snapshot.plan_id)
        except LookupError:
            logger.warning(
                "could not resolve plan cadence (company_id=%s plan_id=%s), assuming monthly",
                snapshot.company_id,
                snapshot.plan_id,
            )
    return SubscriptionCadence.MONTHLY


# =========================================================
# Escrituras (no hacen commit: lo decide el llamador)
# =========================================================

def apply_subscription_payment(
    db: Session,
    company_id: int,
    payment_date: datetime,
    cadence_hint: Optional[SubscriptionCadence] = None,
) -> bool:
    """
    Pago confirmado: nuevo período desde la fecha de pago, gracia, fin del trial y active=True.
    Repetirlo con la misma fecha deja el mismo estado.
    """
    snapshot = fetch_company_subscription(db, company_id)
    if snapshot is None or payment_date is None:
        return False

    cadence = _resolve_effective_cadence(db, snapshot, cadence_hint)
    start, end = calculate_billing_period(payment_date, cadence)

    company = db.get(Company, snapshot.company_id)
    company.current_period_start = start
    company.current_period_end = end
    company.grace_expires_at = calculate_grace_deadline(end, cadence)
    company.subscription_cadence = cadence.value
    company.trial_started_at = None
    company.trial_ends_at = None
    company.active = True
    db.flush()

    logger.info(
        "subscription payment applied company_id=%s cadence=%s period_end=%s",
        snapshot.company_id,
        cadence.value,
        end.isoformat(),
    )
    return True


def apply_subscription_overdue(
    db: Session,
    company_id: int,
    reference_date: Optional[datetime] = None,
    cadence_hint: Optional[SubscriptionCadence] = None,
) -> bool:
    """Cobro vencido: la gracia corre desde el vencimiento (o fin del período / ahora)."""
    snapshot = fetch_company_subscription(db, company_id)
    if snapshot is None:
        return False

    cadence = _resolve_effective_cadence(db, snapshot, cadence_hint)
    base = ensure_utc(reference_date) or snapshot.current_period_end or utcnow()

    company = db.get(Company, snapshot.company_id)
    company.grace_expires_at = calculate_grace_deadline(base, cadence)
    if company.current_period_end is None:
        company.current_period_end = base
    if not company.subscription_cadence:
        company.subscription_cadence = cadence.value
    db.flush()

    logger.info(
        "subscription overdue applied company_id=%s grace_expires_at=%s",
        snapshot.company_id,
        company.grace_expires_at.isoformat(),
    )
    return True
