# app/services/asaas_charge_sync.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.clients.asaas_client import NOT_CONFIGURED_MESSAGE, AsaasClient, normalize_status
from app.core.enums import FlowStatus, NotificationType
from app.core.errors import ConfigurationError
from app.core.timeutils import ensure_utc, parse_source_timestamp, utcnow
from app.models.asaas_charge import AsaasCharge
from app.models.financial_flow import FinancialFlow
from app.services.notification_dispatch import NotificationPayload, Notifier, publish_notification
from app.services.subscription_service import (
    apply_subscription_overdue,
    apply_subscription_payment,
    find_company_id_for_financial_flow,
)

logger = logging.getLogger("jurisync.asaas_sync")

OPEN_PAYMENT_STATUSES: Tuple[str, ...] = (
    "PENDING",
    "PENDING_RETRY",
    "AWAITING_RISK_ANALYSIS",
    "AUTHORIZED",
    "BANK_SLIP_VIEWED",
    "OVERDUE",
)
PAID_PAYMENT_STATUSES: Tuple[str, ...] = ("RECEIVED", "RECEIVED_IN_CASH", "CONFIRMED")
REFUND_PAYMENT_STATUSES: Tuple[str, ...] = (
    "REFUNDED",
    "REFUND_REQUESTED",
    "REFUND_IN_PROGRESS",
    "CHARGEBACK_REQUESTED",
    "CHARGEBACK_DISPUTE",
    "AWAITING_CHARGEBACK_REVERSAL",
)
TRACKED_PAYMENT_STATUSES: Tuple[str, ...] = (
    OPEN_PAYMENT_STATUSES + PAID_PAYMENT_STATUSES + REFUND_PAYMENT_STATUSES
)

OVERDUE_STATUS = "OVERDUE"
PLAN_PAYMENT_ORIGIN = "plan_payment"
DEFAULT_PAGE_SIZE = 100

NOTIFY_USER_ID = "finance"
NOTIFY_CATEGORY = "payments"


@dataclass
class AsaasSyncResult:
    total_charges: int = 0
    payments_retrieved: int = 0
    charges_updated: int = 0
    flows_updated: int = 0
    fetched_statuses: List[str] = field(default_factory=lambda: list(TRACKED_PAYMENT_STATUSES))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_charges": self.total_charges,
            "payments_retrieved": self.payments_retrieved,
            "charges_updated": self.charges_updated,
            "flows_updated": self.flows_updated,
            "fetched_statuses": list(self.fetched_statuses),
        }


def flow_update_for_status(status: str, payment_date: Any) -> Optional[Tuple[FlowStatus, Optional[datetime]]]:
    """Estado del lanzamiento financiero según la familia del status del gateway."""
    s = normalize_status(status)
    if s in PAID_PAYMENT_STATUSES:
        return FlowStatus.PAID, parse_source_timestamp(payment_date)
    if s in REFUND_PAYMENT_STATUSES:
        return FlowStatus.REFUNDED, None
    if s in OPEN_PAYMENT_STATUSES:
        return FlowStatus.PENDING, None
    return None


def notification_type_for_status(status: str) -> NotificationType:
    s = normalize_status(status)
    if s in PAID_PAYMENT_STATUSES:
        return NotificationType.SUCCESS
    if s in REFUND_PAYMENT_STATUSES or s == OVERDUE_STATUS:
        return NotificationType.WARNING
    return NotificationType.INFO


def build_charge_notification(charge: AsaasCharge, payment: Dict[str, Any], status: str) -> NotificationPayload:
    s = normalize_status(status)
    due_date = payment.get("dueDate")
    payment_date = payment.get("paymentDate")

    parts = [f"Cobrança {payment.get('id')} agora está {s.replace('_', ' ').lower()}."]
    if payment_date:
        parts.append(f"Pagamento registrado em {payment_date}.")
    elif due_date:
        parts.append(f"Vencimento em {due_date}.")

    return NotificationPayload(
        user_id=NOTIFY_USER_ID,
        title=f"Cobrança atualizada ({s})",
        message=" ".join(parts),
        category=NOTIFY_CATEGORY,
        type=notification_type_for_status(s),
        extra={
            "charge_id": charge.id,
            "asaas_id": charge.asaas_id,
            "financial_flow_id": charge.financial_flow_id,
            "status": s,
            "due_date": due_date,
            "payment_date": payment_date,
            "value": payment.get("value"),
        },
    )


class AsaasChargeSyncService:
    """
    Reconciliación de cobranzas locales con el gateway Asaas.

    No es incremental: cada run recorre todas las cobranzas locales con status
    rastreado (las pagadas/estornadas también, por si hay contracargo).
    """

    def __init__(
        self,
        client: Optional[AsaasClient] = None,
        *,
        notifier: Optional[Notifier] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.client = client or AsaasClient.from_settings()
        self.notifier: Notifier = notifier or publish_notification
        self.page_size = max(1, int(page_size))

    def is_configured(self) -> bool:
        return self.client.is_configured()

    def _load_tracked_charges(self, db: Session) -> List[AsaasCharge]:
        return (
            db.query(AsaasCharge)
            .filter(AsaasCharge.status.in_(TRACKED_PAYMENT_STATUSES))
            .order_by(AsaasCharge.id.asc())
            .all()
        )

    def _fetch_payments(self) -> Dict[str, Dict[str, Any]]:
        # secuencial: la respuesta de la página N decide si hay N+1
        by_id: Dict[str, Dict[str, Any]] = {}
        offset = 0
        while True:
            page = self.client.list_payments(TRACKED_PAYMENT_STATUSES, limit=self.page_size, offset=offset)
            for payment in page.data:
                pid = payment.get("id")
                if pid:
                    by_id[str(pid)] = payment

            if not page.has_more:
                break
            step = page.limit if page.limit and page.limit > 0 else self.page_size
            offset += step
        return by_id

    def _should_touch_subscription(self, charge: AsaasCharge, flow: FinancialFlow) -> bool:
        extra = charge.extra if isinstance(charge.extra, dict) else {}
        if str(extra.get("origin") or "").strip().lower() == PLAN_PAYMENT_ORIGIN:
            return True
        return flow.client_id is not None

    def _update_subscription(
        self,
        db: Session,
        flow: FinancialFlow,
        status: str,
        payment_date: Optional[datetime],
        due_date: Any,
    ) -> None:
        company_id = find_company_id_for_financial_flow(db, flow.id)
        if not company_id:
            return
        if status in PAID_PAYMENT_STATUSES:
            apply_subscription_payment(db, company_id, payment_date or utcnow())
        elif status == OVERDUE_STATUS:
            apply_subscription_overdue(db, company_id, parse_source_timestamp(due_date))

    def _notify(self, payload: NotificationPayload) -> None:
        # best-effort: una notificación fallida no tumba el sync
        try:
            self.notifier(payload)
        except Exception:
            logger.exception(
                "Falha ao enviar notificação de cobrança do Asaas (ignorada). title=%s",
                payload.title,
            )

    def sync_pending_charges(self, db: Session) -> AsaasSyncResult:
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

        charges = self._load_tracked_charges(db)
        result = AsaasSyncResult(total_charges=len(charges))
        if not charges:
            return result

        payments = self._fetch_payments()
        result.payments_retrieved = len(payments)

        for charge in charges:
            payment = payments.get(charge.asaas_id)
            if payment is None:
                continue

            status = normalize_status(payment.get("status"))
            status_changed = bool(status) and status != normalize_status(charge.status)
            if status_changed:
                charge.status = status
                result.charges_updated += 1

            if charge.financial_flow_id:
                flow = db.get(FinancialFlow, charge.financial_flow_id)
                update = flow_update_for_status(status, payment.get("paymentDate")) if flow else None
                if flow is not None and update is not None:
                    flow_status, payment_date = update
                    flow.status = flow_status.value
                    if flow_status == FlowStatus.PAID:
                        # sin paymentDate en el remoto se conserva la fecha ya registrada
                        if payment_date is not None:
                            flow.payment_date = payment_date
                    else:
                        flow.payment_date = None
                    result.flows_updated += 1

                    # la suscripción solo se mueve en una transición de status
                    if status_changed and self._should_touch_subscription(charge, flow):
                        self._update_subscription(
                            db, flow, status, ensure_utc(flow.payment_date), payment.get("dueDate")
                        )

            # commit por cobranza antes de notificar
            db.commit()

            if status_changed:
                self._notify(build_charge_notification(charge, payment, status))

        logger.info(
            "asaas sync done charges=%s payments=%s charges_updated=%s flows_updated=%s",
            result.total_charges,
            result.payments_retrieved,
            result.charges_updated,
            result.flows_updated,
        )
        return result
