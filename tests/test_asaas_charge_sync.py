from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.clients.asaas_client import PaymentsPage
from app.core.errors import ConfigurationError
from app.core.timeutils import ensure_utc
from app.models.asaas_charge import AsaasCharge
from app.models.company import Company
from app.models.financial_flow import FinancialFlow
from app.models.notification import Notification
from app.models.plan import Plan
from app.services.asaas_charge_sync import (
    TRACKED_PAYMENT_STATUSES,
    AsaasChargeSyncService,
    flow_update_for_status,
    notification_type_for_status,
)


class FakeAsaasClient:
    def __init__(self, pages=None, configured=True):
        self.pages = list(pages or [])
        self.configured = configured
        self.calls = []

    def is_configured(self):
        return self.configured

    def list_payments(self, statuses, *, limit=None, offset=None):
        self.calls.append({"statuses": list(statuses), "limit": limit, "offset": offset})
        if not self.pages:
            return PaymentsPage()
        return self.pages.pop(0)


def _seed(db, *, charge_status="PENDING", origin="plan_payment", client_id=None, cadence="monthly"):
    plan = Plan(name="Pro", monthly_price=Decimal("99.90"), annual_price=None)
    db.add(plan)
    db.flush()
    company = Company(name="Escritório", plan_id=plan.id, active=True, subscription_cadence=cadence)
    db.add(company)
    db.flush()
    flow = FinancialFlow(status="pendente", company_id=company.id, client_id=client_id)
    db.add(flow)
    db.flush()
    extra = {"origin": origin} if origin else {}
    charge = AsaasCharge(asaas_id="pay_1", financial_flow_id=flow.id, status=charge_status, extra=extra)
    db.add(charge)
    db.commit()
    return company, flow, charge


def _service(client, notified):
    return AsaasChargeSyncService(client, notifier=notified.append, page_size=2)


def test_no_tracked_charges_never_calls_gateway(db):
    client = FakeAsaasClient()
    result = _service(client, []).sync_pending_charges(db)

    assert client.calls == []
    assert result.to_dict() == {
        "total_charges": 0,
        "payments_retrieved": 0,
        "charges_updated": 0,
        "flows_updated": 0,
        "fetched_statuses": list(TRACKED_PAYMENT_STATUSES),
    }


def test_unconfigured_fails_fast(db):
    with pytest.raises(ConfigurationError):
        _service(FakeAsaasClient(configured=False), []).sync_pending_charges(db)


def test_overdue_converges_with_one_notification(db):
    company, flow, charge = _seed(db)
    client = FakeAsaasClient(
        [PaymentsPage(data=[{"id": "pay_1", "status": "OVERDUE", "dueDate": "2026-03-01"}], has_more=False)]
    )
    notified = []

    result = _service(client, notified).sync_pending_charges(db)

    db.expire_all()
    assert db.get(AsaasCharge, charge.id).status == "OVERDUE"
    assert db.get(FinancialFlow, flow.id).status == "pendente"
    assert result.charges_updated == 1
    assert result.flows_updated == 1

    assert len(notified) == 1
    note = notified[0]
    assert note.category == "payments"
    assert note.user_id == "finance"
    assert note.type.value == "warning"
    assert note.title == "Cobrança atualizada (OVERDUE)"
    assert "Vencimento em 2026-03-01." in note.message

    # gracia desde el vencimiento
    comp = db.get(Company, company.id)
    assert comp.grace_expires_at is not None
    assert ensure_utc(comp.current_period_end) is not None

    # segundo sync con el mismo remoto: sin cambio de status, sin nueva notificación
    client.pages = [PaymentsPage(data=[{"id": "pay_1", "status": "OVERDUE"}], has_more=False)]
    result2 = _service(client, notified).sync_pending_charges(db)
    assert result2.charges_updated == 0
    assert len(notified) == 1


def test_received_marks_flow_paid_and_advances_subscription(db):
    company, flow, charge = _seed(db)
    client = FakeAsaasClient(
        [PaymentsPage(data=[{"id": "pay_1", "status": "RECEIVED", "paymentDate": "2026-03-05T10:00:00Z"}])]
    )
    notified = []

    _service(client, notified).sync_pending_charges(db)

    db.expire_all()
    paid_at = datetime(2026, 3, 5, 10, 0, tzinfo=timezone.utc)
    f = db.get(FinancialFlow, flow.id)
    assert f.status == "pago"
    assert ensure_utc(f.payment_date) == paid_at

    comp = db.get(Company, company.id)
    assert ensure_utc(comp.current_period_start) == paid_at
    assert ensure_utc(comp.current_period_end) == paid_at + timedelta(days=30)
    assert ensure_utc(comp.grace_expires_at) == paid_at + timedelta(days=37)
    assert comp.trial_started_at is None
    assert comp.active is True

    assert notified[0].type.value == "success"
    assert "Pagamento registrado em 2026-03-05T10:00:00Z." in notified[0].message


def test_refund_marks_flow_estornado(db):
    _, flow, _ = _seed(db, charge_status="RECEIVED")
    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "REFUNDED"}])])
    notified = []

    _service(client, notified).sync_pending_charges(db)

    db.expire_all()
    assert db.get(FinancialFlow, flow.id).status == "estornado"
    assert notified[0].type.value == "warning"


def test_subscription_untouched_without_plan_origin_or_client(db):
    company, flow, _ = _seed(db, origin=None, client_id=None)
    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "CONFIRMED", "paymentDate": "2026-03-05"}])])

    _service(client, []).sync_pending_charges(db)

    db.expire_all()
    assert db.get(FinancialFlow, flow.id).status == "pago"
    assert db.get(Company, company.id).current_period_end is None


def test_flow_with_client_drives_subscription(db):
    company, _, _ = _seed(db, origin=None, client_id=42)
    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "CONFIRMED", "paymentDate": "2026-03-05"}])])

    _service(client, []).sync_pending_charges(db)

    db.expire_all()
    assert db.get(Company, company.id).current_period_end is not None


def test_paginates_until_no_more_pages(db):
    _seed(db)
    client = FakeAsaasClient(
        [
            PaymentsPage(data=[{"id": "other_1", "status": "PENDING"}], has_more=True, limit=2),
            PaymentsPage(data=[{"id": "other_2", "status": "PENDING"}], has_more=True, limit=None),
            PaymentsPage(data=[{"id": "pay_1", "status": "PENDING"}], has_more=False),
        ]
    )

    result = _service(client, []).sync_pending_charges(db)

    assert [c["offset"] for c in client.calls] == [0, 2, 4]
    assert all(c["statuses"] == list(TRACKED_PAYMENT_STATUSES) for c in client.calls)
    assert result.payments_retrieved == 3
    assert result.charges_updated == 0


def test_notifier_failure_is_swallowed(db):
    _, _, charge = _seed(db)
    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "AUTHORIZED"}])])

    def broken_notifier(payload):
        raise RuntimeError("notification backend down")

    service = AsaasChargeSyncService(client, notifier=broken_notifier)
    result = service.sync_pending_charges(db)

    db.expire_all()
    assert result.charges_updated == 1
    assert db.get(AsaasCharge, charge.id).status == "AUTHORIZED"


def test_default_notifier_persists_payments_notification(db):
    _seed(db)
    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "OVERDUE"}])])

    AsaasChargeSyncService(client).sync_pending_charges(db)

    rows = db.query(Notification).all()
    assert len(rows) == 1
    assert rows[0].category == "payments"
    assert rows[0].type == "warning"
    assert rows[0].extra["asaas_id"] == "pay_1"


def test_status_family_helpers():
    assert flow_update_for_status("RECEIVED_IN_CASH", "2026-01-02")[0].value == "pago"
    assert flow_update_for_status("CHARGEBACK_DISPUTE", None)[0].value == "estornado"
    assert flow_update_for_status("BANK_SLIP_VIEWED", None)[0].value == "pendente"
    assert flow_update_for_status("DELETED", None) is None

    assert notification_type_for_status("CONFIRMED").value == "success"
    assert notification_type_for_status("OVERDUE").value == "warning"
    assert notification_type_for_status("REFUND_REQUESTED").value == "warning"
    assert notification_type_for_status("PENDING").value == "info"


def test_repeated_paid_status_without_payment_date_keeps_period(db):
    company, _, _ = _seed(db)
    remote = [{"id": "pay_1", "status": "RECEIVED"}]

    _service(FakeAsaasClient([PaymentsPage(data=remote)]), []).sync_pending_charges(db)
    db.expire_all()
    first = db.get(Company, company.id)
    end_1, grace_1 = first.current_period_end, first.grace_expires_at
    assert end_1 is not None

    _service(FakeAsaasClient([PaymentsPage(data=remote)]), []).sync_pending_charges(db)
    db.expire_all()
    second = db.get(Company, company.id)
    assert second.current_period_end == end_1
    assert second.grace_expires_at == grace_1


def test_already_paid_charge_does_not_touch_subscription(db):
    company, _, _ = _seed(db, charge_status="RECEIVED")
    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "RECEIVED"}])])

    result = _service(client, []).sync_pending_charges(db)

    db.expire_all()
    assert result.charges_updated == 0
    assert db.get(Company, company.id).current_period_end is None


def test_old_overdue_charge_does_not_extend_grace(db):
    company, _, _ = _seed(db, charge_status="OVERDUE")
    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "OVERDUE", "dueDate": "2026-03-01"}])])

    _service(client, []).sync_pending_charges(db)

    db.expire_all()
    assert db.get(Company, company.id).grace_expires_at is None


def test_refund_clears_flow_payment_date(db):
    _, flow, _ = _seed(db, charge_status="RECEIVED")
    f = db.get(FinancialFlow, flow.id)
    f.status = "pago"
    f.payment_date = datetime(2026, 3, 5, 10, 0, tzinfo=timezone.utc)
    db.commit()

    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "REFUNDED"}])])
    _service(client, []).sync_pending_charges(db)

    db.expire_all()
    f = db.get(FinancialFlow, flow.id)
    assert f.status == "estornado"
    assert f.payment_date is None


def test_paid_without_payment_date_keeps_recorded_date(db):
    _, flow, _ = _seed(db, charge_status="RECEIVED")
    paid_at = datetime(2026, 3, 5, 10, 0, tzinfo=timezone.utc)
    f = db.get(FinancialFlow, flow.id)
    f.status = "pago"
    f.payment_date = paid_at
    db.commit()

    client = FakeAsaasClient([PaymentsPage(data=[{"id": "pay_1", "status": "RECEIVED"}])])
    _service(client, []).sync_pending_charges(db)

    db.expire_all()
    assert ensure_utc(db.get(FinancialFlow, flow.id).payment_date) == paid_at
