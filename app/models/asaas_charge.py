# app/models/asaas_charge.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import relationship

from app.db import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AsaasCharge(Base):
    """
    Espejo local de una cobranza de Asaas.
    La crea el módulo de facturación; aquí solo se actualiza el status.

    extra: metadata libre, p.ej. {"origin": "plan_payment"} para cobros de plan.
    """
    __tablename__ = "asaas_charges"

    id = Column(Integer, primary_key=True)
    asaas_id = Column(String(64), nullable=False, unique=True, index=True)

    financial_flow_id = Column(
        Integer,
        ForeignKey("financial_flows.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    financial_flow = relationship("FinancialFlow")

    status = Column(String(64), nullable=False, index=True)
    extra = Column(MutableDict.as_mutable(JSONType), nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
