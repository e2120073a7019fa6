# app/models/financial_flow.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.db import Base


class FinancialFlow(Base):
    __tablename__ = "financial_flows"

    id = Column(Integer, primary_key=True)

    # pendente | pago | estornado
    status = Column(String(32), nullable=False, default="pendente")
    payment_date = Column(DateTime(timezone=True), nullable=True)

    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True)
    # cliente dueño del lanzamiento (opcional)
    client_id = Column(Integer, nullable=True, index=True)
