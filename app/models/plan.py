# app/models/plan.py
from __future__ import annotations

from sqlalchemy import Column, Integer, Numeric, String

from app.db import Base


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=True)

    monthly_price = Column(Numeric(12, 2), nullable=True)
    annual_price = Column(Numeric(12, 2), nullable=True)
