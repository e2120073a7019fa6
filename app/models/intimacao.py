# app/models/intimacao.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from app.db import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Intimacao(Base):
    __tablename__ = "intimacoes"

    id = Column(Integer, primary_key=True)

    # clave natural: (origem, external_id)
    origem = Column(String(32), nullable=False)
    external_id = Column(String(255), nullable=False)

    numero_processo = Column(String(64), nullable=True, index=True)
    orgao = Column(Text, nullable=True)
    assunto = Column(Text, nullable=True)
    status = Column(String(128), nullable=True)

    prazo = Column(DateTime(timezone=True), nullable=True)
    recebida_em = Column(DateTime(timezone=True), nullable=True)
    fonte_criada_em = Column(DateTime(timezone=True), nullable=True)
    fonte_atualizada_em = Column(DateTime(timezone=True), nullable=True)

    payload = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        # CLAVE para el upsert idempotente por (origem, external_id)
        UniqueConstraint("origem", "external_id", name="uq_intimacoes_origem_external_id"),
    )
