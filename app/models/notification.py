# app/models/notification.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, false

from app.db import Base, JSONType


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(64), nullable=False, index=True)
    # info | success | warning | error
    type = Column(String(16), nullable=False, default="info")

    extra = Column(JSONType, nullable=True)
    read = Column(Boolean, nullable=False, default=False, server_default=false())

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
