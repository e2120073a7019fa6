# app/services/notification_dispatch.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.core.enums import NotificationType
from app.db import SessionLocal
from app.models.notification import Notification

logger = logging.getLogger("jurisync.notifications")


@dataclass
class NotificationPayload:
    user_id: str
    title: str
    message: str
    category: str
    type: NotificationType = NotificationType.INFO
    extra: Dict[str, Any] = field(default_factory=dict)


# Contrato de publicación: lo que reciben los servicios de sync
Notifier = Callable[[NotificationPayload], None]


def create_notification(db: Session, payload: NotificationPayload) -> Notification:
    row = Notification(
        user_id=str(payload.user_id),
        title=payload.title[:255],
        message=payload.message,
        category=payload.category,
        type=NotificationType(payload.type).value,
        extra=dict(payload.extra or {}),
        read=False,
    )
    db.add(row)
    db.flush()
    return row


def publish_notification(payload: NotificationPayload, session_factory: Optional[Callable[[], Session]] = None) -> None:
    """
    Publica FUERA de la transacción del sync, con sesión propia.
    Errores se propagan: el llamador decide si son best-effort.
    """
    dbn: Session = (session_factory or SessionLocal)()
    try:
        create_notification(dbn, payload)
        dbn.commit()
        logger.debug("notification published user_id=%s category=%s", payload.user_id, payload.category)
    except Exception:
        dbn.rollback()
        raise
    finally:
        dbn.close()
