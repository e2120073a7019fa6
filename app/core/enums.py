# app/core/enums.py
from enum import Enum
from typing import Dict


class SubscriptionStatus(str, Enum):
    INACTIVE = "inactive"
    TRIALING = "trialing"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    EXPIRED = "expired"


class BlockingReason(str, Enum):
    INACTIVE = "inactive"
    TRIAL_EXPIRED = "trial_expired"
    GRACE_PERIOD_EXPIRED = "grace_period_expired"


class SubscriptionCadence(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class FlowStatus(str, Enum):
    # Guardado en DB tal cual (legado en portugués)
    PENDING = "pendente"
    PAID = "pago"
    REFUNDED = "estornado"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Días por ciclo
PERIOD_DAYS: Dict[SubscriptionCadence, int] = {
    SubscriptionCadence.MONTHLY: 30,
    SubscriptionCadence.ANNUAL: 365,
}

# Gracia que se graba al registrar pago/atraso
GRACE_DAYS: Dict[SubscriptionCadence, int] = {
    SubscriptionCadence.MONTHLY: 7,
    SubscriptionCadence.ANNUAL: 30,
}

TRIAL_DAYS = 14
# Gracia implícita al resolver el estado si no hay grace_expires_at persistido
DEFAULT_GRACE_DAYS = 10
