# app/core/errors.py
from __future__ import annotations

from typing import Any, Optional


class SyncError(Exception):
    """Base de los errores del subsistema de sincronización."""


class ConfigurationError(SyncError):
    """
    Faltan credenciales/URLs, o el sistema remoto rechaza las credenciales de plano.
    No se reintenta automáticamente: requiere cambiar configuración.
    """


class AlreadyRunningError(SyncError):
    def __init__(self, job_name: str) -> None:
        super().__init__(f'Sync job "{job_name}" is already running.')
        self.job_name = job_name


class AuthenticationError(SyncError):
    """Credenciales rechazadas por Projudi después de conectar."""


class RequestError(SyncError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
