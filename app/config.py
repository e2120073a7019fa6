# app/config.py
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- DB ---
    DATABASE_URL: str

    # --- HTTP hacia sistemas externos ---
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # --- Control plane (endpoints admin) ---
    # Si falta, los endpoints admin no exigen header (modo dev)
    ADMIN_API_TOKEN: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    # separados por coma
    CORS_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"

    # --- Scheduler ---
    SYNC_SCHEDULER_POLL_SECONDS: int = 15
    # 0 desactiva la liberación de locks huérfanos
    SYNC_JOB_STALE_SECONDS: int = 3600

    # --- Asaas (gateway de pagos) ---
    ASAAS_API_KEY: Optional[str] = None
    ASAAS_ACCESS_TOKEN: Optional[str] = None
    ASAAS_API_URL: Optional[str] = None
    ASAAS_BASE_URL: Optional[str] = None

    # --- Projudi (intimaciones) ---
    PROJUDI_BASE_URL: Optional[str] = None
    PROJUDI_USER: Optional[str] = None
    PROJUDI_PASSWORD: Optional[str] = None
    PROJUDI_LOGIN_PATH: str = "/login"
    PROJUDI_INTIMACOES_PATH: str = "/intimacoes"

    def cors_origins(self) -> List[str]:
        return [o.strip() for o in (self.CORS_ORIGINS or "").split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
