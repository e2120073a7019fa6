# app/clients/projudi_client.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx

from app.config import settings
from app.core.errors import AuthenticationError, ConfigurationError, RequestError
from app.core.timeutils import utcnow

logger = logging.getLogger("jurisync.projudi")

NOT_CONFIGURED_MESSAGE = (
    "Configuração do Projudi ausente. Defina PROJUDI_BASE_URL, PROJUDI_USER e PROJUDI_PASSWORD."
)

TOKEN_KEYS = ("token", "accessToken", "access_token", "jwt", "idToken", "sessionId")
EXPIRES_KEYS = ("expires_in", "expiresIn", "ttl")


@dataclass
class AuthSession:
    token: Optional[str]
    cookie: Optional[str]
    expires_at: Optional[datetime]
    obtained_at: datetime
    raw: Any = None

    def auth_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.cookie:
            headers["Cookie"] = self.cookie
        return headers


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def parse_json_body(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Projudi devolvió un cuerpo que no es JSON (len=%s)", len(raw))
        return None


def extract_token(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for key in TOKEN_KEYS:
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_expires_in(body: Any) -> Optional[int]:
    if not isinstance(body, dict):
        return None
    for key in EXPIRES_KEYS:
        value = body.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                continue
    return None


def cookie_header_from(response: httpx.Response) -> Optional[str]:
    """Set-Cookie -> "a=1; b=2" (solo name=value de cada cookie)."""
    parts: List[str] = []
    for raw in response.headers.get_list("set-cookie"):
        name_value = raw.split(";", 1)[0].strip()
        if name_value:
            parts.append(name_value)
    return "; ".join(parts) if parts else None


class ProjudiClient:
    """
    Adaptador HTTP de Projudi: login y listado de intimaciones.
    Sin estado de sesión (eso vive en ProjudiNotificationService).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        *,
        login_path: str = "/login",
        intimacoes_path: str = "/intimacoes",
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        base = _clean(base_url)
        self.base_url = base.rstrip("/") if base else None
        self.username = _clean(username)
        self.password = _clean(password)
        self.login_path = (login_path or "/login").strip()
        self.intimacoes_path = (intimacoes_path or "/intimacoes").strip()
        self.timeout = float(timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS)
        self._http = http_client
        self.clock = clock

    @classmethod
    def from_settings(cls) -> "ProjudiClient":
        return cls(
            base_url=settings.PROJUDI_BASE_URL,
            username=settings.PROJUDI_USER,
            password=settings.PROJUDI_PASSWORD,
            login_path=settings.PROJUDI_LOGIN_PATH,
            intimacoes_path=settings.PROJUDI_INTIMACOES_PATH,
        )

    def is_configured(self) -> bool:
        return bool(self.base_url and self.username and self.password)

    def build_url(self, path: str) -> str:
        if not self.base_url:
            raise ConfigurationError("URL base do Projudi não configurada.")
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http is not None:
            return self._http.request(method, url, timeout=self.timeout, **kwargs)
        with httpx.Client(timeout=self.timeout) as client:
            return client.request(method, url, **kwargs)

    def _login_attempts(self) -> List[Dict[str, Any]]:
        return [
            {
                "headers": {"Content-Type": "application/json", "Accept": "application/json"},
                "json": {"username": self.username, "password": self.password},
            },
            {
                "headers": {"Accept": "application/json"},
                "data": {
                    "username": self.username or "",
                    "password": self.password or "",
                    "usuario": self.username or "",
                    "senha": self.password or "",
                },
            },
        ]

    def authenticate(self) -> AuthSession:
        """
        Intenta JSON y luego form-encoded.
          - 401/403: AuthenticationError terminal (no se prueba el siguiente formato)
          - otro 4xx o error de transporte: se registra y se prueba el siguiente
          - 5xx: RequestError
        """
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

        url = self.build_url(self.login_path)
        last_error: Optional[Exception] = None

        for attempt in self._login_attempts():
            try:
                resp = self._request("POST", url, **attempt)
            except httpx.TransportError as e:
                logger.warning("Projudi login transport error: %s", e)
                last_error = e
                continue

            if resp.status_code in (401, 403):
                raise AuthenticationError(
                    "Credenciais inválidas ao autenticar no Projudi. Verifique usuário e senha configurados."
                )
            if 400 <= resp.status_code < 500:
                last_error = RequestError(
                    f"Falha na autenticação do Projudi (status {resp.status_code}).",
                    status_code=resp.status_code,
                    body=resp.text,
                )
                continue
            if not (200 <= resp.status_code < 300):
                raise RequestError(
                    f"Erro ao autenticar no Projudi (status {resp.status_code}).",
                    status_code=resp.status_code,
                    body=resp.text,
                )

            body = parse_json_body(resp.text)
            token = extract_token(body)
            cookie = cookie_header_from(resp)
            if not token and not cookie:
                raise AuthenticationError(
                    "Resposta de autenticação do Projudi não retornou token nem cookies de sessão."
                )

            now = self.clock()
            expires_in = extract_expires_in(body)
            return AuthSession(
                token=token,
                cookie=cookie,
                expires_at=now + timedelta(seconds=expires_in) if expires_in else None,
                obtained_at=now,
                raw=body if body is not None else resp.text,
            )

        if last_error is not None:
            raise last_error
        raise AuthenticationError("Não foi possível autenticar no Projudi.")

    def list_intimacoes(self, session: AuthSession, updated_after: datetime) -> Any:
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

        headers = {"Accept": "application/json"}
        headers.update(session.auth_headers())

        resp = self._request(
            "GET",
            self.build_url(self.intimacoes_path),
            params={"updatedAfter": updated_after.isoformat().replace("+00:00", "Z")},
            headers=headers,
        )

        if resp.status_code in (401, 403):
            raise AuthenticationError("Falha ao autenticar na API do Projudi. Verifique as credenciais.")
        if resp.status_code < 200 or resp.status_code >= 300:
            raise RequestError(
                f"Falha ao consultar intimações do Projudi (status {resp.status_code}).",
                status_code=resp.status_code,
                body=resp.text,
            )
        return parse_json_body(resp.text)
