# app/clients/asaas_client.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app.config import settings
from app.core.errors import ConfigurationError, RequestError

logger = logging.getLogger("jurisync.asaas")

DEFAULT_API_URL = "https://www.asaas.com/api/v3"

NOT_CONFIGURED_MESSAGE = (
    "Integração com o Asaas não está configurada. "
    "Defina ASAAS_API_KEY e ASAAS_API_URL conforme necessário."
)


def normalize_status(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


def _first_non_empty(*values: Optional[str]) -> Optional[str]:
    for v in values:
        if v is not None and str(v).strip():
            return str(v).strip()
    return None


@dataclass
class PaymentsPage:
    data: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    total_count: int = 0
    limit: Optional[int] = None
    offset: Optional[int] = None


class AsaasClient:
    """
    Cliente HTTP mínimo del gateway Asaas (solo listado de cobranzas).

    http_client es inyectable (tests usan httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = _first_non_empty(api_key)
        self.api_url = (_first_non_empty(api_url) or DEFAULT_API_URL).rstrip("/")
        self.timeout = float(timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS)
        self._http = http_client

    @classmethod
    def from_settings(cls) -> "AsaasClient":
        return cls(
            api_key=_first_non_empty(settings.ASAAS_API_KEY, settings.ASAAS_ACCESS_TOKEN),
            api_url=_first_non_empty(settings.ASAAS_API_URL, settings.ASAAS_BASE_URL),
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "access_token": self.api_key or "",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _get(self, path: str, params: List[tuple]) -> httpx.Response:
        url = f"{self.api_url}{path}"
        if self._http is not None:
            return self._http.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(url, params=params, headers=self._headers())

    def list_payments(
        self,
        statuses: Iterable[str],
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> PaymentsPage:
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

        # dedupe manteniendo orden
        wanted: List[str] = []
        for s in statuses:
            ns = normalize_status(s)
            if ns and ns not in wanted:
                wanted.append(ns)
        if not wanted:
            return PaymentsPage(limit=limit, offset=offset)

        params: List[tuple] = [("status", s) for s in wanted]
        if limit is not None:
            params.append(("limit", str(int(limit))))
        if offset is not None:
            params.append(("offset", str(int(offset))))

        resp = self._get("/payments", params)

        if resp.status_code in (401, 403):
            raise ConfigurationError(
                f"Asaas rejeitou as credenciais ({resp.status_code}). Verifique ASAAS_API_KEY."
            )
        if resp.status_code < 200 or resp.status_code >= 300:
            raise RequestError(
                f"Falha ao consultar cobranças no Asaas: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            body = resp.json()
        except ValueError:
            body = None

        if not isinstance(body, dict) or not isinstance(body.get("data"), list):
            logger.warning("unexpected payments body from Asaas (offset=%s)", offset)
            return PaymentsPage(
                limit=body.get("limit") if isinstance(body, dict) else None,
                offset=body.get("offset") if isinstance(body, dict) else None,
            )

        data: List[Dict[str, Any]] = []
        for item in body["data"]:
            if not isinstance(item, dict):
                continue
            row = dict(item)
            row["status"] = normalize_status(item.get("status"))
            data.append(row)

        total = body.get("totalCount")
        page_limit = body.get("limit")
        page_offset = body.get("offset")
        return PaymentsPage(
            data=data,
            has_more=bool(body.get("hasMore")),
            total_count=int(total) if isinstance(total, int) else len(data),
            limit=int(page_limit) if isinstance(page_limit, int) else limit,
            offset=int(page_offset) if isinstance(page_offset, int) else offset,
        )
