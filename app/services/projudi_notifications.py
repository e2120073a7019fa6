# app/services/projudi_notifications.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.projudi_client import NOT_CONFIGURED_MESSAGE, AuthSession, ProjudiClient
from app.core.errors import AuthenticationError, ConfigurationError
from app.core.timeutils import ensure_utc, isoformat_or_none, parse_source_timestamp, utcnow
from app.models.intimacao import Intimacao

logger = logging.getLogger("jurisync.projudi")

ORIGEM = "projudi"
DEFAULT_SESSION_TTL_SECONDS = 30 * 60
# margen antes del vencimiento para reutilizar una sesión
SESSION_EXPIRY_MARGIN = timedelta(seconds=60)
DEFAULT_LOOKBACK = timedelta(hours=24)

ENVELOPE_KEYS = ("items", "data", "results", "intimacoes", "content")


# =========================================================
# Normalización de payloads
# =========================================================

def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        v = value.strip()
        return v or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    return None


# (campo, claves candidatas en orden, parser). Gana la primera clave cuyo valor parsea.
FIELD_CANDIDATES: Sequence[Tuple[str, Sequence[str], Callable[[Any], Any]]] = (
    (
        "external_id",
        ("id", "codigo", "numero", "numeroIntimacao", "guid", "chave", "intimacaoId", "idIntimacao", "id_intimacao"),
        _as_text,
    ),
    ("numero_processo", ("numeroProcesso", "processo", "processNumber", "processoNumero"), _as_text),
    ("orgao", ("orgao", "orgaoJulgador", "vara", "comarca"), _as_text),
    ("assunto", ("assunto", "descricao", "descricaoIntimacao", "detalhes"), _as_text),
    ("status", ("status", "situacao", "situacaoIntimacao"), _as_text),
    ("prazo", ("prazo", "dataPrazo", "prazoLimite", "deadline"), parse_source_timestamp),
    ("recebida_em", ("recebidaEm", "dataRecebimento", "dataDisponibilizacao"), parse_source_timestamp),
    ("fonte_criada_em", ("criadoEm", "dataCriacao", "createdAt", "dataEnvio"), parse_source_timestamp),
    ("fonte_atualizada_em", ("atualizadoEm", "dataAtualizacao", "updatedAt"), parse_source_timestamp),
)

# columnas que se fusionan con COALESCE en el upsert
MERGE_FIELDS = (
    "numero_processo",
    "orgao",
    "assunto",
    "status",
    "prazo",
    "recebida_em",
    "fonte_criada_em",
    "fonte_atualizada_em",
    "payload",
)


@dataclass(frozen=True)
class NormalizedIntimacao:
    external_id: str
    numero_processo: Optional[str] = None
    orgao: Optional[str] = None
    assunto: Optional[str] = None
    status: Optional[str] = None
    prazo: Optional[datetime] = None
    recebida_em: Optional[datetime] = None
    fonte_criada_em: Optional[datetime] = None
    fonte_atualizada_em: Optional[datetime] = None
    payload: Optional[Dict[str, Any]] = None

    @property
    def source_timestamp(self) -> Optional[datetime]:
        return self.fonte_atualizada_em or self.fonte_criada_em or self.recebida_em or self.prazo


def extract_items(body: Any) -> List[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ENVELOPE_KEYS:
            candidate = body.get(key)
            if isinstance(candidate, list):
                return candidate
    return []


def normalize_intimacao(item: Any) -> Optional[NormalizedIntimacao]:
    """dict suelto de Projudi -> NormalizedIntimacao. None si no hay id externo."""
    if not isinstance(item, dict):
        return None

    values: Dict[str, Any] = {}
    for name, keys, parser in FIELD_CANDIDATES:
        for key in keys:
            parsed = parser(item.get(key))
            if parsed is not None:
                values[name] = parsed
                break

    if not values.get("external_id"):
        return None
    return NormalizedIntimacao(payload=item, **values)


# =========================================================
# Resultado
# =========================================================

@dataclass
class StoredIntimacao:
    id: int
    external_id: str
    numero_processo: Optional[str]
    status: Optional[str]
    prazo: Optional[datetime]
    fonte_atualizada_em: Optional[datetime]
    operation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "numero_processo": self.numero_processo,
            "status": self.status,
            "prazo": isoformat_or_none(self.prazo),
            "fonte_atualizada_em": isoformat_or_none(self.fonte_atualizada_em),
            "operation": self.operation,
        }


@dataclass
class FetchIntimacoesResult:
    source: str
    started_at: datetime
    finished_at: datetime
    requested_from: datetime
    total_fetched: int = 0
    total_processed: int = 0
    inserted: int = 0
    updated: int = 0
    latest_source_timestamp: Optional[datetime] = None
    items: List[StoredIntimacao] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "started_at": isoformat_or_none(self.started_at),
            "finished_at": isoformat_or_none(self.finished_at),
            "requested_from": isoformat_or_none(self.requested_from),
            "total_fetched": self.total_fetched,
            "total_processed": self.total_processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "latest_source_timestamp": isoformat_or_none(self.latest_source_timestamp),
            "items": [i.to_dict() for i in self.items],
        }


# =========================================================
# Upsert
# =========================================================

def _select_locked(db: Session, external_id: str) -> Optional[Intimacao]:
    return (
        db.query(Intimacao)
        .filter(Intimacao.origem == ORIGEM, Intimacao.external_id == external_id)
        .with_for_update()
        .first()
    )


def _merge(row: Intimacao, item: NormalizedIntimacao, now: datetime) -> None:
    # COALESCE: lo nuevo no nulo gana, lo nulo nunca pisa
    for name in MERGE_FIELDS:
        value = getattr(item, name)
        if value is not None:
            setattr(row, name, value)
    row.updated_at = now


def upsert_intimacao(db: Session, item: NormalizedIntimacao) -> Tuple[Intimacao, str]:
    """
    Upsert por (origem, external_id). Devuelve (fila, "inserted" | "updated").
    Hace commit por item.
    """
    now = utcnow()

    row = _select_locked(db, item.external_id)
    if row is not None:
        _merge(row, item, now)
        db.commit()
        return row, "updated"

    row = Intimacao(origem=ORIGEM, external_id=item.external_id, created_at=now)
    _merge(row, item, now)
    db.add(row)
    try:
        db.commit()
        return row, "inserted"
    except IntegrityError as e:
        # carrera normal: otro proceso insertó primero
        db.rollback()
        conflict = e

    row = _select_locked(db, item.external_id)
    if row is None:
        raise conflict
    _merge(row, item, utcnow())
    db.commit()
    return row, "updated"


# =========================================================
# Servicio
# =========================================================

class ProjudiNotificationService:
    """
    Polling de intimaciones de Projudi.

    La sesión (token/cookie) se cachea en memoria por instancia y un solo login
    está en vuelo a la vez: los hilos concurrentes esperan el mismo Future.
    """

    def __init__(
        self,
        client: Optional[ProjudiClient] = None,
        *,
        session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client or ProjudiClient.from_settings()
        self.session_ttl = timedelta(seconds=int(session_ttl_seconds))
        self.clock = clock
        self._session: Optional[AuthSession] = None
        self._login_future: Optional[Future] = None
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        return self.client.is_configured()

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    def is_session_valid(self, session: AuthSession) -> bool:
        now = self.clock()
        if session.expires_at is not None:
            return ensure_utc(session.expires_at) - now > SESSION_EXPIRY_MARGIN
        return now - ensure_utc(session.obtained_at) < self.session_ttl

    def invalidate_session(self) -> None:
        with self._lock:
            self._session = None

    def login(self, force: bool = False) -> AuthSession:
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

        with self._lock:
            if not force and self._session is not None and self.is_session_valid(self._session):
                return self._session
            if not force and self._login_future is not None:
                future = self._login_future
                owner = False
            else:
                future = Future()
                self._login_future = future
                owner = True

        if not owner:
            return future.result()

        try:
            session = self.client.authenticate()
        except BaseException as e:
            with self._lock:
                if self._login_future is future:
                    self._login_future = None
            future.set_exception(e)
            raise

        with self._lock:
            self._session = session
            if self._login_future is future:
                self._login_future = None
        future.set_result(session)
        logger.info("Projudi login ok token=%s cookie=%s", bool(session.token), bool(session.cookie))
        return session

    def fetch_new_intimacoes(self, db: Session, reference: Optional[datetime]) -> FetchIntimacoesResult:
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

        started_at = self.clock()
        requested_from = ensure_utc(reference) or (started_at - DEFAULT_LOOKBACK)

        session = self.login()
        try:
            body = self.client.list_intimacoes(session, requested_from)
        except AuthenticationError:
            # el próximo run vuelve a loguear
            self.invalidate_session()
            raise

        raw_items = extract_items(body)
        normalized: List[NormalizedIntimacao] = []
        latest: Optional[datetime] = None
        for raw in raw_items:
            item = normalize_intimacao(raw)
            if item is None:
                continue
            normalized.append(item)
            ts = item.source_timestamp
            if ts is not None and (latest is None or ts > latest):
                latest = ts

        result = FetchIntimacoesResult(
            source=ORIGEM,
            started_at=started_at,
            finished_at=started_at,
            requested_from=requested_from,
            total_fetched=len(raw_items),
            latest_source_timestamp=latest,
        )

        for item in normalized:
            row, operation = upsert_intimacao(db, item)
            if operation == "inserted":
                result.inserted += 1
            else:
                result.updated += 1
            result.items.append(
                StoredIntimacao(
                    id=int(row.id),
                    external_id=row.external_id,
                    numero_processo=row.numero_processo,
                    status=row.status,
                    prazo=ensure_utc(row.prazo),
                    fonte_atualizada_em=ensure_utc(row.fonte_atualizada_em),
                    operation=operation,
                )
            )

        result.total_processed = len(result.items)
        result.finished_at = self.clock()
        logger.info(
            "Projudi fetch done from=%s fetched=%s inserted=%s updated=%s",
            requested_from.isoformat(),
            result.total_fetched,
            result.inserted,
            result.updated,
        )
        return result
