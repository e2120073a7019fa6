# app/core/timeutils.py
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

# Projudi y Asaas publican fechas "locales" sin zona en horario de Brasília
SOURCE_TZ = ZoneInfo("America/Sao_Paulo")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive -> UTC (así vuelven de sqlite / columnas sin tz); aware -> convertido a UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_or_none(dt: Optional[datetime]) -> Optional[str]:
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None


def _try_parse_with_formats(value: str, fmts: List[str]) -> Optional[datetime]:
    for fmt in fmts:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def parse_source_timestamp(value: Any) -> Optional[datetime]:
    """
    Interpreta timestamps de payloads externos y los devuelve en UTC.
    Acepta:
      - datetime / date
      - epoch en milisegundos (int/float)
      - ISO8601 con o sin Z / offset
      - fechas brasileñas: 10/05/2024, 10/05/2024 14:30[:00], 10-05-2024
      - 2024/05/10
    Si no se puede interpretar retorna None (nunca "ahora").
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=SOURCE_TZ).astimezone(timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=SOURCE_TZ).astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if not isinstance(value, str):
        return None

    raw = " ".join(value.strip().split())
    if not raw:
        return None

    # ---- 1) ISO8601 ----
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        dt = None
    if dt is not None:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=SOURCE_TZ)
        return dt.astimezone(timezone.utc)

    # ---- 2) Formatos locales sin zona ----
    dt = _try_parse_with_formats(
        raw,
        [
            "%d/%m/%Y %H:%M:%S",
            "%d/%m/%Y %H:%M",
            "%d/%m/%Y",
            "%d-%m-%Y %H:%M:%S",
            "%d-%m-%Y",
            "%Y/%m/%d %H:%M:%S",
            "%Y/%m/%d",
        ],
    )
    if dt:
        return dt.replace(tzinfo=SOURCE_TZ).astimezone(timezone.utc)

    return None
