# app/jobs/job_config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple

from app.services.sync_job_status_store import JobDefaults

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# (sufijo, multiplicador a ms), en orden de prioridad
INTERVAL_UNITS: Sequence[Tuple[str, int]] = (("MS", 1), ("MINUTES", MINUTE_MS), ("SECONDS", SECOND_MS))
LOOKBACK_UNITS: Sequence[Tuple[str, int]] = (("MS", 1), ("HOURS", HOUR_MS), ("DAYS", DAY_MS))
OVERLAP_UNITS: Sequence[Tuple[str, int]] = (("MS", 1), ("MINUTES", MINUTE_MS), ("SECONDS", SECOND_MS))


@dataclass(frozen=True)
class JobConfig:
    interval_ms: int
    lookback_ms: Optional[int] = None
    overlap_ms: Optional[int] = None

    def as_defaults(self) -> JobDefaults:
        return JobDefaults(
            interval_ms=self.interval_ms,
            lookback_ms=self.lookback_ms,
            overlap_ms=self.overlap_ms,
        )


def _parse_number(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def read_duration_ms(
    env: Mapping[str, str],
    base: str,
    units: Sequence[Tuple[str, int]],
    default: Optional[int],
    *,
    allow_zero: bool = False,
) -> Optional[int]:
    """
    Primer <base>_<UNIDAD> válido gana; si ninguno lo es, default.
    Valores negativos, no numéricos o cero (salvo allow_zero) se ignoran.
    """
    for suffix, factor in units:
        value = _parse_number(env.get(f"{base}_{suffix}"))
        if value is None:
            continue
        if value < 0 or (value == 0 and not allow_zero):
            continue
        return int(round(value * factor))
    return default


@dataclass(frozen=True)
class JobOverrides:
    """Valores puestos explícitamente en el entorno; None = no definido."""
    interval_ms: Optional[int] = None
    lookback_ms: Optional[int] = None
    overlap_ms: Optional[int] = None


def read_job_overrides(
    prefix: str,
    defaults: JobConfig,
    env: Optional[Mapping[str, str]] = None,
) -> JobOverrides:
    """
    Lee <PREFIX>_SYNC_INTERVAL_*, <PREFIX>_SYNC_LOOKBACK_* y <PREFIX>_SYNC_OVERLAP_*.
    Lookback/overlap solo aplican a jobs que los tienen en sus defaults.
    Se llama en cada run: cambiar el entorno no requiere reiniciar.
    """
    env = os.environ if env is None else env
    base = f"{prefix.strip().upper()}_SYNC"

    interval = read_duration_ms(env, f"{base}_INTERVAL", INTERVAL_UNITS, None)

    lookback = None
    if defaults.lookback_ms is not None:
        lookback = read_duration_ms(env, f"{base}_LOOKBACK", LOOKBACK_UNITS, None)

    overlap = None
    if defaults.overlap_ms is not None:
        overlap = read_duration_ms(env, f"{base}_OVERLAP", OVERLAP_UNITS, None, allow_zero=True)

    return JobOverrides(interval_ms=interval, lookback_ms=lookback, overlap_ms=overlap)


PROJUDI_DEFAULTS = JobConfig(interval_ms=5 * MINUTE_MS, lookback_ms=24 * HOUR_MS, overlap_ms=60 * SECOND_MS)
ASAAS_DEFAULTS = JobConfig(interval_ms=10 * MINUTE_MS)
