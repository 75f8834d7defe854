"""Environment-variable configuration loading.

Every setting is read from a ``KUBESYNC_*`` variable.  Numeric values are
clamped into their allowed range; enumerated values that are not recognised
raise ``ValueError`` so a typo fails fast at startup.
"""

from __future__ import annotations

import os

from kubesync.informer.session import SUPPORTED_RESOURCE_TYPES
from kubesync.models.config import (
    DeltaConfig,
    KubeconfigConfig,
    KubeSyncConfig,
    LogConfig,
    WatchConfig,
)

_ENV_PREFIX = "KUBESYNC_"

_VALID_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error"})

_THROTTLE_WINDOW_MS_BOUNDS: tuple[int, int] = (10, 5_000)
_MAX_BATCH_SIZE_BOUNDS: tuple[int, int] = (1, 1_000)
_BACKOFF_MIN_S_BOUNDS: tuple[float, float] = (0.1, 60.0)
_BACKOFF_MAX_S_CEILING: float = 600.0


def load_config() -> KubeSyncConfig:
    """Build a :class:`KubeSyncConfig` from the process environment."""
    defaults_delta = DeltaConfig()
    defaults_watch = WatchConfig()

    throttle_window_ms = _clamp_int(
        _env_int("THROTTLE_WINDOW_MS", defaults_delta.throttle_window_ms),
        *_THROTTLE_WINDOW_MS_BOUNDS,
    )
    max_batch_size = _clamp_int(
        _env_int("MAX_BATCH_SIZE", defaults_delta.max_batch_size),
        *_MAX_BATCH_SIZE_BOUNDS,
    )

    backoff_min_s = _clamp_float(
        _env_float("BACKOFF_MIN_S", defaults_watch.backoff_min_s),
        *_BACKOFF_MIN_S_BOUNDS,
    )
    backoff_max_s = _clamp_float(
        _env_float("BACKOFF_MAX_S", defaults_watch.backoff_max_s),
        backoff_min_s,
        _BACKOFF_MAX_S_CEILING,
    )

    resource_types = _parse_resource_types(_env_str("RESOURCE_TYPES", ""), defaults_watch.resource_types)

    level = _env_str("LOG_LEVEL", "info").lower()
    if level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level!r} (expected one of {sorted(_VALID_LOG_LEVELS)})")

    return KubeSyncConfig(
        kubeconfig=KubeconfigConfig(path=_env_str("KUBECONFIG", "")),
        delta=DeltaConfig(throttle_window_ms=throttle_window_ms, max_batch_size=max_batch_size),
        watch=WatchConfig(
            resource_types=resource_types,
            backoff_min_s=backoff_min_s,
            backoff_max_s=backoff_max_s,
        ),
        log=LogConfig(level=level),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    return os.environ.get(_ENV_PREFIX + name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_ENV_PREFIX}{name}: {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid number for {_ENV_PREFIX}{name}: {raw!r}") from exc


def _clamp_int(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _clamp_float(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _parse_resource_types(raw: str, default: list[str]) -> list[str]:
    """Split a comma-separated kind list, rejecting kinds that cannot be watched."""
    if not raw:
        return list(default)
    kinds = [part.strip() for part in raw.split(",") if part.strip()]
    unknown = [k for k in kinds if k not in SUPPORTED_RESOURCE_TYPES]
    if unknown:
        raise ValueError(f"Invalid resource type(s): {', '.join(unknown)}")
    return kinds
