"""Configuration models for kubesync.

Populated from ``KUBESYNC_*`` environment variables by
:func:`kubesync.config.load_config`.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class KubeconfigConfig(BaseModel):
    """Where to read the kubeconfig from; empty means default discovery."""

    path: str = ""


class DeltaConfig(BaseModel):
    """Batching parameters shared by every DeltaCalculator."""

    throttle_window_ms: int = 150
    max_batch_size: int = 75


class WatchConfig(BaseModel):
    """Informer defaults."""

    resource_types: list[str] = Field(default_factory=lambda: ["Pod", "Node"])
    backoff_min_s: float = 1.0
    backoff_max_s: float = 30.0


class LogConfig(BaseModel):
    level: str = "info"


class KubeSyncConfig(BaseModel):
    """Root configuration object."""

    kubeconfig: KubeconfigConfig = Field(default_factory=KubeconfigConfig)
    delta: DeltaConfig = Field(default_factory=DeltaConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    log: LogConfig = Field(default_factory=LogConfig)
