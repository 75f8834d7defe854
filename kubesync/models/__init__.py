"""Core data structures for kubesync."""

from kubesync.models.config import KubeSyncConfig
from kubesync.models.contexts import (
    ClusterInfo,
    K8sContext,
    K8sContextInfo,
    LoadConfigResult,
    ManagerState,
    UserInfo,
)
from kubesync.models.events import EventType, InformerError, Resource, ResourceEvent
from kubesync.models.resources import (
    CalculatorStats,
    DeltaBatch,
    DeltaType,
    InformerOptions,
    InformerState,
    InformerStatistics,
    ResourceDelta,
    ResourceSnapshot,
)

__all__ = [
    "CalculatorStats",
    "ClusterInfo",
    "DeltaBatch",
    "DeltaType",
    "EventType",
    "InformerError",
    "InformerOptions",
    "InformerState",
    "InformerStatistics",
    "K8sContext",
    "K8sContextInfo",
    "KubeSyncConfig",
    "LoadConfigResult",
    "ManagerState",
    "Resource",
    "ResourceDelta",
    "ResourceEvent",
    "ResourceSnapshot",
    "UserInfo",
]
