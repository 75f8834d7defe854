"""Informer layer: list+watch sessions and the pool that owns them."""

from kubesync.informer.pool import InformerPool, informer_key
from kubesync.informer.session import (
    SUPPORTED_RESOURCE_TYPES,
    KubernetesWatchSession,
    WatchHandlers,
    WatchSession,
    WatchSessionError,
)

__all__ = [
    "SUPPORTED_RESOURCE_TYPES",
    "InformerPool",
    "KubernetesWatchSession",
    "WatchHandlers",
    "WatchSession",
    "WatchSessionError",
    "informer_key",
]
