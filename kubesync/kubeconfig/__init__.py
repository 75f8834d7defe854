"""Kubeconfig loading and per-context API client construction."""

from kubesync.kubeconfig.loader import KubeConfigError, KubeConfigLoader

__all__ = ["KubeConfigError", "KubeConfigLoader"]
