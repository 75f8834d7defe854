"""Kubeconfig context data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ClusterInfo:
    server: str
    certificate_authority: str | None = None
    skip_tls_verify: bool = False


@dataclass(frozen=True)
class UserInfo:
    client_certificate: str | None = None
    client_key: str | None = None
    token: str | None = None
    username: str | None = None
    password: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class K8sContext:
    """A named cluster + credentials pairing from a kubeconfig."""

    name: str
    cluster: str
    user: str
    namespace: str | None = None
    cluster_info: ClusterInfo | None = None
    user_info: UserInfo | None = None


@dataclass(frozen=True)
class K8sContextInfo:
    """Display summary of a context for the UI."""

    name: str
    cluster: str
    namespace: str
    server: str
    is_active: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "cluster": self.cluster,
            "namespace": self.namespace,
            "server": self.server,
            "isActive": self.is_active,
        }


@dataclass(frozen=True)
class LoadConfigResult:
    """Outcome of loading a kubeconfig; never raised, always returned."""

    success: bool
    contexts: list[K8sContextInfo] = field(default_factory=list)
    current_context: str | None = None
    error: str | None = None


@dataclass
class ManagerState:
    """Snapshot of the K8sManager's discovered contexts."""

    initialized: bool = False
    contexts: dict[str, K8sContext] = field(default_factory=dict)
    current_context: str | None = None
