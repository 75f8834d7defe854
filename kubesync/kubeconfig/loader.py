"""Kubeconfig discovery and per-context API clients.

The kubeconfig is located in this order:

1. the explicit path given to :class:`KubeConfigLoader`,
2. the first entry of ``$KUBECONFIG``,
3. ``~/.kube/config``.

Loading never raises: failures come back as ``LoadConfigResult(success=False)``
with an error string.  Asking for an API client for a context that is not
in the loaded kubeconfig raises :class:`KubeConfigError`.

Changing the current context only affects this process; the file on disk
is never written.
"""

from __future__ import annotations

import asyncio
import copy
import os
from pathlib import Path
from typing import Any

import yaml
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import config as k8s_config

from kubesync.models.contexts import (
    ClusterInfo,
    K8sContext,
    K8sContextInfo,
    LoadConfigResult,
    UserInfo,
)
from kubesync.observability.logging import get_logger

_logger = get_logger("kubeconfig")

_DEFAULT_NAMESPACE = "default"
_DEFAULT_VALIDATE_TIMEOUT_S = 5.0


class KubeConfigError(Exception):
    """Raised for configuration errors such as an unknown context."""


class KubeConfigLoader:
    """Reads a kubeconfig and builds kubernetes_asyncio clients from it."""

    def __init__(self, path: str | None = None, validate_timeout_s: float = _DEFAULT_VALIDATE_TIMEOUT_S) -> None:
        self._explicit_path = path or None
        self._validate_timeout_s = validate_timeout_s

        self._raw: dict[str, Any] | None = None
        self._contexts: dict[str, K8sContext] = {}
        self._current_context: str | None = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def resolve_path(self) -> str:
        """Return the kubeconfig path this loader reads by default."""
        if self._explicit_path:
            return os.path.expanduser(self._explicit_path)
        env = os.environ.get("KUBECONFIG", "")
        for entry in env.split(os.pathsep):
            if entry.strip():
                return os.path.expanduser(entry.strip())
        return str(Path.home() / ".kube" / "config")

    def load_from_default(self) -> LoadConfigResult:
        return self.load_from_file(self.resolve_path())

    def load_from_file(self, path: str) -> LoadConfigResult:
        """Parse *path* and replace the loaded contexts with its contents."""
        try:
            with open(path) as f:
                doc = yaml.safe_load(f)
        except FileNotFoundError:
            return self._failed(path, f"Kubeconfig file not found at: {path}")
        except (OSError, yaml.YAMLError) as exc:
            return self._failed(path, f"Failed to parse kubeconfig: {exc}")

        if not isinstance(doc, dict):
            return self._failed(path, "Failed to parse kubeconfig: document is not a mapping")

        self._raw = doc
        self._contexts = _parse_contexts(doc)
        current = doc.get("current-context")
        self._current_context = current if isinstance(current, str) and current in self._contexts else None

        _logger.info(
            "kubeconfig_loaded",
            path=path,
            contexts=len(self._contexts),
            current_context=self._current_context,
        )
        return LoadConfigResult(
            success=True,
            contexts=self.get_contexts(),
            current_context=self._current_context,
        )

    def _failed(self, path: str, message: str) -> LoadConfigResult:
        _logger.warning("kubeconfig_load_failed", path=path, error=message)
        return LoadConfigResult(success=False, error=message)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_contexts(self) -> list[K8sContextInfo]:
        return [self._summarize(ctx) for ctx in self._contexts.values()]

    def get_context_detail(self, name: str) -> K8sContext | None:
        return self._contexts.get(name)

    def get_current_context(self) -> str | None:
        return self._current_context

    def set_current_context(self, name: str) -> bool:
        """Make *name* current for this process; False if it is unknown."""
        if name not in self._contexts:
            return False
        self._current_context = name
        if self._raw is not None:
            self._raw["current-context"] = name
        return True

    def _summarize(self, ctx: K8sContext) -> K8sContextInfo:
        return K8sContextInfo(
            name=ctx.name,
            cluster=ctx.cluster,
            namespace=ctx.namespace or _DEFAULT_NAMESPACE,
            server=ctx.cluster_info.server if ctx.cluster_info else "",
            is_active=ctx.name == self._current_context,
        )

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    async def make_api_client_for(self, context_name: str) -> Any:
        """Build a kubernetes_asyncio ``ApiClient`` bound to *context_name*.

        Raises:
            KubeConfigError: If no kubeconfig could be loaded or the context
                is not defined in it.
        """
        if self._raw is None:
            result = self.load_from_default()
            if not result.success:
                raise KubeConfigError(result.error or "Kubeconfig could not be loaded")
        if context_name not in self._contexts:
            raise KubeConfigError(f"Unknown context: {context_name}")

        assert self._raw is not None
        try:
            return await k8s_config.new_client_from_config_dict(
                config_dict=copy.deepcopy(self._raw),
                context=context_name,
            )
        except k8s_config.ConfigException as exc:
            raise KubeConfigError(f"Invalid configuration for context {context_name}: {exc}") from exc

    async def validate_context(self, context_name: str) -> bool:
        """Return True if the context's API server answers a version request in time."""
        if context_name not in self._contexts:
            return False
        api_client = None
        try:
            async with asyncio.timeout(self._validate_timeout_s):
                api_client = await self.make_api_client_for(context_name)
                await k8s_client.VersionApi(api_client).get_code()
        except Exception as exc:
            _logger.warning("context_validation_failed", context=context_name, error=str(exc))
            return False
        finally:
            if api_client is not None:
                await api_client.close()
        _logger.info("context_validated", context=context_name)
        return True


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _named_entries(doc: dict[str, Any], section: str, body_key: str) -> dict[str, dict[str, Any]]:
    """Map ``name`` → body for a kubeconfig list section, skipping malformed entries."""
    entries: dict[str, dict[str, Any]] = {}
    for entry in doc.get(section) or []:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            continue
        body = entry.get(body_key)
        entries[entry["name"]] = body if isinstance(body, dict) else {}
    return entries


def _parse_contexts(doc: dict[str, Any]) -> dict[str, K8sContext]:
    clusters = _named_entries(doc, "clusters", "cluster")
    users = _named_entries(doc, "users", "user")

    contexts: dict[str, K8sContext] = {}
    for name, body in _named_entries(doc, "contexts", "context").items():
        cluster_name = str(body.get("cluster", ""))
        user_name = str(body.get("user", ""))
        cluster = clusters.get(cluster_name)
        user = users.get(user_name)
        contexts[name] = K8sContext(
            name=name,
            cluster=cluster_name,
            user=user_name,
            namespace=body.get("namespace"),
            cluster_info=_cluster_info(cluster) if cluster is not None else None,
            user_info=_user_info(user) if user is not None else None,
        )
    return contexts


def _cluster_info(body: dict[str, Any]) -> ClusterInfo:
    return ClusterInfo(
        server=str(body.get("server", "")),
        certificate_authority=body.get("certificate-authority"),
        skip_tls_verify=bool(body.get("insecure-skip-tls-verify", False)),
    )


def _user_info(body: dict[str, Any]) -> UserInfo:
    return UserInfo(
        client_certificate=body.get("client-certificate"),
        client_key=body.get("client-key"),
        token=body.get("token"),
        username=body.get("username"),
        password=body.get("password"),
    )
