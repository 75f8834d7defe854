"""List+watch session for one (context, resource type).

Wraps kubernetes_asyncio's Watch to provide the watch primitive the
InformerPool builds on:

- ``start()`` lists the resource, replays the result as add/update/delete
  callbacks against what the session saw last time, signals ``connect`` and
  then streams changes in a background task resuming from the list's
  resourceVersion.
- A clean end of stream (server timeout / resync period) re-opens the watch
  from the last resourceVersion without signalling a disconnect.
- HTTP 410 (resourceVersion too old) triggers an in-place relist.
- Any other failure signals ``error`` followed by ``disconnect`` and ends the
  task.  Reconnecting is the caller's job: ``start()`` may be called again.

Callbacks run on the session task, one at a time, in stream order.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from kubesync.models.events import Resource, resource_uid, resource_version
from kubesync.models.resources import InformerOptions
from kubesync.observability.logging import get_logger

# ---------------------------------------------------------------------------
# Resource type → API table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _ResourceApi:
    api_class: str
    list_all: str
    list_namespaced: str | None = None


_RESOURCE_APIS: dict[str, _ResourceApi] = {
    "Pod": _ResourceApi("CoreV1Api", "list_pod_for_all_namespaces", "list_namespaced_pod"),
    "Node": _ResourceApi("CoreV1Api", "list_node"),
    "Namespace": _ResourceApi("CoreV1Api", "list_namespace"),
    "Service": _ResourceApi("CoreV1Api", "list_service_for_all_namespaces", "list_namespaced_service"),
    "ConfigMap": _ResourceApi("CoreV1Api", "list_config_map_for_all_namespaces", "list_namespaced_config_map"),
    "Secret": _ResourceApi("CoreV1Api", "list_secret_for_all_namespaces", "list_namespaced_secret"),
    "Event": _ResourceApi("CoreV1Api", "list_event_for_all_namespaces", "list_namespaced_event"),
    "PersistentVolume": _ResourceApi("CoreV1Api", "list_persistent_volume"),
    "PersistentVolumeClaim": _ResourceApi(
        "CoreV1Api",
        "list_persistent_volume_claim_for_all_namespaces",
        "list_namespaced_persistent_volume_claim",
    ),
    "Deployment": _ResourceApi("AppsV1Api", "list_deployment_for_all_namespaces", "list_namespaced_deployment"),
    "ReplicaSet": _ResourceApi("AppsV1Api", "list_replica_set_for_all_namespaces", "list_namespaced_replica_set"),
    "StatefulSet": _ResourceApi("AppsV1Api", "list_stateful_set_for_all_namespaces", "list_namespaced_stateful_set"),
    "DaemonSet": _ResourceApi("AppsV1Api", "list_daemon_set_for_all_namespaces", "list_namespaced_daemon_set"),
    "Job": _ResourceApi("BatchV1Api", "list_job_for_all_namespaces", "list_namespaced_job"),
    "CronJob": _ResourceApi("BatchV1Api", "list_cron_job_for_all_namespaces", "list_namespaced_cron_job"),
}

SUPPORTED_RESOURCE_TYPES: frozenset[str] = frozenset(_RESOURCE_APIS)


class WatchSessionError(Exception):
    """Raised when a session cannot be built for the requested resource type."""


# ---------------------------------------------------------------------------
# Session interface
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WatchHandlers:
    """Callbacks a session reports through."""

    on_add: Callable[[Resource], None]
    on_update: Callable[[Resource], None]
    on_delete: Callable[[Resource], None]
    on_error: Callable[[BaseException], None]
    on_connect: Callable[[], None]
    on_disconnect: Callable[[], None]


class WatchSession(Protocol):
    """A restartable watch over one resource type."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


SessionFactory = Callable[[str, InformerOptions, Any, WatchHandlers], WatchSession]


# ---------------------------------------------------------------------------
# kubernetes_asyncio implementation
# ---------------------------------------------------------------------------


class KubernetesWatchSession:
    """List+watch session backed by a kubernetes_asyncio ``ApiClient``.

    Usage::

        session = KubernetesWatchSession("Pod", InformerOptions("prod"), api_client, handlers)
        await session.start()
        ...
        await session.stop()
    """

    def __init__(
        self,
        resource_type: str,
        options: InformerOptions,
        api_client: Any,
        handlers: WatchHandlers,
    ) -> None:
        """Initialise the session.

        Raises:
            WatchSessionError: If *resource_type* has no known list endpoint.
        """
        api_spec = _RESOURCE_APIS.get(resource_type)
        if api_spec is None:
            raise WatchSessionError(f"Unsupported resource type: {resource_type}")

        self._resource_type = resource_type
        self._options = options
        self._api_client = api_client
        self._handlers = handlers
        self._log = get_logger(f"session.{resource_type.lower()}")

        api = getattr(k8s_client, api_spec.api_class)(api_client)
        self._list_args: tuple[str, ...] = ()
        if options.namespace and api_spec.list_namespaced:
            self._list_func = getattr(api, api_spec.list_namespaced)
            self._list_args = (options.namespace,)
        else:
            self._list_func = getattr(api, api_spec.list_all)

        self._resource_version: str = ""
        self._known: dict[str, Resource] = {}
        self._running: bool = False
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """List, signal connect, then stream in the background.

        Raises whatever the initial list call raises; nothing is signalled
        in that case.
        """
        if self._running:
            return
        await self._relist()
        self._running = True
        self._handlers.on_connect()
        self._task = asyncio.create_task(
            self._watch_loop(),
            name=f"watch-{self._options.context_name}-{self._resource_type}",
        )
        self._log.info("session_started", context=self._options.context_name, resource_version=self._resource_version)

    async def stop(self) -> None:
        """Cancel the stream task and wait for it to exit."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        self._log.info("session_stopped", context=self._options.context_name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _selector_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self._options.label_selector:
            kwargs["label_selector"] = self._options.label_selector
        if self._options.field_selector:
            kwargs["field_selector"] = self._options.field_selector
        return kwargs

    async def _relist(self) -> None:
        """List from scratch and reconcile against the previous listing."""
        result = await self._list_func(*self._list_args, **self._selector_kwargs())

        rv = ""
        if getattr(result, "metadata", None) is not None:
            rv = getattr(result.metadata, "resource_version", "") or ""
        self._resource_version = rv

        previous = self._known
        current: dict[str, Resource] = {}
        for item in getattr(result, "items", None) or []:
            raw = self._to_raw(item)
            uid = resource_uid(raw)
            if uid is None:
                continue
            current[uid] = raw
            if uid in previous:
                self._handlers.on_update(raw)
            else:
                self._handlers.on_add(raw)

        for uid, raw in previous.items():
            if uid not in current:
                self._handlers.on_delete(raw)

        self._known = current
        self._log.debug("session_listed", count=len(current), resource_version=rv)

    def _to_raw(self, item: Any) -> Resource:
        """Convert a deserialized list item to the camelCase dict form of watch events."""
        raw = item if isinstance(item, dict) else self._api_client.sanitize_for_serialization(item)
        if not isinstance(raw, dict):
            return {}
        # list items carry no kind; the list response does
        raw.setdefault("kind", self._resource_type)
        return raw

    async def _watch_loop(self) -> None:
        """Re-open the stream until stopped or a non-recoverable failure occurs."""
        try:
            while self._running:
                try:
                    await self._run_watch()
                except ApiException as exc:
                    if exc.status != 410:
                        raise
                    self._log.warning("watch_gone_410", context=self._options.context_name)
                    await self._relist()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._running = False
            self._log.warning(
                "watch_stream_failed",
                context=self._options.context_name,
                error=str(exc),
            )
            self._handlers.on_error(exc)
            self._handlers.on_disconnect()

    async def _run_watch(self) -> None:
        """Open one watch stream and dispatch its events until it ends."""
        kwargs: dict[str, Any] = {
            "allow_watch_bookmarks": True,
            **self._selector_kwargs(),
        }
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version
        if self._options.resync_period:
            kwargs["timeout_seconds"] = self._options.resync_period

        w = watch.Watch()
        try:
            async for raw_event in w.stream(self._list_func, *self._list_args, **kwargs):
                if not self._running:
                    return
                self._dispatch(raw_event)
        finally:
            await w.close()

    def _dispatch(self, raw_event: dict[str, Any]) -> None:
        event_type = raw_event.get("type", "")
        raw = raw_event.get("raw_object")
        if not isinstance(raw, dict):
            return

        if event_type == "ERROR":
            raise ApiException(status=raw.get("code", 500), reason=raw.get("message", "watch error"))

        rv = resource_version(raw)
        if rv:
            self._resource_version = rv
        if event_type == "BOOKMARK":
            return

        raw.setdefault("kind", self._resource_type)
        uid = resource_uid(raw)

        if event_type == "ADDED":
            if uid is not None:
                self._known[uid] = raw
            self._handlers.on_add(raw)
        elif event_type == "MODIFIED":
            if uid is not None:
                self._known[uid] = raw
            self._handlers.on_update(raw)
        elif event_type == "DELETED":
            if uid is not None:
                self._known.pop(uid, None)
            self._handlers.on_delete(raw)
