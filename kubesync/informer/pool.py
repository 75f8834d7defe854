"""InformerPool: one list+watch informer per (context, resource type).

The pool owns the informers' lifecycles, keeps a uid-keyed cache of the
resources each informer has seen, tracks per-informer health and fans
resource events and errors out to registered handlers.

Lifecycle of one informer:

1. ``start_informer`` resolves an API client for the context (an unknown
   context raises :class:`~kubesync.kubeconfig.loader.KubeConfigError`
   before anything is registered), registers state and starts a session.
2. The session reports add/update/delete/connect/error/disconnect through
   callbacks bound to this registration.  Callbacks from a session that has
   since been stopped or replaced are ignored.
3. A disconnect (or a failed start) schedules a reconnection after an
   exponential back-off with jitter, for as long as the informer is running.
4. ``stop_informer`` marks the state not running and cancels any pending
   reconnection *before* awaiting the session's shutdown, so no reconnection
   can fire after a stop has begun.

Handlers are called synchronously, in registration order, on the event
loop.  A handler that raises is logged and skipped; the others still run.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import dataclasses
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any, Protocol

from kubesync.informer.session import KubernetesWatchSession, SessionFactory, WatchHandlers, WatchSession
from kubesync.models.events import (
    EventType,
    InformerError,
    Resource,
    ResourceEvent,
    resource_uid,
)
from kubesync.models.resources import InformerOptions, InformerState, InformerStatistics
from kubesync.observability.logging import get_logger
from kubesync.observability.metrics import (
    informer_backoff_seconds,
    informer_cached_resources,
    informer_errors_total,
    informer_events_total,
    informer_reconnects_total,
    informers_active,
)

_logger = get_logger("informer_pool")

EventHandler = Callable[[ResourceEvent], None]
ErrorHandler = Callable[[InformerError], None]

DEFAULT_BACKOFF_MIN_S: float = 1.0
DEFAULT_BACKOFF_MAX_S: float = 30.0


class ApiClientProvider(Protocol):
    """Anything that can hand out an API client for a named context."""

    async def make_api_client_for(self, context_name: str) -> Any: ...


def informer_key(context_name: str, resource_type: str) -> str:
    """Composite key used for informer registration and state lookups."""
    return f"{context_name}:{resource_type}"


@dataclass
class _Informer:
    """Everything the pool holds for one registration."""

    key: str
    resource_type: str
    options: InformerOptions
    state: InformerState
    api_client: Any = None
    session: WatchSession | None = None
    cache: dict[str, Resource] = field(default_factory=dict)
    reconnect_task: asyncio.Task[None] | None = None


class InformerPool:
    """Registry of running informers with caches, state and event fan-out."""

    def __init__(
        self,
        config_loader: ApiClientProvider,
        session_factory: SessionFactory | None = None,
        backoff_min_s: float = DEFAULT_BACKOFF_MIN_S,
        backoff_max_s: float = DEFAULT_BACKOFF_MAX_S,
    ) -> None:
        self._config_loader = config_loader
        self._session_factory: SessionFactory = session_factory or KubernetesWatchSession
        self._backoff_min_s = backoff_min_s
        self._backoff_max_s = max(backoff_max_s, backoff_min_s)

        self._informers: dict[str, _Informer] = {}
        self._control_lock = asyncio.Lock()
        self._event_handlers: list[EventHandler] = []
        self._error_handlers: list[ErrorHandler] = []

    # ------------------------------------------------------------------
    # Handler registration
    # ------------------------------------------------------------------

    def add_event_handler(self, handler: EventHandler) -> None:
        self._event_handlers.append(handler)

    def remove_event_handler(self, handler: EventHandler) -> None:
        with contextlib.suppress(ValueError):
            self._event_handlers.remove(handler)

    def add_error_handler(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def remove_error_handler(self, handler: ErrorHandler) -> None:
        with contextlib.suppress(ValueError):
            self._error_handlers.remove(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_informer(self, resource_type: str, options: InformerOptions) -> None:
        """Start watching *resource_type* in ``options.context_name``.

        Idempotent: a second call for a registered (context, type) pair
        returns without side effects.  A session that fails to start is
        recorded as an error and retried in the background.

        Raises:
            KubeConfigError: If the context is not known to the config loader.
            WatchSessionError: If no session can be built for *resource_type*.
        """
        key = informer_key(options.context_name, resource_type)

        async with self._control_lock:
            if key in self._informers:
                _logger.debug("informer_already_running", key=key)
                return

            api_client = await self._config_loader.make_api_client_for(options.context_name)
            record = _Informer(
                key=key,
                resource_type=resource_type,
                options=options,
                state=InformerState(context_name=options.context_name, resource_type=resource_type),
                api_client=api_client,
            )
            try:
                record.session = self._session_factory(resource_type, options, api_client, self._bind_handlers(record))
            except Exception:
                await self._close_api_client(record)
                raise
            self._informers[key] = record
            informers_active.set(len(self._informers))

        _logger.info(
            "informer_started",
            context=options.context_name,
            resource_type=resource_type,
            namespace=options.namespace,
        )
        await self._start_session(record)

    async def stop_informer(self, context_name: str, resource_type: str) -> None:
        """Stop one informer and discard its cache and state.  No-op if absent."""
        async with self._control_lock:
            record = self._informers.pop(informer_key(context_name, resource_type), None)
            informers_active.set(len(self._informers))
        if record is not None:
            await self._teardown(record)

    async def stop_context_informers(self, context_name: str) -> None:
        """Stop every informer of *context_name*."""
        async with self._control_lock:
            keys = [k for k, r in self._informers.items() if r.state.context_name == context_name]
            records = [self._informers.pop(k) for k in keys]
            informers_active.set(len(self._informers))
        for record in records:
            await self._teardown(record)

    async def stop_all(self) -> None:
        """Stop every informer in the pool."""
        async with self._control_lock:
            records = list(self._informers.values())
            self._informers.clear()
            informers_active.set(0)
        for record in records:
            await self._teardown(record)
        if records:
            _logger.info("informer_pool_stopped", count=len(records))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_resources(self, context_name: str, resource_type: str) -> list[Resource]:
        """Return deep copies of one informer's cached resources (empty if absent)."""
        record = self._informers.get(informer_key(context_name, resource_type))
        return copy.deepcopy(list(record.cache.values())) if record is not None else []

    def get_resource(self, context_name: str, resource_type: str, uid: str) -> Resource | None:
        record = self._informers.get(informer_key(context_name, resource_type))
        if record is None or uid not in record.cache:
            return None
        return copy.deepcopy(record.cache[uid])

    def get_all_resources(self) -> dict[str, list[Resource]]:
        return {key: copy.deepcopy(list(record.cache.values())) for key, record in self._informers.items()}

    def get_informer_state(self, context_name: str, resource_type: str) -> InformerState | None:
        """Return a copy of one informer's state, or None if not registered."""
        record = self._informers.get(informer_key(context_name, resource_type))
        return dataclasses.replace(record.state) if record is not None else None

    def get_all_states(self) -> dict[str, InformerState]:
        """Return copies of every state keyed by ``"<context>:<resourceType>"``."""
        return {key: dataclasses.replace(record.state) for key, record in self._informers.items()}

    def is_informer_running(self, context_name: str, resource_type: str) -> bool:
        record = self._informers.get(informer_key(context_name, resource_type))
        return record is not None and record.state.running

    def get_statistics(self) -> InformerStatistics:
        states = [record.state for record in self._informers.values()]
        return InformerStatistics(
            total_informers=len(states),
            running_informers=sum(1 for s in states if s.running),
            total_resources=sum(s.resource_count for s in states),
            error_count=sum(s.error_count for s in states),
        )

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    def _bind_handlers(self, record: _Informer) -> WatchHandlers:
        return WatchHandlers(
            on_add=partial(self._on_upsert, record, EventType.ADDED),
            on_update=partial(self._on_upsert, record, EventType.MODIFIED),
            on_delete=partial(self._on_delete, record),
            on_error=partial(self._on_error, record),
            on_connect=partial(self._on_connect, record),
            on_disconnect=partial(self._on_disconnect, record),
        )

    def _is_current(self, record: _Informer) -> bool:
        return self._informers.get(record.key) is record and record.state.running

    def _on_upsert(self, record: _Informer, event_type: EventType, resource: Resource) -> None:
        if not self._is_current(record):
            return
        uid = resource_uid(resource)
        if uid is None:
            _logger.debug("resource_without_uid_dropped", key=record.key, event_type=event_type.value)
            return
        record.cache[uid] = resource
        self._sync_counts(record)
        self._emit_event(record, ResourceEvent(type=event_type, resource=resource, context_name=record.state.context_name))

    def _on_delete(self, record: _Informer, resource: Resource) -> None:
        if not self._is_current(record):
            return
        uid = resource_uid(resource)
        if uid is None:
            _logger.debug("resource_without_uid_dropped", key=record.key, event_type=EventType.DELETED.value)
            return
        record.cache.pop(uid, None)
        self._sync_counts(record)
        self._emit_event(
            record, ResourceEvent(type=EventType.DELETED, resource=resource, context_name=record.state.context_name)
        )

    def _on_connect(self, record: _Informer) -> None:
        if not self._is_current(record):
            return
        record.state.connected = True
        record.state.last_sync_time = datetime.now(tz=UTC)
        record.state.reconnect_attempts = 0
        _logger.info("informer_connected", key=record.key, resources=len(record.cache))

    def _on_error(self, record: _Informer, error: BaseException) -> None:
        if not self._is_current(record):
            return
        self._record_error(record, error)

    def _on_disconnect(self, record: _Informer) -> None:
        if not self._is_current(record):
            return
        record.state.connected = False
        _logger.warning("informer_disconnected", key=record.key)
        self._schedule_reconnect(record)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sync_counts(self, record: _Informer) -> None:
        record.state.resource_count = len(record.cache)
        record.state.last_sync_time = datetime.now(tz=UTC)
        informer_cached_resources.labels(
            context=record.state.context_name, resource_type=record.resource_type
        ).set(len(record.cache))

    def _emit_event(self, record: _Informer, event: ResourceEvent) -> None:
        informer_events_total.labels(resource_type=record.resource_type, event_type=event.type.value).inc()
        for handler in list(self._event_handlers):
            try:
                handler(event)
            except Exception as exc:
                _logger.error("event_handler_failed", key=record.key, error=str(exc), exc_info=True)

    def _record_error(self, record: _Informer, error: BaseException) -> None:
        record.state.error_count += 1
        record.state.last_error = str(error)
        informer_errors_total.labels(resource_type=record.resource_type).inc()
        _logger.warning("informer_error", key=record.key, error=str(error), error_count=record.state.error_count)

        payload = InformerError(
            context_name=record.state.context_name, resource_type=record.resource_type, error=error
        )
        for handler in list(self._error_handlers):
            try:
                handler(payload)
            except Exception as exc:
                _logger.error("error_handler_failed", key=record.key, error=str(exc), exc_info=True)

    async def _start_session(self, record: _Informer) -> None:
        session = record.session
        if session is None:
            return
        try:
            await session.start()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._is_current(record):
                return
            self._record_error(record, exc)
            record.state.connected = False
            self._schedule_reconnect(record)
            return

        # stopped while the initial list was in flight
        if not self._is_current(record):
            await self._stop_session(record)

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential back-off with equal jitter, capped at ``backoff_max_s``."""
        ceiling = min(self._backoff_max_s, self._backoff_min_s * (2 ** max(attempt - 1, 0)))
        return ceiling / 2 + random.uniform(0, ceiling / 2)

    def _schedule_reconnect(self, record: _Informer) -> None:
        if not record.state.running:
            return
        if record.reconnect_task is not None and not record.reconnect_task.done():
            return

        record.state.reconnect_attempts += 1
        delay = self._backoff_delay(record.state.reconnect_attempts)
        informer_reconnects_total.labels(resource_type=record.resource_type).inc()
        informer_backoff_seconds.labels(resource_type=record.resource_type).observe(delay)
        _logger.info(
            "informer_reconnect_scheduled",
            key=record.key,
            attempt=record.state.reconnect_attempts,
            delay_s=round(delay, 2),
        )
        record.reconnect_task = asyncio.create_task(self._reconnect(record, delay), name=f"reconnect-{record.key}")

    async def _reconnect(self, record: _Informer, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self._is_current(record):
            return
        record.reconnect_task = None
        _logger.info("informer_reconnecting", key=record.key, attempt=record.state.reconnect_attempts)
        await self._start_session(record)

    async def _teardown(self, record: _Informer) -> None:
        record.state.running = False
        record.state.connected = False
        task = record.reconnect_task
        record.reconnect_task = None
        if task is not None and not task.done():
            task.cancel()

        await self._stop_session(record)
        record.cache.clear()
        with contextlib.suppress(KeyError):
            informer_cached_resources.remove(record.state.context_name, record.resource_type)

        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._close_api_client(record)
        _logger.info("informer_stopped", key=record.key)

    async def _stop_session(self, record: _Informer) -> None:
        if record.session is None:
            return
        try:
            await record.session.stop()
        except Exception as exc:
            _logger.warning("session_stop_failed", key=record.key, error=str(exc))

    async def _close_api_client(self, record: _Informer) -> None:
        close = getattr(record.api_client, "close", None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            _logger.debug("api_client_close_failed", key=record.key, error=str(exc))
        record.api_client = None
