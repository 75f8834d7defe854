"""Per (context, resource type) delta computation and batching.

A :class:`DeltaCalculator` keeps its own sanitized snapshot of every resource
it has seen, turns each raw informer event into at most one
:class:`~kubesync.models.resources.ResourceDelta`, and hands pending deltas to
``on_batch_ready`` in batches.

Batching policy
---------------
- The first pending delta arms a throttle timer of ``throttle_window_ms``.
  Later deltas inside the same window do not move the deadline, so N
  events inside one window produce exactly one batch (for N < max size).
- Reaching ``max_batch_size`` pending deltas flushes synchronously, so a
  burst larger than the limit becomes several batches.
- Every flush, whatever triggered it, cancels the armed timer.

The timer needs a running asyncio loop.  Without one, deltas stay pending
until :meth:`DeltaCalculator.flush` is called or the size limit is hit.
"""

from __future__ import annotations

import asyncio
import copy
import time
from collections.abc import Callable
from datetime import UTC, datetime

from kubesync.delta.diff import compute_patch
from kubesync.delta.sanitize import sanitize_resource
from kubesync.models.events import (
    EventType,
    Resource,
    ResourceEvent,
    resource_name,
    resource_namespace,
    resource_uid,
)
from kubesync.models.resources import (
    CalculatorStats,
    DeltaBatch,
    DeltaType,
    ResourceDelta,
    ResourceSnapshot,
)
from kubesync.observability.logging import get_logger
from kubesync.observability.metrics import (
    delta_batch_size,
    delta_batches_total,
    delta_updates_suppressed_total,
    deltas_total,
)

BatchCallback = Callable[[DeltaBatch], None]

DEFAULT_THROTTLE_WINDOW_MS: int = 150
DEFAULT_MAX_BATCH_SIZE: int = 75


class ThrottleTimer:
    """One-shot timer on the running event loop.

    ``arm`` is a no-op while the timer is already pending, which is what
    caps a calculator at one timer-driven flush per window.
    """

    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self._delay_s = delay_s
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> bool:
        """Schedule the callback unless already scheduled.

        Returns True if a new deadline was set.
        """
        if self._handle is not None:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._handle = loop.call_later(self._delay_s, self._fire)
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class DeltaCalculator:
    """Diff and batch raw resource events for one (context, resource type).

    Example::

        calc = DeltaCalculator(throttle_window_ms=150, max_batch_size=75, on_batch_ready=push)
        calc.process_event(event, "Pod")
    """

    def __init__(
        self,
        throttle_window_ms: int = DEFAULT_THROTTLE_WINDOW_MS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        on_batch_ready: BatchCallback | None = None,
    ) -> None:
        """Initialise the calculator.

        Args:
            throttle_window_ms: Coalescing window for pending deltas.
            max_batch_size: Pending-delta count that forces an immediate flush.
            on_batch_ready: Called synchronously with every flushed batch.

        Raises:
            ValueError: If either limit is not positive.
        """
        if throttle_window_ms <= 0:
            raise ValueError(f"throttle_window_ms must be positive, got {throttle_window_ms}")
        if max_batch_size <= 0:
            raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")

        self._throttle_window_ms = throttle_window_ms
        self._max_batch_size = max_batch_size
        self._on_batch_ready = on_batch_ready
        self._log = get_logger("delta.calculator")

        self._cache: dict[str, ResourceSnapshot] = {}
        self._pending: list[ResourceDelta] = []
        self._total_changes_processed: int = 0
        self._timer = ThrottleTimer(throttle_window_ms / 1000.0, self._on_timer)

    @property
    def throttle_window_ms(self) -> int:
        return self._throttle_window_ms

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    def process_event(self, event: ResourceEvent, resource_type: str) -> None:
        """Turn one informer event into a pending delta, if anything changed.

        Resources without ``metadata.uid`` are dropped silently.
        """
        uid = resource_uid(event.resource)
        if uid is None:
            return

        sanitized = sanitize_resource(event.resource)

        if event.type == EventType.DELETED:
            delta: ResourceDelta | None = self._on_delete(uid, sanitized, event.context_name, resource_type)
        elif uid in self._cache:
            # ADDED for a known uid happens when a relist replays the cache
            delta = self._on_update(uid, sanitized, event.context_name, resource_type)
        else:
            delta = self._on_add(uid, sanitized, event.context_name, resource_type)

        if delta is None:
            delta_updates_suppressed_total.labels(resource_type=resource_type).inc()
            return

        self._pending.append(delta)
        self._total_changes_processed += 1
        deltas_total.labels(resource_type=resource_type, delta_type=delta.type.value).inc()

        if len(self._pending) >= self._max_batch_size:
            self._flush(trigger="size")
        else:
            self._timer.arm()

    def _on_add(self, uid: str, sanitized: Resource, context_name: str, resource_type: str) -> ResourceDelta:
        self._cache[uid] = ResourceSnapshot(uid=uid, resource=sanitized, last_updated=datetime.now(tz=UTC))
        return ResourceDelta(
            type=DeltaType.ADD,
            uid=uid,
            context_name=context_name,
            resource_type=resource_type,
            name=resource_name(sanitized),
            namespace=resource_namespace(sanitized),
            full_resource=copy.deepcopy(sanitized),
        )

    def _on_update(
        self, uid: str, sanitized: Resource, context_name: str, resource_type: str
    ) -> ResourceDelta | None:
        previous = self._cache[uid]
        patches = compute_patch(previous.resource, sanitized)
        if not patches:
            return None
        self._cache[uid] = ResourceSnapshot(uid=uid, resource=sanitized, last_updated=datetime.now(tz=UTC))
        return ResourceDelta(
            type=DeltaType.UPDATE,
            uid=uid,
            context_name=context_name,
            resource_type=resource_type,
            name=resource_name(sanitized),
            namespace=resource_namespace(sanitized),
            patches=patches,
        )

    def _on_delete(self, uid: str, sanitized: Resource, context_name: str, resource_type: str) -> ResourceDelta:
        self._cache.pop(uid, None)
        return ResourceDelta(
            type=DeltaType.DELETE,
            uid=uid,
            context_name=context_name,
            resource_type=resource_type,
            name=resource_name(sanitized),
            namespace=resource_namespace(sanitized),
        )

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Emit whatever is pending as one batch; no-op when nothing is pending."""
        self._flush(trigger="manual")

    def _on_timer(self) -> None:
        self._flush(trigger="timer")

    def _flush(self, trigger: str) -> None:
        self._timer.cancel()
        if not self._pending:
            return

        deltas = self._pending
        self._pending = []
        batch = DeltaBatch(
            timestamp=int(time.time() * 1000),
            deltas=deltas,
            total_changes=len(deltas),
        )

        resource_type = deltas[0].resource_type
        delta_batches_total.labels(resource_type=resource_type, trigger=trigger).inc()
        delta_batch_size.observe(len(deltas))
        self._log.debug(
            "delta_batch_flushed",
            context=deltas[0].context_name,
            resource_type=resource_type,
            size=len(deltas),
            trigger=trigger,
        )

        if self._on_batch_ready is None:
            return
        try:
            self._on_batch_ready(batch)
        except Exception as exc:
            self._log.error(
                "batch_callback_failed",
                resource_type=resource_type,
                error=str(exc),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Introspection / teardown
    # ------------------------------------------------------------------

    def get_stats(self) -> CalculatorStats:
        """Return a point-in-time copy of the calculator's counters."""
        return CalculatorStats(
            cached_resources=len(self._cache),
            total_changes_processed=self._total_changes_processed,
            pending_deltas=len(self._pending),
        )

    def get_snapshot(self, uid: str) -> ResourceSnapshot | None:
        return self._cache.get(uid)

    def clear_cache(self) -> None:
        """Drop the snapshot cache and pending deltas without emitting a batch."""
        self._timer.cancel()
        self._cache.clear()
        self._pending = []

    def destroy(self) -> None:
        """Release the timer and all state; safe on an already-empty calculator."""
        self.clear_cache()
        self._timer.cancel()
