"""DeltaPusher: route informer events to calculators and push their batches.

One :class:`~kubesync.delta.calculator.DeltaCalculator` exists per
``(context, kind)`` pair, created lazily on the first event for that pair
with the pusher's shared throttle/batch settings.  Each calculator's batch
callback is bound at creation time to push the batch, tagged with its
routing key, to the current sink on :data:`DELTA_BATCH_CHANNEL`.

Delivery is best effort.  Without a sink, with a sink that reports itself
dead, or for a kind that is not in ``resource_types``, the calculator still
runs (its cache stays correct) but the batch is not sent.  Undelivered
batches are not kept for later.  A sink that raises is logged and counted;
the send is not retried.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any, Protocol, TextIO

from kubesync.delta.calculator import DEFAULT_MAX_BATCH_SIZE, DEFAULT_THROTTLE_WINDOW_MS, DeltaCalculator
from kubesync.informer.pool import InformerPool, informer_key
from kubesync.informer.session import SUPPORTED_RESOURCE_TYPES
from kubesync.models.events import InformerError, ResourceEvent, resource_kind
from kubesync.models.resources import DeltaBatch
from kubesync.observability.logging import get_logger
from kubesync.observability.metrics import push_batches_total, push_failures_total, push_skipped_total

_logger = get_logger("delta_pusher")

DELTA_BATCH_CHANNEL: str = "k8s:delta-batch"


class PushSink(Protocol):
    """Transport that receives finished batches (e.g. a UI window)."""

    def send(self, channel: str, payload: dict[str, Any]) -> None: ...

    def is_alive(self) -> bool: ...


class StreamSink:
    """Push sink writing one JSON object per batch to a text stream.

    Each line is ``{"channel": ..., "payload": ...}``.  The sink reports
    itself dead once the stream is closed.
    """

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def send(self, channel: str, payload: dict[str, Any]) -> None:
        self._stream.write(json.dumps({"channel": channel, "payload": payload}, default=str) + "\n")
        self._stream.flush()

    def is_alive(self) -> bool:
        return not self._stream.closed


class DeltaPusher:
    """Glue between an :class:`InformerPool` and a push sink."""

    def __init__(
        self,
        informer_pool: InformerPool,
        throttle_window_ms: int = DEFAULT_THROTTLE_WINDOW_MS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        resource_types: Iterable[str] | None = None,
    ) -> None:
        """Initialise the pusher and subscribe to *informer_pool*.

        Args:
            informer_pool: Source of resource events and errors.
            throttle_window_ms: Throttle window for every calculator created.
            max_batch_size: Size limit for every calculator created.
            resource_types: Kinds whose batches are delivered.  Defaults to
                every kind the watch session supports.
        """
        self._pool = informer_pool
        self._throttle_window_ms = throttle_window_ms
        self._max_batch_size = max_batch_size
        self._resource_types: frozenset[str] = (
            frozenset(resource_types) if resource_types is not None else SUPPORTED_RESOURCE_TYPES
        )

        self._calculators: dict[str, DeltaCalculator] = {}
        self._sink: PushSink | None = None

        self._pool.add_event_handler(self._handle_event)
        self._pool.add_error_handler(self._handle_error)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def set_main_window(self, sink: PushSink | None) -> None:
        """Register the sink batches are pushed to; ``None`` clears it."""
        self._sink = sink
        _logger.info("push_sink_set" if sink is not None else "push_sink_cleared")

    def flush_all(self) -> None:
        for calculator in list(self._calculators.values()):
            calculator.flush()

    def get_statistics(self) -> dict[str, Any]:
        return {
            "totalCalculators": len(self._calculators),
            "calculators": {key: calc.get_stats().to_dict() for key, calc in self._calculators.items()},
        }

    def remove_calculator(self, context_name: str, resource_type: str) -> None:
        calculator = self._calculators.pop(informer_key(context_name, resource_type), None)
        if calculator is not None:
            calculator.destroy()

    def destroy(self) -> None:
        """Unsubscribe from the pool and destroy every calculator."""
        self._pool.remove_event_handler(self._handle_event)
        self._pool.remove_error_handler(self._handle_error)
        for calculator in self._calculators.values():
            calculator.destroy()
        self._calculators.clear()
        self._sink = None

    # ------------------------------------------------------------------
    # Pool handlers
    # ------------------------------------------------------------------

    def _handle_event(self, event: ResourceEvent) -> None:
        kind = resource_kind(event.resource)
        if kind is None:
            _logger.debug("event_without_kind_dropped", context=event.context_name)
            return
        self._get_or_create(event.context_name, kind).process_event(event, kind)

    def _handle_error(self, error: InformerError) -> None:
        _logger.warning(
            "informer_error_observed",
            context=error.context_name,
            resource_type=error.resource_type,
            error=str(error.error),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_or_create(self, context_name: str, resource_type: str) -> DeltaCalculator:
        key = informer_key(context_name, resource_type)
        calculator = self._calculators.get(key)
        if calculator is None:
            calculator = DeltaCalculator(
                throttle_window_ms=self._throttle_window_ms,
                max_batch_size=self._max_batch_size,
                on_batch_ready=lambda batch: self._push(context_name, resource_type, batch),
            )
            self._calculators[key] = calculator
            _logger.debug("calculator_created", key=key)
        return calculator

    def _push(self, context_name: str, resource_type: str, batch: DeltaBatch) -> None:
        sink = self._sink
        if resource_type not in self._resource_types:
            push_skipped_total.labels(reason="unwatched_kind").inc()
            return
        if sink is None:
            push_skipped_total.labels(reason="no_sink").inc()
            return
        try:
            if not sink.is_alive():
                push_skipped_total.labels(reason="sink_dead").inc()
                return
            sink.send(DELTA_BATCH_CHANNEL, batch.to_payload(context_name, resource_type))
        except Exception as exc:
            push_failures_total.labels(resource_type=resource_type).inc()
            _logger.error(
                "push_failed",
                context=context_name,
                resource_type=resource_type,
                deltas=batch.total_changes,
                error=str(exc),
            )
            return
        push_batches_total.labels(resource_type=resource_type).inc()
