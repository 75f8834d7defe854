"""Tests for kubesync.delta.pusher."""

from __future__ import annotations

import asyncio
import io
import json
from typing import Any
from unittest.mock import MagicMock

from kubesync.delta.pusher import DELTA_BATCH_CHANNEL, DeltaPusher, StreamSink
from kubesync.informer.pool import InformerPool
from kubesync.models.events import EventType, InformerError, ResourceEvent
from kubesync.models.resources import InformerOptions

_WINDOW_MS = 50
_PAST_WINDOW_S = 0.15


def _resource(uid: str = "pod-1", kind: str | None = "Pod", name: str = "test-pod") -> dict[str, Any]:
    resource: dict[str, Any] = {"metadata": {"uid": uid, "name": name, "namespace": "default"}}
    if kind is not None:
        resource["kind"] = kind
    return resource


def _event(resource: dict[str, Any], event_type: EventType = EventType.ADDED, context: str = "test-context") -> ResourceEvent:
    return ResourceEvent(type=event_type, resource=resource, context_name=context)


def _sink(alive: bool = True) -> MagicMock:
    sink = MagicMock()
    sink.is_alive.return_value = alive
    return sink


def _pusher(pool: InformerPool | None = None, **kwargs: Any) -> tuple[DeltaPusher, MagicMock]:
    pool_mock = pool if pool is not None else MagicMock(spec=InformerPool)
    kwargs.setdefault("throttle_window_ms", _WINDOW_MS)
    return DeltaPusher(pool_mock, **kwargs), pool_mock  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


class TestSubscription:
    def test_registers_handlers_on_construction(self) -> None:
        pusher, pool = _pusher()
        pool.add_event_handler.assert_called_once_with(pusher._handle_event)
        pool.add_error_handler.assert_called_once_with(pusher._handle_error)

    def test_destroy_unsubscribes_and_drops_calculators(self) -> None:
        pusher, pool = _pusher()
        pusher._handle_event(_event(_resource()))
        pusher.destroy()

        pool.remove_event_handler.assert_called_once_with(pusher._handle_event)
        pool.remove_error_handler.assert_called_once_with(pusher._handle_error)
        assert pusher.get_statistics()["totalCalculators"] == 0

    async def test_events_flow_from_real_pool(self, pool: InformerPool, session_factory: Any) -> None:
        pusher = DeltaPusher(pool, throttle_window_ms=_WINDOW_MS)
        sink = _sink()
        pusher.set_main_window(sink)

        await pool.start_informer("Pod", InformerOptions(context_name="test-context"))
        session_factory.latest("Pod").add(_resource("p1"))
        await asyncio.sleep(_PAST_WINDOW_S)

        sink.send.assert_called_once()
        channel, payload = sink.send.call_args.args
        assert channel == DELTA_BATCH_CHANNEL
        assert payload["contextName"] == "test-context"
        assert payload["resourceType"] == "Pod"
        assert payload["totalChanges"] == 1
        await pool.stop_all()
        pusher.destroy()

    def test_error_events_are_absorbed(self) -> None:
        pusher, _ = _pusher()
        pusher._handle_error(InformerError("test-context", "Pod", RuntimeError("boom")))


# ---------------------------------------------------------------------------
# Routing and delivery
# ---------------------------------------------------------------------------


class TestDelivery:
    async def test_batch_sent_on_channel_with_routing_key(self) -> None:
        pusher, _ = _pusher()
        sink = _sink()
        pusher.set_main_window(sink)

        pusher._handle_event(_event(_resource("pod-123")))
        await asyncio.sleep(_PAST_WINDOW_S)

        sink.send.assert_called_once()
        channel, payload = sink.send.call_args.args
        assert channel == "k8s:delta-batch"
        assert payload["contextName"] == "test-context"
        assert payload["resourceType"] == "Pod"
        assert payload["totalChanges"] == 1
        assert isinstance(payload["timestamp"], int)
        delta = payload["deltas"][0]
        assert delta["type"] == "ADD"
        assert delta["uid"] == "pod-123"
        assert delta["fullResource"]["metadata"]["name"] == "test-pod"
        assert "patches" not in delta
        json.dumps(payload)

    async def test_no_sink_still_processes(self) -> None:
        pusher, _ = _pusher()
        pusher._handle_event(_event(_resource("pod-1")))
        await asyncio.sleep(_PAST_WINDOW_S)

        stats = pusher.get_statistics()
        assert stats["totalCalculators"] == 1
        assert stats["calculators"]["test-context:Pod"]["cachedResources"] == 1

    async def test_dead_sink_is_not_sent_to(self) -> None:
        pusher, _ = _pusher()
        sink = _sink(alive=False)
        pusher.set_main_window(sink)

        pusher._handle_event(_event(_resource()))
        await asyncio.sleep(_PAST_WINDOW_S)

        sink.send.assert_not_called()

    async def test_cleared_sink_is_not_sent_to(self) -> None:
        pusher, _ = _pusher()
        sink = _sink()
        pusher.set_main_window(sink)
        pusher.set_main_window(None)

        pusher._handle_event(_event(_resource()))
        pusher.flush_all()

        sink.send.assert_not_called()

    async def test_unrecognized_kind_is_cached_but_not_sent(self) -> None:
        pusher, _ = _pusher()
        sink = _sink()
        pusher.set_main_window(sink)

        pusher._handle_event(_event(_resource("cr-1", kind="UnknownResource")))
        pusher._handle_event(_event(_resource("cr-2", kind="CustomResource")))
        pusher.flush_all()

        sink.send.assert_not_called()
        assert "test-context:UnknownResource" in pusher.get_statistics()["calculators"]

    async def test_resource_types_restricts_delivery(self) -> None:
        pusher, _ = _pusher(resource_types=["Node"])
        sink = _sink()
        pusher.set_main_window(sink)

        pusher._handle_event(_event(_resource("p", kind="Pod")))
        pusher._handle_event(_event(_resource("n", kind="Node")))
        pusher.flush_all()

        assert sink.send.call_count == 1
        assert sink.send.call_args.args[1]["resourceType"] == "Node"

    def test_event_without_kind_is_dropped(self) -> None:
        pusher, _ = _pusher()
        pusher._handle_event(_event(_resource(kind=None)))
        assert pusher.get_statistics()["totalCalculators"] == 0

    def test_event_without_metadata_does_not_raise(self) -> None:
        pusher, _ = _pusher()
        pusher._handle_event(_event({"kind": "Pod"}))
        pusher.flush_all()

    def test_sink_failure_is_contained(self) -> None:
        pusher, _ = _pusher()
        sink = _sink()
        sink.send.side_effect = RuntimeError("window closed")
        pusher.set_main_window(sink)

        pusher._handle_event(_event(_resource("p")))
        pusher.flush_all()

        stats = pusher.get_statistics()["calculators"]["test-context:Pod"]
        assert stats["cachedResources"] == 1
        assert stats["pendingDeltas"] == 0

    def test_calculators_are_per_context_and_kind(self) -> None:
        pusher, _ = _pusher()
        pusher._handle_event(_event(_resource("a", kind="Pod"), context="c1"))
        pusher._handle_event(_event(_resource("b", kind="Pod"), context="c2"))
        pusher._handle_event(_event(_resource("c", kind="Node"), context="c1"))

        assert set(pusher.get_statistics()["calculators"]) == {"c1:Pod", "c2:Pod", "c1:Node"}


# ---------------------------------------------------------------------------
# Calculator management
# ---------------------------------------------------------------------------


class TestCalculatorManagement:
    def test_flush_all_with_no_calculators(self) -> None:
        pusher, _ = _pusher()
        pusher.flush_all()

    def test_flush_all_flushes_every_calculator(self) -> None:
        pusher, _ = _pusher()
        sink = _sink()
        pusher.set_main_window(sink)
        pusher._handle_event(_event(_resource("a", kind="Pod")))
        pusher._handle_event(_event(_resource("b", kind="Node")))
        pusher.flush_all()

        assert sink.send.call_count == 2

    def test_remove_calculator(self) -> None:
        pusher, _ = _pusher()
        pusher._handle_event(_event(_resource()))
        pusher.remove_calculator("test-context", "Pod")
        pusher.remove_calculator("test-context", "Pod")

        assert pusher.get_statistics() == {"totalCalculators": 0, "calculators": {}}

    def test_shared_options_reach_calculators(self) -> None:
        pusher, _ = _pusher(throttle_window_ms=500, max_batch_size=2)
        sink = _sink()
        pusher.set_main_window(sink)
        for i in range(2):
            pusher._handle_event(_event(_resource(f"p{i}")))

        assert sink.send.call_count == 1


class TestStreamSink:
    def test_writes_json_lines(self) -> None:
        stream = io.StringIO()
        sink = StreamSink(stream)
        sink.send(DELTA_BATCH_CHANNEL, {"totalChanges": 1})
        sink.send(DELTA_BATCH_CHANNEL, {"totalChanges": 2})

        lines = stream.getvalue().splitlines()
        assert [json.loads(line)["payload"]["totalChanges"] for line in lines] == [1, 2]
        assert json.loads(lines[0])["channel"] == "k8s:delta-batch"

    def test_alive_until_closed(self) -> None:
        stream = io.StringIO()
        sink = StreamSink(stream)
        assert sink.is_alive() is True
        stream.close()
        assert sink.is_alive() is False
