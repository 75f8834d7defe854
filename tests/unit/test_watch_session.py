"""Tests for kubesync.informer.session.KubernetesWatchSession."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from kubesync.informer.session import (
    SUPPORTED_RESOURCE_TYPES,
    KubernetesWatchSession,
    WatchHandlers,
    WatchSessionError,
)
from kubesync.models.resources import InformerOptions


def _raw(uid: str, rv: str = "1", kind: str | None = None) -> dict[str, Any]:
    raw: dict[str, Any] = {"metadata": {"uid": uid, "name": uid, "resourceVersion": rv}}
    if kind is not None:
        raw["kind"] = kind
    return raw


def _list_result(items: list[Any], rv: str = "100") -> MagicMock:
    result = MagicMock()
    result.metadata.resource_version = rv
    result.items = items
    return result


def _handlers() -> tuple[WatchHandlers, MagicMock]:
    recorder = MagicMock()
    handlers = WatchHandlers(
        on_add=recorder.on_add,
        on_update=recorder.on_update,
        on_delete=recorder.on_delete,
        on_error=recorder.on_error,
        on_connect=recorder.on_connect,
        on_disconnect=recorder.on_disconnect,
    )
    return handlers, recorder


def _session(
    resource_type: str = "Pod", options: InformerOptions | None = None
) -> tuple[KubernetesWatchSession, MagicMock]:
    handlers, recorder = _handlers()
    session = KubernetesWatchSession(
        resource_type,
        options or InformerOptions(context_name="test-context"),
        MagicMock(),
        handlers,
    )
    return session, recorder


def _fake_watch(events: list[dict[str, Any]]) -> MagicMock:
    async def stream(*args: Any, **kwargs: Any) -> Any:
        for event in events:
            yield event

    w = MagicMock()
    w.stream = MagicMock(side_effect=stream)
    w.close = AsyncMock()
    return w


async def _block_forever() -> None:
    await asyncio.Event().wait()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_unsupported_type_raises(self) -> None:
        handlers, _ = _handlers()
        with pytest.raises(WatchSessionError, match="Unsupported resource type"):
            KubernetesWatchSession("Widget", InformerOptions(context_name="c"), MagicMock(), handlers)

    def test_supported_types(self) -> None:
        assert {"Pod", "Node", "Deployment", "CronJob", "PersistentVolumeClaim"} <= SUPPORTED_RESOURCE_TYPES

    def test_cluster_wide_list_by_default(self) -> None:
        session, _ = _session("Pod")
        assert session._list_func.__name__ == "list_pod_for_all_namespaces"
        assert session._list_args == ()

    def test_namespace_selects_namespaced_list(self) -> None:
        session, _ = _session("Deployment", InformerOptions(context_name="c", namespace="prod"))
        assert session._list_func.__name__ == "list_namespaced_deployment"
        assert session._list_args == ("prod",)

    def test_namespace_ignored_for_cluster_scoped_kind(self) -> None:
        session, _ = _session("Node", InformerOptions(context_name="c", namespace="prod"))
        assert session._list_func.__name__ == "list_node"
        assert session._list_args == ()


# ---------------------------------------------------------------------------
# start / stop / relist
# ---------------------------------------------------------------------------


class TestStartStop:
    async def test_start_lists_connects_and_spawns_task(self) -> None:
        session, recorder = _session()
        session._list_func = AsyncMock(return_value=_list_result([_raw("a"), _raw("b")]))

        with patch.object(session, "_run_watch", side_effect=_block_forever):
            await session.start()
            names = [c[0] for c in recorder.mock_calls]
            assert names == ["on_add", "on_add", "on_connect"]
            assert session._resource_version == "100"
            assert session._task is not None

            await session.stop()
            assert session._task is None

    async def test_list_items_get_kind(self) -> None:
        session, recorder = _session("Node")
        session._list_func = AsyncMock(return_value=_list_result([_raw("n1")]))

        await session._relist()

        added = recorder.on_add.call_args.args[0]
        assert added["kind"] == "Node"

    async def test_model_items_are_serialized(self) -> None:
        session, recorder = _session()
        model = object()
        session._api_client.sanitize_for_serialization.return_value = _raw("m1")
        session._list_func = AsyncMock(return_value=_list_result([model]))

        await session._relist()

        session._api_client.sanitize_for_serialization.assert_called_once_with(model)
        assert recorder.on_add.call_args.args[0]["metadata"]["uid"] == "m1"

    async def test_failed_list_raises_without_signals(self) -> None:
        session, recorder = _session()
        session._list_func = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await session.start()

        recorder.on_connect.assert_not_called()
        assert session._task is None

    async def test_relist_reconciles_against_previous(self) -> None:
        session, recorder = _session()
        session._list_func = AsyncMock(return_value=_list_result([_raw("a"), _raw("b")]))
        await session._relist()
        recorder.reset_mock()

        session._list_func = AsyncMock(return_value=_list_result([_raw("a", rv="2"), _raw("c")], rv="200"))
        await session._relist()

        assert recorder.on_update.call_args.args[0]["metadata"]["uid"] == "a"
        assert recorder.on_add.call_args.args[0]["metadata"]["uid"] == "c"
        assert recorder.on_delete.call_args.args[0]["metadata"]["uid"] == "b"
        assert session._resource_version == "200"

    async def test_selectors_passed_to_list(self) -> None:
        options = InformerOptions(context_name="c", label_selector="app=web", field_selector="spec.nodeName=n1")
        session, _ = _session("Pod", options)
        session._list_func = AsyncMock(return_value=_list_result([]))

        await session._relist()

        session._list_func.assert_awaited_once_with(label_selector="app=web", field_selector="spec.nodeName=n1")

    async def test_restart_after_stop(self) -> None:
        session, recorder = _session()
        session._list_func = AsyncMock(return_value=_list_result([_raw("a")]))

        with patch.object(session, "_run_watch", side_effect=_block_forever):
            await session.start()
            await session.stop()
            await session.start()
            await session.stop()

        assert recorder.on_connect.call_count == 2
        assert recorder.on_add.call_count == 1
        assert recorder.on_update.call_count == 1


# ---------------------------------------------------------------------------
# Watch stream
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_added_modified_deleted(self) -> None:
        session, recorder = _session()
        session._dispatch({"type": "ADDED", "raw_object": _raw("a", rv="5")})
        session._dispatch({"type": "MODIFIED", "raw_object": _raw("a", rv="6")})
        session._dispatch({"type": "DELETED", "raw_object": _raw("a", rv="7")})

        assert [c[0] for c in recorder.mock_calls] == ["on_add", "on_update", "on_delete"]
        assert session._resource_version == "7"
        assert session._known == {}

    def test_kind_defaults_to_resource_type(self) -> None:
        session, recorder = _session("Service")
        session._dispatch({"type": "ADDED", "raw_object": _raw("s1")})
        assert recorder.on_add.call_args.args[0]["kind"] == "Service"

    def test_bookmark_only_moves_resource_version(self) -> None:
        session, recorder = _session()
        session._dispatch({"type": "BOOKMARK", "raw_object": {"metadata": {"resourceVersion": "900"}}})

        assert session._resource_version == "900"
        assert recorder.mock_calls == []

    def test_error_event_raises_api_exception(self) -> None:
        session, _ = _session()
        with pytest.raises(ApiException) as exc_info:
            session._dispatch({"type": "ERROR", "raw_object": {"code": 410, "message": "too old"}})
        assert exc_info.value.status == 410

    def test_non_dict_raw_object_ignored(self) -> None:
        session, recorder = _session()
        session._dispatch({"type": "ADDED", "raw_object": None})
        assert recorder.mock_calls == []

    async def test_run_watch_resumes_from_resource_version(self) -> None:
        options = InformerOptions(context_name="c", label_selector="app=web", resync_period=300)
        session, recorder = _session("Pod", options)
        session._running = True
        session._resource_version = "100"
        w = _fake_watch([{"type": "ADDED", "raw_object": _raw("a", rv="101")}])

        with patch("kubesync.informer.session.watch.Watch", return_value=w):
            await session._run_watch()

        kwargs = w.stream.call_args.kwargs
        assert kwargs["resource_version"] == "100"
        assert kwargs["allow_watch_bookmarks"] is True
        assert kwargs["label_selector"] == "app=web"
        assert kwargs["timeout_seconds"] == 300
        recorder.on_add.assert_called_once()
        w.close.assert_awaited_once()
        assert session._resource_version == "101"


class TestWatchLoop:
    async def test_gone_triggers_relist_and_continues(self) -> None:
        session, recorder = _session()
        calls = 0

        async def run_watch() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ApiException(status=410, reason="Gone")
            session._running = False

        session._running = True
        with (
            patch.object(session, "_run_watch", side_effect=run_watch),
            patch.object(session, "_relist", new_callable=AsyncMock) as relist,
        ):
            await session._watch_loop()

        relist.assert_awaited_once()
        assert calls == 2
        recorder.on_error.assert_not_called()
        recorder.on_disconnect.assert_not_called()

    async def test_clean_stream_end_rewatches(self) -> None:
        session, recorder = _session()
        calls = 0

        async def run_watch() -> None:
            nonlocal calls
            calls += 1
            if calls == 3:
                session._running = False

        session._running = True
        with patch.object(session, "_run_watch", side_effect=run_watch):
            await session._watch_loop()

        assert calls == 3
        recorder.on_disconnect.assert_not_called()

    async def test_other_failure_reports_error_then_disconnect(self) -> None:
        session, recorder = _session()
        session._running = True

        with patch.object(session, "_run_watch", side_effect=ApiException(status=500, reason="boom")):
            await session._watch_loop()

        assert [c[0] for c in recorder.mock_calls] == ["on_error", "on_disconnect"]
        assert session._running is False

    async def test_failed_relist_after_gone_disconnects(self) -> None:
        session, recorder = _session()
        session._running = True

        with (
            patch.object(session, "_run_watch", side_effect=ApiException(status=410, reason="Gone")),
            patch.object(session, "_relist", new_callable=AsyncMock, side_effect=ConnectionError("down")),
        ):
            await session._watch_loop()

        recorder.on_error.assert_called_once()
        recorder.on_disconnect.assert_called_once()
