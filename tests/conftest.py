"""Shared fakes for kubesync tests."""

from __future__ import annotations

from typing import Any

import pytest

from kubesync.informer.pool import InformerPool
from kubesync.informer.session import WatchHandlers
from kubesync.kubeconfig.loader import KubeConfigError
from kubesync.models.resources import InformerOptions


class FakeSession:
    """Scriptable stand-in for a list+watch session."""

    def __init__(self, resource_type: str, options: InformerOptions, api_client: Any, handlers: WatchHandlers) -> None:
        self.resource_type = resource_type
        self.options = options
        self.api_client = api_client
        self.handlers = handlers
        self.start_calls = 0
        self.stop_calls = 0
        self.fail_starts = 0
        self.connect_on_start = True

    async def start(self) -> None:
        self.start_calls += 1
        if self.fail_starts > 0:
            self.fail_starts -= 1
            raise ConnectionError("connection refused")
        if self.connect_on_start:
            self.handlers.on_connect()

    async def stop(self) -> None:
        self.stop_calls += 1

    # helpers driving the pool's callbacks
    def add(self, resource: dict[str, Any]) -> None:
        self.handlers.on_add(resource)

    def update(self, resource: dict[str, Any]) -> None:
        self.handlers.on_update(resource)

    def delete(self, resource: dict[str, Any]) -> None:
        self.handlers.on_delete(resource)

    def error(self, exc: BaseException) -> None:
        self.handlers.on_error(exc)

    def disconnect(self) -> None:
        self.handlers.on_disconnect()


class FakeSessionFactory:
    """Records every session the pool creates."""

    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []

    def __call__(
        self, resource_type: str, options: InformerOptions, api_client: Any, handlers: WatchHandlers
    ) -> FakeSession:
        session = FakeSession(resource_type, options, api_client, handlers)
        self.sessions.append(session)
        return session

    def latest(self, resource_type: str | None = None) -> FakeSession:
        for session in reversed(self.sessions):
            if resource_type is None or session.resource_type == resource_type:
                return session
        raise LookupError(resource_type)


class FakeApiClientProvider:
    """Hands out opaque API clients for a fixed set of contexts."""

    def __init__(self, contexts: tuple[str, ...] = ("test-context", "other-context")) -> None:
        self.contexts = set(contexts)
        self.requested: list[str] = []

    async def make_api_client_for(self, context_name: str) -> Any:
        self.requested.append(context_name)
        if context_name not in self.contexts:
            raise KubeConfigError(f"Unknown context: {context_name}")
        return object()


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def api_provider() -> FakeApiClientProvider:
    return FakeApiClientProvider()


@pytest.fixture
def pool(api_provider: FakeApiClientProvider, session_factory: FakeSessionFactory) -> InformerPool:
    return InformerPool(api_provider, session_factory=session_factory, backoff_min_s=0.01, backoff_max_s=0.05)
