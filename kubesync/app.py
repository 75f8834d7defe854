"""Application bootstrap for kubesync.

Wires the components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → kubeconfig loader → informer pool
              → delta pusher → manager

Shutdown runs in reverse: pending deltas are flushed, the pusher detaches
from the pool, then the manager stops every informer.  Each step's error is
caught and logged independently so one failure does not prevent the rest
from shutting down.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Iterable
from typing import TYPE_CHECKING

from kubesync.config import load_config
from kubesync.delta.pusher import DeltaPusher, PushSink
from kubesync.informer.pool import InformerPool
from kubesync.kubeconfig.loader import KubeConfigLoader
from kubesync.manager import K8sManager
from kubesync.models.config import KubeSyncConfig
from kubesync.models.resources import InformerOptions
from kubesync.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeSyncApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe on an app that was never started or is already stopped.
    """

    def __init__(
        self,
        config: KubeSyncConfig | None = None,
        sink: PushSink | None = None,
        json_logs: bool = True,
    ) -> None:
        self.config = config
        self._sink = sink
        self._json_logs = json_logs

        self._loader: KubeConfigLoader | None = None
        self._pool: InformerPool | None = None
        self._pusher: DeltaPusher | None = None
        self._manager: K8sManager | None = None

        self._running = False
        self._log: FilteringBoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def manager(self) -> K8sManager:
        if self._manager is None:
            raise RuntimeError("KubeSyncApp is not started")
        return self._manager

    @property
    def pusher(self) -> DeltaPusher:
        if self._pusher is None:
            raise RuntimeError("KubeSyncApp is not started")
        return self._pusher

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if the kubeconfig cannot be loaded.
        """
        if self.config is None:
            self.config = load_config()

        setup_logging(self.config.log.level, json_output=self._json_logs)
        self._log = get_logger("app")
        self._log.info("kubesync_starting", version=_kubesync_version())

        self._loader = KubeConfigLoader(self.config.kubeconfig.path or None)
        self._pool = InformerPool(
            self._loader,
            backoff_min_s=self.config.watch.backoff_min_s,
            backoff_max_s=self.config.watch.backoff_max_s,
        )
        self._pusher = DeltaPusher(
            self._pool,
            throttle_window_ms=self.config.delta.throttle_window_ms,
            max_batch_size=self.config.delta.max_batch_size,
            resource_types=self.config.watch.resource_types,
        )
        self._pusher.set_main_window(self._sink)
        self._manager = K8sManager(self._loader, self._pool)

        result = await self._manager.initialize()
        if not result.success:
            raise _ComponentError("kubeconfig", RuntimeError(result.error or "unknown error"))

        self._running = True
        self._log.info(
            "kubesync_started",
            contexts=len(result.contexts),
            current_context=result.current_context,
        )

    async def watch(
        self,
        context_name: str | None = None,
        resource_types: Iterable[str] | None = None,
        options: InformerOptions | None = None,
    ) -> str:
        """Start informers for *resource_types* in *context_name*.

        Defaults to the current context and the configured resource types.
        Returns the context actually watched.
        """
        assert self.config is not None
        manager = self.manager
        target = context_name or manager.get_current_context()
        if not target:
            raise _ComponentError("watch", RuntimeError("no context given and no current context set"))
        kinds = list(resource_types) if resource_types is not None else list(self.config.watch.resource_types)
        await manager.start_watching(target, kinds, options)
        if self._log is not None:
            self._log.info("watching", context=target, resource_types=kinds)
        return target

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse dependency order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubesync_shutting_down")
        self._running = False

        if self._pusher is not None:
            try:
                self._pusher.flush_all()
                self._pusher.destroy()
            except Exception as exc:
                log.error("component_stop_failed", component="pusher", error=str(exc))
            self._pusher = None

        if self._manager is not None:
            try:
                await asyncio.wait_for(self._manager.cleanup(), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("component_stop_timed_out", component="manager", timeout=_SHUTDOWN_GRACE_SECONDS)
            except Exception as exc:
                log.error("component_stop_failed", component="manager", error=str(exc))

        log.info("kubesync_stopped")


def _kubesync_version() -> str:
    from kubesync import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(
    config: KubeSyncConfig | None = None,
    sink: PushSink | None = None,
    context_name: str | None = None,
    options: InformerOptions | None = None,
    json_logs: bool = True,
) -> None:
    """Create the app, register OS signals, watch until shutdown is requested."""
    app = KubeSyncApp(config=config, sink=sink, json_logs=json_logs)
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await app.watch(context_name=context_name, options=options)
        while app.running:
            await asyncio.sleep(0.5)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal_startup_error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
