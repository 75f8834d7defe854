"""K8sManager: single control surface over kubeconfig contexts and informers.

The manager holds no sync logic of its own.  Context discovery, switching
and validation go to the config loader; watch control and resource reads go
to the :class:`~kubesync.informer.pool.InformerPool`.  Both collaborators are
passed in by the application, which owns the manager's lifetime.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

from kubesync.informer.pool import InformerPool
from kubesync.kubeconfig.loader import KubeConfigError, KubeConfigLoader
from kubesync.models.contexts import K8sContext, K8sContextInfo, LoadConfigResult, ManagerState
from kubesync.models.events import Resource
from kubesync.models.resources import InformerOptions, InformerStatistics
from kubesync.observability.logging import get_logger

_logger = get_logger("manager")


class K8sManager:
    """Facade coordinating a :class:`KubeConfigLoader` and an :class:`InformerPool`."""

    def __init__(self, config_loader: KubeConfigLoader, informer_pool: InformerPool | None = None) -> None:
        self._config_loader = config_loader
        self._informer_pool = informer_pool if informer_pool is not None else InformerPool(config_loader)
        self._state = ManagerState()
        self._context_infos: list[K8sContextInfo] = []

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    async def initialize(self) -> LoadConfigResult:
        """Load contexts through the config loader.

        A second call on an initialized manager returns the cached result
        without touching the loader.  Failures are returned, not raised.
        """
        if self._state.initialized:
            return LoadConfigResult(
                success=True,
                contexts=list(self._context_infos),
                current_context=self._state.current_context,
            )

        _logger.info("manager_initializing")
        try:
            result = self._config_loader.load_from_default()
        except Exception as exc:
            _logger.error("manager_initialize_failed", error=str(exc), exc_info=True)
            return LoadConfigResult(success=False, error=str(exc))

        if not result.success:
            _logger.warning("manager_initialize_failed", error=result.error)
            return result

        self._store_contexts(result)
        self._state.current_context = result.current_context
        self._state.initialized = True
        _logger.info(
            "manager_initialized",
            contexts=[c.name for c in result.contexts],
            current_context=result.current_context,
        )
        return result

    def _store_contexts(self, result: LoadConfigResult) -> None:
        self._context_infos = list(result.contexts)
        for info in result.contexts:
            detail = self._config_loader.get_context_detail(info.name)
            if detail is not None:
                self._state.contexts[info.name] = detail

    async def get_contexts(self) -> list[K8sContextInfo]:
        """Return context summaries, initializing first if needed."""
        if not self._state.initialized:
            return (await self.initialize()).contexts
        result = self._config_loader.load_from_default()
        if result.success:
            self._context_infos = list(result.contexts)
        return result.contexts

    def get_context_detail(self, context_name: str) -> K8sContext | None:
        return self._state.contexts.get(context_name)

    def get_current_context(self) -> str | None:
        return self._state.current_context

    async def switch_context(self, context_name: str) -> bool:
        try:
            switched = self._config_loader.set_current_context(context_name)
        except Exception as exc:
            _logger.error("context_switch_failed", context=context_name, error=str(exc))
            return False
        if switched:
            self._state.current_context = context_name
            self._context_infos = [
                dataclasses.replace(info, is_active=info.name == context_name) for info in self._context_infos
            ]
            _logger.info("context_switched", context=context_name)
        return switched

    async def reload(self) -> LoadConfigResult:
        """Forget discovered contexts and initialize again from disk."""
        _logger.info("manager_reloading")
        self._state.contexts.clear()
        self._context_infos = []
        self._state.initialized = False
        return await self.initialize()

    def is_initialized(self) -> bool:
        return self._state.initialized

    async def validate_context(self, context_name: str) -> bool:
        return await self._config_loader.validate_context(context_name)

    def get_state(self) -> ManagerState:
        """Return a copy of the manager state; mutating it has no effect."""
        return ManagerState(
            initialized=self._state.initialized,
            contexts=dict(self._state.contexts),
            current_context=self._state.current_context,
        )

    def get_config_loader(self) -> KubeConfigLoader:
        return self._config_loader

    def get_informer_pool(self) -> InformerPool:
        return self._informer_pool

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    async def start_watching(
        self,
        context_name: str,
        resource_types: Iterable[str],
        options: InformerOptions | None = None,
    ) -> None:
        """Start one informer per resource type in *context_name*.

        *options* supplies namespace and selectors; its ``context_name`` is
        replaced by *context_name*.  A failure for one type is logged and
        does not stop the remaining types from starting.
        """
        informer_options = (
            dataclasses.replace(options, context_name=context_name)
            if options is not None
            else InformerOptions(context_name=context_name)
        )
        for resource_type in resource_types:
            try:
                await self._informer_pool.start_informer(resource_type, informer_options)
            except KubeConfigError as exc:
                _logger.error(
                    "start_watching_config_error",
                    context=context_name,
                    resource_type=resource_type,
                    error=str(exc),
                )
            except Exception as exc:
                _logger.error(
                    "start_watching_failed",
                    context=context_name,
                    resource_type=resource_type,
                    error=str(exc),
                    exc_info=True,
                )

    async def stop_watching(self, context_name: str) -> None:
        await self._informer_pool.stop_context_informers(context_name)
        _logger.info("stopped_watching", context=context_name)

    def get_resources(self, context_name: str, resource_type: str) -> list[Resource]:
        return self._informer_pool.get_resources(context_name, resource_type)

    def get_informer_statistics(self) -> InformerStatistics:
        return self._informer_pool.get_statistics()

    async def cleanup(self) -> None:
        """Stop every informer and forget all discovered contexts."""
        _logger.info("manager_cleanup")
        await self._informer_pool.stop_all()
        self._state.contexts.clear()
        self._context_infos = []
        self._state.initialized = False
        self._state.current_context = None
