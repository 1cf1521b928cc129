"""Provider registry with factory resolution and lazy adapter construction."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Tuple

from .config import ProviderConfig
from .executor import ExecutorSettings
from .providers.base import AIError, AIErrorType, BaseAIProvider, ProviderFactory

LOGGER = logging.getLogger("ai_failover.registry")


@dataclass
class ProviderRegistration:
    factory: ProviderFactory
    config: ProviderConfig
    instance: Optional[BaseAIProvider] = None
    sequence: int = 0
    last_error: Optional[str] = None
    generation: int = 0


class ProviderRegistry:
    """Maps provider ids to configurations and lazily built adapters.

    Registries are plain objects: build one per application (or per test)
    and pass it to the router and the status facade. All mutations of the
    registration map happen synchronously, so readers never observe a
    half-updated chain.
    """

    def __init__(self, *, executor_settings: Optional[ExecutorSettings] = None) -> None:
        self._factories: Dict[str, ProviderFactory] = {}
        self._registrations: Dict[str, ProviderRegistration] = {}
        self._pending: Dict[str, "asyncio.Task[BaseAIProvider]"] = {}
        self._retired: List[BaseAIProvider] = []
        self._chain: Tuple[str, ...] = ()
        self._sequence = 0
        self.executor_settings = executor_settings
        self.active_provider: Optional[str] = None

    @property
    def fallback_chain(self) -> Tuple[str, ...]:
        return self._chain

    def register_factory(self, kind: str, factory: ProviderFactory) -> None:
        self._factories[kind] = factory
        LOGGER.info("Registered factory for provider type: %s", kind)

    def register_provider(self, config: ProviderConfig) -> ProviderRegistration:
        factory = self._find_factory(config)
        if factory is None:
            raise AIError(
                f"No factory found for provider type: {config.provider}",
                AIErrorType.PROVIDER_NOT_FOUND,
                config.provider,
            )

        previous = self._registrations.get(config.provider)
        if previous is not None:
            self._pending.pop(config.provider, None)
            self._drop_instance(previous)
            sequence = previous.sequence
        else:
            self._sequence += 1
            sequence = self._sequence

        registration = ProviderRegistration(factory=factory, config=config, sequence=sequence)
        self._registrations[config.provider] = registration
        LOGGER.info("Registered provider: %s (%s)", config.provider, config.name)
        self._rebuild_chain()
        return registration

    def unregister_provider(self, provider_id: str) -> Optional[BaseAIProvider]:
        registration = self._registrations.pop(provider_id, None)
        if registration is None:
            raise self._not_found(provider_id)
        self._pending.pop(provider_id, None)
        instance = self._drop_instance(registration)
        if self.active_provider == provider_id:
            self.active_provider = None
        LOGGER.info("Unregistered provider: %s", provider_id)
        self._rebuild_chain()
        return instance

    def update_provider(self, provider_id: str, **changes: Any) -> ProviderConfig:
        """Change a registered provider's configuration at runtime.

        The live adapter, if any, is disposed so the next use builds one
        from the updated configuration.
        """
        registration = self._require(provider_id)
        known = {f.name for f in fields(ProviderConfig)} - {"provider"}
        unknown = set(changes) - known
        if unknown:
            raise AIError(
                f"Unknown provider settings: {', '.join(sorted(unknown))}",
                AIErrorType.CONFIGURATION,
                provider_id,
            )
        for key, value in changes.items():
            setattr(registration.config, key, value)
        registration.generation += 1
        self._pending.pop(provider_id, None)
        self._drop_instance(registration)
        if not registration.config.enabled and self.active_provider == provider_id:
            self.active_provider = None
        LOGGER.info("Updated provider %s: %s", provider_id, ", ".join(sorted(changes)))
        self._rebuild_chain()
        return registration.config

    def update_settings(self, settings: ExecutorSettings) -> None:
        """Apply new cache and retry settings to every live adapter."""
        self.executor_settings = settings
        for registration in self._registrations.values():
            if registration.instance is not None:
                registration.instance.configure(settings)
        LOGGER.info("Updated executor settings")

    def get_registration(self, provider_id: str) -> Optional[ProviderRegistration]:
        return self._registrations.get(provider_id)

    def registrations(self) -> Dict[str, ProviderRegistration]:
        return dict(self._registrations)

    def get_provider(self, provider_id: str) -> Optional[BaseAIProvider]:
        registration = self._registrations.get(provider_id)
        return registration.instance if registration else None

    def is_enabled(self, provider_id: str) -> bool:
        registration = self._registrations.get(provider_id)
        return registration is not None and registration.config.enabled

    async def initialize_provider(self, provider_id: str) -> BaseAIProvider:
        """Return a ready adapter, constructing and initializing it if needed.

        Concurrent callers for the same id share one initialization. A
        failure leaves the registration without an instance; callers retry
        explicitly.
        """
        registration = self._require(provider_id)
        instance = registration.instance
        if instance is not None and instance.available:
            return instance

        task = self._pending.get(provider_id)
        if task is None:
            task = asyncio.ensure_future(self._initialize(provider_id, registration, registration.generation))
            self._pending[provider_id] = task
            task.add_done_callback(lambda done, pid=provider_id: self._clear_pending(pid, done))
        return await asyncio.shield(task)

    async def _initialize(
        self,
        provider_id: str,
        registration: ProviderRegistration,
        generation: int,
    ) -> BaseAIProvider:
        if self._is_stale(provider_id, registration, generation):
            raise self._reconfigured(provider_id)
        LOGGER.info("Initializing provider: %s", provider_id)
        settings = self.executor_settings
        self._drop_instance(registration)
        adapter = registration.factory.create(registration.config)
        if settings is not None:
            adapter.configure(settings)
        try:
            await adapter.initialize()
        except Exception as exc:
            if registration.generation == generation:
                registration.last_error = str(exc) or type(exc).__name__
            LOGGER.error("Failed to initialize provider %s: %s", provider_id, exc)
            raise

        if self._is_stale(provider_id, registration, generation):
            # The configuration changed underneath us; this adapter is stale.
            adapter.dispose()
            self._retired.append(adapter)
            raise self._reconfigured(provider_id)

        if self.executor_settings is not settings and self.executor_settings is not None:
            adapter.configure(self.executor_settings)
        registration.instance = adapter
        registration.last_error = None
        if self.active_provider is None:
            self.active_provider = provider_id
            LOGGER.info("Set active provider: %s", provider_id)
        return adapter

    def _is_stale(self, provider_id: str, registration: ProviderRegistration, generation: int) -> bool:
        return self._registrations.get(provider_id) is not registration or registration.generation != generation

    @staticmethod
    def _reconfigured(provider_id: str) -> AIError:
        return AIError(
            f"Provider {provider_id} was reconfigured during initialization",
            AIErrorType.INITIALIZATION,
            provider_id,
        )

    def _clear_pending(self, provider_id: str, task: "asyncio.Task[BaseAIProvider]") -> None:
        if self._pending.get(provider_id) is task:
            del self._pending[provider_id]

    def reset_all(self) -> None:
        for registration in self._registrations.values():
            if registration.instance is not None:
                registration.instance.reset()
        LOGGER.info("Reset all providers")

    def dispose_all(self) -> List[BaseAIProvider]:
        """Dispose every adapter and forget all registrations.

        Returns every adapter disposed since the last call, including those
        replaced by re-registration or runtime updates, so the caller can
        close their network clients.
        """
        for registration in self._registrations.values():
            self._drop_instance(registration)
        disposed, self._retired = self._retired, []
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
        self._registrations.clear()
        self._chain = ()
        self.active_provider = None
        LOGGER.info("Disposed all providers")
        return disposed

    def _find_factory(self, config: ProviderConfig) -> Optional[ProviderFactory]:
        direct = self._factories.get(config.provider)
        if direct is not None and direct.supports(config):
            return direct
        for factory in self._factories.values():
            if factory.supports(config):
                return factory
        return None

    def _rebuild_chain(self) -> None:
        enabled = [reg for reg in self._registrations.values() if reg.config.enabled]
        enabled.sort(key=lambda reg: (reg.config.sort_priority, reg.sequence))
        self._chain = tuple(reg.config.provider for reg in enabled)
        LOGGER.debug("Updated fallback chain: %s", list(self._chain))

    def _drop_instance(self, registration: ProviderRegistration) -> Optional[BaseAIProvider]:
        instance, registration.instance = registration.instance, None
        if instance is not None:
            instance.dispose()
            self._retired.append(instance)
        return instance

    def _require(self, provider_id: str) -> ProviderRegistration:
        registration = self._registrations.get(provider_id)
        if registration is None:
            raise self._not_found(provider_id)
        return registration

    @staticmethod
    def _not_found(provider_id: str) -> AIError:
        return AIError(
            f"Provider not found: {provider_id}",
            AIErrorType.PROVIDER_NOT_FOUND,
            provider_id,
        )
