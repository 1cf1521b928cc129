"""Read-only health view over the registry."""

from __future__ import annotations

from typing import Any, Dict

from .providers.base import AIError, AIErrorType, ProviderState, ProviderStatus
from .registry import ProviderRegistration, ProviderRegistry


class StatusFacade:
    """Project registrations and adapter status into plain dictionaries.

    Only ``has_api_key`` is reported for credentials; key values never
    leave the registry.
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self.registry = registry

    def get_all_statuses(self) -> Dict[str, Dict[str, Any]]:
        return {
            provider_id: self._describe(provider_id, registration)
            for provider_id, registration in self.registry.registrations().items()
        }

    def get_status(self, provider_id: str) -> Dict[str, Any]:
        registration = self.registry.get_registration(provider_id)
        if registration is None:
            raise AIError(
                f"Provider not found: {provider_id}",
                AIErrorType.PROVIDER_NOT_FOUND,
                provider_id,
            )
        return self._describe(provider_id, registration)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "active_provider": self.registry.active_provider,
            "fallback_chain": list(self.registry.fallback_chain),
            "providers": self.get_all_statuses(),
        }

    def _describe(self, provider_id: str, registration: ProviderRegistration) -> Dict[str, Any]:
        config = registration.config
        return {
            "config": {
                "name": config.name,
                "enabled": config.enabled,
                "priority": config.priority,
                "model": config.model,
                "endpoint": config.endpoint,
                "has_api_key": bool(config.api_key),
            },
            "status": self._status_for(registration).to_dict(),
            "is_active": provider_id == self.registry.active_provider,
            "in_chain": provider_id in self.registry.fallback_chain,
        }

    @staticmethod
    def _status_for(registration: ProviderRegistration) -> ProviderStatus:
        if registration.instance is not None:
            return registration.instance.get_status()
        status = ProviderStatus(current_model=registration.config.model)
        if registration.last_error:
            status.state = ProviderState.FAILED
            status.error = registration.last_error
        return status

