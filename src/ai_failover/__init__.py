"""AI Failover - resilient routing across interchangeable AI providers."""

from .config import ConfigError, ProviderConfig, RouterConfig  # noqa: F401
from .providers.base import AIError, AIErrorType, AIResponse, Message, RequestOptions  # noqa: F401
from .registry import ProviderRegistry  # noqa: F401
from .router import FallbackRouter  # noqa: F401
from .runtime import FailoverRuntime, create_registry  # noqa: F401
from .status import StatusFacade  # noqa: F401

__all__ = [
    "AIError",
    "AIErrorType",
    "AIResponse",
    "ConfigError",
    "FailoverRuntime",
    "FallbackRouter",
    "Message",
    "ProviderConfig",
    "ProviderRegistry",
    "RequestOptions",
    "RouterConfig",
    "StatusFacade",
    "__version__",
    "create_registry",
]

__version__ = "0.1.0"
