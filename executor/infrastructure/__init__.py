"""Infrastructure layer exports."""

from .provider import ProviderClient, TokenManager, WorkspaceProvider
from .registry import RegistryClient, SessionRegistry

__all__ = [
    "ProviderClient",
    "RegistryClient",
    "SessionRegistry",
    "TokenManager",
    "WorkspaceProvider",
]
