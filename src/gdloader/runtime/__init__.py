from .events import GDCoreEvents, Subscription
from .loader import (
    ArtifactBackend,
    CoreHooks,
    GDCoreHandle,
    GDLoader,
    LoaderState,
    NodeBackend,
    NodeSession,
)

__all__ = [
    "GDCoreEvents",
    "Subscription",
    "ArtifactBackend",
    "CoreHooks",
    "GDCoreHandle",
    "GDLoader",
    "LoaderState",
    "NodeBackend",
    "NodeSession",
]
