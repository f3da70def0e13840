"""Portal sync cycle driver."""
from core.sync.orchestrator import (
    EntityTransformation,
    PortalEntityProvider,
    SyncStatus,
)

__all__ = [
    "EntityTransformation",
    "PortalEntityProvider",
    "SyncStatus",
]
