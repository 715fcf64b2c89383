"""Model catalog, artifact store and life-cycle management."""

from foodlens.models.catalog import ModelCatalog
from foodlens.models.manager import ModelLifecycleManager
from foodlens.models.types import ModelDescriptor, ModelStatus, ModelStatusResponse

__all__ = [
    "ModelCatalog",
    "ModelLifecycleManager",
    "ModelDescriptor",
    "ModelStatus",
    "ModelStatusResponse",
]
