from typing import List, Optional, Sequence

import psutil

from foodlens.models.types import ModelDescriptor


DEFAULT_MODELS = (
    ModelDescriptor(
        id="mlx-community/gemma-3-1b-it-qat-4bit",
        display_name="Gemma 3-1B (4-bit)",
        description="Powerful AI for text and images, built for speed and scale",
        size="~0.75 GB",
        minimum_memory_gb=2,
    ),
    ModelDescriptor(
        id="mlx-community/gemma-3n-E2B-it-lm-4bit",
        display_name="Gemma 3n-E2B (4-bit)",
        description="Powerful AI for text and images, built for speed and scale",
        size="~2.51 GB",
        minimum_memory_gb=7,
    ),
)


def get_device_memory_gb() -> int:
    """Whole GiB of physical memory on this device."""
    return int(psutil.virtual_memory().total // (1024 ** 3))


class ModelCatalog:
    """Static, ordered list of selectable models."""

    def __init__(self, models: Optional[Sequence[ModelDescriptor]] = None):
        self._models = tuple(models if models is not None else DEFAULT_MODELS)
        if not self._models:
            raise ValueError("Model catalog must contain at least one model")

    def list_models(self) -> List[ModelDescriptor]:
        return list(self._models)

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        return next((m for m in self._models if m.id == model_id), None)

    def default(self) -> ModelDescriptor:
        return self._models[0]

    @staticmethod
    def is_available(descriptor: ModelDescriptor, device_memory_gb: int) -> bool:
        return descriptor.is_available(device_memory_gb)
