"""Type definitions for model management."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ModelDescriptor(BaseModel):
    """A selectable on-device model artifact.

    Attributes:
        id: HuggingFace repository ID (e.g., "mlx-community/gemma-3-1b-it-qat-4bit")
        display_name: Human readable name
        description: One-line description shown next to the name
        size: Approximate on-disk size (e.g., "~0.75 GB")
        minimum_memory_gb: Device memory required to run the model
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="HuggingFace repository ID")
    display_name: str
    description: str = ""
    size: str = ""
    minimum_memory_gb: int = Field(..., ge=0)

    @property
    def directory_name(self) -> str:
        return self.id.split("/")[-1]

    def is_available(self, device_memory_gb: int) -> bool:
        return device_memory_gb >= self.minimum_memory_gb

    def unavailability_reason(self, device_memory_gb: int) -> Optional[str]:
        if self.is_available(device_memory_gb):
            return None
        return (
            f"Device RAM should be {self.minimum_memory_gb}GB or higher "
            f"(current: {device_memory_gb}GB)"
        )


class ModelStatus(str, Enum):
    """Status of the currently selected model."""
    NOT_DOWNLOADED = "NOT_DOWNLOADED"  # No artifact in the store
    DOWNLOADING = "DOWNLOADING"  # Fetch in progress
    DOWNLOADED = "DOWNLOADED"  # Artifact on disk, nothing resident
    LOADING = "LOADING"  # Materializing the artifact into memory
    LOADED = "LOADED"  # Resident handle available
    ERROR = "ERROR"  # Download or load failed


class ModelStatusResponse(BaseModel):
    """Snapshot of the selected model's status.

    Attributes:
        model_id: The currently selected model
        status: Current status of the model
        progress: Estimated download progress (only present when status is DOWNLOADING)
        error_message: Error description (only present when status is ERROR)
    """
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    status: ModelStatus
    progress: Optional[float] = Field(None, ge=0.0, le=1.0)
    error_message: Optional[str] = None


class CatalogEntry(BaseModel):
    """A catalog model with its availability on this device."""
    model: ModelDescriptor
    available: bool
    unavailability_reason: Optional[str] = None
    selected: bool = False


class CatalogResponse(BaseModel):
    device_memory_gb: int
    models: List[CatalogEntry]


class SelectModelRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str = Field(..., description="Catalog model ID to select")


class DeleteResponse(BaseModel):
    """Response when deleting the selected model's artifact.

    Attributes:
        status: "deleted" if any artifact location existed, else "nothing_to_delete"
        model_id: The model whose artifact was removed
    """
    model_config = ConfigDict(protected_namespaces=())

    status: str = Field(..., description="Action taken: 'deleted' or 'nothing_to_delete'")
    model_id: str


class ArtifactFile(BaseModel):
    name: str = Field(..., description="Path relative to the candidate location")
    size_bytes: int
    size: str = Field(..., description="Human readable size (e.g., '1.2 MB')")


class CandidateLocation(BaseModel):
    """One place the selected model's artifact may live.

    Attributes:
        path: Absolute path of the candidate
        primary: True for the location downloads are written to
        exists: Whether anything exists at the path
        has_artifact: Whether the path (or its newest hub snapshot) holds model files
        files: Files under the path, at most 50
        omitted_files: Files found beyond the listed ones
        total_size_bytes: Size of every file found under the path
    """
    path: str
    primary: bool = False
    exists: bool
    has_artifact: bool = False
    files: List[ArtifactFile] = Field(default_factory=list)
    omitted_files: int = 0
    total_size_bytes: int = 0


class DebugInfoResponse(BaseModel):
    """Diagnostics for the selected model.

    Attributes:
        model_id: The currently selected model
        status: Current status of the model
        cache_dir: Root of the artifact store
        locations: Every candidate location, primary first
        recent_events: Latest lifecycle events, oldest first
    """
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    status: ModelStatus
    cache_dir: str
    locations: List[CandidateLocation]
    recent_events: List[str]
