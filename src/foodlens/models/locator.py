"""Lookup of model artifacts across the primary and legacy cache layouts."""

from pathlib import Path
from typing import List, Optional, Union

from foodlens.common.logger import create_logger
from foodlens.models.types import ArtifactFile, CandidateLocation, ModelDescriptor

logger = create_logger(__name__)

ARTIFACT_SUFFIXES = (".safetensors", ".bin", ".json")
ARTIFACT_MARKERS = ("config", "tokenizer")
MAX_LISTED_FILES = 50


def is_artifact_file(name: str) -> bool:
    lowered = name.lower()
    return lowered.endswith(ARTIFACT_SUFFIXES) or any(m in lowered for m in ARTIFACT_MARKERS)


def format_bytes(num_bytes: int) -> str:
    if num_bytes < 1000:
        return f"{num_bytes} bytes"
    size = float(num_bytes)
    for unit in ("KB", "MB", "GB"):
        size /= 1000
        if size < 1000 or unit == "GB":
            break
    return f"{size:.1f} {unit}"


def has_artifact_files(directory: Path) -> bool:
    try:
        return any(p.is_file() and is_artifact_file(p.name) for p in directory.iterdir())
    except OSError as e:
        logger.debug(f"Cannot list {directory}: {e}")
        return False


class ArtifactLocator:
    """Resolves where a model's artifact lives inside the cache directory.

    Downloads always land in the primary path ``<cache>/models/<repo id>``.
    The remaining candidates cover layouts left behind by older clients and
    by the HuggingFace hub cache; they are only ever read or deleted.
    """

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)

    def primary_path(self, model: ModelDescriptor) -> Path:
        return self.cache_dir / "models" / model.id

    def candidate_paths(self, model: ModelDescriptor) -> List[Path]:
        """Ordered candidate locations, primary first, without duplicates."""
        dashed = model.id.replace("/", "--")
        underscored = model.id.replace("/", "_")
        models_dir = self.cache_dir / "models"
        candidates = [
            self.primary_path(model),
            models_dir / dashed,
            models_dir / underscored,
            models_dir / model.directory_name,
            self.cache_dir / "huggingface" / "hub" / f"models--{dashed}",
            self.cache_dir / "huggingface" / "hub" / dashed,
            self.cache_dir / "huggingface" / "transformers" / dashed,
            self.cache_dir / "mlx" / model.id,
            self.cache_dir / "mlx-models" / model.id,
            self.cache_dir / "mlx_models" / model.id,
        ]
        unique = []
        for path in candidates:
            if path not in unique:
                unique.append(path)
        return unique

    def existing_paths(self, model: ModelDescriptor) -> List[Path]:
        return [p for p in self.candidate_paths(model) if p.exists()]

    def locate(self, model: ModelDescriptor) -> Optional[Path]:
        """Returns the first candidate directory holding artifact files.

        HuggingFace hub layouts resolve to their newest populated snapshot.
        """
        primary = self.primary_path(model)
        for candidate in self.candidate_paths(model):
            if not candidate.is_dir():
                continue
            resolved = self._resolve(candidate)
            if resolved is None:
                logger.info(f"Ignoring {candidate}: directory exists but holds no model files")
                continue
            if candidate != primary:
                logger.warning(f"Model {model.id} found at legacy path {resolved}")
            return resolved
        return None

    def _resolve(self, directory: Path) -> Optional[Path]:
        if has_artifact_files(directory):
            return directory
        snapshots = directory / "snapshots"
        if not snapshots.is_dir():
            return None
        populated = [s for s in snapshots.iterdir() if s.is_dir() and has_artifact_files(s)]
        if not populated:
            return None
        return max(populated, key=lambda s: s.stat().st_mtime)

    def describe(self, model: ModelDescriptor, max_files: int = MAX_LISTED_FILES) -> List[CandidateLocation]:
        """Reports what is on disk at every candidate location."""
        primary = self.primary_path(model)
        return [self._describe_path(path, path == primary, max_files) for path in self.candidate_paths(model)]

    def _describe_path(self, path: Path, primary: bool, max_files: int) -> CandidateLocation:
        location = CandidateLocation(path=str(path), primary=primary, exists=path.exists())
        if not path.is_dir():
            return location

        location.has_artifact = self._resolve(path) is not None
        try:
            found = sorted(p for p in path.rglob("*") if p.is_file())
        except OSError as e:
            logger.debug(f"Cannot walk {path}: {e}")
            return location

        for file in found:
            try:
                size = file.stat().st_size
            except OSError:
                continue
            location.total_size_bytes += size
            if len(location.files) < max_files:
                location.files.append(ArtifactFile(
                    name=str(file.relative_to(path)),
                    size_bytes=size,
                    size=format_bytes(size),
                ))
            else:
                location.omitted_files += 1
        return location
