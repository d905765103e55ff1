"""Artifact storage."""

from .artifact_store import (
    ArtifactStore,
    FilesystemArtifactStore,
    StoredObject,
    artifact_key,
    read_image_dimensions,
)
from .image_optimizer import ImageOptimizer, OptimizedImage

__all__ = [
    "ArtifactStore",
    "FilesystemArtifactStore",
    "ImageOptimizer",
    "OptimizedImage",
    "StoredObject",
    "artifact_key",
    "read_image_dimensions",
]
