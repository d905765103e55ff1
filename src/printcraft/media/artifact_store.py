"""Durable storage for finished artifacts."""

from __future__ import annotations

import io
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping
from uuid import UUID

from PIL import Image, UnidentifiedImageError

from ..exceptions import StorageError

_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]+")
_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


@dataclass(frozen=True, slots=True)
class StoredObject:
    key: str
    url: str
    size_bytes: int


class ArtifactStore(ABC):
    """Blob store for generated images.

    Uploads under the same key overwrite the previous object, so a retried
    upload for a job never leaves a second artifact behind.
    """

    @abstractmethod
    def upload(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> StoredObject:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        ...


@dataclass(slots=True)
class FilesystemArtifactStore(ArtifactStore):
    """Artifact store writing objects below ``root`` and serving them from ``public_base_url``."""

    root: Path
    public_base_url: str
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def upload(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> StoredObject:
        target = self._path_for(key)
        tmp_path = target.with_name(f".{target.name}.part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, target)
            sidecar = {"content_type": content_type, **dict(metadata or {})}
            self._meta_path(target).write_text(json.dumps(sidecar), encoding="utf-8")
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"failed to store artifact '{key}': {exc}") from exc
        self.log.info(
            "media.artifact.stored",
            extra={"key": key, "size_bytes": len(data), "content_type": content_type},
        )
        return StoredObject(key=key, url=self.public_url(key), size_bytes=len(data))

    def delete(self, key: str) -> None:
        target = self._path_for(key)
        try:
            target.unlink(missing_ok=True)
            self._meta_path(target).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"failed to delete artifact '{key}': {exc}") from exc
        self.log.info("media.artifact.deleted", extra={"key": key})

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{key}"

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def _path_for(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise StorageError(f"artifact key escapes storage root: {key!r}")
        return path

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(f"{path.name}.meta.json")


def artifact_key(owner_id: str, job_id: UUID, content_type: str) -> str:
    """Deterministic storage key of a job's artifact."""

    owner_segment = _SAFE_SEGMENT.sub("_", owner_id).strip("._") or "owner"
    extension = _EXTENSIONS.get(content_type.lower(), ".bin")
    return f"generations/{owner_segment}/{job_id}{extension}"


def read_image_dimensions(data: bytes) -> tuple[int, int] | None:
    """Return ``(width, height)`` of an encoded image, ``None`` when it is not one."""

    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except UnidentifiedImageError:
        return None


__all__ = [
    "ArtifactStore",
    "FilesystemArtifactStore",
    "StoredObject",
    "artifact_key",
    "read_image_dimensions",
]
