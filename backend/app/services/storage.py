from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
import logging
import re
import uuid

from ..core.config import get_settings
from ..core.errors import UpstreamError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass(frozen=True)
class StoredObject:
    reference: str
    url: str


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", name or "").strip("._")
    return cleaned or "file"


class ObjectStore(ABC):
    @abstractmethod
    def put(self, data: bytes, content_type: str, *, key: str | None = None) -> StoredObject:
        """Store bytes; raises UpstreamError when the backend fails."""

    @abstractmethod
    def get(self, reference: str) -> bytes:
        ...


class LocalObjectStore(ObjectStore):
    """
    Filesystem-backed object store.

    References are paths relative to `root`; URLs are built from
    STORAGE_PUBLIC_BASE_URL so a static file server can expose them.
    """

    def __init__(self, root: str | Path, public_base_url: str = "/files") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, reference: str) -> Path:
        path = (self.root / reference).resolve()
        if self.root.resolve() not in path.parents:
            raise UpstreamError(f"Invalid object reference: {reference}", source="storage")
        return path

    def put(self, data: bytes, content_type: str, *, key: str | None = None) -> StoredObject:
        reference = key or f"objects/{uuid.uuid4()}"
        try:
            path = self._path_for(reference)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("xb") as handle:
                handle.write(data)
        except FileExistsError as exc:
            raise UpstreamError(f"Object already exists: {reference}", source="storage") from exc
        except OSError as exc:
            raise UpstreamError(f"Failed to store object: {exc}", source="storage") from exc

        logger.info("Stored object", extra={"step": "storage_put"})
        return StoredObject(reference=reference, url=f"{self.public_base_url}/{reference}")

    def get(self, reference: str) -> bytes:
        path = self._path_for(reference)
        if not path.exists():
            raise UpstreamError(f"Object not found: {reference}", source="storage")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise UpstreamError(f"Failed to read object: {exc}", source="storage") from exc


@lru_cache(maxsize=1)
def get_object_store() -> ObjectStore:
    settings = get_settings()
    return LocalObjectStore(settings.STORAGE_DIR, settings.STORAGE_PUBLIC_BASE_URL)
