from __future__ import annotations

import logging
import uuid
from pathlib import Path, PurePath
from typing import Iterable, Protocol

from repairshop.tickets.models import PhotoUpload

logger = logging.getLogger(__name__)


class PhotoStorage(Protocol):
    def save(self, content: bytes, *, original_name: str, mime_type: str) -> PhotoUpload:
        ...

    def remove(self, filenames: Iterable[str]) -> int:
        ...


class LocalPhotoStorage:
    """Keep ticket photos on local disk under ``<root>/tickets``."""

    def __init__(self, root: str | Path) -> None:
        self._directory = Path(root) / "tickets"

    @property
    def directory(self) -> Path:
        return self._directory

    def save(self, content: bytes, *, original_name: str, mime_type: str) -> PhotoUpload:
        self._directory.mkdir(parents=True, exist_ok=True)
        suffix = PurePath(original_name or "").suffix.lower()
        filename = f"{uuid.uuid4()}{suffix}"
        (self._directory / filename).write_bytes(content)
        return PhotoUpload(filename=filename, original_name=original_name, mime_type=mime_type, size=len(content))

    def remove(self, filenames: Iterable[str]) -> int:
        """Delete stored files, logging instead of raising on failure."""

        removed = 0
        for filename in filenames:
            target = self._directory / PurePath(filename).name
            try:
                target.unlink()
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Could not remove photo file %s", target, exc_info=True)
                continue
            removed += 1
        return removed
