"""Durable image uploads addressed by URL."""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from .errors import BadRequest, NotFound, StorageFailure

logger = logging.getLogger(__name__)


class UploadService:
    """Stores each upload under a fresh UUID name and hands back its URL.

    No deduplication: the same bytes uploaded twice become two files.
    """

    extension = ".png"

    def __init__(self, upload_dir: Path, url_prefix: str = "/uploads") -> None:
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def store(self, data: bytes, content_type: Optional[str] = None) -> str:
        if not data:
            raise BadRequest("No file uploaded or invalid file")

        name = f"{uuid.uuid4()}{self.extension}"
        path = self.upload_dir / name
        tmp = self.upload_dir / f".{name}.part"
        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            logger.error("Error saving upload %s (%s): %s", name, content_type, exc)
            tmp.unlink(missing_ok=True)
            raise StorageFailure("Internal Server Error") from exc

        logger.info("Stored upload %s (%d bytes, %s)", name, len(data), content_type)
        return f"{self.url_prefix}/{name}"

    def path_for(self, url: str) -> Path:
        """Map a URL returned by ``store`` back to its file."""
        prefix = self.url_prefix + "/"
        name = url[len(prefix):] if url.startswith(prefix) else ""
        if not name or "/" in name or name.startswith("."):
            raise NotFound(f"Upload not found: {url}")
        path = self.upload_dir / name
        if not path.is_file():
            raise NotFound(f"Upload not found: {url}")
        return path
