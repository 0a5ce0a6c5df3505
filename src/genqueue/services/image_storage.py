"""Filesystem storage for generated and reference images.

Images live under `<public_dir>/images/` and are addressed by public-relative
paths such as "/images/3f2c....png", which is what generation records store.
"""

import asyncio
from pathlib import Path
from uuid import uuid4

import structlog

logger = structlog.get_logger()


class ImageStorage:
    """Stores image bytes under the public directory."""

    def __init__(self, public_dir: str | Path):
        self.public_dir = Path(public_dir).resolve()
        self.images_dir = self.public_dir / "images"

    async def save(self, data: bytes, mime_type: str) -> str:
        """Write image bytes to a new file.

        Args:
            data: Raw image bytes
            mime_type: MIME type used to pick the file extension (e.g. "image/png")

        Returns:
            Public-relative path, e.g. "/images/<uuid>.png"
        """
        ext = mime_type.split("/")[-1] if "/" in mime_type else ""
        filename = f"{uuid4()}.{ext or 'png'}"
        target = self.images_dir / filename

        def _write() -> None:
            self.images_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("image_storage.saved", path=f"/images/{filename}", size_bytes=len(data))
        return f"/images/{filename}"

    async def read(self, relative_path: str) -> bytes:
        """Read a file stored under the public directory.

        Raises:
            ValueError: If the path resolves outside the public directory
            FileNotFoundError: If the file does not exist
        """
        return await asyncio.to_thread(self.resolve(relative_path).read_bytes)

    def resolve(self, relative_path: str) -> Path:
        """Map a public-relative path to an absolute path inside public_dir."""
        candidate = (self.public_dir / relative_path.lstrip("/")).resolve()
        if not candidate.is_relative_to(self.public_dir):
            raise ValueError(f"Path escapes public directory: {relative_path}")
        return candidate
