"""
On-disk storage of uploaded images. The analysis core only ever sees the
returned location string.
"""
import uuid
import time
from pathlib import Path

from src.alwayscare.core.settings import settings


class UploadStorage:
    def __init__(
        self,
        root: str | Path | None = None,
        max_bytes: int | None = None,
        allowed_extensions: tuple[str, ...] | None = None,
    ):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.max_bytes = max_bytes or settings.UPLOAD_MAX_BYTES
        self.allowed_extensions = tuple(e.lower() for e in (allowed_extensions or settings.ALLOWED_IMAGE_EXTENSIONS))

    def validate(self, filename: str, data: bytes) -> str:
        ext = Path(filename or "").suffix.lower()
        if ext not in self.allowed_extensions:
            raise ValueError("Only image files are allowed (" + ", ".join(self.allowed_extensions) + ").")
        if not data:
            raise ValueError("No image file provided.")
        if len(data) > self.max_bytes:
            raise ValueError(f"File size too large (max {self.max_bytes // (1024 * 1024)}MB).")
        return ext

    def save(self, filename: str, data: bytes) -> str:
        ext = self.validate(filename, data)
        self.root.mkdir(parents=True, exist_ok=True)
        target = self.root / f"{uuid.uuid4().hex}-{int(time.time() * 1000)}{ext}"
        target.write_bytes(data)
        return str(target)

    def discard(self, location: str) -> None:
        Path(location).unlink(missing_ok=True)
