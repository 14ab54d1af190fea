import logging
import os
import secrets
from pathlib import Path
from typing import Iterable

from classifieds.core.errors import ValidationError

logger = logging.getLogger(__name__)


class MediaStore:
    """Listing images on local disk, named ``<random hex><ext>``.

    References handed out look like ``/images/3f9c...e1.png``; only the
    basename is ever used to locate the file, so a reference cannot point
    outside ``root``.
    """

    def __init__(
        self,
        root: Path,
        url_prefix: str = "/images",
        allowed_extensions: Iterable[str] = (".jpg", ".jpeg", ".png", ".gif", ".webp"),
        max_bytes: int | None = None,
    ):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.allowed_extensions = {ext.lower() for ext in allowed_extensions}
        self.max_bytes = max_bytes

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, filename: str | None, content: bytes) -> str:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in self.allowed_extensions:
            raise ValidationError(f"Unsupported file type: {ext or 'none'}")
        if not content:
            raise ValidationError("Image is empty")
        if self.max_bytes is not None and len(content) > self.max_bytes:
            raise ValidationError(f"Image exceeds {self.max_bytes} bytes")

        self.ensure_root()
        name = f"{secrets.token_hex(16)}{ext}"
        (self.root / name).write_bytes(content)

        logger.info("stored image %s (%d bytes)", name, len(content))
        return f"{self.url_prefix}/{name}"

    def path_for(self, ref: str) -> Path:
        name = os.path.basename(ref or "")
        if not name or name in (".", ".."):
            raise ValueError(f"Not an image reference: {ref!r}")
        return self.root / name

    def delete(self, ref: str) -> None:
        # OSError (including FileNotFoundError) propagates to the caller
        self.path_for(ref).unlink()
        logger.info("deleted image %s", ref)
