"""Catalog image hosting on the local ``uploads/`` directory."""

import logging
import uuid
from pathlib import Path

from fastapi import UploadFile

from app.core.config import settings
from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}
URL_PREFIX = "/uploads/foods/"
CHUNK_SIZE = 64 * 1024


def _food_dir() -> Path:
    path = Path(settings.UPLOAD_DIR) / "foods"
    path.mkdir(parents=True, exist_ok=True)
    return path


async def save_image(file: UploadFile) -> str:
    """Validate and store an uploaded image, return its public URL."""
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(f"File type not allowed. Use: {', '.join(sorted(ALLOWED_CONTENT_TYPES))}")

    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if file.size and file.size > max_bytes:
        raise ValidationError(f"File too large. Max {settings.MAX_UPLOAD_SIZE_MB}MB")

    # Read in chunks to limit memory usage
    chunks = []
    total_size = 0
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise ValidationError(f"File too large. Max {settings.MAX_UPLOAD_SIZE_MB}MB")
        chunks.append(chunk)

    ext = file.filename.rsplit(".", 1)[-1].lower() if file.filename and "." in file.filename else "png"
    filename = f"{uuid.uuid4().hex}.{ext}"
    (_food_dir() / filename).write_bytes(b"".join(chunks))
    return URL_PREFIX + filename


def delete_image(url: str) -> bool:
    """Delete a stored image by URL. Unknown or missing files are ignored."""
    if not url.startswith(URL_PREFIX):
        return False
    name = Path(url[len(URL_PREFIX):]).name
    path = _food_dir() / name
    if not path.exists():
        return False
    path.unlink()
    logger.info("Deleted image %s", name)
    return True
