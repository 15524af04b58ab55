# Photo uploads on the local filesystem
import logging
from io import BytesIO
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from config import Settings
from errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("png", "jpg", "jpeg", "gif", "webp")

_FORMAT_EXTENSIONS = {"PNG": "png", "JPEG": "jpg", "GIF": "gif", "WEBP": "webp"}


def upload_dir(settings: Settings) -> Path:
    path = Path(settings.FILE_UPLOAD_PATH)
    path.mkdir(parents=True, exist_ok=True)
    return path


def stored_path(settings: Settings, filename: str) -> Optional[Path]:
    """Resolve ``filename`` inside the upload directory, or None if it escapes it."""
    base = Path(settings.FILE_UPLOAD_PATH).resolve()
    target = (base / filename).resolve()
    if base not in target.parents:
        return None
    return target


def detect_image_extension(data: bytes) -> Optional[str]:
    """Sniff the content, ignoring whatever name or mimetype the client sent."""
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return None
    return _FORMAT_EXTENSIONS.get(fmt or "")


async def save_image(file: UploadFile, basename: str, settings: Settings) -> str:
    data = await file.read()
    if not data:
        raise ValidationError("Please upload a file")
    if len(data) > settings.MAX_FILE_UPLOAD:
        raise ValidationError(f"Please upload an image less than {settings.MAX_FILE_UPLOAD} bytes")

    ext = detect_image_extension(data)
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"Please upload a valid image file (allowed: {', '.join(ALLOWED_EXTENSIONS)})"
        )

    filename = f"{basename}.{ext}"
    target = upload_dir(settings) / filename
    target.write_bytes(data)
    logger.info("Stored upload %s (%d bytes)", filename, len(data))
    return filename


def remove_file(settings: Settings, filename: Optional[str]) -> None:
    """Best effort: a file that cannot be removed is only logged."""
    if not filename or filename == "no-photo.jpg":
        return
    path = stored_path(settings, filename)
    if path is None:
        logger.warning("Refusing to remove %s outside the upload directory", filename)
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to remove photo %s: %s", filename, e)
