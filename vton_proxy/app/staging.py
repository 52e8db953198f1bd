from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple

from . import config
from .errors import RequestValidationFailed

logger = logging.getLogger(__name__)

DATA_URI_MARKER = ";base64,"
URL_SAFE_TO_STANDARD = str.maketrans("-_", "+/")


def strip_data_uri(payload: str) -> str:
    """Return the base64 body of ``payload``, dropping a ``data:...;base64,`` prefix."""
    parts = payload.split(DATA_URI_MARKER, 1)
    return parts[1] if len(parts) > 1 else payload


def decode_image_payload(payload: str, *, label: str = "image") -> bytes:
    body = "".join(strip_data_uri(payload).split()).translate(URL_SAFE_TO_STANDARD)
    # Browsers sometimes drop trailing padding.
    body += "=" * (-len(body) % 4)
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise RequestValidationFailed(f"The {label} image is not valid base64 data.") from exc
    if not data:
        raise RequestValidationFailed(f"The {label} image is empty.")
    return data


def unique_temp_path(role: str, directory: Optional[Path] = None) -> Path:
    directory = directory or config.TEMP_DIR
    stamp = int(time.time() * 1000)
    return directory / f"vton-{role}-{stamp}-{secrets.token_hex(4)}.jpg"


def remove_temp_file(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
        logger.debug("Cleaned up %s", path)
    except OSError as exc:
        logger.warning("Failed to clean up temp file %s: %s", path, exc)


@asynccontextmanager
async def staged_images(
    person_image: str,
    garment_image: str,
    *,
    directory: Optional[Path] = None,
) -> AsyncIterator[Tuple[Path, Path]]:
    """Decode both payloads and write them to temp files for the duration of the block.

    Both payloads are decoded before anything touches the disk, so a bad
    payload never leaves a file behind. Every file written here is removed on
    exit, whatever happens inside the block.
    """
    person_bytes = decode_image_payload(person_image, label="person")
    garment_bytes = decode_image_payload(garment_image, label="garment")

    created: List[Path] = []
    try:
        paths = []
        for role, data in (("person", person_bytes), ("garment", garment_bytes)):
            path = unique_temp_path(role, directory)
            created.append(path)
            await asyncio.to_thread(path.write_bytes, data)
            paths.append(path)
        logger.info("Staged try-on inputs at %s, %s", paths[0], paths[1])
        yield paths[0], paths[1]
    finally:
        for path in created:
            remove_temp_file(path)
