"""Attachment store: image uploads written where the tool can read them.

Images arrive base64-encoded inside a ``chat`` message. They are saved
under ``<base_dir>/<client_id>/`` and the paths are handed to the tool,
which reads them with its own file tools. A client's directory is
removed when its connection closes.
"""
from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
import secrets
import shutil
import time
from pathlib import Path
from typing import Any

from streamrelay.engine.errors import AttachmentError

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^[a-z0-9][a-z0-9.+-]{0,15}$")


def extension_for(media_type: str) -> str:
    """``image/png`` -> ``png``. Rejects non-image and odd subtypes."""
    major, _, subtype = (media_type or "").lower().partition("/")
    if major != "image" or not subtype:
        raise AttachmentError(f"unsupported media type {media_type!r}")
    ext = subtype.split("+", 1)[0]
    if not _EXTENSION_RE.match(ext):
        raise AttachmentError(f"unsupported media type {media_type!r}")
    return ext


class AttachmentStore:
    """Per-client attachment directories under one base directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir).expanduser()

    def client_dir(self, client_id: str) -> Path:
        return self.base_dir / client_id

    def save_images(self, client_id: str, images: list[dict[str, Any]]) -> list[str]:
        """Decode and write each image. Returns the absolute file paths."""
        if not images:
            return []
        target = self.client_dir(client_id)
        target.mkdir(parents=True, exist_ok=True)
        paths: list[str] = []
        for image in images:
            if not isinstance(image, dict):
                raise AttachmentError("image entry must be an object")
            ext = extension_for(str(image.get("mediaType", "")))
            try:
                payload = base64.b64decode(image.get("data") or "", validate=True)
            except (binascii.Error, ValueError) as exc:
                raise AttachmentError(f"image data is not valid base64: {exc}") from exc
            filename = f"image_{int(time.time() * 1000)}_{secrets.token_hex(4)}.{ext}"
            path = target / filename
            path.write_bytes(payload)
            paths.append(str(path.resolve()))
        logger.info(
            "Saved %d attachment(s) for client %s in %s", len(paths), client_id, target,
        )
        return paths

    def cleanup(self, client_id: str) -> bool:
        """Remove a client's attachment directory. True if one existed."""
        target = self.client_dir(client_id)
        if not target.exists():
            return False
        try:
            shutil.rmtree(target)
        except OSError:
            logger.warning("Failed to remove attachments at %s", target, exc_info=True)
            return False
        logger.debug("Removed attachments for client %s", client_id)
        return True


def encode_image_file(path: str | Path) -> dict[str, str]:
    """Client side: read an image into the ``images`` entry of a chat message."""
    path = Path(path).expanduser()
    media_type, _ = mimetypes.guess_type(path.name)
    if media_type is None or not media_type.startswith("image/"):
        raise AttachmentError(f"{path.name} is not a recognised image type")
    try:
        payload = path.read_bytes()
    except OSError as exc:
        raise AttachmentError(f"cannot read {path}: {exc.strerror or exc}") from exc
    return {
        "data": base64.b64encode(payload).decode("ascii"),
        "mediaType": media_type,
        "name": path.name,
    }
