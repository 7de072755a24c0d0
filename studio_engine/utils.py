"""Shared utilities for the studio engine."""

from __future__ import annotations

import base64
import binascii
import io
from datetime import datetime, timezone
from typing import Any, Mapping

from PIL import Image, UnidentifiedImageError

_FORMAT_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}

_MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_utc_iso() -> str:
    return now_utc().isoformat()


def sanitize_payload(payload: Any) -> Any:
    if payload is None:
        return None
    if isinstance(payload, (str, int, float, bool)):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        return f"<bytes:{len(payload)}>"
    if isinstance(payload, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in payload.items():
            lowered = str(key).lower()
            if lowered in {"image", "image_bytes", "imagedata", "data", "api_key"}:
                sanitized[str(key)] = "<omitted>"
                continue
            sanitized[str(key)] = sanitize_payload(value)
        return sanitized
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item) for item in payload]
    return str(payload)


def b64encode_str(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode_str(value: str) -> bytes:
    """Decode standard or urlsafe base64, tolerating missing padding."""
    cleaned = "".join(value.split())
    padded = cleaned + "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return base64.urlsafe_b64decode(padded)


def data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{b64encode_str(data)}"


def sniff_mime_type(data: bytes) -> str | None:
    if not data:
        return None
    try:
        with Image.open(io.BytesIO(data)) as image:
            fmt = image.format
    except (UnidentifiedImageError, OSError):
        return None
    return _FORMAT_MIME_TYPES.get(str(fmt or "").upper())


def mime_type_for_format(fmt: str | None) -> str | None:
    return _FORMAT_MIME_TYPES.get(str(fmt or "").upper())


def extension_for_mime_type(mime_type: str | None, default: str = "png") -> str:
    lowered = str(mime_type or "").strip().lower()
    return _MIME_EXTENSIONS.get(lowered, default)


def parse_data_url(value: str) -> tuple[bytes, str | None]:
    """Accept either a `data:<mime>;base64,<payload>` URL or bare base64."""
    text = value.strip()
    if not text.startswith("data:"):
        return b64decode_str(text), None
    header, _, payload = text.partition(",")
    meta = header[len("data:"):]
    mime_type = meta.split(";", 1)[0].strip() or None
    return b64decode_str(payload), mime_type
