"""Response extractor.

Walks a generation response envelope (SDK objects or plain mappings, snake or
camel case) and returns the first inline image of the first candidate. Every
level of the envelope may be missing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .errors import ExtractionError, NoCandidates, NoImageData, NoParts
from .utils import b64decode_str

DEFAULT_MIME_TYPE = "image/png"


@dataclass(frozen=True)
class GenerationResult:
    image_bytes: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    text: str | None = None


@dataclass(frozen=True)
class Extraction:
    result: GenerationResult | None = None
    error: ExtractionError | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None

    def unwrap(self) -> GenerationResult:
        if self.result is None:
            raise self.error or NoImageData()
        return self.result


def extract_image(envelope: Any) -> Extraction:
    candidates = _field(envelope, "candidates") or []
    if not candidates:
        return Extraction(error=NoCandidates())

    candidate = candidates[0]
    content = _field(candidate, "content")
    parts = _field(content, "parts") or _field(candidate, "parts") or []
    if not parts:
        return Extraction(error=NoParts())

    texts: list[str] = []
    for part in parts:
        inline = _field(part, "inline_data", "inlineData")
        image_bytes = _as_bytes(_field(inline, "data"))
        if image_bytes:
            mime_type = _field(inline, "mime_type", "mimeType") or DEFAULT_MIME_TYPE
            text = " ".join(texts) or None
            return Extraction(result=GenerationResult(image_bytes, str(mime_type), text))
        text = _field(part, "text")
        if isinstance(text, str) and text.strip():
            texts.append(text.strip())
    return Extraction(error=NoImageData())


def _field(value: Any, *names: str) -> Any:
    if value is None:
        return None
    for name in names:
        if isinstance(value, Mapping):
            found = value.get(name)
        else:
            found = getattr(value, name, None)
        if found is not None:
            return found
    return None


def _as_bytes(data: bytes | bytearray | str | Sequence[int] | None) -> bytes:
    # Undecodable payloads count as missing image data.
    if not data:
        return b""
    if isinstance(data, str):
        try:
            return b64decode_str(data)
        except ValueError:
            return b""
    return bytes(data)
