"""Request builder: normalizes the three modes into one ordered list of content parts.

Instructions always precede imagery. Validation happens here, before any model
call, and raises `InvalidInput`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .errors import InvalidInput
from .utils import sniff_mime_type

TEXT = "text"
INLINE_BINARY = "inline_binary"
FALLBACK_INPUT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class ContentPart:
    kind: str
    text: str | None = None
    data: bytes | None = None
    mime_type: str | None = None

    @classmethod
    def text_part(cls, value: str) -> "ContentPart":
        return cls(kind=TEXT, text=value)

    @classmethod
    def binary_part(cls, data: bytes, mime_type: str) -> "ContentPart":
        return cls(kind=INLINE_BINARY, data=bytes(data), mime_type=mime_type)

    @property
    def is_text(self) -> bool:
        return self.kind == TEXT


@dataclass(frozen=True)
class ImageInput:
    data: bytes
    mime_type: str = ""
    filename: str | None = field(default=None, compare=False)

    @property
    def is_empty(self) -> bool:
        return not self.data

    def resolved_mime_type(self) -> str:
        if self.mime_type:
            return self.mime_type
        return sniff_mime_type(self.data) or FALLBACK_INPUT_MIME_TYPE

    def to_part(self) -> ContentPart:
        return ContentPart.binary_part(self.data, self.resolved_mime_type())


@dataclass(frozen=True)
class TextToImage:
    prompt: str
    mode = "text-to-image"

    @property
    def text(self) -> str:
        return self.prompt

    @property
    def image_count(self) -> int:
        return 0

    def to_parts(self) -> list[ContentPart]:
        prompt = _require_text(self.prompt, "Prompt is required")
        return [ContentPart.text_part(prompt)]


@dataclass(frozen=True)
class Edit:
    image: ImageInput | None
    instructions: str
    mode = "image-edit"

    @property
    def text(self) -> str:
        return self.instructions

    @property
    def image_count(self) -> int:
        return 0 if self.image is None or self.image.is_empty else 1

    def to_parts(self) -> list[ContentPart]:
        message = "Image and instructions are required"
        instructions = _require_text(self.instructions, message)
        if self.image is None or self.image.is_empty:
            raise InvalidInput(message)
        return [ContentPart.text_part(instructions), self.image.to_part()]


@dataclass(frozen=True)
class Compose:
    images: Sequence[ImageInput]
    instructions: str
    mode = "multi-image"

    @property
    def text(self) -> str:
        return self.instructions

    @property
    def image_count(self) -> int:
        return len(self.images or ())

    def to_parts(self) -> list[ContentPart]:
        message = "Images and instructions are required"
        images = list(self.images or ())
        if not images or any(image is None or image.is_empty for image in images):
            raise InvalidInput(message)
        instructions = _require_text(self.instructions, message)
        return [ContentPart.text_part(instructions)] + [image.to_part() for image in images]


GenerationRequest = TextToImage | Edit | Compose


def build_parts(request: GenerationRequest) -> list[ContentPart]:
    return request.to_parts()


def _require_text(value: str | None, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(message)
    return value.strip()
