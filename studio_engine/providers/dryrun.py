"""Dry-run invoker (offline).

Produces a real response envelope so the whole pipeline, including lineage
conversion, can run without network access.
"""

from __future__ import annotations

import hashlib
import io
from typing import Any, Sequence

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from ..parts import ContentPart

_CANVAS_SIZE = (512, 512)


class DryRunInvoker:
    name = "dryrun"

    def __init__(self, size: tuple[int, int] = _CANVAS_SIZE) -> None:
        self.size = size
        self.calls: list[list[ContentPart]] = []

    async def invoke(self, parts: Sequence[ContentPart]) -> dict[str, Any]:
        self.calls.append(list(parts))
        prompt = " ".join(part.text or "" for part in parts if part.is_text).strip()
        sources = [_open_image(part.data) for part in parts if not part.is_text and part.data]
        sources = [image for image in sources if image is not None]
        image = self._render(prompt, sources)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": f"dryrun: {prompt[:60]}"},
                            {"inline_data": {"data": buffer.getvalue(), "mime_type": "image/png"}},
                        ]
                    }
                }
            ]
        }

    def _render(self, prompt: str, sources: list[Image.Image]) -> Image.Image:
        if not sources:
            canvas = Image.new("RGB", self.size, _color_from_prompt(prompt))
        elif len(sources) == 1:
            canvas = sources[0].convert("RGB")
        else:
            canvas = _strip(sources, height=self.size[1])
        draw = ImageDraw.Draw(canvas)
        draw.text((12, 12), f"dryrun\n{prompt[:60]}", fill=(255, 255, 255), font=ImageFont.load_default())
        return canvas


def _open_image(data: bytes | None) -> Image.Image | None:
    try:
        image = Image.open(io.BytesIO(data or b""))
        image.load()
    except (UnidentifiedImageError, OSError):
        return None
    return image


def _strip(images: list[Image.Image], height: int) -> Image.Image:
    resized = []
    for image in images:
        w, h = image.size
        width = max(1, int(w * height / max(h, 1)))
        resized.append(image.convert("RGB").resize((width, height)))
    canvas = Image.new("RGB", (sum(img.size[0] for img in resized), height))
    offset = 0
    for img in resized:
        canvas.paste(img, (offset, 0))
        offset += img.size[0]
    return canvas


def _color_from_prompt(prompt: str) -> tuple[int, int, int]:
    digest = hashlib.sha256(prompt.encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]
