"""Gemini invoker."""

from __future__ import annotations

from typing import Any, Sequence

try:
    from google import genai  # type: ignore
    from google.genai import types  # type: ignore
except Exception:  # pragma: no cover
    genai = None  # type: ignore
    types = None  # type: ignore

from loguru import logger

from ..config import StudioSettings
from ..parts import ContentPart


class GeminiInvoker:
    name = "gemini"

    def __init__(self, settings: StudioSettings, client: Any | None = None) -> None:
        if types is None:
            raise RuntimeError("google-genai package not installed. Run: pip install google-genai")
        if client is None:
            if not settings.api_key:
                raise RuntimeError("GOOGLE_AI_API_KEY (or GEMINI_API_KEY / GOOGLE_API_KEY) not set.")
            client = genai.Client(api_key=settings.api_key)
        self.client = client
        self.model = settings.image_model
        self.config = types.GenerateContentConfig(
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            response_modalities=["TEXT", "IMAGE"],
        )

    async def invoke(self, parts: Sequence[ContentPart]) -> Any:
        contents = [_to_sdk_part(part) for part in parts]
        logger.debug("gemini generate_content model={} parts={}", self.model, len(contents))
        return await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=self.config,
        )


def _to_sdk_part(part: ContentPart) -> Any:
    if part.is_text:
        return types.Part(text=part.text)
    return types.Part(inline_data=types.Blob(data=part.data, mime_type=part.mime_type))
