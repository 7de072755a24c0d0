"""One-shot generation pipeline shared by all three modes and by refinement turns."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Sequence

from loguru import logger

from .errors import ExtractionError, InvalidInput, ModelInvocationFailed
from .extract import GenerationResult, extract_image
from .parts import Compose, Edit, GenerationRequest, ImageInput, TextToImage, build_parts
from .providers.base import ModelInvoker
from .runs.events import EventWriter


@dataclass(frozen=True)
class GenerationOutcome:
    result: GenerationResult
    mode: str
    text: str
    image_count: int
    elapsed_s: float


class ImageStudio:
    def __init__(self, invoker: ModelInvoker, events: EventWriter | None = None) -> None:
        self.invoker = invoker
        self.events = events or EventWriter(None, f"studio-{uuid.uuid4().hex[:8]}")

    async def generate(self, prompt: str) -> GenerationOutcome:
        return await self.run(TextToImage(prompt=prompt))

    async def edit(self, image: ImageInput | None, instructions: str) -> GenerationOutcome:
        return await self.run(Edit(image=image, instructions=instructions))

    async def compose(self, images: Sequence[ImageInput], instructions: str) -> GenerationOutcome:
        return await self.run(Compose(images=list(images), instructions=instructions))

    async def run(self, request: GenerationRequest) -> GenerationOutcome:
        try:
            parts = build_parts(request)
        except InvalidInput as exc:
            logger.info("Rejected {} request: {}", request.mode, exc.summary)
            raise
        text = parts[0].text or ""
        self.events.emit(
            "request_started",
            mode=request.mode,
            invoker=self.invoker.name,
            parts=len(parts),
            image_count=request.image_count,
        )

        started_at = time.monotonic()
        try:
            envelope = await self.invoker.invoke(parts)
        except Exception as exc:
            elapsed = max(time.monotonic() - started_at, 0.0)
            logger.error("{} request failed after {:.2f}s: {}", request.mode, elapsed, exc)
            self.events.emit("request_failed", mode=request.mode, kind=ModelInvocationFailed.kind, error=str(exc))
            raise ModelInvocationFailed(_failure_summary(request.mode), details=str(exc) or type(exc).__name__) from exc
        elapsed = max(time.monotonic() - started_at, 0.0)

        try:
            result = extract_image(envelope).unwrap()
        except ExtractionError as exc:
            logger.warning("{} request returned no usable image: {}", request.mode, exc.summary)
            self.events.emit("request_failed", mode=request.mode, kind=exc.kind, error=exc.summary)
            raise

        logger.info(
            "{} request succeeded in {:.2f}s ({} bytes, {})",
            request.mode,
            elapsed,
            len(result.image_bytes),
            result.mime_type,
        )
        self.events.emit(
            "request_succeeded",
            mode=request.mode,
            mime_type=result.mime_type,
            byte_count=len(result.image_bytes),
            elapsed_s=elapsed,
            model_text=result.text,
        )
        return GenerationOutcome(
            result=result,
            mode=request.mode,
            text=text,
            image_count=request.image_count,
            elapsed_s=elapsed,
        )


def _failure_summary(mode: str) -> str:
    if mode == Edit.mode:
        return "Failed to edit image"
    if mode == Compose.mode:
        return "Failed to compose images"
    return "Failed to generate image"
