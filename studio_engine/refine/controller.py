"""Turn controller: the iterative refinement state machine.

Each successful turn's output becomes the next turn's input. A failed turn is
recorded in the history but never touches the image lineage.
"""

from __future__ import annotations

import io
import uuid
from dataclasses import dataclass

from loguru import logger
from PIL import Image, UnidentifiedImageError

from ..errors import InvalidInput, LineageConversionFailed, StudioError, TurnInProgress
from ..extract import GenerationResult
from ..parts import ImageInput
from ..runs.events import EventWriter
from ..studio import ImageStudio
from ..utils import extension_for_mime_type, mime_type_for_format
from .blobs import BlobStore
from .conversation import ASSISTANT, USER, ConversationMessage, ConversationState, TurnError, TurnStatus

GREETING_UPLOADED = "Image uploaded successfully! What would you like me to help you with?"
GREETING_RESET = "Conversation reset. How can I help you refine this image?"
REFINED_REPLY = "Here's your refined image. What would you like to adjust next?"
ERROR_REPLY = "Sorry, I encountered an error processing your request. Please try again."


@dataclass(frozen=True)
class TurnOutcome:
    user_message: ConversationMessage
    assistant_message: ConversationMessage
    result: GenerationResult | None = None
    error: TurnError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TurnController:
    def __init__(
        self,
        studio: ImageStudio,
        blobs: BlobStore | None = None,
        events: EventWriter | None = None,
    ) -> None:
        self.studio = studio
        self.blobs = blobs or BlobStore()
        self.session_id = f"conv-{uuid.uuid4().hex[:12]}"
        self.events = events.child(self.session_id) if events else EventWriter(None, self.session_id)
        self.state = ConversationState()
        self._owned: set[str] = set()

    @property
    def status(self) -> TurnStatus:
        return self.state.status

    def adopt_image(self, image: ImageInput, source: str = "upload") -> ConversationMessage:
        """Start a conversation from an uploaded image or a result handed over from another mode."""
        if self.state.status is TurnStatus.PROCESSING:
            raise TurnInProgress()
        if image is None or image.is_empty:
            raise InvalidInput("Image is required")
        handle = self.blobs.create(image.data, image.mime_type or "application/octet-stream")
        try:
            base = self._lineage_input(handle)
        except LineageConversionFailed as exc:
            self.blobs.release(handle)
            raise InvalidInput("Uploaded file is not a readable image", details=exc.details) from exc
        self._release_owned()
        self._owned.add(handle)

        state = self.state
        state.base_image = base
        state.base_image_handle = handle
        state.current_image = handle
        state.last_error = None
        state.draft = ""
        state.clear_history()
        greeting = state.append(ConversationMessage(role=ASSISTANT, text=GREETING_UPLOADED, image=handle))
        state.status = TurnStatus.READY
        logger.info("Conversation {} seeded from {} ({})", self.session_id, source, base.mime_type)
        self.events.emit("image_adopted", source=source, mime_type=base.mime_type, byte_count=len(base.data))
        return greeting

    def adopt_result(self, result: GenerationResult, source: str = "generate") -> ConversationMessage:
        return self.adopt_image(ImageInput(data=result.image_bytes, mime_type=result.mime_type), source=source)

    async def send(self, instructions: str | None = None) -> TurnOutcome | None:
        """Run one refinement turn. Returns None when the turn is not accepted."""
        state = self.state
        text = (instructions if instructions is not None else state.draft or "").strip()
        if state.status is not TurnStatus.READY or state.base_image is None or not text:
            return None

        user_message = state.append(ConversationMessage(role=USER, text=text))
        state.draft = ""
        state.last_error = None
        state.status = TurnStatus.PROCESSING
        turn_index = sum(1 for message in state.history if message.role == USER)
        self.events.emit("turn_started", turn=turn_index, instructions=text)
        try:
            try:
                outcome = await self.studio.edit(state.base_image, text)
            except StudioError as exc:
                return self._fail_turn(user_message, turn_index, exc)
            return self._complete_turn(user_message, turn_index, outcome.result)
        finally:
            state.status = TurnStatus.READY

    def reset(self) -> ConversationMessage | None:
        state = self.state
        if state.status is TurnStatus.PROCESSING:
            return None
        state.clear_history()
        state.last_error = None
        state.current_image = state.base_image_handle
        if state.base_image is None:
            return None
        greeting = state.append(ConversationMessage(role=ASSISTANT, text=GREETING_RESET, image=state.base_image_handle))
        self._release_unreferenced()
        self.events.emit("conversation_reset")
        return greeting

    def close(self) -> None:
        self._release_owned()
        self.state = ConversationState()

    def _complete_turn(self, user_message: ConversationMessage, turn_index: int, result: GenerationResult) -> TurnOutcome:
        state = self.state
        handle = self.blobs.create(result.image_bytes, result.mime_type)
        self._owned.add(handle)
        reply = state.append(ConversationMessage(role=ASSISTANT, text=REFINED_REPLY, image=handle))
        state.current_image = handle
        try:
            state.base_image = self._lineage_input(handle)
            state.base_image_handle = handle
        except LineageConversionFailed as exc:
            logger.warning("Keeping previous base image for {}: {}", self.session_id, exc.details or exc.summary)
            self.events.emit("lineage_conversion_failed", turn=turn_index, error=exc.details or exc.summary)
        self.events.emit("turn_succeeded", turn=turn_index, mime_type=result.mime_type, image_handle=handle)
        return TurnOutcome(user_message=user_message, assistant_message=reply, result=result)

    def _fail_turn(self, user_message: ConversationMessage, turn_index: int, exc: StudioError) -> TurnOutcome:
        error = TurnError(kind=exc.kind, message=exc.summary, details=exc.details)
        self.state.last_error = error
        reply = self.state.append(ConversationMessage(role=ASSISTANT, text=ERROR_REPLY))
        logger.error("Turn {} of {} failed: {}", turn_index, self.session_id, exc.summary)
        self.events.emit("turn_failed", turn=turn_index, kind=exc.kind, error=exc.summary, details=exc.details)
        return TurnOutcome(user_message=user_message, assistant_message=reply, error=error)

    def _lineage_input(self, handle: str) -> ImageInput:
        """Re-read a rendered image through its handle and decode it into a submittable input."""
        try:
            blob = self.blobs.fetch(handle)
            with Image.open(io.BytesIO(blob.data)) as image:
                image.verify()
                fmt = image.format
        except (KeyError, UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise LineageConversionFailed("Could not convert image for the next turn", details=str(exc)) from exc
        mime_type = mime_type_for_format(fmt) or blob.mime_type
        filename = f"refined-image.{extension_for_mime_type(mime_type)}"
        return ImageInput(data=blob.data, mime_type=mime_type, filename=filename)

    def _release_unreferenced(self) -> None:
        referenced = self.state.referenced_handles()
        for handle in list(self._owned - referenced):
            self.blobs.release(handle)
            self._owned.discard(handle)

    def _release_owned(self) -> None:
        for handle in list(self._owned):
            self.blobs.release(handle)
        self._owned.clear()
