"""Conversation state for iterative refinement."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..parts import ImageInput
from ..utils import now_utc

USER = "user"
ASSISTANT = "assistant"


class TurnStatus(str, enum.Enum):
    IDLE = "idle"
    READY = "ready"
    PROCESSING = "processing"


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    text: str
    image: str | None = None
    id: str = field(default_factory=lambda: f"msg-{uuid.uuid4().hex}")
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "image": self.image,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TurnError:
    kind: str
    message: str
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


@dataclass
class ConversationState:
    base_image: ImageInput | None = None
    base_image_handle: str | None = None
    current_image: str | None = None
    draft: str = ""
    last_error: TurnError | None = None
    status: TurnStatus = TurnStatus.IDLE
    _history: list[ConversationMessage] = field(default_factory=list, repr=False)

    @property
    def history(self) -> tuple[ConversationMessage, ...]:
        return tuple(self._history)

    def append(self, message: ConversationMessage) -> ConversationMessage:
        self._history.append(message)
        return message

    def clear_history(self) -> None:
        self._history.clear()

    def referenced_handles(self) -> set[str]:
        handles = {message.image for message in self._history if message.image}
        handles.update(h for h in (self.current_image, self.base_image_handle) if h)
        return handles

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "baseImage": self.base_image_handle,
            "currentImage": self.current_image,
            "history": [message.to_dict() for message in self._history],
            "lastError": self.last_error.to_dict() if self.last_error else None,
        }
