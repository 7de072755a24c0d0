"""In-memory registry of independent refinement conversations."""

from __future__ import annotations

import threading

from loguru import logger

from ..runs.events import EventWriter
from ..studio import ImageStudio
from .blobs import BlobStore
from .controller import TurnController


class SessionRegistry:
    def __init__(self, studio: ImageStudio, events: EventWriter | None = None) -> None:
        self.studio = studio
        self.events = events
        self._sessions: dict[str, TurnController] = {}
        self._lock = threading.Lock()

    def create(self) -> TurnController:
        # Each conversation owns its own blob store; nothing mutable is shared.
        controller = TurnController(self.studio, blobs=BlobStore(), events=self.events)
        with self._lock:
            self._sessions[controller.session_id] = controller
        logger.info("Opened refinement session {}", controller.session_id)
        return controller

    def get(self, session_id: str) -> TurnController | None:
        with self._lock:
            return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        with self._lock:
            controller = self._sessions.pop(session_id, None)
        if controller is None:
            return False
        controller.close()
        logger.info("Closed refinement session {}", session_id)
        return True

    def close_all(self) -> None:
        with self._lock:
            session_ids = list(self._sessions.keys())
        for session_id in session_ids:
            self.close(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
