"""Append-only JSONL event stream for requests and turns."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso, sanitize_payload


@dataclass
class EventWriter:
    path: Path | None
    session_id: str
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, init=False)

    def emit(self, event_type: str, **payload: Any) -> dict[str, Any]:
        event = {
            "type": event_type,
            "session_id": self.session_id,
            "ts": now_utc_iso(),
        }
        event.update(sanitize_payload(payload))
        if self.path is None:
            return event
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = f"{json.dumps(event)}\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        return event

    def child(self, session_id: str) -> "EventWriter":
        writer = EventWriter(self.path, session_id)
        writer._lock = self._lock
        return writer
