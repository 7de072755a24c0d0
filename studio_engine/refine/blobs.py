"""Transport-level image handles.

A handle stands in for a rendered image the way an object URL does in a
browser. Whoever creates a handle must release it once it is superseded.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass

HANDLE_PREFIX = "blob:"


@dataclass(frozen=True)
class Blob:
    data: bytes
    mime_type: str


class BlobStore:
    def __init__(self) -> None:
        self._blobs: dict[str, Blob] = {}
        self._lock = threading.Lock()

    def create(self, data: bytes, mime_type: str) -> str:
        handle = f"{HANDLE_PREFIX}{uuid.uuid4().hex}"
        with self._lock:
            self._blobs[handle] = Blob(bytes(data), mime_type)
        return handle

    def fetch(self, handle: str) -> Blob:
        with self._lock:
            blob = self._blobs.get(handle)
        if blob is None:
            raise KeyError(f"unknown or released image handle: {handle}")
        return blob

    def release(self, handle: str | None) -> bool:
        if not handle:
            return False
        with self._lock:
            return self._blobs.pop(handle, None) is not None

    def live_handles(self) -> set[str]:
        with self._lock:
            return set(self._blobs.keys())

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)
