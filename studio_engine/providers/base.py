"""Model invoker protocol and registry."""

from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence

from ..parts import ContentPart


class ModelInvoker(Protocol):
    name: str

    async def invoke(self, parts: Sequence[ContentPart]) -> Any:
        """Send ordered parts to the model and return its response envelope."""
        ...


class InvokerRegistry:
    def __init__(self, invokers: Iterable[ModelInvoker]) -> None:
        self._invokers = {invoker.name: invoker for invoker in invokers}

    def get(self, name: str) -> ModelInvoker | None:
        return self._invokers.get(name)

    def list(self) -> list[str]:
        return sorted(self._invokers.keys())
