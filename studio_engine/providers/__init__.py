"""Invoker registry."""

from __future__ import annotations

from ..config import StudioSettings
from .base import InvokerRegistry, ModelInvoker
from .dryrun import DryRunInvoker
from .gemini import GeminiInvoker


def default_registry(settings: StudioSettings) -> InvokerRegistry:
    invokers: list[ModelInvoker] = [DryRunInvoker()]
    if settings.provider == GeminiInvoker.name:
        invokers.append(GeminiInvoker(settings))
    return InvokerRegistry(invokers)


def build_invoker(settings: StudioSettings) -> ModelInvoker:
    invoker = default_registry(settings).get(settings.provider)
    if invoker is None:
        raise RuntimeError(f"No invoker available for {settings.provider}")
    return invoker
