"""Error taxonomy shared by the pipeline, the turn controller and the HTTP adapter."""

from __future__ import annotations


class StudioError(Exception):
    """Base class. `summary` is the short text surfaced to callers."""

    status_code = 500
    kind = "studio_error"

    def __init__(self, summary: str, *, details: str | None = None) -> None:
        super().__init__(summary)
        self.summary = summary
        self.details = details

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.summary}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInput(StudioError):
    status_code = 400
    kind = "invalid_input"


class ModelInvocationFailed(StudioError):
    kind = "model_invocation_failed"


class ExtractionError(StudioError):
    """The model answered but produced no usable image."""

    kind = "extraction_error"


class NoCandidates(ExtractionError):
    kind = "no_candidates"

    def __init__(self, summary: str = "No candidates returned from model") -> None:
        super().__init__(summary)


class NoParts(ExtractionError):
    kind = "no_parts"

    def __init__(self, summary: str = "No parts returned from model") -> None:
        super().__init__(summary)


class NoImageData(ExtractionError):
    kind = "no_image_data"

    def __init__(self, summary: str = "No image data found in response") -> None:
        super().__init__(summary)


class LineageConversionFailed(StudioError):
    """A result could not be turned back into the next turn's input. Never fails a turn."""

    kind = "lineage_conversion_failed"


class TurnInProgress(StudioError):
    status_code = 409
    kind = "turn_in_progress"

    def __init__(self, summary: str = "A refinement turn is already in progress") -> None:
        super().__init__(summary)
