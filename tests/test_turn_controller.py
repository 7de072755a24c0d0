from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path

import pytest
from PIL import Image

from studio_engine.errors import InvalidInput, TurnInProgress
from studio_engine.extract import GenerationResult
from studio_engine.parts import ImageInput
from studio_engine.refine.conversation import ASSISTANT, USER, TurnStatus
from studio_engine.refine.controller import (
    ERROR_REPLY,
    GREETING_RESET,
    GREETING_UPLOADED,
    REFINED_REPLY,
    TurnController,
)
from studio_engine.runs.events import EventWriter
from studio_engine.studio import ImageStudio


def _png(color: tuple[int, int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="PNG")
    return buffer.getvalue()


def _jpeg(color: tuple[int, int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="JPEG")
    return buffer.getvalue()


def _image_envelope(data: bytes, mime_type: str = "image/png") -> dict:
    return {"candidates": [{"content": {"parts": [{"inline_data": {"data": data, "mime_type": mime_type}}]}}]}


class _ScriptedInvoker:
    """Replays queued envelopes; exceptions in the queue are raised."""

    name = "scripted"

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list = []

    async def invoke(self, parts):
        self.calls.append(list(parts))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


UPLOAD = _png((10, 20, 30))


def _controller(*responses, events: EventWriter | None = None) -> tuple[TurnController, _ScriptedInvoker]:
    invoker = _ScriptedInvoker(*responses)
    controller = TurnController(ImageStudio(invoker), events=events)
    controller.adopt_image(ImageInput(data=UPLOAD, mime_type="image/png", filename="upload.png"))
    return controller, invoker


def test_new_controller_is_idle_and_ignores_turns() -> None:
    invoker = _ScriptedInvoker()
    controller = TurnController(ImageStudio(invoker))

    assert controller.status is TurnStatus.IDLE
    assert asyncio.run(controller.send("add a hat")) is None
    assert invoker.calls == []
    assert controller.state.history == ()


def test_adopting_an_upload_seeds_the_conversation() -> None:
    controller, _ = _controller()
    state = controller.state

    assert controller.status is TurnStatus.READY
    assert state.base_image is not None
    assert state.base_image.data == UPLOAD
    assert state.base_image.mime_type == "image/png"
    assert state.current_image == state.base_image_handle
    assert [message.text for message in state.history] == [GREETING_UPLOADED]
    assert state.history[0].image == state.current_image


def test_successful_turn_updates_lineage() -> None:
    refined = _png((200, 0, 0))
    controller, invoker = _controller(_image_envelope(refined), _image_envelope(_png((0, 200, 0))))

    outcome = asyncio.run(controller.send("add a hat"))

    assert outcome is not None and outcome.ok
    state = controller.state
    assert state.base_image.data == refined
    assert state.base_image.filename == "refined-image.png"
    assert controller.blobs.fetch(state.current_image).data == refined
    assert [m.role for m in state.history] == [ASSISTANT, USER, ASSISTANT]
    assert state.history[1].text == "add a hat"
    assert state.history[2].text == REFINED_REPLY
    assert state.history[2].image == state.current_image
    assert state.last_error is None
    assert controller.status is TurnStatus.READY

    asyncio.run(controller.send("now make it blue"))
    assert invoker.calls[0][1].data == UPLOAD
    assert invoker.calls[1][1].data == refined
    assert invoker.calls[1][0].text == "now make it blue"


def test_lineage_input_takes_mime_type_from_decoded_bytes() -> None:
    refined = _jpeg((0, 0, 250))
    controller, invoker = _controller(_image_envelope(refined, mime_type="image/png"), _image_envelope(UPLOAD))

    asyncio.run(controller.send("make it a photo"))
    asyncio.run(controller.send("crop nothing"))

    assert controller.state.history[-3].image is not None
    assert invoker.calls[1][1].mime_type == "image/jpeg"


def test_failed_turn_keeps_base_image_and_records_error() -> None:
    controller, invoker = _controller({"candidates": []}, _image_envelope(_png((1, 2, 3))))
    before_base = controller.state.base_image
    before_current = controller.state.current_image

    outcome = asyncio.run(controller.send("add a hat"))

    state = controller.state
    assert outcome is not None and not outcome.ok
    assert state.base_image == before_base
    assert state.base_image.data == UPLOAD
    assert state.current_image == before_current
    assert state.history[-1].role == ASSISTANT
    assert state.history[-1].text == ERROR_REPLY
    assert state.history[-1].image is None
    assert state.last_error is not None
    assert state.last_error.kind == "no_candidates"
    assert state.last_error.message == "No candidates returned from model"
    assert controller.status is TurnStatus.READY

    asyncio.run(controller.send("try again"))
    assert invoker.calls[1][1].data == UPLOAD
    assert state.last_error is None


@pytest.mark.parametrize("payload", ["A!!!", "!!!!"])
def test_undecodable_model_image_fails_the_turn_cleanly(payload: str) -> None:
    controller, _ = _controller(_image_envelope(payload))  # type: ignore[arg-type]
    before_current = controller.state.current_image

    outcome = asyncio.run(controller.send("add a hat"))

    state = controller.state
    assert outcome is not None and not outcome.ok
    assert [(m.role, m.text) for m in state.history[1:]] == [(USER, "add a hat"), (ASSISTANT, ERROR_REPLY)]
    assert state.last_error is not None
    assert state.last_error.kind == "no_image_data"
    assert state.current_image == before_current
    assert controller.status is TurnStatus.READY


def test_model_fault_is_recorded_with_details() -> None:
    controller, _ = _controller(ConnectionError("network down"))

    outcome = asyncio.run(controller.send("add a hat"))

    assert outcome is not None
    assert outcome.error is not None
    assert outcome.error.kind == "model_invocation_failed"
    assert outcome.error.details == "network down"


def test_lineage_conversion_failure_does_not_fail_the_turn(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    controller, invoker = _controller(
        _image_envelope(b"not-an-image"),
        _image_envelope(_png((5, 5, 5))),
        events=EventWriter(events_path, "test"),
    )

    outcome = asyncio.run(controller.send("add a hat"))

    state = controller.state
    assert outcome is not None and outcome.ok
    assert controller.blobs.fetch(state.current_image).data == b"not-an-image"
    assert state.base_image.data == UPLOAD
    assert state.current_image != state.base_image_handle
    assert state.last_error is None

    asyncio.run(controller.send("again"))
    assert invoker.calls[1][1].data == UPLOAD

    types = [json.loads(line)["type"] for line in events_path.read_text(encoding="utf-8").splitlines()]
    assert "lineage_conversion_failed" in types
    assert types.index("lineage_conversion_failed") < types.index("turn_succeeded")


def test_history_grows_by_one_pair_per_turn() -> None:
    responses = [
        _image_envelope(_png((1, 1, 1))),
        RuntimeError("boom"),
        {"candidates": [{"content": {"parts": [{"text": "no"}]}}]},
        _image_envelope(_png((2, 2, 2))),
        {"candidates": [{}]},
    ]
    controller, _ = _controller(*responses)
    prompts = [f"turn {idx}" for idx in range(len(responses))]

    for prompt in prompts:
        asyncio.run(controller.send(prompt))

    history = controller.state.history
    assert len(history) == 1 + 2 * len(prompts)
    pairs = list(zip(history[1::2], history[2::2]))
    assert [user.text for user, _ in pairs] == prompts
    assert all(user.role == USER and reply.role == ASSISTANT for user, reply in pairs)
    assert [reply.text == ERROR_REPLY for _, reply in pairs] == [False, True, True, False, True]


def test_blank_instructions_are_ignored() -> None:
    controller, invoker = _controller()
    assert asyncio.run(controller.send("   ")) is None
    assert invoker.calls == []
    assert len(controller.state.history) == 1


def test_draft_is_used_and_cleared() -> None:
    controller, invoker = _controller(_image_envelope(_png((9, 9, 9))))
    controller.state.draft = " add a hat "

    asyncio.run(controller.send())

    assert invoker.calls[0][0].text == "add a hat"
    assert controller.state.draft == ""


def test_only_one_turn_in_flight() -> None:
    class _GatedInvoker:
        name = "gated"

        def __init__(self) -> None:
            self.gate = asyncio.Event()
            self.calls = 0

        async def invoke(self, parts):
            self.calls += 1
            await self.gate.wait()
            return _image_envelope(_png((3, 3, 3)))

    async def scenario() -> None:
        invoker = _GatedInvoker()
        controller = TurnController(ImageStudio(invoker))
        controller.adopt_image(ImageInput(data=UPLOAD, mime_type="image/png"))

        first = asyncio.create_task(controller.send("add a hat"))
        await asyncio.sleep(0)
        assert controller.status is TurnStatus.PROCESSING

        assert await controller.send("second request") is None
        assert controller.reset() is None
        with pytest.raises(TurnInProgress):
            controller.adopt_image(ImageInput(data=UPLOAD, mime_type="image/png"))

        invoker.gate.set()
        outcome = await first
        assert outcome is not None and outcome.ok
        assert invoker.calls == 1
        assert [m.text for m in controller.state.history].count("second request") == 0
        assert controller.status is TurnStatus.READY

    asyncio.run(scenario())


def test_reset_after_three_turns() -> None:
    controller, _ = _controller(*[_image_envelope(_png((idx, idx, idx))) for idx in range(3)])
    for prompt in ("one", "two", "three"):
        asyncio.run(controller.send(prompt))
    base_before = controller.state.base_image

    greeting = controller.reset()

    state = controller.state
    assert greeting is not None
    assert len(state.history) == 1
    assert state.history[0].text == GREETING_RESET
    assert state.current_image == state.base_image_handle
    assert state.base_image == base_before


def test_reset_rolls_back_to_base_after_failed_conversion() -> None:
    controller, _ = _controller(_image_envelope(b"garbage"))
    asyncio.run(controller.send("add a hat"))
    assert controller.state.current_image != controller.state.base_image_handle

    controller.reset()

    assert controller.state.current_image == controller.state.base_image_handle
    assert controller.blobs.fetch(controller.state.current_image).data == UPLOAD


def test_superseded_handles_are_released_on_reset_and_close() -> None:
    controller, _ = _controller(*[_image_envelope(_png((idx, 0, 0))) for idx in range(3)])
    for prompt in ("one", "two", "three"):
        asyncio.run(controller.send(prompt))
    assert len(controller.blobs) == 4

    controller.reset()
    assert controller.blobs.live_handles() == {controller.state.base_image_handle}

    controller.close()
    assert len(controller.blobs) == 0
    assert controller.status is TurnStatus.IDLE


def test_adopting_a_new_image_releases_the_previous_lineage() -> None:
    controller, _ = _controller(_image_envelope(_png((4, 4, 4))))
    asyncio.run(controller.send("one"))

    controller.adopt_image(ImageInput(data=_png((7, 7, 7)), mime_type="image/png"))

    assert len(controller.blobs) == 1
    assert [m.text for m in controller.state.history] == [GREETING_UPLOADED]


def test_result_from_another_mode_is_adopted_like_an_upload() -> None:
    invoker = _ScriptedInvoker(_image_envelope(_png((8, 8, 8))))
    controller = TurnController(ImageStudio(invoker))
    generated = GenerationResult(image_bytes=_jpeg((100, 50, 0)), mime_type="image/jpeg")

    controller.adopt_result(generated, source="generate")
    asyncio.run(controller.send("add a hat"))

    assert invoker.calls[0][1].data == generated.image_bytes
    assert invoker.calls[0][1].mime_type == "image/jpeg"
    assert controller.state.history[0].text == GREETING_UPLOADED


def test_unreadable_upload_is_rejected() -> None:
    controller = TurnController(ImageStudio(_ScriptedInvoker()))

    with pytest.raises(InvalidInput):
        controller.adopt_image(ImageInput(data=b"plain text", mime_type="text/plain"))

    assert len(controller.blobs) == 0
    assert controller.status is TurnStatus.IDLE
