from __future__ import annotations

import asyncio
import io

from PIL import Image

from studio_engine.extract import extract_image
from studio_engine.parts import ContentPart
from studio_engine.providers.dryrun import DryRunInvoker


def _png(size: tuple[int, int], color: tuple[int, int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_dryrun_text_to_image_envelope_is_extractable() -> None:
    invoker = DryRunInvoker(size=(64, 48))
    envelope = asyncio.run(invoker.invoke([ContentPart.text_part("A dramatic coastline")]))

    result = extract_image(envelope).unwrap()

    assert result.mime_type == "image/png"
    assert result.text == "dryrun: A dramatic coastline"
    with Image.open(io.BytesIO(result.image_bytes)) as image:
        assert image.size == (64, 48)
    assert len(invoker.calls) == 1


def test_dryrun_edit_keeps_input_dimensions() -> None:
    invoker = DryRunInvoker()
    parts = [ContentPart.text_part("add a hat"), ContentPart.binary_part(_png((30, 20), (0, 0, 255)), "image/png")]

    result = extract_image(asyncio.run(invoker.invoke(parts))).unwrap()

    with Image.open(io.BytesIO(result.image_bytes)) as image:
        assert image.size == (30, 20)


def test_dryrun_compose_lays_images_side_by_side() -> None:
    invoker = DryRunInvoker(size=(100, 40))
    parts = [
        ContentPart.text_part("merge"),
        ContentPart.binary_part(_png((40, 40), (255, 0, 0)), "image/png"),
        ContentPart.binary_part(_png((20, 40), (0, 255, 0)), "image/png"),
    ]

    result = extract_image(asyncio.run(invoker.invoke(parts))).unwrap()

    with Image.open(io.BytesIO(result.image_bytes)) as image:
        assert image.size == (60, 40)


def test_dryrun_prompt_colour_is_deterministic() -> None:
    invoker = DryRunInvoker(size=(16, 16))
    first = extract_image(asyncio.run(invoker.invoke([ContentPart.text_part("same")]))).unwrap()
    second = extract_image(asyncio.run(invoker.invoke([ContentPart.text_part("same")]))).unwrap()
    assert first.image_bytes == second.image_bytes
