"""Studio CLI entrypoints."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import mimetypes
from pathlib import Path

from .config import StudioSettings, load_settings
from .errors import StudioError
from .log import setup_logging
from .parts import ImageInput
from .providers import build_invoker
from .refine.controller import TurnController
from .runs.events import EventWriter
from .studio import GenerationOutcome, ImageStudio
from .utils import extension_for_mime_type

REFINE_HELP = "Commands: /reset /save PATH /quit. Anything else is sent as refinement instructions."


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="studio", description="Image studio engine")
    parser.add_argument("--provider", help="Invoker to use (gemini, dryrun)")
    parser.add_argument("--events", help="Path to events.jsonl")
    sub = parser.add_subparsers(dest="command")

    generate = sub.add_parser("generate", help="Text to image")
    generate.add_argument("--prompt", required=True)
    generate.add_argument("--out", required=True, help="Output image path")

    edit = sub.add_parser("edit", help="Edit an image with instructions")
    edit.add_argument("--image", required=True)
    edit.add_argument("--instructions", required=True)
    edit.add_argument("--out", required=True)

    compose = sub.add_parser("compose", help="Compose several images with instructions")
    compose.add_argument("--image", dest="images", action="append", required=True, help="Repeat for each image")
    compose.add_argument("--instructions", required=True)
    compose.add_argument("--out", required=True)

    refine = sub.add_parser("refine", help="Interactive refinement conversation")
    refine.add_argument("--image", required=True, help="Starting image")
    refine.add_argument("--out-dir", dest="out_dir", required=True, help="Directory for turn outputs")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    return parser


def _read_image(path: str) -> ImageInput:
    source = Path(path)
    mime_type, _ = mimetypes.guess_type(source.name)
    return ImageInput(data=source.read_bytes(), mime_type=mime_type or "", filename=source.name)


def _write_outcome(outcome: GenerationOutcome, out: str) -> Path:
    path = Path(out)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(outcome.result.image_bytes)
    return path


def _studio(settings: StudioSettings) -> ImageStudio:
    return ImageStudio(build_invoker(settings), EventWriter(settings.events_path, "cli"))


def _run_once(settings: StudioSettings, pending_factory, out: str) -> int:
    try:
        outcome = asyncio.run(pending_factory(_studio(settings)))
    except StudioError as exc:
        detail = f" ({exc.details})" if exc.details else ""
        print(f"Failed: {exc.summary}{detail}")
        return 1
    path = _write_outcome(outcome, out)
    print(f"Saved {outcome.result.mime_type} to {path}")
    return 0


def _handle_generate(args: argparse.Namespace, settings: StudioSettings) -> int:
    return _run_once(settings, lambda studio: studio.generate(args.prompt), args.out)


def _handle_edit(args: argparse.Namespace, settings: StudioSettings) -> int:
    image = _read_image(args.image)
    return _run_once(settings, lambda studio: studio.edit(image, args.instructions), args.out)


def _handle_compose(args: argparse.Namespace, settings: StudioSettings) -> int:
    images = [_read_image(path) for path in args.images]
    return _run_once(settings, lambda studio: studio.compose(images, args.instructions), args.out)


def _handle_refine(args: argparse.Namespace, settings: StudioSettings) -> int:
    controller = TurnController(_studio(settings))
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    try:
        greeting = controller.adopt_image(_read_image(args.image), source="upload")
    except StudioError as exc:
        print(f"Failed: {exc.summary}")
        return 1
    print(greeting.text)
    print(REFINE_HELP)
    try:
        asyncio.run(_refine_loop(controller, out_dir))
    finally:
        controller.close()
    return 0


async def _refine_loop(controller: TurnController, out_dir: Path) -> None:
    turn = 0
    while True:
        try:
            line = (await asyncio.to_thread(input, "> ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not line:
            continue
        if line in {"/quit", "/exit"}:
            break
        if line == "/help":
            print(REFINE_HELP)
            continue
        if line == "/reset":
            message = controller.reset()
            if message:
                print(message.text)
            continue
        if line.startswith("/save"):
            target = line[len("/save"):].strip()
            if not target:
                print("/save requires a path")
                continue
            if not controller.state.current_image:
                print("No image to save yet")
                continue
            blob = controller.blobs.fetch(controller.state.current_image)
            Path(target).write_bytes(blob.data)
            print(f"Saved current image to {target}")
            continue
        outcome = await controller.send(line)
        if outcome is None:
            continue
        print(outcome.assistant_message.text)
        if outcome.ok and outcome.result is not None:
            turn += 1
            ext = extension_for_mime_type(outcome.result.mime_type)
            path = out_dir / f"turn-{turn:02d}.{ext}"
            path.write_bytes(outcome.result.image_bytes)
            print(f"Saved {path}")
        elif outcome.error is not None:
            print(f"Error: {outcome.error.message}")


def _handle_serve(args: argparse.Namespace, settings: StudioSettings) -> int:
    import uvicorn

    from .api.server import create_app

    host = args.host or settings.host
    port = args.port or settings.port
    app = create_app(studio=_studio(settings), settings=settings)
    print(f"Image Studio API running on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    return 0


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    settings = load_settings()
    if args.provider:
        settings = dataclasses.replace(settings, provider=args.provider.strip().lower())
    if args.events:
        settings = dataclasses.replace(settings, events_path=Path(args.events))
    setup_logging(settings.log_level)
    handlers = {
        "generate": _handle_generate,
        "edit": _handle_edit,
        "compose": _handle_compose,
        "refine": _handle_refine,
        "serve": _handle_serve,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        raise SystemExit(1)
    raise SystemExit(handler(args, settings))


if __name__ == "__main__":
    main()
