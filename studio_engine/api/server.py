"""HTTP transport adapter.

Three one-shot endpoints (text-to-image, image-edit, multi-image) plus the
server-side refinement conversation. Text-only requests are JSON, requests
carrying images are multipart.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Awaitable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import StudioSettings, load_settings
from ..errors import StudioError, TurnInProgress
from ..parts import ImageInput
from ..providers import build_invoker
from ..refine.conversation import TurnStatus
from ..refine.controller import TurnController
from ..refine.sessions import SessionRegistry
from ..runs.events import EventWriter
from ..studio import GenerationOutcome, ImageStudio
from ..utils import b64encode_str, data_url, extension_for_mime_type, parse_data_url

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def create_app(
    studio: ImageStudio | None = None,
    sessions: SessionRegistry | None = None,
    settings: StudioSettings | None = None,
) -> FastAPI:
    if studio is None:
        settings = settings or load_settings()
        studio = ImageStudio(build_invoker(settings), EventWriter(settings.events_path, "api"))
    registry = sessions or SessionRegistry(studio, events=studio.events)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        registry.close_all()

    app = FastAPI(title="Image Studio API", lifespan=lifespan)
    app.state.studio = studio
    app.state.sessions = registry

    @app.middleware("http")
    async def cors_headers(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in {404, 405}:
            return JSONResponse({"error": "Not Found"}, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.post("/api/text-to-image")
    async def text_to_image(request: Request) -> Response:
        body = await _read_json(request)
        prompt = body.get("prompt")
        return await _respond(studio.generate(prompt if isinstance(prompt, str) else ""), "prompt")

    @app.post("/api/image-edit")
    async def image_edit(request: Request) -> Response:
        form = await _read_form(request)
        image = await _read_upload(form.get("image") if form else None)
        instructions = _form_text(form, "instructions")
        as_blob = request.query_params.get("response") == "blob"
        return await _respond(studio.edit(image, instructions), "instructions", as_blob=as_blob)

    @app.post("/api/multi-image")
    async def multi_image(request: Request) -> Response:
        form = await _read_form(request)
        uploads = form.getlist("images") if form else []
        images = [image for image in [await _read_upload(item) for item in uploads] if image is not None]
        if len(images) != len(uploads):
            images = []
        instructions = _form_text(form, "instructions")
        return await _respond(studio.compose(images, instructions), "instructions", include_count=True)

    @app.post("/api/refine/sessions")
    async def open_session(request: Request) -> Response:
        image, source = await _read_seed_image(request)
        controller = registry.create()
        try:
            controller.adopt_image(image, source=source)
        except StudioError as exc:
            registry.close(controller.session_id)
            return JSONResponse(exc.to_payload(), status_code=exc.status_code)
        return JSONResponse(_session_payload(controller), status_code=201)

    @app.get("/api/refine/sessions/{session_id}")
    async def get_session(session_id: str) -> Response:
        controller = registry.get(session_id)
        if controller is None:
            return _session_not_found()
        return JSONResponse(_session_payload(controller))

    @app.post("/api/refine/sessions/{session_id}/turns")
    async def send_turn(session_id: str, request: Request) -> Response:
        controller = registry.get(session_id)
        if controller is None:
            return _session_not_found()
        body = await _read_json(request)
        instructions = body.get("instructions")
        if not isinstance(instructions, str) or not instructions.strip():
            return JSONResponse({"error": "Instructions are required"}, status_code=400)
        if controller.status is TurnStatus.PROCESSING:
            return JSONResponse(TurnInProgress().to_payload(), status_code=409)
        outcome = await controller.send(instructions)
        if outcome is None:
            return JSONResponse(TurnInProgress().to_payload(), status_code=409)
        payload = _session_payload(controller)
        payload["ok"] = outcome.ok
        return JSONResponse(payload)

    @app.post("/api/refine/sessions/{session_id}/reset")
    async def reset_session(session_id: str) -> Response:
        controller = registry.get(session_id)
        if controller is None:
            return _session_not_found()
        if controller.status is TurnStatus.PROCESSING:
            return JSONResponse(TurnInProgress().to_payload(), status_code=409)
        controller.reset()
        return JSONResponse(_session_payload(controller))

    @app.get("/api/refine/sessions/{session_id}/images/{handle}")
    async def download_image(session_id: str, handle: str) -> Response:
        controller = registry.get(session_id)
        if controller is None:
            return _session_not_found()
        try:
            blob = controller.blobs.fetch(handle)
        except KeyError:
            return JSONResponse({"error": "Image not found"}, status_code=404)
        filename = f"refined-image.{extension_for_mime_type(blob.mime_type)}"
        return Response(
            content=blob.data,
            media_type=blob.mime_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.delete("/api/refine/sessions/{session_id}")
    async def close_session(session_id: str) -> Response:
        if not registry.close(session_id):
            return _session_not_found()
        return JSONResponse({"success": True})

    return app


async def _respond(
    pending: Awaitable[GenerationOutcome],
    echo_key: str,
    *,
    include_count: bool = False,
    as_blob: bool = False,
) -> Response:
    try:
        outcome = await pending
    except StudioError as exc:
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)
    result = outcome.result
    if as_blob:
        return Response(content=result.image_bytes, media_type=result.mime_type)
    payload: dict[str, Any] = {
        "success": True,
        "imageUrl": data_url(result.image_bytes, result.mime_type),
        "imageData": b64encode_str(result.image_bytes),
        "mimeType": result.mime_type,
        echo_key: outcome.text,
    }
    if include_count:
        payload["imageCount"] = outcome.image_count
    return JSONResponse(payload)


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def _read_form(request: Request):
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" not in content_type and "application/x-www-form-urlencoded" not in content_type:
        return None
    return await request.form()


def _form_text(form: Any, key: str) -> str:
    if form is None:
        return ""
    value = form.get(key)
    return value if isinstance(value, str) else ""


async def _read_upload(value: Any) -> ImageInput | None:
    if not isinstance(value, UploadFile):
        return None
    data = await value.read()
    if not data:
        return None
    return ImageInput(data=data, mime_type=value.content_type or "", filename=value.filename)


async def _read_seed_image(request: Request) -> tuple[ImageInput | None, str]:
    form = await _read_form(request)
    if form is not None:
        return await _read_upload(form.get("image")), "upload"
    body = await _read_json(request)
    raw = body.get("imageData") or body.get("imageUrl")
    if not isinstance(raw, str) or not raw.strip():
        return None, "upload"
    try:
        data, mime_type = parse_data_url(raw)
    except ValueError:
        logger.info("Rejected undecodable seed image payload")
        return None, "upload"
    mime_type = body.get("mimeType") if isinstance(body.get("mimeType"), str) else mime_type
    source = body.get("source") if isinstance(body.get("source"), str) else "bridge"
    return ImageInput(data=data, mime_type=mime_type or ""), source


def _session_payload(controller: TurnController) -> dict[str, Any]:
    payload = {"sessionId": controller.session_id}
    payload.update(controller.state.snapshot())
    return payload


def _session_not_found() -> JSONResponse:
    return JSONResponse({"error": "Session not found"}, status_code=404)
