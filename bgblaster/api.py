"""
FastAPI layer serving the single-page background remover.

Endpoints:
 - GET  /                 page (loading indicator, upload, results)
 - GET  /health
 - GET  /state
 - POST /upload
 - POST /process
 - GET  /images/{kind}    source | mask | composite
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from enum import Enum
import html
import logging
from threading import Thread
from typing import Optional
from urllib.parse import quote

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from pydantic import BaseModel

from . import config
from .controller import Phase, UIController, UIState
from .model_session import ModelSession

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


class ImageKind(str, Enum):
    source = "source"
    mask = "mask"
    composite = "composite"


class ImageRecordView(BaseModel):
    id: str
    source: str
    mask: Optional[str] = None
    composite: Optional[str] = None


class StateResponse(BaseModel):
    phase: str
    view: str
    modelReady: bool
    modelError: Optional[str] = None
    canProcess: bool
    image: Optional[ImageRecordView] = None


def _state_response(state: UIState) -> StateResponse:
    image = None
    if state.image is not None:
        image = ImageRecordView(
            id=state.image.id,
            source=state.image.source.name,
            mask=state.image.mask.name if state.image.mask else None,
            composite=state.image.composite.name if state.image.composite else None,
        )
    return StateResponse(
        phase=state.phase.value,
        view=state.view,
        modelReady=state.model_ready,
        modelError=state.model_error,
        canProcess=state.can_process,
        image=image,
    )


_LOADING_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><meta http-equiv="refresh" content="2">
<title>bg-blaster</title></head>
<body style="min-height:100vh;display:flex;align-items:center;justify-content:center;font-family:sans-serif">
<div class="loading"><p>Loading background removal model...</p></div>
</body></html>"""


def _image_slot(state: UIState, kind: ImageKind, alt: str) -> str:
    image = state.image
    present = image is not None and getattr(image, kind.value) is not None
    if not present:
        return '<div class="slot"></div>'
    return f'<div class="slot"><img src="/images/{kind.value}?v={image.id}" alt="{alt}" style="max-width:28rem"></div>'


def render_page(state: UIState) -> str:
    if state.phase is Phase.LOADING:
        return _LOADING_PAGE

    notice = ""
    if not state.model_ready:
        notice = '<p class="notice">Background removal is unavailable: {}</p>'.format(
            html.escape(state.model_error or "model failed to load")
        )

    trigger = ""
    if state.can_process:
        trigger = (
            '<form method="post" action="/process" style="text-align:center">'
            '<button type="submit">Process Image</button></form>'
        )
    elif state.phase is Phase.PROCESSING:
        trigger = '<p style="text-align:center">Processing...</p>'

    return f"""<!doctype html>
<html><head><meta charset="utf-8"><title>bg-blaster</title></head>
<body style="font-family:sans-serif">
<form method="post" action="/upload" enctype="multipart/form-data" style="text-align:center">
<h1>Upload an Image</h1>
<input type="file" name="file" accept="image/*" onchange="this.form.submit()">
</form>
{notice}
<div style="display:flex;justify-content:center;gap:0.5rem">
{_image_slot(state, ImageKind.source, "Uploaded")}
{_image_slot(state, ImageKind.mask, "Mask")}
{_image_slot(state, ImageKind.composite, "Processed")}
</div>
{trigger}
</body></html>"""


def create_app(controller: Optional[UIController] = None) -> FastAPI:
    controller = controller or UIController(ModelSession(settings=settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if controller.state.phase is Phase.LOADING:
            app.state.model_init_thread = Thread(target=controller.start, name="model-init", daemon=True)
            app.state.model_init_thread.start()
        yield

    app = FastAPI(title="bg-blaster", version="0.1.0", lifespan=lifespan)
    app.state.controller = controller
    app.state.model_init_thread = None

    @app.get("/", response_class=HTMLResponse)
    def index():
        return HTMLResponse(render_page(controller.state))

    @app.get("/health")
    def health():
        state = controller.state
        if state.phase is Phase.LOADING:
            model = "loading"
        else:
            model = "ready" if state.model_ready else "unavailable"
        return {"status": "ok", "model": model}

    @app.get("/state", response_model=StateResponse)
    def get_state():
        return _state_response(controller.state)

    @app.post("/upload")
    def upload(file: UploadFile = File(...)):
        content_type = file.content_type or ""
        if not content_type.startswith("image/"):
            raise HTTPException(status_code=400, detail="Only image uploads are accepted")

        data = file.file.read(settings.max_upload_bytes + 1)
        if not data:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        if len(data) > settings.max_upload_bytes:
            raise HTTPException(status_code=413, detail="Uploaded file is too large")

        record = controller.select_image(file.filename or "image", data, content_type)
        if record is None:
            raise HTTPException(status_code=409, detail=f"Cannot accept uploads while {controller.state.view}")
        return RedirectResponse("/", status_code=303)

    @app.post("/process")
    def process():
        if not controller.state.can_process:
            raise HTTPException(status_code=409, detail=f"Cannot process while {controller.state.view}")
        if not controller.process():
            logger.warning("Processing did not produce results; staying on the selected image")
        return RedirectResponse("/", status_code=303)

    @app.get("/images/{kind}")
    def get_image(kind: ImageKind):
        image = controller.state.image
        artifact = getattr(image, kind.value) if image is not None else None
        if artifact is None:
            raise HTTPException(status_code=404, detail=f"No {kind.value} image")
        return Response(
            content=artifact.data,
            media_type=artifact.content_type,
            headers={"Content-Disposition": f"inline; filename*=UTF-8''{quote(artifact.name)}"},
        )

    return app


app = create_app()
