"""
HTTP service.

Exposes the per-page stages over HTTP so another program can send one page
at a time without touching the filesystem:

    GET  /health   service status
    POST /detect   regions only, no OCR
    POST /extract  regions with their transcribed text
    POST /clean    page with every text region removed
    POST /replace  page rendered from an edited interchange document
    POST /translate  transcribe, translate and render in one request

Pages are uploaded as multipart files; images come back base64-encoded PNG.
"""

import argparse
import base64
import json
import logging
import os
from contextlib import contextmanager
from typing import Annotated, List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

from . import __version__
from .cli import setup_logging
from .config import Mode, RunOptions, load_config
from .errors import (
    ConfigError, IoError, PipelineError, SchemaMismatchError, TranslationError,
)
from .image_io import decode_image, encode_image
from .models import PageRecord
from .pipeline import PageTranslationPipeline

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    ConfigError: 400,
    IoError: 400,
    SchemaMismatchError: 400,
    TranslationError: 502,
}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="ok")
    version: str = Field(default=__version__)


class RegionDocument(BaseModel):
    """One region of an interchange document."""

    id: int = Field(description="Dense region id, in confidence order")
    box: List[int] = Field(description="Detected box as [x, y, width, height]")
    padded_box: List[int] = Field(description="Box grown by the padding and clamped to the page")
    source_text: Optional[str] = Field(default=None, description="Transcribed text")
    translated_text: Optional[str] = Field(default=None, description="Translated text")


class PageDocument(BaseModel):
    """Interchange document for one page."""

    version: int
    source_path: str
    width: int
    height: int
    regions: List[RegionDocument] = Field(default_factory=list)


class ImageResponse(BaseModel):
    """A rendered or cleaned page."""

    image: str = Field(description="PNG image as base64 string")
    warnings: List[str] = Field(default_factory=list, description="Regions whose text was clipped")


class TranslateResponse(ImageResponse):
    """Rendered page together with the document it was rendered from."""

    document: PageDocument


@contextmanager
def _http_errors(endpoint: str):
    """Turn pipeline failures into HTTP errors carrying the failure kind."""
    try:
        yield
    except PipelineError as e:
        status = _ERROR_STATUS.get(type(e), 500)
        logger.error(f"{endpoint} failed: {e.kind}: {e}")
        raise HTTPException(status_code=status, detail=f"{e.kind}: {e}") from e


def _encode(image) -> str:
    return base64.b64encode(encode_image(image, ".png")).decode("ascii")


def _read_page(file: UploadFile):
    return decode_image(file.file.read(), file.filename or "<upload>")


def _document(pipeline: PageTranslationPipeline, record: PageRecord) -> PageDocument:
    return PageDocument(**pipeline.store.to_document(record))


router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    return HealthResponse()


@router.post("/detect", response_model=PageDocument, tags=["Pages"])
def detect(
    request: Request,
    file: Annotated[UploadFile, File(description="Page image")],
    padding: Annotated[Optional[int], Form(ge=0)] = None,
) -> PageDocument:
    """Detect text regions without transcribing them."""
    pipeline: PageTranslationPipeline = request.app.state.pipeline
    with _http_errors("detect"):
        image = _read_page(file)
        record, _ = pipeline.detect_page(file.filename or "", image, padding)
        return _document(pipeline, record)


@router.post("/extract", response_model=PageDocument, tags=["Pages"])
def extract(
    request: Request,
    file: Annotated[UploadFile, File(description="Page image")],
    padding: Annotated[Optional[int], Form(ge=0)] = None,
) -> PageDocument:
    """Detect and transcribe every text region of a page."""
    pipeline: PageTranslationPipeline = request.app.state.pipeline
    with _http_errors("extract"):
        image = _read_page(file)
        record, crops = pipeline.detect_page(file.filename or "", image, padding)
        pipeline.transcribe(record, crops)
        return _document(pipeline, record)


@router.post("/clean", response_model=ImageResponse, tags=["Pages"])
def clean(
    request: Request,
    file: Annotated[UploadFile, File(description="Page image")],
    padding: Annotated[Optional[int], Form(ge=0)] = None,
) -> ImageResponse:
    """Remove every detected text region from a page."""
    pipeline: PageTranslationPipeline = request.app.state.pipeline
    with _http_errors("clean"):
        image = _read_page(file)
        record, _ = pipeline.detect_page(file.filename or "", image, padding)
        return ImageResponse(image=_encode(pipeline.clean(image, record)))


@router.post("/replace", response_model=ImageResponse, tags=["Pages"])
def replace(
    request: Request,
    file: Annotated[UploadFile, File(description="Page image")],
    document: Annotated[str, Form(description="Interchange document as JSON")],
    padding: Annotated[Optional[int], Form(ge=0)] = None,
) -> ImageResponse:
    """Render the translations of an edited document onto its page."""
    pipeline: PageTranslationPipeline = request.app.state.pipeline
    with _http_errors("replace"):
        try:
            data = json.loads(document)
        except json.JSONDecodeError as e:
            raise SchemaMismatchError(f"Invalid JSON in document: {e}") from e
        edited = pipeline.store.from_document(data)

        image = _read_page(file)
        detected, _ = pipeline.detect_page(file.filename or "", image, padding)
        record = pipeline.apply_document(edited, detected)

        background = pipeline.clean(image, record) if pipeline.plan.composites_on_clean else image
        rendered, warnings = pipeline.render(background, record)
        return ImageResponse(image=_encode(rendered), warnings=warnings)


@router.post("/translate", response_model=TranslateResponse, tags=["Pages"])
def translate(
    request: Request,
    file: Annotated[UploadFile, File(description="Page image")],
    padding: Annotated[Optional[int], Form(ge=0)] = None,
) -> TranslateResponse:
    """Transcribe, translate and render a page in one request."""
    pipeline: PageTranslationPipeline = request.app.state.pipeline
    with _http_errors("translate"):
        image = _read_page(file)
        record, crops = pipeline.detect_page(file.filename or "", image, padding)
        pipeline.transcribe(record, crops)
        pipeline.translator.translate_regions(record.regions)

        background = pipeline.clean(image, record) if pipeline.plan.composites_on_clean else image
        rendered, warnings = pipeline.render(background, record)
        return TranslateResponse(
            image=_encode(rendered),
            warnings=warnings,
            document=_document(pipeline, record),
        )


def create_app(pipeline: PageTranslationPipeline) -> FastAPI:
    """
    Create the FastAPI application around a pipeline.

    The pipeline must be built with serve=True in translate mode, so every
    stage's component exists. Endpoints are plain functions, which FastAPI
    runs on its worker threads; the detector lock and the OCR session pool
    make that safe.
    """
    app = FastAPI(
        title="Page Translator API",
        description="Detect, transcribe, clean and re-render text in page images.",
        version=__version__,
    )
    app.state.pipeline = pipeline
    app.include_router(router)

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("Closing OCR sessions and translation clients")
        pipeline.close()

    return app


def build_pipeline(options: RunOptions, **components) -> PageTranslationPipeline:
    """Build a pipeline with every component the endpoints need."""
    options.mode = Mode.TRANSLATE
    options.clean = True
    return PageTranslationPipeline(options, serve=True, **components)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Page Translator HTTP service")
    parser.add_argument("-m", "--model", required=True, help="Path to the detection model (ONNX format)")
    parser.add_argument("-l", "--lang", default=None, help="Tesseract OCR language (default: jpn_vert)")
    parser.add_argument("-d", "--data", default=None, help="Tesseract data directory")
    parser.add_argument("-p", "--padding", type=int, default=None, help="Default region padding in pixels")
    parser.add_argument("-c", "--config", default="config/config.yaml", help="Path to configuration file")
    parser.add_argument("--host", default=None, help="Bind address (default: server.host)")
    parser.add_argument("--port", type=int, default=None, help="Port (default: server.port)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the HTTP service with uvicorn."""
    args = parse_args(argv)
    setup_logging("DEBUG" if args.verbose else "INFO")

    config_path = args.config if os.path.exists(args.config) else None
    options = RunOptions(
        inputs=[],
        model=args.model,
        lang=args.lang,
        data=args.data,
        padding=args.padding,
        config_path=config_path,
    )
    try:
        pipeline = build_pipeline(options)
    except PipelineError as e:
        logger.error(f"Failed to initialize pipeline: {e.kind}: {e}")
        return 2

    server_config = load_config(config_path).get("server", {})
    uvicorn.run(
        create_app(pipeline),
        host=args.host or server_config.get("host", "127.0.0.1"),
        port=args.port or int(server_config.get("port", 8000)),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
