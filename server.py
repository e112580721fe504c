from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, Field

from pdft_backend.assets import AssetCatalog
from pdft_backend.config import (
    ASSET_MAX_AGE_HOURS,
    ASSET_SWEEP_INTERVAL_SECONDS,
    BROWSER_POOL_SIZE,
    CONVERTER_IMAGE,
    CONVERTER_PLATFORM,
    CONVERTER_TIMEOUT_SECONDS,
    DOCKER_BIN,
    FRONTEND_URL,
    INCOMING_SUBDIR,
    MAX_UPLOAD_BYTES,
    PDF_MAX_AGE_HOURS,
    PDF_OUTPUT_DIR,
    PDF_SWEEP_INTERVAL_SECONDS,
    RENDER_RESETTLE_MS,
    RENDER_SETTLE_MS,
    RENDER_TIMEOUT_MS,
    UPLOADS_DIR,
)
from pdft_backend.conversion import DocumentConverter, discard_upload, stash_upload
from pdft_backend.errors import ConversionError, PathTraversalRejected, RenderError
from pdft_backend.logging_config import get_logger
from pdft_backend.models import ConversionOptions, iso_timestamp, utc_now
from pdft_backend.pdf2html import Pdf2HtmlEx
from pdft_backend.render_mode import choose_render_mode
from pdft_backend.renderer import BrowserPool, PdfRenderer, make_render_options, resolve_download
from pdft_backend.security import normalize_conversion_id
from pdft_backend.sweeper import run_periodically, sweep_expired_assets, sweep_expired_renders


logger = get_logger(__name__)

catalog = AssetCatalog(UPLOADS_DIR)
converter = DocumentConverter(
    UPLOADS_DIR,
    catalog,
    Pdf2HtmlEx(
        docker_bin=DOCKER_BIN,
        image=CONVERTER_IMAGE,
        platform=CONVERTER_PLATFORM,
        timeout_seconds=CONVERTER_TIMEOUT_SECONDS,
    ),
)
browser_pool = BrowserPool(size=BROWSER_POOL_SIZE)
renderer = PdfRenderer(
    browser_pool,
    PDF_OUTPUT_DIR,
    timeout_ms=RENDER_TIMEOUT_MS,
    settle_ms=RENDER_SETTLE_MS,
    resettle_ms=RENDER_RESETTLE_MS,
)


class GeneratePdfOptions(BaseModel):
    filename: Optional[str] = None
    format: Optional[str] = None
    orientation: Optional[str] = None
    margin: Optional[float] = None
    scale: Optional[float] = None
    renderMode: Optional[str] = None


class GeneratePdfRequest(BaseModel):
    html: str = ""
    options: GeneratePdfOptions = Field(default_factory=GeneratePdfOptions)


def _base_url(request: Request) -> str:
    # request.base_url always ends with '/'
    return str(request.base_url).rstrip("/")


def _form_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "":
        return None
    return value.strip().lower() not in ("false", "0", "no", "off")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Both sweeps run once at startup, then on their own intervals.
    tasks = [
        asyncio.create_task(
            run_periodically(
                "Asset cleanup",
                partial(sweep_expired_assets, catalog, ASSET_MAX_AGE_HOURS),
                ASSET_SWEEP_INTERVAL_SECONDS,
            )
        ),
        asyncio.create_task(
            run_periodically(
                "PDF cleanup",
                partial(sweep_expired_renders, PDF_OUTPUT_DIR, PDF_MAX_AGE_HOURS),
                PDF_SWEEP_INTERVAL_SECONDS,
            )
        ),
    ]
    app.state._sweep_tasks = tasks
    logger.info("PDF transformer backend ready (uploads=%s, output=%s)", UPLOADS_DIR, PDF_OUTPUT_DIR)
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await browser_pool.close()


app = FastAPI(title="PDF Transformer Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in FRONTEND_URL.split(",") if o.strip()] or ["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "timestamp": iso_timestamp(utc_now())})


@app.get("/c/{conversion_id}/assets/{filename}")
async def get_asset(conversion_id: str, filename: str) -> Response:
    """Serve one side-asset of a conversion (CSS, JS, font, image).

    The filename must be a bare name; anything with '..', '/' or '\\' is
    rejected before the filesystem is touched.
    """
    try:
        found = catalog.read_asset(conversion_id, filename)
    except PathTraversalRejected:
        raise HTTPException(status_code=400, detail="Invalid filename")
    except ValueError:
        raise HTTPException(status_code=404, detail="Asset not found")
    if found is None:
        raise HTTPException(status_code=404, detail="Asset not found")

    data, mime_type = found
    return Response(content=data, media_type=mime_type, headers={"Cache-Control": "public, max-age=3600"})


@app.get("/api/conversions/{conversion_id}/assets")
async def get_conversion_assets(conversion_id: str) -> JSONResponse:
    try:
        cid = normalize_conversion_id(conversion_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Conversion not found")
    entry = catalog.get(cid)
    if entry is None:
        raise HTTPException(status_code=404, detail="Conversion not found")
    return JSONResponse(entry.to_dict())


@app.post("/convert")
async def convert(
    request: Request,
    file: Optional[UploadFile] = File(None),
    embedFonts: Optional[str] = Form(None),
    embedImages: Optional[str] = Form(None),
    embedScripts: Optional[str] = Form(None),
    embedJavascript: Optional[str] = Form(None),
    embedOutline: Optional[str] = Form(None),
    splitPages: Optional[str] = Form(None),
    zoom: Optional[float] = Form(None),
    dpi: Optional[int] = Form(None),
) -> JSONResponse:
    """Convert an uploaded PDF to self-contained HTML with served side-assets."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    is_pdf = (file.content_type or "").lower() == "application/pdf" or file.filename.lower().endswith(".pdf")
    if not is_pdf:
        raise HTTPException(status_code=400, detail="Only PDF files are allowed")

    try:
        options = ConversionOptions(
            embed_fonts=_form_bool(embedFonts),
            embed_images=_form_bool(embedImages),
            embed_scripts=_form_bool(embedScripts if embedScripts is not None else embedJavascript),
            embed_outline=_form_bool(embedOutline),
            split_pages=_form_bool(splitPages),
            zoom=zoom,
            dpi=dpi,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File size too large (max {MAX_UPLOAD_BYTES // (1024 * 1024)}MB)")

    input_path = stash_upload(UPLOADS_DIR / INCOMING_SUBDIR, file.filename, data)
    logger.info("Converting PDF: %s", input_path.name)
    try:
        result = await converter.convert(input_path, options, _base_url(request))
    except ConversionError as e:
        logger.error("Conversion error: %s", e)
        return JSONResponse({"error": "PDF conversion failed", "details": str(e)}, status_code=500)
    except Exception as e:
        logger.exception("Unexpected conversion error")
        return JSONResponse({"error": "PDF conversion failed", "details": str(e)}, status_code=500)
    finally:
        discard_upload(input_path)

    return JSONResponse(result.to_dict())


@app.post("/generate-pdf")
async def generate_pdf(payload: GeneratePdfRequest, request: Request) -> JSONResponse:
    """Print HTML to a PDF on disk and return a download URL for it."""
    html = payload.html or ""
    if not html.strip():
        return JSONResponse({"success": False, "error": "HTML content is required"}, status_code=400)

    opts = payload.options
    try:
        options = make_render_options(
            choose_render_mode(html, opts.renderMode),
            filename=opts.filename,
            format=opts.format,
            orientation=opts.orientation,
            margin_mm=opts.margin,
            scale=opts.scale,
        )
    except ValueError as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=400)

    logger.info("Generating PDF from HTML (%d chars, mode=%s)", len(html), options.render_mode.value)
    try:
        result = await renderer.render(html, options, _base_url(request))
    except RenderError as e:
        return JSONResponse({"success": False, "error": str(e) or "PDF generation failed"}, status_code=500)

    return JSONResponse(result.to_dict())


@app.get("/download-pdf/{filename}")
async def download_pdf(filename: str) -> Response:
    try:
        path = resolve_download(PDF_OUTPUT_DIR, filename)
    except PathTraversalRejected:
        raise HTTPException(status_code=400, detail="Invalid filename")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid file type")
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")

    logger.info("PDF downloaded: %s", filename)
    return FileResponse(
        path,
        media_type="application/pdf",
        filename=filename,
        headers={"Cache-Control": "no-cache"},
    )


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=False)
