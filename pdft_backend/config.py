from __future__ import annotations

import os
from pathlib import Path


_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _dir_from_env(var: str, default: Path) -> Path:
    raw = os.environ.get(var)
    path = Path(raw) if raw and raw.strip() else default
    path = path.resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


# Working root for conversions; every conversion gets its own <root>/<conversion_id>/.
UPLOADS_DIR = _dir_from_env("PDFT_UPLOADS_DIR", _PROJECT_ROOT / "uploads")

# Uploaded PDFs wait here (one private folder per request) until the converter is done.
INCOMING_SUBDIR = "incoming"

# Rendered PDFs live here until the render sweep reclaims them.
PDF_OUTPUT_DIR = _dir_from_env("PDFT_PDF_OUTPUT_DIR", _PROJECT_ROOT / "pdf-output")

# Asset catalog entries (and their files) expire after this many hours.
ASSET_MAX_AGE_HOURS = float(os.environ.get("PDFT_ASSET_MAX_AGE_HOURS", "24"))
ASSET_SWEEP_INTERVAL_SECONDS = int(os.environ.get("PDFT_ASSET_SWEEP_INTERVAL_SECONDS", "3600"))

# Rendered PDFs are short-lived download handles.
PDF_MAX_AGE_HOURS = float(os.environ.get("PDFT_PDF_MAX_AGE_HOURS", "1"))
PDF_SWEEP_INTERVAL_SECONDS = int(os.environ.get("PDFT_PDF_SWEEP_INTERVAL_SECONDS", "600"))

MAX_UPLOAD_BYTES = int(os.environ.get("PDFT_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))  # 50MB

# External converter (pdf2htmlEX inside a container).
DOCKER_BIN = os.environ.get("PDFT_DOCKER_BIN", "docker")
CONVERTER_IMAGE = os.environ.get("PDFT_CONVERTER_IMAGE", "bwits/pdf2htmlex")
CONVERTER_PLATFORM = os.environ.get("PDFT_CONVERTER_PLATFORM", "linux/amd64")
CONVERTER_TIMEOUT_SECONDS = float(os.environ.get("PDFT_CONVERTER_TIMEOUT_SECONDS", "300"))

# Headless Chromium rendering.
BROWSER_POOL_SIZE = int(os.environ.get("PDFT_BROWSER_POOL_SIZE", "2"))
RENDER_TIMEOUT_MS = int(os.environ.get("PDFT_RENDER_TIMEOUT_MS", "30000"))
RENDER_SETTLE_MS = int(os.environ.get("PDFT_RENDER_SETTLE_MS", "2000"))
RENDER_RESETTLE_MS = int(os.environ.get("PDFT_RENDER_RESETTLE_MS", "1000"))

FRONTEND_URL = os.environ.get("PDFT_FRONTEND_URL", "*")

MARKUP_EXT = ".html"
PDF_EXT = ".pdf"
CSS_EXTS = {".css"}
SCRIPT_EXTS = {".js"}
FONT_EXTS = (".woff", ".woff2", ".ttf", ".otf", ".eot")
IMAGE_EXTS = (".png", ".jpg", ".jpeg", ".gif", ".svg")
