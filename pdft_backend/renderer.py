from __future__ import annotations

import asyncio
import re
import secrets
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .config import PDF_EXT
from .errors import PathTraversalRejected, RenderEmitFailure, RenderError, RenderLaunchFailure, RenderTimeout
from .logging_config import get_logger
from .models import RenderMode, RenderOptions, RenderResult
from .security import is_safe_basename, safe_join


logger = get_logger(__name__)

# Flags for running Chromium inside a container without a user namespace sandbox.
CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

INITIAL_VIEWPORT = {"width": 1200, "height": 1600}
VIEWPORT_MARGIN_PX = 100

# Empirically keeps regular HTML from spilling onto an extra page.
PAPER_SCALE = 0.75

PAPER_FORMATS = {
    "a3": "A3",
    "a4": "A4",
    "a5": "A5",
    "letter": "Letter",
    "legal": "Legal",
    "tabloid": "Tabloid",
}
ORIENTATIONS = {"portrait", "landscape"}

_MEASURE_CONTENT_JS = """() => {
    const body = document.body;
    const html = document.documentElement;
    const b = body || {scrollWidth: 0, offsetWidth: 0, scrollHeight: 0, offsetHeight: 0};
    return {
        width: Math.max(b.scrollWidth, b.offsetWidth, html.clientWidth, html.scrollWidth, html.offsetWidth),
        height: Math.max(b.scrollHeight, b.offsetHeight, html.clientHeight, html.scrollHeight, html.offsetHeight),
    };
}"""

_FONTS_READY_JS = """async () => { if (document.fonts && document.fonts.ready) { await document.fonts.ready; } }"""

_UNSAFE_STEM_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


def make_render_options(
    render_mode: RenderMode,
    filename: Optional[str] = None,
    format: Optional[str] = None,
    orientation: Optional[str] = None,
    margin_mm: Optional[float] = None,
    scale: Optional[float] = None,
) -> RenderOptions:
    """Validate client-supplied render options; raises ValueError on bad input."""
    fmt_key = (format or "A4").strip().lower()
    if fmt_key not in PAPER_FORMATS:
        raise ValueError(f"Unsupported page format: {format}")
    orient = (orientation or "portrait").strip().lower()
    if orient not in ORIENTATIONS:
        raise ValueError(f"Unsupported orientation: {orientation}")
    margin = 10.0 if margin_mm is None else float(margin_mm)
    if margin < 0:
        raise ValueError("margin must be >= 0")
    if scale is not None and not (0.1 <= float(scale) <= 2.0):
        raise ValueError("scale must be between 0.1 and 2")
    return RenderOptions(
        render_mode=RenderMode(render_mode),
        filename=filename,
        format=PAPER_FORMATS[fmt_key],
        orientation=orient,
        margin_mm=margin,
        scale=None if scale is None else float(scale),
    )


def build_pdf_options(options: RenderOptions, content_width: int, content_height: int) -> dict[str, Any]:
    """Keyword arguments for ``page.pdf``.

    Native mode reproduces the measured content 1:1 on a single custom-sized
    page; paper mode uses a named format with margins and a reduced scale.
    """
    if options.render_mode == RenderMode.NATIVE:
        return {
            "print_background": True,
            "width": f"{int(content_width)}px",
            "height": f"{int(content_height)}px",
            "prefer_css_page_size": False,
            "scale": 1,
            "margin": {"top": "0", "right": "0", "bottom": "0", "left": "0"},
        }

    margin = f"{options.margin_mm:g}mm"
    return {
        "print_background": True,
        "format": options.format,
        "landscape": options.orientation == "landscape",
        "prefer_css_page_size": True,
        "scale": options.scale if options.scale is not None else PAPER_SCALE,
        "margin": {"top": margin, "right": margin, "bottom": margin, "left": margin},
    }


def make_output_filename(requested: Optional[str] = None) -> str:
    stem = _UNSAFE_STEM_CHARS_RE.sub("_", Path(requested or "").stem).strip("._") or "document"
    return f"{stem}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{PDF_EXT}"


def resolve_download(output_dir: Path, filename: str) -> Optional[Path]:
    """Map a download filename to a file in output_dir, or None if it is gone.

    Raises PathTraversalRejected for names with path components and ValueError
    for anything that is not a PDF.
    """
    if not is_safe_basename(filename):
        raise PathTraversalRejected("Invalid filename")
    if not filename.lower().endswith(PDF_EXT):
        raise ValueError("Invalid file type")
    path = safe_join(output_dir, filename)
    if not path.is_file():
        return None
    return path


class BrowserPool:
    """Bounded pool of headless Chromium instances.

    ``acquire`` hands out an idle browser after checking it is still connected
    (launching a new one when none is idle) and blocks once ``size`` browsers
    are checked out. ``release`` returns healthy browsers to the pool and closes
    the rest.
    """

    def __init__(self, size: int = 2, launcher: Optional[Callable[[], Awaitable[Any]]] = None) -> None:
        self.size = max(1, int(size))
        self._launcher = launcher
        self._idle: list[Any] = []
        self._slots = asyncio.Semaphore(self.size)
        self._playwright = None
        self._start_lock = asyncio.Lock()
        self._closed = False

    async def _launch(self) -> Any:
        if self._launcher is not None:
            return await self._launcher()
        async with self._start_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=True, args=CHROMIUM_ARGS)

    async def acquire(self) -> Any:
        if self._closed:
            raise RenderLaunchFailure("Browser pool is closed")
        await self._slots.acquire()
        try:
            while self._idle:
                browser = self._idle.pop()
                if browser.is_connected():
                    return browser
                await self._close_quietly(browser)
            return await self._launch()
        except BaseException:
            self._slots.release()
            raise

    async def release(self, browser: Any, healthy: bool = True) -> None:
        try:
            if healthy and not self._closed and browser.is_connected():
                self._idle.append(browser)
            else:
                await self._close_quietly(browser)
        finally:
            self._slots.release()

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    async def close(self) -> None:
        self._closed = True
        while self._idle:
            await self._close_quietly(self._idle.pop())
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning("Failed to stop Playwright: %s", e)
            self._playwright = None

    @staticmethod
    async def _close_quietly(browser: Any) -> None:
        try:
            await browser.close()
        except Exception as e:
            logger.warning("Failed to close browser: %s", e)


class PdfRenderer:
    """Prints HTML to a PDF file in output_dir and returns a download handle."""

    def __init__(
        self,
        pool: BrowserPool,
        output_dir: Path,
        timeout_ms: int = 30000,
        settle_ms: int = 2000,
        resettle_ms: int = 1000,
    ) -> None:
        self.pool = pool
        self.output_dir = output_dir.resolve()
        self.timeout_ms = timeout_ms
        self.settle_ms = settle_ms
        self.resettle_ms = resettle_ms

    async def render(self, html: str, options: RenderOptions, base_url: str) -> RenderResult:
        started = time.monotonic()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filename = make_output_filename(options.filename)
        pdf_path = safe_join(self.output_dir, filename)

        try:
            browser = await self.pool.acquire()
        except RenderError:
            raise
        except Exception as e:
            logger.error("Failed to launch browser: %s", e)
            raise RenderLaunchFailure(f"Failed to launch browser: {e}") from e

        healthy = False
        try:
            await self._render_page(browser, html, options, pdf_path)
            healthy = True
        except RenderError as e:
            logger.error("PDF generation error: %s", e)
            raise
        except Exception as e:
            logger.error("PDF generation error: %s", e)
            raise RenderError(f"PDF generation failed: {e}") from e
        finally:
            await self.pool.release(browser, healthy=healthy)
            if not healthy:
                pdf_path.unlink(missing_ok=True)

        processing_time_ms = max(0, int((time.monotonic() - started) * 1000))
        file_size = pdf_path.stat().st_size
        logger.info("Generated PDF %s (%d bytes) in %dms", filename, file_size, processing_time_ms)
        return RenderResult(
            download_url=f"{(base_url or '').rstrip('/')}/download-pdf/{filename}",
            filename=filename,
            file_size_bytes=file_size,
            processing_time_ms=processing_time_ms,
        )

    async def _render_page(self, browser: Any, html: str, options: RenderOptions, pdf_path: Path) -> None:
        page = await browser.new_page(viewport=dict(INITIAL_VIEWPORT), device_scale_factor=1)
        try:
            try:
                await page.set_content(html, wait_until="networkidle", timeout=self.timeout_ms)
            except PlaywrightTimeoutError as e:
                raise RenderTimeout(f"Content did not settle within {self.timeout_ms}ms") from e

            await self._stabilize(page, self.settle_ms)
            width, height = await self.measure(page)
            logger.debug("Content dimensions: %dx%d", width, height)

            if width > INITIAL_VIEWPORT["width"] or height > INITIAL_VIEWPORT["height"]:
                await page.set_viewport_size(
                    {
                        "width": max(INITIAL_VIEWPORT["width"], width + VIEWPORT_MARGIN_PX),
                        "height": max(INITIAL_VIEWPORT["height"], height + VIEWPORT_MARGIN_PX),
                    }
                )
                await self._stabilize(page, self.resettle_ms)

            pdf_options = build_pdf_options(options, width, height)
            try:
                await page.pdf(path=str(pdf_path), **pdf_options)
            except Exception as e:
                raise RenderEmitFailure(f"PDF generation failed: {e}") from e
            if not pdf_path.is_file():
                raise RenderEmitFailure("PDF generation failed: no output file written")
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug("Failed to close page: %s", e)

    async def _stabilize(self, page: Any, delay_ms: int) -> None:
        # Fixed grace period for late reflow.
        try:
            await page.evaluate(_FONTS_READY_JS)
        except Exception as e:
            logger.debug("document.fonts.ready wait failed: %s", e)
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    @staticmethod
    async def measure(page: Any) -> tuple[int, int]:
        dims = await page.evaluate(_MEASURE_CONTENT_JS)
        return int(dims["width"]), int(dims["height"])
