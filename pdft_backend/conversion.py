from __future__ import annotations

import asyncio
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import Optional, Protocol

from .assets import AssetCatalog, rewrite_asset_paths
from .config import MARKUP_EXT
from .errors import OutputNotFound
from .logging_config import get_logger
from .models import ConversionOptions, ConversionResult, utc_now
from .security import new_conversion_id, safe_join


logger = get_logger(__name__)

_UNSAFE_NAME_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


class ConverterTool(Protocol):
    async def run(
        self,
        input_path: Path,
        work_dir: Path,
        output_filename: str,
        options: ConversionOptions,
    ) -> None:
        ...


def conversion_base_url(base_url: str, conversion_id: str) -> str:
    """Base under which one conversion's assets are served: ``{base}/c/{id}``."""
    return f"{(base_url or '').rstrip('/')}/c/{conversion_id}"


def find_output_file(work_dir: Path, predicted_name: str, input_stem: str) -> Path:
    """Locate the HTML the converter actually wrote.

    pdf2htmlEX does not always honour the requested output name, so fall back
    to any HTML file whose name contains the input's base name (first in sorted
    order when several match).
    """
    html_files = sorted(
        p.name for p in work_dir.iterdir() if p.is_file() and p.name.lower().endswith(MARKUP_EXT)
    )
    if predicted_name in html_files:
        return work_dir / predicted_name
    matches = [name for name in html_files if input_stem and input_stem in name]
    if not matches:
        raise OutputNotFound(f"PDF conversion failed: no HTML output found for {input_stem}")
    if len(matches) > 1:
        logger.warning("Several HTML outputs match %r, using %s", input_stem, matches[0])
    return work_dir / matches[0]


class DocumentConverter:
    """Runs one PDF -> HTML conversion end to end.

    Each conversion gets its own working directory ``<uploads>/<conversion_id>``
    holding the converter output and side-assets. The generated HTML is read,
    its assets catalogued and rewritten to absolute URLs, then the file is
    deleted: the markup only ever leaves through the returned result.
    """

    def __init__(self, uploads_dir: Path, catalog: AssetCatalog, tool: ConverterTool) -> None:
        self.uploads_dir = uploads_dir.resolve()
        self.catalog = catalog
        self.tool = tool

    async def convert(
        self,
        input_path: Path,
        options: Optional[ConversionOptions] = None,
        base_url: str = "http://localhost:3000",
    ) -> ConversionResult:
        started = time.monotonic()
        input_path = Path(input_path)
        options = options or ConversionOptions()
        input_stem = input_path.stem

        conversion_id = new_conversion_id()
        work_dir = self.catalog.work_dir_for(conversion_id)
        work_dir.mkdir(parents=True, exist_ok=True)
        predicted_name = f"{conversion_id}{MARKUP_EXT}"

        try:
            await self.tool.run(input_path, work_dir, predicted_name, options)
            output_path = await asyncio.to_thread(find_output_file, work_dir, predicted_name, input_stem)
            markup = await asyncio.to_thread(output_path.read_text, "utf-8", "replace")
            entry = await asyncio.to_thread(self.catalog.register, conversion_id, output_path.name, markup)
            markup = rewrite_asset_paths(markup, conversion_base_url(base_url, conversion_id))
        except Exception:
            self.catalog.remove(conversion_id)
            await asyncio.to_thread(self._cleanup_failed, work_dir, predicted_name, input_stem)
            raise

        try:
            output_path.unlink()
        except OSError as e:
            logger.warning("Failed to delete intermediate HTML %s: %s", output_path.name, e)

        processing_time_ms = max(0, int((time.monotonic() - started) * 1000))
        logger.info(
            "Converted %s in %dms (%d assets, id=%s)",
            input_path.name,
            processing_time_ms,
            len(entry.assets),
            conversion_id,
        )
        return ConversionResult(
            markup=markup,
            original_filename=input_path.name,
            converted_at=utc_now(),
            processing_time_ms=processing_time_ms,
            conversion_id=conversion_id,
            asset_count=len(entry.assets),
        )

    def _cleanup_failed(self, work_dir: Path, predicted_name: str, input_stem: str) -> None:
        # Never raises: the original error must reach the caller unobscured.
        candidates = [work_dir / predicted_name]
        try:
            candidates += [
                p
                for p in work_dir.iterdir()
                if p.is_file() and p.name.lower().endswith(MARKUP_EXT) and input_stem and input_stem in p.name
            ]
        except OSError as e:
            logger.warning("Failed to list %s during cleanup: %s", work_dir, e)

        for path in candidates:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to clean up %s: %s", path.name, e)

        # Side-assets of a failed conversion are never catalogued; drop them with the folder.
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove working directory %s: %s", work_dir, e)


def stash_upload(incoming_root: Path, filename: str, data: bytes) -> Path:
    """Write an uploaded PDF into its own private folder under incoming_root.

    The (sanitized) client filename is kept so the converter output carries a
    recognisable base name.
    """
    stem = _UNSAFE_NAME_CHARS_RE.sub("_", Path(filename or "").stem).strip("._") or "upload"
    folder = safe_join(incoming_root, uuid.uuid4().hex)
    folder.mkdir(parents=True, exist_ok=True)
    dest = safe_join(folder, f"{stem}.pdf")
    dest.write_bytes(data)
    return dest


def discard_upload(path: Path) -> None:
    try:
        shutil.rmtree(path.parent)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to clean up upload %s: %s", path.name, e)
