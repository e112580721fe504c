from __future__ import annotations

import asyncio
import shutil
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from .assets import AssetCatalog, delete_files
from .config import PDF_EXT
from .logging_config import get_logger
from .models import RenderedDocument, utc_now


logger = get_logger(__name__)


def sweep_expired_assets(
    catalog: AssetCatalog,
    max_age_hours: float = 24,
    now: Optional[datetime] = None,
) -> int:
    """Drop catalog entries older than max_age_hours and delete their files.

    File deletion is best-effort; the entry is removed regardless. Returns the
    number of entries removed.
    """
    now = now or utc_now()
    max_age = timedelta(hours=max(0.0, max_age_hours))
    removed = 0

    for entry in catalog.entries():
        try:
            if now - entry.created_at <= max_age:
                continue
            catalog.remove(entry.conversion_id)
            removed += 1
            delete_files(asset.absolute_path for asset in entry.assets)
            # The converter also leaves untracked side files (.page, .outline) here.
            try:
                shutil.rmtree(entry.work_dir)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Failed to remove working directory %s: %s", entry.work_dir, e)
        except Exception as e:
            logger.warning("Asset sweep failed for %s: %s", entry.conversion_id, e)

    if removed:
        logger.info("Cleaned up %d expired conversion(s)", removed)
    return removed


def list_rendered_documents(output_dir: Path) -> list[RenderedDocument]:
    docs: list[RenderedDocument] = []
    if not output_dir.exists():
        return docs
    for child in output_dir.iterdir():
        if not child.name.lower().endswith(PDF_EXT):
            continue
        try:
            stat = child.stat()
        except OSError as e:
            logger.warning("Failed to stat %s: %s", child.name, e)
            continue
        if not child.is_file():
            continue
        docs.append(
            RenderedDocument(
                file_path=child,
                filename=child.name,
                size_bytes=stat.st_size,
                created_at=stat.st_mtime,
            )
        )
    return docs


def sweep_expired_renders(
    output_dir: Path,
    max_age_hours: float = 1,
    now: Optional[float] = None,
) -> int:
    """Delete rendered PDFs whose mtime is older than max_age_hours.

    Works purely off the filesystem. Returns the number of files deleted.
    """
    now = time.time() if now is None else now
    max_age_seconds = max(0.0, max_age_hours) * 3600.0
    deleted = 0

    try:
        docs = list_rendered_documents(output_dir)
    except OSError as e:
        logger.warning("PDF cleanup error: %s", e)
        return 0

    for doc in docs:
        if now - doc.created_at <= max_age_seconds:
            continue
        try:
            doc.file_path.unlink()
            deleted += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Failed to delete %s: %s", doc.filename, e)

    if deleted:
        logger.info("Cleaned up %d old PDF file(s)", deleted)
    return deleted


async def run_periodically(name: str, sweep: Callable[[], int], interval_seconds: float) -> None:
    """Run ``sweep`` in a worker thread, then sleep; forever, never raising."""
    while True:
        try:
            await asyncio.to_thread(sweep)
        except Exception as e:
            logger.error("%s failed: %s", name, e)
        await asyncio.sleep(max(1.0, interval_seconds))
