"""
Shared test configuration and fixtures.

The app reads its directories from the environment at import time, so point
them at a throwaway location before anything imports server.py.
"""

import os
import tempfile
from pathlib import Path

import pytest

_TMP_ROOT = Path(tempfile.mkdtemp(prefix="pdft-tests-"))
os.environ.setdefault("PDFT_UPLOADS_DIR", str(_TMP_ROOT / "uploads"))
os.environ.setdefault("PDFT_PDF_OUTPUT_DIR", str(_TMP_ROOT / "pdf-output"))
os.environ.setdefault("PDFT_RENDER_SETTLE_MS", "0")
os.environ.setdefault("PDFT_RENDER_RESETTLE_MS", "0")

from pdft_backend.assets import AssetCatalog  # noqa: E402


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def catalog(uploads_dir: Path) -> AssetCatalog:
    return AssetCatalog(uploads_dir)


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    """A one-page 'PDF' sitting in its own incoming folder."""
    folder = tmp_path / "incoming" / "abc"
    folder.mkdir(parents=True)
    path = folder / "report.pdf"
    path.write_bytes(b"%PDF-1.4\n% one page\n%%EOF\n")
    return path
