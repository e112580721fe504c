from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Iterable, Optional

from .config import CSS_EXTS, FONT_EXTS, IMAGE_EXTS, SCRIPT_EXTS
from .errors import PathTraversalRejected
from .logging_config import get_logger
from .models import AssetInfo, AssetKind, ConversionAssets, utc_now
from .security import is_safe_basename, normalize_conversion_id, safe_join


logger = get_logger(__name__)

ASSETS_PATH = "assets"

_MIME_TYPES = {
    ".css": "text/css",
    ".js": "application/javascript",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

_IMAGE_ALT = "png|jpe?g|gif|svg"
_FONT_ALT = "woff2?|ttf|otf|eot"

_STYLESHEET_RE = re.compile(
    r"""(?P<lead>\bhref\s*=\s*)(?P<q>["'])(?P<url>[^"']+?\.css)(?P<tail>[?#][^"']*)?(?P=q)""",
    re.IGNORECASE,
)
_SCRIPT_RE = re.compile(
    r"""(?P<lead>\bsrc\s*=\s*)(?P<q>["'])(?P<url>[^"']+?\.js)(?P<tail>[?#][^"']*)?(?P=q)""",
    re.IGNORECASE,
)
_IMG_SRC_RE = re.compile(
    rf"""(?P<lead>\bsrc\s*=\s*)(?P<q>["'])(?P<url>[^"']+?\.(?:{_IMAGE_ALT}))(?P<tail>[?#][^"']*)?(?P=q)""",
    re.IGNORECASE,
)
# url(...) inside <style> blocks and style attributes, images and fonts alike.
_CSS_URL_RE = re.compile(
    rf"""(?P<lead>url\(\s*)(?P<q>["']?)(?P<url>[^"'()\s]+?\.(?:{_IMAGE_ALT}|{_FONT_ALT}))(?P<tail>[?#][^"'()\s]*)?(?P=q)(?P<end>\s*\))""",
    re.IGNORECASE,
)
_BASE_TAG_RE = re.compile(r"<base\b", re.IGNORECASE)
_HEAD_OPEN_RE = re.compile(r"(<head\b[^>]*>)", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*:", re.IGNORECASE)


def classify(filename: str) -> AssetKind:
    ext = Path(filename).suffix.lower()
    if ext in CSS_EXTS:
        return AssetKind.CSS
    if ext in SCRIPT_EXTS:
        return AssetKind.SCRIPT
    if ext in FONT_EXTS:
        return AssetKind.FONT
    if ext in IMAGE_EXTS:
        return AssetKind.IMAGE
    return AssetKind.OTHER


def mime_type_for(filename: str) -> str:
    return _MIME_TYPES.get(Path(filename).suffix.lower(), DEFAULT_MIME_TYPE)


def _is_local_reference(url: str) -> bool:
    u = (url or "").strip()
    if not u:
        return False
    # Remote, protocol-relative, root-absolute, data: and other schemes are left alone.
    if u.startswith(("/", "\\", "#")):
        return False
    return not _SCHEME_RE.match(u)


def _reference_basename(url: str) -> str:
    return Path(url.replace("\\", "/")).name


def rewrite_asset_paths(markup: str, base_url: str) -> str:
    """Point every local asset reference at ``{base_url}/assets/{filename}``.

    Rewrites stylesheet hrefs, script srcs, image srcs and CSS ``url(...)``
    references, then injects ``<base href="{base_url}/">`` unless the document
    already has a base element. References that are already absolute are left
    untouched, so running this twice yields the same markup.

    Only flat references are servable: ``css/x.css`` becomes
    ``{base_url}/assets/x.css``, but assets are read from the top of the
    working directory, so a file that really lives in a subfolder answers 404.
    pdf2htmlEX writes everything flat into its destination directory.
    """
    html = markup or ""
    base = (base_url or "").rstrip("/")

    def _sub(m: re.Match) -> str:
        url = m.group("url")
        if not _is_local_reference(url):
            return m.group(0)
        name = _reference_basename(url)
        if not name:
            return m.group(0)
        new_url = f"{base}/{ASSETS_PATH}/{name}{m.group('tail') or ''}"
        end = m.groupdict().get("end") or ""
        if m.re is _CSS_URL_RE:
            return f'{m.group("lead")}"{new_url}"{end}'
        return f"{m.group('lead')}{m.group('q')}{new_url}{m.group('q')}"

    for pattern in (_STYLESHEET_RE, _SCRIPT_RE, _IMG_SRC_RE, _CSS_URL_RE):
        html = pattern.sub(_sub, html)

    if not _BASE_TAG_RE.search(html):
        base_tag = f'<base href="{base}/">'
        if _HEAD_OPEN_RE.search(html):
            html = _HEAD_OPEN_RE.sub(lambda m: f"{m.group(1)}{base_tag}", html, count=1)
        else:
            html = base_tag + html
    return html


def _referenced_files(markup: str, pattern: re.Pattern) -> list[str]:
    found: list[str] = []
    for m in pattern.finditer(markup or ""):
        url = m.group("url")
        if _is_local_reference(url):
            found.append(url.strip())
    return found


def _files_by_extension(work_dir: Path, exts: tuple[str, ...]) -> list[str]:
    """Names of files in work_dir ending in one of exts, grouped in exts order."""
    buckets: dict[str, list[str]] = {ext: [] for ext in exts}
    try:
        children = sorted(work_dir.iterdir())
    except OSError:
        return []
    for child in children:
        ext = child.suffix.lower()
        if ext in buckets and child.is_file():
            buckets[ext].append(child.name)
    return [name for ext in exts for name in buckets[ext]]


def asset_info(work_dir: Path, reference: str) -> AssetInfo:
    """Resolve a reference under work_dir and stat it.

    A missing file is reported with ``exists=False`` and size 0; a reference
    escaping work_dir raises :class:`PathTraversalRejected`.
    """
    path = safe_join(work_dir, reference)
    size = 0
    exists = False
    try:
        if path.is_file():
            size = path.stat().st_size
            exists = True
    except OSError:
        exists = False
    return AssetInfo(
        filename=path.name,
        absolute_path=path,
        kind=classify(path.name),
        size_bytes=size,
        exists=exists,
    )


def discover_assets(markup: str, work_dir: Path) -> list[AssetInfo]:
    """Catalogue the side-assets of one generated document.

    Stylesheets and scripts come from the markup itself. Fonts and images are
    taken from a directory listing, since they are mostly referenced from
    inside stylesheets rather than from the markup.
    """
    references: list[str] = []
    references += _referenced_files(markup, _STYLESHEET_RE)
    references += _referenced_files(markup, _SCRIPT_RE)
    references += _files_by_extension(work_dir, FONT_EXTS + IMAGE_EXTS)

    assets: list[AssetInfo] = []
    seen: set[str] = set()
    for ref in references:
        info = asset_info(work_dir, ref)
        if info.filename in seen:
            continue
        seen.add(info.filename)
        if not info.exists:
            logger.warning("Referenced asset missing on disk: %s", info.filename)
        assets.append(info)
    return assets


class AssetCatalog:
    """In-memory conversion_id -> ConversionAssets store.

    Entries are immutable once registered. Catalogue work runs in worker
    threads (see DocumentConverter) while sweeps run on the event loop, so every
    access to the map goes through a lock.
    """

    def __init__(self, uploads_dir: Path) -> None:
        self.uploads_dir = uploads_dir.resolve()
        self._entries: dict[str, ConversionAssets] = {}
        self._lock = threading.Lock()

    def work_dir_for(self, conversion_id: str) -> Path:
        cid = normalize_conversion_id(conversion_id)
        return safe_join(self.uploads_dir, cid)

    def register(self, conversion_id: str, markup_filename: str, markup: str) -> ConversionAssets:
        work_dir = self.work_dir_for(conversion_id)
        entry = ConversionAssets(
            conversion_id=conversion_id,
            markup_filename=markup_filename,
            work_dir=work_dir,
            assets=tuple(discover_assets(markup, work_dir)),
            created_at=utc_now(),
        )
        with self._lock:
            self._entries[conversion_id] = entry
        return entry

    def get(self, conversion_id: str) -> Optional[ConversionAssets]:
        with self._lock:
            return self._entries.get(conversion_id)

    def entries(self) -> list[ConversionAssets]:
        with self._lock:
            return list(self._entries.values())

    def remove(self, conversion_id: str) -> Optional[ConversionAssets]:
        with self._lock:
            return self._entries.pop(conversion_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def read_asset(self, conversion_id: str, filename: str) -> Optional[tuple[bytes, str]]:
        """Return ``(bytes, mime_type)`` for a served asset, or None if absent.

        The filename is validated before any filesystem access.
        """
        if not is_safe_basename(filename):
            raise PathTraversalRejected("Invalid filename")
        work_dir = self.work_dir_for(conversion_id)
        path = safe_join(work_dir, filename)
        if not path.is_file():
            return None
        try:
            data = path.read_bytes()
        except OSError:
            return None
        return data, mime_type_for(filename)


def delete_files(paths: Iterable[Path]) -> int:
    """Best-effort unlink; failures are logged, never raised."""
    deleted = 0
    for path in paths:
        try:
            path.unlink()
            deleted += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)
    return deleted
