from __future__ import annotations

import re
import uuid
from pathlib import Path

from .errors import PathTraversalRejected


_CONVERSION_ID_RE = re.compile(r"^conv_[0-9a-f]{32}$")


def new_conversion_id() -> str:
    # Conversion ids double as URL path segments for asset serving; keep them unguessable.
    return f"conv_{uuid.uuid4().hex}"


def normalize_conversion_id(conversion_id: str) -> str:
    """Validate a conversion id coming from a client.

    Only the canonical ``conv_<32 hex>`` form is accepted, so an id can always be
    used as a directory name under the uploads root.
    """
    if not isinstance(conversion_id, str):
        raise ValueError("Invalid conversion id")
    conversion_id = conversion_id.strip().lower()
    if not _CONVERSION_ID_RE.match(conversion_id):
        raise ValueError("Invalid conversion id")
    return conversion_id


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories, no parent references)."""
    if not isinstance(name, str) or not name:
        return False
    if ".." in name:
        return False
    if "/" in name or "\\" in name:
        return False
    if name != Path(name).name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when serving or cataloguing user-controlled paths.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise PathTraversalRejected("Path traversal attempt")
    return resolved
