from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup

from .models import RenderMode


# pdf2htmlEX wraps every page in <div class="pf"> inside #page-container.
CONVERTED_PAGE_CLASS = "pf"
_GENERATOR_RE = re.compile("pdf2htmlEX", re.IGNORECASE)


def looks_converted(html_text: str) -> bool:
    """True when the markup carries pdf2htmlEX hallmarks.

    Checks for page-frame elements (``class="pf"``), the ``#page-container``
    wrapper or a pdf2htmlEX generator meta tag.
    """
    raw = html_text or ""
    lowered = raw.lower()
    if "pf" not in lowered and "pdf2htmlex" not in lowered and "page-container" not in lowered:
        return False

    soup = BeautifulSoup(raw, "html.parser")
    if soup.find(class_=CONVERTED_PAGE_CLASS) is not None:
        return True
    if soup.find(id="page-container") is not None:
        return True
    if soup.find("meta", attrs={"name": "generator", "content": _GENERATOR_RE}) is not None:
        return True
    return False


def choose_render_mode(html_text: str, requested: Optional[str] = None) -> RenderMode:
    """Resolve the render mode at the request boundary.

    An explicit ``requested`` value wins; otherwise previously converted
    documents print at their native size and everything else on paper.
    """
    if requested:
        return RenderMode(str(requested).strip().lower())
    return RenderMode.NATIVE if looks_converted(html_text) else RenderMode.PAPER
