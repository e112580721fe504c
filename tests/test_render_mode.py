import pytest

from pdft_backend.models import RenderMode
from pdft_backend.render_mode import choose_render_mode, looks_converted
from tests.fakes import CONVERTED_HTML


def test_converted_markup_is_detected() -> None:
    assert looks_converted(CONVERTED_HTML) is True
    assert looks_converted('<div class="w0 pf h1">page</div>') is True
    assert looks_converted('<div id="page-container"></div>') is True


@pytest.mark.parametrize(
    "html",
    ["", "<p>Plain pdf text about pfennig</p>", '<div class="pfx">nope</div>', "<h1>Report</h1>"],
)
def test_regular_markup_is_not_detected(html: str) -> None:
    assert looks_converted(html) is False


def test_explicit_mode_wins_over_sniffing() -> None:
    assert choose_render_mode(CONVERTED_HTML) == RenderMode.NATIVE
    assert choose_render_mode("<p>hi</p>") == RenderMode.PAPER
    assert choose_render_mode(CONVERTED_HTML, "paper") == RenderMode.PAPER
    assert choose_render_mode("<p>hi</p>", "Native") == RenderMode.NATIVE


def test_unknown_mode_is_rejected() -> None:
    with pytest.raises(ValueError):
        choose_render_mode("<p>hi</p>", "poster")
