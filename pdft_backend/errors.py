from __future__ import annotations


class ConversionError(Exception):
    """Base class for failures that abort a PDF -> HTML conversion."""


class ExternalToolFailure(ConversionError):
    """pdf2htmlEX exited with a genuine error (not a benign warning)."""

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class OutputNotFound(ConversionError):
    """The converter finished but no matching HTML file was produced."""


class PathTraversalRejected(ValueError):
    """A client- or markup-supplied name tried to leave its base directory."""


class RenderError(Exception):
    """Base class for failures while printing HTML to PDF."""


class RenderLaunchFailure(RenderError):
    pass


class RenderTimeout(RenderError):
    pass


class RenderEmitFailure(RenderError):
    pass
