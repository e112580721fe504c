from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ConversionOptions:
    """pdf2htmlEX knobs for one conversion.

    ``None`` means "use the adapter default", which embeds everything.
    ``dpi`` is accepted for API compatibility but pdf2htmlEX has no DPI switch,
    so it is never forwarded to the tool.
    """

    embed_fonts: Optional[bool] = None
    embed_images: Optional[bool] = None
    embed_scripts: Optional[bool] = None
    embed_outline: Optional[bool] = None
    split_pages: Optional[bool] = None
    zoom: Optional[float] = None
    dpi: Optional[int] = None

    def __post_init__(self) -> None:
        if self.zoom is not None and not self.zoom > 0:
            raise ValueError("zoom must be > 0")
        if self.dpi is not None and not self.dpi > 0:
            raise ValueError("dpi must be > 0")


class AssetKind(str, Enum):
    CSS = "css"
    SCRIPT = "script"
    FONT = "font"
    IMAGE = "image"
    OTHER = "other"


@dataclass(frozen=True)
class AssetInfo:
    filename: str
    absolute_path: Path
    kind: AssetKind
    size_bytes: int
    exists: bool

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "kind": self.kind.value,
            "sizeBytes": self.size_bytes,
            "exists": self.exists,
        }


@dataclass(frozen=True)
class ConversionAssets:
    conversion_id: str
    markup_filename: str
    work_dir: Path
    assets: tuple[AssetInfo, ...]
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        # Absolute paths stay server-side.
        return {
            "conversionId": self.conversion_id,
            "markupFilename": self.markup_filename,
            "assets": [a.to_dict() for a in self.assets],
            "createdAt": iso_timestamp(self.created_at),
        }


@dataclass(frozen=True)
class ConversionResult:
    markup: str
    original_filename: str
    converted_at: datetime
    processing_time_ms: int
    conversion_id: str
    asset_count: int

    def to_dict(self) -> dict:
        return {
            "markup": self.markup,
            "originalFilename": self.original_filename,
            "convertedAt": iso_timestamp(self.converted_at),
            "processingTimeMs": self.processing_time_ms,
            "conversionId": self.conversion_id,
            "assetCount": self.asset_count,
        }


class RenderMode(str, Enum):
    NATIVE = "native"  # page size == measured content size, scale 1
    PAPER = "paper"  # named paper format, orientation, reduced scale


@dataclass(frozen=True)
class RenderOptions:
    render_mode: RenderMode = RenderMode.PAPER
    filename: Optional[str] = None
    format: str = "A4"
    orientation: str = "portrait"
    margin_mm: float = 10.0
    scale: Optional[float] = None


@dataclass(frozen=True)
class RenderResult:
    download_url: str
    filename: str
    file_size_bytes: int
    processing_time_ms: int

    def to_dict(self) -> dict:
        return {
            "success": True,
            "downloadUrl": self.download_url,
            "filename": self.filename,
            "fileSize": self.file_size_bytes,
            "processingTime": self.processing_time_ms,
        }


@dataclass(frozen=True)
class RenderedDocument:
    file_path: Path
    filename: str
    size_bytes: int
    created_at: float  # mtime, epoch seconds
