"""Name placement: preview-surface anchors and PDF draw positions.

A placement is captured on a browser preview surface whose origin is the
top-left corner and is replayed on a PDF page whose origin is the
bottom-left corner. The anchor is stored as a ratio of the capture surface
so it survives any change of preview or page size; the raw pixel capture is
kept alongside it as a fallback source for the ratio.

At render time the participant's actual name is measured with the same
reportlab font that draws it. Widths computed by the browser are never
reused because the two text engines disagree on glyph metrics.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

from reportlab.pdfbase import pdfmetrics

logger = logging.getLogger("autocert.placement")

ALIGNMENTS = ("left", "center", "right")
DEFAULT_ALIGNMENT = "center"
DEFAULT_RATIO = 0.5
DEFAULT_FONT_NAME = "Helvetica-Bold"
DEFAULT_FONT_SIZE = 36
MIN_FONT_SIZE = 12
MAX_FONT_SIZE = 96

Measure = Callable[[str, float], float]
HeightOf = Callable[[float], float]


@dataclass(frozen=True)
class PlacementRecord:
    ratio_x: float | None = None
    ratio_y: float | None = None
    pixel_x: float | None = None
    pixel_y: float | None = None
    surface_width: float | None = None
    surface_height: float | None = None
    font_size: int | None = None
    alignment: str | None = None
    text_color: str | None = None

    @classmethod
    def from_template(cls, template) -> "PlacementRecord":
        return cls(
            ratio_x=template.text_x_ratio,
            ratio_y=template.text_y_ratio,
            pixel_x=template.text_x_pixels,
            pixel_y=template.text_y_pixels,
            surface_width=template.canvas_width,
            surface_height=template.canvas_height,
            font_size=template.text_font_size,
            alignment=template.text_align,
            text_color=template.text_color_hex,
        )

    @property
    def has_ratio(self) -> bool:
        return _as_float(self.ratio_x) is not None and _as_float(self.ratio_y) is not None

    @property
    def has_pixel_capture(self) -> bool:
        return all(
            _as_float(v) is not None
            for v in (
                self.pixel_x,
                self.pixel_y,
                self.surface_width,
                self.surface_height,
            )
        )


@dataclass(frozen=True)
class AnchorCapture:
    """A click on the preview surface, normalized and ready to persist."""

    ratio_x: float
    ratio_y: float
    pixel_x: float
    pixel_y: float
    surface_width: float
    surface_height: float


@dataclass(frozen=True)
class DrawPosition:
    x: float
    y_baseline: float
    font_size: int
    alignment: str
    anchor_x: float
    anchor_y_from_top: float
    text_width: float
    text_height: float
    ratio_x: float
    ratio_y: float


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return num


def clamp_ratio(value: Any) -> float | None:
    num = _as_float(value)
    if num is None:
        return None
    return min(1.0, max(0.0, num))


def clamp_font_size(value: Any, default: int = DEFAULT_FONT_SIZE) -> int:
    num = _as_float(value)
    if num is None:
        num = default
    return int(max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, round(num))))


def normalize_alignment(value: Any, default: str = DEFAULT_ALIGNMENT) -> str:
    if isinstance(value, str) and value.strip().lower() in ALIGNMENTS:
        return value.strip().lower()
    return default if default in ALIGNMENTS else DEFAULT_ALIGNMENT


def normalize_anchor(px: Any, py: Any, width: Any, height: Any) -> AnchorCapture | None:
    """Turn a click at ``(px, py)`` on a ``width`` x ``height`` surface into ratios.

    Returns ``None`` when the surface size is unusable; callers must then
    leave the stored placement untouched.
    """
    w = _as_float(width)
    h = _as_float(height)
    x = _as_float(px)
    y = _as_float(py)
    if w is None or h is None or w <= 0 or h <= 0 or x is None or y is None:
        logger.info(
            "[PLACEMENT] capture ignored px=%r py=%r surface=%rx%r", px, py, width, height
        )
        return None
    return AnchorCapture(
        ratio_x=clamp_ratio(x / w),
        ratio_y=clamp_ratio(y / h),
        pixel_x=x,
        pixel_y=y,
        surface_width=w,
        surface_height=h,
    )


def derive_ratio(ratio: Any, pixel: Any, surface: Any) -> float | None:
    stored = clamp_ratio(ratio)
    if stored is not None:
        return stored
    px = _as_float(pixel)
    size = _as_float(surface)
    if px is not None and size is not None and size > 0:
        return clamp_ratio(px / size)
    return None


def resolve_anchor_ratio(record: PlacementRecord) -> tuple[float, float]:
    """Stored ratio first, then the pixel capture, then the page centre."""
    ratio_x = derive_ratio(record.ratio_x, record.pixel_x, record.surface_width)
    ratio_y = derive_ratio(record.ratio_y, record.pixel_y, record.surface_height)
    return (
        DEFAULT_RATIO if ratio_x is None else ratio_x,
        DEFAULT_RATIO if ratio_y is None else ratio_y,
    )


def pdf_text_measure(font_name: str = DEFAULT_FONT_NAME) -> Measure:
    def measure(text: str, font_size: float) -> float:
        return pdfmetrics.stringWidth(text, font_name, font_size)

    return measure


def pdf_text_height(font_name: str = DEFAULT_FONT_NAME) -> HeightOf:
    def height_of(font_size: float) -> float:
        ascent, descent = pdfmetrics.getAscentDescent(font_name, font_size)
        return ascent - descent

    return height_of


def measure_text_width(measure: Measure, text: str, font_size: float) -> float:
    try:
        width = measure(text, font_size)
    except Exception as exc:
        logger.warning(
            "[PLACEMENT] text measurement failed text=%r size=%s: %s; assuming zero width",
            text,
            font_size,
            exc,
        )
        return 0.0
    num = _as_float(width)
    if num is None:
        logger.warning(
            "[PLACEMENT] text measurement returned %r for text=%r size=%s; assuming zero width",
            width,
            text,
            font_size,
        )
        return 0.0
    return num


def resolve_draw_position(
    record: PlacementRecord,
    page_width: float,
    page_height: float,
    text: str,
    measure: Measure,
    height_of: HeightOf | None = None,
    *,
    default_font_size: int = DEFAULT_FONT_SIZE,
    default_alignment: str = DEFAULT_ALIGNMENT,
) -> DrawPosition:
    ratio_x, ratio_y = resolve_anchor_ratio(record)
    font_size = clamp_font_size(record.font_size, default_font_size)
    alignment = normalize_alignment(record.alignment, default_alignment)
    if height_of is None:
        height_of = pdf_text_height()

    anchor_x = page_width * ratio_x
    anchor_y_from_top = page_height * ratio_y

    text_width = measure_text_width(measure, text, font_size)
    text_height = height_of(font_size)

    draw_x = anchor_x
    if alignment == "center":
        draw_x -= text_width / 2
    elif alignment == "right":
        draw_x -= text_width

    y_baseline = page_height - anchor_y_from_top - text_height
    # horizontal only; a low anchor may clip at the bottom edge
    draw_x = max(0.0, min(page_width - text_width, draw_x))

    position = DrawPosition(
        x=draw_x,
        y_baseline=y_baseline,
        font_size=font_size,
        alignment=alignment,
        anchor_x=anchor_x,
        anchor_y_from_top=anchor_y_from_top,
        text_width=text_width,
        text_height=text_height,
        ratio_x=ratio_x,
        ratio_y=ratio_y,
    )
    logger.debug(
        "[PLACEMENT] text=%r page=%.2fx%.2f ratio=(%.4f, %.4f) anchor=(%.2f, %.2f) "
        "width=%.2f height=%.2f align=%s draw=(%.2f, %.2f)",
        text,
        page_width,
        page_height,
        ratio_x,
        ratio_y,
        anchor_x,
        anchor_y_from_top,
        text_width,
        text_height,
        alignment,
        draw_x,
        y_baseline,
    )
    return position
