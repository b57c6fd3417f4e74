"""Persistence for per-template placement records."""

from __future__ import annotations

import re
from typing import Any, Mapping

from flask import current_app

from ..app import db
from ..models import Template
from .errors import PlacementError, TemplateNotFound
from .placement import (
    ALIGNMENTS,
    AnchorCapture,
    PlacementRecord,
    clamp_font_size,
    clamp_ratio,
    derive_ratio,
)

_HEX_COLOR_RE = re.compile(r"^#?[0-9a-f]{6}$")

RATIO_FIELDS = ("ratio_x", "ratio_y")
PIXEL_FIELDS = ("pixel_x", "pixel_y", "surface_width", "surface_height")


def normalize_hex_color(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    hex_value = value.strip().lower()
    if _HEX_COLOR_RE.match(hex_value):
        return hex_value if hex_value.startswith("#") else f"#{hex_value}"
    return None


def _get_template(template_id: int) -> Template:
    template = db.session.get(Template, template_id)
    if not template:
        raise TemplateNotFound()
    return template


def get_placement(template_id: int) -> PlacementRecord:
    return PlacementRecord.from_template(_get_template(template_id))


def anchor_update(capture: AnchorCapture) -> dict:
    return {
        "ratio_x": capture.ratio_x,
        "ratio_y": capture.ratio_y,
        "pixel_x": capture.pixel_x,
        "pixel_y": capture.pixel_y,
        "surface_width": capture.surface_width,
        "surface_height": capture.surface_height,
    }


def _validate_anchor(update: Mapping[str, Any]) -> tuple[bool, dict]:
    ratio_given = [key for key in RATIO_FIELDS if update.get(key) is not None]
    pixel_given = [key for key in PIXEL_FIELDS if update.get(key) is not None]
    if ratio_given and len(ratio_given) != len(RATIO_FIELDS):
        raise PlacementError("Anchor ratio must include both x and y")
    if pixel_given and len(pixel_given) != len(PIXEL_FIELDS):
        missing = ", ".join(k for k in PIXEL_FIELDS if k not in pixel_given)
        raise PlacementError(f"Pixel anchor is incomplete; missing {missing}")
    if not ratio_given and not pixel_given:
        return False, {}

    values: dict[str, float | None] = {key: None for key in RATIO_FIELDS + PIXEL_FIELDS}
    if pixel_given:
        for key in PIXEL_FIELDS:
            try:
                values[key] = float(update[key])
            except (TypeError, ValueError):
                raise PlacementError(f"{key} must be numeric") from None
        if values["surface_width"] <= 0 or values["surface_height"] <= 0:
            raise PlacementError("Capture surface size must be positive")
    if ratio_given:
        values["ratio_x"] = clamp_ratio(update["ratio_x"])
        values["ratio_y"] = clamp_ratio(update["ratio_y"])
        if values["ratio_x"] is None or values["ratio_y"] is None:
            raise PlacementError("Anchor ratio must be numeric")
    else:
        values["ratio_x"] = derive_ratio(None, values["pixel_x"], values["surface_width"])
        values["ratio_y"] = derive_ratio(None, values["pixel_y"], values["surface_height"])
    return True, values


def set_placement(template_id: int, update: Mapping[str, Any]) -> PlacementRecord:
    """Apply a partial placement update and return the row as persisted.

    Anchor fields are all-or-nothing: the ratio pair and the pixel capture
    are written in one statement so readers never see half an anchor.
    Keys that are absent from ``update`` keep their stored value.
    """
    template = _get_template(template_id)
    has_anchor, anchor = _validate_anchor(update)

    if "alignment" in update:
        alignment = update["alignment"]
        if alignment is not None:
            alignment = str(alignment).strip().lower()
            if alignment not in ALIGNMENTS:
                raise PlacementError(f"Unsupported alignment: {update['alignment']!r}")
    if "text_color" in update:
        raw_color = update["text_color"]
        color = normalize_hex_color(raw_color)
        if raw_color not in (None, "") and color is None:
            raise PlacementError(f"Invalid text color: {raw_color!r}")

    if has_anchor:
        template.text_x_ratio = anchor["ratio_x"]
        template.text_y_ratio = anchor["ratio_y"]
        template.text_x_pixels = anchor["pixel_x"]
        template.text_y_pixels = anchor["pixel_y"]
        template.canvas_width = anchor["surface_width"]
        template.canvas_height = anchor["surface_height"]
    if "font_size" in update:
        template.text_font_size = (
            None if update["font_size"] is None else clamp_font_size(update["font_size"])
        )
    if "alignment" in update:
        template.text_align = alignment
    if "text_color" in update:
        template.text_color_hex = color

    db.session.commit()
    current_app.logger.info(
        "[PLACEMENT] saved template=%s ratio=(%s, %s) pixels=(%s, %s) surface=%sx%s "
        "size=%s align=%s color=%s",
        template.id,
        template.text_x_ratio,
        template.text_y_ratio,
        template.text_x_pixels,
        template.text_y_pixels,
        template.canvas_width,
        template.canvas_height,
        template.text_font_size,
        template.text_align,
        template.text_color_hex,
    )

    db.session.expire(template)
    return get_placement(template_id)
