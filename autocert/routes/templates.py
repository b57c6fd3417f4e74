from __future__ import annotations

from dataclasses import asdict, replace
from io import BytesIO

from flask import Blueprint, current_app, request, send_file

from ..app import db
from ..models import Template
from ..services.template_preview import (
    clear_preview_cache,
    preview_png,
    render_preview_surface,
)
from ..shared.certificates import resolve_template_position
from ..shared.contrast import suggest_text_color
from ..shared.errors import CertificateError, TemplateFileMissing, TemplateNotFound
from ..shared.placement import normalize_anchor, resolve_anchor_ratio
from ..shared.placement_store import anchor_update, get_placement, set_placement
from ..shared.responses import json_body, ok
from ..shared.templates import create_template, delete_template, list_templates

bp = Blueprint("templates", __name__, url_prefix="/api/templates")

CAPTURE_FIELDS = ("text_x_pixels", "text_y_pixels", "canvas_width", "canvas_height")


def _get_template(template_id: int) -> Template:
    template = db.session.get(Template, template_id)
    if not template:
        raise TemplateNotFound()
    return template


def _advise_color(template: Template, update: dict, required: bool) -> str | None:
    record = get_placement(template.id)
    if "ratio_x" in update:
        record = replace(record, ratio_x=update["ratio_x"], ratio_y=update["ratio_y"])
    ratio_x, ratio_y = resolve_anchor_ratio(record)
    try:
        surface = render_preview_surface(template)
    except OSError as exc:
        if required:
            raise TemplateFileMissing(f"Template file could not be read: {exc}") from exc
        current_app.logger.warning(
            "[PLACEMENT] template=%s colour advice skipped: %s", template.id, exc
        )
        return None
    return suggest_text_color(surface.image, ratio_x, ratio_y)


@bp.get("/")
def index():
    return ok([t.to_dict() for t in list_templates()])


@bp.post("/upload")
def upload():
    f = request.files.get("template")
    if f is None or not f.filename:
        raise CertificateError("No file uploaded")
    template = create_template(f.filename, f.read())
    return ok(template.to_dict(), 201)


@bp.delete("/<int:template_id>")
def delete(template_id: int):
    result = delete_template(template_id)
    clear_preview_cache(template_id)
    return ok(result)


@bp.get("/<int:template_id>/placement")
def show_placement(template_id: int):
    record = get_placement(template_id)
    data = {"placement": asdict(record)}
    text = (request.args.get("text") or "").strip()
    if text:
        data["position"] = asdict(resolve_template_position(template_id, text))
    return ok(data)


@bp.put("/<int:template_id>/placement")
def save_placement(template_id: int):
    template = _get_template(template_id)
    body = json_body()
    update: dict = {}

    if any(key in body for key in CAPTURE_FIELDS):
        capture = normalize_anchor(
            body.get("text_x_pixels"),
            body.get("text_y_pixels"),
            body.get("canvas_width"),
            body.get("canvas_height"),
        )
        if capture is None:
            current_app.logger.info(
                "[PLACEMENT] template=%s capture ignored; placement unchanged",
                template.id,
            )
            return ok(template.to_dict(), ignored=True)
        update.update(anchor_update(capture))
    elif "text_x_ratio" in body or "text_y_ratio" in body:
        update["ratio_x"] = body.get("text_x_ratio")
        update["ratio_y"] = body.get("text_y_ratio")

    if "text_font_size" in body:
        update["font_size"] = body.get("text_font_size")
    if "text_align" in body:
        update["alignment"] = body.get("text_align")
    if "text_color_hex" in body:
        update["text_color"] = body.get("text_color_hex") or None

    # no explicit colour stored or submitted: advise one from the background
    forced = bool(body.get("auto_color"))
    if not body.get("text_color_hex") and (forced or template.text_color_hex is None):
        color = _advise_color(template, update, required=forced)
        if color:
            update["text_color"] = color

    set_placement(template.id, update)
    return ok(_get_template(template.id).to_dict(), ignored=False)


@bp.get("/<int:template_id>/preview.png")
def preview(template_id: int):
    template = _get_template(template_id)
    try:
        png = preview_png(template)
    except OSError as exc:
        raise TemplateFileMissing(f"Template file could not be read: {exc}") from exc
    return send_file(BytesIO(png), mimetype="image/png", max_age=0)
