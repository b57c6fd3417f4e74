from __future__ import annotations

import re
import time
from datetime import datetime
from io import BytesIO
from typing import Iterable

from flask import current_app
from PIL import Image
from PyPDF2 import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from ..app import db
from ..emailer import SendScheduler, get_scheduler, send_certificate
from ..models import Certificate, Participant, Template
from .errors import (
    CertificateError,
    CertificateNotFound,
    NoParticipants,
    TemplateFileMissing,
    TemplateNotFound,
)
from .participants import get_participants_by_ids, list_participants
from .placement import (
    DEFAULT_FONT_NAME,
    DrawPosition,
    Measure,
    PlacementRecord,
    normalize_alignment,
    pdf_text_height,
    pdf_text_measure,
    resolve_draw_position,
)
from .qr import verification_url
from .storage import read_blob, save_blob

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_HEX_RE = re.compile(r"^[0-9a-fA-F]{6}$")


def slugify(value: str | None) -> str:
    slug = _SLUG_RE.sub("-", str(value or "").strip().lower()).strip("-")
    return slug[:80]


def parse_color(hex_value: str | None) -> tuple[float, float, float]:
    sanitized = (hex_value or "").strip().lstrip("#")
    if not _HEX_RE.match(sanitized):
        return (0.0, 0.0, 0.0)
    value = int(sanitized, 16)
    return (
        ((value >> 16) & 255) / 255,
        ((value >> 8) & 255) / 255,
        (value & 255) / 255,
    )


def _available_font_codes() -> set[str]:
    fonts = set(pdfmetrics.getRegisteredFontNames())
    fonts.update(pdfmetrics.standardFonts)
    return fonts


def resolve_font(preferred: str | None) -> str:
    if preferred and preferred in _available_font_codes():
        return preferred
    current_app.logger.warning(
        "[CERT-FONT] %s→%s (not available)", preferred or "<default>", DEFAULT_FONT_NAME
    )
    return DEFAULT_FONT_NAME


def image_to_pdf(data: bytes) -> bytes:
    """Wrap a PNG/JPEG template in a one-page PDF, one point per pixel."""
    with Image.open(BytesIO(data)) as img:
        image = img.convert("RGB")
    width, height = float(image.width), float(image.height)
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width, height))
    c.drawImage(ImageReader(image), 0, 0, width=width, height=height)
    c.showPage()
    c.save()
    return buffer.getvalue()


def load_template_page(data: bytes, is_pdf: bool):
    if not is_pdf:
        data = image_to_pdf(data)
    reader = PdfReader(BytesIO(data))
    if not reader.pages:
        raise TemplateFileMissing("Template PDF has no pages")
    return reader.pages[0]


def render_name_pdf(
    template_bytes: bytes,
    is_pdf: bool,
    text: str,
    record: PlacementRecord,
    *,
    font_name: str = DEFAULT_FONT_NAME,
    default_font_size: int = 36,
    default_alignment: str = "center",
    color: tuple[float, float, float] = (0.0, 0.0, 0.0),
    measure: Measure | None = None,
) -> tuple[bytes, DrawPosition]:
    base_page = load_template_page(template_bytes, is_pdf)
    box = base_page.mediabox
    w = float(box.width)
    h = float(box.height)
    origin_x = float(box.left)
    origin_y = float(box.bottom)

    position = resolve_draw_position(
        record,
        w,
        h,
        text,
        measure or pdf_text_measure(font_name),
        pdf_text_height(font_name),
        default_font_size=default_font_size,
        default_alignment=default_alignment,
    )

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(w, h))
    c.setFont(font_name, position.font_size)
    c.setFillColorRGB(*color)
    c.drawString(origin_x + position.x, origin_y + position.y_baseline, text)
    c.save()
    buffer.seek(0)

    overlay_page = PdfReader(buffer).pages[0]
    base_page.merge_page(overlay_page)
    writer = PdfWriter()
    writer.add_page(base_page)
    out_buf = BytesIO()
    writer.write(out_buf)
    return out_buf.getvalue(), position


def ensure_certificate_record(participant_id: int, template_id: int) -> Certificate:
    cert = (
        db.session.query(Certificate)
        .filter_by(participant_id=participant_id, template_id=template_id)
        .one_or_none()
    )
    if cert:
        return cert
    cert = Certificate(
        participant_id=participant_id, template_id=template_id, status="pending"
    )
    db.session.add(cert)
    db.session.flush()
    return cert


def _load_template_for_render(template_id) -> tuple[Template, bytes]:
    if not template_id:
        raise CertificateError("templateId is required")
    try:
        template_id = int(template_id)
    except (TypeError, ValueError):
        raise CertificateError("templateId must be numeric") from None
    template = db.session.get(Template, template_id)
    if not template:
        raise TemplateNotFound()
    if not template.stored_path:
        raise TemplateFileMissing(
            "Template file path is missing. Please re-upload the template."
        )
    try:
        data = read_blob(template.stored_path)
    except OSError as exc:
        raise TemplateFileMissing(f"Template file could not be read: {exc}") from exc
    return template, data


def _render_settings(template: Template) -> dict:
    config = current_app.config
    return {
        "font_name": resolve_font(config.get("CERT_FONT_NAME")),
        "default_font_size": int(config.get("CERT_FONT_SIZE", 36)),
        "default_alignment": normalize_alignment(config.get("CERT_TEXT_ALIGN")),
        "color": parse_color(template.text_color_hex or config.get("CERT_FONT_COLOR")),
    }


def resolve_template_position(template_id: int, text: str) -> DrawPosition:
    """Where ``text`` would land on the template, without writing anything."""
    template, data = _load_template_for_render(template_id)
    settings = _render_settings(template)
    page = load_template_page(data, template.is_pdf)
    return resolve_draw_position(
        PlacementRecord.from_template(template),
        float(page.mediabox.width),
        float(page.mediabox.height),
        text,
        pdf_text_measure(settings["font_name"]),
        pdf_text_height(settings["font_name"]),
        default_font_size=settings["default_font_size"],
        default_alignment=settings["default_alignment"],
    )


def _record_failure(
    participant_id: int, template_id: int, stage: str, message: str
) -> None:
    try:
        cert = ensure_certificate_record(participant_id, template_id)
        if stage == "email":
            cert.delivery_status = "failed"
            cert.delivery_message = message
        else:
            cert.status = "failed"
            cert.last_error = message
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "[CERT-FAIL] could not record failure participant=%s template=%s",
            participant_id,
            template_id,
        )


def generate_certificates(
    template_id,
    participant_ids: Iterable[int] | None = None,
    send_email: bool = False,
    event_name: str | None = None,
    *,
    scheduler: SendScheduler | None = None,
    measure: Measure | None = None,
) -> dict:
    """Render (and optionally email) one certificate per participant.

    Template problems abort before any participant is touched. After that
    every participant is independent: a failure is logged, stored on the
    certificate row and listed in ``failures`` while the batch carries on.
    """
    template, base_bytes = _load_template_for_render(template_id)
    participant_ids = list(participant_ids or [])
    participants = (
        get_participants_by_ids(participant_ids) if participant_ids else list_participants()
    )
    if not participants:
        raise NoParticipants()
    if send_email and scheduler is None:
        scheduler = get_scheduler()

    template_id = template.id
    record = PlacementRecord.from_template(template)
    settings = _render_settings(template)
    event_slug = slugify(event_name or template.original_name or "certificate")
    summary = {
        "total": len(participants),
        "generated": 0,
        "emailed": 0,
        "failures": [],
    }

    for participant in participants:
        participant_id = participant.id
        stage = "render"
        try:
            cert = ensure_certificate_record(participant_id, template_id)
            text = participant.display_name
            pdf_bytes, position = render_name_pdf(
                base_bytes,
                template.is_pdf,
                text,
                record,
                measure=measure,
                **settings,
            )
            stage = "storage"
            name_slug = slugify(text) or f"participant-{participant_id}"
            stored = save_blob(
                pdf_bytes,
                "generated",
                ".pdf",
                f"{name_slug}-{event_slug}-{int(time.time() * 1000)}",
            )
            cert.status = "generated"
            cert.pdf_path = stored.relative_path
            cert.last_error = None
            if not cert.verification_url:
                cert.verification_url = verification_url(cert.id)
            db.session.commit()
            summary["generated"] += 1
            current_app.logger.info(
                "[CERT] participant=%s template=%s path=%s draw=(%.2f, %.2f) size=%s align=%s",
                participant_id,
                template_id,
                stored.relative_path,
                position.x,
                position.y_baseline,
                position.font_size,
                position.alignment,
            )

            if send_email:
                stage = "email"
                send_certificate(participant, cert, scheduler, event_name=event_name)
                cert.delivery_status = "sent"
                cert.delivery_message = None
                cert.sent_at = datetime.utcnow()
                db.session.commit()
                summary["emailed"] += 1
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception(
                "[CERT-FAIL] participant=%s template=%s stage=%s",
                participant_id,
                template_id,
                stage,
            )
            _record_failure(participant_id, template_id, stage, str(exc))
            summary["failures"].append(
                {"participantId": participant_id, "message": str(exc)}
            )

    current_app.logger.info(
        "[CERT-BATCH] template=%s total=%d generated=%d emailed=%d failed=%d",
        template_id,
        summary["total"],
        summary["generated"],
        summary["emailed"],
        len(summary["failures"]),
    )
    return summary


def _active_certificate(certificate_id: int) -> Certificate:
    cert = db.session.get(Certificate, certificate_id)
    if not cert or cert.revoked_at is not None:
        raise CertificateNotFound()
    return cert


def send_certificate_by_id(
    certificate_id: int,
    *,
    scheduler: SendScheduler | None = None,
    subject: str | None = None,
    text: str | None = None,
    event_name: str | None = None,
) -> dict:
    cert = _active_certificate(certificate_id)
    if not cert.pdf_path:
        raise CertificateError("Certificate PDF not generated yet")
    try:
        send_certificate(
            cert.participant,
            cert,
            scheduler or get_scheduler(),
            subject=subject,
            text=text,
            event_name=event_name,
        )
    except Exception as exc:
        cert.delivery_status = "failed"
        cert.delivery_message = str(exc)
        db.session.commit()
        raise
    cert.delivery_status = "sent"
    cert.delivery_message = None
    cert.sent_at = datetime.utcnow()
    db.session.commit()
    return {"certificateId": cert.id, "status": "sent"}


def list_certificates(include_hidden: bool = False) -> list[Certificate]:
    query = (
        db.session.query(Certificate)
        .join(Participant, Participant.id == Certificate.participant_id)
        .join(Template, Template.id == Certificate.template_id)
        .filter(Certificate.revoked_at.is_(None))
    )
    if not include_hidden:
        query = query.filter(Certificate.is_hidden.is_(False))
    return query.order_by(Certificate.updated_at.desc(), Certificate.id.desc()).all()


def get_certificate_for_verification(certificate_id: int) -> Certificate | None:
    """Hidden certificates still verify; revoked ones do not."""
    cert = db.session.get(Certificate, certificate_id)
    if not cert or cert.revoked_at is not None:
        return None
    return cert


def set_hidden(certificate_id: int, hidden: bool) -> Certificate:
    cert = _active_certificate(certificate_id)
    cert.is_hidden = hidden
    db.session.commit()
    return cert


def revoke_certificate(certificate_id: int) -> Certificate:
    cert = _active_certificate(certificate_id)
    cert.revoked_at = datetime.utcnow()
    cert.is_hidden = True
    db.session.commit()
    current_app.logger.info("[CERT-REVOKE] certificate=%s", cert.id)
    return cert
