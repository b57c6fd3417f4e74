from __future__ import annotations

import os

from flask import current_app
from werkzeug.utils import secure_filename

from ..app import db
from ..models import Template
from .errors import CertificateError, TemplateNotFound
from .storage import delete_blob, save_blob

ALLOWED_TEMPLATE_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}
_SIGNATURES = {
    "application/pdf": (b"%PDF",),
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/jpeg": (b"\xff\xd8\xff",),
}


def detect_template_type(filename: str, data: bytes) -> str:
    extension = os.path.splitext(filename or "")[1].lower()
    mime_type = ALLOWED_TEMPLATE_TYPES.get(extension)
    if not mime_type:
        raise CertificateError("Invalid file type. Please upload PDF or image files.")
    if not data.startswith(_SIGNATURES[mime_type]):
        raise CertificateError(f"File content does not look like {mime_type}")
    return mime_type


def list_templates() -> list[Template]:
    return Template.query.order_by(Template.uploaded_at.desc(), Template.id.desc()).all()


def create_template(filename: str, data: bytes) -> Template:
    if not data:
        raise CertificateError("No file uploaded")
    mime_type = detect_template_type(filename, data)
    extension = os.path.splitext(filename)[1].lower()
    stored = save_blob(data, "templates", extension)
    template = Template(
        original_name=secure_filename(filename) or f"template{extension}",
        stored_name=stored.stored_name,
        mime_type=mime_type,
        file_size=len(data),
        stored_path=stored.relative_path,
    )
    db.session.add(template)
    db.session.commit()
    current_app.logger.info(
        "[TEMPLATE-UPLOAD] template=%s file=%s type=%s size=%d path=%s",
        template.id,
        template.original_name,
        mime_type,
        len(data),
        stored.relative_path,
    )
    return template


def delete_template(template_id: int) -> dict:
    template = db.session.get(Template, template_id)
    if not template:
        raise TemplateNotFound()
    stored_path = template.stored_path
    db.session.delete(template)
    db.session.commit()
    removed = delete_blob(stored_path)
    current_app.logger.info(
        "[TEMPLATE-DELETE] template=%s path=%s blob_removed=%s",
        template_id,
        stored_path,
        removed,
    )
    return {"id": template_id}
