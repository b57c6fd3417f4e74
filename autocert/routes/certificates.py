from __future__ import annotations

import csv
import io

from flask import Blueprint, Response, request, send_file
from openpyxl import Workbook

from ..shared.certificates import (
    generate_certificates,
    get_certificate_for_verification,
    list_certificates,
    revoke_certificate,
    send_certificate_by_id,
    set_hidden,
)
from ..shared.errors import CertificateNotFound
from ..shared.mail_utils import attachment_filename
from ..shared.qr import ensure_certificate_qr
from ..shared.responses import id_list, json_body, ok
from ..shared.storage import resolve_stored_path

bp = Blueprint("certificates", __name__, url_prefix="/api/certificates")

EXPORT_COLUMNS = [
    "CertificateId",
    "CertificateNumber",
    "ParticipantName",
    "ParticipantEmail",
    "Template",
    "Status",
    "DeliveryStatus",
    "SentAt",
    "LastError",
    "PdfUrl",
    "VerificationUrl",
]


def _pdf_url(raw_path: str | None) -> str:
    cleaned = (raw_path or "").strip().replace("\\", "/").lstrip("/")
    if not cleaned:
        return ""
    return f"{request.host_url.rstrip('/')}/storage/{cleaned}"


def _serialize(certificate) -> dict:
    data = certificate.to_dict()
    data["full_id"] = certificate.full_id
    data["pdf_url"] = _pdf_url(certificate.pdf_path)
    return data


def _export_rows():
    for cert in list_certificates(include_hidden=True):
        participant = cert.participant
        yield [
            cert.id,
            cert.full_id,
            participant.display_name,
            participant.email or "",
            cert.template.original_name,
            cert.status,
            cert.delivery_status,
            cert.sent_at.isoformat() if cert.sent_at else "",
            cert.last_error or cert.delivery_message or "",
            _pdf_url(cert.pdf_path),
            cert.verification_url or "",
        ]


@bp.get("/")
def index():
    return ok([_serialize(c) for c in list_certificates()])


@bp.post("/generate")
def generate():
    body = json_body()
    summary = generate_certificates(
        body.get("templateId"),
        id_list(body.get("participantIds"), "participantIds"),
        send_email=bool(body.get("sendEmail")),
        event_name=(body.get("eventName") or "").strip() or None,
    )
    return ok(summary, 201)


@bp.post("/<int:certificate_id>/send")
def send(certificate_id: int):
    body = json_body()
    result = send_certificate_by_id(
        certificate_id,
        subject=body.get("subject"),
        text=body.get("text"),
        event_name=body.get("eventName"),
    )
    return ok(result)


@bp.get("/<int:certificate_id>/download")
def download(certificate_id: int):
    cert = get_certificate_for_verification(certificate_id)
    if not cert:
        raise CertificateNotFound()
    path = resolve_stored_path(cert.pdf_path)
    if not path:
        raise CertificateNotFound("Certificate PDF not found")
    try:
        handle = open(path, "rb")
    except FileNotFoundError:
        raise CertificateNotFound("Certificate PDF not found") from None
    return send_file(
        handle,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=attachment_filename(cert.pdf_path, f"certificate-{cert.id}.pdf"),
    )


@bp.get("/export")
def export_csv():
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for row in _export_rows():
        writer.writerow(row)

    resp = Response(output.getvalue(), mimetype="text/csv")
    resp.headers["Content-Disposition"] = "attachment; filename=certificates.csv"
    return resp


@bp.get("/export/excel")
def export_excel():
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Certificates"
    sheet.append(EXPORT_COLUMNS)
    for row in _export_rows():
        sheet.append(row)

    output = io.BytesIO()
    workbook.save(output)
    output.seek(0)
    return send_file(
        output,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name="certificates.xlsx",
    )


@bp.post("/<int:certificate_id>/hide")
def hide(certificate_id: int):
    return ok(_serialize(set_hidden(certificate_id, True)))


@bp.post("/<int:certificate_id>/unhide")
def unhide(certificate_id: int):
    return ok(_serialize(set_hidden(certificate_id, False)))


@bp.delete("/<int:certificate_id>/revoke")
def revoke(certificate_id: int):
    cert = revoke_certificate(certificate_id)
    return ok({"id": cert.id, "revoked_at": cert.revoked_at.isoformat()})


@bp.get("/<int:certificate_id>/verify")
def verify(certificate_id: int):
    cert = get_certificate_for_verification(certificate_id)
    if not cert:
        return ok({"valid": False, "reason": "Certificate not found or revoked"})
    if cert.status != "generated":
        return ok({"valid": False, "reason": "Certificate has not been issued"})
    return ok(
        {
            "valid": True,
            "certificate": {
                "id": cert.id,
                "full_id": cert.full_id,
                "full_name": cert.participant.display_name,
                "template_name": cert.template.original_name,
                "issued_at": cert.created_at.isoformat() if cert.created_at else None,
                "verification_url": cert.verification_url,
            },
        }
    )


@bp.get("/<int:certificate_id>/qr")
def qr_code(certificate_id: int):
    cert = get_certificate_for_verification(certificate_id)
    if not cert:
        raise CertificateNotFound()
    return send_file(io.BytesIO(ensure_certificate_qr(cert)), mimetype="image/png")
