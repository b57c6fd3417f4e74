from __future__ import annotations

import io
import time

import qrcode
from flask import current_app

from ..app import db
from .storage import read_blob, resolve_stored_path, save_blob


def verification_url(certificate_id: int, base_url: str | None = None) -> str:
    base = (base_url or current_app.config.get("BASE_URL") or "").rstrip("/")
    return f"{base}/verify.html?id={certificate_id}"


def qr_png(data: str, box_size: int = 6, border: int = 1) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def ensure_certificate_qr(certificate) -> bytes:
    """PNG for the certificate's verification link, stored on first use."""
    if certificate.qr_code_path and resolve_stored_path(certificate.qr_code_path):
        try:
            return read_blob(certificate.qr_code_path)
        except FileNotFoundError:
            current_app.logger.info(
                "[QR] stored code missing for certificate=%s; regenerating",
                certificate.id,
            )

    url = certificate.verification_url or verification_url(certificate.id)
    png = qr_png(url)
    stored = save_blob(
        png,
        "qr-codes",
        ".png",
        f"qr-certificate-{certificate.id}-{int(time.time() * 1000)}",
    )
    certificate.verification_url = url
    certificate.qr_code_path = stored.relative_path
    db.session.commit()
    return png
