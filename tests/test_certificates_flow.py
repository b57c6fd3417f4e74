import io
import os
import re

import pytest
from openpyxl import load_workbook
from PyPDF2 import PdfReader

from autocert.app import db
from autocert.emailer import SendScheduler
from autocert.models import Certificate, Participant
from autocert.shared import certificates as certificate_service
from autocert.shared.certificates import generate_certificates, parse_color, slugify
from autocert.shared.errors import NoParticipants, TemplateFileMissing, TemplateNotFound
from autocert.shared.placement_store import set_placement
from autocert.shared.storage import resolve_stored_path
from autocert.shared.templates import create_template


@pytest.fixture
def placed_template(pdf_template):
    set_placement(pdf_template.id, {"ratio_x": 0.5, "ratio_y": 0.4, "alignment": "center"})
    return pdf_template


@pytest.fixture
def fake_smtp(app, monkeypatch):
    sent = []

    def deliver(host, port, user, password, from_addr, envelope, msg):
        sent.append({"host": host, "port": port, "envelope": list(envelope), "msg": msg})

    monkeypatch.setattr("autocert.emailer._deliver", deliver)
    app.config.update(SMTP_HOST="smtp.test", SMTP_PORT="587", SMTP_FROM="certs@example.org")
    return sent


def read_pdf(relative_path):
    return PdfReader(resolve_stored_path(relative_path))


def test_slugify_and_parse_color():
    assert slugify("  Ada  Lovelace! ") == "ada-lovelace"
    assert len(slugify("x" * 200)) == 80
    assert parse_color("#ff8000") == (1.0, 128 / 255, 0.0)
    assert parse_color("nope") == (0.0, 0.0, 0.0)


def test_generate_renders_each_participant(app, placed_template, participants, caplog):
    caplog.set_level("INFO")

    summary = generate_certificates(placed_template.id, event_name="Spring Gala")

    assert summary == {"total": 3, "generated": 3, "emailed": 0, "failures": []}
    assert "[CERT]" in caplog.text
    for participant in participants:
        cert = Certificate.query.filter_by(participant_id=participant.id).one()
        assert cert.status == "generated"
        assert cert.last_error is None
        assert cert.verification_url == f"https://certs.example.org/verify.html?id={cert.id}"
        assert re.fullmatch(
            rf"generated/{slugify(participant.full_name)}-spring-gala-\d+\.pdf", cert.pdf_path
        )
        page = read_pdf(cert.pdf_path).pages[0]
        assert float(page.mediabox.width) == 600
        assert float(page.mediabox.height) == 400
        assert participant.full_name in page.extract_text()


def test_event_slug_defaults_to_template_name(app, placed_template, participants):
    generate_certificates(placed_template.id, [participants[0].id])

    cert = Certificate.query.one()
    assert re.fullmatch(r"generated/ada-lovelace-award-pdf-\d+\.pdf", cert.pdf_path)


def test_batch_continues_after_one_participant_fails(
    app, placed_template, participants, monkeypatch, caplog
):
    caplog.set_level("INFO")
    real_render = certificate_service.render_name_pdf

    def flaky_render(template_bytes, is_pdf, text, record, **kwargs):
        if text == "Alan Turing":
            raise RuntimeError("overlay failed")
        return real_render(template_bytes, is_pdf, text, record, **kwargs)

    monkeypatch.setattr(certificate_service, "render_name_pdf", flaky_render)

    summary = generate_certificates(placed_template.id)

    alan = participants[1]
    assert summary["total"] == 3
    assert summary["generated"] == 2
    assert summary["failures"] == [{"participantId": alan.id, "message": "overlay failed"}]
    failed = Certificate.query.filter_by(participant_id=alan.id).one()
    assert failed.status == "failed"
    assert failed.last_error == "overlay failed"
    assert failed.pdf_path is None
    others = Certificate.query.filter(Certificate.participant_id != alan.id).all()
    assert [c.status for c in others] == ["generated", "generated"]
    assert "[CERT-FAIL]" in caplog.text


def test_throwing_measure_does_not_fail_participant(app, placed_template, participants, caplog):
    caplog.set_level("WARNING", logger="autocert.placement")
    calls = []

    def measure(text, size):
        calls.append(text)
        if text == "Alan Turing":
            raise ValueError("no metrics")
        return 100.0

    summary = generate_certificates(placed_template.id, measure=measure)

    assert summary["generated"] == 3
    assert summary["failures"] == []
    assert "Alan Turing" in calls
    assert "text measurement failed" in caplog.text


def test_regeneration_reuses_certificate_rows(app, placed_template, participants):
    generate_certificates(placed_template.id)
    first_ids = sorted(c.id for c in Certificate.query.all())

    generate_certificates(placed_template.id)

    assert sorted(c.id for c in Certificate.query.all()) == first_ids
    assert Certificate.query.count() == 3


def test_missing_template_is_fatal(app, participants):
    with pytest.raises(TemplateNotFound):
        generate_certificates(12345)
    assert Certificate.query.count() == 0


def test_missing_template_file_is_fatal(app, placed_template, participants):
    os.remove(resolve_stored_path(placed_template.stored_path))

    with pytest.raises(TemplateFileMissing):
        generate_certificates(placed_template.id)
    assert Certificate.query.count() == 0


def test_empty_participant_set_is_fatal(app, placed_template):
    with pytest.raises(NoParticipants):
        generate_certificates(placed_template.id)
    with pytest.raises(NoParticipants):
        generate_certificates(placed_template.id, [999])


def test_image_template_page_matches_image_size(app, participants, image_factory):
    template = create_template("banner.png", image_factory(size=(300, 200)))

    summary = generate_certificates(template.id, [participants[2].id])

    assert summary["generated"] == 1
    cert = Certificate.query.one()
    page = read_pdf(cert.pdf_path).pages[0]
    assert (float(page.mediabox.width), float(page.mediabox.height)) == (300, 200)


def test_generate_endpoint_returns_summary(client, placed_template, participants):
    resp = client.post(
        "/api/certificates/generate",
        json={"templateId": placed_template.id, "participantIds": [participants[0].id]},
    )

    assert resp.status_code == 201
    assert resp.get_json() == {
        "success": True,
        "data": {"total": 1, "generated": 1, "emailed": 0, "failures": []},
    }


@pytest.mark.parametrize(
    "payload,status",
    [
        ({}, 400),
        ({"templateId": 999}, 404),
        ({"templateId": "abc"}, 400),
        ({"templateId": 1, "participantIds": "x"}, 400),
    ],
)
def test_generate_endpoint_errors(client, placed_template, participants, payload, status):
    resp = client.post("/api/certificates/generate", json=payload)

    assert resp.status_code == status
    assert resp.get_json()["success"] is False


def test_send_email_without_smtp_records_delivery_failure(app, placed_template, participants):
    summary = generate_certificates(
        placed_template.id, send_email=True, scheduler=SendScheduler(0)
    )

    assert summary["generated"] == 3
    assert summary["emailed"] == 0
    assert [f["message"] for f in summary["failures"]] == ["stub: missing config"] * 3
    for cert in Certificate.query.all():
        assert cert.status == "generated"
        assert cert.delivery_status == "failed"
        assert cert.delivery_message == "stub: missing config"


def test_send_email_with_smtp(app, placed_template, participants, fake_smtp):
    summary = generate_certificates(
        placed_template.id,
        send_email=True,
        event_name="Spring Gala",
        scheduler=SendScheduler(0),
    )

    assert summary["emailed"] == 3
    assert len(fake_smtp) == 3
    msg = fake_smtp[0]["msg"]
    assert msg["Subject"] == "Your Certificate - Spring Gala"
    attachments = list(msg.iter_attachments())
    assert attachments[0].get_content_type() == "application/pdf"
    assert attachments[0].get_filename().endswith(".pdf")
    for cert in Certificate.query.all():
        assert cert.delivery_status == "sent"
        assert cert.sent_at is not None


def test_send_endpoint(client, placed_template, participants, fake_smtp):
    generate_certificates(placed_template.id, [participants[0].id])
    cert = Certificate.query.one()

    resp = client.post(f"/api/certificates/{cert.id}/send", json={"subject": "Hello"})

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"certificateId": cert.id, "status": "sent"}
    assert fake_smtp[0]["envelope"] == ["ada@example.com"]
    assert fake_smtp[0]["msg"]["Subject"] == "Hello"
    assert client.post("/api/certificates/999/send").status_code == 404


def test_hide_verify_and_revoke(client, placed_template, participants):
    generate_certificates(placed_template.id, [participants[0].id])
    cert = Certificate.query.one()

    listed = client.get("/api/certificates/").get_json()["data"]
    assert [c["id"] for c in listed] == [cert.id]
    assert listed[0]["pdf_url"].endswith(f"/storage/{cert.pdf_path}")

    client.post(f"/api/certificates/{cert.id}/hide")
    assert client.get("/api/certificates/").get_json()["data"] == []

    verify = client.get(f"/api/certificates/{cert.id}/verify").get_json()["data"]
    assert verify["valid"] is True
    assert verify["certificate"]["full_name"] == "Ada Lovelace"
    assert re.fullmatch(rf"CD/\d{{4}}/{cert.id:06d}", verify["certificate"]["full_id"])
    assert client.get(f"/api/certificates/{cert.id}/download").status_code == 200

    client.post(f"/api/certificates/{cert.id}/unhide")
    assert len(client.get("/api/certificates/").get_json()["data"]) == 1

    assert client.delete(f"/api/certificates/{cert.id}/revoke").status_code == 200
    verify = client.get(f"/api/certificates/{cert.id}/verify").get_json()["data"]
    assert verify == {"valid": False, "reason": "Certificate not found or revoked"}
    assert client.get(f"/api/certificates/{cert.id}/download").status_code == 404
    assert client.delete(f"/api/certificates/{cert.id}/revoke").status_code == 404
    assert client.get("/api/certificates/").get_json()["data"] == []


def test_verify_unknown_certificate(client):
    data = client.get("/api/certificates/77/verify").get_json()["data"]

    assert data["valid"] is False


def test_download_returns_pdf_attachment(client, placed_template, participants):
    generate_certificates(placed_template.id, [participants[0].id])
    cert = Certificate.query.one()

    resp = client.get(f"/api/certificates/{cert.id}/download")

    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert "attachment" in resp.headers["Content-Disposition"]
    assert resp.data.startswith(b"%PDF")


def test_exports(client, placed_template, participants):
    generate_certificates(placed_template.id)

    csv_resp = client.get("/api/certificates/export")
    assert csv_resp.mimetype == "text/csv"
    lines = csv_resp.get_data(as_text=True).strip().splitlines()
    assert lines[0].startswith("CertificateId,CertificateNumber,ParticipantName")
    assert len(lines) == 4
    assert any("Grace Hopper" in line for line in lines)

    xlsx_resp = client.get("/api/certificates/export/excel")
    assert xlsx_resp.status_code == 200
    sheet = load_workbook(io.BytesIO(xlsx_resp.data)).active
    rows = list(sheet.iter_rows(values_only=True))
    assert rows[0][0] == "CertificateId"
    assert len(rows) == 4
    assert {row[3] for row in rows[1:]} == {p.email for p in Participant.query.all()}


def test_qr_code_is_generated_once_and_cached(app, client, placed_template, participants):
    generate_certificates(placed_template.id, [participants[0].id])
    cert = Certificate.query.one()

    first = client.get(f"/api/certificates/{cert.id}/qr")
    assert first.status_code == 200
    assert first.mimetype == "image/png"
    assert first.data.startswith(b"\x89PNG")

    db.session.refresh(cert)
    stored = cert.qr_code_path
    assert stored.startswith("qr-codes/")

    second = client.get(f"/api/certificates/{cert.id}/qr")
    db.session.refresh(cert)
    assert second.data == first.data
    assert cert.qr_code_path == stored
    qr_dir = os.path.join(app.config["STORAGE_ROOT"], "qr-codes")
    assert len(os.listdir(qr_dir)) == 1
