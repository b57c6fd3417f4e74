import io
import os
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from autocert.app import create_app, db
from autocert.services.template_preview import clear_preview_cache


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("BASE_URL", "https://certs.example.org")
    monkeypatch.setenv("MAIL_MIN_INTERVAL", "0")
    monkeypatch.setenv("MAIL_RETRY_DELAY", "0")
    for name in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "SMTP_FROM", "EMAIL_FROM"):
        monkeypatch.delenv(name, raising=False)
    clear_preview_cache()
    application = create_app()
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_pdf(width=600, height=400):
    from reportlab.pdfgen import canvas

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width, height))
    c.setFillColorRGB(0.95, 0.95, 0.9)
    c.rect(0, 0, width, height, fill=1, stroke=0)
    c.showPage()
    c.save()
    return buffer.getvalue()


def make_image(color=(255, 255, 255), size=(300, 200), fmt="PNG"):
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def pdf_template(app):
    from autocert.shared.templates import create_template

    return create_template("award.pdf", make_pdf())


@pytest.fixture
def participants(app):
    from autocert.models import Participant

    people = [
        Participant(full_name="Ada Lovelace", email="ada@example.com"),
        Participant(full_name="Alan Turing", email="alan@example.com"),
        Participant(full_name="Grace Hopper", email="grace@example.com"),
    ]
    db.session.add_all(people)
    db.session.commit()
    return people


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def image_factory():
    return make_image
