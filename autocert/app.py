import logging
import os

from flask import Flask, jsonify, send_from_directory
from flask_sqlalchemy import SQLAlchemy
from werkzeug.exceptions import HTTPException

db = SQLAlchemy()

from .models import Certificate, Participant, Template  # noqa: E402,F401
from .shared.errors import CertificateError  # noqa: E402
from .shared.storage import ensure_storage_directories  # noqa: E402


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logging.warning("ignoring non-numeric %s=%r", name, raw)
        return default


def create_app():
    app = Flask(__name__, static_folder="static")
    app.secret_key = os.getenv("SECRET_KEY", "dev")
    app.config["PREFERRED_URL_SCHEME"] = "https"

    DB_USER = os.getenv("DB_USER", "autocert")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "autocert")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MAX_CONTENT_LENGTH"] = 20 * 1024 * 1024

    app.config["STORAGE_ROOT"] = os.path.abspath(
        os.getenv("STORAGE_ROOT", os.path.join(os.getcwd(), "storage"))
    )
    app.config["BASE_URL"] = os.getenv("BASE_URL", "http://localhost:4000")

    app.config["CERT_FONT_NAME"] = os.getenv("CERT_FONT_NAME", "Helvetica-Bold")
    app.config["CERT_FONT_SIZE"] = int(_env_float("CERT_FONT_SIZE", 36))
    app.config["CERT_FONT_COLOR"] = os.getenv("CERT_FONT_COLOR", "#1f2933")
    app.config["CERT_TEXT_ALIGN"] = os.getenv("CERT_TEXT_ALIGN", "center").lower()

    app.config["SMTP_HOST"] = os.getenv("SMTP_HOST")
    app.config["SMTP_PORT"] = os.getenv("SMTP_PORT", "587")
    app.config["SMTP_USER"] = os.getenv("SMTP_USER")
    app.config["SMTP_PASSWORD"] = os.getenv("SMTP_PASSWORD")
    app.config["SMTP_FROM"] = os.getenv("EMAIL_FROM") or os.getenv("SMTP_FROM")
    app.config["SMTP_FROM_NAME"] = os.getenv("SMTP_FROM_NAME", "")
    app.config["MAIL_MIN_INTERVAL"] = _env_float("MAIL_MIN_INTERVAL", 2.0)
    app.config["MAIL_RETRY_DELAY"] = _env_float("MAIL_RETRY_DELAY", 5.0)

    db.init_app(app)

    from .emailer import SendScheduler

    app.extensions["autocert.mail_scheduler"] = SendScheduler(
        app.config["MAIL_MIN_INTERVAL"]
    )

    @app.errorhandler(CertificateError)
    def handle_certificate_error(exc: CertificateError):
        return jsonify({"success": False, "error": str(exc)}), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return (
            jsonify({"success": False, "error": exc.description or exc.name}),
            exc.code or 500,
        )

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        app.logger.exception("API error")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.get("/storage/<path:filename>")
    def storage_file(filename: str):
        return send_from_directory(app.config["STORAGE_ROOT"], filename)

    from .routes.templates import bp as templates_bp
    from .routes.participants import bp as participants_bp
    from .routes.certificates import bp as certificates_bp

    app.register_blueprint(templates_bp)
    app.register_blueprint(participants_bp)
    app.register_blueprint(certificates_bp)

    with app.app_context():
        ensure_storage_directories()

    return app
