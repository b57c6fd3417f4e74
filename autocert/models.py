from __future__ import annotations

from datetime import date

from sqlalchemy.orm import validates

from .app import db

TEXT_ALIGN_CHOICES = ("left", "center", "right")
CERTIFICATE_STATUSES = ("pending", "generated", "failed")
DELIVERY_STATUSES = ("pending", "sent", "failed")


class Template(db.Model):
    __tablename__ = "templates"

    id = db.Column(db.Integer, primary_key=True)
    original_name = db.Column(db.String(255), nullable=False)
    stored_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    stored_path = db.Column(db.String(500), nullable=False)

    # placement; every column NULL until the first placement save
    text_x_ratio = db.Column(db.Float)
    text_y_ratio = db.Column(db.Float)
    text_x_pixels = db.Column(db.Float)
    text_y_pixels = db.Column(db.Float)
    canvas_width = db.Column(db.Float)
    canvas_height = db.Column(db.Float)
    text_font_size = db.Column(db.Integer)
    text_align = db.Column(
        db.Enum(*TEXT_ALIGN_CHOICES, name="template_text_align"),
        default="center",
        server_default="center",
    )
    text_color_hex = db.Column(db.String(7))

    uploaded_at = db.Column(db.DateTime, server_default=db.func.now(), index=True)

    certificates = db.relationship(
        "Certificate",
        back_populates="template",
        cascade="all, delete-orphan",
    )

    @property
    def is_pdf(self) -> bool:
        return (self.mime_type or "").lower() == "application/pdf" or (
            self.stored_name or ""
        ).lower().endswith(".pdf")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "stored_name": self.stored_name,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "file_path": (self.stored_path or "").replace("\\", "/").lstrip("/"),
            "text_x_ratio": self.text_x_ratio,
            "text_y_ratio": self.text_y_ratio,
            "text_x_pixels": self.text_x_pixels,
            "text_y_pixels": self.text_y_pixels,
            "canvas_width": self.canvas_width,
            "canvas_height": self.canvas_height,
            "text_font_size": self.text_font_size,
            "text_align": self.text_align,
            "text_color_hex": self.text_color_hex,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }


class Participant(db.Model):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    mes_id = db.Column(db.String(100))
    # arbitrary roster columns keyed by their header text
    extra_data = db.Column(db.JSON)
    source = db.Column(db.String(50), default="manual", server_default="manual")
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    certificates = db.relationship(
        "Certificate",
        back_populates="participant",
        cascade="all, delete-orphan",
    )

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return (value or "").strip().lower()

    def extra(self, key: str, default=None):
        bag = self.extra_data if isinstance(self.extra_data, dict) else {}
        return bag.get(key, default)

    @property
    def display_name(self) -> str:
        return (
            (self.full_name or "").strip()
            or str(self.extra("name", "") or "").strip()
            or "Participant"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "mes_id": self.mes_id,
            "extra_data": self.extra_data,
            "source": self.source,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Certificate(db.Model):
    __tablename__ = "certificates"

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(
        db.Integer,
        db.ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    pdf_path = db.Column(db.String(500))
    status = db.Column(
        db.Enum(*CERTIFICATE_STATUSES, name="certificate_status"),
        nullable=False,
        default="pending",
        server_default="pending",
    )
    delivery_status = db.Column(
        db.Enum(*DELIVERY_STATUSES, name="certificate_delivery_status"),
        nullable=False,
        default="pending",
        server_default="pending",
    )
    delivery_message = db.Column(db.Text)
    sent_at = db.Column(db.DateTime)
    last_error = db.Column(db.Text)
    is_hidden = db.Column(
        db.Boolean, nullable=False, default=False, server_default=db.text("false")
    )
    revoked_at = db.Column(db.DateTime)
    verification_url = db.Column(db.String(500))
    qr_code_path = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.UniqueConstraint(
            "participant_id",
            "template_id",
            name="uix_certificate_participant_template",
        ),
    )

    participant = db.relationship("Participant", back_populates="certificates")
    template = db.relationship("Template", back_populates="certificates")

    @property
    def full_id(self) -> str:
        year = self.created_at.year if self.created_at else date.today().year
        return f"CD/{year}/{int(self.id):06d}"

    def to_dict(self) -> dict:
        participant = self.participant
        template = self.template
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "template_id": self.template_id,
            "full_name": participant.full_name if participant else None,
            "email": participant.email if participant else None,
            "template_name": template.original_name if template else None,
            "pdf_path": self.pdf_path,
            "status": self.status,
            "delivery_status": self.delivery_status,
            "delivery_message": self.delivery_message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "last_error": self.last_error,
            "is_hidden": bool(self.is_hidden),
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "verification_url": self.verification_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
