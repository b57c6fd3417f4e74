import json
import logging
import smtplib
import sys
import time
from email.message import EmailMessage
from typing import Callable, Sequence

from flask import current_app

from .shared.errors import MailError, MailNotConfigured
from .shared.mail_utils import attachment_filename, certificate_recipients
from .shared.storage import read_blob

logger = logging.getLogger("autocert.mailer")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)

TRANSIENT_ERRORS = (
    ConnectionResetError,
    TimeoutError,
    smtplib.SMTPServerDisconnected,
)

DEFAULT_BODY = (
    "Hi {name},\n\nPlease find your certificate attached.\n\nRegards,\nCertificates Desk"
)


class SendScheduler:
    """Enforces a minimum gap between outgoing messages.

    ``wait`` blocks the caller until ``min_interval`` seconds have passed
    since the previous send, then records the new send time.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = max(0.0, float(min_interval))
        self.last_sent: float | None = None
        self._clock = clock
        self._sleep = sleep

    def wait(self) -> float:
        delay = 0.0
        if self.last_sent is not None:
            elapsed = self._clock() - self.last_sent
            if elapsed < self.min_interval:
                delay = self.min_interval - elapsed
                logger.info("[MAIL-RATE] waiting %.0fms before next send", delay * 1000)
                self._sleep(delay)
        self.last_sent = self._clock()
        return delay


def get_scheduler() -> SendScheduler:
    return current_app.extensions["autocert.mail_scheduler"]


def _stringify_envelope(recipients: Sequence[str]) -> str:
    return json.dumps(list(recipients))


def _deliver(
    host: str,
    port: int,
    user: str | None,
    password: str | None,
    from_addr: str,
    envelope: Sequence[str],
    msg: EmailMessage,
) -> None:
    if port == 465:
        server = smtplib.SMTP_SSL(host, port)
    else:
        server = smtplib.SMTP(host, port)
        if port == 587:
            server.starttls()
    try:
        if user and password:
            server.login(user, password)
        server.sendmail(from_addr, list(envelope), msg.as_string())
    finally:
        server.quit()


def send_certificate(
    participant,
    certificate,
    scheduler: SendScheduler,
    *,
    subject: str | None = None,
    text: str | None = None,
    event_name: str | None = None,
    _retried: bool = False,
):
    envelope, header = certificate_recipients(participant)
    if not certificate.pdf_path:
        raise MailError("Certificate PDF not generated yet")

    scheduler.wait()

    config = current_app.config
    host = config.get("SMTP_HOST")
    port = config.get("SMTP_PORT")
    user = config.get("SMTP_USER")
    password = config.get("SMTP_PASSWORD")
    from_addr = config.get("SMTP_FROM") or user
    from_name = config.get("SMTP_FROM_NAME") or ""

    subject = subject or (
        f"Your Certificate - {event_name}" if event_name else "Your Certificate"
    )
    if not host or not port or not from_addr:
        logger.info(
            "[MAIL-OUT] mode=stub to_header=%s envelope=%s subject=\"%s\" host=%s result=stub",
            header,
            _stringify_envelope(envelope),
            subject,
            host,
        )
        raise MailNotConfigured()

    pdf_bytes = read_blob(certificate.pdf_path)
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["To"] = header
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    msg.set_content(text or DEFAULT_BODY.format(name=participant.display_name))
    msg.add_attachment(
        pdf_bytes,
        maintype="application",
        subtype="pdf",
        filename=attachment_filename(
            certificate.pdf_path, f"certificate-{participant.id}.pdf"
        ),
    )

    try:
        _deliver(host, int(port), user, password, from_addr, envelope, msg)
    except TRANSIENT_ERRORS as exc:
        logger.info(
            "[MAIL-OUT] mode=real to_header=%s envelope=%s subject=\"%s\" host=%s result=%s",
            header,
            _stringify_envelope(envelope),
            subject,
            host,
            exc,
        )
        if _retried:
            raise
        delay = float(config.get("MAIL_RETRY_DELAY", 5.0))
        logger.info("[MAIL-RETRY] to=%s after %.1fs", header, delay)
        time.sleep(delay)
        return send_certificate(
            participant,
            certificate,
            scheduler,
            subject=subject,
            text=text,
            event_name=event_name,
            _retried=True,
        )
    except Exception as exc:
        logger.info(
            "[MAIL-OUT] mode=real to_header=%s envelope=%s subject=\"%s\" host=%s result=%s",
            header,
            _stringify_envelope(envelope),
            subject,
            host,
            exc,
        )
        raise

    logger.info(
        "[MAIL-OUT] mode=real to_header=%s envelope=%s subject=\"%s\" host=%s result=sent",
        header,
        _stringify_envelope(envelope),
        subject,
        host,
    )
    return {"ok": True, "detail": "sent"}
