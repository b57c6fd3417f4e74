"""Recipient and attachment helpers for certificate mail."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Sequence
from urllib.parse import urlparse

from .errors import MailError

logger = logging.getLogger("autocert.mailer")

_SPLIT_RE = re.compile(r"[;,]")
_ADDRESS_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")


def is_deliverable_address(value: str | None) -> bool:
    return bool(_ADDRESS_RE.match((value or "").strip()))


def _split(recipients: Sequence[str] | str | None) -> Iterable[str]:
    if recipients is None:
        return ()
    if isinstance(recipients, str):
        return _SPLIT_RE.split(recipients)
    return (str(value) for value in recipients)


def normalize_recipients(recipients: Sequence[str] | str | None) -> tuple[list[str], str]:
    """Envelope list and ``To`` header from a roster cell or address list.

    Blank tokens are skipped, malformed ones are logged and dropped, and
    repeats (compared case-insensitively) keep their first spelling.
    """

    kept: dict[str, str] = {}
    for token in _split(recipients):
        address = (token or "").strip()
        if not address:
            continue
        if not is_deliverable_address(address):
            logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", address)
            continue
        kept.setdefault(address.lower(), address)

    envelope = list(kept.values())
    return envelope, ", ".join(envelope)


def certificate_recipients(participant) -> tuple[list[str], str]:
    """Recipients for one participant's certificate mail.

    Raises ``MailError`` when the participant has no address or none of
    its tokens is deliverable, so the failure lands on the certificate row.
    """

    raw = (getattr(participant, "email", None) or "").strip()
    if not raw:
        raise MailError("Participant email is missing")
    envelope, header = normalize_recipients(raw)
    if not envelope:
        logger.warning(
            "[MAIL-NO-RECIPIENTS] participant=%s email=%s",
            getattr(participant, "id", None),
            raw,
        )
        raise MailError(f"Participant email is not deliverable: {raw}")
    return envelope, header


def attachment_filename(pdf_path: str | None, fallback: str) -> str:
    """Basename of a stored certificate path or URL, else ``fallback``."""

    raw = (pdf_path or "").strip()
    if not raw:
        return fallback
    if raw.startswith(("http://", "https://")):
        raw = urlparse(raw).path
    return os.path.basename(raw.replace("\\", "/")) or fallback
