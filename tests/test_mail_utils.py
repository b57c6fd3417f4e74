from __future__ import annotations

from types import SimpleNamespace

import pytest

from autocert.shared.errors import MailError
from autocert.shared.mail_utils import (
    attachment_filename,
    certificate_recipients,
    is_deliverable_address,
    normalize_recipients,
)


@pytest.mark.no_smoke
def test_normalize_recipients_comma_separated():
    envelope, header = normalize_recipients("a@x.com, b@y.com")

    assert envelope == ["a@x.com", "b@y.com"]
    assert header == "a@x.com, b@y.com"


@pytest.mark.no_smoke
def test_normalize_recipients_semicolon_separated():
    envelope, header = normalize_recipients("a@x.com; b@y.com ;")

    assert envelope == ["a@x.com", "b@y.com"]
    assert header == "a@x.com, b@y.com"


@pytest.mark.no_smoke
def test_normalize_recipients_list_dedup_preserves_order():
    envelope, header = normalize_recipients(["A@X.com", "a@x.com", "b@y.com"])

    assert envelope == ["A@X.com", "b@y.com"]
    assert header == "A@X.com, b@y.com"


@pytest.mark.no_smoke
def test_normalize_recipients_drops_invalid(caplog):
    caplog.set_level("WARNING", logger="autocert.mailer")

    envelope, header = normalize_recipients("bad, ok@x.com")

    assert envelope == ["ok@x.com"]
    assert header == "ok@x.com"
    assert any("[MAIL-INVALID-RECIPIENT]" in message for message in caplog.messages)


@pytest.mark.no_smoke
@pytest.mark.parametrize(
    "path,expected",
    [
        ("generated/ada-gala-1.pdf", "ada-gala-1.pdf"),
        ("generated\\win-path.pdf", "win-path.pdf"),
        ("https://cdn.example.org/certs/remote.pdf?sig=1", "remote.pdf"),
        ("", "fallback.pdf"),
        (None, "fallback.pdf"),
    ],
)
def test_attachment_filename(path, expected):
    assert attachment_filename(path, "fallback.pdf") == expected


@pytest.mark.no_smoke
@pytest.mark.parametrize(
    "value,expected",
    [
        ("ada@example.com", True),
        ("  ada@example.com ", True),
        ("ada@localhost", False),
        ("ada@@example.com", False),
        ("ada lovelace@example.com", False),
        ("ada@example.", False),
        ("", False),
        (None, False),
    ],
)
def test_is_deliverable_address(value, expected):
    assert is_deliverable_address(value) is expected


@pytest.mark.no_smoke
def test_certificate_recipients_for_participant():
    participant = SimpleNamespace(id=3, email=" Grace@Example.org ")

    assert certificate_recipients(participant) == (["Grace@Example.org"], "Grace@Example.org")


@pytest.mark.no_smoke
@pytest.mark.parametrize("email", ["", "   ", None])
def test_certificate_recipients_requires_an_address(email):
    with pytest.raises(MailError, match="missing"):
        certificate_recipients(SimpleNamespace(id=3, email=email))


@pytest.mark.no_smoke
def test_certificate_recipients_rejects_undeliverable_address(caplog):
    caplog.set_level("WARNING", logger="autocert.mailer")

    with pytest.raises(MailError, match="not deliverable"):
        certificate_recipients(SimpleNamespace(id=3, email="grace-at-example"))
    assert "[MAIL-NO-RECIPIENTS]" in caplog.text
