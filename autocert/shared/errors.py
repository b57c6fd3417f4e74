"""Error types surfaced by the certificate pipeline and mapped to HTTP codes."""

from __future__ import annotations


class CertificateError(RuntimeError):
    status_code = 400


class TemplateNotFound(CertificateError):
    status_code = 404

    def __init__(self, message: str = "Template not found"):
        super().__init__(message)


class TemplateFileMissing(CertificateError):
    """Raised when a template row exists but its stored file cannot be read."""

    status_code = 400


class NoParticipants(CertificateError):
    def __init__(self, message: str = "No participants found to generate certificates"):
        super().__init__(message)


class ParticipantNotFound(CertificateError):
    status_code = 404

    def __init__(self, message: str = "Participant not found"):
        super().__init__(message)


class ParticipantConflict(CertificateError):
    status_code = 409


class CertificateNotFound(CertificateError):
    status_code = 404

    def __init__(self, message: str = "Certificate not found"):
        super().__init__(message)


class PlacementError(CertificateError):
    """Raised when a placement update would leave a partial anchor behind."""


class RosterError(CertificateError):
    pass


class MailError(CertificateError):
    pass


class MailNotConfigured(MailError):
    def __init__(self, message: str = "stub: missing config"):
        super().__init__(message)
