from __future__ import annotations

from typing import Any

from flask import jsonify, request

from .errors import CertificateError


def ok(data: Any = None, status: int = 200, **extra):
    payload = {"success": True, "data": data}
    payload.update(extra)
    return jsonify(payload), status


def json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise CertificateError("Request body must be a JSON object")
    return body


def id_list(values: Any, field: str) -> list[int]:
    if values in (None, ""):
        return []
    if not isinstance(values, (list, tuple)):
        raise CertificateError(f"{field} must be an array of ids")
    try:
        return [int(v) for v in values]
    except (TypeError, ValueError):
        raise CertificateError(f"{field} must contain only numeric ids") from None
