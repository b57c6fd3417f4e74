from __future__ import annotations

from flask import Blueprint, request

from ..shared.errors import CertificateError
from ..shared.participants import (
    create_participant,
    delete_all_participants,
    delete_participant,
    delete_participants,
    import_participants,
    list_participants,
    update_participant,
)
from ..shared.responses import id_list, json_body, ok

bp = Blueprint("participants", __name__, url_prefix="/api/participants")


@bp.get("/")
def index():
    return ok([p.to_dict() for p in list_participants()])


@bp.post("/import")
def import_sheet():
    f = request.files.get("sheet")
    if f is None or not f.filename:
        raise CertificateError("No file uploaded")
    return ok(import_participants(f.read(), f.filename), 201)


@bp.post("/")
def create():
    participant = create_participant(json_body())
    return ok(participant.to_dict(), 201)


@bp.put("/<int:participant_id>")
def update(participant_id: int):
    participant = update_participant(participant_id, json_body())
    return ok(participant.to_dict())


@bp.delete("/all")
def delete_all():
    return ok(delete_all_participants())


@bp.delete("/<int:participant_id>")
def delete(participant_id: int):
    return ok(delete_participant(participant_id))


@bp.post("/delete")
def delete_selected():
    ids = id_list(json_body().get("participantIds"), "participantIds")
    if not ids:
        raise CertificateError("participantIds must be a non-empty array")
    return ok(delete_participants(ids))
