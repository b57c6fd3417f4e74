from __future__ import annotations

import os
from typing import Any, Iterable, Mapping

from flask import current_app

from ..app import db
from ..models import Participant
from .errors import ParticipantConflict, ParticipantNotFound, RosterError
from .roster import extract_participant, parse_roster
from .storage import save_blob


def list_participants() -> list[Participant]:
    return (
        Participant.query.order_by(Participant.created_at.desc(), Participant.id.desc())
        .all()
    )


def get_participants_by_ids(ids: Iterable[int]) -> list[Participant]:
    ids = [int(i) for i in ids]
    if not ids:
        return []
    return (
        Participant.query.filter(Participant.id.in_(ids))
        .order_by(Participant.id)
        .all()
    )


def _find_by_email(email: str) -> Participant | None:
    return Participant.query.filter(
        db.func.lower(Participant.email) == email.lower()
    ).one_or_none()


def import_participants(data: bytes, filename: str) -> dict[str, Any]:
    extension = os.path.splitext(filename or "")[1].lower()
    rows = parse_roster(data, filename)
    stored = save_blob(data, "data", extension)

    processed: list[int] = []
    skipped = 0
    for row in rows:
        fields = extract_participant(row)
        if not fields:
            skipped += 1
            continue
        participant = _find_by_email(fields["email"])
        if participant is None:
            participant = Participant(email=fields["email"])
            db.session.add(participant)
        participant.full_name = fields["full_name"]
        participant.mes_id = fields["mes_id"]
        participant.extra_data = fields["extra_data"]
        participant.source = extension
        db.session.flush()
        processed.append(participant.id)
    db.session.commit()

    current_app.logger.info(
        "[ROSTER-IMPORT] file=%s rows=%d processed=%d skipped=%d",
        filename,
        len(rows),
        len(processed),
        skipped,
    )
    return {
        "storedFile": stored.relative_path,
        "participantsProcessed": len(processed),
        "participantsSkipped": skipped,
    }


def create_participant(payload: Mapping[str, Any]) -> Participant:
    full_name = (payload.get("full_name") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    if not full_name or not email:
        raise RosterError("Full name and email are required")
    if _find_by_email(email):
        raise ParticipantConflict("Participant with this email already exists")
    participant = Participant(
        full_name=full_name,
        email=email,
        mes_id=payload.get("mes_id") or None,
        extra_data=payload.get("extra_data"),
        source=payload.get("source") or "manual",
    )
    db.session.add(participant)
    db.session.commit()
    return participant


def update_participant(participant_id: int, payload: Mapping[str, Any]) -> Participant:
    participant = db.session.get(Participant, participant_id)
    if not participant:
        raise ParticipantNotFound()

    email = (payload.get("email") or "").strip().lower() or participant.email
    if email != participant.email:
        existing = _find_by_email(email)
        if existing and existing.id != participant.id:
            raise ParticipantConflict("Another participant already uses this email")

    full_name = (payload.get("full_name") or "").strip()
    participant.full_name = full_name or participant.full_name
    participant.email = email
    if payload.get("mes_id") is not None:
        participant.mes_id = payload.get("mes_id")
    if payload.get("extra_data") is not None:
        participant.extra_data = payload.get("extra_data")
    participant.source = "manual"
    db.session.commit()
    return participant


def delete_participant(participant_id: int) -> dict:
    participant = db.session.get(Participant, participant_id)
    if participant:
        db.session.delete(participant)
        db.session.commit()
    return {"id": participant_id}


def delete_participants(ids: Iterable[int]) -> dict:
    removed = 0
    for participant in get_participants_by_ids(ids):
        db.session.delete(participant)
        removed += 1
    db.session.commit()
    return {"deleted": removed}


def delete_all_participants() -> dict:
    removed = 0
    for participant in Participant.query.all():
        db.session.delete(participant)
        removed += 1
    db.session.commit()
    return {"deleted": removed}
