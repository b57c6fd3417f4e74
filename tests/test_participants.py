import io
import os

import pytest
from openpyxl import Workbook

from autocert.app import db
from autocert.models import Certificate, Participant
from autocert.shared.errors import RosterError
from autocert.shared.roster import extract_participant, parse_csv, pick_first_value


def import_sheet(client, data, filename):
    return client.post(
        "/api/participants/import",
        data={"sheet": (io.BytesIO(data), filename)},
        content_type="multipart/form-data",
    )


def xlsx_bytes(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_pick_first_value_falls_back_to_normalized_headers():
    row = {"Participant  NAME": "Ada", "E_MAIL": "ada@example.com"}

    assert pick_first_value(row, ["name", "Participant Name"]) == "Ada"
    assert pick_first_value(row, ["email", "E-mail"]) == "ada@example.com"
    assert pick_first_value(row, ["phone"]) == ""


def test_extract_participant_requires_name_and_email():
    assert extract_participant({"Name": "Ada"}) is None
    fields = extract_participant({"Full Name": " Ada ", "Email": "ADA@Example.com", "MES ID": "M7"})
    assert fields["full_name"] == "Ada"
    assert fields["email"] == "ada@example.com"
    assert fields["mes_id"] == "M7"
    assert fields["extra_data"]["MES ID"] == "M7"


def test_parse_csv_needs_header_and_data():
    with pytest.raises(RosterError):
        parse_csv(b"name,email\n")


def test_parse_csv_skips_rows_with_wrong_column_count():
    rows = parse_csv(b"name,email\nAda,ada@example.com\nbroken\n\"Turing, Alan\",alan@example.com\n")

    assert [r["name"] for r in rows] == ["Ada", "Turing, Alan"]


def test_import_csv_upserts_by_email(app, client, caplog):
    caplog.set_level("INFO")
    csv_data = (
        b"\xef\xbb\xbfname,email,city\n"
        b"Ada Lovelace,ada@example.com,London\n"
        b",missing@example.com,Nowhere\n"
        b"Alan Turing,ALAN@example.com,Wilmslow\n"
    )

    resp = import_sheet(client, csv_data, "roster.csv")

    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["participantsProcessed"] == 2
    assert data["participantsSkipped"] == 1
    assert data["storedFile"].startswith("data/")
    assert os.path.exists(os.path.join(app.config["STORAGE_ROOT"], data["storedFile"]))
    assert "[ROSTER-IMPORT]" in caplog.text

    alan = Participant.query.filter_by(email="alan@example.com").one()
    assert alan.extra("city") == "Wilmslow"
    assert alan.source == ".csv"

    again = import_sheet(client, b"name,email\nAda King,ada@example.com\n", "update.csv")
    assert again.get_json()["data"]["participantsProcessed"] == 1
    assert Participant.query.count() == 2
    assert Participant.query.filter_by(email="ada@example.com").one().full_name == "Ada King"


def test_import_xlsx(client):
    data = xlsx_bytes(
        [
            ["Participant Name", "Email ID", "mes_id", "Score"],
            ["Grace Hopper", "grace@example.com", 1001, 98.5],
            [None, None, None, None],
            ["No Email", None, None, 10],
        ]
    )

    resp = import_sheet(client, data, "roster.xlsx")

    assert resp.status_code == 201
    summary = resp.get_json()["data"]
    assert summary["participantsProcessed"] == 1
    assert summary["participantsSkipped"] == 1
    grace = Participant.query.filter_by(email="grace@example.com").one()
    assert grace.mes_id == "1001"
    assert grace.extra("Score") == 98.5


def test_import_rejects_other_formats(client):
    resp = import_sheet(client, b"name\tEmail\n", "roster.tsv")

    assert resp.status_code == 400
    assert ".csv or .xlsx" in resp.get_json()["error"]


def test_create_update_and_conflicts(client):
    created = client.post(
        "/api/participants/", json={"full_name": "Ada", "email": "Ada@Example.com"}
    )
    assert created.status_code == 201
    ada = created.get_json()["data"]
    assert ada["email"] == "ada@example.com"

    dup = client.post("/api/participants/", json={"full_name": "Other", "email": "ada@example.com"})
    assert dup.status_code == 409

    other = client.post(
        "/api/participants/", json={"full_name": "Alan", "email": "alan@example.com"}
    ).get_json()["data"]
    clash = client.put(f"/api/participants/{other['id']}", json={"email": "ada@example.com"})
    assert clash.status_code == 409

    renamed = client.put(f"/api/participants/{ada['id']}", json={"full_name": "Ada Lovelace"})
    assert renamed.get_json()["data"]["full_name"] == "Ada Lovelace"

    assert client.put("/api/participants/999", json={"full_name": "X"}).status_code == 404
    assert client.post("/api/participants/", json={"email": "x@example.com"}).status_code == 400


def test_delete_endpoints_cascade_certificates(client, participants, pdf_template):
    db.session.add(
        Certificate(participant_id=participants[0].id, template_id=pdf_template.id)
    )
    db.session.commit()

    resp = client.delete(f"/api/participants/{participants[0].id}")
    assert resp.status_code == 200
    assert Certificate.query.count() == 0

    resp = client.post("/api/participants/delete", json={"participantIds": [participants[1].id]})
    assert resp.get_json()["data"] == {"deleted": 1}

    assert client.post("/api/participants/delete", json={"participantIds": []}).status_code == 400

    resp = client.delete("/api/participants/all")
    assert resp.get_json()["data"] == {"deleted": 1}
    assert client.get("/api/participants/").get_json()["data"] == []
