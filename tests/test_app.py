"""Tests for the Flask API."""
import io
import os
from datetime import date

FRENCH_MAPPING = {
    "lastName": "Nom",
    "firstName": "Prénom",
    "startDate": "Début adhésion",
    "endDate": "Date d'expiration",
}


def _upload(client, path, filename=None):
    with open(path, "rb") as handle:
        data = {"file": (io.BytesIO(handle.read()), filename or path.name)}
    return client.post("/api/upload", data=data, content_type="multipart/form-data")


def test_health(app_client):
    response = app_client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


def test_upload_suggests_mapping(app_client, membership_csv):
    response = _upload(app_client, membership_csv)
    body = response.get_json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["rowCount"] == 5
    assert body["headers"] == list(FRENCH_MAPPING.values())
    assert body["mapping"] == FRENCH_MAPPING
    assert body["mappingSource"] == "suggested"


def test_upload_rejects_unreadable_file(app_client):
    data = {"file": (io.BytesIO(b"garbage"), "adherents.xlsx")}

    response = app_client.post("/api/upload", data=data, content_type="multipart/form-data")
    body = response.get_json()

    assert response.status_code == 400
    assert body["success"] is False
    assert body["error"].startswith("Failed to parse spreadsheet file")
    assert body["headers"] == []


def test_upload_rejects_other_extensions(app_client):
    data = {"file": (io.BytesIO("Nom;Prénom".encode("utf-8")), "adherents.txt")}

    response = app_client.post("/api/upload", data=data, content_type="multipart/form-data")

    assert response.status_code == 400


def test_export_and_download(app_client, membership_csv):
    file_id = _upload(app_client, membership_csv).get_json()["fileId"]

    response = app_client.post("/api/export", json={
        "fileId": file_id,
        "mapping": FRENCH_MAPPING,
        "asOf": "2023-01-01",
        "filename": "membres.csv",
    })
    body = response.get_json()

    assert response.status_code == 200
    assert body["summary"]["exported"] == 2
    assert body["summary"]["rowsSkipped"] == 1
    assert body["overflow"] == []
    assert body["statusMessage"] is None

    download = app_client.get(body["downloadUrl"])
    today = date.today().isoformat()
    assert download.status_code == 200
    assert download.mimetype == "text/csv"
    assert "membres.csv" in download.headers["Content-Disposition"]
    assert download.data.decode("utf-8") == (
        f"Base de données;Base de données;{today};{today}\n"
        "Bernard;Luc;2019-09-01;2030-08-31\n"
        "Dupont;Jean;2020-01-01;2099-01-01\n"
    )
    download.close()

    export = app_client.get(f"/api/exports/{body['exportId']}").get_json()["export"]
    assert export["asOf"] == "2023-01-01"
    assert export["mapping"] == FRENCH_MAPPING


def test_export_reports_long_names(app_client, tmp_path):
    path = tmp_path / "long.csv"
    path.write_text(
        "Nom;Prénom;Début;Fin\n"
        "De La Fontaine-Montmorency;Jean-Baptiste;2020-01-01;2099-01-01\n"
        "Dupont;Jean;2020-01-01;2099-01-01\n"
        "Martin;Claire;2020-01-01;2099-01-01\n",
        encoding="utf-8",
    )
    file_id = _upload(app_client, path).get_json()["fileId"]

    body = app_client.post("/api/export", json={
        "fileId": file_id,
        "mapping": {"lastName": "Nom", "firstName": "Prénom", "startDate": "Début", "endDate": "Fin"},
        "asOf": "2023-01-01",
    }).get_json()

    assert body["fileName"] == "adherent.csv"
    assert body["summary"]["exported"] == 3
    assert body["overflow"] == ["De La Fontaine-Montmorency Jean-Baptiste : 2020-01-01 - 2099-01-01"]
    assert body["statusMessage"].startswith("Export finished with names too long for Discord:")


def test_export_refuses_incomplete_mapping(app_client, membership_csv):
    file_id = _upload(app_client, membership_csv).get_json()["fileId"]
    mapping = dict(FRENCH_MAPPING, endDate=None)

    response = app_client.post("/api/export", json={"fileId": file_id, "mapping": mapping})

    assert response.status_code == 400
    assert response.get_json()["error"] == "Please complete all column selections before exporting."
    assert app_client.get("/api/exports").get_json()["exports"] == []


def test_export_validation_errors(app_client, membership_csv):
    file_id = _upload(app_client, membership_csv).get_json()["fileId"]

    assert app_client.post("/api/export", json={}).status_code == 400
    assert app_client.post("/api/export", json={"fileId": "nope", "mapping": FRENCH_MAPPING}).status_code == 404
    bad_date = app_client.post("/api/export", json={"fileId": file_id, "mapping": FRENCH_MAPPING, "asOf": "01/02/2023"})
    assert bad_date.status_code == 400


def test_used_mapping_is_remembered_for_same_headers(app_client, membership_csv, tmp_path):
    file_id = _upload(app_client, membership_csv).get_json()["fileId"]
    # Deliberately unusual choice, so it cannot come from the suggestion
    swapped = dict(FRENCH_MAPPING, lastName="Prénom", firstName="Nom")
    app_client.post("/api/export", json={"fileId": file_id, "mapping": swapped, "asOf": "2023-01-01"})

    reordered = tmp_path / "reordered.csv"
    reordered.write_text(
        "Prénom;Nom;Date d'expiration;Début adhésion\n"
        "Jean;Dupont;2099-01-01;2020-01-01\n"
        "Claire;Martin;2099-01-01;2021-01-01\n"
        "Luc;Bernard;2099-01-01;2022-01-01\n",
        encoding="utf-8",
    )
    body = _upload(app_client, reordered).get_json()

    assert body["mappingSource"] == "stored"
    assert body["mapping"] == swapped

    mapping = app_client.get(f"/api/files/{body['fileId']}/mapping").get_json()
    assert mapping["mapping"] == swapped


def test_save_mapping_endpoint(app_client):
    headers = ["A", "B", "C", "D"]
    mapping = {"lastName": "A", "firstName": "B", "startDate": "C", "endDate": "D"}

    assert app_client.put("/api/mappings", json={"mapping": mapping}).status_code == 400
    response = app_client.put("/api/mappings", json={"headers": headers, "mapping": mapping})

    assert response.status_code == 200
    assert response.get_json()["mapping"] == mapping


def test_delete_export(app_client, membership_csv):
    file_id = _upload(app_client, membership_csv).get_json()["fileId"]
    export_id = app_client.post("/api/export", json={
        "fileId": file_id, "mapping": FRENCH_MAPPING, "asOf": "2023-01-01"
    }).get_json()["exportId"]

    assert app_client.delete(f"/api/exports/{export_id}").status_code == 200
    assert app_client.get(f"/api/exports/{export_id}").status_code == 404
    assert app_client.get(f"/api/exports/{export_id}/download").status_code == 404


def test_export_rejects_non_object_json(app_client, membership_csv):
    file_id = _upload(app_client, membership_csv).get_json()["fileId"]

    body_as_list = app_client.post("/api/export", json=[file_id])
    mapping_as_list = app_client.post("/api/export", json={"fileId": file_id, "mapping": ["Nom", "Prénom"]})
    headers_as_text = app_client.put("/api/mappings", json={"headers": "Nom", "mapping": FRENCH_MAPPING})

    for response in (body_as_list, mapping_as_list, headers_as_text):
        assert response.status_code == 400
        assert response.get_json()["success"] is False


def test_delete_uploaded_file(app_client, membership_csv):
    from backend import app as app_module

    file_id = _upload(app_client, membership_csv).get_json()["fileId"]
    stored_path = app_module.db.get_uploaded_file(file_id)["stored_path"]
    export_id = app_client.post("/api/export", json={
        "fileId": file_id, "mapping": FRENCH_MAPPING, "asOf": "2023-01-01"
    }).get_json()["exportId"]

    assert app_client.delete(f"/api/files/{file_id}").status_code == 200
    assert not os.path.exists(stored_path)
    assert app_client.get(f"/api/files/{file_id}/mapping").status_code == 404
    assert app_client.delete(f"/api/files/{file_id}").status_code == 404
    # Past exports stay downloadable
    assert app_client.get(f"/api/exports/{export_id}").get_json()["export"]["fileId"] is None


def test_upload_removes_expired_uploads(app_client, membership_csv, monkeypatch):
    from backend import app as app_module

    monkeypatch.setattr(app_module, "FILE_RETENTION_DAYS", 7)
    old_id = _upload(app_client, membership_csv).get_json()["fileId"]
    old_path = app_module.db.get_uploaded_file(old_id)["stored_path"]
    with app_module.db.get_connection() as conn:
        conn.execute("UPDATE uploaded_files SET uploaded_at = datetime('now', '-30 days') WHERE id = ?", (old_id,))

    new_id = _upload(app_client, membership_csv).get_json()["fileId"]

    listed = [f["id"] for f in app_client.get("/api/files").get_json()["files"]]
    assert listed == [new_id]
    assert not os.path.exists(old_path)
