"""Shared fixtures for adherent export tests."""
import os
import tempfile
from datetime import date

import pytest

# Keep the app's default database and folders out of the source tree
os.environ.setdefault("ADHERENT_EXPORT_DATA_DIR", tempfile.mkdtemp(prefix="adherent-export-"))

from adherent_export import ColumnMapping, MembershipRecord  # noqa: E402


@pytest.fixture
def mapping():
    return ColumnMapping(last_name="N", first_name="P", start_date="D", end_date="F")


@pytest.fixture
def make_record():
    def _make(last="Dupont", first="Jean", start=date(2020, 1, 1), end=date(2099, 1, 1)):
        return MembershipRecord(last_name=last, first_name=first, start_date=start, end_date=end)
    return _make


@pytest.fixture
def membership_csv(tmp_path):
    path = tmp_path / "adherents.csv"
    path.write_text(
        "Nom;Prénom;Début adhésion;Date d'expiration\n"
        "Dupont;Jean;2020-01-01;2099-01-01\n"
        "Dupont;Jean;2021-06-01;2099-01-01\n"
        "Martin;Claire;2022-03-15;2022-12-31\n"
        "Durand;;2021-01-01;2099-01-01\n"
        "Bernard;Luc;2019-09-01;2030-08-31\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def app_client(tmp_path, monkeypatch):
    from backend import app as app_module
    from backend.api.export_service import ExportService
    from backend.database import Database

    uploads = tmp_path / "uploads"
    uploads.mkdir()
    monkeypatch.setattr(app_module, "db", Database(str(tmp_path / "app.db")))
    monkeypatch.setattr(app_module, "UPLOAD_FOLDER", uploads)
    monkeypatch.setattr(
        app_module,
        "export_service",
        ExportService(results_folder=str(tmp_path / "results"), label="Base de données", display_name_limit=32),
    )
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as client:
        yield client
