"""Tests for building membership records from raw rows."""
from datetime import date, datetime

import pytest

from adherent_export import ColumnMapping, MembershipRecord, build_record


def test_complete_row_builds_record(mapping):
    row = {"N": "Dupont", "P": "Jean", "D": "2020-01-01", "F": "2099-01-01", "Other": "x"}

    record = build_record(row, mapping)

    assert record == MembershipRecord("Dupont", "Jean", date(2020, 1, 1), date(2099, 1, 1))


def test_names_are_kept_verbatim(mapping):
    row = {"N": " dupont ", "P": "JEAN", "D": "2020-01-01", "F": "2099-01-01"}

    record = build_record(row, mapping)

    assert record.last_name == " dupont "
    assert record.first_name == "JEAN"


def test_datetimes_and_serials_are_truncated_to_days(mapping):
    row = {"N": "Dupont", "P": "Jean", "D": datetime(2020, 1, 1, 18, 45), "F": 44927.75}

    record = build_record(row, mapping)

    assert record.start_date == date(2020, 1, 1)
    assert record.end_date == date(2023, 1, 1)


@pytest.mark.parametrize("missing", ["N", "P", "D", "F"])
def test_absent_column_skips_row(mapping, missing):
    row = {"N": "Dupont", "P": "Jean", "D": "2020-01-01", "F": "2099-01-01"}
    del row[missing]

    assert build_record(row, mapping) is None


@pytest.mark.parametrize("field,value", [
    ("N", ""),
    ("P", None),
    ("N", float("nan")),
    ("D", "someday"),
    ("F", ""),
    ("D", 0),
])
def test_empty_or_unreadable_value_skips_row(mapping, field, value):
    row = {"N": "Dupont", "P": "Jean", "D": "2020-01-01", "F": "2099-01-01"}
    row[field] = value

    assert build_record(row, mapping) is None


def test_numeric_name_is_converted_to_text(mapping):
    row = {"N": "Dupont", "P": 42, "D": "2020-01-01", "F": "2099-01-01"}

    assert build_record(row, mapping).first_name == "42"


def test_unassigned_role_skips_row():
    row = {"N": "Dupont", "P": "Jean", "D": "2020-01-01", "F": "2099-01-01"}
    partial = ColumnMapping(last_name="N", first_name="P", start_date="D")

    assert build_record(row, partial) is None


def test_record_helpers(make_record):
    record = make_record()

    assert record.key() == ("Dupont", "Jean")
    assert record.to_csv() == "Dupont;Jean;2020-01-01;2099-01-01"
    assert str(record) == "Dupont Jean : 2020-01-01 - 2099-01-01"


def test_column_mapping_round_trips_api_keys():
    data = {"lastName": "Nom", "firstName": "Prénom", "startDate": "Début", "endDate": None}

    mapping = ColumnMapping.from_dict(data)

    assert mapping.last_name == "Nom"
    assert mapping.end_date is None
    assert not mapping.is_complete()
    assert mapping.to_dict() == data
