#!/usr/bin/env python3
"""
Adherent Export
Turns a membership spreadsheet into the normalized CSV expected by the
member directory import:
- Columns are mapped to last name, first name, membership start and end
- Rows with a missing name or an unreadable date are skipped
- Only memberships active on the reference date are kept
- Duplicate members collapse to their earliest start date
- Names too long for Discord display are reported separately
"""

import argparse
import logging
import math
import sys
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
from pandas.api.types import is_scalar

# Setup logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Spreadsheet serial day zero (keeps the 1900 leap year bug of spreadsheet applications)
SPREADSHEET_EPOCH = datetime(1899, 12, 30)

# Discord truncates display names past this length
DISPLAY_NAME_LIMIT = 32

BANNER_LABEL = "Base de données"
DEFAULT_EXPORT_FILENAME = "adherent.csv"

INCOMPLETE_MAPPING_MESSAGE = "Please complete all column selections before exporting."
OVERFLOW_STATUS_PREFIX = "Export finished with names too long for Discord:"


class IncompleteMappingError(ValueError):
    """Raised when an export is requested before every column role is assigned"""


def format_date(value: Optional[date]) -> str:
    """Format a date as YYYY-MM-DD"""
    if not value:
        return ''
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if is_scalar(value):
        try:
            return bool(pd.isna(value))
        except (TypeError, ValueError):
            return False
    return False


def coerce_date(value: Any):
    """
    Convert a raw spreadsheet cell into a date.

    Native dates are returned unchanged, numbers are read as spreadsheet
    serials and strings are parsed. Anything else, or anything that cannot
    be read, gives None.
    """
    if _is_missing(value):
        return None

    if isinstance(value, (bool, np.bool_)):
        return None

    if isinstance(value, date):
        return value

    if isinstance(value, (int, float, np.integer, np.floating)):
        if not value or not math.isfinite(value):
            return None
        try:
            return SPREADSHEET_EPOCH + timedelta(days=float(value))
        except (OverflowError, ValueError):
            return None

    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed == '':
            return None
        try:
            parsed = pd.to_datetime(trimmed, errors='coerce')
        except (ValueError, TypeError, OverflowError):
            return None
        if _is_missing(parsed):
            return None
        return parsed.to_pydatetime()

    return None


def _as_calendar_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass
class ColumnMapping:
    """Source header assigned to each membership field"""
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    API_KEYS = {
        'last_name': 'lastName',
        'first_name': 'firstName',
        'start_date': 'startDate',
        'end_date': 'endDate',
    }

    def is_complete(self) -> bool:
        return bool(self.last_name and self.first_name and self.start_date and self.end_date)

    def headers(self) -> List[Optional[str]]:
        return [self.last_name, self.first_name, self.start_date, self.end_date]

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {api_key: getattr(self, attr) for attr, api_key in self.API_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ColumnMapping':
        data = data or {}
        values = {}
        for attr, api_key in cls.API_KEYS.items():
            value = data.get(api_key, data.get(attr))
            values[attr] = value if value else None
        return cls(**values)


@dataclass(frozen=True)
class MembershipRecord:
    """One adherent with a bounded membership interval"""
    last_name: str
    first_name: str
    start_date: date
    end_date: date

    # Identity used to spot duplicate entries
    def key(self) -> Tuple[str, str]:
        return (self.last_name, self.first_name)

    def is_overflow(self, limit: int = DISPLAY_NAME_LIMIT) -> bool:
        """Check whether the combined name is too long for Discord"""
        return len(self.last_name) + len(self.first_name) > limit

    def to_csv(self) -> str:
        return f"{self.last_name};{self.first_name};{format_date(self.start_date)};{format_date(self.end_date)}"

    def __str__(self) -> str:
        return f"{self.last_name} {self.first_name} : {format_date(self.start_date)} - {format_date(self.end_date)}"


def build_record(row: Mapping[str, Any], mapping: ColumnMapping) -> Optional[MembershipRecord]:
    """Build a record from a raw row, or None when a field is missing or unreadable"""
    last_name = row.get(mapping.last_name) if mapping.last_name else None
    first_name = row.get(mapping.first_name) if mapping.first_name else None
    start = _as_calendar_date(coerce_date(row.get(mapping.start_date))) if mapping.start_date else None
    end = _as_calendar_date(coerce_date(row.get(mapping.end_date))) if mapping.end_date else None

    if _is_missing(last_name) or _is_missing(first_name) or not last_name or not first_name:
        return None
    if start is None or end is None:
        return None

    return MembershipRecord(
        last_name=last_name if isinstance(last_name, str) else str(last_name),
        first_name=first_name if isinstance(first_name, str) else str(first_name),
        start_date=start,
        end_date=end,
    )


def sort_by_start(records: Iterable[MembershipRecord]) -> List[MembershipRecord]:
    """Stable sort, ascending membership start"""
    return sorted(records, key=lambda record: record.start_date)


def dedupe_records(records: Iterable[MembershipRecord]) -> List[MembershipRecord]:
    """
    Keep one record per (last name, first name), the one with the earliest start.

    Ties keep the first record seen, so callers sort by start date first.
    """
    best_by_key: Dict[Tuple[str, str], MembershipRecord] = {}
    for record in records:
        key = record.key()
        current = best_by_key.get(key)
        if current is None or record.start_date < current.start_date:
            best_by_key[key] = record
    return list(best_by_key.values())


def filter_active(records: Iterable[MembershipRecord], as_of: date) -> List[MembershipRecord]:
    """Keep memberships whose interval contains as_of (both ends inclusive)"""
    return [record for record in records if record.start_date <= as_of <= record.end_date]


def format_export(
    records: Iterable[MembershipRecord],
    generated_on: date,
    label: str = BANNER_LABEL,
    limit: int = DISPLAY_NAME_LIMIT,
) -> Tuple[str, List[MembershipRecord]]:
    """
    Render the CSV payload and collect overflow names.

    The first line is a provenance banner, not a column header. Overflow
    records stay in the payload.
    """
    generated = format_date(generated_on)
    lines = [f"{label};{label};{generated};{generated}"]
    overflow = []

    for record in records:
        if record.is_overflow(limit):
            overflow.append(record)
        lines.append(record.to_csv())

    payload = "".join(line + "\n" for line in lines)
    return payload, overflow


@dataclass
class ExportResult:
    """Output of one export run"""
    payload: str
    records: List[MembershipRecord] = field(default_factory=list)
    overflow: List[MembershipRecord] = field(default_factory=list)
    rows_read: int = 0
    candidates: int = 0
    active: int = 0

    @property
    def rows_skipped(self) -> int:
        return self.rows_read - self.candidates

    @property
    def exported(self) -> int:
        return len(self.records)

    def overflow_report(self) -> str:
        return "".join(f"{record}\n" for record in self.overflow)

    def status_message(self) -> Optional[str]:
        if not self.overflow:
            return None
        return f"{OVERFLOW_STATUS_PREFIX}\n{self.overflow_report()}\n"

    def summary(self) -> Dict[str, int]:
        return {
            "rowsRead": self.rows_read,
            "rowsSkipped": self.rows_skipped,
            "candidates": self.candidates,
            "active": self.active,
            "exported": self.exported,
            "overflow": len(self.overflow),
        }


class AdherentExporter:
    """Runs the membership export pipeline over an already decoded sheet"""

    def __init__(self, label: str = BANNER_LABEL, display_name_limit: int = DISPLAY_NAME_LIMIT):
        self.label = label
        self.display_name_limit = display_name_limit

    def can_export(self, rows: List[Mapping[str, Any]], mapping: ColumnMapping) -> bool:
        return bool(rows) and mapping.is_complete()

    def build_records(self, rows: List[Mapping[str, Any]], mapping: ColumnMapping) -> List[MembershipRecord]:
        records = []
        for row in rows:
            record = build_record(row, mapping)
            if record is not None:
                records.append(record)
        logger.info(f"Built {len(records)} records from {len(rows)} rows ({len(rows) - len(records)} skipped)")
        return records

    def export(
        self,
        rows: List[Mapping[str, Any]],
        mapping: ColumnMapping,
        as_of: Optional[date] = None,
        generated_on: Optional[date] = None,
    ) -> ExportResult:
        """Main processing function"""
        if not self.can_export(rows, mapping):
            raise IncompleteMappingError(INCOMPLETE_MAPPING_MESSAGE)

        today = date.today()
        as_of = as_of or today
        generated_on = generated_on or today

        # 1. Build candidate records
        candidates = sort_by_start(self.build_records(rows, mapping))

        # 2. Keep memberships active on the reference date
        active = filter_active(candidates, as_of)
        logger.info(f"{len(active)} of {len(candidates)} memberships active on {format_date(as_of)}")

        # 3. Collapse duplicates to their earliest start
        unique = sort_by_start(dedupe_records(active))
        logger.info(f"Removed {len(active) - len(unique)} duplicates, {len(unique)} unique adherents remain")

        # 4. Render
        payload, overflow = format_export(unique, generated_on, self.label, self.display_name_limit)
        if overflow:
            logger.warning(f"{len(overflow)} names exceed {self.display_name_limit} characters")

        return ExportResult(
            payload=payload,
            records=unique,
            overflow=overflow,
            rows_read=len(rows),
            candidates=len(candidates),
            active=len(active),
        )


def _parse_as_of(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export active adherents from a membership spreadsheet")
    parser.add_argument("input", help="Excel (.xlsx/.xls) or CSV file")
    parser.add_argument("--last", dest="last_name", help="Column holding the last name")
    parser.add_argument("--first", dest="first_name", help="Column holding the first name")
    parser.add_argument("--start", dest="start_date", help="Column holding the membership start")
    parser.add_argument("--end", dest="end_date", help="Column holding the membership end")
    parser.add_argument("--as-of", type=_parse_as_of, default=None, help="Reference date (default: today)")
    parser.add_argument("--output", default=DEFAULT_EXPORT_FILENAME, help="Output CSV path")
    parser.add_argument("--label", default=BANNER_LABEL, help="Label written in the banner line")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    from backend.api.column_mapping import suggest_mapping
    from backend.api.sheet_reader import SheetReadError, read_rows

    args = build_arg_parser().parse_args(argv)

    print("📋 ADHERENT EXPORT")
    print("=" * 60)

    try:
        rows, headers = read_rows(args.input)
    except SheetReadError as e:
        print(f"❌ {e}")
        return 1

    print(f"Loaded {len(rows)} rows from {Path(args.input).name}")

    suggested = suggest_mapping(headers)
    mapping = ColumnMapping(
        last_name=args.last_name or suggested.last_name,
        first_name=args.first_name or suggested.first_name,
        start_date=args.start_date or suggested.start_date,
        end_date=args.end_date or suggested.end_date,
    )
    for attr, api_key in ColumnMapping.API_KEYS.items():
        print(f"  {api_key}: {getattr(mapping, attr) or '(not set)'}")

    exporter = AdherentExporter(label=args.label)
    try:
        result = exporter.export(rows, mapping, as_of=args.as_of)
    except IncompleteMappingError as e:
        print(f"❌ {e}")
        print(f"Available columns: {', '.join(headers)}")
        return 1

    output_path = Path(args.output)
    output_path.write_text(result.payload, encoding="utf-8")

    print()
    print("=" * 60)
    print(f"✅ Exported {result.exported} adherents to {output_path}")
    status = result.status_message()
    if status:
        print(f"⚠️  {status}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
