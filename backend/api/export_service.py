"""
Service layer wrapping AdherentExporter for web app use.
"""
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from adherent_export import AdherentExporter, ColumnMapping, ExportResult
from backend.api.sheet_reader import read_rows

logger = logging.getLogger(__name__)

class ExportService:
    """Service for exporting adherents from a stored upload"""

    def __init__(self, results_folder: str, label: str, display_name_limit: int):
        self.results_folder = Path(results_folder)
        self.results_folder.mkdir(parents=True, exist_ok=True)
        self.exporter = AdherentExporter(label=label, display_name_limit=display_name_limit)

    def export_file(
        self,
        stored_path: str,
        mapping: ColumnMapping,
        as_of: Optional[date] = None,
        generated_on: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Decode a stored spreadsheet, run the export and write the CSV.

        Args:
            stored_path: Path of the uploaded spreadsheet
            mapping: Column mapping chosen by the user
            as_of: Reference date for active memberships (default: today)
            generated_on: Date written in the banner line (default: today)

        Returns:
            Dict with output_filename, output_path and result
        """
        rows, headers = read_rows(stored_path)
        missing = [header for header in mapping.headers() if header and header not in headers]
        if missing:
            logger.warning(f"Mapped columns not found in {Path(stored_path).name}: {missing}")

        result = self.exporter.export(rows, mapping, as_of=as_of, generated_on=generated_on)

        output_filename = f"{uuid.uuid4()}.csv"
        output_path = self.results_folder / output_filename
        output_path.write_text(result.payload, encoding="utf-8")
        logger.info(f"Wrote {result.exported} adherents to {output_path}")

        return {
            "output_filename": output_filename,
            "output_path": str(output_path),
            "result": result,
        }

    @staticmethod
    def describe_result(result: ExportResult) -> Dict[str, Any]:
        """JSON-serializable view of an export result"""
        overflow: List[str] = [str(record) for record in result.overflow]
        return {
            "summary": result.summary(),
            "overflow": overflow,
            "statusMessage": result.status_message(),
        }
