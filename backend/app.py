"""
Flask REST API for the adherent export web app.
"""
import os
import uuid
from datetime import date, datetime
from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
from werkzeug.utils import secure_filename
import logging

from adherent_export import (
    ColumnMapping, IncompleteMappingError, INCOMPLETE_MAPPING_MESSAGE, format_date
)
from backend.config import (
    DATABASE_PATH, UPLOAD_FOLDER, RESULTS_FOLDER, CORS_ORIGINS, MAX_CONTENT_LENGTH,
    SECRET_KEY, DEFAULT_EXPORT_FILENAME, BANNER_LABEL, DISPLAY_NAME_LIMIT, FILE_RETENTION_DAYS
)
from backend.database import Database
from backend.api.upload_handler import save_uploaded_file, cleanup_files
from backend.api.sheet_reader import SheetReadError, read_rows
from backend.api.column_mapping import header_fingerprint, resolve_mapping
from backend.api.export_service import ExportService

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH
app.config['SECRET_KEY'] = SECRET_KEY
CORS(app, origins=CORS_ORIGINS)

# Initialize database
db = Database(str(DATABASE_PATH))

# Export service
export_service = ExportService(
    results_folder=str(RESULTS_FOLDER),
    label=BANNER_LABEL,
    display_name_limit=DISPLAY_NAME_LIMIT
)


def _stored_mapping(headers: list):
    stored = db.get_column_mapping(header_fingerprint(headers))
    return ColumnMapping.from_dict(stored) if stored else None


def _parse_as_of(value):
    if not value:
        return None
    return datetime.strptime(value, "%Y-%m-%d").date()


def _download_name(value) -> str:
    name = secure_filename(value or "") or DEFAULT_EXPORT_FILENAME
    if not name.lower().endswith(".csv"):
        name = f"{name}.csv"
    return name


def _purge_expired_uploads() -> int:
    """Remove uploads unused for longer than the retention period"""
    if FILE_RETENTION_DAYS <= 0:
        return 0

    expired = db.list_expired_uploaded_files(FILE_RETENTION_DAYS)
    for file_meta in expired:
        cleanup_files([file_meta["stored_path"]])
        db.delete_uploaded_file(file_meta["id"])

    if expired:
        logger.info(f"Removed {len(expired)} expired uploads")
    return len(expired)


@app.route('/api/upload', methods=['POST'])
def upload_file():
    """Upload a membership spreadsheet and suggest a column mapping"""
    try:
        saved_path, original_name = save_uploaded_file(request, UPLOAD_FOLDER)
    except ValueError as e:
        logger.error(f"Upload error: {e}")
        return jsonify({"success": False, "error": str(e)}), 400

    try:
        rows, headers = read_rows(saved_path)
    except SheetReadError as e:
        cleanup_files([saved_path])
        return jsonify({"success": False, "error": str(e), "headers": [], "rowCount": 0}), 400

    try:
        _purge_expired_uploads()

        file_id = str(uuid.uuid4())
        file_size = os.path.getsize(saved_path) if os.path.exists(saved_path) else 0
        db.save_uploaded_file(file_id, original_name, saved_path, file_size, len(rows), headers)

        mapping, source = resolve_mapping(headers, _stored_mapping(headers))

        return jsonify({
            "success": True,
            "fileId": file_id,
            "fileName": original_name,
            "headers": headers,
            "rowCount": len(rows),
            "mapping": mapping.to_dict(),
            "mappingSource": source
        }), 200
    except Exception as e:
        logger.error(f"Upload error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/files', methods=['GET'])
def list_uploaded_files():
    """List previously uploaded files"""
    try:
        limit = request.args.get('limit', 100, type=int)
        files = db.list_uploaded_files(limit)

        return jsonify({
            "success": True,
            "files": [
                {
                    "id": f["id"],
                    "originalName": f["original_name"],
                    "fileSize": f["file_size"],
                    "rowCount": f["row_count"],
                    "uploadedAt": f["uploaded_at"],
                    "lastUsedAt": f["last_used_at"]
                }
                for f in files
            ]
        }), 200
    except Exception as e:
        logger.error(f"List files error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/files/<file_id>', methods=['DELETE'])
def delete_uploaded_file(file_id: str):
    """Delete a stored upload and its spreadsheet"""
    try:
        file_meta = db.get_uploaded_file(file_id)
        if not file_meta:
            return jsonify({"success": False, "error": "File not found"}), 404

        if os.path.exists(file_meta["stored_path"]):
            cleanup_files([file_meta["stored_path"]])

        if db.delete_uploaded_file(file_id):
            return jsonify({"success": True}), 200
        return jsonify({"success": False, "error": "Could not delete file"}), 500
    except Exception as e:
        logger.error(f"Delete file error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/files/<file_id>/mapping', methods=['GET'])
def get_file_mapping(file_id: str):
    """Get the column mapping to offer for a stored upload"""
    try:
        file_meta = db.get_uploaded_file(file_id)
        if not file_meta:
            return jsonify({"success": False, "error": "File not found"}), 404

        headers = file_meta["headers"]
        mapping, source = resolve_mapping(headers, _stored_mapping(headers))
        return jsonify({
            "success": True,
            "headers": headers,
            "mapping": mapping.to_dict(),
            "mappingSource": source
        }), 200
    except Exception as e:
        logger.error(f"Get mapping error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/mappings', methods=['PUT'])
def save_mapping():
    """Remember the column mapping for a set of headers"""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict) or not isinstance(data.get("mapping") or {}, dict):
            return jsonify({"success": False, "error": "Request body must be a JSON object"}), 400

        headers = data.get("headers")
        if not headers or not isinstance(headers, list):
            return jsonify({"success": False, "error": "Headers required"}), 400

        mapping = ColumnMapping.from_dict(data.get("mapping"))
        db.save_column_mapping(header_fingerprint(headers), mapping.to_dict())
        return jsonify({"success": True, "mapping": mapping.to_dict()}), 200
    except Exception as e:
        logger.error(f"Save mapping error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/export', methods=['POST'])
def export_adherents():
    """Run the export for a stored upload"""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"success": False, "error": "Request body must be a JSON object"}), 400

    file_id = data.get("fileId")
    if not file_id:
        return jsonify({"success": False, "error": "No file provided"}), 400

    raw_mapping = data.get("mapping")
    if raw_mapping is not None and not isinstance(raw_mapping, dict):
        return jsonify({"success": False, "error": "Mapping must be a JSON object"}), 400

    mapping = ColumnMapping.from_dict(raw_mapping)
    if not mapping.is_complete():
        return jsonify({"success": False, "error": INCOMPLETE_MAPPING_MESSAGE}), 400

    try:
        as_of = _parse_as_of(data.get("asOf"))
    except (ValueError, TypeError):
        return jsonify({"success": False, "error": "Invalid asOf date, expected YYYY-MM-DD"}), 400

    try:
        file_meta = db.get_uploaded_file(file_id)
        if not file_meta:
            return jsonify({"success": False, "error": "File not found"}), 404

        try:
            output = export_service.export_file(file_meta["stored_path"], mapping, as_of=as_of)
        except (IncompleteMappingError, SheetReadError) as e:
            return jsonify({"success": False, "error": str(e)}), 400

        result = output["result"]
        details = export_service.describe_result(result)
        download_name = _download_name(data.get("filename"))

        db.update_file_last_used(file_id)
        db.save_column_mapping(header_fingerprint(file_meta["headers"]), mapping.to_dict())
        export_id = db.create_export(
            file_id,
            download_name,
            output["output_filename"],
            format_date(as_of or date.today()),
            mapping.to_dict(),
            details["summary"],
            details["overflow"]
        )

        logger.info(f"Export {export_id} completed: {result.exported} adherents")

        return jsonify({
            "success": True,
            "exportId": export_id,
            "fileName": download_name,
            "summary": details["summary"],
            "overflow": details["overflow"],
            "statusMessage": details["statusMessage"],
            "downloadUrl": f"/api/exports/{export_id}/download"
        }), 200
    except Exception as e:
        logger.error(f"Export error: {e}", exc_info=True)
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/exports', methods=['GET'])
def list_exports():
    """List past exports"""
    try:
        limit = request.args.get('limit', 50, type=int)
        exports = db.list_exports(limit)

        return jsonify({
            "success": True,
            "exports": [
                {
                    "id": export["id"],
                    "createdAt": export["created_at"],
                    "fileName": export["download_name"],
                    "asOf": export["as_of"],
                    "summary": export["summary"]
                }
                for export in exports
            ]
        }), 200
    except Exception as e:
        logger.error(f"List exports error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/exports/<export_id>', methods=['GET'])
def get_export(export_id: str):
    """Get export details"""
    try:
        export = db.get_export(export_id)
        if not export:
            return jsonify({"success": False, "error": "Export not found"}), 404

        return jsonify({
            "success": True,
            "export": {
                "id": export["id"],
                "createdAt": export["created_at"],
                "fileId": export["file_id"],
                "fileName": export["download_name"],
                "asOf": export["as_of"],
                "mapping": export["mapping"],
                "summary": export["summary"],
                "overflow": export["overflow"],
                "downloadUrl": f"/api/exports/{export_id}/download"
            }
        }), 200
    except Exception as e:
        logger.error(f"Get export error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/exports/<export_id>/download', methods=['GET'])
def download_export(export_id: str):
    """Download the exported CSV"""
    try:
        export = db.get_export(export_id)
        if not export:
            return jsonify({"success": False, "error": "Export not found"}), 404

        output_file = export_service.results_folder / export["output_filename"]
        if not output_file.exists():
            return jsonify({"success": False, "error": "File not found"}), 404

        return send_file(
            str(output_file),
            mimetype='text/csv',
            as_attachment=True,
            download_name=export["download_name"]
        )
    except Exception as e:
        logger.error(f"Download error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/exports/<export_id>', methods=['DELETE'])
def delete_export(export_id: str):
    """Delete an export and its CSV"""
    try:
        export = db.get_export(export_id)
        if not export:
            return jsonify({"success": False, "error": "Export not found"}), 404

        output_file = export_service.results_folder / export["output_filename"]
        if output_file.exists():
            output_file.unlink()

        if db.delete_export(export_id):
            return jsonify({"success": True}), 200
        return jsonify({"success": False, "error": "Could not delete export"}), 500
    except Exception as e:
        logger.error(f"Delete export error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({"status": "healthy", "database": db.check_database_health()}), 200

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5000)
