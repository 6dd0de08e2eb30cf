"""
Handle spreadsheet uploads for the web app.
"""
import os
import uuid
from pathlib import Path
from typing import List, Tuple
from werkzeug.utils import secure_filename
from flask import Request
import logging

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'xlsx', 'xls', 'csv'}

def allowed_file(filename: str) -> bool:
    """Check if file extension is allowed"""
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS

def save_uploaded_file(request: Request, upload_folder: Path) -> Tuple[str, str]:
    """
    Save the uploaded spreadsheet to disk.

    Returns:
        Tuple of (saved_file_path, original_filename)
    """
    if 'file' not in request.files:
        raise ValueError("No file in request")

    file = request.files['file']

    if not file or file.filename == '':
        raise ValueError("No file selected")

    if not allowed_file(file.filename):
        raise ValueError(f"Invalid file: {file.filename}")

    # Generate unique filename to avoid conflicts
    file_ext = file.filename.rsplit('.', 1)[1].lower()
    original_name = secure_filename(file.filename)
    if not original_name.lower().endswith(f".{file_ext}"):
        original_name = f"upload.{file_ext}"
    unique_name = f"{uuid.uuid4()}.{file_ext}"

    file_path = upload_folder / unique_name
    file.save(str(file_path))
    logger.info(f"Saved uploaded file: {original_name} -> {file_path}")

    return str(file_path), original_name

def cleanup_files(file_paths: List[str]):
    """Delete stored files"""
    for path in file_paths:
        try:
            os.remove(path)
            logger.info(f"Deleted file: {path}")
        except OSError as e:
            logger.warning(f"Could not delete file {path}: {e}")
