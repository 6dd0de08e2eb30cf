"""
Configuration settings for the adherent export backend.
"""
import os
from pathlib import Path

# Base directories
BASE_DIR = Path(__file__).parent.parent
BACKEND_DIR = BASE_DIR / "backend"
DATA_DIR = Path(os.environ.get("ADHERENT_EXPORT_DATA_DIR", BACKEND_DIR / "data"))

# Database
DATABASE_PATH = DATA_DIR / "app.db"

# File storage
UPLOAD_FOLDER = DATA_DIR / "uploads"
RESULTS_FOLDER = DATA_DIR / "results"
UPLOAD_FOLDER.mkdir(parents=True, exist_ok=True)
RESULTS_FOLDER.mkdir(parents=True, exist_ok=True)

# Flask settings
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
DEBUG = os.environ.get("FLASK_DEBUG", "False").lower() == "true"

# CORS settings
CORS_ORIGINS = ["http://localhost:4200", "http://localhost:5173"]  # Frontend dev servers

# Max file size (20MB)
MAX_CONTENT_LENGTH = 20 * 1024 * 1024

# Export defaults
DEFAULT_EXPORT_FILENAME = os.environ.get("ADHERENT_EXPORT_FILENAME", "adherent.csv")
BANNER_LABEL = os.environ.get("ADHERENT_EXPORT_BANNER_LABEL", "Base de données")
DISPLAY_NAME_LIMIT = int(os.environ.get("ADHERENT_EXPORT_NAME_LIMIT", "32"))

# Uploads not used for this many days are removed (0 keeps them forever)
FILE_RETENTION_DAYS = int(os.environ.get("ADHERENT_EXPORT_RETENTION_DAYS", "7"))
