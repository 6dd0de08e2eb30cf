"""
Database models and operations for the adherent export web app.
Uses SQLite for minimal storage footprint.
"""
import sqlite3
import json
import uuid
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

logger = logging.getLogger(__name__)

class Database:
    """SQLite database wrapper for uploads, column mapping preferences and export history"""

    def __init__(self, db_path: str = "backend/data/app.db", timeout: float = 20.0):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
            timeout: Connection timeout in seconds (default: 20.0)
        """
        self.db_path = Path(db_path)
        self.timeout = timeout

        # Ensure data directory exists and is writable
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        if not self._verify_database_path():
            raise RuntimeError(f"Cannot access database path: {self.db_path}")

        self.init_database()

    def _verify_database_path(self) -> bool:
        """Verify database path is accessible and writable"""
        test_file = self.db_path.parent / ".test_write"
        try:
            test_file.touch()
            test_file.unlink()
            return True
        except (OSError, PermissionError) as e:
            logger.error(f"Database path not writable: {e}")
            return False

    @contextmanager
    def get_connection(self):
        """
        Get database connection with proper configuration.
        Uses context manager to ensure connection is always closed.

        Enables:
        - WAL mode for better concurrency
        - Foreign key constraints for data integrity
        - Timeout to prevent indefinite hangs
        """
        conn = None
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout
            )
            conn.row_factory = sqlite3.Row

            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")

            yield conn
            conn.commit()
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Unexpected database error: {e}")
            raise
        finally:
            if conn:
                conn.close()

    def _execute_with_retry(self, operation, max_retries: int = 3, initial_delay: float = 0.1):
        """
        Execute database operation with retry logic for transient errors.

        Args:
            operation: Callable that performs the database operation
            max_retries: Maximum number of retry attempts
            initial_delay: Initial delay between retries in seconds

        Returns:
            Result of the operation
        """
        last_exception = None

        for attempt in range(max_retries):
            try:
                return operation()
            except sqlite3.OperationalError as e:
                error_msg = str(e).lower()
                # Retry on database locked or busy errors
                if "locked" in error_msg or "busy" in error_msg:
                    if attempt < max_retries - 1:
                        delay = initial_delay * (2 ** attempt)  # Exponential backoff
                        logger.warning(f"Database locked, retrying in {delay}s (attempt {attempt + 1}/{max_retries})")
                        time.sleep(delay)
                        last_exception = e
                        continue
                raise

        if last_exception:
            raise last_exception

    def init_database(self):
        """Initialize database schema"""
        def _init_schema(conn):
            cursor = conn.cursor()

            # Uploaded spreadsheets
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS uploaded_files (
                    id TEXT PRIMARY KEY,
                    original_name TEXT NOT NULL,
                    stored_path TEXT NOT NULL,
                    file_size INTEGER,
                    row_count INTEGER DEFAULT 0,
                    headers TEXT,
                    uploaded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    last_used_at TIMESTAMP
                )
            """)

            # Column mapping preferences, keyed by header-set fingerprint
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS column_mappings (
                    fingerprint TEXT PRIMARY KEY,
                    mapping TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Export history
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS exports (
                    id TEXT PRIMARY KEY,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    file_id TEXT,
                    download_name TEXT NOT NULL,
                    output_filename TEXT NOT NULL,
                    as_of TEXT,
                    mapping TEXT,
                    summary TEXT,
                    overflow TEXT,
                    FOREIGN KEY (file_id) REFERENCES uploaded_files(id) ON DELETE SET NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_uploaded_files_uploaded_at ON uploaded_files(uploaded_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_exports_created_at ON exports(created_at)")

        try:
            with self.get_connection() as conn:
                _init_schema(conn)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    # Uploaded file methods
    def save_uploaded_file(self, file_id: str, original_name: str, stored_path: str,
                           file_size: int, row_count: int, headers: List[str]) -> None:
        """Save uploaded file metadata"""
        def _save_file(conn):
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO uploaded_files (id, original_name, stored_path, file_size, row_count, headers)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (file_id, original_name, stored_path, file_size, row_count, json.dumps(headers)))

        try:
            with self.get_connection() as conn:
                self._execute_with_retry(lambda: _save_file(conn))
            logger.debug(f"Saved uploaded file: {file_id}")
        except Exception as e:
            logger.error(f"Failed to save uploaded file {file_id}: {e}")
            raise

    def get_uploaded_file(self, file_id: str) -> Optional[Dict]:
        """Get uploaded file metadata"""
        def _get_file(conn):
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM uploaded_files WHERE id = ?", (file_id,))
            row = cursor.fetchone()
            if not row:
                return None
            file_dict = dict(row)
            file_dict["headers"] = json.loads(file_dict["headers"]) if file_dict["headers"] else []
            return file_dict

        try:
            with self.get_connection() as conn:
                return _get_file(conn)
        except Exception as e:
            logger.error(f"Failed to get uploaded file {file_id}: {e}")
            raise

    def list_uploaded_files(self, limit: int = 100) -> List[Dict]:
        """List uploaded files, most recent first"""
        def _list_files(conn):
            cursor = conn.cursor()
            cursor.execute("""
                SELECT id, original_name, stored_path, file_size, row_count, uploaded_at, last_used_at
                FROM uploaded_files
                ORDER BY uploaded_at DESC
                LIMIT ?
            """, (limit,))
            return [dict(row) for row in cursor.fetchall()]

        try:
            with self.get_connection() as conn:
                return _list_files(conn)
        except Exception as e:
            logger.error(f"Failed to list uploaded files: {e}")
            raise

    def update_file_last_used(self, file_id: str) -> None:
        """Update last_used_at timestamp for a file"""
        def _update_timestamp(conn):
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE uploaded_files
                SET last_used_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (file_id,))

        try:
            with self.get_connection() as conn:
                self._execute_with_retry(lambda: _update_timestamp(conn))
            logger.debug(f"Updated last_used_at for file: {file_id}")
        except Exception as e:
            logger.error(f"Failed to update last_used_at for file {file_id}: {e}")
            raise

    def delete_uploaded_file(self, file_id: str) -> bool:
        """Delete uploaded file record"""
        def _delete_file(conn):
            cursor = conn.cursor()
            cursor.execute("DELETE FROM uploaded_files WHERE id = ?", (file_id,))
            return cursor.rowcount > 0

        try:
            with self.get_connection() as conn:
                deleted = self._execute_with_retry(lambda: _delete_file(conn))
            if deleted:
                logger.debug(f"Deleted uploaded file: {file_id}")
            return deleted
        except Exception as e:
            logger.error(f"Failed to delete uploaded file {file_id}: {e}")
            raise

    def list_expired_uploaded_files(self, retention_days: int) -> List[Dict]:
        """List uploads neither uploaded nor used within the last retention_days"""
        def _list_expired(conn):
            cursor = conn.cursor()
            cursor.execute("""
                SELECT id, stored_path
                FROM uploaded_files
                WHERE COALESCE(last_used_at, uploaded_at) < datetime('now', ?)
            """, (f"-{int(retention_days)} days",))
            return [dict(row) for row in cursor.fetchall()]

        try:
            with self.get_connection() as conn:
                return _list_expired(conn)
        except Exception as e:
            logger.error(f"Failed to list expired uploaded files: {e}")
            raise

    # Column mapping preference methods
    def get_column_mapping(self, fingerprint: str) -> Optional[Dict[str, Optional[str]]]:
        """Get the stored column mapping for a header-set fingerprint"""
        def _get_mapping(conn):
            cursor = conn.cursor()
            cursor.execute("SELECT mapping FROM column_mappings WHERE fingerprint = ?", (fingerprint,))
            row = cursor.fetchone()
            return json.loads(row["mapping"]) if row else None

        try:
            with self.get_connection() as conn:
                return _get_mapping(conn)
        except Exception as e:
            logger.error(f"Failed to get column mapping: {e}")
            raise

    def save_column_mapping(self, fingerprint: str, mapping: Dict[str, Optional[str]]) -> None:
        """Store (or replace) the column mapping for a header-set fingerprint"""
        def _save_mapping(conn):
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO column_mappings (fingerprint, mapping, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(fingerprint) DO UPDATE SET
                    mapping = excluded.mapping,
                    updated_at = CURRENT_TIMESTAMP
            """, (fingerprint, json.dumps(mapping, ensure_ascii=False)))

        try:
            with self.get_connection() as conn:
                self._execute_with_retry(lambda: _save_mapping(conn))
            logger.debug(f"Saved column mapping for {fingerprint}")
        except Exception as e:
            logger.error(f"Failed to save column mapping: {e}")
            raise

    # Export history methods
    def create_export(self, file_id: Optional[str], download_name: str, output_filename: str,
                      as_of: str, mapping: Dict, summary: Dict, overflow: List[str]) -> str:
        """Record a completed export"""
        export_id = str(uuid.uuid4())

        def _create_export(conn):
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO exports (id, file_id, download_name, output_filename, as_of, mapping, summary, overflow)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                export_id,
                file_id,
                download_name,
                output_filename,
                as_of,
                json.dumps(mapping, ensure_ascii=False),
                json.dumps(summary),
                json.dumps(overflow, ensure_ascii=False),
            ))

        try:
            with self.get_connection() as conn:
                self._execute_with_retry(lambda: _create_export(conn))
            logger.debug(f"Created export: {export_id}")
            return export_id
        except Exception as e:
            logger.error(f"Failed to create export: {e}")
            raise

    @staticmethod
    def _export_from_row(row) -> Dict:
        export = dict(row)
        export["mapping"] = json.loads(export["mapping"]) if export.get("mapping") else None
        export["summary"] = json.loads(export["summary"]) if export.get("summary") else None
        export["overflow"] = json.loads(export["overflow"]) if export.get("overflow") else []
        return export

    def get_export(self, export_id: str) -> Optional[Dict]:
        """Get an export record"""
        def _get_export(conn):
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM exports WHERE id = ?", (export_id,))
            row = cursor.fetchone()
            return self._export_from_row(row) if row else None

        try:
            with self.get_connection() as conn:
                return _get_export(conn)
        except Exception as e:
            logger.error(f"Failed to get export {export_id}: {e}")
            raise

    def list_exports(self, limit: int = 50) -> List[Dict]:
        """List exports, most recent first"""
        def _list_exports(conn):
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM exports
                ORDER BY created_at DESC
                LIMIT ?
            """, (limit,))
            return [self._export_from_row(row) for row in cursor.fetchall()]

        try:
            with self.get_connection() as conn:
                return _list_exports(conn)
        except Exception as e:
            logger.error(f"Failed to list exports: {e}")
            raise

    def delete_export(self, export_id: str) -> bool:
        """Delete an export record"""
        def _delete_export(conn):
            cursor = conn.cursor()
            cursor.execute("DELETE FROM exports WHERE id = ?", (export_id,))
            return cursor.rowcount > 0

        try:
            with self.get_connection() as conn:
                deleted = self._execute_with_retry(lambda: _delete_export(conn))
            if deleted:
                logger.info(f"Deleted export: {export_id}")
            return deleted
        except Exception as e:
            logger.error(f"Failed to delete export {export_id}: {e}")
            raise

    def check_database_health(self) -> Dict[str, Any]:
        """
        Check database health and accessibility.

        Returns:
            Dictionary with health check results:
            - accessible: bool - True if database file is accessible
            - file_exists: bool - True if database file exists
            - file_size: int - Size of database file in bytes
            - table_counts: Dict[str, int] - Count of records in each table
        """
        health = {
            "accessible": False,
            "file_exists": self.db_path.exists(),
            "file_size": 0,
            "table_counts": {}
        }

        if not health["file_exists"]:
            return health

        health["file_size"] = self.db_path.stat().st_size

        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT 1")
                cursor.fetchone()
                health["accessible"] = True

                # Fixed table names; SQLite doesn't support parameterized table names
                for table in ("uploaded_files", "column_mappings", "exports"):
                    cursor.execute(f"SELECT COUNT(*) FROM {table}")
                    health["table_counts"][table] = cursor.fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Database health check failed: {e}")
            health["accessible"] = False

        return health
