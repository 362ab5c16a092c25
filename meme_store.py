"""
Meme Record Store: read/update access to the annotated_memes table.

Every update is a full-field overwrite keyed by meme id (last write wins).
"""
import json
import logging
import sqlite3

from config import get_db_path
from lifecycle import UPLOADED

logger = logging.getLogger(__name__)

TABLE = 'annotated_memes'

ROLE_FIELDS = ('heroes', 'villains', 'victims', 'other_roles')
TEXT_FIELDS = ('file_name', 'uploaded_meme_url', 'ocr_text', 'explanation', 'context',
               'sentiment', 'genre', 'annotation_status')
UPDATABLE_FIELDS = set(ROLE_FIELDS) | set(TEXT_FIELDS)

MEME_COLUMNS = ('id',) + TEXT_FIELDS + ROLE_FIELDS + ('file_path', 'created_at', 'updated_at')

class StoreError(Exception):
    """Raised when a read or write against the store fails."""

def _decode_roles(value):
    if not value:
        return []
    try:
        roles = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Unreadable role list in store: %r", value)
        return []
    return [str(r) for r in roles] if isinstance(roles, list) else []

def normalize_meme(row):
    """Turn a DB row (or partial dict) into a meme dict with no missing fields."""
    data = dict(row)
    meme = {'id': data.get('id')}
    for field in TEXT_FIELDS:
        meme[field] = data.get(field) or ''
    for field in ROLE_FIELDS:
        value = data.get(field)
        meme[field] = list(value) if isinstance(value, list) else _decode_roles(value)
    if not meme['annotation_status']:
        meme['annotation_status'] = UPLOADED
    for field in ('file_path', 'created_at', 'updated_at'):
        meme[field] = data.get(field)
    return meme

class MemeStore:
    """SQLite-backed store of annotated memes."""

    def __init__(self, db_path=None):
        self.db_path = db_path or get_db_path()

    def get_db_connection(self):
        """Get database connection"""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row

        # Unicode-aware LOWER for case-insensitive search (SQLite's only folds ASCII)
        conn.create_function("LOWER", 1, lambda s: s.lower() if s else s)
        return conn

    def list_memes(self):
        """Return every meme, oldest first."""
        try:
            conn = self.get_db_connection()
            try:
                rows = conn.execute(
                    f"SELECT {', '.join(MEME_COLUMNS)} FROM {TABLE} ORDER BY id"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load memes: {e}") from e
        return [normalize_meme(row) for row in rows]

    def get_meme(self, meme_id):
        """Return one meme or None."""
        try:
            conn = self.get_db_connection()
            try:
                row = conn.execute(
                    f"SELECT {', '.join(MEME_COLUMNS)} FROM {TABLE} WHERE id = ?",
                    (meme_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load meme {meme_id}: {e}") from e
        return normalize_meme(row) if row else None

    def update(self, meme_id, fields, table=TABLE):
        """Overwrite `fields` of the row matching `meme_id`."""
        if not fields:
            return
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise StoreError(f"Cannot update unknown field(s): {', '.join(sorted(unknown))}")

        columns = sorted(fields)
        values = []
        for column in columns:
            value = fields[column]
            if column in ROLE_FIELDS:
                value = json.dumps(list(value or []), ensure_ascii=False)
            values.append(value)
        assignments = ", ".join(f"{column} = ?" for column in columns)

        try:
            conn = self.get_db_connection()
            try:
                cursor = conn.execute(
                    f"UPDATE {table} SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    values + [meme_id]
                )
                conn.commit()
                matched = cursor.rowcount
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update meme {meme_id}: {e}") from e

        if not matched:
            raise StoreError(f"Meme {meme_id} not found")
        logger.debug("Updated meme %s: %s", meme_id, ", ".join(columns))

    def insert_meme(self, file_name, file_path, file_hash, uploaded_meme_url):
        """Create a new meme with status 'uploaded' and return its id."""
        try:
            conn = self.get_db_connection()
            try:
                cursor = conn.execute(
                    f"""
                    INSERT INTO {TABLE} (file_name, file_path, file_hash, uploaded_meme_url, annotation_status)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (file_name, file_path, file_hash, uploaded_meme_url, UPLOADED)
                )
                conn.commit()
                return cursor.lastrowid
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to insert meme {file_name}: {e}") from e

    def find_by_hash(self, file_hash):
        """Return the id of a meme with this content hash, or None."""
        try:
            conn = self.get_db_connection()
            try:
                row = conn.execute(
                    f"SELECT id FROM {TABLE} WHERE file_hash = ? LIMIT 1", (file_hash,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to look up file hash: {e}") from e
        return row['id'] if row else None

    def status_counts(self):
        """Return {status: count} for all memes."""
        try:
            conn = self.get_db_connection()
            try:
                rows = conn.execute(
                    f"SELECT annotation_status, COUNT(*) AS n FROM {TABLE} GROUP BY annotation_status"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count memes: {e}") from e
        return {row['annotation_status']: row['n'] for row in rows}
