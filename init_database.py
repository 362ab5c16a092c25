#!/usr/bin/env python3
"""
Initialize the Meme Annotator database
"""
import sqlite3
from pathlib import Path

from config import get_db_path

def init_database(db_path=None):
    """Create the database and tables if they don't exist"""
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    # Create annotated_memes table (base columns)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS annotated_memes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            file_name TEXT,
            uploaded_meme_url TEXT,
            ocr_text TEXT,
            explanation TEXT,
            context TEXT,
            heroes TEXT NOT NULL DEFAULT '[]',
            villains TEXT NOT NULL DEFAULT '[]',
            victims TEXT NOT NULL DEFAULT '[]',
            other_roles TEXT NOT NULL DEFAULT '[]',
            sentiment TEXT,
            genre TEXT,
            annotation_status TEXT NOT NULL DEFAULT 'uploaded',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    # Runtime-safe column migrations
    cursor.execute("PRAGMA table_info(annotated_memes)")
    meme_cols = {row[1] for row in cursor.fetchall()}
    if 'file_path' not in meme_cols:
        cursor.execute("ALTER TABLE annotated_memes ADD COLUMN file_path TEXT")
    if 'file_hash' not in meme_cols:
        cursor.execute("ALTER TABLE annotated_memes ADD COLUMN file_hash TEXT")

    # Indexes for status batch scopes and duplicate detection
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_annotation_status ON annotated_memes(annotation_status)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_file_hash ON annotated_memes(file_hash)
    """)

    conn.commit()
    conn.close()
    return Path(db_path).resolve()

if __name__ == "__main__":
    path = init_database()
    print(f"✅ Database initialized at: {path}")
    print("📊 Tables ensured:")
    print("   - annotated_memes: id, file_name, file_path, file_hash, uploaded_meme_url, ocr_text, explanation, context, "
          "heroes, villains, victims, other_roles, sentiment, genre, annotation_status, created_at, updated_at")
