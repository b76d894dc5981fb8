"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the cache schema to the database.
    Idempotent: safe to run on every startup.
    """
    conn.execute("PRAGMA foreign_keys=ON;")
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. One row per library item, keyed by the source's stable identifier
        # A row is never 'scanned' without an exact hash.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS assets (
            asset_id             TEXT PRIMARY KEY,
            creation_date        TEXT,
            pixel_width          INTEGER NOT NULL DEFAULT 0,
            pixel_height         INTEGER NOT NULL DEFAULT 0,
            byte_count           INTEGER NOT NULL DEFAULT 0,
            media_subtypes       INTEGER NOT NULL DEFAULT 0,
            resources            TEXT NOT NULL DEFAULT '',
            status               TEXT NOT NULL DEFAULT 'pending'
                                 CHECK (status IN ('pending', 'scanned', 'failed')),
            exact_hash           TEXT,
            perceptual_signature TEXT,
            measured_byte_count  INTEGER,
            failure_reason       TEXT,
            last_scanned_at      TEXT,
            CHECK (status <> 'scanned' OR exact_hash IS NOT NULL)
        );
        """)

        # 3. Issues found for an asset during its last completed scan
        conn.execute("""
        CREATE TABLE IF NOT EXISTS asset_issues (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            asset_id            TEXT NOT NULL,
            issue_type          TEXT NOT NULL,
            severity            INTEGER NOT NULL,
            detected_at         TEXT NOT NULL,
            file_size           INTEGER,
            error_message       TEXT,
            duplicate_group_id  TEXT,
            can_recover         INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(asset_id) REFERENCES assets(asset_id) ON DELETE CASCADE
        );
        """)

        # 4. Library-level sync state
        conn.execute("""
        CREATE TABLE IF NOT EXISTS sync_metadata (
            key             TEXT PRIMARY KEY,
            token           TEXT,
            last_sync_at    TEXT,
            schema_version  INTEGER NOT NULL
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_assets_status ON assets(status);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_assets_exact_hash ON assets(exact_hash);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_asset_issues_asset_id ON asset_issues(asset_id);")

    logging.debug("Cache schema initialized.")
