import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Optional, List, Dict, Iterable, Set, Tuple, Mapping

from .. import config
from ..exceptions import DatabaseError
from ..models import (
    AssetMetadata,
    AssetSignature,
    CacheRecord,
    IssueSeverity,
    IssueType,
    PhotoIssue,
    ResourceKind,
    ScanStatus,
)
from .schema import CURRENT_SCHEMA_VERSION

_ASSET_COLUMNS = """
    asset_id, creation_date, pixel_width, pixel_height, byte_count, media_subtypes, resources,
    status, exact_hash, perceptual_signature, measured_byte_count, failure_reason, last_scanned_at
"""


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _encode_resources(resources: Iterable[ResourceKind]) -> str:
    return ",".join(kind.value for kind in resources)


def _decode_resources(raw: str) -> Tuple[ResourceKind, ...]:
    return tuple(ResourceKind(part) for part in raw.split(",") if part)


class PersistentAssetCache:
    """
    Durable per-asset scan state: metadata, status, signature, issues and the
    library sync token. At most one row per asset id.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self._lock = lock or threading.RLock()

    @contextmanager
    def _transaction(self):
        with self._lock:
            try:
                with self.conn:
                    yield self.conn.cursor()
            except sqlite3.Error as e:
                raise DatabaseError(f"Cache write failed: {e}") from e

    # --- Reads ---

    def fetch_all_identifiers(self) -> Set[str]:
        with self._lock:
            cur = self.conn.execute("SELECT asset_id FROM assets")
            return {row[0] for row in cur.fetchall()}

    def count(self, status: Optional[ScanStatus] = None) -> int:
        with self._lock:
            if status is None:
                cur = self.conn.execute("SELECT COUNT(*) FROM assets")
            else:
                cur = self.conn.execute("SELECT COUNT(*) FROM assets WHERE status = ?", (status.value,))
            return cur.fetchone()[0]

    def fetch_record(self, asset_id: str) -> Optional[CacheRecord]:
        with self._lock:
            cur = self.conn.execute(f"SELECT {_ASSET_COLUMNS} FROM assets WHERE asset_id = ?", (asset_id,))
            row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def fetch_records(self, status: Optional[ScanStatus] = None) -> List[CacheRecord]:
        """All rows (or rows in one status), ordered by asset id."""
        with self._lock:
            if status is None:
                cur = self.conn.execute(f"SELECT {_ASSET_COLUMNS} FROM assets ORDER BY asset_id")
            else:
                cur = self.conn.execute(
                    f"SELECT {_ASSET_COLUMNS} FROM assets WHERE status = ? ORDER BY asset_id",
                    (status.value,),
                )
            rows = cur.fetchall()
        return [self._row_to_record(r) for r in rows]

    def fetch_pending(self, limit: Optional[int] = None) -> List[CacheRecord]:
        records = self.fetch_records(ScanStatus.PENDING)
        return records[:limit] if limit is not None else records

    def fetch_scanned_signatures(self) -> Dict[str, AssetSignature]:
        with self._lock:
            cur = self.conn.execute("""
                SELECT asset_id, exact_hash, perceptual_signature, measured_byte_count
                FROM assets WHERE status = 'scanned'
            """)
            rows = cur.fetchall()
        return {
            asset_id: AssetSignature(exact_hash, phash, measured or 0)
            for asset_id, exact_hash, phash, measured in rows
        }

    def fetch_issues(self, asset_ids: Optional[Iterable[str]] = None) -> List[PhotoIssue]:
        query = """
            SELECT asset_id, issue_type, severity, detected_at, file_size, error_message,
                   duplicate_group_id, can_recover
            FROM asset_issues
        """
        with self._lock:
            if asset_ids is None:
                rows = self.conn.execute(query + " ORDER BY asset_id, id").fetchall()
            else:
                wanted = list(asset_ids)
                rows = []
                # Stay under SQLite's bound-parameter limit
                for start in range(0, len(wanted), 500):
                    chunk = wanted[start:start + 500]
                    placeholders = ",".join("?" * len(chunk))
                    rows.extend(self.conn.execute(
                        query + f" WHERE asset_id IN ({placeholders}) ORDER BY asset_id, id", chunk
                    ).fetchall())
        return [
            PhotoIssue(
                asset_id=asset_id,
                issue_type=IssueType(issue_type),
                severity=IssueSeverity(severity),
                file_size=file_size,
                error_message=error_message,
                duplicate_group_id=group_id,
                can_recover=bool(can_recover),
                detected_at=_from_iso(detected_at),
            )
            for asset_id, issue_type, severity, detected_at, file_size, error_message, group_id, can_recover in rows
        ]

    # --- Writes ---

    def insert_new_assets(self, assets: Iterable[AssetMetadata]) -> int:
        """
        Upserts metadata rows. New ids start as pending; existing rows keep
        their status and signature.
        """
        count = 0
        with self._transaction() as cur:
            for meta in assets:
                self._upsert_metadata(cur, meta)
                count += 1
        return count

    def delete_assets(self, asset_ids: Iterable[str]) -> int:
        """Deletes rows; their issues go with them (ON DELETE CASCADE)."""
        ids = list(asset_ids)
        with self._transaction() as cur:
            cur.executemany("DELETE FROM assets WHERE asset_id = ?", [(i,) for i in ids])
        return len(ids)

    def update_scan_result(self,
                           asset_id: str,
                           signature: AssetSignature,
                           issues: Iterable[PhotoIssue] = ()) -> bool:
        """
        Marks one asset scanned with its signature and replaces its issues,
        in a single transaction. Returns False if the row does not exist.
        """
        with self._transaction() as cur:
            return self._write_scan_result(cur, asset_id, signature, list(issues), datetime.now(UTC))

    def mark_failed(self, asset_id: str, reason: str) -> bool:
        with self._transaction() as cur:
            return self._write_failure(cur, asset_id, reason, datetime.now(UTC))

    def persist_pass(self,
                     metadata: Iterable[AssetMetadata],
                     signatures: Mapping[str, AssetSignature],
                     failures: Mapping[str, str],
                     issues: Mapping[str, List[PhotoIssue]]):
        """
        Stores everything a completed pass learned, atomically: metadata rows,
        signatures of scanned assets, failures, and the current issues of
        every scanned asset.
        """
        now = datetime.now(UTC)
        with self._transaction() as cur:
            for meta in metadata:
                self._upsert_metadata(cur, meta)
            for asset_id, signature in signatures.items():
                self._write_scan_result(cur, asset_id, signature, issues.get(asset_id, []), now)
            for asset_id, reason in failures.items():
                self._write_failure(cur, asset_id, reason, now)
        logging.debug(f"Persisted {len(signatures)} scanned and {len(failures)} failed assets.")

    def save_sync_token(self, token: str):
        now_iso = datetime.now(UTC).isoformat()
        with self._transaction() as cur:
            cur.execute("""
                INSERT INTO sync_metadata (key, token, last_sync_at, schema_version)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET token = excluded.token, last_sync_at = excluded.last_sync_at
            """, (config.SYNC_TOKEN_KEY, token, now_iso, CURRENT_SCHEMA_VERSION))

    def fetch_sync_token(self) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "SELECT token FROM sync_metadata WHERE key = ?", (config.SYNC_TOKEN_KEY,)
            ).fetchone()
        return row[0] if row else None

    def last_sync_at(self) -> Optional[datetime]:
        with self._lock:
            row = self.conn.execute(
                "SELECT last_sync_at FROM sync_metadata WHERE key = ?", (config.SYNC_TOKEN_KEY,)
            ).fetchone()
        return _from_iso(row[0]) if row else None

    def clear_all(self):
        with self._transaction() as cur:
            cur.execute("DELETE FROM asset_issues")
            cur.execute("DELETE FROM assets")
            cur.execute("DELETE FROM sync_metadata")
        logging.info("Cache cleared.")

    # --- Helpers ---

    def _upsert_metadata(self, cur: sqlite3.Cursor, meta: AssetMetadata):
        cur.execute("""
            INSERT INTO assets (asset_id, creation_date, pixel_width, pixel_height, byte_count,
                                media_subtypes, resources, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending')
            ON CONFLICT(asset_id) DO UPDATE SET
                creation_date = excluded.creation_date,
                pixel_width = excluded.pixel_width,
                pixel_height = excluded.pixel_height,
                byte_count = excluded.byte_count,
                media_subtypes = excluded.media_subtypes,
                resources = excluded.resources
        """, (
            meta.asset_id, _to_iso(meta.creation_date), meta.pixel_width, meta.pixel_height,
            meta.byte_count, meta.media_subtypes, _encode_resources(meta.resources),
        ))

    def _write_scan_result(self,
                           cur: sqlite3.Cursor,
                           asset_id: str,
                           signature: AssetSignature,
                           issues: List[PhotoIssue],
                           scanned_at: datetime) -> bool:
        if signature.exact_hash is None:
            raise ValueError(f"Cannot mark {asset_id} scanned without an exact hash")

        cur.execute("""
            UPDATE assets
            SET status = 'scanned', exact_hash = ?, perceptual_signature = ?, measured_byte_count = ?,
                failure_reason = NULL, last_scanned_at = ?
            WHERE asset_id = ?
        """, (signature.exact_hash, signature.perceptual_signature, signature.measured_byte_count,
              scanned_at.isoformat(), asset_id))
        if cur.rowcount == 0:
            logging.warning(f"No cache row for {asset_id}; scan result dropped.")
            return False

        cur.execute("DELETE FROM asset_issues WHERE asset_id = ?", (asset_id,))
        cur.executemany("""
            INSERT INTO asset_issues (asset_id, issue_type, severity, detected_at, file_size,
                                      error_message, duplicate_group_id, can_recover)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (asset_id, i.issue_type.value, int(i.severity), i.detected_at.isoformat(), i.file_size,
             i.error_message, i.duplicate_group_id, int(i.can_recover))
            for i in issues
        ])
        return True

    def _write_failure(self, cur: sqlite3.Cursor, asset_id: str, reason: str, scanned_at: datetime) -> bool:
        cur.execute("""
            UPDATE assets
            SET status = 'failed', failure_reason = ?, last_scanned_at = ?,
                exact_hash = NULL, perceptual_signature = NULL, measured_byte_count = NULL
            WHERE asset_id = ?
        """, (reason, scanned_at.isoformat(), asset_id))
        if cur.rowcount == 0:
            logging.warning(f"No cache row for {asset_id}; failure not recorded.")
            return False
        cur.execute("DELETE FROM asset_issues WHERE asset_id = ?", (asset_id,))
        return True

    @staticmethod
    def _row_to_record(row) -> CacheRecord:
        (asset_id, creation_date, width, height, byte_count, subtypes, resources,
         status, exact_hash, phash, measured, failure_reason, last_scanned_at) = row

        metadata = AssetMetadata(
            asset_id=asset_id,
            pixel_width=width,
            pixel_height=height,
            creation_date=_from_iso(creation_date),
            byte_count=byte_count,
            media_subtypes=subtypes,
            resources=_decode_resources(resources),
        )
        status = ScanStatus(status)
        signature = None
        if status == ScanStatus.SCANNED:
            signature = AssetSignature(exact_hash, phash, measured or 0)
        return CacheRecord(
            metadata=metadata,
            status=status,
            signature=signature,
            failure_reason=failure_reason,
            last_scanned_at=_from_iso(last_scanned_at),
        )
