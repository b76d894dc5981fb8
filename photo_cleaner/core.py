import logging
import sqlite3
from pathlib import Path
from typing import Iterator, List, Optional

from .database.cache import PersistentAssetCache
from .database.db import DBManager
from .library.source import AssetSource, DeletionResult
from .library.sync import LibrarySyncCoordinator, SyncReport
from .models import ScanOptions, ScanResult
from .scanning.events import CancellationToken, ScanUpdate
from .scanning.orchestrator import ScanOrchestrator, ScanSession


class PhotoCleanerApp:
    """
    Wires a library, the cache database and the scanner together.
    Holds one connection for its lifetime; use as a context manager.
    """

    def __init__(self, db_path: Path, source: AssetSource, max_workers: Optional[int] = None):
        self.db_manager = DBManager(db_path)
        self.source = source
        self.max_workers = max_workers
        self._cache: Optional[PersistentAssetCache] = None
        self._orchestrator: Optional[ScanOrchestrator] = None

    @property
    def cache(self) -> PersistentAssetCache:
        if self._cache is None:
            conn: sqlite3.Connection = self.db_manager.connect()
            self._cache = PersistentAssetCache(conn, self.db_manager.write_lock)
        return self._cache

    @property
    def orchestrator(self) -> ScanOrchestrator:
        if self._orchestrator is None:
            kwargs = {'max_workers': self.max_workers} if self.max_workers else {}
            self._orchestrator = ScanOrchestrator(self.source, self.cache, **kwargs)
        return self._orchestrator

    def sync(self) -> SyncReport:
        return LibrarySyncCoordinator(self.source, self.cache).sync()

    def scan(self, options: Optional[ScanOptions] = None,
             token: Optional[CancellationToken] = None) -> Iterator[ScanUpdate]:
        """
        One pass. Incremental passes sync the cache with the library first so
        that new assets are pending and removed ones are gone.
        """
        options = options or ScanOptions()
        if options.incremental:
            # The sync must not race a background pass still writing the cache
            self.orchestrator.shutdown()
            self.sync()
        return self.orchestrator.scan(options, token)

    def start_scan(self, options: Optional[ScanOptions] = None) -> ScanSession:
        options = options or ScanOptions()
        if options.incremental:
            self.orchestrator.shutdown()
            self.sync()
        return self.orchestrator.start_scan(options)

    def delete_duplicates(self, result: ScanResult, dry_run: bool = False) -> DeletionResult:
        """
        Deletes every non-original member of the result's duplicate groups
        through the library, then resyncs so the cache forgets them.
        """
        doomed: List[str] = sorted({i for g in result.duplicate_groups for i in g.duplicate_ids})
        if not doomed:
            logging.info("No duplicates to delete.")
            return DeletionResult()

        if dry_run:
            for group in result.duplicate_groups:
                for asset_id in group.duplicate_ids:
                    logging.info(f"[DRY RUN] Would delete {asset_id} (keeping {group.original_id})")
            return DeletionResult()

        outcome = self.source.delete_assets(doomed)
        logging.info(f"Deleted {len(outcome.deleted)} duplicates, {len(outcome.failed)} failed.")
        self.sync()
        return outcome

    def close(self):
        if self._orchestrator is not None:
            self._orchestrator.shutdown()
        self.db_manager.close()
        self._cache = None
        self._orchestrator = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
