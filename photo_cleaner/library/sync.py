import logging
from dataclasses import dataclass, field
from typing import List

from ..database.cache import PersistentAssetCache
from .source import AssetSource


@dataclass
class SyncReport:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class LibrarySyncCoordinator:
    """
    Reconciles the cache with the library's current identifier set.
    New ids become pending rows; ids gone from the library are dropped along
    with their issues. Running it twice without library changes is a no-op.
    """

    def __init__(self, source: AssetSource, cache: PersistentAssetCache):
        self.source = source
        self.cache = cache

    def sync(self) -> SyncReport:
        library_ids = self.source.list_all_identifiers()
        cached_ids = self.cache.fetch_all_identifiers()

        new_ids = sorted(library_ids - cached_ids)
        removed_ids = sorted(cached_ids - library_ids)

        report = SyncReport()
        if new_ids:
            # Bulk fetch for just the new ids; vanished ones are simply omitted
            metadata = self.source.fetch_metadata(new_ids)
            self.cache.insert_new_assets(metadata)
            report.added = [m.asset_id for m in metadata]

        if removed_ids:
            self.cache.delete_assets(removed_ids)
            report.removed = removed_ids

        token = self.source.current_change_token()
        if token is not None:
            self.cache.save_sync_token(token)

        logging.info(f"Library sync: {len(report.added)} added, {len(report.removed)} removed, "
                     f"{len(library_ids)} in library.")
        return report
