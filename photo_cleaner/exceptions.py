"""
Custom exception hierarchy for the photo cleaner.

Per-asset problems (AssetReadError) are recovered at the asset granularity by
the scan loop; source and storage problems abort the running pass.
"""


class PhotoCleanerError(Exception):
    """Base exception for all photo cleaner errors."""
    pass


class SourceUnavailableError(PhotoCleanerError):
    """Raised when the asset source cannot be listed or opened at all."""
    pass


class AssetReadError(PhotoCleanerError):
    """Raised when the resource bytes of a single asset cannot be read."""

    def __init__(self, asset_id: str, reason: str):
        super().__init__(f"{asset_id}: {reason}")
        self.asset_id = asset_id
        self.reason = reason


class DatabaseError(PhotoCleanerError):
    """Raised when cache database operations fail."""
    pass
