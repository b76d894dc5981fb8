"""
Coarse partitioning of assets for duplicate comparison.

Copies of the same photo are almost always taken in the same capture session
at the same camera resolution, so only assets sharing an ISO week and a
resolution band are ever compared with each other.
"""
from collections import defaultdict
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, NamedTuple, Optional

from .. import config
from ..models import AssetMetadata


class BucketKey(NamedTuple):
    time_window: str
    resolution_band: str

    def __str__(self) -> str:
        return f"{self.time_window}_{self.resolution_band}"


def time_window(creation_date: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    """ISO year-week of the capture date in the given zone; naive dates are taken as local to it."""
    if creation_date is None:
        return config.UNKNOWN_TIME_WINDOW
    if tz is not None and creation_date.tzinfo is not None:
        creation_date = creation_date.astimezone(tz)
    iso = creation_date.isocalendar()
    return f"{iso.year}-W{iso.week:02d}"


def resolution_band(pixel_width: int, pixel_height: int) -> str:
    pixels = pixel_width * pixel_height
    if pixels < config.LOW_RESOLUTION_LIMIT:
        return 'low'
    if pixels < config.HIGH_RESOLUTION_LIMIT:
        return 'medium'
    return 'high'


def bucket_key(asset: AssetMetadata, tz: Optional[tzinfo] = None) -> BucketKey:
    return BucketKey(
        time_window(asset.creation_date, tz),
        resolution_band(asset.pixel_width, asset.pixel_height),
    )


def bucket_assets(assets: Iterable, tz: Optional[tzinfo] = None, key=lambda a: a) -> Dict[BucketKey, List]:
    """
    Partitions items into buckets, sorted by key, members sorted by asset id.
    `key` maps an item to its AssetMetadata.
    """
    buckets: Dict[BucketKey, List] = defaultdict(list)
    for item in assets:
        buckets[bucket_key(key(item), tz)].append(item)
    return {
        k: sorted(members, key=lambda m: key(m).asset_id)
        for k, members in sorted(buckets.items())
    }
