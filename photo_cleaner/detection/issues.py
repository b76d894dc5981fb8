"""
Per-asset issue classifiers.

All functions are pure and work on metadata only; nothing here touches the
resource bytes or the network.
"""
from typing import Iterable, List, Optional

from .. import config
from ..models import (
    AssetMetadata,
    IssueSeverity,
    IssueType,
    LOCAL_RESOURCE_KINDS,
    MediaSubtype,
    PhotoIssue,
)


def estimate_byte_size(asset: AssetMetadata) -> Optional[int]:
    """
    Measured size when the source knows it, otherwise a heuristic from the
    pixel count (ESTIMATED_BYTES_PER_PIXEL). None when neither is known.
    """
    if asset.byte_count > 0:
        return asset.byte_count
    pixels = asset.pixel_width * asset.pixel_height
    if pixels <= 0:
        return None
    return int(pixels * config.ESTIMATED_BYTES_PER_PIXEL)


def detect_download_failure(asset: AssetMetadata) -> Optional[PhotoIssue]:
    # Nothing to inspect; corruption detection reports this case
    if not asset.resources:
        return None
    if any(kind in LOCAL_RESOURCE_KINDS for kind in asset.resources):
        return None

    remote_kinds = sorted({kind.value for kind in asset.resources})
    return PhotoIssue(
        asset_id=asset.asset_id,
        issue_type=IssueType.DOWNLOAD_FAILED,
        severity=IssueSeverity.WARNING,
        error_message=f"No local copy (remote only: {', '.join(remote_kinds)})",
        can_recover=True,
    )


def detect_corruption(asset: AssetMetadata) -> Optional[PhotoIssue]:
    if not asset.resources:
        message = "No resources found"
    elif asset.pixel_width == 0 or asset.pixel_height == 0:
        message = "Pixel size is zero"
    else:
        return None

    return PhotoIssue(
        asset_id=asset.asset_id,
        issue_type=IssueType.CORRUPTED,
        severity=IssueSeverity.CRITICAL,
        error_message=message,
    )


def detect_screenshot(asset: AssetMetadata) -> Optional[PhotoIssue]:
    if not asset.media_subtypes & MediaSubtype.SCREENSHOT:
        return None
    return PhotoIssue(
        asset_id=asset.asset_id,
        issue_type=IssueType.SCREENSHOT,
        severity=IssueSeverity.INFO,
        file_size=estimate_byte_size(asset),
        can_recover=True,
    )


def detect_large_file(asset: AssetMetadata, threshold: int) -> Optional[PhotoIssue]:
    size = estimate_byte_size(asset)
    if size is None or size < threshold:
        return None

    message = None
    if asset.byte_count <= 0:
        message = f"Estimated from pixel count at {config.ESTIMATED_BYTES_PER_PIXEL} bytes/pixel (heuristic)"
    return PhotoIssue(
        asset_id=asset.asset_id,
        issue_type=IssueType.LARGE_FILE,
        severity=IssueSeverity.INFO,
        file_size=size,
        error_message=message,
        can_recover=True,
    )


def detect_issues(asset: AssetMetadata,
                  large_file_threshold: int = config.DEFAULT_LARGE_FILE_THRESHOLD,
                  types: Optional[Iterable[IssueType]] = None) -> List[PhotoIssue]:
    """Runs every metadata classifier (or only `types`). Duplicates are found elsewhere."""
    wanted = set(types) if types is not None else set(IssueType)
    found = []
    if IssueType.DOWNLOAD_FAILED in wanted:
        found.append(detect_download_failure(asset))
    if IssueType.CORRUPTED in wanted:
        found.append(detect_corruption(asset))
    if IssueType.SCREENSHOT in wanted:
        found.append(detect_screenshot(asset))
    if IssueType.LARGE_FILE in wanted:
        found.append(detect_large_file(asset, large_file_threshold))
    return [issue for issue in found if issue is not None]
