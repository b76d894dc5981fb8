from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum, IntEnum, IntFlag
from typing import Optional, Tuple, List, Dict, Iterable

from . import config


class ResourceKind(Enum):
    PHOTO = 'photo'
    FULL_SIZE_PHOTO = 'full_size_photo'
    ALTERNATE_PHOTO = 'alternate_photo'
    ADJUSTMENT_BASE_PHOTO = 'adjustment_base_photo'
    ADJUSTMENT_DATA = 'adjustment_data'
    PHOTO_PROXY = 'photo_proxy'
    VIDEO = 'video'
    PAIRED_VIDEO = 'paired_video'
    AUDIO = 'audio'


# Resource kinds whose presence means the full image is on this device
LOCAL_RESOURCE_KINDS = frozenset({
    ResourceKind.PHOTO,
    ResourceKind.FULL_SIZE_PHOTO,
    ResourceKind.ALTERNATE_PHOTO,
    ResourceKind.ADJUSTMENT_BASE_PHOTO,
})


class MediaSubtype(IntFlag):
    NONE = 0
    PANORAMA = 1 << 0
    HDR = 1 << 1
    SCREENSHOT = 1 << 2
    LIVE_PHOTO = 1 << 3


@dataclass(frozen=True)
class AssetMetadata:
    """
    Immutable snapshot of one library item, taken fresh for every pass.
    A width/height of 0 means unknown or unreadable.
    """
    asset_id: str
    pixel_width: int
    pixel_height: int
    creation_date: Optional[datetime] = None
    byte_count: int = 0
    media_subtypes: int = 0
    resources: Tuple[ResourceKind, ...] = (ResourceKind.PHOTO,)

    @property
    def resolution(self) -> int:
        return self.pixel_width * self.pixel_height

    @property
    def megapixels(self) -> float:
        return self.resolution / 1_000_000


@dataclass(frozen=True)
class AssetSignature:
    """Expensive per-asset data derived from the resource bytes."""
    exact_hash: Optional[str]             # SHA-256 hex of the primary resource
    perceptual_signature: Optional[str]   # pHash hex; None if the image could not be decoded
    measured_byte_count: int = 0

    @property
    def is_comparable(self) -> bool:
        return self.exact_hash is not None or self.perceptual_signature is not None


@dataclass(frozen=True)
class SignedAsset:
    metadata: AssetMetadata
    signature: AssetSignature

    @property
    def asset_id(self) -> str:
        return self.metadata.asset_id

    @property
    def byte_count(self) -> int:
        return self.signature.measured_byte_count or self.metadata.byte_count


class IssueSeverity(IntEnum):
    INFO = 0
    WARNING = 1
    CRITICAL = 2


class IssueType(Enum):
    DOWNLOAD_FAILED = 'download_failed'
    CORRUPTED = 'corrupted'
    SCREENSHOT = 'screenshot'
    LARGE_FILE = 'large_file'
    DUPLICATE = 'duplicate'

    @property
    def default_severity(self) -> IssueSeverity:
        return _DEFAULT_SEVERITY[self]


_DEFAULT_SEVERITY = {
    IssueType.DOWNLOAD_FAILED: IssueSeverity.WARNING,
    IssueType.CORRUPTED: IssueSeverity.CRITICAL,
    IssueType.SCREENSHOT: IssueSeverity.INFO,
    IssueType.LARGE_FILE: IssueSeverity.INFO,
    IssueType.DUPLICATE: IssueSeverity.INFO,
}

_ISSUE_TYPE_ORDER = {t: i for i, t in enumerate(IssueType)}


@dataclass(frozen=True)
class PhotoIssue:
    asset_id: str
    issue_type: IssueType
    severity: IssueSeverity
    file_size: Optional[int] = None
    error_message: Optional[str] = None
    duplicate_group_id: Optional[str] = None
    can_recover: bool = False
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    @property
    def issue_id(self) -> str:
        return f"{self.asset_id}-{self.issue_type.value}"


@dataclass
class IssueSummary:
    issue_type: IssueType
    count: int
    total_size: int


def build_summaries(issues: Iterable[PhotoIssue]) -> List[IssueSummary]:
    """Per-type counts and byte totals, largest count first."""
    by_type: Dict[IssueType, IssueSummary] = {}
    for issue in issues:
        summary = by_type.get(issue.issue_type)
        if summary is None:
            summary = by_type[issue.issue_type] = IssueSummary(issue.issue_type, 0, 0)
        summary.count += 1
        summary.total_size += issue.file_size or 0
    return sorted(by_type.values(), key=lambda s: (-s.count, _ISSUE_TYPE_ORDER[s.issue_type]))


@dataclass(frozen=True)
class DuplicateGroup:
    """
    Similarity is 1.0 only when byte-identical copies joined the group;
    perceptual-only groups score in [threshold, 1.0).
    """
    group_id: str
    member_ids: Tuple[str, ...]    # original first
    original_id: str
    similarity: float
    potential_savings_bytes: int
    exact: bool = True

    def __post_init__(self):
        if len(self.member_ids) < 2:
            raise ValueError(f"Duplicate group {self.group_id} needs at least two members")
        if len(set(self.member_ids)) != len(self.member_ids):
            raise ValueError(f"Duplicate group {self.group_id} has repeated members")
        if self.original_id not in self.member_ids:
            raise ValueError(f"Original {self.original_id} is not a member of {self.group_id}")

    @property
    def count(self) -> int:
        return len(self.member_ids)

    @property
    def duplicate_count(self) -> int:
        return len(self.member_ids) - 1

    @property
    def duplicate_ids(self) -> Tuple[str, ...]:
        return tuple(m for m in self.member_ids if m != self.original_id)


@dataclass(frozen=True)
class ScanResult:
    """
    Output of one pass. Never mutated; filters derive a new result.
    """
    total_photos: int
    issues: Tuple[PhotoIssue, ...]
    summaries: Tuple[IssueSummary, ...]
    duplicate_groups: Tuple[DuplicateGroup, ...] = ()
    scanned_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    processed_count: int = 0

    @classmethod
    def build(cls,
              total_photos: int,
              issues: Iterable[PhotoIssue],
              duplicate_groups: Iterable[DuplicateGroup] = (),
              processed_count: Optional[int] = None) -> "ScanResult":
        issues = tuple(issues)
        return cls(
            total_photos=total_photos,
            issues=issues,
            summaries=tuple(build_summaries(issues)),
            duplicate_groups=tuple(duplicate_groups),
            scanned_at=datetime.now(UTC),
            processed_count=total_photos if processed_count is None else processed_count,
        )

    @property
    def total_issue_count(self) -> int:
        return len(self.issues)

    @property
    def duplicate_summary(self) -> Tuple[int, int, int]:
        """(group count, duplicate count excluding originals, potential savings)"""
        groups = self.duplicate_groups
        return (
            len(groups),
            sum(g.duplicate_count for g in groups),
            sum(g.potential_savings_bytes for g in groups),
        )

    def issues_for(self, issue_type: IssueType) -> List[PhotoIssue]:
        return [i for i in self.issues if i.issue_type == issue_type]

    def summary_for(self, issue_type: IssueType) -> Optional[IssueSummary]:
        return next((s for s in self.summaries if s.issue_type == issue_type), None)

    def with_large_file_threshold(self, min_bytes: int) -> "ScanResult":
        """Derives a result whose large-file issues are all >= min_bytes."""
        kept = tuple(
            i for i in self.issues
            if i.issue_type != IssueType.LARGE_FILE or (i.file_size or 0) >= min_bytes
        )
        return replace(self, issues=kept, summaries=tuple(build_summaries(kept)))


class ScanStatus(Enum):
    PENDING = 'pending'
    SCANNED = 'scanned'
    FAILED = 'failed'


@dataclass(frozen=True)
class CacheRecord:
    """One persisted row per asset id."""
    metadata: AssetMetadata
    status: ScanStatus = ScanStatus.PENDING
    signature: Optional[AssetSignature] = None
    failure_reason: Optional[str] = None
    last_scanned_at: Optional[datetime] = None

    @property
    def asset_id(self) -> str:
        return self.metadata.asset_id


# --- Scan configuration (owned by the caller) ---

class DuplicateMode(Enum):
    EXACT_ONLY = 'exact_only'
    INCLUDE_SIMILAR = 'include_similar'


class SimilarityThreshold(IntEnum):
    PERCENT_80 = 80
    PERCENT_90 = 90
    PERCENT_95 = 95

    @property
    def fraction(self) -> float:
        return self.value / 100.0


class LargeFileSizeOption(IntEnum):
    MB5 = 5 * config.MB
    MB10 = 10 * config.MB
    MB25 = 25 * config.MB
    MB50 = 50 * config.MB
    MB100 = 100 * config.MB


@dataclass(frozen=True)
class ScanOptions:
    duplicate_mode: DuplicateMode = DuplicateMode.INCLUDE_SIMILAR
    similarity_threshold: SimilarityThreshold = SimilarityThreshold(config.DEFAULT_SIMILARITY_PERCENT)
    large_file_threshold_bytes: int = config.DEFAULT_LARGE_FILE_THRESHOLD
    incremental: bool = False
