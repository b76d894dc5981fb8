import hashlib
import logging
from collections import defaultdict
from datetime import tzinfo
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import imagehash

from .. import config
from ..models import (
    DuplicateGroup,
    DuplicateMode,
    IssueSeverity,
    IssueType,
    PhotoIssue,
    SignedAsset,
    SimilarityThreshold,
)
from .bucketing import bucket_assets
from .selector import select_original_first
from .union_find import UnionFind


def perceptual_similarity(a: str, b: str) -> float:
    """1.0 for identical pHashes, falling linearly with the Hamming distance."""
    ha = imagehash.hex_to_hash(a)
    hb = imagehash.hex_to_hash(b)
    return 1.0 - (ha - hb) / ha.hash.size


class DuplicateGroupingEngine:
    """
    Turns the signatures collected during a pass into duplicate groups.

    Exact hashes are unioned across the whole pass first. Then, in
    include_similar mode, every still-disconnected pair inside a bucket is
    compared by perceptual signature; pairs in different buckets never are.
    Connected components of two or more assets become groups.
    """

    def __init__(self,
                 mode: DuplicateMode = DuplicateMode.INCLUDE_SIMILAR,
                 similarity_threshold: SimilarityThreshold = SimilarityThreshold.PERCENT_95,
                 tz: Optional[tzinfo] = None,
                 max_bucket_size: int = config.MAX_BUCKET_SIZE,
                 similarity: Callable[[str, str], float] = perceptual_similarity):
        self.mode = mode
        self.threshold = SimilarityThreshold(similarity_threshold).fraction
        self.tz = tz
        self.max_bucket_size = max_bucket_size
        self.similarity = similarity

    def group(self, assets: Sequence[SignedAsset]) -> List[DuplicateGroup]:
        # Unreadable assets surface as corrupted issues, never as candidates
        members = sorted((a for a in assets if a.signature.is_comparable), key=lambda a: a.asset_id)
        uf = UnionFind(len(members))

        exact_links = self._union_exact(members, uf)
        similar_links: List[Tuple[int, float]] = []
        if self.mode == DuplicateMode.INCLUDE_SIMILAR:
            buckets = bucket_assets(range(len(members)), self.tz, key=lambda i: members[i].metadata)
            for key, indices in buckets.items():
                if len(indices) < 2:
                    continue
                found = self._union_similar(members, indices, uf)
                if found:
                    logging.debug(f"Bucket {key}: {len(indices)} assets, {len(found)} similar pairs")
                similar_links.extend(found)

        digests_by_root: Dict[int, List[str]] = defaultdict(list)
        for i, digest in exact_links:
            digests_by_root[uf.find(i)].append(digest)
        scores_by_root: Dict[int, List[float]] = defaultdict(list)
        for i, score in similar_links:
            scores_by_root[uf.find(i)].append(score)

        groups = []
        for component in uf.components():
            if len(component) < 2:
                continue
            root = uf.find(component[0])
            groups.append(self._build_group([members[i] for i in component],
                                            digests_by_root.get(root, []),
                                            scores_by_root.get(root, [])))

        groups.sort(key=lambda g: g.original_id)
        logging.info(f"Grouped {len(members)} signed assets into {len(groups)} duplicate groups")
        return groups

    def _union_exact(self, members: List[SignedAsset], uf: UnionFind) -> List[Tuple[int, str]]:
        """
        Everything sharing a digest is one set. Identical bytes are identical
        photos whatever their metadata says, and a hash map keeps this linear,
        so exact matching is not confined to buckets.
        """
        by_hash: Dict[str, List[int]] = defaultdict(list)
        for idx, member in enumerate(members):
            if member.signature.exact_hash:
                by_hash[member.signature.exact_hash].append(idx)

        links = []
        for digest, indices in by_hash.items():
            if len(indices) < 2:
                continue
            for other in indices[1:]:
                uf.union(indices[0], other)
            links.append((indices[0], digest))
        return links

    def _union_similar(self, members: List[SignedAsset], indices: List[int], uf: UnionFind) -> List[Tuple[int, float]]:
        """Pairwise pHash comparison inside one bucket, in bounded chunks, skipping connected pairs."""
        links = []
        with_phash = [i for i in indices if members[i].signature.perceptual_signature]
        for start in range(0, len(with_phash), self.max_bucket_size):
            chunk = with_phash[start:start + self.max_bucket_size]
            for pos, i in enumerate(chunk):
                for j in chunk[pos + 1:]:
                    if uf.connected(i, j):
                        continue
                    score = self.similarity(members[i].signature.perceptual_signature,
                                            members[j].signature.perceptual_signature)
                    if score >= self.threshold:
                        uf.union(i, j)
                        links.append((i, score))
        return links

    def _build_group(self,
                     members: List[SignedAsset],
                     digests: List[str],
                     scores: List[float]) -> DuplicateGroup:
        ordered = select_original_first(
            members,
            resolution=lambda a: a.metadata.resolution,
            byte_count=lambda a: a.byte_count,
            creation_date=lambda a: a.metadata.creation_date,
            stable_id=lambda a: a.asset_id,
        )
        member_ids = tuple(a.asset_id for a in ordered)

        if digests:
            group_id = config.EXACT_GROUP_PREFIX + min(digests)[:config.GROUP_ID_HEX_LENGTH]
            similarity = 1.0
        else:
            joined = "\n".join(sorted(member_ids)).encode('utf-8')
            group_id = config.SIMILAR_GROUP_PREFIX + hashlib.sha256(joined).hexdigest()[:config.GROUP_ID_HEX_LENGTH]
            # 1.0 is reserved for byte-identical groups
            similarity = min(min(scores), config.MAX_PERCEPTUAL_SIMILARITY)

        return DuplicateGroup(
            group_id=group_id,
            member_ids=member_ids,
            original_id=member_ids[0],
            similarity=similarity,
            potential_savings_bytes=sum(a.byte_count for a in ordered[1:]),
            exact=bool(digests),
        )


def duplicate_issues(groups: Sequence[DuplicateGroup], byte_counts: Mapping[str, int]) -> List[PhotoIssue]:
    """One duplicate issue for every member that is not the group's original."""
    issues = []
    for group in groups:
        for asset_id in group.duplicate_ids:
            issues.append(PhotoIssue(
                asset_id=asset_id,
                issue_type=IssueType.DUPLICATE,
                severity=IssueSeverity.INFO,
                file_size=byte_counts.get(asset_id),
                duplicate_group_id=group.group_id,
                can_recover=True,
            ))
    return issues
