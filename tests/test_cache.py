from datetime import datetime, timezone

import pytest

from photo_cleaner.models import (
    AssetMetadata,
    AssetSignature,
    IssueSeverity,
    IssueType,
    PhotoIssue,
    ResourceKind,
    ScanStatus,
)


def meta(asset_id, **kwargs):
    kwargs.setdefault("creation_date", datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc))
    return AssetMetadata(asset_id, 4000, 3000, byte_count=1234, **kwargs)


def test_insert_roundtrips_metadata(cache):
    original = meta("a", media_subtypes=4, resources=(ResourceKind.PHOTO, ResourceKind.PAIRED_VIDEO))
    cache.insert_new_assets([original])

    record = cache.fetch_record("a")
    assert record.metadata == original
    assert record.status == ScanStatus.PENDING
    assert record.signature is None
    assert cache.fetch_all_identifiers() == {"a"}


def test_insert_is_upsert_and_keeps_status(cache):
    cache.insert_new_assets([meta("a")])
    cache.update_scan_result("a", AssetSignature("h" * 64, "p" * 16, 99))
    cache.insert_new_assets([meta("a"), meta("b")])

    assert cache.count() == 2
    assert cache.fetch_record("a").status == ScanStatus.SCANNED
    assert cache.fetch_record("b").status == ScanStatus.PENDING
    assert [r.asset_id for r in cache.fetch_pending()] == ["b"]


def test_scan_result_replaces_issues(cache):
    cache.insert_new_assets([meta("a")])
    first = PhotoIssue("a", IssueType.LARGE_FILE, IssueSeverity.INFO, file_size=1234)
    second = PhotoIssue("a", IssueType.SCREENSHOT, IssueSeverity.INFO, can_recover=True)

    cache.update_scan_result("a", AssetSignature("h" * 64, None, 1234), [first])
    cache.update_scan_result("a", AssetSignature("h" * 64, None, 1234), [second])

    assert cache.fetch_issues() == [second]
    assert cache.fetch_scanned_signatures() == {"a": AssetSignature("h" * 64, None, 1234)}


def test_scanned_requires_exact_hash(cache):
    cache.insert_new_assets([meta("a")])
    with pytest.raises(ValueError):
        cache.update_scan_result("a", AssetSignature(None, "p" * 16))

    assert cache.fetch_record("a").status == ScanStatus.PENDING


def test_update_of_unknown_asset_is_reported(cache):
    assert cache.update_scan_result("ghost", AssetSignature("h", None)) is False
    assert cache.mark_failed("ghost", "gone") is False
    assert cache.count() == 0


def test_mark_failed_clears_signature(cache):
    cache.insert_new_assets([meta("a")])
    cache.update_scan_result("a", AssetSignature("h" * 64, None, 1),
                             [PhotoIssue("a", IssueType.CORRUPTED, IssueSeverity.CRITICAL)])
    cache.mark_failed("a", "read error")

    record = cache.fetch_record("a")
    assert record.status == ScanStatus.FAILED
    assert record.failure_reason == "read error"
    assert record.signature is None
    assert cache.fetch_issues(["a"]) == []


def test_delete_cascades_to_issues(cache):
    cache.insert_new_assets([meta("a"), meta("b")])
    for asset_id in ("a", "b"):
        cache.update_scan_result(asset_id, AssetSignature("h" * 64, None, 1),
                                 [PhotoIssue(asset_id, IssueType.DUPLICATE, IssueSeverity.INFO, duplicate_group_id="g")])

    cache.delete_assets(["a"])

    assert cache.fetch_all_identifiers() == {"b"}
    assert [i.asset_id for i in cache.fetch_issues()] == ["b"]


def test_persist_pass_is_all_or_nothing(cache):
    cache.insert_new_assets([meta("a")])
    with pytest.raises(ValueError):
        cache.persist_pass(
            [meta("b")],
            {"b": AssetSignature("h" * 64, None, 5), "a": AssetSignature(None, "p")},
            {},
            {},
        )

    assert cache.fetch_all_identifiers() == {"a"}
    assert cache.fetch_record("a").status == ScanStatus.PENDING


def test_persist_pass_writes_everything(cache):
    cache.persist_pass(
        [meta("a"), meta("b")],
        {"a": AssetSignature("h" * 64, "p" * 16, 5)},
        {"b": "unreadable"},
        {"a": [PhotoIssue("a", IssueType.SCREENSHOT, IssueSeverity.INFO)]},
    )

    assert cache.fetch_record("a").status == ScanStatus.SCANNED
    assert cache.fetch_record("b").status == ScanStatus.FAILED
    assert [i.issue_type for i in cache.fetch_issues()] == [IssueType.SCREENSHOT]


def test_sync_token(cache):
    assert cache.fetch_sync_token() is None
    assert cache.last_sync_at() is None

    cache.save_sync_token("t1")
    cache.save_sync_token("t2")

    assert cache.fetch_sync_token() == "t2"
    assert cache.last_sync_at() is not None


def test_clear_all(cache):
    cache.insert_new_assets([meta("a")])
    cache.save_sync_token("t")
    cache.clear_all()

    assert cache.count() == 0
    assert cache.fetch_sync_token() is None
