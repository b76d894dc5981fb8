import pytest

from photo_cleaner.exceptions import SourceUnavailableError
from photo_cleaner.library.sync import LibrarySyncCoordinator
from photo_cleaner.models import AssetMetadata, AssetSignature, IssueSeverity, IssueType, PhotoIssue, ScanStatus


def test_new_assets_become_pending(fake_source, cache):
    fake_source.add(AssetMetadata("a", 10, 10))
    fake_source.add(AssetMetadata("b", 10, 10))

    report = LibrarySyncCoordinator(fake_source, cache).sync()

    assert report.added == ["a", "b"]
    assert report.removed == []
    assert {r.asset_id for r in cache.fetch_records(ScanStatus.PENDING)} == {"a", "b"}
    assert cache.fetch_sync_token() == fake_source.token


def test_removed_assets_are_dropped_with_issues(fake_source, cache):
    fake_source.add(AssetMetadata("a", 10, 10))
    fake_source.add(AssetMetadata("b", 10, 10))
    sync = LibrarySyncCoordinator(fake_source, cache)
    sync.sync()
    cache.update_scan_result("b", AssetSignature("h" * 64, None, 1),
                             [PhotoIssue("b", IssueType.SCREENSHOT, IssueSeverity.INFO)])

    fake_source.remove("b")
    report = sync.sync()

    assert report.removed == ["b"]
    assert cache.fetch_all_identifiers() == {"a"}
    assert cache.fetch_issues() == []


def test_sync_is_idempotent(fake_source, cache):
    fake_source.add(AssetMetadata("a", 10, 10))
    sync = LibrarySyncCoordinator(fake_source, cache)

    first = sync.sync()
    second = sync.sync()

    assert first.changed
    assert not second.changed
    assert cache.count() == 1


def test_sync_keeps_scan_state_of_known_assets(fake_source, cache):
    fake_source.add(AssetMetadata("a", 10, 10))
    sync = LibrarySyncCoordinator(fake_source, cache)
    sync.sync()
    cache.update_scan_result("a", AssetSignature("h" * 64, None, 1))

    fake_source.add(AssetMetadata("b", 10, 10))
    sync.sync()

    assert cache.fetch_record("a").status == ScanStatus.SCANNED
    assert cache.fetch_record("b").status == ScanStatus.PENDING


def test_unavailable_source_raises(fake_source, cache):
    fake_source.available = False
    with pytest.raises(SourceUnavailableError):
        LibrarySyncCoordinator(fake_source, cache).sync()
