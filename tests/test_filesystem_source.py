import os
from datetime import datetime

import pytest

from photo_cleaner.exceptions import AssetReadError, SourceUnavailableError
from photo_cleaner.library.source import FilesystemAssetSource
from photo_cleaner.models import IssueType, MediaSubtype, ResourceKind, ScanOptions
from photo_cleaner.scanning.events import Completed
from photo_cleaner.scanning.orchestrator import ScanOrchestrator


def by_name(source):
    return {m.asset_id.split("@")[0]: m for m in source.fetch_metadata(source.list_all_identifiers())}


def test_walk_picks_images_and_placeholders(tmp_path, make_image):
    make_image("a.jpg")
    make_image("sub/b.png")
    make_image(".hidden/c.png")
    (tmp_path / "notes.txt").write_text("x")
    (tmp_path / "._a.jpg").write_bytes(b"appledouble")
    (tmp_path / ".IMG_0001.HEIC.icloud").write_bytes(b"plist")

    source = FilesystemAssetSource(tmp_path)
    names = {i.split("@")[0] for i in source.list_all_identifiers()}

    assert names == {"a.jpg", "sub/b.png", ".IMG_0001.HEIC.icloud"}


def test_identifier_changes_when_file_is_rewritten(tmp_path, make_image):
    path = make_image("a.jpg")
    source = FilesystemAssetSource(tmp_path)
    before = source.list_all_identifiers()

    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
    after = source.list_all_identifiers()

    assert before != after
    assert source.fetch_metadata(before) == []


def test_metadata_from_pil(tmp_path, make_image):
    make_image("a.png", size=(320, 200))
    meta = by_name(FilesystemAssetSource(tmp_path))["a.png"]

    assert (meta.pixel_width, meta.pixel_height) == (320, 200)
    assert meta.byte_count == (tmp_path / "a.png").stat().st_size
    assert meta.resources == (ResourceKind.PHOTO,)
    assert meta.creation_date is None


def test_exif_capture_date(tmp_path, make_image):
    from PIL import Image

    img = Image.new("RGB", (64, 48), (10, 20, 30))
    exif = Image.Exif()
    exif[0x0132] = "2023:07:04 18:30:00"  # DateTime
    img.save(tmp_path / "dated.jpg", exif=exif)

    meta = by_name(FilesystemAssetSource(tmp_path))["dated.jpg"]
    assert meta.creation_date == datetime(2023, 7, 4, 18, 30, 0)


def test_screenshot_by_name(tmp_path, make_image):
    make_image("Screenshot 2024-01-01 at 10.00.00.png")
    make_image("IMG_1234.jpg")
    metas = by_name(FilesystemAssetSource(tmp_path))

    assert metas["Screenshot 2024-01-01 at 10.00.00.png"].media_subtypes & MediaSubtype.SCREENSHOT
    assert not metas["IMG_1234.jpg"].media_subtypes & MediaSubtype.SCREENSHOT


def test_broken_and_empty_files(tmp_path):
    (tmp_path / "broken.jpg").write_bytes(b"garbage")
    (tmp_path / "empty.jpg").write_bytes(b"")
    metas = by_name(FilesystemAssetSource(tmp_path))

    assert (metas["broken.jpg"].pixel_width, metas["broken.jpg"].pixel_height) == (0, 0)
    assert metas["broken.jpg"].resources == (ResourceKind.PHOTO,)
    assert metas["empty.jpg"].resources == ()


def test_placeholder_has_only_proxy(tmp_path):
    (tmp_path / ".Screenshot_20240101.png.icloud").write_bytes(b"plist")
    source = FilesystemAssetSource(tmp_path)
    (asset_id,) = source.list_all_identifiers()
    (meta,) = source.fetch_metadata([asset_id])

    assert meta.resources == (ResourceKind.PHOTO_PROXY,)
    assert meta.media_subtypes & MediaSubtype.SCREENSHOT
    with pytest.raises(AssetReadError):
        list(source.read_resource_bytes(asset_id))


def test_change_token_tracks_identifier_set(tmp_path, make_image):
    make_image("a.jpg")
    source = FilesystemAssetSource(tmp_path)
    first = source.current_change_token()
    assert source.current_change_token() == first

    make_image("b.jpg", seed=2)
    assert source.current_change_token() != first


def test_delete_assets(tmp_path, make_image):
    path = make_image("a.jpg")
    source = FilesystemAssetSource(tmp_path)
    (asset_id,) = source.list_all_identifiers()

    result = source.delete_assets([asset_id, "missing.jpg@1"])

    assert result.deleted == [asset_id]
    assert "missing.jpg@1" in result.failed
    assert not path.exists()


def test_missing_root_is_unavailable(tmp_path):
    with pytest.raises(SourceUnavailableError):
        FilesystemAssetSource(tmp_path / "nope").list_all_identifiers()


def test_oversized_image_reads_as_zero_size(tmp_path, make_image, monkeypatch):
    from PIL import Image

    make_image("ok.png", size=(20, 20))
    make_image("big.png", size=(100, 100))
    # Above twice the limit Pillow refuses to open the file at all
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    metas = by_name(FilesystemAssetSource(tmp_path))

    assert (metas["big.png"].pixel_width, metas["big.png"].pixel_height) == (0, 0)
    assert (metas["ok.png"].pixel_width, metas["ok.png"].pixel_height) == (20, 20)


def test_oversized_image_does_not_fail_the_pass(tmp_path, make_image, monkeypatch, cache):
    from PIL import Image

    library = tmp_path / "lib"
    make_image("lib/ok.png", size=(20, 20))
    make_image("lib/big.png", size=(100, 100))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    orchestrator = ScanOrchestrator(FilesystemAssetSource(library), cache, max_workers=1)
    last = list(orchestrator.scan(ScanOptions()))[-1]

    assert isinstance(last, Completed)
    assert last.result.total_photos == 2
    corrupted = {i.asset_id.split("@")[0] for i in last.result.issues if i.issue_type == IssueType.CORRUPTED}
    assert corrupted == {"big.png"}


def test_file_removed_during_metadata_fetch_is_skipped(tmp_path, make_image, monkeypatch):
    make_image("a.jpg")
    gone = make_image("b.jpg", seed=2)
    source = FilesystemAssetSource(tmp_path)
    ids = source.list_all_identifiers()

    resolve = source._resolve

    def resolve_then_delete(asset_id):
        path = resolve(asset_id)
        if path is not None and path.name == "b.jpg":
            gone.unlink()
        return path

    monkeypatch.setattr(source, "_resolve", resolve_then_delete)

    metas = source.fetch_metadata(ids)

    assert [m.asset_id.split("@")[0] for m in metas] == ["a.jpg"]
