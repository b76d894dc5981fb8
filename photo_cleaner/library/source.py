"""
Photo library access.

`AssetSource` is the only way the scanner touches a library; everything
above it works on identifiers, metadata snapshots and byte streams.
`FilesystemAssetSource` is the concrete library over a directory tree.
"""
import os
import re
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Set, Tuple

import exifread
import pillow_heif
from PIL import Image, UnidentifiedImageError

from .. import config
from ..exceptions import AssetReadError, SourceUnavailableError
from ..models import AssetMetadata, MediaSubtype, ResourceKind

pillow_heif.register_heif_opener()


@dataclass
class DeletionResult:
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)  # asset_id -> reason

    @property
    def ok(self) -> bool:
        return not self.failed


class AssetSource(Protocol):
    def list_all_identifiers(self) -> Set[str]:
        """Every identifier currently in the library. Raises SourceUnavailableError."""
        ...

    def fetch_metadata(self, asset_ids: Iterable[str]) -> List[AssetMetadata]:
        """Fresh snapshots for the given ids; ids no longer present are omitted."""
        ...

    def read_resource_bytes(self, asset_id: str) -> Iterator[bytes]:
        """Streams the primary resource. Raises AssetReadError."""
        ...

    def delete_assets(self, asset_ids: Iterable[str]) -> DeletionResult:
        ...

    def current_change_token(self) -> Optional[str]:
        ...


class FilesystemAssetSource:
    """
    A directory tree as a photo library.

    Identifiers are "<relative posix path>@<mtime_ns>", so rewriting a file
    shows up as one asset removed and another added.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.screenshot_patterns = [re.compile(p, re.IGNORECASE) for p in config.SCREENSHOT_PATTERNS]

    # --- Identifiers ---

    def list_all_identifiers(self) -> Set[str]:
        self._require_root()
        ids = set()
        for path in self._iter_files():
            try:
                ids.add(self._make_id(path, path.stat().st_mtime_ns))
            except OSError as e:
                logging.warning(f"Skipping {path}: {e}")
        return ids

    def current_change_token(self) -> Optional[str]:
        h = hashlib.sha256()
        for asset_id in sorted(self.list_all_identifiers()):
            h.update(asset_id.encode('utf-8'))
            h.update(b'\n')
        return h.hexdigest()

    def path_for(self, asset_id: str) -> Path:
        rel, _, _ = asset_id.rpartition('@')
        return self.root / rel

    def _make_id(self, path: Path, mtime_ns: int) -> str:
        return f"{path.relative_to(self.root).as_posix()}@{mtime_ns}"

    def _resolve(self, asset_id: str) -> Optional[Path]:
        """Path for a still-current identifier, None if the file moved or changed."""
        path = self.path_for(asset_id)
        try:
            current = self._make_id(path, path.stat().st_mtime_ns)
        except OSError:
            return None
        return path if current == asset_id else None

    # --- Metadata ---

    def fetch_metadata(self, asset_ids: Iterable[str]) -> List[AssetMetadata]:
        self._require_root()
        results = []
        for asset_id in sorted(asset_ids):
            path = self._resolve(asset_id)
            if path is None:
                logging.debug(f"Asset vanished before metadata fetch: {asset_id}")
                continue
            try:
                results.append(self._build_metadata(asset_id, path))
            except FileNotFoundError:
                logging.debug(f"Asset vanished during metadata fetch: {asset_id}")
        return results

    def _build_metadata(self, asset_id: str, path: Path) -> AssetMetadata:
        size = path.stat().st_size

        if self._is_placeholder(path):
            # Only the cloud stub is on disk
            return AssetMetadata(
                asset_id=asset_id,
                pixel_width=0,
                pixel_height=0,
                byte_count=0,
                media_subtypes=self._name_subtypes(self._placeholder_name(path)),
                resources=(ResourceKind.PHOTO_PROXY,),
            )

        if size == 0:
            return AssetMetadata(asset_id, 0, 0, resources=())

        width, height = self._read_dimensions(path)
        capture_dt, is_screenshot_tag = self._read_exif(path)

        subtypes = self._name_subtypes(path.name)
        if is_screenshot_tag:
            subtypes |= MediaSubtype.SCREENSHOT

        return AssetMetadata(
            asset_id=asset_id,
            pixel_width=width,
            pixel_height=height,
            creation_date=capture_dt,
            byte_count=size,
            media_subtypes=int(subtypes),
            resources=(ResourceKind.PHOTO,),
        )

    def _read_dimensions(self, path: Path) -> Tuple[int, int]:
        try:
            with Image.open(path) as img:
                return img.size
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            logging.debug(f"PIL could not open {path}: {e}")
            return 0, 0

    def _read_exif(self, path: Path) -> Tuple[Optional[datetime], bool]:
        try:
            with path.open('rb') as f:
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            # exifread raises a variety of errors on malformed headers
            logging.debug(f"ExifRead failed for {path}: {e}")
            return None, False

        comment = tags.get('EXIF UserComment')
        is_screenshot = comment is not None and config.SCREENSHOT_USER_COMMENT in str(comment)
        return self._parse_exif_date(tags), is_screenshot

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).strip().replace(':', '-', 2)
                    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
        return None

    def _name_subtypes(self, name: str) -> MediaSubtype:
        stem = Path(name).stem.lower()
        if any(p.match(stem) for p in self.screenshot_patterns):
            return MediaSubtype.SCREENSHOT
        return MediaSubtype.NONE

    # --- Bytes ---

    def read_resource_bytes(self, asset_id: str) -> Iterator[bytes]:
        path = self._resolve(asset_id)
        if path is None:
            raise AssetReadError(asset_id, "file no longer present")
        if self._is_placeholder(path):
            raise AssetReadError(asset_id, "only a cloud placeholder is available locally")
        return self._stream(asset_id, path)

    def _stream(self, asset_id: str, path: Path) -> Iterator[bytes]:
        try:
            with open(path, 'rb') as f:
                while chunk := f.read(config.HASH_CHUNK_SIZE):
                    yield chunk
        except OSError as e:
            raise AssetReadError(asset_id, str(e)) from e

    # --- Deletion ---

    def delete_assets(self, asset_ids: Iterable[str]) -> DeletionResult:
        result = DeletionResult()
        for asset_id in sorted(asset_ids):
            path = self._resolve(asset_id)
            if path is None:
                result.failed[asset_id] = "file changed or no longer present"
                continue
            try:
                path.unlink()
                result.deleted.append(asset_id)
                logging.info(f"Deleted {path}")
            except OSError as e:
                logging.error(f"Failed to delete {path}: {e}")
                result.failed[asset_id] = str(e)
        return result

    # --- Walking ---

    def _require_root(self):
        if not self.root.is_dir():
            raise SourceUnavailableError(f"Library root not accessible: {self.root}")

    def _is_placeholder(self, path: Path) -> bool:
        return path.name.endswith(config.CLOUD_PLACEHOLDER_SUFFIX)

    def _placeholder_name(self, path: Path) -> str:
        # ".IMG_0001.HEIC.icloud" -> "IMG_0001.HEIC"
        name = path.name[:-len(config.CLOUD_PLACEHOLDER_SUFFIX)]
        return name[1:] if name.startswith('.') else name

    def _is_candidate(self, path: Path) -> bool:
        if self._is_placeholder(path):
            return Path(self._placeholder_name(path)).suffix.lower() in config.IMAGE_EXTS
        if path.name.startswith('.'):
            return False
        return path.suffix.lower() in config.IMAGE_EXTS

    def _iter_files(self) -> Iterator[Path]:
        """Depth-first walker using os.scandir, in stable name order."""
        stack = [self.root]
        while stack:
            current = stack.pop()
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                logging.warning(f"Permission denied: {current}")
                continue

            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            for e in entries:
                if e.is_dir(follow_symlinks=False):
                    if not e.name.startswith('.'):
                        dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    path = Path(e.path)
                    if self._is_candidate(path):
                        yield path

            for d in reversed(dirs):
                stack.append(d)
