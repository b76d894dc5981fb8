import hashlib
import random
import sqlite3
import threading
from typing import Dict, Iterable, Iterator, List, Optional, Set

import pytest
from PIL import Image

from photo_cleaner.database.cache import PersistentAssetCache
from photo_cleaner.database.schema import init_schema
from photo_cleaner.exceptions import AssetReadError, SourceUnavailableError
from photo_cleaner.library.source import DeletionResult
from photo_cleaner.models import AssetMetadata, AssetSignature


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def cache(conn):
    """Returns a PersistentAssetCache attached to the in-memory DB."""
    return PersistentAssetCache(conn)


class FakeAssetSource:
    """
    In-memory library. Each asset has metadata and either a payload or an
    error raised when its bytes are read.
    """

    def __init__(self):
        self.assets: Dict[str, AssetMetadata] = {}
        self.payloads: Dict[str, bytes] = {}
        self.read_errors: Dict[str, Exception] = {}
        self.available = True
        self.reads: List[str] = []
        self.read_gate: Optional[threading.Event] = None
        self.token = "token-0"

    def add(self, meta: AssetMetadata, payload: bytes = b"", error: Optional[Exception] = None):
        self.assets[meta.asset_id] = meta
        self.payloads[meta.asset_id] = payload or meta.asset_id.encode()
        if error is not None:
            self.read_errors[meta.asset_id] = error
        self.token = f"token-{len(self.assets)}"

    def remove(self, asset_id: str):
        self.assets.pop(asset_id, None)
        self.payloads.pop(asset_id, None)
        self.token = f"token-removed-{asset_id}"

    def list_all_identifiers(self) -> Set[str]:
        if not self.available:
            raise SourceUnavailableError("library offline")
        return set(self.assets)

    def fetch_metadata(self, asset_ids: Iterable[str]) -> List[AssetMetadata]:
        return [self.assets[i] for i in sorted(asset_ids) if i in self.assets]

    def read_resource_bytes(self, asset_id: str) -> Iterator[bytes]:
        if self.read_gate is not None:
            self.read_gate.wait(5)
        self.reads.append(asset_id)
        if asset_id in self.read_errors:
            raise self.read_errors[asset_id]
        if asset_id not in self.payloads:
            raise AssetReadError(asset_id, "missing")
        return iter([self.payloads[asset_id]])

    def delete_assets(self, asset_ids: Iterable[str]) -> DeletionResult:
        result = DeletionResult()
        for asset_id in asset_ids:
            if asset_id in self.assets:
                self.remove(asset_id)
                result.deleted.append(asset_id)
            else:
                result.failed[asset_id] = "missing"
        return result

    def current_change_token(self) -> Optional[str]:
        return self.token


class StubComputer:
    """Signature per asset from a lookup table; unknown ids hash their payload."""

    def __init__(self, signatures: Optional[Dict[str, AssetSignature]] = None):
        self.signatures = signatures or {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def compute(self, source, asset_id: str) -> AssetSignature:
        payload = b"".join(source.read_resource_bytes(asset_id))
        with self._lock:
            self.calls.append(asset_id)
        if asset_id in self.signatures:
            return self.signatures[asset_id]
        return AssetSignature(hashlib.sha256(payload).hexdigest(), None, len(payload))


@pytest.fixture
def fake_source():
    return FakeAssetSource()


@pytest.fixture
def stub_computer():
    return StubComputer()


def smooth_image(seed: int, size=(256, 256)) -> Image.Image:
    """Low-frequency random pattern; distinct seeds give distant pHashes."""
    rng = random.Random(seed)
    small = Image.new("RGB", (8, 8))
    small.putdata([(rng.randrange(256), rng.randrange(256), rng.randrange(256)) for _ in range(64)])
    return small.resize(size, Image.BILINEAR)


@pytest.fixture
def make_image(tmp_path):
    """Writes a smooth random image and returns its path."""
    def _make(name: str, seed: int = 1, size=(256, 256), fmt: Optional[str] = None, **save_kwargs):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        smooth_image(seed, size).save(path, format=fmt, **save_kwargs)
        return path
    return _make
