import threading

from photo_cleaner.database.cache import PersistentAssetCache
from photo_cleaner.database.db import DBManager
from photo_cleaner.database.schema import CURRENT_SCHEMA_VERSION


def test_connect_creates_schema_in_new_directory(tmp_path):
    db_path = tmp_path / "nested" / "cache.db"

    with DBManager(db_path) as conn:
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
        journal = conn.execute("PRAGMA journal_mode").fetchone()[0]
        fks = conn.execute("PRAGMA foreign_keys").fetchone()[0]

    assert db_path.exists()
    assert {"assets", "asset_issues", "sync_metadata", "schema_version"} <= tables
    assert version == CURRENT_SCHEMA_VERSION
    assert journal == "wal"
    assert fks == 1


def test_connect_reuses_open_connection(tmp_path):
    manager = DBManager(tmp_path / "cache.db")
    try:
        assert manager.connect() is manager.connect()
    finally:
        manager.close()


def test_cache_writes_from_another_thread(tmp_path):
    manager = DBManager(tmp_path / "cache.db")
    cache = PersistentAssetCache(manager.connect(), manager.write_lock)
    errors = []

    def worker():
        try:
            cache.save_sync_token("from-scan-thread")
        except Exception as e:
            errors.append(e)

    t = threading.Thread(target=worker)
    t.start()
    t.join()
    try:
        assert errors == []
        assert cache.fetch_sync_token() == "from-scan-thread"
    finally:
        manager.close()
