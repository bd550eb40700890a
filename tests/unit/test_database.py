"""
Unit tests for the SQLite key-value store
"""
import pytest

from chunkwise.persistence.database import Database


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "nested" / "sessions.db"))
    yield database
    database.close()


class TestDatabase:

    def test_set_and_get(self, db):
        """Should round-trip JSON values"""
        db.set("session:a", {'chunks': [1, 2], 'name': '번역'})

        assert db.get("session:a") == {'chunks': [1, 2], 'name': '번역'}

    def test_missing_key_default(self, db):
        """Should return the default for unknown keys"""
        assert db.get("nope") is None
        assert db.get("nope", []) == []

    def test_last_write_wins(self, db):
        """Should overwrite the previous value"""
        db.set("k", 1)
        db.set("k", 2)

        assert db.get("k") == 2

    def test_delete(self, db):
        """Should report whether a row was removed"""
        db.set("k", 1)

        assert db.delete("k") is True
        assert db.delete("k") is False
        assert db.get("k") is None

    def test_keys_by_prefix(self, db):
        """Should treat LIKE wildcards in the prefix literally"""
        db.set("session:a", 1)
        db.set("session:b", 2)
        db.set("sessionXc", 3)
        db.set("extraction_queue:glossary", 4)
        db.set("extractionAqueue:x", 5)

        assert db.keys("session:") == ["session:a", "session:b"]
        assert db.keys("extraction_") == ["extraction_queue:glossary"]
        assert len(db.keys()) == 5

    def test_persists_across_connections(self, tmp_path):
        """Should keep data after reopening the file"""
        path = str(tmp_path / "store.db")
        first = Database(path)
        first.set("k", {'v': 1})
        first.close()

        second = Database(path)
        assert second.get("k") == {'v': 1}
        second.close()

    @pytest.mark.asyncio
    async def test_async_wrappers_in_memory(self):
        """Should share one in-memory database across worker threads"""
        db = Database(":memory:")

        await db.aset("k", [1, 2, 3])

        assert await db.aget("k") == [1, 2, 3]
        assert db.get("k") == [1, 2, 3]
        assert await db.adelete("k") is True
        db.close()
