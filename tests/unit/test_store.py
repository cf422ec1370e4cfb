"""Tests for token stores."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from matrix_sync_client.store import FileTokenStore, InMemoryStore

USER = "@alice:example.org"


class TestInMemoryStore:
    """Tests for InMemoryStore."""

    def test_absent_values(self) -> None:
        store = InMemoryStore()
        assert store.load_token(USER) is None
        assert store.load_filter_id(USER) is None

    def test_last_write_wins(self) -> None:
        store = InMemoryStore()
        store.save_token(USER, "s1")
        store.save_token(USER, "s2")
        store.save_filter_id(USER, "f1")

        assert store.load_token(USER) == "s2"
        assert store.load_filter_id(USER) == "f1"
        assert store.load_token("@bob:example.org") is None


class TestFileTokenStore:
    """Tests for FileTokenStore persistence."""

    @pytest.fixture
    def store(self, tmp_path: Path) -> FileTokenStore:
        """Create a FileTokenStore with a temp directory."""
        return FileTokenStore(storage_dir=tmp_path / "users")

    def test_survives_new_instance(self, store: FileTokenStore) -> None:
        store.save_token(USER, "s1")
        store.save_filter_id(USER, "f1")

        reopened = FileTokenStore(storage_dir=store.storage_dir)
        assert reopened.load_token(USER) == "s1"
        assert reopened.load_filter_id(USER) == "f1"

    def test_document_layout(self, store: FileTokenStore) -> None:
        store.save_token(USER, "s1")

        path = store.storage_dir / FileTokenStore.user_key(USER) / "sync.json"
        data = json.loads(path.read_text())
        assert data == {"user_id": USER, "next_batch": "s1"}

    def test_no_temp_files_left(self, store: FileTokenStore) -> None:
        for i in range(5):
            store.save_token(USER, f"s{i}")

        user_dir = store.storage_dir / FileTokenStore.user_key(USER)
        assert [p.name for p in user_dir.iterdir()] == ["sync.json"]

    def test_corrupt_file_treated_as_empty(self, store: FileTokenStore) -> None:
        path = store.storage_dir / FileTokenStore.user_key(USER) / "sync.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        assert store.load_token(USER) is None
        store.save_token(USER, "s2")
        assert store.load_token(USER) == "s2"

    def test_user_key_is_filesystem_safe(self) -> None:
        key = FileTokenStore.user_key("@alice/../x:example.org")
        assert "/" not in key
        assert ":" not in key

    def test_user_key_is_case_and_punctuation_distinct(self) -> None:
        user_ids = ["@a!b:c", "@a_b:c", "@A_b:c", "@a/b:c", "@a=2fb:c"]
        keys = {FileTokenStore.user_key(u) for u in user_ids}
        assert len(keys) == len(user_ids)

    def test_similar_user_ids_do_not_share_state(self, store: FileTokenStore) -> None:
        store.save_token("@a!b:c", "tok_bang")
        store.save_filter_id("@a!b:c", "f_bang")

        assert store.load_token("@a_b:c") is None
        assert store.load_filter_id("@a_b:c") is None
        assert store.load_token("@a!b:c") == "tok_bang"

    def test_empty_user_rejected(self, store: FileTokenStore) -> None:
        with pytest.raises(ValueError):
            store.save_token("", "s1")

    def test_clear(self, store: FileTokenStore) -> None:
        store.save_token(USER, "s1")
        assert store.clear(USER) is True
        assert store.load_token(USER) is None
        assert store.clear(USER) is False
