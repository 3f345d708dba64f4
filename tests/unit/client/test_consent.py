"""Unit tests for consent stores."""

from pathlib import Path

from copilot_runtime.client.consent import (
    ConsentLevel,
    InMemoryConsentStore,
    JsonFileConsentStore,
    ToolPermission,
)


class TestConsentLevel:
    """Tests for ConsentLevel."""

    def test_durable_levels(self):
        """Only allow_always and deny_always are persisted."""
        assert ConsentLevel.ALLOW_ALWAYS.is_durable
        assert ConsentLevel.DENY_ALWAYS.is_durable
        assert not ConsentLevel.SESSION.is_durable
        assert not ConsentLevel.ASK.is_durable


class TestInMemoryConsentStore:
    """Tests for InMemoryConsentStore."""

    def test_get_unknown_tool(self):
        """Unknown tools have no stored level."""
        assert InMemoryConsentStore().get("f") is None

    def test_set_and_get(self):
        """A stored level is returned."""
        store = InMemoryConsentStore()

        store.set("f", ConsentLevel.ALLOW_ALWAYS)

        assert store.get("f") == ConsentLevel.ALLOW_ALWAYS

    def test_update_keeps_created_at(self):
        """Changing a level keeps creation time and records last use."""
        store = InMemoryConsentStore()
        store.set("f", ConsentLevel.ALLOW_ALWAYS)
        created_at = store.all()[0].created_at

        store.set("f", ConsentLevel.DENY_ALWAYS)

        permission = store.all()[0]
        assert permission.level == ConsentLevel.DENY_ALWAYS
        assert permission.created_at == created_at
        assert permission.last_used_at is not None

    def test_initial_permissions(self):
        """Permissions may be preloaded."""
        store = InMemoryConsentStore(
            [ToolPermission(tool_name="f", level=ConsentLevel.DENY_ALWAYS)]
        )

        assert store.get("f") == ConsentLevel.DENY_ALWAYS

    def test_remove_and_clear(self):
        """Removed permissions are forgotten."""
        store = InMemoryConsentStore()
        store.set("f", ConsentLevel.ALLOW_ALWAYS)
        store.set("g", ConsentLevel.ALLOW_ALWAYS)

        store.remove("f")
        assert store.get("f") is None

        store.clear()
        assert store.all() == []


class TestJsonFileConsentStore:
    """Tests for JsonFileConsentStore."""

    def test_persists_across_instances(self, tmp_path: Path):
        """A decision written by one store is read by the next."""
        path = tmp_path / "consent.json"
        JsonFileConsentStore(path).set("delete_file", ConsentLevel.DENY_ALWAYS)

        reloaded = JsonFileConsentStore(path)

        assert reloaded.get("delete_file") == ConsentLevel.DENY_ALWAYS

    def test_missing_file_is_empty(self, tmp_path: Path):
        """A missing file means no stored decisions."""
        store = JsonFileConsentStore(tmp_path / "absent.json")

        assert store.all() == []

    def test_creates_parent_directories(self, tmp_path: Path):
        """The parent directory is created on first write."""
        path = tmp_path / "nested" / "dir" / "consent.json"

        JsonFileConsentStore(path).set("f", ConsentLevel.ALLOW_ALWAYS)

        assert path.exists()

    def test_corrupt_file_is_treated_as_empty(self, tmp_path: Path):
        """Invalid content does not prevent the store from loading."""
        path = tmp_path / "consent.json"
        path.write_text("{not json")

        store = JsonFileConsentStore(path)

        assert store.all() == []

    def test_remove_is_persisted(self, tmp_path: Path):
        """Removal is written to disk."""
        path = tmp_path / "consent.json"
        store = JsonFileConsentStore(path)
        store.set("f", ConsentLevel.ALLOW_ALWAYS)

        store.remove("f")

        assert JsonFileConsentStore(path).get("f") is None

    def test_no_temporary_files_left(self, tmp_path: Path):
        """Atomic writes leave only the target file behind."""
        path = tmp_path / "consent.json"
        store = JsonFileConsentStore(path)

        store.set("f", ConsentLevel.ALLOW_ALWAYS)
        store.set("g", ConsentLevel.DENY_ALWAYS)

        assert [p.name for p in tmp_path.iterdir()] == ["consent.json"]
