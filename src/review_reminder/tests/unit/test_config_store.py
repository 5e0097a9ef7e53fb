"""
Unit tests for the config store.

Tests:
- Load fallbacks (missing, malformed, unreadable documents)
- Merge semantics and the not-loaded invariant
- Debounced, coalesced writes and dry run
- Stale revision tokens and recovery
- Reload after external changes
"""

import asyncio

import pytest
import yaml
from pydantic import ValidationError

from review_reminder.core.exceptions import ConfigNotLoadedError, ExternalServiceError

WINDOW = 0.05


def alice_record(**overrides):
    record = {"login": "alice", "id": 1, "name": "Alice", "timezone": 120}
    record.update(overrides)
    return record


async def wait_for_window():
    await asyncio.sleep(WINDOW * 4)


class TestLoad:
    @pytest.mark.asyncio
    async def test_missing_document_falls_back_to_defaults(self, make_config_store):
        store = make_config_store()
        await store.load()

        config = store.get()
        assert config.report_times == ("09:00", "12:30")
        assert config.days_until_stale == 0
        assert config.default_timezone == -420
        assert config.users == {}
        assert store.revision is None

    @pytest.mark.asyncio
    async def test_existing_document_is_merged_over_defaults(self, make_config_store, document_store):
        store = make_config_store()
        revision = document_store.put(store.location, "daysUntilStale: 3\ncustomKey: kept\n")

        await store.load()

        assert store.get().days_until_stale == 3
        assert store.get().report_times == ("09:00", "12:30")
        assert store.raw()["customKey"] == "kept"
        assert store.revision == revision

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        ["reportTimes: [09:00", "- just\n- a list\n", "reportTimes: ['25:00']\n", "defaultTimezone: 5000\n"],
    )
    async def test_malformed_document_falls_back_to_defaults(
        self, make_config_store, document_store, content
    ):
        store = make_config_store()
        document_store.put(store.location, content)

        await store.load()

        assert store.get().report_times == ("09:00", "12:30")
        assert store.revision is None

    @pytest.mark.asyncio
    async def test_unreadable_store_falls_back_to_defaults(self, make_config_store, document_store):
        document_store.fail_reads = True
        store = make_config_store()

        await store.load()

        assert store.loaded
        assert store.get().default_timezone == -420

    @pytest.mark.asyncio
    async def test_user_keys_are_lower_cased(self, make_config_store, document_store):
        store = make_config_store()
        document_store.put(
            store.location,
            yaml.safe_dump({"users": {"Alice": alice_record(login="Alice")}}),
        )

        await store.load()

        assert list(store.get().users) == ["alice"]
        assert store.get().users["alice"].login == "alice"


class TestNotLoaded:
    def test_get_before_load_raises(self, make_config_store):
        with pytest.raises(ConfigNotLoadedError):
            make_config_store().get()

    def test_merge_before_load_raises(self, make_config_store):
        with pytest.raises(ConfigNotLoadedError):
            make_config_store().merge({"daysUntilStale": 1})


class TestMerge:
    @pytest.mark.asyncio
    async def test_merge_is_shallow(self, config_store):
        config_store.merge({"ignore": {"labels": ["wip"]}})
        config_store.merge({"ignore": {"titlePattern": "^draft"}})

        assert config_store.raw()["ignore"] == {"titlePattern": "^draft"}

    @pytest.mark.asyncio
    async def test_merge_user_targets_user_entry(self, config_store):
        config_store.merge_user("Alice", alice_record())
        config_store.merge_user("alice", {"email": "alice@example.com"})

        user = config_store.get().users["alice"]
        assert user.email == "alice@example.com"
        assert user.timezone == 120

    @pytest.mark.asyncio
    async def test_snapshot_is_immutable(self, config_store):
        snapshot = config_store.get()
        with pytest.raises(Exception):
            snapshot.days_until_stale = 5

    @pytest.mark.asyncio
    async def test_nested_models_are_immutable(self, config_store):
        config_store.merge_user("alice", alice_record())
        config_store.merge({"ignore": {"labels": ["WIP"]}})
        snapshot = config_store.get()

        with pytest.raises(ValidationError):
            snapshot.users["alice"].enabled = False
        with pytest.raises(ValidationError):
            snapshot.ignore.title_pattern = "^draft"

        assert snapshot.ignore.labels == ("wip",)
        assert config_store.get().users["alice"].enabled is True

    @pytest.mark.asyncio
    async def test_remove_user(self, config_store):
        config_store.merge_user("alice", alice_record())
        config_store.remove_user("ALICE")

        assert "alice" not in config_store.get().users


class TestDebouncedWrite:
    @pytest.mark.asyncio
    async def test_merges_within_window_produce_one_write(self, config_store, document_store):
        config_store.merge({"a": 1})
        config_store.merge({"b": 2})

        await wait_for_window()

        assert len(document_store.writes) == 1
        written = yaml.safe_load(document_store.writes[0])
        assert written["a"] == 1
        assert written["b"] == 2
        assert config_store.revision is not None
        assert not config_store.dirty

    @pytest.mark.asyncio
    async def test_dry_run_skips_physical_write(self, make_config_store, document_store):
        store = make_config_store(dry_run=True)
        await store.load()

        store.merge({"a": 1})
        await wait_for_window()

        assert document_store.writes == []
        assert store.raw()["a"] == 1
        assert not store.write_pending

    @pytest.mark.asyncio
    async def test_unchanged_document_is_not_written(self, make_config_store, document_store):
        store = make_config_store()
        document_store.put(store.location, "daysUntilStale: 1\n")
        await store.load()

        store.merge({"daysUntilStale": 1})
        await wait_for_window()

        assert document_store.writes == []

    @pytest.mark.asyncio
    async def test_flush_writes_immediately(self, make_config_store, document_store):
        store = make_config_store(write_delay=60)
        await store.load()

        store.merge({"a": 1})
        assert store.write_pending

        assert await store.flush() is True
        assert len(document_store.writes) == 1
        assert not store.write_pending

    @pytest.mark.asyncio
    async def test_cancel_pending_write(self, config_store, document_store):
        config_store.merge({"a": 1})
        config_store.cancel_pending_write()

        await wait_for_window()

        assert document_store.writes == []
        assert config_store.dirty

    @pytest.mark.asyncio
    async def test_transient_write_failure_keeps_memory_state(self, make_config_store, document_store):
        async def broken_write(*args, **kwargs):
            raise ExternalServiceError("store down")

        store = make_config_store(write_delay=60)
        await store.load()
        document_store.write_document = broken_write

        store.merge({"a": 1})

        assert await store.write() is False
        assert store.dirty
        assert store.raw()["a"] == 1


class TestRevisionConflict:
    @pytest.mark.asyncio
    async def test_stale_token_drops_write_then_recovers(self, make_config_store, document_store):
        store = make_config_store(write_delay=60)
        document_store.put(store.location, "daysUntilStale: 1\n")
        await store.load()

        # Someone else edits the document; our token is now stale
        document_store.put(store.location, "daysUntilStale: 1\nexternal: true\n")

        store.merge({"a": 1})
        assert await store.write() is False
        assert document_store.conflicts == 1
        assert store.raw()["a"] == 1
        assert store.get().days_until_stale == 1

        store.merge({"b": 2})
        assert await store.write() is True

        written = yaml.safe_load(document_store.writes[-1])
        assert written["a"] == 1
        assert written["b"] == 2
        assert written["external"] is True
        assert store.revision == document_store.documents[str(store.location)].revision


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_merged_value_survives_reload(self, make_config_store, document_store):
        store = make_config_store(write_delay=60)
        await store.load()

        store.merge({"daysUntilStale": 4})
        store.merge_user("alice", alice_record(email="alice@example.com"))
        assert await store.flush() is True

        fresh = make_config_store()
        await fresh.load()

        assert fresh.get().days_until_stale == 4
        assert fresh.get().users["alice"].email == "alice@example.com"


class TestReloadIfChanged:
    @pytest.mark.asyncio
    async def test_reloads_on_change(self, make_config_store, document_store):
        store = make_config_store()
        document_store.put(store.location, "daysUntilStale: 1\n")
        await store.load()

        document_store.put(store.location, "daysUntilStale: 5\n")

        assert await store.reload_if_changed("probot-settings", [".github/report.yml"]) is True
        assert store.get().days_until_stale == 5

    @pytest.mark.asyncio
    async def test_identical_content_is_not_a_change(self, make_config_store, document_store):
        store = make_config_store()
        document_store.put(store.location, "daysUntilStale: 1\n")
        await store.load()

        document_store.put(store.location, "daysUntilStale: 1\n")

        assert await store.reload_if_changed("probot-settings") is False

    @pytest.mark.asyncio
    async def test_other_repo_or_path_is_ignored(self, make_config_store, document_store):
        store = make_config_store()
        await store.load()
        document_store.put(store.location, "daysUntilStale: 5\n")

        assert await store.reload_if_changed("website", [".github/report.yml"]) is False
        assert await store.reload_if_changed("probot-settings", ["README.md"]) is False
        assert store.get().days_until_stale == 0
