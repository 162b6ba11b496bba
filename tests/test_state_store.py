"""Tests for the roadmap state store."""

import asyncio
import json
import logging

import pytest
from conftest import milestone, write_state

from roadmap_engine.core.exceptions import (
    BackupNotFoundError,
    StateNotLoadedError,
    ValidationError,
)
from roadmap_engine.roadmap.models import RoadmapState
from roadmap_engine.roadmap.state_store import RoadmapStateStore


def _on_disk(config):
    return json.loads(config.state_file.read_text(encoding="utf-8"))


class TestLoad:
    @pytest.mark.asyncio
    async def test_missing_file_creates_default(self, store, config):
        state = await store.load()

        assert state.milestones == {}
        assert state.summary["source"] == "manual"
        assert config.state_file.exists()
        assert config.backup_dir.is_dir()

    @pytest.mark.asyncio
    async def test_corrupt_file_recovers_to_default(self, store, config, caplog):
        config.data_dir.mkdir(parents=True)
        config.state_file.write_text("{ not json", encoding="utf-8")

        with caplog.at_level(logging.ERROR, logger="roadmap_engine.roadmap.state_store"):
            state = await store.load()

        assert state.milestones == {}
        assert _on_disk(config)["milestones"] == {}
        assert any("Failed to load roadmap state" in r.getMessage() for r in caplog.records)
        assert await store.list_versions() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "summary",
        [{"total": [1]}, {"details": "not-a-list"}, {"details": [{"id": "x", "progress": {}}]}],
    )
    async def test_wrongly_typed_fields_are_tolerated(self, store, config, summary):
        write_state(config, [milestone("a", progress=30, dependencySummary=summary)])

        state = await store.load()

        assert state.milestones["a"].progress == 30
        assert state.milestones["a"].dependency_summary.total == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TypeError("bad type"), AttributeError("no attr")])
    async def test_unusable_contents_recover_to_default(
        self, store, config, caplog, monkeypatch, error
    ):
        write_state(config, [milestone("a")])
        normalise = store.normalise_state
        calls = []

        def fail_once(raw):
            calls.append(raw)
            if len(calls) == 1:
                raise error
            return normalise(raw)

        monkeypatch.setattr(store, "normalise_state", fail_once)

        with caplog.at_level(logging.ERROR, logger="roadmap_engine.roadmap.state_store"):
            state = await store.load()

        assert state.milestones == {}
        assert _on_disk(config)["milestones"] == {}
        assert any("Failed to load roadmap state" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_array_milestones_keyed_by_id(self, store, config):
        config.data_dir.mkdir(parents=True)
        config.state_file.write_text(
            json.dumps({"milestones": [milestone(1), milestone("b", status="ARCHIVED")]}),
            encoding="utf-8",
        )

        state = await store.load()

        assert list(state.milestones) == ["1", "b"]
        assert state.milestones["b"].status == "pending"

    @pytest.mark.asyncio
    async def test_history_truncated_and_extra_keys_kept(self, store, config):
        write_state(config, [milestone("a")], history=[{"reason": str(i)} for i in range(40)], owner="ops")

        state = await store.load()

        assert len(state.history) == 25
        assert state.extra == {"owner": "ops"}

    def test_get_state_before_load_raises(self, store):
        with pytest.raises(StateNotLoadedError):
            store.get_state()

    @pytest.mark.asyncio
    async def test_get_state_returns_copy(self, store, config):
        write_state(config, [milestone("a")])
        await store.load()

        snapshot = store.get_state()
        snapshot.milestones["a"].progress = 99

        assert store.get_state().milestones["a"].progress == 0


class TestImmediateWrite:
    @pytest.mark.asyncio
    async def test_write_backs_up_previous_content(self, store, config):
        write_state(config, [milestone("a")])
        before = config.state_file.read_text(encoding="utf-8")
        state = await store.load()
        state.milestones["a"].progress = 40

        written = await store.write_immediate(state)

        assert written.milestones["a"].progress == 40
        assert _on_disk(config)["milestones"]["a"]["progress"] == 40
        versions = await store.list_versions()
        assert len(versions) == 1
        assert await store.read_backup(versions[0]["filename"]) == before
        assert not store.lock.lock_path.exists()

    @pytest.mark.asyncio
    async def test_write_without_backup(self, store, config):
        write_state(config, [milestone("a")])
        state = await store.load()

        await store.write_immediate(state, create_backup=False)

        assert await store.list_versions() == []

    @pytest.mark.asyncio
    async def test_retention_after_many_writes(self, store, config):
        state = await store.load()
        for i in range(8):
            state.summary["n"] = i
            await store.write_immediate(state)

        assert len(await store.list_versions()) == config.max_backups


class TestDebouncedSave:
    @pytest.mark.asyncio
    async def test_burst_coalesces_to_last_factory(self, store, config):
        await store.load()
        calls = []

        def factory(n):
            def build():
                calls.append(n)
                return RoadmapState(summary={"source": f"save-{n}"})
            return build

        futures = [store.schedule_save(factory(n)) for n in range(3)]
        assert store.pending_saves == 3

        results = await asyncio.gather(*futures)

        assert calls == [2]
        assert all(r.summary["source"] == "save-2" for r in results)
        assert _on_disk(config)["summary"]["source"] == "save-2"
        assert len(await store.list_versions()) == 1

    @pytest.mark.asyncio
    async def test_async_factory(self, store):
        await store.load()

        async def build():
            return {"milestones": {"x": milestone("x")}}

        state = await store.schedule_save(build)
        assert "x" in state.milestones

    @pytest.mark.asyncio
    async def test_factory_returning_none_writes_nothing(self, store, config):
        write_state(config, [milestone("a")])
        await store.load()
        mtime = config.state_file.stat().st_mtime_ns

        state = await store.schedule_save(lambda: None)

        assert "a" in state.milestones
        assert config.state_file.stat().st_mtime_ns == mtime

    @pytest.mark.asyncio
    async def test_factory_error_rejects_batch(self, store):
        await store.load()

        def broken():
            raise RuntimeError("compute failed")

        first = store.schedule_save(lambda: RoadmapState())
        second = store.schedule_save(broken)

        with pytest.raises(RuntimeError):
            await second
        with pytest.raises(RuntimeError):
            await first

    @pytest.mark.asyncio
    async def test_flush_writes_without_waiting(self, config):
        store = RoadmapStateStore(config.with_overrides(save_debounce_seconds=60))
        await store.load()
        future = store.schedule_save(lambda: RoadmapState(summary={"source": "flushed"}))

        await store.flush()

        assert future.done()
        assert _on_disk(config)["summary"]["source"] == "flushed"
        assert store.pending_saves == 0


class TestRollback:
    @pytest.mark.asyncio
    async def test_rollback_restores_backup_exactly(self, store, config):
        seeded = {"id": "a", "name": "Alpha", "status": "pending", "progress": 10, "dependencies": []}
        history = [{"reason": "import", "timestamp": "2024-01-01T00:00:00.000Z", "changes": []}]
        write_state(config, [seeded, {"id": "b", "title": "Beta", "owner": "ops"}], history=history)
        backed_up = _on_disk(config)
        state = await store.load()
        state.milestones["a"].progress = 70
        state.history.insert(0, {"reason": "edit"})
        await store.write_immediate(state)
        backup = (await store.list_versions())[0]["filename"]

        restored = await store.rollback(backup)

        on_disk = _on_disk(config)
        assert on_disk["milestones"] == backed_up["milestones"]
        assert on_disk["history"] == backed_up["history"]
        assert restored.milestones["a"].extra == {"name": "Alpha"}
        assert len(await store.list_versions()) == 1

    @pytest.mark.asyncio
    async def test_unchanged_milestones_written_back_as_read(self, store, config):
        seeded = {"id": "a", "name": "Alpha", "progress": 10}
        write_state(config, [seeded])
        state = await store.load()

        await store.write_immediate(state)

        assert _on_disk(config)["milestones"] == {"a": seeded}

    @pytest.mark.asyncio
    async def test_rollback_unknown_backup(self, store):
        await store.load()
        with pytest.raises(BackupNotFoundError):
            await store.rollback("roadmap-state-missing.json")

    @pytest.mark.asyncio
    async def test_rollback_invalid_json(self, store, config):
        await store.load()
        config.backup_dir.mkdir(parents=True, exist_ok=True)
        (config.backup_dir / "roadmap-state-bad.json").write_text("{oops", encoding="utf-8")

        with pytest.raises(ValidationError, match="not valid JSON"):
            await store.rollback("roadmap-state-bad.json")
