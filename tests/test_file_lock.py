"""Tests for the exclusive-create state file lock."""

import asyncio
from dataclasses import replace

import pytest

from roadmap_engine.core.exceptions import StateLockError
from roadmap_engine.core.file_lock import LOCK_FAILURE_MESSAGE, FileLock
from roadmap_engine.core.retry import LOCK_RETRY_CONFIG

FAST_RETRY = replace(LOCK_RETRY_CONFIG, initial_delay=0.001)


class TestFileLock:
    """Acquisition, release and contention."""

    @pytest.mark.asyncio
    async def test_lock_file_holds_token(self, tmp_path):
        target = tmp_path / "roadmap-state.json"
        lock = FileLock(target, retry_config=FAST_RETRY)

        token = await lock.acquire()

        assert lock.lock_path == tmp_path / "roadmap-state.json.lock"
        assert lock.lock_path.read_text(encoding="utf-8") == token
        assert len(token) == 32
        int(token, 16)
        assert lock.held

        await lock.release()
        assert not lock.lock_path.exists()
        assert not lock.held

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self, tmp_path):
        lock = FileLock(tmp_path / "state.json", retry_config=FAST_RETRY)

        with pytest.raises(RuntimeError):
            async with lock:
                assert lock.lock_path.exists()
                raise RuntimeError("boom")

        assert not lock.lock_path.exists()

    @pytest.mark.asyncio
    async def test_contention_exhausts_retries(self, tmp_path):
        target = tmp_path / "state.json"
        holder = FileLock(target, retry_config=FAST_RETRY)
        await holder.acquire()

        contender = FileLock(target, retry_config=FAST_RETRY)
        with pytest.raises(StateLockError) as exc_info:
            await contender.acquire()

        assert exc_info.value.message == LOCK_FAILURE_MESSAGE
        assert exc_info.value.context.extra["attempts"] == 5
        assert isinstance(exc_info.value.cause, FileExistsError)
        assert not contender.held

    @pytest.mark.asyncio
    async def test_waiter_acquires_after_release(self, tmp_path):
        target = tmp_path / "state.json"
        holder = FileLock(target, retry_config=FAST_RETRY)
        await holder.acquire()

        waiter = FileLock(target, retry_config=replace(LOCK_RETRY_CONFIG, initial_delay=0.02))
        task = asyncio.ensure_future(waiter.acquire())
        await asyncio.sleep(0.01)
        await holder.release()

        token = await task
        assert waiter.lock_path.read_text(encoding="utf-8") == token
        await waiter.release()

    @pytest.mark.asyncio
    async def test_release_leaves_foreign_lock(self, tmp_path):
        """A lock file that no longer carries our token is not removed."""
        lock = FileLock(tmp_path / "state.json", retry_config=FAST_RETRY)
        await lock.acquire()
        lock.lock_path.write_text("someone-else", encoding="utf-8")

        await lock.release()

        assert lock.lock_path.read_text(encoding="utf-8") == "someone-else"
        assert not lock.held

    @pytest.mark.asyncio
    async def test_release_without_acquire_is_noop(self, tmp_path):
        lock = FileLock(tmp_path / "state.json")
        await lock.release()
        assert not lock.lock_path.exists()
