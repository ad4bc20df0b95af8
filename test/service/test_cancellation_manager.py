"""
Tests for the comparison cancellation manager.
"""

import pytest
import asyncio
from datetime import datetime, timedelta
from utils.cancellation_manager import CancellationManager, CancellationToken


class TestCancellationToken:
    def test_cancel_records_first_reason(self):
        token = CancellationToken("session-1")
        assert not token.cancelled
        token.cancel("stop_requested")
        token.cancel("expired")
        assert token.cancelled
        assert token.reason == "stop_requested"

    @pytest.mark.asyncio
    async def test_wait_returns_once_cancelled(self):
        token = CancellationToken("session-1")
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)


class TestCancellationManager:
    """Test suite for CancellationManager"""

    @pytest.fixture
    async def manager(self):
        """Create a fresh manager for each test"""
        manager = CancellationManager()
        yield manager
        # Clean up after test
        await manager.cleanup_old_flags(max_age_minutes=0)

    @pytest.mark.asyncio
    async def test_request_cancellation(self, manager):
        """Test requesting cancellation for a session"""
        session_id = "test-session-123"
        token = await manager.issue_token(session_id)

        # Initially not cancelled
        assert not token.cancelled

        # Request cancellation
        assert await manager.request_cancellation(session_id)

        # Should now be cancelled
        assert token.cancelled
        assert token.reason == "stop_requested"

    @pytest.mark.asyncio
    async def test_request_cancellation_without_running_comparison(self, manager):
        assert not await manager.request_cancellation("idle-session")

    @pytest.mark.asyncio
    async def test_new_token_supersedes_previous(self, manager):
        first = await manager.issue_token("session-1")
        second = await manager.issue_token("session-1")

        assert first.cancelled
        assert first.reason == "superseded"
        assert not second.cancelled

    @pytest.mark.asyncio
    async def test_release_ignores_superseded_token(self, manager):
        first = await manager.issue_token("session-1")
        second = await manager.issue_token("session-1")

        await manager.release(first)
        assert (await manager.get_stats())["session_ids"] == ["session-1"]

        await manager.release(second)
        assert (await manager.get_stats())["session_ids"] == []

    @pytest.mark.asyncio
    async def test_multiple_sessions(self, manager):
        """Test managing cancellations for multiple sessions"""
        tokens = [await manager.issue_token(sid) for sid in ("session-1", "session-2", "session-3")]

        # Cancel first two
        await manager.request_cancellation("session-1")
        await manager.request_cancellation("session-2")

        # Check states
        assert [token.cancelled for token in tokens] == [True, True, False]
        assert (await manager.get_stats())["cancelled_tokens"] == 2

    @pytest.mark.asyncio
    async def test_cleanup_old_flags(self, manager):
        """Test cleanup of stale tokens"""
        old = await manager.issue_token("session-old")
        await manager.issue_token("session-new")

        # Manually age one of them
        old.created_at = datetime.now() - timedelta(minutes=15)

        # Clean up tokens older than 10 minutes
        removed = await manager.cleanup_old_flags(max_age_minutes=10)

        # Should have removed the old one
        assert removed == 1
        assert old.cancelled
        assert old.reason == "expired"
        assert (await manager.get_stats())["session_ids"] == ["session-new"]

    @pytest.mark.asyncio
    async def test_get_stats(self, manager):
        """Test getting statistics about tracked tokens"""
        # Empty state
        stats = await manager.get_stats()
        assert stats["tracked_tokens"] == 0
        assert stats["oldest_token"] is None

        await manager.issue_token("session-1")
        await asyncio.sleep(0.01)  # Ensure different timestamps
        await manager.issue_token("session-2")
        await manager.request_cancellation("session-2")

        stats = await manager.get_stats()
        assert stats["tracked_tokens"] == 2
        assert stats["cancelled_tokens"] == 1
        assert stats["oldest_token"] < stats["newest_token"]

    @pytest.mark.asyncio
    async def test_concurrent_access(self, manager):
        """Test concurrent issue and cancel from many handlers"""
        session_ids = [f"session-{i}" for i in range(10)]

        tokens = await asyncio.gather(*[manager.issue_token(sid) for sid in session_ids])
        results = await asyncio.gather(*[manager.request_cancellation(sid) for sid in session_ids])

        assert all(results)
        assert all(token.cancelled for token in tokens)

    @pytest.mark.asyncio
    async def test_idempotent_operations(self, manager):
        """Cancelling twice only reports the first"""
        token = await manager.issue_token("session-1")

        assert await manager.request_cancellation("session-1")
        assert not await manager.request_cancellation("session-1")
        assert token.reason == "stop_requested"


@pytest.mark.asyncio
async def test_integration_scenario():
    """
    Test a realistic scenario:
    1. Start streaming
    2. User requests cancellation
    3. Stream notices and stops
    4. Token is released
    """
    manager = CancellationManager()
    session_id = "integration-test"
    token = await manager.issue_token(session_id)

    chunks_sent = 0
    max_chunks = 100

    async def simulate_stream():
        nonlocal chunks_sent
        for _ in range(max_chunks):
            if token.cancelled:
                break
            chunks_sent += 1
            await asyncio.sleep(0.01)  # Simulate work

    stream_task = asyncio.create_task(simulate_stream())
    await asyncio.sleep(0.1)

    # User clicks stop
    await manager.request_cancellation(session_id)
    await stream_task

    assert 0 < chunks_sent < max_chunks

    await manager.release(token)
    assert (await manager.get_stats())["tracked_tokens"] == 0
