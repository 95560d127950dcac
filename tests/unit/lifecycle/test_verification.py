"""Unit tests for catalog verification polling."""

import asyncio

import pytest

from duckattach.exceptions import EngineError, VerificationTimeoutError
from duckattach.lifecycle.verification import VerificationPolicy, VerificationPoller

QUERY = "SELECT database_name FROM duckdb_databases() WHERE database_name = 'sales'"


class TestVerificationPoller:
    """Test polling until a catalog entry appears."""

    def test_confirms_visible_entry(self, scripted_pool, fake_sleep):
        """A visible entry is confirmed on the first check."""
        scripted_pool.databases.add("sales")
        poller = VerificationPoller(scripted_pool, sleep=fake_sleep)

        assert asyncio.run(poller.verify(QUERY, 3, 500, name="sales")) is True
        assert fake_sleep.delays == []

    def test_times_out_after_max_attempts(self, scripted_pool, fake_sleep):
        """An entry that never appears raises after every check."""
        poller = VerificationPoller(scripted_pool, sleep=fake_sleep)

        with pytest.raises(VerificationTimeoutError) as exc_info:
            asyncio.run(poller.verify(QUERY, 3, 500, name="sales"))

        assert exc_info.value.attempts == 3
        assert len(scripted_pool.statements) == 3
        assert fake_sleep.delays == [0.5, 0.5]

    def test_entry_appearing_late(self, scripted_pool, fake_sleep):
        """Polling continues until the entry shows up."""
        scripted_pool.databases.add("sales")
        scripted_pool.invisible.add("sales")

        async def reveal(delay):
            fake_sleep.delays.append(delay)
            scripted_pool.invisible.clear()

        poller = VerificationPoller(scripted_pool, sleep=reveal)
        assert asyncio.run(poller.verify(QUERY, 5, 1000, name="sales")) is True
        assert fake_sleep.delays == [1.0]

    def test_duplicate_error_counts_as_present(self, scripted_pool, fake_sleep):
        """An 'already attached' error while polling confirms the entry."""
        scripted_pool.fail_on("SELECT", EngineError('"sales" is already attached'))
        poller = VerificationPoller(scripted_pool, sleep=fake_sleep)

        assert asyncio.run(poller.verify(QUERY, 3, 500, name="sales")) is True

    def test_query_errors_use_up_attempts(self, scripted_pool, fake_sleep):
        """Other query errors are logged and polling continues."""
        scripted_pool.databases.add("sales")
        scripted_pool.fail_on("SELECT", EngineError("Connection reset"), times=1)
        poller = VerificationPoller(scripted_pool, sleep=fake_sleep)

        assert asyncio.run(poller.verify(QUERY, 3, 200, name="sales")) is True
        assert fake_sleep.delays == [0.2]

    def test_settle_wait_precedes_first_check(self, scripted_pool, fake_sleep):
        """A settle time is waited before polling starts."""
        scripted_pool.databases.add("sales")
        poller = VerificationPoller(scripted_pool, sleep=fake_sleep)
        policy = VerificationPolicy(max_attempts=2, delay_ms=100, settle_ms=2000)

        asyncio.run(poller.verify_with_policy(QUERY, policy, name="sales"))

        assert fake_sleep.delays == [2.0]

    def test_invalid_attempts(self, scripted_pool):
        """At least one check is required."""
        poller = VerificationPoller(scripted_pool)
        with pytest.raises(ValueError):
            asyncio.run(poller.verify(QUERY, 0, 100))
