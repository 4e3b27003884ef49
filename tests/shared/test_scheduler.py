"""
Tests for the periodic job scheduler and structured logging helpers
"""
import json
import logging

import pytest

from src.shared.infrastructure.logging import CustomJsonFormatter, new_run_id
from src.shared.infrastructure.scheduler import PeriodicJobScheduler


class TestPeriodicJobScheduler:
    @pytest.mark.asyncio
    async def test_lifecycle(self):
        async def tick():
            return None

        scheduler = PeriodicJobScheduler()
        scheduler.add_interval_job("sync_poll", tick, 60)
        scheduler.add_interval_job("sla_evaluation", tick, 300)

        await scheduler.start()
        try:
            assert scheduler.is_running
            described = scheduler.describe()
            assert set(described["jobs"]) == {"sync_poll", "sla_evaluation"}
            assert described["jobs"]["sync_poll"]["interval_seconds"] == 60
            assert described["jobs"]["sync_poll"]["next_run_time"] is not None
        finally:
            await scheduler.stop()

        assert not scheduler.is_running

    def test_rejects_non_positive_interval(self):
        async def tick():
            return None

        with pytest.raises(ValueError):
            PeriodicJobScheduler().add_interval_job("x", tick, 0)

    @pytest.mark.asyncio
    async def test_failing_job_is_contained(self, caplog):
        async def boom():
            raise RuntimeError("tick exploded")

        scheduler = PeriodicJobScheduler()
        scheduler.add_interval_job("sync_poll", boom, 60)
        wrapped = scheduler._wrap(scheduler._jobs["sync_poll"])

        with caplog.at_level(logging.ERROR):
            await wrapped()

        assert "Scheduled job failed" in caplog.text


class TestJsonLogging:
    def format(self, **extra) -> dict:
        formatter = CustomJsonFormatter("%(levelname)s %(message)s", environment="test")
        record = logging.LogRecord("sync", logging.INFO, __file__, 1, "Poll tick completed", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return json.loads(formatter.format(record))

    def test_adds_context_fields(self):
        data = self.format(run_id="abc123")
        assert data["message"] == "Poll tick completed"
        assert data["environment"] == "test"
        assert data["run_id"] == "abc123"
        assert data["levelname"] == "INFO"

    def test_redacts_secrets(self):
        data = self.format(servicenow_password="hunter2", api_token="t", tokens_used=5)
        assert data["servicenow_password"] == "***REDACTED***"
        assert data["api_token"] == "***REDACTED***"
        assert data["tokens_used"] == 5

    def test_run_ids_are_short_and_unique(self):
        first, second = new_run_id(), new_run_id()
        assert len(first) == 12
        assert first != second
