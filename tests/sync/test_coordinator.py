"""
Tests for the sync coordinator: health gate, circuit breaker, incremental
polling and the one-time bulk import.
"""
import asyncio
from datetime import timedelta

import pytest

from src.config import CircuitState, ErrorKind
from src.core import (
    AuthenticationException, HostUnreachableException, PersistenceException, RemoteTimeoutException
)
from src.sync.domain import BulkImportMarker
from src.sync.infrastructure.repositories import SQLAlchemyTicketStore
from tests.conftest import SOURCE, T0, make_record, wait_for_fetch


def records(count: int, start_minute: int = 0):
    return [
        make_record(f"INC{i:03d}", updated_at=f"2024-01-15 07:{start_minute + i:02d}:00")
        for i in range(count)
    ]


async def stored_numbers(uow_factory):
    async with uow_factory() as uow:
        return {ticket.external_id for ticket in await uow.tickets.find({"source": SOURCE}, limit=1000)}


@pytest.fixture
def reject_ticket(monkeypatch):
    """Make the ticket store reject the given ticket numbers on every write."""
    rejected = set()
    original = SQLAlchemyTicketStore.upsert

    async def upsert(self, ticket):
        if ticket.external_id in rejected:
            raise PersistenceException(f"value too long for column, ticket {ticket.external_id}")
        return await original(self, ticket)

    monkeypatch.setattr(SQLAlchemyTicketStore, "upsert", upsert)
    return rejected.add


class TestHealthCheck:
    """Configuration check followed by a connectivity check"""

    @pytest.mark.asyncio
    async def test_healthy_source(self, coordinator, remote):
        result = await coordinator.health_check()

        assert result.healthy
        assert result.circuit_state == CircuitState.CLOSED
        assert remote.connectivity_calls == 1

        status = await coordinator.status()
        assert status.is_healthy
        assert status.last_health_check_at == T0

    @pytest.mark.asyncio
    async def test_missing_configuration_skips_connectivity_check(self, coordinator, remote):
        remote.missing = ["servicenow_password"]

        result = await coordinator.health_check()

        assert not result.healthy
        assert result.error_kind == ErrorKind.CONFIGURATION
        assert result.missing_parameters == ["servicenow_password"]
        assert remote.connectivity_calls == 0

    @pytest.mark.asyncio
    async def test_failures_are_classified(self, coordinator, remote):
        remote.connectivity_error = AuthenticationException("ServiceNow", "Credentials rejected (HTTP 401)")

        result = await coordinator.health_check()

        assert result.error_kind == ErrorKind.AUTHENTICATION
        status = await coordinator.status()
        assert status.last_error_kind == ErrorKind.AUTHENTICATION
        assert status.failure_count == 0
        assert status.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_failure_trips_circuit_and_notifies(self, coordinator, remote, sink):
        remote.connectivity_error = HostUnreachableException("ServiceNow", "Cannot reach host")

        result = await coordinator.health_check()

        assert result.circuit_tripped
        assert result.circuit_state == CircuitState.OPEN
        assert sink.titles() == [f"{SOURCE} Sync Circuit Open"]

    @pytest.mark.asyncio
    async def test_passing_check_recloses_circuit(self, coordinator, remote, sink):
        remote.connectivity_error = RemoteTimeoutException("ServiceNow", "timed out")
        await coordinator.health_check()

        remote.connectivity_error = None
        result = await coordinator.reset_circuit()

        assert result.healthy
        assert result.circuit_reclosed
        assert sink.titles()[-1] == f"{SOURCE} Sync Recovered"
        status = await coordinator.status()
        assert status.is_active
        assert status.consecutive_failures == 0


class TestPolling:
    """Incremental poll ticks and cursor monotonicity"""

    @pytest.mark.asyncio
    async def test_successful_poll_advances_cursor_to_tick_start(self, coordinator, remote):
        remote.records = records(3)

        result = await coordinator.poll_once()

        assert result.success
        assert result.pages == 2
        assert result.summary.saved == 3
        assert result.cursor == T0
        # First page starts at the initial lookback
        assert remote.fetch_calls[0]["query"] == f"since={(T0 - timedelta(hours=24)).isoformat()}"
        assert [call["offset"] for call in remote.fetch_calls] == [0, 2]

        status = await coordinator.status()
        assert status.total_attempts == 1
        assert status.success_count == 1
        assert status.last_successful_sync_time == T0

    @pytest.mark.asyncio
    async def test_cursor_never_decreases(self, coordinator, clock):
        await coordinator.poll_once()
        clock.now = T0 - timedelta(hours=1)

        result = await coordinator.poll_once()

        assert result.success
        assert result.cursor == T0

    @pytest.mark.asyncio
    async def test_failed_tick_leaves_cursor_untouched(self, coordinator, remote, clock, sink):
        await coordinator.poll_once()
        clock.advance(minutes=5)
        remote.fetch_error = RemoteTimeoutException("ServiceNow", "timed out")

        result = await coordinator.poll_once()

        assert not result.success
        assert result.error_kind == ErrorKind.TIMEOUT
        assert result.circuit_tripped
        assert result.cursor == T0

        status = await coordinator.status()
        assert status.last_sync_time == T0
        assert status.failure_count == 1
        assert status.total_attempts == 2
        assert not status.is_active
        assert status.last_error_kind == ErrorKind.TIMEOUT
        assert f"{SOURCE} Sync Circuit Open" in sink.titles()

    @pytest.mark.asyncio
    async def test_open_circuit_poll_makes_no_remote_calls(self, coordinator, remote):
        remote.fetch_error = AuthenticationException("ServiceNow", "401")
        await coordinator.poll_once()
        calls_before = remote.remote_calls

        result = await coordinator.poll_once()

        assert result.skipped
        assert result.reason == "circuit open"
        assert remote.remote_calls == calls_before
        status = await coordinator.status()
        assert status.total_attempts == 1

    @pytest.mark.asyncio
    async def test_polling_resumes_after_health_check(self, coordinator, remote):
        remote.fetch_error = AuthenticationException("ServiceNow", "401")
        await coordinator.poll_once()

        remote.fetch_error = None
        await coordinator.health_check()
        result = await coordinator.poll_once()

        assert result.success

    @pytest.mark.asyncio
    async def test_gate_failure_fails_tick(self, coordinator, remote):
        remote.missing = ["servicenow_instance_url"]

        result = await coordinator.poll_once()

        assert not result.success
        assert result.error_kind == ErrorKind.CONFIGURATION
        assert remote.fetch_calls == []

    @pytest.mark.asyncio
    async def test_rejected_record_does_not_block_cursor(
        self, coordinator, remote, sync_options, reject_ticket, uow_factory
    ):
        """A record the store always rejects is skipped; the window moves past it"""
        reject_ticket("INC-BAD")
        sync_options.max_pages_per_tick = 1
        remote.honour_since = True
        remote.records = [
            make_record("INC-BAD", updated_at="2024-01-15 07:00:00"),
            make_record("INC002", updated_at="2024-01-15 07:01:00"),
            make_record("INC003", updated_at="2024-01-15 07:02:00"),
        ]
        await coordinator.health_check()

        first = await coordinator.poll_once()

        assert first.success
        assert not first.circuit_tripped
        assert first.summary.persistence_errors == 1
        assert first.cursor == T0.replace(hour=7, minute=1)
        status = await coordinator.status()
        assert status.is_active
        assert status.failure_count == 0
        assert status.last_error_kind == ErrorKind.PERSISTENCE
        assert "INC-BAD" in status.last_error

        second = await coordinator.poll_once()
        third = await coordinator.poll_once()

        assert second.success and third.success
        assert second.cursor == T0.replace(hour=7, minute=2)
        assert third.cursor == T0
        assert await stored_numbers(uow_factory) == {"INC002", "INC003"}

        status = await coordinator.status()
        assert status.consecutive_failures == 0
        assert status.last_error is None

    @pytest.mark.asyncio
    async def test_rejected_record_still_advances_to_tick_start(self, coordinator, remote, reject_ticket):
        reject_ticket("INC000")
        remote.records = records(1)

        result = await coordinator.poll_once()

        assert result.success
        assert result.summary.persistence_errors == 1
        assert result.cursor == T0

    @pytest.mark.asyncio
    async def test_overlapping_poll_is_skipped(self, coordinator, remote):
        remote.records = records(1)
        remote.gate = asyncio.Event()
        running = asyncio.create_task(coordinator.poll_once())
        await wait_for_fetch(remote)
        calls_before = remote.remote_calls

        overlapping = await coordinator.poll_once()

        assert overlapping.skipped
        assert overlapping.reason == "poll already in progress"
        assert remote.remote_calls == calls_before

        remote.gate.set()
        assert (await running).success
        status = await coordinator.status()
        assert status.total_attempts == 1

    @pytest.mark.asyncio
    async def test_invalid_records_do_not_fail_tick(self, coordinator, remote):
        remote.records = [make_record("INC1"), {"state": "New"}]

        result = await coordinator.poll_once()

        assert result.success
        assert result.summary.saved == 1
        assert result.summary.errors == 1

    @pytest.mark.asyncio
    async def test_page_cap_advances_only_to_newest_seen_change(self, coordinator, remote, sync_options):
        sync_options.max_pages_per_tick = 1
        remote.records = records(4)

        result = await coordinator.poll_once()

        assert result.success
        assert result.pages == 1
        # Newest remote change on the first page is INC001 at 07:01
        assert result.cursor == T0.replace(hour=7, minute=1)


class TestBulkImport:
    """One-time full import guarded by the completion marker"""

    @pytest.mark.asyncio
    async def test_first_run_imports_everything(self, coordinator, remote):
        remote.records = records(5)

        result = await coordinator.bulk_import()

        assert result.success
        assert result.total_imported == 5
        assert result.pages == 3
        assert remote.fetch_calls[0]["query"] == "bulk"

        status = await coordinator.status()
        assert status.bulk_import.completed
        assert status.bulk_import.total_imported == 5
        assert status.bulk_import.last_completed_at == T0
        # Bulk import never moves the cursor
        assert status.last_sync_time == T0 - timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_second_run_is_skipped_without_remote_calls(self, coordinator, remote, clock):
        remote.records = records(3)
        await coordinator.bulk_import()
        calls_before = remote.remote_calls
        clock.advance(hours=1)

        result = await coordinator.bulk_import()

        assert result.skipped
        assert result.reason == "already completed"
        assert result.total_imported == 3
        assert result.last_completed_at == T0
        assert remote.remote_calls == calls_before

    @pytest.mark.asyncio
    async def test_force_reimports(self, coordinator, remote, clock):
        remote.records = records(3)
        await coordinator.bulk_import()
        clock.advance(hours=1)
        remote.records = records(4)

        result = await coordinator.bulk_import(force=True)

        assert result.success
        assert result.total_imported == 4
        assert result.summary.unchanged == 3
        assert result.summary.saved == 1
        assert result.last_completed_at == T0 + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_marker_incomplete(self, coordinator, remote):
        remote.fetch_error = HostUnreachableException("ServiceNow", "Cannot reach host")

        result = await coordinator.bulk_import()

        assert not result.success
        assert result.error_kind == ErrorKind.UNREACHABLE
        status = await coordinator.status()
        assert not status.bulk_import.completed
        assert status.last_error_kind == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    async def test_skipped_when_circuit_open(self, coordinator, remote):
        remote.connectivity_error = AuthenticationException("ServiceNow", "401")
        await coordinator.health_check()
        calls_before = remote.remote_calls

        result = await coordinator.bulk_import()

        assert result.skipped
        assert result.reason == "circuit open"
        assert remote.remote_calls == calls_before

    @pytest.mark.asyncio
    async def test_rejected_record_does_not_block_completion(self, coordinator, remote, reject_ticket):
        reject_ticket("INC001")
        remote.records = records(3)

        result = await coordinator.bulk_import()

        assert result.success
        assert result.total_imported == 2
        assert result.summary.persistence_errors == 1
        status = await coordinator.status()
        assert status.bulk_import.completed
        assert status.is_active
        assert status.last_error_kind == ErrorKind.PERSISTENCE

    @pytest.mark.asyncio
    async def test_overlapping_bulk_import_is_skipped(self, coordinator, remote):
        remote.records = records(1)
        remote.gate = asyncio.Event()
        running = asyncio.create_task(coordinator.bulk_import())
        await wait_for_fetch(remote)
        calls_before = remote.remote_calls

        overlapping = await coordinator.bulk_import(force=True)

        assert overlapping.skipped
        assert overlapping.reason == "bulk import already in progress"
        assert remote.remote_calls == calls_before

        remote.gate.set()
        assert (await running).success


class TestStartupBulkImport:
    """Bulk import run when the application starts"""

    @pytest.mark.asyncio
    async def test_first_start_imports(self, coordinator, remote):
        remote.records = records(2)

        result = await coordinator.startup_bulk_import()

        assert result.success
        assert result.total_imported == 2

    @pytest.mark.asyncio
    async def test_completed_marker_with_stored_tickets_is_honoured(self, coordinator, remote):
        remote.records = records(2)
        await coordinator.bulk_import()
        calls_before = remote.remote_calls

        result = await coordinator.startup_bulk_import()

        assert result.skipped
        assert result.reason == "already completed"
        assert remote.remote_calls == calls_before

    @pytest.mark.asyncio
    async def test_empty_store_is_refilled_despite_completed_marker(
        self, coordinator, remote, uow_factory, clock
    ):
        async with uow_factory() as uow:
            await uow.sync_state.save_bulk_marker(BulkImportMarker(
                source=SOURCE, completed=True, last_completed_at=T0 - timedelta(days=3), total_imported=40
            ))
            await uow.commit()
        remote.records = records(3)

        result = await coordinator.startup_bulk_import()

        assert result.success
        assert result.total_imported == 3
        assert await stored_numbers(uow_factory) == {"INC000", "INC001", "INC002"}
        status = await coordinator.status()
        assert status.bulk_import.last_completed_at == clock.now


class TestResetState:
    @pytest.mark.asyncio
    async def test_reset_rewinds_cursor_and_zeroes_counters(self, coordinator, remote, clock, sink):
        await coordinator.poll_once()
        remote.fetch_error = AuthenticationException("ServiceNow", "401")
        await coordinator.poll_once()
        clock.advance(hours=2)

        status = await coordinator.reset_state()

        assert status.last_sync_time == clock.now - timedelta(hours=24)
        assert status.total_attempts == 0
        assert status.failure_count == 0
        assert status.is_active
        assert sink.titles()[-1] == f"{SOURCE} Sync State Reset"
