"""Tests for periodic payment reconciliation."""

import logging
import threading
import time

import pytest

from agent_escrow.errors import TransportError, ValidationError
from agent_escrow.events import EventEmitter, EventType
from agent_escrow.models import PaymentRequest
from agent_escrow.monitor import MonitorScheduler
from agent_escrow.store import PaymentStore


def _create(engine, count: int) -> list[str]:
    return [engine.create_payment_request(f"buyer{i}").blockchain_identifier for i in range(count)]


class TestRunCycle:
    def test_refreshes_every_non_terminal_entry(self, engine, ledger):
        ids = _create(engine, 3)

        assert engine.run_monitor_cycle() == 3
        assert [ledger.resolve_count(i) for i in ids] == [1, 1, 1]

    def test_partial_failure_isolation(self, engine, ledger, recorder):
        first, second, third = _create(engine, 3)
        ledger.set_state(first, "FundsLocked")
        ledger.set_state(third, "FundsLocked")
        ledger.failing.add(second)

        assert engine.run_monitor_cycle() == 2

        assert ledger.resolve_count(first) == 1
        assert ledger.resolve_count(third) == 1
        errors = recorder.of(EventType.MONITOR_ERROR)
        assert len(errors) == 1
        assert errors[0].blockchain_identifier == second
        assert isinstance(errors[0].error, TransportError)
        assert {p.blockchain_identifier for p in recorder.of(EventType.FUNDS_LOCKED)} == {first, third}

    def test_failed_entry_retried_next_cycle(self, engine, ledger, recorder):
        (bid,) = _create(engine, 1)
        ledger.failing.add(bid)
        engine.run_monitor_cycle()

        ledger.failing.clear()
        ledger.set_state(bid, "FundsLocked")
        engine.run_monitor_cycle()

        assert ledger.resolve_count(bid) == 2
        assert len(recorder.of(EventType.MONITOR_ERROR)) == 1
        assert len(recorder.of(EventType.FUNDS_LOCKED)) == 1

    @pytest.mark.parametrize("state", ["Withdrawn", "RefundWithdrawn", "DisputedWithdrawn"])
    def test_terminal_entries_excluded(self, engine, ledger, state):
        terminal, active = _create(engine, 2)
        ledger.set_state(terminal, state)
        engine.refresh_status(terminal)

        engine.run_monitor_cycle()
        engine.run_monitor_cycle()

        assert ledger.resolve_count(terminal) == 1
        assert ledger.resolve_count(active) == 2
        assert engine.get_payment(terminal) is not None

    def test_no_events_when_nothing_changes(self, engine, ledger, recorder):
        _create(engine, 2)
        engine.run_monitor_cycle()
        engine.run_monitor_cycle()
        assert recorder.of(EventType.STATE_CHANGED) == []

    def test_unexpected_errors_are_reported(self):
        store = PaymentStore()
        store.put(PaymentRequest(blockchain_identifier="x", identifier_from_purchaser="p"))
        emitter = EventEmitter()
        errors = []
        emitter.on(EventType.MONITOR_ERROR, errors.append)

        def refresh(payment_id):
            raise KeyError(payment_id)

        scheduler = MonitorScheduler(store=store, refresh=refresh, emitter=emitter)
        assert scheduler.run_cycle() == 0
        assert len(errors) == 1
        assert isinstance(errors[0].error, KeyError)


class TestScheduling:
    def test_background_polling_emits_events(self, engine, ledger):
        (bid,) = _create(engine, 1)
        ledger.set_state(bid, "FundsLocked")
        locked = threading.Event()
        engine.on(EventType.FUNDS_LOCKED, lambda payment: locked.set())

        assert engine.start_monitoring(interval_seconds=0.01)
        assert engine.is_monitoring
        assert locked.wait(timeout=5)

        assert engine.stop_monitoring()
        assert not engine.is_monitoring
        assert engine.get_payment(bid) is not None

    def test_second_start_is_noop_with_warning(self, engine, caplog):
        assert engine.start_monitoring(interval_seconds=60)
        with caplog.at_level(logging.WARNING, logger="agent_escrow.monitor"):
            assert engine.start_monitoring(interval_seconds=60) is False
        assert "already running" in caplog.text
        engine.stop_monitoring()

    def test_stop_without_start(self, engine):
        assert engine.stop_monitoring() is False

    def test_restart_after_stop(self, engine):
        assert engine.start_monitoring(interval_seconds=60)
        engine.stop_monitoring()
        assert engine.start_monitoring(interval_seconds=60)
        engine.stop_monitoring()

    def test_close_stops_monitoring(self, engine):
        engine.start_monitoring(interval_seconds=60)
        engine.close()
        assert not engine.is_monitoring

    def test_invalid_interval(self, engine):
        with pytest.raises(ValidationError):
            engine.start_monitoring(interval_seconds=0)

    def test_restart_waits_for_stopping_thread(self):
        store = PaymentStore()
        for i in range(3):
            store.put(PaymentRequest(blockchain_identifier=f"bid-{i}", identifier_from_purchaser="p"))
        entered = threading.Event()
        release = threading.Event()
        guard = threading.Lock()
        active = [0]
        peak = [0]
        calls = []

        def refresh(payment_id):
            with guard:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
                calls.append(payment_id)
            entered.set()
            release.wait(timeout=5)
            with guard:
                active[0] -= 1

        scheduler = MonitorScheduler(
            store=store, refresh=refresh, emitter=EventEmitter(), join_timeout=0.05
        )
        assert scheduler.start(interval_seconds=0.01)
        assert entered.wait(timeout=5)

        assert scheduler.stop()
        assert scheduler.is_running
        assert scheduler.start(interval_seconds=0.01) is False
        assert scheduler.stop() is False

        release.set()
        deadline = time.monotonic() + 5
        while scheduler.is_running and time.monotonic() < deadline:
            time.sleep(0.01)

        assert not scheduler.is_running
        assert calls == ["bid-0"]
        assert peak[0] == 1

        assert scheduler.start(interval_seconds=60)
        assert scheduler.stop()
        assert not scheduler.is_running

    def test_run_cycle_honours_stop_event(self):
        store = PaymentStore()
        for i in range(3):
            store.put(PaymentRequest(blockchain_identifier=f"bid-{i}", identifier_from_purchaser="p"))
        stop_event = threading.Event()
        calls = []

        def refresh(payment_id):
            calls.append(payment_id)
            stop_event.set()

        scheduler = MonitorScheduler(store=store, refresh=refresh, emitter=EventEmitter())
        assert scheduler.run_cycle(stop_event) == 1
        assert len(calls) == 1
