from __future__ import annotations

import asyncio

import pytest

from instance_monitor.codechat.models import ConnectResult
from instance_monitor.errors import (
    CodeChatError,
    ErrorKind,
    InstanceNotFoundError,
    InstanceNotOnlineError,
    UserStoreError,
)
from instance_monitor.reconcile import Action, ReconciliationEngine, RemediationStatus, Step


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _engine(codechat, users, delay: float = 0.0, sleep=None) -> ReconciliationEngine:
    return ReconciliationEngine(codechat, users, delay_seconds=delay, sleep=sleep or RecordingSleep())


def _stats(outcome) -> dict:
    return outcome.statistics.to_dict()


@pytest.mark.asyncio
async def test_no_online_instances_returns_all_zero_statistics(codechat, users) -> None:
    codechat.add("a", status="OFFLINE")
    codechat.add("b", status="OFFLINE")

    outcome = await _engine(codechat, users).reconcile_all()

    assert outcome.success is True
    assert outcome.message == "No online instances found"
    assert set(_stats(outcome).values()) == {0}
    assert [op for op, _ in codechat.calls] == ["list"]


@pytest.mark.asyncio
async def test_empty_instance_list_is_not_an_error(codechat, users) -> None:
    outcome = await _engine(codechat, users).reconcile_all()
    assert outcome.success is True
    assert set(_stats(outcome).values()) == {0}


@pytest.mark.asyncio
async def test_open_instance_counts_open_without_remediation(codechat, users) -> None:
    codechat.add("a", "open")

    outcome = await _engine(codechat, users).reconcile_all()

    assert _stats(outcome) == {
        "totalInstances": 1,
        "onlineInstances": 1,
        "openConnections": 1,
        "closedConnections": 0,
        "reconnected": 0,
        "loggedOut": 0,
    }
    assert codechat.calls_for("a") == ["detail"]
    assert users.marked == []


@pytest.mark.asyncio
async def test_unknown_non_close_state_is_treated_as_open(codechat, users) -> None:
    codechat.add("a", "connecting")
    outcome = await _engine(codechat, users).reconcile_all()
    assert _stats(outcome)["openConnections"] == 1
    assert codechat.calls_for("a") == ["detail"]


@pytest.mark.asyncio
async def test_closed_instance_is_reconnected(codechat, users) -> None:
    codechat.add("a", "close")

    outcome = await _engine(codechat, users).reconcile_all()

    stats = _stats(outcome)
    assert stats["closedConnections"] == 1
    assert stats["reconnected"] == 1
    assert stats["loggedOut"] == 0
    assert codechat.calls_for("a") == ["detail", "connect"]
    assert outcome.instances[0].status == RemediationStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_reconnect_requiring_pairing_logs_out_instead(codechat, users) -> None:
    codechat.add("a", "close")
    codechat.connects["a"] = ConnectResult(qr_code="data:image/png;base64,AAAA")
    users.add("555", "a")

    outcome = await _engine(codechat, users).reconcile_all()

    stats = _stats(outcome)
    assert stats["closedConnections"] == 1
    assert stats["reconnected"] == 0
    assert stats["loggedOut"] == 1
    assert codechat.calls_for("a") == ["detail", "connect", "logout"]
    assert users.marked == ["a"]
    assert outcome.instances[0].requires_pairing is True


@pytest.mark.asyncio
async def test_missing_instance_is_force_logged_out(codechat, users) -> None:
    codechat.add("a", CodeChatError(ErrorKind.INSTANCE_MISSING, "does not exist or is not connected", status_code=400))
    users.add("555", "a")

    outcome = await _engine(codechat, users).reconcile_all()

    assert codechat.calls_for("a") == ["detail", "connect", "logout"]
    assert users.marked == ["a"]
    assert _stats(outcome)["loggedOut"] == 1
    inst = outcome.instances[0]
    assert inst.action == Action.FORCE_LOGOUT
    assert inst.succeeded_steps == [Step.CONNECT, Step.LOGOUT, Step.MARK_OFFLINE]


@pytest.mark.asyncio
async def test_logout_counts_even_when_mark_offline_fails(codechat, users) -> None:
    codechat.add("a", CodeChatError(ErrorKind.INSTANCE_MISSING, "does not exist or is not connected", status_code=400))
    users.fail_mark = UserStoreError("database is locked")

    outcome = await _engine(codechat, users).reconcile_all()

    assert _stats(outcome)["loggedOut"] == 1
    inst = outcome.instances[0]
    assert inst.status == RemediationStatus.PARTIAL_FAILURE
    assert inst.failed_step.step == Step.MARK_OFFLINE
    assert inst.succeeded_steps == [Step.CONNECT, Step.LOGOUT]


@pytest.mark.asyncio
async def test_absent_connection_state_is_force_logged_out(codechat, users) -> None:
    codechat.add("a", None)
    outcome = await _engine(codechat, users).reconcile_all()
    assert codechat.calls_for("a") == ["detail", "connect", "logout"]
    assert _stats(outcome)["loggedOut"] == 1


@pytest.mark.asyncio
async def test_failed_connect_stops_the_logout_sequence(codechat, users) -> None:
    codechat.add("a", None)
    codechat.connects["a"] = CodeChatError(ErrorKind.SERVER, "boom", status_code=500)

    outcome = await _engine(codechat, users).reconcile_all()

    assert codechat.calls_for("a") == ["detail", "connect"]
    assert users.marked == []
    assert _stats(outcome)["loggedOut"] == 0
    assert outcome.instances[0].status == RemediationStatus.PARTIAL_FAILURE


@pytest.mark.asyncio
async def test_failed_reconnect_still_counts_closed(codechat, users) -> None:
    codechat.add("a", "close")
    codechat.connects["a"] = CodeChatError(ErrorKind.TRANSPORT, "ConnectTimeout")

    outcome = await _engine(codechat, users).reconcile_all()

    stats = _stats(outcome)
    assert stats["closedConnections"] == 1
    assert stats["reconnected"] == 0
    assert outcome.instances[0].message == "Instance was disconnected but reconnection failed"


@pytest.mark.asyncio
async def test_online_instance_with_failing_detail_fetch_is_force_logged_out(codechat, users) -> None:
    codechat.add("a", CodeChatError(ErrorKind.SERVER, "Internal Server Error", status_code=500))
    outcome = await _engine(codechat, users).reconcile_all()
    assert outcome.instances[0].action == Action.FORCE_LOGOUT
    assert _stats(outcome)["loggedOut"] == 1


@pytest.mark.asyncio
async def test_listing_failure_is_absorbed(codechat, users) -> None:
    codechat.list_error = CodeChatError(ErrorKind.TRANSPORT, "ConnectError: refused")

    outcome = await _engine(codechat, users).reconcile_all()

    assert outcome.success is False
    assert outcome.message == "Error checking instances"
    assert "refused" in outcome.error
    assert set(_stats(outcome).values()) == {0}


@pytest.mark.asyncio
async def test_one_instance_failure_does_not_stop_the_pass(codechat, users) -> None:
    codechat.add("a", "close")
    codechat.add("b", "open")
    codechat.connects["a"] = RuntimeError("unexpected")

    outcome = await _engine(codechat, users).reconcile_all()

    assert [o.name for o in outcome.instances] == ["a", "b"]
    assert _stats(outcome)["openConnections"] == 1


@pytest.mark.asyncio
async def test_instances_processed_in_listing_order_with_delay_between(codechat, users) -> None:
    for name in ("c", "a", "b"):
        codechat.add(name, "open")
    codechat.add("off", status="OFFLINE")
    sleep = RecordingSleep()

    outcome = await _engine(codechat, users, delay=1.5, sleep=sleep).reconcile_all()

    assert [o.name for o in outcome.instances] == ["c", "a", "b"]
    assert [n for op, n in codechat.calls if op == "detail"] == ["c", "a", "b"]
    assert sleep.delays == [1.5, 1.5]
    assert _stats(outcome)["totalInstances"] == 4
    assert _stats(outcome)["onlineInstances"] == 3


@pytest.mark.asyncio
async def test_reconcile_one_unknown_instance(codechat, users) -> None:
    with pytest.raises(InstanceNotFoundError):
        await _engine(codechat, users).reconcile_one("ghost")


@pytest.mark.asyncio
async def test_reconcile_one_not_found_error_maps_to_not_found(codechat, users) -> None:
    codechat.list_error = CodeChatError(ErrorKind.NOT_FOUND, "Not Found", status_code=404)
    with pytest.raises(InstanceNotFoundError):
        await _engine(codechat, users).reconcile_one("ghost")


@pytest.mark.asyncio
async def test_reconcile_one_offline_instance(codechat, users) -> None:
    codechat.add("a", status="OFFLINE")
    with pytest.raises(InstanceNotOnlineError) as excinfo:
        await _engine(codechat, users).reconcile_one("a")
    assert excinfo.value.details["instance"]["connectionStatus"] == "OFFLINE"


@pytest.mark.asyncio
async def test_reconcile_one_twice_on_open_instance_is_idempotent(codechat, users) -> None:
    codechat.add("a", "open")
    engine = _engine(codechat, users)

    first = (await engine.reconcile_one("a")).to_dict()
    second = (await engine.reconcile_one("a")).to_dict()

    assert first == second
    assert first["instance"]["needsReconnection"] is False
    assert first["instance"]["whatsappState"] == "open"
    assert "connect" not in codechat.calls_for("a")
    assert "logout" not in codechat.calls_for("a")


@pytest.mark.asyncio
async def test_reconcile_one_reports_reconnect(codechat, users) -> None:
    codechat.add("a", "close")
    body = (await _engine(codechat, users).reconcile_one("a")).to_dict()
    assert body["instance"]["needsReconnection"] is True
    assert body["instance"]["reconnected"] is True
    assert body["instance"]["loggedOut"] is False
    assert body["message"] == "Instance was disconnected and has been reconnected"


@pytest.mark.asyncio
async def test_scheduled_pass_is_skipped_while_another_runs(codechat, users) -> None:
    codechat.add("a", "open")
    release = asyncio.Event()

    async def slow_sleep(_seconds: float) -> None:
        await release.wait()

    codechat.add("b", "open")
    engine = ReconciliationEngine(codechat, users, delay_seconds=1.0, sleep=slow_sleep)

    running = asyncio.create_task(engine.reconcile_all())
    await asyncio.sleep(0)
    while not engine.is_running:
        await asyncio.sleep(0)

    assert await engine.run_scheduled() is None

    release.set()
    outcome = await running
    assert outcome.success is True
    assert engine.is_running is False
