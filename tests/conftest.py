from __future__ import annotations

from typing import Any

import pytest

from instance_monitor.codechat.models import ConnectResult, InstanceDetail, InstanceSummary
from instance_monitor.errors import CodeChatError, ErrorKind
from instance_monitor.users.db import UpdateResult, UserRecord


def summary(name: str, status: str = "ONLINE", token: str | None = "tok") -> InstanceSummary:
    return InstanceSummary(id=f"id-{name}", name=name, connection_status=status, auth_token=token)


def detail(name: str, state: str | None) -> InstanceDetail:
    return InstanceDetail(name=name, connection_state=state)


def missing_error(name: str) -> CodeChatError:
    return CodeChatError(
        ErrorKind.INSTANCE_MISSING,
        f'The "{name}" instance does not exist or is not connected',
        status_code=400,
    )


class FakeCodeChat:
    """In-memory stand-in for the gateway; values may be exceptions to raise."""

    def __init__(self) -> None:
        self.instances: list[InstanceSummary] = []
        self.list_error: Exception | None = None
        self.details: dict[str, Any] = {}
        self.connects: dict[str, Any] = {}
        self.logout_errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str | None]] = []

    def add(self, name: str, state: Any = "open", *, status: str = "ONLINE", token: str | None = "tok") -> InstanceSummary:
        inst = summary(name, status, token)
        self.instances.append(inst)
        self.details[inst.name] = state if isinstance(state, Exception) else detail(inst.name, state)
        return inst

    def calls_for(self, name: str) -> list[str]:
        return [op for op, n in self.calls if n == name]

    async def list_instances(self, name: str | None = None) -> list[InstanceSummary]:
        self.calls.append(("list", name))
        if self.list_error is not None:
            raise self.list_error
        if name is None:
            return list(self.instances)
        return [i for i in self.instances if i.name == name]

    async def get_instance_detail(self, name: str, token: str | None) -> InstanceDetail:
        self.calls.append(("detail", name))
        value = self.details.get(name)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise missing_error(name)
        return value

    async def connect(self, name: str, token: str | None) -> ConnectResult:
        self.calls.append(("connect", name))
        value = self.connects.get(name, ConnectResult())
        if isinstance(value, Exception):
            raise value
        return value

    async def logout(self, name: str, token: str | None) -> None:
        self.calls.append(("logout", name))
        err = self.logout_errors.get(name)
        if err is not None:
            raise err

    async def aclose(self) -> None:
        return None


class FakeUsers:
    def __init__(self) -> None:
        self.records: dict[str, UserRecord] = {}
        self.marked: list[str] = []
        self.fail_mark: Exception | None = None

    def add(self, mobile: str, instance_id: str | None, status: str = "ONLINE") -> UserRecord:
        rec = UserRecord(id=len(self.records) + 1, mobile_number=mobile, instance_id=instance_id, status=status, updated_at_ts=0.0)
        self.records[mobile] = rec
        return rec

    async def ensure_schema(self) -> None:
        return None

    async def find(self, *, instance_id: str | None = None, mobile_number: str | None = None) -> UserRecord | None:
        for rec in self.records.values():
            if instance_id and rec.instance_id == instance_id:
                return rec
            if not instance_id and mobile_number and rec.mobile_number == mobile_number:
                return rec
        return None

    async def list_users(self) -> list[UserRecord]:
        return list(self.records.values())

    async def mark_offline(self, instance_id: str) -> UpdateResult:
        self.marked.append(instance_id)
        if self.fail_mark is not None:
            raise self.fail_mark
        for mobile, rec in self.records.items():
            if rec.instance_id == instance_id:
                self.records[mobile] = UserRecord(rec.id, rec.mobile_number, rec.instance_id, "OFFLINE", 1.0)
                return UpdateResult(matched=1, status="OFFLINE")
        return UpdateResult(matched=0, status=None)


@pytest.fixture
def codechat() -> FakeCodeChat:
    return FakeCodeChat()


@pytest.fixture
def users() -> FakeUsers:
    return FakeUsers()
