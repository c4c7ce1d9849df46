from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ONLINE = "ONLINE"
OFFLINE = "OFFLINE"

STATE_OPEN = "open"
STATE_CLOSE = "close"


@dataclass(frozen=True)
class InstanceSummary:
    id: str
    name: str
    connection_status: str
    auth_token: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_online(self) -> bool:
        return self.connection_status == ONLINE

    @property
    def key(self) -> str:
        # Remote calls address instances by name; some payloads only carry an id.
        return self.name or self.id

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "InstanceSummary":
        auth = data.get("Auth")
        token = auth.get("token") if isinstance(auth, dict) else None
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            connection_status=str(data.get("connectionStatus") or OFFLINE).upper(),
            auth_token=str(token) if token else None,
            raw=data,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "connectionStatus": self.connection_status}


@dataclass(frozen=True)
class InstanceDetail:
    name: str
    connection_state: str | None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_closed(self) -> bool:
        return self.connection_state == STATE_CLOSE

    @classmethod
    def from_payload(cls, name: str, data: dict[str, Any]) -> "InstanceDetail":
        state: Any = None
        whatsapp = data.get("Whatsapp")
        if isinstance(whatsapp, dict):
            connection = whatsapp.get("connection")
            if isinstance(connection, dict):
                state = connection.get("state")
        return cls(name=name, connection_state=str(state) if state else None, raw=data)


@dataclass(frozen=True)
class ConnectResult:
    qr_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def requires_pairing(self) -> bool:
        return bool(self.qr_code)

    @classmethod
    def from_payload(cls, data: Any) -> "ConnectResult":
        if not isinstance(data, dict):
            return cls()
        qr = data.get("base64")
        return cls(qr_code=str(qr) if qr else None, raw=data)
