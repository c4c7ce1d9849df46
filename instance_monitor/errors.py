"""Error types shared by the clients, the reconciliation layer and the API."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    INSTANCE_MISSING = "instance_missing"
    NOT_FOUND = "not_found"
    CLIENT = "client"
    SERVER = "server"
    PROTOCOL = "protocol"


class CodeChatError(Exception):
    """A classified failure of a CodeChat API call."""

    def __init__(self, kind: ErrorKind, message: str, *, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class UserStoreError(Exception):
    """The persisted user directory could not be read or written."""


class RequestError(Exception):
    """Base for failures that map directly onto an HTTP status."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInputError(RequestError):
    status_code = 400
    error = "Invalid request"


class InstanceNotOnlineError(RequestError):
    status_code = 400
    error = "Instance not online"


class UserNotFoundError(RequestError):
    status_code = 404
    error = "User not found"


class InstanceNotFoundError(RequestError):
    status_code = 404
    error = "Instance not found"


class LogoutFailedError(RequestError):
    status_code = 500
    error = "Logout failed"
