"""Persisted user directory."""

from .db import STATUS_OFFLINE, STATUS_ONLINE, UpdateResult, UserDirectory, UserRecord

__all__ = ["STATUS_OFFLINE", "STATUS_ONLINE", "UpdateResult", "UserDirectory", "UserRecord"]
