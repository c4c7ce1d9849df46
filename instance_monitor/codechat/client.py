from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
import structlog

from instance_monitor.codechat.models import ConnectResult, InstanceDetail, InstanceSummary
from instance_monitor.errors import CodeChatError, ErrorKind

logger = structlog.get_logger(__name__)

INSTANCE_MISSING_MARKER = "does not exist or is not connected"


def _error_messages(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        return []
    raw = payload.get("message")
    items = raw if isinstance(raw, list) else [raw]
    return [str(m) for m in items if isinstance(m, str) and m]


def classify_error(exc: Exception) -> CodeChatError:
    """Map an httpx failure onto a tagged CodeChatError."""
    if isinstance(exc, CodeChatError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        resp = exc.response
        status = resp.status_code
        try:
            payload: Any = resp.json()
        except ValueError:
            payload = None
        messages = _error_messages(payload)
        message = "; ".join(messages) or f"HTTP {status} from {exc.request.url.path}"
        if status == 400 and any(INSTANCE_MISSING_MARKER in m for m in messages):
            kind = ErrorKind.INSTANCE_MISSING
        elif status == 404:
            kind = ErrorKind.NOT_FOUND
        elif 400 <= status < 500:
            kind = ErrorKind.CLIENT
        else:
            kind = ErrorKind.SERVER
        return CodeChatError(kind, message, status_code=status, payload=payload)
    if isinstance(exc, httpx.RequestError):
        return CodeChatError(ErrorKind.TRANSPORT, f"{type(exc).__name__}: {exc}")
    if isinstance(exc, ValueError):
        return CodeChatError(ErrorKind.PROTOCOL, f"Invalid response body: {exc}")
    return CodeChatError(ErrorKind.PROTOCOL, f"{type(exc).__name__}: {exc}")


class CodeChatClient:
    """Typed wrapper around the CodeChat instance endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        if not base_url:
            raise ValueError("Missing CodeChat base URL")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(headers={"User-Agent": "instance-monitor"})

    async def __aenter__(self) -> "CodeChatClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, token: str | None = None) -> dict[str, str]:
        headers = {"accept": "application/json", "apiKey": self.api_key}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.request(
                method, url, headers=self._headers(token), params=params, timeout=self.timeout
            )
            resp.raise_for_status()
            if not resp.content:
                return None
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            err = classify_error(exc)
            logger.warning("CodeChat request failed", method=method, path=path, kind=err.kind.value, error=str(err))
            raise err from exc

    async def list_instances(self, name: str | None = None) -> list[InstanceSummary]:
        params = {"instanceName": name} if name else None
        data = await self._request("GET", "/instance/fetchInstances", params=params)
        if data is None:
            return []
        items = data if isinstance(data, list) else [data]
        instances = [InstanceSummary.from_payload(item) for item in items if isinstance(item, dict)]
        logger.debug("Fetched instances", count=len(instances), name=name)
        return instances

    async def get_instance_detail(self, name: str, token: str | None) -> InstanceDetail:
        data = await self._request("GET", f"/instance/fetchInstance/{quote(name, safe='')}", token=token)
        if not isinstance(data, dict):
            raise CodeChatError(ErrorKind.PROTOCOL, f"Unexpected instance detail for {name} (not a JSON object)")
        return InstanceDetail.from_payload(name, data)

    async def connect(self, name: str, token: str | None) -> ConnectResult:
        data = await self._request("GET", f"/instance/connect/{quote(name, safe='')}", token=token)
        logger.info("Connected instance", instance=name)
        return ConnectResult.from_payload(data)

    async def logout(self, name: str, token: str | None) -> None:
        await self._request("DELETE", f"/instance/logout/{quote(name, safe='')}", token=token)
        logger.info("Logged out instance", instance=name)
