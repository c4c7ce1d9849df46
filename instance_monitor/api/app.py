from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from instance_monitor.codechat import CodeChatClient
from instance_monitor.config import MonitorConfig, load_config
from instance_monitor.errors import CodeChatError, ErrorKind, RequestError, UserStoreError
from instance_monitor.reconcile.engine import ReconciliationEngine
from instance_monitor.reconcile.sessions import SessionManager
from instance_monitor.reconcile.status import all_instance_status, instance_status
from instance_monitor.scheduler.reconcile import ReconcileScheduler
from instance_monitor.users import UserDirectory

logger = structlog.get_logger(__name__)

ENDPOINTS = {
    "health": "GET /health",
    "checkInstances": "GET /check-instances",
    "checkIndividualInstance": "GET /check-individual-instance/{id}",
    "logoutAllInstances": "POST /logout-all-instances",
    "logoutInstance": "POST /logout-instance?instance_id=|mobile_number=",
    "instanceStats": "GET /api/stats/instance?instance_id=|mobile_number=",
    "allInstanceStats": "GET /api/stats/all-instances",
}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_response(status_code: int, message: str, error: str, **extra: Any) -> JSONResponse:
    body = {"success": False, "message": message, "error": error, **extra, "timestamp": _timestamp()}
    return JSONResponse(status_code=status_code, content=body)


def _ok(body: dict[str, Any]) -> dict[str, Any]:
    return {**body, "timestamp": _timestamp()}


def create_app(
    config: Optional[MonitorConfig] = None,
    *,
    codechat: Optional[CodeChatClient] = None,
    users: Optional[UserDirectory] = None,
) -> FastAPI:
    """Build the HTTP surface around one engine.

    ``codechat`` and ``users`` replace the clients built from ``config``.
    """
    config = config or load_config()
    owns_codechat = codechat is None
    if codechat is None:
        codechat = CodeChatClient(config.codechat_url, config.api_key, timeout=config.request_timeout_seconds)
    if users is None:
        users = UserDirectory(config.users_db_path)

    engine = ReconciliationEngine(codechat, users, delay_seconds=config.delay_seconds)
    sessions = SessionManager(engine)
    reconcile_scheduler = ReconcileScheduler(engine, config.reconcile_cron, enabled=config.cron_start)

    app = FastAPI(title="WhatsApp Instance Monitor", version="1.0.0")
    app.state.config = config
    app.state.codechat = codechat
    app.state.users = users
    app.state.engine = engine
    app.state.sessions = sessions
    app.state.reconcile_scheduler = reconcile_scheduler

    @app.on_event("startup")
    async def _startup() -> None:
        await users.ensure_schema()
        await reconcile_scheduler.start()
        logger.info("Instance monitor started", port=config.port, environment=config.environment)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await reconcile_scheduler.stop()
        if owns_codechat:
            await codechat.aclose()

    @app.exception_handler(RequestError)
    async def _request_error(req: Request, exc: RequestError) -> JSONResponse:
        logger.warning("Request failed", path=req.url.path, error=exc.message)
        return _error_response(exc.status_code, exc.message, exc.error, **exc.details)

    @app.exception_handler(CodeChatError)
    async def _codechat_error(req: Request, exc: CodeChatError) -> JSONResponse:
        logger.error("CodeChat API error", path=req.url.path, kind=exc.kind.value, error=str(exc))
        if exc.kind == ErrorKind.NOT_FOUND:
            return _error_response(404, str(exc), "Instance not found")
        return _error_response(503, str(exc), "External service unavailable")

    @app.exception_handler(UserStoreError)
    async def _user_store_error(req: Request, exc: UserStoreError) -> JSONResponse:
        logger.error("User store error", path=req.url.path, error=str(exc))
        return _error_response(503, str(exc), "User store unavailable")

    @app.exception_handler(Exception)
    async def _unexpected_error(req: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error", path=req.url.path, error=str(exc))
        return _error_response(500, str(exc), "Internal server error")

    @app.get("/")
    async def root() -> dict[str, Any]:
        return _ok(
            {
                "success": True,
                "message": "WhatsApp Instance Monitor API",
                "data": {
                    "environment": config.environment,
                    "endpoints": ENDPOINTS,
                    "schedule": reconcile_scheduler.status(),
                },
            }
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "OK", "message": "WhatsApp Instance Monitor is running", "timestamp": _timestamp()}

    @app.get("/check-instances")
    async def check_instances():
        outcome = await reconcile_scheduler.trigger_now()
        body = outcome.to_dict()
        if not outcome.success:
            return _error_response(500, body["message"], body.get("error") or "unknown error")
        return _ok(
            {
                "success": True,
                "message": body["message"],
                "statistics": body["statistics"],
                "data": {"instances": body["instances"]},
            }
        )

    @app.get("/check-individual-instance/{instance_id}")
    async def check_individual_instance(instance_id: str):
        try:
            result = await engine.reconcile_one(instance_id)
        except CodeChatError as e:
            if e.kind == ErrorKind.NOT_FOUND:
                raise
            logger.error("Error checking individual instance", instance=instance_id, error=str(e))
            return _error_response(500, "Error checking instance", str(e))
        return _ok(result.to_dict())

    @app.post("/logout-all-instances")
    async def logout_all_instances() -> dict[str, Any]:
        return _ok(await sessions.logout_indeterminate())

    @app.post("/logout-instance")
    async def logout_instance(instance_id: Optional[str] = None, mobile_number: Optional[str] = None) -> dict[str, Any]:
        return _ok(await sessions.logout_user(instance_id=instance_id, mobile_number=mobile_number))

    @app.get("/api/stats/instance")
    async def stats_instance(instance_id: Optional[str] = None, mobile_number: Optional[str] = None) -> dict[str, Any]:
        data = await instance_status(codechat, users, instance_id=instance_id, mobile_number=mobile_number)
        return _ok({"success": True, "message": "Instance status retrieved", "data": data})

    @app.get("/api/stats/all-instances")
    async def stats_all_instances() -> dict[str, Any]:
        data = await all_instance_status(codechat, users, pause=engine.pause)
        return _ok({"success": True, "message": "Instance overview retrieved", "data": data})

    return app
