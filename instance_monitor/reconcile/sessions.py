"""Operator-triggered logouts for instances with a dead protocol session."""

from __future__ import annotations

from typing import Any

import structlog

from instance_monitor.codechat.models import OFFLINE, InstanceSummary
from instance_monitor.errors import (
    CodeChatError,
    ErrorKind,
    InstanceNotFoundError,
    InstanceNotOnlineError,
    InvalidInputError,
    LogoutFailedError,
    UserNotFoundError,
)

logger = structlog.get_logger(__name__)


class SessionManager:
    """Bulk and per-user logouts.

    Shares the engine's run lock and throttle so a manual logout never
    races a reconciliation pass on the same tokens.
    """

    def __init__(self, engine):
        self.engine = engine

    @property
    def codechat(self):
        return self.engine.codechat

    @property
    def users(self):
        return self.engine.users

    async def _liveness(self, name: str, token: str | None) -> str | None:
        try:
            detail = await self.codechat.get_instance_detail(name, token)
        except CodeChatError as e:
            logger.error("Error fetching connection state", instance=name, error=str(e))
            return None
        return detail.connection_state

    async def _mark_offline_tolerant(self, instance_id: str) -> str | None:
        try:
            result = await self.users.mark_offline(instance_id)
        except Exception as e:
            logger.error("Failed to mark instance offline", instance=instance_id, error=str(e))
            return None
        return result.status

    async def logout_indeterminate(self) -> dict[str, Any]:
        """Log out every ONLINE instance whose connection state is absent.

        Remote failures on one instance are reported in its result entry;
        only a failing instance listing raises.
        """
        async with self.engine.run_lock:
            instances = await self.codechat.list_instances()
            if not instances:
                return {
                    "success": True,
                    "message": "No instances found",
                    "results": [],
                    "statistics": _logout_stats(0, 0, 0, 0, 0),
                }

            online = [i for i in instances if i.is_online]
            results: list[dict[str, Any]] = []
            targets: list[InstanceSummary] = []

            for summary in online:
                if not summary.auth_token:
                    results.append({"instance_id": summary.key, "status": "skipped", "reason": "Missing token"})
                    continue
                state = await self._liveness(summary.key, summary.auth_token)
                if state is None:
                    targets.append(summary)

            succeeded = failed = 0
            for index, summary in enumerate(targets):
                name, token = summary.key, summary.auth_token
                try:
                    logger.info("Connecting instance before logout", instance=name)
                    await self.codechat.connect(name, token)
                    await self.codechat.logout(name, token)
                except CodeChatError as e:
                    logger.error("Failed to log out instance", instance=name, error=str(e))
                    results.append({"instance_id": name, "status": "failed", "error": str(e)})
                    failed += 1
                else:
                    await self._mark_offline_tolerant(name)
                    results.append(
                        {"instance_id": name, "status": "success", "message": "Connected and logged out successfully"}
                    )
                    succeeded += 1

                if index < len(targets) - 1:
                    await self.engine.pause()

            logger.info(
                "Logged out instances without connection state",
                targets=len(targets),
                succeeded=succeeded,
                failed=failed,
            )
            return {
                "success": True,
                "message": f"Processed {len(targets)} instances with null Bailey status",
                "results": results,
                "statistics": _logout_stats(len(instances), len(online), len(targets), succeeded, failed),
            }

    async def logout_user(self, *, instance_id: str | None = None, mobile_number: str | None = None) -> dict[str, Any]:
        """Log out the instance belonging to one user and mark the user offline."""
        if not instance_id and not mobile_number:
            raise InvalidInputError("Either instance_id or mobile_number must be provided")

        user = await self.users.find(instance_id=instance_id, mobile_number=mobile_number)
        if user is None:
            raise UserNotFoundError("User not found in database")

        target = instance_id or user.instance_id
        mobile = user.mobile_number if instance_id else mobile_number
        if not target:
            raise InvalidInputError("Instance ID not found for this user", details={"mobile_number": mobile})

        async with self.engine.run_lock:
            try:
                instances = await self.codechat.list_instances(target)
            except CodeChatError as e:
                if e.kind == ErrorKind.NOT_FOUND:
                    raise InstanceNotFoundError("Instance not found in CODECHT API") from e
                raise
            if not instances:
                raise InstanceNotFoundError("Instance not found in CODECHT API")

            summary = instances[0]
            ids = {"instance_id": target, "mobile_number": mobile}
            if not summary.is_online:
                raise InstanceNotOnlineError(
                    f"Instance is not ONLINE (status: {summary.connection_status})",
                    details={**ids, "codechat_status": summary.connection_status},
                )
            token = summary.auth_token
            if not token:
                raise InstanceNotOnlineError("Missing authentication token for the instance", details=ids)

            state = await self._liveness(target, token)
            if state is not None:
                logger.warning("Instance has a connection state, logging out anyway", instance=target, state=state)

            try:
                await self.codechat.connect(target, token)
            except CodeChatError as e:
                logger.error("Error connecting instance before logout", instance=target, error=str(e))

            try:
                await self.codechat.logout(target, token)
            except CodeChatError as e:
                logger.error("Error logging out instance", instance=target, error=str(e))
                raise LogoutFailedError("Failed to logout instance", details={**ids, "reason": str(e)}) from e

            new_status = await self._mark_offline_tolerant(target)
            logger.info("Instance logged out", instance=target, user_status=new_status)

        return {
            "success": True,
            "message": "Instance connected and logged out successfully",
            **ids,
            "previous_status": {
                "codechat_status": summary.connection_status,
                "bailey_status": state,
                "user_status": user.status,
            },
            "current_status": {"codechat_status": OFFLINE, "user_status": new_status},
        }


def _logout_stats(total: int, online: int, targets: int, succeeded: int, failed: int) -> dict[str, int]:
    return {
        "totalInstances": total,
        "onlineInstances": online,
        "nullBaileyInstances": targets,
        "processed": targets,
        "success": succeeded,
        "failed": failed,
    }
