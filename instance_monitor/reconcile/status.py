"""Read-only cross-reference of stored user status against the gateway."""

from __future__ import annotations

from typing import Any

import structlog

from instance_monitor.codechat.models import ONLINE, InstanceSummary
from instance_monitor.errors import CodeChatError, ErrorKind, InstanceNotFoundError, InvalidInputError, UserNotFoundError

logger = structlog.get_logger(__name__)


async def _liveness(codechat, summary: InstanceSummary) -> str | None:
    if not summary.is_online or not summary.auth_token:
        return None
    try:
        detail = await codechat.get_instance_detail(summary.key, summary.auth_token)
    except CodeChatError as e:
        logger.error("Error fetching detailed instance data", instance=summary.key, error=str(e))
        return None
    return detail.connection_state


async def instance_status(
    codechat, users, *, instance_id: str | None = None, mobile_number: str | None = None
) -> dict[str, Any]:
    """Status of one user's instance as seen by the store, the gateway and the protocol."""
    if not instance_id and not mobile_number:
        raise InvalidInputError("Either instance_id or mobile_number must be provided")

    user = await users.find(instance_id=instance_id, mobile_number=mobile_number)
    if user is None:
        raise UserNotFoundError("User not found in database")

    target = instance_id or user.instance_id
    mobile = user.mobile_number if instance_id else mobile_number
    if not target:
        raise InvalidInputError("Instance ID not found for this user", details={"mobile_number": mobile})

    try:
        instances = await codechat.list_instances(target)
    except CodeChatError as e:
        if e.kind == ErrorKind.NOT_FOUND:
            raise InstanceNotFoundError("Instance not found in CODECHT API") from e
        raise
    if not instances:
        raise InstanceNotFoundError("Instance not found in CODECHT API")

    summary = instances[0]
    return {
        "mobile_number": mobile,
        "instance_id": target,
        "user_status": user.status,
        "codechat_status": summary.connection_status,
        "bailey_status": await _liveness(codechat, summary),
    }


def _is_mismatch(user_status: str | None, summary: InstanceSummary, liveness: str | None) -> bool:
    if user_status is None:
        return False
    if summary.is_online:
        # Stored ONLINE is only right while the protocol session is alive too.
        return (user_status == ONLINE) != (liveness is not None and liveness != "close")
    return user_status == ONLINE


async def all_instance_status(codechat, users, *, pause=None) -> dict[str, Any]:
    """Join every gateway instance with its user record.

    ``pause`` is awaited between liveness fetches when given.
    """
    instances = await codechat.list_instances()
    records = await users.list_users()
    by_instance = {u.instance_id: u for u in records if u.instance_id}

    rows: list[dict[str, Any]] = []
    fetched = 0
    for summary in instances:
        if summary.is_online and summary.auth_token:
            if fetched and pause is not None:
                await pause()
            fetched += 1
        liveness = await _liveness(codechat, summary)
        user = by_instance.get(summary.key) or by_instance.get(summary.id)
        user_status = user.status if user else None
        rows.append(
            {
                "instance_id": summary.key,
                "mobile_number": user.mobile_number if user else None,
                "user_status": user_status,
                "codechat_status": summary.connection_status,
                "bailey_status": liveness,
                "mismatch": _is_mismatch(user_status, summary, liveness),
            }
        )

    known = {s.key for s in instances} | {s.id for s in instances}
    orphans = [u for u in records if u.instance_id and u.instance_id not in known]
    summary_block = {
        "totalInstances": len(instances),
        "onlineInstances": sum(1 for s in instances if s.is_online),
        "withUserRecord": sum(1 for r in rows if r["user_status"] is not None),
        "mismatches": sum(1 for r in rows if r["mismatch"]),
        "usersWithoutInstance": len(orphans),
    }
    logger.info("Built instance status overview", **summary_block)
    return {
        "summary": summary_block,
        "instances": rows,
        "usersWithoutInstance": [u.to_dict() for u in orphans],
    }

