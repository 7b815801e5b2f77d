"""Audit log for financial mutations."""

from typing import Any

from motor.motor_asyncio import AsyncIOMotorClientSession

from printquota.models.audit_log import AuditLog


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    session: AsyncIOMotorClientSession | None = None,
) -> None:
    """Append to audit_logs; pass `session` to write inside an open transaction."""
    await AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    ).insert(session=session)
