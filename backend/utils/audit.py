"""Audit trail for ledger changes.

Every reputation award, credit consumption, subscription change, expert
review and admin action writes one audit_logs document. Writing the trail
never fails the operation being audited.
"""

from database import database
from models import AuditLog, AuditAction, UserRole
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)


def state_changes(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Fields whose value differs between two snapshots, as {field: {"from", "to"}}.

    A field missing on one side is reported with None on that side.
    """
    before = before or {}
    after = after or {}
    return {
        key: {"from": before.get(key), "to": after.get(key)}
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key) or (key in before) != (key in after)
    }


async def create_audit_log(
    action: AuditAction,
    actor_role: Optional[UserRole] = None,
    actor_id: Optional[str] = None,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    reason_code: Optional[str] = None,
) -> str:
    """Record one audited event. Returns the audit_id, or "" if the write failed.

    actor_id is who acted; user_id is whose ledger was affected. When both
    states are given, the changed fields are stored under metadata["changes"].
    """
    try:
        extra = dict(metadata or {})
        if before_state is not None and after_state is not None:
            changes = state_changes(before_state, after_state)
            if changes:
                extra["changes"] = changes

        entry = AuditLog(
            action=action,
            actor_role=actor_role,
            actor_id=actor_id,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=extra or None,
            reason_code=reason_code,
        )
        doc = entry.model_dump()
        doc["timestamp"] = entry.timestamp.isoformat()

        await database.get_db().audit_logs.insert_one(doc)
        logger.info(f"Audit {action.value} on {resource_type or '-'}:{resource_id or '-'} by {actor_id or 'system'}")
        return entry.audit_id
    except Exception as e:
        logger.error(f"Failed to write audit log for {action.value}: {e}")
        return ""


async def get_audit_logs_for_resource(
    resource_type: str,
    resource_id: str,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """Newest-first audit trail of one resource. Returns [] if the store cannot be read."""
    try:
        return await database.get_db().audit_logs.find(
            {"resource_type": resource_type, "resource_id": resource_id},
            {"_id": 0},
        ).sort("timestamp", -1).limit(limit).to_list(length=limit)
    except Exception as e:
        logger.error(f"Failed to read audit trail for {resource_type}:{resource_id}: {e}")
        return []
