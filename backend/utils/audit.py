from database import database
from models import AuditLog, AuditAction
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Calculate the differences between before and after states.

    Returns a dict with:
    - added: fields that exist in after but not in before
    - removed: fields that exist in before but not in after
    - changed: fields that exist in both but have different values
    """
    if not before and not after:
        return {}

    if not before:
        return {"added": after, "removed": {}, "changed": {}}

    if not after:
        return {"added": {}, "removed": before, "changed": {}}

    diff = {"added": {}, "removed": {}, "changed": {}}

    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)

        if key not in before:
            diff["added"][key] = after_val
        elif key not in after:
            diff["removed"][key] = before_val
        elif before_val != after_val:
            diff["changed"][key] = {"from": before_val, "to": after_val}

    # Remove empty categories
    return {k: v for k, v in diff.items() if v}

async def create_audit_log(
    action: AuditAction,
    actor_role: Optional[str] = None,
    actor_id: Optional[str] = None,
    company_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    reason_code: Optional[str] = None,
    ip_address: Optional[str] = None,
    auto_diff: bool = True
) -> str:
    """Create an audit log entry with optional automatic diff calculation.

    Args:
        action: The audit action type
        actor_role: Role of the actor (member, admin, super_admin, partner)
        actor_id: Profile id of the actor
        company_id: ID of the affected company
        resource_type: Type of resource (e.g. 'company', 'property', 'social_account')
        resource_id: ID of the specific resource
        before_state: State before the change
        after_state: State after the change
        metadata: Additional metadata
        reason_code: Optional reason code (e.g. PLAN_LIMIT_REACHED)
        ip_address: IP address of the request
        auto_diff: If True, automatically calculate and store diff

    Returns the audit id, or "" if the write failed. Never raises.
    """
    try:
        db = database.get_db()

        diff = None
        if auto_diff and before_state and after_state:
            diff = calculate_diff(before_state, after_state)

        enriched_metadata = metadata.copy() if metadata else {}
        if diff:
            enriched_metadata["diff"] = diff
            enriched_metadata["changes_count"] = (
                len(diff.get("added", {})) +
                len(diff.get("removed", {})) +
                len(diff.get("changed", {}))
            )

        audit_log = AuditLog(
            action=action,
            actor_role=actor_role,
            actor_id=actor_id,
            company_id=company_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata if enriched_metadata else None,
            reason_code=reason_code,
            ip_address=ip_address
        )

        doc = audit_log.model_dump(mode="json")
        await db.audit_logs.insert_one(doc)
        logger.info(f"Audit log created: {action.value}" + (f" with {enriched_metadata.get('changes_count', 0)} changes" if diff else ""))
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Never fail the main operation due to audit log failure
        return ""

async def get_audit_logs_for_company(
    company_id: str,
    limit: int = 50,
    actions: Optional[List[AuditAction]] = None
) -> List[Dict[str, Any]]:
    """Most recent audit entries for a company, optionally filtered by action."""
    try:
        db = database.get_db()
        query: Dict[str, Any] = {"company_id": company_id}
        if actions:
            query["action"] = {"$in": [a.value for a in actions]}
        cursor = db.audit_logs.find(query, {"_id": 0}).sort("timestamp", -1).limit(limit)
        return await cursor.to_list(length=limit)
    except Exception as e:
        logger.error(f"Failed to get audit logs for company {company_id}: {e}")
        return []
