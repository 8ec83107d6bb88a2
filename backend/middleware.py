from fastapi import Request, HTTPException, status
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from typing import Awaitable, Callable, Optional, Union
from functools import wraps
import logging
from auth import decode_access_token
from models import Actor, AuditAction, GateResult, ResourceKey, UsageStrategy, UserRole
from database import database
from services.entitlement_errors import EntitlementServiceUnavailable, PlanLimitReachedError
from services.quota_gate import quota_gate

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    return decode_access_token(token)

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user or not user.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def get_current_actor(request: Request) -> Actor:
    """Authenticated actor built from the token subject and its profile record.

    Identity flags (is_super_admin, is_partner) come from the profile, never
    from the token, so revoking them takes effect on the next request.
    """
    user = await require_auth(request)
    db = database.get_db()

    try:
        profile = await db.profiles.find_one({"id": user["sub"]}, {"_id": 0})
    except PyMongoError as e:
        logger.error(f"Profile lookup failed for {user['sub']}: {e}")
        raise EntitlementServiceUnavailable("load profile", e) from e

    if not profile:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    try:
        actor = Actor(**profile)
    except ValidationError as e:
        logger.warning(f"Malformed profile {user['sub']}: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    request.state.actor = actor
    return actor

async def require_super_admin(request: Request) -> Actor:
    """Require a platform super admin."""
    actor = await get_current_actor(request)
    if not actor.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return actor

async def require_company_admin(request: Request) -> Actor:
    """Require an admin of the actor's own company (super admins pass)."""
    actor = await get_current_actor(request)
    if actor.is_super_admin:
        return actor
    if not actor.company_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No company found"
        )
    if actor.role != UserRole.ROLE_ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only company admins can perform this action"
        )
    return actor

def actor_role(actor: Actor) -> str:
    """Role label recorded on audit entries."""
    if actor.is_super_admin:
        return UserRole.ROLE_SUPER_ADMIN.value
    if actor.is_partner:
        return "partner"
    return actor.role or UserRole.ROLE_MEMBER.value

async def log_gate_denial(request: Request, actor: Actor, result: GateResult, attempted: str):
    """Audit a plan-limit denial at the HTTP edge."""
    from utils.audit import create_audit_log

    logger.warning(
        f"Blocked {attempted} for company {actor.company_id}: "
        f"{result.current_count}/{result.limit} {result.resource_key.value if result.resource_key else ''} "
        f"on {result.plan_name}"
    )
    await create_audit_log(
        action=AuditAction.PLAN_GATE_DENIED,
        actor_role=actor_role(actor),
        actor_id=actor.id,
        company_id=actor.company_id,
        resource_type=result.resource_key.value if result.resource_key else None,
        reason_code=PlanLimitReachedError.code,
        ip_address=request.client.host if request.client else None,
        metadata={
            "attempted": attempted,
            "path": str(request.url.path),
            "plan_name": result.plan_name,
            "plan_source": result.plan_source.value if result.plan_source else None,
            "current_count": result.current_count,
            "limit": result.limit,
            "suggested_plan": result.suggested_plan,
            "strategy": result.strategy.value if result.strategy else None,
        }
    )

def require_resource_capacity(
    resource_key: Union[str, ResourceKey],
    strategy: Union[str, UsageStrategy] = UsageStrategy.LIVE,
    guard: Callable[[Request], Awaitable[Actor]] = get_current_actor
):
    """
    Decorator enforcing the soft cap on a plan-limited resource before the endpoint runs.
    `guard` authenticates the actor first. The wrapped endpoint must take
    `request: Request`; the actor is left on request.state.actor and the
    decision on request.state.gate_result.

    Usage:
        @router.post("/invitations")
        @require_resource_capacity(ResourceKey.TEAM_MEMBERS, guard=require_company_admin)
        async def invite(request: Request, data: TeamInvitationRequest):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(request: Request, *args, **kwargs):
            actor = await guard(request)

            result = await quota_gate.check_resource_limit(actor, actor.company_id, resource_key, strategy)
            if not result.allowed:
                await log_gate_denial(request, actor, result, attempted=func.__name__)
                raise PlanLimitReachedError(result)

            request.state.gate_result = result
            return await func(request, *args, **kwargs)

        return wrapper
    return decorator
