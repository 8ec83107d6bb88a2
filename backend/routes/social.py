"""Social Account Routes - connect and disconnect social platforms.

Connections use the hard cap: a slot is reserved on the company's
social_account_count with one conditional update before the account is
written, so concurrent connects cannot exceed the plan limit. A failed
write gives the slot back.
"""
from fastapi import APIRouter, HTTPException, Request, status
from database import database
from middleware import get_current_actor, log_gate_denial, actor_role
from models import AuditAction, ConnectSocialAccountRequest, ResourceKey, SocialAccount
from services.entitlement_errors import EntitlementError, EntitlementServiceUnavailable, PlanLimitReachedError
from services.quota_gate import quota_gate
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/social", tags=["social"])

SUPPORTED_PLATFORMS = {"facebook", "instagram", "linkedin", "x", "tiktok", "youtube"}

@router.post("/accounts")
async def connect_account(request: Request, data: ConnectSocialAccountRequest):
    actor = await get_current_actor(request)
    company_id = actor.company_id
    if not company_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No company found")

    platform = data.platform.strip().lower()
    if platform not in SUPPORTED_PLATFORMS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported platform: {data.platform}")

    db = database.get_db()

    try:
        existing = await db.social_accounts.find_one(
            {"company_id": company_id, "platform": platform},
            {"_id": 0}
        )
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"{platform} is already connected"
            )

        result = await quota_gate.reserve_resource(actor, company_id, ResourceKey.SOCIAL_PLATFORMS)
        if not result.allowed:
            await log_gate_denial(request, actor, result, attempted="social_account_connect")
            raise PlanLimitReachedError(result)

        account = SocialAccount(
            company_id=company_id,
            platform=platform,
            handle=data.handle,
            connected_by=actor.id,
        )
        doc = account.model_dump(mode="json")
        try:
            await db.social_accounts.insert_one(doc)
        except Exception:
            await quota_gate.release_resource(company_id, ResourceKey.SOCIAL_PLATFORMS)
            raise
        doc.pop("_id", None)

        await create_audit_log(
            action=AuditAction.SOCIAL_ACCOUNT_CONNECTED,
            actor_role=actor_role(actor),
            actor_id=actor.id,
            company_id=company_id,
            resource_type="social_account",
            resource_id=account.account_id,
            metadata={"platform": platform, "count_after": result.current_count, "limit": result.limit}
        )

        logger.info(f"Social account {platform} connected for company {company_id}")
        return {"message": "Account connected", "account": doc}

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Social account connect error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to connect account"
        )

@router.delete("/accounts/{account_id}")
async def disconnect_account(request: Request, account_id: str):
    actor = await get_current_actor(request)
    db = database.get_db()

    try:
        existing = await db.social_accounts.find_one(
            {"account_id": account_id, "company_id": actor.company_id},
            {"_id": 0}
        )
        if not existing:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")

        await db.social_accounts.delete_one({"account_id": account_id, "company_id": actor.company_id})
        try:
            await quota_gate.release_resource(actor.company_id, ResourceKey.SOCIAL_PLATFORMS)
        except EntitlementServiceUnavailable as e:
            logger.error(f"social_account_count not decremented for company {actor.company_id}: {e}")

        await create_audit_log(
            action=AuditAction.SOCIAL_ACCOUNT_DISCONNECTED,
            actor_role=actor_role(actor),
            actor_id=actor.id,
            company_id=actor.company_id,
            resource_type="social_account",
            resource_id=account_id,
            before_state=existing,
        )
        return {"message": "Account disconnected", "account_id": account_id}

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Social account disconnect error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to disconnect account"
        )
