"""
Team Invitation API
Company admins invite team members; seats are capped by the plan's teamMembers limit.
Acceptance (auth user creation) happens elsewhere and is what adds a profile.
"""
from fastapi import APIRouter, HTTPException, Request, status
from database import database
from middleware import require_company_admin, require_resource_capacity, actor_role
from models import AuditAction, ResourceKey, TeamInvitation, TeamInvitationRequest, UsageStrategy
from services.entitlement_errors import EntitlementError
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/team", tags=["team"])


@router.post("/invitations")
@require_resource_capacity(ResourceKey.TEAM_MEMBERS, UsageStrategy.LIVE, guard=require_company_admin)
async def create_invitation(request: Request, data: TeamInvitationRequest):
    """Record a pending invitation once the seat check has passed."""
    actor = request.state.actor
    company_id = actor.company_id
    if not company_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No company found")
    db = database.get_db()

    try:
        email = data.email.strip().lower()
        member = await db.profiles.find_one({"company_id": company_id, "email": email}, {"_id": 0, "id": 1})
        if member:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="User already in your team"
            )

        existing = await db.team_invitations.find_one(
            {"company_id": company_id, "email": email, "status": "pending"},
            {"_id": 0}
        )
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="An invitation is already pending for this email"
            )

        invitation = TeamInvitation(
            company_id=company_id,
            email=email,
            role=data.role,
            invited_by=actor.id,
        )
        doc = invitation.model_dump(mode="json")
        await db.team_invitations.insert_one(doc)
        doc.pop("_id", None)

        gate = request.state.gate_result
        await create_audit_log(
            action=AuditAction.TEAM_INVITATION_CREATED,
            actor_role=actor_role(actor),
            actor_id=actor.id,
            company_id=company_id,
            resource_type="team_invitation",
            resource_id=invitation.invitation_id,
            metadata={
                "email": email,
                "role": data.role.value,
                "seats_used": gate.current_count,
                "seat_limit": gate.limit,
            }
        )

        logger.info(f"Team invitation {invitation.invitation_id} created for company {company_id}")
        return {"message": "Invitation created", "invitation": doc}

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Team invitation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create invitation"
        )
