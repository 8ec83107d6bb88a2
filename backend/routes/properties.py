"""Property Routes - create and delete properties under the plan's property cap.

Creation uses the soft cap with a live count of the properties collection.
The cached property_count on the company is kept in step on create and delete.
"""
from fastapi import APIRouter, HTTPException, Request, status
from database import database
from middleware import get_current_actor, log_gate_denial, actor_role
from models import Property, AuditAction, CreatePropertyRequest, ResourceKey, UsageStrategy
from services.entitlement_errors import EntitlementError, EntitlementServiceUnavailable, PlanLimitReachedError
from services.quota_gate import quota_gate
from services.usage_counter import increment_counter
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/properties", tags=["properties"])

@router.post("")
async def create_property(request: Request, data: CreatePropertyRequest):
    """Create a new property for the caller's company.

    Enforces plan-based property limits.
    """
    actor = await get_current_actor(request)
    if not actor.company_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No company found")
    db = database.get_db()

    try:
        # PROPERTY CAP ENFORCEMENT (agent_pro 25 / agency_growth 100 / unlimited)
        result = await quota_gate.check_resource_limit(
            actor, actor.company_id, ResourceKey.PROPERTIES, UsageStrategy.LIVE
        )
        if not result.allowed:
            await log_gate_denial(request, actor, result, attempted="property_create")
            raise PlanLimitReachedError(result)

        property_obj = Property(
            company_id=actor.company_id,
            address_line_1=data.address_line_1,
            address_line_2=data.address_line_2,
            city=data.city,
            postcode=data.postcode,
            property_type=data.property_type,
            number_of_units=data.number_of_units,
            created_by=actor.id,
        )

        prop_doc = property_obj.model_dump(mode="json")
        await db.properties.insert_one(prop_doc)

        # Remove MongoDB _id from response
        prop_doc.pop("_id", None)

        try:
            await increment_counter(actor.company_id, ResourceKey.PROPERTIES)
        except EntitlementServiceUnavailable as e:
            # Property is written; live counts stay correct and the cached counter lags
            logger.error(f"property_count not incremented for company {actor.company_id}: {e}")

        await create_audit_log(
            action=AuditAction.PROPERTY_CREATED,
            actor_role=actor_role(actor),
            actor_id=actor.id,
            company_id=actor.company_id,
            resource_type="property",
            resource_id=property_obj.property_id,
            metadata={
                "address": f"{data.address_line_1}, {data.city}",
                "postcode": data.postcode,
                "count_after": result.current_count + 1,
                "limit": result.limit,
            }
        )

        logger.info(f"Property created for company {actor.company_id}: {property_obj.property_id}")

        return {
            "message": "Property created successfully",
            "property_id": property_obj.property_id,
            "property": prop_doc
        }

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Property creation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create property"
        )

@router.delete("/{property_id}")
async def delete_property(request: Request, property_id: str):
    actor = await get_current_actor(request)
    db = database.get_db()

    try:
        existing = await db.properties.find_one(
            {"property_id": property_id, "company_id": actor.company_id},
            {"_id": 0}
        )
        if not existing:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")

        await db.properties.delete_one({"property_id": property_id, "company_id": actor.company_id})
        try:
            await quota_gate.release_resource(actor.company_id, ResourceKey.PROPERTIES)
        except EntitlementServiceUnavailable as e:
            logger.error(f"property_count not decremented for company {actor.company_id}: {e}")

        await create_audit_log(
            action=AuditAction.PROPERTY_DELETED,
            actor_role=actor_role(actor),
            actor_id=actor.id,
            company_id=actor.company_id,
            resource_type="property",
            resource_id=property_id,
            before_state=existing,
        )

        return {"message": "Property deleted", "property_id": property_id}

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Property deletion error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete property"
        )
