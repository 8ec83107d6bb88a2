"""Usage counting for plan-limited resources.

Two strategies share one coroutine signature, usage_for(company_id, resource_key, company=None):
- LiveUsageCounter counts rows in the authoritative collection. Correct, one query per check.
- CachedUsageCounter reads the denormalized counter on the company record. Cheap, may drift.

Callers pick the strategy; nothing here chooses one for them.

Counter maintenance (increment/decrement/reserve_slot) keeps the cached fields in step
with creates and deletes. reserve_slot is the hard-cap path: the limit comparison and the
increment are a single conditional update.
"""
from typing import Any, Dict, List, Optional, Union
import logging

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import database
from models import Company, ResourceKey, UsageStrategy
from services.entitlement_errors import EntitlementServiceUnavailable, InvalidGateArgument, RecordNotFoundError
from services.plan_registry import plan_registry

logger = logging.getLogger(__name__)

# Authoritative collection per resource (rows carry company_id)
RESOURCE_COLLECTIONS = {
    ResourceKey.PROPERTIES: "properties",
    ResourceKey.TEAM_MEMBERS: "profiles",
    ResourceKey.SOCIAL_PLATFORMS: "social_accounts",
}

# Denormalized counter field on companies
COUNTER_FIELDS = {
    ResourceKey.PROPERTIES: "property_count",
    ResourceKey.TEAM_MEMBERS: "team_member_count",
    ResourceKey.SOCIAL_PLATFORMS: "social_account_count",
}


def _unavailable(operation: str, error: PyMongoError) -> EntitlementServiceUnavailable:
    logger.error(f"Usage data unavailable ({operation}): {error}")
    return EntitlementServiceUnavailable(operation, error)


class LiveUsageCounter:
    """Counts documents in the resource's own collection."""
    strategy = UsageStrategy.LIVE

    async def usage_for(
        self,
        company_id: str,
        resource_key: Union[str, ResourceKey],
        company: Optional[Company] = None
    ) -> int:
        resource = plan_registry.validate_resource_key(resource_key)
        db = database.get_db()
        try:
            return await db[RESOURCE_COLLECTIONS[resource]].count_documents({"company_id": company_id})
        except PyMongoError as e:
            raise _unavailable(f"count {resource.value}", e) from e


class CachedUsageCounter:
    """Reads the counter fields stored on the company record."""
    strategy = UsageStrategy.CACHED

    async def usage_for(
        self,
        company_id: str,
        resource_key: Union[str, ResourceKey],
        company: Optional[Company] = None
    ) -> int:
        resource = plan_registry.validate_resource_key(resource_key)
        field = COUNTER_FIELDS[resource]
        if company is not None:
            return getattr(company, field)

        db = database.get_db()
        try:
            doc = await db.companies.find_one({"id": company_id}, {"_id": 0, field: 1})
        except PyMongoError as e:
            raise _unavailable(f"read {field}", e) from e
        if doc is None:
            raise RecordNotFoundError("companies", company_id)
        return doc.get(field) or 0


_COUNTERS = {
    UsageStrategy.LIVE: LiveUsageCounter(),
    UsageStrategy.CACHED: CachedUsageCounter(),
}


def get_usage_counter(strategy: Union[str, UsageStrategy]):
    """Counter implementation for a strategy. Unknown strategies are rejected, not defaulted."""
    try:
        return _COUNTERS[UsageStrategy(strategy)]
    except ValueError:
        raise InvalidGateArgument(f"Unknown usage strategy: {strategy!r}")


async def usage_snapshot(
    company_id: str,
    strategy: Union[str, UsageStrategy],
    company: Optional[Company] = None
) -> Dict[str, int]:
    """Current usage of every resource, keyed by resource key value."""
    counter = get_usage_counter(strategy)
    usage = {}
    for resource in ResourceKey:
        usage[resource.value] = await counter.usage_for(company_id, resource, company=company)
    return usage


# ============================================================================
# COUNTER MAINTENANCE
# ============================================================================

def _add_to_counter(field: str, amount: int) -> List[Dict[str, Any]]:
    """Update pipeline adding to a counter; a null or missing counter counts as 0."""
    return [{"$set": {field: {"$add": [{"$ifNull": [f"${field}", 0]}, amount]}}}]


async def increment_counter(company_id: str, resource_key: Union[str, ResourceKey], amount: int = 1) -> None:
    resource = plan_registry.validate_resource_key(resource_key)
    field = COUNTER_FIELDS[resource]
    db = database.get_db()
    try:
        await db.companies.update_one({"id": company_id}, _add_to_counter(field, amount))
    except PyMongoError as e:
        raise _unavailable(f"increment {field}", e) from e


async def decrement_counter(company_id: str, resource_key: Union[str, ResourceKey]) -> bool:
    """Decrement a cached counter. Never goes below zero; returns False when already at zero."""
    resource = plan_registry.validate_resource_key(resource_key)
    field = COUNTER_FIELDS[resource]
    db = database.get_db()
    try:
        result = await db.companies.update_one(
            {"id": company_id, field: {"$gt": 0}},
            {"$inc": {field: -1}},
        )
    except PyMongoError as e:
        raise _unavailable(f"decrement {field}", e) from e
    return result.modified_count > 0


async def reserve_slot(company_id: str, resource_key: Union[str, ResourceKey], limit: int) -> Optional[int]:
    """Atomically take one unit of a resource if the counter is below limit.

    Returns the counter value after the increment, or None when the guarded
    update matched nothing (limit reached or company absent). An unlimited
    limit increments unconditionally.
    """
    resource = plan_registry.validate_resource_key(resource_key)
    field = COUNTER_FIELDS[resource]

    query = {"id": company_id}
    if not plan_registry.is_unlimited(limit):
        guards = [{field: {"$lt": limit}}]
        if limit > 0:
            # Matches a null or missing counter, both an implicit zero
            guards.append({field: None})
        query["$or"] = guards

    db = database.get_db()
    try:
        doc = await db.companies.find_one_and_update(
            query,
            _add_to_counter(field, 1),
            projection={"_id": 0, field: 1},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        raise _unavailable(f"reserve {field}", e) from e

    if doc is None:
        return None
    return doc.get(field, 0)
