"""Error kinds raised by the entitlement engine.

NotEntitled is normally returned as a GateResult with allowed=False; the
exception form exists for callers that prefer to raise. ServiceUnavailable
means the quota could not be evaluated and must never be read as a denial.
"""
from typing import Optional


class EntitlementError(Exception):
    """Base class for entitlement engine errors."""


class NotEntitledError(EntitlementError):
    """The resolved plan does not permit the requested action."""
    code = "NOT_ENTITLED"

    def __init__(self, result, message: Optional[str] = None):
        self.result = result
        self.message = message or getattr(result, "message", None) or getattr(result, "reason", None) or "Not entitled"
        super().__init__(self.message)


class PlanLimitReachedError(NotEntitledError):
    code = "PLAN_LIMIT_REACHED"


class FeatureLockedError(NotEntitledError):
    code = "FEATURE_LOCKED"


class RecordNotFoundError(EntitlementError):
    """Company or profile record is absent."""

    def __init__(self, collection: str, record_id: Optional[str]):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record not found: {record_id}")


class EntitlementServiceUnavailable(EntitlementError):
    """The data layer could not be read. Retryable."""
    code = "ENTITLEMENT_SERVICE_UNAVAILABLE"
    retry_after_seconds = 5

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Entitlement data unavailable during {operation}: {cause}")


class InvalidGateArgument(EntitlementError, ValueError):
    """Unknown resource or feature key. A programming error, not user-recoverable."""
    code = "INVALID_ARGUMENT"
