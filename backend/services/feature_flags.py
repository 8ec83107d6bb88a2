"""Per-company feature flag overlay.

companies.feature_flags is a sparse map of feature key -> bool. Only an explicit
boolean true grants the feature; anything else defers to the resolved plan.
The overlay is per-feature only and never touches resource limits.
"""
from typing import Dict, List, Optional, Union

from models import Company, FeatureKey
from services.plan_registry import plan_registry


def is_feature_overridden(company: Optional[Company], feature_key: Union[str, FeatureKey]) -> Optional[bool]:
    """True if the company has an explicit grant for the feature, otherwise None."""
    feature = plan_registry.validate_feature_key(feature_key)
    if company is None:
        return None
    if company.feature_flags.get(feature.value) is True:
        return True
    return None


def active_overrides(company: Optional[Company]) -> List[str]:
    """Feature keys granted by the overlay, in FeatureKey order. Unknown keys are ignored."""
    if company is None:
        return []
    return [f.value for f in FeatureKey if company.feature_flags.get(f.value) is True]


def apply_overlay(features: Dict[str, bool], company: Optional[Company]) -> Dict[str, bool]:
    """Copy of a plan feature map with overlay grants switched on."""
    merged = dict(features)
    for key in active_overrides(company):
        merged[key] = True
    return merged
