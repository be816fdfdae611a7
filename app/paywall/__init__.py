"""
Paywall: entitlement decision for article access.
Decision (access) and I/O (service, bypass) are separated; contract via AccessContext.
"""
from app.paywall.access import decide_access
from app.paywall.bypass import EntitlementBypass
from app.paywall.models import (
    AccessContext,
    AccessDecision,
    AccessReason,
    CallToAction,
)
from app.paywall.service import EntitlementService

__all__ = [
    "AccessContext",
    "AccessDecision",
    "AccessReason",
    "CallToAction",
    "EntitlementBypass",
    "EntitlementService",
    "decide_access",
]
