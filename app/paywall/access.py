"""
Decision only: decide_access(ctx) -> AccessDecision.
Pure function, no I/O. The ledger lookup and bypass audit happen in EntitlementService.
"""
from __future__ import annotations

from app.network.models import NetworkType
from app.paywall.models import AccessContext, AccessDecision, AccessReason, CallToAction


def decide_access(ctx: AccessContext) -> AccessDecision:
    """
    Order matters:
    - not publicly readable -> deny, nothing else is consulted
    - bypass granted -> allow (not a paid unlock)
    - no identity -> deny; IDENTIFY on mobile data, otherwise SWITCH_TO_MOBILE
    - ledger decides UNLOCKED / NOT_UNLOCKED (PAY)
    """
    if not ctx.publicly_readable:
        return AccessDecision(allowed=False, reason=AccessReason.NOT_PUBLISHED, cta=CallToAction.NONE)

    if ctx.bypass_granted:
        return AccessDecision(allowed=True, reason=AccessReason.BYPASS, cta=CallToAction.NONE)

    if not ctx.msisdn:
        cta = CallToAction.IDENTIFY if ctx.network_type == NetworkType.MOBILE else CallToAction.SWITCH_TO_MOBILE
        return AccessDecision(allowed=False, reason=AccessReason.NEEDS_IDENTIFICATION, cta=cta)

    if ctx.is_unlocked:
        return AccessDecision(allowed=True, reason=AccessReason.UNLOCKED, cta=CallToAction.NONE)

    return AccessDecision(allowed=False, reason=AccessReason.NOT_UNLOCKED, cta=CallToAction.PAY)
