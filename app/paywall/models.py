"""
DTO paywall: AccessContext (input of decide_access) and AccessDecision.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from app.network.models import NetworkType


class AccessReason(str, Enum):
    NOT_PUBLISHED = "NOT_PUBLISHED"
    BYPASS = "BYPASS"
    NEEDS_IDENTIFICATION = "NEEDS_IDENTIFICATION"
    UNLOCKED = "UNLOCKED"
    NOT_UNLOCKED = "NOT_UNLOCKED"


class CallToAction(str, Enum):
    NONE = "NONE"
    PAY = "PAY"
    IDENTIFY = "IDENTIFY"
    SWITCH_TO_MOBILE = "SWITCH_TO_MOBILE"


# ----- Input of decide_access (one contract instead of growing signatures) -----


class AccessContext(BaseModel):
    """Everything decide_access needs, already resolved by the I/O layer."""

    article_id: str
    publicly_readable: bool
    bypass_granted: bool = False
    msisdn: str | None = None
    network_type: NetworkType = NetworkType.UNKNOWN
    # True if the ledger holds a completed unlock for (msisdn, article_id)
    is_unlocked: bool = False

    model_config = {"frozen": True}


# ----- Access decision (pure logic, no I/O) -----


class AccessDecision(BaseModel):
    allowed: bool
    reason: AccessReason
    cta: CallToAction = Field(
        CallToAction.NONE,
        description="What the page should offer when access is denied",
    )

    model_config = {"frozen": True}
