"""
API schemas for network detection, article access, purchase history and admin operations.
"""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CarrierOut(BaseModel):
    name: str
    code: str
    country: str


class NetworkOut(BaseModel):
    network_type: str
    is_mobile: bool
    carrier: CarrierOut | None = None
    ip: str | None = None


class PriceOut(BaseModel):
    amount: int = Field(..., description="Minor units (cents)")
    currency: str


class ArticleTeaserOut(BaseModel):
    id: str
    slug: str
    title: str
    teaser: str | None = None


class AccessOut(BaseModel):
    allowed: bool
    reason: str
    cta: str
    network_type: str
    article: ArticleTeaserOut | None = None
    content: str | None = None
    price: PriceOut | None = None


class UnlockOut(BaseModel):
    transaction_id: str
    article_id: str
    amount: int
    currency: str
    status: str
    created_at: datetime
    completed_at: datetime | None = None
    refunded_at: datetime | None = None


class MeOut(BaseModel):
    identified: bool
    msisdn: str | None = Field(None, description="Masked MSISDN")


class RefundIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    notify_provider: bool = True


class RefundOut(BaseModel):
    transaction_id: str
    status: str
    refund_reason: str | None
    refunded_at: datetime | None


class SettingIn(BaseModel):
    value: Any


class SettingOut(BaseModel):
    key: str
    value: Any
