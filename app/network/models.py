"""
DTO network classification: CarrierRange (table row), CarrierInfo, Classification.
"""
from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class NetworkType(str, Enum):
    MOBILE = "MOBILE"
    WIFI = "WIFI"
    UNKNOWN = "UNKNOWN"


class CarrierInfo(BaseModel):
    name: str
    code: str  # MCC-MNC or carrier identifier
    country: str

    model_config = {"frozen": True}


class CarrierRange(BaseModel):
    """One CIDR block of a carrier. kind=fixed marks known broadband (never billable)."""

    cidr: str
    carrier_name: str
    carrier_code: str
    country: str
    kind: Literal["mobile", "fixed"] = "mobile"

    model_config = {"frozen": True}

    @property
    def carrier(self) -> CarrierInfo:
        return CarrierInfo(name=self.carrier_name, code=self.carrier_code, country=self.country)


class Classification(BaseModel):
    network_type: NetworkType = Field(..., description="MOBILE is the only billable type")
    carrier: CarrierInfo | None = None
    ip: str | None = None

    model_config = {"frozen": True}

    @property
    def is_mobile(self) -> bool:
        return self.network_type == NetworkType.MOBILE
