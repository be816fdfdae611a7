"""
Carrier IP range tables.

The built-in table covers the DACH and Cyprus operators we bill through; a
JSON file (settings.carrier_ranges_file) can add carriers or replace them by
carrier code. File format, one object per carrier:

    [{"name": "Alpha", "code": "999-01", "country": "XX",
      "ipRanges": ["10.20.0.0/16"], "kind": "mobile"}]
"""
from __future__ import annotations

import ipaddress
import json
import logging
from pathlib import Path
from typing import Any

from app.network.models import CarrierRange

logger = logging.getLogger(__name__)


DEFAULT_CARRIERS: list[dict[str, Any]] = [
    # Germany
    {"name": "Deutsche Telekom", "code": "262-01", "country": "DE",
     "ipRanges": ["80.187.0.0/16", "93.104.0.0/14", "217.0.0.0/13", "2.160.0.0/12"]},
    {"name": "Vodafone DE", "code": "262-02", "country": "DE",
     "ipRanges": ["139.7.0.0/16", "178.0.0.0/11", "46.5.0.0/16"]},
    {"name": "O2 Germany", "code": "262-03", "country": "DE",
     "ipRanges": ["37.24.0.0/14", "85.176.0.0/13", "176.199.0.0/16"]},
    # Austria
    {"name": "A1 Telekom Austria", "code": "232-01", "country": "AT",
     "ipRanges": ["77.116.0.0/14", "91.113.0.0/16"]},
    {"name": "Magenta Telekom AT", "code": "232-03", "country": "AT",
     "ipRanges": ["84.112.0.0/12"]},
    # Switzerland
    {"name": "Swisscom", "code": "228-01", "country": "CH",
     "ipRanges": ["178.197.0.0/16", "31.164.0.0/14"]},
    # Cyprus
    {"name": "PrimeTel", "code": "280-01", "country": "CY",
     "ipRanges": ["82.102.0.0/16", "82.116.0.0/14", "217.175.0.0/16"]},
    {"name": "Cyta", "code": "280-02", "country": "CY",
     "ipRanges": ["212.31.64.0/19", "195.14.128.0/19"]},
    {"name": "Epic (MTN Cyprus)", "code": "280-10", "country": "CY",
     "ipRanges": ["46.198.0.0/16", "109.69.0.0/16"]},
]


def is_valid_cidr(value: str) -> bool:
    try:
        ipaddress.ip_network(value, strict=True)
    except ValueError:
        return False
    return True


def merge_carrier_tables(
    custom: list[dict[str, Any]],
    defaults: list[dict[str, Any]] = DEFAULT_CARRIERS,
) -> list[dict[str, Any]]:
    """Custom entries replace defaults with the same carrier code; new codes are appended."""
    merged: dict[str, dict[str, Any]] = {c["code"]: c for c in defaults}
    for carrier in custom:
        merged[carrier["code"]] = carrier
    return list(merged.values())


def expand_ranges(carriers: list[dict[str, Any]]) -> list[CarrierRange]:
    """Flatten carrier objects into CarrierRange rows. Invalid CIDRs fail loudly at startup."""
    rows: list[CarrierRange] = []
    for carrier in carriers:
        kind = carrier.get("kind", "mobile")
        for cidr in carrier.get("ipRanges", []):
            if not is_valid_cidr(cidr):
                raise ValueError(f"Invalid CIDR {cidr!r} for carrier {carrier.get('code')}")
            rows.append(
                CarrierRange(
                    cidr=cidr,
                    carrier_name=carrier["name"],
                    carrier_code=carrier["code"],
                    country=carrier["country"],
                    kind=kind,
                )
            )
    return rows


def load_carrier_table(path: str | None = None) -> list[CarrierRange]:
    """Built-in table, optionally merged with a JSON override file."""
    carriers = DEFAULT_CARRIERS
    if path:
        custom = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(custom, list):
            raise ValueError(f"{path}: expected a JSON list of carriers")
        carriers = merge_carrier_tables(custom)
        logger.info("carrier_ranges_loaded", extra={"file_path": path})
    return expand_ranges(carriers)
