"""
NetworkClassifier: IP address -> MOBILE / WIFI / UNKNOWN + carrier.

Pure and synchronous: no I/O, no caching across requests. The table is split
per IP version and indexed by prefix length; lookup masks the address once
per distinct prefix length, longest first, so the first hit is the
longest-prefix match. A table of a few hundred ranges has a handful of
distinct prefix lengths.
"""
from __future__ import annotations

import ipaddress
import logging
from functools import lru_cache

from app.core.config import settings
from app.network.carriers import load_carrier_table
from app.network.models import CarrierInfo, CarrierRange, Classification, NetworkType
from app.utils.metrics import network_classifications_total

logger = logging.getLogger(__name__)

# Local networks not claimed by any carrier range: the visitor sits behind a LAN/Wi-Fi router.
LOCAL_NETWORKS = tuple(
    ipaddress.ip_network(n)
    for n in (
        "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "127.0.0.0/8", "169.254.0.0/16",
        "::1/128", "fe80::/10", "fc00::/7",
    )
)


def parse_ip(value: str | None) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if not value:
        return None
    try:
        addr = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


class NetworkClassifier:
    def __init__(self, ranges: list[CarrierRange]) -> None:
        # version -> prefixlen -> network int -> range
        self._index: dict[int, dict[int, dict[int, CarrierRange]]] = {4: {}, 6: {}}
        for row in ranges:
            net = ipaddress.ip_network(row.cidr, strict=False)
            by_prefix = self._index[net.version].setdefault(net.prefixlen, {})
            key = int(net.network_address)
            if key in by_prefix and by_prefix[key].carrier_code != row.carrier_code:
                logger.warning(
                    "carrier_range_duplicate",
                    extra={"carrier": row.carrier_code, "cidr": row.cidr},
                )
            by_prefix.setdefault(key, row)
        self._prefixes = {
            version: sorted(table.keys(), reverse=True) for version, table in self._index.items()
        }
        self._size = len(ranges)

    def __len__(self) -> int:
        return self._size

    def lookup(self, ip: str | None) -> CarrierRange | None:
        """Longest-prefix match, None when no range contains the address."""
        addr = parse_ip(ip)
        if addr is None:
            return None
        bits = addr.max_prefixlen
        value = int(addr)
        table = self._index[addr.version]
        for prefixlen in self._prefixes[addr.version]:
            mask = ((1 << prefixlen) - 1) << (bits - prefixlen) if prefixlen else 0
            row = table[prefixlen].get(value & mask)
            if row is not None:
                return row
        return None

    def classify(self, ip: str | None) -> Classification:
        addr = parse_ip(ip)
        if addr is None:
            result = Classification(network_type=NetworkType.UNKNOWN, ip=ip or None)
        else:
            normalized = str(addr)
            row = self.lookup(normalized)
            if row is not None:
                network_type = NetworkType.MOBILE if row.kind == "mobile" else NetworkType.WIFI
                result = Classification(network_type=network_type, carrier=row.carrier, ip=normalized)
            elif any(addr in net for net in LOCAL_NETWORKS if net.version == addr.version):
                result = Classification(network_type=NetworkType.WIFI, ip=normalized)
            else:
                # fail closed: unknown networks never reach the charge step
                result = Classification(network_type=NetworkType.UNKNOWN, ip=normalized)
        network_classifications_total.labels(network_type=result.network_type.value).inc()
        return result

    def carriers(self) -> list[CarrierInfo]:
        seen: dict[str, CarrierInfo] = {}
        for table in self._index.values():
            for by_network in table.values():
                for row in by_network.values():
                    seen.setdefault(row.carrier_code, row.carrier)
        return sorted(seen.values(), key=lambda c: (c.country, c.code))

    def carrier_by_code(self, code: str) -> CarrierInfo | None:
        return next((c for c in self.carriers() if c.code == code), None)

    def carriers_by_country(self, country: str) -> list[CarrierInfo]:
        return [c for c in self.carriers() if c.country == country.upper()]


@lru_cache(maxsize=1)
def get_classifier() -> NetworkClassifier:
    """Process-wide classifier, built once from the configured table and read-only afterwards."""
    classifier = NetworkClassifier(load_carrier_table(settings.carrier_ranges_file))
    logger.info("network_classifier_ready", extra={"count": len(classifier)})
    return classifier
