"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
network_classifications_total = Counter(
    "network_classifications_total",
    "Client IP classifications",
    ["network_type"],  # MOBILE, WIFI, UNKNOWN
)

identification_sessions_total = Counter(
    "identification_sessions_total",
    "Identification session transitions",
    ["state"],
)

unlock_transactions_total = Counter(
    "unlock_transactions_total",
    "Unlock ledger transitions",
    ["status"],  # pending, completed, failed, refunded, deduplicated
)

entitlement_checks_total = Counter(
    "entitlement_checks_total",
    "Entitlement decisions",
    ["reason"],
)

entitlement_bypass_total = Counter(
    "entitlement_bypass_total",
    "Entitlement granted through the internal bypass secret (not revenue)",
)

provider_requests_total = Counter(
    "provider_requests_total",
    "Billing provider API requests",
    ["action", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "Billing provider API request duration",
    ["action"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
