"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
entitlement_decisions_total = Counter(
    "entitlement_decisions_total",
    "Entitlement decisions by classification and result",
    ["classification", "decision"],
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Order lifecycle transitions",
    ["status"],  # pending, completed, failed, refunded
)

signature_failures_total = Counter(
    "signature_failures_total",
    "Rejected payment/webhook signatures",
    ["source"],  # checkout, webhook
)

download_tokens_issued_total = Counter(
    "download_tokens_issued_total",
    "Download tokens minted",
    ["kind"],  # paid, free, operator
)

redemptions_total = Counter(
    "redemptions_total",
    "Download token redemption attempts by outcome",
    ["outcome"],  # success, not_found, expired, already_used
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Payment gateway API requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration",
    ["method"],
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
