from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

DOMAINS_REGISTERED = Counter(
    "brandlink_domains_registered_total",
    "Total custom domains registered",
    ["kind"],  # kind: apex/subdomain
)

DOMAIN_VERIFICATIONS = Counter(
    "brandlink_domain_verifications_total",
    "Total DNS verification attempts",
    ["outcome", "record_type"],
)

DOMAIN_PROMOTIONS = Counter(
    "brandlink_domain_promotions_total",
    "Verified domains promoted",
    ["status"],  # status: active/ssl_failed
)

DEFAULT_DOMAIN_CHANGES = Counter(
    "brandlink_default_domain_changes_total",
    "Default domain switches",
)

DOMAINS_DELETED = Counter(
    "brandlink_domains_deleted_total",
    "Custom domains deleted",
)

PENDING_PROMOTIONS = Gauge(
    "brandlink_pending_promotions",
    "Promotions scheduled but not finished",
)

VERIFICATION_DURATION = Histogram(
    "brandlink_verification_duration_seconds",
    "DNS verification latency",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
