from brandlink.observability.metrics import (
    DEFAULT_DOMAIN_CHANGES,
    DOMAIN_PROMOTIONS,
    DOMAIN_VERIFICATIONS,
    DOMAINS_DELETED,
    DOMAINS_REGISTERED,
    PENDING_PROMOTIONS,
    VERIFICATION_DURATION,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "DOMAINS_REGISTERED",
    "DOMAIN_VERIFICATIONS",
    "DOMAIN_PROMOTIONS",
    "DEFAULT_DOMAIN_CHANGES",
    "DOMAINS_DELETED",
    "PENDING_PROMOTIONS",
    "VERIFICATION_DURATION",
    "generate_metrics",
    "get_content_type",
]
