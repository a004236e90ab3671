from prometheus_client import Counter, Histogram

# Business Metrics
phleb_checkout_total = Counter(
    "phleb_checkout_total",
    "Total checkouts processed",
    ["status", "checkout_type"]  # status: 'success', 'failed'
)

phleb_checkout_duration_seconds = Histogram(
    "phleb_checkout_duration_seconds",
    "Checkout duration in seconds",
    ["checkout_type"]
)

phleb_saga_compensation_total = Counter(
    "phleb_saga_compensation_total",
    "Total saga compensations triggered",
    ["step_name", "outcome"]  # outcome: 'success', 'failed'
)

phleb_coupon_redemptions_total = Counter(
    "phleb_coupon_redemptions_total",
    "Coupon redemption attempts",
    ["result"]  # 'redeemed', 'expired', 'exhausted', 'unknown', 'reversed'
)

phleb_distance_lookups_total = Counter(
    "phleb_distance_lookups_total",
    "Driving distance lookups against the maps service",
    ["result"]  # 'ok', 'no_route', 'invalid_address', 'upstream_unavailable'
)

phleb_payment_provider_errors_total = Counter(
    "phleb_payment_provider_errors_total",
    "Errors returned by payment providers",
    ["provider", "operation"]
)

phleb_notification_failures_total = Counter(
    "phleb_notification_failures_total",
    "Best-effort notifications that could not be delivered",
    ["kind"]
)

phleb_job_assignments_total = Counter(
    "phleb_job_assignments_total",
    "Pleb job assignment attempts",
    ["result"]  # 'assigned', 'rejected'
)
