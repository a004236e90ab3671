from .setup import setup_observability, configure_logging
from .metrics import (
    phleb_checkout_total,
    phleb_checkout_duration_seconds,
    phleb_saga_compensation_total,
    phleb_coupon_redemptions_total,
    phleb_distance_lookups_total,
    phleb_payment_provider_errors_total,
    phleb_notification_failures_total,
    phleb_job_assignments_total,
)
