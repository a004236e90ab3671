import os
from dataclasses import dataclass, field
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _csv(name: str) -> tuple:
    raw = os.getenv(name, "")
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


def _database_url() -> str:
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "localhost")  # In Docker, this will be 'postgres'
    port = os.getenv("POSTGRES_PORT", "5433")
    name = os.getenv("POSTGRES_DB", "phlebcare")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at startup and passed around explicitly."""

    database_url: str
    database_echo: bool = False

    default_currency: str = "GBP"
    order_number_prefix: str = "YRV"
    commission_rate: Decimal = Decimal("0")
    # "release" or "keep_order": what a failed pleb assignment does to a held payment
    assignment_failure_policy: str = "release"

    stripe_secret_key: str = ""

    gp_app_id: str = ""
    gp_app_key: str = ""
    gp_merchant_id: str = ""
    gp_account_name: str = ""
    gp_channel: str = "CNP"
    gp_country: str = "GB"
    gp_environment: str = "TEST"

    maps_api_key: str = ""
    maps_base_url: str = "https://maps.googleapis.com/maps/api/distancematrix/json"

    mail_api_url: str = ""
    mail_sender: str = "no-reply@phlebcare.local"
    mail_suppress_send: bool = True

    job_assign_authorized_emails: tuple = field(default_factory=tuple)

    http_timeout_seconds: float = 20.0

    @classmethod
    def from_env(cls) -> "Settings":
        policy = os.getenv("ASSIGNMENT_FAILURE_POLICY", "release").strip().lower()
        if policy not in {"release", "keep_order"}:
            raise ValueError(
                f"ASSIGNMENT_FAILURE_POLICY must be 'release' or 'keep_order', got {policy!r}"
            )
        return cls(
            database_url=_database_url(),
            database_echo=_bool("DATABASE_ECHO"),
            default_currency=os.getenv("DEFAULT_CURRENCY", "GBP").upper(),
            order_number_prefix=os.getenv("ORDER_NUMBER_PREFIX", "YRV"),
            commission_rate=Decimal(os.getenv("COMMISSION_RATE", "0")),
            assignment_failure_policy=policy,
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            gp_app_id=os.getenv("GP_APP_ID", ""),
            gp_app_key=os.getenv("GP_APP_KEY", ""),
            gp_merchant_id=os.getenv("GP_MERCHANT_ID", ""),
            gp_account_name=os.getenv("GP_TXN_ACCOUNT_NAME", ""),
            gp_channel=os.getenv("GP_CHANNEL", "CNP"),
            gp_country=os.getenv("GP_COUNTRY", "GB"),
            gp_environment=os.getenv("GP_ENVIRONMENT", "TEST"),
            maps_api_key=os.getenv("GOOGLE_MAPS_API_KEY", ""),
            maps_base_url=os.getenv(
                "MAPS_DISTANCE_URL",
                "https://maps.googleapis.com/maps/api/distancematrix/json",
            ),
            mail_api_url=os.getenv("MAIL_API_URL", ""),
            mail_sender=os.getenv("MAIL_DEFAULT_SENDER", "no-reply@phlebcare.local"),
            mail_suppress_send=_bool("MAIL_SUPPRESS_SEND", "true"),
            job_assign_authorized_emails=_csv("JOB_ASSIGN_AUTHORIZED_EMAILS"),
            http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "20")),
        )
