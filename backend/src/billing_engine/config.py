from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .retry_policy import RetryPolicy
from .schedule import BillingSchedule

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


@dataclass(frozen=True)
class Settings:
    app_name: str = "Billing Engine"
    api_prefix: str = "/rest/v1"
    log_level: str = "INFO"
    max_retries: int = 4
    backoff_base_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 60.0
    # 0 keeps batches unbounded.
    max_concurrency: int = 0
    sunday_retries_pending: bool = False
    invoice_store_backend: str = "inmemory"
    database_url: str = ""
    payment_provider: str = "stub"
    payment_provider_base_url: str = ""
    payment_provider_api_key: str = ""
    payment_provider_timeout_seconds: int = 30
    payment_stub_seed: int | None = None
    notifier_sender_type: str = "log"
    slack_webhook_url: str = ""
    slack_timeout_seconds: int = 10
    seed_demo_data: bool = False
    runtime_config_guard_mode: str = "warn"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_seconds=self.backoff_base_seconds,
            multiplier=self.backoff_multiplier,
            max_delay_seconds=self.backoff_max_seconds,
        )

    def billing_schedule(self) -> BillingSchedule:
        return BillingSchedule.default(sunday_retries_pending=self.sunday_retries_pending)


def get_settings() -> Settings:
    stub_seed = os.getenv("PAYMENT_STUB_SEED")
    return Settings(
        app_name=os.getenv("BILLING_APP_NAME", "Billing Engine"),
        api_prefix=os.getenv("BILLING_API_PREFIX", "/rest/v1"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        max_retries=_as_int(os.getenv("BILLING_MAX_RETRIES"), 4),
        backoff_base_seconds=_as_float(os.getenv("BILLING_BACKOFF_BASE_SECONDS"), 1.0),
        backoff_multiplier=_as_float(os.getenv("BILLING_BACKOFF_MULTIPLIER"), 2.0),
        backoff_max_seconds=_as_float(os.getenv("BILLING_BACKOFF_MAX_SECONDS"), 60.0),
        max_concurrency=_as_int(os.getenv("BILLING_MAX_CONCURRENCY"), 0),
        sunday_retries_pending=_as_bool(os.getenv("BILLING_SUNDAY_RETRIES_PENDING"), False),
        invoice_store_backend=os.getenv("INVOICE_STORE_BACKEND", "inmemory"),
        database_url=os.getenv("DATABASE_URL", ""),
        payment_provider=_normalize_mode(
            os.getenv("PAYMENT_PROVIDER"),
            default="stub",
            allowed={"stub", "http"},
        ),
        payment_provider_base_url=os.getenv("PAYMENT_PROVIDER_BASE_URL", ""),
        payment_provider_api_key=os.getenv("PAYMENT_PROVIDER_API_KEY", ""),
        payment_provider_timeout_seconds=_as_int(os.getenv("PAYMENT_PROVIDER_TIMEOUT_SECONDS"), 30),
        payment_stub_seed=_as_int(stub_seed, 0) if stub_seed is not None else None,
        notifier_sender_type=_normalize_mode(
            os.getenv("NOTIFIER_SENDER_TYPE"),
            default="log",
            allowed={"log", "slack"},
        ),
        slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL", ""),
        slack_timeout_seconds=_as_int(os.getenv("SLACK_TIMEOUT_SECONDS"), 10),
        seed_demo_data=_as_bool(os.getenv("BILLING_SEED_DEMO_DATA"), False),
        runtime_config_guard_mode=_normalize_mode(
            os.getenv("RUNTIME_CONFIG_GUARD_MODE"),
            default="warn",
            allowed={"off", "warn", "enforce"},
        ),
    )


def runtime_config_issues(settings: Settings) -> tuple[str, ...]:
    issues: list[str] = []
    if settings.payment_provider == "http":
        if not settings.payment_provider_base_url.strip():
            issues.append("PAYMENT_PROVIDER_BASE_URL is required when PAYMENT_PROVIDER=http")
        if not settings.payment_provider_api_key.strip():
            issues.append("PAYMENT_PROVIDER_API_KEY is required when PAYMENT_PROVIDER=http")
    if settings.notifier_sender_type == "slack" and not settings.slack_webhook_url.strip():
        issues.append("SLACK_WEBHOOK_URL is required when NOTIFIER_SENDER_TYPE=slack")
    if settings.invoice_store_backend.strip().lower() == "postgres" and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when INVOICE_STORE_BACKEND=postgres")
    try:
        settings.retry_policy()
    except ValueError as exc:
        issues.append(f"invalid retry policy: {exc}")
    if settings.max_concurrency < 0:
        issues.append("BILLING_MAX_CONCURRENCY must be greater than or equal to 0")
    return tuple(issues)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
