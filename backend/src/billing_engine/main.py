from __future__ import annotations

import logging

from fastapi import FastAPI

from .api import configure_services, health_router, router
from .config import configure_logging, get_settings, runtime_config_issues
from .services import build_services

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    config_issues = runtime_config_issues(settings)
    if config_issues:
        if settings.runtime_config_guard_mode == "enforce":
            raise RuntimeError(
                "runtime config guard blocked startup: "
                + "; ".join(config_issues)
                + ". Remediation: set the missing values or switch PAYMENT_PROVIDER=stub, "
                + "NOTIFIER_SENDER_TYPE=log, INVOICE_STORE_BACKEND=inmemory."
            )
        if settings.runtime_config_guard_mode == "warn":
            for issue in config_issues:
                logger.warning("runtime config guard warning: %s", issue)

    # Collaborators are built only once the guard has accepted the settings.
    configure_services(build_services(settings))

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.include_router(health_router)
    app.include_router(router)
    return app


app = create_app()
