"""Optional Sentry initialisation for the bridge CLI."""

import structlog
import sentry_sdk
from sentry_sdk.integrations.httpx import HttpxIntegration

logger = structlog.get_logger()


def init_sentry(dsn: str | None, environment: str = "development", release: str | None = None) -> None:
    """No-op when dsn is None or empty."""
    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=0.0,
        integrations=[HttpxIntegration()],
        send_default_pii=False,
    )
    logger.info("sentry_initialized", environment=environment)
