"""Sentry error tracking integration.

Initializes Sentry SDK if SENTRY_DSN env variable is set.
Does nothing otherwise, so it is safe to call unconditionally.
"""

import logging

from llm_taskgen.core.config import Settings, settings

logger = logging.getLogger(__name__)


def init_sentry(cfg: Settings | None = None) -> bool:
    """Initialize Sentry if SENTRY_DSN is configured.

    Returns True when the SDK was initialized.
    """
    cfg = cfg or settings
    if not cfg.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.httpx import HttpxIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=cfg.sentry_dsn,
        environment=cfg.app_env,
        traces_sample_rate=0.1 if cfg.app_env == "production" else 1.0,
        send_default_pii=False,
        integrations=[
            # Terminal orchestration failures are logged at ERROR → Sentry events
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            HttpxIntegration(),
        ],
    )
    logger.info("Sentry initialized (env=%s)", cfg.app_env)
    return True
