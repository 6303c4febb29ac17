import logging
import os

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

_initialized = False


def _parse_sample_rate(env_var: str, default: float = 0.0) -> float:
    raw_value = os.getenv(env_var)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid float (got %r); defaulting to %.2f",
            env_var,
            raw_value,
            default,
        )
        return default

    if value < 0:
        logger.warning("%s cannot be negative; defaulting to %.2f", env_var, default)
        return default

    return value


def init_sentry() -> bool:
    """Initialise Sentry from ``SENTRY_DSN`` once; return whether it is active."""

    global _initialized
    if _initialized:
        return True

    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.debug("SENTRY_DSN not provided; skipping Sentry initialization.")
        return False

    environment = (os.getenv("SENTRY_ENVIRONMENT") or "").strip() or None
    traces_sample_rate = _parse_sample_rate("SENTRY_TRACES_SAMPLE_RATE", default=0.0)

    sentry_sdk.init(
        dsn=dsn,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=None)],
        environment=environment,
        traces_sample_rate=traces_sample_rate,
    )
    _initialized = True
    logger.info(
        "Initialized Sentry%s",
        f" (environment={environment})" if environment else "",
    )
    return True


def report_exception(exc: BaseException) -> None:
    """Send ``exc`` to Sentry when it is configured."""

    if init_sentry():
        sentry_sdk.capture_exception(exc)
