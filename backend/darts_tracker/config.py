import logging
import os

logger = logging.getLogger(__name__)

STARTING_SCORES = (101, 301, 501, 701, 1001)


def _canon_bool(val, default=False):
    """
    Normalize a boolean flag from the environment:
      - unset/empty -> ``default``
      - 'true', '1', 'yes', 'on' (any case) -> True
      - anything else -> False
    """
    if val is None or not val.strip():
        return default
    return val.strip().lower() in {"true", "1", "yes", "on"}


def _parse_starting_score(env_var: str, default: int = 501) -> int:
    raw_value = os.getenv(env_var)
    if raw_value is None or not raw_value.strip():
        return default

    try:
        value = int(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid integer (got %r); defaulting to %d",
            env_var,
            raw_value,
            default,
        )
        return default

    if value not in STARTING_SCORES:
        logger.warning(
            "%s must be one of %s; defaulting to %d",
            env_var,
            ", ".join(str(s) for s in STARTING_SCORES),
            default,
        )
        return default

    return value


def auto_commit_enabled() -> bool:
    """Whether a turn is committed as soon as its outcome is known."""

    return _canon_bool(os.getenv("DARTS_AUTO_COMMIT"))


DEFAULT_STARTING_SCORE = _parse_starting_score("DARTS_DEFAULT_STARTING_SCORE")
