import re
from typing import Any, List, Sequence

from ..config import STARTING_SCORES

MAX_PLAYER_NAME_LENGTH = 50
MAX_PLAYERS = 8
_PLAYER_NAME_RE = re.compile(r"^[A-Za-z0-9 '._-]+$")


class ValidationError(Exception):
    """Raised when a game setup is invalid."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


def validate_player_names(names: Sequence[Any]) -> List[str]:
    """Validate and normalise the ordered player names of a new game.

    Rules:
    - At least one player (a single player is a practice game)
    - At most ``MAX_PLAYERS`` players
    - Names are strings; surrounding whitespace is stripped
    - Names are non-empty, at most ``MAX_PLAYER_NAME_LENGTH`` characters and
      use letters, digits, spaces and ``' . _ -``
    - Names are unique, ignoring case
    """

    if isinstance(names, (str, bytes)) or not isinstance(names, Sequence):
        raise ValidationError("Players must be provided as a list of names.")
    if len(names) == 0:
        raise ValidationError("At least one player is required.")
    if len(names) > MAX_PLAYERS:
        raise ValidationError(f"Too many players. Max allowed is {MAX_PLAYERS}.")

    normalized: List[str] = []
    seen: set[str] = set()
    for i, raw in enumerate(names, start=1):
        if not isinstance(raw, str):
            raise ValidationError(f"Player #{i} name must be a string.")
        name = raw.strip()
        if not name:
            raise ValidationError(f"Player #{i} name must not be empty.")
        if len(name) > MAX_PLAYER_NAME_LENGTH:
            raise ValidationError(
                f"Player #{i} name must be at most {MAX_PLAYER_NAME_LENGTH} characters."
            )
        if not _PLAYER_NAME_RE.match(name):
            raise ValidationError(f"Player #{i} name contains invalid characters.")
        key = name.lower()
        if key in seen:
            raise ValidationError(f"Player name '{name}' is used more than once.")
        seen.add(key)
        normalized.append(name)

    return normalized


def validate_starting_score(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("Starting score must be an integer (not a boolean).")
    try:
        score = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Starting score must be an integer.")
    if score not in STARTING_SCORES:
        allowed = ", ".join(str(s) for s in STARTING_SCORES)
        raise ValidationError(f"Starting score must be one of {allowed}.")
    return score


def validate_game_point_threshold(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("Game point threshold must be an integer (not a boolean).")
    try:
        threshold = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Game point threshold must be an integer.")
    if threshold < 1:
        raise ValidationError("Game point threshold must be >= 1.")
    return threshold
