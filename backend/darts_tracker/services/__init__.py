"""Internal application services.

Only the pure helpers are re-exported here; the database-backed store and the
game session live in :mod:`.games` and :mod:`.session`.
"""

from .validation import (
    ValidationError,
    validate_game_point_threshold,
    validate_player_names,
    validate_starting_score,
)

__all__ = [
    "ValidationError",
    "validate_game_point_threshold",
    "validate_player_names",
    "validate_starting_score",
]
