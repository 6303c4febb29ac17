"""X01 darts scoring engine.
Tracks darts -> turns -> rounds -> legs -> match with bust, double-in and
double-out rules.

State lives in plain objects (:class:`LegState`, :class:`PlayerState`) and only
changes through :func:`apply_turn`, which returns fresh copies together with a
list of effects for the caller to run (persisting a snapshot, announcing the
match winner). Nothing here performs I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

FACE_VALUES = frozenset(list(range(0, 21)) + [25])
MULTIPLIERS = (1, 2, 3)
DARTS_PER_TURN = 3


class InvalidDart(ValueError):
    """Raised when a dart value or multiplier cannot be entered."""


@dataclass(frozen=True)
class Dart:
    """A single dart: face value 0-20 or 25 (bull), multiplier 1-3."""

    value: int
    multiplier: int = 1

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or self.value not in FACE_VALUES:
            raise InvalidDart(f"dart value must be 0-20 or 25, got {self.value!r}")
        if isinstance(self.multiplier, bool) or self.multiplier not in MULTIPLIERS:
            raise InvalidDart(f"multiplier must be 1, 2 or 3, got {self.multiplier!r}")

    @property
    def score(self) -> int:
        return self.value * self.multiplier

    def to_dict(self) -> Dict[str, int]:
        return {"value": self.value, "multiplier": self.multiplier}


MISS = Dart(0, 1)


def format_dart(dart: Dart) -> str:
    """Short label such as ``20``, ``20x2`` or ``25x3``; misses render empty."""
    if not dart.value:
        return ""
    if dart.multiplier > 1:
        return f"{dart.value}x{dart.multiplier}"
    return str(dart.value)


def as_dart(raw: Union[Dart, Mapping, Sequence]) -> Dart:
    """Coerce ``Dart``, ``{"value", "multiplier"}`` or ``(value, multiplier)``."""
    if isinstance(raw, Dart):
        return raw
    if isinstance(raw, Mapping):
        return Dart(raw.get("value", 0), raw.get("multiplier", 1))
    if isinstance(raw, (tuple, list)) and len(raw) == 2:
        return Dart(raw[0], raw[1])
    raise InvalidDart(f"cannot read a dart from {raw!r}")


def turn_score(darts: Iterable[Dart]) -> int:
    return sum(d.score for d in darts)


def pad_darts(darts: Sequence[Dart]) -> Tuple[Dart, ...]:
    """Fill a turn up to three darts with misses."""
    if len(darts) > DARTS_PER_TURN:
        raise InvalidDart(f"a turn has at most {DARTS_PER_TURN} darts")
    return tuple(darts) + (MISS,) * (DARTS_PER_TURN - len(darts))


def finishes_on_double(darts: Sequence[Dart]) -> bool:
    """True if the last dart that hit a scoring bed was a double."""
    for dart in reversed(darts):
        if dart.value:
            return dart.multiplier == 2
    return False


@dataclass(frozen=True)
class TurnRecord:
    round: int
    score: int
    darts: Tuple[Dart, ...]


@dataclass
class PlayerState:
    id: str
    name: str
    remaining: int
    history: List[TurnRecord] = field(default_factory=list)

    def played_round(self, round_number: int) -> bool:
        return any(t.round == round_number for t in self.history)


@dataclass(frozen=True)
class GameSettings:
    starting_score: int = 501
    double_in: bool = False
    double_out: bool = True
    game_point_threshold: int = 1

    def __post_init__(self) -> None:
        if self.starting_score <= 0:
            raise ValueError("starting score must be positive")
        if self.game_point_threshold < 1:
            raise ValueError("game point threshold must be at least 1")


@dataclass
class LegState:
    active: bool = True
    round: int = 1
    winner: Optional[str] = None
    game_points: Dict[str, int] = field(default_factory=dict)
    current_player_index: int = 0
    round_complete: bool = False
    leg: int = 1


@dataclass(frozen=True)
class Snapshot:
    """Everything needed to store or resume a game."""

    settings: GameSettings
    leg: LegState
    players: Tuple[PlayerState, ...]


class TurnOutcome(str, Enum):
    SCORED = "scored"
    BUST = "bust"
    LEG_WON = "leg_won"
    MATCH_WON = "match_won"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PersistSnapshot:
    snapshot: Snapshot


@dataclass(frozen=True)
class MatchComplete:
    winner: PlayerState
    game_points: Dict[str, int]


Effect = Union[PersistSnapshot, MatchComplete]


@dataclass
class TurnResult:
    outcome: TurnOutcome
    leg: LegState
    players: List[PlayerState]
    effects: List[Effect] = field(default_factory=list)
    reason: Optional[str] = None
    player_id: Optional[str] = None
    record: Optional[TurnRecord] = None

    @property
    def committed(self) -> bool:
        return self.outcome is not TurnOutcome.REJECTED


@dataclass(frozen=True)
class TurnPreview:
    """Running totals for a partially entered turn."""

    score: int
    pending: int
    bust: bool
    checkout: bool


def _copy_players(players: Iterable[PlayerState]) -> List[PlayerState]:
    return [replace(p, history=list(p.history)) for p in players]


def _copy_leg(leg: LegState) -> LegState:
    return replace(leg, game_points=dict(leg.game_points))


def _snapshot(settings: GameSettings, leg: LegState, players: Sequence[PlayerState]) -> Snapshot:
    return Snapshot(settings, _copy_leg(leg), tuple(_copy_players(players)))


def init_state(
    players: Sequence[Tuple[str, str]], settings: GameSettings
) -> Tuple[LegState, List[PlayerState]]:
    """Start a match for ``(id, name)`` pairs in throwing order."""

    ids = [pid for pid, _ in players]
    if not ids:
        raise ValueError("at least one player is required")
    if len(set(ids)) != len(ids):
        raise ValueError("duplicate player ids provided")
    states = [PlayerState(pid, name, settings.starting_score) for pid, name in players]
    leg = LegState(game_points={pid: 0 for pid in ids})
    return leg, states


def restart_leg(
    leg: LegState,
    players: Sequence[PlayerState],
    settings: GameSettings,
    *,
    next_leg: bool = False,
) -> Tuple[LegState, List[PlayerState]]:
    """Reset scores and histories, keeping the game points.

    ``next_leg`` moves on to a new leg number (after a leg was won); without it
    the current leg is simply replayed from the start.
    """

    if not leg.active:
        raise ValueError("match is already complete")
    points = {p.id: leg.game_points.get(p.id, 0) for p in players}
    new_leg = LegState(
        active=True,
        round=1,
        winner=None,
        game_points=points,
        current_player_index=0,
        round_complete=False,
        leg=leg.leg + 1 if next_leg else leg.leg,
    )
    new_players = [replace(p, remaining=settings.starting_score, history=[]) for p in players]
    return new_leg, new_players


def _advance(leg: LegState, player_count: int) -> None:
    nxt = leg.current_player_index + 1
    if nxt >= player_count:
        leg.current_player_index = 0
        leg.round += 1
        leg.round_complete = True
    else:
        leg.current_player_index = nxt
        leg.round_complete = False


def preview_turn(player: PlayerState, darts: Sequence[Dart], settings: GameSettings) -> TurnPreview:
    score = turn_score(darts)
    pending = player.remaining - score
    checkout = pending == 0 and (not settings.double_out or finishes_on_double(darts))
    return TurnPreview(score=score, pending=pending, bust=pending < 0, checkout=checkout)


def apply_turn(
    leg: LegState,
    players: Sequence[PlayerState],
    darts: Iterable[Union[Dart, Mapping, Sequence]],
    settings: GameSettings,
) -> TurnResult:
    """Commit one turn for the player whose turn it is.

    The inputs are left untouched; the returned :class:`TurnResult` carries
    the new leg state and players. A rejected turn (missing double-in or
    double-out, empty turn, finished match) returns copies of the inputs and a
    human-readable ``reason``.
    """

    leg = _copy_leg(leg)
    players = _copy_players(players)
    darts = tuple(as_dart(d) for d in darts)
    if len(darts) > DARTS_PER_TURN:
        raise InvalidDart(f"a turn has at most {DARTS_PER_TURN} darts")

    def rejected(reason: str, player_id: Optional[str] = None) -> TurnResult:
        logger.debug("Turn rejected: %s", reason)
        return TurnResult(
            TurnOutcome.REJECTED, leg, players, reason=reason, player_id=player_id
        )

    if not leg.active:
        return rejected("The match is already complete")
    if not players:
        return rejected("There are no players in this game")
    if not 0 <= leg.current_player_index < len(players):
        raise ValueError(
            f"current player index {leg.current_player_index} is out of range"
        )

    player = players[leg.current_player_index]
    if not darts:
        return rejected("Enter at least one dart score", player.id)

    if (
        settings.double_in
        and not player.history
        and not any(d.multiplier == 2 for d in darts)
    ):
        return rejected(f"{player.name} needs to start with a double!", player.id)

    score = turn_score(darts)
    candidate = player.remaining - score
    padded = pad_darts(darts)

    if candidate < 0:
        outcome = TurnOutcome.BUST
        record = TurnRecord(leg.round, 0, padded)
    elif candidate == 0:
        if settings.double_out and not finishes_on_double(darts):
            return rejected(f"{player.name} needs to finish on a double!", player.id)
        outcome = TurnOutcome.LEG_WON
        record = TurnRecord(leg.round, score, padded)
        player.remaining = 0
        leg.winner = player.id
        leg.game_points[player.id] = leg.game_points.get(player.id, 0) + 1
    else:
        outcome = TurnOutcome.SCORED
        record = TurnRecord(leg.round, score, padded)
        player.remaining = candidate

    player.history.append(record)
    _advance(leg, len(players))

    if (
        outcome is TurnOutcome.LEG_WON
        and leg.game_points[player.id] >= settings.game_point_threshold
    ):
        outcome = TurnOutcome.MATCH_WON
        leg.active = False

    logger.debug(
        "%s: round %d %s -> %s (remaining %d)",
        player.name,
        record.round,
        " ".join(format_dart(d) or "0" for d in darts),
        outcome.value,
        player.remaining,
    )

    effects: List[Effect] = [PersistSnapshot(_snapshot(settings, leg, players))]
    if outcome is TurnOutcome.MATCH_WON:
        effects.append(
            MatchComplete(
                winner=replace(player, history=list(player.history)),
                game_points=dict(leg.game_points),
            )
        )
    elif outcome is TurnOutcome.LEG_WON:
        leg, players = restart_leg(leg, players, settings, next_leg=True)
        effects.append(PersistSnapshot(_snapshot(settings, leg, players)))

    return TurnResult(
        outcome, leg, players, effects=effects, player_id=player.id, record=record
    )


def _check_history(player: PlayerState) -> List[TurnRecord]:
    ordered = sorted(player.history, key=lambda t: t.round)
    for expected, turn in enumerate(ordered, start=1):
        if turn.round != expected:
            raise ValueError(
                f"history for player {player.id!r} must cover rounds 1..{len(ordered)}"
                f" without gaps or duplicates"
            )
    return ordered


def resume_state(
    players: Sequence[PlayerState],
    settings: GameSettings,
    *,
    game_points: Optional[Mapping[str, int]] = None,
    complete: bool = False,
    winner: Optional[str] = None,
    leg_number: int = 1,
) -> Tuple[LegState, List[PlayerState]]:
    """Rebuild the leg state from persisted round histories.

    The current round is the highest round anyone has played; if everybody has
    played it, play moves to the next round with the first player, otherwise
    it is the turn of the first player (in order) still missing that round.
    Remaining scores are recomputed from the histories, so the result only
    depends on its inputs and repeated calls agree.
    """

    players = _copy_players(players)
    if not players:
        raise ValueError("at least one player is required")

    for p in players:
        p.history = _check_history(p)
        p.remaining = settings.starting_score - sum(t.score for t in p.history)
        if p.remaining < 0:
            raise ValueError(f"history for player {p.id!r} scores below zero")

    max_round = max((t.round for p in players for t in p.history), default=0)
    round_number = 1
    index = 0
    if max_round:
        missing = [i for i, p in enumerate(players) if not p.played_round(max_round)]
        if missing:
            round_number = max_round
            index = missing[0]
        else:
            round_number = max_round + 1

    points = {p.id: int((game_points or {}).get(p.id, 0)) for p in players}
    leg = LegState(
        active=not complete,
        round=round_number,
        winner=winner if complete else None,
        game_points=points,
        current_player_index=index,
        round_complete=False,
        leg=leg_number,
    )
    return leg, players


def history_table(players: Sequence[PlayerState]) -> List[Dict[str, Optional[dict]]]:
    """Round-by-round grid of ``{player_id: turn or None}``."""

    max_round = max((t.round for p in players for t in p.history), default=0)
    rows = []
    for round_number in range(1, max_round + 1):
        row: Dict[str, Optional[dict]] = {}
        for p in players:
            turn = next((t for t in p.history if t.round == round_number), None)
            row[p.id] = (
                {
                    "score": turn.score,
                    "darts": [format_dart(d) for d in turn.darts],
                }
                if turn
                else None
            )
        rows.append(row)
    return rows


def summary(leg: LegState, players: Sequence[PlayerState], settings: GameSettings) -> Dict:
    current = players[leg.current_player_index] if leg.active and players else None
    return {
        "config": {
            "startingScore": settings.starting_score,
            "doubleIn": settings.double_in,
            "doubleOut": settings.double_out,
            "gamePointThreshold": settings.game_point_threshold,
        },
        "leg": leg.leg,
        "round": leg.round,
        "active": leg.active,
        "winner": leg.winner,
        "currentPlayerId": current.id if current else None,
        "scores": {p.id: p.remaining for p in players},
        "gamePoints": dict(leg.game_points),
        "rounds": history_table(players),
    }
