"""Interactive game session: dart entry, turn commits and their side effects."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional, Union

from ..config import auto_commit_enabled
from ..exceptions import DomainException, PersistenceError
from ..scoring.darts import (
    DARTS_PER_TURN,
    Effect,
    GameSettings,
    LegState,
    MatchComplete,
    PersistSnapshot,
    PlayerState,
    Snapshot,
    TurnOutcome,
    TurnPreview,
    TurnRecord,
    apply_turn,
    preview_turn,
    restart_leg,
    summary,
)
from ..scoring.inputs import DartInputs, parse_multiplier
from ..utils.sentry import report_exception

LOGGER = logging.getLogger(__name__)

PersistFn = Callable[[str, Snapshot], Awaitable[None]]
MatchCompleteFn = Callable[[str, PlayerState, Mapping[str, int]], Awaitable[None]]


@dataclass
class SubmitResult:
    """What happened to a submitted turn.

    ``persisted`` is ``False`` when a collaborator failed; the in-memory state
    already reflects the turn and ``error`` holds the failure so the caller
    can retry :meth:`GameSession.save` or warn the user. ``outcome`` is
    ``None`` after a leg restart, where no turn was thrown.
    """

    outcome: Optional[TurnOutcome]
    reason: Optional[str] = None
    record: Optional[TurnRecord] = None
    persisted: bool = True
    errors: list[DomainException] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.outcome is not None and self.outcome is not TurnOutcome.REJECTED

    @property
    def error(self) -> Optional[DomainException]:
        return self.errors[0] if self.errors else None


class GameSession:
    """Drive one game through the scoring engine.

    ``persist`` and ``on_match_complete`` are awaited for the engine's effects;
    either may be omitted for a throwaway game.
    """

    def __init__(
        self,
        game_id: str,
        settings: GameSettings,
        leg: LegState,
        players: Sequence[PlayerState],
        *,
        persist: PersistFn | None = None,
        on_match_complete: MatchCompleteFn | None = None,
        auto_commit: bool | None = None,
    ) -> None:
        if not players:
            raise ValueError("at least one player is required")
        self.game_id = game_id
        self.settings = settings
        self.leg = leg
        self.players = list(players)
        self.inputs = DartInputs()
        self._persist = persist
        self._on_match_complete = on_match_complete
        self.auto_commit = auto_commit_enabled() if auto_commit is None else auto_commit

    @classmethod
    def from_snapshot(cls, game_id: str, snapshot: Snapshot, **kwargs) -> "GameSession":
        return cls(game_id, snapshot.settings, snapshot.leg, snapshot.players, **kwargs)

    @classmethod
    async def open(cls, game_id: str, store, **kwargs) -> "GameSession":
        """Resume ``game_id`` from ``store`` and persist through it."""

        snapshot = await store.load(game_id)
        kwargs.setdefault("persist", store.save)
        kwargs.setdefault("on_match_complete", store.complete)
        return cls.from_snapshot(game_id, snapshot, **kwargs)

    @property
    def current_player(self) -> PlayerState | None:
        if not self.leg.active:
            return None
        return self.players[self.leg.current_player_index]

    def snapshot(self) -> Snapshot:
        return Snapshot(self.settings, self.leg, tuple(self.players))

    def summary(self) -> dict:
        return summary(self.leg, self.players, self.settings)

    def preview(self) -> TurnPreview | None:
        player = self.current_player
        if player is None:
            return None
        return preview_turn(player, self.inputs.darts(), self.settings)

    def reset_inputs(self) -> None:
        self.inputs.reset()

    async def enter_dart(
        self,
        index: int,
        value: Union[str, int, None],
        multiplier: Union[str, int, None] = None,
    ) -> SubmitResult | None:
        """Set dart ``index`` of the current turn.

        Raises :class:`~darts_tracker.scoring.darts.InvalidDart` for input that
        is off the board; nothing changes then. With auto-commit the turn is
        submitted once it busts, checks out, or the third dart is in, and the
        result of that submission is returned.
        """

        if multiplier is not None:
            parse_multiplier(multiplier)
        self.inputs.set_value(index, value)
        if multiplier is not None:
            self.inputs.set_multiplier(index, multiplier)

        if not self.auto_commit:
            return None
        preview = self.preview()
        if preview is None or not self.inputs.thrown:
            return None
        if preview.bust or preview.checkout or self.inputs.thrown == DARTS_PER_TURN:
            return await self.submit()
        return None

    async def submit(self) -> SubmitResult:
        """Commit the entered darts as the current player's turn."""

        darts = self.inputs.darts()
        result = apply_turn(self.leg, self.players, darts, self.settings)
        self.inputs.reset()

        if not result.committed:
            LOGGER.info("Game %s: turn rejected: %s", self.game_id, result.reason)
            return SubmitResult(outcome=result.outcome, reason=result.reason)

        self.leg = result.leg
        self.players = result.players
        errors = await self._run_effects(result.effects)
        return SubmitResult(
            outcome=result.outcome,
            record=result.record,
            persisted=not errors,
            errors=errors,
        )

    async def save(self) -> None:
        """Persist the current state; raises the failure for the caller."""

        if self._persist is None:
            return
        try:
            await self._persist(self.game_id, self.snapshot())
        except DomainException as exc:
            self._report(exc)
            raise
        except Exception as exc:
            error = self._persistence_error(exc)
            self._report(error)
            raise error from exc

    async def restart_leg(self) -> SubmitResult:
        """Replay the current leg from the starting score, keeping game points.

        No turn is thrown, so the result carries no outcome.
        """

        self.leg, self.players = restart_leg(self.leg, self.players, self.settings)
        self.inputs.reset()
        errors = await self._run_effects([PersistSnapshot(self.snapshot())])
        return SubmitResult(outcome=None, persisted=not errors, errors=errors)

    async def _run_effects(self, effects: Sequence[Effect]) -> list[DomainException]:
        # Every effect runs even when an earlier one failed.
        errors: list[DomainException] = []
        for effect in effects:
            try:
                if isinstance(effect, PersistSnapshot):
                    if self._persist is not None:
                        await self._persist(self.game_id, effect.snapshot)
                elif isinstance(effect, MatchComplete):
                    LOGGER.info(
                        "Game %s: %s wins the match", self.game_id, effect.winner.name
                    )
                    if self._on_match_complete is not None:
                        await self._on_match_complete(
                            self.game_id, effect.winner, effect.game_points
                        )
            except DomainException as exc:
                self._report(exc)
                errors.append(exc)
            except Exception as exc:
                error = self._persistence_error(exc)
                self._report(error)
                errors.append(error)
        return errors

    def _persistence_error(self, exc: Exception) -> PersistenceError:
        error = PersistenceError(
            self.game_id,
            f"game '{self.game_id}' could not be stored: {exc.__class__.__name__}: {exc}",
        )
        error.__cause__ = exc
        return error

    def _report(self, exc: DomainException) -> None:
        LOGGER.warning(
            "Game %s: state not persisted: %s",
            self.game_id,
            exc.detail or exc.title,
            exc_info=exc.__cause__ or exc,
        )
        report_exception(exc)
