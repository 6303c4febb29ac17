"""Database-backed storage for darts games.

These helpers implement the collaborators the game session depends on:
loading a game to resume it, saving a snapshot after each committed turn, and
closing a game once the match is won. :class:`GameStore` binds them to a
session factory so they can be injected.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from ..db import session_scope
from ..exceptions import GameNotFound, PersistenceError
from ..models import Game, GamePlayer, GameRound, GameScore
from ..schemas import GameCreate, GameIdOut, GamePlayerOut, GameSummaryOut
from ..scoring.darts import (
    GameSettings,
    PlayerState,
    Snapshot,
    TurnRecord,
    as_dart,
    pad_darts,
    resume_state,
)

LOGGER = logging.getLogger(__name__)

GAME_STATUSES = {"active", "completed"}


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        if session.in_transaction():
            await session.rollback()
    except SQLAlchemyError:  # pragma: no cover - best effort
        pass


async def _get_game(session: AsyncSession, game_id: str) -> Game:
    game = await session.get(Game, game_id)
    if game is None:
        raise GameNotFound(game_id)
    return game


async def _game_players(session: AsyncSession, game_id: str) -> list[GamePlayer]:
    return list(
        (
            await session.execute(
                select(GamePlayer)
                .where(GamePlayer.game_id == game_id)
                .order_by(GamePlayer.position)
            )
        ).scalars().all()
    )


def _settings_for(game: Game) -> GameSettings:
    return GameSettings(
        starting_score=game.starting_score,
        double_in=bool(game.double_in),
        double_out=bool(game.double_out),
        game_point_threshold=game.game_point_threshold,
    )


def _to_summary(game: Game, players: list[GamePlayer]) -> GameSummaryOut:
    return GameSummaryOut(
        id=game.id,
        creatorId=game.creator_id,
        startingScore=game.starting_score,
        doubleIn=game.double_in,
        doubleOut=game.double_out,
        gamePointThreshold=game.game_point_threshold,
        isComplete=game.is_complete,
        winnerId=game.winner_id,
        currentLeg=game.current_leg,
        createdAt=game.created_at,
        updatedAt=game.updated_at,
        players=[
            GamePlayerOut(
                id=p.id,
                name=p.name,
                userId=p.user_id,
                finalScore=p.final_score,
                gamePoints=p.game_points,
                isWinner=p.is_winner,
            )
            for p in players
        ],
    )


async def create_game(session: AsyncSession, body: GameCreate) -> GameIdOut:
    gid = uuid.uuid4().hex
    session.add(
        Game(
            id=gid,
            creator_id=body.creatorId,
            starting_score=body.startingScore,
            double_in=body.doubleIn,
            double_out=body.doubleOut,
            game_point_threshold=body.gamePointThreshold,
            is_complete=False,
            current_leg=1,
        )
    )
    # Flush the game first so its players never reference a missing row.
    await session.flush()
    for position, player in enumerate(body.players):
        session.add(
            GamePlayer(
                id=uuid.uuid4().hex,
                game_id=gid,
                user_id=player.userId,
                name=player.name,
                position=position,
                final_score=body.startingScore,
                game_points=0,
                is_winner=False,
            )
        )
    await session.commit()
    LOGGER.info("Created game %s with %d player(s)", gid, len(body.players))
    return GameIdOut(id=gid)


async def get_game(session: AsyncSession, game_id: str) -> GameSummaryOut:
    game = await _get_game(session, game_id)
    return _to_summary(game, await _game_players(session, game_id))


async def list_games(
    session: AsyncSession,
    *,
    status: str | None = None,
    creator_id: str | None = None,
) -> list[GameSummaryOut]:
    """Return games newest first, optionally only ``active`` or ``completed`` ones."""

    stmt = select(Game)
    if status is not None:
        if status not in GAME_STATUSES:
            raise ValueError(f"unsupported game status: {status!r}")
        stmt = stmt.where(Game.is_complete.is_(status == "completed"))
    if creator_id is not None:
        stmt = stmt.where(Game.creator_id == creator_id)
    stmt = stmt.order_by(Game.updated_at.desc(), Game.created_at.desc(), Game.id)

    games = (await session.execute(stmt)).scalars().all()
    if not games:
        return []

    players_by_game: dict[str, list[GamePlayer]] = {}
    rows = (
        await session.execute(
            select(GamePlayer)
            .where(GamePlayer.game_id.in_([g.id for g in games]))
            .order_by(GamePlayer.game_id, GamePlayer.position)
        )
    ).scalars().all()
    for row in rows:
        players_by_game.setdefault(row.game_id, []).append(row)

    return [_to_summary(g, players_by_game.get(g.id, [])) for g in games]


async def load_game(session: AsyncSession, game_id: str) -> Snapshot:
    """Load a game and rebuild its leg state from the stored rounds."""

    game = await _get_game(session, game_id)
    rows = await _game_players(session, game_id)
    settings = _settings_for(game)

    scores = (
        await session.execute(
            select(GameScore, GameRound.round_number)
            .join(GameRound, GameRound.id == GameScore.round_id)
            .where(GameRound.game_id == game_id, GameRound.leg == game.current_leg)
            .order_by(GameRound.round_number)
        )
    ).all()

    history: dict[str, list[TurnRecord]] = {}
    for score, round_number in scores:
        darts = pad_darts([as_dart(d) for d in (score.dart_values or [])])
        history.setdefault(score.player_id, []).append(
            TurnRecord(round=round_number, score=score.score_value, darts=darts)
        )

    players = [
        PlayerState(
            id=row.id,
            name=row.name,
            remaining=settings.starting_score,
            history=history.get(row.id, []),
        )
        for row in rows
    ]
    leg, players = resume_state(
        players,
        settings,
        game_points={row.id: row.game_points for row in rows},
        complete=game.is_complete,
        winner=game.winner_id,
        leg_number=game.current_leg,
    )
    return Snapshot(settings=settings, leg=leg, players=tuple(players))


async def _write_snapshot(
    session: AsyncSession, game_id: str, snapshot: Snapshot
) -> None:
    game = await _get_game(session, game_id)
    rows = {row.id: row for row in await _game_players(session, game_id)}
    unknown = sorted(p.id for p in snapshot.players if p.id not in rows)
    if unknown:
        raise PersistenceError(
            game_id, "unknown players for game: " + ", ".join(unknown)
        )

    leg = snapshot.leg
    complete = not leg.active
    game.current_leg = leg.leg
    game.is_complete = complete
    game.winner_id = leg.winner if complete else None
    game.updated_at = func.now()
    for player in snapshot.players:
        row = rows[player.id]
        row.final_score = player.remaining
        row.game_points = leg.game_points.get(player.id, 0)
        row.is_winner = complete and leg.winner == player.id

    # The snapshot carries the full history of its leg: replace what is stored.
    leg_rounds = select(GameRound.id).where(
        GameRound.game_id == game_id, GameRound.leg == leg.leg
    )
    await session.execute(delete(GameScore).where(GameScore.round_id.in_(leg_rounds)))
    await session.execute(
        delete(GameRound).where(GameRound.game_id == game_id, GameRound.leg == leg.leg)
    )

    rounds: dict[int, GameRound] = {}
    for player in snapshot.players:
        for turn in player.history:
            if turn.round not in rounds:
                rounds[turn.round] = GameRound(
                    id=uuid.uuid4().hex,
                    game_id=game_id,
                    leg=leg.leg,
                    round_number=turn.round,
                )
    session.add_all(rounds.values())
    await session.flush()

    for player in snapshot.players:
        remaining = snapshot.settings.starting_score
        for turn in sorted(player.history, key=lambda t: t.round):
            remaining -= turn.score
            session.add(
                GameScore(
                    id=uuid.uuid4().hex,
                    round_id=rounds[turn.round].id,
                    player_id=player.id,
                    score_value=turn.score,
                    dart_values=[d.to_dict() for d in turn.darts],
                    remaining_score=remaining,
                )
            )


async def save_game(session: AsyncSession, game_id: str, snapshot: Snapshot) -> None:
    """Store ``snapshot`` for ``game_id``.

    Saving is idempotent per leg: the rounds stored for the snapshot's leg are
    replaced by the snapshot's histories, earlier legs are kept. Database
    errors are raised as :class:`PersistenceError`.
    """

    try:
        await _write_snapshot(session, game_id, snapshot)
        await session.commit()
    except SQLAlchemyError as exc:
        await _safe_rollback(session)
        raise PersistenceError(
            game_id, f"game '{game_id}' could not be saved: {exc.__class__.__name__}"
        ) from exc
    except PersistenceError:
        await _safe_rollback(session)
        raise
    LOGGER.debug(
        "Saved game %s (leg %d, round %d)", game_id, snapshot.leg.leg, snapshot.leg.round
    )


async def complete_game(
    session: AsyncSession,
    game_id: str,
    winner_id: str,
    game_points: Mapping[str, int],
) -> None:
    """Mark the game complete with its winner and final game points."""

    try:
        game = await _get_game(session, game_id)
        rows = await _game_players(session, game_id)
        if winner_id not in {row.id for row in rows}:
            raise PersistenceError(
                game_id, f"winner '{winner_id}' is not a player of game '{game_id}'"
            )
        game.is_complete = True
        game.winner_id = winner_id
        game.updated_at = func.now()
        for row in rows:
            row.game_points = int(game_points.get(row.id, row.game_points or 0))
            row.is_winner = row.id == winner_id
        await session.commit()
    except SQLAlchemyError as exc:
        await _safe_rollback(session)
        raise PersistenceError(
            game_id, f"game '{game_id}' could not be completed: {exc.__class__.__name__}"
        ) from exc
    LOGGER.info("Game %s complete; winner %s", game_id, winner_id)


SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


# Failures of the storage itself: refused connections, missing DATABASE_URL,
# errors raised while the session opens or closes.
_STORAGE_ERRORS = (OSError, RuntimeError, SQLAlchemyError)


class GameStore:
    """Game persistence bound to a session factory.

    Each call opens its own session, so a store can be shared by the
    collaborators handed to :class:`~darts_tracker.services.session.GameSession`.
    ``save`` and ``complete`` raise :class:`PersistenceError` for any storage
    failure, or :class:`GameNotFound` for an unknown game.
    """

    def __init__(self, session_factory: SessionFactory = session_scope) -> None:
        self._session_factory = session_factory

    async def create(self, body: GameCreate) -> str:
        async with self._session_factory() as session:
            return (await create_game(session, body)).id

    async def get(self, game_id: str) -> GameSummaryOut:
        async with self._session_factory() as session:
            return await get_game(session, game_id)

    async def load(self, game_id: str) -> Snapshot:
        async with self._session_factory() as session:
            return await load_game(session, game_id)

    async def save(self, game_id: str, snapshot: Snapshot) -> None:
        try:
            async with self._session_factory() as session:
                await save_game(session, game_id, snapshot)
        except _STORAGE_ERRORS as exc:
            LOGGER.warning("Game %s: storage unavailable while saving", game_id)
            raise PersistenceError(
                game_id, f"game '{game_id}' could not be saved: {exc.__class__.__name__}"
            ) from exc

    async def complete(
        self, game_id: str, winner: PlayerState, game_points: Mapping[str, int]
    ) -> None:
        try:
            async with self._session_factory() as session:
                await complete_game(session, game_id, winner.id, game_points)
        except _STORAGE_ERRORS as exc:
            LOGGER.warning("Game %s: storage unavailable while completing", game_id)
            raise PersistenceError(
                game_id,
                f"game '{game_id}' could not be completed: {exc.__class__.__name__}",
            ) from exc

    async def list_games(self, **filters) -> list[GameSummaryOut]:
        async with self._session_factory() as session:
            return await list_games(session, **filters)
