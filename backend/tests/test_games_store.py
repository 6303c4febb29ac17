import asyncio
from contextlib import asynccontextmanager

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from darts_tracker.db import Base
from darts_tracker.exceptions import GameNotFound, PersistenceError
from darts_tracker.models import GameRound, GameScore
from darts_tracker.schemas import GameCreate
from darts_tracker.scoring import darts
from darts_tracker.scoring.darts import Dart, MatchComplete, PersistSnapshot, Snapshot, TurnOutcome
from darts_tracker.services.games import GameStore


def _run(scenario):
    """Run ``scenario(store, session_maker)`` against a fresh in-memory database."""

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_maker = async_sessionmaker(engine, expire_on_commit=False)

    async def run_test():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        return await scenario(GameStore(session_maker), session_maker)

    try:
        return asyncio.run(run_test())
    finally:
        asyncio.run(engine.dispose())


async def _play(store, game_id, snapshot, *turns):
    leg, players, settings = snapshot.leg, list(snapshot.players), snapshot.settings
    for dart_list in turns:
        result = darts.apply_turn(leg, players, dart_list, settings)
        leg, players = result.leg, result.players
        for effect in result.effects:
            if isinstance(effect, PersistSnapshot):
                await store.save(game_id, effect.snapshot)
            elif isinstance(effect, MatchComplete):
                await store.complete(game_id, effect.winner, effect.game_points)
    return Snapshot(settings, leg, tuple(players))


def _new_game(**settings):
    return GameCreate(players=[{"name": "Alice"}, {"name": "Bob"}], **settings)


def test_new_game_loads_fresh_state():
    async def scenario(store, _):
        game_id = await store.create(_new_game(startingScore=301, gamePointThreshold=3))
        return await store.load(game_id)

    snapshot = _run(scenario)

    assert snapshot.settings.starting_score == 301
    assert snapshot.settings.game_point_threshold == 3
    assert [p.name for p in snapshot.players] == ["Alice", "Bob"]
    assert [p.remaining for p in snapshot.players] == [301, 301]
    assert snapshot.leg.round == 1
    assert snapshot.leg.current_player_index == 0
    assert snapshot.leg.active is True
    assert set(snapshot.leg.game_points.values()) == {0}


def test_saved_turns_resume_mid_round():
    async def scenario(store, _):
        game_id = await store.create(_new_game())
        live = await _play(
            store,
            game_id,
            await store.load(game_id),
            [(20, 3), (20, 3), (20, 3)],
            [(19, 1)],
            [(5, 2), (0, 1)],
        )
        return live, await store.load(game_id)

    live, loaded = _run(scenario)

    assert loaded.leg.round == 2
    assert loaded.leg.current_player_index == 1
    assert [p.remaining for p in loaded.players] == [311, 482]
    assert loaded.players == live.players
    assert loaded.players[0].history[1].darts == (Dart(5, 2), Dart(0), Dart(0))


def test_saving_replaces_rows_of_the_leg():
    async def scenario(store, session_maker):
        game_id = await store.create(_new_game())
        snapshot = await _play(store, game_id, await store.load(game_id), [(20, 1)], [(20, 1)])
        # Saving the same snapshot again must not duplicate rounds.
        await store.save(game_id, snapshot)
        leg, players = darts.restart_leg(snapshot.leg, snapshot.players, snapshot.settings)
        await store.save(game_id, Snapshot(snapshot.settings, leg, tuple(players)))
        async with session_maker() as session:
            rounds = await session.scalar(select(func.count()).select_from(GameRound))
            scores = await session.scalar(select(func.count()).select_from(GameScore))
        return rounds, scores, await store.load(game_id)

    rounds, scores, loaded = _run(scenario)

    assert (rounds, scores) == (0, 0)
    assert all(p.remaining == 501 and not p.history for p in loaded.players)


def test_leg_win_moves_to_next_leg_and_keeps_earlier_rounds():
    async def scenario(store, session_maker):
        game_id = await store.create(_new_game(startingScore=101, gamePointThreshold=2))
        await _play(store, game_id, await store.load(game_id), [(20, 3), (1, 1), (20, 2)])
        async with session_maker() as session:
            legs = (await session.execute(select(GameRound.leg))).scalars().all()
        return legs, await store.load(game_id)

    legs, loaded = _run(scenario)

    assert legs == [1]
    assert loaded.leg.leg == 2
    assert loaded.leg.active is True
    assert loaded.players[0].history == []
    assert loaded.leg.game_points[loaded.players[0].id] == 1


def test_match_win_completes_game():
    async def scenario(store, _):
        game_id = await store.create(_new_game(startingScore=101))
        other_id = await store.create(_new_game())
        await _play(store, game_id, await store.load(game_id), [(20, 3), (1, 1), (20, 2)])
        return (
            await store.load(game_id),
            await store.list_games(status="completed"),
            await store.list_games(status="active"),
            other_id,
        )

    loaded, completed, active, other_id = _run(scenario)

    winner = loaded.players[0]
    assert loaded.leg.active is False
    assert loaded.leg.winner == winner.id
    assert loaded.leg.game_points[winner.id] == 1
    assert [g.id for g in active] == [other_id]
    (summary,) = completed
    assert summary.isComplete is True
    assert summary.winnerId == winner.id
    assert [p.isWinner for p in summary.players] == [True, False]
    assert summary.players[0].finalScore == 0


def test_list_games_rejects_unknown_status():
    async def scenario(store, _):
        with pytest.raises(ValueError):
            await store.list_games(status="paused")

    _run(scenario)


def test_unknown_game_raises_not_found():
    async def scenario(store, _):
        with pytest.raises(GameNotFound):
            await store.load("missing")
        settings = darts.GameSettings()
        leg, players = darts.init_state([("p", "P")], settings)
        with pytest.raises(GameNotFound):
            await store.save("missing", Snapshot(settings, leg, tuple(players)))

    _run(scenario)


def test_snapshot_with_foreign_player_is_not_saved():
    async def scenario(store, _):
        game_id = await store.create(_new_game())
        snapshot = await store.load(game_id)
        leg, players = darts.init_state([("stranger", "Stranger")], snapshot.settings)
        with pytest.raises(PersistenceError) as exc:
            await store.save(game_id, Snapshot(snapshot.settings, leg, tuple(players)))
        return exc.value

    error = _run(scenario)
    assert error.code == "game_not_saved"
    assert "stranger" in error.detail


def test_database_errors_become_persistence_errors():
    async def scenario(store, session_maker):
        game_id = await store.create(_new_game())
        snapshot = await store.load(game_id)
        result = darts.apply_turn(snapshot.leg, snapshot.players, [(20, 1)], snapshot.settings)
        async with session_maker() as session:
            await session.run_sync(lambda s: GameScore.__table__.drop(s.connection()))
            await session.commit()
        with pytest.raises(PersistenceError) as exc:
            await store.save(game_id, result.effects[0].snapshot)
        return result.outcome, exc.value

    outcome, error = _run(scenario)
    assert outcome is TurnOutcome.SCORED
    assert error.status_code == 503
    assert isinstance(error.__cause__, Exception)


def test_get_returns_game_summary():
    async def scenario(store, _):
        game_id = await store.create(_new_game(startingScore=701))
        return game_id, await store.get(game_id)

    game_id, summary = _run(scenario)
    assert summary.id == game_id
    assert summary.startingScore == 701
    assert summary.isComplete is False
    assert [p.name for p in summary.players] == ["Alice", "Bob"]


def _missing_database():
    raise RuntimeError("DATABASE_URL environment variable is required")


@asynccontextmanager
async def _refused_connection():
    raise ConnectionRefusedError("connection refused")
    yield  # pragma: no cover


@pytest.mark.parametrize(
    "factory, cause",
    [(_missing_database, RuntimeError), (_refused_connection, ConnectionRefusedError)],
    ids=["no-database-url", "connection-refused"],
)
def test_storage_failures_become_persistence_errors(factory, cause):
    store = GameStore(factory)
    settings = darts.GameSettings()
    leg, players = darts.init_state([("p", "P")], settings)

    async def scenario():
        with pytest.raises(PersistenceError) as saved:
            await store.save("g1", Snapshot(settings, leg, tuple(players)))
        with pytest.raises(PersistenceError) as completed:
            await store.complete("g1", players[0], {"p": 1})
        return saved.value, completed.value

    saved, completed = asyncio.run(scenario())

    assert isinstance(saved.__cause__, cause)
    assert isinstance(completed.__cause__, cause)
    problem = saved.to_problem(instance="/games/g1")
    assert problem.status == 503
    assert problem.code == "game_not_saved"
    assert problem.instance == "/games/g1"
    assert "could not be completed" in completed.detail
