from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import DEFAULT_STARTING_SCORE
from .scoring.darts import (
    Dart,
    GameSettings,
    LegState,
    PlayerState,
    Snapshot,
    TurnRecord,
    pad_darts,
)
from .services.validation import (
    ValidationError,
    validate_game_point_threshold,
    validate_player_names,
    validate_starting_score,
)


class DartOut(BaseModel):
    value: int
    multiplier: int = 1

    @model_validator(mode="after")
    def _check_dart(self) -> "DartOut":
        # Dart raises InvalidDart, a ValueError, for anything off the board.
        Dart(self.value, self.multiplier)
        return self


class RoundOut(BaseModel):
    round: int = Field(..., ge=1)
    score: int = Field(..., ge=0)
    darts: List[DartOut] = Field(default_factory=list, max_length=3)


class PlayerStateOut(BaseModel):
    id: str
    name: str
    score: int
    history: List[RoundOut] = Field(default_factory=list)


class GameSettingsIn(BaseModel):
    startingScore: int = DEFAULT_STARTING_SCORE
    doubleIn: bool = False
    doubleOut: bool = True
    gamePointThreshold: int = 1

    @field_validator("startingScore", mode="before")
    @classmethod
    def _validate_starting_score(cls, value):
        try:
            return validate_starting_score(value)
        except ValidationError as exc:
            raise ValueError(exc.detail)

    @field_validator("gamePointThreshold", mode="before")
    @classmethod
    def _validate_threshold(cls, value):
        try:
            return validate_game_point_threshold(value)
        except ValidationError as exc:
            raise ValueError(exc.detail)

    def to_settings(self) -> GameSettings:
        return GameSettings(
            starting_score=self.startingScore,
            double_in=self.doubleIn,
            double_out=self.doubleOut,
            game_point_threshold=self.gamePointThreshold,
        )


class LegStateOut(BaseModel):
    active: bool = True
    round: int = Field(1, ge=1)
    winner: Optional[str] = None
    gamePoints: Dict[str, int] = Field(default_factory=dict)
    currentPlayerIndex: int = Field(0, ge=0)
    roundComplete: bool = False
    leg: int = Field(1, ge=1)


class GameSnapshotOut(BaseModel):
    """JSON form of a :class:`~darts_tracker.scoring.darts.Snapshot`."""

    gameSettings: GameSettingsIn
    currentGame: LegStateOut
    players: List[PlayerStateOut]

    @model_validator(mode="after")
    def _check_index(self) -> "GameSnapshotOut":
        if self.players and self.currentGame.currentPlayerIndex >= len(self.players):
            raise ValueError("currentPlayerIndex must point at a player")
        return self

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "GameSnapshotOut":
        settings, leg = snapshot.settings, snapshot.leg
        return cls(
            gameSettings=GameSettingsIn(
                startingScore=settings.starting_score,
                doubleIn=settings.double_in,
                doubleOut=settings.double_out,
                gamePointThreshold=settings.game_point_threshold,
            ),
            currentGame=LegStateOut(
                active=leg.active,
                round=leg.round,
                winner=leg.winner,
                gamePoints=dict(leg.game_points),
                currentPlayerIndex=leg.current_player_index,
                roundComplete=leg.round_complete,
                leg=leg.leg,
            ),
            players=[
                PlayerStateOut(
                    id=p.id,
                    name=p.name,
                    score=p.remaining,
                    history=[
                        RoundOut(
                            round=t.round,
                            score=t.score,
                            darts=[DartOut(**d.to_dict()) for d in t.darts],
                        )
                        for t in p.history
                    ],
                )
                for p in snapshot.players
            ],
        )

    def to_snapshot(self) -> Snapshot:
        game = self.currentGame
        return Snapshot(
            settings=self.gameSettings.to_settings(),
            leg=LegState(
                active=game.active,
                round=game.round,
                winner=game.winner,
                game_points=dict(game.gamePoints),
                current_player_index=game.currentPlayerIndex,
                round_complete=game.roundComplete,
                leg=game.leg,
            ),
            players=tuple(
                PlayerState(
                    id=p.id,
                    name=p.name,
                    remaining=p.score,
                    history=[
                        TurnRecord(
                            round=r.round,
                            score=r.score,
                            darts=pad_darts([Dart(d.value, d.multiplier) for d in r.darts]),
                        )
                        for r in p.history
                    ],
                )
                for p in self.players
            ),
        )


class PlayerIn(BaseModel):
    name: str
    userId: Optional[str] = None


class GameCreate(GameSettingsIn):
    players: List[PlayerIn]
    creatorId: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_players(self) -> "GameCreate":
        try:
            names = validate_player_names([p.name for p in self.players])
        except ValidationError as exc:
            raise ValueError(exc.detail)
        for player, name in zip(self.players, names):
            player.name = name
        return self


class GamePlayerOut(BaseModel):
    id: str
    name: str
    userId: Optional[str] = None
    finalScore: int
    gamePoints: int
    isWinner: bool


class GameIdOut(BaseModel):
    id: str


class GameSummaryOut(BaseModel):
    id: str
    creatorId: Optional[str] = None
    startingScore: int
    doubleIn: bool
    doubleOut: bool
    gamePointThreshold: int
    isComplete: bool
    winnerId: Optional[str] = None
    currentLeg: int
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    players: List[GamePlayerOut] = Field(default_factory=list)
