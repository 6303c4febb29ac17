from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .db import Base


class Game(Base):
    __tablename__ = "game"
    id = Column(String, primary_key=True)
    creator_id = Column(String, nullable=True)
    starting_score = Column(Integer, nullable=False, default=501)
    double_in = Column(Boolean, nullable=False, default=False)
    double_out = Column(Boolean, nullable=False, default=True)
    game_point_threshold = Column(Integer, nullable=False, default=1)
    is_complete = Column(Boolean, nullable=False, default=False)
    winner_id = Column(String, nullable=True)  # game_player.id
    current_leg = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    players = relationship(
        "GamePlayer",
        cascade="all, delete-orphan",
        order_by="GamePlayer.position",
        back_populates="game",
    )


class GamePlayer(Base):
    __tablename__ = "game_player"
    id = Column(String, primary_key=True)
    game_id = Column(
        String, ForeignKey("game.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    position = Column(Integer, nullable=False)  # throwing order, 0-based
    final_score = Column(Integer, nullable=False)
    game_points = Column(Integer, nullable=False, default=0)
    is_winner = Column(Boolean, nullable=False, default=False)

    game = relationship("Game", back_populates="players")

    __table_args__ = (
        UniqueConstraint("game_id", "position", name="uq_game_player_position"),
    )


class GameRound(Base):
    __tablename__ = "game_round"
    id = Column(String, primary_key=True)
    game_id = Column(
        String, ForeignKey("game.id", ondelete="CASCADE"), nullable=False
    )
    leg = Column(Integer, nullable=False, default=1)
    round_number = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "game_id", "leg", "round_number", name="uq_game_round_leg_number"
        ),
    )


class GameScore(Base):
    __tablename__ = "game_score"
    id = Column(String, primary_key=True)
    round_id = Column(
        String, ForeignKey("game_round.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(
        String, ForeignKey("game_player.id", ondelete="CASCADE"), nullable=False
    )
    score_value = Column(Integer, nullable=False)
    # e.g. [{"value": 20, "multiplier": 2}, {"value": 0, "multiplier": 1}, ...]
    dart_values = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    remaining_score = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("round_id", "player_id", name="uq_game_score_round_player"),
    )
