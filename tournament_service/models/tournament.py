"""Tournament tables."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tournament_service.models.base import Base, TimestampMixin, UUIDMixin, utc_now


class TournamentRow(Base, UUIDMixin, TimestampMixin):
    """Tournament aggregate row; locked FOR UPDATE by every writer."""

    __tablename__ = "tournaments"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default="recruiting",
        nullable=False,
        index=True,
    )
    bracket_type: Mapped[str] = mapped_column(
        String(32),
        default="single_elimination",
        nullable=False,
    )

    min_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    current_participants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Access
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    access_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    passcode_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Readiness
    ready_to_start: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ready_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_timeout_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ParticipantRow(Base, UUIDMixin):
    __tablename__ = "tournament_participants"
    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_participant_tournament_user"),
    )

    tournament_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="joined", nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class MatchRow(Base, UUIDMixin):
    __tablename__ = "tournament_matches"
    __table_args__ = (
        UniqueConstraint(
            "tournament_id", "round", "match_position", name="uq_match_address"
        ),
    )

    tournament_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    round: Mapped[int] = mapped_column(Integer, nullable=False)
    match_position: Mapped[int] = mapped_column(Integer, nullable=False)

    player1_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    player2_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    winner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    game_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BracketStateRow(Base, UUIDMixin):
    """Append-only bracket snapshots."""

    __tablename__ = "tournament_bracket_states"
    __table_args__ = (
        UniqueConstraint("tournament_id", "version", name="uq_bracket_state_version"),
    )

    tournament_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
