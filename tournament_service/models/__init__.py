"""Database models."""

from tournament_service.models.base import Base, TimestampMixin, UUIDMixin
from tournament_service.models.tournament import (
    BracketStateRow,
    MatchRow,
    ParticipantRow,
    TournamentRow,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    # Tournament
    "TournamentRow",
    "ParticipantRow",
    "MatchRow",
    "BracketStateRow",
]
