"""
Tournament Data Models.

Immutable state representations for tournament entities.
All mutations go through the lifecycle use cases, which persist new
versions with ``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from math import ceil
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from tournament_service.utils.json_utils import json_dumps


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


class TournamentStatus(str, Enum):
    """Tournament lifecycle states. Transitions only move forward."""

    RECRUITING = "recruiting"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"


class ParticipantStatus(str, Enum):
    JOINED = "joined"
    ELIMINATED = "eliminated"
    WINNER = "winner"


class MatchStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"


class BracketType(str, Enum):
    SINGLE_ELIMINATION = "single_elimination"


class StartReason(str, Enum):
    """Why a tournament is being started."""

    MANUAL = "manual"
    AUTO_FULL = "auto_full"
    TIMEOUT = "timeout"


class MatchSlot(str, Enum):
    PLAYER1 = "player1"
    PLAYER2 = "player2"


class TournamentEventType(str, Enum):
    """Outbound domain events."""

    TOURNAMENT_CREATED = "tournament.created"
    PLAYER_REGISTERED = "player.registered"
    TOURNAMENT_STARTED = "tournament.started"
    TOURNAMENT_FINISHED = "tournament.finished"


@dataclass(frozen=True)
class TournamentRules:
    """
    Bracket sizing and auto-start configuration.

    Only two bracket sizes are startable: ``min_participants`` and
    ``max_participants``. Both must be powers of two.
    """

    min_participants: int = 4
    max_participants: int = 8
    auto_start_timeout_seconds: int = 60
    access_code_length: int = 6

    def __post_init__(self) -> None:
        for value in (self.min_participants, self.max_participants):
            if value < 2 or not is_power_of_two(value):
                raise ValueError(f"bracket size must be a power of two >= 2, got {value}")
        if self.min_participants > self.max_participants:
            raise ValueError("min_participants must not exceed max_participants")

    @classmethod
    def from_settings(cls, settings: Any) -> "TournamentRules":
        return cls(
            min_participants=settings.min_participants,
            max_participants=settings.max_participants,
            auto_start_timeout_seconds=settings.auto_start_timeout_seconds,
            access_code_length=settings.access_code_length,
        )

    @property
    def auto_start_window(self) -> timedelta:
        return timedelta(seconds=self.auto_start_timeout_seconds)

    def can_start_with(self, count: int) -> bool:
        return count in (self.min_participants, self.max_participants)


@dataclass(frozen=True)
class Tournament:
    """
    Tournament aggregate root.

    While recruiting: ``current_participants`` never exceeds
    ``max_participants``. ``start_timeout_at`` is set at most once per
    readiness episode and cleared when the count drops below the minimum.
    """

    id: str
    name: str
    creator_id: str
    min_participants: int
    max_participants: int
    status: TournamentStatus = TournamentStatus.RECRUITING
    bracket_type: BracketType = BracketType.SINGLE_ELIMINATION
    current_participants: int = 0
    is_public: bool = True
    access_code: Optional[str] = None
    passcode_hash: Optional[str] = None
    ready_to_start: bool = False
    ready_at: Optional[datetime] = None
    start_timeout_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def requires_passcode(self) -> bool:
        return not self.is_public

    @property
    def is_recruiting(self) -> bool:
        return self.status == TournamentStatus.RECRUITING

    @property
    def is_full(self) -> bool:
        return self.current_participants >= self.max_participants

    def is_creator(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id == self.creator_id

    def can_start_with(self, count: int) -> bool:
        return count in (self.min_participants, self.max_participants)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "creator_id": self.creator_id,
            "status": self.status.value,
            "bracket_type": self.bracket_type.value,
            "min_participants": self.min_participants,
            "max_participants": self.max_participants,
            "current_participants": self.current_participants,
            "is_public": self.is_public,
            "access_code": self.access_code,
            "ready_to_start": self.ready_to_start,
            "ready_at": _iso(self.ready_at),
            "start_timeout_at": _iso(self.start_timeout_at),
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class Participant:
    """One per (tournament_id, user_id)."""

    tournament_id: str
    user_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    display_name: Optional[str] = None
    status: ParticipantStatus = ParticipantStatus.JOINED
    joined_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "status": self.status.value,
            "joined_at": _iso(self.joined_at),
        }


@dataclass(frozen=True)
class Match:
    """
    A single bracket match addressed by (round, match_position).

    The successor is never referenced directly; it is found by computing
    its address, which keeps the bracket an acyclic, flat list.
    """

    tournament_id: str
    round: int
    match_position: int
    id: str = field(default_factory=lambda: str(uuid4()))
    player1_id: Optional[str] = None
    player2_id: Optional[str] = None
    status: MatchStatus = MatchStatus.PENDING
    game_id: Optional[str] = None
    winner_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def players(self) -> Tuple[Optional[str], Optional[str]]:
        return (self.player1_id, self.player2_id)

    @property
    def is_ready(self) -> bool:
        """Both player slots filled."""
        return self.player1_id is not None and self.player2_id is not None

    @property
    def is_finished(self) -> bool:
        return self.status == MatchStatus.FINISHED

    def has_player(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id in self.players

    def opponent_of(self, user_id: str) -> Optional[str]:
        if user_id == self.player1_id:
            return self.player2_id
        if user_id == self.player2_id:
            return self.player1_id
        return None

    def loser_for(self, winner_id: str) -> Optional[str]:
        return self.opponent_of(winner_id)

    def successor_address(self) -> Tuple[int, int]:
        return (self.round + 1, ceil(self.match_position / 2))

    def successor_slot(self) -> MatchSlot:
        # odd positions feed the first slot, even positions the second
        return MatchSlot.PLAYER1 if self.match_position % 2 == 1 else MatchSlot.PLAYER2

    def slot_value(self, slot: MatchSlot) -> Optional[str]:
        return self.player1_id if slot == MatchSlot.PLAYER1 else self.player2_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round": self.round,
            "match_position": self.match_position,
            "player1_id": self.player1_id,
            "player2_id": self.player2_id,
            "status": self.status.value,
            "game_id": self.game_id,
            "winner_id": self.winner_id,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }


@dataclass(frozen=True)
class BracketSnapshot:
    """Append-only, versioned serialization of the match tree."""

    tournament_id: str
    version: int
    state: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "version": self.version,
            "state": self.state,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class ReadyState:
    ready_to_start: bool
    ready_at: Optional[datetime]
    start_timeout_at: Optional[datetime]


def compute_ready_state(
    tournament: Tournament,
    participant_count: int,
    now: datetime,
    rules: TournamentRules,
) -> ReadyState:
    """
    Readiness shared by join and leave.

    - below minimum: not ready, countdown cleared
    - at maximum: ready, no countdown (starts immediately)
    - in between: ready, existing countdown preserved so that churn
      cannot postpone the start indefinitely
    """
    if participant_count < tournament.min_participants:
        return ReadyState(False, None, None)

    ready_at = tournament.ready_at or now

    if participant_count >= tournament.max_participants:
        return ReadyState(True, ready_at, None)

    start_timeout_at = tournament.start_timeout_at or now + rules.auto_start_window
    return ReadyState(True, ready_at, start_timeout_at)


@dataclass
class TournamentEvent:
    """Outbound domain event."""

    event_type: TournamentEventType
    tournament_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    user_id: Optional[str] = None

    def to_stream_fields(self) -> Dict[str, str]:
        """Flat encoding for stream transports."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp.isoformat(),
            "data": json_dumps(self.data),
            "user_id": self.user_id or "",
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
