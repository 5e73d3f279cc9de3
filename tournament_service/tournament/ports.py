"""
Ports consumed by the lifecycle use cases.

Concrete adapters (SQLAlchemy, Redis streams, HTTP) are wired by the
composition root; tests wire in-memory fakes against the same contracts.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from .models import (
    BracketSnapshot,
    Match,
    MatchSlot,
    Participant,
    ParticipantStatus,
    Tournament,
    TournamentStatus,
)


# =============================================================================
# Persistence
# =============================================================================


class TournamentRepository(abc.ABC):
    @abc.abstractmethod
    async def get(self, tournament_id: str, *, for_update: bool = False) -> Tournament | None:
        """Load a tournament; ``for_update`` serialises writers on the row."""

    @abc.abstractmethod
    async def list(
        self,
        status: TournamentStatus | None = None,
        public_only: bool = False,
    ) -> list[Tournament]: ...

    @abc.abstractmethod
    async def list_due_for_auto_start(self, now: datetime) -> list[Tournament]:
        """Recruiting tournaments whose countdown elapsed, or that are full."""

    @abc.abstractmethod
    async def add(self, tournament: Tournament) -> None: ...

    @abc.abstractmethod
    async def update(self, tournament: Tournament) -> None: ...

    @abc.abstractmethod
    async def delete(self, tournament_id: str) -> None: ...


class ParticipantRepository(abc.ABC):
    @abc.abstractmethod
    async def get(self, tournament_id: str, user_id: str) -> Participant | None: ...

    @abc.abstractmethod
    async def list_by_tournament(self, tournament_id: str) -> list[Participant]: ...

    @abc.abstractmethod
    async def count_by_tournament(self, tournament_id: str) -> int: ...

    @abc.abstractmethod
    async def add(self, participant: Participant) -> None: ...

    @abc.abstractmethod
    async def remove(self, tournament_id: str, user_id: str) -> None: ...

    @abc.abstractmethod
    async def remove_by_tournament(self, tournament_id: str) -> None: ...

    @abc.abstractmethod
    async def update_status(
        self,
        tournament_id: str,
        user_id: str,
        status: ParticipantStatus,
    ) -> None: ...


class MatchRepository(abc.ABC):
    @abc.abstractmethod
    async def get(self, match_id: str) -> Match | None: ...

    @abc.abstractmethod
    async def get_by_game_id(self, game_id: str) -> Match | None: ...

    @abc.abstractmethod
    async def list_by_tournament(self, tournament_id: str) -> list[Match]: ...

    @abc.abstractmethod
    async def add_many(self, matches: Sequence[Match]) -> None: ...

    @abc.abstractmethod
    async def remove_by_tournament(self, tournament_id: str) -> None: ...

    @abc.abstractmethod
    async def claim_game(self, match_id: str, game_id: str, started_at: datetime) -> bool:
        """Store the game id only if the match is pending and has none."""

    @abc.abstractmethod
    async def finish(
        self,
        match_id: str,
        winner_id: str,
        game_id: str | None,
        finished_at: datetime,
    ) -> bool:
        """Mark finished only if not already finished."""

    @abc.abstractmethod
    async def fill_slot(self, match_id: str, slot: MatchSlot, player_id: str) -> bool:
        """Write the player into the slot only if the slot is empty."""


class BracketSnapshotRepository(abc.ABC):
    @abc.abstractmethod
    async def latest(self, tournament_id: str) -> BracketSnapshot | None: ...

    @abc.abstractmethod
    async def list_by_tournament(self, tournament_id: str) -> list[BracketSnapshot]: ...

    @abc.abstractmethod
    async def add(self, snapshot: BracketSnapshot) -> None: ...

    @abc.abstractmethod
    async def remove_by_tournament(self, tournament_id: str) -> None: ...


class UnitOfWork(abc.ABC):
    """
    Transactional scope.

    Usage:
        async with uow_factory() as uow:
            tournament = await uow.tournaments.get(tid, for_update=True)
            ...
    Leaving the block normally commits; leaving with an exception rolls back.
    """

    tournaments: TournamentRepository
    participants: ParticipantRepository
    matches: MatchRepository
    snapshots: BracketSnapshotRepository

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    @abc.abstractmethod
    async def commit(self) -> None: ...

    @abc.abstractmethod
    async def rollback(self) -> None: ...


# =============================================================================
# External services
# =============================================================================


@dataclass(frozen=True)
class CreateGameRequest:
    tournament_id: str
    match_id: str
    player_id: str
    opponent_id: str


class GameOrchestrator(abc.ABC):
    @abc.abstractmethod
    async def create_game(self, request: CreateGameRequest) -> str:
        """Create the underlying game and return its id.

        Raises:
            GameConflictError: a game already exists for the request
            BadRequestError / ForbiddenError: rejected, not retryable
            ExternalServiceUnavailableError: unavailable after retries
        """


class TournamentEventPublisher(abc.ABC):
    """Fire-and-forget outbound events. Implementations never raise."""

    @abc.abstractmethod
    async def tournament_created(self, tournament: Tournament) -> None: ...

    @abc.abstractmethod
    async def player_registered(self, tournament_id: str, participant: Participant) -> None: ...

    @abc.abstractmethod
    async def tournament_started(self, tournament: Tournament, matches: Sequence[Match]) -> None: ...

    @abc.abstractmethod
    async def tournament_finished(
        self,
        tournament: Tournament,
        winner_id: str,
        runner_up_id: str | None,
        participants: Sequence[Participant],
    ) -> None: ...
