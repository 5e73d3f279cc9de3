"""
Tournament start: manual (creator) or system-triggered (full, timeout).

Bracket generation, match inserts, the first snapshot and the status
transition are one transaction; the started event goes out after commit.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional

from tournament_service.logging_config import get_logger
from tournament_service.utils.errors import (
    BadRequestError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    UnauthorizedError,
    tournament_not_found,
)

from .bracket import BracketGenerator
from .models import (
    BracketSnapshot,
    Match,
    Participant,
    StartReason,
    Tournament,
    TournamentStatus,
    utc_now,
)
from .ports import TournamentEventPublisher, UnitOfWork

logger = get_logger(__name__)


@dataclass(frozen=True)
class StartTournamentCommand:
    tournament_id: str
    requested_by: Optional[str] = None
    reason: StartReason = StartReason.MANUAL


@dataclass(frozen=True)
class StartTournamentResult:
    tournament: Tournament
    participants: List[Participant]
    matches: List[Match]
    snapshot: BracketSnapshot


class StartTournament:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        publisher: TournamentEventPublisher,
        bracket_generator: BracketGenerator,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.bracket_generator = bracket_generator
        self.clock = clock

    async def execute(self, command: StartTournamentCommand) -> StartTournamentResult:
        if command.reason == StartReason.MANUAL and not command.requested_by:
            raise UnauthorizedError("requested_by is required for a manual start")

        async with self.uow_factory() as uow:
            tournament = await uow.tournaments.get(command.tournament_id, for_update=True)
            if tournament is None:
                raise tournament_not_found(command.tournament_id)

            if command.reason == StartReason.MANUAL and not tournament.is_creator(
                command.requested_by
            ):
                raise ForbiddenError(
                    ErrorCode.NOT_CREATOR,
                    "Only the creator can start the tournament",
                )

            if not tournament.is_recruiting:
                raise ConflictError(
                    ErrorCode.TOURNAMENT_ALREADY_STARTED,
                    "Tournament already started",
                    details={"status": tournament.status.value},
                )

            participants = await uow.participants.list_by_tournament(tournament.id)
            count = len(participants)
            if not tournament.can_start_with(count):
                raise BadRequestError(
                    ErrorCode.INVALID_PARTICIPANT_COUNT,
                    f"Tournament can only start with exactly {tournament.min_participants} "
                    f"or {tournament.max_participants} participants (currently {count})",
                    details={
                        "participantCount": count,
                        "allowedCounts": [
                            tournament.min_participants,
                            tournament.max_participants,
                        ],
                    },
                )

            now = self.clock()
            bracket = self.bracket_generator.generate(
                tournament.id,
                participants,
                tournament.min_participants,
                tournament.max_participants,
                now=now,
            )
            await uow.matches.add_many(bracket.matches)

            latest = await uow.snapshots.latest(tournament.id)
            snapshot = BracketSnapshot(
                tournament_id=tournament.id,
                version=latest.version + 1 if latest else 1,
                state=bracket.snapshot,
                created_at=now,
            )
            await uow.snapshots.add(snapshot)

            tournament = replace(
                tournament,
                status=TournamentStatus.IN_PROGRESS,
                current_participants=count,
                ready_to_start=False,
                ready_at=None,
                start_timeout_at=None,
                started_at=now,
                updated_at=now,
            )
            await uow.tournaments.update(tournament)

        logger.info(
            "tournament_started",
            tournament_id=tournament.id,
            reason=command.reason.value,
            bracket_size=bracket.size,
            rounds=bracket.rounds,
        )
        await self.publisher.tournament_started(tournament, bracket.matches)

        return StartTournamentResult(
            tournament=tournament,
            participants=participants,
            matches=bracket.matches,
            snapshot=snapshot,
        )
