"""
Tournament registration: create, join and leave.

Every write path locks the tournament row first and recounts participants
from storage; the denormalized ``current_participants`` is only ever
written from that recount.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional
from uuid import uuid4

from tournament_service.logging_config import get_logger
from tournament_service.utils.errors import (
    BadRequestError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    UnauthorizedError,
    tournament_not_found,
)
from tournament_service.utils.security import (
    generate_access_code,
    hash_passcode,
    verify_passcode,
)

from .models import (
    BracketType,
    Participant,
    Tournament,
    TournamentRules,
    compute_ready_state,
    utc_now,
)
from .ports import TournamentEventPublisher, UnitOfWork

if TYPE_CHECKING:
    from .auto_start import AutoStartScheduler

logger = get_logger(__name__)

UnitOfWorkFactory = Callable[[], UnitOfWork]


# =============================================================================
# Commands & results
# =============================================================================


@dataclass(frozen=True)
class CreateTournamentCommand:
    name: str
    creator_id: Optional[str]
    is_public: bool = True
    passcode: Optional[str] = None
    bracket_type: str = BracketType.SINGLE_ELIMINATION.value


@dataclass(frozen=True)
class JoinTournamentCommand:
    tournament_id: str
    user_id: Optional[str]
    passcode: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class JoinTournamentResult:
    participant: Participant
    participant_count: int
    ready_to_start: bool
    start_timeout_at: Optional[datetime]
    auto_started: bool = False


@dataclass(frozen=True)
class LeaveTournamentCommand:
    tournament_id: str
    user_id: Optional[str]


@dataclass(frozen=True)
class LeaveTournamentResult:
    participant_count: int
    ready_to_start: bool
    start_timeout_at: Optional[datetime]
    tournament_deleted: bool = False


# =============================================================================
# Use cases
# =============================================================================


class CreateTournament:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        publisher: TournamentEventPublisher,
        rules: TournamentRules,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.rules = rules
        self.clock = clock

    async def execute(self, command: CreateTournamentCommand) -> Tournament:
        if not command.creator_id:
            raise UnauthorizedError("creator_id is required")

        name = (command.name or "").strip()
        if not name:
            raise BadRequestError(ErrorCode.MISSING_FIELD, "Tournament name is required")

        if command.bracket_type != BracketType.SINGLE_ELIMINATION.value:
            raise BadRequestError(
                ErrorCode.UNSUPPORTED_BRACKET_TYPE,
                "Only single_elimination brackets are supported",
                details={"bracketType": command.bracket_type},
            )

        if not command.is_public and not command.passcode:
            raise BadRequestError(
                ErrorCode.PASSCODE_REQUIRED,
                "Private tournaments require a passcode",
            )

        now = self.clock()
        tournament = Tournament(
            id=str(uuid4()),
            name=name,
            creator_id=command.creator_id,
            min_participants=self.rules.min_participants,
            max_participants=self.rules.max_participants,
            is_public=command.is_public,
            access_code=(
                generate_access_code(self.rules.access_code_length)
                if command.is_public
                else None
            ),
            passcode_hash=None if command.is_public else hash_passcode(command.passcode),
            created_at=now,
            updated_at=now,
        )

        async with self.uow_factory() as uow:
            await uow.tournaments.add(tournament)

        logger.info(
            "tournament_created",
            tournament_id=tournament.id,
            creator_id=tournament.creator_id,
            is_public=tournament.is_public,
        )
        await self.publisher.tournament_created(tournament)
        return tournament


class JoinTournament:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        publisher: TournamentEventPublisher,
        rules: TournamentRules,
        auto_start: Optional["AutoStartScheduler"] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.rules = rules
        self.auto_start = auto_start
        self.clock = clock

    async def execute(self, command: JoinTournamentCommand) -> JoinTournamentResult:
        if not command.user_id:
            raise UnauthorizedError("user_id is required")

        async with self.uow_factory() as uow:
            tournament = await uow.tournaments.get(command.tournament_id, for_update=True)
            if tournament is None:
                raise tournament_not_found(command.tournament_id)

            _ensure_recruiting(tournament)

            if await uow.participants.get(tournament.id, command.user_id):
                raise ConflictError(
                    ErrorCode.ALREADY_JOINED,
                    "Already joined this tournament",
                    details={"tournamentId": tournament.id, "userId": command.user_id},
                )

            _ensure_passcode(tournament, command.passcode)

            count = await uow.participants.count_by_tournament(tournament.id)
            if count >= tournament.max_participants:
                raise ConflictError(
                    ErrorCode.TOURNAMENT_FULL,
                    "Tournament is full",
                    details={"maxParticipants": tournament.max_participants},
                )

            now = self.clock()
            participant = Participant(
                tournament_id=tournament.id,
                user_id=command.user_id,
                display_name=command.display_name,
                joined_at=now,
            )
            await uow.participants.add(participant)

            count = await uow.participants.count_by_tournament(tournament.id)
            ready = compute_ready_state(tournament, count, now, self.rules)
            tournament = replace(
                tournament,
                current_participants=count,
                ready_to_start=ready.ready_to_start,
                ready_at=ready.ready_at,
                start_timeout_at=ready.start_timeout_at,
                updated_at=now,
            )
            await uow.tournaments.update(tournament)

        logger.info(
            "player_joined",
            tournament_id=tournament.id,
            user_id=command.user_id,
            participant_count=count,
            ready_to_start=ready.ready_to_start,
        )
        await self.publisher.player_registered(tournament.id, participant)

        auto_started = False
        if count == tournament.max_participants and self.auto_start is not None:
            auto_started = await self.auto_start.start_immediately(tournament.id)

        return JoinTournamentResult(
            participant=participant,
            participant_count=count,
            ready_to_start=ready.ready_to_start,
            start_timeout_at=ready.start_timeout_at,
            auto_started=auto_started,
        )


class LeaveTournament:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        rules: TournamentRules,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uow_factory = uow_factory
        self.rules = rules
        self.clock = clock

    async def execute(self, command: LeaveTournamentCommand) -> LeaveTournamentResult:
        if not command.user_id:
            raise UnauthorizedError("user_id is required")

        async with self.uow_factory() as uow:
            tournament = await uow.tournaments.get(command.tournament_id, for_update=True)
            if tournament is None:
                raise tournament_not_found(command.tournament_id)

            _ensure_recruiting(tournament)

            if tournament.is_creator(command.user_id):
                await uow.participants.remove_by_tournament(tournament.id)
                await uow.matches.remove_by_tournament(tournament.id)
                await uow.snapshots.remove_by_tournament(tournament.id)
                await uow.tournaments.delete(tournament.id)
                logger.info("tournament_deleted_by_creator", tournament_id=tournament.id)
                return LeaveTournamentResult(
                    participant_count=0,
                    ready_to_start=False,
                    start_timeout_at=None,
                    tournament_deleted=True,
                )

            if await uow.participants.get(tournament.id, command.user_id) is None:
                raise BadRequestError(
                    ErrorCode.NOT_A_PARTICIPANT,
                    "User is not a participant",
                    details={"tournamentId": tournament.id, "userId": command.user_id},
                )

            await uow.participants.remove(tournament.id, command.user_id)

            now = self.clock()
            count = await uow.participants.count_by_tournament(tournament.id)
            ready = compute_ready_state(tournament, count, now, self.rules)
            await uow.tournaments.update(
                replace(
                    tournament,
                    current_participants=count,
                    ready_to_start=ready.ready_to_start,
                    ready_at=ready.ready_at,
                    start_timeout_at=ready.start_timeout_at,
                    updated_at=now,
                )
            )

        logger.info(
            "player_left",
            tournament_id=command.tournament_id,
            user_id=command.user_id,
            participant_count=count,
        )
        return LeaveTournamentResult(
            participant_count=count,
            ready_to_start=ready.ready_to_start,
            start_timeout_at=ready.start_timeout_at,
        )


# =============================================================================
# Helpers
# =============================================================================


def _ensure_recruiting(tournament: Tournament) -> None:
    if not tournament.is_recruiting:
        raise BadRequestError(
            ErrorCode.NOT_RECRUITING,
            "Tournament is not recruiting",
            details={"status": tournament.status.value},
        )


def _ensure_passcode(tournament: Tournament, passcode: Optional[str]) -> None:
    if not tournament.requires_passcode:
        return
    if not passcode or not tournament.passcode_hash:
        raise ForbiddenError(ErrorCode.PASSCODE_REQUIRED, "Passcode required")
    if not verify_passcode(passcode, tournament.passcode_hash):
        raise ForbiddenError(ErrorCode.INCORRECT_PASSCODE, "Incorrect passcode")
