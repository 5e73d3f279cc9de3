"""
Match play and completion.

PlayMatch creates the underlying game outside any transaction and then
claims the match with a compare-and-set, so concurrent callers converge on
one stored game id. CompleteMatch runs under the tournament row lock and
finishes the match with a compare-and-set, so a redelivered outcome can
never propagate or finalize twice.
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
    GameConflictError,
    UnauthorizedError,
    match_not_found,
    tournament_not_found,
)

from .bracket import final_round, find_match, serialize_bracket
from .models import (
    BracketSnapshot,
    Match,
    MatchStatus,
    Participant,
    ParticipantStatus,
    Tournament,
    TournamentStatus,
    utc_now,
)
from .ports import (
    CreateGameRequest,
    GameOrchestrator,
    TournamentEventPublisher,
    UnitOfWork,
)

logger = get_logger(__name__)

UnitOfWorkFactory = Callable[[], UnitOfWork]


# =============================================================================
# PlayMatch
# =============================================================================


@dataclass(frozen=True)
class PlayMatchCommand:
    tournament_id: str
    match_id: str
    user_id: Optional[str]


@dataclass(frozen=True)
class PlayMatchResult:
    game_id: str

    @property
    def redirect_url(self) -> str:
        return f"/game/play/{self.game_id}"


class PlayMatch:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        game_orchestrator: GameOrchestrator,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uow_factory = uow_factory
        self.game_orchestrator = game_orchestrator
        self.clock = clock

    async def execute(self, command: PlayMatchCommand) -> PlayMatchResult:
        if not command.user_id:
            raise UnauthorizedError("Missing user identity")

        async with self.uow_factory() as uow:
            tournament = await uow.tournaments.get(command.tournament_id)
            if tournament is None:
                raise tournament_not_found(command.tournament_id)
            if tournament.status != TournamentStatus.IN_PROGRESS:
                raise BadRequestError(
                    ErrorCode.TOURNAMENT_NOT_IN_PROGRESS,
                    "Tournament not in progress",
                    details={"status": tournament.status.value},
                )
            match = await uow.matches.get(command.match_id)

        if match is None or match.tournament_id != tournament.id:
            raise match_not_found(command.match_id)
        if not match.is_ready:
            raise BadRequestError(ErrorCode.MATCH_NOT_READY, "Match is not ready")
        if not match.has_player(command.user_id):
            raise ForbiddenError(
                ErrorCode.NOT_A_MATCH_PLAYER,
                "You are not a participant in this match",
            )
        if match.is_finished:
            raise ConflictError(ErrorCode.MATCH_ALREADY_FINISHED, "Match already finished")

        # Another caller already created the game
        if match.game_id:
            return PlayMatchResult(match.game_id)
        if match.status != MatchStatus.PENDING:
            raise ConflictError(ErrorCode.MATCH_ALREADY_STARTED, "Match already started")

        request = CreateGameRequest(
            tournament_id=tournament.id,
            match_id=match.id,
            player_id=command.user_id,
            opponent_id=match.opponent_of(command.user_id),
        )
        try:
            game_id = await self.game_orchestrator.create_game(request)
        except GameConflictError as e:
            logger.warning(
                "game_create_conflict",
                tournament_id=tournament.id,
                match_id=match.id,
                existing_game_id=e.existing_game_id,
            )
            return PlayMatchResult(await self._recover(match.id, e))

        async with self.uow_factory() as uow:
            claimed = await uow.matches.claim_game(match.id, game_id, self.clock())
            if not claimed:
                latest = await uow.matches.get(match.id)

        if claimed:
            logger.info(
                "match_game_created",
                tournament_id=tournament.id,
                match_id=match.id,
                game_id=game_id,
            )
            return PlayMatchResult(game_id)

        if latest is not None and latest.game_id:
            # Lost the race; the game created here is left unused
            logger.warning(
                "match_game_claim_lost",
                match_id=match.id,
                game_id=game_id,
                stored_game_id=latest.game_id,
            )
            return PlayMatchResult(latest.game_id)

        raise ConflictError(
            ErrorCode.MATCH_ALREADY_STARTED,
            "Match can no longer be started",
            details={"matchId": match.id},
        )

    async def _recover(self, match_id: str, error: GameConflictError) -> str:
        async with self.uow_factory() as uow:
            if error.existing_game_id and await uow.matches.claim_game(
                match_id, error.existing_game_id, self.clock()
            ):
                return error.existing_game_id
            latest = await uow.matches.get(match_id)

        if latest is not None and latest.game_id:
            return latest.game_id
        raise error


# =============================================================================
# CompleteMatch
# =============================================================================


@dataclass(frozen=True)
class CompleteMatchCommand:
    tournament_id: str
    winner_id: Optional[str]
    match_id: Optional[str] = None
    game_id: Optional[str] = None
    finished_at: Optional[datetime] = None


@dataclass(frozen=True)
class CompleteMatchResult:
    match: Match
    tournament: Tournament
    next_match: Optional[Match] = None
    runner_up_id: Optional[str] = None

    @property
    def tournament_finished(self) -> bool:
        return self.tournament.status == TournamentStatus.FINISHED


class CompleteMatch:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        publisher: TournamentEventPublisher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.clock = clock

    async def execute(self, command: CompleteMatchCommand) -> CompleteMatchResult:
        if not command.match_id and not command.game_id:
            raise BadRequestError(
                ErrorCode.MISSING_FIELD,
                "Either match_id or game_id is required",
            )
        if not command.winner_id:
            raise BadRequestError(ErrorCode.MISSING_FIELD, "winner_id is required")

        finished_at = command.finished_at or self.clock()
        participants: List[Participant] = []
        next_match: Optional[Match] = None
        runner_up_id: Optional[str] = None

        async with self.uow_factory() as uow:
            tournament = await uow.tournaments.get(command.tournament_id, for_update=True)
            if tournament is None:
                raise tournament_not_found(command.tournament_id)

            match = await self._find_match(uow, command)
            if match is None or match.tournament_id != tournament.id:
                raise match_not_found(command.match_id or command.game_id)

            if match.is_finished:
                raise _already_finished(match)
            if tournament.status != TournamentStatus.IN_PROGRESS:
                raise BadRequestError(
                    ErrorCode.TOURNAMENT_NOT_IN_PROGRESS,
                    "Tournament not in progress",
                    details={"status": tournament.status.value},
                )
            if not match.is_ready:
                raise BadRequestError(ErrorCode.MATCH_NOT_READY, "Match is not ready")
            if not match.has_player(command.winner_id):
                raise BadRequestError(
                    ErrorCode.INVALID_WINNER,
                    "Winner does not belong to the match",
                    details={"winnerId": command.winner_id, "matchId": match.id},
                )

            if not await uow.matches.finish(
                match.id, command.winner_id, command.game_id, finished_at
            ):
                raise _already_finished(match)

            loser_id = match.loser_for(command.winner_id)
            await uow.participants.update_status(
                tournament.id, loser_id, ParticipantStatus.ELIMINATED
            )

            matches = await uow.matches.list_by_tournament(tournament.id)

            if match.round == final_round(matches):
                runner_up_id = loser_id
                await uow.participants.update_status(
                    tournament.id, command.winner_id, ParticipantStatus.WINNER
                )
                tournament = replace(
                    tournament,
                    status=TournamentStatus.FINISHED,
                    finished_at=finished_at,
                    updated_at=finished_at,
                )
                await uow.tournaments.update(tournament)
                participants = await uow.participants.list_by_tournament(tournament.id)
            else:
                next_match = await self._propagate(uow, matches, match, command.winner_id)
                if next_match is not None:
                    matches = await uow.matches.list_by_tournament(tournament.id)

            await self._write_snapshot(uow, tournament.id, matches)

        completed = next((m for m in matches if m.id == match.id), match)
        logger.info(
            "match_completed",
            tournament_id=tournament.id,
            match_id=match.id,
            round=match.round,
            winner_id=command.winner_id,
            tournament_finished=tournament.status == TournamentStatus.FINISHED,
        )

        if tournament.status == TournamentStatus.FINISHED:
            await self.publisher.tournament_finished(
                tournament,
                command.winner_id,
                runner_up_id,
                participants,
            )

        return CompleteMatchResult(
            match=completed,
            tournament=tournament,
            next_match=next_match,
            runner_up_id=runner_up_id,
        )

    async def _find_match(self, uow: UnitOfWork, command: CompleteMatchCommand) -> Optional[Match]:
        if command.match_id:
            return await uow.matches.get(command.match_id)
        return await uow.matches.get_by_game_id(command.game_id)

    async def _propagate(
        self,
        uow: UnitOfWork,
        matches: List[Match],
        match: Match,
        winner_id: str,
    ) -> Optional[Match]:
        round_number, position = match.successor_address()
        successor = find_match(matches, round_number, position)
        if successor is None:
            return None

        slot = match.successor_slot()
        if not await uow.matches.fill_slot(successor.id, slot, winner_id):
            logger.warning(
                "successor_slot_already_filled",
                match_id=match.id,
                successor_id=successor.id,
                slot=slot.value,
                existing=successor.slot_value(slot),
            )
        return await uow.matches.get(successor.id)

    async def _write_snapshot(
        self,
        uow: UnitOfWork,
        tournament_id: str,
        matches: List[Match],
    ) -> BracketSnapshot:
        latest = await uow.snapshots.latest(tournament_id)
        state = serialize_bracket(matches)
        if latest is not None and "seeds" in latest.state:
            state["seeds"] = latest.state["seeds"]
        snapshot = BracketSnapshot(
            tournament_id=tournament_id,
            version=latest.version + 1 if latest else 1,
            state=state,
            created_at=self.clock(),
        )
        await uow.snapshots.add(snapshot)
        return snapshot


def _already_finished(match: Match) -> ConflictError:
    return ConflictError(
        ErrorCode.MATCH_ALREADY_FINISHED,
        "Match already finished",
        details={"matchId": match.id, "winnerId": match.winner_id},
    )
