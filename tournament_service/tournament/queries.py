"""Read-side queries used by the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from tournament_service.utils.errors import tournament_not_found

from .models import BracketSnapshot, Match, Participant, Tournament, TournamentStatus
from .ports import UnitOfWork


@dataclass(frozen=True)
class TournamentDetails:
    tournament: Tournament
    participants: List[Participant]
    matches: List[Match]


@dataclass(frozen=True)
class BracketView:
    tournament: Tournament
    matches: List[Match]
    snapshot: Optional[BracketSnapshot]


class TournamentQueries:
    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self.uow_factory = uow_factory

    async def list_tournaments(
        self,
        status: Optional[TournamentStatus] = None,
        public_only: bool = False,
    ) -> List[Tournament]:
        async with self.uow_factory() as uow:
            return await uow.tournaments.list(status=status, public_only=public_only)

    async def get_tournament(self, tournament_id: str) -> TournamentDetails:
        async with self.uow_factory() as uow:
            tournament = await uow.tournaments.get(tournament_id)
            if tournament is None:
                raise tournament_not_found(tournament_id)
            return TournamentDetails(
                tournament=tournament,
                participants=await uow.participants.list_by_tournament(tournament_id),
                matches=await uow.matches.list_by_tournament(tournament_id),
            )

    async def get_bracket(self, tournament_id: str) -> BracketView:
        """Live match list plus the latest snapshot (audit only)."""
        async with self.uow_factory() as uow:
            tournament = await uow.tournaments.get(tournament_id)
            if tournament is None:
                raise tournament_not_found(tournament_id)
            return BracketView(
                tournament=tournament,
                matches=await uow.matches.list_by_tournament(tournament_id),
                snapshot=await uow.snapshots.latest(tournament_id),
            )
