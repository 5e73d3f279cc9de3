"""Composition root.

Wires every use case by constructor injection. Adapters (unit of work
factory, publisher, game orchestrator) are passed in, so the same wiring
serves production (SQLAlchemy, Redis, httpx) and tests (in-memory fakes).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from tournament_service.tournament.auto_start import AutoStartScheduler
from tournament_service.tournament.bracket import BracketGenerator
from tournament_service.tournament.matches import CompleteMatch, PlayMatch
from tournament_service.tournament.models import TournamentRules, utc_now
from tournament_service.tournament.ports import (
    GameOrchestrator,
    TournamentEventPublisher,
    UnitOfWork,
)
from tournament_service.tournament.queries import TournamentQueries
from tournament_service.tournament.registration import (
    CreateTournament,
    JoinTournament,
    LeaveTournament,
)
from tournament_service.tournament.start import StartTournament


@dataclass
class TournamentServiceContainer:
    rules: TournamentRules
    create_tournament: CreateTournament
    join_tournament: JoinTournament
    leave_tournament: LeaveTournament
    start_tournament: StartTournament
    play_match: PlayMatch
    complete_match: CompleteMatch
    queries: TournamentQueries
    auto_start: AutoStartScheduler


def build_container(
    rules: TournamentRules,
    uow_factory: Callable[[], UnitOfWork],
    publisher: TournamentEventPublisher,
    game_orchestrator: GameOrchestrator,
    *,
    sweep_interval_seconds: float = 5.0,
    clock: Callable[[], datetime] = utc_now,
    bracket_generator: Optional[BracketGenerator] = None,
) -> TournamentServiceContainer:
    start_tournament = StartTournament(
        uow_factory,
        publisher,
        bracket_generator or BracketGenerator(),
        clock=clock,
    )
    auto_start = AutoStartScheduler(
        uow_factory,
        start_tournament,
        interval_seconds=sweep_interval_seconds,
        clock=clock,
    )

    return TournamentServiceContainer(
        rules=rules,
        create_tournament=CreateTournament(uow_factory, publisher, rules, clock=clock),
        join_tournament=JoinTournament(
            uow_factory,
            publisher,
            rules,
            auto_start=auto_start,
            clock=clock,
        ),
        leave_tournament=LeaveTournament(uow_factory, rules, clock=clock),
        start_tournament=start_tournament,
        play_match=PlayMatch(uow_factory, game_orchestrator, clock=clock),
        complete_match=CompleteMatch(uow_factory, publisher, clock=clock),
        queries=TournamentQueries(uow_factory),
        auto_start=auto_start,
    )
