"""Shared fixtures: in-memory adapters for the lifecycle ports."""

import asyncio
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import pytest

from tournament_service.container import build_container
from tournament_service.tournament.bracket import BracketGenerator
from tournament_service.tournament.models import (
    BracketSnapshot,
    Match,
    MatchSlot,
    MatchStatus,
    Participant,
    ParticipantStatus,
    Tournament,
    TournamentRules,
    TournamentStatus,
)
from tournament_service.tournament.ports import (
    BracketSnapshotRepository,
    CreateGameRequest,
    GameOrchestrator,
    MatchRepository,
    ParticipantRepository,
    TournamentEventPublisher,
    TournamentRepository,
    UnitOfWork,
)
from tournament_service.tournament.registration import (
    CreateTournamentCommand,
    JoinTournamentCommand,
)
from tournament_service.utils.errors import GameConflictError


# =============================================================================
# In-memory storage
# =============================================================================


@dataclass
class InMemoryStore:
    """Shared state behind every in-memory unit of work.

    ``lock`` serialises units of work the way row locks serialise
    transactions against a real database.
    """

    tournaments: Dict[str, Tournament] = field(default_factory=dict)
    participants: Dict[Tuple[str, str], Participant] = field(default_factory=dict)
    matches: Dict[str, Match] = field(default_factory=dict)
    snapshots: List[BracketSnapshot] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    failures: Dict[str, Exception] = field(default_factory=dict)
    commits: int = 0
    rollbacks: int = 0

    def fail_on(self, operation: str, error: Exception) -> None:
        """Raise ``error`` the next time ``operation`` runs."""
        self.failures[operation] = error

    def maybe_fail(self, operation: str) -> None:
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    def capture(self) -> Tuple[Any, ...]:
        return (
            dict(self.tournaments),
            dict(self.participants),
            dict(self.matches),
            list(self.snapshots),
        )

    def restore(self, state: Tuple[Any, ...]) -> None:
        self.tournaments, self.participants, self.matches, self.snapshots = (
            dict(state[0]),
            dict(state[1]),
            dict(state[2]),
            list(state[3]),
        )

    def tournament_matches(self, tournament_id: str) -> List[Match]:
        return sorted(
            (m for m in self.matches.values() if m.tournament_id == tournament_id),
            key=lambda m: (m.round, m.match_position),
        )

    def tournament_snapshots(self, tournament_id: str) -> List[BracketSnapshot]:
        return sorted(
            (s for s in self.snapshots if s.tournament_id == tournament_id),
            key=lambda s: s.version,
        )

    def tournament_participants(self, tournament_id: str) -> List[Participant]:
        return [p for (tid, _), p in self.participants.items() if tid == tournament_id]


class InMemoryTournamentRepository(TournamentRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get(self, tournament_id, *, for_update=False):
        self.store.maybe_fail("tournaments.get")
        return self.store.tournaments.get(tournament_id)

    async def list(self, status=None, public_only=False):
        items = [
            t
            for t in self.store.tournaments.values()
            if (status is None or t.status == status) and (not public_only or t.is_public)
        ]
        return sorted(items, key=lambda t: t.created_at, reverse=True)

    async def list_due_for_auto_start(self, now):
        return [
            t
            for t in self.store.tournaments.values()
            if t.status == TournamentStatus.RECRUITING
            and (
                (t.start_timeout_at is not None and t.start_timeout_at <= now)
                or (t.ready_to_start and t.current_participants >= t.max_participants)
            )
        ]

    async def add(self, tournament):
        self.store.tournaments[tournament.id] = tournament

    async def update(self, tournament):
        self.store.maybe_fail("tournaments.update")
        self.store.tournaments[tournament.id] = tournament

    async def delete(self, tournament_id):
        self.store.tournaments.pop(tournament_id, None)


class InMemoryParticipantRepository(ParticipantRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get(self, tournament_id, user_id):
        return self.store.participants.get((tournament_id, user_id))

    async def list_by_tournament(self, tournament_id):
        return sorted(
            self.store.tournament_participants(tournament_id),
            key=lambda p: p.joined_at,
        )

    async def count_by_tournament(self, tournament_id):
        self.store.maybe_fail("participants.count")
        return len(self.store.tournament_participants(tournament_id))

    async def add(self, participant):
        key = (participant.tournament_id, participant.user_id)
        if key in self.store.participants:
            raise ValueError("duplicate participant")
        self.store.participants[key] = participant

    async def remove(self, tournament_id, user_id):
        self.store.participants.pop((tournament_id, user_id), None)

    async def remove_by_tournament(self, tournament_id):
        for key in [k for k in self.store.participants if k[0] == tournament_id]:
            del self.store.participants[key]

    async def update_status(self, tournament_id, user_id, status: ParticipantStatus):
        key = (tournament_id, user_id)
        if key in self.store.participants:
            self.store.participants[key] = replace(self.store.participants[key], status=status)


class InMemoryMatchRepository(MatchRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get(self, match_id):
        return self.store.matches.get(match_id)

    async def get_by_game_id(self, game_id):
        for m in self.store.matches.values():
            if m.game_id == game_id:
                return m
        return None

    async def list_by_tournament(self, tournament_id):
        return self.store.tournament_matches(tournament_id)

    async def add_many(self, matches: Sequence[Match]):
        self.store.maybe_fail("matches.add_many")
        for m in matches:
            self.store.matches[m.id] = m

    async def remove_by_tournament(self, tournament_id):
        for match_id in [k for k, m in self.store.matches.items() if m.tournament_id == tournament_id]:
            del self.store.matches[match_id]

    async def claim_game(self, match_id, game_id, started_at):
        m = self.store.matches.get(match_id)
        if m is None or m.status != MatchStatus.PENDING or m.game_id is not None:
            return False
        self.store.matches[match_id] = replace(
            m, game_id=game_id, status=MatchStatus.IN_PROGRESS, started_at=started_at
        )
        return True

    async def finish(self, match_id, winner_id, game_id, finished_at):
        m = self.store.matches.get(match_id)
        if m is None or m.status == MatchStatus.FINISHED:
            return False
        self.store.matches[match_id] = replace(
            m,
            status=MatchStatus.FINISHED,
            winner_id=winner_id,
            game_id=m.game_id or game_id,
            finished_at=finished_at,
        )
        return True

    async def fill_slot(self, match_id, slot: MatchSlot, player_id):
        m = self.store.matches.get(match_id)
        if m is None or m.slot_value(slot) is not None:
            return False
        if slot == MatchSlot.PLAYER1:
            self.store.matches[match_id] = replace(m, player1_id=player_id)
        else:
            self.store.matches[match_id] = replace(m, player2_id=player_id)
        return True


class InMemoryBracketSnapshotRepository(BracketSnapshotRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def latest(self, tournament_id):
        snapshots = self.store.tournament_snapshots(tournament_id)
        return snapshots[-1] if snapshots else None

    async def list_by_tournament(self, tournament_id):
        return self.store.tournament_snapshots(tournament_id)

    async def add(self, snapshot):
        self.store.maybe_fail("snapshots.add")
        if any(
            s.tournament_id == snapshot.tournament_id and s.version == snapshot.version
            for s in self.store.snapshots
        ):
            raise ValueError("duplicate snapshot version")
        self.store.snapshots.append(snapshot)

    async def remove_by_tournament(self, tournament_id):
        self.store.snapshots = [s for s in self.store.snapshots if s.tournament_id != tournament_id]


class InMemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.tournaments = InMemoryTournamentRepository(store)
        self.participants = InMemoryParticipantRepository(store)
        self.matches = InMemoryMatchRepository(store)
        self.snapshots = InMemoryBracketSnapshotRepository(store)
        self._saved: Optional[Tuple[Any, ...]] = None

    async def __aenter__(self):
        await self.store.lock.acquire()
        self._saved = self.store.capture()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            await super().__aexit__(exc_type, exc_val, exc_tb)
        finally:
            self.store.lock.release()

    async def commit(self):
        self.store.commits += 1

    async def rollback(self):
        self.store.rollbacks += 1
        self.store.restore(self._saved)


# =============================================================================
# External service fakes
# =============================================================================


class FakeGameOrchestrator(GameOrchestrator):
    """Creates one game per match; a repeat request conflicts."""

    def __init__(self):
        self.games: Dict[str, str] = {}
        self.requests: List[CreateGameRequest] = []
        self.error: Optional[Exception] = None
        self.report_existing_id = True

    async def create_game(self, request: CreateGameRequest) -> str:
        self.requests.append(request)
        # Let concurrent callers interleave
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if request.match_id in self.games:
            raise GameConflictError(
                "Game already exists",
                existing_game_id=(
                    self.games[request.match_id] if self.report_existing_id else None
                ),
            )
        game_id = f"game-{uuid4()}"
        self.games[request.match_id] = game_id
        return game_id


class RecordingPublisher(TournamentEventPublisher):
    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> List[Dict[str, Any]]:
        return [payload for n, payload in self.events if n == name]

    async def tournament_created(self, tournament):
        self.events.append(("tournament.created", {"tournament": tournament}))

    async def player_registered(self, tournament_id, participant):
        self.events.append(
            ("player.registered", {"tournament_id": tournament_id, "participant": participant})
        )

    async def tournament_started(self, tournament, matches):
        self.events.append(
            ("tournament.started", {"tournament": tournament, "matches": list(matches)})
        )

    async def tournament_finished(self, tournament, winner_id, runner_up_id, participants):
        self.events.append(
            (
                "tournament.finished",
                {
                    "tournament": tournament,
                    "winner_id": winner_id,
                    "runner_up_id": runner_up_id,
                    "participants": list(participants),
                },
            )
        )


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def rules() -> TournamentRules:
    return TournamentRules(
        min_participants=2,
        max_participants=4,
        auto_start_timeout_seconds=60,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    return lambda: InMemoryUnitOfWork(store)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def game_service() -> FakeGameOrchestrator:
    return FakeGameOrchestrator()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def container(rules, uow_factory, publisher, game_service, clock):
    return build_container(
        rules,
        uow_factory,
        publisher,
        game_service,
        sweep_interval_seconds=0.01,
        clock=clock,
        bracket_generator=BracketGenerator(rng=random.Random(7)),
    )


@pytest.fixture
def create_tournament(container):
    """Create a public tournament owned by ``creator``."""

    async def _create(creator_id: str = "creator", **kwargs) -> Tournament:
        return await container.create_tournament.execute(
            CreateTournamentCommand(name=kwargs.pop("name", "Friday Cup"), creator_id=creator_id, **kwargs)
        )

    return _create


@pytest.fixture
def join_players(container):
    """Join each user id in order; returns the join results."""

    async def _join(tournament_id: str, user_ids: Sequence[str]):
        results = []
        for user_id in user_ids:
            results.append(
                await container.join_tournament.execute(
                    JoinTournamentCommand(tournament_id=tournament_id, user_id=user_id)
                )
            )
        return results

    return _join
