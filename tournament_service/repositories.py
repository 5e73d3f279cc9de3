"""SQLAlchemy persistence adapter.

Rows are mapped to the frozen domain records on the way out, so nothing
outside this module ever holds an ORM instance. Conditional writes
(``claim_game``, ``finish``, ``fill_slot``) are single ``UPDATE ... WHERE``
statements whose row count reports whether this caller won.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tournament_service.models import (
    BracketStateRow,
    MatchRow,
    ParticipantRow,
    TournamentRow,
)
from tournament_service.tournament.models import (
    BracketSnapshot,
    BracketType,
    Match,
    MatchSlot,
    MatchStatus,
    Participant,
    ParticipantStatus,
    Tournament,
    TournamentStatus,
    utc_now,
)
from tournament_service.tournament.ports import (
    BracketSnapshotRepository,
    MatchRepository,
    ParticipantRepository,
    TournamentRepository,
    UnitOfWork,
)
from tournament_service.utils.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Row <-> record mapping
# =============================================================================


def _to_tournament(row: TournamentRow) -> Tournament:
    return Tournament(
        id=row.id,
        name=row.name,
        creator_id=row.creator_id,
        min_participants=row.min_participants,
        max_participants=row.max_participants,
        status=TournamentStatus(row.status),
        bracket_type=BracketType(row.bracket_type),
        current_participants=row.current_participants,
        is_public=row.is_public,
        access_code=row.access_code,
        passcode_hash=row.passcode_hash,
        ready_to_start=row.ready_to_start,
        ready_at=_aware(row.ready_at),
        start_timeout_at=_aware(row.start_timeout_at),
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        finished_at=_aware(row.finished_at),
        updated_at=_aware(row.updated_at),
    )


def _tournament_values(tournament: Tournament) -> dict:
    return {
        "name": tournament.name,
        "creator_id": tournament.creator_id,
        "status": tournament.status.value,
        "bracket_type": tournament.bracket_type.value,
        "min_participants": tournament.min_participants,
        "max_participants": tournament.max_participants,
        "current_participants": tournament.current_participants,
        "is_public": tournament.is_public,
        "access_code": tournament.access_code,
        "passcode_hash": tournament.passcode_hash,
        "ready_to_start": tournament.ready_to_start,
        "ready_at": tournament.ready_at,
        "start_timeout_at": tournament.start_timeout_at,
        "started_at": tournament.started_at,
        "finished_at": tournament.finished_at,
        "updated_at": tournament.updated_at,
    }


def _to_participant(row: ParticipantRow) -> Participant:
    return Participant(
        id=row.id,
        tournament_id=row.tournament_id,
        user_id=row.user_id,
        display_name=row.display_name,
        status=ParticipantStatus(row.status),
        joined_at=_aware(row.joined_at),
    )


def _to_match(row: MatchRow) -> Match:
    return Match(
        id=row.id,
        tournament_id=row.tournament_id,
        round=row.round,
        match_position=row.match_position,
        player1_id=row.player1_id,
        player2_id=row.player2_id,
        status=MatchStatus(row.status),
        game_id=row.game_id,
        winner_id=row.winner_id,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        finished_at=_aware(row.finished_at),
    )


def _to_snapshot(row: BracketStateRow) -> BracketSnapshot:
    return BracketSnapshot(
        id=row.id,
        tournament_id=row.tournament_id,
        version=row.version,
        state=row.state,
        created_at=_aware(row.created_at),
    )


# =============================================================================
# Repositories
# =============================================================================


class SqlAlchemyTournamentRepository(TournamentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, tournament_id: str, *, for_update: bool = False) -> Tournament | None:
        stmt = select(TournamentRow).where(TournamentRow.id == tournament_id)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_tournament(row) if row else None

    async def list(
        self,
        status: TournamentStatus | None = None,
        public_only: bool = False,
    ) -> list[Tournament]:
        stmt = select(TournamentRow).order_by(TournamentRow.created_at.desc())
        if status is not None:
            stmt = stmt.where(TournamentRow.status == status.value)
        if public_only:
            stmt = stmt.where(TournamentRow.is_public.is_(True))
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_tournament(r) for r in rows]

    async def list_due_for_auto_start(self, now: datetime) -> list[Tournament]:
        stmt = (
            select(TournamentRow)
            .where(TournamentRow.status == TournamentStatus.RECRUITING.value)
            .where(
                or_(
                    and_(
                        TournamentRow.start_timeout_at.is_not(None),
                        TournamentRow.start_timeout_at <= now,
                    ),
                    and_(
                        TournamentRow.ready_to_start.is_(True),
                        TournamentRow.current_participants
                        >= TournamentRow.max_participants,
                    ),
                )
            )
            .order_by(TournamentRow.created_at)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_tournament(r) for r in rows]

    async def add(self, tournament: Tournament) -> None:
        self.session.add(
            TournamentRow(
                id=tournament.id,
                created_at=tournament.created_at,
                **_tournament_values(tournament),
            )
        )
        await self.session.flush()

    async def update(self, tournament: Tournament) -> None:
        await self.session.execute(
            update(TournamentRow)
            .where(TournamentRow.id == tournament.id)
            .values(**_tournament_values(tournament))
        )

    async def delete(self, tournament_id: str) -> None:
        await self.session.execute(
            delete(TournamentRow).where(TournamentRow.id == tournament_id)
        )


class SqlAlchemyParticipantRepository(ParticipantRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, tournament_id: str, user_id: str) -> Participant | None:
        row = (
            await self.session.execute(
                select(ParticipantRow).where(
                    ParticipantRow.tournament_id == tournament_id,
                    ParticipantRow.user_id == user_id,
                )
            )
        ).scalar_one_or_none()
        return _to_participant(row) if row else None

    async def list_by_tournament(self, tournament_id: str) -> list[Participant]:
        rows = (
            await self.session.execute(
                select(ParticipantRow)
                .where(ParticipantRow.tournament_id == tournament_id)
                .order_by(ParticipantRow.joined_at)
            )
        ).scalars().all()
        return [_to_participant(r) for r in rows]

    async def count_by_tournament(self, tournament_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ParticipantRow)
            .where(ParticipantRow.tournament_id == tournament_id)
        )
        return result.scalar_one()

    async def add(self, participant: Participant) -> None:
        self.session.add(
            ParticipantRow(
                id=participant.id,
                tournament_id=participant.tournament_id,
                user_id=participant.user_id,
                display_name=participant.display_name,
                status=participant.status.value,
                joined_at=participant.joined_at,
            )
        )
        await self.session.flush()

    async def remove(self, tournament_id: str, user_id: str) -> None:
        await self.session.execute(
            delete(ParticipantRow).where(
                ParticipantRow.tournament_id == tournament_id,
                ParticipantRow.user_id == user_id,
            )
        )

    async def remove_by_tournament(self, tournament_id: str) -> None:
        await self.session.execute(
            delete(ParticipantRow).where(ParticipantRow.tournament_id == tournament_id)
        )

    async def update_status(
        self,
        tournament_id: str,
        user_id: str,
        status: ParticipantStatus,
    ) -> None:
        await self.session.execute(
            update(ParticipantRow)
            .where(
                ParticipantRow.tournament_id == tournament_id,
                ParticipantRow.user_id == user_id,
            )
            .values(status=status.value)
        )


class SqlAlchemyMatchRepository(MatchRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, match_id: str) -> Match | None:
        stmt = (
            select(MatchRow)
            .where(MatchRow.id == match_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_match(row) if row else None

    async def get_by_game_id(self, game_id: str) -> Match | None:
        stmt = (
            select(MatchRow)
            .where(MatchRow.game_id == game_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_match(row) if row else None

    async def list_by_tournament(self, tournament_id: str) -> list[Match]:
        stmt = (
            select(MatchRow)
            .where(MatchRow.tournament_id == tournament_id)
            .order_by(MatchRow.round, MatchRow.match_position)
            .execution_options(populate_existing=True)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_match(r) for r in rows]

    async def add_many(self, matches: Sequence[Match]) -> None:
        self.session.add_all(
            [
                MatchRow(
                    id=m.id,
                    tournament_id=m.tournament_id,
                    round=m.round,
                    match_position=m.match_position,
                    player1_id=m.player1_id,
                    player2_id=m.player2_id,
                    winner_id=m.winner_id,
                    status=m.status.value,
                    game_id=m.game_id,
                    created_at=m.created_at,
                    started_at=m.started_at,
                    finished_at=m.finished_at,
                )
                for m in matches
            ]
        )
        await self.session.flush()

    async def remove_by_tournament(self, tournament_id: str) -> None:
        await self.session.execute(
            delete(MatchRow).where(MatchRow.tournament_id == tournament_id)
        )

    async def claim_game(self, match_id: str, game_id: str, started_at: datetime) -> bool:
        result = await self.session.execute(
            update(MatchRow)
            .where(
                MatchRow.id == match_id,
                MatchRow.status == MatchStatus.PENDING.value,
                MatchRow.game_id.is_(None),
            )
            .values(
                game_id=game_id,
                status=MatchStatus.IN_PROGRESS.value,
                started_at=started_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finish(
        self,
        match_id: str,
        winner_id: str,
        game_id: str | None,
        finished_at: datetime,
    ) -> bool:
        result = await self.session.execute(
            update(MatchRow)
            .where(
                MatchRow.id == match_id,
                MatchRow.status != MatchStatus.FINISHED.value,
            )
            .values(
                status=MatchStatus.FINISHED.value,
                winner_id=winner_id,
                game_id=func.coalesce(MatchRow.game_id, game_id),
                finished_at=finished_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def fill_slot(self, match_id: str, slot: MatchSlot, player_id: str) -> bool:
        column = MatchRow.player1_id if slot == MatchSlot.PLAYER1 else MatchRow.player2_id
        result = await self.session.execute(
            update(MatchRow)
            .where(MatchRow.id == match_id, column.is_(None))
            .values({column.key: player_id})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SqlAlchemyBracketSnapshotRepository(BracketSnapshotRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def latest(self, tournament_id: str) -> BracketSnapshot | None:
        row = (
            await self.session.execute(
                select(BracketStateRow)
                .where(BracketStateRow.tournament_id == tournament_id)
                .order_by(BracketStateRow.version.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        return _to_snapshot(row) if row else None

    async def list_by_tournament(self, tournament_id: str) -> list[BracketSnapshot]:
        rows = (
            await self.session.execute(
                select(BracketStateRow)
                .where(BracketStateRow.tournament_id == tournament_id)
                .order_by(BracketStateRow.version)
            )
        ).scalars().all()
        return [_to_snapshot(r) for r in rows]

    async def add(self, snapshot: BracketSnapshot) -> None:
        self.session.add(
            BracketStateRow(
                id=snapshot.id,
                tournament_id=snapshot.tournament_id,
                version=snapshot.version,
                state=snapshot.state,
                created_at=snapshot.created_at or utc_now(),
            )
        )
        await self.session.flush()

    async def remove_by_tournament(self, tournament_id: str) -> None:
        await self.session.execute(
            delete(BracketStateRow).where(BracketStateRow.tournament_id == tournament_id)
        )


# =============================================================================
# Unit of work
# =============================================================================


class SqlAlchemyUnitOfWork(UnitOfWork):
    """One ``AsyncSession`` per ``async with`` block.

    Usage:
        uow_factory = lambda: SqlAlchemyUnitOfWork(session_factory)
        async with uow_factory() as uow:
            await uow.tournaments.get(tid, for_update=True)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.tournaments = SqlAlchemyTournamentRepository(self.session)
        self.participants = SqlAlchemyParticipantRepository(self.session)
        self.matches = SqlAlchemyMatchRepository(self.session)
        self.snapshots = SqlAlchemyBracketSnapshotRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if exc_type is None:
                await self.commit()
            else:
                await self.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Transaction {'commit' if exc_type is None else 'rollback'} failed: {e}")
            raise StorageUnavailableError() from e
        finally:
            await self.session.close()
            self.session = None

        if isinstance(exc_val, SQLAlchemyError):
            logger.error(f"Storage error inside transaction: {exc_val}")
            raise StorageUnavailableError() from exc_val

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


def sqlalchemy_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Zero-argument factory handed to the use cases."""

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory)

    return factory
