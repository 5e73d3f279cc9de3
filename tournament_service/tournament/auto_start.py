"""
Auto-Start Scheduler.

Two trigger paths share the StartTournament use case:

1. Immediate: right after a join fills the bracket (reason ``auto_full``).
2. Timeout sweep: a background loop that starts recruiting tournaments
   whose countdown elapsed (reason ``timeout``), re-checking the live
   participant count first.

A sweep never overlaps with another one, and a failure on one tournament
is recorded without stopping the pass.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from tournament_service.logging_config import get_logger
from tournament_service.utils.errors import ConflictError, ErrorCode

from .models import StartReason, utc_now
from .ports import UnitOfWork
from .start import StartTournament, StartTournamentCommand

logger = get_logger(__name__)


@dataclass
class SweepReport:
    started: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.started) + len(self.skipped) + len(self.failed)


class AutoStartScheduler:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        start_tournament: StartTournament,
        interval_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uow_factory = uow_factory
        self.start_tournament = start_tournament
        self.interval_seconds = interval_seconds
        self.clock = clock

        self._sweep_lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ─────────────────────────────────────────────────────────────────────────
    # Trigger paths
    # ─────────────────────────────────────────────────────────────────────────

    async def start_immediately(self, tournament_id: str) -> bool:
        """Start a full tournament. Returns False if another start won."""
        try:
            await self.start_tournament.execute(
                StartTournamentCommand(tournament_id, reason=StartReason.AUTO_FULL)
            )
        except ConflictError as e:
            if e.code != ErrorCode.TOURNAMENT_ALREADY_STARTED.value:
                raise
            logger.info("auto_start_already_started", tournament_id=tournament_id)
            return False

        logger.info("tournament_auto_started", tournament_id=tournament_id, reason="auto_full")
        return True

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """One pass over due tournaments. Returns immediately if a pass is running."""
        report = SweepReport()
        if self._sweep_lock.locked():
            logger.debug("auto_start_sweep_overlap_skipped")
            return report

        async with self._sweep_lock:
            now = now or self.clock()
            async with self.uow_factory() as uow:
                due = await uow.tournaments.list_due_for_auto_start(now)

            for tournament in due:
                try:
                    async with self.uow_factory() as uow:
                        count = await uow.participants.count_by_tournament(tournament.id)

                    if not tournament.can_start_with(count):
                        logger.warning(
                            "auto_start_skipped_invalid_count",
                            tournament_id=tournament.id,
                            count=count,
                            allowed=[tournament.min_participants, tournament.max_participants],
                        )
                        report.skipped.append(tournament.id)
                        continue

                    reason = (
                        StartReason.AUTO_FULL
                        if count == tournament.max_participants
                        else StartReason.TIMEOUT
                    )
                    await self.start_tournament.execute(
                        StartTournamentCommand(tournament.id, reason=reason)
                    )
                    report.started.append(tournament.id)
                    logger.info(
                        "tournament_auto_started",
                        tournament_id=tournament.id,
                        reason=reason.value,
                        count=count,
                    )

                except ConflictError as e:
                    if e.code == ErrorCode.TOURNAMENT_ALREADY_STARTED.value:
                        report.skipped.append(tournament.id)
                    else:
                        report.failed[tournament.id] = e.message
                        logger.error(
                            "auto_start_failed",
                            tournament_id=tournament.id,
                            error=e.message,
                        )
                except Exception as e:
                    report.failed[tournament.id] = str(e)
                    logger.error(
                        "auto_start_failed",
                        tournament_id=tournament.id,
                        error=str(e),
                        exc_info=True,
                    )

        if report.total:
            logger.info(
                "auto_start_sweep_completed",
                started=len(report.started),
                skipped=len(report.skipped),
                failed=len(report.failed),
            )
        return report

    # ─────────────────────────────────────────────────────────────────────────
    # Background loop
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("auto_start_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("auto_start_scheduler_stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("auto_start_sweep_error", error=str(e), exc_info=True)
