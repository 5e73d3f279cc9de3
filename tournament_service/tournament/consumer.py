"""
Game-finished consumer.

Reads match outcomes from the game service's Redis stream through a
consumer group and drives CompleteMatch. Delivery is at-least-once:

- malformed payloads, foreign event types and domain rejections are
  acknowledged, since redelivery can never make them succeed
- unavailable errors are left pending; the running loop rescans its
  pending list every ``pending_interval`` seconds and retries them
"""

from __future__ import annotations

import asyncio
import socket
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.exceptions import ResponseError

from tournament_service.logging_config import get_logger, log_context
from tournament_service.utils.errors import TournamentError

from .matches import CompleteMatch, CompleteMatchCommand

logger = get_logger(__name__)

GAME_FINISHED = "game.finished"

StreamEntry = Tuple[str, Dict[str, Any]]


class FinalScore(BaseModel):
    player1: int
    player2: int


class GameFinishedPayload(BaseModel):
    """``data`` field of a game.finished stream entry."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    game_id: str = Field(..., alias="gameId", min_length=1)
    winner_id: str = Field(..., alias="winnerId", min_length=1)
    loser_id: str = Field(..., alias="loserId", min_length=1)
    tournament_id: Optional[str] = Field(default=None, alias="tournamentId")
    match_id: Optional[str] = Field(default=None, alias="matchId")
    finished_at: datetime = Field(..., alias="finishedAt")
    final_score: Optional[FinalScore] = Field(default=None, alias="finalScore")
    duration: Optional[float] = None
    game_type: Optional[Literal["classic", "tournament", "ranked"]] = Field(
        default=None, alias="gameType"
    )


class GameFinishedConsumer:
    """
    Usage:
        consumer = GameFinishedConsumer(redis_client, complete_match)
        await consumer.start()   # pending backlog, then new entries
        ...
        await consumer.stop()
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        complete_match: CompleteMatch,
        stream_key: str = "game:events",
        group: str = "tournament-service",
        consumer_name: Optional[str] = None,
        batch_size: int = 10,
        block_ms: int = 1000,
        pending_interval: float = 5.0,
    ):
        self.redis = redis_client
        self.complete_match = complete_match
        self.stream_key = stream_key
        self.group = group
        self.consumer_name = consumer_name or f"consumer-{socket.gethostname()}"
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.pending_interval = pending_interval

        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def ensure_group(self) -> None:
        try:
            await self.redis.xgroup_create(
                self.stream_key,
                self.group,
                id="0",
                mkstream=True,
            )
        except ResponseError as e:
            # Group already exists
            if "BUSYGROUP" not in str(e):
                raise

    async def start(self) -> None:
        if self._running:
            return
        await self.ensure_group()
        self._running = True
        self._task = asyncio.create_task(self._consume_loop())
        logger.info(
            "game_finished_consumer_started",
            stream=self.stream_key,
            group=self.group,
            consumer=self.consumer_name,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("game_finished_consumer_stopped")

    async def _consume_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_pending_scan = loop.time()
        while self._running:
            try:
                if loop.time() >= next_pending_scan:
                    retried = await self.process_pending()
                    if retried:
                        logger.info("game_finished_pending_rescanned", entries=retried)
                    next_pending_scan = loop.time() + self.pending_interval
                await self.read_new()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("game_finished_consumer_error", error=str(e), exc_info=True)
                await asyncio.sleep(1)  # Backoff on error

    # ─────────────────────────────────────────────────────────────────────────
    # Reading
    # ─────────────────────────────────────────────────────────────────────────

    async def process_pending(self) -> int:
        """Walk this consumer's pending entries once; returns entries seen."""
        cursor = "0"
        seen = 0
        while True:
            entries = await self._read(cursor, block=None)
            if not entries:
                return seen
            await self._handle_batch(entries)
            seen += len(entries)
            cursor = entries[-1][0]

    async def read_new(self) -> int:
        entries = await self._read(">", block=self.block_ms)
        await self._handle_batch(entries)
        return len(entries)

    async def _read(self, cursor: str, block: Optional[int]) -> List[StreamEntry]:
        response = await self.redis.xreadgroup(
            groupname=self.group,
            consumername=self.consumer_name,
            streams={self.stream_key: cursor},
            count=self.batch_size,
            block=block,
        )
        entries: List[StreamEntry] = []
        for _stream, messages in response or []:
            entries.extend(messages)
        return entries

    async def _handle_batch(self, entries: List[StreamEntry]) -> None:
        for entry_id, fields in entries:
            try:
                await self.handle_entry(entry_id, fields)
            except Exception as e:
                # Left un-acked; delivered again later
                logger.error(
                    "game_finished_entry_failed",
                    entry_id=entry_id,
                    error=str(e),
                    exc_info=True,
                )

    # ─────────────────────────────────────────────────────────────────────────
    # Handling
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_entry(self, entry_id: str, fields: Dict[str, Any]) -> bool:
        """Process one entry. Returns True when the entry was acknowledged."""
        if fields.get("event_type") != GAME_FINISHED:
            await self._ack(entry_id)
            return True

        try:
            payload = GameFinishedPayload.model_validate_json(fields.get("data") or "")
        except ValidationError as e:
            logger.warning(
                "game_finished_payload_invalid",
                entry_id=entry_id,
                errors=e.error_count(),
            )
            await self._ack(entry_id)
            return True

        if not payload.tournament_id:
            await self._ack(entry_id)
            return True

        with log_context(
            tournament_id=payload.tournament_id,
            match_id=payload.match_id,
            game_id=payload.game_id,
        ):
            return await self._apply_outcome(entry_id, payload)

    async def _apply_outcome(self, entry_id: str, payload: GameFinishedPayload) -> bool:
        try:
            await self.complete_match.execute(
                CompleteMatchCommand(
                    tournament_id=payload.tournament_id,
                    match_id=payload.match_id,
                    game_id=payload.game_id,
                    winner_id=payload.winner_id,
                    finished_at=payload.finished_at,
                )
            )
        except TournamentError as e:
            if e.recoverable:
                logger.warning(
                    "game_finished_deferred",
                    entry_id=entry_id,
                    error_code=e.code,
                )
                return False
            logger.info(
                "game_finished_rejected",
                entry_id=entry_id,
                error_code=e.code,
            )

        await self._ack(entry_id)
        return True

    async def _ack(self, entry_id: str) -> None:
        await self.redis.xack(self.stream_key, self.group, entry_id)
