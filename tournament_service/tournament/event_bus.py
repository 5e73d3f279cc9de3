"""
Tournament Event Publisher - Redis Streams.

Outbound domain events are appended to one stream with XADD and an
approximate MAXLEN cap. Publishing is fire-and-forget: the lifecycle has
already committed by the time an event is sent, so a Redis failure is
logged and never raised back into the use case.

Stream entry layout (flat, string values):
    event_id, event_type, tournament_id, timestamp, data (JSON), user_id
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

import redis.asyncio as redis
from redis.exceptions import RedisError

from tournament_service.logging_config import get_logger

from .bracket import round_one_pairings
from .models import (
    Match,
    Participant,
    Tournament,
    TournamentEvent,
    TournamentEventType,
    utc_now,
)
from .ports import TournamentEventPublisher

logger = get_logger(__name__)


class RedisStreamEventPublisher(TournamentEventPublisher):
    """XADD-based publisher.

    Usage:
        publisher = RedisStreamEventPublisher(redis_client, "tournament:events")
        await publisher.tournament_created(tournament)
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_key: str = "tournament:events",
        max_len: int = 10000,
    ):
        self.redis = redis_client
        self.stream_key = stream_key
        self.max_len = max_len

    async def tournament_created(self, tournament: Tournament) -> None:
        await self._publish(
            TournamentEvent(
                event_type=TournamentEventType.TOURNAMENT_CREATED,
                tournament_id=tournament.id,
                user_id=tournament.creator_id,
                data={
                    "name": tournament.name,
                    "creatorId": tournament.creator_id,
                    "maxPlayers": tournament.max_participants,
                    "minPlayers": tournament.min_participants,
                    "isPublic": tournament.is_public,
                    "createdAt": tournament.created_at.isoformat(),
                },
            )
        )

    async def player_registered(self, tournament_id: str, participant: Participant) -> None:
        await self._publish(
            TournamentEvent(
                event_type=TournamentEventType.PLAYER_REGISTERED,
                tournament_id=tournament_id,
                user_id=participant.user_id,
                data={
                    "playerId": participant.user_id,
                    "displayName": participant.display_name,
                    "registeredAt": participant.joined_at.isoformat(),
                },
            )
        )

    async def tournament_started(self, tournament: Tournament, matches: Sequence[Match]) -> None:
        started_at = tournament.started_at or utc_now()
        await self._publish(
            TournamentEvent(
                event_type=TournamentEventType.TOURNAMENT_STARTED,
                tournament_id=tournament.id,
                data={
                    "startedAt": started_at.isoformat(),
                    "participantCount": tournament.current_participants,
                    "matches": round_one_pairings(matches),
                },
            )
        )

    async def tournament_finished(
        self,
        tournament: Tournament,
        winner_id: str,
        runner_up_id: str | None,
        participants: Sequence[Participant],
    ) -> None:
        finished_at = tournament.finished_at or utc_now()
        duration = (
            round((finished_at - tournament.started_at).total_seconds())
            if tournament.started_at
            else 0
        )
        await self._publish(
            TournamentEvent(
                event_type=TournamentEventType.TOURNAMENT_FINISHED,
                tournament_id=tournament.id,
                data={
                    "winnerId": winner_id,
                    "runnerUpId": runner_up_id,
                    "participants": [p.user_id for p in participants],
                    "finishedAt": finished_at.isoformat(),
                    "totalMatches": len(participants) - 1 if participants else 0,
                    "duration": duration,
                },
            )
        )

    async def _publish(self, event: TournamentEvent) -> str | None:
        """Append one event; returns the stream entry id, or None on failure."""
        fields: Dict[str, Any] = event.to_stream_fields()
        try:
            entry_id = await self.redis.xadd(
                self.stream_key,
                fields,
                maxlen=self.max_len,
                approximate=True,
            )
        except (RedisError, OSError) as e:
            logger.error(
                "event_publish_failed",
                event_type=event.event_type.value,
                tournament_id=event.tournament_id,
                error=str(e),
            )
            return None

        logger.debug(
            "event_published",
            event_type=event.event_type.value,
            tournament_id=event.tournament_id,
            entry_id=entry_id,
        )
        return entry_id
