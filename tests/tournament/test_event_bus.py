"""Tests for the Redis Streams event publisher."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import orjson
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tournament_service.tournament.event_bus import RedisStreamEventPublisher
from tournament_service.tournament.models import (
    Match,
    Participant,
    Tournament,
    TournamentStatus,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def redis_mock():
    client = AsyncMock()
    client.xadd.return_value = "1-0"
    return client


@pytest.fixture
def event_publisher(redis_mock):
    return RedisStreamEventPublisher(redis_mock, stream_key="tournament:events", max_len=500)


@pytest.fixture
def tournament():
    return Tournament(
        id="t-1",
        name="Cup",
        creator_id="creator",
        min_participants=2,
        max_participants=4,
        current_participants=4,
        created_at=NOW,
        started_at=NOW,
    )


def published(redis_mock):
    """(stream, fields, data) of the last XADD."""
    args, kwargs = redis_mock.xadd.call_args
    stream, fields = args
    return stream, fields, orjson.loads(fields["data"]), kwargs


class TestRedisStreamEventPublisher:
    @pytest.mark.asyncio
    async def test_tournament_created(self, event_publisher, redis_mock, tournament):
        await event_publisher.tournament_created(tournament)

        stream, fields, data, kwargs = published(redis_mock)
        assert stream == "tournament:events"
        assert kwargs == {"maxlen": 500, "approximate": True}
        assert fields["event_type"] == "tournament.created"
        assert fields["tournament_id"] == "t-1"
        assert fields["user_id"] == "creator"
        assert data == {
            "name": "Cup",
            "creatorId": "creator",
            "maxPlayers": 4,
            "minPlayers": 2,
            "isPublic": True,
            "createdAt": NOW.isoformat(),
        }

    @pytest.mark.asyncio
    async def test_player_registered(self, event_publisher, redis_mock):
        participant = Participant(
            tournament_id="t-1", user_id="alice", display_name="Alice", joined_at=NOW
        )

        await event_publisher.player_registered("t-1", participant)

        _, fields, data, _ = published(redis_mock)
        assert fields["event_type"] == "player.registered"
        assert data == {
            "playerId": "alice",
            "displayName": "Alice",
            "registeredAt": NOW.isoformat(),
        }

    @pytest.mark.asyncio
    async def test_tournament_started_lists_round_one(
        self, event_publisher, redis_mock, tournament
    ):
        matches = [
            Match(tournament_id="t-1", round=1, match_position=2, player1_id="c", player2_id="d"),
            Match(tournament_id="t-1", round=1, match_position=1, player1_id="a", player2_id="b"),
            Match(tournament_id="t-1", round=2, match_position=1),
        ]

        await event_publisher.tournament_started(tournament, matches)

        _, fields, data, _ = published(redis_mock)
        assert fields["event_type"] == "tournament.started"
        assert data["participantCount"] == 4
        assert [(m["player1Id"], m["player2Id"]) for m in data["matches"]] == [
            ("a", "b"),
            ("c", "d"),
        ]

    @pytest.mark.asyncio
    async def test_tournament_finished(self, event_publisher, redis_mock, tournament):
        finished = replace(
            tournament,
            status=TournamentStatus.FINISHED,
            finished_at=NOW + timedelta(minutes=30),
        )
        participants = [Participant(tournament_id="t-1", user_id=u) for u in "abcd"]

        await event_publisher.tournament_finished(finished, "a", "c", participants)

        _, fields, data, _ = published(redis_mock)
        assert fields["event_type"] == "tournament.finished"
        assert data["winnerId"] == "a"
        assert data["runnerUpId"] == "c"
        assert data["participants"] == ["a", "b", "c", "d"]
        assert data["totalMatches"] == 3
        assert data["duration"] == 1800

    @pytest.mark.asyncio
    async def test_redis_failure_is_swallowed(self, event_publisher, redis_mock, tournament):
        redis_mock.xadd.side_effect = RedisConnectionError("down")

        await event_publisher.tournament_created(tournament)

        redis_mock.xadd.assert_awaited_once()
