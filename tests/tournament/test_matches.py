"""Tests for match play and completion."""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from tournament_service.tournament.matches import CompleteMatchCommand, PlayMatchCommand
from tournament_service.tournament.models import (
    MatchStatus,
    ParticipantStatus,
    TournamentStatus,
)
from tournament_service.utils.errors import (
    BadRequestError,
    ConflictError,
    ExternalServiceUnavailableError,
    ForbiddenError,
    GameConflictError,
    NotFoundError,
    UnauthorizedError,
)


@pytest.fixture
async def started(create_tournament, join_players, store):
    """A four-player tournament that auto-started on the last join."""
    tournament = await create_tournament(creator_id="creator")
    await join_players(tournament.id, ["p1", "p2", "p3", "p4"])
    return tournament.id


def round_matches(store, tournament_id, round_number):
    return [m for m in store.tournament_matches(tournament_id) if m.round == round_number]


def final_match(store, tournament_id):
    return round_matches(store, tournament_id, 2)[0]


async def finish(container, tournament_id, match, winner_id=None):
    return await container.complete_match.execute(
        CompleteMatchCommand(
            tournament_id=tournament_id,
            match_id=match.id,
            winner_id=winner_id or match.player1_id,
        )
    )


# =============================================================================
# PlayMatch
# =============================================================================


class TestPlayMatch:
    @pytest.mark.asyncio
    async def test_creates_game_and_claims_match(
        self, container, started, store, game_service, clock
    ):
        match = round_matches(store, started, 1)[0]

        result = await container.play_match.execute(
            PlayMatchCommand(started, match.id, match.player1_id)
        )

        assert result.game_id == game_service.games[match.id]
        assert result.redirect_url == f"/game/play/{result.game_id}"
        stored = store.matches[match.id]
        assert stored.game_id == result.game_id
        assert stored.status == MatchStatus.IN_PROGRESS
        assert stored.started_at == clock.now

        request = game_service.requests[0]
        assert request.player_id == match.player1_id
        assert request.opponent_id == match.player2_id
        assert request.tournament_id == started

    @pytest.mark.asyncio
    async def test_second_call_reuses_game(self, container, started, store, game_service):
        match = round_matches(store, started, 1)[0]

        first = await container.play_match.execute(
            PlayMatchCommand(started, match.id, match.player1_id)
        )
        second = await container.play_match.execute(
            PlayMatchCommand(started, match.id, match.player2_id)
        )

        assert first.game_id == second.game_id
        assert len(game_service.requests) == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_store_one_game(
        self, container, started, store, game_service
    ):
        match = round_matches(store, started, 1)[0]

        results = await asyncio.gather(
            container.play_match.execute(PlayMatchCommand(started, match.id, match.player1_id)),
            container.play_match.execute(PlayMatchCommand(started, match.id, match.player2_id)),
        )

        assert results[0].game_id == results[1].game_id
        assert store.matches[match.id].game_id == results[0].game_id
        assert len(game_service.games) == 1

    @pytest.mark.asyncio
    async def test_conflict_with_existing_game_claims_it(
        self, container, started, store, game_service
    ):
        match = round_matches(store, started, 1)[0]
        game_service.games[match.id] = "game-elsewhere"

        result = await container.play_match.execute(
            PlayMatchCommand(started, match.id, match.player1_id)
        )

        assert result.game_id == "game-elsewhere"
        assert store.matches[match.id].game_id == "game-elsewhere"

    @pytest.mark.asyncio
    async def test_conflict_without_recoverable_id(
        self, container, started, store, game_service
    ):
        match = round_matches(store, started, 1)[0]
        game_service.games[match.id] = "game-elsewhere"
        game_service.report_existing_id = False

        with pytest.raises(GameConflictError):
            await container.play_match.execute(
                PlayMatchCommand(started, match.id, match.player1_id)
            )
        assert store.matches[match.id].status == MatchStatus.PENDING

    @pytest.mark.asyncio
    async def test_game_service_unavailable(self, container, started, store, game_service):
        match = round_matches(store, started, 1)[0]
        game_service.error = ExternalServiceUnavailableError()

        with pytest.raises(ExternalServiceUnavailableError) as exc_info:
            await container.play_match.execute(
                PlayMatchCommand(started, match.id, match.player1_id)
            )

        assert exc_info.value.recoverable is True
        assert store.matches[match.id].status == MatchStatus.PENDING
        assert store.matches[match.id].game_id is None

    @pytest.mark.asyncio
    async def test_not_a_match_player(self, container, started, store):
        match = round_matches(store, started, 1)[0]
        outsider = next(
            p for p in ["p1", "p2", "p3", "p4"] if p not in (match.player1_id, match.player2_id)
        )

        with pytest.raises(ForbiddenError) as exc_info:
            await container.play_match.execute(PlayMatchCommand(started, match.id, outsider))
        assert exc_info.value.code == "NOT_A_MATCH_PLAYER"

    @pytest.mark.asyncio
    async def test_final_not_ready(self, container, started, store):
        final = final_match(store, started)
        with pytest.raises(BadRequestError) as exc_info:
            await container.play_match.execute(PlayMatchCommand(started, final.id, "p1"))
        assert exc_info.value.code == "MATCH_NOT_READY"

    @pytest.mark.asyncio
    async def test_finished_match(self, container, started, store):
        match = round_matches(store, started, 1)[0]
        await finish(container, started, match)

        with pytest.raises(ConflictError) as exc_info:
            await container.play_match.execute(
                PlayMatchCommand(started, match.id, match.player1_id)
            )
        assert exc_info.value.code == "MATCH_ALREADY_FINISHED"

    @pytest.mark.asyncio
    async def test_unknown_match(self, container, started):
        with pytest.raises(NotFoundError) as exc_info:
            await container.play_match.execute(PlayMatchCommand(started, "nope", "p1"))
        assert exc_info.value.code == "MATCH_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_tournament_not_started(self, container, create_tournament):
        tournament = await create_tournament()
        with pytest.raises(BadRequestError) as exc_info:
            await container.play_match.execute(PlayMatchCommand(tournament.id, "m", "p1"))
        assert exc_info.value.code == "TOURNAMENT_NOT_IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_missing_identity(self, container, started, store):
        match = round_matches(store, started, 1)[0]
        with pytest.raises(UnauthorizedError):
            await container.play_match.execute(PlayMatchCommand(started, match.id, None))


# =============================================================================
# CompleteMatch
# =============================================================================


class TestCompleteMatch:
    @pytest.mark.asyncio
    async def test_winners_fill_successor_slots(self, container, started, store):
        first, second = round_matches(store, started, 1)

        result = await finish(container, started, first, first.player1_id)
        assert result.next_match.player1_id == first.player1_id
        assert result.next_match.player2_id is None
        assert result.tournament_finished is False

        result = await finish(container, started, second, second.player2_id)
        final = final_match(store, started)
        assert final.player1_id == first.player1_id
        assert final.player2_id == second.player2_id
        assert result.next_match == final

    @pytest.mark.asyncio
    async def test_match_and_loser_updated(self, container, started, store, clock):
        match = round_matches(store, started, 1)[0]

        result = await finish(container, started, match, match.player2_id)

        assert result.match.status == MatchStatus.FINISHED
        assert result.match.winner_id == match.player2_id
        assert result.match.finished_at == clock.now
        loser = store.participants[(started, match.player1_id)]
        assert loser.status == ParticipantStatus.ELIMINATED

    @pytest.mark.asyncio
    async def test_complete_by_game_id(self, container, started, store):
        match = round_matches(store, started, 1)[0]
        play = await container.play_match.execute(
            PlayMatchCommand(started, match.id, match.player1_id)
        )

        result = await container.complete_match.execute(
            CompleteMatchCommand(
                tournament_id=started,
                game_id=play.game_id,
                winner_id=match.player1_id,
            )
        )

        assert result.match.id == match.id
        assert result.match.game_id == play.game_id

    @pytest.mark.asyncio
    async def test_each_completion_appends_snapshot(self, container, started, store):
        first, second = round_matches(store, started, 1)
        await finish(container, started, first)
        await finish(container, started, second)

        snapshots = store.tournament_snapshots(started)
        assert [s.version for s in snapshots] == [1, 2, 3]
        assert "seeds" in snapshots[-1].state
        finished = [m for m in snapshots[-1].state["matches"] if m["status"] == "finished"]
        assert len(finished) == 2

    @pytest.mark.asyncio
    async def test_final_finishes_tournament(
        self, container, started, store, publisher, clock
    ):
        first, second = round_matches(store, started, 1)
        await finish(container, started, first)
        await finish(container, started, second)
        final = final_match(store, started)

        clock.advance(600)
        result = await finish(container, started, final, final.player2_id)

        assert result.tournament_finished is True
        assert result.runner_up_id == final.player1_id
        tournament = store.tournaments[started]
        assert tournament.status == TournamentStatus.FINISHED
        assert tournament.finished_at == clock.now
        assert store.participants[(started, final.player2_id)].status == ParticipantStatus.WINNER
        assert store.participants[(started, final.player1_id)].status == ParticipantStatus.ELIMINATED

        events = publisher.of("tournament.finished")
        assert len(events) == 1
        assert events[0]["winner_id"] == final.player2_id
        assert events[0]["runner_up_id"] == final.player1_id
        assert len(events[0]["participants"]) == 4

    @pytest.mark.asyncio
    async def test_duplicate_completion_is_rejected(self, container, started, store):
        match = round_matches(store, started, 1)[0]
        await finish(container, started, match, match.player1_id)
        matches_before = store.tournament_matches(started)
        snapshots_before = len(store.tournament_snapshots(started))

        with pytest.raises(ConflictError) as exc_info:
            await finish(container, started, match, match.player2_id)

        assert exc_info.value.code == "MATCH_ALREADY_FINISHED"
        assert store.tournament_matches(started) == matches_before
        assert len(store.tournament_snapshots(started)) == snapshots_before

    @pytest.mark.asyncio
    async def test_duplicate_final_does_not_refinish(
        self, container, started, store, publisher
    ):
        first, second = round_matches(store, started, 1)
        await finish(container, started, first)
        await finish(container, started, second)
        final = final_match(store, started)
        await finish(container, started, final)

        with pytest.raises(ConflictError):
            await finish(container, started, final)
        assert len(publisher.of("tournament.finished")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_complete_once(self, container, started, store):
        match = round_matches(store, started, 1)[0]

        results = await asyncio.gather(
            finish(container, started, match, match.player1_id),
            finish(container, started, match, match.player1_id),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
        assert final_match(store, started).player1_id == match.player1_id

    @pytest.mark.asyncio
    async def test_invalid_winner(self, container, started, store):
        match = round_matches(store, started, 1)[0]
        with pytest.raises(BadRequestError) as exc_info:
            await finish(container, started, match, "stranger")
        assert exc_info.value.code == "INVALID_WINNER"
        assert store.matches[match.id].status == MatchStatus.PENDING

    @pytest.mark.asyncio
    async def test_final_not_ready(self, container, started, store):
        final = final_match(store, started)
        with pytest.raises(BadRequestError) as exc_info:
            await finish(container, started, final, "p1")
        assert exc_info.value.code == "MATCH_NOT_READY"

    @pytest.mark.asyncio
    async def test_requires_match_reference(self, container, started):
        with pytest.raises(BadRequestError) as exc_info:
            await container.complete_match.execute(
                CompleteMatchCommand(tournament_id=started, winner_id="p1")
            )
        assert exc_info.value.code == "MISSING_FIELD"

    @pytest.mark.asyncio
    async def test_unknown_game(self, container, started):
        with pytest.raises(NotFoundError):
            await container.complete_match.execute(
                CompleteMatchCommand(tournament_id=started, game_id="nope", winner_id="p1")
            )

    @pytest.mark.asyncio
    async def test_explicit_finished_at(self, container, started, store, clock):
        match = round_matches(store, started, 1)[0]
        finished_at = clock.now - timedelta(seconds=5)

        result = await container.complete_match.execute(
            CompleteMatchCommand(
                tournament_id=started,
                match_id=match.id,
                winner_id=match.player1_id,
                finished_at=finished_at,
            )
        )
        assert result.match.finished_at == finished_at

    @pytest.mark.asyncio
    async def test_tournament_not_in_progress(self, container, started, store):
        match = round_matches(store, started, 1)[0]
        store.tournaments[started] = replace(
            store.tournaments[started], status=TournamentStatus.FINISHED
        )

        with pytest.raises(BadRequestError) as complete_error:
            await finish(container, started, match)
        with pytest.raises(BadRequestError) as play_error:
            await container.play_match.execute(
                PlayMatchCommand(started, match.id, match.player1_id)
            )

        assert complete_error.value.code == "TOURNAMENT_NOT_IN_PROGRESS"
        assert play_error.value.code == "TOURNAMENT_NOT_IN_PROGRESS"
        assert store.matches[match.id].status == MatchStatus.PENDING
