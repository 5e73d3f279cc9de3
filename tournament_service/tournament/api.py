"""
Tournament API Router.

Thin HTTP surface over the lifecycle use cases. Caller identity is taken
from the ``X-User-Id`` header set by the gateway; use case errors are
rendered by the application's ``TournamentError`` handler.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .matches import CompleteMatchCommand, PlayMatchCommand
from .models import (
    BracketType,
    MatchStatus,
    ParticipantStatus,
    StartReason,
    TournamentStatus,
)
from .registration import (
    CreateTournamentCommand,
    JoinTournamentCommand,
    LeaveTournamentCommand,
)
from .start import StartTournamentCommand


# =============================================================================
# Request/Response Models
# =============================================================================


class BaseSchema(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )


class CreateTournamentRequest(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    is_public: bool = True
    passcode: Optional[str] = Field(default=None, max_length=128)
    bracket_type: str = BracketType.SINGLE_ELIMINATION.value


class JoinTournamentRequest(BaseSchema):
    passcode: Optional[str] = None
    display_name: Optional[str] = Field(default=None, max_length=100)


class CompleteMatchRequest(BaseSchema):
    winner_id: str = Field(..., min_length=1)
    match_id: Optional[str] = None
    game_id: Optional[str] = None
    finished_at: Optional[datetime] = None


class TournamentResponse(BaseSchema):
    id: str
    name: str
    creator_id: str
    status: TournamentStatus
    bracket_type: BracketType
    min_participants: int
    max_participants: int
    current_participants: int
    is_public: bool
    access_code: Optional[str] = None
    ready_to_start: bool
    ready_at: Optional[datetime] = None
    start_timeout_at: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ParticipantResponse(BaseSchema):
    id: str
    user_id: str
    display_name: Optional[str] = None
    status: ParticipantStatus
    joined_at: datetime


class MatchResponse(BaseSchema):
    id: str
    round: int
    match_position: int
    player1_id: Optional[str] = None
    player2_id: Optional[str] = None
    status: MatchStatus
    game_id: Optional[str] = None
    winner_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class TournamentDetailResponse(BaseSchema):
    tournament: TournamentResponse
    participants: List[ParticipantResponse]
    matches: List[MatchResponse]


class BracketResponse(BaseSchema):
    tournament_id: str
    status: TournamentStatus
    matches: List[MatchResponse]
    snapshot_version: Optional[int] = None
    snapshot: Optional[Dict[str, Any]] = None


class JoinTournamentResponse(BaseSchema):
    participant: ParticipantResponse
    participant_count: int
    ready_to_start: bool
    start_timeout_at: Optional[datetime] = None
    auto_started: bool


class LeaveTournamentResponse(BaseSchema):
    participant_count: int
    ready_to_start: bool
    start_timeout_at: Optional[datetime] = None
    tournament_deleted: bool


class StartTournamentResponse(BaseSchema):
    tournament: TournamentResponse
    matches: List[MatchResponse]
    snapshot_version: int


class PlayMatchResponse(BaseSchema):
    game_id: str
    redirect_url: str


class CompleteMatchResponse(BaseSchema):
    match: MatchResponse
    next_match: Optional[MatchResponse] = None
    tournament_status: TournamentStatus
    runner_up_id: Optional[str] = None


# =============================================================================
# Dependencies
# =============================================================================


def get_container(request: Request) -> Any:
    """The composition root built at startup."""
    return request.app.state.container


def get_user_id(x_user_id: Annotated[Optional[str], Header()] = None) -> Optional[str]:
    """Caller identity forwarded by the gateway; validated by the use cases."""
    return x_user_id or None


Container = Annotated[Any, Depends(get_container)]
UserId = Annotated[Optional[str], Depends(get_user_id)]


# =============================================================================
# API Router
# =============================================================================

router = APIRouter(prefix="/api/v1/tournaments", tags=["Tournament"])


@router.get("", response_model=List[TournamentResponse])
async def list_tournaments(
    container: Container,
    status_filter: Annotated[Optional[TournamentStatus], Query(alias="status")] = None,
    public_only: Annotated[bool, Query(alias="publicOnly")] = False,
):
    tournaments = await container.queries.list_tournaments(status_filter, public_only)
    return [TournamentResponse.model_validate(t) for t in tournaments]


@router.post("", response_model=TournamentResponse, status_code=status.HTTP_201_CREATED)
async def create_tournament(
    request: CreateTournamentRequest,
    container: Container,
    user_id: UserId,
):
    tournament = await container.create_tournament.execute(
        CreateTournamentCommand(
            name=request.name,
            creator_id=user_id,
            is_public=request.is_public,
            passcode=request.passcode,
            bracket_type=request.bracket_type,
        )
    )
    return TournamentResponse.model_validate(tournament)


@router.get("/{tournament_id}", response_model=TournamentDetailResponse)
async def get_tournament(tournament_id: str, container: Container):
    details = await container.queries.get_tournament(tournament_id)
    return TournamentDetailResponse(
        tournament=TournamentResponse.model_validate(details.tournament),
        participants=[ParticipantResponse.model_validate(p) for p in details.participants],
        matches=[MatchResponse.model_validate(m) for m in details.matches],
    )


@router.get("/{tournament_id}/bracket", response_model=BracketResponse)
async def get_bracket(tournament_id: str, container: Container):
    view = await container.queries.get_bracket(tournament_id)
    return BracketResponse(
        tournament_id=view.tournament.id,
        status=view.tournament.status,
        matches=[MatchResponse.model_validate(m) for m in view.matches],
        snapshot_version=view.snapshot.version if view.snapshot else None,
        snapshot=view.snapshot.state if view.snapshot else None,
    )


@router.post("/{tournament_id}/join", response_model=JoinTournamentResponse)
async def join_tournament(
    tournament_id: str,
    container: Container,
    user_id: UserId,
    request: Optional[JoinTournamentRequest] = None,
):
    request = request or JoinTournamentRequest()
    result = await container.join_tournament.execute(
        JoinTournamentCommand(
            tournament_id=tournament_id,
            user_id=user_id,
            passcode=request.passcode,
            display_name=request.display_name,
        )
    )
    return JoinTournamentResponse(
        participant=ParticipantResponse.model_validate(result.participant),
        participant_count=result.participant_count,
        ready_to_start=result.ready_to_start,
        start_timeout_at=result.start_timeout_at,
        auto_started=result.auto_started,
    )


@router.post("/{tournament_id}/leave", response_model=LeaveTournamentResponse)
async def leave_tournament(tournament_id: str, container: Container, user_id: UserId):
    result = await container.leave_tournament.execute(
        LeaveTournamentCommand(tournament_id=tournament_id, user_id=user_id)
    )
    return LeaveTournamentResponse.model_validate(result)


@router.post("/{tournament_id}/start", response_model=StartTournamentResponse)
async def start_tournament(tournament_id: str, container: Container, user_id: UserId):
    result = await container.start_tournament.execute(
        StartTournamentCommand(
            tournament_id=tournament_id,
            requested_by=user_id,
            reason=StartReason.MANUAL,
        )
    )
    return StartTournamentResponse(
        tournament=TournamentResponse.model_validate(result.tournament),
        matches=[MatchResponse.model_validate(m) for m in result.matches],
        snapshot_version=result.snapshot.version,
    )


@router.post("/{tournament_id}/matches/{match_id}/play", response_model=PlayMatchResponse)
async def play_match(
    tournament_id: str,
    match_id: str,
    container: Container,
    user_id: UserId,
):
    result = await container.play_match.execute(
        PlayMatchCommand(tournament_id=tournament_id, match_id=match_id, user_id=user_id)
    )
    return PlayMatchResponse(game_id=result.game_id, redirect_url=result.redirect_url)


@router.post("/{tournament_id}/matches/complete", response_model=CompleteMatchResponse)
async def complete_match(
    tournament_id: str,
    request: CompleteMatchRequest,
    container: Container,
):
    result = await container.complete_match.execute(
        CompleteMatchCommand(
            tournament_id=tournament_id,
            winner_id=request.winner_id,
            match_id=request.match_id,
            game_id=request.game_id,
            finished_at=request.finished_at,
        )
    )
    return CompleteMatchResponse(
        match=MatchResponse.model_validate(result.match),
        next_match=(
            MatchResponse.model_validate(result.next_match) if result.next_match else None
        ),
        tournament_status=result.tournament.status,
        runner_up_id=result.runner_up_id,
    )
