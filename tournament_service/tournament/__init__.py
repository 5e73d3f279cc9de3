"""
Single-elimination tournament lifecycle.

- models: immutable records and readiness rules
- bracket: seeded bracket generation
- registration / start / matches: lifecycle use cases
- auto_start: immediate and timed auto-start
- event_bus / consumer / game_client: external integration
"""

from .auto_start import AutoStartScheduler, SweepReport
from .bracket import BracketGenerator, GeneratedBracket
from .matches import (
    CompleteMatch,
    CompleteMatchCommand,
    CompleteMatchResult,
    PlayMatch,
    PlayMatchCommand,
    PlayMatchResult,
)
from .models import (
    BracketSnapshot,
    Match,
    MatchStatus,
    Participant,
    ParticipantStatus,
    StartReason,
    Tournament,
    TournamentRules,
    TournamentStatus,
)
from .registration import (
    CreateTournament,
    CreateTournamentCommand,
    JoinTournament,
    JoinTournamentCommand,
    JoinTournamentResult,
    LeaveTournament,
    LeaveTournamentCommand,
    LeaveTournamentResult,
)
from .start import StartTournament, StartTournamentCommand, StartTournamentResult

__all__ = [
    # Models
    "Tournament",
    "Participant",
    "Match",
    "BracketSnapshot",
    "TournamentRules",
    "TournamentStatus",
    "ParticipantStatus",
    "MatchStatus",
    "StartReason",
    # Bracket
    "BracketGenerator",
    "GeneratedBracket",
    # Use cases
    "CreateTournament",
    "CreateTournamentCommand",
    "JoinTournament",
    "JoinTournamentCommand",
    "JoinTournamentResult",
    "LeaveTournament",
    "LeaveTournamentCommand",
    "LeaveTournamentResult",
    "StartTournament",
    "StartTournamentCommand",
    "StartTournamentResult",
    "PlayMatch",
    "PlayMatchCommand",
    "PlayMatchResult",
    "CompleteMatch",
    "CompleteMatchCommand",
    "CompleteMatchResult",
    # Scheduling
    "AutoStartScheduler",
    "SweepReport",
]
