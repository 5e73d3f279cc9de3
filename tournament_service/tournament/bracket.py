"""
Single-elimination bracket generation.

Pure functions over participant lists: no I/O, and the only randomness is
the shuffle, drawn from the operating system CSPRNG unless a generator is
injected.
"""

import math
import random
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tournament_service.utils.errors import BadRequestError, ErrorCode

from .models import Match, Participant, utc_now


@dataclass(frozen=True)
class GeneratedBracket:
    matches: List[Match]
    seeds: List[Participant]
    size: int
    rounds: int
    snapshot: Dict[str, Any]

    def round_matches(self, round_number: int) -> List[Match]:
        return [m for m in self.matches if m.round == round_number]


class BracketGenerator:
    """
    Builds a seeded single-elimination match tree.

    Seeding order is a uniform random permutation: fairness of the draw is
    a trust property, so the default source is ``secrets.SystemRandom``.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or secrets.SystemRandom()

    def generate(
        self,
        tournament_id: str,
        participants: Sequence[Participant],
        min_size: int,
        max_size: int,
        now: Optional[datetime] = None,
    ) -> GeneratedBracket:
        """Sizes are the tournament's own bounds, both powers of two."""
        now = now or utc_now()
        shuffled = list(participants)
        self._rng.shuffle(shuffled)

        size = resolve_bracket_size(len(shuffled), min_size, max_size)
        seeds = shuffled[:size]
        total_rounds = int(math.log2(size))

        matches: List[Match] = []

        # Round 1: consecutive seeds are paired
        for index in range(0, size, 2):
            matches.append(
                Match(
                    tournament_id=tournament_id,
                    round=1,
                    match_position=index // 2 + 1,
                    player1_id=seeds[index].user_id,
                    player2_id=seeds[index + 1].user_id,
                    created_at=now,
                )
            )

        # Later rounds: empty slots filled by propagation
        for round_number in range(2, total_rounds + 1):
            for position in range(1, size // 2**round_number + 1):
                matches.append(
                    Match(
                        tournament_id=tournament_id,
                        round=round_number,
                        match_position=position,
                        created_at=now,
                    )
                )

        return GeneratedBracket(
            matches=matches,
            seeds=seeds,
            size=size,
            rounds=total_rounds,
            snapshot=serialize_bracket(matches, seeds),
        )


def resolve_bracket_size(count: int, min_size: int, max_size: int) -> int:
    """Largest of the two bounds that ``count`` fills; surplus players are not seeded."""
    if count >= max_size:
        return max_size
    if count >= min_size:
        return min_size
    raise BadRequestError(
        ErrorCode.INVALID_PARTICIPANT_COUNT,
        f"At least {min_size} participants are required to build a bracket, got {count}",
        details={"count": count, "required": min_size},
    )


def serialize_bracket(
    matches: Iterable[Match],
    seeds: Optional[Sequence[Participant]] = None,
) -> Dict[str, Any]:
    """Snapshot structure shared by every bracket version."""
    ordered = sorted(matches, key=lambda m: (m.round, m.match_position))
    first_round = [m for m in ordered if m.round == 1]
    state: Dict[str, Any] = {
        "size": len(first_round) * 2,
        "rounds": max((m.round for m in ordered), default=0),
        "matches": [
            {
                "id": m.id,
                "round": m.round,
                "matchPosition": m.match_position,
                "player1Id": m.player1_id,
                "player2Id": m.player2_id,
                "winnerId": m.winner_id,
                "status": m.status.value,
                "gameId": m.game_id,
            }
            for m in ordered
        ],
    }
    if seeds is not None:
        state["seeds"] = [
            {"userId": p.user_id, "displayName": p.display_name} for p in seeds
        ]
    return state


def round_one_pairings(matches: Iterable[Match]) -> List[Dict[str, Any]]:
    """Seed pairings announced when a tournament starts."""
    return [
        {
            "matchId": m.id,
            "player1Id": m.player1_id,
            "player2Id": m.player2_id,
            "round": m.round,
            "matchPosition": m.match_position,
        }
        for m in sorted(matches, key=lambda m: m.match_position)
        if m.round == 1
    ]


def final_round(matches: Iterable[Match]) -> int:
    return max((m.round for m in matches), default=0)


def find_match(matches: Iterable[Match], round_number: int, position: int) -> Optional[Match]:
    for m in matches:
        if m.round == round_number and m.match_position == position:
            return m
    return None
