"""Game orchestration client.

httpx + tenacity: timeouts, network failures and 5xx responses are retried
with capped exponential backoff; 4xx responses fail immediately and are
mapped to the matching tournament error.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from tournament_service.utils.errors import (
    BadRequestError,
    ErrorCode,
    ExternalServiceUnavailableError,
    ForbiddenError,
    GameConflictError,
)
from tournament_service.utils.retry import RetryableStatusError, RetryPolicy

from .ports import CreateGameRequest, GameOrchestrator

logger = logging.getLogger(__name__)

TOURNAMENT_GAME_CONFIG = {
    "scoreLimit": 11,
    "ballSpeed": 5,
    "paddleSpeed": 8,
}


class HttpGameOrchestrator(GameOrchestrator):
    """Creates tournament games through the game service's internal API.

    Usage:
        orchestrator = HttpGameOrchestrator(
            base_url=settings.game_service_url,
            internal_api_key=settings.internal_api_key,
            retry_policy=RetryPolicy.from_settings(settings),
        )
        game_id = await orchestrator.create_game(request)
        await orchestrator.aclose()
    """

    def __init__(
        self,
        base_url: str,
        internal_api_key: Optional[str],
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.internal_api_key = internal_api_key
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_game(self, request: CreateGameRequest) -> str:
        if not self.internal_api_key:
            raise ExternalServiceUnavailableError("Internal API key not configured")

        headers = {
            "x-internal-api-key": self.internal_api_key,
            "x-user-id": request.player_id,
        }
        body = {
            "gameMode": "TOURNAMENT",
            "opponentId": request.opponent_id,
            "tournamentId": request.tournament_id,
            "matchId": request.match_id,
            "config": TOURNAMENT_GAME_CONFIG,
        }

        try:
            response = await self.retry_policy.call(self._post, body, headers)
        except RetryableStatusError as e:
            logger.error(
                f"Game service unavailable after retries: status={e.response.status_code}"
            )
            raise ExternalServiceUnavailableError(
                f"Game service responded with {e.response.status_code}",
                details={"status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Game service request failed: {e!r}")
            raise ExternalServiceUnavailableError(
                "Game service unreachable",
                details={"error": type(e).__name__},
            ) from e

        payload = _safe_json(response)
        status = response.status_code

        if status == 409:
            existing = payload.get("gameId") or payload.get("existingGameId")
            raise GameConflictError(
                _error_message(payload, status),
                existing_game_id=existing if isinstance(existing, str) else None,
            )
        if status == 400:
            raise BadRequestError(
                ErrorCode.GAME_SERVICE_REJECTED,
                _error_message(payload, status),
                details={"status": status},
            )
        if status in (401, 403):
            raise ForbiddenError(
                ErrorCode.GAME_SERVICE_REJECTED,
                "Game service rejected the request",
                details={"status": status},
            )
        if not response.is_success:
            raise ExternalServiceUnavailableError(
                _error_message(payload, status),
                details={"status": status},
            )

        game_id = payload.get("id")
        if not isinstance(game_id, str) or not game_id:
            raise ExternalServiceUnavailableError("Invalid response from game service")
        return game_id

    async def _post(self, body: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        response = await self._client.post(f"{self.base_url}/games", json=body, headers=headers)
        if response.status_code >= 500:
            raise RetryableStatusError(response)
        return response


def _safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_message(payload: Dict[str, Any], status: int) -> str:
    for key in ("error", "message"):
        if isinstance(payload.get(key), str):
            return payload[key]
    return f"Game service responded with {status}"
