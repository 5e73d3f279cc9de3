"""Custom exception classes for tournament errors.

Provides structured error handling with error codes and a category that the
transport layer maps to a protocol-specific response.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories understood by the transport layer."""

    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    EXTERNAL_SERVICE_UNAVAILABLE = "external_service_unavailable"
    SERVICE_UNAVAILABLE = "service_unavailable"


class ErrorCode(str, Enum):
    """Standard error codes for tournament errors."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    MISSING_FIELD = "MISSING_FIELD"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Tournament errors
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    UNSUPPORTED_BRACKET_TYPE = "UNSUPPORTED_BRACKET_TYPE"
    PASSCODE_REQUIRED = "PASSCODE_REQUIRED"
    INCORRECT_PASSCODE = "INCORRECT_PASSCODE"
    NOT_RECRUITING = "NOT_RECRUITING"
    TOURNAMENT_FULL = "TOURNAMENT_FULL"
    TOURNAMENT_ALREADY_STARTED = "TOURNAMENT_ALREADY_STARTED"
    TOURNAMENT_NOT_IN_PROGRESS = "TOURNAMENT_NOT_IN_PROGRESS"
    INVALID_PARTICIPANT_COUNT = "INVALID_PARTICIPANT_COUNT"
    NOT_CREATOR = "NOT_CREATOR"

    # Participant errors
    ALREADY_JOINED = "ALREADY_JOINED"
    NOT_A_PARTICIPANT = "NOT_A_PARTICIPANT"

    # Match errors
    MATCH_NOT_FOUND = "MATCH_NOT_FOUND"
    MATCH_NOT_READY = "MATCH_NOT_READY"
    MATCH_ALREADY_STARTED = "MATCH_ALREADY_STARTED"
    MATCH_ALREADY_FINISHED = "MATCH_ALREADY_FINISHED"
    NOT_A_MATCH_PLAYER = "NOT_A_MATCH_PLAYER"
    INVALID_WINNER = "INVALID_WINNER"

    # Dependency errors
    GAME_SERVICE_CONFLICT = "GAME_SERVICE_CONFLICT"
    GAME_SERVICE_REJECTED = "GAME_SERVICE_REJECTED"
    GAME_SERVICE_UNAVAILABLE = "GAME_SERVICE_UNAVAILABLE"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"


class TournamentError(Exception):
    """Base exception for tournament errors.

    Attributes:
        code: Error code for programmatic handling
        message: User-friendly error message
        details: Additional error details
        category: Transport-independent error category
    """

    category: ErrorCategory = ErrorCategory.BAD_REQUEST

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code if isinstance(code, str) else code.value
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def recoverable(self) -> bool:
        """Whether retrying the same request later may succeed."""
        return self.category in (
            ErrorCategory.EXTERNAL_SERVICE_UNAVAILABLE,
            ErrorCategory.SERVICE_UNAVAILABLE,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class NotFoundError(TournamentError):
    """Raised when a tournament or match does not exist."""

    category = ErrorCategory.NOT_FOUND


class BadRequestError(TournamentError):
    """Raised on invalid state transitions or invalid arguments."""

    category = ErrorCategory.BAD_REQUEST


class ConflictError(TournamentError):
    """Raised when the request conflicts with the current state."""

    category = ErrorCategory.CONFLICT


class ForbiddenError(TournamentError):
    """Raised when the caller may not perform the action."""

    category = ErrorCategory.FORBIDDEN


class UnauthorizedError(TournamentError):
    """Raised when the caller identity is missing."""

    category = ErrorCategory.UNAUTHORIZED

    def __init__(self, message: str = "Caller identity is required"):
        super().__init__(ErrorCode.UNAUTHORIZED, message)


class ExternalServiceUnavailableError(TournamentError):
    """Raised when the game orchestration service cannot be reached."""

    category = ErrorCategory.EXTERNAL_SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str = "Game service unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(ErrorCode.GAME_SERVICE_UNAVAILABLE, message, details)


class StorageUnavailableError(TournamentError):
    """Raised when the storage layer fails."""

    category = ErrorCategory.SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Storage unavailable"):
        super().__init__(ErrorCode.STORAGE_UNAVAILABLE, message)


class GameConflictError(ConflictError):
    """Raised when the game service already holds a game for the request."""

    def __init__(
        self,
        message: str = "Game already exists",
        existing_game_id: str | None = None,
    ):
        super().__init__(
            ErrorCode.GAME_SERVICE_CONFLICT,
            message,
            details={"existingGameId": existing_game_id} if existing_game_id else {},
        )
        self.existing_game_id = existing_game_id


# =============================================================================
# Convenience constructors
# =============================================================================


def tournament_not_found(tournament_id: str) -> NotFoundError:
    return NotFoundError(
        ErrorCode.TOURNAMENT_NOT_FOUND,
        f"Tournament not found: {tournament_id}",
        details={"tournamentId": tournament_id},
    )


def match_not_found(match_ref: str) -> NotFoundError:
    return NotFoundError(
        ErrorCode.MATCH_NOT_FOUND,
        f"Match not found: {match_ref}",
        details={"match": match_ref},
    )
