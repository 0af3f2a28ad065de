"""Generation request models, error taxonomy and request lifecycle states."""

import math
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GenerationState(str, Enum):
    INITIATED = "INITIATED"
    DENIED = "DENIED"                  # Authorization refused, nothing charged
    AUTHORIZED = "AUTHORIZED"
    FIXTURES_READY = "FIXTURES_READY"
    PROMPT_SENT = "PROMPT_SENT"
    RESPONSE_PARSED = "RESPONSE_PARSED"
    RECONCILED = "RECONCILED"
    COMPLETED = "COMPLETED"            # Charge kept (also for zero betslips)
    REFUNDED_FAILED = "REFUNDED_FAILED"


class GenerationErrorKind(str, Enum):
    AUTHENTICATION_REQUIRED = "AuthenticationRequired"
    INVALID_INPUT = "InvalidInput"
    INSUFFICIENT_CREDITS = "InsufficientCredits"
    NO_FIXTURES_AVAILABLE = "NoFixturesAvailable"
    NO_FUTURE_FIXTURES = "NoFutureFixtures"
    GENERATION_SERVICE_UNAVAILABLE = "GenerationServiceUnavailable"
    INVALID_GENERATION_OUTPUT = "InvalidGenerationOutput"
    UNEXPECTED_OUTPUT_STRUCTURE = "UnexpectedOutputStructure"
    INTERNAL_ERROR = "InternalError"


# kind -> (HTTP status, user-safe message)
ERROR_RESPONSES: dict[GenerationErrorKind, tuple[int, str]] = {
    GenerationErrorKind.AUTHENTICATION_REQUIRED: (401, "Authentication required."),
    GenerationErrorKind.INVALID_INPUT: (400, "A valid targetOdd is required in the request body."),
    GenerationErrorKind.INSUFFICIENT_CREDITS: (403, "Insufficient credits."),
    GenerationErrorKind.NO_FIXTURES_AVAILABLE: (404, "No fixtures available."),
    GenerationErrorKind.NO_FUTURE_FIXTURES: (404, "No upcoming fixtures available."),
    GenerationErrorKind.GENERATION_SERVICE_UNAVAILABLE: (
        500, "AI service unavailable. Please try again later.",
    ),
    GenerationErrorKind.INVALID_GENERATION_OUTPUT: (
        500, "AI did not return valid JSON. Please try again.",
    ),
    GenerationErrorKind.UNEXPECTED_OUTPUT_STRUCTURE: (
        500, "Unexpected response structure from AI.",
    ),
    GenerationErrorKind.INTERNAL_ERROR: (500, "An internal error occurred."),
}


class BetslipGenerationError(Exception):
    """A classified pipeline failure.

    ``message`` is safe to show to the caller; ``detail`` is for logs only.
    """

    def __init__(
        self,
        kind: GenerationErrorKind,
        message: Optional[str] = None,
        *,
        detail: Optional[str] = None,
        credits: Optional[int] = None,
        required: Optional[int] = None,
    ):
        self.kind = kind
        self.status_code, default_message = ERROR_RESPONSES[kind]
        self.message = message or default_message
        self.detail = detail
        self.credits = credits
        self.required = required
        super().__init__(f"{kind.value}: {detail or self.message}")


class GenerateBetslipsRequest(BaseModel):
    """Request body for POST /api/betslips/generate."""
    model_config = ConfigDict(populate_by_name=True)

    target_odd: Optional[float] = Field(None, alias="targetOdd")

    @field_validator("target_odd", mode="before")
    @classmethod
    def _coerce_target_odd(cls, v: Any) -> Optional[float]:
        # Anything non-numeric is treated as missing and rejected downstream.
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, str):
            v = v.strip().replace(",", ".")
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None
