"""Response shaping for betslip generation: success, empty and failure payloads."""

import math
import re
from typing import Any, Optional, Sequence

from app.config import settings
from app.models.generation import BetslipGenerationError
from app.services.credit_meter import EXEMPT_BALANCE_MARKER, Authorization
from app.utils import round_odds, utcnow

EMPTY_MESSAGE = "No betslips generated from the available fixtures"
DEFAULT_CONFIDENCE_VALUE = 75
MAX_SUCCESS_RATE = 95
LEG_DECAY = 0.92

_CONFIDENCE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%?")


def categorize_market(market: str) -> str:
    m = (market or "").lower()
    if m.startswith("over"):
        return "over"
    if m.startswith("under"):
        return "under"
    if "both teams to score" in m:
        return "btts_yes"
    if "only one team scores" in m:
        return "btts_no"
    if "double chance" in m:
        return "double_chance"
    if "handicap" in m:
        return "handicap"
    return "other"


def parse_confidence(value: Any) -> int:
    """Percentage 0-100 from "80%", "80" or 80; anything else is the default."""
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE_VALUE
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _CONFIDENCE_RE.search(str(value or ""))
        if not match:
            return DEFAULT_CONFIDENCE_VALUE
        number = float(match.group(1))
    if not math.isfinite(number) or not 0 <= number <= 100:
        return DEFAULT_CONFIDENCE_VALUE
    return int(round(number))


def _format_leg(leg: dict[str, Any]) -> dict[str, Any]:
    team1, _, team2 = leg.get("match", "").partition(" vs ")
    return {
        **leg,
        "team1": team1 or None,
        "team2": team2 or None,
        "category": categorize_market(leg.get("market", "")),
        "confidenceValue": parse_confidence(leg.get("confidence")),
    }


def format_betslip(betslip: dict[str, Any], index: int, request_id: str, stake: float) -> dict[str, Any]:
    legs = [_format_leg(leg) for leg in betslip["legs"]]
    if legs:
        ai_confidence = round(sum(leg["confidenceValue"] for leg in legs) / len(legs))
    else:
        ai_confidence = DEFAULT_CONFIDENCE_VALUE
    success_rate = min(MAX_SUCCESS_RATE, round(ai_confidence * LEG_DECAY ** max(0, len(legs) - 1)))
    combined = betslip["combinedOdd"]
    return {
        "id": f"betslip-{request_id[:8]}-{index + 1}",
        "combinedOdd": combined,
        "legs": legs,
        "matchCount": len(legs),
        "aiConfidence": ai_confidence,
        "successRate": success_rate,
        "stake": stake,
        "potentialReturn": round_odds(stake * combined),
    }


def format_success(
    betslips: Sequence[dict[str, Any]],
    fixtures_count: int,
    target_odd: float,
    authorization: Authorization,
    refunded: bool = False,
) -> dict[str, Any]:
    stake = settings.DEFAULT_STAKE
    formatted = [
        format_betslip(b, i, authorization.request_id, stake) for i, b in enumerate(betslips)
    ]
    if formatted:
        message = f"{len(formatted)} betslips generated from {fixtures_count} matches"
    else:
        message = EMPTY_MESSAGE

    if authorization.exempt:
        credits = EXEMPT_BALANCE_MARKER
    elif refunded:
        credits = authorization.balance_before
    else:
        credits = authorization.balance_after

    return {
        "success": True,
        "betslips": formatted,
        "message": message,
        "credits": credits,
        "cost": authorization.cost,
        "isAdmin": authorization.exempt,
        "refunded": refunded,
        "metadata": {
            "fixturesCount": fixtures_count,
            "targetOdd": target_odd,
            "generatedAt": utcnow().isoformat(),
            "requestId": authorization.request_id,
        },
    }


def format_failure(error: BetslipGenerationError) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "error": error.message,
        "errorKind": error.kind.value,
        "betslips": [],
    }
    if error.credits is not None:
        body["credits"] = error.credits
    if error.required is not None:
        body["required"] = error.required
    return body


def credits_after_failure(authorization: Optional[Authorization], refunded: bool) -> Optional[int]:
    """Balance to report after a failed request, None when never authorized."""
    if authorization is None or not authorization.granted:
        return None
    if authorization.exempt:
        return EXEMPT_BALANCE_MARKER
    return authorization.balance_before if refunded else authorization.balance_after
