"""Prompt template for betslip generation."""

import json
from typing import Any, Sequence

from app.config import settings
from app.models.fixture import FixtureManifestEntry

BETSLIPS_KEY = "betslips"
MIN_LEGS = 2
MAX_LEGS = 4

ALLOWED_MARKETS = (
    '"Over X goals" / "Under X goals"',
    '"Both teams to score" / "Only one team scores"',
    '"Double chance 1X" / "Double chance X2" / "Double chance 12"',
    '"Asian handicap +0.5" / "Asian handicap -1.5"',
)

FORBIDDEN_MARKETS = ("Exact score", "First goalscorer", "Cards", "Penalties")


def compact_json(data: Any) -> str:
    """Serialize data to compact JSON, stripping None/empty values."""
    def _clean(obj):
        if isinstance(obj, dict):
            return {k: _clean(v) for k, v in obj.items() if v is not None and v != [] and v != {}}
        elif isinstance(obj, list):
            return [_clean(i) for i in obj]
        return obj
    return json.dumps(_clean(data), separators=(",", ":"), ensure_ascii=False)


GENERATE_BETSLIPS_PROMPT = """You are an expert football betting analyst.

## Goal
Create exactly {betslip_count} betslips, each with a combined odd as close as possible to {target_odd}.

## Combined odd rule (mandatory, not a suggestion)
The combined odd of a betslip is the PRODUCT of the odds of its legs.
Example: legs with odds 1.50, 1.80 and 2.00 give 1.50 x 1.80 x 2.00 = 5.40.
"combinedOdd" MUST equal that product.

## Time constraint
- Use ONLY the matches listed in the data below. All of them start in the future.
- Copy the "match" value exactly as given.

## Strategy
- Use {min_legs} to {max_legs} legs per betslip.
- Combine safer legs (odds 1.10-1.60) with a few riskier ones (1.70-2.50).
- Vary the market types.

## Allowed markets (use these wordings)
{allowed_markets}

## Forbidden markets
{forbidden_markets}

## Example betslip
{{"combinedOdd": 5.40, "legs": [{{"match": "Team A vs Team B", "market": "Over 1.5 goals", "odds": 1.50, "confidence": "80%", "date": "2025-08-29", "time": "19:00:00"}}]}}

## Upcoming matches
{fixtures_json}

## Output format (strict)
- Answer with a single JSON object and nothing else: no prose, no markdown.
- Exact shape: {{"{betslips_key}": [{{"combinedOdd": number, "legs": [{{"match": string, "market": string, "odds": number, "confidence": "NN%", "date": "YYYY-MM-DD", "time": "HH:MM:SS"}}]}}]}}
- Generate exactly {betslip_count} betslips."""


def _format_target(target_odd: float) -> str:
    return f"{target_odd:.2f}".rstrip("0").rstrip(".") if target_odd % 1 else f"{target_odd:.1f}"


def build_prompt(
    target_odd: float,
    manifest: Sequence[FixtureManifestEntry],
    betslip_count: int | None = None,
) -> str:
    """Render the generation prompt. Pure and deterministic."""
    return GENERATE_BETSLIPS_PROMPT.format(
        betslip_count=betslip_count or settings.PROMPT_BETSLIP_COUNT,
        target_odd=_format_target(target_odd),
        min_legs=MIN_LEGS,
        max_legs=MAX_LEGS,
        allowed_markets="\n".join(f"- {m}" for m in ALLOWED_MARKETS),
        forbidden_markets="\n".join(f"- {m}" for m in FORBIDDEN_MARKETS),
        fixtures_json=compact_json([entry.prompt_view() for entry in manifest]),
        betslips_key=BETSLIPS_KEY,
    )
