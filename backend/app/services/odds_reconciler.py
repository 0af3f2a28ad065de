"""
backend/app/services/odds_reconciler.py

Purpose:
    Recompute each candidate betslip's combined odd from its legs and
    back-fill missing leg metadata from the fixture manifest.

    The product of leg odds is the only combined value ever returned;
    whatever the generator proposed is overwritten. Malformed legs degrade
    gracefully, nothing here raises.

Dependencies:
    - app.models.fixture
    - app.utils
"""

import logging
import math
from typing import Any, Optional, Sequence

from app.config import settings
from app.models.fixture import FixtureManifestEntry
from app.services.prompt_builder import MAX_LEGS, MIN_LEGS
from app.utils import round_odds

logger = logging.getLogger("betai.odds_reconciler")

DEFAULT_CONFIDENCE = "75%"
LEG_FIELDS = ("match", "market", "odds", "confidence", "date", "time")


def parse_odds(value: Any) -> Optional[float]:
    """Parse a leg's odds value. Accepts numbers and numeric strings (``"1,85"``)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        odds = float(value)
    except (TypeError, ValueError):
        return None
    return odds if math.isfinite(odds) else None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def reconcile_leg(leg: dict[str, Any], manifest_by_key: dict[str, FixtureManifestEntry]) -> dict[str, Any]:
    out = {k: leg.get(k) for k in LEG_FIELDS if k in leg}
    out["match"] = str(leg.get("match") or "").strip()
    out["market"] = str(leg.get("market") or "").strip()

    parsed = parse_odds(leg.get("odds"))
    if parsed is not None:
        out["odds"] = parsed
    else:
        # Unparsable text is shown as given; other junk (inf, objects) is not.
        raw = leg.get("odds")
        out["odds"] = raw if isinstance(raw, str) else None

    confidence = leg.get("confidence")
    if _blank(confidence) or (isinstance(confidence, float) and not math.isfinite(confidence)):
        out["confidence"] = DEFAULT_CONFIDENCE

    if _blank(leg.get("date")) or _blank(leg.get("time")):
        entry = manifest_by_key.get(out["match"])
        if entry is not None:
            out["date"] = entry.date
            out["time"] = entry.time
    return out


def reconcile_betslip(
    candidate: dict[str, Any],
    manifest_by_key: dict[str, FixtureManifestEntry],
    strict: bool,
) -> Optional[dict[str, Any]]:
    raw_legs = candidate.get("legs")
    if not isinstance(raw_legs, list):
        logger.warning("Dropping candidate betslip without a legs array")
        return None

    legs = []
    for raw in raw_legs:
        if not isinstance(raw, dict):
            continue
        leg = reconcile_leg(raw, manifest_by_key)
        if strict and leg["match"] not in manifest_by_key:
            logger.warning("Dropping leg on unknown fixture %r", leg["match"])
            continue
        legs.append(leg)

    if strict and not MIN_LEGS <= len(legs) <= MAX_LEGS:
        logger.warning("Dropping betslip with %d usable legs", len(legs))
        return None

    product = 1.0
    for leg in legs:
        if isinstance(leg["odds"], float):
            product *= leg["odds"]
    if not math.isfinite(product):
        logger.warning("Dropping betslip with a non-finite combined odd")
        return None

    proposed = candidate.get("combinedOdd")
    combined = round_odds(product)
    if parse_odds(proposed) != combined:
        logger.info("Combined odd corrected: proposed=%r actual=%.2f", proposed, combined)
    return {"combinedOdd": combined, "legs": legs}


def reconcile(
    candidates: Sequence[Any],
    manifest: Sequence[FixtureManifestEntry],
    strict: Optional[bool] = None,
) -> list[dict[str, Any]]:
    """Return reconciled betslips, in candidate order.

    ``strict`` (default ``settings.STRICT_MANIFEST_LEGS``) drops legs whose
    match is not in the manifest and betslips left outside 2-4 legs.
    """
    strict = settings.STRICT_MANIFEST_LEGS if strict is None else strict
    manifest_by_key = {entry.match: entry for entry in manifest}

    out = []
    for candidate in candidates:
        if not isinstance(candidate, dict):
            logger.warning("Dropping non-object betslip candidate")
            continue
        betslip = reconcile_betslip(candidate, manifest_by_key, strict)
        if betslip is not None:
            out.append(betslip)
    return out
