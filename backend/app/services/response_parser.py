"""
backend/app/services/response_parser.py

Purpose:
    Turn raw generative-service text into a list of candidate betslips.

    Each step is a pure function. Steps that can fail return a ParseResult
    tagged with the failure kind instead of raising, so every failure class
    is explicit and testable on its own:

        strip_code_fences -> remove_trailing_commas -> load_json_tree
        -> extract_betslips -> truncate

    No numeric validation happens here; see odds_reconciler.

Dependencies:
    - app.models.generation
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import settings
from app.models.generation import GenerationErrorKind
from app.services.prompt_builder import BETSLIPS_KEY

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?")
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")


@dataclass(frozen=True)
class ParseResult:
    ok: bool
    value: Any = None
    betslips: list[Any] = field(default_factory=list)
    error_kind: Optional[GenerationErrorKind] = None
    detail: str = ""

    @classmethod
    def success(cls, value: Any = None, betslips: Optional[list[Any]] = None) -> "ParseResult":
        return cls(ok=True, value=value, betslips=list(betslips or []))

    @classmethod
    def failure(cls, kind: GenerationErrorKind, detail: str) -> "ParseResult":
        return cls(ok=False, error_kind=kind, detail=detail)


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers wherever they appear."""
    return _FENCE_RE.sub("", text).strip()


def remove_trailing_commas(text: str) -> str:
    """Drop commas directly before a closing ] or }."""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def load_json_tree(text: str) -> ParseResult:
    try:
        return ParseResult.success(value=json.loads(text))
    except (json.JSONDecodeError, ValueError) as exc:
        return ParseResult.failure(
            GenerationErrorKind.INVALID_GENERATION_OUTPUT,
            f"JSON decode failed at pos {getattr(exc, 'pos', '?')}: {getattr(exc, 'msg', exc)}",
        )


def extract_betslips(tree: Any) -> ParseResult:
    """Accept ``{"betslips": [...]}`` or, as a fallback, a bare array."""
    if isinstance(tree, dict) and isinstance(tree.get(BETSLIPS_KEY), list):
        return ParseResult.success(value=tree, betslips=tree[BETSLIPS_KEY])
    if isinstance(tree, list):
        return ParseResult.success(value=tree, betslips=tree)
    shape = sorted(tree.keys()) if isinstance(tree, dict) else type(tree).__name__
    return ParseResult.failure(
        GenerationErrorKind.UNEXPECTED_OUTPUT_STRUCTURE,
        f"no '{BETSLIPS_KEY}' array in output (got {shape})",
    )


def truncate(betslips: list[Any], limit: int) -> list[Any]:
    return betslips[:max(0, limit)]


def parse_generation_output(raw_text: str, max_betslips: Optional[int] = None) -> ParseResult:
    """Run the full sanitize -> parse -> shape pipeline."""
    limit = settings.MAX_RETURNED_BETSLIPS if max_betslips is None else max_betslips
    cleaned = remove_trailing_commas(strip_code_fences(raw_text or ""))

    loaded = load_json_tree(cleaned)
    if not loaded.ok:
        return loaded

    shaped = extract_betslips(loaded.value)
    if not shaped.ok:
        return shaped

    return ParseResult.success(value=shaped.value, betslips=truncate(shaped.betslips, limit))
