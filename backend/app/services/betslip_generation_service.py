"""
backend/app/services/betslip_generation_service.py

Purpose:
    Orchestrates one credit-metered betslip generation request:

        authorize -> select fixtures -> build prompt -> generate
        -> parse -> reconcile -> format

    Failures after authorization are compensated in exactly one place
    (``_fail``), which refunds the charge at most once (retrying store errors
    a few times) and tags the request REFUNDED_FAILED. The success payload
    is built before the charge is settled. A zero-betslip parse is a
    successful outcome and keeps the charge unless REFUND_EMPTY_GENERATION
    is enabled.

Dependencies:
    - app.services.credit_meter
    - app.services.fixture_selector
    - app.services.prompt_builder
    - app.providers.generation_client
    - app.services.response_parser
    - app.services.odds_reconciler
    - app.services.result_formatter
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from app.config import settings
from app.models.account import Account
from app.models.generation import (
    BetslipGenerationError,
    GenerationErrorKind,
    GenerationState,
)
from app.providers.generation_client import GenerationConfig, TextGenerator
from app.services.credit_meter import Authorization, CreditMeter
from app.services.fixture_selector import FixtureStore, select_fixtures
from app.services.odds_reconciler import reconcile
from app.services.prompt_builder import build_prompt
from app.services.response_parser import parse_generation_output
from app.services.result_formatter import credits_after_failure, format_success
from app.utils import utcnow

logger = logging.getLogger("betai.betslip_generation")


@dataclass
class GenerationRequest:
    account: Account
    target_odd: float
    cost: int
    now: datetime
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_exempt: bool = False
    state: GenerationState = GenerationState.INITIATED
    authorization: Optional[Authorization] = None

    def advance(self, state: GenerationState) -> None:
        logger.debug("request=%s %s -> %s", self.request_id, self.state.value, state.value)
        self.state = state


def validate_target_odd(target_odd: Optional[float]) -> float:
    if target_odd is None:
        raise BetslipGenerationError(GenerationErrorKind.INVALID_INPUT)
    if not settings.MIN_TARGET_ODD <= target_odd <= settings.MAX_TARGET_ODD:
        raise BetslipGenerationError(
            GenerationErrorKind.INVALID_INPUT,
            f"targetOdd must be between {settings.MIN_TARGET_ODD} and {settings.MAX_TARGET_ODD}.",
        )
    return float(target_odd)


class BetslipGenerationService:
    def __init__(
        self,
        meter: CreditMeter,
        fixtures: FixtureStore,
        generator: TextGenerator,
        config: Optional[GenerationConfig] = None,
        cost: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._meter = meter
        self._fixtures = fixtures
        self._generator = generator
        self._config = config or GenerationConfig.from_settings()
        self._cost = settings.GENERATION_COST if cost is None else cost
        self._clock = clock

    @property
    def cost(self) -> int:
        return self._cost

    def is_exempt(self, account: Account) -> bool:
        return self._meter.is_exempt(account)

    async def generate(
        self, account: Optional[Account], target_odd: Optional[float],
    ) -> dict[str, Any]:
        """Run the pipeline; returns the success payload or raises BetslipGenerationError."""
        if account is None:
            raise BetslipGenerationError(GenerationErrorKind.AUTHENTICATION_REQUIRED)
        target = validate_target_odd(target_odd)

        request = GenerationRequest(
            account=account, target_odd=target, cost=self._cost, now=self._clock(),
        )
        authorization = await self._meter.authorize(account, request.cost, request.request_id)
        request.authorization = authorization
        request.is_exempt = authorization.exempt
        if not authorization.granted:
            request.advance(GenerationState.DENIED)
            raise BetslipGenerationError(
                GenerationErrorKind.INSUFFICIENT_CREDITS,
                authorization.reason,
                credits=authorization.balance_after,
                required=request.cost,
            )
        request.advance(GenerationState.AUTHORIZED)

        try:
            return await self._run(request)
        except BetslipGenerationError as exc:
            await self._fail(request, exc)
            raise
        except asyncio.CancelledError:
            # Caller went away: still give the credits back before unwinding.
            await asyncio.shield(self._fail(request, None))
            raise
        except Exception as exc:
            logger.exception("Unexpected error in generation request %s", request.request_id)
            error = BetslipGenerationError(
                GenerationErrorKind.INTERNAL_ERROR, detail=type(exc).__name__,
            )
            await self._fail(request, error)
            raise error from exc

    async def _run(self, request: GenerationRequest) -> dict[str, Any]:
        fixtures = await self._fixtures.list_all_fixtures()
        manifest = select_fixtures(fixtures, request.now)
        request.advance(GenerationState.FIXTURES_READY)

        prompt = build_prompt(request.target_odd, manifest)
        logger.info(
            "request=%s prompt ready (%d fixtures, %d chars)",
            request.request_id, len(manifest), len(prompt),
        )
        raw_text = await self._generator.generate(prompt, self._config)
        request.advance(GenerationState.PROMPT_SENT)

        parsed = parse_generation_output(raw_text)
        if not parsed.ok:
            raise BetslipGenerationError(parsed.error_kind, detail=parsed.detail)
        request.advance(GenerationState.RESPONSE_PARSED)

        betslips = reconcile(parsed.betslips, manifest)
        request.advance(GenerationState.RECONCILED)

        authorization = request.authorization
        refund_empty = (
            not betslips and settings.REFUND_EMPTY_GENERATION and authorization.charged
        )
        # Build the payload while the charge is still reversible.
        payload = format_success(
            betslips, len(manifest), request.target_odd, authorization, refunded=refund_empty,
        )
        if refund_empty:
            if not await self._meter.reverse(authorization):
                payload["refunded"] = False
                payload["credits"] = authorization.balance_after
        else:
            await self._meter.settle(authorization)
        request.advance(GenerationState.COMPLETED)

        logger.info(
            "request=%s completed: %d betslips, account=%s credits=%s",
            request.request_id, len(betslips), request.account.id, payload["credits"],
        )
        return payload

    async def _refund(self, request: GenerationRequest) -> bool:
        """Reverse the charge, retrying transient store errors a few times."""
        attempts = max(1, settings.REFUND_MAX_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                return await self._meter.reverse(request.authorization)
            except Exception:
                logger.exception(
                    "Refund attempt %d/%d failed for request %s (account=%s)",
                    attempt, attempts, request.request_id, request.account.id,
                )
            if attempt < attempts:
                await asyncio.sleep(settings.REFUND_RETRY_DELAY_SECONDS * attempt)
        logger.error(
            "Refund abandoned for request %s, charge left open in the ledger", request.request_id,
        )
        return False

    async def _fail(
        self, request: GenerationRequest, error: Optional[BetslipGenerationError],
    ) -> None:
        """Single compensation point for post-authorization failures."""
        authorization = request.authorization
        failed_in = request.state
        kind = error.kind.value if error else "Cancelled"
        refunded = await self._refund(request)
        request.advance(GenerationState.REFUNDED_FAILED)
        logger.warning(
            "request=%s failed in %s: %s%s (refunded=%s)",
            request.request_id, failed_in.value, kind,
            f" [{error.detail}]" if error and error.detail else "", refunded,
        )
        if error is not None and error.credits is None:
            error.credits = credits_after_failure(authorization, refunded)
