"""Betslip generation API: credit-metered AI betslips."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.models.account import Account
from app.models.generation import (
    BetslipGenerationError,
    GenerateBetslipsRequest,
    GenerationErrorKind,
)
from app.services.auth_service import get_optional_account
from app.services.betslip_generation_service import BetslipGenerationService
from app.services.credit_meter import EXEMPT_BALANCE_MARKER
from app.services.result_formatter import format_failure

logger = logging.getLogger("betai.routers.betslips")

router = APIRouter(prefix="/api/betslips", tags=["betslips"])


def get_generation_service(request: Request) -> BetslipGenerationService:
    return request.app.state.generation_service


def _failure_response(error: BetslipGenerationError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=format_failure(error))


@router.post("/generate")
async def generate_betslips(
    request: Request,
    body: Optional[GenerateBetslipsRequest] = None,
    account: Optional[Account] = Depends(get_optional_account),
    service: BetslipGenerationService = Depends(get_generation_service),
):
    """Spend credits to generate AI betslips close to ``targetOdd``."""
    target_odd = body.target_odd if body is not None else None
    try:
        result = await service.generate(account, target_odd)
    except BetslipGenerationError as exc:
        request.state.error_kind = exc.kind.value
        return _failure_response(exc)
    request.state.generation_id = result["metadata"]["requestId"]
    return result


@router.get("/cost")
async def get_generation_cost(
    account: Optional[Account] = Depends(get_optional_account),
    service: BetslipGenerationService = Depends(get_generation_service),
):
    """Current price of a generation and whether the caller can afford it."""
    if account is None:
        return _failure_response(
            BetslipGenerationError(GenerationErrorKind.AUTHENTICATION_REQUIRED)
        )
    exempt = service.is_exempt(account)
    return {
        "cost": service.cost,
        "credits": EXEMPT_BALANCE_MARKER if exempt else account.credits,
        "isAdmin": exempt,
        "canGenerate": exempt or account.credits >= service.cost,
    }
