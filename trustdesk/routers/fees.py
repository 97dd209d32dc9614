"""Fee calculator endpoints (read-only)."""
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from trustdesk.schemas.fees import FeeEstimate, FeeEstimateRequest, FeeQuote, FeeSavings, FeeStructure
from trustdesk.security import require_api_key
from trustdesk.services import fees as fee_service

router = APIRouter(prefix="/fees", tags=["fees"], dependencies=[Depends(require_api_key)])


@router.get("/calculate", response_model=FeeQuote)
def calculate_fees(amount: Decimal = Query(...), type: str = Query(default="escrow")) -> FeeQuote:
    return fee_service.calculate_fees(amount, type)


@router.post("/estimates", response_model=list[FeeEstimate])
def fee_estimates(payload: FeeEstimateRequest) -> list[FeeEstimate]:
    return fee_service.get_fee_estimates(payload.amounts, payload.type)


@router.get("/structure/{type}", response_model=FeeStructure)
def fee_structure(type: str) -> FeeStructure:
    return fee_service.get_fee_structure(type)


@router.get("/savings", response_model=FeeSavings)
def fee_savings(amount: Decimal = Query(...), type: str = Query(default="escrow")) -> FeeSavings:
    return fee_service.calculate_fee_savings(amount, type)
