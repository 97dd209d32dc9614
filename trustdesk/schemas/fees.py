"""Fee calculator schemas."""
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class FeeType(str, Enum):
    escrow = "escrow"
    milestone = "milestone"
    hourly = "hourly"


class FeeRates(BaseModel):
    platform_percentage: Decimal
    processing_percentage: Decimal
    processing_fixed: Decimal


class FeeQuote(BaseModel):
    platform: Decimal
    processing: Decimal
    total: Decimal
    breakdown: FeeRates


class FeeEstimate(BaseModel):
    amount: Decimal
    fees: FeeQuote
    total: Decimal


class FeeEstimateRequest(BaseModel):
    amounts: list[Decimal] = Field(min_length=1, max_length=100)
    type: FeeType = FeeType.escrow


class PlatformFeeRule(BaseModel):
    percentage: Decimal
    minimum: Decimal
    maximum: Decimal


class ProcessingFeeRule(BaseModel):
    percentage: Decimal
    fixed: Decimal


class FeeStructure(BaseModel):
    platform: PlatformFeeRule
    processing: ProcessingFeeRule


class FeeSavings(BaseModel):
    standard: FeeQuote
    with_discount: FeeQuote
    savings: Decimal
