"""Platform and processing fee calculator.

All functions are pure: they read the static fee table below and never touch
the database. Amounts are handled as ``Decimal`` and every computed fee is
rounded half-up to the cent.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

from trustdesk.schemas.fees import (
    FeeEstimate,
    FeeQuote,
    FeeRates,
    FeeSavings,
    FeeStructure,
    FeeType,
    PlatformFeeRule,
    ProcessingFeeRule,
)
from trustdesk.utils.errors import ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
BULK_PLATFORM_DISCOUNT = Decimal("0.2")

FEE_STRUCTURE: dict[FeeType, FeeStructure] = {
    FeeType.escrow: FeeStructure(
        platform=PlatformFeeRule(percentage=Decimal("5"), minimum=Decimal("1"), maximum=Decimal("1000")),
        processing=ProcessingFeeRule(percentage=Decimal("2.9"), fixed=Decimal("0.30")),
    ),
    FeeType.milestone: FeeStructure(
        platform=PlatformFeeRule(percentage=Decimal("4.5"), minimum=Decimal("1"), maximum=Decimal("900")),
        processing=ProcessingFeeRule(percentage=Decimal("2.9"), fixed=Decimal("0.30")),
    ),
    FeeType.hourly: FeeStructure(
        platform=PlatformFeeRule(percentage=Decimal("4"), minimum=Decimal("1"), maximum=Decimal("800")),
        processing=ProcessingFeeRule(percentage=Decimal("2.9"), fixed=Decimal("0.30")),
    ),
}


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_amount(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError("Invalid amount", details={"amount": value})
    try:
        # str() avoids binary float artefacts
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError("Invalid amount", details={"amount": str(value)}) from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid amount", details={"amount": str(value)})
    return amount


def get_fee_structure(type: FeeType | str = FeeType.escrow) -> FeeStructure:
    """Return the fee rule for ``type`` or raise ``ValidationError``."""

    try:
        fee_type = FeeType(type)
    except ValueError as exc:
        raise ValidationError("Invalid transaction type", details={"type": str(type)}) from exc
    return FEE_STRUCTURE[fee_type]


def calculate_fees(amount: Any, type: FeeType | str = FeeType.escrow) -> FeeQuote:
    """Compute platform and processing fees for ``amount``.

    The platform fee is clamped to the rule's ``[minimum, maximum]`` window
    before rounding; processing is a percentage plus a fixed charge.
    """

    value = _to_amount(amount)
    structure = get_fee_structure(type)

    platform = value * structure.platform.percentage / 100
    platform = max(platform, structure.platform.minimum)
    platform = min(platform, structure.platform.maximum)
    platform = round_cents(platform)

    processing = round_cents(value * structure.processing.percentage / 100 + structure.processing.fixed)
    total = round_cents(platform + processing)

    return FeeQuote(
        platform=platform,
        processing=processing,
        total=total,
        breakdown=FeeRates(
            platform_percentage=structure.platform.percentage,
            processing_percentage=structure.processing.percentage,
            processing_fixed=structure.processing.fixed,
        ),
    )


def get_fee_estimates(amounts: Iterable[Any], type: FeeType | str = FeeType.escrow) -> list[FeeEstimate]:
    """Quote each amount and the gross the payer would be charged."""

    if isinstance(amounts, (str, bytes)) or not isinstance(amounts, Iterable):
        raise ValidationError("Amounts must be a list")

    estimates: list[FeeEstimate] = []
    for raw in amounts:
        fees = calculate_fees(raw, type)
        value = _to_amount(raw)
        estimates.append(FeeEstimate(amount=value, fees=fees, total=round_cents(value + fees.total)))
    return estimates


def calculate_fee_savings(amount: Any, type: FeeType | str = FeeType.escrow) -> FeeSavings:
    """Compare standard fees with the bulk rate (20% off the platform fee)."""

    standard = calculate_fees(amount, type)
    discounted_platform = round_cents(standard.platform * (1 - BULK_PLATFORM_DISCOUNT))
    with_discount = standard.model_copy(
        update={
            "platform": discounted_platform,
            "total": round_cents(discounted_platform + standard.processing),
        }
    )
    savings = round_cents(standard.total - with_discount.total)
    logger.debug("Fee savings computed", extra={"type": str(type), "savings": str(savings)})
    return FeeSavings(standard=standard, with_discount=with_discount, savings=savings)


__all__ = [
    "FEE_STRUCTURE",
    "calculate_fees",
    "calculate_fee_savings",
    "get_fee_estimates",
    "get_fee_structure",
    "round_cents",
]
