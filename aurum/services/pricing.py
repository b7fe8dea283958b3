"""Core pricing logic: unit/currency/purity conversion and band evaluation."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ..errors import ValidationError
from ..models import Currency, DerivedPricePayload, PriceResponse, Status, Unit

TROY_OUNCE_IN_GRAMS = 31.1035
PURE_KARAT = 24
VALID_PURITY_LEVELS = frozenset({24, 22, 21, 18})
LOCAL_CURRENCY = Currency.JOD

THRESHOLD_ERROR = "Thresholds must be numeric and lower < upper."


def normalize_unit(value: object) -> Unit:
    return Unit.GRAM if value == Unit.GRAM.value else Unit.OUNCE


def normalize_currency(value: object) -> Currency:
    return Currency.JOD if value == Currency.JOD.value else Currency.USD


def normalize_purity(value: object) -> int:
    """Return ``value`` as a karat when it is one of the supported levels, else 24."""

    if value is None or isinstance(value, bool):
        return PURE_KARAT
    try:
        numeric = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return PURE_KARAT
    if numeric in VALID_PURITY_LEVELS:
        return int(numeric)
    return PURE_KARAT


def _parse_number(value: object) -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError(THRESHOLD_ERROR)
    if isinstance(value, str) and not value.strip():
        raise ValidationError(THRESHOLD_ERROR)
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(THRESHOLD_ERROR) from exc
    if not math.isfinite(number):
        raise ValidationError(THRESHOLD_ERROR)
    return number


def parse_thresholds(lower: object, upper: object) -> tuple[float, float]:
    """Validate a tolerance band, raising ``ValidationError`` unless lower < upper."""

    lower_value = _parse_number(lower)
    upper_value = _parse_number(upper)
    if lower_value >= upper_value:
        raise ValidationError(THRESHOLD_ERROR)
    return lower_value, upper_value


def convert_price(
    usd_per_ounce: float,
    unit: Unit,
    currency: Currency,
    usd_to_local: float,
    purity: Optional[int] = None,
) -> float:
    """Convert the reference USD/oz price into the requested basis.

    The factors are applied in a fixed order (unit, then currency, then
    purity) and no rounding takes place here.
    """

    price = usd_per_ounce
    if unit == Unit.GRAM:
        price = price / TROY_OUNCE_IN_GRAMS
    if currency == LOCAL_CURRENCY:
        price = price * usd_to_local
    if purity is not None:
        price = price * (purity / PURE_KARAT)
    return price


def evaluate_status(price: float, lower: float, upper: float) -> Status:
    if price < lower:
        return Status.BELOW_RANGE
    if price > upper:
        return Status.ABOVE_RANGE
    return Status.WITHIN_RANGE


def round_price(price: float) -> float:
    # the exact binary value is rounded, so 1.00005 (stored just below) gives 1.0
    return float(Decimal(price).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP))


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def build_price_response(
    current_price: float,
    unit: Unit,
    currency: Currency,
    purity: int,
    timestamp: Optional[datetime] = None,
) -> PriceResponse:
    return PriceResponse(
        current_price=round_price(current_price),
        unit=unit,
        currency=currency,
        purity=purity,
        timestamp=timestamp or _now(),
    )


def build_payload(
    current_price: float,
    unit: Unit,
    currency: Currency,
    purity: int,
    lower_threshold: float,
    upper_threshold: float,
    status: Status,
    timestamp: Optional[datetime] = None,
) -> DerivedPricePayload:
    return DerivedPricePayload(
        current_price=round_price(current_price),
        unit=unit,
        currency=currency,
        purity=purity,
        lower_threshold=lower_threshold,
        upper_threshold=upper_threshold,
        status=status,
        timestamp=timestamp or _now(),
    )
