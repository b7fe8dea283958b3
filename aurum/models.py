"""Pydantic data models for the gold price monitoring service."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class Unit(str, Enum):
    OUNCE = "ounce"
    GRAM = "gram"


class Currency(str, Enum):
    USD = "USD"
    JOD = "JOD"


class Status(str, Enum):
    """Position of a derived price relative to a subscriber's band."""

    BELOW_RANGE = "below_range"
    WITHIN_RANGE = "within_range"
    ABOVE_RANGE = "above_range"


class MonitorRequest(BaseModel):
    """Payload accepted by the subscription endpoint.

    Fields are kept loose on purpose: unknown units, currencies and purities
    fall back to defaults instead of being rejected, and the email and
    thresholds are validated by the registry so that failures surface as a
    400 rather than a schema error.
    """

    email: Any = Field(default=None, description="Subscriber address, used as the identity")
    unit: Any = Field(default=None, description="'ounce' (default) or 'gram'")
    currency: Any = Field(default=None, description="'USD' (default) or 'JOD'")
    purity: Any = Field(default=None, description="Karat: 24, 22, 21 or 18")
    lower_threshold: Any = None
    upper_threshold: Any = None

    @field_validator("email")
    @classmethod
    def strip_email(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value


class MonitorResponse(BaseModel):
    status: Literal["monitoring", "removed"] = "monitoring"
    email: str


class PriceResponse(BaseModel):
    """Derived price for a unit/currency/purity basis."""

    current_price: float
    unit: Unit
    currency: Currency
    purity: int
    timestamp: datetime


class DerivedPricePayload(PriceResponse):
    """Derived price evaluated against a tolerance band."""

    lower_threshold: float
    upper_threshold: float
    status: Status


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    usd_per_ounce: Optional[float] = None
    usd_to_local: Optional[float] = None
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None
    subscriptions: int = 0
    alerts_configured: bool = False
