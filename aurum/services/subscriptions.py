"""In-memory registry of price band subscriptions keyed by identity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Dict, List, Optional, Tuple

from prometheus_client import Gauge

from ..errors import ValidationError
from ..models import Currency, Status, Unit
from .pricing import normalize_currency, normalize_purity, normalize_unit, parse_thresholds


ACTIVE_SUBSCRIPTIONS = Gauge(
    "aurum_subscriptions",
    "Number of subscriptions currently monitored",
)


@dataclass
class Subscription:
    """Subscriber parameters plus the status seen on the last evaluation."""

    identity: str
    unit: Unit
    currency: Currency
    purity: int
    lower_threshold: float
    upper_threshold: float
    created_at: datetime
    updated_at: datetime
    last_status: Optional[Status] = None


class SubscriptionRegistry:
    """Thread-safe in-memory store of subscriptions.

    Entries live until ``remove`` is called; nothing expires on its own.
    """

    def __init__(self) -> None:
        self._items: Dict[str, Subscription] = {}
        self._lock = RLock()

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def upsert(
        self,
        identity: Optional[str],
        *,
        unit: object = None,
        currency: object = None,
        purity: object = None,
        lower_threshold: object = None,
        upper_threshold: object = None,
    ) -> Subscription:
        if not isinstance(identity, str) or not identity.strip():
            raise ValidationError("Valid email is required.")
        identity = identity.strip()
        lower, upper = parse_thresholds(lower_threshold, upper_threshold)

        with self._lock:
            now = self._now()
            previous = self._items.get(identity)
            # a fresh object with no last_status, so the next evaluation sees "unset"
            subscription = Subscription(
                identity=identity,
                unit=normalize_unit(unit),
                currency=normalize_currency(currency),
                purity=normalize_purity(purity),
                lower_threshold=lower,
                upper_threshold=upper,
                created_at=previous.created_at if previous is not None else now,
                updated_at=now,
            )
            self._items[identity] = subscription
            ACTIVE_SUBSCRIPTIONS.set(len(self._items))
            return subscription

    def get(self, identity: str) -> Subscription | None:
        with self._lock:
            return self._items.get(identity)

    def remove(self, identity: str) -> bool:
        with self._lock:
            removed = self._items.pop(identity, None) is not None
            ACTIVE_SUBSCRIPTIONS.set(len(self._items))
            return removed

    def all(self) -> List[Tuple[str, Subscription]]:
        """Return live references; callers may update ``last_status`` in place."""

        with self._lock:
            return list(self._items.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
