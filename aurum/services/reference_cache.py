"""Single-writer holder for the latest gold price and FX rate."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from prometheus_client import Counter


logger = logging.getLogger(__name__)


REFERENCE_REFRESHES = Counter(
    "aurum_reference_refreshes_total",
    "Reference data refresh attempts",
    ["status"],
)


class GoldPriceSource(Protocol):
    async def fetch_usd_per_ounce(self) -> float:
        ...


class FxRateSource(Protocol):
    async def fetch_usd_to_local(self) -> float:
        ...


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Point-in-time copy of the cached reference data.

    ``error`` is set when the most recent refresh failed; the previous
    values are kept for diagnostics but must not be used for pricing.
    """

    usd_per_ounce: Optional[float] = None
    usd_to_local: Optional[float] = None
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return self.error is None and self.usd_per_ounce is not None and self.usd_to_local is not None


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class ReferenceDataCache:
    """Hold the latest reference snapshot; only ``refresh`` replaces it."""

    def __init__(self, gold_source: GoldPriceSource, fx_source: FxRateSource) -> None:
        self._gold_source = gold_source
        self._fx_source = fx_source
        self._snapshot = ReferenceSnapshot()

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def snapshot(self) -> ReferenceSnapshot:
        return self._snapshot

    async def refresh(self) -> ReferenceSnapshot:
        """Fetch both feeds concurrently and swap in a new snapshot.

        Both fetches are awaited to completion. If either fails, the previous
        values stay in place and the snapshot is marked as errored. Errors are
        never raised to the caller.
        """

        gold_result, fx_result = await asyncio.gather(
            self._gold_source.fetch_usd_per_ounce(),
            self._fx_source.fetch_usd_to_local(),
            return_exceptions=True,
        )
        failures = [result for result in (gold_result, fx_result) if isinstance(result, BaseException)]
        if failures:
            message = "; ".join(_describe(exc) for exc in failures)
            logger.warning("Price fetch error: %s", message)
            self._snapshot = replace(self._snapshot, error=message)
            REFERENCE_REFRESHES.labels(status="error").inc()
            return self._snapshot

        self._snapshot = ReferenceSnapshot(
            usd_per_ounce=float(gold_result),
            usd_to_local=float(fx_result),
            fetched_at=self._now(),
        )
        logger.info("Gold: %s USD/oz, USD -> JOD: %s", gold_result, fx_result)
        REFERENCE_REFRESHES.labels(status="success").inc()
        return self._snapshot
