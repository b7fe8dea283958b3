"""Evaluation cycle: edge-triggered breach detection for every subscription."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram

from .alerts import AlertDispatcher, breach_direction
from .pricing import build_payload, convert_price, evaluate_status
from .reference_cache import ReferenceDataCache, ReferenceSnapshot
from .subscriptions import Subscription, SubscriptionRegistry
from ..models import Status


logger = logging.getLogger(__name__)


EVALUATION_CYCLES = Counter(
    "aurum_evaluation_cycles_total",
    "Evaluation cycles started",
    ["outcome"],
)

EVALUATION_DURATION = Histogram(
    "aurum_evaluation_duration_seconds",
    "Time taken to evaluate all subscriptions",
)


class EvaluationCycle:
    """Compare each subscription's derived price with its band and alert on transitions.

    Alerts are edge-triggered: one fires when the new status is a breach and
    differs from the previously stored one (an unset status differs from
    everything). Returning to the band is silent. ``last_status`` is
    overwritten on every evaluation whether or not an alert fires.

    ``run`` and ``evaluate`` share a lock, so the periodic cycle and an
    on-registration evaluation never interleave on the same subscription.
    """

    def __init__(
        self,
        reference_cache: ReferenceDataCache,
        registry: SubscriptionRegistry,
        dispatcher: AlertDispatcher,
    ) -> None:
        self._reference_cache = reference_cache
        self._registry = registry
        self._dispatcher = dispatcher
        self._lock = asyncio.Lock()

    def _usable_snapshot(self) -> ReferenceSnapshot | None:
        snapshot = self._reference_cache.snapshot()
        if not snapshot.is_usable:
            logger.debug("Reference data unavailable (%s), skipping evaluation", snapshot.error or "not loaded")
            return None
        return snapshot

    async def run(self) -> int:
        """Evaluate every subscription; return the number of alerts fired."""

        async with self._lock:
            snapshot = self._usable_snapshot()
            if snapshot is None:
                EVALUATION_CYCLES.labels(outcome="skipped").inc()
                return 0

            start_time = time.perf_counter()
            fired = 0
            for identity, subscription in self._registry.all():
                # replaced while an earlier alert was being sent
                if self._registry.get(identity) is not subscription:
                    continue
                if await self._evaluate_subscription(identity, subscription, snapshot):
                    fired += 1
            EVALUATION_DURATION.observe(time.perf_counter() - start_time)
            EVALUATION_CYCLES.labels(outcome="completed").inc()
            return fired

    async def evaluate(self, identity: str) -> bool:
        """Evaluate a single subscription now; return True if an alert fired."""

        async with self._lock:
            snapshot = self._usable_snapshot()
            if snapshot is None:
                return False
            subscription = self._registry.get(identity)
            if subscription is None:
                return False
            return await self._evaluate_subscription(identity, subscription, snapshot)

    async def _evaluate_subscription(
        self,
        identity: str,
        subscription: Subscription,
        snapshot: ReferenceSnapshot,
    ) -> bool:
        current_price = convert_price(
            snapshot.usd_per_ounce,
            subscription.unit,
            subscription.currency,
            snapshot.usd_to_local,
            subscription.purity,
        )
        status = evaluate_status(current_price, subscription.lower_threshold, subscription.upper_threshold)

        previous_status = subscription.last_status
        subscription.last_status = status

        if status == Status.WITHIN_RANGE or status == previous_status:
            return False

        logger.info("%s moved from %s to %s at %.4f", identity, previous_status, status.value, current_price)
        payload = build_payload(
            current_price,
            subscription.unit,
            subscription.currency,
            subscription.purity,
            subscription.lower_threshold,
            subscription.upper_threshold,
            status,
        )
        await self._dispatcher.dispatch(identity, payload, breach_direction(status))
        return True


async def run_periodically(name: str, action: Callable[[], Awaitable[object]], interval: float) -> None:
    """Call ``action`` every ``interval`` seconds until cancelled.

    The first call happens after one interval. A failing iteration is logged
    and the loop keeps going.
    """

    logger.info("Starting %s every %.1fs", name, interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await action()
        except Exception:
            logger.exception("%s iteration failed", name)
