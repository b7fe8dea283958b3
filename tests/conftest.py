from typing import List, Tuple

import pytest

from aurum.errors import UpstreamUnavailable
from aurum.services.alerts import AlertDispatcher
from aurum.services.monitor import EvaluationCycle
from aurum.services.reference_cache import ReferenceDataCache
from aurum.services.subscriptions import SubscriptionRegistry


class StaticGoldSource:
    def __init__(self, price: float = 2000.0) -> None:
        self.price = price
        self.fail = False
        self.calls = 0

    async def fetch_usd_per_ounce(self) -> float:
        self.calls += 1
        if self.fail:
            raise UpstreamUnavailable("Gold API error: 500")
        return self.price


class StaticFxSource:
    def __init__(self, rate: float = 0.71) -> None:
        self.rate = rate
        self.fail = False
        self.calls = 0

    async def fetch_usd_to_local(self) -> float:
        self.calls += 1
        if self.fail:
            raise UpstreamUnavailable("FX API error: 500")
        return self.rate


class RecordingTransport:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: List[Tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise RuntimeError("smtp down")
        self.messages.append((to, subject, body))


@pytest.fixture
def gold_source() -> StaticGoldSource:
    return StaticGoldSource()


@pytest.fixture
def fx_source() -> StaticFxSource:
    return StaticFxSource()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def reference_cache(gold_source: StaticGoldSource, fx_source: StaticFxSource) -> ReferenceDataCache:
    return ReferenceDataCache(gold_source, fx_source)


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def cycle(
    reference_cache: ReferenceDataCache,
    registry: SubscriptionRegistry,
    transport: RecordingTransport,
) -> EvaluationCycle:
    return EvaluationCycle(reference_cache, registry, AlertDispatcher(transport))
