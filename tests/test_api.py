import asyncio
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from aurum.main import AppResources, build_app_resources, create_app, parse_interval


class _Harness:
    def __init__(self, gold_source, fx_source, transport, *, populate: bool = True) -> None:
        self.gold = gold_source
        self.fx = fx_source
        self.transport = transport
        self.resources: AppResources = build_app_resources(gold_source, fx_source, transport)
        self.client = TestClient(create_app(self.resources))
        if populate:
            self.refresh()

    def refresh(self) -> None:
        asyncio.run(self.resources.reference_cache.refresh())


@pytest.fixture
def make_harness(gold_source, fx_source, transport) -> Callable[..., _Harness]:
    def _make(price: float = 2000.0, *, populate: bool = True) -> _Harness:
        gold_source.price = price
        return _Harness(gold_source, fx_source, transport, populate=populate)

    return _make


@pytest.fixture
def harness(make_harness) -> _Harness:
    return make_harness()


def test_price_defaults_to_pure_gold_usd_per_ounce(harness: _Harness) -> None:
    response = harness.client.get("/api/price")

    assert response.status_code == 200
    data = response.json()
    assert data["current_price"] == 2000.0
    assert data["unit"] == "ounce"
    assert data["currency"] == "USD"
    assert data["purity"] == 24
    assert "timestamp" in data
    assert "status" not in data


def test_price_in_jod_per_gram(harness: _Harness) -> None:
    response = harness.client.get("/api/price", params={"unit": "gram", "currency": "JOD", "purity": "21"})

    assert response.status_code == 200
    assert response.json()["current_price"] == 39.9473


def test_price_ignores_unsupported_options(harness: _Harness) -> None:
    response = harness.client.get("/api/price", params={"unit": "kg", "currency": "EUR", "purity": "9"})

    data = response.json()
    assert (data["unit"], data["currency"], data["purity"]) == ("ounce", "USD", 24)


def test_price_unavailable_before_first_refresh(make_harness) -> None:
    harness = make_harness(populate=False)

    response = harness.client.get("/api/price")

    assert response.status_code == 503
    assert "unavailable" in response.json()["detail"]


def test_price_unavailable_after_failed_refresh(harness: _Harness) -> None:
    harness.fx.fail = True
    harness.refresh()

    assert harness.client.get("/api/price").status_code == 503
    health = harness.client.get("/api/health").json()
    assert health["status"] == "degraded"
    assert health["error"] == "FX API error: 500"
    assert health["usd_per_ounce"] == 2000.0


def test_agent_returns_status(harness: _Harness) -> None:
    response = harness.client.get(
        "/api/agent",
        params={"unit": "gram", "currency": "JOD", "purity": "21", "lower_threshold": "30", "upper_threshold": "40"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["current_price"] == 39.9473
    assert data["status"] == "within_range"
    assert data["lower_threshold"] == 30.0
    assert data["upper_threshold"] == 40.0


@pytest.mark.parametrize(
    "params",
    [{}, {"lower_threshold": "10"}, {"lower_threshold": "a", "upper_threshold": "b"}, {"lower_threshold": "5", "upper_threshold": "5"}],
)
def test_agent_rejects_invalid_thresholds(harness: _Harness, params: dict) -> None:
    response = harness.client.get("/api/agent", params=params)

    assert response.status_code == 400
    assert "lower < upper" in response.json()["detail"]


def test_agent_validates_before_checking_availability(make_harness) -> None:
    harness = make_harness(populate=False)

    assert harness.client.get("/api/agent").status_code == 400
    response = harness.client.get("/api/agent", params={"lower_threshold": "1", "upper_threshold": "2"})
    assert response.status_code == 503


def test_monitor_alerts_immediately_when_already_out_of_range(make_harness) -> None:
    harness = make_harness(2200.0)

    response = harness.client.post(
        "/api/monitor",
        json={"email": "a@x.com", "lower_threshold": 1900, "upper_threshold": 2100},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "monitoring", "email": "a@x.com"}
    assert len(harness.transport.messages) == 1
    to, subject, body = harness.transport.messages[0]
    assert to == "a@x.com"
    assert subject == "Gold price alert: above upper threshold"
    assert "Current price: 2200.0 USD per ounce" in body

    asyncio.run(harness.resources.evaluation_cycle.run())
    assert len(harness.transport.messages) == 1


def test_monitor_within_range_is_silent(harness: _Harness) -> None:
    response = harness.client.post(
        "/api/monitor",
        json={"email": "a@x.com", "lower_threshold": "1900", "upper_threshold": "2100", "unit": "ounce"},
    )

    assert response.status_code == 200
    assert harness.transport.messages == []
    assert harness.resources.registry.get("a@x.com").last_status.value == "within_range"


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"lower_threshold": 1, "upper_threshold": 2}, "email"),
        ({"email": "", "lower_threshold": 1, "upper_threshold": 2}, "email"),
        ({"email": "a@x.com", "lower_threshold": 2100, "upper_threshold": 1900}, "lower < upper"),
        ({"email": "a@x.com", "lower_threshold": "abc", "upper_threshold": 1900}, "lower < upper"),
        ({"email": "a@x.com"}, "lower < upper"),
        ({"email": 123, "lower_threshold": 1, "upper_threshold": 2}, "email"),
        ({"email": ["a@x.com"], "lower_threshold": 1, "upper_threshold": 2}, "email"),
        ({"email": "a@x.com", "lower_threshold": [1], "upper_threshold": 2}, "lower < upper"),
        ({"email": "a@x.com", "lower_threshold": {"value": 1}, "upper_threshold": 2}, "lower < upper"),
        ({"email": "a@x.com", "lower_threshold": True, "upper_threshold": 2}, "lower < upper"),
    ],
)
def test_monitor_rejects_invalid_requests(harness: _Harness, payload: dict, message: str) -> None:
    response = harness.client.post("/api/monitor", json=payload)

    assert response.status_code == 400
    assert message in response.json()["detail"]
    assert len(harness.resources.registry) == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"content": "not json", "headers": {"Content-Type": "application/json"}},
        {"json": ["a@x.com", 1, 2]},
    ],
)
def test_monitor_rejects_malformed_body(harness: _Harness, kwargs: dict) -> None:
    response = harness.client.post("/api/monitor", **kwargs)

    assert response.status_code == 400
    assert response.json() == {"detail": "Request body must be a JSON object."}
    assert len(harness.resources.registry) == 0


def test_monitor_while_unavailable_stores_without_evaluating(make_harness) -> None:
    harness = make_harness(2200.0, populate=False)

    response = harness.client.post(
        "/api/monitor",
        json={"email": "a@x.com", "lower_threshold": 1900, "upper_threshold": 2100},
    )

    assert response.status_code == 200
    assert harness.transport.messages == []
    assert harness.resources.registry.get("a@x.com").last_status is None

    harness.refresh()
    asyncio.run(harness.resources.evaluation_cycle.run())
    assert len(harness.transport.messages) == 1


def test_unsubscribe(harness: _Harness) -> None:
    harness.client.post("/api/monitor", json={"email": "a@x.com", "lower_threshold": 1, "upper_threshold": 2})

    response = harness.client.delete("/api/monitor/a@x.com")
    assert response.status_code == 200
    assert response.json() == {"status": "removed", "email": "a@x.com"}
    assert harness.client.delete("/api/monitor/a@x.com").status_code == 404
    assert harness.client.get("/api/health").json()["subscriptions"] == 0


def test_health_reports_snapshot(harness: _Harness) -> None:
    harness.client.post("/api/monitor", json={"email": "a@x.com", "lower_threshold": 1, "upper_threshold": 2})

    data = harness.client.get("/api/health").json()

    assert data["status"] == "ok"
    assert data["usd_to_local"] == 0.71
    assert data["error"] is None
    assert data["subscriptions"] == 1
    assert data["alerts_configured"] is True


def test_metrics_endpoint(harness: _Harness) -> None:
    harness.client.get("/api/price")

    response = harness.client.get("/metrics")

    assert response.status_code == 200
    assert "aurum_reference_refreshes_total" in response.text


def test_cors_headers(harness: _Harness) -> None:
    response = harness.client.get("/api/price", headers={"Origin": "http://example.com"})

    assert response.headers["access-control-allow-origin"] == "*"


def test_building_resources_opens_no_http_client(transport) -> None:
    resources = build_app_resources(transport=transport)

    assert len(resources.feeds) == 2
    assert all(feed._client is None for feed in resources.feeds)
    assert resources.dispatcher.configured is True


def test_lifespan_closes_feeds(gold_source, fx_source, transport) -> None:
    closed: list[str] = []

    class _Feed:
        def __init__(self, name: str) -> None:
            self.name = name

        async def aclose(self) -> None:
            closed.append(self.name)

    resources = build_app_resources(gold_source, fx_source, transport)
    resources.feeds = [_Feed("gold"), _Feed("fx")]

    with TestClient(create_app(resources)) as client:
        assert client.get("/api/price").status_code == 200
        assert closed == []

    assert closed == ["gold", "fx"]


@pytest.mark.parametrize("raw, expected", [(None, 10.0), ("2.5", 2.5), ("bad", 10.0), ("0", 0.1)])
def test_parse_interval(raw, expected) -> None:
    assert parse_interval(raw) == expected
