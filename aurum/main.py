"""Application entry point for the FastAPI gold price monitoring service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from mangum import Mangum
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .errors import ValidationError
from .models import DerivedPricePayload, HealthResponse, MonitorRequest, MonitorResponse, PriceResponse
from .services.alerts import AlertDispatcher, AlertTransport, build_transport_from_env
from .services.gold_feed import DEFAULT_FX_API_URL, DEFAULT_GOLD_API_URL, FxRateClient, GoldPriceClient
from .services.monitor import EvaluationCycle, run_periodically
from .services.pricing import (
    build_payload,
    build_price_response,
    convert_price,
    evaluate_status,
    normalize_currency,
    normalize_purity,
    normalize_unit,
    parse_thresholds,
)
from .services.reference_cache import FxRateSource, GoldPriceSource, ReferenceDataCache, ReferenceSnapshot
from .services.subscriptions import SubscriptionRegistry


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 10.0
PRICE_UNAVAILABLE = "Price data currently unavailable. Please try again soon."
INVALID_REQUEST = "Request body must be a JSON object."


@dataclass
class AppResources:
    reference_cache: ReferenceDataCache
    registry: SubscriptionRegistry
    dispatcher: AlertDispatcher
    evaluation_cycle: EvaluationCycle
    refresh_interval: float
    evaluation_interval: float
    feeds: list = field(default_factory=list)


allow_origins = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
def configure_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )


def parse_interval(raw_value: str | None, default: float = DEFAULT_INTERVAL) -> float:
    if raw_value is None:
        return default
    try:
        parsed = float(raw_value)
    except ValueError:
        logger.warning("Invalid interval %r, using %.1fs", raw_value, default)
        parsed = default
    return max(parsed, 0.1)


def build_app_resources(
    gold_source: GoldPriceSource | None = None,
    fx_source: FxRateSource | None = None,
    transport: AlertTransport | None = None,
) -> AppResources:
    """Wire the service graph; explicit sources and transport replace the env-configured ones."""

    timeout = parse_interval(os.getenv("AURUM_HTTP_TIMEOUT"), default=5.0)
    # feeds built here open their client on first fetch and are closed at shutdown
    feeds = []
    if gold_source is None:
        gold_source = GoldPriceClient(os.getenv("GOLD_API_URL") or DEFAULT_GOLD_API_URL, timeout=timeout)
        feeds.append(gold_source)
    if fx_source is None:
        fx_source = FxRateClient(os.getenv("FX_API_URL") or DEFAULT_FX_API_URL, timeout=timeout)
        feeds.append(fx_source)
    if transport is None:
        transport = build_transport_from_env()
        if transport is None:
            logger.warning("SMTP not configured (SMTP_HOST/SMTP_USER/SMTP_PASS); alerts will be skipped")

    reference_cache = ReferenceDataCache(gold_source, fx_source)
    registry = SubscriptionRegistry()
    dispatcher = AlertDispatcher(transport)
    return AppResources(
        reference_cache=reference_cache,
        registry=registry,
        dispatcher=dispatcher,
        evaluation_cycle=EvaluationCycle(reference_cache, registry, dispatcher),
        refresh_interval=parse_interval(os.getenv("AURUM_REFRESH_INTERVAL")),
        evaluation_interval=parse_interval(os.getenv("AURUM_EVALUATION_INTERVAL")),
        feeds=feeds,
    )


def start_background_tasks(resources: AppResources) -> list[asyncio.Task]:
    return [
        asyncio.create_task(
            run_periodically(
                "reference refresh",
                resources.reference_cache.refresh,
                resources.refresh_interval,
            )
        ),
        asyncio.create_task(
            run_periodically(
                "subscription evaluation",
                resources.evaluation_cycle.run,
                resources.evaluation_interval,
            )
        ),
    ]


def make_lifespan(resources: AppResources):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await resources.reference_cache.refresh()
        tasks = start_background_tasks(resources)
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for feed in resources.feeds:
                await feed.aclose()

    return lifespan


def require_snapshot(reference_cache: ReferenceDataCache) -> ReferenceSnapshot:
    snapshot = reference_cache.snapshot()
    if not snapshot.is_usable:
        raise HTTPException(status_code=503, detail=PRICE_UNAVAILABLE)
    return snapshot


def validated_thresholds(lower: object, upper: object) -> tuple[float, float]:
    try:
        return parse_thresholds(lower, upper)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def to_health(snapshot: ReferenceSnapshot, subscriptions: int, alerts_configured: bool) -> HealthResponse:
    return HealthResponse(
        status="ok" if snapshot.is_usable else "degraded",
        usd_per_ounce=snapshot.usd_per_ounce,
        usd_to_local=snapshot.usd_to_local,
        fetched_at=snapshot.fetched_at,
        error=snapshot.error,
        subscriptions=subscriptions,
        alerts_configured=alerts_configured,
    )


async def invalid_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"detail": INVALID_REQUEST})


def register_routes(app: FastAPI, resources: AppResources) -> None:
    reference_cache = resources.reference_cache
    registry = resources.registry
    evaluation_cycle = resources.evaluation_cycle

    @app.get("/api/price", response_model=PriceResponse)
    def get_price(
        unit: Optional[str] = None,
        currency: Optional[str] = None,
        purity: Optional[str] = None,
    ) -> PriceResponse:
        snapshot = require_snapshot(reference_cache)
        normalized_unit = normalize_unit(unit)
        normalized_currency = normalize_currency(currency)
        normalized_purity = normalize_purity(purity)
        current_price = convert_price(
            snapshot.usd_per_ounce,
            normalized_unit,
            normalized_currency,
            snapshot.usd_to_local,
            normalized_purity,
        )
        return build_price_response(current_price, normalized_unit, normalized_currency, normalized_purity)

    @app.post("/api/monitor", response_model=MonitorResponse)
    async def create_monitor(request: MonitorRequest) -> MonitorResponse:
        try:
            subscription = registry.upsert(
                request.email,
                unit=request.unit,
                currency=request.currency,
                purity=request.purity,
                lower_threshold=request.lower_threshold,
                upper_threshold=request.upper_threshold,
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        logger.info(
            "Monitoring %s: %s-%s %s per %s (%sk)",
            subscription.identity,
            subscription.lower_threshold,
            subscription.upper_threshold,
            subscription.currency.value,
            subscription.unit.value,
            subscription.purity,
        )
        await evaluation_cycle.evaluate(subscription.identity)
        return MonitorResponse(status="monitoring", email=subscription.identity)

    @app.delete("/api/monitor/{email}", response_model=MonitorResponse)
    async def delete_monitor(email: str) -> MonitorResponse:
        if not registry.remove(email):
            raise HTTPException(status_code=404, detail=f"No subscription for {email}")
        logger.info("Stopped monitoring %s", email)
        return MonitorResponse(status="removed", email=email)

    @app.get("/api/agent", response_model=DerivedPricePayload)
    def get_agent_status(
        unit: Optional[str] = None,
        currency: Optional[str] = None,
        purity: Optional[str] = None,
        lower_threshold: Optional[str] = None,
        upper_threshold: Optional[str] = None,
    ) -> DerivedPricePayload:
        lower, upper = validated_thresholds(lower_threshold, upper_threshold)
        snapshot = require_snapshot(reference_cache)
        normalized_unit = normalize_unit(unit)
        normalized_currency = normalize_currency(currency)
        normalized_purity = normalize_purity(purity)
        current_price = convert_price(
            snapshot.usd_per_ounce,
            normalized_unit,
            normalized_currency,
            snapshot.usd_to_local,
            normalized_purity,
        )
        return build_payload(
            current_price,
            normalized_unit,
            normalized_currency,
            normalized_purity,
            lower,
            upper,
            evaluate_status(current_price, lower, upper),
        )

    @app.get("/api/health", response_model=HealthResponse)
    def get_health() -> HealthResponse:
        return to_health(reference_cache.snapshot(), len(registry), resources.dispatcher.configured)

    @app.get("/metrics")
    def get_metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app(resources: AppResources | None = None) -> FastAPI:
    """Application factory to allow testability."""

    resources = resources or build_app_resources()
    app = FastAPI(
        title="Aurum Gold Price Monitor",
        version="0.1.0",
        description="Derived gold prices and threshold alerts by unit, currency and purity.",
        lifespan=make_lifespan(resources),
    )
    app.state.resources = resources

    configure_cors(app)
    app.add_exception_handler(RequestValidationError, invalid_request_handler)
    register_routes(app, resources)

    return app


app = create_app()
lambda_handler = Mangum(app)
