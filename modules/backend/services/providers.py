"""
Trading Data Providers.

Boundary to the external trading, portfolio, risk, and AI-analysis
services. The bot depends only on the DataProvider and TradingControl
protocols; HttpTradingProvider implements both over the services' REST API.

Every HTTP call runs inside the resilience stack:
    Circuit Breaker (aiobreaker) → Retry (tenacity) → Timeout → Call

Any failure (transport error, HTTP error status, open breaker, or a payload
that does not validate) surfaces as DataUnavailable naming the provider,
so callers can degrade one report section instead of failing the report.

Usage:
    provider = HttpTradingProvider.from_config(app_config.providers, settings.data_provider_api_key)
    snapshot = await provider.get_portfolio_snapshot(caller_id)
    await provider.aclose()
"""

import asyncio
from typing import Any, Protocol, TypeVar

import aiobreaker
import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from modules.backend.core.exceptions import DataUnavailable
from modules.backend.core.logging import get_logger
from modules.backend.core.resilience import create_circuit_breaker, create_retrying
from modules.backend.schemas.trading import (
    AIAnalysis,
    ControlResult,
    MarketQuote,
    PerformanceReport,
    PortfolioSnapshot,
    Position,
    RiskReport,
    TradingStatus,
)

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (httpx.TransportError, TimeoutError)


class DataProvider(Protocol):
    """Read access to a caller's trading data."""

    async def get_portfolio_snapshot(self, caller_id: int) -> PortfolioSnapshot: ...

    async def get_positions(self, caller_id: int) -> list[Position]: ...

    async def get_ai_analysis(self) -> AIAnalysis: ...

    async def get_risk_alerts(self, caller_id: int) -> RiskReport: ...

    async def get_performance(self, caller_id: int) -> PerformanceReport: ...

    async def get_market_data(self) -> list[MarketQuote]: ...

    async def get_trading_status(self, caller_id: int) -> TradingStatus: ...


class TradingControl(Protocol):
    """Control actions a caller can trigger from the chat."""

    async def pause_trading(self, caller_id: int) -> ControlResult: ...

    async def resume_trading(self, caller_id: int) -> ControlResult: ...

    async def close_position(self, caller_id: int, position_id: str) -> ControlResult: ...

    async def emergency_stop(self, caller_id: int) -> ControlResult: ...


class HttpTradingProvider:
    """DataProvider and TradingControl backed by the trading services' REST API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 7.0,
        retry_attempts: int = 3,
        retry_min_wait: float = 0.5,
        retry_max_wait: float = 4.0,
        breaker: aiobreaker.CircuitBreaker | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds
        self._retry_attempts = retry_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self._breaker = breaker or create_circuit_breaker("trading_api")

    @classmethod
    def from_config(cls, providers: Any, api_key: str = "") -> "HttpTradingProvider":
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        client = httpx.AsyncClient(base_url=providers.base_url, headers=headers)
        return cls(
            client,
            timeout_seconds=providers.timeout_seconds,
            retry_attempts=providers.retry.attempts,
            retry_min_wait=providers.retry.min_wait_seconds,
            retry_max_wait=providers.retry.max_wait_seconds,
            breaker=create_circuit_breaker(
                "trading_api",
                fail_max=providers.circuit_breaker.fail_max,
                timeout_duration=providers.circuit_breaker.timeout_duration,
            ),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        async for attempt in create_retrying(
            RETRYABLE_ERRORS,
            attempts=self._retry_attempts,
            min_wait=self._retry_min_wait,
            max_wait=self._retry_max_wait,
            dependency="trading_api",
        ):
            with attempt:
                async with asyncio.timeout(self._timeout):
                    response = await self._client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()

    async def _call(self, provider: str, method: str, path: str, **kwargs: Any) -> Any:
        try:
            return await self._breaker.call_async(self._send, method, path, **kwargs)
        except aiobreaker.CircuitBreakerError as e:
            raise DataUnavailable(f"{provider} provider circuit open", provider=provider) from e
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Provider returned error status",
                extra={"provider": provider, "path": path, "status_code": e.response.status_code},
            )
            raise DataUnavailable(
                f"{provider} provider returned {e.response.status_code}", provider=provider,
            ) from e
        except (*RETRYABLE_ERRORS, httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Provider request failed",
                extra={"provider": provider, "path": path, "error": str(e), "error_type": type(e).__name__},
            )
            raise DataUnavailable(f"{provider} provider unreachable", provider=provider) from e

    @staticmethod
    def _parse(provider: str, schema: type[T] | Any, payload: Any) -> T:
        try:
            if isinstance(schema, type) and issubclass(schema, BaseModel):
                return schema.model_validate(payload)
            return TypeAdapter(schema).validate_python(payload)
        except PydanticValidationError as e:
            logger.warning("Provider payload rejected", extra={"provider": provider, "errors": e.error_count()})
            raise DataUnavailable(f"{provider} provider sent an invalid payload", provider=provider) from e

    async def _get(self, provider: str, path: str, schema: Any, key: str | None = None, **params: Any) -> Any:
        payload = await self._call(provider, "GET", path, params=params or None)
        if key is not None and isinstance(payload, dict):
            payload = payload.get(key, [])
        return self._parse(provider, schema, payload)

    async def _post(self, provider: str, path: str, body: dict[str, Any]) -> ControlResult:
        payload = await self._call(provider, "POST", path, json=body)
        return self._parse(provider, ControlResult, payload)

    # -------------------------------------------------------------------------
    # DataProvider
    # -------------------------------------------------------------------------

    async def get_portfolio_snapshot(self, caller_id: int) -> PortfolioSnapshot:
        return await self._get("portfolio", "/trading/portfolio", PortfolioSnapshot, userId=caller_id)

    async def get_positions(self, caller_id: int) -> list[Position]:
        return await self._get("positions", "/trading/positions", list[Position], key="positions", userId=caller_id)

    async def get_ai_analysis(self) -> AIAnalysis:
        return await self._get("ai_analysis", "/ai-analysis", AIAnalysis)

    async def get_risk_alerts(self, caller_id: int) -> RiskReport:
        return await self._get("risk_alerts", "/trading/risk", RiskReport, userId=caller_id)

    async def get_performance(self, caller_id: int) -> PerformanceReport:
        return await self._get("performance", "/trading/performance", PerformanceReport, userId=caller_id)

    async def get_market_data(self) -> list[MarketQuote]:
        return await self._get("market_data", "/trading/real-time-data", list[MarketQuote], key="quotes")

    async def get_trading_status(self, caller_id: int) -> TradingStatus:
        return await self._get("trading_status", "/trading/status", TradingStatus, userId=caller_id)

    # -------------------------------------------------------------------------
    # TradingControl
    # -------------------------------------------------------------------------

    async def pause_trading(self, caller_id: int) -> ControlResult:
        return await self._post("trading_control", "/trading/toggle", {"userId": caller_id, "enabled": False})

    async def resume_trading(self, caller_id: int) -> ControlResult:
        return await self._post("trading_control", "/trading/toggle", {"userId": caller_id, "enabled": True})

    async def close_position(self, caller_id: int, position_id: str) -> ControlResult:
        return await self._post(
            "trading_control", "/trading/positions/close", {"userId": caller_id, "positionId": position_id},
        )

    async def emergency_stop(self, caller_id: int) -> ControlResult:
        return await self._post("trading_control", "/trading/emergency-stop", {"userId": caller_id})
