"""
Unit Tests for the HTTP Trading Provider.

Requests are served by httpx.MockTransport; no network is used.
"""

import json

import httpx
import pytest

from modules.backend.core.exceptions import DataUnavailable
from modules.backend.core.resilience import create_circuit_breaker
from modules.backend.services.providers import HttpTradingProvider


class MockAPI:
    """Routes requests to canned responses and records them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes[(request.method, request.url.path)]
        if callable(handler):
            return handler(request)
        return httpx.Response(200, json=handler)


def _provider(api, attempts=2, fail_max=5):
    client = httpx.AsyncClient(base_url="http://trading.test", transport=httpx.MockTransport(api))
    return HttpTradingProvider(
        client,
        timeout_seconds=1,
        retry_attempts=attempts,
        retry_min_wait=0,
        retry_max_wait=0,
        breaker=create_circuit_breaker("trading_test", fail_max=fail_max, timeout_duration=60),
    )


class TestReads:
    async def test_portfolio_accepts_camel_case(self):
        api = MockAPI({("GET", "/trading/portfolio"): {
            "totalBalance": 12500.5,
            "availableBalance": 3000,
            "dailyPnL": 250,
            "dailyPnLPercentage": 2.0,
            "unknownField": "ignored",
        }})
        provider = _provider(api)

        snapshot = await provider.get_portfolio_snapshot(42)

        assert snapshot.total_balance == 12500.5
        assert snapshot.daily_pnl_percentage == 2.0
        assert api.requests[0].url.params["userId"] == "42"
        await provider.aclose()

    async def test_positions_are_unwrapped(self):
        api = MockAPI({("GET", "/trading/positions"): {"positions": [
            {"id": "abc123", "symbol": "BTCUSDT", "side": "LONG", "unrealizedPnL": 12.5},
        ]}})

        positions = await _provider(api).get_positions(42)

        assert [p.id for p in positions] == ["abc123"]
        assert positions[0].unrealized_pnl == 12.5

    async def test_market_data_and_risk(self):
        api = MockAPI({
            ("GET", "/trading/real-time-data"): {"quotes": [{"symbol": "ETHUSDT", "priceChangePercent": -3.5}]},
            ("GET", "/trading/risk"): {
                "metrics": {"portfolioDrawdown": 12.0},
                "alerts": [{"type": "CRITICAL", "message": "Leverage too high"}],
            },
        })
        provider = _provider(api)

        quotes = await provider.get_market_data()
        risk = await provider.get_risk_alerts(42)

        assert quotes[0].price_change_percent == -3.5
        assert risk.metrics.portfolio_drawdown == 12.0
        assert risk.alerts[0].level.value == "CRITICAL"


class TestFailures:
    async def test_error_status(self):
        api = MockAPI({("GET", "/trading/portfolio"): lambda r: httpx.Response(500)})

        with pytest.raises(DataUnavailable) as exc_info:
            await _provider(api).get_portfolio_snapshot(42)

        assert exc_info.value.provider == "portfolio"
        assert len(api.requests) == 1

    async def test_transport_errors_are_retried(self):
        calls = {"n": 0}

        def flaky(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"marketRegime": "BEAR", "confidence": 0.7})

        api = MockAPI({("GET", "/ai-analysis"): flaky})

        analysis = await _provider(api, attempts=2).get_ai_analysis()

        assert analysis.market_regime.value == "BEAR"
        assert calls["n"] == 2

    async def test_retries_exhausted(self):
        def down(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = MockAPI({("GET", "/trading/status"): down})

        with pytest.raises(DataUnavailable) as exc_info:
            await _provider(api, attempts=3).get_trading_status(42)

        assert exc_info.value.provider == "trading_status"
        assert len(api.requests) == 3

    async def test_invalid_payload(self):
        api = MockAPI({("GET", "/trading/positions"): {"positions": [{"symbol": "BTCUSDT"}]}})

        with pytest.raises(DataUnavailable, match="invalid payload"):
            await _provider(api).get_positions(42)

    async def test_non_json_body(self):
        api = MockAPI({("GET", "/trading/performance"): lambda r: httpx.Response(200, text="<html>")})

        with pytest.raises(DataUnavailable):
            await _provider(api).get_performance(42)

    async def test_circuit_opens_after_repeated_failures(self):
        api = MockAPI({("GET", "/trading/portfolio"): lambda r: httpx.Response(503)})
        provider = _provider(api, attempts=1, fail_max=3)

        for _ in range(4):
            with pytest.raises(DataUnavailable):
                await provider.get_portfolio_snapshot(42)

        assert len(api.requests) == 3


class TestControls:
    async def test_close_position_body(self):
        api = MockAPI({("POST", "/trading/positions/close"): {"success": True, "message": "Closed"}})

        result = await _provider(api).close_position(42, "abc123")

        assert result.success
        assert json.loads(api.requests[0].content) == {"userId": 42, "positionId": "abc123"}

    async def test_pause_and_resume_toggle(self):
        api = MockAPI({("POST", "/trading/toggle"): {"success": True}})
        provider = _provider(api)

        await provider.pause_trading(42)
        await provider.resume_trading(42)

        bodies = [json.loads(r.content) for r in api.requests]
        assert [b["enabled"] for b in bodies] == [False, True]

    async def test_emergency_stop_failure(self):
        api = MockAPI({("POST", "/trading/emergency-stop"): lambda r: httpx.Response(502)})

        with pytest.raises(DataUnavailable) as exc_info:
            await _provider(api).emergency_stop(42)

        assert exc_info.value.provider == "trading_control"
