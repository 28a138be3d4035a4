from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests
from web3.exceptions import Web3Exception

from peg_reserve_monitor.config.settings import AppConfig, DataSourceConfig, VenueConfig
from peg_reserve_monitor.datalake.schemas import VenueId
from peg_reserve_monitor.ingestion.coingecko_api import CoinGeckoClient, CoinGeckoPriceReader
from peg_reserve_monitor.ingestion.onchain import CurvePoolReader, FluidPoolReader
from peg_reserve_monitor.ingestion.venues import build_history_source, build_venue_readers
from peg_reserve_monitor.monitoring.metrics import METRICS

GHO = "0x40d16fc0246ad3160ccc09b8d0d3a2cd28ae6c2f"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


class _Call:
    def __init__(self, handler: Callable[..., Any], args: tuple) -> None:
        self._handler = handler
        self._args = args

    def call(self) -> Any:
        return self._handler(*self._args)


class FakeContract:
    def __init__(self, handlers: Dict[str, Callable[..., Any]]) -> None:
        self.calls: List[tuple] = []
        functions = {}
        for name, handler in handlers.items():
            functions[name] = self._bind(name, handler)
        self.functions = SimpleNamespace(**functions)

    def _bind(self, name: str, handler: Callable[..., Any]) -> Callable[..., _Call]:
        def build(*args: Any) -> _Call:
            self.calls.append((name, args))
            return _Call(handler, args)

        return build


class FakeWeb3:
    def __init__(self, handlers: Dict[str, Callable[..., Any]]) -> None:
        self.contract_obj = FakeContract(handlers)
        self.eth = SimpleNamespace(contract=self._contract)
        self.addresses: List[str] = []

    def _contract(self, *, address: str, abi: Any) -> FakeContract:
        self.addresses.append(address)
        return self.contract_obj


class FakeResponse:
    def __init__(self, payload: Any, status: int = 200) -> None:
        self._payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, payload: Any) -> None:
        self.payload = payload
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"url": url, **kwargs})
        return FakeResponse(self.payload)


class OfflineSession(FakeSession):
    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"url": url, **kwargs})
        raise requests.ConnectionError("offline")


@pytest.fixture(autouse=True)
def _clean_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


def test_coingecko_spot_price_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    client = CoinGeckoClient(DataSourceConfig(cache_ttl_seconds=60))
    calls: List[str] = []

    def fake_request(path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        calls.append(path)
        return {"gho": {"usd": 0.9993}}

    monkeypatch.setattr(client, "_get", fake_request)
    reader = CoinGeckoPriceReader(client)

    assert reader.read_price() == pytest.approx(0.9993)
    assert reader.read_price() == pytest.approx(0.9993)
    assert calls == ["/simple/price"]


def test_coingecko_failure_reads_as_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    client = CoinGeckoClient(DataSourceConfig(cache_ttl_seconds=0))

    def failing_request(path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(client, "_get", failing_request)
    reader = CoinGeckoPriceReader(client)

    assert reader.read_price() is None
    assert METRICS.get("venue_read_failures_coingecko") == 1


def test_coingecko_missing_asset_key(monkeypatch: pytest.MonkeyPatch) -> None:
    client = CoinGeckoClient(DataSourceConfig(cache_ttl_seconds=0))
    monkeypatch.setattr(client, "_get", lambda path, params=None: {"other": {"usd": 1.0}})
    assert client.spot_price() is None


def test_coingecko_sends_api_key_header() -> None:
    session = FakeSession({"gho": {"usd": 1.0}})
    client = CoinGeckoClient(
        DataSourceConfig(coingecko_api_key="demo-key", cache_ttl_seconds=0), session=session
    )

    assert client.spot_price() == 1.0
    request = session.requests[0]
    assert request["url"].endswith("/simple/price")
    assert request["headers"]["x-cg-demo-api-key"] == "demo-key"
    assert request["params"] == {"ids": "gho", "vs_currencies": "usd"}


def test_coingecko_spot_read_makes_a_single_attempt() -> None:
    session = OfflineSession(None)
    client = CoinGeckoClient(DataSourceConfig(cache_ttl_seconds=0), session=session)

    assert client.spot_price() is None
    assert len(session.requests) == 1


def test_market_chart_parses_hourly_prices(monkeypatch: pytest.MonkeyPatch) -> None:
    client = CoinGeckoClient(DataSourceConfig(cache_ttl_seconds=0))
    captured: Dict[str, Any] = {}

    def fake_request(path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        captured["path"] = path
        captured["params"] = params
        return {"prices": [[1_700_000_000_000, 0.998], [1_700_003_600_000, 1.0]]}

    monkeypatch.setattr(client, "_request", fake_request)
    points = client.market_chart(days=7)

    assert captured["path"] == "/coins/gho/market_chart"
    assert captured["params"]["days"] == 7
    assert [point.is_depegged for point in points] == [True, False]


def test_market_chart_failure_returns_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    client = CoinGeckoClient(DataSourceConfig(cache_ttl_seconds=0))

    def failing_request(path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        raise requests.Timeout("slow")

    monkeypatch.setattr(client, "_request", failing_request)
    assert client.market_chart() == []


def test_curve_reader_quotes_one_token() -> None:
    web3 = FakeWeb3({"get_dy": lambda i, j, dx: 999_100_000_000_000_000})
    pool = VenueConfig().curve_gho_usde
    reader = CurvePoolReader(VenueId.CURVE_GHO_USDE, pool, web3)

    assert reader.read_price() == pytest.approx(0.9991)
    assert web3.contract_obj.calls == [("get_dy", (1, 0, 10**18))]


def test_curve_rpc_error_reads_as_unavailable() -> None:
    def boom(i: int, j: int, dx: int) -> int:
        raise Web3Exception("execution reverted")

    reader = CurvePoolReader(VenueId.CURVE_GHO_CRVUSD, VenueConfig().curve_gho_crvusd, FakeWeb3({"get_dy": boom}))

    assert reader.read_price() is None
    assert METRICS.get("venue_read_failures_curve_gho_crvusd") == 1


def test_fluid_reader_resolves_direction_once() -> None:
    web3 = FakeWeb3(
        {
            "getPoolTokens": lambda pool: (GHO.upper().replace("0X", "0x"), USDC),
            "estimateSwapIn": lambda pool, swap0to1, amount_in, min_out: 998_700 if swap0to1 else 0,
        }
    )
    reader = FluidPoolReader(VenueConfig().fluid, web3)

    assert reader.read_price() == pytest.approx(0.9987)
    assert reader.read_price() == pytest.approx(0.9987)
    names = [name for name, _ in web3.contract_obj.calls]
    assert names.count("getPoolTokens") == 1
    assert names.count("estimateSwapIn") == 2


def test_fluid_reader_swaps_one_to_zero_when_token_is_second() -> None:
    seen: List[bool] = []

    def estimate(pool: str, swap0to1: bool, amount_in: int, min_out: int) -> int:
        seen.append(swap0to1)
        return 1_000_200

    web3 = FakeWeb3({"getPoolTokens": lambda pool: (USDC, GHO), "estimateSwapIn": estimate})
    reader = FluidPoolReader(VenueConfig().fluid, web3)

    assert reader.read_price() == pytest.approx(1.0002)
    assert seen == [False]


def test_non_finite_quote_is_discarded() -> None:
    web3 = FakeWeb3({"get_dy": lambda i, j, dx: float("nan")})
    reader = CurvePoolReader(VenueId.CURVE_GHO_USDE, VenueConfig().curve_gho_usde, web3)
    assert reader.read_price() is None


def test_build_venue_readers_honours_enable_flags() -> None:
    config = AppConfig(
        venues={
            "enable_coingecko": False,
            "curve_gho_usde": {"address": "0x670a72e6d22b0956c0d2573288f82dcc5d6e3a61", "name": "GHO/USDe", "enabled": False},
        }
    )
    web3 = FakeWeb3({})
    readers = build_venue_readers(config, web3=web3)

    assert list(readers) == [VenueId.CURVE_GHO_CRVUSD, VenueId.FLUID]
    assert build_history_source(config) is None


def test_build_venue_readers_reuses_supplied_client() -> None:
    config = AppConfig(
        venues={
            "curve_gho_crvusd": {"address": "0x635EF0056A597D13863B73825CcA297236578595", "name": "GHO/crvUSD", "enabled": False},
            "curve_gho_usde": {"address": "0x670a72e6d22b0956c0d2573288f82dcc5d6e3a61", "name": "GHO/USDe", "enabled": False},
            "fluid": {"enabled": False},
        }
    )
    client = CoinGeckoClient(config.data_sources)
    readers = build_venue_readers(config, coingecko=client)

    assert list(readers) == [VenueId.COINGECKO]
    assert isinstance(build_history_source(config), CoinGeckoClient)
