"""On-chain pool quotes over Ethereum JSON-RPC.

Both readers quote a swap of one whole unit of the monitored asset into the
pool's stable leg and report the output amount as the price.
"""

from __future__ import annotations

from typing import Optional

from web3 import Web3
from web3.exceptions import Web3Exception

from ..config.settings import CurvePoolConfig, DataSourceConfig, FluidPoolConfig, get_app_config
from ..datalake.schemas import VenueId
from .base import VenuePriceReader

ONE_TOKEN = 10**18

CURVE_POOL_ABI = [
    {
        "stateMutability": "view",
        "type": "function",
        "name": "get_dy",
        "inputs": [
            {"name": "i", "type": "int128"},
            {"name": "j", "type": "int128"},
            {"name": "dx", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]

FLUID_RESOLVER_ABI = [
    {
        "stateMutability": "view",
        "type": "function",
        "name": "estimateSwapIn",
        "inputs": [
            {"name": "dex_", "type": "address"},
            {"name": "swap0to1_", "type": "bool"},
            {"name": "amountIn_", "type": "uint256"},
            {"name": "amountOutMin_", "type": "uint256"},
        ],
        "outputs": [{"name": "amountOut_", "type": "uint256"}],
    },
    {
        "stateMutability": "view",
        "type": "function",
        "name": "getPoolTokens",
        "inputs": [{"name": "pool_", "type": "address"}],
        "outputs": [
            {"name": "token0_", "type": "address"},
            {"name": "token1_", "type": "address"},
        ],
    },
]


def build_web3(config: Optional[DataSourceConfig] = None) -> Web3:
    cfg = config or get_app_config().data_sources
    provider = Web3.HTTPProvider(
        str(cfg.ethereum_rpc_url),
        request_kwargs={"timeout": cfg.http_timeout},
    )
    return Web3(provider)


class _OnChainReader(VenuePriceReader):
    recoverable_errors = VenuePriceReader.recoverable_errors + (Web3Exception,)


class CurvePoolReader(_OnChainReader):
    """Quotes ``get_dy(asset, stable, 1e18)`` on a Curve stableswap pool."""

    def __init__(self, venue: VenueId, pool: CurvePoolConfig, web3: Web3) -> None:
        super().__init__(venue)
        self._pool = pool
        self._contract = web3.eth.contract(
            address=Web3.to_checksum_address(pool.address), abi=CURVE_POOL_ABI
        )

    def _fetch_price(self) -> Optional[float]:
        amount_out = self._contract.functions.get_dy(
            self._pool.asset_index, self._pool.stable_index, ONE_TOKEN
        ).call()
        return int(amount_out) / ONE_TOKEN


class FluidPoolReader(_OnChainReader):
    """Quotes a Fluid DEX pool through the reserves resolver.

    The swap direction depends on whether the monitored token is ``token0``;
    the pool's token order never changes so it is resolved once.
    """

    def __init__(self, pool: FluidPoolConfig, web3: Web3, venue: VenueId = VenueId.FLUID) -> None:
        super().__init__(venue)
        self._config = pool
        self._pool_address = Web3.to_checksum_address(pool.pool)
        self._resolver = web3.eth.contract(
            address=Web3.to_checksum_address(pool.reserves_resolver), abi=FLUID_RESOLVER_ABI
        )
        self._swap0to1: Optional[bool] = None

    def _resolve_direction(self) -> bool:
        if self._swap0to1 is None:
            token0, _token1 = self._resolver.functions.getPoolTokens(self._pool_address).call()
            self._swap0to1 = str(token0).lower() == self._config.token.lower()
        return self._swap0to1

    def _fetch_price(self) -> Optional[float]:
        swap0to1 = self._resolve_direction()
        amount_out = self._resolver.functions.estimateSwapIn(
            self._pool_address, swap0to1, self._config.amount_in, 0
        ).call()
        units_in = self._config.amount_in / ONE_TOKEN
        return (int(amount_out) / (10**self._config.amount_out_decimals)) / units_in


__all__ = [
    "CURVE_POOL_ABI",
    "CurvePoolReader",
    "FLUID_RESOLVER_ABI",
    "FluidPoolReader",
    "build_web3",
]
