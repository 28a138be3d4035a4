"""Builds the venue reader registry from configuration."""

from __future__ import annotations

from typing import Dict, Optional

import requests
from web3 import Web3

from ..config.settings import AppConfig, get_app_config
from ..datalake.schemas import VenueId
from ..monitoring.logger import get_logger
from .base import VenuePriceReader
from .coingecko_api import CoinGeckoClient, CoinGeckoPriceReader
from .onchain import CurvePoolReader, FluidPoolReader, build_web3

_LOGGER = get_logger(__name__)


def build_venue_readers(
    config: Optional[AppConfig] = None,
    *,
    session: Optional[requests.Session] = None,
    web3: Optional[Web3] = None,
    coingecko: Optional[CoinGeckoClient] = None,
) -> Dict[VenueId, VenuePriceReader]:
    """Instantiate one reader per enabled venue, in ``VenueId`` order."""

    app_config = config or get_app_config()
    venues = app_config.venues
    readers: Dict[VenueId, VenuePriceReader] = {}

    if venues.enable_coingecko:
        client = coingecko or CoinGeckoClient(app_config.data_sources, session=session)
        readers[VenueId.COINGECKO] = CoinGeckoPriceReader(client)

    curve_pools = (
        (VenueId.CURVE_GHO_CRVUSD, venues.curve_gho_crvusd),
        (VenueId.CURVE_GHO_USDE, venues.curve_gho_usde),
    )
    needs_chain = venues.fluid.enabled or any(pool.enabled for _, pool in curve_pools)
    chain = web3 or (build_web3(app_config.data_sources) if needs_chain else None)
    for venue, pool in curve_pools:
        if pool.enabled:
            readers[venue] = CurvePoolReader(venue, pool, chain)
    if venues.fluid.enabled:
        readers[VenueId.FLUID] = FluidPoolReader(venues.fluid, chain)

    _LOGGER.info("Venue readers ready: %s", ", ".join(venue.value for venue in readers))
    return readers


def build_history_source(
    config: Optional[AppConfig] = None,
    *,
    session: Optional[requests.Session] = None,
) -> Optional[CoinGeckoClient]:
    app_config = config or get_app_config()
    if not app_config.venues.enable_coingecko:
        return None
    return CoinGeckoClient(app_config.data_sources, session=session)


__all__ = ["build_history_source", "build_venue_readers"]
