"""Alpaca Data API v2 REST clients."""

from .base import (
    AlpacaDataClientError,
    AuthenticationError,
    Credentials,
    ProtocolError,
    RestClient,
    TransportError,
)
from .market_data import MarketDataClient, bars_to_dataframe
from .pagination import PagedIterator

__all__ = [
    "AlpacaDataClientError",
    "AuthenticationError",
    "Credentials",
    "MarketDataClient",
    "PagedIterator",
    "ProtocolError",
    "RestClient",
    "TransportError",
    "bars_to_dataframe",
]
