"""Client for Alpaca's Data API v2.

Two independent components:

- `MarketDataClient`: historical trades, quotes and bars, fetched lazily
  page by page, plus latest trade/quote and snapshots.
- `RealtimeSession`: one WebSocket connection to the realtime feed with
  subscribe/unsubscribe and an ordered stream of decoded messages.
"""

from apca_data.alpaca_api import (
    AlpacaDataClientError,
    AuthenticationError,
    Credentials,
    MarketDataClient,
    PagedIterator,
    ProtocolError,
    TransportError,
)
from apca_data.models import (
    Bar,
    BarMessage,
    ErrorMessage,
    Exchange,
    Quote,
    QuoteMessage,
    RealtimeErrorCode,
    RealtimeMessage,
    Snapshot,
    SubscriptionMessage,
    SubscriptionRequest,
    SuccessMessage,
    Trade,
    TradeMessage,
)
from apca_data.stream import RealtimeSession, StreamError

__version__ = "0.1.0"

__all__ = [
    "AlpacaDataClientError",
    "AuthenticationError",
    "Bar",
    "BarMessage",
    "Credentials",
    "ErrorMessage",
    "Exchange",
    "MarketDataClient",
    "PagedIterator",
    "ProtocolError",
    "Quote",
    "QuoteMessage",
    "RealtimeErrorCode",
    "RealtimeMessage",
    "RealtimeSession",
    "Snapshot",
    "StreamError",
    "SubscriptionMessage",
    "SubscriptionRequest",
    "SuccessMessage",
    "Trade",
    "TradeMessage",
    "TransportError",
]
