"""Value types for historical records and realtime messages."""

from apca_data.models.market_data import Bar, Exchange, Quote, Snapshot, Trade
from apca_data.models.messages import (
    BarMessage,
    ErrorMessage,
    MessageType,
    QuoteMessage,
    RealtimeErrorCode,
    RealtimeMessage,
    SubscriptionMessage,
    SubscriptionRequest,
    SuccessMessage,
    TradeMessage,
)

__all__ = [
    "Bar",
    "BarMessage",
    "ErrorMessage",
    "Exchange",
    "MessageType",
    "Quote",
    "QuoteMessage",
    "RealtimeErrorCode",
    "RealtimeMessage",
    "Snapshot",
    "SubscriptionMessage",
    "SubscriptionRequest",
    "SuccessMessage",
    "Trade",
    "TradeMessage",
]
