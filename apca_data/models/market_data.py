"""Market data records: trades, quotes, bars and snapshots.

Records are decoded from the compact keys used by both the historical
endpoints and the realtime feed. Decoding is forward compatible: unknown
keys are ignored and `null` condition lists become empty lists.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import pandas as pd

from apca_data.utils import (
    as_list,
    parse_float,
    parse_optional_float,
    parse_optional_int,
    parse_timestamp,
)


class Exchange(Enum):
    """Exchange codes reported in the `x`, `ax` and `bx` fields."""

    AMEX = "A"
    NASDAQ_OMX_BX = "B"
    NATIONAL_STOCK_EXCHANGE = "C"
    FINRA_ADF = "D"
    MARKET_INDEPENDENT = "E"
    MIAX = "H"
    INTERNATIONAL_SECURITIES_EXCHANGE = "I"
    CBOE_EDGA = "J"
    CBOE_EDGX = "K"
    LONG_TERM_STOCK_EXCHANGE = "L"
    CHICAGO_STOCK_EXCHANGE = "M"
    NEW_YORK_STOCK_EXCHANGE = "N"
    NYSE_ARCA = "P"
    NASDAQ_OMX = "Q"
    NASDAQ_SMALL_CAP = "S"
    NASDAQ_INT = "T"
    MEMBERS_EXCHANGE = "U"
    IEX = "V"
    CBOE = "W"
    NASDAQ_OMX_PSX = "X"
    CBOE_BYX = "Y"
    CBOE_BZX = "Z"

    @classmethod
    def from_code(cls, code: Optional[str]) -> Optional["Exchange"]:
        """Look up an exchange by code, returning None for unknown codes."""
        if not code:
            return None
        try:
            return cls(code)
        except ValueError:
            return None


@dataclass(frozen=True)
class Trade:
    """A single trade print."""

    timestamp: pd.Timestamp
    price: float
    size: int
    exchange_code: str = ""
    trade_id: Optional[int] = None
    conditions: tuple[str, ...] = ()
    tape: str = ""

    @property
    def exchange(self) -> Optional[Exchange]:
        return Exchange.from_code(self.exchange_code)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trade":
        """Decode a trade from its wire representation.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        return cls(
            timestamp=parse_timestamp(data.get("t")),
            price=parse_float(data.get("p"), "p"),
            size=int(parse_float(data.get("s"), "s")),
            exchange_code=str(data.get("x") or ""),
            trade_id=parse_optional_int(data.get("i")),
            conditions=tuple(str(c) for c in as_list(data.get("c"))),
            tape=str(data.get("z") or ""),
        )


@dataclass(frozen=True)
class Quote:
    """A top-of-book quote (NBBO for SIP, IEX book for IEX)."""

    timestamp: pd.Timestamp
    bid_price: float
    bid_size: int
    ask_price: float
    ask_size: int
    bid_exchange_code: str = ""
    ask_exchange_code: str = ""
    conditions: tuple[str, ...] = ()
    tape: str = ""

    @property
    def bid_exchange(self) -> Optional[Exchange]:
        return Exchange.from_code(self.bid_exchange_code)

    @property
    def ask_exchange(self) -> Optional[Exchange]:
        return Exchange.from_code(self.ask_exchange_code)

    @property
    def spread(self) -> float:
        return self.ask_price - self.bid_price

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Quote":
        """Decode a quote from its wire representation.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        return cls(
            timestamp=parse_timestamp(data.get("t")),
            bid_price=parse_float(data.get("bp"), "bp"),
            bid_size=int(parse_float(data.get("bs"), "bs")),
            ask_price=parse_float(data.get("ap"), "ap"),
            ask_size=int(parse_float(data.get("as"), "as")),
            bid_exchange_code=str(data.get("bx") or ""),
            ask_exchange_code=str(data.get("ax") or ""),
            conditions=tuple(str(c) for c in as_list(data.get("c"))),
            tape=str(data.get("z") or ""),
        )


@dataclass(frozen=True)
class Bar:
    """An OHLCV bar over one timeframe interval."""

    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float
    trade_count: Optional[int] = None
    vwap: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bar":
        """Decode a bar from its wire representation.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        return cls(
            timestamp=parse_timestamp(data.get("t")),
            open=parse_float(data.get("o"), "o"),
            high=parse_float(data.get("h"), "h"),
            low=parse_float(data.get("l"), "l"),
            close=parse_float(data.get("c"), "c"),
            volume=parse_float(data.get("v"), "v"),
            trade_count=parse_optional_int(data.get("n")),
            vwap=parse_optional_float(data.get("vw")),
        )


@dataclass(frozen=True)
class Snapshot:
    """Latest trade, latest quote and recent bars for one symbol."""

    symbol: str
    latest_trade: Optional[Trade] = None
    latest_quote: Optional[Quote] = None
    minute_bar: Optional[Bar] = None
    daily_bar: Optional[Bar] = None
    prev_daily_bar: Optional[Bar] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], symbol: str = "") -> "Snapshot":
        """Decode a snapshot payload.

        Each part is optional; the API omits or nulls parts it has no data
        for (e.g. a symbol that has not traded today has no daily bar).
        """

        def _part(key: str, decoder: Any) -> Any:
            raw = data.get(key)
            return decoder(raw) if raw else None

        return cls(
            symbol=str(data.get("symbol") or symbol),
            latest_trade=_part("latestTrade", Trade.from_dict),
            latest_quote=_part("latestQuote", Quote.from_dict),
            minute_bar=_part("minuteBar", Bar.from_dict),
            daily_bar=_part("dailyBar", Bar.from_dict),
            prev_daily_bar=_part("prevDailyBar", Bar.from_dict),
        )
