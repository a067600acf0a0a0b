"""Market data endpoints: /v2/stocks/{symbol}/trades, quotes, bars, snapshot."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Union
from urllib.parse import quote as urlquote

import pandas as pd
from alpaca.data.enums import DataFeed
from alpaca.data.timeframe import TimeFrame, TimeFrameUnit

from apca_data.models.market_data import Bar, Quote, Snapshot, Trade
from apca_data.utils import to_rfc3339, to_utc

from .base import DEFAULT_DATA_URL, Credentials, ProtocolError, RestClient
from .pagination import PagedIterator

if TYPE_CHECKING:
    from apca_data.config import DataConfig

logger = logging.getLogger(__name__)

# Largest page the historical endpoints accept
MAX_PAGE_LIMIT = 10000

TIMEFRAMES = {
    "1Min": TimeFrame(1, TimeFrameUnit.Minute),
    "5Min": TimeFrame(5, TimeFrameUnit.Minute),
    "15Min": TimeFrame(15, TimeFrameUnit.Minute),
    "1Hour": TimeFrame(1, TimeFrameUnit.Hour),
    "1H": TimeFrame(1, TimeFrameUnit.Hour),
    "1Day": TimeFrame(1, TimeFrameUnit.Day),
    "1D": TimeFrame(1, TimeFrameUnit.Day),
}


def resolve_feed(feed: Union[str, DataFeed, None]) -> Optional[DataFeed]:
    """Convert a feed name ("iex", "sip") to the SDK enum.

    Raises:
        ValueError: If the name is not a known feed
    """
    if feed is None or isinstance(feed, DataFeed):
        return feed
    try:
        return DataFeed(feed.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown data feed: {feed!r}") from None


def resolve_timeframe(timeframe: Union[str, TimeFrame]) -> TimeFrame:
    """Map "1Min", "5Min", "15Min", "1Hour", "1Day" to a TimeFrame.

    Raises:
        ValueError: If the name is not a supported timeframe
    """
    if isinstance(timeframe, TimeFrame):
        return timeframe
    try:
        return TIMEFRAMES[timeframe]
    except KeyError:
        raise ValueError(
            f"Unsupported timeframe {timeframe!r}; expected one of {sorted(TIMEFRAMES)}"
        ) from None


class MarketDataClient:
    """Fetch historical market data for one symbol at a time.

    Historical queries return a `PagedIterator`: nothing is requested until
    the caller starts iterating, and later pages are only requested as the
    caller consumes records.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = DEFAULT_DATA_URL,
        feed: Union[str, DataFeed, None] = None,
        timeout: float = 10.0,
        page_limit: Optional[int] = None,
        rest: Optional[RestClient] = None,
    ) -> None:
        """Initialise market data client.

        Args:
            api_key: Alpaca API key id
            secret_key: Alpaca secret key
            base_url: Data API root
            feed: Default feed for historical queries (None lets the API pick)
            timeout: Per-request timeout in seconds
            page_limit: Default records per page when a query gives no limit
            rest: Pre-built transport (tests inject one with a fake session)

        Raises:
            AuthenticationError: If api_key or secret_key is empty
            ValueError: If feed is unknown
        """
        self.credentials = Credentials(api_key, secret_key)
        self.feed = resolve_feed(feed)
        self.page_limit = page_limit
        self.rest = rest or RestClient(self.credentials, base_url=base_url, timeout=timeout)

    @classmethod
    def from_config(cls, config: "DataConfig") -> "MarketDataClient":
        """Build a client from a validated DataConfig."""
        return cls(
            api_key=config.api_key,
            secret_key=config.secret_key,
            base_url=config.data_url,
            feed=config.feed,
            timeout=config.timeout,
            page_limit=config.page_limit,
        )

    def get_trades(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
        feed: Union[str, DataFeed, None] = None,
    ) -> PagedIterator[Trade]:
        """Historical trades for symbol within [start, end], oldest first."""
        return self._paged(symbol, "trades", Trade.from_dict, start, end, limit, feed)

    def get_quotes(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
        feed: Union[str, DataFeed, None] = None,
    ) -> PagedIterator[Quote]:
        """Historical quotes for symbol within [start, end], oldest first."""
        return self._paged(symbol, "quotes", Quote.from_dict, start, end, limit, feed)

    def get_bars(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
        timeframe: Union[str, TimeFrame] = "1Min",
        feed: Union[str, DataFeed, None] = None,
    ) -> PagedIterator[Bar]:
        """Historical bars for symbol within [start, end], oldest first.

        Args:
            symbol: Stock symbol
            start: Start time (naive values are taken as UTC)
            end: End time, after start
            limit: Max records per page (1..10000)
            timeframe: "1Min", "5Min", "15Min", "1Hour", "1Day" or a TimeFrame
            feed: Overrides the client's default feed
        """
        tf = resolve_timeframe(timeframe)
        return self._paged(
            symbol, "bars", Bar.from_dict, start, end, limit, feed, {"timeframe": tf.value}
        )

    def get_bars_df(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: Union[str, TimeFrame] = "1Min",
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        """Fetch every bar in range into a DataFrame.

        Returns:
            DataFrame with columns: open, high, low, close, volume, trade_count, vwap
            indexed by bar timestamp (empty if there are no bars)
        """
        bars = self.get_bars(symbol, start, end, limit=limit, timeframe=timeframe).to_list()
        return bars_to_dataframe(bars)

    def get_latest_trade(self, symbol: str, feed: Union[str, DataFeed, None] = None) -> Trade:
        """Most recent trade for symbol."""
        payload = self._get_latest(symbol, "trades", feed)
        return self._decode_single(payload, "trade", Trade.from_dict, symbol)

    def get_latest_quote(self, symbol: str, feed: Union[str, DataFeed, None] = None) -> Quote:
        """Most recent quote for symbol."""
        payload = self._get_latest(symbol, "quotes", feed)
        return self._decode_single(payload, "quote", Quote.from_dict, symbol)

    def get_snapshot(self, symbol: str, feed: Union[str, DataFeed, None] = None) -> Snapshot:
        """Latest trade, latest quote, minute bar, daily bar and previous daily bar."""
        symbol = self._normalise_symbol(symbol)
        payload = self.rest.get(
            f"/v2/stocks/{urlquote(symbol, safe='')}/snapshot",
            params={"feed": self._feed_param(feed)},
        )
        try:
            return Snapshot.from_dict(payload, symbol=symbol)
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed snapshot for {symbol}: {e}") from e

    def close(self) -> None:
        self.rest.close()

    def _paged(
        self,
        symbol: str,
        records_key: str,
        decode: Any,
        start: datetime,
        end: datetime,
        limit: Optional[int],
        feed: Union[str, DataFeed, None],
        extra: Optional[dict[str, Any]] = None,
    ) -> PagedIterator:
        symbol = self._normalise_symbol(symbol)
        if limit is None:
            limit = self.page_limit
        if to_utc(end) <= to_utc(start):
            raise ValueError(f"end ({end}) must be after start ({start})")
        if limit is not None and not 1 <= limit <= MAX_PAGE_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_LIMIT}, got {limit}")

        path = f"/v2/stocks/{urlquote(symbol, safe='')}/{records_key}"
        params: dict[str, Any] = {
            "start": to_rfc3339(start),
            "end": to_rfc3339(end),
            "limit": limit,
            "feed": self._feed_param(feed),
            **(extra or {}),
        }

        def fetch_page(token: Optional[str]) -> dict[str, Any]:
            return self.rest.get(path, params={**params, "page_token": token})

        logger.info(f"Historical {records_key} query: {symbol} {params['start']} -> {params['end']}")
        return PagedIterator(fetch_page, records_key, decode)

    def _get_latest(
        self, symbol: str, kind: str, feed: Union[str, DataFeed, None]
    ) -> dict[str, Any]:
        symbol = self._normalise_symbol(symbol)
        return self.rest.get(
            f"/v2/stocks/{urlquote(symbol, safe='')}/{kind}/latest",
            params={"feed": self._feed_param(feed)},
        )

    @staticmethod
    def _decode_single(payload: dict[str, Any], key: str, decode: Any, symbol: str) -> Any:
        raw = payload.get(key)
        if not isinstance(raw, dict):
            raise ProtocolError(f"No {key} in response for {symbol}")
        try:
            return decode(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed {key} for {symbol}: {e}") from e

    def _feed_param(self, feed: Union[str, DataFeed, None]) -> Optional[str]:
        resolved = resolve_feed(feed) or self.feed
        return resolved.value if resolved is not None else None

    @staticmethod
    def _normalise_symbol(symbol: str) -> str:
        normalised = symbol.strip().upper()
        if not normalised:
            raise ValueError("symbol is required")
        return normalised


def bars_to_dataframe(bars: list[Bar]) -> pd.DataFrame:
    """Bars as a DataFrame indexed by timestamp."""
    columns = ["open", "high", "low", "close", "volume", "trade_count", "vwap"]
    if not bars:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame(
        [
            {
                "open": b.open,
                "high": b.high,
                "low": b.low,
                "close": b.close,
                "volume": b.volume,
                "trade_count": b.trade_count,
                "vwap": b.vwap,
            }
            for b in bars
        ]
    )
    df.index = pd.DatetimeIndex([b.timestamp for b in bars], name="timestamp")
    return df
