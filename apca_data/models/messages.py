"""Realtime feed messages (server to client) and actions (client to server).

Every frame the server sends is a JSON array of objects tagged by `T`:

    [{"T": "success", "msg": "connected"}]
    [{"T": "t", "S": "AAPL", "p": 126.55, ...}, {"T": "q", "S": "AMD", ...}]

Control messages (success, error, subscription) always arrive alone; data
points may be batched. Each object decodes into exactly one
`RealtimeMessage`. Anything that cannot be decoded (bad JSON, an unknown
`T`, a data point missing required fields) becomes an `ErrorMessage`
carrying the raw payload, so the caller sees it instead of losing it.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, ClassVar, Iterable, Optional, Union

from apca_data.models.market_data import Bar, Quote, Trade
from apca_data.utils import as_list

logger = logging.getLogger(__name__)


class MessageType(Enum):
    """Values of the `T` discriminator."""

    TRADE = "t"
    QUOTE = "q"
    BAR = "b"
    DAILY_BAR = "d"
    UPDATED_BAR = "u"
    SUBSCRIPTION = "subscription"
    SUCCESS = "success"
    ERROR = "error"


class RealtimeErrorCode(IntEnum):
    """Error codes the realtime server reports in `error` messages."""

    INVALID_SYNTAX = 400
    NOT_AUTHENTICATED = 401
    AUTH_FAILED = 402
    ALREADY_AUTHENTICATED = 403
    AUTH_TIMEOUT = 404
    SYMBOL_LIMIT_EXCEEDED = 405
    CONNECTION_LIMIT_EXCEEDED = 406
    SLOW_CLIENT = 407
    V2_NOT_ENABLED = 408
    INSUFFICIENT_SUBSCRIPTION = 409
    INTERNAL_ERROR = 500


# Codes that mean the credentials (not the request) are the problem
AUTH_ERROR_CODES = frozenset(
    {
        RealtimeErrorCode.NOT_AUTHENTICATED,
        RealtimeErrorCode.AUTH_FAILED,
        RealtimeErrorCode.AUTH_TIMEOUT,
        RealtimeErrorCode.CONNECTION_LIMIT_EXCEEDED,
    }
)


@dataclass(frozen=True)
class RealtimeMessage:
    """Base class for everything the realtime stream yields."""

    message_type: ClassVar[MessageType]


@dataclass(frozen=True)
class TradeMessage(RealtimeMessage):
    message_type: ClassVar[MessageType] = MessageType.TRADE

    symbol: str
    trade: Trade


@dataclass(frozen=True)
class QuoteMessage(RealtimeMessage):
    message_type: ClassVar[MessageType] = MessageType.QUOTE

    symbol: str
    quote: Quote


@dataclass(frozen=True)
class BarMessage(RealtimeMessage):
    """Minute, daily or updated bar; `kind` tells which."""

    message_type: ClassVar[MessageType] = MessageType.BAR

    symbol: str
    bar: Bar
    kind: MessageType = MessageType.BAR


@dataclass(frozen=True)
class SubscriptionMessage(RealtimeMessage):
    """Server acknowledgment listing the full set of active subscriptions."""

    message_type: ClassVar[MessageType] = MessageType.SUBSCRIPTION

    trades: tuple[str, ...] = ()
    quotes: tuple[str, ...] = ()
    bars: tuple[str, ...] = ()
    daily_bars: tuple[str, ...] = ()
    updated_bars: tuple[str, ...] = ()


@dataclass(frozen=True)
class SuccessMessage(RealtimeMessage):
    """Control notice, e.g. `connected` or `authenticated`."""

    message_type: ClassVar[MessageType] = MessageType.SUCCESS

    message: str


@dataclass(frozen=True)
class ErrorMessage(RealtimeMessage):
    """Server-reported error, or a payload this client could not decode.

    `code` is None for local decode failures.
    """

    message_type: ClassVar[MessageType] = MessageType.ERROR

    code: Optional[int]
    message: str
    raw: Any = None

    @property
    def error_code(self) -> Optional[RealtimeErrorCode]:
        if self.code is None:
            return None
        try:
            return RealtimeErrorCode(self.code)
        except ValueError:
            return None

    @property
    def is_decode_error(self) -> bool:
        return self.code is None


# Wire channel names, keyed by SubscriptionRequest attribute
CHANNELS = {
    "trades": "trades",
    "quotes": "quotes",
    "bars": "bars",
    "daily_bars": "dailyBars",
    "updated_bars": "updatedBars",
}


def _symbols(values: Union[str, Iterable[str]]) -> tuple[str, ...]:
    if isinstance(values, str):
        values = [values]
    seen: list[str] = []
    for value in values:
        symbol = str(value).strip().upper()
        if symbol and symbol not in seen:
            seen.append(symbol)
    return tuple(seen)


@dataclass(frozen=True)
class SubscriptionRequest:
    """Symbols per channel for a subscribe or unsubscribe action.

    `"*"` subscribes to every symbol on that channel.
    """

    trades: tuple[str, ...] = ()
    quotes: tuple[str, ...] = ()
    bars: tuple[str, ...] = ()
    daily_bars: tuple[str, ...] = ()
    updated_bars: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept any iterable of symbols; normalise to upper-case tuples
        for attr in CHANNELS:
            object.__setattr__(self, attr, _symbols(getattr(self, attr)))

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, attr) for attr in CHANNELS)

    def to_action(self, action: str) -> dict[str, Any]:
        """Build the `subscribe`/`unsubscribe` payload.

        Channels without symbols are omitted, as the server expects.

        Raises:
            ValueError: If no channel names any symbol
        """
        if action not in ("subscribe", "unsubscribe"):
            raise ValueError(f"Unsupported action: {action}")
        if self.is_empty:
            raise ValueError("Subscription request must name at least one symbol")
        payload: dict[str, Any] = {"action": action}
        for attr, wire_name in CHANNELS.items():
            symbols = getattr(self, attr)
            if symbols:
                payload[wire_name] = list(symbols)
        return payload

    def merge(self, other: "SubscriptionRequest") -> "SubscriptionRequest":
        """Union of both requests, channel by channel."""
        return SubscriptionRequest(
            **{attr: getattr(self, attr) + getattr(other, attr) for attr in CHANNELS}
        )

    def subtract(self, other: "SubscriptionRequest") -> "SubscriptionRequest":
        """Symbols in this request that `other` does not name."""
        return SubscriptionRequest(
            **{
                attr: [s for s in getattr(self, attr) if s not in getattr(other, attr)]
                for attr in CHANNELS
            }
        )


def auth_action(key_id: str, secret_key: str) -> dict[str, str]:
    return {"action": "auth", "key": key_id, "secret": secret_key}


def encode_action(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


_BAR_KINDS = {MessageType.BAR, MessageType.DAILY_BAR, MessageType.UPDATED_BAR}


def decode_message(data: Any) -> RealtimeMessage:
    """Decode one message object. Never raises."""
    if not isinstance(data, dict):
        return ErrorMessage(code=None, message="message is not an object", raw=data)

    tag = data.get("T")
    try:
        message_type = MessageType(tag)
    except ValueError:
        return ErrorMessage(code=None, message=f"unknown message type: {tag!r}", raw=data)

    try:
        if message_type is MessageType.TRADE:
            return TradeMessage(symbol=str(data["S"]), trade=Trade.from_dict(data))
        if message_type is MessageType.QUOTE:
            return QuoteMessage(symbol=str(data["S"]), quote=Quote.from_dict(data))
        if message_type in _BAR_KINDS:
            return BarMessage(symbol=str(data["S"]), bar=Bar.from_dict(data), kind=message_type)
        if message_type is MessageType.SUBSCRIPTION:
            return SubscriptionMessage(
                **{
                    attr: tuple(str(s) for s in as_list(data.get(wire_name)))
                    for attr, wire_name in CHANNELS.items()
                }
            )
        if message_type is MessageType.SUCCESS:
            return SuccessMessage(message=str(data.get("msg", "")))
        return ErrorMessage(
            code=int(data["code"]) if data.get("code") is not None else None,
            message=str(data.get("msg", "")),
            raw=data,
        )
    except (KeyError, TypeError, ValueError) as e:
        return ErrorMessage(
            code=None, message=f"malformed {message_type.name.lower()} message: {e}", raw=data
        )


def decode_frame(frame: Union[str, bytes]) -> list[RealtimeMessage]:
    """Decode one websocket frame into its messages, in order."""
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            return [ErrorMessage(code=None, message=f"undecodable frame: {e}", raw=frame)]

    try:
        payload = json.loads(frame)
    except ValueError as e:
        logger.warning(f"Malformed realtime frame: {e}")
        return [ErrorMessage(code=None, message=f"malformed JSON: {e}", raw=frame)]

    if isinstance(payload, list):
        return [decode_message(item) for item in payload]
    return [decode_message(payload)]
