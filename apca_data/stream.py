"""Realtime market data over WebSocket.

This module owns:
- Connecting to the realtime endpoint for one feed (iex or sip)
- The connect/auth handshake
- Subscribe/unsubscribe with server acknowledgment
- Delivering every received message, decoded and in order, to the caller

    MUST NOT:
    - Reconnect or retry (a closed session stays closed)
    - Drop or filter message types (the caller decides what to ignore)

After the handshake a single reader task owns the receive side of the
socket. It pushes decoded messages onto a queue that `stream()` drains, and
resolves the acknowledgment a pending `subscribe()` is waiting for.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional, Union

from alpaca.data.enums import DataFeed
from websockets import connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from apca_data.alpaca_api.base import (
    AlpacaDataClientError,
    AuthenticationError,
    Credentials,
    ProtocolError,
    TransportError,
)
from apca_data.alpaca_api.market_data import resolve_feed
from apca_data.models.messages import (
    AUTH_ERROR_CODES,
    ErrorMessage,
    RealtimeMessage,
    SubscriptionMessage,
    SubscriptionRequest,
    SuccessMessage,
    auth_action,
    decode_frame,
    encode_action,
)

if TYPE_CHECKING:
    from apca_data.config import DataConfig

logger = logging.getLogger(__name__)

DEFAULT_STREAM_URL = "wss://stream.data.alpaca.markets"


class StreamError(AlpacaDataClientError):
    """Raised when the session is used out of order (e.g. before connect)."""

    pass


class _Closed:
    """Queue sentinel marking the end of the connection."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error


class RealtimeSession:
    """One authenticated WebSocket connection to the realtime data feed."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        feed: Union[str, DataFeed] = "iex",
        stream_url: str = DEFAULT_STREAM_URL,
        handshake_timeout: Optional[float] = 10.0,
        ack_timeout: Optional[float] = 10.0,
    ) -> None:
        """Initialise session. Nothing is opened until `connect()`.

        Args:
            api_key: Alpaca API key id
            secret_key: Alpaca secret key
            feed: "iex" (free) or "sip" (paid)
            stream_url: Realtime endpoint root
            handshake_timeout: Seconds allowed for connect + auth (None waits forever)
            ack_timeout: Seconds to wait for a subscription ack (None waits forever)
        """
        self.credentials = Credentials(api_key, secret_key)
        self.feed: DataFeed = resolve_feed(feed) or DataFeed.IEX
        self.url = f"{stream_url.rstrip('/')}/v2/{self.feed.value}"
        self.handshake_timeout = handshake_timeout
        self.ack_timeout = ack_timeout

        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending_ack: Optional[asyncio.Future] = None
        # subscribe/unsubscribe actions sent and not yet answered
        self._outstanding = 0
        self._streaming = False

        # State
        self.authenticated = False
        self.closed = False
        self.messages_received = 0

        # Last state this client asked for, and the last state the server reported
        self.requested = SubscriptionRequest()
        self.acknowledged: Optional[SubscriptionMessage] = None

    @classmethod
    def from_config(cls, config: "DataConfig") -> "RealtimeSession":
        """Build a session from a validated DataConfig."""
        return cls(
            api_key=config.api_key,
            secret_key=config.secret_key,
            feed=config.feed,
            stream_url=config.stream_url,
            handshake_timeout=config.timeout,
            ack_timeout=config.timeout,
        )

    async def __aenter__(self) -> "RealtimeSession":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the socket and authenticate.

        Raises:
            StreamError: If the session was already connected or closed
            TransportError: If the connection cannot be opened or drops
            AuthenticationError: If the server rejects the credentials
            ProtocolError: If the server answers the handshake unexpectedly
        """
        if self.closed:
            raise StreamError("Session is closed; create a new session to reconnect")
        if self._ws is not None:
            raise StreamError("Session is already connected")

        logger.info(f"Connecting to realtime feed {self.url}")
        try:
            self._ws = await asyncio.wait_for(
                connect(self.url, ping_interval=20, ping_timeout=10),
                timeout=self.handshake_timeout,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self.closed = True
            raise TransportError(f"Failed to connect to {self.url}: {e}") from e

        try:
            await asyncio.wait_for(self._handshake(), timeout=self.handshake_timeout)
        except asyncio.TimeoutError as e:
            await self._abort()
            raise TransportError("Realtime handshake timed out") from e
        except AlpacaDataClientError:
            await self._abort()
            raise

        self.authenticated = True
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Realtime feed authenticated ({self.feed.value})")

    async def subscribe(self, request: SubscriptionRequest) -> SubscriptionMessage:
        """Add subscriptions and wait for the server's acknowledgment.

        The ack lists everything the server now has active for this session
        and is returned as-is, even if it differs from what was asked. A late
        reply to an earlier change that timed out is never mistaken for this
        change's ack; it still appears in `stream()`.

        Raises:
            ValueError: If the request names no symbols
            StreamError: Before the handshake, after close, or while another
                subscription change is awaiting its ack
            ProtocolError: If the server reports an error or does not ack in time
            TransportError: If the connection has closed or drops before the ack
        """
        return await self._change_subscription("subscribe", request)

    async def unsubscribe(self, request: SubscriptionRequest) -> SubscriptionMessage:
        """Remove subscriptions and wait for the server's acknowledgment."""
        return await self._change_subscription("unsubscribe", request)

    async def stream(self) -> AsyncIterator[RealtimeMessage]:
        """Yield every message received on the connection, in order.

        Includes subscription acks, success notices and errors (both
        server-reported and undecodable payloads). Ends when the connection
        closes cleanly; raises TransportError after the last received
        message if it drops. Leaving the loop early closes the session.

        Raises:
            StreamError: If the session is not connected, already closed,
                or already being streamed
            TransportError: If the connection fails
        """
        if self.closed:
            raise StreamError("Session is closed; create a new session to reconnect")
        if self._reader is None:
            raise StreamError("stream() called before connect()")
        if self._streaming:
            raise StreamError("stream() is already being consumed")

        self._streaming = True
        try:
            while True:
                item = await self._queue.get()
                if isinstance(item, _Closed):
                    if item.error is not None:
                        raise item.error
                    return
                yield item
        finally:
            self._streaming = False
            await self.close()

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.authenticated = False

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception:
                logger.exception("Failed closing realtime connection")

        logger.info(f"Realtime session closed ({self.messages_received} messages received)")

    async def _handshake(self) -> None:
        welcome = await self._recv_control()
        if not (isinstance(welcome, SuccessMessage) and welcome.message == "connected"):
            raise self._handshake_error(welcome, "connect")

        # The auth payload carries the secret: never log it
        await self._send(auth_action(self.credentials.key_id, self.credentials.secret_key))

        reply = await self._recv_control()
        if not (isinstance(reply, SuccessMessage) and reply.message == "authenticated"):
            raise self._handshake_error(reply, "auth")

    async def _recv_control(self) -> RealtimeMessage:
        try:
            frame = await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed during handshake: {e}") from e

        messages = decode_frame(frame)
        if not messages:
            raise ProtocolError("Empty frame during handshake")
        for message in messages:
            self._deliver(message)
        # Control messages always arrive alone
        return messages[0]

    @staticmethod
    def _handshake_error(message: RealtimeMessage, step: str) -> AlpacaDataClientError:
        if isinstance(message, ErrorMessage) and message.code in AUTH_ERROR_CODES:
            return AuthenticationError(
                f"Realtime {step} rejected: {message.code} {message.message}"
            )
        if isinstance(message, ErrorMessage):
            return ProtocolError(
                f"Realtime {step} failed: {message.code} {message.message}",
                status_code=message.code,
            )
        return ProtocolError(f"Unexpected message during realtime {step}: {message!r}")

    async def _change_subscription(
        self, action: str, request: SubscriptionRequest
    ) -> SubscriptionMessage:
        if self.closed:
            raise StreamError("Session is closed; create a new session to reconnect")
        if self._reader is not None and self._reader.done():
            raise TransportError("Connection closed")
        if not self.authenticated:
            raise StreamError(f"{action} called before the connection handshake completed")
        payload = request.to_action(action)
        if self._pending_ack is not None:
            raise StreamError("Another subscription change is awaiting acknowledgment")

        self._pending_ack = asyncio.get_running_loop().create_future()
        self._outstanding += 1
        try:
            await self._send(payload)
            if action == "subscribe":
                self.requested = self.requested.merge(request)
            else:
                self.requested = self.requested.subtract(request)
            logger.info(f"Sent {action}: {payload}")
            ack: SubscriptionMessage = await asyncio.wait_for(
                self._pending_ack, timeout=self.ack_timeout
            )
        except asyncio.TimeoutError as e:
            raise ProtocolError(f"No acknowledgment for {action} within {self.ack_timeout}s") from e
        finally:
            self._pending_ack = None
        return ack

    async def _send(self, payload: dict[str, Any]) -> None:
        try:
            await self._ws.send(encode_action(payload))
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed while sending {payload['action']}") from e

    async def _read_loop(self) -> None:
        failure: Optional[Exception] = None
        try:
            while True:
                frame = await self._ws.recv()
                for message in decode_frame(frame):
                    self._deliver(message)
        except ConnectionClosedOK:
            logger.info("Realtime connection closed by server")
        except ConnectionClosed as e:
            failure = TransportError(f"Realtime connection lost: {e}")
            logger.error(f"Realtime connection lost: {e}")
        except Exception as e:
            failure = TransportError(f"Realtime reader failed: {e}")
            logger.exception("Realtime reader failed")
        finally:
            self.authenticated = False
            pending = self._pending_ack
            if pending is not None and not pending.done():
                pending.set_exception(
                    failure or TransportError("Connection closed before acknowledgment")
                )
            self._queue.put_nowait(_Closed(failure))

    def _deliver(self, message: RealtimeMessage) -> None:
        self.messages_received += 1
        self._on_message(message)
        self._queue.put_nowait(message)

    def _on_message(self, message: RealtimeMessage) -> None:
        if isinstance(message, SubscriptionMessage):
            self.acknowledged = message
        elif isinstance(message, ErrorMessage) and message.is_decode_error:
            logger.warning(f"Undecodable realtime message: {message.message}")
            return
        elif not (isinstance(message, ErrorMessage) and self._outstanding):
            return

        # Replies arrive in the order the actions were sent
        if self._outstanding:
            self._outstanding -= 1
            if self._outstanding:
                logger.warning(f"Late reply to an earlier subscription change: {message!r}")
                return

        pending = self._pending_ack
        if pending is None or pending.done():
            return
        if isinstance(message, SubscriptionMessage):
            pending.set_result(message)
        else:
            pending.set_exception(
                ProtocolError(
                    f"Subscription rejected: {message.code} {message.message}",
                    status_code=message.code,
                )
            )

    async def _abort(self) -> None:
        self.closed = True
        try:
            await self._ws.close()
        except Exception:
            logger.exception("Failed closing realtime connection after handshake failure")
