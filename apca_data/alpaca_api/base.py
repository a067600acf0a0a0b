"""Base client for the Alpaca Data API.

Owns credentials, the authentication headers and the single GET primitive
every historical endpoint goes through. Also defines the error taxonomy
shared with the realtime stream.

Retry and backoff are NOT handled here: a failed request raises at the
call that made it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

# Header used to send the key id
APCA_API_KEY_ID = "APCA-API-KEY-ID"
# Header used to send the secret key
APCA_API_SECRET_KEY = "APCA-API-SECRET-KEY"

DEFAULT_DATA_URL = "https://data.alpaca.markets"


class AlpacaDataClientError(Exception):
    """Raised when an Alpaca data API call fails."""

    pass


class AuthenticationError(AlpacaDataClientError):
    """Raised when credentials are missing or rejected."""

    pass


class TransportError(AlpacaDataClientError):
    """Raised on connection, DNS or timeout failures."""

    pass


class ProtocolError(AlpacaDataClientError):
    """Raised when the API returns an error payload or a malformed body."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Credentials:
    """API key id and secret key.

    The secret is excluded from repr so credentials can be logged safely.
    Missing values raise AuthenticationError.
    """

    key_id: str
    secret_key: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.key_id or not self.secret_key:
            raise AuthenticationError("API key and secret key are required")

    def headers(self) -> dict[str, str]:
        return {
            APCA_API_KEY_ID: self.key_id,
            APCA_API_SECRET_KEY: self.secret_key,
        }


class RestClient:
    """Authenticated GET access to the data API.

    Attributes:
        credentials: Key id and secret sent as headers on every request
        base_url: Data API root (no trailing slash)
        timeout: Per-request timeout in seconds
        session: requests.Session carrying the auth headers
    """

    def __init__(
        self,
        credentials: Credentials,
        base_url: str = DEFAULT_DATA_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(credentials.headers())

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Issue one GET and return the decoded JSON object.

        Args:
            path: Endpoint path, e.g. "/v2/stocks/AAPL/trades"
            params: Query parameters; None values are dropped

        Returns:
            Decoded JSON body

        Raises:
            AuthenticationError: On HTTP 401/403
            TransportError: On connection failure or timeout
            ProtocolError: On any other HTTP error or a non-object body
        """
        url = f"{self.base_url}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        logger.debug(f"GET {path} params={query}")

        try:
            response = self.session.get(url, params=query, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransportError(f"Request to {path} timed out: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"Request to {path} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Alpaca data API rejected credentials ({response.status_code})"
            )
        if response.status_code >= 400:
            detail = self._error_detail(response)
            raise ProtocolError(
                f"Alpaca data error {response.status_code} on {path}: {detail}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProtocolError(f"Malformed JSON from {path}: {e}") from e
        if not isinstance(payload, dict):
            raise ProtocolError(f"Unexpected response body from {path}: {type(payload).__name__}")
        return payload

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        # Error bodies look like {"code": 42210000, "message": "..."}
        try:
            body = response.json()
        except ValueError:
            return response.text.strip() or "No response body"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.text.strip() or "No response body"

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()
