"""Lazy iteration over paginated historical endpoints.

A page is a JSON object holding a records array and a `next_page_token`.
`PagedIterator` buffers one page at a time and fetches the next only when
the consumer has drained the current one and asks for more.
"""

import logging
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

from .base import ProtocolError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fetches one page given the previous page's token (None for the first page)
PageFetcher = Callable[[Optional[str]], dict[str, Any]]


class PagedIterator(Generic[T]):
    """Pull-based sequence of records spread over several pages.

    Each call to `iter()` starts a fresh pass from the first page, so a
    failed pass can be retried by iterating again. A pass cannot be resumed
    from the middle.

    Attributes:
        records_key: Name of the records array in each page ("trades", ...)
        pages_fetched: Requests issued by the most recent pass
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        records_key: str,
        decode: Callable[[dict[str, Any]], T],
    ) -> None:
        self._fetch_page = fetch_page
        self._decode = decode
        self.records_key = records_key
        self.pages_fetched = 0

    def __iter__(self) -> Iterator[T]:
        self.pages_fetched = 0
        token: Optional[str] = None
        while True:
            page = self._fetch_page(token)
            self.pages_fetched += 1
            records, token = self._split(page)
            logger.debug(
                f"Fetched {self.records_key} page {self.pages_fetched}: "
                f"{len(records)} records, more={token is not None}"
            )
            for raw in records:
                yield self._decode_record(raw)
            if token is None:
                return

    def _split(self, page: dict[str, Any]) -> tuple[list[Any], Optional[str]]:
        raw_records = page.get(self.records_key)
        # The API sends null instead of [] for an empty page
        if raw_records is None:
            raw_records = []
        if not isinstance(raw_records, list):
            raise ProtocolError(
                f"Expected a list for {self.records_key!r}, got {type(raw_records).__name__}"
            )
        token = page.get("next_page_token") or None
        return raw_records, token

    def _decode_record(self, raw: Any) -> T:
        if not isinstance(raw, dict):
            raise ProtocolError(f"Malformed {self.records_key} record: {raw!r}")
        try:
            return self._decode(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed {self.records_key} record: {e}") from e

    def to_list(self) -> list[T]:
        """Drain every page into a list."""
        return list(self)
