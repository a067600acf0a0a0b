"""Tests for historical queries and pagination."""

from datetime import timedelta

import pandas as pd
import pytest
import requests

from apca_data.alpaca_api.base import (
    APCA_API_KEY_ID,
    APCA_API_SECRET_KEY,
    AuthenticationError,
    ProtocolError,
    TransportError,
)
from apca_data.alpaca_api.market_data import MarketDataClient
from apca_data.models.market_data import Bar, Quote, Trade
from conftest import FakeResponse, bar_record, quote_record, trade_record


def _quote_pages(start, sizes_and_tokens):
    """Build consecutive quote pages with strictly increasing timestamps."""
    pages = []
    ts = start
    for size, token in sizes_and_tokens:
        records = []
        for _ in range(size):
            records.append(quote_record(ts))
            ts = ts + timedelta(microseconds=250)
        pages.append(
            FakeResponse({"quotes": records, "symbol": "AAPL", "next_page_token": token})
        )
    return pages


def test_two_pages_of_quotes_yield_every_record_in_order(market_data_client, http_session, window):
    start, end = window
    http_session.get.side_effect = _quote_pages(start, [(500, "T"), (120, None)])

    quotes = list(market_data_client.get_quotes("AAPL", start, end))

    assert len(quotes) == 620
    assert all(isinstance(q, Quote) for q in quotes)
    assert http_session.get.call_count == 2
    timestamps = [q.timestamp for q in quotes]
    assert timestamps == sorted(timestamps)
    assert all(start <= ts <= end for ts in timestamps)


def test_next_page_requested_with_previous_token(market_data_client, http_session, window):
    start, end = window
    http_session.get.side_effect = _quote_pages(start, [(2, "T"), (1, None)])

    list(market_data_client.get_quotes("aapl", start, end, limit=2))

    first, second = http_session.get.call_args_list
    assert first.args[0] == "https://data.alpaca.markets/v2/stocks/AAPL/quotes"
    assert "page_token" not in first.kwargs["params"]
    assert first.kwargs["params"]["limit"] == 2
    assert first.kwargs["params"]["start"] == "2024-01-02T14:30:00Z"
    assert first.kwargs["params"]["end"] == "2024-01-02T14:33:00Z"
    assert second.kwargs["params"]["page_token"] == "T"


def test_pages_are_fetched_only_on_demand(market_data_client, http_session, window):
    start, end = window
    http_session.get.side_effect = _quote_pages(start, [(3, "T"), (3, None)])

    query = market_data_client.get_quotes("AAPL", start, end)
    assert http_session.get.call_count == 0

    it = iter(query)
    for _ in range(3):
        next(it)
    assert http_session.get.call_count == 1

    next(it)
    assert http_session.get.call_count == 2
    assert query.pages_fetched == 2


def test_null_records_page_ends_sequence(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse(
        {"trades": None, "symbol": "AAPL", "next_page_token": None}
    )

    assert list(market_data_client.get_trades("AAPL", start, end)) == []
    assert http_session.get.call_count == 1


def test_failed_page_surfaces_after_earlier_records(market_data_client, http_session, window):
    start, end = window
    first_page = FakeResponse(
        {"trades": [trade_record(start)], "symbol": "AAPL", "next_page_token": "T"}
    )
    http_session.get.side_effect = [first_page, requests.ConnectionError("reset by peer")]

    received = []
    with pytest.raises(TransportError):
        for trade in market_data_client.get_trades("AAPL", start, end):
            received.append(trade)

    assert len(received) == 1
    assert received[0].price == 126.55


def test_iterating_again_restarts_from_first_page(market_data_client, http_session, window):
    start, end = window
    page = FakeResponse({"trades": [trade_record(start)], "next_page_token": None})
    http_session.get.side_effect = [page, page]

    query = market_data_client.get_trades("AAPL", start, end)
    assert len(list(query)) == 1
    assert len(list(query)) == 1

    for call in http_session.get.call_args_list:
        assert "page_token" not in call.kwargs["params"]


def test_end_must_be_after_start(market_data_client, window):
    start, _ = window
    with pytest.raises(ValueError, match="must be after start"):
        market_data_client.get_trades("AAPL", start, start)


def test_limit_out_of_range(market_data_client, window):
    start, end = window
    with pytest.raises(ValueError, match="limit must be between"):
        market_data_client.get_trades("AAPL", start, end, limit=10001)


def test_auth_headers_on_session(market_data_client, http_session):
    assert http_session.headers[APCA_API_KEY_ID] == "test_key"
    assert http_session.headers[APCA_API_SECRET_KEY] == "test_secret"


def test_credentials_repr_hides_secret(market_data_client):
    assert "test_secret" not in repr(market_data_client.credentials)


def test_missing_credentials_rejected():
    with pytest.raises(AuthenticationError, match="API key and secret key are required"):
        MarketDataClient(api_key="", secret_key="s")


def test_unauthorized_maps_to_authentication_error(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse({"message": "forbidden"}, status_code=403)

    with pytest.raises(AuthenticationError):
        list(market_data_client.get_trades("AAPL", start, end))


def test_vendor_error_payload_maps_to_protocol_error(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse(
        {"code": 42210000, "message": "invalid start"}, status_code=422
    )

    with pytest.raises(ProtocolError, match="invalid start") as exc_info:
        list(market_data_client.get_trades("AAPL", start, end))
    assert exc_info.value.status_code == 422


def test_timeout_maps_to_transport_error(market_data_client, http_session, window):
    start, end = window
    http_session.get.side_effect = requests.Timeout("read timed out")

    with pytest.raises(TransportError, match="timed out"):
        list(market_data_client.get_trades("AAPL", start, end))


def test_malformed_record_maps_to_protocol_error(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse(
        {"trades": [{"t": "2024-01-02T14:30:00Z"}], "next_page_token": None}
    )

    with pytest.raises(ProtocolError, match="Malformed trades record"):
        list(market_data_client.get_trades("AAPL", start, end))


def test_non_json_body_maps_to_protocol_error(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse(ValueError("no json"), text="<html>")

    with pytest.raises(ProtocolError, match="Malformed JSON"):
        list(market_data_client.get_trades("AAPL", start, end))


def test_bars_send_timeframe_and_feed(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse(
        {"bars": [bar_record(start)], "next_page_token": None}
    )

    bars = market_data_client.get_bars("SPY", start, end, timeframe="1Day", feed="sip").to_list()

    params = http_session.get.call_args.kwargs["params"]
    assert params["timeframe"] == "1Day"
    assert params["feed"] == "sip"
    assert isinstance(bars[0], Bar)
    assert bars[0].trade_count == 120


def test_unsupported_timeframe(market_data_client, window):
    start, end = window
    with pytest.raises(ValueError, match="Unsupported timeframe"):
        market_data_client.get_bars("SPY", start, end, timeframe="7Min")


def test_unknown_feed_rejected(market_data_client):
    with pytest.raises(ValueError, match="Unknown data feed"):
        market_data_client.get_latest_trade("AAPL", feed="nyse")


def test_get_bars_df(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse(
        {
            "bars": [bar_record(start), bar_record(start + timedelta(minutes=1), close=390.0)],
            "next_page_token": None,
        }
    )

    df = market_data_client.get_bars_df("SPY", start, end)

    assert list(df.columns) == ["open", "high", "low", "close", "volume", "trade_count", "vwap"]
    assert len(df) == 2
    assert df.index[1] == pd.Timestamp(start + timedelta(minutes=1))
    assert df["close"].iloc[1] == 390.0


def test_get_bars_df_empty(market_data_client, http_session, window):
    start, end = window
    http_session.get.return_value = FakeResponse({"bars": None, "next_page_token": None})

    df = market_data_client.get_bars_df("SPY", start, end)

    assert df.empty
    assert "close" in df.columns


def test_get_latest_trade(market_data_client, http_session, window):
    start, _ = window
    http_session.get.return_value = FakeResponse(
        {"symbol": "AAPL", "trade": trade_record(start, price=187.5)}
    )

    trade = market_data_client.get_latest_trade("AAPL")

    assert isinstance(trade, Trade)
    assert trade.price == 187.5
    assert http_session.get.call_args.args[0].endswith("/v2/stocks/AAPL/trades/latest")


def test_get_latest_quote_missing_payload(market_data_client, http_session):
    http_session.get.return_value = FakeResponse({"symbol": "AAPL"})

    with pytest.raises(ProtocolError, match="No quote"):
        market_data_client.get_latest_quote("AAPL")


def test_get_snapshot_with_missing_parts(market_data_client, http_session, window):
    start, _ = window
    http_session.get.return_value = FakeResponse(
        {
            "symbol": "AAPL",
            "latestTrade": trade_record(start),
            "latestQuote": quote_record(start),
            "minuteBar": bar_record(start),
            "dailyBar": None,
            "prevDailyBar": bar_record(start - timedelta(days=1)),
        }
    )

    snapshot = market_data_client.get_snapshot("AAPL")

    assert snapshot.symbol == "AAPL"
    assert snapshot.latest_trade.price == 126.55
    assert snapshot.latest_quote.spread == pytest.approx(0.1)
    assert snapshot.daily_bar is None
    assert snapshot.prev_daily_bar is not None
