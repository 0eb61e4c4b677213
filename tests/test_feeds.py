from __future__ import annotations

import json

import pytest
import requests

from cryptoalerts.config import AppConfig
from cryptoalerts.errors import FeedUnavailableError
from cryptoalerts.feeds import BinanceFeed, FileFeed, feed_for_config, fetch_prices


class FakeResponse:
    def __init__(self, payload, status: int = 200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response: FakeResponse | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.urls: list[str] = []

    def get(self, url: str, timeout: float | None = None) -> FakeResponse:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response


def test_binance_feed_maps_pairs_back_to_symbols():
    session = FakeSession(
        FakeResponse(
            [
                {"symbol": "BTCUSDT", "price": "64000.50"},
                {"symbol": "ETHUSDT", "price": "3100.00"},
                {"symbol": "ETHBTC", "price": "0.05"},
                {"symbol": "SOLUSDT", "price": "0"},
            ]
        )
    )
    feed = BinanceFeed(base_url="https://example.test/", session=session)

    prices = feed.get_prices({"BTC", "ETH", "SOL", "DOGE"})

    assert prices == {"BTC": 64000.5, "ETH": 3100.0}
    assert session.urls == ["https://example.test/api/v3/ticker/price"]


def test_binance_feed_honours_quote_asset():
    session = FakeSession(FakeResponse([{"symbol": "BTCEUR", "price": "60000"}, {"symbol": "BTCUSDT", "price": "1"}]))
    feed = BinanceFeed(quote_asset="eur", session=session)

    assert feed.pair_for("BTC") == "BTCEUR"
    assert feed.get_prices({"BTC"}) == {"BTC": 60000.0}


def test_binance_feed_failures_raise_feed_unavailable():
    down = BinanceFeed(session=FakeSession(error=requests.ConnectionError("no route")))
    with pytest.raises(FeedUnavailableError):
        down.get_prices({"BTC"})

    rate_limited = BinanceFeed(session=FakeSession(FakeResponse({}, status=429)))
    with pytest.raises(FeedUnavailableError):
        rate_limited.get_prices({"BTC"})

    odd = BinanceFeed(session=FakeSession(FakeResponse({"code": -1})))
    with pytest.raises(FeedUnavailableError):
        odd.get_prices({"BTC"})


def test_binance_feed_skips_the_request_without_symbols():
    session = FakeSession(error=AssertionError("should not be called"))

    assert BinanceFeed(session=session).get_prices(set()) == {}


def test_file_feed_reads_case_insensitive_symbols(tmp_path):
    path = tmp_path / "prices.json"
    path.write_text(json.dumps({"btc": 64000, "ETH": "nan", "SOL": -1}), encoding="utf-8")

    assert fetch_prices(FileFeed(path), ["btc", " eth ", "SOL"]) == {"BTC": 64000.0}


def test_file_feed_missing_file_is_an_outage(tmp_path):
    with pytest.raises(FeedUnavailableError):
        FileFeed(tmp_path / "missing.json").get_prices({"BTC"})


def test_feed_for_config_selects_provider(tmp_path):
    assert isinstance(feed_for_config(AppConfig()), BinanceFeed)

    cfg = AppConfig.model_validate({"feed": {"provider": "file", "prices_path": str(tmp_path / "p.json")}})
    assert isinstance(feed_for_config(cfg), FileFeed)

    with pytest.raises(ValueError):
        feed_for_config(AppConfig.model_validate({"feed": {"provider": "file"}}))
