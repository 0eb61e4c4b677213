from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Iterable, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from cryptoalerts.config import AppConfig
from cryptoalerts.errors import FeedUnavailableError

logger = logging.getLogger(__name__)


class PriceFeed(Protocol):
    def get_prices(self, symbols: set[str]) -> dict[str, float]:
        """Best-effort quotes. A symbol missing from the result is temporarily unavailable.

        Raises FeedUnavailableError when nothing can be fetched at all.
        """
        ...


def normalize_symbol(raw: str) -> str:
    s = (raw or "").strip().upper()
    if not s:
        raise ValueError("Symbol cannot be empty")
    return s


def _valid_price(raw) -> float | None:
    try:
        price = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


class BinanceFeed:
    """Spot prices from the public Binance ticker endpoint.

    ``BTC`` is looked up as ``BTC`` + quote asset (``BTCUSDT`` by default).
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.binance.com",
        quote_asset: str = "USDT",
        session: requests.Session | None = None,
        timeout_s: float = 10.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._quote = quote_asset.upper()
        self._session = session or requests.Session()
        if session is None:
            retry = Retry(
                total=3,
                connect=3,
                read=3,
                status=3,
                backoff_factor=0.5,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=("GET",),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            self._session.mount("http://", adapter)
            self._session.mount("https://", adapter)
        self._timeout_s = timeout_s

    def pair_for(self, symbol: str) -> str:
        return f"{symbol}{self._quote}"

    def get_prices(self, symbols: set[str]) -> dict[str, float]:
        if not symbols:
            return {}
        url = f"{self._base_url}/api/v3/ticker/price"
        try:
            resp = self._session.get(url, timeout=self._timeout_s)
            resp.raise_for_status()
            rows = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise FeedUnavailableError(f"binance ticker request failed: {e}") from e
        if not isinstance(rows, list):
            raise FeedUnavailableError("binance ticker returned an unexpected payload")

        wanted = {self.pair_for(s): s for s in symbols}
        prices: dict[str, float] = {}
        for row in rows:
            if not isinstance(row, dict):
                continue
            symbol = wanted.get(str(row.get("symbol", "")).upper())
            if symbol is None:
                continue
            price = _valid_price(row.get("price"))
            if price is not None:
                prices[symbol] = price
        return prices


class FileFeed:
    """Prices read from a JSON ``{"BTC": 64000.0, ...}`` file on every call."""

    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()

    def get_prices(self, symbols: set[str]) -> dict[str, float]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise FeedUnavailableError(f"cannot read prices file {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise FeedUnavailableError(f"prices file must hold an object: {self._path}")
        upper = {str(k).upper(): v for k, v in data.items()}
        prices: dict[str, float] = {}
        for s in symbols:
            price = _valid_price(upper.get(s))
            if price is not None:
                prices[s] = price
        return prices


def fetch_prices(feed: PriceFeed, symbols: Iterable[str]) -> dict[str, float]:
    return feed.get_prices({normalize_symbol(s) for s in symbols})


def feed_for_config(cfg: AppConfig) -> PriceFeed:
    feed_cfg = cfg.feed
    if feed_cfg.provider == "file":
        if not feed_cfg.prices_path:
            raise ValueError("file feed requires feed.prices_path")
        return FileFeed(feed_cfg.prices_path)
    if feed_cfg.provider == "plugin":
        from cryptoalerts.plugins import registry_for_config

        if not feed_cfg.plugin_name:
            raise ValueError("plugin feed requires feed.plugin_name")
        return registry_for_config(cfg).make_feed(feed_cfg.plugin_name, cfg)
    return BinanceFeed(
        base_url=feed_cfg.base_url,
        quote_asset=feed_cfg.quote_asset,
        timeout_s=feed_cfg.timeout_seconds,
    )
