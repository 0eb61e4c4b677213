"""Example cryptoalerts plugin.

Usage (config.json):

  {
    "plugins": ["asset/reference/example_plugin.py"],
    "feed": {
      "provider": "plugin",
      "plugin_name": "fixed",
      "prices_path": "./prices.json"
    },
    "notify": {"plugin_channels": ["stdout"]}
  }

This demonstrates:
- A feed factory returning an object with get_prices()
- A channel factory returning an object with send()

"""

from __future__ import annotations

from cryptoalerts.feeds import FileFeed


class FixedFeed:
    """Same price for every symbol; handy for wiring checks."""

    def __init__(self, price: float = 100.0):
        self._price = price

    def get_prices(self, symbols: set[str]) -> dict[str, float]:
        return {s: self._price for s in symbols}


class StdoutChannel:
    def send(self, title: str, body: str, payload: dict) -> None:
        print(f"{title}: {body}")


def fixed_feed_factory(cfg):
    """Prices file when configured, otherwise a flat 100.0."""
    if cfg.feed.prices_path:
        return FileFeed(cfg.feed.prices_path)
    return FixedFeed()


def stdout_channel_factory(cfg):
    return StdoutChannel()


CRYPTOALERTS_FEED_FACTORIES = {
    "fixed": fixed_feed_factory,
}

CRYPTOALERTS_CHANNEL_FACTORIES = {
    "stdout": stdout_channel_factory,
}
