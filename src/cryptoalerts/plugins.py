"""Third-party feeds and notification channels.

A plugin is an importable module name or a path to a ``.py`` file exposing
either of::

    CRYPTOALERTS_FEED_FACTORIES = {"name": factory}     # factory(cfg) -> obj with get_prices()
    CRYPTOALERTS_CHANNEL_FACTORIES = {"name": factory}  # factory(cfg) -> obj with send()
"""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import ModuleType
from typing import Callable

from cryptoalerts.config import AppConfig

logger = logging.getLogger(__name__)

Factory = Callable[[AppConfig], object]

FEED_ATTR = "CRYPTOALERTS_FEED_FACTORIES"
CHANNEL_ATTR = "CRYPTOALERTS_CHANNEL_FACTORIES"


@dataclass(frozen=True)
class PluginRegistry:
    feed_factories: dict[str, Factory]
    channel_factories: dict[str, Factory]

    def make_feed(self, name: str, cfg: AppConfig):
        return _build(self.feed_factories, "feed", name, cfg, "get_prices")

    def make_channel(self, name: str, cfg: AppConfig):
        return _build(self.channel_factories, "channel", name, cfg, "send")


def _build(factories: dict[str, Factory], kind: str, name: str, cfg: AppConfig, method: str):
    factory = factories.get(name)
    if factory is None:
        known = ", ".join(sorted(factories)) or "none loaded"
        raise ValueError(f"unknown plugin {kind}: {name} (known: {known})")
    obj = factory(cfg)
    if not callable(getattr(obj, method, None)):
        raise TypeError(f"plugin {kind} '{name}' must implement {method}()")
    return obj


def _import_plugin(spec: str) -> ModuleType:
    s = (spec or "").strip()
    if not s:
        raise ValueError("plugin spec must be non-empty")

    if not (s.endswith(".py") or "/" in s or "\\" in s):
        return importlib.import_module(s)

    path = Path(s).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(f"plugin file not found: {path}")
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:10]
    module_spec = importlib.util.spec_from_file_location(f"cryptoalerts_plugin_{path.stem}_{digest}", path)
    if module_spec is None or module_spec.loader is None:
        raise ImportError(f"failed to load plugin module from {path}")
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def _factories(module: ModuleType, attr: str) -> dict[str, Factory]:
    found = getattr(module, attr, None)
    if found is None:
        return {}
    if not isinstance(found, dict):
        logger.warning("%s.%s is not a dict; ignored", module.__name__, attr)
        return {}
    return {name: fn for name, fn in found.items() if isinstance(name, str) and name.strip() and callable(fn)}


@lru_cache(maxsize=64)
def load_plugins(plugin_specs: tuple[str, ...]) -> PluginRegistry:
    feeds: dict[str, Factory] = {}
    channels: dict[str, Factory] = {}
    for spec in plugin_specs:
        module = _import_plugin(spec)
        feeds.update(_factories(module, FEED_ATTR))
        channels.update(_factories(module, CHANNEL_ATTR))
        logger.debug("plugin %s: feeds=%s channels=%s", spec, sorted(feeds), sorted(channels))
    return PluginRegistry(feed_factories=feeds, channel_factories=channels)


def registry_for_config(cfg: AppConfig) -> PluginRegistry:
    return load_plugins(tuple(cfg.plugins or []))
