"""Periodic alert monitoring.

One tick loads the active alerts, asks the feed for every distinct symbol in
a single call, evaluates each alert, persists the result and notifies on
triggers. Ticks never overlap: a non-blocking lock turns a tick requested
while another is running into a logged no-op, and the APScheduler job is
capped at one running instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from time import perf_counter
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cryptoalerts.alerts.evaluator import HEALED_BASE_PRICE, evaluate
from cryptoalerts.alerts.messages import build_payload, format_message, format_title
from cryptoalerts.alerts.models import Alert, utcnow
from cryptoalerts.alerts.notify import NotificationChannel, dispatch
from cryptoalerts.alerts.storage import AlertStore
from cryptoalerts.config import MonitorSettings
from cryptoalerts.feeds import PriceFeed

logger = logging.getLogger(__name__)

TICK_JOB_ID = "alerts-tick"
CLEANUP_JOB_ID = "alerts-cleanup"


@dataclass
class TickResult:
    started_at: datetime
    checked: int = 0
    triggered: list[str] = field(default_factory=list)
    healed: list[str] = field(default_factory=list)
    missing_symbols: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    notify_failed: list[str] = field(default_factory=list)
    feed_error: str | None = None
    store_error: str | None = None
    skipped: bool = False
    duration_s: float = 0.0


@dataclass
class CleanupResult:
    expired: list[str] = field(default_factory=list)
    pruned_prices: int = 0


class AlertMonitor:
    def __init__(
        self,
        store: AlertStore,
        feed: PriceFeed,
        channel: NotificationChannel,
        settings: MonitorSettings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.feed = feed
        self.channel = channel
        self.settings = settings or MonitorSettings()
        self._clock = clock
        self._tick_lock = Lock()
        self._state_lock = Lock()
        self._scheduler: BaseScheduler | None = None
        self._last_prices: dict[str, tuple[float, datetime]] | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # -- price cache -------------------------------------------------------

    def _previous_prices(self) -> dict[str, tuple[float, datetime]]:
        if self._last_prices is None:
            loader = getattr(self.store, "load_price_cache", None)
            self._last_prices = {}
            if loader is not None:
                try:
                    self._last_prices = dict(loader())
                except Exception:
                    logger.exception("could not load price cache; crossings start fresh")
        return self._last_prices

    def _remember_prices(self, prices: dict[str, float], now: datetime) -> None:
        cache = self._previous_prices()
        for symbol, price in prices.items():
            cache[symbol] = (price, now)
        saver = getattr(self.store, "save_price_cache", None)
        if saver is not None:
            try:
                saver(cache)
            except Exception:
                logger.exception("could not persist price cache")

    # -- ticking -----------------------------------------------------------

    def run_tick(self, now: datetime | None = None) -> TickResult:
        now = now or self._clock()
        if not self._tick_lock.acquire(blocking=False):
            logger.info("tick skipped: previous tick still running")
            return TickResult(started_at=now, skipped=True)
        t0 = perf_counter()
        try:
            result = self._tick(now)
        finally:
            self._tick_lock.release()
        result.duration_s = perf_counter() - t0
        logger.info(
            "tick finished in %.2fs: checked=%d triggered=%d missing=%d failed=%d",
            result.duration_s,
            result.checked,
            len(result.triggered),
            len(result.missing_symbols),
            len(result.failed),
        )
        return result

    def _tick(self, now: datetime) -> TickResult:
        result = TickResult(started_at=now)
        try:
            alerts = self.store.list_active()
        except Exception as e:
            logger.exception("could not load active alerts")
            result.store_error = str(e)
            return result

        if not alerts:
            logger.debug("no active alerts")
            return result

        symbols = {a.symbol for a in alerts}
        logger.debug("checking %d alert(s) over %d symbol(s)", len(alerts), len(symbols))
        try:
            prices = self.feed.get_prices(symbols)
        except Exception as e:
            logger.warning("price feed unavailable, skipping this tick: %s", e)
            result.feed_error = str(e)
            return result

        result.missing_symbols = sorted(symbols - set(prices))
        for symbol in result.missing_symbols:
            logger.warning("price for %s not available this tick", symbol)

        # Snapshot before anything is updated so every alert on a symbol sees
        # the same previous-tick price.
        previous = {s: p for s, (p, _ts) in self._previous_prices().items()}

        for alert in alerts:
            price = prices.get(alert.symbol)
            if price is None:
                continue
            result.checked += 1
            try:
                self._process(alert, price, previous.get(alert.symbol), now, result)
            except Exception:
                logger.exception(
                    "alert %s could not be processed",
                    alert.id,
                    extra={"alert_id": alert.id, "symbol": alert.symbol},
                )
                result.failed.append(alert.id)

        self._remember_prices({s: p for s, p in prices.items() if s in symbols}, now)
        return result

    def _process(
        self,
        alert: Alert,
        price: float,
        previous_cycle_price: float | None,
        now: datetime,
        result: TickResult,
    ) -> None:
        ev = evaluate(alert, price, previous_cycle_price, now=now, settings=self.settings)
        if ev.reason == HEALED_BASE_PRICE:
            result.healed.append(alert.id)

        persisted = True
        if ev.updates:
            try:
                persisted = self.store.update(alert.id, ev.updates)
            except Exception:
                logger.exception("failed to persist alert %s", alert.id)
                result.failed.append(alert.id)
                # Not recorded, so not announced.
                return
            else:
                if not persisted:
                    logger.info("alert %s was removed during the tick", alert.id)

        if not ev.triggered:
            return

        result.triggered.append(alert.id)
        logger.info(
            "alert triggered: %s %s %s @ %.8g",
            alert.symbol,
            alert.condition,
            alert.value,
            price,
            extra={"alert_id": alert.id, "symbol": alert.symbol},
        )
        if not persisted:
            return
        title = format_title(alert)
        body = format_message(alert, price)
        if not dispatch(self.channel, title, body, build_payload(alert, price)):
            result.notify_failed.append(alert.id)

    # -- housekeeping ------------------------------------------------------

    def run_cleanup(self, now: datetime | None = None) -> CleanupResult:
        """Expiry sweep plus stale price-cache pruning; never on the tick path."""
        now = now or self._clock()
        result = CleanupResult()
        purge = getattr(self.store, "purge_expired", None)
        if purge is not None:
            try:
                result.expired = list(purge(now))
            except Exception:
                logger.exception("expired alert sweep failed")

        max_age = timedelta(seconds=self.settings.price_cache_ttl_seconds)
        with self._tick_lock:
            cache = self._previous_prices()
            stale = [s for s, (_p, ts) in cache.items() if now - ts > max_age]
            for s in stale:
                del cache[s]
            result.pruned_prices = len(stale)
            if stale:
                saver = getattr(self.store, "save_price_cache", None)
                if saver is not None:
                    try:
                        saver(cache)
                    except Exception:
                        logger.exception("could not persist price cache")
        return result

    # -- scheduling --------------------------------------------------------

    def _scheduled_tick(self) -> None:
        try:
            self.run_tick()
        except Exception:
            logger.exception("scheduled tick failed")

    def _scheduled_cleanup(self) -> None:
        try:
            self.run_cleanup()
        except Exception:
            logger.exception("scheduled cleanup failed")

    def install_jobs(self, scheduler: BaseScheduler, *, immediate: bool = True) -> None:
        tick_kwargs = {}
        if immediate:
            tick_kwargs["next_run_time"] = datetime.now(timezone.utc)
        scheduler.add_job(
            self._scheduled_tick,
            IntervalTrigger(seconds=self.settings.interval_seconds),
            id=TICK_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **tick_kwargs,
        )
        scheduler.add_job(
            self._scheduled_cleanup,
            IntervalTrigger(seconds=self.settings.cleanup_interval_seconds),
            id=CLEANUP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def start_monitoring(self, *, immediate: bool = True) -> None:
        with self._state_lock:
            if self._scheduler is not None:
                logger.warning("monitoring already running")
                return
            scheduler = BackgroundScheduler(timezone=timezone.utc)
            self.install_jobs(scheduler, immediate=immediate)
            scheduler.start()
            self._scheduler = scheduler
        logger.info("monitoring started (interval: %ss)", self.settings.interval_seconds)

    def stop_monitoring(self) -> None:
        with self._state_lock:
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return
        # An in-flight tick is left to finish on its worker thread.
        scheduler.shutdown(wait=False)
        logger.info("monitoring stopped")

    def request_check(self) -> TickResult | None:
        """Check now: pull the scheduled tick forward, or run one inline when idle."""
        with self._state_lock:
            scheduler = self._scheduler
        if scheduler is not None and scheduler.running:
            scheduler.modify_job(TICK_JOB_ID, next_run_time=datetime.now(timezone.utc))
            return None
        return self.run_tick()
