from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from cryptoalerts.alerts.models import new_alert
from cryptoalerts.alerts.storage import JsonAlertStore
from cryptoalerts.config import MonitorSettings
from cryptoalerts.errors import FeedUnavailableError
from cryptoalerts.scheduler.monitor import AlertMonitor

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeFeed:
    def __init__(self, prices: dict[str, float] | None = None, error: Exception | None = None):
        self.prices = dict(prices or {})
        self.error = error
        self.calls: list[set[str]] = []

    def get_prices(self, symbols: set[str]) -> dict[str, float]:
        self.calls.append(set(symbols))
        if self.error is not None:
            raise self.error
        return {s: p for s, p in self.prices.items() if s in symbols}


class RecordingChannel:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str, dict]] = []

    def send(self, title: str, body: str, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("push service down")
        self.sent.append((title, body, payload))


def _setup(tmp_path, prices=None, *, channel=None, store=None):
    store = store or JsonAlertStore(tmp_path / "alerts.json")
    feed = FakeFeed(prices)
    channel = channel or RecordingChannel()
    monitor = AlertMonitor(store, feed, channel, MonitorSettings(), clock=lambda: NOW)
    return monitor, store, feed, channel


def _snapshot(store: JsonAlertStore) -> list[dict]:
    return [a.to_dict() for a in store.list_all()]


def test_one_feed_call_per_tick_over_distinct_symbols(tmp_path):
    monitor, store, feed, _ = _setup(tmp_path, {"BTC": 65000.0, "ETH": 3000.0})
    store.create(new_alert("BTC", "price", "above", 70000))
    store.create(new_alert("BTC", "price", "below", 60000))
    store.create(new_alert("ETH", "price", "above", 4000))

    result = monitor.run_tick()

    assert feed.calls == [{"BTC", "ETH"}]
    assert result.checked == 3
    assert result.triggered == []


def test_empty_feed_result_changes_nothing(tmp_path):
    monitor, store, _, channel = _setup(tmp_path, {})
    store.create(new_alert("BTC", "price", "below", 60000))
    before = _snapshot(store)

    result = monitor.run_tick()

    assert result.missing_symbols == ["BTC"]
    assert result.checked == 0
    assert _snapshot(store) == before
    assert channel.sent == []


def test_feed_outage_skips_the_tick(tmp_path):
    monitor, store, feed, channel = _setup(tmp_path)
    feed.error = FeedUnavailableError("exchange down")
    store.create(new_alert("BTC", "price", "below", 60000))
    before = _snapshot(store)

    result = monitor.run_tick()

    assert result.feed_error == "exchange down"
    assert _snapshot(store) == before
    assert channel.sent == []


def test_partial_feed_miss_only_skips_that_symbol(tmp_path):
    monitor, store, _, _ = _setup(tmp_path, {"ETH": 3000.0})
    btc = store.create(new_alert("BTC", "price", "below", 60000))
    eth = store.create(new_alert("ETH", "price", "above", 4000))

    result = monitor.run_tick()

    assert result.missing_symbols == ["BTC"]
    assert store.get(btc.id).last_checked_price is None
    assert store.get(eth.id).last_checked_price == 3000.0


def test_once_alert_fires_and_notifies_exactly_once(tmp_path):
    monitor, store, feed, channel = _setup(tmp_path, {"BTC": 59000.0})
    alert = store.create(new_alert("BTC", "price", "below", 60000, frequency="once"))

    first = monitor.run_tick()
    feed.prices["BTC"] = 55000.0
    second = monitor.run_tick(NOW + timedelta(minutes=1))

    assert first.triggered == [alert.id]
    assert second.triggered == []
    stored = store.get(alert.id)
    assert stored.status == "triggered"
    assert stored.trigger_count == 1
    assert stored.last_triggered_at == NOW

    assert len(channel.sent) == 1
    title, body, payload = channel.sent[0]
    assert title == "Price alert: BTC"
    assert "60,000.00" in body
    assert payload == {"alertId": alert.id, "symbol": "BTC", "price": 59000.0, "type": "price-alert"}


def test_notification_failure_does_not_undo_the_trigger(tmp_path):
    monitor, store, _, _ = _setup(tmp_path, {"BTC": 59000.0}, channel=RecordingChannel(fail=True))
    alert = store.create(new_alert("BTC", "price", "below", 60000))
    other = store.create(new_alert("BTC", "price", "below", 61000))

    result = monitor.run_tick()

    assert sorted(result.notify_failed) == sorted([alert.id, other.id])
    assert store.get(alert.id).trigger_count == 1
    assert store.get(other.id).trigger_count == 1


class FlakyStore(JsonAlertStore):
    def __init__(self, path, broken_id: str | None = None):
        super().__init__(path)
        self.broken_id = broken_id

    def update(self, alert_id, fields):
        if alert_id == self.broken_id:
            raise OSError("disk full")
        return super().update(alert_id, fields)


def test_store_write_failure_does_not_abort_the_tick(tmp_path):
    store = FlakyStore(tmp_path / "alerts.json")
    monitor, _, _, channel = _setup(tmp_path, {"BTC": 59000.0}, store=store)
    broken = store.create(new_alert("BTC", "price", "below", 60000))
    fine = store.create(new_alert("BTC", "price", "below", 62000))
    store.broken_id = broken.id

    result = monitor.run_tick()

    assert result.failed == [broken.id]
    assert result.triggered == [fine.id]
    assert store.get(fine.id).trigger_count == 1
    assert store.get(broken.id).trigger_count == 0
    assert [payload["alertId"] for _, _, payload in channel.sent] == [fine.id]


def test_once_alert_is_announced_only_after_its_trigger_is_stored(tmp_path):
    store = FlakyStore(tmp_path / "alerts.json")
    monitor, _, _, channel = _setup(tmp_path, {"BTC": 59000.0}, store=store)
    alert = store.create(new_alert("BTC", "price", "below", 60000, frequency="once"))
    store.broken_id = alert.id

    for minute in range(3):
        monitor.run_tick(NOW + timedelta(minutes=minute))
    assert channel.sent == []

    store.broken_id = None
    monitor.run_tick(NOW + timedelta(minutes=3))
    monitor.run_tick(NOW + timedelta(minutes=4))

    assert len(channel.sent) == 1
    assert store.get(alert.id).trigger_count == 1


def test_crossing_is_detected_across_restarts(tmp_path):
    monitor, store, _, channel = _setup(tmp_path, {"BTC": 49000.0})
    alert = store.create(new_alert("BTC", "price", "crosses_up", 50000, frequency="repeated"))
    assert monitor.run_tick().triggered == []

    restarted, _, _, channel = _setup(tmp_path, {"BTC": 51000.0}, store=store)
    result = restarted.run_tick(NOW + timedelta(minutes=1))

    assert result.triggered == [alert.id]
    assert len(channel.sent) == 1


def test_alerts_on_one_symbol_share_the_previous_tick_price(tmp_path):
    monitor, store, feed, _ = _setup(tmp_path, {"BTC": 49000.0})
    a = store.create(new_alert("BTC", "price", "crosses_up", 50000))
    b = store.create(new_alert("BTC", "price", "crosses_up", 50500))
    monitor.run_tick()

    feed.prices["BTC"] = 51000.0
    result = monitor.run_tick(NOW + timedelta(minutes=1))

    assert sorted(result.triggered) == sorted([a.id, b.id])


def test_alerts_added_between_ticks_are_picked_up(tmp_path):
    monitor, store, _, _ = _setup(tmp_path, {"BTC": 59000.0})
    monitor.run_tick()

    alert = store.create(new_alert("BTC", "price", "below", 60000))
    result = monitor.run_tick(NOW + timedelta(minutes=1))

    assert result.triggered == [alert.id]


def test_base_price_is_healed_through_the_store(tmp_path):
    path = tmp_path / "alerts.json"
    record = new_alert("ETH", "percentage", "above", 10, base_price=1.0).to_dict()
    record["basePrice"] = None
    path.write_text(json.dumps([record]), encoding="utf-8")
    monitor, store, _, channel = _setup(tmp_path, {"ETH": 3000.0}, store=JsonAlertStore(path))

    result = monitor.run_tick()

    assert result.healed == [record["id"]]
    assert result.triggered == []
    assert store.get(record["id"]).base_price == 3000.0
    assert channel.sent == []


def test_zero_base_price_is_healed_through_the_store(tmp_path):
    path = tmp_path / "alerts.json"
    record = new_alert("ETH", "percentage", "above", 10, base_price=1.0).to_dict()
    record["basePrice"] = 0
    path.write_text(json.dumps({"alerts": [record]}), encoding="utf-8")
    monitor, store, _, _ = _setup(tmp_path, {"ETH": 3000.0}, store=JsonAlertStore(path))

    result = monitor.run_tick()

    assert result.failed == []
    assert result.healed == [record["id"]]
    assert store.get(record["id"]).base_price == 3000.0


def test_overlapping_tick_is_skipped(tmp_path):
    monitor, store, feed, _ = _setup(tmp_path, {"BTC": 59000.0})
    store.create(new_alert("BTC", "price", "below", 60000))

    monitor._tick_lock.acquire()
    try:
        result = monitor.run_tick()
    finally:
        monitor._tick_lock.release()

    assert result.skipped is True
    assert feed.calls == []


def test_cleanup_removes_expired_alerts_and_stale_prices(tmp_path):
    monitor, store, _, _ = _setup(tmp_path, {"BTC": 59000.0})
    expired = store.create(new_alert("ETH", "price", "above", 1, expires_at=NOW - timedelta(seconds=1)))
    store.save_price_cache({"BTC": (59000.0, NOW), "DOGE": (0.1, NOW - timedelta(hours=2))})

    result = monitor.run_cleanup()

    assert result.expired == [expired.id]
    assert result.pruned_prices == 1
    assert set(store.load_price_cache()) == {"BTC"}
