from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from cryptoalerts import __version__
from cryptoalerts.alerts.messages import format_condition, frequency_label
from cryptoalerts.alerts.models import Alert, new_alert, utcnow
from cryptoalerts.alerts.notify import NotificationInbox
from cryptoalerts.alerts.storage import store_for_config
from cryptoalerts.config import config_path, load_config, save_config, save_default_config, update_config_field
from cryptoalerts.errors import AlertNotFoundError, FeedUnavailableError, NotificationNotFoundError
from cryptoalerts.feeds import feed_for_config, fetch_prices, normalize_symbol
from cryptoalerts.paths import default_state_dir
from cryptoalerts.scheduler.monitor import CleanupResult, TickResult
from cryptoalerts.scheduler.pidfile import running_pid
from cryptoalerts.scheduler.run import build_monitor, pid_path, run_monitor_forever


def do_version() -> str:
    return __version__


def do_doctor() -> dict[str, str]:
    out: dict[str, str] = {}
    try:
        cfg = load_config()
        out["config_path"] = str(config_path())
        out["config_loaded"] = "ok"
    except Exception as e:
        out["config_loaded"] = f"error: {e}"
        return out

    store = store_for_config(cfg)
    out["store_path"] = str(store.path)
    try:
        alerts = store.list_all()
        active = sum(1 for a in alerts if a.enabled and a.status == "active")
        out["alerts"] = f"{len(alerts)} total, {active} active"
    except Exception as e:
        out["alerts"] = f"error: {e}"

    out["state_dir"] = str(default_state_dir())
    pid = running_pid(pid_path())
    out["monitor"] = f"running (pid={pid})" if pid else "not running"

    # Feed check (best-effort): quote one symbol.
    try:
        probe = "BTC"
        prices = feed_for_config(cfg).get_prices({probe})
        out["feed"] = f"ok {probe}={prices[probe]:g}" if probe in prices else f"no_price for {probe}"
    except Exception as e:
        out["feed"] = f"error: {e}"
    return out


def do_config_where() -> Path:
    return config_path()


def do_config_init(path: Path | None) -> Path:
    return save_default_config(path)


def do_config_show() -> str:
    cfg = load_config()
    return cfg.model_dump_json(indent=2)


def do_config_set(field_path: str, value) -> str:
    cfg = load_config()
    updated = update_config_field(cfg, field_path, value)
    save_config(updated)
    return updated.model_dump_json(indent=2)


def _alert_row(alert: Alert) -> dict:
    row = alert.to_dict()
    row["conditionLabel"] = format_condition(alert)
    row["frequencyLabel"] = frequency_label(alert.frequency)
    return row


def do_alert_add(
    symbol: str,
    condition: str,
    value: float,
    *,
    alert_type: str = "price",
    frequency: str = "once",
    base_price: float | None = None,
    message: str | None = None,
    expires_in_hours: float | None = None,
    exchange_id: str | None = None,
    exchange_name: str | None = None,
) -> dict:
    cfg = load_config()
    symbol = normalize_symbol(symbol)
    now = utcnow()

    # Percentage alerts measure drift from the price at creation time.
    if alert_type == "percentage" and base_price is None:
        prices = fetch_prices(feed_for_config(cfg), [symbol])
        if symbol not in prices:
            raise FeedUnavailableError(f"no current price for {symbol}; pass --base-price")
        base_price = prices[symbol]

    alert = new_alert(
        symbol,
        alert_type,
        condition,
        value,
        base_price=base_price,
        frequency=frequency,
        message=message,
        expires_at=now + timedelta(hours=expires_in_hours) if expires_in_hours else None,
        exchange_id=exchange_id,
        exchange_name=exchange_name,
        now=now,
    )
    store_for_config(cfg).create(alert)
    return _alert_row(alert)


def do_alert_list(*, active_only: bool = False) -> list[dict]:
    store = store_for_config(load_config())
    alerts = store.list_active() if active_only else store.list_all()
    return [_alert_row(a) for a in sorted(alerts, key=lambda a: a.created_at)]


def resolve_alert_id(prefix: str) -> str:
    """Full alert id for an id or unique id prefix."""
    prefix = (prefix or "").strip()
    if not prefix:
        raise ValueError("alert id must be non-empty")
    ids = [a.id for a in store_for_config(load_config()).list_all()]
    if prefix in ids:
        return prefix
    matches = [i for i in ids if i.startswith(prefix)]
    if not matches:
        raise AlertNotFoundError(f"No alert found with ID prefix: {prefix}")
    if len(matches) > 1:
        raise ValueError(f"Multiple alerts match prefix {prefix}. Be more specific.")
    return matches[0]


def do_alert_show(alert_id: str) -> dict:
    full_id = resolve_alert_id(alert_id)
    alert = store_for_config(load_config()).get(full_id)
    if alert is None:
        raise AlertNotFoundError(f"No alert found with ID: {full_id}")
    return _alert_row(alert)


def do_alert_remove(alert_id: str) -> bool:
    full_id = resolve_alert_id(alert_id)
    return store_for_config(load_config()).delete(full_id)


def do_alert_toggle(alert_id: str, enabled: bool) -> dict | None:
    store = store_for_config(load_config())
    if not store.update(alert_id, {"enabled": enabled}):
        return None
    alert = store.get(alert_id)
    return _alert_row(alert) if alert else None


def do_alert_check() -> TickResult:
    """Run a single tick against the configured store, feed and channels."""
    monitor = build_monitor(load_config())
    return monitor.run_tick()


def do_alert_watch() -> None:
    run_monitor_forever(load_config())


def do_alert_cleanup() -> CleanupResult:
    monitor = build_monitor(load_config())
    return monitor.run_cleanup()


def do_notifications_list(*, unread_only: bool = False) -> list[dict]:
    return [n.to_dict() for n in NotificationInbox().list_notifications(unread_only=unread_only)]


def do_notifications_unread_count() -> int:
    return NotificationInbox().count_unread()


def do_notifications_read(notification_id: str | None) -> int:
    """Mark one notification read, or all of them when no id is given."""
    inbox = NotificationInbox()
    if notification_id is not None and inbox.get(notification_id) is None:
        raise NotificationNotFoundError(f"No notification found with ID: {notification_id}")
    return inbox.mark_read(notification_id)


def do_notifications_delete(notification_id: str) -> None:
    if not NotificationInbox().delete(notification_id):
        raise NotificationNotFoundError(f"No notification found with ID: {notification_id}")


def do_notifications_prune(days: int) -> int:
    if days < 0:
        raise ValueError("days must be >= 0")
    return NotificationInbox().delete_old(days)


def do_prices(symbols: list[str]) -> dict[str, float | None]:
    feed = feed_for_config(load_config())
    wanted = [normalize_symbol(s) for s in symbols]
    prices = fetch_prices(feed, wanted)
    return {s: prices.get(s) for s in wanted}
