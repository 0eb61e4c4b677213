from __future__ import annotations

import json

import pytest

from cryptoalerts import paths
from cryptoalerts.commands import (
    do_alert_add,
    do_alert_check,
    do_alert_list,
    do_alert_remove,
    do_alert_show,
    do_alert_toggle,
    do_config_set,
    do_doctor,
    do_notifications_delete,
    do_notifications_list,
    do_notifications_read,
    do_notifications_unread_count,
    do_prices,
    resolve_alert_id,
)
from cryptoalerts.errors import AlertNotFoundError, FeedUnavailableError, InvalidAlertError, NotificationNotFoundError


@pytest.fixture()
def workspace(monkeypatch, tmp_path):
    import cryptoalerts.commands as commands
    import cryptoalerts.scheduler.run as sched_run

    monkeypatch.setattr(paths, "default_data_dir", lambda: tmp_path / "data")
    monkeypatch.setattr(commands, "default_state_dir", lambda: tmp_path / "state")
    monkeypatch.setattr(sched_run, "default_state_dir", lambda: tmp_path / "state")

    prices_path = tmp_path / "prices.json"
    prices_path.write_text(json.dumps({"BTC": 59000.0, "ETH": 3000.0}), encoding="utf-8")

    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        json.dumps(
            {
                "feed": {"provider": "file", "prices_path": str(prices_path)},
                "notify": {"console": False, "inbox": True},
                "store_path": str(tmp_path / "alerts.json"),
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("CRYPTOALERTS_CONFIG", str(cfg_path))
    return tmp_path


def test_add_percentage_alert_captures_current_price(workspace):
    row = do_alert_add("eth", "above", 10, alert_type="percentage", frequency="daily")

    assert row["symbol"] == "ETH"
    assert row["basePrice"] == 3000.0
    assert row["conditionLabel"] == "above +10%"
    assert row["frequencyLabel"] == "Once a day"
    assert [a["id"] for a in do_alert_list()] == [row["id"]]


def test_add_percentage_alert_without_a_quote_fails(workspace):
    with pytest.raises(FeedUnavailableError):
        do_alert_add("DOGE", "above", 10, alert_type="percentage")

    assert do_alert_list() == []


def test_add_rejects_invalid_alerts(workspace):
    with pytest.raises(InvalidAlertError) as exc:
        do_alert_add("BTC", "sideways", -1)

    assert len(exc.value.problems) == 2
    assert do_alert_list() == []


def test_check_triggers_and_lands_in_the_inbox(workspace):
    row = do_alert_add("BTC", "below", 60000)

    result = do_alert_check()

    assert result.triggered == [row["id"]]
    assert do_alert_show(row["id"])["status"] == "triggered"

    inbox = do_notifications_list(unread_only=True)
    assert len(inbox) == 1
    assert inbox[0]["title"] == "Price alert: BTC"
    assert inbox[0]["data"]["alertId"] == row["id"]

    assert do_notifications_read(None) == 1
    assert do_notifications_list(unread_only=True) == []


def test_check_with_feed_down_leaves_alerts_alone(workspace):
    row = do_alert_add("BTC", "below", 60000)
    (workspace / "prices.json").write_text("not json", encoding="utf-8")

    result = do_alert_check()

    assert result.feed_error
    assert do_alert_show(row["id"])["triggerCount"] == 0


def test_prefix_resolution_toggle_and_remove(workspace):
    row = do_alert_add("BTC", "above", 70000)
    prefix = row["id"][:6]

    assert resolve_alert_id(prefix) == row["id"]
    assert do_alert_toggle(row["id"], False)["enabled"] is False
    assert do_alert_list(active_only=True) == []

    assert do_alert_remove(prefix) is True
    with pytest.raises(AlertNotFoundError):
        resolve_alert_id(prefix)


def test_prices_reports_missing_symbols_as_none(workspace):
    assert do_prices(["btc", "DOGE"]) == {"BTC": 59000.0, "DOGE": None}


def test_config_set_persists(workspace):
    out = json.loads(do_config_set("monitor.interval_seconds", 15))

    assert out["monitor"]["interval_seconds"] == 15
    with pytest.raises(KeyError):
        do_config_set("monitor.nope", 1)


def test_doctor_reports_each_area(workspace):
    do_alert_add("BTC", "above", 70000)

    out = do_doctor()

    assert out["config_loaded"] == "ok"
    assert out["alerts"] == "1 total, 1 active"
    assert out["monitor"] == "not running"
    assert out["feed"].startswith("ok BTC=")


def test_notifications_read_and_delete_by_id(workspace):
    do_alert_add("BTC", "below", 60000)
    do_alert_add("ETH", "below", 3500)
    do_alert_check()

    first, second = do_notifications_list()
    assert do_notifications_unread_count() == 2

    assert do_notifications_read(first["id"]) == 1
    assert do_notifications_unread_count() == 1

    do_notifications_delete(second["id"])
    assert [n["id"] for n in do_notifications_list()] == [first["id"]]
    assert do_notifications_unread_count() == 0

    with pytest.raises(NotificationNotFoundError):
        do_notifications_delete(second["id"])
    with pytest.raises(NotificationNotFoundError):
        do_notifications_read("missing")
