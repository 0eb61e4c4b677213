from __future__ import annotations

from typing import Callable

from cryptoalerts.alerts.models import Alert

# (alert_type, condition) -> template(symbol, threshold, current_price, percent_change)
Template = Callable[[str, float, float, float], str]

ALERT_TEMPLATES: dict[tuple[str, str], Template] = {
    ("price", "above"): lambda s, thr, p, _pct: f"{s} rose above ${thr:,.2f}! Current price: ${p:,.2f}",
    ("price", "below"): lambda s, thr, p, _pct: f"{s} fell below ${thr:,.2f}! Current price: ${p:,.2f}",
    ("price", "crosses_up"): lambda s, thr, p, _pct: f"{s} crossed up through ${thr:,.2f}! Current price: ${p:,.2f}",
    ("price", "crosses_down"): lambda s, thr, p, _pct: f"{s} crossed down through ${thr:,.2f}! Current price: ${p:,.2f}",
    ("percentage", "above"): lambda s, thr, p, pct: (
        f"{s} is up {pct:+.2f}% (target {thr:+g}%). Current price: ${p:,.2f}"
    ),
    ("percentage", "below"): lambda s, thr, p, pct: (
        f"{s} is down {abs(pct):.2f}% (target -{abs(thr):g}%). Current price: ${p:,.2f}"
    ),
    ("percentage", "crosses_up"): lambda s, thr, p, pct: (
        f"{s} crossed {thr:+g}% ({pct:+.2f}%). Current price: ${p:,.2f}"
    ),
    ("percentage", "crosses_down"): lambda s, thr, p, pct: (
        f"{s} crossed -{abs(thr):g}% ({pct:+.2f}%). Current price: ${p:,.2f}"
    ),
}

_CONDITION_LABELS = {
    "above": "above",
    "below": "below",
    "crosses_up": "crosses above",
    "crosses_down": "crosses below",
}

_FREQUENCY_LABELS = {
    "once": "Once",
    "repeated": "Every time",
    "daily": "Once a day",
}


def percent_change(alert: Alert, current_price: float) -> float:
    base = alert.base_price
    if not base:
        return 0.0
    return (current_price - base) / base * 100.0


def format_message(alert: Alert, current_price: float) -> str:
    """Notification body: the user's own text, else the (type, condition) template."""
    if alert.message:
        return alert.message

    template = ALERT_TEMPLATES.get((alert.alert_type, alert.condition))
    pct = percent_change(alert, current_price)
    if template is None:
        if alert.alert_type == "percentage":
            return f"{alert.symbol}: {pct:+.2f}%"
        return f"{alert.symbol}: ${current_price:,.2f}"
    return template(alert.symbol, alert.value, current_price, pct)


def format_title(alert: Alert) -> str:
    return f"Price alert: {alert.symbol}"


def build_payload(alert: Alert, current_price: float) -> dict:
    return {
        "alertId": alert.id,
        "symbol": alert.symbol,
        "price": current_price,
        "type": "price-alert",
    }


def format_threshold(alert: Alert) -> str:
    if alert.alert_type == "percentage":
        return f"{alert.value:+g}%"
    return f"${alert.value:,.2f}"


def format_condition(alert: Alert) -> str:
    """Short human label, e.g. 'crosses above $50,000.00'."""
    label = _CONDITION_LABELS.get(alert.condition, alert.condition.replace("_", " "))
    return f"{label} {format_threshold(alert)}"


def frequency_label(frequency: str) -> str:
    return _FREQUENCY_LABELS.get(frequency, frequency)
