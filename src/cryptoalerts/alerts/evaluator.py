"""Condition evaluation for a single alert.

Everything here is pure: given an alert, the price just observed and the
price seen for the same symbol on the previous tick, decide whether the
alert fires and which fields should be persisted. No I/O, no clock reads
(the caller passes ``now``).

Two different "previous price" notions are in play and kept apart:

- ``previous_cycle_price`` is the symbol's price from the previous tick. Only
  absolute-price crossings use it.
- ``alert.last_checked_price`` is persisted per alert. Percentage crossings
  and the noise filter use it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cryptoalerts.alerts.models import Alert, PercentageRule, PriceRule
from cryptoalerts.config import MonitorSettings

logger = logging.getLogger(__name__)

# Reasons reported when nothing fires.
SKIP_DISABLED = "disabled"
SKIP_NOT_ACTIVE = "not_active"
SKIP_ALREADY_FIRED = "already_fired"
SKIP_COOLDOWN = "cooldown"
SKIP_NOISE = "noise"
HEALED_BASE_PRICE = "healed_base_price"
CONDITION_NOT_MET = "condition_not_met"


@dataclass(frozen=True)
class Evaluation:
    triggered: bool
    reason: str
    alert: Alert
    updates: dict[str, Any] = field(default_factory=dict)
    percent_change: float | None = None

    @property
    def observed(self) -> bool:
        """True when the evaluation got far enough to record the price."""
        return "last_checked_price" in self.updates


def evaluate(
    alert: Alert,
    current_price: float,
    previous_cycle_price: float | None,
    *,
    now: datetime,
    settings: MonitorSettings | None = None,
) -> Evaluation:
    settings = settings or MonitorSettings()

    skip = _precheck(alert, current_price, now=now, settings=settings)
    if skip is not None:
        return Evaluation(triggered=False, reason=skip, alert=alert)

    rule = alert.rule
    if isinstance(rule, PercentageRule) and not rule.base_price:
        logger.error(
            "percentage alert %s (%s %s %s%%) has no base price; using %.8g",
            alert.id,
            alert.symbol,
            rule.condition,
            rule.value,
            current_price,
        )
        updates = {"base_price": current_price, "last_checked_price": current_price, "updated_at": now}
        return Evaluation(
            triggered=False,
            reason=HEALED_BASE_PRICE,
            alert=alert.with_updates(updates),
            updates=updates,
        )

    pct: float | None = None
    if isinstance(rule, PriceRule):
        fired = price_condition_met(rule, current_price, previous_cycle_price)
    else:
        pct = rule.percent_change(current_price)
        fired = percentage_condition_met(rule, pct, alert.last_checked_price)
        logger.debug(
            "%s: base=%.8g current=%.8g change=%.2f%% target=%s%% %s",
            alert.symbol,
            rule.base_price,
            current_price,
            pct,
            rule.value,
            rule.condition,
        )

    if fired:
        updates = {
            "last_triggered_at": now,
            "last_checked_price": current_price,
            "trigger_count": alert.trigger_count + 1,
            "updated_at": now,
        }
        if alert.frequency == "once":
            updates["status"] = "triggered"
        return Evaluation(
            triggered=True,
            reason=f"{rule.alert_type}_{rule.condition}",
            alert=alert.with_updates(updates),
            updates=updates,
            percent_change=pct,
        )

    updates = {"last_checked_price": current_price, "updated_at": now}
    return Evaluation(
        triggered=False,
        reason=CONDITION_NOT_MET,
        alert=alert.with_updates(updates),
        updates=updates,
        percent_change=pct,
    )


def _precheck(alert: Alert, current_price: float, *, now: datetime, settings: MonitorSettings) -> str | None:
    if not alert.enabled:
        return SKIP_DISABLED
    if alert.status != "active":
        return SKIP_NOT_ACTIVE

    if alert.frequency == "once" and alert.trigger_count > 0:
        logger.debug("alert %s (%s) already fired once", alert.id, alert.symbol)
        return SKIP_ALREADY_FIRED
    if alert.frequency == "daily" and alert.last_triggered_at is not None:
        elapsed = now - alert.last_triggered_at
        if elapsed < settings.daily_cooldown:
            logger.debug(
                "alert %s (%s) in cooldown (%.1fh since last trigger)",
                alert.id,
                alert.symbol,
                elapsed.total_seconds() / 3600,
            )
            return SKIP_COOLDOWN

    # Can hold back a level alert whose price settles near the threshold;
    # kept as-is, see DESIGN.md.
    last = alert.last_checked_price
    if last is not None and abs(current_price - last) < settings.noise_epsilon:
        return SKIP_NOISE
    return None


def price_condition_met(rule: PriceRule, current_price: float, previous_cycle_price: float | None) -> bool:
    if rule.condition == "above":
        return current_price > rule.value
    if rule.condition == "below":
        return current_price < rule.value
    if rule.condition == "crosses_up":
        return previous_cycle_price is not None and previous_cycle_price <= rule.value < current_price
    if rule.condition == "crosses_down":
        return previous_cycle_price is not None and previous_cycle_price >= rule.value > current_price
    return False


def percentage_condition_met(rule: PercentageRule, pct: float, last_checked_price: float | None) -> bool:
    if rule.condition == "above":
        return pct >= rule.value
    if rule.condition == "below":
        return pct <= -abs(rule.value)

    if last_checked_price is not None:
        prev_pct = rule.percent_change(last_checked_price)
    else:
        prev_pct = None

    if rule.condition == "crosses_up":
        # Without history, assume it was below so the first tick can fire.
        if prev_pct is None:
            prev_pct = pct - 1
        return prev_pct < rule.value <= pct
    if rule.condition == "crosses_down":
        target = -abs(rule.value)
        if prev_pct is None:
            prev_pct = pct + 1
        return prev_pct > target >= pct
    return False
