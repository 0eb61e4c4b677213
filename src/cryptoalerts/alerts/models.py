from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal

from cryptoalerts.errors import InvalidAlertError

AlertType = Literal["price", "percentage"]
Condition = Literal["above", "below", "crosses_up", "crosses_down"]
Frequency = Literal["once", "repeated", "daily"]
Status = Literal["active", "triggered", "expired"]

ALERT_TYPES: tuple[str, ...] = ("price", "percentage")
CONDITIONS: tuple[str, ...] = ("above", "below", "crosses_up", "crosses_down")
FREQUENCIES: tuple[str, ...] = ("once", "repeated", "daily")
STATUSES: tuple[str, ...] = ("active", "triggered", "expired")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class PriceRule:
    """Absolute price threshold."""

    condition: Condition
    value: float
    alert_type: ClassVar[AlertType] = "price"


@dataclass(frozen=True)
class PercentageRule:
    """Signed percentage drift from a base price captured at creation time.

    ``base_price`` is only ``None`` for records loaded from an older store;
    the evaluator heals those on their first observed price.
    """

    condition: Condition
    value: float
    base_price: float | None = None
    alert_type: ClassVar[AlertType] = "percentage"

    def percent_change(self, price: float) -> float:
        if not self.base_price:
            raise ValueError("percentage rule has no base price")
        return (price - self.base_price) / self.base_price * 100.0


Rule = PriceRule | PercentageRule


def make_rule(alert_type: str, condition: str, value: float, base_price: float | None = None) -> Rule:
    if condition not in CONDITIONS:
        raise ValueError(f"unknown condition: {condition}")
    if alert_type == "price":
        return PriceRule(condition=condition, value=float(value))  # type: ignore[arg-type]
    if alert_type == "percentage":
        return PercentageRule(
            condition=condition,  # type: ignore[arg-type]
            value=float(value),
            base_price=float(base_price) if base_price is not None else None,
        )
    raise ValueError(f"unknown alert type: {alert_type}")


# Fields a partial update may touch. Rule fields are routed through the rule.
_PLAIN_FIELDS = frozenset(
    {
        "enabled",
        "status",
        "frequency",
        "message",
        "expires_at",
        "exchange_id",
        "exchange_name",
        "last_checked_price",
        "last_triggered_at",
        "trigger_count",
        "updated_at",
    }
)
_RULE_FIELDS = frozenset({"condition", "value", "base_price"})
UPDATABLE_FIELDS = _PLAIN_FIELDS | _RULE_FIELDS


@dataclass
class Alert:
    """A persisted rule watching one symbol."""

    symbol: str
    rule: Rule
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    frequency: Frequency = "once"
    enabled: bool = True
    status: Status = "active"
    exchange_id: str | None = None
    exchange_name: str | None = None
    message: str | None = None
    last_checked_price: float | None = None
    last_triggered_at: datetime | None = None
    trigger_count: int = 0
    expires_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def alert_type(self) -> AlertType:
        return self.rule.alert_type

    @property
    def condition(self) -> Condition:
        return self.rule.condition

    @property
    def value(self) -> float:
        return self.rule.value

    @property
    def base_price(self) -> float | None:
        return getattr(self.rule, "base_price", None)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def with_updates(self, fields: dict[str, Any]) -> Alert:
        """Return a copy with a partial update applied."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown alert fields: {', '.join(sorted(unknown))}")
        if "trigger_count" in fields and int(fields["trigger_count"]) < self.trigger_count:
            raise ValueError("trigger_count cannot decrease")

        rule_changes = {k: v for k, v in fields.items() if k in _RULE_FIELDS}
        rule = self.rule
        if rule_changes:
            if "base_price" in rule_changes and isinstance(rule, PriceRule):
                raise ValueError("price alerts do not carry a base price")
            if "base_price" in rule_changes and self.base_price:
                if rule_changes["base_price"] != self.base_price:
                    raise ValueError("base_price is immutable once set")
            rule = replace(rule, **rule_changes)

        plain = {k: v for k, v in fields.items() if k in _PLAIN_FIELDS}
        return replace(self, rule=rule, **plain)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "exchangeId": self.exchange_id,
            "exchangeName": self.exchange_name,
            "alertType": self.alert_type,
            "condition": self.condition,
            "value": self.value,
            "basePrice": self.base_price,
            "frequency": self.frequency,
            "message": self.message,
            "enabled": self.enabled,
            "status": self.status,
            "lastCheckedPrice": self.last_checked_price,
            "lastTriggeredAt": format_timestamp(self.last_triggered_at),
            "triggerCount": self.trigger_count,
            "expiresAt": format_timestamp(self.expires_at),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Alert:
        created_at = parse_timestamp(data.get("createdAt")) or utcnow()
        return cls(
            id=data["id"],
            symbol=str(data["symbol"]).upper(),
            rule=make_rule(
                data.get("alertType", "price"),
                data["condition"],
                data["value"],
                data.get("basePrice"),
            ),
            frequency=data.get("frequency", "once"),
            enabled=data.get("enabled", True),
            status=data.get("status", "active"),
            exchange_id=data.get("exchangeId"),
            exchange_name=data.get("exchangeName"),
            message=data.get("message") or None,
            last_checked_price=data.get("lastCheckedPrice"),
            last_triggered_at=parse_timestamp(data.get("lastTriggeredAt")),
            trigger_count=int(data.get("triggerCount") or 0),
            expires_at=parse_timestamp(data.get("expiresAt")),
            created_at=created_at,
            updated_at=parse_timestamp(data.get("updatedAt")) or created_at,
        )


def validate_alert(
    *,
    symbol: str | None,
    alert_type: str | None,
    condition: str | None,
    value: float | None,
    base_price: float | None = None,
    frequency: str | None = "once",
) -> list[str]:
    """Return the problems with a would-be alert; empty when it is valid."""
    problems: list[str] = []

    if not symbol or not symbol.strip():
        problems.append("symbol is required")
    if alert_type not in ALERT_TYPES:
        problems.append(f"alert type must be one of: {', '.join(ALERT_TYPES)}")
    if condition not in CONDITIONS:
        problems.append(f"condition must be one of: {', '.join(CONDITIONS)}")
    if frequency not in FREQUENCIES:
        problems.append(f"frequency must be one of: {', '.join(FREQUENCIES)}")

    if value is None or not math.isfinite(value) or value == 0:
        problems.append("value must be a non-zero number")
    elif alert_type == "price" and value <= 0:
        problems.append("price threshold must be greater than zero")
    elif alert_type == "percentage" and not (-100 <= value <= 1000):
        problems.append("percentage must be between -100% and +1000%")

    if alert_type == "percentage":
        if base_price is None or not math.isfinite(base_price) or base_price <= 0:
            problems.append("percentage alerts need a positive base price")
    elif alert_type == "price" and base_price is not None:
        problems.append("price alerts do not take a base price")

    return problems


def new_alert(
    symbol: str,
    alert_type: str,
    condition: str,
    value: float,
    *,
    base_price: float | None = None,
    frequency: str = "once",
    message: str | None = None,
    expires_at: datetime | None = None,
    exchange_id: str | None = None,
    exchange_name: str | None = None,
    now: datetime | None = None,
) -> Alert:
    """Build a fresh, active alert or raise InvalidAlertError."""
    problems = validate_alert(
        symbol=symbol,
        alert_type=alert_type,
        condition=condition,
        value=value,
        base_price=base_price,
        frequency=frequency,
    )
    if problems:
        raise InvalidAlertError(problems)

    now = now or utcnow()
    return Alert(
        symbol=symbol.strip().upper(),
        rule=make_rule(alert_type, condition, value, base_price),
        frequency=frequency,  # type: ignore[arg-type]
        message=(message or "").strip() or None,
        expires_at=expires_at,
        exchange_id=exchange_id,
        exchange_name=exchange_name,
        created_at=now,
        updated_at=now,
    )
