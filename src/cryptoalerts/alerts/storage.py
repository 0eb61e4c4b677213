from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Protocol

from cryptoalerts.alerts.models import Alert, format_timestamp, parse_timestamp, utcnow
from cryptoalerts.config import AppConfig
from cryptoalerts.errors import StoreError

logger = logging.getLogger(__name__)


class AlertStore(Protocol):
    """CRUD over alert records. Each call is atomic for the record it touches."""

    def list_active(self) -> list[Alert]: ...

    def get(self, alert_id: str) -> Alert | None: ...

    def create(self, alert: Alert) -> Alert: ...

    def update(self, alert_id: str, fields: dict[str, Any]) -> bool: ...

    def delete(self, alert_id: str) -> bool: ...


def default_store_path() -> Path:
    """Get platform-appropriate path to alerts.json."""
    from cryptoalerts.paths import default_data_dir

    return default_data_dir() / "alerts.json"


class JsonAlertStore:
    """Alerts and the per-symbol price cache kept in one JSON document.

    Layout::

        {"alerts": [...], "price_cache": {"BTC": {"price": 1.0, "timestamp": "..."}}}

    A bare list (the older layout) is read as the alerts array.
    """

    def __init__(self, path: Path | None = None):
        self.path = path or default_store_path()
        self._lock = RLock()

    def _load_document(self) -> dict:
        if not self.path.exists():
            return {"alerts": [], "price_cache": {}}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise StoreError(f"alert store is not valid JSON: {self.path}") from e
        if isinstance(data, list):
            data = {"alerts": data, "price_cache": {}}
        if not isinstance(data, dict) or not isinstance(data.get("alerts", []), list):
            raise StoreError(f"unexpected alert store layout: {self.path}")
        data.setdefault("alerts", [])
        data.setdefault("price_cache", {})
        return data

    def _save_document(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".alerts-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise StoreError(f"failed to write alert store: {e}") from e

    def _load_alerts(self, data: dict) -> list[Alert]:
        alerts: list[Alert] = []
        for raw in data["alerts"]:
            try:
                alerts.append(Alert.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("skipping unreadable alert record %r: %s", raw.get("id") if isinstance(raw, dict) else raw, e)
        return alerts

    def list_all(self) -> list[Alert]:
        with self._lock:
            return self._load_alerts(self._load_document())

    def list_active(self) -> list[Alert]:
        return [a for a in self.list_all() if a.enabled and a.status == "active"]

    def get(self, alert_id: str) -> Alert | None:
        return next((a for a in self.list_all() if a.id == alert_id), None)

    def create(self, alert: Alert) -> Alert:
        with self._lock:
            data = self._load_document()
            if any(isinstance(r, dict) and r.get("id") == alert.id for r in data["alerts"]):
                raise StoreError(f"alert already exists: {alert.id}")
            data["alerts"].append(alert.to_dict())
            self._save_document(data)
        logger.info("alert created: %s %s %s %s", alert.id, alert.symbol, alert.condition, alert.value)
        return alert

    def update(self, alert_id: str, fields: dict[str, Any]) -> bool:
        """Apply a partial update. Returns False when the alert no longer exists."""
        fields = {k: v for k, v in fields.items() if k != "id"}
        with self._lock:
            data = self._load_document()
            for idx, raw in enumerate(data["alerts"]):
                if not isinstance(raw, dict) or raw.get("id") != alert_id:
                    continue
                current = Alert.from_dict(raw)
                updated = current.with_updates({**fields, "updated_at": fields.get("updated_at") or utcnow()})
                data["alerts"][idx] = updated.to_dict()
                self._save_document(data)
                return True
        return False

    def delete(self, alert_id: str) -> bool:
        """Remove alert by ID. Returns True if found and removed."""
        with self._lock:
            data = self._load_document()
            before = len(data["alerts"])
            data["alerts"] = [r for r in data["alerts"] if not (isinstance(r, dict) and r.get("id") == alert_id)]
            if len(data["alerts"]) == before:
                logger.warning("alert %s not found", alert_id)
                return False
            self._save_document(data)
        logger.info("alert removed: %s", alert_id)
        return True

    def purge_expired(self, now: datetime | None = None) -> list[str]:
        """Delete alerts past their expiry. Returns the removed ids."""
        now = now or utcnow()
        with self._lock:
            data = self._load_document()
            kept: list[dict] = []
            removed: list[str] = []
            for raw in data["alerts"]:
                expires_at = parse_timestamp(raw.get("expiresAt")) if isinstance(raw, dict) else None
                if expires_at is not None and expires_at <= now:
                    removed.append(raw["id"])
                else:
                    kept.append(raw)
            if removed:
                data["alerts"] = kept
                self._save_document(data)
        if removed:
            logger.info("%d expired alert(s) removed", len(removed))
        return removed

    def load_price_cache(self) -> dict[str, tuple[float, datetime]]:
        with self._lock:
            raw = self._load_document().get("price_cache") or {}
        cache: dict[str, tuple[float, datetime]] = {}
        for symbol, entry in raw.items():
            try:
                ts = parse_timestamp(entry.get("timestamp"))
                cache[symbol] = (float(entry["price"]), ts or utcnow())
            except (AttributeError, KeyError, TypeError, ValueError):
                continue
        return cache

    def save_price_cache(self, cache: dict[str, tuple[float, datetime]]) -> None:
        with self._lock:
            data = self._load_document()
            data["price_cache"] = {
                symbol: {"price": price, "timestamp": format_timestamp(ts)} for symbol, (price, ts) in cache.items()
            }
            self._save_document(data)


def store_for_config(cfg: AppConfig) -> JsonAlertStore:
    return JsonAlertStore(Path(cfg.store_path).expanduser() if cfg.store_path else None)
