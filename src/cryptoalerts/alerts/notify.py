from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Protocol

import requests
from rich.console import Console

from cryptoalerts.alerts.models import format_timestamp, parse_timestamp, utcnow
from cryptoalerts.config import AppConfig
from cryptoalerts.errors import NotificationError

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    def send(self, title: str, body: str, payload: dict) -> None: ...


def dispatch(channel: NotificationChannel, title: str, body: str, payload: dict) -> bool:
    """Fire-and-forget delivery. Returns False (and logs) on failure, never raises."""
    try:
        channel.send(title, body, payload)
        return True
    except Exception:
        logger.exception("notification for alert %s failed", payload.get("alertId"))
        return False


class ConsoleChannel:
    """Print alert and ring bell."""

    def __init__(self, console: Console | None = None, *, bell: bool = True):
        self._console = console or Console(stderr=True)
        self._bell = bell

    def send(self, title: str, body: str, payload: dict) -> None:
        self._console.print(f"\n[bold white on red]{title}[/bold white on red] {body}\n")
        if self._bell:
            self._console.bell()


class WebhookChannel:
    def __init__(self, url: str, *, session: requests.Session | None = None, timeout_s: float = 5.0):
        self._url = url
        self._session = session or requests.Session()
        self._timeout_s = timeout_s

    def send(self, title: str, body: str, payload: dict) -> None:
        resp = self._session.post(
            self._url,
            json={"title": title, "message": body, **payload},
            timeout=self._timeout_s,
        )
        resp.raise_for_status()


@dataclass
class MultiChannel:
    """Fan out to several channels; one failing channel does not stop the rest."""

    channels: list[NotificationChannel] = field(default_factory=list)

    def send(self, title: str, body: str, payload: dict) -> None:
        failures: list[str] = []
        for ch in self.channels:
            try:
                ch.send(title, body, payload)
            except Exception as e:
                logger.warning("%s failed: %s", type(ch).__name__, e)
                failures.append(type(ch).__name__)
        if failures and len(failures) == len(self.channels):
            raise NotificationError(f"all channels failed: {', '.join(failures)}")


@dataclass(frozen=True)
class Notification:
    id: str
    type: str
    title: str
    message: str
    data: dict | None
    is_read: bool
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "is_read": self.is_read,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Notification:
        return cls(
            id=data["id"],
            type=data.get("type", "alert"),
            title=data.get("title", ""),
            message=data.get("message", ""),
            data=data.get("data"),
            is_read=bool(data.get("is_read", False)),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
        )


def default_inbox_path() -> Path:
    from cryptoalerts.paths import default_data_dir

    return default_data_dir() / "notifications.jsonl"


class NotificationInbox:
    """Local notification history, one JSON object per line."""

    def __init__(self, path: Path | None = None):
        self.path = path or default_inbox_path()
        self._lock = Lock()

    def add(self, title: str, message: str, data: dict | None = None, *, type: str = "alert") -> Notification:
        n = Notification(
            id=f"notif_{uuid.uuid4().hex[:12]}",
            type=type,
            title=title,
            message=message,
            data=data,
            is_read=False,
            created_at=utcnow(),
        )
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(n.to_dict()) + "\n")
        return n

    def _read(self) -> list[Notification]:
        if not self.path.exists():
            return []
        out: list[Notification] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                out.append(Notification.from_dict(json.loads(line)))
            except (ValueError, KeyError):
                logger.warning("skipping malformed inbox line in %s", self.path)
        return out

    def _write(self, items: list[Notification]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".notifications-", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            for n in items:
                f.write(json.dumps(n.to_dict()) + "\n")
        os.replace(tmp, self.path)

    def list_notifications(self, *, unread_only: bool = False, type: str | None = None) -> list[Notification]:
        """Newest first."""
        with self._lock:
            items = self._read()
        if unread_only:
            items = [n for n in items if not n.is_read]
        if type:
            items = [n for n in items if n.type == type]
        return sorted(items, key=lambda n: n.created_at, reverse=True)

    def get(self, notification_id: str) -> Notification | None:
        return next((n for n in self.list_notifications() if n.id == notification_id), None)

    def count_unread(self) -> int:
        return len(self.list_notifications(unread_only=True))

    def mark_read(self, notification_id: str | None = None, *, read: bool = True) -> int:
        """Mark one notification (or all when id is None). Returns how many changed."""
        with self._lock:
            items = self._read()
            changed = 0
            updated: list[Notification] = []
            for n in items:
                if (notification_id is None or n.id == notification_id) and n.is_read != read:
                    n = replace(n, is_read=read)
                    changed += 1
                updated.append(n)
            if changed:
                self._write(updated)
        return changed

    def delete(self, notification_id: str) -> bool:
        with self._lock:
            items = self._read()
            kept = [n for n in items if n.id != notification_id]
            if len(kept) == len(items):
                return False
            self._write(kept)
        return True

    def delete_old(self, days: int = 30, *, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        with self._lock:
            items = self._read()
            kept = [n for n in items if n.created_at >= cutoff]
            removed = len(items) - len(kept)
            if removed:
                self._write(kept)
        return removed


class InboxChannel:
    def __init__(self, inbox: NotificationInbox | None = None):
        self.inbox = inbox or NotificationInbox()

    def send(self, title: str, body: str, payload: dict) -> None:
        self.inbox.add(title, body, payload, type="alert")


def channel_for_config(cfg: AppConfig, *, console: Console | None = None) -> MultiChannel:
    channels: list[NotificationChannel] = []
    if cfg.notify.console:
        channels.append(ConsoleChannel(console))
    if cfg.notify.inbox:
        channels.append(InboxChannel())
    if cfg.notify.webhook_url:
        channels.append(WebhookChannel(cfg.notify.webhook_url))
    if cfg.notify.plugin_channels:
        from cryptoalerts.plugins import registry_for_config

        registry = registry_for_config(cfg)
        channels.extend(registry.make_channel(name, cfg) for name in cfg.notify.plugin_channels)
    return MultiChannel(channels)
