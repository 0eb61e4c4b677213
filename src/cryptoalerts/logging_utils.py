from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone

# Context attached with ``logger.info(..., extra={...})`` by the monitor.
CONTEXT_FIELDS = ("alert_id", "symbol", "tick")

# Third-party loggers that chatter at INFO on every tick or request.
_NOISY_LOGGERS = ("apscheduler", "urllib3")


@dataclass(frozen=True)
class LoggingConfig:
    verbose: int = 0
    quiet: bool = False
    structured: bool = False

    @property
    def level(self) -> int:
        if self.quiet:
            return logging.ERROR
        return logging.DEBUG if self.verbose >= 1 else logging.INFO


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(cfg: LoggingConfig) -> None:
    level = cfg.level

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    if cfg.structured:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S"))
    root.addHandler(handler)

    # -vv lets scheduler and HTTP retry logs through.
    noisy_level = logging.DEBUG if cfg.verbose >= 2 else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(noisy_level, level))
