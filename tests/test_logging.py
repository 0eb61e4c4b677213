from __future__ import annotations

import json
import logging

from cryptoalerts.logging_utils import LoggingConfig, _JsonFormatter, configure_logging


def test_structured_logs_carry_alert_context():
    record = logging.LogRecord("cryptoalerts.scheduler.monitor", logging.INFO, __file__, 1, "alert triggered: %s", ("BTC",), None)
    record.alert_id = "a1"
    record.symbol = "BTC"

    payload = json.loads(_JsonFormatter().format(record))

    assert payload["msg"] == "alert triggered: BTC"
    assert payload["alert_id"] == "a1"
    assert payload["symbol"] == "BTC"
    assert payload["ts"].endswith("Z")
    assert "tick" not in payload


def test_configure_logging_levels():
    try:
        configure_logging(LoggingConfig(verbose=1))
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("apscheduler").level == logging.WARNING

        configure_logging(LoggingConfig(verbose=2))
        assert logging.getLogger("urllib3").level == logging.DEBUG

        configure_logging(LoggingConfig(quiet=True))
        assert logging.getLogger().level == logging.ERROR
        assert logging.getLogger("apscheduler").level == logging.ERROR
    finally:
        logging.getLogger().handlers.clear()
        for name in ("apscheduler", "urllib3"):
            logging.getLogger(name).setLevel(logging.NOTSET)
