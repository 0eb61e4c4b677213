from __future__ import annotations

import signal
from datetime import timezone
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler
from rich.console import Console

from cryptoalerts.alerts.notify import channel_for_config
from cryptoalerts.alerts.storage import store_for_config
from cryptoalerts.config import AppConfig
from cryptoalerts.feeds import feed_for_config
from cryptoalerts.paths import default_state_dir
from cryptoalerts.scheduler.monitor import AlertMonitor
from cryptoalerts.scheduler.pidfile import acquire_pid_file


def pid_path() -> Path:
    return default_state_dir() / "monitor.pid"


def build_monitor(cfg: AppConfig, console: Console | None = None) -> AlertMonitor:
    return AlertMonitor(
        store_for_config(cfg),
        feed_for_config(cfg),
        channel_for_config(cfg, console=console),
        cfg.monitor.settings(),
    )


def run_monitor_forever(cfg: AppConfig, *, monitor: AlertMonitor | None = None) -> None:
    """Foreground monitor: checks immediately, then every interval until SIGINT/SIGTERM."""
    console = Console()
    with acquire_pid_file(pid_path()):
        monitor = monitor or build_monitor(cfg, console=console)
        scheduler = BlockingScheduler(timezone=timezone.utc)
        monitor.install_jobs(scheduler, immediate=True)
        console.print(f"[green]Monitor running[/green] interval={monitor.settings.interval_seconds:g}s")

        def _shutdown(signum: int, _frame) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            console.print(f"[yellow]Shutting down[/yellow] signal={name}")
            scheduler.shutdown(wait=False)

        old_int = signal.signal(signal.SIGINT, _shutdown)
        old_term = signal.signal(signal.SIGTERM, _shutdown)
        try:
            scheduler.start()
        finally:
            signal.signal(signal.SIGINT, old_int)
            signal.signal(signal.SIGTERM, old_term)
