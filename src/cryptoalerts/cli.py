from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from cryptoalerts.commands import (
    do_alert_add,
    do_alert_check,
    do_alert_cleanup,
    do_alert_list,
    do_alert_remove,
    do_alert_show,
    do_alert_toggle,
    do_alert_watch,
    do_config_init,
    do_config_set,
    do_config_show,
    do_config_where,
    do_doctor,
    do_notifications_delete,
    do_notifications_list,
    do_notifications_prune,
    do_notifications_read,
    do_notifications_unread_count,
    do_prices,
    do_version,
    resolve_alert_id,
)
from cryptoalerts.errors import CryptoAlertsError, ExitCodes
from cryptoalerts.logging_utils import LoggingConfig, configure_logging

app = typer.Typer(add_completion=True)
config_app = typer.Typer()
alert_app = typer.Typer()
notifications_app = typer.Typer()

app.add_typer(config_app, name="config")
app.add_typer(alert_app, name="alert")
app.add_typer(notifications_app, name="notifications")


@app.callback()
def _global_options(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase logging verbosity"),
    quiet: bool = typer.Option(False, "--quiet", help="Only show errors"),
    structured_logs: bool = typer.Option(False, "--structured-logs", help="Emit JSON lines logs to stderr"),
) -> None:
    configure_logging(LoggingConfig(verbose=verbose, quiet=quiet, structured=structured_logs))


def _exit_for_error(e: Exception) -> typer.Exit:
    if isinstance(e, typer.Exit):
        return e
    if isinstance(e, CryptoAlertsError):
        Console().print(f"[red]Error:[/red] {e}")
        return typer.Exit(code=e.code)
    if isinstance(e, ValidationError):
        Console().print(f"[red]Bad config:[/red] {e}")
        return typer.Exit(code=ExitCodes.BAD_CONFIG)
    if isinstance(e, (FileNotFoundError, KeyError, ValueError)):
        Console().print(f"[red]Error:[/red] {e}")
        return typer.Exit(code=ExitCodes.USAGE_ERROR)
    Console().print(f"[red]Error:[/red] {e}")
    return typer.Exit(code=ExitCodes.UNKNOWN_ERROR)


@app.command()
def version() -> None:
    """Print version."""
    try:
        Console().print(do_version())
    except Exception as e:
        raise _exit_for_error(e)


@app.command()
def doctor() -> None:
    """Diagnose environment (config, store, feed)."""
    try:
        results = do_doctor()
        for k, v in results.items():
            Console().print(f"{k}: {v}")
    except Exception as e:
        raise _exit_for_error(e)


@app.command()
def prices(
    symbols: list[str] = typer.Argument(..., help="Symbol(s) (e.g., BTC ETH SOL)"),
) -> None:
    """Quote current prices from the configured feed."""
    try:
        quotes = do_prices(symbols)
        table = Table(title="Prices")
        table.add_column("Symbol", style="bold")
        table.add_column("Price", justify="right")
        for symbol, price in quotes.items():
            table.add_row(symbol, f"${price:,.2f}" if price is not None else "[dim]unavailable[/dim]")
        Console().print(table)
    except Exception as e:
        raise _exit_for_error(e)


@config_app.command("where")
def config_where() -> None:
    """Print the config file location."""
    try:
        Console().print(str(do_config_where()))
    except Exception as e:
        raise _exit_for_error(e)


@config_app.command("init")
def config_init(
    path: Path = typer.Option(None, "--path", help="Write config here instead of the default location"),
) -> None:
    """Write a default config file."""
    try:
        Console().print(f"Wrote {do_config_init(path)}")
    except Exception as e:
        raise _exit_for_error(e)


@config_app.command("show")
def config_show() -> None:
    """Print the effective config."""
    try:
        Console().print_json(do_config_show())
    except Exception as e:
        raise _exit_for_error(e)


@config_app.command("set")
def config_set(
    field_path: str = typer.Argument(..., help="Dotted path, e.g. monitor.interval_seconds"),
    value: str = typer.Argument(..., help="New value (JSON literals are parsed)"),
) -> None:
    """Update one config field."""
    import json

    try:
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = value
        Console().print_json(do_config_set(field_path, parsed))
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("add")
def alert_add(
    symbol: str = typer.Argument(..., help="Symbol (e.g., BTC)"),
    condition: str = typer.Argument(..., help="Condition (above, below, crosses-up, crosses-down)"),
    value: float = typer.Argument(..., help="Price threshold, or signed percentage with --type percentage"),
    alert_type: str = typer.Option("price", "--type", "-t", help="price or percentage"),
    frequency: str = typer.Option("once", "--frequency", "-f", help="once, repeated or daily"),
    base_price: float = typer.Option(None, "--base-price", help="Reference price for percentage alerts (default: current)"),
    message: str = typer.Option(None, "--message", "-m", help="Custom notification text"),
    expires_in_hours: float = typer.Option(None, "--expires-in-hours", help="Remove the alert after this many hours"),
    exchange_id: str = typer.Option(None, "--exchange-id"),
    exchange_name: str = typer.Option(None, "--exchange-name"),
) -> None:
    """Add a new alert."""
    try:
        alert = do_alert_add(
            symbol,
            condition.replace("-", "_"),
            value,
            alert_type=alert_type,
            frequency=frequency,
            base_price=base_price,
            message=message,
            expires_in_hours=expires_in_hours,
            exchange_id=exchange_id,
            exchange_name=exchange_name,
        )
        base = f" from ${alert['basePrice']:,.2f}" if alert.get("basePrice") else ""
        Console().print(
            f"Alert created: {alert['symbol']} {alert['conditionLabel']}{base} "
            f"[dim]({alert['frequencyLabel'].lower()}, ID: {alert['id'][:6]})[/dim]"
        )
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("list")
def alert_list(
    active: bool = typer.Option(False, "--active", help="Only alerts that are enabled and armed"),
) -> None:
    """List alerts."""
    try:
        alerts = do_alert_list(active_only=active)
        if not alerts:
            Console().print("[yellow]No alerts configured[/yellow]")
            return

        table = Table(title="Price Alerts")
        table.add_column("ID", style="dim", width=8)
        table.add_column("Symbol", style="bold")
        table.add_column("Condition")
        table.add_column("Frequency")
        table.add_column("Last price", justify="right")
        table.add_column("Fired", justify="right")
        table.add_column("Status")

        for a in alerts:
            status = []
            if a["enabled"]:
                status.append("[green]enabled[/green]")
            else:
                status.append("[dim]disabled[/dim]")
            if a["status"] == "triggered":
                status.append("[red]TRIGGERED[/red]")
            elif a["status"] != "active":
                status.append(a["status"])

            last = a.get("lastCheckedPrice")
            table.add_row(
                a["id"][:6],
                a["symbol"],
                a["conditionLabel"],
                a["frequencyLabel"],
                f"${last:,.2f}" if last is not None else "-",
                str(a["triggerCount"]),
                ", ".join(status),
            )

        Console().print(table)
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("show")
def alert_show(
    alert_id: str = typer.Argument(..., help="Alert ID (or prefix)"),
) -> None:
    """Show one alert in full."""
    import json

    try:
        Console().print_json(json.dumps(do_alert_show(alert_id)))
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("remove")
def alert_remove(
    alert_id: str = typer.Argument(..., help="Alert ID (or prefix)"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Remove an alert."""
    try:
        target = do_alert_show(alert_id)
        if not force:
            typer.confirm(
                f"Remove alert {target['id'][:6]} ({target['symbol']} {target['conditionLabel']})?",
                abort=True,
            )

        if do_alert_remove(target["id"]):
            Console().print(f"Removed alert: {target['id'][:6]}")
        else:
            Console().print("[red]Failed to remove alert[/red]")
            raise typer.Exit(code=1)
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("enable")
def alert_enable(
    alert_id: str = typer.Argument(..., help="Alert ID (or prefix)"),
) -> None:
    """Enable an alert."""
    _toggle_alert(alert_id, True)


@alert_app.command("disable")
def alert_disable(
    alert_id: str = typer.Argument(..., help="Alert ID (or prefix)"),
) -> None:
    """Disable an alert."""
    _toggle_alert(alert_id, False)


def _toggle_alert(alert_id: str, enabled: bool) -> None:
    try:
        result = do_alert_toggle(resolve_alert_id(alert_id), enabled)
        if result:
            status = "enabled" if enabled else "disabled"
            color = "green" if enabled else "yellow"
            Console().print(f"Alert {result['id'][:6]} [{color}]{status}[/{color}]")
        else:
            Console().print("[red]Failed to update alert[/red]")
            raise typer.Exit(code=1)
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("check")
def alert_check() -> None:
    """Run one monitoring pass and notify for conditions met."""
    try:
        result = do_alert_check()
        console = Console()
        if result.feed_error:
            console.print(f"[yellow]Price feed unavailable:[/yellow] {result.feed_error}")
            return
        if result.store_error:
            console.print(f"[red]Alert store unreadable:[/red] {result.store_error}")
            raise typer.Exit(code=ExitCodes.STORE_ERROR)
        if result.missing_symbols:
            console.print(f"[yellow]No price for:[/yellow] {', '.join(result.missing_symbols)}")
        if not result.triggered:
            console.print(f"[green]No alerts triggered[/green] ({result.checked} checked)")
            return
        console.print(f"[bold red]{len(result.triggered)} alert(s) triggered![/bold red]")
        for alert_id in result.triggered:
            console.print(f"  • {alert_id[:6]}")
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("watch")
def alert_watch() -> None:
    """Monitor alerts in the foreground until interrupted."""
    try:
        do_alert_watch()
    except Exception as e:
        raise _exit_for_error(e)


@alert_app.command("cleanup")
def alert_cleanup() -> None:
    """Remove expired alerts and stale cached prices."""
    try:
        result = do_alert_cleanup()
        Console().print(f"Removed {len(result.expired)} expired alert(s), {result.pruned_prices} stale price(s)")
    except Exception as e:
        raise _exit_for_error(e)


@notifications_app.command("list")
def notifications_list(
    unread: bool = typer.Option(False, "--unread", help="Only unread notifications"),
) -> None:
    """List received notifications, newest first."""
    try:
        items = do_notifications_list(unread_only=unread)
        if not items:
            Console().print("[yellow]No notifications[/yellow]")
            return
        table = Table(title="Notifications")
        table.add_column("ID", style="dim")
        table.add_column("When", style="dim")
        table.add_column("Title", style="bold")
        table.add_column("Message")
        for n in items:
            title = n["title"] if n["is_read"] else f"[bold]* {n['title']}[/bold]"
            table.add_row(n["id"], (n["created_at"] or "")[:19], title, n["message"])
        Console().print(table)
        if not unread:
            Console().print(f"{do_notifications_unread_count()} unread")
    except Exception as e:
        raise _exit_for_error(e)


@notifications_app.command("read")
def notifications_read(
    notification_id: str = typer.Argument(None, help="Notification ID"),
    all_: bool = typer.Option(False, "--all", help="Mark every notification as read"),
) -> None:
    """Mark notifications as read."""
    try:
        if not notification_id and not all_:
            raise ValueError("give a notification ID or --all")
        changed = do_notifications_read(None if all_ else notification_id)
        Console().print(f"Marked {changed} notification(s) as read")
    except Exception as e:
        raise _exit_for_error(e)


@notifications_app.command("delete")
def notifications_delete(
    notification_id: str = typer.Argument(..., help="Notification ID"),
) -> None:
    """Delete one notification."""
    try:
        do_notifications_delete(notification_id)
        Console().print(f"Deleted notification: {notification_id}")
    except Exception as e:
        raise _exit_for_error(e)


@notifications_app.command("prune")
def notifications_prune(
    days: int = typer.Option(30, "--days", help="Delete notifications older than this"),
) -> None:
    """Delete old notifications."""
    try:
        Console().print(f"Deleted {do_notifications_prune(days)} notification(s)")
    except Exception as e:
        raise _exit_for_error(e)


def main() -> None:
    app()
