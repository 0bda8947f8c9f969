#!/usr/bin/env python3
"""
dispatch_terminal.py - Dispatch board at a glance

Prints the derived views of one workspace: work order and AP counters,
ETA buckets, operator notices, recent activity, technician usage and any
store alerts raised by ErrorHandler.

Usage:
    python3 dispatch_terminal.py            # Render once
    python3 dispatch_terminal.py --watch 5  # Re-render every 5s, polling for peer changes
    python3 dispatch_terminal.py --json     # Counters as JSON for scripting
"""

import argparse
import json
import sys
import time
from dataclasses import asdict

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aggregation import MISSING_DISPLAY, format_eta, technician_display_name
from dispatch_config import DispatchConfig, configure_logging
from dispatch_workspace import DispatchWorkspace
from error_handler import ErrorHandler
from redis_client import get_redis_client


def _counters_table(snapshot) -> Table:
    counters = snapshot["counters"]
    table = Table(title="Work Orders & AP")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")

    for status, count in counters.work_orders_by_status.items():
        table.add_row(f"WO {status.replace('_', ' ')}", str(count))
    for status, count in counters.cost_requests_by_status.items():
        table.add_row(f"Cost {status}", str(count))
    table.add_row("Unpaid costs", str(counters.unpaid_cost_requests))
    table.add_row("Missing proposals", str(counters.missing_proposals))
    table.add_row("Orphan files", str(counters.orphan_files))
    return table


def _eta_table(workspace: DispatchWorkspace, snapshot, tz=None) -> Table:
    buckets = snapshot["eta_buckets"]
    technicians = workspace.technicians.list()
    table = Table(title="ETA Buckets", show_header=True, header_style="bold blue")
    table.add_column("Bucket", style="cyan", width=10)
    table.add_column("WO", style="yellow")
    table.add_column("Client")
    table.add_column("ETA", style="magenta")
    table.add_column("Technician", style="dim")

    for label, style, rows in (("overdue", "red", buckets.overdue),
                               ("today", "yellow", buckets.due_today),
                               ("upcoming", "green", buckets.upcoming)):
        for wo in rows:
            table.add_row(f"[{style}]{label}[/{style}]", wo.wo_number, wo.client,
                          format_eta(wo, tz), technician_display_name(wo, technicians))
    if table.row_count == 0:
        table.add_row(MISSING_DISPLAY, "", "No scheduled active work orders", "", "")
    return table


def _usage_table(workspace: DispatchWorkspace) -> Table:
    usage = workspace.usage_counts()
    table = Table(title="Technician Usage")
    table.add_column("Technician", style="cyan")
    table.add_column("Trade")
    table.add_column("WOs", justify="right")
    table.add_column("Costs", justify="right")
    table.add_column("Proposals", justify="right")
    table.add_column("Status")

    for tech in workspace.technicians.list():
        counts = usage[tech.id]
        status = f"[red]blacklisted[/red] ({tech.blacklist_reason})" if tech.blacklisted else "[green]active[/green]"
        table.add_row(tech.name, tech.trade, str(counts.work_order_refs),
                      str(counts.cost_request_refs), str(counts.proposal_refs), status)
    return table


def render_dashboard(workspace: DispatchWorkspace, console: Console, tz=None):
    """Print every derived view once."""
    snapshot = workspace.snapshot(tz=tz)

    console.print(Panel(_counters_table(snapshot), title="Dispatch Board", border_style="blue"))
    console.print(Panel(_eta_table(workspace, snapshot, tz), border_style="yellow"))

    notices = snapshot["notices"]
    console.print(Panel("\n".join(notices) if notices else "Nothing needs attention",
                        title="Notices", border_style="magenta"))

    activity = snapshot["activity"]
    if activity:
        lines = [f"[dim]{e.at:%Y-%m-%d %H:%M}[/dim]  {e.title}  [dim]{e.detail}[/dim]" for e in activity]
        console.print(Panel("\n".join(lines), title="Recent Activity", border_style="green"))
    else:
        console.print(Panel("No activity yet. Create a work order to get started.",
                            title="Recent Activity", border_style="green"))

    if workspace.technicians.list():
        console.print(Panel(_usage_table(workspace), border_style="cyan"))

    alerts = workspace.error_handler.get_alerts_for_ui()
    if alerts:
        console.print(Panel("\n".join(alerts), title="Store Alerts", border_style="red"))


def main():
    parser = argparse.ArgumentParser(description="Dispatch board terminal view")
    parser.add_argument("--watch", type=float, default=0, help="Re-render every N seconds")
    parser.add_argument("--json", action="store_true", help="Output counters as JSON")
    parser.add_argument("--debug", action="store_true", help="Show low-severity store alerts")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.debug else None)
    issues = DispatchConfig.validate_config()
    console = Console()
    for issue in issues:
        console.print(f"[yellow]Config: {issue}[/yellow]")

    error_handler = ErrorHandler(console=console, debug_mode=args.debug)
    workspace = DispatchWorkspace(get_redis_client(), error_handler=error_handler)

    if args.json:
        snapshot = workspace.snapshot()
        print(json.dumps({
            "counters": asdict(snapshot["counters"]),
            "eta_buckets": snapshot["eta_buckets"].counts(),
            "notices": snapshot["notices"],
            "store": snapshot["store"],
        }, indent=2))
        return 0

    try:
        render_dashboard(workspace, console)
        while args.watch > 0:
            time.sleep(args.watch)
            changed = workspace.poll_changes()
            if changed:
                console.rule(f"Refreshed: {', '.join(changed)}")
                render_dashboard(workspace, console)
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")
    finally:
        workspace.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
