#!/usr/bin/env python3
"""
Display helper functions for Shipyard CLI
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable

from rich.console import Console
from rich.table import Table

from ..config import DOMAIN_TLD
from ..port_allocator import PortAssignment
from ..registry import ProjectRecord

console = Console()
err_console = Console(stderr=True)

TITLE = r"""
   _____ __    _                             _
  / ___// /_  (_)___  __  ______ ___________//
  \__ \/ __ \/ / __ \/ / / / __ `/ ___/ __  /
 ___/ / / / / / /_/ / /_/ / /_/ / /  / /_/ /
/____/_/ /_/_/ .___/\__, /\__,_/_/   \__,_/
            /_/    /____/
"""


def display_title(version: str) -> None:
    console.print(TITLE, style="cyan", highlight=False)
    console.print(f"⚓ [dim]v{version} - Laravel Sail Project Setup[/dim]\n")


def display_port_assignments(assignments: Dict[str, PortAssignment]) -> None:
    """Pretty-print a table with variable → port mapping."""
    table = Table(title="Port Assignments", header_style="bold magenta")
    table.add_column("Variable", style="cyan", no_wrap=True)
    table.add_column("Start", justify="right")
    table.add_column("Assigned", style="green", justify="right")
    table.add_column("Note", style="dim")

    for name in sorted(assignments):
        a = assignments[name]
        note = f"{a.start_port} taken" if a.moved else "available"
        table.add_row(name, str(a.start_port), str(a.port), note)

    console.print(table)


def display_projects(records: Iterable[ProjectRecord], registry_file: Path) -> None:
    """One table per registered project."""
    records = sorted(records, key=lambda r: r.name)
    if not records:
        display_info("No registered projects found")
        console.print("\nRun 'shipyard init' in a project directory to register a new project.\n")
        return

    console.print(f"[bold]Registered Projects ({len(records)})[/bold]\n")
    for record in records:
        table = Table(title=record.name, title_style="bold", show_header=False, title_justify="left")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        if record.path:
            table.add_row("Path", record.path)
            if record.is_stale():
                table.add_row("", "[yellow]⚠ Path no longer exists[/yellow]")
        if record.domain:
            service = record.proxy_service.value if record.proxy_service else "unknown"
            table.add_row("Domain", f"{record.domain} ({service})")
        for key in sorted(record.ports):
            table.add_row(key, str(record.ports[key]))
        console.print(table)
        console.print()

    console.print(f"[dim]Config file: {registry_file}[/dim]\n")


def display_app_url(ports: Dict[str, int], domain: str | None) -> None:
    if domain:
        console.print("[bold]Your application is accessible at:[/bold]")
        console.print(f"  [cyan]https://{domain}.{DOMAIN_TLD}[/cyan]")
    elif "APP_PORT" in ports:
        console.print("[bold]Your application should be accessible at:[/bold]")
        console.print(f"  [cyan]http://localhost:{ports['APP_PORT']}[/cyan]")


def display_success(message: str):
    """Display success message"""
    console.print(f"[green]✓[/green] {message}")


def display_warning(message: str):
    """Display warning message"""
    console.print(f"[yellow]⚠️  {message}[/yellow]")


def display_error(message: str):
    """Display error message"""
    err_console.print(f"[red]Error:[/red] {message}", highlight=False)


def display_info(message: str):
    console.print(message)
