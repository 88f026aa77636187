import json
import subprocess
import sys
from pathlib import Path
from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from postguard.config import settings
from postguard.schemas.detection import ValidationContext
from postguard.security.engine import ProtectionEngine
from postguard.storage.memory import MemoryRecordStore

console = Console()

DEFAULT_API_URL = "http://localhost:8000"

SEVERITY_STYLES = {
    "info": "dim",
    "warning": "yellow",
    "error": "red",
    "critical": "bold red",
}


def gradient_text(text: str) -> Text:
    colors = ["#4FC3F7", "#29B6F6", "#03A9F4", "#039BE5", "#0288D1", "#0277BD"]

    gradient = Text()
    for i, char in enumerate(text):
        if char == " ":
            gradient.append(char)
            continue

        progress = i / max(len(text) - 1, 1)
        gradient.append(char, style=f"bold {colors[int(progress * (len(colors) - 1))]}")

    return gradient


def print_banner():
    console.print()
    console.print(gradient_text("postguard"))
    console.print()


def local_engine() -> ProtectionEngine:
    return ProtectionEngine(settings, store=MemoryRecordStore()).init()


def api_request(method: str, api_url: str, path: str, **kwargs):
    try:
        with httpx.Client(base_url=api_url, timeout=5.0) as client:
            response = client.request(method, path, **kwargs)
    except httpx.ConnectError:
        console.print("[bold red]ERROR[/bold red] Could not connect to the API\n")
        console.print("[dim]Start the server with [bold]postguard dev[/bold][/dim]\n")
        raise typer.Exit(1)

    if response.status_code == 404:
        console.print(f"[bold red]ERROR[/bold red] {response.json().get('detail', 'Not found')}\n")
        raise typer.Exit(1)

    if response.status_code >= 400:
        console.print(f"[bold red]ERROR[/bold red] API returned {response.status_code}\n")
        raise typer.Exit(1)

    return response.json()


app = typer.Typer(
    name="postguard",
    help="postguard - protection engine administration",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich"
)

API_OPTION = typer.Option(DEFAULT_API_URL, "--api", envvar="POSTGUARD_API_URL", help="Base URL of a running API")


@app.command()
def dev(
    port: int = typer.Option(8000, "--port", "-p", help="Server port"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Server host"),
    reload: bool = typer.Option(True, "--reload/--no-reload", help="Reload on code changes")
):
    """Run the API with uvicorn."""
    print_banner()

    info_table = Table(box=None, show_header=False, padding=(0, 2), show_lines=False)
    info_table.add_row("[dim]>[/dim] [bold]API:[/bold]", f"[cyan]http://localhost:{port}[/cyan]")
    info_table.add_row("[dim]>[/dim] [bold]Docs:[/bold]", f"[cyan]http://localhost:{port}/docs[/cyan]")
    info_table.add_row("[dim]>[/dim] [bold]Health:[/bold]", f"[cyan]http://localhost:{port}/health[/cyan]")
    console.print(Panel(info_table, border_style="cyan", padding=(1, 2)))
    console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

    cmd = [sys.executable, "-m", "uvicorn", "postguard.main:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")

    try:
        subprocess.run(cmd, cwd=Path.cwd())
    except KeyboardInterrupt:
        console.print("\n[dim]Server stopped[/dim]\n")


@app.command()
def scan(
    text: str = typer.Argument(..., help="Input to scan"),
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Source label of the input")
):
    """Run the attack detector on TEXT."""
    verdict = local_engine().detector.detect(text, context)

    table = Table(box=None, show_header=False, padding=(0, 2))
    table.add_row("Attack", "[bold red]yes[/bold red]" if verdict.is_attack else "[green]no[/green]")
    table.add_row("Categories", ", ".join(c.value for c in verdict.categories) or "-")
    table.add_row("Confidence", f"{verdict.confidence:.4f}")
    table.add_row("Block", "[bold red]yes[/bold red]" if verdict.should_block else "no")
    table.add_row("Recommendation", verdict.recommendation)

    console.print()
    console.print(table)
    if verdict.matched_patterns:
        console.print("\n[dim]Matched patterns:[/dim]")
        for pattern in verdict.matched_patterns:
            console.print(f"  [dim]-[/dim] {pattern}", markup=False)
    console.print()


@app.command()
def validate(
    text: str = typer.Argument(..., help="Value to validate"),
    context: ValidationContext = typer.Option(..., "--context", "-c", help="Validation context")
):
    """Validate and sanitize TEXT for a context."""
    result = local_engine().validator.validate(text, context)

    status_text = "[green]valid[/green]" if result.is_valid else "[bold red]invalid[/bold red]"
    console.print(f"\n{status_text} ({result.original_length} -> {result.sanitized_length} chars)\n")
    console.print(Panel(Text(result.sanitized_value), title="Sanitized", border_style="cyan"))

    for error in result.errors:
        console.print(f"[red]error[/red] {escape(error)}")
    for warning in result.warnings:
        console.print(f"[yellow]warning[/yellow] {escape(warning)}")
    console.print()


@app.command()
def events(
    category: Optional[str] = typer.Option(None, "--category", help="Event category"),
    severity: Optional[str] = typer.Option(None, "--severity", help="Severity"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id"),
    limit: int = typer.Option(50, "--limit", "-n"),
    api_url: str = API_OPTION
):
    """List security events, newest first."""
    params = {"limit": limit}
    if category:
        params["category"] = category
    if severity:
        params["severity"] = severity
    if actor:
        params["actor_id"] = actor

    data = api_request("GET", api_url, "/api/security/events", params=params)

    table = Table(show_header=True, header_style="bold cyan", padding=(0, 1))
    table.add_column("Timestamp", style="dim")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Actor")
    table.add_column("Message")

    for event in data:
        style = SEVERITY_STYLES.get(event["severity"], "")
        table.add_row(
            str(event["timestamp"]),
            event["category"],
            f"[{style}]{event['severity']}[/{style}]" if style else event["severity"],
            event.get("actor_id") or "-",
            escape(event["message"])
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def alerts(
    pending: bool = typer.Option(False, "--pending", help="Only unacknowledged alerts"),
    api_url: str = API_OPTION
):
    """List alerts raised by the correlator and integrity monitor."""
    params = {"acknowledged": "false"} if pending else {}
    data = api_request("GET", api_url, "/api/security/alerts", params=params)

    table = Table(show_header=True, header_style="bold cyan", padding=(0, 1))
    table.add_column("Id", style="dim")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Events", justify="right")
    table.add_column("Ack")
    table.add_column("Message")

    for alert in data:
        style = SEVERITY_STYLES.get(alert["severity"], "")
        table.add_row(
            alert["id"],
            alert["category"],
            f"[{style}]{alert['severity']}[/{style}]" if style else alert["severity"],
            str(len(alert["triggering_events"])),
            "yes" if alert["acknowledged"] else "no",
            escape(alert["message"])
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def ack(
    alert_id: str = typer.Argument(..., help="Alert id"),
    api_url: str = API_OPTION
):
    """Acknowledge an alert."""
    api_request("POST", api_url, f"/api/security/alerts/{alert_id}/acknowledge")
    console.print(f"[bold green]OK[/bold green] Alert {alert_id} acknowledged\n")


@app.command("clear-limits")
def clear_limits(
    actor: str = typer.Argument(..., help="Actor id"),
    action: Optional[str] = typer.Option(None, "--action", help="Only clear this action"),
    api_url: str = API_OPTION
):
    """Clear rate limit state for an actor."""
    params = {"action": action} if action else {}
    data = api_request("DELETE", api_url, f"/api/protection/rate-limit/{actor}", params=params)
    console.print(f"[bold green]OK[/bold green] Cleared {data['cleared']} record(s) for {actor}\n")


@app.command()
def integrity(api_url: str = API_OPTION):
    """Show integrity monitor status and resource health."""
    status = api_request("GET", api_url, "/api/integrity/status")
    stats = api_request("GET", api_url, "/api/integrity/stats")

    table = Table(box=None, show_header=False, padding=(0, 2))
    table.add_row("Active", "[green]yes[/green]" if status["is_active"] else "no")
    table.add_row("Last check", str(status.get("last_check_at") or "-"))
    table.add_row("Snapshots", str(status["total_snapshots"]))
    table.add_row("Changes", str(status["total_changes"]))
    table.add_row("Unauthorized", str(stats["unauthorized_changes"]))
    table.add_row("Suspicious", str(stats["suspicious_changes"]))

    console.print()
    console.print(table)

    if stats["resource_health"]:
        health = Table(show_header=True, header_style="bold cyan", padding=(0, 1))
        health.add_column("Resource")
        health.add_column("Health")
        colors = {"healthy": "green", "warning": "yellow", "critical": "bold red"}
        for resource_id, state in stats["resource_health"].items():
            health.add_row(resource_id, f"[{colors[state]}]{state}[/{colors[state]}]")
        console.print()
        console.print(health)
    console.print()


@app.command()
def export(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout"),
    api_url: str = API_OPTION
):
    """Export the security log and alerts as JSON."""
    data = api_request("GET", api_url, "/api/security/export")
    document = json.dumps(data, indent=2)

    if output is None:
        console.print_json(document)
        return

    output.write_text(document, encoding="utf-8")
    console.print(f"[bold green]OK[/bold green] Exported {len(data['logs'])} events to {output}\n")


if __name__ == "__main__":
    app()
