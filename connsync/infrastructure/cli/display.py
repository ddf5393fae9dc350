import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from connsync.domain.interfaces.user_interface import UserInterface
from connsync.domain.models.errors import ClassifiedError
from connsync.domain.models.records import Record
from connsync.domain.models.stats import HealthReport, HealthStatus

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    HealthStatus.HEALTHY: "bold green",
    HealthStatus.WARNING: "bold yellow",
    HealthStatus.CRITICAL: "bold red",
}


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_records(self, records: Sequence[Record], limit: int = 0) -> None:
        """Displays records as a table, truncated to `limit` rows when limit > 0."""
        shown = list(records[:limit]) if limit > 0 else list(records)
        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Name", style="bold")
        table.add_column("Role")
        table.add_column("Affiliation")
        table.add_column("Logo", justify="center")
        table.add_column("Profile", style="dim")

        for i, record in enumerate(shown, 1):
            table.add_row(
                str(i),
                record.display_name or record.id,
                record.role_title or "",
                record.affiliation_key or "",
                "✓" if record.affiliation_logo_ref else "",
                record.profile_ref or "",
            )
        self.console.print(table)
        footer = f"Showing {len(shown)} of {len(records)} records"
        self.console.print(f"[dim]{footer}[/dim]")

    def display_stats(self, title: str, stats: Mapping[str, Any]) -> None:
        table = Table(title=title, show_header=False, box=SIMPLE, border_style="cyan", padding=(0, 1))
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="bold")
        for name, value in stats.items():
            table.add_row(name.replace("_", " "), _format_value(value))
        self.console.print(table)

    def display_health(self, report: HealthReport) -> None:
        """Displays the health verdict with its issues and recommendations."""
        style = STATUS_STYLES[report.status]
        lines = [f"Status: [{style}]{report.status.value.upper()}[/{style}]"]
        score = report.stats.get("health_score")
        if score is not None:
            lines.append(f"Health score: [bold]{score}[/bold]")
        if report.issues:
            lines.append("")
            lines.append("[bold]Issues[/bold]")
            lines.extend(f"  • {issue}" for issue in report.issues)
        if report.recommendations:
            lines.append("")
            lines.append("[bold]Recommendations[/bold]")
            lines.extend(f"  • {rec}" for rec in report.recommendations)
        self.console.print(Panel(
            "\n".join(lines),
            title="[bold cyan]Health[/bold cyan]",
            border_style=style.split()[-1],
            box=ROUNDED,
            padding=(0, 1)
        ))

    def display_classified_error(self, error: ClassifiedError) -> None:
        message = error.user_message
        if error.suggested_action:
            message = f"{message}\nSuggested action: {error.suggested_action}"
        self.display_error(message)

    def display_error_log(self, errors: List[ClassifiedError]) -> None:
        if not errors:
            self.display_info("No errors logged.")
            return
        table = Table(show_header=True, box=ROUNDED, border_style="red", padding=(0, 1))
        table.add_column("Time", style="dim")
        table.add_column("Kind", style="bold")
        table.add_column("Recoverable", justify="center")
        table.add_column("Message")
        for error in errors:
            table.add_row(
                datetime.fromtimestamp(error.created_at).strftime("%Y-%m-%d %H:%M:%S"),
                error.kind.value,
                "yes" if error.recoverable else "[red]no[/red]",
                error.message,
            )
        self.console.print(table)

    def display_critical_errors(self, entries: Sequence[Mapping[str, Any]]) -> None:
        if not entries:
            return
        table = Table(title="Critical errors", show_header=True, box=ROUNDED, border_style="red", padding=(0, 1))
        table.add_column("Time", style="dim")
        table.add_column("Kind", style="bold")
        table.add_column("Message")
        table.add_column("Suggested action", style="cyan")
        for entry in entries:
            created_at = entry.get("created_at")
            table.add_row(
                datetime.fromtimestamp(created_at).strftime("%Y-%m-%d %H:%M:%S") if created_at else "-",
                str(entry.get("kind", "")),
                str(entry.get("message", "")),
                str(entry.get("suggested_action") or ""),
            )
        self.console.print(table)
