"""
Console reporting for the passive scan pipeline
Rich tables for results, rule statistics and one-off pre-filter runs
"""

from pathlib import Path
from typing import Dict, List

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..scanner.coordinator import ScanCallbacks, ScanCoordinator
from ..scanner.filter_engine import FilterEngine, ScanMatch
from ..scanner.models import ScanStatus, ScanUnit
from ..scanner.risk import RiskLevel
from ..scanner.rules import RuleStore

console = Console()

RISK_STYLES: Dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "bold red",
    RiskLevel.HIGH: "red",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.LOW: "cyan",
    RiskLevel.INFO: "blue",
    RiskLevel.NONE: "dim",
}

STATUS_STYLES: Dict[ScanStatus, str] = {
    ScanStatus.PENDING: "dim",
    ScanStatus.SCANNING: "blue",
    ScanStatus.COMPLETED: "green",
    ScanStatus.ERROR: "red",
    ScanStatus.CANCELLED: "yellow",
}

SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "cyan",
    "info": "blue",
}


class ScanReporter:
    """
    Prints coordinator events as they happen

    Streaming output is not echoed; only finished units are reported.
    """

    def __init__(self, out: Console = console):
        self.console = out
        self._last_status = None

    def callbacks(self) -> ScanCallbacks:
        return ScanCallbacks(
            on_result_updated=self.on_result_updated,
            on_status_changed=self.on_status_changed,
            on_new_item_queued=self.on_new_item_queued,
        )

    def on_new_item_queued(self, unit: ScanUnit):
        self.console.print(f"[dim]queued[/dim] #{unit.id} {unit.method} {escape(unit.short_url)}")

    def on_result_updated(self, unit: ScanUnit):
        if not unit.is_terminal:
            return

        status_style = STATUS_STYLES[unit.status]
        line = f"[{status_style}]{unit.status.value:>9}[/{status_style}] #{unit.id} {unit.method} {escape(unit.short_url)}"
        if unit.status is ScanStatus.COMPLETED:
            risk_style = RISK_STYLES[unit.risk_level]
            line += f"  [{risk_style}]{unit.risk_level.display_name}[/{risk_style}]"
        elif unit.status is ScanStatus.ERROR:
            line += f"  [red]{escape(unit.error_message or '')}[/red]"
        self.console.print(line)

    def on_status_changed(self, text: str):
        if text != self._last_status:
            self._last_status = text
            self.console.print(f"[bold blue]{text}[/bold blue]")


def print_results(coordinator: ScanCoordinator, out: Console = console):
    """Summary table of every unit plus the risk distribution"""
    results = coordinator.get_results()
    if not results:
        out.print("[yellow]No traffic was scanned[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", width=5)
    table.add_column("Method", style="cyan", width=8)
    table.add_column("URL")
    table.add_column("Status", width=10)
    table.add_column("Risk", width=10)
    table.add_column("Pre-filter", style="dim")

    ordered = sorted(results, key=lambda unit: (-unit.risk_level.priority, unit.id))
    for unit in ordered:
        status_style = STATUS_STYLES[unit.status]
        risk_style = RISK_STYLES[unit.risk_level]
        hints = ", ".join(sorted({match.rule_type for match in unit.prefilter_matches}))
        table.add_row(
            str(unit.id),
            unit.method,
            escape(unit.short_url),
            f"[{status_style}]{unit.status.value}[/{status_style}]",
            f"[{risk_style}]{unit.risk_level.display_name}[/{risk_style}]",
            hints
        )

    out.print(table)

    distribution = coordinator.get_stats_by_risk_level()
    summary = ", ".join(
        f"{level.display_name}: {count}"
        for level, count in distribution.items()
        if count
    )
    out.print(f"\n[green]Completed by risk level:[/green] {summary or 'none'}")


def rules_stats_command(store: RuleStore, out: Console = console) -> int:
    """Print rule and pattern counts per type"""
    stats = store.stats()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Type", style="cyan")
    table.add_column("Rules", justify="right")
    table.add_column("Patterns", justify="right")

    for rule_type, counts in stats["by_type"].items():
        table.add_row(rule_type, str(counts["rules"]), str(counts["patterns"]))

    out.print(table)
    out.print(
        f"\n[green]Total: {stats['total_rules']} rules, "
        f"{stats['total_patterns']} patterns[/green]"
    )
    return 0


def prefilter_command(path: Path, engine: FilterEngine, budget_ms: int, out: Console = console) -> int:
    """Run the pre-filter over a saved request/response file"""
    try:
        content = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        out.print(f"[red]Cannot read {path}: {e}[/red]")
        return 1

    matches: List[ScanMatch] = engine.scan(content, budget_ms)
    if not matches:
        out.print("[green]No signatures matched[/green]")
        return 0

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Type", style="cyan")
    table.add_column("Rule")
    table.add_column("Severity")
    table.add_column("Matched", style="dim")

    for match in matches:
        style = SEVERITY_STYLES.get(match.severity, "white")
        table.add_row(
            match.rule_type,
            match.rule_name + (f" ({match.sub_type})" if match.sub_type else ""),
            f"[{style}]{match.severity}[/{style}]",
            escape(match.matched_string[:80])
        )

    out.print(table)
    out.print(f"\n[yellow]{len(matches)} signature(s) matched[/yellow]")
    return 0
