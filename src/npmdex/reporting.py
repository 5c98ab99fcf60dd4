"""
Console and JSON output for npmdex results.

Provides color-coded console output using Rich library.
"""

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .audit import summarize_by_severity
from .models import (
    AdvisoryRecord,
    ConflictPrediction,
    DependencyReport,
    EnrichedDependency,
    ImpactResult,
    LicenseStatus,
    LicenseVerdict,
    LookupStatus,
    MutationOutcome,
    SearchResult,
    Severity,
    VersionLookup,
)

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MODERATE: "yellow",
    Severity.LOW: "cyan",
    Severity.INFO: "dim",
}


def _versions_cell(item: EnrichedDependency) -> str:
    lookup = item.versions
    if lookup.status is LookupStatus.ERROR:
        return "[red]error fetching versions[/red]"
    if lookup.status is LookupStatus.NONE_FOUND or lookup.version_set is None:
        return "[dim]none found[/dim]"
    latest = lookup.version_set.latest
    if latest and lookup.version_set.upgrades_from(item.dependency.resolved_version):
        return f"[green]{latest}[/green]"
    return f"[dim]{latest}[/dim]"


def _license_cell(item: EnrichedDependency) -> str:
    lookup = item.license
    if lookup.status is LookupStatus.ERROR:
        return "[red]error[/red]"
    return lookup.license or "[dim]-[/dim]"


def _advisory_cell(record: Optional[AdvisoryRecord]) -> str:
    if record is None:
        return "[green]none[/green]"
    style = SEVERITY_STYLES[record.severity]
    return f"[{style}]{record.severity.value} ({record.vulnerability_count})[/{style}]"


class DependencyReporter:
    """Formats and displays npmdex results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_report(self, report: DependencyReport, project: str) -> None:
        self.console.print(
            Panel(f"📦 Dependencies: {project}", title="[bold blue]npmdex[/bold blue]", border_style="blue")
        )

        if report.audit_error:
            self.console.print(f"⚠️  Audit unavailable: {report.audit_error}", style="yellow")

        if not report.all_dependencies():
            self.console.print("No dependencies declared in package.json.", style="dim")
            return

        for title, items in (
            ("dependencies", report.dependencies),
            ("devDependencies", report.dev_dependencies),
        ):
            if items:
                self._print_dependency_table(title, items)

        vulnerable = sum(1 for item in report.all_dependencies() if item.advisory)
        self.console.print(
            f"\n[dim]{len(report.all_dependencies())} dependencies, {vulnerable} with advisories[/dim]"
        )

    def _print_dependency_table(self, title: str, items) -> None:
        table = Table(title=title, box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Package", style="bold")
        table.add_column("Declared")
        table.add_column("Latest")
        table.add_column("License")
        table.add_column("Advisories", justify="center")

        for item in items:
            table.add_row(
                item.name,
                item.dependency.declared_range,
                _versions_cell(item),
                _license_cell(item),
                _advisory_cell(item.advisory),
            )

        self.console.print(table)

    def print_versions(self, package_name: str, lookup: VersionLookup, current: Optional[str] = None) -> None:
        if lookup.status is LookupStatus.ERROR:
            self.console.print(f"❌ {lookup.error}", style="red")
            return
        if lookup.status is LookupStatus.NONE_FOUND or lookup.version_set is None:
            self.console.print(f"No published versions found for {package_name}", style="yellow")
            return

        table = Table(title=f"Versions of {package_name}", box=box.SIMPLE, title_style="bold")
        table.add_column("Version", style="bold")
        if current:
            table.add_column("Change")
        for version in lookup.version_set.versions:
            if current:
                change = lookup.version_set.describe_change(version, current)
                style = {"upgrade": "green", "downgrade": "yellow"}.get(change, "dim")
                table.add_row(version, f"[{style}]{change}[/{style}]")
            else:
                table.add_row(version)
        self.console.print(table)

    def print_outcome(self, outcome: MutationOutcome) -> None:
        if outcome.success:
            self.console.print(f"✅ {outcome.message}", style="green")
            if outcome.refresh_error:
                self.console.print(
                    f"⚠️  Dependency list not refreshed: {outcome.refresh_error}", style="yellow"
                )
        else:
            self.console.print(
                Panel(outcome.message, title=f"[bold red]❌ {outcome.action} failed[/bold red]", border_style="red")
            )

    def print_advisories(self, advisories: Dict[str, AdvisoryRecord]) -> None:
        if not advisories:
            self.console.print("✅ npm audit found no vulnerabilities.", style="green")
            return

        summary = Table(title="📊 Audit Summary", box=box.ROUNDED, title_style="bold cyan")
        summary.add_column("Severity", style="bold")
        summary.add_column("Packages", justify="center")
        for severity, count in summarize_by_severity(advisories):
            style = SEVERITY_STYLES[severity]
            summary.add_row(f"[{style}]{severity.value.upper()}[/{style}]", str(count))
        self.console.print(summary)

        table = Table(box=box.SIMPLE)
        table.add_column("Package", style="bold")
        table.add_column("Severity", justify="center")
        table.add_column("Count", justify="center")
        table.add_column("Title")
        ordered = sorted(advisories.values(), key=lambda r: (-r.severity.rank, r.package_name))
        for record in ordered:
            style = SEVERITY_STYLES[record.severity]
            table.add_row(
                record.package_name,
                f"[{style}]{record.severity.value}[/{style}]",
                str(record.vulnerability_count),
                record.title,
            )
        self.console.print(table)

    def print_license_issues(self, issues: List[LicenseVerdict]) -> None:
        if not issues:
            self.console.print("✅ All installed packages use recognized licenses.", style="green")
            return

        table = Table(title="⚖️  License Issues", box=box.ROUNDED, title_style="bold yellow")
        table.add_column("Package", style="bold")
        table.add_column("License")
        table.add_column("Status", justify="center")
        for verdict in issues:
            status = "[red]missing[/red]" if verdict.status is LicenseStatus.MISSING else "[yellow]unknown[/yellow]"
            table.add_row(verdict.package_name, verdict.license or "-", status)
        self.console.print(table)

    def print_impact(self, result: ImpactResult) -> None:
        if not result.impacted_packages:
            self.console.print(f"No installed package depends directly on {result.package_name}.", style="green")
            return
        self.console.print(f"[bold]Packages depending directly on {result.package_name}:[/bold]")
        for name in sorted(result.impacted_packages):
            self.console.print(f"  • {name}")

    def print_conflicts(self, prediction: ConflictPrediction) -> None:
        candidate = f"{prediction.package_name}@{prediction.version}"
        if not prediction.has_conflicts:
            self.console.print(f"✅ No conflicts predicted for {candidate}.", style="green")
            return

        table = Table(title=f"⚠️  Conflicts for {candidate}", box=box.ROUNDED, title_style="bold yellow")
        table.add_column("Package", style="bold")
        table.add_column("Installed")
        table.add_column("Required")
        for conflict in prediction.conflicts:
            table.add_row(conflict.name, conflict.current_version, f"[yellow]{conflict.required_version}[/yellow]")
        self.console.print(table)

    def print_search_results(self, query: str, results: List[SearchResult]) -> None:
        if not results:
            self.console.print(f"No packages found for '{query}'.", style="yellow")
            return

        table = Table(title=f"🔍 Search: {query}", box=box.SIMPLE, title_style="bold")
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Description")
        for result in results:
            table.add_row(result.name, result.version, result.description)
        self.console.print(table)


def _lookup_to_dict(lookup) -> Dict[str, Any]:
    data: Dict[str, Any] = {"status": lookup.status.value}
    if lookup.error:
        data["error"] = lookup.error
    return data


def advisory_to_dict(record: AdvisoryRecord) -> Dict[str, Any]:
    return {
        "package": record.package_name,
        "severity": record.severity.value,
        "title": record.title,
        "vulnerability_count": record.vulnerability_count,
    }


def versions_to_dict(lookup: VersionLookup) -> Dict[str, Any]:
    data = _lookup_to_dict(lookup)
    data["versions"] = list(lookup.version_set.versions) if lookup.version_set else []
    return data


def report_to_dict(report: DependencyReport) -> Dict[str, Any]:
    def item_to_dict(item: EnrichedDependency) -> Dict[str, Any]:
        license_data = _lookup_to_dict(item.license)
        license_data["license"] = item.license.license
        return {
            "name": item.name,
            "declared": item.dependency.declared_range,
            "resolved": item.dependency.resolved_version,
            "versions": versions_to_dict(item.versions),
            "license": license_data,
            "advisory": advisory_to_dict(item.advisory) if item.advisory else None,
        }

    return {
        "dependencies": [item_to_dict(item) for item in report.dependencies],
        "devDependencies": [item_to_dict(item) for item in report.dev_dependencies],
        "audit_error": report.audit_error,
    }


def outcome_to_dict(outcome: MutationOutcome) -> Dict[str, Any]:
    return {
        "action": outcome.action,
        "package": outcome.package_name,
        "success": outcome.success,
        "message": outcome.message,
        "refresh_error": outcome.refresh_error,
    }


def license_issues_to_list(issues: List[LicenseVerdict]) -> List[Dict[str, Any]]:
    return [
        {"package": v.package_name, "license": v.license, "status": v.status.value} for v in issues
    ]


def conflicts_to_dict(prediction: ConflictPrediction) -> Dict[str, Any]:
    return {
        "package": prediction.package_name,
        "version": prediction.version,
        "conflicts": [
            {
                "name": c.name,
                "current_version": c.current_version,
                "required_version": c.required_version,
            }
            for c in prediction.conflicts
        ],
    }
