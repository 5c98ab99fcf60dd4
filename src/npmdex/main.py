import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.panel import Panel

from .commands import (
    AnalyzeImpact,
    AuditFix,
    CheckLicenses,
    CheckVersions,
    Command,
    GetDependencies,
    InstallPackage,
    PredictConflicts,
    RunAudit,
    SearchPackages,
    UninstallPackage,
    UpdateDependency,
    dispatch,
)
from .config import create_sample_config, get_config
from .error_handling import NpmDexError, setup_error_handling
from .models import MutationOutcome
from .reporting import (
    DependencyReporter,
    advisory_to_dict,
    conflicts_to_dict,
    license_issues_to_list,
    outcome_to_dict,
    report_to_dict,
    versions_to_dict,
)
from .session import Session
from .structured_logging import configure_logging

__version__ = "1.0.0"

console = Console()


async def _run_in_session(project: str, command: Command) -> Any:
    async with Session.for_project(Path(project)) as session:
        return await dispatch(session, command)


def execute(project: str, command: Command) -> Any:
    """Run one command in a fresh session, turning npmdex errors into CLI errors."""
    try:
        return asyncio.run(_run_in_session(project, command))
    except (NpmDexError, ValueError) as e:
        raise click.ClickException(str(e))


def output_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _wants_json(ctx: click.Context) -> bool:
    return ctx.obj["output_format"] == "json"


def _finish_mutation(ctx: click.Context, outcome: MutationOutcome) -> None:
    if _wants_json(ctx):
        output_json(outcome_to_dict(outcome))
    else:
        DependencyReporter(console).print_outcome(outcome)
    if not outcome.success:
        ctx.exit(1)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    show_default=True,
    help="Directory containing package.json",
)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"]),
    default="console",
    show_default=True,
    help="Output format",
)
@click.pass_context
def cli(ctx, version, project, output_format):
    """
    📦 npmdex: npm dependency assistant

    Lists dependencies with their latest versions, licenses and security
    advisories, and installs, updates or removes packages through npm.
    """
    if version:
        console.print(f"npmdex version {__version__}", style="bold blue")
        ctx.exit()

    ctx.ensure_object(dict)
    ctx.obj["project"] = project
    ctx.obj["output_format"] = output_format

    logging_config = get_config().logging
    configure_logging(logging_config.log_level)
    setup_error_handling(
        getattr(logging, logging_config.log_level.upper(), logging.WARNING),
        mask_sensitive_data=logging_config.enable_sensitive_data_masking,
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command("list")
@click.pass_context
def list_dependencies(ctx):
    """List declared dependencies with versions, licenses and advisories."""
    report = execute(ctx.obj["project"], GetDependencies())
    if _wants_json(ctx):
        output_json(report_to_dict(report))
    else:
        DependencyReporter(console).print_report(report, ctx.obj["project"])


@cli.command()
@click.argument("name")
@click.option("--current", help="Label each version as an upgrade or downgrade from this one")
@click.pass_context
def versions(ctx, name: str, current: Optional[str]):
    """Show published release versions of a package."""
    lookup = execute(ctx.obj["project"], CheckVersions(name))
    if _wants_json(ctx):
        output_json(versions_to_dict(lookup))
    else:
        DependencyReporter(console).print_versions(name, lookup, current)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.pass_context
def update(ctx, name: str, version: str):
    """Install a specific version of a dependency."""
    outcome = execute(ctx.obj["project"], UpdateDependency(name, version))
    _finish_mutation(ctx, outcome)


@cli.command()
@click.argument("name")
@click.argument("version", required=False)
@click.pass_context
def install(ctx, name: str, version: Optional[str]):
    """Install a package, checking for conflicts first when a version is given."""
    reporter = DependencyReporter(console)
    if version and not _wants_json(ctx):
        try:
            prediction = execute(ctx.obj["project"], PredictConflicts(name, version))
        except click.ClickException as e:
            console.print(f"⚠️  Could not predict conflicts: {e.message}", style="yellow")
        else:
            reporter.print_conflicts(prediction)

    outcome = execute(ctx.obj["project"], InstallPackage(name, version))
    _finish_mutation(ctx, outcome)


@cli.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def uninstall(ctx, name: str, yes: bool):
    """Remove a package, showing which installed packages depend on it."""
    if not yes:
        try:
            impact = execute(ctx.obj["project"], AnalyzeImpact(name))
        except click.ClickException as e:
            console.print(f"⚠️  Could not analyze impact: {e.message}", style="yellow")
        else:
            DependencyReporter(console).print_impact(impact)
        if not click.confirm(f"Uninstall {name}?"):
            console.print("Cancelled.", style="dim")
            return

    outcome = execute(ctx.obj["project"], UninstallPackage(name))
    _finish_mutation(ctx, outcome)


@cli.command()
@click.option("--fix", is_flag=True, help="Run npm audit fix")
@click.pass_context
def audit(ctx, fix: bool):
    """Show npm audit advisories, or apply npm audit fix."""
    if fix:
        outcome = execute(ctx.obj["project"], AuditFix())
        _finish_mutation(ctx, outcome)
        return

    advisories = execute(ctx.obj["project"], RunAudit())
    if _wants_json(ctx):
        output_json([advisory_to_dict(record) for record in advisories.values()])
    else:
        DependencyReporter(console).print_advisories(advisories)


@cli.command()
@click.pass_context
def licenses(ctx):
    """Report installed packages with unknown or missing licenses."""
    issues = execute(ctx.obj["project"], CheckLicenses())
    if _wants_json(ctx):
        output_json(license_issues_to_list(issues))
    else:
        DependencyReporter(console).print_license_issues(issues)
    if issues:
        ctx.exit(1)


@cli.command()
@click.argument("query")
@click.option("--limit", type=int, help="Maximum number of results")
@click.pass_context
def search(ctx, query: str, limit: Optional[int]):
    """Search the registry for packages."""
    if limit is not None and limit <= 0:
        raise click.ClickException("Limit must be positive")
    results = execute(ctx.obj["project"], SearchPackages(query, limit))
    if _wants_json(ctx):
        output_json([{"name": r.name, "version": r.version, "description": r.description} for r in results])
    else:
        DependencyReporter(console).print_search_results(query, results)


@cli.command()
@click.argument("name")
@click.pass_context
def impact(ctx, name: str):
    """Show installed packages that depend directly on NAME."""
    result = execute(ctx.obj["project"], AnalyzeImpact(name))
    if _wants_json(ctx):
        output_json({"package": result.package_name, "impacted": sorted(result.impacted_packages)})
    else:
        DependencyReporter(console).print_impact(result)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.pass_context
def conflicts(ctx, name: str, version: str):
    """Predict conflicts from installing NAME@VERSION."""
    prediction = execute(ctx.obj["project"], PredictConflicts(name, version))
    if _wants_json(ctx):
        output_json(conflicts_to_dict(prediction))
    else:
        DependencyReporter(console).print_conflicts(prediction)


@cli.command()
def info():
    """Show configuration sources and usage examples."""
    info_text = """
[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]NPMDEX_REGISTRY_URL[/cyan] - Registry base URL
• [cyan]NPMDEX_REGISTRY_TOKEN[/cyan] / [cyan]NPM_TOKEN[/cyan] - Registry bearer token
• [cyan]NPMDEX_RATE_LIMIT[/cyan] - Registry requests per second
• [cyan]NPMDEX_MAX_CONCURRENT[/cyan] - Concurrent registry lookups
• [cyan]NPMDEX_NPM[/cyan] - npm executable
• [cyan]NPMDEX_COMMAND_TIMEOUT[/cyan] - Timeout for npm install/uninstall
• [cyan]NPMDEX_EXTRA_LICENSES[/cyan] - Comma-separated extra allowed licenses
• [cyan]NPMDEX_LOG_LEVEL[/cyan] - Log level

[bold blue]📄 Configuration Files:[/bold blue]

• [green].npmdex.toml[/green] or [green].npmdex.json[/green] - Project-level config
• [green]~/.config/npmdex/config.toml[/green] - User-level config

[bold blue]💡 Usage Examples:[/bold blue]

  npmdex list
  npmdex versions lodash --current 4.17.20
  npmdex install express 4.18.2
  npmdex uninstall left-pad
  npmdex audit --fix
  npmdex --output-format json licenses
"""
    console.print(Panel(info_text, title="[bold]npmdex Information[/bold]", border_style="blue"))


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".npmdex.toml",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        config_path.write_text(create_sample_config(), encoding="utf-8")
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current = get_config()

    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))

    console.print("\n[bold cyan]🌐 Network Settings:[/bold cyan]")
    console.print(f"  Registry: {current.network.registry_url}")
    console.print(f"  Token: {'set' if current.network.registry_token else 'not set'}")
    console.print(f"  Rate Limit: {current.network.rate_limit} req/s")
    console.print(f"  Max Concurrent: {current.network.max_concurrent}")
    console.print(f"  Connect Timeout: {current.network.connect_timeout}s")
    console.print(f"  Read Timeout: {current.network.read_timeout}s")
    console.print(f"  Search Limit: {current.network.search_limit}")

    console.print("\n[bold cyan]⚙️  npm Settings:[/bold cyan]")
    console.print(f"  Executable: {current.process.npm_executable}")
    console.print(f"  Command Timeout: {current.process.command_timeout_seconds}s")
    console.print(f"  Audit Timeout: {current.process.audit_timeout_seconds}s")
    console.print(f"  Tree Timeout: {current.process.tree_timeout_seconds}s")

    console.print("\n[bold cyan]⚖️  License Settings:[/bold cyan]")
    extra = ", ".join(current.licenses.extra_allowed) or "none"
    console.print(f"  Extra Allowed: {extra}")

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current.logging.log_level}")
    console.print(f"  Sensitive Data Masking: {current.logging.enable_sensitive_data_masking}")


if __name__ == "__main__":
    cli()
