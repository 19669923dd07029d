"""Command-line interface for the GitLab declarative provider."""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from gitlab_provider.cli.factory import ComponentFactory
from gitlab_provider.cli.formatters import (
    ConfigFormatter,
    PlanFormatter,
    ResourceTypeFormatter,
    ResultFormatter,
    StateFormatter,
)
from gitlab_provider.clients.exceptions import ProviderError, RemoteError
from gitlab_provider.config.loader import ConfigLoader, find_config_file
from gitlab_provider.config.models import ProviderConfig
from gitlab_provider.core.context import ProviderContext
from gitlab_provider.core.executor import ApplyResult, Plan
from gitlab_provider.core.manifest import Manifest, ManifestLoader
from gitlab_provider.core.registry import build_default_registry
from gitlab_provider.core.state import StateStore, resource_address
from gitlab_provider.resources.topics import TITLE_MIN_VERSION, TOPIC_DELETION_MIN_VERSION
from gitlab_provider.version import __version__

DEFAULT_MANIFEST = Path("resources.yaml")

# Version-gated features reported by the `version` command
GATED_FEATURES = {
    "gitlab_topic title": TITLE_MIN_VERSION,
    "gitlab_topic deletion": TOPIC_DELETION_MIN_VERSION,
}

console = Console()
logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="gitlab-provider",
    help="Reconcile declared GitLab topics, project memberships and Jira integrations.",
    rich_markup_mode="rich",
    add_completion=False,
)


def setup_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """Setup structured logging.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json or text).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Log level (overrides the configuration file)"
    ),
    log_format: Optional[str] = typer.Option(
        None, "--log-format", help="Log format: json or text (overrides the configuration file)"
    ),
) -> None:
    """Reconcile declared GitLab resources."""
    ctx.obj = {"log_level": log_level, "log_format": log_format}
    setup_logging(log_level or "WARNING", log_format or "text")


def load_configuration(ctx: typer.Context, config_file: Optional[Path] = None) -> ProviderConfig:
    """Load and validate configuration.

    Uses ``config_file`` when given, otherwise the nearest configuration
    file, otherwise the ``GITLAB_*`` environment variables.

    Raises:
        typer.Exit: If configuration loading fails
    """
    try:
        if config_file is None:
            config_file = find_config_file()
        if config_file is None:
            config = ProviderConfig.from_env()
            source = "environment"
        else:
            config = ConfigLoader().load_config(config_file)
            source = str(config_file)
    except (ProviderError, ValueError) as e:
        console.print(f"[red]Error loading configuration: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    options = ctx.obj or {}
    setup_logging(
        options.get("log_level") or config.logging.level,
        options.get("log_format") or config.logging.format,
    )
    logger.debug("Loaded configuration", source=source)
    return config


def load_manifest(manifest_file: Path) -> Manifest:
    try:
        return ManifestLoader().load(manifest_file)
    except ProviderError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)


@contextmanager
def provider_session(factory: ComponentFactory) -> Iterator[ProviderContext]:
    """Open a provider context and turn provider failures into exit code 1."""
    context = None
    try:
        context = factory.create_context()
        yield context
    except (RemoteError, ProviderError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    finally:
        if context is not None:
            context.close()


def _confirm(question: str, auto_approve: bool) -> bool:
    if auto_approve:
        return True
    return typer.confirm(question)


def _report_results(results: List[ApplyResult]) -> None:
    ResultFormatter(console).format_results(results)
    failed = [r for r in results if not r.success]
    if failed:
        console.print(f"[yellow]Completed with {len(failed)} failure(s)[/yellow]")
        raise typer.Exit(1)
    console.print("[green]✓ Apply complete[/green]")


@app.command()
def validate(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
    manifest_file: Optional[Path] = typer.Option(
        None, "--manifest", "-m", help="Path to the resource manifest to validate as well"
    ),
) -> None:
    """Validate the configuration (and manifest) without contacting GitLab."""
    console.print("[blue]Validating configuration...[/blue]")
    config = load_configuration(ctx, config_file)
    ConfigFormatter(console).format_config_summary(config)

    if manifest_file is not None:
        manifest = load_manifest(manifest_file)
        try:
            manifest.desired_states(build_default_registry())
        except ProviderError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] Manifest declares {len(manifest.resources)} resource(s)")

    console.print("[green]✓ Configuration is valid[/green]")


@app.command()
def version(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
) -> None:
    """Show the remote GitLab version and which gated features it supports."""
    console.print(f"gitlab-provider {__version__}")
    config = load_configuration(ctx, config_file)
    factory = ComponentFactory(config)

    with provider_session(factory) as context:
        gate = context.capability_gate()
        raw_version = context.client.get_version()
        capabilities = {
            feature: gate.supports_feature(min_version)
            for feature, min_version in GATED_FEATURES.items()
        }
        ConfigFormatter(console).format_version(gate.current_version(), capabilities, raw_version)


def _generate_plan(factory: ComponentFactory, context: ProviderContext, manifest: Optional[Manifest]) -> Tuple[Plan, StateStore]:
    state_store = factory.create_state_store()
    planner = factory.create_planner(context, state_store)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Reading managed resources...", total=None)
        plan = planner.plan(manifest) if manifest is not None else planner.plan_destroy()
    return plan, state_store


@app.command()
def plan(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
    manifest_file: Path = typer.Option(
        DEFAULT_MANIFEST, "--manifest", "-m", help="Path to the resource manifest"
    ),
    show_unchanged: bool = typer.Option(
        False, "--show-unchanged", help="Also list resources that are up to date"
    ),
) -> None:
    """Show what apply would change without making changes."""
    config = load_configuration(ctx, config_file)
    manifest = load_manifest(manifest_file)
    factory = ComponentFactory(config)

    with provider_session(factory) as context:
        generated, _ = _generate_plan(factory, context, manifest)
        PlanFormatter(console).format_plan(generated, show_unchanged=show_unchanged)


@app.command()
def apply(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
    manifest_file: Path = typer.Option(
        DEFAULT_MANIFEST, "--manifest", "-m", help="Path to the resource manifest"
    ),
    auto_approve: bool = typer.Option(
        False, "--auto-approve", help="Skip interactive approval"
    ),
    continue_on_error: bool = typer.Option(
        False, "--continue-on-error", help="Keep applying after a failed resource"
    ),
) -> None:
    """Create, update and delete resources so GitLab matches the manifest."""
    config = load_configuration(ctx, config_file)
    manifest = load_manifest(manifest_file)
    factory = ComponentFactory(config)

    with provider_session(factory) as context:
        generated, state_store = _generate_plan(factory, context, manifest)
        PlanFormatter(console).format_plan(generated)
        _execute(factory, context, state_store, generated, auto_approve, continue_on_error)


@app.command()
def destroy(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
    auto_approve: bool = typer.Option(
        False, "--auto-approve", help="Skip interactive approval"
    ),
) -> None:
    """Delete every resource recorded in the state file."""
    config = load_configuration(ctx, config_file)
    factory = ComponentFactory(config)

    with provider_session(factory) as context:
        generated, state_store = _generate_plan(factory, context, None)
        PlanFormatter(console).format_plan(generated)
        _execute(factory, context, state_store, generated, auto_approve, False)


def _execute(
    factory: ComponentFactory,
    context: ProviderContext,
    state_store: StateStore,
    generated: Plan,
    auto_approve: bool,
    continue_on_error: bool,
) -> None:
    if not generated.has_changes:
        # still refresh the recorded attributes of unchanged resources
        factory.create_executor(context, state_store).apply(generated)
        return
    if not _confirm("Do you want to apply these changes?", auto_approve):
        console.print("Operation cancelled")
        return

    console.print("\n[blue]Applying changes...[/blue]")
    executor = factory.create_executor(context, state_store)
    _report_results(executor.apply(generated, continue_on_error=continue_on_error))


@app.command()
def read(
    ctx: typer.Context,
    resource_type: str = typer.Argument(..., help="Resource type, e.g. gitlab_topic"),
    identity: str = typer.Argument(..., help="Resource identity, e.g. 42 or group/project:17"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
) -> None:
    """Read one resource from GitLab and display its attributes."""
    config = load_configuration(ctx, config_file)
    factory = ComponentFactory(config)

    with provider_session(factory) as context:
        reconciler = factory.registry.create(resource_type, context)
        state = reconciler.read(identity)
        if state is None:
            console.print(f"[yellow]{escape(resource_type)} {escape(identity)} does not exist[/yellow]")
            raise typer.Exit(1)
        StateFormatter(console).format_resource(f"{resource_type} {identity}", state)


@app.command(name="import")
def import_resource(
    ctx: typer.Context,
    resource_type: str = typer.Argument(..., help="Resource type, e.g. gitlab_topic"),
    name: str = typer.Argument(..., help="Local name to record the resource under"),
    identity: str = typer.Argument(..., help="Identity of the existing remote resource"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
) -> None:
    """Adopt an existing GitLab resource into the state file."""
    config = load_configuration(ctx, config_file)
    factory = ComponentFactory(config)
    address = resource_address(resource_type, name)

    with provider_session(factory) as context:
        state_store = factory.create_state_store()
        if address in state_store:
            console.print(f"[red]{escape(address)} is already managed[/red]")
            raise typer.Exit(1)
        reconciler = factory.registry.create(resource_type, context)
        state = reconciler.import_state(identity)
        state_store.put(resource_type, name, state)
        StateFormatter(console).format_resource(address, state)
        console.print(f"[green]✓ Imported {escape(address)}[/green]")


@app.command()
def resources(
    resource_type: Optional[str] = typer.Argument(
        None, help="Show the attributes of this resource type"
    ),
) -> None:
    """List the supported resource types, or the schema of one of them."""
    registry = build_default_registry()
    formatter = ResourceTypeFormatter(console)
    if resource_type is None:
        formatter.format_types({name: registry.get(name) for name in registry.names()})
        return
    try:
        formatter.format_schema(registry.get(resource_type))
    except ProviderError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)


@app.command()
def state(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
) -> None:
    """List the resources recorded in the state file."""
    config = load_configuration(ctx, config_file)
    try:
        state_store = ComponentFactory(config).create_state_store()
    except ProviderError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    StateFormatter(console).format_managed(state_store.resources())


if __name__ == "__main__":
    app()
