"""Output formatters for CLI commands."""

from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from gitlab_provider.config.models import ProviderConfig
from gitlab_provider.core.capabilities import ServerVersion
from gitlab_provider.core.executor import ApplyResult, Plan, PlanAction
from gitlab_provider.core.state import ManagedResource
from gitlab_provider.resources.schema import ResourceState

ACTION_STYLES = {
    PlanAction.CREATE: ("green", "+"),
    PlanAction.UPDATE: ("yellow", "~"),
    PlanAction.REPLACE: ("magenta", "-/+"),
    PlanAction.DELETE: ("red", "-"),
    PlanAction.NOOP: ("blue", "="),
}


class PlanFormatter:
    """Formats plans for display."""

    def __init__(self, console: Console):
        self.console = console

    def format_plan(self, plan: Plan, show_unchanged: bool = False) -> None:
        """Display a plan in Terraform-like style."""
        self.console.print()
        self.console.print("[bold blue]Plan[/bold blue]")
        self.console.print()

        if not plan.has_changes:
            self.console.print("[yellow]No changes. The remote matches the manifest.[/yellow]")
            return

        for item in plan.items:
            if item.action == PlanAction.NOOP and not show_unchanged:
                continue
            color, symbol = ACTION_STYLES[item.action]
            identity = f" (id: {escape(item.identity)})" if item.identity else ""
            self.console.print(f"  [{color}]{symbol} {escape(item.address)}{identity}[/{color}]")
            self.console.print(f"    [dim]{escape(item.reason)}[/dim]")
            if item.changes:
                self.console.print(f"    [dim]→ changes: {escape(', '.join(item.changes))}[/dim]")

        self.console.print()
        self.format_summary(plan)

    def format_summary(self, plan: Plan) -> None:
        summary = plan.summary()
        self.console.print(
            f"Plan: [green]{summary['create']} to create[/green], "
            f"[yellow]{summary['update']} to update[/yellow], "
            f"[magenta]{summary['replace']} to replace[/magenta], "
            f"[red]{summary['delete']} to delete[/red]."
        )


class ResultFormatter:
    """Formats apply results for display."""

    def __init__(self, console: Console):
        self.console = console

    def format_results(self, results: List[ApplyResult]) -> None:
        if not results:
            return

        table = Table(title="Apply Results")
        table.add_column("Resource", style="cyan")
        table.add_column("Action", style="magenta")
        table.add_column("Identity", style="white")
        table.add_column("Status")

        for result in results:
            status = "[green]ok[/green]" if result.success else "[red]failed[/red]"
            table.add_row(
                escape(result.address),
                result.action.value,
                escape(result.identity or "-"),
                status,
            )
        self.console.print(table)

        failures = [r for r in results if not r.success]
        if failures:
            self.console.print("\n[red]Errors:[/red]")
            for i, result in enumerate(failures, 1):
                self.console.print(f"  {i}. {escape(result.address)}: {escape(result.error_message or '')}")


class StateFormatter:
    """Formats resource state for display."""

    def __init__(self, console: Console):
        self.console = console

    def format_resource(self, title: str, state: ResourceState) -> None:
        """Display the attributes of one resource, sensitive values masked."""
        specs = state.attribute_specs()
        table = Table(title=title)
        table.add_column("Attribute", style="cyan")
        table.add_column("Value", style="green")

        for name, value in state.model_dump(mode="json").items():
            shown = "(sensitive)" if specs[name].sensitive else _display_value(value)
            table.add_row(name, escape(shown))
        self.console.print(table)

    def format_managed(self, resources: List[ManagedResource]) -> None:
        if not resources:
            self.console.print("[yellow]No managed resources[/yellow]")
            return

        table = Table(title="Managed Resources")
        table.add_column("Address", style="cyan")
        table.add_column("Identity", style="magenta")
        table.add_column("Updated", style="white")
        for resource in resources:
            table.add_row(
                escape(resource.address),
                escape(resource.identity),
                resource.updated_at.isoformat(timespec="seconds"),
            )
        self.console.print(table)


class ResourceTypeFormatter:
    """Formats the schema of the available resource types."""

    def __init__(self, console: Console):
        self.console = console

    def format_types(self, reconcilers: Dict[str, type]) -> None:
        table = Table(title="Resource Types")
        table.add_column("Type", style="cyan")
        table.add_column("Description", style="white")
        table.add_column("Import", style="green")
        for name, reconciler in sorted(reconcilers.items()):
            table.add_row(name, reconciler.description, "yes" if reconciler.supports_import else "no")
        self.console.print(table)

    def format_schema(self, reconciler: type) -> None:
        model = reconciler.state_model
        table = Table(title=f"{reconciler.resource_type} attributes")
        table.add_column("Attribute", style="cyan")
        table.add_column("Kind", style="magenta")
        table.add_column("Flags", style="yellow")
        table.add_column("Description", style="white")
        for name, spec in model.attribute_specs().items():
            flags = [
                flag
                for flag, enabled in (
                    ("sensitive", spec.sensitive),
                    ("force new", spec.force_new),
                    ("identity", spec.path_param),
                )
                if enabled
            ]
            table.add_row(
                name,
                spec.kind.value,
                ", ".join(flags),
                escape(model.model_fields[name].description or ""),
            )
        self.console.print(table)


class ConfigFormatter:
    """Formats configuration information for display."""

    def __init__(self, console: Console):
        self.console = console

    def format_config_summary(self, config: ProviderConfig) -> None:
        """Display configuration summary, never the token."""
        table = Table(title="Configuration Summary")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("GitLab API", escape(str(config.gitlab.base_url)))
        table.add_row("Token", "(set)")
        table.add_row("TLS Verification", "disabled" if config.gitlab.insecure else "enabled")
        if config.gitlab.cacert_file:
            table.add_row("CA Bundle", escape(str(config.gitlab.cacert_file)))
        table.add_row("Timeout", f"{config.gitlab.timeout_seconds}s")
        table.add_row("Max Retries", str(config.gitlab.max_retries))
        table.add_row("State File", escape(str(config.state.path)))
        table.add_row("Log Level", config.logging.level)

        self.console.print(table)

    def format_version(
        self,
        version: ServerVersion,
        capabilities: Dict[str, bool],
        raw_version: Optional[str] = None,
    ) -> None:
        self.console.print(f"GitLab version: [bold]{escape(raw_version or str(version))}[/bold]")
        table = Table(title="Capabilities")
        table.add_column("Feature", style="cyan")
        table.add_column("Supported")
        for feature, supported in capabilities.items():
            table.add_row(feature, "[green]yes[/green]" if supported else "[red]no[/red]")
        self.console.print(table)


def _display_value(value: Any) -> str:
    if value is None:
        return "-"
    if value == "":
        return '""'
    return str(value)

