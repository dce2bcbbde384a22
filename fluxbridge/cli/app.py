"""Main Typer application for the ``fluxbridge`` command.

Entry point: ``fluxbridge`` (configured via pyproject.toml console_scripts).

Commands: apply, diff, delete, artifacts, info.
"""

from __future__ import annotations

import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from fluxbridge.backend.base import Backend
from fluxbridge.backend.kube import KubeBackend
from fluxbridge.backend.memory import InMemoryBackend, flux_reconciler
from fluxbridge.config import BridgeConfig
from fluxbridge.core.artifact_store import ArtifactStore
from fluxbridge.core.context import Context
from fluxbridge.core.controller import FluxController
from fluxbridge.errors import FluxBridgeError
from fluxbridge.logging_setup import configure_logging

app = typer.Typer(
    name="fluxbridge",
    help="fluxbridge: publish configuration as Flux artifacts and drive it to convergence.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

console = Console()

NamespaceOption = typer.Option(None, "--namespace", "-n", help="Namespace for Flux objects.")
DataDirOption = typer.Option(None, "--data-dir", help="Artifact storage directory.")
SimulateOption = typer.Option(
    False,
    "--simulate",
    help="Use an in-memory backend with a simulated reconciler instead of a cluster.",
)


def _load_config(namespace: str | None, data_dir: Path | None) -> BridgeConfig:
    overrides: dict[str, object] = {}
    if namespace:
        overrides["namespace"] = namespace
    if data_dir is not None:
        overrides["data_dir"] = data_dir
    return BridgeConfig(**overrides)


def build_controller(config: BridgeConfig, *, simulate: bool = False) -> FluxController:
    """Wire a controller from configuration."""
    backend: Backend
    if simulate:
        backend = InMemoryBackend(reactors=[flux_reconciler()])
    else:
        backend = KubeBackend.from_config(config)
    store = ArtifactStore(
        config.data_dir,
        config.storage_address,
        namespace=config.namespace,
        owner=config.artifact_owner,
        advertised_address=config.advertised_address,
    )
    return FluxController.connect(backend, store, config)


def _signal_context() -> Context:
    """A context cancelled by SIGTERM."""
    ctx = Context.background()
    signal.signal(signal.SIGTERM, lambda *_: ctx.cancel())
    return ctx


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    return typer.Exit(code=1)


@app.command(name="apply", help="Apply a configuration file and wait for it to converge.")
def apply_cmd(
    name: str = typer.Argument(..., help="Name of the Flux objects."),
    revision: str = typer.Argument(..., help="Revision label for this content."),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Configuration file."),
    namespace: str = NamespaceOption,
    data_dir: Path = DataDirOption,
    simulate: bool = SimulateOption,
) -> None:
    config = _load_config(namespace, data_dir)
    configure_logging(config.log_level)
    try:
        controller = build_controller(config, simulate=simulate)
        artifact = controller.apply(name, revision, file.read_bytes(), _signal_context())
    except (FluxBridgeError, OSError) as exc:
        raise _fail(exc) from exc

    console.print(
        Panel(
            "\n".join([
                f"[bold]Name:[/bold]      {name}",
                f"[bold]Revision:[/bold]  {artifact.revision}",
                f"[bold]Digest:[/bold]    {artifact.digest}",
                f"[bold]URL:[/bold]       {artifact.url}",
                f"[bold]Size:[/bold]      {artifact.size} bytes",
            ]),
            title="[bold green]Applied[/bold green]",
            border_style="green",
        )
    )


@app.command(name="diff", help="Check whether live state still matches a configuration file.")
def diff_cmd(
    name: str = typer.Argument(..., help="Name of the Flux objects."),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Expected configuration."),
    namespace: str = NamespaceOption,
    data_dir: Path = DataDirOption,
    simulate: bool = SimulateOption,
) -> None:
    config = _load_config(namespace, data_dir)
    configure_logging(config.log_level)
    try:
        controller = build_controller(config, simulate=simulate)
        drift, message = controller.diff(name, file.read_bytes())
    except (FluxBridgeError, OSError) as exc:
        raise _fail(exc) from exc

    if drift:
        console.print(f"[yellow]Drift:[/yellow] {message}")
        raise typer.Exit(code=2)
    console.print(f"[green]{message}[/green]")


@app.command(name="delete", help="Delete the Flux objects and artifacts for a name.")
def delete_cmd(
    name: str = typer.Argument(..., help="Name of the Flux objects."),
    namespace: str = NamespaceOption,
    data_dir: Path = DataDirOption,
    simulate: bool = SimulateOption,
) -> None:
    config = _load_config(namespace, data_dir)
    configure_logging(config.log_level)
    try:
        controller = build_controller(config, simulate=simulate)
        controller.delete(name, _signal_context())
    except (FluxBridgeError, OSError) as exc:
        raise _fail(exc) from exc
    console.print(f"[green]Deleted[/green] {name}")


@app.command(name="artifacts", help="List retained artifacts for a name.")
def artifacts_cmd(
    name: str = typer.Argument(..., help="Name of the Flux objects."),
    namespace: str = NamespaceOption,
    data_dir: Path = DataDirOption,
) -> None:
    config = _load_config(namespace, data_dir)
    try:
        store = ArtifactStore(
            config.data_dir,
            config.storage_address,
            namespace=config.namespace,
            owner=config.artifact_owner,
        )
        paths = store.list_artifacts(name)
    except (FluxBridgeError, OSError) as exc:
        raise _fail(exc) from exc

    if not paths:
        console.print("[dim]No artifacts retained.[/dim]")
        return

    table = Table(title=f"Artifacts for {name}")
    table.add_column("Revision", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Path")
    for path in paths:
        revision = path.name.removesuffix(".tar.gz")
        table.add_row(revision, str(path.stat().st_size), str(path.relative_to(store.root)))
    console.print(table)


@app.command(name="info", help="Show the effective configuration.")
def info_cmd(
    namespace: str = NamespaceOption,
    data_dir: Path = DataDirOption,
) -> None:
    config = _load_config(namespace, data_dir)
    table = Table(title="fluxbridge configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("namespace", config.namespace)
    table.add_row("worker_name", config.worker_name)
    table.add_row("data_dir", str(config.data_dir))
    table.add_row("storage_address", config.storage_address)
    table.add_row("advertised_address", config.advertised_address)
    table.add_row("poll_interval", f"{config.poll_interval_seconds}s")
    table.add_row("deployment_interval", str(config.deployment_interval))
    table.add_row("deployment_timeout", str(config.deployment_timeout))
    table.add_row("kube_api_url", config.kube_api_url)
    console.print(table)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
