"""Main CLI entry point for swarm management."""

from pathlib import Path
from typing import NoReturn

import typer
import yaml
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from swarm_manager.bootstrap import BootstrapCoordinator
from swarm_manager.certificates import inspect_bundle
from swarm_manager.exceptions import (
    BootstrapError,
    CertificateError,
    ConfigurationError,
    DockerError,
    JoinTimeoutError,
    LeadershipError,
    LockError,
    SecretStoreError,
    StateStoreError,
    SwarmManagerError,
)
from swarm_manager.join import JoinDaemon
from swarm_manager.lock import HostLock
from swarm_manager.logging_config import get_logger, setup_logging
from swarm_manager.models.cluster import NodeRole
from swarm_manager.models.config import SwarmConfig
from swarm_manager.rotation import CertificateLifecycleManager
from swarm_manager.runtime import DockerSwarm
from swarm_manager.schedule import install_schedules
from swarm_manager.secret_store import SecretStore
from swarm_manager.state_store import ClusterStateStore
from swarm_manager.status import StatusFile

app = typer.Typer(
    name="swarm-mgr",
    help="Docker Swarm bootstrap and certificate lifecycle management",
    add_completion=False,
)
certs_app = typer.Typer(help="Manage the cluster TLS certificate bundle")
app.add_typer(certs_app, name="certs")

console = Console()
logger = get_logger(__name__)

JOIN_STATUS_FILE = "join-daemon.status"
CERT_STATUS_FILE = "certificate-manager.status"

_ERROR_LABELS = {
    ConfigurationError: "Configuration Error",
    DockerError: "Docker Error",
    StateStoreError: "State Store Error",
    SecretStoreError: "Secret Store Error",
    CertificateError: "Certificate Error",
    BootstrapError: "Bootstrap Error",
    JoinTimeoutError: "Join Timeout",
    LeadershipError: "Leadership Error",
    LockError: "Lock Error",
}


def _fail(e: SwarmManagerError) -> NoReturn:
    """Print a SwarmManagerError and exit (2 for configuration errors, else 1)."""
    label = _ERROR_LABELS.get(type(e), "Error")
    logger.error(f"{label}: {e.message}")
    console.print(f"[red]{label}:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")
    raise typer.Exit(code=2 if isinstance(e, ConfigurationError) else 1)


def _unexpected(e: Exception) -> NoReturn:
    logger.error(f"Unexpected error: {e}", exc_info=True)
    console.print(f"[red]Unexpected error:[/red] {e}")
    console.print("\nRun with --verbose --log-file debug.log for more details")
    raise typer.Exit(code=1)


def load_config(config_path: str | None) -> SwarmConfig:
    """Load configuration from a YAML file, or from the environment if none is given.

    Raises:
        ConfigurationError: If the source cannot be read or fails validation
    """
    try:
        if config_path:
            return SwarmConfig.load(config_path)
        return SwarmConfig.from_env()
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError("Invalid configuration", problems)
    except (OSError, TypeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {config_path}", str(e))


def mask(token: str | None) -> str:
    if not token:
        return "[dim]-[/dim]"
    return f"{token[:10]}..."


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from swarm_manager import __version__

    typer.echo(f"swarm-mgr version {__version__}")


@app.command()
def bootstrap(
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="YAML config file (default: read the environment)"
    ),
    schedules: bool = typer.Option(
        False,
        "--install-schedules/--no-install-schedules",
        help="Install and enable the systemd timers for the recurring tasks",
    ),
) -> None:
    """
    Initialize the swarm or join the one a peer initialized.

    Run once from the node's provisioning hook. Managers race for the init
    claim in the shared cluster record; workers defer to the join daemon.

    Examples:
        # Bootstrap from the provisioning environment and install timers
        swarm-mgr bootstrap --install-schedules
    """
    try:
        config = load_config(config_path)
        config.require("lock_table")

        store = ClusterStateStore(config.lock_table, config.region)
        coordinator = BootstrapCoordinator(config, DockerSwarm(), store)
        result = coordinator.run()

        console.print(f"[green]✓[/green] Bootstrap outcome: [bold]{result.outcome.value}[/bold]")
        if result.manager_address:
            console.print(f"  Manager address: {result.manager_address}")

        if schedules:
            written = install_schedules(config)
            console.print(f"[green]✓[/green] Installed {len(written)} schedule files")
    except SwarmManagerError as e:
        _fail(e)
    except Exception as e:
        _unexpected(e)


@app.command()
def join(
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="YAML config file (default: read the environment)"
    ),
    timeout: int | None = typer.Option(
        None, "--timeout", "-t", help="Seconds to keep trying before giving up"
    ),
    interval: int | None = typer.Option(
        None, "--interval", "-i", help="Seconds between polls of the cluster record"
    ),
    role: NodeRole | None = typer.Option(
        None, "--role", "-r", help="Join as worker or manager (default: configured role)"
    ),
) -> None:
    """
    Join the swarm using the published cluster record.

    Safe to run repeatedly: a node that is already a member exits 0 without
    touching the runtime. Exits 1 when the deadline elapses.
    """
    try:
        config = load_config(config_path)
        config.require("lock_table")

        daemon = JoinDaemon(
            DockerSwarm(),
            ClusterStateStore(config.lock_table, config.region),
            config.cluster_name,
            role=role or config.role,
            timeout_seconds=timeout or config.join.timeout_seconds,
            interval_seconds=interval or config.join.interval_seconds,
            status=StatusFile(config.status_dir / JOIN_STATUS_FILE),
        )
        result = daemon.run()
    except SwarmManagerError as e:
        _fail(e)
    except Exception as e:
        _unexpected(e)

    if not result.joined:
        console.print(
            f"[red]Join Timeout:[/red] not joined after {daemon.timeout_seconds}s "
            f"({result.attempts} attempts)"
        )
        raise typer.Exit(code=result.exit_code)
    console.print(f"[green]✓[/green] Node is in the swarm ({result.state.value})")


@certs_app.command("rotate")
def certs_rotate(
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="YAML config file (default: read the environment)"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Renew even if still valid"),
    output_dir: str | None = typer.Option(
        None, "--output-dir", "-o", help="Certificate directory (default: configured cert_dir)"
    ),
) -> None:
    """
    Renew the certificate bundle if needed and propagate it.

    Only the swarm leader acts; other managers exit 0 without side effects.
    Propagation order: secret store, swarm secrets, dependent services.
    """
    try:
        config = load_config(config_path)
        config.require("secret_name", "certificates.validity_days")

        manager = CertificateLifecycleManager(
            DockerSwarm(),
            SecretStore(config.secret_name, config.region),
            config.certificates,
            StatusFile(config.status_dir / CERT_STATUS_FILE),
            HostLock(config.lock_file, timeout=config.lock_timeout_seconds),
            cert_dir=Path(output_dir) if output_dir else None,
        )
        outcome = manager.run(force=force)
    except SwarmManagerError as e:
        _fail(e)
    except Exception as e:
        _unexpected(e)

    console.print(f"[green]✓[/green] Certificate check complete: [bold]{outcome.value}[/bold]")


@certs_app.command("check")
def certs_check(
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="YAML config file (default: read the environment)"
    ),
    output_dir: str | None = typer.Option(
        None, "--output-dir", "-o", help="Certificate directory (default: configured cert_dir)"
    ),
) -> None:
    """Show each bundle artifact and the days left; exit 1 if renewal is due."""
    try:
        config = load_config(config_path)
    except SwarmManagerError as e:
        _fail(e)

    settings = config.certificates
    directory = Path(output_dir) if output_dir else settings.cert_dir
    report = inspect_bundle(directory, settings.renewal_threshold_days)

    table = Table(title=f"Certificate bundle: {directory}")
    table.add_column("Artifact", style="cyan")
    table.add_column("Status")
    table.add_column("Days left", justify="right")
    table.add_column("Problem", style="yellow")

    for artifact in report:
        status = "[green]✓ OK[/green]" if artifact.ok else "[red]✗ Renew[/red]"
        days = str(artifact.days_left) if artifact.days_left is not None else "-"
        table.add_row(artifact.name, status, days, artifact.problem or "")

    console.print(table)
    if not all(artifact.ok for artifact in report):
        console.print(
            f"\n[yellow]Renewal due[/yellow] (threshold {settings.renewal_threshold_days} days)"
        )
        raise typer.Exit(code=1)


@app.command()
def status(
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="YAML config file (default: read the environment)"
    ),
) -> None:
    """Show local membership, the published cluster record and task status."""
    try:
        config = load_config(config_path)
        config.require("lock_table")

        runtime = DockerSwarm()
        try:
            state = runtime.node_state().value
        except DockerError as e:
            state = f"[red]unknown[/red] ({e.message})"

        record = ClusterStateStore(config.lock_table, config.region).read(config.cluster_name)
    except SwarmManagerError as e:
        _fail(e)
    except Exception as e:
        _unexpected(e)

    console.print(f"[bold cyan]Cluster:[/bold cyan] {config.cluster_name}")
    console.print(f"[bold cyan]Node:[/bold cyan] {config.node_id} ({config.role.value})")
    console.print(f"[bold cyan]Membership:[/bold cyan] {state}")

    table = Table(title="Shared cluster record")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    if record is None:
        table.add_row("record", "[yellow]not published[/yellow]")
    else:
        table.add_row("manager_address", record.manager_address or "[dim]-[/dim]")
        table.add_row("worker_token", mask(record.worker_token))
        table.add_row("manager_token", mask(record.manager_token))
        table.add_row("manager_node_id", record.manager_node_id or "[dim]-[/dim]")
        lease = "[dim]-[/dim]"
        if record.lease_expires_at:
            lease = str(record.lease_expires_at)
            if record.lease_expired():
                lease += " [yellow](expired)[/yellow]"
        table.add_row("lease_expires_at", lease)
        table.add_row(
            "published", "[green]✓ yes[/green]" if record.is_published else "[yellow]no[/yellow]"
        )
        table.add_row("overlay_network", record.overlay_network or "[dim]-[/dim]")
    console.print(table)

    for label, name in (("Join daemon", JOIN_STATUS_FILE), ("Certificates", CERT_STATUS_FILE)):
        last = StatusFile(config.status_dir / name).read()
        console.print(f"[bold]{label}:[/bold] {last.to_line() if last else '[dim]no runs yet[/dim]'}")


if __name__ == "__main__":
    app()
