"""CLI entry point for deploykit."""

from __future__ import annotations

import logging
import os
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

import deploykit
from deploykit.core.errors import ManifestError
from deploykit.core.models import DeployMode, OperationKind

app = typer.Typer(
    name="deploykit",
    help="Install, repair and remove applications through a phased deployment session.",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger("deploykit")

_VALID_CONFIG_KEYS = {"deploy_mode", "timeout"}
_DEFAULT_TIMEOUT = 3600.0


def _configure_logging(verbose: bool, log_file: Optional[str]) -> None:
    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=verbose)
    ]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        )
        handlers.append(file_handler)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=handlers,
        force=True,
    )


def _open_store(db: Optional[str]):
    from deploykit.data.store import DataStore

    return DataStore(db_path=db)


def _resolve_deploy_mode(mode: Optional[str], store) -> DeployMode:
    """Resolve deploy mode from CLI flag → env var → config → default."""
    candidates = [
        mode,
        os.environ.get("DEPLOYKIT_DEPLOY_MODE"),
        store.get_config("deploy_mode"),
    ]
    for value in candidates:
        if not value:
            continue
        try:
            return DeployMode(value.lower())
        except ValueError:
            console.print(f"[yellow]Ignoring unknown deploy mode {value!r}[/]")
    return DeployMode.INTERACTIVE


def _resolve_timeout(timeout: Optional[float], store) -> float:
    """Resolve installer timeout from CLI flag → env var → config → default."""
    if timeout:
        return timeout
    for value in (os.environ.get("DEPLOYKIT_TIMEOUT"), store.get_config("timeout")):
        if not value:
            continue
        try:
            return float(value)
        except ValueError:
            console.print(f"[yellow]Ignoring invalid timeout {value!r}[/]")
    return _DEFAULT_TIMEOUT


def _run_operation(
    operation: OperationKind,
    manifest: Path,
    deploy_mode: Optional[str],
    timeout: Optional[float],
    output: Optional[Path],
    debug: bool,
    verbose: bool,
    log_file: Optional[str],
    db: Optional[str],
) -> None:
    from deploykit.core.collaborators import ConsoleNotifier
    from deploykit.core.orchestrator import CancellationToken, run_deployment
    from deploykit.data.manifest import load_manifest

    _configure_logging(verbose or debug, log_file)

    try:
        plan = load_manifest(manifest)
    except ManifestError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(2)

    store = _open_store(db)
    mode = _resolve_deploy_mode(deploy_mode, store)
    resolved_timeout = _resolve_timeout(timeout, store)

    token = CancellationToken()

    def _on_sigint(signum, frame):
        if token.is_cancelled:
            raise KeyboardInterrupt
        logger.warning("Cancellation requested; stopping at the next phase boundary")
        token.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)

    def _emit(report) -> None:
        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(report.to_json(), encoding="utf-8")
            console.print(f"[green]Report saved to: {output}[/]")
        if mode != DeployMode.SILENT:
            _print_report(report.to_dict())

    try:
        exit_code = run_deployment(
            operation,
            plan,
            store=store,
            notifier=ConsoleNotifier(console, mode),
            deploy_mode=mode,
            cancel_token=token,
            debug=debug,
            on_report=_emit,
            timeout=resolved_timeout,
        )
    finally:
        signal.signal(signal.SIGINT, previous)
        store.close()

    raise typer.Exit(exit_code)


_MANIFEST_ARG = typer.Argument(..., exists=True, dir_okay=False, help="Deployment manifest (JSON)")
_MODE_OPT = typer.Option(
    None, "--deploy-mode", "-m", help="interactive, silent or noninteractive"
)
_TIMEOUT_OPT = typer.Option(None, "--timeout", "-t", help="Installer timeout in seconds")
_OUTPUT_OPT = typer.Option(None, "--output", "-o", help="Write the JSON report here")
_DEBUG_OPT = typer.Option(False, "--debug", help="Show full tracebacks on failure")
_VERBOSE_OPT = typer.Option(False, "--verbose", "-v", help="Debug-level logging")
_LOG_FILE_OPT = typer.Option(None, "--log-file", help="Also log to this file")
_DB_OPT = typer.Option(None, "--db", help="Path to the local SQLite store")


@app.command()
def install(
    manifest: Path = _MANIFEST_ARG,
    deploy_mode: Optional[str] = _MODE_OPT,
    timeout: Optional[float] = _TIMEOUT_OPT,
    output: Optional[Path] = _OUTPUT_OPT,
    debug: bool = _DEBUG_OPT,
    verbose: bool = _VERBOSE_OPT,
    log_file: Optional[str] = _LOG_FILE_OPT,
    db: Optional[str] = _DB_OPT,
) -> None:
    """Install the application described by MANIFEST."""
    _run_operation(OperationKind.INSTALL, manifest, deploy_mode, timeout, output, debug, verbose, log_file, db)


@app.command()
def uninstall(
    manifest: Path = _MANIFEST_ARG,
    deploy_mode: Optional[str] = _MODE_OPT,
    timeout: Optional[float] = _TIMEOUT_OPT,
    output: Optional[Path] = _OUTPUT_OPT,
    debug: bool = _DEBUG_OPT,
    verbose: bool = _VERBOSE_OPT,
    log_file: Optional[str] = _LOG_FILE_OPT,
    db: Optional[str] = _DB_OPT,
) -> None:
    """Remove the application described by MANIFEST."""
    _run_operation(OperationKind.UNINSTALL, manifest, deploy_mode, timeout, output, debug, verbose, log_file, db)


@app.command()
def repair(
    manifest: Path = _MANIFEST_ARG,
    deploy_mode: Optional[str] = _MODE_OPT,
    timeout: Optional[float] = _TIMEOUT_OPT,
    output: Optional[Path] = _OUTPUT_OPT,
    debug: bool = _DEBUG_OPT,
    verbose: bool = _VERBOSE_OPT,
    log_file: Optional[str] = _LOG_FILE_OPT,
    db: Optional[str] = _DB_OPT,
) -> None:
    """Reinstall, update or repair in place, depending on what is detected."""
    _run_operation(OperationKind.REPAIR, manifest, deploy_mode, timeout, output, debug, verbose, log_file, db)


@app.command()
def detect() -> None:
    """Show the environment snapshot a session would see."""
    from deploykit.core.environment import EnvironmentDetector

    console.print("[dim]Detecting environment...[/]\n")
    snapshot = EnvironmentDetector.detect_current()

    table = Table(title="Environment")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for key, value in snapshot.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def check(
    manifest: Path = _MANIFEST_ARG,
    db: Optional[str] = _DB_OPT,
) -> None:
    """Probe the application and its dependencies without changing anything."""
    from deploykit.core.collaborators import CommandFileVersionReader, NullRegistryReader
    from deploykit.core.probes import DetectionProbes
    from deploykit.data.manifest import load_manifest
    from deploykit.data.store import ReceiptInventory

    try:
        plan = load_manifest(manifest)
    except ManifestError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(2)

    store = _open_store(db)
    probes = DetectionProbes(
        ReceiptInventory(store),
        file_reader=CommandFileVersionReader(),
        registry=NullRegistryReader(),
    )

    table = Table(title=f"Detection: {plan.app.display_name}")
    table.add_column("Item", style="cyan")
    table.add_column("Status")
    table.add_column("Current")
    table.add_column("Required")

    rows = [(plan.detection_name, probes.probe_application_version(
        plan.detection_name, plan.detection_match, plan.app.version
    ))]
    for item in plan.dependencies:
        rows.append((item.name, probes.probe_application_version(
            item.name, item.match_mode, item.required_version
        )))
    for name, result in rows:
        data = result.to_dict()
        table.add_row(
            name,
            _status_markup(data["status"]),
            data["currentVersion"] or "-",
            data["requiredVersion"] or "-",
        )
    console.print(table)
    store.close()


@app.command()
def report(
    session_id: Optional[str] = typer.Argument(None, help="Session id (default: latest)"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
    db: Optional[str] = _DB_OPT,
) -> None:
    """Show a stored session report."""
    store = _open_store(db)
    stored = store.get_report(session_id)
    store.close()
    if stored is None:
        console.print("[yellow]No report found.[/]")
        raise typer.Exit(1)
    if as_json:
        console.print_json(stored.to_json())
    else:
        _print_report(stored.to_dict())


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of sessions"),
    db: Optional[str] = _DB_OPT,
) -> None:
    """List recent deployment sessions."""
    store = _open_store(db)
    sessions = store.list_sessions(limit)
    store.close()
    if not sessions:
        console.print("[yellow]No sessions recorded.[/]")
        raise typer.Exit(0)

    table = Table(title="Deployment Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Started")
    table.add_column("Operation")
    table.add_column("Application", style="green")
    table.add_column("Outcome")
    table.add_column("Exit code", justify="right")
    for row in sessions:
        table.add_row(
            row["id"][:8],
            row["created_at"],
            row["operation"],
            f"{row['app_name']} {row['app_version'] or ''}".strip(),
            row["outcome"] or "-",
            str(row["exit_code"]) if row["exit_code"] is not None else "-",
        )
    console.print(table)


@app.command()
def config(
    action: str = typer.Argument(
        "get", help="Action: get or set"
    ),
    key: Optional[str] = typer.Argument(
        None, help="Config key (deploy_mode, timeout)"
    ),
    value: Optional[str] = typer.Argument(
        None, help="Value to set"
    ),
    db: Optional[str] = _DB_OPT,
) -> None:
    """View or modify configuration."""
    store = _open_store(db)

    if action == "get":
        if key:
            val = store.get_config(key)
            if val is not None:
                console.print(f"{key} = {val}")
            else:
                console.print(f"[yellow]{key} is not set[/]")
        else:
            for k in sorted(_VALID_CONFIG_KEYS):
                val = store.get_config(k)
                console.print(f"{k} = {val or '(not set)'}")
    elif action == "set":
        if not key or value is None:
            console.print("[red]Usage: deploykit config set <key> <value>[/]")
            raise typer.Exit(1)
        if key not in _VALID_CONFIG_KEYS:
            console.print(
                f"[red]Unknown config key: {key}. "
                f"Valid keys: {', '.join(sorted(_VALID_CONFIG_KEYS))}[/]"
            )
            raise typer.Exit(1)
        if key == "deploy_mode" and value.lower() not in {m.value for m in DeployMode}:
            console.print("[red]deploy_mode must be interactive, silent or noninteractive[/]")
            raise typer.Exit(1)
        if key == "timeout":
            try:
                if float(value) <= 0:
                    raise ValueError(value)
            except ValueError:
                console.print("[red]timeout must be a positive number of seconds[/]")
                raise typer.Exit(1)
        store.set_config(key, value.lower() if key == "deploy_mode" else value)
        console.print(f"[green]Set {key} = {value}[/]")
    else:
        console.print("[red]Unknown action. Use 'get' or 'set'.[/]")
        raise typer.Exit(1)

    store.close()


@app.command()
def version() -> None:
    """Print version."""
    console.print(f"deploykit {deploykit.__version__}")


def _status_markup(status: str) -> str:
    colour = {
        "OK": "green",
        "Installed": "green",
        "Removed": "green",
        "UpdateNeeded": "yellow",
        "Missing": "red",
        "Failed": "red",
    }.get(status, "white")
    return f"[{colour}]{status}[/]"


def _print_report(data: dict) -> None:
    session = data.get("session", {})
    outcome = data.get("outcome", {})
    app_info = session.get("app", {})
    console.print(
        f"\n[bold]{session.get('operation', '?')}[/] "
        f"{app_info.get('name', '')} {app_info.get('version', '')} "
        f"→ [bold]{outcome.get('status', '?')}[/] "
        f"(exit code {outcome.get('exitCode', '?')})"
    )

    checks = Table(title="Application checks")
    checks.add_column("Check", style="cyan")
    checks.add_column("Stage")
    checks.add_column("Status")
    checks.add_column("Current")
    checks.add_column("Required")
    for entry in data.get("applicationChecks", []):
        checks.add_row(
            entry["name"],
            entry.get("stage", ""),
            _status_markup(entry["status"]),
            entry.get("currentVersion") or "-",
            entry.get("requiredVersion") or "-",
        )
    console.print(checks)

    if data.get("dependencyStatus"):
        deps = Table(title="Dependencies")
        deps.add_column("Dependency", style="cyan")
        deps.add_column("Status")
        deps.add_column("Action")
        deps.add_column("Version")
        for entry in data["dependencyStatus"]:
            deps.add_row(
                entry["name"],
                _status_markup(entry["status"]),
                entry.get("actionTaken") or "-",
                entry.get("version") or "-",
            )
        console.print(deps)

    if outcome.get("rebootRequired"):
        console.print("[yellow]A reboot is required to complete the deployment.[/]")


if __name__ == "__main__":
    app()
