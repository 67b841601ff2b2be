"""Typer-powered command line interface for ``backhaulctl``.

Commands that act on a single instance accept an optional ``NAME``. When it is
omitted the interactive selector lists the configured instances on stderr and
reads a number from stdin, so the chosen name is the only thing ``select``
ever writes to stdout.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import (
    ArtifactError,
    ConfigValidationError,
    ConfirmationAborted,
    NotFoundError,
)
from .exit_codes import ExitCode
from .instances import CONFIG_PREFIX, ConfigStore, Instance
from .lifecycle import CONFIRMATION_WORD, LifecycleController, LifecycleResult
from .logging import OperationScope, StructuredLogger
from .providers import (
    ActionOutcome,
    CoreInstaller,
    RuntimeState,
    StatusAggregator,
    SystemdProvider,
)
from .providers.core_installer import update_available
from .selection import InstanceSelector
from .templates import TemplateEngine

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    "-c",
    help="Path to an alternate configuration file.",
)
NAME_ARGUMENT = typer.Argument(
    None,
    help="Instance name, e.g. 203.0.113.5_443 or iran_443. Omit to choose interactively.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Backhaul tunnel operator console.

        Creates client (Kharej) and server (Iran) tunnel instances, runs each
        one as a backhaul@<name>.service systemd unit and installs the
        Backhaul core from its GitHub releases.
        """
    ).strip(),
)
client_app = typer.Typer(help="Manage client (Kharej) tunnel instances.")
server_app = typer.Typer(help="Manage server (Iran) tunnel instances.")
core_app = typer.Typer(help="Install and inspect the Backhaul core executable.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(client_app, name="client")
app.add_typer(server_app, name="server")
app.add_typer(core_app, name="core")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    store: ConfigStore
    systemd_provider: SystemdProvider
    status: StatusAggregator
    lifecycle: LifecycleController
    core_installer: CoreInstaller


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc

    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    store = ConfigStore(
        root=config.core_dir,
        templates=templates,
        sniffer_log=config.client.sniffer_log,
    )
    systemd_provider = SystemdProvider(
        templates=templates,
        core_dir=config.core_dir,
        binary_name=config.binary_name,
        config_prefix=CONFIG_PREFIX,
        systemd_dir=config.systemd.unit_dir,
        systemctl_bin=config.systemd.systemctl_bin,
        journalctl_bin=config.systemd.journalctl_bin,
    )
    lifecycle = LifecycleController(
        store,
        systemd_provider,
        restart_timeout=config.lifecycle.restart_timeout,
        poll_interval=config.lifecycle.poll_interval,
    )
    installer = CoreInstaller(
        binary_path=config.binary_path,
        repository=config.release.repository,
        api_url=config.release.api_url,
        timeout=config.release.timeout,
    )
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        store=store,
        systemd_provider=systemd_provider,
        status=StatusAggregator(store, systemd_provider),
        lifecycle=lifecycle,
        core_installer=installer,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the backhaulctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"backhaulctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _resolve_instance(
    runtime: RuntimeContext,
    name: str | None,
    op: OperationScope,
) -> Instance:
    """Return the named instance, or run the selector when *name* is omitted."""
    if name:
        try:
            instance = runtime.store.get(name)
        except NotFoundError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        op.add_step("instance.lookup", status="success", detail=instance.name)
        return instance

    selection = InstanceSelector(runtime.status, display=err_console).select()
    if not selection.resolved or selection.instance is None:
        _command_error(
            op,
            f"No instance selected ({selection.reason}).",
            rc=ExitCode.VALIDATION,
        )
    op.add_step("instance.select", status="success", detail=selection.instance.name)
    op.target["name"] = selection.instance.name
    return selection.instance


def _finish_lifecycle(op: OperationScope, result: LifecycleResult, done: str) -> None:
    """Record a lifecycle result and map its outcome to output and exit code."""
    for step in result.steps:
        op.add_step(step["name"], status=step["status"], detail=step["detail"] or None)
    context: dict[str, object] = {"instance": result.instance}
    if result.runtime_state is not None:
        context["runtime_state"] = result.runtime_state.value

    if result.outcome is ActionOutcome.FAILED:
        details = [step["detail"] for step in result.steps if step["status"] == "failed"]
        _command_error(
            op,
            f"{result.action} failed for '{result.instance}'.",
            rc=ExitCode.PROVIDER,
            errors=details or None,
        )

    if result.outcome is ActionOutcome.PARTIAL:
        for warning in result.warnings:
            err_console.print(f"[yellow]warning:[/yellow] {warning}")
        message = f"{done} with warnings."
        console.print(f"[yellow]Instance '{result.instance}' {message}[/yellow]")
        op.warning(
            f"Instance {message}",
            changed=1,
            warnings=result.warnings,
            rc=int(ExitCode.PARTIAL),
            context=context,
        )
        raise typer.Exit(code=ExitCode.PARTIAL)

    console.print(f"[green]Instance '{result.instance}' {done}.[/green]")
    op.success(f"Instance {done}.", changed=1, context=context)


def _start_after_create(runtime: RuntimeContext, op: OperationScope, instance: Instance) -> None:
    try:
        result = runtime.lifecycle.enable_and_start(instance)
    except OSError as exc:
        _command_error(op, f"Could not write the unit template: {exc}", rc=ExitCode.ENVIRONMENT)
    _finish_lifecycle(op, result, "created and started")


# ---------------------------------------------------------------------------
# Instance creation
# ---------------------------------------------------------------------------


@client_app.command("create")
def client_create(
    ctx: typer.Context,
    ip: str = typer.Option(
        ...,
        "--ip",
        prompt="Kharej server IP",
        help="Remote server IPv4 address.",
    ),
    port: str = typer.Option(..., "--port", prompt="Tunnel port", help="Remote tunnel port."),
    token: str = typer.Option(..., "--token", prompt="Token", help="Shared tunnel token."),
    pool_size: str | None = typer.Option(
        None,
        "--pool-size",
        help="Connection pool size (defaults to client.pool_size).",
    ),
    start: bool = typer.Option(True, "--start/--no-start", help="Enable and start the unit."),
) -> None:
    """Write a client config record and optionally start its unit."""
    runtime = _get_runtime(ctx)
    pool = pool_size if pool_size is not None else runtime.config.client.pool_size
    with runtime.logger.operation(
        "client create",
        args={"ip": ip, "port": port, "pool_size": pool, "start": start},
        target={"kind": "instance", "role": "client"},
    ) as op:
        try:
            instance = runtime.lifecycle.create_client(ip, port, token, pool)
        except ConfigValidationError as exc:
            _command_error(op, f"Invalid {exc.field}: {exc.message}", rc=ExitCode.VALIDATION)
        except OSError as exc:
            _command_error(op, f"Could not write config record: {exc}", rc=ExitCode.ENVIRONMENT)
        op.target["name"] = instance.name
        op.add_step("config.write", status="success", detail=str(instance.config_path))
        if not start:
            console.print(f"[green]Client instance '{instance.name}' created.[/green]")
            op.success("Client instance created.", changed=1)
            return
        _start_after_create(runtime, op, instance)


@server_app.command("create")
def server_create(
    ctx: typer.Context,
    port: str = typer.Option(..., "--port", prompt="Tunnel port", help="Port to listen on."),
    token: str = typer.Option(..., "--token", prompt="Token", help="Shared tunnel token."),
    start: bool = typer.Option(True, "--start/--no-start", help="Enable and start the unit."),
) -> None:
    """Write a server config record and optionally start its unit."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "server create",
        args={"port": port, "start": start},
        target={"kind": "instance", "role": "server"},
    ) as op:
        try:
            instance = runtime.lifecycle.create_server(port, token)
        except ConfigValidationError as exc:
            _command_error(op, f"Invalid {exc.field}: {exc.message}", rc=ExitCode.VALIDATION)
        except OSError as exc:
            _command_error(op, f"Could not write config record: {exc}", rc=ExitCode.ENVIRONMENT)
        op.target["name"] = instance.name
        op.add_step("config.write", status="success", detail=str(instance.config_path))
        if not start:
            console.print(f"[green]Server instance '{instance.name}' created.[/green]")
            op.success("Server instance created.", changed=1)
            return
        _start_after_create(runtime, op, instance)


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------

_RUNTIME_MARKUP = {
    RuntimeState.RUNNING: "[green]ACTIVE[/green]",
    RuntimeState.FAILED: "[red]FAILED[/red]",
    RuntimeState.TRANSITIONING: "[yellow]CHANGING[/yellow]",
    RuntimeState.STOPPED: "[dim]STOPPED[/dim]",
    RuntimeState.UNKNOWN: "[dim]UNKNOWN[/dim]",
}


@app.command("list")
def instance_list(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit instances as JSON instead of a table.",
    ),
) -> None:
    """List configured instances with their unit state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target={"kind": "instance", "scope": "all"},
    ) as op:
        instances = runtime.store.list_instances()
        rows = [(instance, runtime.status.status_for(instance)) for instance in instances]
        if json_output:
            console.print_json(
                data={
                    "instances": [
                        {
                            "name": instance.name,
                            "role": instance.role.value,
                            "endpoint": instance.endpoint,
                            "unit": status.unit,
                            "runtime": status.runtime.value,
                            "enablement": status.enablement.value,
                            "config_path": str(instance.config_path),
                        }
                        for instance, status in rows
                    ]
                }
            )
            op.success("Reported instance list as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("#", justify="right")
        table.add_column("Name", style="bold")
        table.add_column("Role")
        table.add_column("Endpoint")
        table.add_column("State")
        table.add_column("Boot")

        if not rows:
            table.add_row("", "(none)", "", "", "", "")
        for index, (instance, status) in enumerate(rows, start=1):
            table.add_row(
                str(index),
                instance.name,
                instance.role.value,
                instance.endpoint,
                _RUNTIME_MARKUP[status.runtime],
                status.enablement.value,
            )
        console.print(table)
        op.success("Reported instance list.", changed=0, context={"count": len(rows)})


@app.command("select")
def instance_select(ctx: typer.Context) -> None:
    """Pick an instance interactively and print its name on stdout."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "select",
        target={"kind": "instance"},
    ) as op:
        instance = _resolve_instance(runtime, None, op)
        typer.echo(instance.name)
        op.success("Instance selected.", changed=0)


@app.command("summary")
def fleet_summary(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Emit the summary as JSON."),
) -> None:
    """Show fleet counts by runtime and boot state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "summary",
        args={"json": json_output},
        target={"kind": "fleet"},
    ) as op:
        snapshot = runtime.status.snapshot()
        core_installed = runtime.core_installer.is_installed()
        data = snapshot.to_dict()
        data["core"] = {
            "installed": core_installed,
            "path": str(runtime.config.binary_path),
        }
        if json_output:
            console.print_json(data=data)
            op.success("Reported fleet summary as JSON.", changed=0, context=data)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Bucket", style="bold")
        table.add_column("Count", justify="right")
        table.add_row("total", str(snapshot.total))
        table.add_row("[green]running[/green]", str(snapshot.running))
        table.add_row("stopped", str(snapshot.stopped))
        table.add_row("[red]failed[/red]", str(snapshot.failed))
        table.add_row("[yellow]transitioning[/yellow]", str(snapshot.transitioning))
        table.add_row("enabled", str(snapshot.enabled))
        table.add_row("disabled", str(snapshot.disabled))
        table.add_row("enablement unknown", str(snapshot.unknown_enablement))
        console.print(table)
        state = "[green]installed[/green]" if core_installed else "[red]not installed[/red]"
        console.print(f"Core: {state} ({runtime.config.binary_path})")
        op.success("Reported fleet summary.", changed=0, context=data)


@app.command("status")
def instance_status(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    lines: int | None = typer.Option(
        None,
        "--lines",
        "-n",
        min=1,
        help="Number of log lines to include (defaults to lifecycle.status_log_lines).",
    ),
) -> None:
    """Show detailed unit status and recent logs for one instance."""
    runtime = _get_runtime(ctx)
    count = lines or runtime.config.lifecycle.status_log_lines
    with runtime.logger.operation(
        "status",
        args={"name": name, "lines": count},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _resolve_instance(runtime, name, op)
        status = runtime.status.status_for(instance)
        console.print(f"[bold]{instance.name}[/bold] ({instance.role.value}, {instance.endpoint})")
        console.print(f"Unit: {status.unit}")
        console.print(f"State: {_RUNTIME_MARKUP[status.runtime]}  Boot: {status.enablement.value}")
        console.print(f"Config: {instance.config_path}")
        text = runtime.systemd_provider.status_text(instance.unit)
        if text:
            console.rule("systemctl status")
            console.print(text, markup=False, highlight=False)
        log_lines = runtime.systemd_provider.tail_logs(instance.unit, count)
        console.rule(f"last {count} log lines")
        if log_lines:
            console.print("\n".join(log_lines), markup=False, highlight=False)
        else:
            console.print("[dim](no log entries)[/dim]")
        op.success(
            "Reported instance status.",
            changed=0,
            context={
                "runtime": status.runtime.value,
                "enablement": status.enablement.value,
                "log_lines": len(log_lines),
            },
        )


@app.command("logs")
def instance_logs(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    lines: int | None = typer.Option(
        None,
        "--lines",
        "-n",
        min=1,
        help="Number of log lines to show (defaults to lifecycle.log_lines).",
    ),
) -> None:
    """Print the most recent journal lines for one instance."""
    runtime = _get_runtime(ctx)
    count = lines or runtime.config.lifecycle.log_lines
    with runtime.logger.operation(
        "logs",
        args={"name": name, "lines": count},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _resolve_instance(runtime, name, op)
        log_lines = runtime.systemd_provider.tail_logs(instance.unit, count)
        if not log_lines:
            err_console.print(f"[dim]No log entries for {instance.unit}.[/dim]")
        for line in log_lines:
            typer.echo(line)
        op.success("Reported instance logs.", changed=0, context={"lines": len(log_lines)})


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@app.command("enable")
def instance_enable(ctx: typer.Context, name: str | None = NAME_ARGUMENT) -> None:
    """Enable an instance at boot and start it now."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "enable",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _resolve_instance(runtime, name, op)
        try:
            result = runtime.lifecycle.enable_and_start(instance)
        except OSError as exc:
            _command_error(op, f"Could not write the unit template: {exc}", rc=ExitCode.ENVIRONMENT)
        _finish_lifecycle(op, result, "enabled and started")


@app.command("disable")
def instance_disable(ctx: typer.Context, name: str | None = NAME_ARGUMENT) -> None:
    """Stop an instance and disable it at boot."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "disable",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _resolve_instance(runtime, name, op)
        result = runtime.lifecycle.disable_and_stop(instance)
        _finish_lifecycle(op, result, "stopped and disabled")


@app.command("restart")
def instance_restart(ctx: typer.Context, name: str | None = NAME_ARGUMENT) -> None:
    """Restart an instance and wait for it to settle."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restart",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _resolve_instance(runtime, name, op)

        def _progress(state: RuntimeState) -> None:
            err_console.print(f"[dim]{instance.unit}: {state.value}[/dim]")

        result = runtime.lifecycle.restart(instance, on_progress=_progress)
        _finish_lifecycle(op, result, "restarted")


@app.command("delete")
def instance_delete(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    yes: bool = typer.Option(False, "--yes", help="Skip the typed confirmation prompt."),
) -> None:
    """Stop, disable and remove an instance's config record."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "delete",
        args={"name": name, "yes": yes},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _resolve_instance(runtime, name, op)
        if yes:
            confirmation = CONFIRMATION_WORD
        else:
            confirmation = typer.prompt(
                f"Type '{CONFIRMATION_WORD}' to delete '{instance.name}'",
                default="",
                show_default=False,
            ).strip()
        try:
            result = runtime.lifecycle.delete(instance, confirmation)
        except ConfirmationAborted as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        _finish_lifecycle(op, result, "deleted")


# ---------------------------------------------------------------------------
# Core executable
# ---------------------------------------------------------------------------


@core_app.command("install")
def core_install(ctx: typer.Context) -> None:
    """Download the latest core release and install it atomically."""
    runtime = _get_runtime(ctx)
    installer = runtime.core_installer
    with runtime.logger.operation(
        "core install",
        target={"kind": "core", "path": str(installer.binary_path)},
    ) as op:
        def _stage(stage: str, detail: str) -> None:
            op.add_step(f"core.{stage}", status="success", detail=detail)
            err_console.print(f"[dim]{stage}: {detail}[/dim]")

        try:
            result = installer.install_latest(on_stage=_stage)
        except ArtifactError as exc:
            _command_error(
                op,
                f"Core install failed during {exc.stage}: {exc}",
                rc=ExitCode.ARTIFACT,
            )
        except OSError as exc:
            _command_error(op, f"Core install failed: {exc}", rc=ExitCode.ENVIRONMENT)

        context = {
            "tag": result.tag,
            "asset": result.asset_name,
            "format": result.detected_format.value,
            "version": result.version,
        }
        console.print(f"[green]Installed core {result.tag} at {result.path}.[/green]")
        if result.version:
            console.print(f"Core version: {result.version}")

        try:
            changed = runtime.systemd_provider.ensure_unit_template_installed()
        except OSError as exc:
            message = f"Unit template not written: {exc}"
            op.add_step("systemd.template", status="failed", detail=str(exc))
            err_console.print(f"[yellow]warning:[/yellow] {message}")
            op.warning(
                "Core installed; unit template missing.",
                changed=1,
                warnings=[message],
                rc=int(ExitCode.PARTIAL),
                context=context,
            )
            raise typer.Exit(code=ExitCode.PARTIAL) from exc
        op.add_step(
            "systemd.template",
            status="success",
            detail="installed" if changed else "unchanged",
        )
        op.success("Core installed.", changed=1 + int(changed), context=context)


@core_app.command("remove")
def core_remove(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation."),
) -> None:
    """Delete the installed core executable."""
    runtime = _get_runtime(ctx)
    installer = runtime.core_installer
    with runtime.logger.operation(
        "core remove",
        args={"yes": yes},
        target={"kind": "core", "path": str(installer.binary_path)},
    ) as op:
        if not yes and not typer.confirm(f"Remove {installer.binary_path}?", default=False):
            _command_error(op, "Core removal cancelled.", rc=ExitCode.VALIDATION)
        if installer.remove():
            op.add_step("core.remove", status="success", detail=str(installer.binary_path))
            console.print(f"[green]Removed {installer.binary_path}.[/green]")
            op.success("Core removed.", changed=1)
            return
        op.add_step("core.remove", status="skipped", detail="absent")
        console.print(f"[yellow]{installer.binary_path} is not installed.[/yellow]")
        op.success("Core already absent.", changed=0)


@core_app.command("latest")
def core_latest(ctx: typer.Context) -> None:
    """Show the latest release tag and the asset matching this host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "core latest",
        target={"kind": "core", "repository": runtime.config.release.repository},
    ) as op:
        try:
            release = runtime.core_installer.resolve_latest_release()
        except ArtifactError as exc:
            _command_error(op, f"Release lookup failed: {exc}", rc=ExitCode.ARTIFACT)
        console.print(f"Latest release: [bold]{release.tag}[/bold]")
        console.print(f"Asset: {release.asset_name}")
        console.print(f"URL: {release.asset_url}")
        op.success(
            "Resolved latest release.",
            changed=0,
            context={"tag": release.tag, "asset": release.asset_name},
        )


@core_app.command("status")
def core_status(
    ctx: typer.Context,
    check_latest: bool = typer.Option(
        True,
        "--check-latest/--offline",
        help="Compare the installed version against the latest release.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit status as JSON."),
) -> None:
    """Report whether the core is installed, its version and available updates."""
    runtime = _get_runtime(ctx)
    installer = runtime.core_installer
    with runtime.logger.operation(
        "core status",
        args={"check_latest": check_latest, "json": json_output},
        target={"kind": "core", "path": str(installer.binary_path)},
    ) as op:
        version = installer.installed_version()
        data: dict[str, object] = {
            "installed": version is not None,
            "path": str(installer.binary_path),
            "version": version,
            "latest": None,
            "update_available": None,
        }
        warnings: list[str] = []
        if check_latest:
            try:
                latest = installer.latest_tag()
            except ArtifactError as exc:
                warnings.append(f"Latest release unavailable: {exc}")
            else:
                data["latest"] = latest
                if version is not None:
                    data["update_available"] = update_available(version, latest)

        if json_output:
            console.print_json(data=data)
        else:
            if version is not None:
                state = "[green]installed[/green]"
            else:
                state = "[red]not installed[/red]"
            console.print(f"Core: {state} ({installer.binary_path})")
            if version is not None:
                console.print(f"Version: {version}")
            if data["latest"]:
                console.print(f"Latest: {data['latest']}")
            if data["update_available"]:
                console.print(
                    "[yellow]An update is available: run 'backhaulctl core install'.[/yellow]"
                )
            for warning in warnings:
                err_console.print(f"[yellow]warning:[/yellow] {warning}")
        op.success("Reported core status.", changed=0, warnings=warnings, context=data)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
