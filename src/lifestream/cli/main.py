"""
Typer application for LifeStream.

``services`` inspects and verifies the catalogue; ``run`` starts the polling
services and prints their events until interrupted.
"""

from __future__ import annotations

import json
import threading
from importlib import resources
from pathlib import Path
from typing import Any, List, Optional

import typer

from ..adapters import AdapterError
from ..config import SettingsError, load_settings
from ..core import (
    DataReceivedEvent,
    ErrorEvent,
    ExecutionContext,
    QueueDispatcher,
    RegistryLoadError,
    ServiceDescriptor,
    ServiceRegistry,
    StatusChangedEvent,
    configure_logging,
    get_logger,
    install_dispatcher,
    log_separator,
    uninstall_dispatcher,
)
from ..core.logging import Categories
from ..services import ServiceManager, build_service
from .adapters import resolve_adapter

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "LifeStream polling services.\n\n"
        "Command groups:\n"
        "- services: list, describe and verify catalogue entries.\n"
        "- run: poll the enabled services and print their events."
    ),
)
services_app = typer.Typer(help="Inspect and verify the service catalogue.")
app.add_typer(services_app, name="services")

_CATALOGUE_PACKAGE = "lifestream.resources.services"


def _load_registry(registry_file: Optional[Path]) -> ServiceRegistry:
    if registry_file:
        return ServiceRegistry.from_yaml(registry_file)
    with resources.as_file(resources.files(_CATALOGUE_PACKAGE) / "default.yaml") as resolved:
        return ServiceRegistry.from_yaml(resolved)


def _format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = [f"{value}{unit}" for value, unit in ((hours, "h"), (minutes, "m"), (secs, "s")) if value]
    return "".join(parts) or "0s"


def _describe_refresh(descriptor: ServiceDescriptor) -> str:
    refresh = descriptor.refresh
    if refresh.strategy == "adaptive":
        return f"adaptive ~{_format_duration(refresh.base_interval.total_seconds())}"
    return f"fixed {_format_duration(refresh.interval.total_seconds())}"


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    registry_file: Optional[Path] = typer.Option(
        None,
        "--registry",
        "-r",
        help="Override the service catalogue YAML file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    settings_file: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Settings TOML file. Defaults to LIFESTREAM_SETTINGS_PATH or .lifestream/settings.toml.",
        dir_okay=False,
    ),
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        help="Override the directory where services persist data.",
        file_okay=False,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)."),
) -> None:
    """
    Configure logging, settings and the catalogue.

    The resolved registry and execution context are stored in Typer's state so
    child commands can retrieve them via :class:`typer.Context`.
    """

    try:
        settings = load_settings(settings_file)
    except SettingsError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)

    configure_logging(log_level or settings.app.log_level, log_dir=settings.app.log_dir, force=True)

    try:
        registry = _load_registry(registry_file)
    except RegistryLoadError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)

    context = ExecutionContext.build_default(data_dir=data_dir, settings=settings)
    state = ctx.ensure_object(dict)
    state["registry"] = registry
    state["context"] = context


def _require_registry(ctx: typer.Context) -> ServiceRegistry:
    state = ctx.ensure_object(dict)
    registry = state.get("registry")
    if not isinstance(registry, ServiceRegistry):
        raise typer.Exit(code=2)
    return registry


def _require_context(ctx: typer.Context) -> ExecutionContext:
    state = ctx.ensure_object(dict)
    context = state.get("context")
    if not isinstance(context, ExecutionContext):
        raise typer.Exit(code=2)
    return context


def _require_descriptor(registry: ServiceRegistry, service_id: str) -> ServiceDescriptor:
    descriptor = registry.get(service_id)
    if not descriptor:
        typer.echo(f"Service '{service_id}' is not registered.", err=True)
        raise typer.Exit(code=1)
    return descriptor


@services_app.command("list")
def services_list(
    ctx: typer.Context,
    show_disabled: bool = typer.Option(False, "--all", help="Include disabled catalogue entries."),
) -> None:
    """List catalogue entries with their refresh policy."""

    registry = _require_registry(ctx)
    entries = registry.list() if show_disabled else list(registry.iter_enabled())
    if not entries:
        typer.echo("No services are registered.")
        raise typer.Exit(code=0)

    header = f"{'ID':<20} {'Kind':<11} {'Refresh':<16} Description"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in entries:
        descr = entry.description.replace("\n", " ")
        if not entry.enabled:
            descr = f"[disabled] {descr}"
        typer.echo(f"{entry.service_id:<20} {entry.kind:<11} {_describe_refresh(entry):<16} {descr}")


@services_app.command("describe")
def services_describe(
    ctx: typer.Context,
    service_id: str = typer.Argument(..., help="Identifier of the service."),
    output_json: bool = typer.Option(False, "--json", help="Emit the descriptor as JSON."),
) -> None:
    """Show the catalogue entry of a service."""

    descriptor = _require_descriptor(_require_registry(ctx), service_id)
    if output_json:
        typer.echo(descriptor.to_json())
        return

    refresh = descriptor.refresh
    typer.echo(f"ID: {descriptor.service_id}")
    typer.echo(f"Name: {descriptor.name}")
    typer.echo(f"Kind: {descriptor.kind}")
    typer.echo(f"Enabled: {descriptor.enabled}")
    if descriptor.url:
        typer.echo(f"URL: {descriptor.url}")
    if descriptor.description:
        typer.echo(f"Description: {descriptor.description}")
    typer.echo(f"Strategy: {refresh.strategy}")
    typer.echo(f"Max Retries: {refresh.max_retries}")
    if refresh.strategy == "adaptive":
        typer.echo(f"Base Interval: {_format_duration(refresh.base_interval.total_seconds())}")
        typer.echo(f"Initial Slack: {_format_duration(refresh.initial_slack.total_seconds())}")
        typer.echo(
            "Interval Bounds: "
            f"{_format_duration(refresh.minimum_interval.total_seconds())}"
            f" .. {_format_duration(refresh.maximum_interval.total_seconds())}"
        )
        typer.echo(f"Retry Interval: {_format_duration(refresh.retry_interval.total_seconds())}")
        typer.echo(f"Miss Threshold: {refresh.adaptive_max_retries}")
    else:
        typer.echo(f"Interval: {_format_duration(refresh.interval.total_seconds())}")


@services_app.command("verify")
def services_verify(
    ctx: typer.Context,
    service_id: str = typer.Argument(..., help="Identifier of the service."),
) -> None:
    """Run a one-off connectivity check against a service's source."""

    descriptor = _require_descriptor(_require_registry(ctx), service_id)
    context = _require_context(ctx)

    adapter = resolve_adapter(descriptor, context)
    if adapter is None:
        typer.echo(f"Service '{service_id}' of kind '{descriptor.kind}' has no connectivity check (metadata only).")
        return

    try:
        result = adapter.verify()
    except AdapterError as exc:
        typer.echo(f"Verification failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(result.message)
    if result.details:
        typer.echo(f"Details: {result.details_json()}")
    if not result.success:
        raise typer.Exit(code=1)


def _summarise(data: Any) -> str:
    to_dict = getattr(data, "to_dict", None)
    if callable(to_dict):
        return json.dumps(to_dict(), ensure_ascii=False, default=str)
    return str(data)


def _echo_data(event: DataReceivedEvent) -> None:
    typer.echo(f"[{event.timestamp:%H:%M:%S}] {event.service.service_id}: new data {_summarise(event.data)}")


def _echo_status(event: StatusChangedEvent) -> None:
    typer.echo(f"{event.service.service_id}: {event.old_status.value} -> {event.new_status.value}")


def _echo_error(event: ErrorEvent) -> None:
    suffix = f" (retry at {event.next_retry:%H:%M:%S})" if event.will_retry and event.next_retry else ""
    typer.echo(f"{event.service.service_id}: {event.message}{suffix}", err=True)


@app.command("run")
def run(
    ctx: typer.Context,
    only: Optional[List[str]] = typer.Option(None, "--only", help="Run only these service IDs. Can be repeated."),
    duration: Optional[float] = typer.Option(None, "--duration", min=0, help="Stop after this many seconds."),
) -> None:
    """
    Start the selected services and print their events.

    Events are delivered on this thread through a queue dispatcher, so output
    never interleaves. Stops on Ctrl+C or when ``--duration`` elapses.
    """

    registry = _require_registry(ctx)
    context = _require_context(ctx)

    requested = list(only or [])
    unknown = [service_id for service_id in requested if registry.get(service_id) is None]
    if unknown:
        typer.echo(f"Unknown service(s): {', '.join(unknown)}", err=True)
        raise typer.Exit(code=1)

    context.enabled_services.update(requested)
    descriptors = [descriptor for descriptor in registry.iter_enabled() if context.is_enabled(descriptor.service_id)]
    if not descriptors:
        typer.echo("No services selected.")
        raise typer.Exit(code=0)

    logger = get_logger(Categories.APP)
    dispatcher = QueueDispatcher()
    install_dispatcher(dispatcher)
    stop = threading.Event()
    deadline: Optional[threading.Timer] = None
    manager = ServiceManager()
    try:
        for descriptor in descriptors:
            try:
                service = build_service(descriptor, context, dispatcher=dispatcher)
            except ValueError as exc:
                typer.echo(f"Skipping '{descriptor.service_id}': {exc}", err=True)
                continue
            service.data_received.connect(_echo_data)
            service.status_changed.connect(_echo_status)
            service.error_occurred.connect(_echo_error)
            manager.register(service)

        if not len(manager):
            typer.echo("No services could be built.", err=True)
            raise typer.Exit(code=1)

        log_separator(logger, title=f"LifeStream session: {', '.join(service.service_id for service in manager.services)}")
        manager.start_all()

        if duration is not None:
            deadline = threading.Timer(duration, stop.set)
            deadline.daemon = True
            deadline.start()

        try:
            dispatcher.run_until(stop)
        except KeyboardInterrupt:
            typer.echo("Interrupted, stopping services.")
    finally:
        if deadline is not None:
            deadline.cancel()
        manager.close()
        dispatcher.process_pending()
        uninstall_dispatcher()
        logger.info("Session ended")


if __name__ == "__main__":  # pragma: no cover
    app()
