"""Typer CLI for the Pub/Sub connector."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pubsub_connector.config.loader import load_connector_config
from pubsub_connector.config.models import ConnectorConfig
from pubsub_connector.errors import ConfigurationError, ConnectorError
from pubsub_connector.observability.logging import configure_logging
from pubsub_connector.receiver import Delivery

console = Console()
app = typer.Typer(name="pubsub-connector", help="Pub/Sub subscription connector CLI")

_log_overrides: dict[str, object] = {}


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Render logs as JSON"),
) -> None:
    """Consume a Google Cloud Pub/Sub subscription."""
    _log_overrides.clear()
    if log_level is not None:
        _log_overrides["level"] = log_level.upper()
    if json_logs:
        _log_overrides["json_output"] = json_logs


def _load(config_path: str) -> ConnectorConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        config = load_connector_config(path)
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    log_cfg = config.logging.model_copy(update=_log_overrides)
    configure_logging(log_cfg.level, log_cfg.json_output)
    return config


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Validate a connector configuration file."""
    config = _load(config_path)
    console.print(f"[green]Valid[/green] — subscription={config.subscription.path}")
    console.print(f"  topic:        {config.topic.path}")
    console.print(f"  credentials:  {config.credential_path}")
    console.print(f"  ack deadline: {config.ack_deadline_seconds}s")
    console.print(f"  encoding:     {config.payload_encoding or '(raw bytes)'}")
    console.print(f"  max messages: {config.flow_control.max_messages}")
    if config.dead_letter is not None:
        console.print(
            f"  dead letter:  {config.dead_letter.topic_id} "
            f"after {config.dead_letter.max_delivery_attempts} attempts"
        )


@app.command()
def provision(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Create the subscription if it does not exist yet."""
    from pubsub_connector.broker.pubsub import PubSubBroker
    from pubsub_connector.credentials import CredentialLoader
    from pubsub_connector.provisioner import SubscriptionProvisioner

    config = _load(config_path)
    try:
        credentials = CredentialLoader().load(config.credential_path)
        created = SubscriptionProvisioner(PubSubBroker()).ensure(
            config.topic,
            config.subscription,
            credentials,
            ack_deadline_seconds=config.ack_deadline_seconds,
            dead_letter=config.dead_letter,
        )
    except ConnectorError as exc:
        console.print(f"[red]Provisioning failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    if created:
        console.print(f"[green]Subscription created:[/green] {config.subscription.path}")
    else:
        console.print(
            f"[yellow]Subscription already exists:[/yellow] {config.subscription.path}"
        )


@app.command()
def health(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Check that the subscription is reachable and bound to its topic."""
    from pubsub_connector.credentials import CredentialLoader
    from pubsub_connector.observability.health import Status, check_connector_health

    config = _load(config_path)
    try:
        credentials = CredentialLoader().load(config.credential_path)
    except ConfigurationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1) from exc
    result = check_connector_health(config, credentials)

    table = Table(title="Connector Health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")

    for c in result.components:
        style = "green" if c.status == Status.HEALTHY else "red"
        table.add_row(c.name, f"[{style}]{c.status}[/{style}]", c.detail)

    console.print(table)
    if not result.healthy:
        raise typer.Exit(1)


@app.command()
def consume(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Start a debug console consumer on the subscription."""
    from pubsub_connector.connector import Connector
    from pubsub_connector.runner import ConnectorRunner

    config = _load(config_path)

    def sink(delivery: Delivery) -> None:
        console.print(
            f"[cyan]{delivery.message_id}[/cyan] "
            f"attempt={delivery.delivery_attempt or 1}"
        )
        if delivery.attributes:
            console.print(f"  attributes: {escape(str(delivery.attributes))}")
        console.print(f"  payload:    {escape(repr(delivery.payload))}")
        console.print()

    console.print(f"[yellow]Consuming from:[/yellow] {config.subscription.path}")
    runner = ConnectorRunner(Connector(config, sink))
    try:
        runner.start()
    except ConnectorError as exc:
        console.print(f"[red]Connector stopped:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
