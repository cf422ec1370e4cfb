"""Matrix Sync Client CLI.

Settings come from --config (YAML), then MATRIX_* environment variables,
then command-line options (highest precedence).

Usage:
    matrix-sync versions                      # Supported API versions
    matrix-sync login @alice:example.org      # Password login, prints token
    matrix-sync whoami                        # Owner of the access token
    matrix-sync send '!room:example.org' hi   # Send a text message
    matrix-sync sync                          # Stream timeline events
    matrix-sync config                        # Show resolved configuration
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import httpx

from .client import MatrixClient
from .config import ClientConfig
from .errors import MatrixClientError
from .events import EVENT_MESSAGE, Event
from .store import FileTokenStore, InMemoryStore, TokenStore
from .syncer import DefaultSyncer

# Output format options
FORMAT_TEXT = "text"
FORMAT_JSON = "json"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _make_client(
    ctx: click.Context,
    *,
    store: TokenStore | None = None,
    processor: DefaultSyncer | None = None,
) -> MatrixClient:
    """Build a client from the resolved config, exiting with an error if it is unusable."""
    config: ClientConfig = ctx.obj["config"]
    if not config.homeserver_url:
        click.echo("Error: no homeserver configured (use --homeserver or MATRIX_HOMESERVER_URL)", err=True)
        sys.exit(1)

    http_client = None
    if ctx.obj.get("transport") is not None:
        http_client = httpx.AsyncClient(transport=ctx.obj["transport"])

    try:
        return MatrixClient(
            config=config,
            store=store,
            processor=processor,
            http_client=http_client,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _run(coro: Any) -> Any:
    """Run a coroutine, turning client failures into a non-zero exit."""
    try:
        return asyncio.run(coro)
    except MatrixClientError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _format_event(event: Event) -> str:
    body = event.body()
    if body is None:
        body = json.dumps(event.content, ensure_ascii=False)
    return f"[{event.room_id}] {event.sender}: {body}"


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file with client settings",
)
@click.option("--homeserver", help="Homeserver URL (overrides config)")
@click.option("--user", "user_id", help="User id, e.g. @alice:example.org (overrides config)")
@click.option("--token", "access_token", help="Access token (overrides config)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    homeserver: str | None,
    user_id: str | None,
    access_token: str | None,
    verbose: bool,
) -> None:
    """Matrix Sync Client - talk to a Matrix homeserver from the command line."""
    _configure_logging(verbose)

    overrides = {
        "homeserver_url": homeserver,
        "user_id": user_id,
        "access_token": access_token,
    }
    try:
        if config_path:
            config = ClientConfig.from_yaml(config_path).with_env().merged(**overrides)
        else:
            config = ClientConfig.from_env(**overrides)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command("versions")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TEXT, FORMAT_JSON]),
    default=FORMAT_TEXT,
    help="Output format",
)
@click.pass_context
def versions(ctx: click.Context, output_format: str) -> None:
    """Show the client API versions the homeserver supports.

    Examples:

        matrix-sync --homeserver https://matrix.org versions
        matrix-sync versions --format json
    """
    client = _make_client(ctx)

    async def run() -> Any:
        async with client:
            return await client.directory.versions()

    resp = _run(run())
    if output_format == FORMAT_JSON:
        click.echo(json.dumps(resp.model_dump(), indent=2))
        return
    for version in resp.versions:
        click.echo(version)


@main.command("login")
@click.argument("user")
@click.option("--password", prompt=True, hide_input=True, help="Account password")
@click.option("--device-id", help="Reuse an existing device id")
@click.pass_context
def login(ctx: click.Context, user: str, password: str, device_id: str | None) -> None:
    """Log in with a password and print the new access token as JSON.

    Examples:

        matrix-sync --homeserver https://matrix.org login @alice:matrix.org
    """
    client = _make_client(ctx)

    async def run() -> Any:
        async with client:
            return await client.account.login_password(user, password, device_id=device_id)

    resp = _run(run())
    click.echo(
        json.dumps(
            {
                "user_id": resp.user_id,
                "access_token": resp.access_token,
                "device_id": resp.device_id,
            },
            indent=2,
        )
    )


@main.command("whoami")
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Show which user the access token belongs to."""
    client = _make_client(ctx)

    async def run() -> Any:
        async with client:
            return await client.account.whoami()

    resp = _run(run())
    if resp.device_id:
        click.echo(f"{resp.user_id} (device {resp.device_id})")
    else:
        click.echo(resp.user_id)


@main.command("send")
@click.argument("room_id")
@click.argument("text")
@click.option("--notice", is_flag=True, help="Send as m.notice instead of m.text")
@click.pass_context
def send(ctx: click.Context, room_id: str, text: str, notice: bool) -> None:
    """Send a text message to a room and print the event id.

    Examples:

        matrix-sync send '!abc:example.org' 'hello world'
        matrix-sync send '!abc:example.org' 'build finished' --notice
    """
    client = _make_client(ctx)

    async def run() -> Any:
        async with client:
            if notice:
                return await client.rooms.send_notice(room_id, text)
            return await client.rooms.send_text(room_id, text)

    resp = _run(run())
    click.echo(resp.event_id)


@main.command("sync")
@click.option(
    "--store-dir",
    type=click.Path(file_okay=False),
    help="Persist sync tokens here (default: in memory only)",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TEXT, FORMAT_JSON]),
    default=FORMAT_TEXT,
    help="Output format (json = one event per line)",
)
@click.option("--event-type", "event_types", multiple=True, default=[EVENT_MESSAGE], help="Event types to print")
@click.pass_context
def sync(
    ctx: click.Context,
    store_dir: str | None,
    output_format: str,
    event_types: tuple[str, ...],
) -> None:
    """Run the sync loop and print incoming events until Ctrl+C.

    Examples:

        matrix-sync sync
        matrix-sync sync --store-dir ~/.matrix-sync-client/users --format json
        matrix-sync sync --event-type m.room.member --event-type m.room.message
    """
    config: ClientConfig = ctx.obj["config"]
    store_path = Path(store_dir).expanduser() if store_dir else config.store_path()
    store: TokenStore = FileTokenStore(store_path) if store_path else InMemoryStore()
    processor = DefaultSyncer(config.user_id)

    def print_event(event: Event) -> None:
        if output_format == FORMAT_JSON:
            click.echo(event.model_dump_json(by_alias=True, exclude_none=True))
        else:
            click.echo(_format_event(event))

    for event_type in event_types:
        processor.on_event_type(event_type, print_event)

    client = _make_client(ctx, store=store, processor=processor)

    async def run() -> None:
        async with client:
            await client.sync()

    click.echo(f"Syncing as {config.user_id}. Press Ctrl+C to stop", err=True)
    try:
        _run(run())
    except KeyboardInterrupt:
        click.echo("\nStopped", err=True)


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show_config(ctx: click.Context, output_json: bool) -> None:
    """Show the resolved configuration (access token masked).

    Examples:

        matrix-sync config
        matrix-sync --config client.yaml config --json
    """
    config: ClientConfig = ctx.obj["config"]
    data = config.masked()

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("Matrix Sync Client Configuration")
    click.echo("-" * 40)
    click.echo(f"Homeserver:         {data['homeserver_url'] or 'not set'}")
    click.echo(f"User:               {data['user_id'] or 'not set'}")
    click.echo(f"Access token:       {data['access_token'] or 'not set'}")
    click.echo(f"API prefix:         {data['prefix']}")
    click.echo(f"Sync timeout (ms):  {data['sync_timeout_ms']}")
    click.echo(f"Store directory:    {data['store_dir'] or 'in memory'}")


if __name__ == "__main__":
    main()
