"""CLI entry point for linkvault."""

from pathlib import Path

import click

from linkvault import __version__
from linkvault.config import load_config
from linkvault.errors import LinkVaultError
from linkvault.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """linkvault - Link a device and archive its session."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--host", default=None, help="Address to bind to.")
@click.option("--port", type=int, default=None, help="Port to listen on.")
@click.option(
    "--socket-factory",
    default=None,
    help="Protocol layer socket factory as 'module:callable'.",
)
@click.pass_context
def serve(
    ctx: click.Context,
    host: str | None,
    port: int | None,
    socket_factory: str | None,
) -> None:
    """Start the HTTP server."""
    import asyncio

    from linkvault.protocols import load_socket_factory
    from linkvault.server import SessionServer

    config = ctx.obj["config"]
    host = host or config.bind_address
    port = port if port is not None else config.port

    factory_spec = socket_factory or config.socket_factory
    if not factory_spec:
        click.echo(
            "Error: no socket factory configured. "
            "Set socket_factory in the config file or pass --socket-factory.",
            err=True,
        )
        raise SystemExit(1)

    try:
        factory = load_socket_factory(factory_spec)
    except (ImportError, ValueError) as e:
        click.echo(f"Error: cannot load socket factory: {e}", err=True)
        raise SystemExit(1)

    if not config.archive.username or not config.archive.password:
        click.echo("Warning: archive credentials are not configured; uploads will fail.", err=True)

    async def _serve():
        server = SessionServer.from_config(config, factory)
        try:
            await server.start(host, port)
            click.echo(f"linkvault listening on {host}:{server.get_port()}")
            click.echo("Press Ctrl+C to stop")
            await asyncio.Event().wait()
        finally:
            await server.close()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"linkvault version {__version__}")


@main.group()
def locator() -> None:
    """Locator helpers."""
    pass


@locator.command("make")
@click.argument("url")
@click.option("--tag", default=None, help="Locator tag (default from config).")
@click.pass_context
def locator_make(ctx: click.Context, url: str, tag: str | None) -> None:
    """Derive a locator from an archive URL."""
    from linkvault.locator import make_locator

    click.echo(make_locator(url, tag or ctx.obj["config"].archive.tag))


@locator.command("parse")
@click.argument("value")
@click.option("--base-url", default=None, help="Archive origin (default from config).")
@click.pass_context
def locator_parse(ctx: click.Context, value: str, base_url: str | None) -> None:
    """Show the parts of a locator and its archive URL."""
    from linkvault.locator import parse_locator

    try:
        parts = parse_locator(value)
    except LinkVaultError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Tag:     {parts.tag}")
    if parts.raw is None:
        click.echo(f"File ID: {parts.file_id}")
        click.echo(f"Key:     {parts.key or '-'}")
    click.echo(f"URL:     {parts.to_url(base_url or ctx.obj['config'].archive.public_url)}")


@main.group()
def sessions() -> None:
    """Session record commands."""
    pass


@sessions.command("list")
@click.pass_context
def sessions_list(ctx: click.Context) -> None:
    """List recorded pairing sessions."""
    import asyncio

    from linkvault.session_index import SessionIndex

    index = SessionIndex(ctx.obj["config"].index_path)
    asyncio.run(index.load())

    records = index.all()
    if not records:
        click.echo("No sessions recorded.")
        return

    click.echo(f"{'SESSION':<24} {'MODE':<5} {'STATUS':<10} LOCATOR / ERROR")
    for record in records:
        detail = record.locator or record.error or "-"
        click.echo(f"{record.session_id:<24} {record.mode:<5} {record.status:<10} {detail}")
