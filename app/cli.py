from __future__ import annotations

import asyncio
import json

import click
import httpx

from config.settings import get_settings
from frontend.session import ChatSession
from frontend.transport import Transport


QUIT_COMMANDS = {"/quit", "/exit"}


@click.group()
@click.version_option(version="1.0.0")
def cli():
    pass


@cli.command()
@click.option("--host", envvar="HOST", default=None, help="Interface to bind. [default: 0.0.0.0]")
@click.option(
    "--port",
    envvar="PORT",
    type=int,
    default=None,
    help="First port to try. If it is in use the next PORT_ATTEMPTS ports are tried. [default: 3000]",
)
def serve(host, port):
    """Run the chat relay."""
    from app.main import serve as serve_relay

    serve_relay(host=host, port=port)


@cli.command()
@click.option("--url", envvar="CHAT_RELAY_URL", default=None, help="Base URL of the relay.")
@click.option("--html", "as_html", is_flag=True, help="Print the rendered HTML instead of plain text.")
def chat(url, as_html):
    """Chat with the model from the terminal. Type /quit to leave."""
    session = ChatSession(Transport(url or get_settings().relay_url))
    asyncio.run(_chat_loop(session, as_html))


async def _chat_loop(session: ChatSession, as_html: bool) -> None:
    while True:
        try:
            text = await asyncio.to_thread(click.prompt, "you", prompt_suffix="> ", default="", show_default=False)
        except (EOFError, click.Abort):
            click.echo()
            return
        if text.strip() in QUIT_COMMANDS:
            return
        view = await session.submit(text)
        if view is None:
            continue
        body = view.html if as_html else view.text
        if view.error:
            click.secho(f"[{view.timestamp}] {body}", fg="red", err=True)
        else:
            click.echo(f"[{view.timestamp}] model> {body}")


@cli.command()
@click.option("--url", envvar="CHAT_RELAY_URL", default=None, help="Base URL of the relay.")
def health(url):
    """Print the relay's health report."""
    transport = Transport(url or get_settings().relay_url, timeout=10.0)
    try:
        report = asyncio.run(transport.health())
    except (httpx.HTTPError, ValueError) as exc:
        raise click.ClickException(f"Relay health check failed: {exc}")
    click.echo(json.dumps(report, indent=2))


if __name__ == "__main__":
    cli()
