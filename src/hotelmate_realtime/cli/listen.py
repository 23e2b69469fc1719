"""CLI: hotelmate listen"""

import asyncio
import json
from typing import Optional

import click
from rich.console import Console

from hotelmate_realtime.errors import TransportError
from hotelmate_realtime.hub import RealtimeHub
from hotelmate_realtime.models.envelope import Envelope
from hotelmate_realtime.transport.socketio import SocketIOTransport

console = Console()


def _load_settings(**overrides):
    from hotelmate_realtime.cli.main import _load_settings
    return _load_settings(**overrides)


def _run(coro):
    from hotelmate_realtime.cli.main import _run
    return _run(coro)


def format_envelope(envelope: Envelope) -> str:
    entity = envelope.entity_id
    return f"[cyan]{envelope.category.value}[/cyan] {envelope.type} [dim]#{entity}[/dim]"


@click.command("listen")
@click.option("--hotel", "hotel_slug", default=None)
@click.option("--staff-id", default=None)
@click.option("--url", "realtime_url", default=None, help="Socket.IO endpoint")
@click.option("--conversation", "conversations", multiple=True, help="Also join a staff chat conversation")
@click.option("--duration", default=None, type=float, help="Stop after N seconds")
@click.option("--json-output", "--json", is_flag=True)
def listen_cmd(hotel_slug: Optional[str], staff_id: Optional[str], realtime_url: Optional[str],
               conversations, duration: Optional[float], json_output: bool):
    """Connect to the realtime endpoint and print every routed envelope."""
    settings = _load_settings(hotel_slug=hotel_slug, staff_id=staff_id, realtime_url=realtime_url)
    if not settings.realtime_url or not settings.hotel_slug:
        console.print("[red]Both a realtime URL and a hotel slug are required.[/red]")
        raise SystemExit(1)

    async def _listen():
        transport = SocketIOTransport(settings.realtime_url, token=settings.auth_token)
        hub = RealtimeHub.from_settings(settings, transport=transport)

        def show(envelope: Envelope) -> None:
            if json_output:
                click.echo(json.dumps(envelope.model_dump(mode="json")))
            else:
                console.print(format_envelope(envelope))

        with console.status(f"Connecting to {settings.realtime_url}..."):
            try:
                await transport.connect()
            except TransportError as e:
                console.print(f"[red]{e}[/red]")
                await hub.aclose()
                raise SystemExit(1)

        async with hub:
            hub.router.add_observer(show)
            for conversation_id in conversations:
                hub.subscribe_to_conversation(conversation_id)
            status = hub.subscription_status()
            console.print(f"[green]Listening on {status['channel_count']} channels[/green] [dim](Ctrl+C to stop)[/dim]")
            try:
                if duration:
                    await asyncio.sleep(duration)
                else:
                    await asyncio.Event().wait()
            except (KeyboardInterrupt, asyncio.CancelledError):
                pass

    try:
        _run(_listen())
    except KeyboardInterrupt:
        pass
