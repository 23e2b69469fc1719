"""
HotelMate realtime CLI — `hotelmate` command.

Commands:
  hotelmate channels            Channel names for a hotel / staff member
  hotelmate replay <file>       Feed a JSON-lines capture through the router
  hotelmate listen              Connect and print routed envelopes
  hotelmate config show|set     Inspect or edit ~/.hotelmate/config.json
"""

import asyncio
import logging
from typing import Any, Optional

try:
    import click
    from rich.console import Console
    from rich.table import Table
except ImportError:
    raise SystemExit("CLI requires extras: pip install hotelmate-realtime[cli]")

from hotelmate_realtime.channels import base_channel_names, guest_chat_channel, staff_chat_channel
from hotelmate_realtime.config import Settings, load_settings, save_settings

console = Console()


def _load_settings(**overrides: Any) -> Settings:
    try:
        return load_settings(**overrides)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """HotelMate realtime — inspect channels and replay or tail live events."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command("channels")
@click.option("--hotel", "hotel_slug", default=None, help="Hotel slug (defaults to config)")
@click.option("--staff-id", default=None)
@click.option("--conversation", "conversations", multiple=True, help="Staff chat conversation id")
@click.option("--room-pin", "room_pins", multiple=True, help="Guest chat room pin")
def channels_cmd(hotel_slug: Optional[str], staff_id: Optional[str], conversations, room_pins):
    """Print the channel names a staff client subscribes to."""
    settings = _load_settings(hotel_slug=hotel_slug, staff_id=staff_id)
    if not settings.hotel_slug:
        console.print("[red]No hotel slug. Pass --hotel or run `hotelmate config set hotel_slug <slug>`.[/red]")
        raise SystemExit(1)

    table = Table(title=f"Channels for {settings.hotel_slug}")
    table.add_column("Channel", style="bold")
    table.add_column("Kind")
    for name in base_channel_names(settings.hotel_slug, settings.staff_id):
        kind = "personal" if name.endswith("-notifications") else "hotel"
        table.add_row(name, kind)
    for conversation_id in conversations:
        table.add_row(staff_chat_channel(settings.hotel_slug, conversation_id), "staff chat")
    for room_pin in room_pins:
        table.add_row(guest_chat_channel(settings.hotel_slug, room_pin), "guest chat")
    console.print(table)


@click.group("config")
def config_cmd():
    """Local configuration."""


@config_cmd.command("show")
def config_show():
    """Show the effective settings."""
    settings = _load_settings()
    table = Table(title="Settings")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        if key == "auth_token" and value:
            value = value[:4] + "…"
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@config_cmd.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Persist one setting to the config file."""
    if key not in Settings.model_fields:
        console.print(f"[red]Unknown setting: {key}[/red]")
        raise SystemExit(1)
    # Environment overrides are not persisted.
    settings = _load_settings(env={}, **{key: value})
    path = save_settings(settings)
    console.print(f"[green]{key} saved[/green] [dim]({path})[/dim]")


# Register subcommands from separate modules
from hotelmate_realtime.cli.listen import listen_cmd
from hotelmate_realtime.cli.replay import replay_cmd

main.add_command(config_cmd)
main.add_command(listen_cmd)
main.add_command(replay_cmd)


if __name__ == "__main__":
    main()
