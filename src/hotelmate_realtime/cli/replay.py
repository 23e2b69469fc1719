"""CLI: hotelmate replay <file>"""

import json
from typing import Any, Iterator

import click
from rich.console import Console
from rich.table import Table

from hotelmate_realtime.hub import RealtimeHub
from hotelmate_realtime.models.envelope import Category

console = Console()


def read_capture(path: str) -> Iterator[tuple[int, Any]]:
    """Yield (line number, raw event) from a JSON-lines capture. Blank lines are skipped."""
    with open(path) as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield lineno, json.loads(line)
            except json.JSONDecodeError as e:
                console.print(f"[yellow]Line {lineno}: invalid JSON ({e.msg}), skipped[/yellow]")


def summarize(hub: RealtimeHub) -> list[tuple[str, str]]:
    """One (domain, summary) row per store."""
    staff = hub.use_state(Category.STAFF_CHAT)
    guest = hub.use_state(Category.GUEST_CHAT)
    attendance = hub.use_state(Category.ATTENDANCE)
    orders = hub.use_state(Category.ROOM_SERVICE)
    bookings = hub.use_state(Category.BOOKING)
    rooms = hub.use_state(Category.ROOM_BOOKING)
    return [
        (Category.STAFF_CHAT.value,
         f"{len(staff.messages_by_conversation_id)} conversations with messages, {staff.total_unread} unread"),
        (Category.GUEST_CHAT.value,
         f"{sum(len(m) for m in guest.messages_by_conversation_id.values())} messages "
         f"in {len(guest.messages_by_conversation_id)} conversations"),
        (Category.ATTENDANCE.value,
         f"{len(attendance.staff_by_id)} staff, departments: {', '.join(sorted(attendance.by_department)) or '-'}"),
        (Category.ROOM_SERVICE.value, f"{len(orders.orders_by_id)} orders, {len(orders.pending_orders)} pending"),
        (Category.BOOKING.value, f"{len(bookings.bookings_by_id)} bookings, {len(bookings.todays_bookings)} today"),
        (Category.ROOM_BOOKING.value, f"{len(rooms.by_booking_id)} bookings"),
    ]


@click.command("replay")
@click.argument("capture", type=click.Path(exists=True, dir_okay=False))
@click.option("--staff-id", default=None, help="Treat messages from this staff id as our own")
@click.option("--show-events", is_flag=True, help="Print each routed envelope")
def replay_cmd(capture: str, staff_id, show_events: bool):
    """Feed a JSON-lines capture of raw events through the normalizer and router."""
    hub = RealtimeHub(staff_id=staff_id)
    hub.start()
    routed = dropped = 0
    try:
        for lineno, raw in read_capture(capture):
            envelope = hub.handle_raw(raw)
            if envelope is None:
                dropped += 1
                continue
            routed += 1
            if show_events:
                console.print(f"[dim]{lineno:>5}[/dim] [cyan]{envelope.category.value}[/cyan] {envelope.type}")

        table = Table(title=f"Replay of {capture}")
        table.add_column("Domain", style="bold")
        table.add_column("State")
        for domain, summary in summarize(hub):
            table.add_row(domain, summary)
        console.print(table)
        console.print(
            f"[green]{routed} routed[/green], [yellow]{dropped} dropped[/yellow], "
            f"{hub.notifications.unread_count} notifications"
        )
    finally:
        hub.stop()
