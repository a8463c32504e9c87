"""
Merged feed rendering for the terminal.

Builds rich renderables from the merger's feed: one row per movement,
newest first, with unconfirmed (pushed) entries highlighted.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.movement import Direction, Movement
from ..models.subscription import ConnectionState
from ..utils.timezone import format_local


def format_amount(movement: Movement) -> Text:
    """Signed amount, green for credits and red for debits."""
    sign = "+" if movement.direction is Direction.CREDIT else "-"
    style = "green" if movement.direction is Direction.CREDIT else "red"
    return Text(f"{sign}{_format_brl(movement.amount)} {movement.currency}", style=style)


def _format_brl(amount: Decimal) -> str:
    # 1234567.8 -> 1.234.567,80
    text = f"{amount:,.2f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def render_feed_table(movements: Iterable[Movement], limit: Optional[int] = None) -> Table:
    """
    Render movements as a table.

    Args:
        movements: Movements, already sorted newest first.
        limit: Maximum rows to render.

    Returns:
        Table with one row per movement.
    """
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("When", style="dim", no_wrap=True)
    table.add_column("Provider", style="cyan", no_wrap=True)
    table.add_column("Counterparty")
    table.add_column("Amount", justify="right", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("", no_wrap=True, width=1)

    for index, movement in enumerate(movements):
        if limit is not None and index >= limit:
            break
        counterparty = movement.counterparty.name if movement.counterparty else None
        table.add_row(
            format_local(movement.occurred_at),
            movement.provider.value,
            counterparty or movement.description or "-",
            format_amount(movement),
            movement.status or "-",
            Text("*", style="yellow bold") if not movement.is_confirmed else "",
        )
    return table


def render_status_line(
    feed_size: int,
    unconfirmed: int,
    has_more: bool,
    stale: bool,
    realtime_state: Optional[ConnectionState] = None,
) -> Text:
    """One-line summary shown under the table."""
    text = Text()
    text.append(f"{feed_size} movements", style="bold")
    if unconfirmed:
        text.append(f"  {unconfirmed} unconfirmed (*)", style="yellow")
    text.append("  more pages available" if has_more else "  end of statement", style="dim")
    if stale:
        text.append("  STALE - last page load failed", style="red bold")
    if realtime_state is not None:
        style = "green" if realtime_state is ConnectionState.CONNECTED else "yellow"
        text.append(f"  realtime: {realtime_state.value.lower()}", style=style)
    return text


def render_feed_panel(
    movements: Iterable[Movement],
    title: str,
    status: Text,
    limit: Optional[int] = None,
) -> Panel:
    """Table and status line in a bordered panel."""
    body = Group(render_feed_table(movements, limit=limit), Text(""), status)
    return Panel(body, title=title, border_style="blue")
