"""
dagstore.cli — Command-line inspection of a dagstore database.

Usage:
    dagstore info FILE CHANNEL          Message count and leaf hashes
    dagstore page FILE CHANNEL          One pagination window
    dagstore entities FILE PREFIX       Entity ids under a prefix
    dagstore clear FILE --yes           Empty the store

Channel ids and hashes are given and shown as hex.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from dagstore.core.errors import DagStoreError
from dagstore.core.models import Cursor, Direction, StoreConfig
from dagstore.storage import ChannelStorage

console = Console()


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _hex(ctx: click.Context, param: click.Parameter, value: str | None) -> bytes | None:
    if value is None:
        return None
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise click.BadParameter(f"not a hex string: {value!r}") from None


def _storage(file: Path, trace: bool = False) -> ChannelStorage:
    return ChannelStorage(StoreConfig.from_env(file=file, trace=trace))


def _short(value: bytes | None) -> str:
    return value.hex()[:16] if value else "—"


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--trace", is_flag=True, help="Log every executed SQL statement (needs -v to show).")
@click.pass_context
def main(ctx: click.Context, verbose: bool, trace: bool) -> None:
    """dagstore — inspect channel message DAG storage."""
    _setup_logging(verbose)
    ctx.obj = {"trace": trace}


# ---------------------------------------------------------------------------
# info
# ---------------------------------------------------------------------------

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("channel", callback=_hex)
@click.pass_obj
def info(obj: dict, file: Path, channel: bytes) -> None:
    """Show a channel's message count and current leaves."""

    async def _run() -> tuple[int, list[bytes]]:
        async with _storage(file, obj["trace"]) as store:
            return (
                await store.get_message_count(channel),
                await store.get_leaf_hashes(channel),
            )

    count, leaves = asyncio.run(_run())

    table = Table(title=f"Channel {_short(channel)}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Messages", str(count))
    table.add_row("Leaves", str(len(leaves)))
    console.print(table)
    for leaf in leaves:
        console.print(f"  [yellow]{leaf.hex()}[/yellow]")


# ---------------------------------------------------------------------------
# page
# ---------------------------------------------------------------------------

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("channel", callback=_hex)
@click.option("--after", "anchor", default=None, callback=_hex, help="Anchor hash (hex).")
@click.option("--height", default=0, type=click.IntRange(min=0), help="Start height when no anchor is given.")
@click.option("--backward", is_flag=True, help="Page towards lower heights.")
@click.option("-n", "--limit", default=20, type=int, help="Max messages to show.")
@click.pass_obj
def page(
    obj: dict,
    file: Path,
    channel: bytes,
    anchor: bytes | None,
    height: int,
    backward: bool,
    limit: int,
) -> None:
    """Show one pagination window of a channel."""
    cursor = Cursor.at_hash(anchor) if anchor is not None else Cursor.at_height(height)
    direction = Direction.BACKWARD if backward else Direction.FORWARD

    async def _run():
        async with _storage(file, obj["trace"]) as store:
            return await store.query(channel, cursor, direction, limit)

    try:
        result = asyncio.run(_run())
    except DagStoreError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise SystemExit(1)

    table = Table(title=f"Channel {_short(channel)} — {direction.value}")
    table.add_column("#", style="dim", width=4)
    table.add_column("Size", width=8)
    table.add_column("Content")
    for i, content in enumerate(result.messages):
        table.add_row(str(i), str(len(content)), repr(content[:60]))
    console.print(table)
    console.print(f"  backward: [yellow]{_short(result.backward_hash)}[/yellow]")
    console.print(f"  forward:  [yellow]{_short(result.forward_hash)}[/yellow]")


# ---------------------------------------------------------------------------
# entities
# ---------------------------------------------------------------------------

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("prefix")
@click.pass_obj
def entities(obj: dict, file: Path, prefix: str) -> None:
    """List entity ids stored under PREFIX."""

    async def _run() -> list[str]:
        async with _storage(file, obj["trace"]) as store:
            return await store.get_entity_keys(prefix)

    keys = asyncio.run(_run())
    if not keys:
        console.print(f"[dim]No entities under '{prefix}'[/dim]")
        return
    for key in keys:
        console.print(f"  {key}")


# ---------------------------------------------------------------------------
# clear
# ---------------------------------------------------------------------------

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", is_flag=True, help="Confirm without prompting.")
@click.pass_obj
def clear(obj: dict, file: Path, yes: bool) -> None:
    """Delete every message, leaf reference and entity."""
    if not yes:
        click.confirm(f"Clear all data in {file}?", abort=True)

    async def _run() -> None:
        async with _storage(file, obj["trace"]) as store:
            await store.clear()

    asyncio.run(_run())
    console.print(f"[green]✓[/green] Cleared [bold]{file}[/bold]")


if __name__ == "__main__":
    main()
