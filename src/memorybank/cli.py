"""Memory Bank - command line inspector for stored identities."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from memorybank.logging_config import setup_logging
from memorybank.memory_manager import MemoryConfig, MemoryService
from memorybank.models import Permanence
from memorybank.storage import MemoryBank

console = Console()

TIER_STYLE = {
    Permanence.CORE: "bold green",
    Permanence.STICKY: "cyan",
    Permanence.EPHEMERAL: "dim",
}


def print_bank(identity: str, bank: MemoryBank, limit: int) -> None:
    """Print a bank's items as a table, highest priority first."""
    table = Table(title=f"Memories for {identity}", show_lines=False)
    table.add_column("Tier")
    table.add_column("Category")
    table.add_column("Conf", justify="right")
    table.add_column("Seen", justify="right")
    table.add_column("Emotion")
    table.add_column("Content", overflow="fold")

    for item in bank.items()[:limit]:
        style = TIER_STYLE.get(item.permanence, "")
        table.add_row(
            f"[{style}]{item.permanence.value}[/{style}]",
            item.category.value,
            f"{item.confidence:.2f}",
            str(item.times_seen),
            f"{item.emotion.value}/{item.intensity}",
            item.content,
        )

    console.print(table)
    if len(bank) > limit:
        console.print(f"[dim]... {len(bank) - limit} more[/dim]")


def print_stats(identity: str, stats: dict) -> None:
    """Print bank, vector cache and gate statistics as one table."""
    table = Table(title=f"Memory Stats for {identity}")
    table.add_column("Section", style="cyan")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    for section in ("bank", "vectors", "gate"):
        for metric, value in stats.get(section, {}).items():
            if isinstance(value, dict):
                value = ", ".join(f"{k}={v}" for k, v in value.items())
            elif isinstance(value, list):
                value = ", ".join(str(v) for v in value) or "-"
            elif isinstance(value, float):
                value = f"{value:.2f}"
            table.add_row(section, metric, str(value))

    console.print(table)


async def run(args: argparse.Namespace) -> int:
    service = MemoryService(MemoryConfig.from_env())

    if args.command == "stats":
        stats = await service.get_stats(args.identity)
        print_stats(args.identity, stats)
        return 0

    async with service.session(args.identity) as session:
        if args.command == "show":
            print_bank(args.identity, session.bank, args.limit)
        elif args.command == "recall":
            lines = await service.recall(session.bank, session.cache, args.query, args.max_lines)
            if lines:
                console.print(Panel("\n".join(lines), title=f"Recall: {args.query}"))
            else:
                console.print("[dim]No memories to recall.[/dim]")
        elif args.command == "prune":
            console.print(f"Removed {len(session.pruned)} memories, {len(session.bank)} remain.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memorybank", description="Inspect stored memory banks")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    stats = sub.add_parser("stats", help="Show bank, vector cache and gate statistics")
    stats.add_argument("identity")

    show = sub.add_parser("show", help="List an identity's memories")
    show.add_argument("identity")
    show.add_argument("--limit", type=int, default=50)

    recall = sub.add_parser("recall", help="Recall memories relevant to a query")
    recall.add_argument("identity")
    recall.add_argument("query")
    recall.add_argument("--max-lines", type=int, default=None)

    prune = sub.add_parser("prune", help="Drop expired memories and enforce the cap")
    prune.add_argument("identity")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/dim]")
        return 130
    except OSError as e:
        console.print(f"[red]Storage error: {e}[/red]")
        if os.getenv("DEBUG"):
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
