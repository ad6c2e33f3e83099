"""Entry point for meshprobe."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from meshprobe.config import settings
from meshprobe.servicecheck.checker import Checker
from meshprobe.servicecheck.results import NEIGHBOURHOOD, OK, SKIPPED, failed_checks

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


async def _serve(servers: list[uvicorn.Server]) -> None:
    await asyncio.gather(*(s.serve() for s in servers))


def run_server() -> None:
    """Serve HTTP, plus HTTPS when a certificate is configured."""
    console.print(Panel("Starting meshprobe", style="bold green"))
    servers = [uvicorn.Server(uvicorn.Config(
        "meshprobe.api.server:app",
        host=settings.api_host,
        port=settings.http_port,
    ))]
    if settings.cert_file and settings.key_file:
        # Same app object; only the HTTP server runs the lifespan (and the checker)
        servers.append(uvicorn.Server(uvicorn.Config(
            "meshprobe.api.server:app",
            host=settings.api_host,
            port=settings.https_port,
            ssl_certfile=settings.cert_file,
            ssl_keyfile=settings.key_file,
            lifespan="off",
        )))
    asyncio.run(_serve(servers))


def run_check() -> int:
    """Run a single check cycle and print the outcome."""
    checker = Checker(settings)
    try:
        with console.status("[bold green]Running checks..."):
            checker.run()
        result = dict(checker.last_check_result)
    finally:
        checker.close()

    table = Table(title="meshprobe")
    table.add_column("Check")
    table.add_column("Outcome")
    for key in sorted(k for k in result if k != NEIGHBOURHOOD):
        outcome = result[key]
        style = "green" if outcome == OK else "dim" if outcome == SKIPPED else "red"
        table.add_row(key, Text(str(outcome), style=style))
    console.print(table)

    neighbours = result.get(NEIGHBOURHOOD, [])
    console.print(f"[dim]Neighbours discovered: {len(neighbours)}[/dim]")
    return 1 if failed_checks(result) else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="meshprobe cluster network probe")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the probe server with scheduled checks")
    sub.add_parser("check", help="Run all checks once and print the result")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        sys.exit(run_check())
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
