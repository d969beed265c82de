#!/usr/bin/env python3
"""
Telemetry CLI

Runs the telemetry engine against the current process for a fixed duration
and prints the resulting report.

Usage:
    perf-telemetry --duration 30 --interval 0.5
    perf-telemetry --duration 60 --output report.json
    perf-telemetry --prometheus
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from rich.console import Console

from .config import load_config
from .engine import TelemetryEngine
from .events import EventType, TelemetryEvent
from .exceptions import ConfigurationError, ReportExportError
from .logging_config import setup_logging
from .report import summary_text


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="perf-telemetry",
        description="Sample process performance and memory, then report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--duration", type=float, default=10.0,
        help="Seconds to sample for (default: 10)"
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between samples (default: from config)"
    )
    parser.add_argument(
        "--output", "-o", default=None,
        help="Write the JSON report to this path"
    )
    parser.add_argument(
        "--prometheus", action="store_true",
        help="Also print the Prometheus exposition"
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true",
        help="Do not print alerts as they happen"
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Log level (default: LOG_LEVEL or INFO)"
    )
    return parser


async def run(args: argparse.Namespace, console: Console) -> int:
    overrides = {}
    if args.interval is not None:
        overrides["sample_interval_s"] = args.interval
    try:
        config = load_config(**overrides)
    except ConfigurationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        return 2

    engine = TelemetryEngine(config)

    if not args.quiet:
        def show_alert(event: TelemetryEvent) -> None:
            color = "red" if event.data["severity"] == "critical" else "yellow"
            console.print(f"  [{color}]{event.data['severity']}[/{color}] {event.data['message']}")

        engine.events.subscribe(EventType.ALERT, show_alert)

    console.print(
        f"\n[bold]Sampling for {args.duration:g}s[/bold] "
        f"[dim](every {config.sample_interval_s:g}s)[/dim]\n"
    )
    await engine.start()
    try:
        await asyncio.sleep(args.duration)
    finally:
        await engine.stop()

    report = engine.generate_report()
    console.print()
    console.print(summary_text(report), markup=False, highlight=False)

    if args.prometheus:
        from prometheus_client import CollectorRegistry

        from .prometheus import TelemetryCollector, generate_metrics

        registry = CollectorRegistry()
        registry.register(TelemetryCollector(engine))
        console.print()
        console.print(generate_metrics(registry).decode("utf-8"), markup=False, highlight=False)

    if args.output:
        try:
            path = engine.export_report(args.output)
        except ReportExportError as e:
            console.print(f"[red]{e}[/red]")
            return 1
        console.print(f"\n[green]Report saved to {path}[/green]")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_level=args.log_level)
    console = Console()
    return asyncio.run(run(args, console))


if __name__ == "__main__":
    sys.exit(main())
