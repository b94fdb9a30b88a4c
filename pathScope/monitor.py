"""Terminal monitor: run the telemetry engine and render live snapshots."""
from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path
from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text
from rich.traceback import install as install_rich_traceback

from pathScope.collector.config import EngineConfig
from pathScope.collector.models import HealthSnapshot, MetricKind
from pathScope.collector.sources import HttpProbe
from pathScope.engine.controller import TelemetryEngine
from pathScope.errors import ConfigurationError
from pathScope.logging_config import get_logger, sanitize_log_data

install_rich_traceback()
console = Console()
logger = get_logger("monitor")

RATING_STYLES = {"Excellent": "bold green", "Good": "green", "Fair": "yellow", "Poor": "bold red"}

_UNITS = {
    MetricKind.LATENCY.value: "ms",
    MetricKind.JITTER.value: "ms",
    MetricKind.BANDWIDTH.value: "Kbps",
    MetricKind.PACKET_LOSS.value: "%",
}


def _fmt(kind: str, value: Optional[float]) -> str:
    if value is None:
        return "-"
    if kind == MetricKind.PACKET_LOSS.value:
        return f"{value * 100:.1f}{_UNITS[kind]}"
    return f"{value:.1f} {_UNITS[kind]}"


def render_metrics(snapshot: HealthSnapshot) -> Table:
    table = Table(title="Metrics", expand=True)
    table.add_column("Target")
    for kind in MetricKind:
        table.add_column(kind.value, justify="right")
    table.add_column("Status")
    unreachable = set(snapshot.unreachable)
    for target, per_kind in snapshot.per_target_stats.items():
        cells: List[str] = []
        for kind in MetricKind:
            stats = per_kind.get(kind.value)
            cells.append(_fmt(kind.value, stats.average if stats else None))
        status = Text("unreachable", style="red") if target in unreachable else Text("ok", style="green")
        table.add_row(target, *cells, status)
    return table


def render_path(snapshot: HealthSnapshot) -> Table:
    table = Table(title="Inferred path (heuristic)", expand=True)
    table.add_column("#", justify="right")
    table.add_column("Role")
    table.add_column("Node")
    table.add_column("Address")
    table.add_column("Provider")
    for index, node in enumerate(snapshot.topology.nodes):
        table.add_row(str(index), node.role.value, node.display_name, node.address or "unknown", node.provider_label)
    return table


def render_dns(snapshot: HealthSnapshot) -> Table:
    table = Table(title=f"DNS chain for {snapshot.domain or '-'}", expand=True)
    table.add_column("Level", justify="right")
    table.add_column("Label")
    table.add_column("Members", justify="right")
    for level in snapshot.chain:
        table.add_row(str(level.level), level.label, str(len(level.members)))
    for finding in snapshot.findings:
        table.add_row("!", f"[{finding.severity.value}] {finding.title}", "")
    return table


def render_snapshot(snapshot: HealthSnapshot) -> Group:
    style = RATING_STYLES.get(snapshot.rating, "white")
    header = Text.assemble(
        ("pathScope ", "bold"),
        (f"score {snapshot.score}/100 ", style),
        (f"({snapshot.rating}) ", style),
        (f"at {snapshot.timestamp:%H:%M:%S}", "dim"),
    )
    return Group(header, render_metrics(snapshot), render_path(snapshot), render_dns(snapshot))


def load_config(config_path: Optional[str]) -> EngineConfig:
    if config_path:
        return EngineConfig.load(config_path)
    return EngineConfig()


async def run_monitor(
    config_path: Optional[str],
    *,
    duration: Optional[float] = None,
    refresh: float = 1.0,
    export_path: Optional[str] = None,
) -> HealthSnapshot:
    cfg = load_config(config_path)
    logger.info(
        "Monitor starting",
        extra={
            "state": "starting",
            "domain": cfg.domain,
            "extra_fields": {"config": sanitize_log_data(cfg.model_dump(mode="json"))},
        },
    )
    engine = TelemetryEngine(HttpProbe(cfg.probe), cfg)
    await engine.start()
    console.print("[green]Starting pathScope monitor", highlight=False)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration else None
    try:
        with Live(render_snapshot(engine.current_snapshot()), console=console, refresh_per_second=4) as live:
            while deadline is None or loop.time() < deadline:
                await asyncio.sleep(refresh)
                live.update(render_snapshot(engine.current_snapshot()))
    except asyncio.CancelledError:
        logger.info("Monitor interrupted", extra={"state": "interrupted"})
        raise
    finally:
        final = engine.current_snapshot()
        await engine.stop()
        if export_path:
            Path(export_path).write_text(final.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
            console.print(f"Exported final snapshot to {export_path}")
        logger.info("Monitor stopped", extra={"state": "stopped", "score": final.score})
    return final


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="pathScope network telemetry monitor")
    parser.add_argument(
        "--config",
        default=os.getenv("PATHSCOPE_CONFIG"),
        help="Path to engine YAML config (defaults to built-in targets)",
    )
    parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    parser.add_argument("--refresh", type=float, default=1.0, help="Screen refresh interval in seconds")
    parser.add_argument("--export", default=None, help="Write the final snapshot as JSON to this file")
    args = parser.parse_args(argv)
    if args.refresh <= 0:
        parser.error("--refresh must be positive")
    if args.duration is not None and args.duration <= 0:
        parser.error("--duration must be positive")
    return args


async def main_async(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    await run_monitor(args.config, duration=args.duration, refresh=args.refresh, export_path=args.export)


def main() -> None:
    try:
        asyncio.run(main_async())
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise SystemExit(2)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
