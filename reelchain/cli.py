import argparse
import asyncio
import json
import sys
from pathlib import Path
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reelchain.config.config import constraints_from_config, load_config, require
from reelchain.core.errors import ConfigError, ReelchainError
from reelchain.core.models import ContinuityMode, TakeStatus
from reelchain.ledger.credit_ledger import CreditLedger
from reelchain.pipeline import PipelineReport, ReelPipeline, proposer_from_config
from reelchain.segmentation.segmenter import ScriptSegmenter, SegmentationMode, SegmentationResult
from reelchain.utils.logging_setup import configure_logging

console = Console()


def _read_script(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _render_segments(result: SegmentationResult) -> None:
    table = Table(title=f"Segments ({result.metadata.strategy})")
    table.add_column("#", justify="right")
    table.add_column("Text")
    table.add_column("Tokens", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Conf.", justify="right")
    for seg in result.segments:
        text = seg.text if len(seg.text) <= 80 else seg.text[:77] + "..."
        table.add_row(
            str(seg.index + 1),
            text,
            str(seg.estimated_tokens),
            f"{seg.estimated_duration:.1f}s",
            f"{seg.confidence * 100:.0f}%",
        )
    console.print(table)
    for warning in result.warnings:
        style = {"info": "dim", "warning": "yellow", "error": "red"}[warning.severity.value]
        console.print(f"[{style}]{warning.severity.value}: {warning.message}[/]")
    console.print(Panel(result.metadata.summary, title="Segmentation", border_style="cyan"))


def _render_report(report: PipelineReport) -> None:
    table = Table(title="Timeline")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Provider")
    table.add_column("Attempts", justify="right")
    table.add_column("Credits", justify="right")
    table.add_column("Asset / reason")
    for entry in report.timeline:
        ok = entry.final_status == TakeStatus.COMMITTED
        status = "[green]committed[/]" if ok else "[red]failed[/]"
        if entry.cached:
            status += " [dim](cache)[/]"
        table.add_row(
            str(entry.take.index + 1),
            status,
            entry.provider or "-",
            str(entry.attempts),
            str(entry.credits_committed),
            (entry.asset_ref or "")[:16] if ok else (entry.reason or ""),
        )
    console.print(table)
    ledger = report.ledger
    console.print(
        f"[dim]Ledger: granted {ledger.granted} | committed {ledger.committed} | available {ledger.available}[/]"
    )


def option_or_config(enum_cls: Type[Enum], value: Optional[str], config: Dict[str, Any], key: str):
    """A command-line choice, falling back to the [pipeline] default from config."""
    if value is None:
        value = config.get("pipeline", {}).get(key)
    try:
        return enum_cls(value)
    except ValueError:
        raise ConfigError(f"Invalid pipeline.{key}: {value!r}") from None


def cmd_segment(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    result = ScriptSegmenter().segment(
        _read_script(args.script),
        mode=option_or_config(SegmentationMode, args.mode, config, "mode"),
        constraints=constraints_from_config(config),
        boundary_proposer=proposer_from_config(config),
    )
    if args.json:
        console.print_json(json.dumps([seg.__dict__ for seg in result.segments], ensure_ascii=False))
    else:
        _render_segments(result)
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    mode = option_or_config(SegmentationMode, args.mode, config, "mode")
    continuity = option_or_config(ContinuityMode, args.continuity, config, "continuity")
    pipeline = ReelPipeline.from_config(config)
    try:
        report = asyncio.run(
            pipeline.generate(
                _read_script(args.script),
                mode=mode,
                continuity_mode=continuity,
                concurrency_budget=args.concurrency,
            )
        )
    finally:
        pipeline.close()
    if args.json:
        console.print_json(json.dumps(report.to_dict(), ensure_ascii=False))
    else:
        _render_report(report)
    return 0 if report.timeline.is_complete_success else 1


def cmd_ledger(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    ledger = CreditLedger.open(
        require(config, "ledger.db_path"), granted=int(config["ledger"].get("granted_balance", 0))
    )
    try:
        if args.grant:
            asyncio.run(ledger.grant(args.grant))
        snap = ledger.snapshot()
    finally:
        ledger.close()
    table = Table(title="Credits")
    table.add_column("Granted", justify="right")
    table.add_column("Committed", justify="right")
    table.add_column("Available", justify="right")
    table.add_row(str(snap.granted), str(snap.committed), str(snap.available))
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reelchain", description="Script-to-clips generation pipeline")
    parser.add_argument("--config", default=None, help="Path to a config.toml")
    parser.add_argument("--verbose", action="store_true", help="Also log to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    modes = [m.value for m in SegmentationMode]

    seg = sub.add_parser("segment", help="Preview how a script is split into takes")
    seg.add_argument("script", help="Script file, or - for stdin")
    seg.add_argument("--mode", choices=modes, default=None, help="Defaults to pipeline.mode")
    seg.add_argument("--json", action="store_true")
    seg.set_defaults(func=cmd_segment)

    gen = sub.add_parser("generate", help="Generate clips for a script")
    gen.add_argument("script", help="Script file, or - for stdin")
    gen.add_argument("--mode", choices=modes, default=None, help="Defaults to pipeline.mode")
    gen.add_argument(
        "--continuity",
        choices=[m.value for m in ContinuityMode],
        default=None,
        help="Defaults to pipeline.continuity",
    )
    gen.add_argument("--concurrency", type=int, default=None)
    gen.add_argument("--json", action="store_true")
    gen.set_defaults(func=cmd_generate)

    led = sub.add_parser("ledger", help="Show (or top up) the credit balance")
    led.add_argument("--grant", type=int, default=0, help="Add credits to the granted balance")
    led.set_defaults(func=cmd_ledger)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(enable_console=args.verbose, force=args.verbose)
    try:
        return args.func(args)
    except ReelchainError as e:
        console.print(f"[bold red]Error:[/] {e}")
        return 2
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
