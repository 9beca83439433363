from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
from typing import List

from .config import WarpConfig, load_warp_config
from .report import append_solve_log, format_result
from .solver import parse_mode
from .transform_engine import TransformEngine


def _say(msg: str) -> None:
    print(f">> {msg}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Time-warp a MIDI loop with a geometric per-step multiplier, keeping its groove",
    )
    parser.add_argument("input", nargs="?", default=None, help="Source MIDI file")
    parser.add_argument("--config", default=None, help="Path to JSON config; flags override its values")
    parser.add_argument("--out", default=None, help="Output MIDI path")
    parser.add_argument(
        "--mode",
        default=None,
        help="target_total_scale|fixed_beat_ratio|match_beat_end|fit_to_curve|fit_end_and_ratio "
        "(aliases: target, accel, final, curve, end_fit)",
    )
    parser.add_argument("--loops", type=float, default=None, help="Repetitions, in loops of the source")
    parser.add_argument("--multiplier", type=float, default=None, help="Per-loop multiplier (s ** M)")
    parser.add_argument("--ratio", type=float, default=None, help="Total output/source duration ratio")
    parser.add_argument("--end", type=float, default=None, help="Scale of the last step relative to the first")
    loops_group = parser.add_mutually_exclusive_group()
    loops_group.add_argument(
        "--whole-loops", dest="whole_loops", action="store_true", default=None,
        help="Only allow step counts that finish a full loop (default)",
    )
    loops_group.add_argument(
        "--any-steps", dest="whole_loops", action="store_false", default=None,
        help="Allow step counts that end part-way through the source",
    )
    parser.add_argument("--solve-only", action="store_true", help="Print the solution without writing MIDI")
    parser.add_argument("--log-path", default=None, help="Append one CSV row per solve to this file")
    parser.add_argument(
        "--debug-dump", action="store_true", default=None,
        help="Write a per-track event count summary next to the output (.txt)",
    )
    return parser


def _resolve_config(parser: argparse.ArgumentParser, args: argparse.Namespace) -> WarpConfig:
    try:
        cfg = load_warp_config(args.config) if args.config else WarpConfig()
        overrides = {
            "input": args.input,
            "out": args.out,
            "mode": parse_mode(args.mode) if args.mode else None,
            "loops": args.loops,
            "multiplier": args.multiplier,
            "ratio": args.ratio,
            "end": args.end,
            "whole_loops": args.whole_loops,
            "log_path": args.log_path,
            "debug_dump": args.debug_dump,
        }
    except (OSError, ValueError) as e:
        parser.error(str(e))
    return replace(cfg, **{k: v for k, v in overrides.items() if v is not None})


def main(argv: List[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    cfg = _resolve_config(parser, args)
    if not cfg.input:
        parser.error("a source MIDI file is required (positional or 'input' in --config)")

    engine = TransformEngine()

    _say(f"ACCESSING: {Path(cfg.input).name}")
    loaded = engine.load_source(cfg.input)
    if not loaded:
        _say(f"ERROR: {loaded.message}")
        return 1
    _say(f"SOURCE LOADED. {engine.model.describe()}")

    res = engine.run_solver(cfg.request(), whole_loops=cfg.whole_loops)
    for line in format_result(res):
        _say(line)
    if cfg.log_path:
        append_solve_log(cfg.log_path, res)
    if not res.success:
        return 1
    if args.solve_only:
        return 0

    gen = engine.generate(res.repetitions, res.step_scale)
    if not gen:
        _say(f"GEN FAIL: {gen.message}")
        return 1
    _say("SEQUENCE GENERATED.")

    saved = engine.save(cfg.out)
    if not saved:
        _say(f"ERROR: {saved.message}")
        return 1
    _say(f"SAVED: {cfg.out}")

    if cfg.debug_dump:
        dump_path = Path(cfg.out).with_suffix(".txt")
        dump_path.write_text(engine.debug_dump())
        _say("DEBUG DUMP EXPORTED.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
