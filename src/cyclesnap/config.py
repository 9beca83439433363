from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .solver import Mode, SolveRequest, build_request, parse_mode


@dataclass
class WarpConfig:
    input: Optional[str] = None
    out: str = "out/warped.mid"
    mode: Mode = Mode.TARGET_TOTAL_SCALE
    loops: float = 4.0
    multiplier: float = 1.5  # per-loop
    ratio: float = 2.0
    end: float = 2.0
    whole_loops: bool = True
    log_path: Optional[str] = None
    debug_dump: bool = False

    def request(self) -> SolveRequest:
        return build_request(
            self.mode,
            loops=self.loops,
            loop_multiplier=self.multiplier,
            total_ratio=self.ratio,
            terminal=self.end,
        )


_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}


def _flag(raw: Dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


def _warp_config_from_dict(raw: Dict[str, Any]) -> WarpConfig:
    defaults = WarpConfig()
    mode_raw = raw.get("mode")
    return WarpConfig(
        input=raw.get("input"),
        out=str(raw.get("out", defaults.out)),
        mode=parse_mode(str(mode_raw)) if mode_raw is not None else defaults.mode,
        loops=float(raw.get("loops", defaults.loops)),
        multiplier=float(raw.get("multiplier", defaults.multiplier)),
        ratio=float(raw.get("ratio", defaults.ratio)),
        end=float(raw.get("end", defaults.end)),
        whole_loops=_flag(raw, "whole_loops", defaults.whole_loops),
        log_path=raw.get("log_path"),
        debug_dump=_flag(raw, "debug_dump", defaults.debug_dump),
    )


def warp_config_from_dict(raw: Dict[str, Any]) -> WarpConfig:
    return _warp_config_from_dict(raw)


def load_warp_config(path: str) -> WarpConfig:
    with open(path, "r") as f:
        raw = json.load(f)
    return _warp_config_from_dict(raw)
