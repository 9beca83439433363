from __future__ import annotations

import csv
import json
from pathlib import Path

import mido
import pytest

from cyclesnap.cli import main as warp_cli
from cyclesnap.config import WarpConfig, load_warp_config, warp_config_from_dict
from cyclesnap.solver import FitToCurve, Mode, TargetTotalScale


def _write_loop(path: Path, ppq: int = 960) -> Path:
    mid = mido.MidiFile(ticks_per_beat=ppq)
    track = mido.MidiTrack()
    mid.tracks.append(track)
    track.append(mido.MetaMessage("set_tempo", tempo=500000, time=0))
    track.append(mido.Message("note_on", note=60, velocity=100, time=0))
    track.append(mido.Message("note_off", note=60, velocity=0, time=480))
    track.append(mido.Message("note_on", note=62, velocity=100, time=0))
    track.append(mido.Message("note_off", note=62, velocity=0, time=480))
    mid.save(path)
    return path


def test_config_defaults():
    cfg = warp_config_from_dict({})
    assert cfg == WarpConfig()
    assert cfg.mode is Mode.TARGET_TOTAL_SCALE
    assert cfg.request() == TargetTotalScale(loops=4.0, total_ratio=2.0)


def test_config_mode_aliases_and_values(tmp_path: Path):
    p = tmp_path / "warp.json"
    p.write_text(json.dumps({"mode": "curve", "multiplier": 1.25, "ratio": 3.0, "whole_loops": False}))
    cfg = load_warp_config(str(p))
    assert cfg.mode is Mode.FIT_TO_CURVE
    assert cfg.whole_loops is False
    assert cfg.request() == FitToCurve(loop_multiplier=1.25, total_ratio=3.0)


@pytest.mark.parametrize(
    "value, expected",
    [(False, False), (True, True), ("false", False), ("No", False), ("off", False), ("TRUE", True), (0, False), (1, True)],
)
def test_config_boolean_spellings(value, expected):
    cfg = warp_config_from_dict({"whole_loops": value, "debug_dump": value})
    assert cfg.whole_loops is expected
    assert cfg.debug_dump is expected


@pytest.mark.parametrize("value", ["maybe", 2, None, [True]])
def test_config_rejects_non_boolean_flags(value):
    with pytest.raises(ValueError, match="whole_loops"):
        warp_config_from_dict({"whole_loops": value})


def test_config_rejects_unknown_mode():
    with pytest.raises(ValueError):
        warp_config_from_dict({"mode": "sideways"})


def test_cli_renders_and_logs(tmp_path: Path, capsys):
    src = _write_loop(tmp_path / "loop.mid")
    out = tmp_path / "out" / "warped.mid"
    log = tmp_path / "solves.csv"

    rc = warp_cli([
        str(src),
        "--out", str(out),
        "--mode", "accel",
        "--loops", "2",
        "--multiplier", "1.0",
        "--log-path", str(log),
        "--debug-dump",
    ])
    assert rc == 0

    stdout, _err = capsys.readouterr()
    assert "SOURCE LOADED." in stdout
    assert "SOLVED: N=4 (2.00 Loops)" in stdout
    assert "DRIFT: 0.00ms [ok]" in stdout
    assert "SAVED:" in stdout

    mid = mido.MidiFile(str(out))
    assert mid.ticks_per_beat == 960
    assert len([m for m in mid.tracks[0] if m.type == "note_on"]) == 4
    assert out.with_suffix(".txt").read_text().startswith("--- DEBUG ---")

    with log.open() as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 1
    assert rows[0]["mode"] == "fixed_beat_ratio"
    assert int(rows[0]["repetitions"]) == 4


def test_cli_solve_only_writes_nothing(tmp_path: Path, capsys):
    src = _write_loop(tmp_path / "loop.mid")
    out = tmp_path / "warped.mid"
    rc = warp_cli([str(src), "--out", str(out), "--mode", "target", "--loops", "2", "--ratio", "3", "--solve-only"])
    assert rc == 0
    assert not out.exists()
    assert "Solved Beat Ratio" in capsys.readouterr().out


def test_cli_flags_override_config(tmp_path: Path, capsys):
    src = _write_loop(tmp_path / "loop.mid")
    cfg_path = tmp_path / "warp.json"
    cfg_path.write_text(json.dumps({
        "input": str(src),
        "out": str(tmp_path / "from_config.mid"),
        "mode": "fixed_beat_ratio",
        "loops": 3,
        "multiplier": 1.0,
    }))
    rc = warp_cli(["--config", str(cfg_path), "--loops", "1", "--solve-only"])
    assert rc == 0
    assert "SOLVED: N=2 (1.00 Loops)" in capsys.readouterr().out


def test_cli_reports_invalid_parameters(tmp_path: Path, capsys):
    src = _write_loop(tmp_path / "loop.mid")
    rc = warp_cli([str(src), "--mode", "target", "--loops", "2", "--ratio", "0"])
    assert rc == 1
    assert "MATH ERROR: total_ratio must be > 0" in capsys.readouterr().out


@pytest.mark.parametrize("value", ["nan", "inf"])
def test_cli_reports_non_finite_loops(tmp_path: Path, capsys, value):
    src = _write_loop(tmp_path / "loop.mid")
    rc = warp_cli([str(src), "--mode", "target", "--loops", value, "--ratio", "2"])
    assert rc == 1
    assert "MATH ERROR: loops must be > 0" in capsys.readouterr().out


def test_cli_reports_missing_source(tmp_path: Path, capsys):
    rc = warp_cli([str(tmp_path / "missing.mid")])
    assert rc == 1
    assert "File not found" in capsys.readouterr().out


def test_cli_unknown_mode_is_usage_error(tmp_path: Path):
    src = _write_loop(tmp_path / "loop.mid")
    with pytest.raises(SystemExit) as exc:
        warp_cli([str(src), "--mode", "sideways"])
    assert exc.value.code == 2
