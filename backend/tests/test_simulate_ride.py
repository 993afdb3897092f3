from __future__ import annotations

import json
from pathlib import Path

import pytest

from scripts.simulate_ride import build_parser, main


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.steps == 6
    assert args.mode == "smoothest"
    assert args.board == "street"
    assert args.output is None


def test_main_writes_summary(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    out = tmp_path / "nested" / "summary.json"
    rc = main(
        [
            "--steps",
            "3",
            "--step-length-m",
            "120",
            "--gps-noise-m",
            "0",
            "--rough-steps",
            "1",
            "--mode",
            "night_safe",
            "--output",
            str(out),
        ]
    )
    assert rc == 0

    summary = json.loads(out.read_text(encoding="utf-8"))
    assert json.loads(capsys.readouterr().out) == summary
    assert summary["route_id"] == "synthetic"
    assert summary["mode"] == "night_safe"
    assert summary["events_processed"] > 0
    assert len(summary["baseline"]) == 3
    assert [s["step_id"] for s in summary["live"]] == ["synthetic:0", "synthetic:1", "synthetic:2"]
    assert all(0.0 <= s["score"] <= 1.0 for s in summary["live"])
    assert summary["diagnostics"]["matcher"]["accepted"] > 0
