"""Command-line entry point tests."""

import json

import pytest

from perf_telemetry.cli import build_parser, main


@pytest.fixture
def quiet_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_TO_CONSOLE", "false")
    monkeypatch.setenv("PERF_TELEMETRY_METRICS_DIR", str(tmp_path / "reports"))


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.duration == 10.0
    assert args.interval is None
    assert args.output is None
    assert not args.prometheus


def test_run_writes_report(quiet_env, tmp_path, capsys):
    output = tmp_path / "report.json"
    code = main(["--duration", "0.1", "--interval", "0.02", "--quiet", "--output", str(output)])

    assert code == 0
    data = json.loads(output.read_text())
    assert data["snapshots"]
    out = capsys.readouterr().out
    assert "Performance report" in out
    assert "Report saved to" in out


def test_prometheus_output(quiet_env, capsys):
    assert main(["--duration", "0.05", "--interval", "0.01", "--quiet", "--prometheus"]) == 0
    assert "perf_telemetry_metric_current" in capsys.readouterr().out


def test_invalid_interval(quiet_env, capsys):
    assert main(["--duration", "0", "--interval", "0"]) == 2
    assert "Invalid configuration" in capsys.readouterr().out


def test_export_failure(quiet_env, tmp_path, capsys):
    target = tmp_path / "taken"
    target.mkdir()
    assert main(["--duration", "0.03", "--interval", "0.01", "--quiet", "--output", str(target)]) == 1
