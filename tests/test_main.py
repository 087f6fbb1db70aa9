"""Tests for keybench/benchmarks/main.py: the CLI against the in-memory target."""

from __future__ import annotations

import importlib
import json
from pathlib import Path

import pandas as pd
import pytest

from keybench.benchmarks.config import BALANCED, BenchmarkCase
from keybench.benchmarks.docker_control import TargetError
from keybench.benchmarks.targets import make_target_factory

# The package re-exports main(), which shadows the submodule attribute.
cli = importlib.import_module("keybench.benchmarks.main")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "KEYBENCH_TARGET",
        "KEYBENCH_SCENARIO",
        "KEYBENCH_VARIANTS",
        "KEYBENCH_BASELINE",
        "KEYBENCH_RUNS",
        "KEYBENCH_TOTAL_OPS",
        "KEYBENCH_WORKERS",
        "KEYBENCH_INITIAL_DATASET",
        "KEYBENCH_OUTPUT_DIR",
        "KEYBENCH_SEED",
        "KEYBENCH_POSTGRES_HOST",
    ):
        monkeypatch.delenv(name, raising=False)


def _small_run_args(output_dir: Path) -> list[str]:
    return [
        "--scenario", "mixed-balanced",
        "--variants", "bigserial,uuidv4",
        "--runs", "2",
        "--total-ops", "50",
        "--workers", "4",
        "--initial-dataset", "100",
        "--seed", "1",
        "--output-dir", str(output_dir),
    ]


def test_parse_args_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KEYBENCH_RUNS", "7")
    monkeypatch.setenv("KEYBENCH_INITIAL_DATASET", "42")
    args = cli.parse_args([])
    assert args.runs == 7
    assert args.initial_dataset == 42
    assert args.target == "memory"
    assert args.seed is None


def test_dry_run_prints_plan(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output_dir = tmp_path / "results"
    assert cli.main(["--dry-run", "--workers", "10", "--output-dir", str(output_dir)]) == 0
    out = capsys.readouterr().out
    assert "Scenario: mixed-insert-heavy" in out
    assert "Scenario: mixed-balanced" in out
    assert "insert: 9000 ops on 9 worker(s)" in out
    assert "insert: 5000 ops on 5 worker(s)" in out
    assert not output_dir.exists()


def test_invalid_configuration_returns_2(tmp_path: Path) -> None:
    assert cli.main(["--variants", "uuidv4,uuidv7", "--output-dir", str(tmp_path)]) == 2
    assert cli.main(["--scenario", "write-only", "--output-dir", str(tmp_path)]) == 2


def test_memory_run_writes_artefacts(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output_dir = tmp_path / "results"
    assert cli.main(_small_run_args(output_dir) + ["--no-charts"]) == 0

    out = capsys.readouterr().out
    assert "mixed-balanced - Statistical Summary (2 runs per variant)" in out

    for label in ("runs", "stats", "comparisons"):
        assert (output_dir / f"mixed-balanced__{label}.csv").exists()
    samples = pd.read_csv(output_dir / "mixed-balanced__uuidv4__run-2.csv")
    assert len(samples) == 50
    assert set(samples["kind"]) == {"insert", "read", "update"}

    runs = pd.read_csv(output_dir / "mixed-balanced__runs.csv")
    assert list(runs["variant"]) == ["bigserial", "bigserial", "uuidv4", "uuidv4"]
    assert (runs["ops_failed"] == 0).all()

    manifest = json.loads((output_dir / "benchmark_manifest.json").read_text(encoding="utf-8"))
    assert manifest["mixed-balanced"]["baseline"] == "bigserial"
    assert manifest["mixed-balanced"]["runs"] == 2
    assert manifest["mixed-balanced"]["charts"] == []


def test_run_case_uses_fresh_target_per_run(tmp_path: Path) -> None:
    created: list[str] = []
    memory = make_target_factory("memory", seed=3)

    def factory(variant: str):
        created.append(variant)
        return memory(variant)

    case = BenchmarkCase(
        name="mixed-balanced",
        profile=BALANCED,
        total_ops=20,
        workers=3,
        initial_dataset=10,
        num_runs=2,
        variants=("bigserial", "uuidv7"),
    )
    collector = cli.run_case(case, factory, tmp_path)
    assert created == ["bigserial", "bigserial", "uuidv7", "uuidv7"]
    assert len(collector.runs_frame()) == 4
    assert set(collector.comparisons()) == {"uuidv7"}


def test_target_failure_returns_1(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    class BrokenTarget:
        def __enter__(self) -> "BrokenTarget":
            raise TargetError("container did not start")

        def __exit__(self, exc_type, exc, tb) -> None:
            return None

    monkeypatch.setattr(cli, "build_target_factory", lambda args: lambda variant: BrokenTarget())
    assert cli.main(_small_run_args(tmp_path / "results")) == 1


def test_unavailable_docker_returns_1(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def unreachable(args):
        raise TargetError("cannot reach the Docker daemon: connection refused")

    monkeypatch.setattr(cli, "build_target_factory", unreachable)
    assert cli.main(_small_run_args(tmp_path / "results") + ["--target", "postgres"]) == 1
    assert not (tmp_path / "results" / "benchmark_manifest.json").exists()


def test_postgres_host_option(monkeypatch: pytest.MonkeyPatch) -> None:
    assert cli.parse_args([]).postgres_host == "localhost"
    monkeypatch.setenv("KEYBENCH_POSTGRES_HOST", "docker.internal")
    assert cli.parse_args([]).postgres_host == "docker.internal"


def test_dry_run_lists_single_connection_scenarios(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--dry-run", "--workers", "10", "--scenario", "insert-performance"]) == 0
    out = capsys.readouterr().out
    assert "Scenario: insert-performance" in out
    assert "insert: 10000 ops on 1 worker(s)" in out
