from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from ..executor import ConcurrentExecutor
from ..keys import DEFAULT_BASELINE, VARIANTS
from ..latency import samples_frame
from ..workload import ConfigurationError
from .charts import render_case_charts
from .collector import ResultCollector
from .config import PROFILES, BenchmarkCase, BenchmarkPlan, build_plan
from .display import render_summary
from .docker_control import DEFAULT_POSTGRES_IMAGE, PostgresConfig, PostgresManager, TargetError
from .targets import TARGET_NAMES, TargetFactory, make_target_factory

LOGGER = logging.getLogger("keybench.benchmark")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Primary-key encoding benchmark harness")
    parser.add_argument(
        "--target",
        choices=TARGET_NAMES,
        default=os.environ.get("KEYBENCH_TARGET", "memory"),
        help="System under test",
    )
    parser.add_argument(
        "--scenario",
        default=os.environ.get("KEYBENCH_SCENARIO", "all"),
        help=f"Comma-separated scenarios ({', '.join(PROFILES)}) or 'all'",
    )
    parser.add_argument(
        "--variants",
        default=os.environ.get("KEYBENCH_VARIANTS", ",".join(VARIANTS)),
        help="Comma-separated key encodings to benchmark",
    )
    parser.add_argument(
        "--baseline",
        default=os.environ.get("KEYBENCH_BASELINE", DEFAULT_BASELINE),
        help="Variant every other variant is compared against",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=int(os.environ.get("KEYBENCH_RUNS", "5")),
        help="Repeated runs per variant",
    )
    parser.add_argument(
        "--total-ops",
        type=int,
        default=int(os.environ.get("KEYBENCH_TOTAL_OPS", "10000")),
        help="Operations per run, split by the scenario weights",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=int(os.environ.get("KEYBENCH_WORKERS", "8")),
        help="Concurrent workers per run",
    )
    parser.add_argument(
        "--initial-dataset",
        type=int,
        default=_env_int("KEYBENCH_INITIAL_DATASET"),
        help="Rows loaded before each run (defaults to the scenario's size)",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("KEYBENCH_OUTPUT_DIR", "results"),
        help="Directory to store benchmark artefacts (charts and CSV files)",
    )
    parser.add_argument(
        "--postgres-image",
        default=os.environ.get("KEYBENCH_POSTGRES_IMAGE", DEFAULT_POSTGRES_IMAGE),
        help="Docker image for the postgres target",
    )
    parser.add_argument(
        "--postgres-host",
        default=os.environ.get("KEYBENCH_POSTGRES_HOST", "localhost"),
        help="Host on which the postgres container's published port is reachable",
    )
    parser.add_argument(
        "--networks",
        default=os.environ.get("KEYBENCH_NETWORKS"),
        help="Comma-separated list of docker network names for the postgres container",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=_env_int("KEYBENCH_SEED"),
        help="Seed for random key selection in reads and updates",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned benchmark cases without executing them",
    )
    parser.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip chart generation",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("KEYBENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def _env_int(name: str) -> int | None:
    value = os.environ.get(name)
    return int(value) if value else None


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def load_plan(args: argparse.Namespace) -> BenchmarkPlan:
    return build_plan(
        scenarios=_split(args.scenario),
        total_ops=args.total_ops,
        workers=args.workers,
        num_runs=args.runs,
        variants=_split(args.variants),
        baseline=args.baseline,
        initial_dataset=args.initial_dataset,
    )


def build_target_factory(args: argparse.Namespace) -> TargetFactory:
    manager = None
    if args.target == "postgres":
        manager = PostgresManager(
            PostgresConfig(image=args.postgres_image, host=args.postgres_host),
            network_names=_split(args.networks or ""),
        )
    return make_target_factory(args.target, manager=manager, seed=args.seed)


def run_case(
    case: BenchmarkCase,
    target_factory: TargetFactory,
    output_dir: Path,
    executor: ConcurrentExecutor | None = None,
) -> ResultCollector:
    executor = executor or ConcurrentExecutor()
    spec = case.workload_spec()
    assignment = spec.assignments()
    collector = ResultCollector(case.name, case.variants, case.baseline)

    for variant in case.variants:
        LOGGER.info(
            "Running case %s for %s (%s, ops=%d, workers=%d, runs=%d)",
            case.name,
            variant,
            case.profile.mix_label(),
            case.total_ops,
            case.workers,
            case.num_runs,
        )
        for run_num in range(1, case.num_runs + 1):
            LOGGER.info("  Run %d/%d for %s", run_num, case.num_runs, variant)
            with target_factory(variant) as target:
                target.setup(case.initial_dataset)
                target.reset_stats()
                result = executor.run(assignment, target.operations())
                target_metrics = target.metrics()

            metrics = collector.record(variant, run_num, result, target_metrics)
            samples_path = output_dir / f"{case.name}__{variant}__run-{run_num}.csv"
            samples_frame(result).to_csv(samples_path, index=False)
            LOGGER.info(
                "  Saved run %d samples to %s (%d ops, %d failed, throughput %.2f ops/sec)",
                run_num,
                samples_path,
                result.ops_completed,
                result.ops_failed,
                metrics["throughput"],
            )
    return collector


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        plan = load_plan(args)
    except ConfigurationError as exc:
        LOGGER.error("Invalid benchmark configuration: %s", exc)
        return 2

    output_dir = Path(args.output_dir)
    LOGGER.info("Benchmark output directory: %s", output_dir)
    LOGGER.info("Target: %s", args.target)

    if args.dry_run:
        _print_plan(plan)
        return 0

    output_dir.mkdir(parents=True, exist_ok=True)
    try:
        target_factory = build_target_factory(args)
    except TargetError:
        LOGGER.exception("Could not prepare the %s target", args.target)
        return 1

    suite_results = {}
    for case in plan:
        try:
            collector = run_case(case, target_factory, output_dir)
        except TargetError:
            LOGGER.exception("Target failed during case %s", case.name)
            return 1

        print(render_summary(collector, case.num_runs))
        paths = collector.export(output_dir)
        charts = [] if args.no_charts else render_case_charts(collector, output_dir)
        suite_results[case.name] = {
            "variants": list(case.variants),
            "baseline": case.baseline,
            "runs": case.num_runs,
            "csv": {label: str(path) for label, path in paths.items()},
            "charts": [str(path) for path in charts],
        }

    suite_manifest_path = output_dir / "benchmark_manifest.json"
    with open(suite_manifest_path, "w", encoding="utf-8") as f:
        json.dump(suite_results, f, indent=2)
    LOGGER.info("Benchmark manifest written to %s", suite_manifest_path)
    return 0


def _print_plan(plan: BenchmarkPlan) -> None:
    for case in plan:
        spec = case.workload_spec()
        print(f"Scenario: {case.name} ({case.profile.description})")
        print(
            f"  mix={case.profile.mix_label()} ops={case.total_ops} "
            f"workers={case.workers} initial={case.initial_dataset} runs={case.num_runs}"
        )
        for kind, assignment in spec.assignments().items():
            print(
                f"  - {kind.value}: {assignment.ops_assigned} ops on "
                f"{assignment.worker_count} worker(s) {assignment.worker_ops()}"
            )
        print(f"  variants={', '.join(case.variants)} baseline={case.baseline}")


if __name__ == "__main__":
    sys.exit(main())
