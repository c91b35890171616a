"""circletrace command-line interface."""

import argparse
import asyncio
import importlib
import json
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Callable, Tuple

# Ensure project root and the working directory are importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
if os.getcwd() not in sys.path:
    sys.path.insert(0, os.getcwd())

from core.config import load_settings, resolve_config_path  # noqa: E402
from core.errors import CircleTraceError, ConfigurationError  # noqa: E402

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


# ── Argument types ────────────────────────────────────────────────────

def load_callable(target: str) -> Callable[..., Any]:
    """Resolve ``package.module:function`` to the callable it names."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise argparse.ArgumentTypeError(f"expected module:function, got '{target}'")
    try:
        obj = importlib.import_module(module_name)
    except ImportError as e:
        raise argparse.ArgumentTypeError(f"cannot import '{module_name}': {e}") from e
    for part in attr.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            raise argparse.ArgumentTypeError(f"'{target}' not found")
    if not callable(obj):
        raise argparse.ArgumentTypeError(f"'{target}' is not callable")
    return obj


def parse_variant(value: str) -> Tuple[str, Callable[..., Any]]:
    """Parse ``name=module:function``."""
    name, sep, target = value.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected name=module:function, got '{value}'")
    return name.strip(), load_callable(target)


def _metric_list(value: str):
    return [name.strip() for name in value.split(",") if name.strip()] if value else None


# ── Shared setup ──────────────────────────────────────────────────────

class Session:
    """Recorder, dataset store and metrics engine for one command."""

    def __init__(self, args):
        from evals.dataset import DatasetStore
        from evals.metrics import MetricsEngine
        from monitoring.budget import BudgetRegistry
        from storage.database import Database
        from tracing.recorder import TraceRecorder
        from tracing.sinks import DuckDBSink, create_sink

        self.settings = load_settings(getattr(args, "config", None))
        self.budgets = BudgetRegistry()
        self.recorder = TraceRecorder.from_settings(self.settings, budgets=self.budgets)

        if getattr(args, "dataset_file", None):
            # File datasets are served from an in-memory database so runs stay offline
            self.datasets = DatasetStore(DuckDBSink(Database(":memory:")))
        elif self.recorder.enabled:
            self.datasets = DatasetStore(self.recorder.sink)
        else:
            self.datasets = DatasetStore(create_sink(self.settings))

        judge = None
        if getattr(args, "judge", None):
            from llm.gemini import TrackedGeminiModel
            judge = TrackedGeminiModel(args.judge, self.recorder, agent_name="metric_judge")
        self.metrics_engine = MetricsEngine(judge=judge)

    async def resolve_dataset(self, args) -> str:
        if not args.dataset_file:
            return args.dataset
        from evals.dataset import DatasetLoader
        dataset = DatasetLoader.load_from_file(args.dataset_file)
        await DatasetLoader.push(self.datasets, dataset)
        return dataset.name

    async def aclose(self):
        await self.recorder.aclose()
        if self.datasets.sink is not self.recorder.sink:
            await self.datasets.sink.aclose()


# ── Commands ──────────────────────────────────────────────────────────

async def cmd_eval(args) -> int:
    """Evaluate one function over a dataset."""
    from evals.runner import EvaluationRunner, save_results

    session = Session(args)
    try:
        dataset_name = await session.resolve_dataset(args)
        runner = EvaluationRunner(session.datasets, session.metrics_engine, recorder=session.recorder)
        agent_name = args.name or args.agent.__name__
        result = await runner.evaluate(
            agent_name,
            args.agent,
            dataset_name,
            metrics=_metric_list(args.metrics),
            max_cases=args.max_cases,
            experiment_name=args.experiment,
            verbose=args.verbose,
        )
    finally:
        await session.aclose()

    print(f"\n{'=' * 50}")
    print(f"Agent: {result.agent_name}  Dataset: {result.dataset_name}")
    print(f"Cases: {result.total_cases} total, {result.successful_cases} succeeded, "
          f"{result.failed_cases} failed")
    for name, score in result.average_scores.items():
        print(f"  {name:<25} {score * 100:.1f}%")
    print(f"Overall Score: {result.overall_score:.2%}")

    if args.output:
        save_results(result, args.output)
        print(f"\nResults saved to {args.output}")

    if args.fail_under is not None and result.overall_score < args.fail_under:
        print(f"Overall score below {args.fail_under:.2f}")
        return 1
    return 0


async def cmd_experiment(args) -> int:
    """Compare named variants on one dataset."""
    from evals.experiments import ExperimentRunner, ExperimentVariant
    from evals.runner import EvaluationRunner

    session = Session(args)
    try:
        dataset_name = await session.resolve_dataset(args)
        runner = ExperimentRunner(
            EvaluationRunner(session.datasets, session.metrics_engine, recorder=session.recorder)
        )
        result = await runner.run_experiment(
            name=args.name,
            dataset_name=dataset_name,
            variants=[ExperimentVariant(name, fn) for name, fn in args.variant],
            metrics=_metric_list(args.metrics),
            max_cases=args.max_cases,
            description=args.description or "",
        )
    finally:
        await session.aclose()

    print()
    print(result.summary())

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"\nResults saved to {args.output}")
    return 0


async def cmd_datasets(args) -> int:
    """Dataset administration on the configured sink."""
    from evals.dataset import DatasetLoader, DatasetStore, create_sample_dataset
    from tracing.sinks import create_sink

    if args.datasets_command == "sample":
        dataset = create_sample_dataset(args.name or "skill-matcher-sample")
        DatasetLoader.save_to_file(dataset, args.path)
        print(f"Wrote sample dataset '{dataset.name}' ({len(dataset)} items) to {args.path}")
        return 0

    store = DatasetStore(create_sink(load_settings(args.config)))
    try:
        if args.datasets_command == "push":
            dataset = DatasetLoader.load_from_file(args.file)
            if args.name:
                dataset.name = args.name
            dataset_id = await DatasetLoader.push(store, dataset)
            print(f"Pushed '{dataset.name}' ({len(dataset)} items, id {dataset_id})")
        elif args.datasets_command == "delete":
            await store.delete(args.dataset)
            print(f"Deleted '{args.dataset}'")
        elif args.datasets_command == "show":
            dataset = await store.get(args.dataset)
            print(json.dumps(dataset.stats(), indent=2, default=str))
    finally:
        await store.sink.aclose()
    return 0


async def cmd_cost(args) -> int:
    """Price one model call."""
    from monitoring.costs import DEFAULT_COST_MODEL

    cost = DEFAULT_COST_MODEL.cost(args.model, args.input_tokens, args.output_tokens)
    print(f"{args.model}: {args.input_tokens} in / {args.output_tokens} out = ${cost:.6f}")
    return 0


async def cmd_doctor(args) -> int:
    """Report configuration status."""
    from tracing.sinks import create_sink

    print("circletrace doctor - configuration check")
    print("-" * 50)

    try:
        config_path = resolve_config_path(args.config)
    except ConfigurationError as e:
        print(f"  [fail] {e}")
        return 2
    print(f"  [ok] config file: {config_path or 'none (environment only)'}")

    settings = load_settings(args.config)
    sink = create_sink(settings)
    try:
        print(f"  [{'ok' if settings.enabled else 'off'}] tracing enabled: {settings.enabled}")
        print(f"  [{'ok' if settings.is_configured else 'warn'}] credentials: "
              f"key={settings.masked_key()} workspace={settings.workspace or 'unset'}")
        print(f"  [ok] project: {settings.project_name}  environment: {settings.environment_tag}")
        print(f"  [ok] sink: {sink.name} ({'active' if sink.enabled else 'inactive'})")
        google_key = "set" if os.getenv("GOOGLE_API_KEY") else "unset"
        print(f"  [{'ok' if google_key == 'set' else 'warn'}] GOOGLE_API_KEY: {google_key}")
    finally:
        await sink.aclose()
    return 0


def cmd_dashboard(args) -> int:
    """Launch the HTTP API."""
    print(f"Starting API on http://{args.host}:{args.port}")
    completed = subprocess.run([
        sys.executable, "-m", "uvicorn",
        "dashboard.app:create_app", "--factory",
        "--host", args.host,
        "--port", str(args.port),
        "--reload" if args.reload else "--no-access-log",
    ], cwd=str(PROJECT_ROOT))
    return completed.returncode


# ── Argument parser ───────────────────────────────────────────────────

def _add_dataset_source(parser: argparse.ArgumentParser):
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--dataset", "-d", help="Name of a dataset on the configured sink")
    source.add_argument("--dataset-file", "-f", help="Path to a dataset JSON file (runs offline)")
    parser.add_argument("--metrics", "-m", help="Comma-separated metric names (default: per agent)")
    parser.add_argument("--max-cases", type=int, help="Evaluate only the first N items")
    parser.add_argument("--judge", help="Gemini model used to judge LLM-scored metrics")
    parser.add_argument("--output", "-o", help="Write results as JSON to this path")
    parser.add_argument("--config", "-c", help="Path to circletrace.yaml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="circletrace",
        description="circletrace - tracing and evaluation for AI agents",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # eval
    p_eval = sub.add_parser("eval", help="Evaluate a function over a dataset")
    p_eval.add_argument("--agent", "-a", required=True, type=load_callable,
                        help="Function under test as module:function")
    p_eval.add_argument("--name", "-n", help="Agent name (default: the function's name)")
    p_eval.add_argument("--experiment", help="Record a summary trace under this experiment name")
    p_eval.add_argument("--fail-under", type=float, help="Exit 1 if the overall score is below this")
    _add_dataset_source(p_eval)

    # experiment
    p_exp = sub.add_parser("experiment", help="Compare variants on one dataset")
    p_exp.add_argument("--name", "-n", default="experiment", help="Experiment name")
    p_exp.add_argument("--variant", action="append", required=True, type=parse_variant,
                       help="Variant as name=module:function (repeatable)")
    p_exp.add_argument("--description", help="Free-text description")
    _add_dataset_source(p_exp)

    # datasets
    p_ds = sub.add_parser("datasets", help="Dataset administration")
    p_ds.add_argument("--config", "-c", help="Path to circletrace.yaml")
    ds_sub = p_ds.add_subparsers(dest="datasets_command", required=True)
    p_push = ds_sub.add_parser("push", help="Create a dataset from a JSON file")
    p_push.add_argument("file", help="Dataset JSON file")
    p_push.add_argument("--name", help="Override the dataset name")
    p_del = ds_sub.add_parser("delete", help="Delete a dataset by name")
    p_del.add_argument("dataset", help="Dataset name")
    p_show = ds_sub.add_parser("show", help="Print statistics of a dataset")
    p_show.add_argument("dataset", help="Dataset name")
    p_sample = ds_sub.add_parser("sample", help="Write the sample dataset to a file")
    p_sample.add_argument("path", help="Output JSON path")
    p_sample.add_argument("--name", help="Dataset name")

    # cost
    p_cost = sub.add_parser("cost", help="Price one model call")
    p_cost.add_argument("model", help="Model name")
    p_cost.add_argument("input_tokens", type=int, help="Input tokens")
    p_cost.add_argument("output_tokens", type=int, help="Output tokens")

    # doctor
    p_doc = sub.add_parser("doctor", help="Check configuration")
    p_doc.add_argument("--config", "-c", help="Path to circletrace.yaml")

    # dashboard
    p_dash = sub.add_parser("dashboard", help="Launch the HTTP API")
    p_dash.add_argument("--port", type=int, default=8000, help="Port number")
    p_dash.add_argument("--host", default="127.0.0.1", help="Host address")
    p_dash.add_argument("--reload", action="store_true", help="Enable auto-reload")

    return parser


COMMANDS = {
    "eval": cmd_eval,
    "experiment": cmd_experiment,
    "datasets": cmd_datasets,
    "cost": cmd_cost,
    "doctor": cmd_doctor,
}


def run(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0
    if args.command == "dashboard":
        return cmd_dashboard(args)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except CircleTraceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return getattr(e, "exit_code", 1)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
