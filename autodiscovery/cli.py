"""
Command-line interface for AutoDiscovery
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys

from autodiscovery.api import build_orchestrator, setup_logging
from autodiscovery.config import load_config
from autodiscovery.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="AutoDiscovery - Bayesian tree search for surprising hypotheses"
    )

    parser.add_argument("seed", help="Seed hypothesis to start the search from")

    parser.add_argument("--config", "-c", help="Path to configuration file (YAML)", default=None)

    parser.add_argument("--dataset", "-d", help="CSV dataset for statistical evidence", default=None)

    parser.add_argument("--output", "-o", help="Write the result as JSON to this file", default=None)

    parser.add_argument(
        "--iterations", "-i", help="Maximum number of iterations", type=int, default=None
    )

    parser.add_argument(
        "--parallel", "-p", help="Targets evaluated concurrently per batch", type=int, default=None
    )

    parser.add_argument(
        "--time-budget-ms", help="Stop after this many milliseconds", type=float, default=None
    )

    parser.add_argument(
        "--log-level",
        "-l",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )

    parser.add_argument("--api-base", help="Base URL for the LLM API", default=None)

    parser.add_argument("--primary-model", help="Primary LLM model name", default=None)

    return parser.parse_args(argv)


async def main_async(argv: list[str] | None = None) -> int:
    """
    Main asynchronous entry point

    Returns:
        Exit code
    """
    args = parse_args(argv)

    config = load_config(args.config)

    if args.api_base:
        config.llm.api_base = args.api_base
        config.llm.update_model_params({"api_base": args.api_base}, overwrite=True)
        print(f"Using API base: {config.llm.api_base}")

    if args.primary_model:
        config.llm.primary_model = args.primary_model
        config.llm.rebuild_models()
        print(f"Using primary model: {config.llm.primary_model}")

    if args.dataset:
        if not os.path.exists(args.dataset):
            print(f"Error: Dataset file '{args.dataset}' not found")
            return 1
        config.dataset_path = args.dataset

    if args.iterations is not None:
        config.search.max_iterations = args.iterations
    if args.parallel is not None:
        config.search.parallel_expansion = args.parallel
    if args.time_budget_ms is not None:
        config.search.time_budget_ms = args.time_budget_ms

    setup_logging(config, args.log_level)

    try:
        orchestrator = build_orchestrator(config)
    except (OSError, ValueError) as e:
        print(f"Error: {e!s}")
        return 1

    # Ctrl-C stops the search and still reports the partial result
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except NotImplementedError:
        pass

    try:
        result = await orchestrator.run(args.seed)
    except ConfigValidationError as e:
        print(f"Error: {e!s}")
        return 1

    print(f"\nDiscovery {result.status.value} after {result.stats.iterations_run} iterations")
    print(f"Nodes explored: {result.total_nodes}")
    if result.best_hypothesis is not None:
        print(f"Best hypothesis (surprise {result.best_surprise_score:.4f}):")
        print(f"  {result.best_hypothesis}")
        print("Path:")
        for depth, hypothesis in enumerate(result.best_path):
            print(f"  {'  ' * depth}{hypothesis}")

    if result.top_k:
        print("\nTop findings:")
        for entry in result.top_k:
            low, high = entry.credible_interval
            print(
                f"  {entry.score:.4f}  p={entry.posterior_mean:.2f} [{low:.2f}, {high:.2f}]  "
                f"{entry.hypothesis}"
            )

    if args.output:
        directory = os.path.dirname(args.output)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(args.output, "w") as f:
            json.dump(result.to_dict(), f, indent=2)
        print(f"\nResult saved to {args.output}")

    return 0 if result.status.value != "failed" else 1


def main() -> int:
    """
    Main entry point

    Returns:
        Exit code
    """
    return asyncio.run(main_async())


if __name__ == "__main__":
    sys.exit(main())
