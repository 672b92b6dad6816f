"""
Command line runner for named scenarios.

    kvfault list
    kvfault run concurrent_3a one_partition_3a --election-timeout 0.1

Scenarios run against the in-memory reference cluster.
"""

from __future__ import annotations

import argparse
import logging
import sys

from .harness.catalog import Overrides, run_named, scenario_names
from .harness.config import load_scenarios
from .harness.errors import HarnessError
from .sim import SimulatedCluster

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kvfault",
        description="Run fault-injection scenarios against a replicated key-value store.",
    )
    parser.add_argument("--scenarios", default=None,
                        help="YAML file with extra scenarios (default: $KVFAULT_SCENARIOS or ./scenarios.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log phases, partitions and restarts")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List runnable scenario names")

    run = subparsers.add_parser("run", help="Run scenarios by name")
    run.add_argument("names", nargs="+", metavar="NAME", help="Scenario names")
    run.add_argument("--seed", type=int, default=None, help="Seed for partitions and network loss")
    run.add_argument("--election-timeout", type=float, default=None,
                     help="Override the pacing interval in seconds")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        extra = load_scenarios(args.scenarios, required=args.scenarios is not None)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        logger.error("could not load scenarios: %s", exc)
        return 2

    if args.command == "list":
        for name in scenario_names(extra):
            print(name)
        return 0

    unknown = [name for name in args.names if name not in scenario_names(extra)]
    if unknown:
        logger.error("unknown scenarios: %s", ", ".join(unknown))
        return 2

    overrides = Overrides(election_timeout=args.election_timeout, seed=args.seed)
    factory = SimulatedCluster.factory(seed=args.seed)
    failed = 0
    for name in args.names:
        try:
            result = run_named(name, factory, overrides, extra=extra)
        except HarnessError as exc:
            failed += 1
            logger.error("%s FAILED: %s", name, exc)
            print(f"FAIL {name}")
            continue
        print(f"ok   {name} ({result.elapsed:.1f}s)")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
