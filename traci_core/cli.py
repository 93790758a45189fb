"""
traci-inspect - connect to a running simulator and report on it
"""
import argparse
import sys
from typing import List, Optional

import structlog

from traci_core.client import Connection
from traci_core.config import settings
from traci_core.exceptions import TraciError
from traci_core.logging import setup_logging
from traci_core.scopes import SimulationScope

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect a running TraCI simulator")
    parser.add_argument(
        "host",
        nargs="?",
        default=settings.host,
        help="Simulator host",
    )
    parser.add_argument(
        "port",
        nargs="?",
        type=int,
        default=settings.port,
        help="Simulator port",
    )
    parser.add_argument(
        "--steps",
        type=int,
        default=0,
        help="Number of simulation steps to advance after connecting",
    )
    parser.add_argument(
        "--order",
        type=int,
        help="Client order to declare before anything else",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    setup_logging("traci-inspect", args.log_level)

    try:
        with Connection.connect(args.host, args.port) as conn:
            if args.order is not None:
                conn.set_order(args.order)

            api_version, name = conn.get_version()
            print(f"api version: {api_version}")
            print(f"simulator:   {name}")

            simulation = SimulationScope(conn)
            for _ in range(args.steps):
                conn.simulation_step()
            if args.steps:
                print(f"time:        {simulation.get_time()}")
                print(f"expected:    {simulation.get_min_expected_number()}")
    except TraciError as e:
        logger.error("inspect_failed", error_type=type(e).__name__, error=e.message, details=e.details)
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
