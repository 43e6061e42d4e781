"""
coexnet CLI - Command-line interface for weighted co-expression networks.

Commands:
    coexnet pick-power  - Scan soft-threshold powers for scale-free fit
    coexnet modules     - Build the network at a chosen power and detect modules
"""

import argparse
import logging
import sys
from typing import List, Optional

from coexnet.core.errors import CoexnetError

logger = logging.getLogger(__name__)


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for coexnet."""
    parser = argparse.ArgumentParser(
        prog="coexnet",
        description="Weighted gene co-expression network construction and module detection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  pick-power    Scan soft-threshold powers for scale-free fit
  modules       Build the network at a chosen power and detect modules

Examples:
  coexnet pick-power --input data.csv --output results/power
  coexnet modules --input data.csv --power 12 --output results/modules --deep-split 0 1 2 3
  coexnet modules --config network.yaml --power 8
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from coexnet.cli import modules, pick_power
    pick_power.register_parser(subparsers)
    modules.register_parser(subparsers)

    argv = sys.argv[1:] if args is None else list(args)
    parsed_args = parser.parse_args(argv)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Raw tokens after the subcommand name, used to tell explicit flags from defaults
    parsed_args.cli_args = argv[argv.index(parsed_args.command) + 1:]

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        return parsed_args.func(parsed_args)
    except CoexnetError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
