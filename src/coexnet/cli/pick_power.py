"""
coexnet pick-power command - scan candidate soft-threshold powers.

Reports the scale-free fit of the network at each candidate power so the
analyst can choose one. Nothing is chosen automatically: the smallest power
reaching --target-fit is printed as a suggestion, or a low-confidence
advisory when none does.

Usage:
    coexnet pick-power --input data.csv --output results/power
    coexnet pick-power --input data.csv --output results/power --powers 1 2 4 6 8 10 12
"""

import argparse
import logging
from pathlib import Path

from coexnet.cli._common import (
    add_common_arguments,
    apply_config,
    build_pipeline,
    load_input,
    write_run_config,
)
from coexnet.io.writers import write_power_report
from coexnet.network.soft_threshold import DEFAULT_POWERS

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the pick-power subcommand."""
    parser = subparsers.add_parser(
        "pick-power",
        help="Scan soft-threshold powers for scale-free fit",
        description=(
            "Compute the scale-free topology fit and connectivity summary of the "
            "weighted network at each candidate power."
        ),
    )
    add_common_arguments(parser)

    parser.add_argument("--powers", type=float, nargs="+", default=None,
                        help="Candidate powers (default: 1..10, then 12..40 by 2)")
    parser.add_argument("--target-fit", type=float, default=0.9,
                        help="Scale-free fit index a suggested power must reach (default: 0.9)")
    parser.add_argument("--n-breaks", type=int, default=10,
                        help="Connectivity histogram bins for the fit (default: 10)")

    parser.set_defaults(func=run_pick_power)


def run_pick_power(args: argparse.Namespace) -> int:
    """Execute the pick-power command."""
    args = apply_config(args)
    if args is None:
        return 1

    powers = tuple(args.powers) if args.powers else DEFAULT_POWERS

    print(f"\n{'='*70}")
    print("  Soft-Threshold Power Scan")
    print(f"{'='*70}\n")

    matrix = load_input(args)
    if matrix is None:
        return 1

    pipeline = build_pipeline(args)
    report = pipeline.pick_soft_threshold(
        matrix,
        powers=powers,
        target_fit=args.target_fit,
        n_breaks=args.n_breaks,
    )

    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)
    write_power_report(report, output / "power_report.csv")

    print(report.to_frame().round(4).to_string())
    print()
    suggested = report.suggested_power()
    if suggested is not None:
        print(f"  Suggested power: {suggested:g} (first to reach fit {args.target_fit})")
    else:
        print(f"  ADVISORY: {report.advisory}")

    write_run_config(args, "pick-power", {
        'powers': list(powers),
        'target_fit': args.target_fit,
        'n_breaks': args.n_breaks,
        'report': report.to_dict(),
    })
    logger.info(f"Results saved to: {output}")
    return 0
