"""
coexnet modules command - build the network at a chosen power and cut modules.

Usage:
    coexnet modules --input data.csv --power 12 --output results/modules
    coexnet modules --input data.csv --power 12 --output results/modules --deep-split 0 2
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
from coexnet.io.writers import (
    write_dendrogram,
    write_module_assignments,
    write_module_sizes,
)
from coexnet.network.overlap import NEIGHBORHOODS
from coexnet.pipeline import DEFAULT_DEEP_SPLITS

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the modules subcommand."""
    parser = subparsers.add_parser(
        "modules",
        help="Detect co-expression modules at a chosen power",
        description=(
            "Build the topological-overlap network at --power, cluster genes by "
            "average linkage and cut the tree dynamically for each --deep-split value."
        ),
    )
    add_common_arguments(parser)

    parser.add_argument("--power", "-p", type=float, default=None,
                        help="Soft-threshold power (see pick-power)")
    parser.add_argument("--deep-split", type=int, nargs="+", default=list(DEFAULT_DEEP_SPLITS),
                        help="Deep-split values 0-4 to sweep (default: 0 1 2 3)")
    parser.add_argument("--min-cluster-size", type=int, default=30,
                        help="Minimum genes per module (default: 30)")
    parser.add_argument("--cut-height", type=float, default=0.99,
                        help="Dendrogram height ceiling for modules (default: 0.99)")
    parser.add_argument("--pam-stage", action="store_true",
                        help="Attach unassigned genes on split branches to the nearest module")
    parser.add_argument("--neighborhood", choices=NEIGHBORHOODS, default="product",
                        help="Topological overlap neighbour sum (default: product)")

    parser.set_defaults(func=run_modules)


def run_modules(args: argparse.Namespace) -> int:
    """Execute the modules command."""
    args = apply_config(args)
    if args is None:
        return 1
    if args.power is None:
        print("ERROR: --power is required (via CLI or config file); run pick-power first")
        return 1

    print(f"\n{'='*70}")
    print("  Co-expression Module Detection")
    print(f"{'='*70}\n")

    matrix = load_input(args)
    if matrix is None:
        return 1

    pipeline = build_pipeline(args)
    result = pipeline.detect_modules(matrix, args.power, deep_splits=args.deep_split)

    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)
    write_module_assignments(result, output / "module_assignments.csv")
    write_module_sizes(result, output / "module_sizes.csv")
    write_dendrogram(result.dendrogram, output / "dendrogram.csv")

    print(f"  Genes:          {len(result.gene_ids)}")
    print(f"  Power:          {args.power:g} ({args.network_type})")
    if result.dissimilarity.n_flagged_pairs:
        print(f"  Flagged pairs:  {result.dissimilarity.n_flagged_pairs} (numerically degenerate)")
    print("\n  Modules per deep_split:")
    for deep_split, assignment in result.assignments.items():
        print(
            f"    deep_split={deep_split}: {assignment.n_modules} modules, "
            f"{len(assignment.unassigned)} unassigned"
        )

    write_run_config(args, "modules", {
        'power': args.power,
        'deep_split': list(args.deep_split),
        'min_cluster_size': args.min_cluster_size,
        'cut_height': args.cut_height,
        'pam_stage': args.pam_stage,
        'neighborhood': args.neighborhood,
        'result': result.to_dict(),
    })
    logger.info(f"Results saved to: {output}")
    return 0
