"""
Arguments and setup shared by the pick-power and modules subcommands.
"""

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from coexnet.core.expression import ExpressionMatrix
from coexnet.core.network import NETWORK_TYPES
from coexnet.io.loaders import load_expression_matrix, load_sample_traits
from coexnet.network.correlation import CORRELATION_METHODS
from coexnet.network.overlap import NEIGHBORHOODS
from coexnet.pipeline import CoexpressionPipeline

logger = logging.getLogger(__name__)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Input/output, correlation, network type and compute options."""
    parser.add_argument("--input", "-i", type=Path, default=None,
                        help="Expression table, genes x samples (CSV/TSV)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory for result tables")
    parser.add_argument("--traits", type=Path, default=None,
                        help="Sample trait table (optional, carried alongside, not used by the network)")
    parser.add_argument("--delimiter", default=None,
                        help="Field separator of the input tables (default: sniffed)")
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")

    parser.add_argument("--correlation", choices=CORRELATION_METHODS, default="bicor",
                        help="Pairwise similarity (default: bicor)")
    parser.add_argument("--max-p-outliers", type=float, default=1.0,
                        help="Bicor outlier cap per side, in (0, 1] (default: 1.0 = off)")
    parser.add_argument("--network-type", choices=NETWORK_TYPES, default="signed",
                        help="Adjacency type (default: signed)")

    parser.add_argument("--block-size", type=int, default=1000,
                        help="Genes per row block in the dense stages (default: 1000)")
    parser.add_argument("--n-workers", type=int, default=1,
                        help="Worker threads for the dense stages (default: 1)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging and progress bars")


def apply_config(args: argparse.Namespace) -> Optional[argparse.Namespace]:
    """
    Merge --config into ``args`` and check required paths.

    Returns:
        Merged namespace, or None after printing an error
    """
    if args.config:
        from coexnet.cli.config import load_config, merge_config_with_args, validate_config

        print(f"Loading configuration from: {args.config}")
        try:
            config = load_config(args.config)
            validate_config(config)
        except (FileNotFoundError, ValueError) as e:
            print(f"ERROR: Invalid config file: {e}")
            return None
        args = merge_config_with_args(config, args, getattr(args, "cli_args", None))

    if args.input is None:
        print("ERROR: --input is required (via CLI or config file)")
        return None
    if args.output is None:
        print("ERROR: --output is required (via CLI or config file)")
        return None
    return args


def load_input(args: argparse.Namespace) -> Optional[ExpressionMatrix]:
    """Load the expression table (and traits), or None after printing an error."""
    try:
        matrix = load_expression_matrix(args.input, delimiter=args.delimiter)
        if args.traits:
            traits = load_sample_traits(args.traits, matrix.sample_ids, delimiter=args.delimiter)
            matrix = ExpressionMatrix(
                data=matrix.data,
                gene_ids=matrix.gene_ids,
                sample_ids=matrix.sample_ids,
                sample_traits=traits,
            )
            logger.info(f"Loaded traits with columns: {list(traits.columns)}")
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return None
    return matrix


def build_pipeline(args: argparse.Namespace) -> CoexpressionPipeline:
    return CoexpressionPipeline(
        correlation=args.correlation,
        network_type=args.network_type,
        min_cluster_size=getattr(args, "min_cluster_size", 30),
        cut_height=getattr(args, "cut_height", 0.99),
        neighborhood=getattr(args, "neighborhood", "product"),
        pam_stage=getattr(args, "pam_stage", False),
        max_p_outliers=args.max_p_outliers,
        block_size=args.block_size,
        n_workers=args.n_workers,
        verbose=args.verbose,
    )


def write_run_config(args: argparse.Namespace, command: str, extra: Dict[str, Any]) -> Path:
    """Record the parameters of this run as run_config.json in the output directory."""
    config = {
        'timestamp': datetime.now().isoformat(),
        'command': command,
        'input': str(args.input),
        'traits': str(args.traits) if args.traits else None,
        'correlation': args.correlation,
        'max_p_outliers': args.max_p_outliers,
        'network_type': args.network_type,
        'block_size': args.block_size,
        'n_workers': args.n_workers,
    }
    config.update(extra)
    path = args.output / "run_config.json"
    with open(path, 'w') as f:
        json.dump(config, f, indent=2, default=str)
    logger.info(f"Wrote {path}")
    return path
