"""
Configuration file support for the coexnet CLI.

Supports YAML and JSON config files with CLI argument override.

Example config:

    input: expression.csv
    output: results/network
    correlation: {method: bicor, max_p_outliers: 1.0}
    network: {type: signed, power: 12, powers: [1, 2, 4, 6, 8, 10, 12, 14]}
    modules: {min_cluster_size: 30, cut_height: 0.99, deep_split: [0, 1, 2, 3]}
    compute: {block_size: 1000, n_workers: 4}
"""

import json
from argparse import Namespace
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from coexnet.clustering.dynamic_tree import DEEP_SPLIT_CORE_SCATTER
from coexnet.core.network import NETWORK_TYPES
from coexnet.network.correlation import CORRELATION_METHODS
from coexnet.network.overlap import NEIGHBORHOODS


@dataclass
class CorrelationConfig:
    """Pairwise similarity configuration."""
    method: str = "bicor"
    max_p_outliers: float = 1.0


@dataclass
class NetworkConfig:
    """Adjacency and soft-threshold configuration."""
    type: str = "signed"
    power: Optional[float] = None
    powers: Optional[List[float]] = None
    target_fit: float = 0.9
    n_breaks: int = 10
    neighborhood: str = "product"


@dataclass
class ModuleConfig:
    """Dynamic tree cut configuration."""
    min_cluster_size: int = 30
    cut_height: float = 0.99
    deep_split: List[int] = field(default_factory=lambda: [0, 1, 2, 3])
    pam_stage: bool = False


@dataclass
class ComputeConfig:
    """Block size and worker threads for the dense stages."""
    block_size: int = 1000
    n_workers: int = 1


@dataclass
class ConfigSchema:
    """
    Complete configuration schema for the pick-power and modules commands.

    Mirrors the CLI argument structure for consistency.
    """
    input: Optional[Path] = None
    output: Optional[Path] = None
    traits: Optional[Path] = None
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    modules: ModuleConfig = field(default_factory=ModuleConfig)
    compute: ComputeConfig = field(default_factory=ComputeConfig)


_SECTIONS = {
    'correlation': CorrelationConfig,
    'network': NetworkConfig,
    'modules': ModuleConfig,
    'compute': ComputeConfig,
}

_PATH_KEYS = ('input', 'output', 'traits')

# (section, key) -> argparse destination
_ARG_NAMES = {
    ('correlation', 'method'): 'correlation',
    ('correlation', 'max_p_outliers'): 'max_p_outliers',
    ('network', 'type'): 'network_type',
    ('network', 'power'): 'power',
    ('network', 'powers'): 'powers',
    ('network', 'target_fit'): 'target_fit',
    ('network', 'n_breaks'): 'n_breaks',
    ('network', 'neighborhood'): 'neighborhood',
    ('modules', 'min_cluster_size'): 'min_cluster_size',
    ('modules', 'cut_height'): 'cut_height',
    ('modules', 'deep_split'): 'deep_split',
    ('modules', 'pam_stage'): 'pam_stage',
    ('compute', 'block_size'): 'block_size',
    ('compute', 'n_workers'): 'n_workers',
}

_SHORT_TO_LONG = {
    'i': 'input',
    'o': 'output',
    'p': 'power',
    'c': 'config',
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in ('.yaml', '.yml', '.json'):
        raise ValueError(
            f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json"
        )

    try:
        with open(config_path, 'r') as f:
            if suffix == '.json':
                config = json.load(f)
            else:
                config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> ConfigSchema:
    """
    Validate configuration structure and values.

    Parameters:
        config: Configuration dictionary from load_config()

    Returns:
        ConfigSchema populated from the config (defaults where absent)

    Raises:
        ValueError: If a section or key is unknown, or a value is out of range
    """
    known_top = {f.name for f in fields(ConfigSchema)}
    unknown = set(config) - known_top
    if unknown:
        raise ValueError(
            f"Unknown config keys: {sorted(unknown)}. Valid keys: {sorted(known_top)}"
        )

    sections = {}
    for name, section_cls in _SECTIONS.items():
        values = config.get(name) or {}
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{name}' must be a mapping")
        valid_keys = {f.name for f in fields(section_cls)}
        unknown = set(values) - valid_keys
        if unknown:
            raise ValueError(
                f"Unknown keys in '{name}': {sorted(unknown)}. "
                f"Valid keys: {sorted(valid_keys)}"
            )
        sections[name] = section_cls(**values)

    schema = ConfigSchema(
        **{key: Path(config[key]) for key in _PATH_KEYS if config.get(key) is not None},
        **sections,
    )

    correlation = schema.correlation
    if correlation.method not in CORRELATION_METHODS:
        raise ValueError(
            f"Invalid correlation method '{correlation.method}'. "
            f"Choose from: {', '.join(CORRELATION_METHODS)}"
        )
    if not _is_number(correlation.max_p_outliers) or not 0 < correlation.max_p_outliers <= 1:
        raise ValueError(
            f"max_p_outliers must be in (0, 1], got: {correlation.max_p_outliers}"
        )

    network = schema.network
    if network.type not in NETWORK_TYPES:
        raise ValueError(
            f"Invalid network type '{network.type}'. Choose from: {', '.join(NETWORK_TYPES)}"
        )
    if network.neighborhood not in NEIGHBORHOODS:
        raise ValueError(
            f"Invalid neighborhood '{network.neighborhood}'. "
            f"Choose from: {', '.join(NEIGHBORHOODS)}"
        )
    if network.power is not None and (not _is_number(network.power) or network.power < 1):
        raise ValueError(f"power must be a number >= 1, got: {network.power}")
    if network.powers is not None:
        if not isinstance(network.powers, list) or not network.powers:
            raise ValueError(f"powers must be a non-empty list, got: {network.powers}")
        bad = [p for p in network.powers if not _is_number(p) or p < 1]
        if bad:
            raise ValueError(f"powers must all be numbers >= 1, got: {bad}")
    if not _is_number(network.target_fit) or not 0 < network.target_fit <= 1:
        raise ValueError(f"target_fit must be in (0, 1], got: {network.target_fit}")
    if not _is_int(network.n_breaks) or network.n_breaks < 4:
        raise ValueError(f"n_breaks must be an integer >= 4, got: {network.n_breaks}")

    modules = schema.modules
    if not _is_int(modules.min_cluster_size) or modules.min_cluster_size < 1:
        raise ValueError(
            f"min_cluster_size must be a positive integer, got: {modules.min_cluster_size}"
        )
    if not _is_number(modules.cut_height) or not 0 <= modules.cut_height <= 1:
        raise ValueError(f"cut_height must be in [0, 1], got: {modules.cut_height}")
    deep_splits = modules.deep_split
    if _is_int(deep_splits):
        deep_splits = modules.deep_split = [deep_splits]
    if not isinstance(deep_splits, list) or not deep_splits:
        raise ValueError(f"deep_split must be a non-empty list, got: {deep_splits}")
    valid_splits = range(len(DEEP_SPLIT_CORE_SCATTER))
    bad = [d for d in deep_splits if not _is_int(d) or d not in valid_splits]
    if bad:
        raise ValueError(
            f"deep_split values must be in {list(valid_splits)}, got: {bad}"
        )
    if not isinstance(modules.pam_stage, bool):
        raise ValueError(f"pam_stage must be true or false, got: {modules.pam_stage}")

    compute = schema.compute
    if not _is_int(compute.block_size) or compute.block_size < 1:
        raise ValueError(f"block_size must be a positive integer, got: {compute.block_size}")
    if not _is_int(compute.n_workers) or compute.n_workers < 1:
        raise ValueError(f"n_workers must be a positive integer, got: {compute.n_workers}")

    return schema


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    """Destinations of the arguments the user typed on the command line."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in _SHORT_TO_LONG:
            explicit.add(_SHORT_TO_LONG[arg[1]])
    return explicit


def _merge_value(cli_value: Any, config_value: Any, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value
    if config_value is not None:
        return config_value
    return cli_value


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Config keys with no matching argument on the running subcommand are
    ignored (e.g. modules.deep_split for pick-power).

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values).
            If None, assumes all args are defaults

    Returns:
        New Namespace with merged values

    Examples:
        >>> from argparse import Namespace
        >>> args = Namespace(input=None, output=None, min_cluster_size=30)
        >>> merged = merge_config_with_args(
        ...     {"modules": {"min_cluster_size": 10}}, args, ["--input", "x.csv"])
        >>> merged.min_cluster_size
        10
    """
    explicit = _explicit_args(cli_args)
    merged = Namespace(**vars(args))

    for key in _PATH_KEYS:
        if key in config and hasattr(merged, key):
            value = config[key]
            if value is not None:
                value = Path(value)
            setattr(merged, key, _merge_value(getattr(merged, key), value, key in explicit))

    for (section, key), arg_name in _ARG_NAMES.items():
        values = config.get(section) or {}
        if key not in values or not hasattr(merged, arg_name):
            continue
        value = values[key]
        if arg_name == 'deep_split' and _is_int(value):
            value = [value]
        setattr(
            merged,
            arg_name,
            _merge_value(getattr(merged, arg_name), value, arg_name in explicit),
        )

    return merged
