# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Third-Party Imports
import yaml

# Local Imports
from diversity_16s import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("diversity_16s")

# ================================= DEFAULT VALUES =================================== #

DEFAULT_CONFIG: Dict[str, Any] = {
    "log_dir": constants.DEFAULT_LOG_DIR,
    "output_dir": constants.DEFAULT_OUTPUT_DIR,
    "inputs": {
        "abundance": None,
        "taxonomy": None,
        "metadata": None,
        "sample_id_column": constants.DEFAULT_META_ID_COLUMN,
    },
    "group_columns": list(constants.DEFAULT_GROUP_COLUMNS),
    "rename_taxa": True,
    "drop_empty_samples": True,
    "contaminant_filter": {
        "enabled": True,
        "excluded_families": list(constants.DEFAULT_EXCLUDED_FAMILIES),
        "excluded_orders": list(constants.DEFAULT_EXCLUDED_ORDERS),
        "required_domain": constants.DEFAULT_REQUIRED_DOMAIN,
        "keep_missing": constants.DEFAULT_KEEP_MISSING_RANKS,
    },
    "snapshot": {
        "enabled": True,
        "dir": constants.DEFAULT_SNAPSHOT_DIR,
        "key": constants.DEFAULT_SNAPSHOT_KEY,
    },
    "abundance_filter": {
        "min_relative_abundance": constants.DEFAULT_MIN_REL_ABUNDANCE,
    },
    "alpha_diversity": {
        "enabled": True,
        "indices": list(constants.DEFAULT_ALPHA_INDICES),
        "parametric": constants.DEFAULT_PARAMETRIC,
    },
    "beta_diversity": {
        "enabled": True,
        "method": constants.DEFAULT_METRIC,
        "n_dimensions": constants.DEFAULT_N_NMDS,
        "seed": constants.DEFAULT_RANDOM_STATE,
        "n_init": constants.DEFAULT_N_INIT,
        "max_iter": constants.DEFAULT_MAX_ITER,
        "eps": constants.DEFAULT_EPS,
        "permutations": constants.DEFAULT_PERMUTATIONS,
        "strata": None,
        "pairwise": True,
        "n_jobs": constants.DEFAULT_CPU_LIMIT,
    },
}

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            # Check if the value is a relative path
            if value.startswith("./") or value.startswith("../"):
                # Convert relative path to absolute path
                config[key] = (config_dir / value).resolve()
        elif isinstance(value, dict):
            # Recursively handle nested dictionaries
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def merge_config(base: Dict, overrides: Optional[Dict]) -> Dict:
    """Recursively merge `overrides` into a copy of `base`."""
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config(
    config_path: Optional[Union[str, Path]] = constants.DEFAULT_CONFIG_PATH
) -> Dict:
    """Load the YAML configuration and fill in defaults for missing keys.

    Args:
        config_path: Path to a YAML file. ``None`` returns the defaults.

    Returns:
        Configuration dictionary.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """
    if config_path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    # Load the YAML configuration file
    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}

    # Resolve any relative paths in the config
    config_dir = Path(config_path).resolve().parent
    config = resolve_relative_paths(config, config_dir)
    logger.debug(f"Loaded configuration from '{config_path}'")

    return merge_config(DEFAULT_CONFIG, config)
