"""
Configuration for the OTU ecology analysis.

A run is described by one YAML file. Missing keys fall back to
``DEFAULT_CONFIG``, which reproduces the heterotrophy 16S study settings.
"""

import copy
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union

import yaml


class ZeroTotalPolicy(Enum):
    """What relative transforms do with a row whose total is zero."""
    ERROR = "error"
    ZERO = "zero"


class TieBreak(Enum):
    """Ordering of rank groups with equal total abundance."""
    INPUT_ORDER = "input_order"
    LEXICAL = "lexical"


DEFAULT_CONFIG: Dict[str, Any] = {
    "input": {
        "samples": "hetero_data.txt",
        "taxonomy": "hetero_taxonomy_SILVA_cleaned.txt",
        "otu_prefix": "Zotu",
        "strict_categories": True,
    },
    "filters": {
        "remove_samples": ["Blank_S142"],
        "kingdom": "Bacteria",
        "exclude_lineages": {
            "order": ["o_Chloroplast"],
            "family": ["f_Mitochondria"],
        },
        "drop_zero_otus": True,
        "drop_empty_samples": True,
    },
    "aggregation": {
        "group_by": ["timepoint", "treatment"],
        "barplot_rank": "family",
        "rank": "order",
        "top_n": 10,
        "other_label": "Other",
        "zero_total": ZeroTotalPolicy.ERROR.value,
        "tie_break": TieBreak.INPUT_ORDER.value,
    },
    "statistics": {
        "alpha_measure": "shannon",
        "anova_factors": ["timepoint", "treatment"],
        "subset_column": "timepoint",
        "subset_values": ["T2"],
        "distance_metric": "braycurtis",
        "group_column": "treatment",
        "permutations": 9999,
        "simper_permutations": 999,
        "seed": 42,
    },
    "output": {
        "directory": "figures",
        "dpi": 300,
        "log_level": "INFO",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay ``override`` onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration class that loads YAML files and provides dot notation access."""

    def __init__(self, config_path: Union[str, Path]):
        """
        Initialize configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(self.config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}

        self._data = _merge(DEFAULT_CONFIG, loaded)

        # Convert nested dictionaries to Config objects for dot notation
        self._convert_dicts()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: bool = True) -> 'Config':
        """Build a configuration from an in-memory dictionary.

        Args:
            data: Configuration values
            defaults: Whether to overlay ``data`` onto ``DEFAULT_CONFIG``
        """
        config_obj = cls.__new__(cls)
        config_obj.config_path = None
        config_obj._data = _merge(DEFAULT_CONFIG, data) if defaults else dict(data)
        config_obj._convert_dicts()
        return config_obj

    def _convert_dicts(self):
        """Convert nested dictionaries to Config objects recursively."""
        for key, value in self._data.items():
            if isinstance(value, dict):
                setattr(self, key, self._dict_to_config(value))
            else:
                setattr(self, key, value)

    def _dict_to_config(self, data: Dict[str, Any]) -> 'Config':
        """Convert a dictionary to a Config object."""
        config_obj = Config.__new__(Config)  # Create without calling __init__
        config_obj.config_path = None
        config_obj._data = data

        for key, value in data.items():
            if isinstance(value, dict):
                setattr(config_obj, key, self._dict_to_config(value))
            else:
                setattr(config_obj, key, value)

        return config_obj

    def resolve_path(self, value: Union[str, Path]) -> Path:
        """Resolve a path relative to the configuration file's directory."""
        path = Path(value)
        if path.is_absolute() or self.config_path is None:
            return path
        return self.config_path.parent / path

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value with optional default."""
        return getattr(self, key, default)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config back to dictionary."""
        return copy.deepcopy(self._data)

    def __getitem__(self, key: str) -> Any:
        """Allow dictionary-style access."""
        return getattr(self, key)

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        return hasattr(self, key)

    def __repr__(self) -> str:
        return f"Config({self._data})"
