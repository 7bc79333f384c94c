"""Generic utilities for OTU ecology workflows."""

from .logging import get_logger, set_level, setup_logging
from .tables import as_pandas, load_table, order_by, validate_columns
from .taxonomy import TaxonomicRanks

__all__ = [
    "TaxonomicRanks",
    "as_pandas",
    "get_logger",
    "load_table",
    "order_by",
    "set_level",
    "setup_logging",
    "validate_columns",
]
