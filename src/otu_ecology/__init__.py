"""otu_ecology.

Diversity analysis of OTU abundance tables from microbial community
experiments. Provides tools for loading and filtering community data,
aggregating it by sample group and taxonomic rank, and computing and plotting
alpha and beta diversity.
"""

# Key utilities
from .core.config import Config
from .errors import (
    DivideByZeroError,
    EmptyResultError,
    JoinError,
    ParseError,
    PipelineError,
)
from .utils.logging import get_logger, setup_logging

# Core data structures
from .utils.taxonomy import TaxonomicRanks
from .wrangle import (
    AbundanceProfiles,
    CommunityDataset,
    FilterReport,
    SampleMetadata,
    TaxonomyTable,
)

__version__ = "0.1.0"

__all__ = [
    "CommunityDataset",
    "AbundanceProfiles",
    "SampleMetadata",
    "TaxonomyTable",
    "FilterReport",
    "TaxonomicRanks",
    "Config",
    "PipelineError",
    "ParseError",
    "JoinError",
    "DivideByZeroError",
    "EmptyResultError",
    "setup_logging",
    "get_logger",
]

# Configure default logging
setup_logging()
