"""Loading, filtering and aggregation of OTU community data."""

from .dataset import CommunityDataset, FilterReport
from .metadata import FACTOR_LEVELS, TIMEPOINTS, TREATMENTS, SampleMetadata
from .profiles import AbundanceProfiles
from .taxonomy import TaxonomyTable

__all__ = [
    "AbundanceProfiles",
    "CommunityDataset",
    "FACTOR_LEVELS",
    "FilterReport",
    "SampleMetadata",
    "TIMEPOINTS",
    "TREATMENTS",
    "TaxonomyTable",
]
