"""Diversity statistics over a CommunityDataset."""

from .alpha import (
    ALPHA_MEASURES,
    anova,
    estimate_richness,
    normality,
    richness_table,
    tukey_hsd,
)
from .beta import distance, ordinate, ordination_frame, permanova, scree, simper

__all__ = [
    "ALPHA_MEASURES",
    "estimate_richness",
    "richness_table",
    "normality",
    "anova",
    "tukey_hsd",
    "distance",
    "ordinate",
    "ordination_frame",
    "scree",
    "permanova",
    "simper",
]
