"""Plotting of diversity results."""

from .figures import (
    plot_ordination,
    plot_relative_abundance,
    plot_richness,
    plot_scree,
    save_figure,
)

__all__ = [
    "plot_richness",
    "plot_relative_abundance",
    "plot_ordination",
    "plot_scree",
    "save_figure",
]
