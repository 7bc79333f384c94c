"""Figures for the diversity analysis, drawn with matplotlib and seaborn.

Every function takes a tidy polars table and returns a matplotlib
``Figure``; ``save_figure`` writes it out and closes it.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import seaborn as sns
from matplotlib.figure import Figure
from matplotlib.patches import Ellipse
from scipy.stats import chi2

from otu_ecology.errors import EmptyResultError
from otu_ecology.utils.tables import as_pandas

logger = logging.getLogger(__name__)

BARPLOT_COLOURS = [
    "#FFA8BB", "#426600", "#FF0010", "#5EF1F2", "#00998F", "#740AFF",
    "#990000", "#FF8000", "#993F00", "#4C005C", "#2BCE48", "#808080",
    "#0075DC", "#FFCC99", "#F0A3FF", "#94FFB5", "#8F7C00", "#9DCC00",
    "#C20088", "#003380", "#FFA405",
]
TREATMENT_COLOURS = ["#d7191c", "#fdae61", "#abdda4", "#2b83ba", "#808080"]
MARKERS = ["o", "^", "D", "s", "v"]


def _levels(series: pl.Series) -> List[str]:
    """Observed values of a column, in level order for Enum columns."""
    present = set(series.drop_nulls().cast(pl.Utf8).to_list())
    if series.dtype == pl.Enum:
        return [level for level in series.dtype.categories.to_list() if level in present]
    return [v for v in series.drop_nulls().cast(pl.Utf8).unique(maintain_order=True).to_list()]


def _facet_axes(n_panels: int, ncols: int, panel_size: Tuple[float, float]):
    ncols = max(1, min(ncols, n_panels))
    nrows = int(np.ceil(n_panels / ncols))
    fig, axes = plt.subplots(
        nrows,
        ncols,
        figsize=(panel_size[0] * ncols, panel_size[1] * nrows),
        sharey=True,
        squeeze=False,
    )
    flat = axes.ravel()
    for ax in flat[n_panels:]:
        ax.set_visible(False)
    return fig, flat[:n_panels]


@contextmanager
def _closing_on_error(fig: Figure):
    """Close ``fig`` if drawing it fails."""
    try:
        yield fig
    except Exception:
        plt.close(fig)
        raise


def _require(table: pl.DataFrame, columns: Sequence[str], stage: str) -> None:
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise ValueError(f"Columns missing from table: {missing}")
    if table.is_empty():
        raise EmptyResultError("Nothing to plot", stage=stage)


def plot_richness(
    table: pl.DataFrame,
    measure: str = "shannon",
    x: str = "treatment",
    facet: str = "timepoint",
    ylim: Optional[Tuple[float, float]] = (0, 5.5),
    ncols: int = 4,
) -> Figure:
    """Boxplot of an alpha diversity measure per group, one panel per facet.

    Args:
        table: Output of ``stats.alpha.richness_table``
        measure: Column holding the diversity values
        x: Grouping factor on the x axis (also the point colour)
        facet: Factor splitting the panels
        ylim: Y axis limits
        ncols: Panels per row
    """
    _require(table, [measure, x, facet], stage="plot_richness")
    x_levels = _levels(table[x])
    facets = _levels(table[facet])
    palette = dict(zip(x_levels, TREATMENT_COLOURS * len(x_levels)))

    fig, axes = _facet_axes(len(facets), ncols, (3.5, 4.0))
    with _closing_on_error(fig):
        for ax, level in zip(axes, facets):
            panel = as_pandas(
                table.filter(pl.col(facet).cast(pl.Utf8) == level).with_columns(
                    pl.col(x).cast(pl.Utf8)
                )
            )
            sns.boxplot(
                data=panel, x=x, y=measure, order=x_levels, fill=False,
                color="black", showfliers=False, ax=ax,
            )
            sns.stripplot(
                data=panel, x=x, y=measure, order=x_levels, hue=x,
                hue_order=x_levels, palette=palette, legend=False, ax=ax,
            )
            ax.set_title(level)
            ax.set_xlabel("")
            ax.tick_params(axis="x", labelrotation=45)
            if ylim is not None:
                ax.set_ylim(*ylim)
        axes[0].set_ylabel(f"{measure.capitalize()} diversity")
        fig.tight_layout()
    return fig


def plot_relative_abundance(
    tidy: pl.DataFrame,
    fill: str = "family",
    x: str = "treatment",
    facet: str = "timepoint",
    value: str = "abundance",
    colours: Optional[Sequence[str]] = None,
    ncols: int = 4,
) -> Figure:
    """Stacked barplot of relative abundances, one panel per facet.

    Args:
        tidy: Output of ``CommunityDataset.melt`` on relative abundances
        fill: Taxon column that colours the stacked segments
        x: Factor on the x axis
        facet: Factor splitting the panels
        value: Abundance column
        colours: Segment colours, cycled when there are more taxa
    """
    _require(tidy, [fill, x, facet, value], stage="plot_relative_abundance")
    tidy = tidy.with_columns(pl.col(fill).fill_null("Unassigned"))
    taxa = tidy[fill].unique(maintain_order=True).to_list()
    colours = list(colours or BARPLOT_COLOURS)
    palette = {taxon: colours[i % len(colours)] for i, taxon in enumerate(taxa)}
    x_levels = _levels(tidy[x])
    facets = _levels(tidy[facet])

    summed = (
        tidy.with_columns(pl.col(x).cast(pl.Utf8), pl.col(facet).cast(pl.Utf8))
        .group_by([facet, x, fill])
        .agg(pl.col(value).sum())
    )

    fig, axes = _facet_axes(len(facets), ncols, (3.0, 5.0))
    with _closing_on_error(fig):
        for ax, level in zip(axes, facets):
            panel = summed.filter(pl.col(facet) == level)
            bottom = np.zeros(len(x_levels))
            for taxon in taxa:
                rows = dict(
                    panel.filter(pl.col(fill) == taxon).select([x, value]).iter_rows()
                )
                heights = np.array([rows.get(g, 0.0) for g in x_levels])
                ax.bar(x_levels, heights, bottom=bottom, color=palette[taxon],
                       label=taxon, width=0.9)
                bottom += heights
            ax.set_title(level)
            ax.set_ylim(0, 100)
            ax.tick_params(axis="x", labelrotation=45)
        axes[0].set_ylabel("Abundance (%)")

        handles = [plt.Rectangle((0, 0), 1, 1, color=palette[t]) for t in reversed(taxa)]
        fig.legend(handles, list(reversed(taxa)), title=fill, loc="center left",
                   bbox_to_anchor=(1.0, 0.5), frameon=False)
        fig.tight_layout()
    return fig


def _confidence_ellipse(points: np.ndarray, level: float = 0.95, **kwargs) -> Optional[Ellipse]:
    """Normal-theory confidence ellipse of 2-D points; None below 3 points."""
    if points.shape[0] < 3:
        return None
    cov = np.cov(points, rowvar=False)
    eigvals, eigvecs = np.linalg.eigh(cov)
    order = eigvals.argsort()[::-1]
    eigvals, eigvecs = eigvals[order], eigvecs[:, order]
    scale = np.sqrt(chi2.ppf(level, df=2))
    width, height = 2 * scale * np.sqrt(np.clip(eigvals, 0, None))
    angle = np.degrees(np.arctan2(eigvecs[1, 0], eigvecs[0, 0]))
    return Ellipse(points.mean(axis=0), width, height, angle=angle, fill=False, **kwargs)


def plot_ordination(
    frame: pl.DataFrame,
    explained: Optional[Sequence[float]] = None,
    color: str = "treatment",
    shape: Optional[str] = "timepoint",
    ellipse_level: float = 0.95,
) -> Figure:
    """PCoA scatter of the first two axes with per-group confidence ellipses.

    Args:
        frame: Output of ``stats.beta.ordination_frame``
        explained: Proportion of variance per axis, for the axis labels
        color: Factor mapped to colour (and ellipses)
        shape: Factor mapped to marker shape
        ellipse_level: Coverage of the ellipses
    """
    _require(frame, ["PC1", "PC2", color] + ([shape] if shape else []), stage="plot_ordination")
    colour_levels = _levels(frame[color])
    shape_levels = _levels(frame[shape]) if shape else []

    fig, ax = plt.subplots(figsize=(6, 5))
    with _closing_on_error(fig):
        for i, group in enumerate(colour_levels):
            colour = TREATMENT_COLOURS[i % len(TREATMENT_COLOURS)]
            rows = frame.filter(pl.col(color).cast(pl.Utf8) == group)
            if shape:
                for j, marker_group in enumerate(shape_levels):
                    sub = rows.filter(pl.col(shape).cast(pl.Utf8) == marker_group)
                    if sub.is_empty():
                        continue
                    ax.scatter(sub["PC1"].to_numpy(), sub["PC2"].to_numpy(), s=30,
                               alpha=0.8, color=colour, marker=MARKERS[j % len(MARKERS)])
            else:
                ax.scatter(rows["PC1"].to_numpy(), rows["PC2"].to_numpy(), s=30,
                           alpha=0.8, color=colour)
            ellipse = _confidence_ellipse(
                rows.select(["PC1", "PC2"]).to_numpy(), ellipse_level, edgecolor=colour
            )
            if ellipse is not None:
                ax.add_patch(ellipse)
            else:
                logger.debug(f"Too few points for an ellipse around {group}")

        handles = [
            plt.Line2D([], [], color=TREATMENT_COLOURS[i % len(TREATMENT_COLOURS)],
                       marker="o", linestyle="", label=g)
            for i, g in enumerate(colour_levels)
        ]
        handles += [
            plt.Line2D([], [], color="grey", marker=MARKERS[j % len(MARKERS)],
                       linestyle="", label=g)
            for j, g in enumerate(shape_levels)
        ]
        ax.legend(handles=handles, loc="center left", bbox_to_anchor=(1.0, 0.5), frameon=False)

        labels = ["Axis.1", "Axis.2"]
        if explained is not None:
            labels = [f"{label} [{100 * p:.1f}%]" for label, p in zip(labels, explained)]
        ax.set_xlabel(labels[0])
        ax.set_ylabel(labels[1])
        fig.tight_layout()
    return fig


def plot_scree(scree_table: pl.DataFrame, max_axes: Optional[int] = None) -> Figure:
    """Bar chart of the proportion of variance explained per ordination axis."""
    _require(scree_table, ["axis", "proportion_explained"], stage="plot_scree")
    if max_axes is not None:
        scree_table = scree_table.head(max_axes)
    fig, ax = plt.subplots(figsize=(6, 4))
    with _closing_on_error(fig):
        ax.bar(scree_table["axis"].to_list(),
               scree_table["proportion_explained"].to_numpy(), color="grey")
        ax.set_xlabel("Axis")
        ax.set_ylabel("Proportion of variance")
        ax.tick_params(axis="x", labelrotation=90)
        fig.tight_layout()
    return fig


def save_figure(fig: Figure, path: Union[str, Path], dpi: int = 300) -> Path:
    """Write ``fig`` to ``path`` (creating directories) and close it."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fig.savefig(path, dpi=dpi, bbox_inches="tight")
    finally:
        plt.close(fig)
    logger.info(f"Saved figure to {path}")
    return path
