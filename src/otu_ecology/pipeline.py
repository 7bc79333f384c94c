"""End-to-end analysis run driven by a ``Config``."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import polars as pl
from skbio import DistanceMatrix, OrdinationResults

from otu_ecology.core.config import Config
from otu_ecology.errors import PipelineError
from otu_ecology.plotting import (
    plot_ordination,
    plot_relative_abundance,
    plot_richness,
    plot_scree,
    save_figure,
)
from otu_ecology.stats import alpha, beta
from otu_ecology.utils.logging import set_level
from otu_ecology.wrangle.dataset import CommunityDataset

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResults:
    """Everything a run produces, besides the figures on disk."""

    dataset: CommunityDataset
    richness: Optional[pl.DataFrame] = None
    normality: Optional[Dict[str, float]] = None
    anova: Optional[pl.DataFrame] = None
    tukey: Dict[str, pl.DataFrame] = field(default_factory=dict)
    subset_anova: Optional[pl.DataFrame] = None
    subset_tukey: Optional[pl.DataFrame] = None
    relative_abundance: Optional[pl.DataFrame] = None
    top_taxa: Optional[pl.DataFrame] = None
    distance: Optional[DistanceMatrix] = None
    ordination: Optional[OrdinationResults] = None
    scree: Optional[pl.DataFrame] = None
    permanova: Optional[Dict[str, Any]] = None
    simper: Optional[pl.DataFrame] = None
    figures: Dict[str, Path] = field(default_factory=dict)


@contextmanager
def _stage(name: str):
    logger.info(f"Stage: {name}")
    try:
        yield
    except PipelineError as e:
        logger.error(f"Stage '{name}' failed: {e}")
        raise


def load_dataset(config: Config) -> CommunityDataset:
    """Load and assemble the dataset named in the ``input`` section."""
    settings = config.to_dict()["input"]
    return CommunityDataset.scan(
        config.resolve_path(settings["samples"]),
        config.resolve_path(settings["taxonomy"]),
        otu_prefix=settings["otu_prefix"],
        strict_categories=settings["strict_categories"],
    )


def apply_filters(dataset: CommunityDataset, config: Config) -> CommunityDataset:
    """Apply the ``filters`` section in a fixed order.

    Blank samples, then non-target kingdoms, then zero-total OTUs, then
    empty samples, then excluded lineages.
    """
    settings = config.to_dict()["filters"]
    if settings.get("remove_samples"):
        dataset = dataset.remove_samples(settings["remove_samples"])
    if settings.get("kingdom"):
        dataset = dataset.keep_kingdom(settings["kingdom"])
    if settings.get("drop_zero_otus", True):
        dataset = dataset.drop_zero_otus()
    if settings.get("drop_empty_samples", True):
        dataset = dataset.drop_empty_samples()
    if settings.get("exclude_lineages"):
        dataset = dataset.exclude_lineages(settings["exclude_lineages"])
    logger.info(f"Filtered dataset: {dataset}")
    return dataset


def run_analysis(config: Config) -> AnalysisResults:
    """Run every stage and write the figures.

    Raises:
        PipelineError: From the first stage that fails, after logging it
    """
    settings = config.to_dict()
    aggregation = settings["aggregation"]
    statistics = settings["statistics"]
    output = settings["output"]
    set_level(output["log_level"])

    out_dir = config.resolve_path(output["directory"])
    dpi = output["dpi"]

    with _stage("load"):
        dataset = load_dataset(config)

    with _stage("filter"):
        dataset = apply_filters(dataset, config)
    results = AnalysisResults(dataset=dataset)

    measure = statistics["alpha_measure"]
    subset_column = statistics["subset_column"]
    subset_values = statistics["subset_values"]
    group_column = statistics["group_column"]

    with _stage("alpha_diversity"):
        richness = alpha.richness_table(dataset)
        results.richness = richness
        results.normality = alpha.normality(richness[measure].to_list())
        factors = statistics["anova_factors"]
        results.anova = alpha.anova(richness, measure, factors)
        results.tukey = {
            factor: alpha.tukey_hsd(richness, measure, factor) for factor in factors
        }

        subset = richness.filter(
            pl.col(subset_column).cast(pl.Utf8).is_in(subset_values)
        )
        results.subset_anova = alpha.anova(subset, measure, [group_column])
        results.subset_tukey = alpha.tukey_hsd(subset, measure, group_column)

        results.figures["richness"] = save_figure(
            plot_richness(richness, measure), out_dir / "richness.png", dpi
        )

    with _stage("barplots"):
        merged = dataset.merge_samples(aggregation["group_by"]).to_relative(
            zero_total=aggregation["zero_total"]
        )
        barplot_rank = aggregation["barplot_rank"]
        results.relative_abundance = merged.melt()
        results.figures["barplot"] = save_figure(
            plot_relative_abundance(results.relative_abundance, fill=barplot_rank),
            out_dir / f"barplot_{barplot_rank}.png",
            dpi,
        )

        rank = aggregation["rank"]
        top = merged.collapse_rank(
            rank,
            top_n=aggregation["top_n"],
            other_label=aggregation["other_label"],
            tie_break=aggregation["tie_break"],
        )
        results.top_taxa = top.melt()
        results.figures["barplot_top"] = save_figure(
            plot_relative_abundance(results.top_taxa, fill=rank),
            out_dir / f"barplot_top{aggregation['top_n']}_{rank}.png",
            dpi,
        )

    with _stage("beta_diversity"):
        relative = dataset.subset_samples(subset_column, subset_values).to_relative(
            zero_total=aggregation["zero_total"]
        )
        dm = beta.distance(relative, statistics["distance_metric"])
        ordination = beta.ordinate(dm)
        results.distance = dm
        results.ordination = ordination
        results.scree = beta.scree(ordination)
        results.figures["scree"] = save_figure(
            plot_scree(results.scree), out_dir / "pcoa_scree.png", dpi
        )
        results.figures["ordination"] = save_figure(
            plot_ordination(
                beta.ordination_frame(ordination, relative),
                explained=results.scree["proportion_explained"].to_list()[:2],
                color=group_column,
            ),
            out_dir / "pcoa.png",
            dpi,
        )

        results.permanova = beta.permanova(
            dm,
            relative,
            group_column,
            permutations=statistics["permutations"],
            seed=statistics["seed"],
        )
        results.simper = beta.simper(
            relative,
            group_column,
            permutations=statistics["simper_permutations"],
            seed=statistics["seed"],
        )

    logger.info(f"Analysis complete, {len(results.figures)} figures in {out_dir}")
    return results
