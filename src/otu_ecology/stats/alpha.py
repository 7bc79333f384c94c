"""Alpha diversity estimates and group-comparison tests."""

import logging
import re
from typing import Dict, List, Optional, Sequence

import numpy as np
import polars as pl
from scipy import stats
from skbio.diversity import alpha_diversity
from statsmodels.formula.api import ols
from statsmodels.stats.anova import anova_lm
from statsmodels.stats.multicomp import pairwise_tukeyhsd

from otu_ecology.errors import EmptyResultError
from otu_ecology.utils.tables import as_pandas
from otu_ecology.wrangle.dataset import CommunityDataset

logger = logging.getLogger(__name__)

# measure name -> (scikit-bio metric, keyword arguments)
SKBIO_METRICS = {
    "chao1": ("chao1", {}),
    "shannon": ("shannon", {"base": np.e}),
    "simpson": ("simpson", {}),
    "inv_simpson": ("enspie", {}),
}
ALPHA_MEASURES = ("observed",) + tuple(SKBIO_METRICS)


def _count_matrix(dataset: CommunityDataset):
    matrix, sample_ids, _ = dataset.to_matrix()
    if not np.allclose(matrix, np.rint(matrix)):
        raise ValueError(
            "Richness estimators need raw counts; the dataset holds "
            "non-integer abundances (estimate before to_relative())"
        )
    return np.rint(matrix).astype(np.int64), sample_ids


def estimate_richness(
    dataset: CommunityDataset,
    measures: Optional[Sequence[str]] = None,
) -> pl.DataFrame:
    """Alpha diversity of every sample.

    Args:
        dataset: Dataset holding raw counts
        measures: Subset of ``ALPHA_MEASURES`` (all by default). Shannon uses
            the natural logarithm.

    Returns:
        DataFrame with a ``sample`` column and one column per measure
    """
    measures = list(measures or ALPHA_MEASURES)
    unknown = [m for m in measures if m not in ALPHA_MEASURES]
    if unknown:
        raise ValueError(f"Unknown alpha diversity measures: {unknown}")
    if dataset.n_samples == 0 or dataset.n_otus == 0:
        raise EmptyResultError(
            "No samples or OTUs to estimate richness on", stage="alpha_diversity"
        )

    counts, sample_ids = _count_matrix(dataset)
    columns: Dict[str, List] = {"sample": sample_ids}
    for measure in measures:
        if measure == "observed":
            values = (counts > 0).sum(axis=1).astype(np.float64)
        else:
            metric, kwargs = SKBIO_METRICS[measure]
            values = alpha_diversity(
                metric, counts, ids=sample_ids, **kwargs
            ).to_numpy(dtype=np.float64)
        columns[measure] = values.tolist()

    logger.info(f"Estimated {measures} for {len(sample_ids)} samples")
    return pl.DataFrame(columns)


def richness_table(
    dataset: CommunityDataset,
    measures: Optional[Sequence[str]] = None,
) -> pl.DataFrame:
    """``estimate_richness`` joined to the sample metadata."""
    richness = estimate_richness(dataset, measures)
    return dataset.sample_data().join(richness, on="sample", how="inner")


def normality(values: Sequence[float]) -> Dict[str, float]:
    """Shapiro-Wilk test of normality.

    Raises:
        EmptyResultError: If fewer than three values are given
    """
    values = np.asarray([v for v in values if v is not None and np.isfinite(v)])
    if values.size < 3:
        raise EmptyResultError(
            f"Shapiro-Wilk needs at least 3 values, got {values.size}",
            stage="normality",
        )
    statistic, p_value = stats.shapiro(values)
    return {"statistic": float(statistic), "p_value": float(p_value)}


def _complete_rows(
    table: pl.DataFrame, response: str, factors: Sequence[str], stage: str
) -> pl.DataFrame:
    """Rows with a response and every factor, checking each factor varies."""
    for column in [response, *factors]:
        if column not in table.columns:
            raise ValueError(f"Column '{column}' not in table")

    complete = table.drop_nulls([response, *factors])
    if complete.is_empty():
        raise EmptyResultError("No complete rows to test", stage=stage)

    constant = [f for f in factors if complete[f].n_unique() < 2]
    if constant:
        raise EmptyResultError(
            "Factors need at least two observed groups", constant, stage=stage
        )
    return complete


def anova(
    table: pl.DataFrame,
    response: str = "shannon",
    factors: Sequence[str] = ("timepoint", "treatment"),
) -> pl.DataFrame:
    """Sequential (type I) ANOVA of ``response`` on additive factors.

    ``anova(table, "shannon", ["treatment"])`` is the one-way case.

    Returns:
        DataFrame with term, df, sum_sq, mean_sq, f_value and p_value;
        the residual row has null F and p.
    """
    factors = list(factors)
    complete = _complete_rows(table, response, factors, stage="anova")
    frame = as_pandas(
        complete.select([pl.col(response)] + [pl.col(f).cast(pl.Utf8) for f in factors])
    )
    formula = f"{response} ~ " + " + ".join(f"C({f})" for f in factors)
    model = ols(formula, data=frame).fit()
    result = anova_lm(model, typ=1)

    terms = [re.sub(r"^C\((.+)\)$", r"\1", str(t)) for t in result.index]
    logger.debug(f"ANOVA {formula} on {len(frame)} rows")

    def column(name: str) -> List[Optional[float]]:
        return [None if np.isnan(v) else float(v) for v in result[name]]

    return pl.DataFrame(
        {
            "term": terms,
            "df": column("df"),
            "sum_sq": column("sum_sq"),
            "mean_sq": column("mean_sq"),
            "f_value": column("F"),
            "p_value": column("PR(>F)"),
        },
        schema={
            "term": pl.Utf8,
            "df": pl.Float64,
            "sum_sq": pl.Float64,
            "mean_sq": pl.Float64,
            "f_value": pl.Float64,
            "p_value": pl.Float64,
        },
    )


def tukey_hsd(
    table: pl.DataFrame,
    response: str = "shannon",
    factor: str = "treatment",
    alpha: float = 0.05,
) -> pl.DataFrame:
    """Tukey honest significant differences between the levels of ``factor``.

    Returns:
        DataFrame with one row per pair of levels
    """
    complete = _complete_rows(table, response, [factor], stage="tukey_hsd")
    result = pairwise_tukeyhsd(
        endog=complete[response].to_numpy(),
        groups=np.asarray(complete[factor].cast(pl.Utf8).to_list(), dtype=object),
        alpha=alpha,
    )

    # pairs come out in upper-triangle order of the sorted unique groups
    groups = [str(g) for g in result.groupsunique]
    first, second = np.triu_indices(len(groups), 1)
    confint = np.asarray(result.confint, dtype=np.float64)
    return pl.DataFrame(
        {
            "factor": [factor] * len(first),
            "group1": [groups[i] for i in first],
            "group2": [groups[j] for j in second],
            "meandiff": np.asarray(result.meandiffs, dtype=np.float64).tolist(),
            "p_adj": np.asarray(result.pvalues, dtype=np.float64).tolist(),
            "lower": confint[:, 0].tolist(),
            "upper": confint[:, 1].tolist(),
            "reject": [bool(r) for r in result.reject],
        },
        schema={
            "factor": pl.Utf8,
            "group1": pl.Utf8,
            "group2": pl.Utf8,
            "meandiff": pl.Float64,
            "p_adj": pl.Float64,
            "lower": pl.Float64,
            "upper": pl.Float64,
            "reject": pl.Boolean,
        },
    )
