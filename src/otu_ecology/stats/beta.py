"""Beta diversity: distances, ordination and multivariate tests."""

import logging
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import polars as pl
from scipy.spatial.distance import pdist, squareform
from skbio import DistanceMatrix, OrdinationResults
from skbio.stats.distance import permanova as skbio_permanova
from skbio.stats.ordination import pcoa

from otu_ecology.errors import DivideByZeroError, EmptyResultError
from otu_ecology.wrangle.dataset import CommunityDataset

logger = logging.getLogger(__name__)


def distance(dataset: CommunityDataset, metric: str = "braycurtis") -> DistanceMatrix:
    """Pairwise sample distances.

    Args:
        dataset: Dataset (usually relative abundances)
        metric: Any scipy ``pdist`` metric name

    Raises:
        EmptyResultError: If fewer than two samples remain
    """
    if dataset.n_samples < 2:
        raise EmptyResultError(
            "Distance matrix needs at least two samples",
            dataset.sample_ids,
            stage="distance",
        )
    matrix, sample_ids, _ = dataset.to_matrix()
    dm = DistanceMatrix(squareform(pdist(matrix, metric=metric)), ids=sample_ids)
    logger.info(f"Computed {metric} distances for {len(sample_ids)} samples")
    return dm


def ordinate(dm: DistanceMatrix, dimensions: Optional[int] = None) -> OrdinationResults:
    """Principal coordinates analysis of a distance matrix."""
    if dimensions is None:
        return pcoa(dm)
    return pcoa(dm, number_of_dimensions=dimensions)


def ordination_frame(
    ordination: OrdinationResults,
    dataset: CommunityDataset,
    axes: int = 2,
) -> pl.DataFrame:
    """Sample coordinates on the first ``axes`` axes joined to metadata."""
    coords = ordination.samples.iloc[:, :axes]
    names = [f"PC{i + 1}" for i in range(coords.shape[1])]
    frame = pl.DataFrame(
        {
            "sample": [str(s) for s in coords.index],
            **{
                name: coords.iloc[:, i].to_numpy(dtype=np.float64).tolist()
                for i, name in enumerate(names)
            },
        }
    )
    return frame.join(dataset.sample_data(), on="sample", how="left")


def scree(ordination: OrdinationResults) -> pl.DataFrame:
    """Eigenvalue and proportion of variance explained per axis."""
    eigvals = ordination.eigvals.to_numpy(dtype=np.float64)
    explained = ordination.proportion_explained.to_numpy(dtype=np.float64)
    return pl.DataFrame(
        {
            "axis": [f"PC{i + 1}" for i in range(len(eigvals))],
            "eigenvalue": eigvals.tolist(),
            "proportion_explained": explained.tolist(),
        }
    )


def _grouping(ids: Sequence[str], dataset: CommunityDataset, column: str) -> List[str]:
    meta = dataset.sample_data()
    if column not in meta.columns:
        raise ValueError(f"Unknown metadata column: {column}")
    lookup = dict(
        zip(meta["sample"].to_list(), meta[column].cast(pl.Utf8).to_list())
    )
    return [lookup[str(i)] for i in ids]


def permanova(
    dm: DistanceMatrix,
    dataset: CommunityDataset,
    column: str = "treatment",
    permutations: int = 9999,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """Permutational MANOVA of ``dm`` on a metadata factor.

    Returns:
        Dict with method, sample_size, n_groups, statistic (pseudo-F),
        r_squared, p_value and permutations

    Raises:
        EmptyResultError: With fewer than two groups, or when every group
            holds a single sample
    """
    grouping = _grouping(dm.ids, dataset, column)
    if None in grouping:
        missing = [i for i, g in zip(dm.ids, grouping) if g is None]
        raise EmptyResultError(
            f"Samples without a {column} value", missing, stage="permanova"
        )
    n_groups = len(set(grouping))
    if n_groups < 2 or n_groups == len(grouping):
        raise EmptyResultError(
            f"PERMANOVA needs 2+ {column} groups with replicates, got {n_groups} "
            f"groups for {len(grouping)} samples",
            sorted(set(grouping)),
            stage="permanova",
        )

    result = skbio_permanova(dm, grouping, permutations=permutations, seed=seed)
    n = int(result["sample size"])
    f_stat = float(result["test statistic"])
    # R^2 = SS_between / SS_total, recovered from the pseudo-F
    r_squared = f_stat * (n_groups - 1) / (f_stat * (n_groups - 1) + (n - n_groups))
    logger.info(
        f"PERMANOVA on {column}: F={f_stat:.4f}, R2={r_squared:.4f}, "
        f"p={result['p-value']}"
    )
    return {
        "method": str(result["method name"]),
        "sample_size": n,
        "n_groups": int(result["number of groups"]),
        "statistic": f_stat,
        "r_squared": r_squared,
        "p_value": float(result["p-value"]) if permutations > 0 else None,
        "permutations": int(result["number of permutations"]),
    }


def _contributions(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Per-taxon Bray-Curtis contributions for every pair across groups.

    Returns an array of shape (len(a) * len(b), n_taxa).
    """
    diffs = np.abs(a[:, None, :] - b[None, :, :])
    totals = a.sum(axis=1)[:, None] + b.sum(axis=1)[None, :]
    return (diffs / totals[:, :, None]).reshape(-1, a.shape[1])


def simper(
    dataset: CommunityDataset,
    column: str = "treatment",
    permutations: int = 0,
    seed: Optional[int] = None,
) -> pl.DataFrame:
    """Similarity percentages: taxon contributions to group dissimilarity.

    For every pair of ``column`` groups, the average Bray-Curtis
    dissimilarity between their samples is split into per-taxon
    contributions. With ``permutations`` > 0 the group labels are shuffled
    to give a p-value per taxon.

    Returns:
        DataFrame with comparison, group1, group2, otu, average, sd, ratio,
        ava, avb, cumsum and p_value, ordered by comparison then average
        contribution descending
    """
    matrix, sample_ids, otu_ids = dataset.to_matrix()
    labels = np.asarray(_grouping(sample_ids, dataset, column), dtype=object)

    meta = dataset.sample_data()
    if meta[column].dtype == pl.Enum:
        present = set(labels.tolist())
        levels = [level for level in meta[column].dtype.categories.to_list() if level in present]
    else:
        levels = list(dict.fromkeys(labels.tolist()))
    levels = [level for level in levels if level is not None]
    if len(levels) < 2:
        raise EmptyResultError(
            f"SIMPER needs at least two {column} groups", levels, stage="simper"
        )

    totals = matrix.sum(axis=1)
    empty = [s for s, t in zip(sample_ids, totals) if t == 0]
    if empty:
        raise DivideByZeroError(
            "SIMPER needs samples with non-zero totals", empty, stage="simper"
        )

    rng = np.random.default_rng(seed)
    perm_labels = [rng.permutation(labels) for _ in range(permutations)]

    frames = []
    for group1, group2 in combinations(levels, 2):
        a = matrix[labels == group1]
        b = matrix[labels == group2]
        contr = _contributions(a, b)
        average = contr.mean(axis=0)
        sd = contr.std(axis=0, ddof=1) if contr.shape[0] > 1 else np.full(len(otu_ids), np.nan)
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = average / sd

        p_values: List[Optional[float]] = [None] * len(otu_ids)
        if permutations > 0:
            exceed = np.zeros(len(otu_ids))
            for shuffled in perm_labels:
                pa = matrix[shuffled == group1]
                pb = matrix[shuffled == group2]
                exceed += _contributions(pa, pb).mean(axis=0) >= average
            p_values = ((exceed + 1) / (permutations + 1)).tolist()

        order = np.argsort(-average, kind="stable")
        overall = average.sum()
        cumulative = np.cumsum(average[order]) / overall if overall > 0 else np.zeros(len(order))

        frames.append(
            pl.DataFrame(
                {
                    "comparison": [f"{group1}_{group2}"] * len(order),
                    "group1": [group1] * len(order),
                    "group2": [group2] * len(order),
                    "otu": [otu_ids[i] for i in order],
                    "average": average[order].tolist(),
                    "sd": [None if np.isnan(v) else float(v) for v in sd[order]],
                    "ratio": [None if not np.isfinite(v) else float(v) for v in ratio[order]],
                    "ava": a.mean(axis=0)[order].tolist(),
                    "avb": b.mean(axis=0)[order].tolist(),
                    "cumsum": cumulative.tolist(),
                    "p_value": [p_values[i] for i in order],
                },
                schema={
                    "comparison": pl.Utf8,
                    "group1": pl.Utf8,
                    "group2": pl.Utf8,
                    "otu": pl.Utf8,
                    "average": pl.Float64,
                    "sd": pl.Float64,
                    "ratio": pl.Float64,
                    "ava": pl.Float64,
                    "avb": pl.Float64,
                    "cumsum": pl.Float64,
                    "p_value": pl.Float64,
                },
            )
        )
        logger.debug(
            f"SIMPER {group1} vs {group2}: average dissimilarity {overall:.4f}"
        )

    return pl.concat(frames)
