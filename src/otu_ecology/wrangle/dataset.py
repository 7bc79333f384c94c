"""Composite sample x OTU dataset with metadata and taxonomy."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import polars as pl

from otu_ecology.core.config import TieBreak, ZeroTotalPolicy
from otu_ecology.errors import DivideByZeroError, EmptyResultError, JoinError
from otu_ecology.utils.tables import load_table, order_by
from otu_ecology.utils.taxonomy import TaxonomicRanks
from otu_ecology.wrangle.metadata import SampleMetadata
from otu_ecology.wrangle.profiles import AbundanceProfiles
from otu_ecology.wrangle.taxonomy import TaxonomyTable

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"


@dataclass(frozen=True)
class FilterReport:
    """Record of one filter step applied to a dataset."""

    step: str
    removed_samples: Tuple[str, ...] = field(default_factory=tuple)
    removed_otus: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_noop(self) -> bool:
        return not self.removed_samples and not self.removed_otus


class CommunityDataset:
    """Abundance profiles joined to sample metadata and OTU taxonomy.

    The three components are keyed by identifier, never by position: every
    sample in the profiles has exactly one metadata row and every OTU has
    exactly one taxonomy row. Operations return new datasets; filter steps
    append a ``FilterReport`` to ``history``.

    Examples:
        dataset = CommunityDataset.scan('hetero_data.txt', 'hetero_taxonomy.txt')
        bacteria = (dataset.remove_samples(['Blank_S142'])
                    .keep_kingdom('Bacteria')
                    .drop_zero_otus())
        tidy = bacteria.merge_samples().to_relative().melt()
    """

    def __init__(
        self,
        metadata: SampleMetadata,
        profiles: AbundanceProfiles,
        taxonomy: TaxonomyTable,
    ):
        """Assemble a dataset, joining components by identifier.

        Args:
            metadata: Per-sample metadata
            profiles: Long-form abundances
            taxonomy: Per-OTU lineage

        Raises:
            JoinError: If a sample lacks metadata (or vice versa) or an OTU
                lacks taxonomy
        """
        sample_ids = profiles.sample_ids
        otu_ids = profiles.otu_ids

        meta_samples = metadata._get_sample_list()
        meta_set = set(meta_samples)
        without_metadata = [s for s in sample_ids if s not in meta_set]
        if without_metadata:
            raise JoinError(
                "Samples in abundance table without metadata", without_metadata
            )
        profile_set = set(sample_ids)
        without_counts = [s for s in meta_samples if s not in profile_set]
        if without_counts:
            raise JoinError(
                "Samples in metadata without abundances", without_counts
            )

        tax_set = set(taxonomy.get_otus())
        without_taxonomy = [o for o in otu_ids if o not in tax_set]
        if without_taxonomy:
            raise JoinError("OTUs without taxonomy", without_taxonomy)

        otu_set = set(otu_ids)
        unused = [o for o in taxonomy.get_otus() if o not in otu_set]
        if unused:
            logger.warning(
                f"Dropping {len(unused)} taxonomy rows with no abundance column"
            )
            taxonomy = taxonomy._filter_by_otu(otu_ids)

        self.metadata = metadata._reorder(sample_ids)
        self.profiles = profiles
        self.taxonomy = taxonomy._reorder(otu_ids)
        self.history: List[FilterReport] = []

        logger.debug(
            f"Assembled dataset: {len(sample_ids)} samples x {len(otu_ids)} OTUs"
        )

    @classmethod
    def assemble(
        cls,
        metadata: SampleMetadata,
        profiles: AbundanceProfiles,
        taxonomy: TaxonomyTable,
    ) -> "CommunityDataset":
        """Alias of the constructor, named after the pipeline stage."""
        return cls(metadata, profiles, taxonomy)

    @classmethod
    def scan(
        cls,
        samples: Union[Path, str],
        taxonomy: Union[Path, str],
        otu_prefix: str = "Zotu",
        strict_categories: bool = True,
    ) -> "CommunityDataset":
        """Load and assemble a dataset from the two input tables.

        Args:
            samples: Sample table (identifier and factor columns followed by
                abundance columns named with ``otu_prefix``)
            taxonomy: Taxonomy table (identifier column then kingdom..species)
            otu_prefix: Name prefix of the abundance columns
            strict_categories: Reject unexpected factor values

        Returns:
            CommunityDataset instance
        """
        logger.info(f"Loading sample table {samples}")
        sample_table = load_table(samples)
        metadata = SampleMetadata.from_sample_table(
            sample_table, otu_prefix, strict_categories=strict_categories
        )
        profiles = AbundanceProfiles.from_sample_table(sample_table, otu_prefix)

        logger.info(f"Loading taxonomy table {taxonomy}")
        taxonomy_table = TaxonomyTable.scan(taxonomy)

        dataset = cls(metadata, profiles, taxonomy_table)
        logger.info(
            f"Loaded {dataset.n_samples} samples x {dataset.n_otus} OTUs"
        )
        return dataset

    def _derive(
        self,
        metadata: Optional[SampleMetadata] = None,
        profiles: Optional[AbundanceProfiles] = None,
        taxonomy: Optional[TaxonomyTable] = None,
        report: Optional[FilterReport] = None,
    ) -> "CommunityDataset":
        """New dataset sharing unchanged components with this one."""
        new_instance = CommunityDataset.__new__(CommunityDataset)
        new_instance.metadata = metadata if metadata is not None else self.metadata
        new_instance.profiles = profiles if profiles is not None else self.profiles
        new_instance.taxonomy = taxonomy if taxonomy is not None else self.taxonomy
        new_instance.history = list(self.history)
        if report is not None:
            new_instance.history.append(report)
        return new_instance

    @property
    def sample_ids(self) -> List[str]:
        return list(self.profiles.sample_ids)

    @property
    def otu_ids(self) -> List[str]:
        return list(self.profiles.otu_ids)

    @property
    def n_samples(self) -> int:
        return len(self.profiles.sample_ids)

    @property
    def n_otus(self) -> int:
        return len(self.profiles.otu_ids)

    def __repr__(self) -> str:
        return (
            f"CommunityDataset({self.n_samples} samples x {self.n_otus} OTUs, "
            f"ranks={self.taxonomy.ranks})"
        )

    # ------------------------------------------------------------------
    # Filters

    def _keep_samples(self, keep: Sequence[str], step: str) -> "CommunityDataset":
        keep_set = set(keep)
        removed = tuple(s for s in self.sample_ids if s not in keep_set)
        report = FilterReport(step=step, removed_samples=removed)
        self._log_report(report)
        if not removed:
            return self._derive(report=report)
        return self._derive(
            metadata=self.metadata._filter_by_sample(keep),
            profiles=self.profiles._filter(samples=keep),
            report=report,
        )

    def _keep_otus(self, keep: Sequence[str], step: str) -> "CommunityDataset":
        keep_set = set(keep)
        removed = tuple(o for o in self.otu_ids if o not in keep_set)
        report = FilterReport(step=step, removed_otus=removed)
        self._log_report(report)
        if not removed:
            return self._derive(report=report)
        return self._derive(
            profiles=self.profiles._filter(otus=keep),
            taxonomy=self.taxonomy._filter_by_otu(keep),
            report=report,
        )

    def _log_report(self, report: FilterReport) -> None:
        if report.is_noop:
            logger.debug(f"{report.step}: no rows matched, nothing removed")
            return
        logger.info(
            f"{report.step}: removed {len(report.removed_samples)} samples, "
            f"{len(report.removed_otus)} OTUs"
        )
        logger.debug(
            f"{report.step}: samples {list(report.removed_samples)}, "
            f"OTUs {list(report.removed_otus)}"
        )

    def remove_samples(self, samples: Sequence[str]) -> "CommunityDataset":
        """Remove samples by exact identifier match.

        Identifiers that are not present are ignored.
        """
        drop = set(samples)
        unknown = sorted(drop - set(self.sample_ids))
        if unknown:
            logger.debug(f"remove_samples: identifiers not present {unknown}")
        keep = [s for s in self.sample_ids if s not in drop]
        return self._keep_samples(keep, "remove_samples")

    def subset_samples(
        self, column: str, values: Sequence[str]
    ) -> "CommunityDataset":
        """Keep samples whose metadata ``column`` value is in ``values``."""
        keep = self.metadata.filter(column, values)
        return self._keep_samples(keep, f"subset_samples[{column}]")

    def drop_empty_samples(self) -> "CommunityDataset":
        """Remove samples whose total abundance is zero."""
        sums = self.profiles.sample_sums()
        keep = sums.filter(pl.col("total") > 0)["sample"].to_list()
        return self._keep_samples(keep, "drop_empty_samples")

    def keep_kingdom(
        self, kingdom: str = "Bacteria", rank: Union[str, TaxonomicRanks] = TaxonomicRanks.KINGDOM
    ) -> "CommunityDataset":
        """Keep only OTUs whose ``rank`` value equals ``kingdom``.

        OTUs with an unknown value at that rank are removed.
        """
        keep = self.taxonomy.matching(rank, [kingdom])
        return self._keep_otus(keep, f"keep_kingdom[{kingdom}]")

    def drop_zero_otus(self) -> "CommunityDataset":
        """Remove OTUs whose total abundance across all samples is zero."""
        totals = self.profiles.otu_totals()
        keep = totals.filter(pl.col("total") > 0)["otu"].to_list()
        return self._keep_otus(keep, "drop_zero_otus")

    def exclude_lineages(
        self, exclusions: Dict[str, Sequence[str]]
    ) -> "CommunityDataset":
        """Remove OTUs whose value at a rank is one of the excluded labels.

        Args:
            exclusions: Mapping of rank name to excluded labels, e.g.
                ``{"order": ["o_Chloroplast"], "family": ["f_Mitochondria"]}``

        OTUs with an unknown value at an excluded rank are kept.
        """
        dropped = set()
        for rank, labels in exclusions.items():
            dropped.update(self.taxonomy.matching(rank, list(labels)))
        keep = [o for o in self.otu_ids if o not in dropped]
        ranks = ",".join(exclusions)
        return self._keep_otus(keep, f"exclude_lineages[{ranks}]")

    def prune_otus(self, otus: Sequence[str]) -> "CommunityDataset":
        """Keep only the named OTUs."""
        return self._keep_otus(list(otus), "prune_otus")

    # ------------------------------------------------------------------
    # Aggregation

    def merge_samples(
        self,
        factors: Sequence[str] = ("timepoint", "treatment"),
    ) -> "CommunityDataset":
        """Collapse samples sharing the same factor values into one group.

        The group identifier is the concatenation of the factor values
        (``T0`` + ``Control`` -> ``T0Control``). Abundances are summed within
        each group and the factor columns are kept on the group rows, so the
        grouped dataset carries the same labels as its member samples. Groups
        are ordered by factor level order. A column ``n_samples`` counts the
        members of each group.

        Raises:
            EmptyResultError: If the dataset has no samples
        """
        factors = list(factors)
        if not self.sample_ids:
            raise EmptyResultError("No samples to merge", stage="merge_samples")

        meta = self.metadata.metadata.select(["sample"] + factors).with_columns(
            pl.concat_str(
                [pl.col(f).cast(pl.Utf8).fill_null("NA") for f in factors]
            ).alias("group")
        )

        groups = (
            meta.group_by(["group"] + factors)
            .agg(pl.len().alias("n_samples"))
            .sort(factors + ["group"], nulls_last=True)
        )
        collisions = (
            groups.filter(pl.col("group").is_duplicated())["group"]
            .unique(maintain_order=True)
            .to_list()
        )
        if collisions:
            raise JoinError(
                "Group identifiers shared by different factor combinations",
                collisions,
                stage="merge_samples",
            )
        group_ids = groups["group"].to_list()

        merged = (
            self.profiles.profiles.join(
                meta.select(["sample", "group"]), on="sample", how="inner"
            )
            .group_by(["group", "otu"])
            .agg(pl.col("abundance").sum())
            .rename({"group": "sample"})
        )

        metadata = SampleMetadata._from_frame(
            groups.rename({"group": "sample"}).select(
                ["sample"] + factors + ["n_samples"]
            )
        )
        profiles = AbundanceProfiles(merged, sample_ids=group_ids, otu_ids=self.otu_ids)
        logger.info(
            f"Merged {self.n_samples} samples into {len(group_ids)} groups by {factors}"
        )
        return self._derive(metadata=metadata, profiles=profiles)

    def to_relative(
        self,
        scale: float = 100.0,
        zero_total: Union[str, ZeroTotalPolicy] = ZeroTotalPolicy.ERROR,
    ) -> "CommunityDataset":
        """Convert each sample's abundances to a share of its total.

        Args:
            scale: Value a sample's abundances sum to (100 for percentages)
            zero_total: ``"error"`` raises on an all-zero sample, ``"zero"``
                leaves it as an all-zero row

        Raises:
            DivideByZeroError: If a sample total is zero under the error policy
        """
        policy = ZeroTotalPolicy(zero_total)
        sums = self.profiles.sample_sums()
        empty = sums.filter(pl.col("total") == 0)["sample"].to_list()
        if empty:
            if policy is ZeroTotalPolicy.ERROR:
                raise DivideByZeroError(
                    "Cannot normalise samples with zero total abundance", empty
                )
            logger.warning(
                f"{len(empty)} samples have zero total abundance, left as zeros: {empty}"
            )

        total = pl.col("abundance").sum().over("sample")
        expr = (
            pl.when(total > 0)
            .then(pl.col("abundance") * scale / total)
            .otherwise(0.0)
        )
        return self._derive(profiles=self.profiles.with_abundance(expr))

    def collapse_rank(
        self,
        rank: Union[str, TaxonomicRanks],
        top_n: Optional[int] = None,
        other_label: str = "Other",
        tie_break: Union[str, TieBreak] = TieBreak.INPUT_ORDER,
    ) -> "CommunityDataset":
        """Sum OTUs that share a value at ``rank`` into one row per value.

        OTUs with an unknown value at ``rank`` are grouped as ``Unassigned``.
        Groups are ranked by total abundance across all samples, descending.
        Equal totals keep the order in which the value first appears in the
        OTU order (``tie_break="input_order"``) or sort by label
        (``"lexical"``). With ``top_n`` only the first ``top_n`` groups are
        kept and the rest are summed into one ``other_label`` row, so every
        sample's total is preserved.

        The returned taxonomy keeps ranks down to ``rank``; a broader rank is
        kept when all OTUs in the group agree on it and is null otherwise.

        Raises:
            EmptyResultError: If the dataset has no OTUs
            ValueError: If ``top_n`` < 1, ``rank`` is missing from the
                taxonomy or ``other_label`` names a kept group
        """
        column = self.taxonomy.require_rank(rank)
        tie_break = TieBreak(tie_break)
        if top_n is not None and top_n < 1:
            raise ValueError(f"top_n must be at least 1, got {top_n}")
        if not self.otu_ids:
            raise EmptyResultError("No OTUs to collapse", stage="collapse_rank")

        lineage = TaxonomicRanks.coerce(rank).lineage_columns()
        broader = lineage[:-1]

        labelled = self.taxonomy.taxonomy.with_columns(
            pl.col(column).fill_null(UNASSIGNED).alias("label")
        )
        first_seen = labelled["label"].unique(maintain_order=True).to_list()

        collapsed = (
            self.profiles.profiles.join(
                labelled.select(["otu", "label"]), on="otu", how="inner"
            )
            .group_by(["sample", "label"])
            .agg(pl.col("abundance").sum())
        )

        order_key = "first_seen" if tie_break is TieBreak.INPUT_ORDER else "label"
        ranking = (
            collapsed.group_by("label")
            .agg(pl.col("abundance").sum().alias("total"))
            .join(
                pl.DataFrame(
                    {"label": first_seen, "first_seen": list(range(len(first_seen)))}
                ),
                on="label",
                how="inner",
            )
            .sort(["total", order_key], descending=[True, False])
        )
        ranked = ranking["label"].to_list()

        kept = ranked if top_n is None else ranked[:top_n]
        rest = [] if top_n is None else ranked[top_n:]
        if rest and other_label in kept:
            raise ValueError(
                f"other_label '{other_label}' collides with a kept {column} value"
            )

        lineage_agg = [
            pl.when(pl.col(c).n_unique() == 1)
            .then(pl.col(c).first())
            .otherwise(pl.lit(None, dtype=pl.Utf8))
            .alias(c)
            for c in broader
        ]
        taxonomy = (
            labelled.filter(pl.col("label").is_in(kept))
            .group_by("label")
            .agg(lineage_agg)
            .with_columns(pl.col("label").alias(column))
        )

        otu_ids = list(kept)
        if rest:
            bucket = pl.when(pl.col("label").is_in(kept)).then(
                pl.col("label")
            ).otherwise(pl.lit(other_label))
            collapsed = (
                collapsed.with_columns(bucket.alias("label"))
                .group_by(["sample", "label"])
                .agg(pl.col("abundance").sum())
            )
            other_row = pl.DataFrame(
                {"label": [other_label], **{c: [None] for c in broader}, column: [other_label]},
                schema={"label": pl.Utf8, **{c: pl.Utf8 for c in lineage}},
            )
            taxonomy = pl.concat(
                [taxonomy.select(["label"] + lineage), other_row.select(["label"] + lineage)]
            )
            otu_ids.append(other_label)

        taxonomy = taxonomy.rename({"label": "otu"}).select(["otu"] + lineage)
        profiles = AbundanceProfiles(
            collapsed.rename({"label": "otu"}),
            sample_ids=self.sample_ids,
            otu_ids=otu_ids,
        )
        logger.info(
            f"Collapsed {self.n_otus} OTUs into {len(ranked)} {column} groups"
            + (f", kept top {len(kept)} + '{other_label}'" if rest else "")
        )
        return self._derive(
            profiles=profiles,
            taxonomy=TaxonomyTable._from_frame(order_by(taxonomy, "otu", otu_ids), lineage),
        )

    # ------------------------------------------------------------------
    # Export

    def sample_sums(self) -> pl.DataFrame:
        """Total abundance per sample."""
        return self.profiles.sample_sums()

    def otu_totals(self) -> pl.DataFrame:
        """Total abundance per OTU across all samples."""
        return self.profiles.otu_totals()

    def to_matrix(self) -> Tuple[np.ndarray, List[str], List[str]]:
        """Dense samples x OTUs matrix with its row and column identifiers."""
        return self.profiles.to_matrix()

    def sample_data(self) -> pl.DataFrame:
        """Metadata table in sample order."""
        return self.metadata.metadata

    def melt(self) -> pl.DataFrame:
        """Tidy long-form table for statistics and plotting.

        One row per sample x OTU with ``abundance`` plus every metadata and
        taxonomy column, ordered by sample then OTU.
        """
        tidy = (
            self.profiles.profiles.join(self.metadata.metadata, on="sample", how="left")
            .join(self.taxonomy.taxonomy, on="otu", how="left")
        )
        if tidy.is_empty():
            return tidy
        return tidy.sort(
            [
                pl.col("sample").cast(pl.Enum(self.sample_ids)),
                pl.col("otu").cast(pl.Enum(self.otu_ids)),
            ]
        )
