"""Sample x OTU abundance data stored in long form."""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import polars as pl

from otu_ecology.errors import ParseError
from otu_ecology.utils.tables import order_by, validate_columns
from otu_ecology.wrangle.metadata import SampleFields

logger = logging.getLogger(__name__)


class AbundanceProfiles:
    """Long-form OTU abundance container.

    Stores abundances with exactly 3 columns:
    - sample: Sample identifier
    - otu: OTU identifier
    - abundance: Count or relative abundance (Float64)

    Every (sample, otu) pair is present, zeros included. Sample and OTU
    input order is kept in ``sample_ids`` and ``otu_ids``.

    Attributes:
        profiles: Polars DataFrame
        sample_ids: Samples in input order
        otu_ids: OTUs in input order
    """

    def __init__(
        self,
        profiles: pl.DataFrame,
        sample_ids: Optional[Sequence[str]] = None,
        otu_ids: Optional[Sequence[str]] = None,
    ):
        """Initialize from a long-form DataFrame.

        Args:
            profiles: DataFrame with sample, otu and abundance columns
            sample_ids: Sample order (first appearance order if omitted)
            otu_ids: OTU order (first appearance order if omitted)
        """
        validate_columns(profiles, ["sample", "otu", "abundance"])

        self.profiles = profiles.select(
            pl.col("sample").cast(pl.Utf8),
            pl.col("otu").cast(pl.Utf8),
            pl.col("abundance").cast(pl.Float64),
        )
        self.sample_ids = (
            list(sample_ids)
            if sample_ids is not None
            else self.profiles["sample"].unique(maintain_order=True).to_list()
        )
        self.otu_ids = (
            list(otu_ids)
            if otu_ids is not None
            else self.profiles["otu"].unique(maintain_order=True).to_list()
        )

    @classmethod
    def from_sample_table(
        cls, df: pl.DataFrame, otu_prefix: str
    ) -> "AbundanceProfiles":
        """Extract abundance columns from a combined sample table.

        Abundance columns are those whose name starts with ``otu_prefix``.

        Raises:
            ParseError: If no abundance columns exist, or a column is
                non-numeric, incomplete or negative
        """
        df = SampleFields.standardize(df)
        otu_columns = [c for c in df.columns if c.startswith(otu_prefix)]
        if not otu_columns:
            raise ParseError(
                f"No abundance columns with prefix '{otu_prefix}'",
                df.columns,
            )

        non_numeric = [c for c in otu_columns if not df[c].dtype.is_numeric()]
        if non_numeric:
            raise ParseError("Non-numeric abundance columns", non_numeric)

        incomplete = [c for c in otu_columns if df[c].null_count()]
        if incomplete:
            raise ParseError("Missing abundance values", incomplete)

        negative = [c for c in otu_columns if (df[c] < 0).any()]
        if negative:
            raise ParseError("Negative abundance values", negative)

        sample_ids = df["sample"].cast(pl.Utf8).to_list()
        return cls.from_matrix(
            df.select(otu_columns).to_numpy(), sample_ids, otu_columns
        )

    @classmethod
    def from_matrix(
        cls,
        matrix: np.ndarray,
        sample_ids: Sequence[str],
        otu_ids: Sequence[str],
    ) -> "AbundanceProfiles":
        """Build profiles from a dense samples x OTUs matrix."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (len(sample_ids), len(otu_ids)):
            raise ValueError(
                f"Matrix shape {matrix.shape} does not match "
                f"{len(sample_ids)} samples x {len(otu_ids)} OTUs"
            )

        profiles = pl.DataFrame(
            {
                "sample": [s for s in sample_ids for _ in otu_ids],
                "otu": list(otu_ids) * len(sample_ids),
                "abundance": matrix.reshape(-1),
            },
            schema={"sample": pl.Utf8, "otu": pl.Utf8, "abundance": pl.Float64},
        )
        return cls(profiles, sample_ids=sample_ids, otu_ids=otu_ids)

    def _derive(
        self,
        profiles: pl.DataFrame,
        sample_ids: Sequence[str],
        otu_ids: Sequence[str],
    ) -> "AbundanceProfiles":
        new_instance = AbundanceProfiles.__new__(AbundanceProfiles)
        new_instance.profiles = profiles
        new_instance.sample_ids = list(sample_ids)
        new_instance.otu_ids = list(otu_ids)
        return new_instance

    def _get_sample_list(self) -> List[str]:
        return list(self.sample_ids)

    def _filter(
        self,
        samples: Optional[Sequence[str]] = None,
        otus: Optional[Sequence[str]] = None,
    ) -> "AbundanceProfiles":
        """Create new AbundanceProfiles restricted to samples and/or OTUs.

        Surviving values and their order are unchanged.
        """
        logger.debug("Filtering profiles")
        profiles = self.profiles
        sample_ids = self.sample_ids
        otu_ids = self.otu_ids

        if samples is not None:
            keep = set(samples)
            sample_ids = [s for s in sample_ids if s in keep]
            profiles = profiles.filter(pl.col("sample").is_in(sample_ids))
        if otus is not None:
            keep = set(otus)
            otu_ids = [o for o in otu_ids if o in keep]
            profiles = profiles.filter(pl.col("otu").is_in(otu_ids))

        return self._derive(profiles, sample_ids, otu_ids)

    def with_abundance(self, expr: pl.Expr) -> "AbundanceProfiles":
        """Return new profiles with ``abundance`` replaced by ``expr``."""
        profiles = self.profiles.with_columns(
            expr.cast(pl.Float64).alias("abundance")
        )
        return self._derive(profiles, self.sample_ids, self.otu_ids)

    def sample_sums(self) -> pl.DataFrame:
        """Total abundance per sample, in sample order."""
        sums = self.profiles.group_by("sample").agg(
            pl.col("abundance").sum().alias("total")
        )
        base = pl.DataFrame({"sample": self.sample_ids}, schema={"sample": pl.Utf8})
        totals = base.join(sums, on="sample", how="left").with_columns(
            pl.col("total").fill_null(0.0)
        )
        return order_by(totals, "sample", self.sample_ids)

    def otu_totals(self) -> pl.DataFrame:
        """Total abundance per OTU across all samples, in OTU order."""
        sums = self.profiles.group_by("otu").agg(
            pl.col("abundance").sum().alias("total")
        )
        base = pl.DataFrame({"otu": self.otu_ids}, schema={"otu": pl.Utf8})
        totals = base.join(sums, on="otu", how="left").with_columns(
            pl.col("total").fill_null(0.0)
        )
        return order_by(totals, "otu", self.otu_ids)

    def to_matrix(self) -> Tuple[np.ndarray, List[str], List[str]]:
        """Dense samples x OTUs matrix.

        Returns:
            Tuple of (matrix, sample_ids, otu_ids) with rows and columns in
            the stored order
        """
        if not self.sample_ids or not self.otu_ids:
            return (
                np.zeros((len(self.sample_ids), len(self.otu_ids))),
                list(self.sample_ids),
                list(self.otu_ids),
            )

        wide = self.profiles.pivot(
            on="otu", index="sample", values="abundance"
        )
        for otu in self.otu_ids:
            if otu not in wide.columns:
                wide = wide.with_columns(pl.lit(0.0).alias(otu))

        matrix = (
            order_by(wide, "sample", self.sample_ids)
            .select(self.otu_ids)
            .fill_null(0.0)
            .to_numpy()
        )
        return matrix, list(self.sample_ids), list(self.otu_ids)

