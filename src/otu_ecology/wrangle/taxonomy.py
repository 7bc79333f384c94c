"""Per-OTU lineage lookup table."""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import polars as pl

from otu_ecology.errors import ParseError
from otu_ecology.utils.tables import load_table, order_by
from otu_ecology.utils.taxonomy import TaxonomicRanks
from otu_ecology.wrangle.metadata import Fields

logger = logging.getLogger(__name__)


class TaxonomyFields(Fields):
    """Enumeration of taxonomy table fields with validation properties."""

    OTU = (
        "otu",
        pl.Utf8,
        True,
        "OTU identifier",
        ["XOTUID", "X.OTUID", "#OTU ID", "#OTUID", "OTUID", "otu_id", "OTU"],
    )
    KINGDOM = ("kingdom", pl.Utf8, True, "Kingdom", ["Kingdom", "domain"])
    PHYLUM = ("phylum", pl.Utf8, True, "Phylum", ["Phylum"])
    CLASS = ("class", pl.Utf8, True, "Class", ["Class"])
    ORDER = ("order", pl.Utf8, True, "Order", ["Order"])
    FAMILY = ("family", pl.Utf8, True, "Family", ["Family"])
    GENUS = ("genus", pl.Utf8, True, "Genus", ["Genus"])
    SPECIES = ("species", pl.Utf8, True, "Species", ["Species"])


class TaxonomyTable:
    """OTU lineage container.

    One row per OTU with an ``otu`` column followed by rank columns from
    kingdom down. Collapsed tables keep only the ranks down to the collapse
    level, listed in ``ranks``.

    Attributes:
        taxonomy: Polars DataFrame keyed by ``otu``
        ranks: Rank column names present, broadest first
    """

    def __init__(self, taxonomy: Union[Path, str, pl.DataFrame, pl.LazyFrame]):
        """Initialize TaxonomyTable with validation and standardization.

        Args:
            taxonomy: Path to taxonomy table or a DataFrame

        Raises:
            ParseError: If columns are missing or OTU identifiers repeat
        """
        if isinstance(taxonomy, pl.LazyFrame):
            df = taxonomy.collect()
        elif isinstance(taxonomy, pl.DataFrame):
            df = taxonomy
        elif isinstance(taxonomy, (str, Path)):
            df = load_table(taxonomy)
        else:
            raise ValueError(f"Unsupported data source type: {type(taxonomy)}")

        df = TaxonomyFields.standardize(df)
        ranks = TaxonomicRanks.columns()
        df = df.select(
            [pl.col(field.column_name).cast(field.dtype) for field in TaxonomyFields]
        )

        if df["otu"].null_count():
            raise ParseError("Taxonomy table has rows without an identifier")

        duplicated = (
            df.filter(pl.col("otu").is_duplicated())["otu"]
            .unique(maintain_order=True)
            .to_list()
        )
        if duplicated:
            raise ParseError("Duplicate OTU identifiers in taxonomy", duplicated)

        self.taxonomy = df
        self.ranks = ranks

    @classmethod
    def scan(cls, taxonomy: Union[Path, str]) -> "TaxonomyTable":
        """Load a TaxonomyTable from a delimited file."""
        return cls(taxonomy)

    @classmethod
    def _from_frame(
        cls, df: pl.DataFrame, ranks: Optional[Sequence[str]] = None
    ) -> "TaxonomyTable":
        new_instance = cls.__new__(cls)
        new_instance.taxonomy = df
        new_instance.ranks = (
            list(ranks) if ranks is not None else [c for c in df.columns if c != "otu"]
        )
        return new_instance

    def get_otus(self) -> List[str]:
        """OTU identifiers in table order."""
        return self.taxonomy["otu"].to_list()

    def _filter_by_otu(self, otus: Sequence[str]) -> "TaxonomyTable":
        """Create new TaxonomyTable restricted to ``otus`` (order unchanged)."""
        logger.debug("Filtering taxonomy")
        filtered = self.taxonomy.filter(pl.col("otu").is_in(list(otus)))
        return TaxonomyTable._from_frame(filtered, self.ranks)

    def _reorder(self, otus: Sequence[str]) -> "TaxonomyTable":
        """Order rows to follow ``otus``."""
        return TaxonomyTable._from_frame(
            order_by(self.taxonomy, "otu", otus), self.ranks
        )

    def require_rank(self, rank: Union[str, TaxonomicRanks]) -> str:
        """Column name of ``rank``, checking that it is present."""
        column = TaxonomicRanks.coerce(rank).column
        if column not in self.ranks:
            raise ValueError(
                f"Rank '{column}' not available (table has {self.ranks})"
            )
        return column

    def matching(self, rank: Union[str, TaxonomicRanks], values: Sequence[str]) -> List[str]:
        """OTUs whose value at ``rank`` is in ``values``. Nulls never match."""
        column = self.require_rank(rank)
        return self.taxonomy.filter(pl.col(column).is_in(list(values)))[
            "otu"
        ].to_list()
