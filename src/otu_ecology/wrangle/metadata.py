"""Per-sample metadata with fixed categorical factors."""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import polars as pl

from otu_ecology.errors import ParseError
from otu_ecology.utils.tables import load_table, order_by

logger = logging.getLogger(__name__)

TIMEPOINTS = ["T0", "T1", "T2", "none"]
TREATMENTS = ["Control", "Rotifers", "BMC", "BMC_rotifers", "none"]


class Fields(Enum):
    """Base class for field definitions with validation properties."""

    def __init__(
        self,
        column_name: str,
        dtype: Any,
        required: bool,
        description: str,
        alternatives: Optional[List[str]] = None,
    ):
        self.column_name = column_name
        self.dtype = dtype
        self.required = required
        self.description = description
        self.alternatives = alternatives or []
        self.all_names = [column_name] + self.alternatives

    def find_column_name(self, df: pl.DataFrame) -> Optional[str]:
        """Find the actual column name in the DataFrame from possible
        alternatives."""
        for name in self.all_names:
            if name in df.columns:
                return name
        return None

    @classmethod
    def standardize(cls, df: pl.DataFrame) -> pl.DataFrame:
        """Validate required fields and rename them to their standard names.

        Args:
            df: DataFrame to validate and standardize

        Returns:
            DataFrame with standardized column names

        Raises:
            ParseError: If a required field is missing
        """
        missing_required = []
        rename_mapping = {}

        for field in cls:
            actual_column = field.find_column_name(df)
            if actual_column:
                if actual_column != field.column_name:
                    rename_mapping[actual_column] = field.column_name
            elif field.required:
                missing_required.append(
                    f"{field.column_name}: {field.description} (tried: {field.all_names})"
                )

        if missing_required:
            raise ParseError("Missing required fields", missing_required)

        if rename_mapping:
            df = df.rename(rename_mapping)

        return df


class SampleFields(Fields):
    """Enumeration of sample metadata fields with validation properties."""

    # Format: (column_name, polars_dtype, is_required, description, alternative_names)
    SAMPLE = (
        "sample",
        pl.Utf8,
        True,
        "Unique sample identifier",
        ["XOTUID", "X.OTUID", "#OTU ID", "#SampleID", "sample_id", "SampleID"],
    )
    TIMEPOINT = (
        "timepoint",
        pl.Enum(TIMEPOINTS),
        True,
        "Sampling timepoint",
        ["time", "time_point"],
    )
    TREATMENT = (
        "treatment",
        pl.Enum(TREATMENTS),
        True,
        "Experimental treatment",
        ["Treatment", "condition"],
    )


# Categorical fields and their declared level order
FACTOR_LEVELS: Dict[str, List[str]] = {
    field.column_name: field.dtype.categories.to_list()
    for field in SampleFields
    if isinstance(field.dtype, pl.Enum)
}


class SampleMetadata:
    """Wide-form sample metadata container.

    One row per sample. ``timepoint`` and ``treatment`` are stored as polars
    ``Enum`` columns, so sorting follows their declared level order.

    Attributes:
        metadata: Polars DataFrame keyed by ``sample``
    """

    def __init__(
        self,
        metadata: Union[Path, str, pl.DataFrame, pl.LazyFrame],
        strict_categories: bool = True,
    ):
        """Initialize SampleMetadata with validation and standardization.

        Args:
            metadata: Path to a metadata table or a DataFrame
            strict_categories: Reject factor values outside the declared
                levels instead of logging them and setting them to null

        Raises:
            ParseError: If required columns are missing, sample identifiers
                are duplicated or null, or a factor value is unexpected
        """
        df = self._load_data(metadata)
        df = SampleFields.standardize(df)
        df = df.with_columns(pl.col("sample").cast(SampleFields.SAMPLE.dtype))
        self._check_identifiers(df)
        self.metadata = self._cast_factors(df, strict_categories)

    @classmethod
    def _from_frame(cls, df: pl.DataFrame) -> "SampleMetadata":
        """Wrap an already validated DataFrame."""
        new_instance = cls.__new__(cls)
        new_instance.metadata = df
        return new_instance

    @classmethod
    def from_sample_table(
        cls,
        df: pl.DataFrame,
        otu_prefix: str,
        strict_categories: bool = True,
    ) -> "SampleMetadata":
        """Extract the metadata columns from a combined sample table.

        Every column not starting with ``otu_prefix`` is metadata.
        """
        columns = [c for c in df.columns if not c.startswith(otu_prefix)]
        return cls(df.select(columns), strict_categories=strict_categories)

    @classmethod
    def scan(
        cls,
        metadata: Union[Path, str],
        strict_categories: bool = True,
    ) -> "SampleMetadata":
        """Load SampleMetadata from a delimited file.

        Args:
            metadata: Path to metadata table
            strict_categories: See ``__init__``

        Returns:
            SampleMetadata instance
        """
        return cls(metadata=metadata, strict_categories=strict_categories)

    def _load_data(
        self, data_source: Union[Path, str, pl.LazyFrame, pl.DataFrame]
    ) -> pl.DataFrame:
        """Load data from various sources.

        Args:
            data_source: Path to file, existing LazyFrame, or DataFrame

        Returns:
            DataFrame
        """
        if isinstance(data_source, pl.LazyFrame):
            return data_source.collect()
        elif isinstance(data_source, pl.DataFrame):
            return data_source
        elif isinstance(data_source, (str, Path)):
            return load_table(data_source)
        else:
            raise ValueError(
                f"Unsupported data source type: {type(data_source)}"
            )

    def _check_identifiers(self, df: pl.DataFrame) -> None:
        if df["sample"].null_count():
            raise ParseError("Sample table has rows without an identifier")

        duplicated = (
            df.filter(pl.col("sample").is_duplicated())["sample"]
            .unique(maintain_order=True)
            .to_list()
        )
        if duplicated:
            raise ParseError("Duplicate sample identifiers", duplicated)

    def _cast_factors(
        self, df: pl.DataFrame, strict_categories: bool
    ) -> pl.DataFrame:
        """Check factor values against their levels and cast to Enum."""
        for field in SampleFields:
            if not isinstance(field.dtype, pl.Enum):
                continue
            column = field.column_name
            levels = field.dtype.categories.to_list()
            values = df[column].cast(pl.Utf8)
            unexpected = sorted(
                set(values.drop_nulls().unique().to_list()) - set(levels)
            )
            if unexpected:
                if strict_categories:
                    raise ParseError(
                        f"Unexpected {column} values (expected one of {levels})",
                        unexpected,
                    )
                logger.warning(
                    f"Unexpected {column} values {unexpected} set to null"
                )

            df = df.with_columns(
                pl.when(pl.col(column).cast(pl.Utf8).is_in(levels))
                .then(pl.col(column).cast(pl.Utf8))
                .otherwise(pl.lit(None, dtype=pl.Utf8))
                .cast(field.dtype)
                .alias(column)
            )
        return df

    def _get_sample_list(self) -> List[str]:
        """Extract sample IDs in table order."""
        return self.metadata["sample"].to_list()

    def _filter_by_sample(self, samples: Sequence[str]) -> "SampleMetadata":
        """Create new SampleMetadata restricted to ``samples``.

        Row order is unchanged.
        """
        logger.debug("Filtering metadata")
        filtered = self.metadata.filter(pl.col("sample").is_in(list(samples)))
        return SampleMetadata._from_frame(filtered)

    def _reorder(self, samples: Sequence[str]) -> "SampleMetadata":
        """Order rows to follow ``samples``."""
        return SampleMetadata._from_frame(
            order_by(self.metadata, "sample", samples)
        )

    def get_samples(self) -> List[str]:
        """Get list of sample identifiers in table order."""
        return self._get_sample_list()

    def levels(self, column: str) -> List[str]:
        """Declared level order of a factor column."""
        if column not in FACTOR_LEVELS:
            raise ValueError(f"{column} is not a categorical factor")
        return list(FACTOR_LEVELS[column])

    def observed_levels(self, column: str) -> List[str]:
        """Levels of ``column`` that occur in the table, in level order."""
        present = set(self.metadata[column].drop_nulls().cast(pl.Utf8).to_list())
        return [level for level in self.levels(column) if level in present]

    def filter(self, column: str, values: Sequence[Any]) -> List[str]:
        """Sample identifiers whose ``column`` value is in ``values``."""
        if column not in self.metadata.columns:
            raise ValueError(f"Unknown metadata column: {column}")
        wanted = [str(v) for v in values]
        return (
            self.metadata.filter(pl.col(column).cast(pl.Utf8).is_in(wanted))[
                "sample"
            ].to_list()
        )
