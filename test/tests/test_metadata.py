"""Tests for SampleMetadata class."""

import polars as pl
import pytest

from otu_ecology.errors import ParseError
from otu_ecology.wrangle.metadata import (
    FACTOR_LEVELS,
    TIMEPOINTS,
    TREATMENTS,
    SampleFields,
    SampleMetadata,
)


@pytest.fixture
def metadata_frame():
    return pl.DataFrame(
        {
            "X.OTUID": ["S1", "S2", "S3", "S4"],
            "timepoint": ["T2", "T0", "T1", "none"],
            "treatment": ["BMC", "Control", "Rotifers", "none"],
            "Zotu1": [1, 2, 3, 4],
        }
    )


class TestSampleMetadataInitialization:
    """Test SampleMetadata initialization and validation."""

    def test_from_sample_table(self, metadata_frame):
        """Abundance columns are left out and identifiers standardized."""
        meta = SampleMetadata.from_sample_table(metadata_frame, "Zotu")

        assert meta.metadata.columns == ["sample", "timepoint", "treatment"]
        assert meta.get_samples() == ["S1", "S2", "S3", "S4"]

    def test_factors_are_enums(self, metadata_frame):
        meta = SampleMetadata.from_sample_table(metadata_frame, "Zotu")

        assert meta.metadata.schema["timepoint"] == pl.Enum(TIMEPOINTS)
        assert meta.metadata.schema["treatment"] == pl.Enum(TREATMENTS)

    def test_sort_follows_level_order(self, metadata_frame):
        """Sorting by timepoint uses declared order, not alphabetical."""
        meta = SampleMetadata.from_sample_table(metadata_frame, "Zotu")

        ordered = meta.metadata.sort("treatment")["treatment"].cast(pl.Utf8)
        assert ordered.to_list() == ["Control", "Rotifers", "BMC", "none"]

    def test_missing_factor_column(self):
        with pytest.raises(ParseError, match="treatment") as excinfo:
            SampleMetadata(pl.DataFrame({"sample": ["S1"], "timepoint": ["T0"]}))
        assert "Experimental treatment" in excinfo.value.identifiers[0]

    def test_duplicate_samples(self):
        df = pl.DataFrame(
            {
                "sample": ["S1", "S1"],
                "timepoint": ["T0", "T1"],
                "treatment": ["Control", "BMC"],
            }
        )

        with pytest.raises(ParseError) as excinfo:
            SampleMetadata(df)
        assert excinfo.value.identifiers == ["S1"]


class TestUnexpectedCategories:
    """Test handling of factor values outside the declared levels."""

    @pytest.fixture
    def unexpected_frame(self):
        return pl.DataFrame(
            {
                "sample": ["S1", "S2"],
                "timepoint": ["T0", "T9"],
                "treatment": ["Control", "Control"],
            }
        )

    def test_strict_rejects(self, unexpected_frame):
        with pytest.raises(ParseError) as excinfo:
            SampleMetadata(unexpected_frame)
        assert excinfo.value.identifiers == ["T9"]

    def test_lenient_sets_null(self, unexpected_frame, caplog):
        """Lenient mode keeps the sample with a null factor and warns."""
        meta = SampleMetadata(unexpected_frame, strict_categories=False)

        assert meta.metadata["timepoint"].cast(pl.Utf8).to_list() == ["T0", None]
        assert "T9" in caplog.text


class TestSampleMetadataQueries:
    """Test filtering and level lookups."""

    def test_filter(self, small_metadata):
        assert small_metadata.filter("timepoint", ["T0"]) == ["A", "B"]
        assert small_metadata.filter("treatment", ["BMC"]) == []

    def test_filter_unknown_column(self, small_metadata):
        with pytest.raises(ValueError, match="Unknown metadata column"):
            small_metadata.filter("site", ["x"])

    def test_levels(self, small_metadata):
        assert small_metadata.levels("timepoint") == TIMEPOINTS
        assert small_metadata.observed_levels("treatment") == ["Control", "Rotifers"]

    def test_factor_levels_follow_field_dtypes(self, small_metadata):
        assert FACTOR_LEVELS == {"timepoint": TIMEPOINTS, "treatment": TREATMENTS}
        assert small_metadata.metadata.schema["treatment"] == SampleFields.TREATMENT.dtype

    def test_filter_by_sample_keeps_order(self, small_metadata):
        filtered = small_metadata._filter_by_sample(["C", "A"])

        assert filtered.get_samples() == ["A", "C"]
