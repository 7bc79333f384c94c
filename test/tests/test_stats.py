"""Tests for alpha and beta diversity statistics."""

import numpy as np
import polars as pl
import pytest

from otu_ecology.errors import DivideByZeroError, EmptyResultError
from otu_ecology.stats import alpha, beta


@pytest.fixture
def richness(filtered_experiment):
    return alpha.richness_table(filtered_experiment)


@pytest.fixture
def t2_relative(filtered_experiment):
    return filtered_experiment.subset_samples("timepoint", ["T2"]).to_relative()


class TestEstimateRichness:
    """Test alpha diversity estimates."""

    def test_measures(self, small_dataset):
        table = alpha.estimate_richness(small_dataset)

        assert table.columns == ["sample", *alpha.ALPHA_MEASURES]
        assert table["sample"].to_list() == ["A", "B", "C"]
        assert table["observed"].to_list() == [2.0, 1.0, 3.0]

    def test_shannon_natural_log(self, small_dataset):
        table = alpha.estimate_richness(small_dataset, ["shannon"])
        p = np.array([10, 5]) / 15

        assert table["shannon"][0] == pytest.approx(-(p * np.log(p)).sum())
        assert table["shannon"][1] == pytest.approx(0.0)

    def test_rejects_relative_abundances(self, small_dataset):
        with pytest.raises(ValueError, match="raw counts"):
            alpha.estimate_richness(small_dataset.to_relative(), ["shannon"])

    def test_unknown_measure(self, small_dataset):
        with pytest.raises(ValueError, match="Unknown alpha"):
            alpha.estimate_richness(small_dataset, ["faith_pd"])

    def test_richness_table_has_metadata(self, richness):
        assert {"timepoint", "treatment", "shannon"} <= set(richness.columns)
        assert richness.height == 18


class TestGroupTests:
    """Test normality, ANOVA and Tukey HSD."""

    def test_normality(self, richness):
        result = alpha.normality(richness["shannon"].to_list())

        assert 0 < result["statistic"] <= 1
        assert 0 <= result["p_value"] <= 1

    def test_normality_too_few(self):
        with pytest.raises(EmptyResultError):
            alpha.normality([1.0, 2.0])

    def test_two_way_anova(self, richness):
        table = alpha.anova(richness, "shannon", ["timepoint", "treatment"])

        assert table["term"].to_list() == ["timepoint", "treatment", "Residual"]
        assert table["df"].to_list() == [2.0, 1.0, 14.0]
        assert table["p_value"][2] is None

    def test_treatment_effect_detected(self, richness):
        """Rotifer samples are dominated by one OTU, so Shannon drops."""
        table = alpha.anova(richness, "shannon", ["treatment"])

        assert table["p_value"][0] < 0.05

    def test_anova_single_group(self, richness):
        t0 = richness.filter(pl.col("timepoint").cast(pl.Utf8) == "T0")

        with pytest.raises(EmptyResultError) as excinfo:
            alpha.anova(t0, "shannon", ["timepoint"])
        assert excinfo.value.identifiers == ["timepoint"]

    def test_tukey_hsd(self, richness):
        table = alpha.tukey_hsd(richness, "shannon", "timepoint")

        assert table.height == 3
        assert list(zip(table["group1"], table["group2"])) == [
            ("T0", "T1"), ("T0", "T2"), ("T1", "T2")
        ]
        assert table.schema["reject"] == pl.Boolean


class TestOrdination:
    """Test distances and PCoA."""

    def test_distance(self, t2_relative):
        dm = beta.distance(t2_relative)

        assert list(dm.ids) == t2_relative.sample_ids
        assert np.all(dm.data >= 0) and np.all(dm.data <= 1)

    def test_distance_too_few_samples(self, small_dataset):
        with pytest.raises(EmptyResultError):
            beta.distance(small_dataset.subset_samples("timepoint", ["T1"]))

    def test_ordination_frame(self, t2_relative):
        ordination = beta.ordinate(beta.distance(t2_relative))
        frame = beta.ordination_frame(ordination, t2_relative)

        assert frame.columns[:3] == ["sample", "PC1", "PC2"]
        assert "treatment" in frame.columns
        assert frame.height == 6

    def test_scree(self, t2_relative):
        scree = beta.scree(beta.ordinate(beta.distance(t2_relative)))

        assert scree["axis"][0] == "PC1"
        assert scree["proportion_explained"].sum() == pytest.approx(1.0)


class TestPermanova:
    """Test the permutational MANOVA wrapper."""

    def test_result(self, t2_relative):
        dm = beta.distance(t2_relative)
        result = beta.permanova(dm, t2_relative, "treatment", permutations=99, seed=1)

        assert result["sample_size"] == 6
        assert result["n_groups"] == 2
        assert 0 < result["r_squared"] < 1
        assert 0 < result["p_value"] <= 1

    def test_seed_reproducible(self, t2_relative):
        dm = beta.distance(t2_relative)
        first = beta.permanova(dm, t2_relative, permutations=99, seed=3)
        second = beta.permanova(dm, t2_relative, permutations=99, seed=3)

        assert first["p_value"] == second["p_value"]

    def test_single_group(self, t2_relative):
        control = t2_relative.subset_samples("treatment", ["Control"])

        with pytest.raises(EmptyResultError, match="PERMANOVA"):
            beta.permanova(beta.distance(control), control)

    def test_singleton_groups(self, small_dataset):
        relative = small_dataset.remove_samples(["B"]).to_relative()

        with pytest.raises(EmptyResultError, match="replicates"):
            beta.permanova(beta.distance(relative), relative)


class TestSimper:
    """Test the similarity percentage decomposition."""

    def test_contributions_sum_to_bray_curtis(self, t2_relative):
        """Per-OTU averages add up to the mean between-group dissimilarity."""
        table = beta.simper(t2_relative, "treatment")
        dm = beta.distance(t2_relative)
        labels = t2_relative.sample_data()["treatment"].cast(pl.Utf8).to_list()
        between = [
            dm[a, b]
            for a, la in zip(dm.ids, labels)
            for b, lb in zip(dm.ids, labels)
            if la == "Control" and lb == "Rotifers"
        ]

        assert table["comparison"].unique().to_list() == ["Control_Rotifers"]
        assert table["average"].sum() == pytest.approx(np.mean(between))
        assert table["cumsum"][-1] == pytest.approx(1.0)

    def test_ordered_by_contribution(self, t2_relative):
        table = beta.simper(t2_relative, "treatment")

        averages = table["average"].to_list()
        assert averages == sorted(averages, reverse=True)
        assert table["otu"][0] == "Zotu1"

    def test_permutation_p_values(self, t2_relative):
        table = beta.simper(t2_relative, "treatment", permutations=19, seed=0)

        p = table["p_value"].to_numpy()
        assert np.all((p > 0) & (p <= 1))

    def test_no_permutations_gives_null_p(self, t2_relative):
        table = beta.simper(t2_relative, "treatment")

        assert table["p_value"].null_count() == table.height

    def test_single_group(self, t2_relative):
        control = t2_relative.subset_samples("treatment", ["Control"])

        with pytest.raises(EmptyResultError):
            beta.simper(control, "treatment")

    def test_zero_total_sample(self, small_dataset):
        pruned = small_dataset.prune_otus(["Zotu2"])

        with pytest.raises(DivideByZeroError) as excinfo:
            beta.simper(pruned, "treatment")
        assert excinfo.value.identifiers == ["A", "B"]
