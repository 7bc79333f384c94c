"""Integration tests for end-to-end analysis runs."""

import pytest

from otu_ecology.__main__ import main
from otu_ecology.errors import JoinError
from otu_ecology.pipeline import apply_filters, load_dataset, run_analysis


@pytest.mark.integration
class TestRunAnalysis:
    """Test the complete analysis on the experiment fixture."""

    def test_full_run(self, experiment_config, tmp_path):
        """Every stage produces its results and figures."""
        results = run_analysis(experiment_config)

        assert results.dataset.n_samples == 18
        assert results.anova["term"].to_list() == ["timepoint", "treatment", "Residual"]
        assert set(results.tukey) == {"timepoint", "treatment"}
        assert results.subset_anova.height == 2
        assert results.permanova["sample_size"] == 6
        assert results.simper["otu"][0] == "Zotu1"

        top_orders = results.top_taxa["order"].unique(maintain_order=True).to_list()
        assert len(top_orders) == 4
        assert top_orders[-1] == "Other"

        figures = tmp_path / "figures"
        for name in ["richness.png", "barplot_family.png", "barplot_top3_order.png",
                     "pcoa_scree.png", "pcoa.png"]:
            assert (figures / name).exists()
        assert set(results.figures) == {"richness", "barplot", "barplot_top", "scree", "ordination"}

    def test_load_and_filter(self, experiment_config):
        dataset = apply_filters(load_dataset(experiment_config), experiment_config)

        assert dataset.otu_ids == ["Zotu1", "Zotu2", "Zotu3", "Zotu4", "Zotu5", "Zotu6"]
        assert len(dataset.history) == 5

    def test_failing_stage_is_logged(self, experiment_config, tmp_path, caplog):
        """A taxonomy table missing an OTU stops the run at assembly."""
        taxonomy = tmp_path / "hetero_taxonomy.txt"
        lines = taxonomy.read_text().splitlines()
        taxonomy.write_text("\n".join(lines[:-1]) + "\n")

        with pytest.raises(JoinError) as excinfo:
            run_analysis(experiment_config)
        assert excinfo.value.identifiers == ["Zotu10"]
        assert "Stage 'load' failed" in caplog.text


@pytest.mark.integration
class TestCommandLine:
    def test_main_success(self, experiment_config):
        assert main([str(experiment_config.config_path)]) == 0

    def test_main_failure_exit_code(self, experiment_config, tmp_path):
        (tmp_path / "hetero_data.txt").write_text("sample\ttimepoint\ttreatment\nS1\tT0\n")

        assert main([str(experiment_config.config_path)]) == 1

    def test_main_invalid_encoding_exit_code(self, experiment_config, tmp_path):
        (tmp_path / "hetero_taxonomy.txt").write_bytes(b"otu\tkingdom\nZotu1\tBact\xe9ria\n")

        assert main([str(experiment_config.config_path)]) == 1
