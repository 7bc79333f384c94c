"""Shared pytest fixtures for otu_ecology tests."""

import logging

import matplotlib

matplotlib.use("Agg")

import numpy as np
import polars as pl
import pytest

from otu_ecology.core.config import Config
from otu_ecology.wrangle.dataset import CommunityDataset
from otu_ecology.wrangle.metadata import SampleMetadata
from otu_ecology.wrangle.profiles import AbundanceProfiles
from otu_ecology.wrangle.taxonomy import TaxonomyTable

# Configure debug logging for tests
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

RANKS = ["kingdom", "phylum", "class", "order", "family", "genus", "species"]


def write_tsv(path, columns):
    """Write a dict of columns as a tab-delimited file with NA for None."""
    names = list(columns)
    n_rows = len(columns[names[0]])
    lines = ["\t".join(names)]
    for i in range(n_rows):
        lines.append(
            "\t".join("NA" if columns[c][i] is None else str(columns[c][i]) for c in names)
        )
    path.write_text("\n".join(lines) + "\n")
    return path


# Data fixtures - small synthetic datasets


@pytest.fixture
def small_metadata():
    """Three samples: two T0/Control replicates and one T1/Rotifers."""
    return SampleMetadata(
        pl.DataFrame(
            {
                "sample": ["A", "B", "C"],
                "timepoint": ["T0", "T0", "T1"],
                "treatment": ["Control", "Control", "Rotifers"],
            }
        )
    )


@pytest.fixture
def small_profiles():
    """Counts for samples A, B, C over OTUs Zotu1..Zotu3."""
    return AbundanceProfiles.from_matrix(
        np.array([[10, 0, 5], [0, 0, 15], [4, 4, 2]]),
        ["A", "B", "C"],
        ["Zotu1", "Zotu2", "Zotu3"],
    )


@pytest.fixture
def small_taxonomy_data():
    """Lineages for Zotu1..Zotu3."""
    return {
        "otu": ["Zotu1", "Zotu2", "Zotu3"],
        "kingdom": ["Bacteria", "Bacteria", "Bacteria"],
        "phylum": ["p_Proteobacteria", "p_Proteobacteria", "p_Bacteroidota"],
        "class": ["c_Alpha", "c_Gamma", "c_Bacteroidia"],
        "order": ["o_Rhizobiales", "o_Enterobacterales", "o_Flavobacteriales"],
        "family": ["f_Rhizobiaceae", "f_Enterobacteriaceae", "f_Flavobacteriaceae"],
        "genus": ["g_Rhizobium", None, "g_Flavobacterium"],
        "species": [None, None, None],
    }


@pytest.fixture
def small_taxonomy(small_taxonomy_data):
    return TaxonomyTable(pl.DataFrame(small_taxonomy_data))


@pytest.fixture
def small_dataset(small_metadata, small_profiles, small_taxonomy):
    """Three-sample, three-OTU dataset."""
    return CommunityDataset(small_metadata, small_profiles, small_taxonomy)


@pytest.fixture
def mixed_taxonomy_data():
    """Lineages covering organelles, archaea and unassigned ranks."""
    return {
        "otu": ["Zotu1", "Zotu2", "Zotu3", "Zotu4", "Zotu5", "Zotu6", "Zotu7"],
        "kingdom": ["Bacteria", "Bacteria", "Bacteria", "Archaea", "Bacteria", None, "Bacteria"],
        "phylum": ["p_Proteo", "p_Cyano", "p_Proteo", "p_Thaum", "p_Bactero", None, "p_Proteo"],
        "class": ["c_Alpha", "c_Cyanobacteriia", "c_Alpha", "c_Nitroso", "c_Bacteroidia", None, "c_Gamma"],
        "order": ["o_Rhizobiales", "o_Chloroplast", "o_Rickettsiales", "o_Nitroso", "o_Flavo", None, None],
        "family": ["f_Rhizobiaceae", None, "f_Mitochondria", "f_Nitroso", "f_Flavo", None, None],
        "genus": [None] * 7,
        "species": [None] * 7,
    }


@pytest.fixture
def mixed_dataset(mixed_taxonomy_data):
    """Two samples over seven OTUs; Zotu7 never occurs."""
    metadata = SampleMetadata(
        pl.DataFrame(
            {
                "sample": ["S1", "S2"],
                "timepoint": ["T0", "T1"],
                "treatment": ["Control", "BMC"],
            }
        )
    )
    profiles = AbundanceProfiles.from_matrix(
        np.array([[5, 3, 2, 1, 4, 6, 0], [1, 0, 7, 2, 3, 1, 0]]),
        ["S1", "S2"],
        mixed_taxonomy_data["otu"],
    )
    return CommunityDataset(
        metadata, profiles, TaxonomyTable(pl.DataFrame(mixed_taxonomy_data))
    )


# Experiment-shaped fixtures written to disk


@pytest.fixture
def experiment_data():
    """Sample table and taxonomy shaped like the heterotrophy experiment.

    Three timepoints x two treatments x three replicates, one blank, and ten
    OTUs including an archaeon, a chloroplast, a mitochondrion and an OTU
    that is only present in the blank.
    """
    rng = np.random.default_rng(7)
    timepoints = ["T0", "T1", "T2"]
    treatments = ["Control", "Rotifers"]
    samples, tps, trts = [], [], []
    for tp in timepoints:
        for trt in treatments:
            for rep in range(1, 4):
                samples.append(f"{tp}_{trt}_{rep}")
                tps.append(tp)
                trts.append(trt)
    samples.append("Blank_S142")
    tps.append("none")
    trts.append("none")

    n_otus = 10
    counts = rng.integers(1, 60, size=(len(samples), n_otus))
    # Rotifer samples are dominated by Zotu1
    for i, trt in enumerate(trts):
        if trt == "Rotifers":
            counts[i, 0] += 200
    counts[:, 9] = 0
    counts[-1, :] = 0
    counts[-1, 9] = 30

    table = {"X.OTUID": samples, "timepoint": tps, "treatment": trts}
    for j in range(n_otus):
        table[f"Zotu{j + 1}"] = counts[:, j].tolist()

    taxonomy = {
        "XOTUID": [f"Zotu{j + 1}" for j in range(n_otus)],
        "kingdom": ["Bacteria"] * 6 + ["Archaea", "Bacteria", "Bacteria", "Bacteria"],
        "phylum": ["p_Proteo", "p_Proteo", "p_Bactero", "p_Bactero", "p_Actino",
                   "p_Firmi", "p_Thaum", "p_Cyano", "p_Proteo", "p_Proteo"],
        "class": ["c_Alpha", "c_Gamma", "c_Bacteroidia", "c_Bacteroidia", "c_Actino",
                  "c_Bacilli", "c_Nitroso", "c_Cyano", "c_Alpha", "c_Gamma"],
        "order": ["o_Rhizobiales", "o_Pseudomonadales", "o_Flavo", "o_Flavo", "o_Micrococcales",
                  "o_Bacillales", "o_Nitroso", "o_Chloroplast", "o_Rickettsiales", "o_Pseudomonadales"],
        "family": ["f_Rhizobiaceae", "f_Pseudomonadaceae", "f_Flavo", "f_Weeksellaceae", None,
                   "f_Bacillaceae", "f_Nitroso", None, "f_Mitochondria", "f_Moraxellaceae"],
        "genus": [None] * n_otus,
        "species": [None] * n_otus,
    }
    return table, taxonomy


@pytest.fixture
def experiment_files(experiment_data, tmp_path):
    """Tab-delimited experiment tables."""
    table, taxonomy = experiment_data
    samples_path = write_tsv(tmp_path / "hetero_data.txt", table)
    taxonomy_path = write_tsv(tmp_path / "hetero_taxonomy.txt", taxonomy)
    return samples_path, taxonomy_path


@pytest.fixture
def experiment_dataset(experiment_files):
    samples_path, taxonomy_path = experiment_files
    return CommunityDataset.scan(samples_path, taxonomy_path)


@pytest.fixture
def filtered_experiment(experiment_dataset):
    """Experiment after the standard filter sequence."""
    return (
        experiment_dataset.remove_samples(["Blank_S142"])
        .keep_kingdom("Bacteria")
        .drop_zero_otus()
        .drop_empty_samples()
        .exclude_lineages({"order": ["o_Chloroplast"], "family": ["f_Mitochondria"]})
    )


@pytest.fixture
def experiment_config(experiment_files, tmp_path):
    """Config for a fast run over the experiment tables."""
    samples_path, taxonomy_path = experiment_files
    config_path = tmp_path / "analysis.yaml"
    config_path.write_text(
        "\n".join(
            [
                "input:",
                f"  samples: {samples_path.name}",
                f"  taxonomy: {taxonomy_path.name}",
                "aggregation:",
                "  top_n: 3",
                "statistics:",
                "  permutations: 99",
                "  simper_permutations: 9",
                "output:",
                "  directory: figures",
                "  dpi: 50",
                "  log_level: DEBUG",
            ]
        )
        + "\n"
    )
    return Config(config_path)
