"""Shared fixtures: small hand-made datasets with known diversity values."""

import numpy as np
import pandas as pd
import pytest

from diversity_16s.amplicon_data.dataset import build


@pytest.fixture
def abundance():
    # Taxon totals 50, 30, 19, 1 out of 100
    return pd.DataFrame(
        [[20, 10, 6, 0],
         [15, 10, 7, 1],
         [15, 10, 6, 0]],
        index=['S1', 'S2', 'S3'],
        columns=['T1', 'T2', 'T3', 'T4']
    )


@pytest.fixture
def taxonomy():
    return pd.DataFrame(
        {
            'Domain': ['Bacteria', 'Bacteria', 'Bacteria', np.nan],
            'Phylum': ['Firmicutes', 'Proteobacteria', 'Cyanobacteria', np.nan],
            'Class': ['Clostridia', 'Alphaproteobacteria', 'Cyanobacteriia', np.nan],
            'Order': ['Lachnospirales', 'Rickettsiales', 'Chloroplast', np.nan],
            'Family': ['Lachnospiraceae', 'Mitochondria', None, np.nan],
            'Genus': ['Blautia', None, None, np.nan],
            'Species': [None, None, None, np.nan],
        },
        index=['T1', 'T2', 'T3', 'T4']
    )


@pytest.fixture
def metadata():
    return pd.DataFrame(
        {
            '#sampleid': ['S1', 'S2', 'S3'],
            'body.site': ['gut', 'gut', 'tongue'],
            'subject': ['subject-1', 'subject-2', 'subject-1'],
        }
    )


@pytest.fixture
def dataset(abundance, taxonomy, metadata):
    return build(abundance, taxonomy, metadata, meta_id_col='#sampleid')


def make_grouped_dataset(
    n_per_group: int = 6,
    n_taxa: int = 12,
    seed: int = 0,
    spread=(1.0, 1.0, 1.0)
):
    """Three body sites with distinct community profiles.

    ``spread`` scales the within-group noise of each site.
    """
    rng = np.random.default_rng(seed)
    sites = ['gut', 'skin', 'tongue']
    profiles = [
        np.linspace(40, 2, n_taxa),
        np.linspace(2, 40, n_taxa),
        np.r_[np.full(n_taxa // 2, 30.0), np.full(n_taxa - n_taxa // 2, 5.0)],
    ]
    rows, samples, labels, subjects = [], [], [], []
    for site, profile, scale in zip(sites, profiles, spread):
        for i in range(n_per_group):
            noise = rng.lognormal(mean=0.0, sigma=0.3 * scale, size=n_taxa)
            rows.append(rng.poisson(profile * noise) + 1)
            samples.append(f"{site}-{i + 1}")
            labels.append(site)
            subjects.append(f"subject-{i % 3 + 1}")

    abundance = pd.DataFrame(
        rows, index=samples, columns=[f"taxon-{j + 1}" for j in range(n_taxa)]
    )
    taxonomy = pd.DataFrame(
        {'Domain': ['Bacteria'] * n_taxa, 'Phylum': ['Firmicutes'] * n_taxa},
        index=abundance.columns
    )
    metadata = pd.DataFrame(
        {'body.site': labels, 'subject': subjects}, index=samples
    )
    return build(abundance, taxonomy, metadata)


@pytest.fixture
def grouped_dataset():
    return make_grouped_dataset()


@pytest.fixture
def dataset_factory():
    return make_grouped_dataset
