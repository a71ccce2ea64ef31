"""Relative abundance filtering of rare taxa."""

import numpy as np
import pandas as pd
import pytest

from diversity_16s.amplicon_data.dataset import build
from diversity_16s.utils.table_filtering import prune_rare_taxa, relative_abundance


def test_relative_abundance(dataset):
    shares = relative_abundance(dataset)
    np.testing.assert_allclose(shares.values, [0.5, 0.3, 0.19, 0.01])


def test_prune_keeps_taxa_above_threshold(dataset):
    pruned = prune_rare_taxa(dataset, 0.05)
    assert pruned.taxon_ids == ['T1', 'T2', 'T3']
    assert pruned.sample_ids == dataset.sample_ids
    assert pruned.taxonomy.index.tolist() == pruned.taxon_ids
    assert pruned.metadata.index.tolist() == pruned.sample_ids


def test_prune_threshold_is_strict(dataset):
    # T1 holds exactly half of the counts
    assert prune_rare_taxa(dataset, 0.5).taxon_ids == []
    assert prune_rare_taxa(dataset, 0.49).taxon_ids == ['T1']


def test_prune_bounds(abundance, taxonomy, metadata):
    abundance = abundance.assign(T5=0)
    taxonomy = pd.concat([taxonomy, pd.DataFrame({'Domain': ['Bacteria']}, index=['T5'])])
    ds = build(abundance, taxonomy, metadata, meta_id_col='#sampleid')

    assert prune_rare_taxa(ds, 0).taxon_ids == ['T1', 'T2', 'T3', 'T4']
    assert prune_rare_taxa(ds, 1).taxon_ids == []


@pytest.mark.parametrize('threshold', [-0.1, 1.5])
def test_prune_rejects_invalid_threshold(dataset, threshold):
    with pytest.raises(ValueError):
        prune_rare_taxa(dataset, threshold)


def test_prune_all_zero_matrix(abundance, taxonomy, metadata):
    ds = build(abundance * 0, taxonomy, metadata, meta_id_col='#sampleid')
    pruned = prune_rare_taxa(ds, 0)
    assert pruned.n_taxa == 0
    assert pruned.n_samples == 3
