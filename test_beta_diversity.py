"""Between-sample dissimilarities."""

import numpy as np
import pandas as pd
import pytest
from scipy.spatial.distance import pdist, squareform

from diversity_16s.amplicon_data.dataset import build, subset
from diversity_16s.diversity.beta import (
    DISTANCE_METHODS, compute_distance, register_distance_method
)
from diversity_16s.errors import DegenerateSampleError


def make_dataset(rows, ids=None):
    ids = ids or [f"S{i + 1}" for i in range(len(rows))]
    taxa = [f"T{j + 1}" for j in range(len(rows[0]))]
    return build(
        pd.DataFrame(rows, index=ids, columns=taxa),
        pd.DataFrame({'Domain': ['Bacteria'] * len(taxa)}, index=taxa),
        pd.DataFrame({'site': ['gut'] * len(ids)}, index=ids)
    )


def test_identical_profiles_have_zero_distance():
    result = compute_distance(make_dataset([[5, 5, 5, 5], [5, 5, 5, 5]]))
    assert result.data[0, 1] == 0.0
    assert result.method == 'braycurtis'


def test_disjoint_profiles_have_unit_distance():
    result = compute_distance(make_dataset([[3, 7, 0, 0], [0, 0, 1, 9]]))
    assert result.data[0, 1] == pytest.approx(1.0)


def test_braycurtis_matches_scipy(grouped_dataset):
    result = compute_distance(grouped_dataset)
    expected = squareform(pdist(grouped_dataset.table.to_numpy(float), metric='braycurtis'))
    np.testing.assert_allclose(result.data, expected)

    assert result.ids == grouped_dataset.sample_ids
    np.testing.assert_array_equal(result.data, result.data.T)
    assert np.all(np.diag(result.data) == 0)
    assert result.data.min() >= 0 and result.data.max() <= 1


def test_zero_total_sample_is_rejected():
    with pytest.raises(DegenerateSampleError) as excinfo:
        compute_distance(make_dataset([[1, 2, 3], [0, 0, 0], [4, 0, 1]]))
    assert excinfo.value.samples == ['S2']


def test_too_few_samples(grouped_dataset):
    single = subset(grouped_dataset, samples=grouped_dataset.sample_ids[:1])
    with pytest.raises(ValueError):
        compute_distance(single)


def test_unknown_method(dataset):
    with pytest.raises(ValueError, match='unifrac'):
        compute_distance(dataset, method='unifrac')


def test_register_distance_method(dataset):
    def chebyshev(counts):
        return squareform(pdist(counts.astype(float), metric='chebyshev'))

    register_distance_method('chebyshev', chebyshev)
    try:
        result = compute_distance(dataset, method='chebyshev', seed=7)
        assert result.method == 'chebyshev'
        assert result.seed == 7
        assert result.data[0, 1] == 5.0
    finally:
        DISTANCE_METHODS.pop('chebyshev')


def test_distance_result_frame_and_filter(grouped_dataset):
    result = compute_distance(grouped_dataset)
    frame = result.to_frame()
    assert frame.shape == (18, 18)
    assert frame.index.tolist() == grouped_dataset.sample_ids

    sub = result.filter(['gut-2', 'skin-1'])
    assert sub.ids == ['gut-2', 'skin-1']
    assert sub.data[0, 1] == pytest.approx(frame.loc['gut-2', 'skin-1'])
    assert sub.method == result.method


def test_seed_is_carried_as_metadata(grouped_dataset):
    seeded = compute_distance(grouped_dataset, seed=42)
    unseeded = compute_distance(grouped_dataset)
    np.testing.assert_array_equal(seeded.data, unseeded.data)
    assert seeded.seed == 42
    assert seeded.filter(['gut-1', 'skin-1']).seed == 42
