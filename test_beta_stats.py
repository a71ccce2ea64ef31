"""PERMANOVA and PERMDISP on dissimilarity matrices."""

import numpy as np
import pandas as pd
import pytest
from scipy.spatial.distance import pdist, squareform
from scipy.stats import f_oneway
from skbio.stats.distance import DistanceMatrix
from skbio.stats.distance import permanova as skbio_permanova

from diversity_16s.amplicon_data.dataset import build
from diversity_16s.diversity.beta import DistanceResult, compute_distance
from diversity_16s.errors import (
    InsufficientGroupsError, InsufficientSamplesError, StatisticalTestError
)
from diversity_16s.stats.beta_diversity import distances_to_centroids, permanova, permdisp
from diversity_16s.stats.utils import PAIRWISE_COLUMNS


@pytest.fixture
def distance(grouped_dataset):
    return compute_distance(grouped_dataset)


@pytest.fixture
def sites(grouped_dataset):
    return grouped_dataset.metadata['body.site']


def test_permanova_statistic_matches_skbio(distance, sites):
    result = permanova(distance, sites, permutations=0)
    reference = skbio_permanova(
        distance.matrix, sites.loc[distance.ids].tolist(), permutations=0
    )
    assert result.statistic == pytest.approx(reference['test statistic'])
    assert np.isnan(result.p_value)


def test_permanova_separated_groups(distance, sites):
    result = permanova(distance, sites, permutations=199, seed=4)
    assert result.test == 'PERMANOVA'
    assert result.group_column == 'body.site'
    assert result.p_value < 0.05
    assert result.p_value >= 1 / 200
    assert 0 < result.effect_size < 1

    table = result.details['table']
    assert table.index.tolist() == ['body.site', 'Residual', 'Total']
    assert table['Df'].tolist() == [2, 15, 17]
    assert table.loc['body.site', 'SumOfSqs'] + table.loc['Residual', 'SumOfSqs'] == \
        pytest.approx(table.loc['Total', 'SumOfSqs'])
    assert table.loc['body.site', 'R2'] == pytest.approx(result.effect_size)
    assert result.details['group_sizes'] == {'gut': 6, 'skin': 6, 'tongue': 6}
    assert result.details['method'] == 'braycurtis'


def test_permanova_is_reproducible_across_workers(distance, sites):
    serial = permanova(distance, sites, permutations=250, seed=9, n_jobs=1)
    threaded = permanova(distance, sites, permutations=250, seed=9, n_jobs=3)
    assert serial.p_value == threaded.p_value
    assert serial.statistic == threaded.statistic


def test_permanova_pairwise(distance, sites):
    result = permanova(distance, sites, permutations=99, seed=0, pairwise=True)
    pairwise = result.pairwise
    assert pairwise.columns.tolist() == PAIRWISE_COLUMNS
    assert list(zip(pairwise['group1'], pairwise['group2'])) == [
        ('gut', 'skin'), ('gut', 'tongue'), ('skin', 'tongue')
    ]
    assert (pairwise['p_adj'] >= pairwise['p_value']).all()
    assert (pairwise['p_adj'] <= 1).all()


def test_permanova_with_strata(grouped_dataset, distance, sites):
    strata = grouped_dataset.metadata['subject']
    result = permanova(distance, sites, permutations=99, seed=1, strata=strata)
    assert result.details['strata'] == 'subject'
    assert 0 < result.p_value <= 1


def test_permanova_drops_unlabelled_samples(distance, sites):
    sites = sites.copy()
    sites.loc[['gut-1', 'skin-2']] = np.nan
    result = permanova(distance, sites, permutations=0)
    assert result.details['n_samples'] == 16


def test_permanova_single_group(distance, sites):
    with pytest.raises(InsufficientGroupsError):
        permanova(distance, pd.Series('gut', index=sites.index, name='body.site'))


def test_permanova_no_residual_degrees_of_freedom(distance, sites):
    keep = ['gut-1', 'skin-1', 'tongue-1']
    with pytest.raises(InsufficientSamplesError):
        permanova(distance.filter(keep), sites.loc[keep])


def test_permanova_all_distances_zero():
    ids = ['a1', 'a2', 'b1', 'b2']
    ds = build(
        pd.DataFrame([[3, 3]] * 4, index=ids, columns=['t1', 't2']),
        pd.DataFrame({'Domain': ['Bacteria'] * 2}, index=['t1', 't2']),
        pd.DataFrame({'group': ['a', 'a', 'b', 'b']}, index=ids)
    )
    with pytest.raises(StatisticalTestError):
        permanova(compute_distance(ds), ds.metadata['group'])


def test_distances_to_centroids_euclidean():
    rng = np.random.default_rng(2)
    points = rng.normal(size=(9, 3))
    codes = np.array([0, 0, 0, 1, 1, 1, 2, 2, 2])
    distance = DistanceResult(
        DistanceMatrix(squareform(pdist(points)), ids=[f"p{i}" for i in range(9)]),
        'euclidean'
    )
    centroids = np.vstack([points[codes == g].mean(axis=0) for g in range(3)])
    expected = np.linalg.norm(points - centroids[codes], axis=1)
    np.testing.assert_allclose(distances_to_centroids(distance, codes, 3), expected, atol=1e-8)


def test_permdisp_statistic_is_anova_on_distances(distance, sites):
    result = permdisp(distance, sites, permutations=0)
    z = result.details['distances']
    expected = f_oneway(*[z[sites.loc[z.index] == g] for g in ['gut', 'skin', 'tongue']])
    assert result.statistic == pytest.approx(expected.statistic)
    assert result.details['f_p_value'] == pytest.approx(expected.pvalue)
    assert result.details['table'].index.tolist() == ['Groups', 'Residuals']


def test_permdisp_detects_unequal_dispersion(dataset_factory):
    ds = dataset_factory(n_per_group=8, spread=(1.0, 1.0, 4.0))
    result = permdisp(
        compute_distance(ds), ds.metadata['body.site'], permutations=199, seed=3,
        pairwise=True
    )
    dispersion = result.details['group_dispersion']
    assert dispersion['tongue'] > dispersion['gut']
    assert dispersion['tongue'] > dispersion['skin']
    assert result.pairwise.shape == (3, 5)
    assert 1 / 200 <= result.p_value <= 1


def test_permdisp_is_reproducible(distance, sites):
    a = permdisp(distance, sites, permutations=150, seed=8, n_jobs=1, pairwise=True)
    b = permdisp(distance, sites, permutations=150, seed=8, n_jobs=2, pairwise=True)
    assert a.p_value == b.p_value
    pd.testing.assert_frame_equal(a.pairwise, b.pairwise)
