"""Univariate hypothesis tests, p-value adjustment and the test suite runner."""

import numpy as np
import pandas as pd
import pytest
from scipy.stats import ttest_ind

from diversity_16s.errors import (
    GroupingError, InsufficientGroupsError, InsufficientSamplesError, StatisticalTestError
)
from diversity_16s.stats.suite import run_suite
from diversity_16s.stats.tests import (
    kruskal_wallis, mann_whitney, one_way_anova, pairwise_wilcoxon, shapiro_wilk,
    ttest, tukey_hsd
)
from diversity_16s.stats.utils import (
    PAIRWISE_COLUMNS, TestResult, grouping_codes, p_adjust, split_groups
)


def grouped(values, labels, name='site'):
    index = [f"s{i}" for i in range(len(values))]
    return (
        pd.Series(values, index=index, dtype=float),
        pd.Series(labels, index=index, name=name)
    )


@pytest.fixture
def two_groups():
    return grouped(
        [1.0, 2.0, 3.0, 2.5, 1.5, 6.0, 7.0, 8.0, 6.5, 7.5],
        ['a'] * 5 + ['b'] * 5
    )


@pytest.fixture
def three_groups():
    return grouped(
        [1.0, 1.2, 0.8, 1.1, 5.0, 5.3, 4.9, 5.1, 9.0, 9.4, 8.8, 9.1],
        ['x'] * 4 + ['y'] * 4 + ['z'] * 4
    )


def test_shapiro_wilk():
    result = shapiro_wilk(np.random.default_rng(0).normal(size=40), name='shannon')
    assert result.test == 'Shapiro-Wilk'
    assert 0 < result.statistic <= 1
    assert 0 <= result.p_value <= 1
    assert result.details == {'variable': 'shannon', 'n': 40}


def test_shapiro_wilk_ignores_nan_and_needs_three_values():
    with pytest.raises(InsufficientSamplesError):
        shapiro_wilk([1.0, np.nan, 2.0])


def test_ttest_matches_scipy(two_groups):
    values, labels = two_groups
    result = ttest(values, labels)
    expected = ttest_ind(values[:5], values[5:], equal_var=False)

    assert result.test == "Welch's t-test"
    assert result.statistic == pytest.approx(expected.statistic)
    assert result.p_value == pytest.approx(expected.pvalue)
    assert result.group_column == 'site'
    assert result.effect_size < 0
    assert result.details['groups'] == ['a', 'b']


def test_ttest_student_variant(two_groups):
    values, labels = two_groups
    assert ttest(values, labels, equal_var=True).test == 'Student t-test'


def test_ttest_rejects_more_than_two_groups(three_groups):
    with pytest.raises(GroupingError):
        ttest(*three_groups)


def test_ttest_needs_two_values_per_group():
    with pytest.raises(InsufficientSamplesError):
        ttest(*grouped([1.0, 2.0, 3.0], ['a', 'a', 'b']))


def test_mann_whitney_complete_separation():
    result = mann_whitney(*grouped([1, 2, 3, 4, 5, 6], ['a'] * 3 + ['b'] * 3))
    assert result.statistic == 0
    assert result.effect_size == pytest.approx(1.0)
    assert result.details['median_difference'] == -3.0


def test_kruskal_wallis(three_groups):
    result = kruskal_wallis(*three_groups)
    assert result.test == 'Kruskal-Wallis'
    assert result.p_value < 0.05
    assert result.pairwise is None
    assert result.effect_size == pytest.approx(result.statistic / 11)


def test_kruskal_wallis_posthoc(three_groups):
    result = kruskal_wallis(*three_groups, posthoc=True)
    pairwise = result.pairwise
    assert pairwise.columns.tolist() == PAIRWISE_COLUMNS
    assert list(zip(pairwise['group1'], pairwise['group2'])) == [
        ('x', 'y'), ('x', 'z'), ('y', 'z')
    ]
    assert (pairwise['p_adj'] >= pairwise['p_value']).all()


def test_kruskal_wallis_identical_values():
    with pytest.raises(StatisticalTestError):
        kruskal_wallis(*grouped([3.0] * 6, ['a', 'a', 'b', 'b', 'c', 'c']))


def test_one_way_anova_with_tukey(three_groups):
    result = one_way_anova(*three_groups, posthoc=True)
    assert result.test == 'ANOVA'
    assert result.p_value < 0.001
    assert 0.9 < result.effect_size <= 1
    assert result.details['df'] == (2, 9)

    tukey = result.pairwise
    assert tukey.columns.tolist() == PAIRWISE_COLUMNS
    row = tukey[(tukey['group1'] == 'x') & (tukey['group2'] == 'z')].iloc[0]
    assert row['statistic'] == pytest.approx(8.05, abs=1e-8)
    assert row['p_value'] == row['p_adj']


def test_tukey_hsd_keeps_original_labels():
    values, labels = grouped([1.0, 1.5, 2.0, 4.0, 4.5, 5.0], [1, 1, 1, 2, 2, 2])
    tukey = tukey_hsd(values, labels)
    assert tukey.loc[0, 'group1'] == 1
    assert tukey.loc[0, 'group2'] == 2


def test_pairwise_wilcoxon_holm(three_groups):
    pairwise = pairwise_wilcoxon(*three_groups)
    np.testing.assert_allclose(
        pairwise['p_adj'], p_adjust(pairwise['p_value'], method='holm')
    )


def test_p_adjust_holm():
    np.testing.assert_allclose(p_adjust([0.01, 0.04, 0.03]), [0.03, 0.06, 0.06])


def test_p_adjust_passes_nan_through():
    adjusted = p_adjust([0.01, np.nan, 0.04])
    assert np.isnan(adjusted[1])
    # NaN entries do not count towards the family size
    np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.04])


def test_split_groups_drops_missing():
    values, labels = grouped([1.0, np.nan, 3.0, 4.0, 5.0], ['a', 'a', None, 'b', 'b'])
    names, data = split_groups(values, labels)
    assert names == ['a', 'b']
    np.testing.assert_array_equal(data[0], [1.0])
    np.testing.assert_array_equal(data[1], [4.0, 5.0])


def test_split_groups_needs_two_groups():
    with pytest.raises(InsufficientGroupsError, match="'site'"):
        split_groups(*grouped([1.0, 2.0], ['a', 'a']))


def test_grouping_codes():
    labels = pd.Series(['b', 'a', 'b'], index=['s1', 's2', 's3'])
    codes, levels = grouping_codes(labels, ['s3', 's2', 's1'])
    assert levels == ['a', 'b']
    assert codes.tolist() == [1, 0, 1]

    with pytest.raises(GroupingError):
        grouping_codes(labels, ['s1', 's4'])


def test_run_suite_isolates_failures(two_groups):
    values, labels = two_groups

    def broken():
        raise InsufficientSamplesError("not enough data")

    suite = run_suite(
        {
            'welch': lambda: ttest(values, labels),
            'broken': broken,
            'mwu': lambda: mann_whitney(values, labels),
        },
        label='test'
    )
    assert list(suite.results) == ['welch', 'mwu']
    assert suite.failures == {'broken': 'InsufficientSamplesError: not enough data'}

    summary = suite.summary()
    assert summary.index.tolist() == ['welch', 'mwu']
    assert summary.loc['mwu', 'test'] == 'Mann-Whitney U'


def test_run_suite_propagates_unexpected_errors():
    def crash():
        raise KeyError('boom')

    with pytest.raises(KeyError):
        run_suite({'crash': crash})


def test_test_result_to_dict():
    result = TestResult('T', 1.5, 0.2, group_column='site', effect_size=0.3)
    assert result.to_dict() == {
        'test': 'T', 'statistic': 1.5, 'p_value': 0.2,
        'group_column': 'site', 'effect_size': 0.3
    }
