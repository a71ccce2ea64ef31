# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from itertools import combinations
from typing import Any, List, Optional, Sequence, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import f_oneway, kruskal, mannwhitneyu, shapiro, ttest_ind
from statsmodels.stats.multicomp import pairwise_tukeyhsd

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.errors import InsufficientSamplesError, StatisticalTestError
from diversity_16s.stats.utils import PAIRWISE_COLUMNS, TestResult, p_adjust, split_groups

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# ==================================== NORMALITY ===================================== #

def shapiro_wilk(
    values: Union[pd.Series, Sequence[float]],
    name: Optional[str] = None
) -> TestResult:
    """Shapiro-Wilk test of normality.

    Args:
        values: Numeric sample; NaNs are ignored.
        name:   Label stored in ``details['variable']``.

    Raises:
        InsufficientSamplesError: If fewer than 3 finite values are given.
    """
    x = np.asarray(values, dtype=float)
    x = x[~np.isnan(x)]
    if len(x) < 3:
        raise InsufficientSamplesError(
            f"Shapiro-Wilk needs at least 3 values, got {len(x)}"
        )
    w_stat, p_val = shapiro(x)
    return TestResult(
        test="Shapiro-Wilk",
        statistic=float(w_stat),
        p_value=float(p_val),
        details={'variable': name, 'n': len(x)}
    )

# ================================= TWO-GROUP TESTS ================================== #

def ttest(
    values: pd.Series,
    grouping: pd.Series,
    equal_var: bool = False
) -> TestResult:
    """Independent two-sample t-test (Welch by default, Student with ``equal_var``).

    Effect size is Cohen's d with pooled standard deviation.
    """
    labels, (group1, group2) = split_groups(values, grouping, min_groups=2, max_groups=2)
    if len(group1) < 2 or len(group2) < 2:
        raise InsufficientSamplesError("t-test needs at least 2 values per group")

    t_stat, p_val = ttest_ind(group1, group2, equal_var=equal_var)

    n1, n2 = len(group1), len(group2)
    pooled_std = np.sqrt(
        ((n1 - 1) * np.var(group1, ddof=1) + (n2 - 1) * np.var(group2, ddof=1))
        / (n1 + n2 - 2)
    )
    mean_diff = np.mean(group1) - np.mean(group2)
    cohen_d = mean_diff / pooled_std if pooled_std != 0 else 0.0

    return TestResult(
        test="Student t-test" if equal_var else "Welch's t-test",
        statistic=float(t_stat),
        p_value=float(p_val),
        group_column=grouping.name,
        effect_size=float(cohen_d),
        details={'groups': labels, 'n': [n1, n2], 'mean_difference': float(mean_diff)}
    )


def mann_whitney(values: pd.Series, grouping: pd.Series) -> TestResult:
    """Two-sided Mann-Whitney U test; effect size is the rank-biserial correlation."""
    labels, (group1, group2) = split_groups(values, grouping, min_groups=2, max_groups=2)
    u_stat, p_val = mannwhitneyu(group1, group2, alternative='two-sided')

    n1, n2 = len(group1), len(group2)
    return TestResult(
        test="Mann-Whitney U",
        statistic=float(u_stat),
        p_value=float(p_val),
        group_column=grouping.name,
        effect_size=float(1 - (2 * u_stat) / (n1 * n2)),
        details={
            'groups': labels, 'n': [n1, n2],
            'median_difference': float(np.median(group1) - np.median(group2))
        }
    )

# ================================ MULTI-GROUP TESTS ================================= #

def kruskal_wallis(
    values: pd.Series,
    grouping: pd.Series,
    posthoc: bool = False,
    p_adjust_method: str = constants.DEFAULT_P_ADJUST
) -> TestResult:
    """Kruskal-Wallis H-test across two or more groups.

    Effect size is epsilon squared, ``H / (n - 1)``. With ``posthoc`` the
    result carries pairwise rank-sum tests adjusted by ``p_adjust_method``.
    """
    labels, data = split_groups(values, grouping, min_groups=2)
    if np.ptp(np.concatenate(data)) == 0:
        raise StatisticalTestError("Kruskal-Wallis is undefined when all values are identical")
    h_stat, p_val = kruskal(*data)

    n_total = sum(len(g) for g in data)
    return TestResult(
        test="Kruskal-Wallis",
        statistic=float(h_stat),
        p_value=float(p_val),
        group_column=grouping.name,
        effect_size=float(h_stat / (n_total - 1)) if n_total > 1 else np.nan,
        pairwise=(
            pairwise_wilcoxon(values, grouping, p_adjust_method) if posthoc else None
        ),
        details={'groups': labels, 'n': [len(g) for g in data]}
    )


def one_way_anova(
    values: pd.Series,
    grouping: pd.Series,
    posthoc: bool = False
) -> TestResult:
    """One-way ANOVA; effect size is eta squared. ``posthoc`` adds Tukey's HSD."""
    labels, data = split_groups(values, grouping, min_groups=2)
    if sum(len(g) for g in data) <= len(data):
        raise InsufficientSamplesError("ANOVA needs more observations than groups")

    f_stat, p_val = f_oneway(*data)

    all_values = np.concatenate(data)
    grand_mean = np.mean(all_values)
    ss_between = sum(len(g) * (np.mean(g) - grand_mean) ** 2 for g in data)
    ss_total = np.sum((all_values - grand_mean) ** 2)
    eta_sq = ss_between / ss_total if ss_total != 0 else 0.0

    return TestResult(
        test="ANOVA",
        statistic=float(f_stat),
        p_value=float(p_val),
        group_column=grouping.name,
        effect_size=float(eta_sq),
        pairwise=tukey_hsd(values, grouping) if posthoc else None,
        details={
            'groups': labels, 'n': [len(g) for g in data],
            'df': (len(data) - 1, len(all_values) - len(data))
        }
    )

# ================================== POST-HOC TESTS ================================== #

def pairwise_wilcoxon(
    values: pd.Series,
    grouping: pd.Series,
    p_adjust_method: str = constants.DEFAULT_P_ADJUST
) -> pd.DataFrame:
    """Pairwise two-sided Mann-Whitney (rank-sum) tests between all groups.

    Returns:
        DataFrame with columns ``group1, group2, statistic, p_value, p_adj``.
    """
    labels, data = split_groups(values, grouping, min_groups=2)
    rows: List[List[Any]] = []
    for (i, a), (j, b) in combinations(enumerate(labels), 2):
        u_stat, p_val = mannwhitneyu(data[i], data[j], alternative='two-sided')
        rows.append([a, b, float(u_stat), float(p_val)])

    pairwise = pd.DataFrame(rows, columns=PAIRWISE_COLUMNS[:-1])
    pairwise['p_adj'] = p_adjust(pairwise['p_value'], method=p_adjust_method)
    return pairwise


def tukey_hsd(values: pd.Series, grouping: pd.Series, alpha: float = 0.05) -> pd.DataFrame:
    """Tukey's honestly significant difference test via statsmodels.

    The ``statistic`` column holds the mean difference (group2 − group1) and
    ``p_adj`` the family-wise adjusted p-value; ``p_value`` repeats it since
    Tukey's test has no unadjusted counterpart.
    """
    labels, data = split_groups(values, grouping, min_groups=2)
    endog = np.concatenate(data)
    groups = np.concatenate([[str(g)] * len(d) for g, d in zip(labels, data)])

    tukey = pairwise_tukeyhsd(endog, groups, alpha=alpha)
    names = list(tukey.groupsunique)
    lookup = {str(g): g for g in labels}
    rows = [
        [lookup[str(names[i])], lookup[str(names[j])], float(diff), float(p), float(p)]
        for (i, j), diff, p in zip(
            combinations(range(len(names)), 2), tukey.meandiffs, tukey.pvalues
        )
    ]
    return pd.DataFrame(rows, columns=PAIRWISE_COLUMNS)
