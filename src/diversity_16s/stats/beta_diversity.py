# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from functools import partial
from itertools import combinations
from typing import Any, Callable, List, Optional, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import f as f_dist

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.diversity.beta import DistanceResult
from diversity_16s.diversity.ordination import principal_coordinates
from diversity_16s.errors import (
    InsufficientGroupsError, InsufficientSamplesError, StatisticalTestError
)
from diversity_16s.stats.permutation import permutation_test
from diversity_16s.stats.utils import PAIRWISE_COLUMNS, TestResult, grouping_codes, p_adjust

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# ================================= HELPER FUNCTIONS ================================= #

def _align(
    distance: DistanceResult,
    grouping: pd.Series
) -> Tuple[DistanceResult, np.ndarray, List[Any]]:
    """Drop samples without a group label and encode the rest."""
    labelled = grouping.dropna()
    ids = [i for i in distance.ids if i in labelled.index]
    dropped = distance.n_samples - len(ids)
    if dropped:
        logger.debug(
            f"Dropping {dropped} sample(s) without a '{grouping.name}' label"
        )
    if len(ids) < 2:
        raise InsufficientSamplesError(
            f"Only {len(ids)} sample(s) have a '{grouping.name}' label"
        )
    codes, levels = grouping_codes(labelled, ids)

    if len(levels) < 2:
        raise InsufficientGroupsError(
            f"At least 2 groups required in '{grouping.name}', found {len(levels)}"
        )
    if len(ids) <= len(levels):
        raise InsufficientSamplesError(
            f"{len(ids)} samples in {len(levels)} groups leave no residual degrees "
            f"of freedom"
        )
    if dropped:
        distance = distance.filter(ids)
    return distance, codes, levels


def _pair_seeds(seed: Optional[int], n_pairs: int) -> List[int]:
    children = np.random.SeedSequence(seed).spawn(n_pairs)
    return [int(c.generate_state(1)[0]) for c in children]


def _subset_strata(strata: Optional[pd.Series], ids: List[str]) -> Optional[pd.Series]:
    if strata is None:
        return None
    missing = [i for i in ids if i not in strata.index]
    if missing:
        raise StatisticalTestError(f"No stratum for samples: {missing[:5]}")
    return strata.loc[ids]


def _f_statistic(values: np.ndarray, codes: np.ndarray, n_groups: int) -> float:
    """One-way ANOVA F of ``values`` grouped by integer ``codes``."""
    n = len(values)
    counts = np.bincount(codes, minlength=n_groups)
    means = np.bincount(codes, weights=values, minlength=n_groups) / counts
    ss_between = np.sum(counts * (means - values.mean()) ** 2)
    ss_within = np.sum((values - means[codes]) ** 2)
    if ss_within == 0:
        return 0.0 if ss_between == 0 else np.inf
    return (ss_between / (n_groups - 1)) / (ss_within / (n - n_groups))


def _pairwise_table(rows: List[List[Any]]) -> pd.DataFrame:
    pairwise = pd.DataFrame(rows, columns=PAIRWISE_COLUMNS[:-1])
    pairwise['p_adj'] = p_adjust(pairwise['p_value'], method=constants.DEFAULT_P_ADJUST)
    return pairwise

# ==================================== PERMANOVA ===================================== #

def _permanova_statistic(
    d2: np.ndarray,
    codes: np.ndarray,
    n_groups: int
) -> Tuple[Callable[[np.ndarray], float], float]:
    """Pseudo-F as a function of a permutation of the group labels."""
    n = len(codes)
    ss_total = d2.sum() / (2 * n)

    def ss_within(labels: np.ndarray) -> float:
        onehot = np.eye(n_groups)[labels]
        within = ((d2 @ onehot) * onehot).sum(axis=0)
        return float(np.sum(within / (2 * onehot.sum(axis=0))))

    def pseudo_f(order: np.ndarray) -> float:
        ss_w = ss_within(codes[order])
        ss_a = ss_total - ss_w
        if ss_w <= 0:
            return np.inf if ss_a > 0 else 0.0
        return (ss_a / (n_groups - 1)) / (ss_w / (n - n_groups))

    return pseudo_f, ss_total


def permanova(
    distance: DistanceResult,
    grouping: pd.Series,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: Optional[int] = None,
    strata: Optional[pd.Series] = None,
    pairwise: bool = False,
    n_jobs: int = 1
) -> TestResult:
    """Permutational multivariate analysis of variance (Anderson 2001).

    ``SS_T = Σ_{i<j} d²_ij / N``, ``SS_W = Σ_g Σ_{i<j ∈ g} d²_ij / n_g`` and
    ``F = (SS_A / (a - 1)) / (SS_W / (N - a))`` with ``SS_A = SS_T - SS_W``.
    The p-value comes from ``permutations`` random relabellings.

    Args:
        distance:     Pairwise dissimilarities.
        grouping:     Group label per sample (indexed by sample ID); samples
                      without a label are dropped.
        permutations: Number of permutations.
        seed:         Master seed; equal seeds give identical p-values for any
                      ``n_jobs``.
        strata:       Optional block label per sample; labels are then only
                      permuted within blocks.
        pairwise:     Also test each pair of groups, Holm-adjusted.
        n_jobs:       Worker threads for the permutations.

    Returns:
        TestResult with pseudo-F, R² as effect size and an adonis2-style
        table in ``details['table']``.

    Raises:
        InsufficientGroupsError:  Fewer than 2 groups.
        InsufficientSamplesError: No residual degrees of freedom.
    """
    distance, codes, levels = _align(distance, grouping)
    n, n_groups = len(codes), len(levels)
    d2 = distance.data ** 2

    pseudo_f, ss_total = _permanova_statistic(d2, codes, n_groups)
    if ss_total == 0:
        raise StatisticalTestError("All pairwise distances are zero")
    outcome = permutation_test(
        pseudo_f, n, permutations=permutations, seed=seed,
        strata=_subset_strata(strata, distance.ids), n_jobs=n_jobs
    )

    ss_w = float(np.sum(
        [d2[np.ix_(codes == g, codes == g)].sum() / (2 * np.sum(codes == g))
         for g in range(n_groups)]
    ))
    ss_a = ss_total - ss_w
    r2 = ss_a / ss_total
    table = pd.DataFrame(
        {
            'Df': [n_groups - 1, n - n_groups, n - 1],
            'SumOfSqs': [ss_a, ss_w, ss_total],
            'R2': [r2, ss_w / ss_total, 1.0],
            'F': [outcome.observed, np.nan, np.nan],
            'Pr(>F)': [outcome.p_value, np.nan, np.nan],
        },
        index=[grouping.name or 'Groups', 'Residual', 'Total']
    )

    pairwise_result = None
    if pairwise:
        pairwise_result = _permanova_pairwise(
            distance, codes, levels, grouping.name, permutations, seed, strata, n_jobs
        )

    logger.info(
        f"PERMANOVA ~ {grouping.name}: F={outcome.observed:.4f}, R²={r2:.4f}, "
        f"p={outcome.p_value:.4g} ({n} samples, {n_groups} groups, "
        f"{permutations} permutations)"
    )
    return TestResult(
        test="PERMANOVA",
        statistic=outcome.observed,
        p_value=outcome.p_value,
        group_column=grouping.name,
        pairwise=pairwise_result,
        effect_size=r2,
        details={
            'table': table,
            'permutations': permutations,
            'n_samples': n,
            'n_groups': n_groups,
            'group_sizes': dict(zip(levels, np.bincount(codes).tolist())),
            'method': distance.method,
            'strata': strata.name if strata is not None else None,
        }
    )


def _permanova_pairwise(
    distance: DistanceResult,
    codes: np.ndarray,
    levels: List[Any],
    name: Optional[str],
    permutations: int,
    seed: Optional[int],
    strata: Optional[pd.Series],
    n_jobs: int
) -> pd.DataFrame:
    pairs = list(combinations(range(len(levels)), 2))
    rows = []
    for (a, b), pair_seed in zip(pairs, _pair_seeds(seed, len(pairs))):
        ids = [i for i, c in zip(distance.ids, codes) if c in (a, b)]
        labels = pd.Series(
            [levels[c] for c in codes if c in (a, b)], index=ids, name=name
        )
        try:
            result = permanova(
                distance.filter(ids), labels, permutations=permutations,
                seed=pair_seed, strata=strata, n_jobs=n_jobs
            )
            rows.append([levels[a], levels[b], result.statistic, result.p_value])
        except StatisticalTestError as e:
            logger.warning(f"Pairwise PERMANOVA {levels[a]} vs {levels[b]} skipped: {e}")
            rows.append([levels[a], levels[b], np.nan, np.nan])
    return _pairwise_table(rows)

# ===================================== PERMDISP ===================================== #

def distances_to_centroids(
    distance: DistanceResult,
    codes: np.ndarray,
    n_groups: int
) -> np.ndarray:
    """Distance of each sample to its group centroid in PCoA space.

    Axes with negative eigenvalues contribute negatively to the squared
    distance, as in vegan's ``betadisper``.
    """
    pcoa = principal_coordinates(distance)
    positive = pcoa.coordinates.to_numpy()
    negative = pcoa.negative_coordinates

    def squared(coords: np.ndarray) -> np.ndarray:
        if coords.shape[1] == 0:
            return np.zeros(len(codes))
        centroids = np.vstack([coords[codes == g].mean(axis=0) for g in range(n_groups)])
        return np.sum((coords - centroids[codes]) ** 2, axis=1)

    return np.sqrt(np.abs(squared(positive) - squared(negative)))


def _residual_statistic(
    values: np.ndarray,
    codes: np.ndarray,
    n_groups: int,
    statistic: Callable[[np.ndarray], float]
) -> Callable[[np.ndarray], float]:
    """Statistic of fitted group means plus permuted residuals."""
    counts = np.bincount(codes, minlength=n_groups)
    fitted = (np.bincount(codes, weights=values, minlength=n_groups) / counts)[codes]
    residuals = values - fitted
    return lambda order: statistic(fitted + residuals[order])


def _student_t(values: np.ndarray, in_first: np.ndarray) -> float:
    """Absolute two-sample t (pooled variance)."""
    x, y = values[in_first], values[~in_first]
    n1, n2 = len(x), len(y)
    pooled = ((n1 - 1) * np.var(x, ddof=1) + (n2 - 1) * np.var(y, ddof=1)) / (n1 + n2 - 2)
    diff = abs(np.mean(x) - np.mean(y))
    if pooled == 0:
        return 0.0 if diff == 0 else np.inf
    return float(diff / np.sqrt(pooled * (1 / n1 + 1 / n2)))


def permdisp(
    distance: DistanceResult,
    grouping: pd.Series,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: Optional[int] = None,
    pairwise: bool = False,
    n_jobs: int = 1
) -> TestResult:
    """Permutation test of homogeneity of multivariate dispersions.

    Distances to group centroids are computed in principal coordinate space
    (see :func:`distances_to_centroids`) and compared with a one-way ANOVA F.
    The null distribution permutes residuals about the group means.

    Args:
        distance:     Pairwise dissimilarities.
        grouping:     Group label per sample; unlabelled samples are dropped.
        permutations: Number of permutations.
        seed:         Master seed.
        pairwise:     Add permutation t-tests for each pair of groups,
                      Holm-adjusted.
        n_jobs:       Worker threads for the permutations.

    Returns:
        TestResult with the F statistic; ``details`` carries the mean distance
        to centroid per group, the per-sample distances, an ANOVA table and
        the parametric F-test p-value.
    """
    distance, codes, levels = _align(distance, grouping)
    n, n_groups = len(codes), len(levels)

    z = distances_to_centroids(distance, codes, n_groups)
    f_of = partial(_f_statistic, codes=codes, n_groups=n_groups)
    outcome = permutation_test(
        _residual_statistic(z, codes, n_groups, f_of), n,
        permutations=permutations, seed=seed, n_jobs=n_jobs
    )

    counts = np.bincount(codes, minlength=n_groups)
    means = np.bincount(codes, weights=z, minlength=n_groups) / counts
    ss_between = float(np.sum(counts * (means - z.mean()) ** 2))
    ss_within = float(np.sum((z - means[codes]) ** 2))
    df_between, df_within = n_groups - 1, n - n_groups
    anova = pd.DataFrame(
        {
            'Df': [df_between, df_within],
            'SumOfSqs': [ss_between, ss_within],
            'MeanSqs': [ss_between / df_between, ss_within / df_within],
            'F': [outcome.observed, np.nan],
        },
        index=['Groups', 'Residuals']
    )

    pairwise_result = None
    if pairwise:
        pairwise_result = _permdisp_pairwise(z, codes, levels, permutations, seed, n_jobs)

    logger.info(
        f"PERMDISP ~ {grouping.name}: F={outcome.observed:.4f}, "
        f"p={outcome.p_value:.4g} ({n} samples, {n_groups} groups)"
    )
    return TestResult(
        test="PERMDISP",
        statistic=outcome.observed,
        p_value=outcome.p_value,
        group_column=grouping.name,
        pairwise=pairwise_result,
        details={
            'group_dispersion': dict(zip(levels, means.tolist())),
            'distances': pd.Series(z, index=distance.ids, name='distance_to_centroid'),
            'table': anova,
            'f_p_value': float(f_dist.sf(outcome.observed, df_between, df_within)),
            'permutations': permutations,
            'n_samples': n,
            'n_groups': n_groups,
        }
    )


def _permdisp_pairwise(
    z: np.ndarray,
    codes: np.ndarray,
    levels: List[Any],
    permutations: int,
    seed: Optional[int],
    n_jobs: int
) -> pd.DataFrame:
    pairs = list(combinations(range(len(levels)), 2))
    rows = []
    for (a, b), pair_seed in zip(pairs, _pair_seeds(seed, len(pairs))):
        mask = np.isin(codes, (a, b))
        values, pair_codes = z[mask], np.where(codes[mask] == a, 0, 1)
        if min(np.sum(pair_codes == 0), np.sum(pair_codes == 1)) < 2:
            logger.warning(
                f"Pairwise PERMDISP {levels[a]} vs {levels[b]} skipped: fewer than 2 "
                f"samples in a group"
            )
            rows.append([levels[a], levels[b], np.nan, np.nan])
            continue
        t_of = partial(_student_t, in_first=pair_codes == 0)
        outcome = permutation_test(
            _residual_statistic(values, pair_codes, 2, t_of), len(values),
            permutations=permutations, seed=pair_seed, n_jobs=n_jobs
        )
        rows.append([levels[a], levels[b], outcome.observed, outcome.p_value])
    return _pairwise_table(rows)
