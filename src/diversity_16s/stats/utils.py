# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

# Local Imports
from diversity_16s import constants
from diversity_16s.errors import GroupingError, InsufficientGroupsError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# =================================== DATA CLASSES =================================== #

PAIRWISE_COLUMNS = ['group1', 'group2', 'statistic', 'p_value', 'p_adj']


@dataclass
class TestResult:
    """Outcome of one hypothesis test.

    Attributes:
        test:         Human-readable test name.
        statistic:    Test statistic.
        p_value:      P-value (permutation p-values are empirical).
        group_column: Grouping factor tested, if any.
        pairwise:     Optional post-hoc table with columns ``group1, group2,
                      statistic, p_value, p_adj``.
        effect_size:  Effect size appropriate to the test, if defined.
        details:      Test-specific extras (degrees of freedom, permutation
                      count, ANOVA-style tables, ...).
    """
    __test__ = False  # not a pytest class

    test: str
    statistic: float
    p_value: float
    group_column: Optional[str] = None
    pairwise: Optional[pd.DataFrame] = None
    effect_size: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'test': self.test,
            'statistic': self.statistic,
            'p_value': self.p_value,
            'group_column': self.group_column,
            'effect_size': self.effect_size,
        }

# ================================= MULTIPLE TESTING ================================= #

def p_adjust(
    p_values: Iterable[float],
    method: str = constants.DEFAULT_P_ADJUST
) -> np.ndarray:
    """Adjust p-values for multiple comparisons.

    Thin wrapper over statsmodels' ``multipletests``; NaN p-values are passed
    through and excluded from the family size.

    Args:
        p_values: Raw p-values.
        method:   Any ``multipletests`` method (default: Holm step-down).

    Returns:
        Adjusted p-values in input order.
    """
    p = np.asarray(list(p_values), dtype=float)
    adjusted = np.full_like(p, np.nan)
    mask = ~np.isnan(p)
    if mask.any():
        _, p_adj, _, _ = multipletests(p[mask], method=method)
        adjusted[mask] = p_adj
    return adjusted

# ================================= HELPER FUNCTIONS ================================= #

def split_groups(
    values: pd.Series,
    grouping: pd.Series,
    min_groups: int = 2,
    max_groups: Optional[int] = None
) -> Tuple[List[Any], List[np.ndarray]]:
    """Partition ``values`` by the aligned ``grouping`` labels.

    Samples missing from either series, with NaN values or with a missing
    label are dropped; empty groups are ignored.

    Returns:
        Sorted group labels and one value array per label.

    Raises:
        InsufficientGroupsError: If fewer than ``min_groups`` groups remain.
        GroupingError:           If more than ``max_groups`` groups remain.
    """
    common = values.index.intersection(grouping.index)
    frame = pd.DataFrame({
        'value': values.loc[common],
        'group': grouping.loc[common]
    }).dropna()

    labels = sorted(frame['group'].unique(), key=str)
    data = [frame.loc[frame['group'] == g, 'value'].to_numpy(dtype=float) for g in labels]

    if len(labels) < min_groups:
        raise InsufficientGroupsError(
            f"At least {min_groups} non-empty groups required, found {len(labels)}"
            + (f" in '{grouping.name}'" if grouping.name is not None else "")
        )
    if max_groups is not None and len(labels) > max_groups:
        raise GroupingError(
            f"Expected at most {max_groups} groups, found {len(labels)}: "
            f"{[str(g) for g in labels[:5]]}"
        )
    return labels, data


def grouping_codes(grouping: pd.Series, ids: List[str]) -> Tuple[np.ndarray, List[Any]]:
    """Integer-encode group labels in the order of ``ids``."""
    missing = [i for i in ids if i not in grouping.index]
    if missing:
        raise GroupingError(f"No group label for samples: {missing[:5]}")
    labels = grouping.loc[ids]
    if labels.isna().any():
        raise GroupingError(
            f"Missing group label for samples: {labels.index[labels.isna()].tolist()[:5]}"
        )
    levels = sorted(labels.unique(), key=str)
    lookup = {level: code for code, level in enumerate(levels)}
    return np.array([lookup[v] for v in labels], dtype=int), levels
