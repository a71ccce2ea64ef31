# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Iterable, List, Sequence

# Third-Party Imports
import numpy as np
import pandas as pd
from skbio.diversity import alpha

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.amplicon_data.dataset import CommunityDataset
from diversity_16s.errors import EmptySampleError
from diversity_16s.stats.suite import SuiteResult, run_suite
from diversity_16s.stats.tests import (
    kruskal_wallis, mann_whitney, one_way_anova, shapiro_wilk, ttest
)
from diversity_16s.stats.utils import TestResult

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class DiversityRecord:
    sample: str
    index: str
    value: float

# ================================== ALPHA INDICES =================================== #

def observed_features(counts: np.ndarray) -> float:
    return float(np.count_nonzero(counts))


def shannon(counts: np.ndarray) -> float:
    """Shannon entropy in nats."""
    return float(alpha.shannon(counts, base=np.e))


def simpson(counts: np.ndarray) -> float:
    """Gini-Simpson index, ``1 - Σ p²``."""
    return float(alpha.simpson(counts))


def pielou_evenness(counts: np.ndarray) -> float:
    observed = np.count_nonzero(counts)
    if observed <= 1:
        return 0.0
    return shannon(counts) / np.log(observed)


def chao1(counts: np.ndarray) -> float:
    """Bias-corrected Chao1 richness estimate."""
    return float(alpha.chao1(counts, bias_corrected=True))


ALPHA_INDICES: Dict[str, Callable[[np.ndarray], float]] = {
    'observed_features': observed_features,
    'shannon': shannon,
    'simpson': simpson,
    'pielou_evenness': pielou_evenness,
    'chao1': chao1,
}

# ==================================== ESTIMATION ==================================== #

def estimate(
    dataset: CommunityDataset,
    indices: Sequence[str] = constants.DEFAULT_ALPHA_INDICES
) -> List[DiversityRecord]:
    """Compute alpha diversity indices for every sample.

    Args:
        dataset: Community dataset.
        indices: Names from ``ALPHA_INDICES``, computed in the given order.

    Returns:
        One record per (sample, index), samples in dataset order.

    Raises:
        ValueError:       For an unknown index name.
        EmptySampleError: If any sample has zero total abundance.
    """
    unknown = [i for i in indices if i not in ALPHA_INDICES]
    if unknown:
        raise ValueError(
            f"Unknown alpha diversity index(es): {unknown}. "
            f"Available: {list(ALPHA_INDICES)}"
        )

    totals = dataset.sample_totals
    empty = totals.index[totals == 0].tolist()
    if empty:
        raise EmptySampleError(
            f"Alpha diversity is undefined for {len(empty)} sample(s) with zero "
            f"total abundance: {empty[:5]}",
            samples=empty
        )

    counts = dataset.table.to_numpy()
    records = [
        DiversityRecord(sample, index, ALPHA_INDICES[index](row))
        for sample, row in zip(dataset.sample_ids, counts)
        for index in indices
    ]
    logger.debug(
        f"Computed {len(indices)} alpha diversity indices for "
        f"{dataset.n_samples} samples"
    )
    return records


def records_to_frame(records: Iterable[DiversityRecord]) -> pd.DataFrame:
    """Pivot records into a samples × indices DataFrame."""
    records = list(records)
    long = pd.DataFrame(
        [(r.sample, r.index, r.value) for r in records],
        columns=['sample', 'index', 'value']
    )
    samples = list(dict.fromkeys(long['sample']))
    indices = list(dict.fromkeys(long['index']))
    wide = long.pivot(index='sample', columns='index', values='value')
    wide = wide.reindex(index=samples, columns=indices)
    wide.index.name = None
    wide.columns.name = None
    return wide


def to_plot_records(
    records: Iterable[DiversityRecord],
    metadata: pd.DataFrame,
    group_column: str
) -> pd.DataFrame:
    """Long-format rows ``sample, metric, value, group`` for plotting."""
    if group_column not in metadata.columns:
        raise KeyError(f"Group column '{group_column}' not found in metadata")
    groups = metadata[group_column]
    rows = [
        {
            'sample': r.sample,
            'metric': r.index,
            'value': r.value,
            'group': groups.get(r.sample),
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=['sample', 'metric', 'value', 'group'])

# ===================================== ANALYSIS ===================================== #

def normality_by_index(records: Iterable[DiversityRecord]) -> Dict[str, TestResult]:
    """Shapiro-Wilk test for each index across samples.

    Reported for information; test selection is left to the caller.
    """
    frame = records_to_frame(records)
    return {
        index: shapiro_wilk(frame[index], name=index) for index in frame.columns
    }


def _group_test(
    values: pd.Series,
    grouping: pd.Series,
    parametric: bool
) -> TestResult:
    n_groups = grouping.loc[grouping.index.intersection(values.index)].dropna().nunique()
    if n_groups == 2:
        result = ttest(values, grouping) if parametric else mann_whitney(values, grouping)
    else:
        result = (
            one_way_anova(values, grouping, posthoc=True) if parametric
            else kruskal_wallis(values, grouping, posthoc=True)
        )
    result.details['metric'] = values.name
    return result


def analyze_alpha_diversity(
    records: Iterable[DiversityRecord],
    metadata: pd.DataFrame,
    group_column: str = constants.DEFAULT_GROUP_COLUMN,
    parametric: bool = constants.DEFAULT_PARAMETRIC
) -> SuiteResult:
    """Test each alpha diversity index for differences between groups.

    Two groups use Welch's t-test (parametric) or Mann-Whitney U; three or
    more use ANOVA with Tukey's HSD or Kruskal-Wallis with Holm-adjusted
    pairwise rank-sum tests. Each index is an independent entry of the suite.

    Args:
        records:      Output of :func:`estimate`.
        metadata:     Sample metadata indexed by sample ID.
        group_column: Metadata column with the group labels.
        parametric:   Use parametric tests.

    Returns:
        SuiteResult keyed by index name.
    """
    if group_column not in metadata.columns:
        raise KeyError(f"Group column '{group_column}' not found in metadata")

    frame = records_to_frame(records)
    grouping = metadata[group_column]
    tests: Dict[str, Callable[[], TestResult]] = {
        index: partial(_group_test, frame[index], grouping, parametric)
        for index in frame.columns
    }
    return run_suite(tests, label=f"alpha diversity ~ {group_column}")
