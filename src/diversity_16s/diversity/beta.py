# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from skbio.stats.distance import DistanceMatrix

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.amplicon_data.dataset import CommunityDataset
from diversity_16s.errors import DegenerateSampleError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

DistanceFunction = Callable[[np.ndarray], np.ndarray]

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class DistanceResult:
    """Pairwise sample dissimilarities.

    Attributes:
        matrix: Symmetric, hollow, non-negative scikit-bio DistanceMatrix.
        method: Name of the dissimilarity in ``DISTANCE_METHODS``.
        seed:   Seed passed to :func:`compute_distance`. Carried through as
                metadata for downstream stages; the built-in methods are
                deterministic and ignore it.
    """
    matrix: DistanceMatrix
    method: str
    seed: Optional[int] = None

    @property
    def ids(self) -> List[str]:
        return list(self.matrix.ids)

    @property
    def data(self) -> np.ndarray:
        return self.matrix.data

    @property
    def n_samples(self) -> int:
        return self.matrix.shape[0]

    def to_frame(self) -> pd.DataFrame:
        return self.matrix.to_data_frame()

    def filter(self, ids: Iterable[str]) -> "DistanceResult":
        """Restrict to ``ids`` (in that order)."""
        return DistanceResult(self.matrix.filter(list(ids)), self.method, self.seed)

# ================================= DISTANCE METHODS ================================= #

def braycurtis(counts: np.ndarray) -> np.ndarray:
    """Bray-Curtis dissimilarity, ``Σ|x - y| / Σ(x + y)``, between all rows."""
    return squareform(pdist(counts.astype(float), metric='braycurtis'))


def jaccard(counts: np.ndarray) -> np.ndarray:
    """Jaccard distance on presence/absence."""
    return squareform(pdist(counts > 0, metric='jaccard'))


def euclidean(counts: np.ndarray) -> np.ndarray:
    return squareform(pdist(counts.astype(float), metric='euclidean'))


DISTANCE_METHODS: Dict[str, DistanceFunction] = {
    'braycurtis': braycurtis,
    'jaccard': jaccard,
    'euclidean': euclidean,
}


def register_distance_method(name: str, func: DistanceFunction) -> None:
    """Make ``func`` available to :func:`compute_distance` as ``method=name``.

    ``func`` maps a samples × taxa count array to a square dissimilarity array.
    """
    if name in DISTANCE_METHODS:
        logger.warning(f"Replacing registered distance method '{name}'")
    DISTANCE_METHODS[name] = func

# ================================== DISSIMILARITY =================================== #

def compute_distance(
    dataset: CommunityDataset,
    method: str = constants.DEFAULT_METRIC,
    seed: Optional[int] = None
) -> DistanceResult:
    """Compute pairwise dissimilarities between the samples of a dataset.

    Args:
        dataset: Community dataset.
        method:  Name of a registered method (default: Bray-Curtis).
        seed:    Recorded on the result; not passed to the method.

    Returns:
        DistanceResult over the dataset's samples, in dataset order.

    Raises:
        ValueError:            For an unknown method or fewer than 2 samples.
        DegenerateSampleError: If any sample has zero total abundance.
    """
    if method not in DISTANCE_METHODS:
        raise ValueError(
            f"Unknown distance method '{method}'. Available: {list(DISTANCE_METHODS)}"
        )
    if dataset.n_samples < 2:
        raise ValueError(
            f"At least 2 samples required for a distance matrix, got {dataset.n_samples}"
        )

    totals = dataset.sample_totals
    empty = totals.index[totals == 0].tolist()
    if empty:
        raise DegenerateSampleError(
            f"Cannot compute {method} distances for {len(empty)} sample(s) with zero "
            f"total abundance: {empty[:5]}",
            samples=empty
        )

    dist = DISTANCE_METHODS[method](dataset.table.to_numpy())
    result = DistanceResult(
        DistanceMatrix(dist, ids=dataset.sample_ids), method=method, seed=seed
    )
    logger.info(f"Computed {method} distances between {dataset.n_samples} samples")
    return result
