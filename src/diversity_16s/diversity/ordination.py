# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from sklearn.isotonic import IsotonicRegression
from sklearn.manifold import smacof

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.diversity.beta import DistanceResult
from diversity_16s.errors import ConvergenceWarning
from diversity_16s.stats.permutation import resolve_n_jobs

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# =================================== DATA CLASSES =================================== #

@dataclass
class OrdinationFit:
    """Raw output of an :class:`Ordinator`."""
    coordinates: np.ndarray
    stress: float
    converged: bool
    n_iter: int


@dataclass
class OrdinationResult:
    """Non-metric MDS embedding of a distance matrix.

    Attributes:
        coordinates: Samples × ``NMDS1..NMDSk`` DataFrame.
        stress:      Kruskal stress-1 of the final configuration.
        converged:   Whether the winning restart met the tolerance.
        n_iter:      Iterations used by the winning restart.
        seed:        Master seed.
        n_init:      Number of random restarts.
    """
    coordinates: pd.DataFrame
    stress: float
    converged: bool
    n_iter: int
    seed: Optional[int] = None
    n_init: int = 1


@dataclass
class PCoAResult:
    """Classical scaling of a distance matrix.

    Attributes:
        coordinates:          Samples × ``PCo1..PCom`` for positive eigenvalues.
        negative_coordinates: Samples × axes for negative eigenvalues, scaled
                              by ``sqrt(|λ|)``.
        eigenvalues:          All non-null eigenvalues, in decreasing order.
    """
    coordinates: pd.DataFrame
    negative_coordinates: np.ndarray
    eigenvalues: np.ndarray

    @property
    def proportion_explained(self) -> np.ndarray:
        positive = self.eigenvalues[self.eigenvalues > 0]
        return positive / positive.sum()

# ==================================== ORDINATORS ==================================== #

class Ordinator(ABC):
    """Embeds a square dissimilarity array in ``n_dimensions`` dimensions."""

    @abstractmethod
    def fit(
        self,
        distances: np.ndarray,
        n_dimensions: int,
        seed: Optional[int] = None
    ) -> OrdinationFit:
        ...


def kruskal_stress(distances: np.ndarray, disparities: np.ndarray) -> float:
    """Kruskal stress-1, ``sqrt(Σ(d - d̂)² / Σd²)``, over condensed arrays."""
    denominator = np.sum(distances ** 2)
    if denominator == 0:
        return 0.0
    return float(np.sqrt(np.sum((distances - disparities) ** 2) / denominator))


def _stress_1(dissimilarities: np.ndarray, coordinates: np.ndarray) -> float:
    """Kruskal stress-1 of a configuration against its monotone fit."""
    distances = pdist(coordinates)
    disparities = IsotonicRegression().fit_transform(dissimilarities, distances)
    return kruskal_stress(distances, disparities)


def _principal_axes(coordinates: np.ndarray) -> np.ndarray:
    """Centre, rotate onto principal axes and fix the sign of each axis."""
    centred = coordinates - coordinates.mean(axis=0)
    _, _, vt = np.linalg.svd(centred, full_matrices=False)
    rotated = centred @ vt.T
    signs = np.sign(rotated[np.argmax(np.abs(rotated), axis=0), range(rotated.shape[1])])
    signs[signs == 0] = 1
    return rotated * signs

# ====================================== SMACOF ====================================== #

class SmacofNMDS(Ordinator):
    """Non-metric multidimensional scaling with scikit-learn's SMACOF solver.

    Each restart calls :func:`sklearn.manifold.smacof` once from a uniform
    random configuration drawn with a seed spawned from the master seed. The
    lowest-stress restart wins, so the result does not depend on ``n_jobs``.

    Args:
        n_init:   Number of random restarts.
        max_iter: Iteration budget per restart.
        eps:      Convergence tolerance passed to the solver.
        n_jobs:   Restarts run concurrently in this many threads.
    """

    def __init__(
        self,
        n_init: int = constants.DEFAULT_N_INIT,
        max_iter: int = constants.DEFAULT_MAX_ITER,
        eps: float = constants.DEFAULT_EPS,
        n_jobs: int = 1
    ):
        if n_init < 1:
            raise ValueError(f"n_init must be ≥ 1, got {n_init}")
        if max_iter < 1:
            raise ValueError(f"max_iter must be ≥ 1, got {max_iter}")
        self.n_init = n_init
        self.max_iter = max_iter
        self.eps = eps
        self.n_jobs = n_jobs

    def _single_start(
        self,
        distances: np.ndarray,
        n_dimensions: int,
        seed_seq: np.random.SeedSequence
    ) -> OrdinationFit:
        init = np.random.default_rng(seed_seq).uniform(size=(distances.shape[0], n_dimensions))
        coordinates, _, n_iter = smacof(
            distances,
            metric=False,
            n_components=n_dimensions,
            init=init,
            n_init=1,
            max_iter=self.max_iter,
            eps=self.eps,
            return_n_iter=True,
        )
        stress = _stress_1(squareform(distances, checks=False), coordinates)
        return OrdinationFit(coordinates, stress, n_iter < self.max_iter, n_iter)

    def fit(
        self,
        distances: np.ndarray,
        n_dimensions: int,
        seed: Optional[int] = None
    ) -> OrdinationFit:
        children = np.random.SeedSequence(seed).spawn(self.n_init)
        n_jobs = min(resolve_n_jobs(self.n_jobs), self.n_init)
        if n_jobs == 1:
            fits = [self._single_start(distances, n_dimensions, c) for c in children]
        else:
            with ThreadPoolExecutor(max_workers=n_jobs) as executor:
                fits = list(executor.map(
                    lambda c: self._single_start(distances, n_dimensions, c), children
                ))

        best = min(range(len(fits)), key=lambda i: fits[i].stress)
        logger.debug(
            f"NMDS restarts: stress {[round(f.stress, 4) for f in fits]}, "
            f"best run {best + 1}"
        )
        fit = fits[best]
        if not any(f.converged for f in fits):
            warnings.warn(
                f"NMDS did not converge within {self.max_iter} iterations in any of "
                f"{self.n_init} restarts; returning the lowest-stress configuration "
                f"(stress={fit.stress:.4f})",
                ConvergenceWarning
            )
        return OrdinationFit(
            _principal_axes(fit.coordinates), fit.stress, fit.converged, fit.n_iter
        )

# ==================================== ORDINATION ==================================== #

def ordinate(
    distance: DistanceResult,
    n_dimensions: int = constants.DEFAULT_N_NMDS,
    seed: Optional[int] = constants.DEFAULT_RANDOM_STATE,
    ordinator: Optional[Ordinator] = None
) -> OrdinationResult:
    """Non-metric MDS of a distance matrix.

    Args:
        distance:     Pairwise dissimilarities.
        n_dimensions: Target dimensionality, ``1 <= k < n_samples``.
        seed:         Master seed for the random starts.
        ordinator:    Optimiser (default: :class:`SmacofNMDS` with default
                      settings).

    Returns:
        OrdinationResult with ``NMDS1..NMDSk`` coordinates.

    Raises:
        ValueError: For fewer than 3 samples or an invalid ``n_dimensions``.
    """
    n = distance.n_samples
    if n < 3:
        raise ValueError(f"At least 3 samples required for NMDS, got {n}")
    if not 1 <= n_dimensions < n:
        raise ValueError(
            f"n_dimensions must satisfy 1 <= n_dimensions < n_samples ({n}), "
            f"got {n_dimensions}"
        )

    ordinator = ordinator or SmacofNMDS()
    fit = ordinator.fit(distance.data, n_dimensions, seed)

    columns = [f"NMDS{i + 1}" for i in range(n_dimensions)]
    result = OrdinationResult(
        coordinates=pd.DataFrame(fit.coordinates, index=distance.ids, columns=columns),
        stress=fit.stress,
        converged=fit.converged,
        n_iter=fit.n_iter,
        seed=seed,
        n_init=getattr(ordinator, 'n_init', 1),
    )
    logger.info(
        f"NMDS ({n_dimensions}D) of {n} samples: stress={result.stress:.4f}, "
        f"converged={result.converged}, iterations={result.n_iter}"
    )
    return result

# ============================== PRINCIPAL COORDINATES =============================== #

def principal_coordinates(distance: DistanceResult, tol: float = 1e-10) -> PCoAResult:
    """Classical (metric) scaling by Gower centring and eigendecomposition.

    Negative eigenvalues, which arise for non-Euclidean dissimilarities such
    as Bray-Curtis, are kept: their axes are returned separately so that
    squared distances can be reconstructed as
    ``Σ_pos (Δx)² − Σ_neg (Δx)²``.

    Args:
        distance: Pairwise dissimilarities.
        tol:      Eigenvalues with ``|λ| <= tol · max|λ|`` are treated as null.
    """
    d = distance.data
    n = d.shape[0]
    A = -0.5 * d ** 2
    J = np.eye(n) - np.ones((n, n)) / n
    G = J @ A @ J

    eigvals, eigvecs = np.linalg.eigh((G + G.T) / 2)
    order = np.argsort(eigvals)[::-1]
    eigvals, eigvecs = eigvals[order], eigvecs[:, order]

    max_abs = np.max(np.abs(eigvals)) if n else 0.0
    keep = np.abs(eigvals) > tol * max_abs if max_abs > 0 else np.zeros(n, dtype=bool)
    eigvals, eigvecs = eigvals[keep], eigvecs[:, keep]

    scaled = eigvecs * np.sqrt(np.abs(eigvals))
    positive = eigvals > 0
    columns: List[str] = [f"PCo{i + 1}" for i in range(int(positive.sum()))]
    if (~positive).any():
        logger.debug(
            f"PCoA: {int((~positive).sum())} negative eigenvalue(s), smallest "
            f"{eigvals.min():.4g}"
        )
    return PCoAResult(
        coordinates=pd.DataFrame(scaled[:, positive], index=distance.ids, columns=columns),
        negative_coordinates=scaled[:, ~positive],
        eigenvalues=eigvals,
    )
