# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from diversity_16s import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# ================================= DEFAULT VALUES =================================== #

# Tolerance when comparing permuted statistics with the observed one
EPS = np.sqrt(np.finfo(float).eps)

Statistic = Callable[[np.ndarray], float]

# =================================== DATA CLASSES =================================== #

@dataclass
class PermutationOutcome:
    observed: float
    p_value: float
    null: np.ndarray
    permutations: int

# ================================= HELPER FUNCTIONS ================================= #

def resolve_n_jobs(n_jobs: Optional[int]) -> int:
    if n_jobs is None or n_jobs == 0:
        return 1
    if n_jobs < 0:
        return max(1, (os.cpu_count() or 1) + 1 + n_jobs)
    return n_jobs


def _strata_blocks(strata: Optional[Sequence], n_samples: int) -> Optional[List[np.ndarray]]:
    """Index arrays of the samples sharing each stratum label."""
    if strata is None:
        return None
    labels = pd.Series(list(strata))
    if len(labels) != n_samples:
        raise ValueError(
            f"strata has {len(labels)} entries but there are {n_samples} samples"
        )
    if labels.isna().any():
        raise ValueError("strata contains missing labels")
    codes, _ = pd.factorize(labels)
    return [np.flatnonzero(codes == k) for k in np.unique(codes)]


def _draw(
    rng: np.random.Generator,
    n_samples: int,
    blocks: Optional[List[np.ndarray]]
) -> np.ndarray:
    if blocks is None:
        return rng.permutation(n_samples)
    order = np.arange(n_samples)
    for idx in blocks:
        order[idx] = idx[rng.permutation(len(idx))]
    return order


def _run_block(
    statistic: Statistic,
    n_samples: int,
    size: int,
    seed_seq: np.random.SeedSequence,
    blocks: Optional[List[np.ndarray]]
) -> np.ndarray:
    rng = np.random.default_rng(seed_seq)
    return np.array(
        [statistic(_draw(rng, n_samples, blocks)) for _ in range(size)], dtype=float
    )

# =============================== PERMUTATION TESTING ================================ #

def permutation_test(
    statistic: Statistic,
    n_samples: int,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: Optional[int] = None,
    strata: Optional[Sequence] = None,
    n_jobs: int = 1,
    block_size: int = constants.DEFAULT_PERMUTATION_BLOCK
) -> PermutationOutcome:
    """Empirical p-value of a statistic under random relabelling.

    ``statistic`` receives an index array ``order`` and must return the
    statistic computed with labels (or residuals) taken in that order; the
    identity order gives the observed value. Permutations are drawn in blocks
    of ``block_size``, each with its own generator spawned from ``seed``, so
    the null distribution is the same for any ``n_jobs``.

    Args:
        statistic:    Callable mapping a permutation index to a float.
        n_samples:    Length of the permutation index.
        permutations: Number of permutations (0 skips the test).
        seed:         Master seed; ``None`` draws fresh OS entropy.
        strata:       Optional per-sample block labels; permutations are then
                      restricted to within blocks.
        n_jobs:       Worker threads (-1 for all CPUs).
        block_size:   Permutations per independently seeded block.

    Returns:
        PermutationOutcome with ``p = (#{null >= observed} + 1) / (permutations + 1)``.
    """
    observed = float(statistic(np.arange(n_samples)))
    if permutations <= 0:
        return PermutationOutcome(observed, np.nan, np.empty(0), 0)

    blocks = _strata_blocks(strata, n_samples)
    n_full, remainder = divmod(permutations, block_size)
    sizes = [block_size] * n_full + ([remainder] if remainder else [])
    children = np.random.SeedSequence(seed).spawn(len(sizes))

    n_jobs = resolve_n_jobs(n_jobs)
    if n_jobs == 1 or len(sizes) == 1:
        parts = [
            _run_block(statistic, n_samples, size, child, blocks)
            for size, child in zip(sizes, children)
        ]
    else:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            parts = list(executor.map(
                lambda args: _run_block(statistic, n_samples, args[0], args[1], blocks),
                zip(sizes, children)
            ))

    null = np.concatenate(parts)
    exceed = int(np.sum(null >= observed - EPS))
    p_value = (exceed + 1) / (permutations + 1)
    logger.debug(
        f"Permutation test: observed={observed:.4g}, {exceed}/{permutations} "
        f"permuted ≥ observed, p={p_value:.4g}"
    )
    return PermutationOutcome(observed, p_value, null, permutations)
