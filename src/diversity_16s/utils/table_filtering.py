# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging

# Third-Party Imports
import pandas as pd

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.amplicon_data.dataset import CommunityDataset, subset

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("diversity_16s")

# ==================================== RARE TAXA ===================================== #

def relative_abundance(dataset: CommunityDataset) -> pd.Series:
    """Share of each taxon in the grand total of the matrix (NaN if the total is 0)."""
    totals = dataset.taxon_totals.astype(float)
    grand_total = totals.sum()
    if grand_total == 0:
        return totals * float('nan')
    return totals / grand_total


def prune_rare_taxa(
    dataset: CommunityDataset,
    min_relative_abundance: float = constants.DEFAULT_MIN_REL_ABUNDANCE
) -> CommunityDataset:
    """Drop taxa whose share of the total abundance does not exceed a threshold.

    A taxon is kept iff ``taxon_total / grand_total > min_relative_abundance``.
    Samples are left untouched.

    Args:
        dataset:                Input dataset.
        min_relative_abundance: Threshold in [0, 1] (a fraction, not a percentage).

    Returns:
        New dataset with the reduced taxon axis.

    Raises:
        ValueError: If the threshold is outside [0, 1].
    """
    if not 0 <= min_relative_abundance <= 1:
        raise ValueError(
            f"min_relative_abundance must be within [0, 1], got {min_relative_abundance}"
        )

    shares = relative_abundance(dataset)
    if shares.isna().all() and dataset.n_taxa:
        logger.warning("Abundance matrix sums to zero; no taxa pass the abundance filter")

    keep = shares.index[shares > min_relative_abundance].tolist()
    logger.info(
        f"Abundance filter (> {min_relative_abundance:g}) kept "
        f"{len(keep)}/{dataset.n_taxa} taxa"
    )
    return subset(dataset, taxa=keep)
