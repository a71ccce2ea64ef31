# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

# Third-Party Imports
import pandas as pd

# Local Imports
from diversity_16s import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# ================================= TAXONOMY PARSING ================================= #

def _extract_levels(taxonomy: Optional[str]) -> Dict[str, Optional[str]]:
    """Split one taxonomy string into a rank → name mapping.

    Absent ranks and empty ones (e.g. ``g__``) map to ``None``.
    """
    levels: Dict[str, Optional[str]] = {rank: None for rank in constants.TAXONOMIC_RANKS}
    if taxonomy is None or pd.isna(taxonomy):
        return levels
    taxonomy = str(taxonomy).strip()
    if not taxonomy or taxonomy in constants.UNASSIGNED_LABELS:
        return levels

    for token in taxonomy.split(';'):
        token = token.strip()
        if '__' not in token:
            continue
        prefix, name = token.split('__', 1)
        rank = constants.RANK_PREFIXES.get(prefix.strip().lower())
        name = name.strip()
        if rank is not None and name:
            levels[rank] = name
    return levels


def parse_taxonomy(taxonomy: Iterable[Optional[str]], index: Optional[Iterable] = None) -> pd.DataFrame:
    """Parse QIIME/SILVA taxonomy strings into one column per rank.

    Args:
        taxonomy: Taxonomy strings such as ``'d__Bacteria; p__Firmicutes; ...'``.
                  A ``pandas.Series`` keeps its index.
        index:    Feature identifiers, used when ``taxonomy`` is not a Series.

    Returns:
        DataFrame (features × ranks) with ``None`` for absent assignments.
    """
    if isinstance(taxonomy, pd.Series):
        index = taxonomy.index if index is None else index
        taxonomy = taxonomy.tolist()
    else:
        taxonomy = list(taxonomy)
    rows = [_extract_levels(t) for t in taxonomy]
    df = pd.DataFrame(rows, index=index, columns=constants.TAXONOMIC_RANKS, dtype=object)
    return df.where(df.notna(), None)

# ============================== CONTAMINANT FILTERING =============================== #

@dataclass(frozen=True)
class ContaminantFilter:
    """Taxon-keep predicate used for mitochondria/chloroplast removal.

    A taxon is dropped if its family is in ``excluded_families`` or its order is
    in ``excluded_orders``. When ``required_domain`` is set, taxa assigned to a
    different domain are dropped as well. Missing rank assignments never trigger
    an exclusion while ``keep_missing`` is true; with ``keep_missing`` false a
    taxon without a domain assignment is dropped when a domain is required.
    """
    excluded_families: List[str] = field(
        default_factory=lambda: list(constants.DEFAULT_EXCLUDED_FAMILIES)
    )
    excluded_orders: List[str] = field(
        default_factory=lambda: list(constants.DEFAULT_EXCLUDED_ORDERS)
    )
    required_domain: Optional[str] = constants.DEFAULT_REQUIRED_DOMAIN
    keep_missing: bool = constants.DEFAULT_KEEP_MISSING_RANKS

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ContaminantFilter":
        return cls(
            excluded_families=list(
                config.get('excluded_families', constants.DEFAULT_EXCLUDED_FAMILIES)
            ),
            excluded_orders=list(
                config.get('excluded_orders', constants.DEFAULT_EXCLUDED_ORDERS)
            ),
            required_domain=config.get('required_domain', constants.DEFAULT_REQUIRED_DOMAIN),
            keep_missing=config.get('keep_missing', constants.DEFAULT_KEEP_MISSING_RANKS),
        )

    def __call__(self, record: Mapping[str, Optional[str]]) -> bool:
        family = record.get('Family')
        order = record.get('Order')
        if family is not None and family in self.excluded_families:
            return False
        if order is not None and order in self.excluded_orders:
            return False
        if self.required_domain is not None:
            domain = record.get('Domain')
            if domain is None:
                return self.keep_missing
            return domain == self.required_domain
        return True
