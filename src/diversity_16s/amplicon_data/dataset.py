# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from biom import Table

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.errors import AlignmentError, InvalidAbundanceError
from diversity_16s.utils.data import table_to_df

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("diversity_16s")

# ================================= DEFAULT VALUES =================================== #

RAW_SEQUENCE_PATTERN = re.compile(
    rf'^[ACGTN]{{{constants.MIN_SEQUENCE_LENGTH},}}$', re.IGNORECASE
)

TaxonPredicate = Callable[[Mapping[str, Optional[str]]], bool]

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True, eq=False)
class CommunityDataset:
    """Aligned abundance matrix, taxonomy table and sample metadata.

    Attributes:
        table:    Counts, samples × taxa (``int64``).
        taxonomy: Rank assignments, taxa × ranks, in ``table`` column order.
                  Absent assignments are ``None``.
        metadata: Covariates, samples × fields, in ``table`` row order.

    Instances are never modified in place; every transformation returns a new
    dataset so results can be re-derived from the unfiltered one.
    """
    table: pd.DataFrame
    taxonomy: pd.DataFrame
    metadata: pd.DataFrame

    @property
    def sample_ids(self) -> List[str]:
        return self.table.index.tolist()

    @property
    def taxon_ids(self) -> List[str]:
        return self.table.columns.tolist()

    @property
    def n_samples(self) -> int:
        return self.table.shape[0]

    @property
    def n_taxa(self) -> int:
        return self.table.shape[1]

    @property
    def sample_totals(self) -> pd.Series:
        return self.table.sum(axis=1)

    @property
    def taxon_totals(self) -> pd.Series:
        return self.table.sum(axis=0)

    def rename_taxa(self) -> "CommunityDataset":
        return rename_taxa(self)

    def filter_taxa(self, predicate: TaxonPredicate) -> "CommunityDataset":
        return filter_taxa(self, predicate)

    def exclude_samples(self, samples: Iterable[str]) -> "CommunityDataset":
        return exclude_samples(self, samples)

    def drop_empty_samples(self) -> "CommunityDataset":
        return drop_empty_samples(self)

    def __repr__(self) -> str:
        return (
            f"CommunityDataset(n_samples={self.n_samples}, n_taxa={self.n_taxa}, "
            f"metadata_columns={self.metadata.columns.tolist()})"
        )

# ================================= HELPER FUNCTIONS ================================= #

def _examples(ids: Iterable[Any], n: int = 5) -> List[str]:
    return sorted(str(i) for i in ids)[:n]


def _check_duplicates(ids: pd.Index, description: str) -> None:
    duplicated = ids[ids.duplicated()].unique()
    if len(duplicated) > 0:
        raise AlignmentError(
            f"Found {len(duplicated)} duplicate {description} IDs: "
            f"{_examples(duplicated)}"
        )


def _check_alignment(
    left: pd.Index,
    right: pd.Index,
    axis: str,
    left_name: str,
    right_name: str
) -> None:
    """Raise if two identifier sets differ."""
    only_left = left.difference(right)
    only_right = right.difference(left)
    if len(only_left) or len(only_right):
        raise AlignmentError(
            f"{axis.capitalize()} IDs differ between the {left_name} and the "
            f"{right_name}\n"
            f"Only in {left_name} ({len(only_left)}): {_examples(only_left)}\n"
            f"Only in {right_name} ({len(only_right)}): {_examples(only_right)}"
        )


def _validate_counts(table: pd.DataFrame) -> pd.DataFrame:
    """Return the table as non-negative ``int64`` counts."""
    try:
        values = table.to_numpy(dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidAbundanceError(f"Abundance matrix is not numeric: {e}") from e

    if not np.isfinite(values).all():
        raise InvalidAbundanceError("Abundance matrix contains NaN or infinite values")
    if (values < 0).any():
        rows, cols = np.nonzero(values < 0)
        raise InvalidAbundanceError(
            f"Abundance matrix contains {len(rows)} negative counts, e.g. "
            f"sample '{table.index[rows[0]]}', taxon '{table.columns[cols[0]]}'"
        )
    if (values != np.round(values)).any():
        raise InvalidAbundanceError("Abundance matrix contains non-integer counts")

    return pd.DataFrame(
        values.astype(np.int64), index=table.index, columns=table.columns
    )


def _normalize_taxonomy(taxonomy: pd.DataFrame) -> pd.DataFrame:
    """Ensure every rank column exists and absent values are ``None``."""
    taxonomy = taxonomy.astype(object)
    for rank in constants.TAXONOMIC_RANKS:
        if rank not in taxonomy.columns:
            taxonomy[rank] = None
    extra = [c for c in taxonomy.columns if c not in constants.TAXONOMIC_RANKS]
    taxonomy = taxonomy[constants.TAXONOMIC_RANKS + extra]
    return taxonomy.where(taxonomy.notna(), None)


def _with_string_index(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.index = df.index.astype(str)
    return df


def subset(
    dataset: CommunityDataset,
    samples: Optional[Sequence[str]] = None,
    taxa: Optional[Sequence[str]] = None
) -> CommunityDataset:
    """Select samples and/or taxa on all three tables at once."""
    samples = dataset.sample_ids if samples is None else list(samples)
    taxa = dataset.taxon_ids if taxa is None else list(taxa)
    return CommunityDataset(
        table=dataset.table.loc[samples, taxa].copy(),
        taxonomy=dataset.taxonomy.loc[taxa].copy(),
        metadata=dataset.metadata.loc[samples].copy(),
    )

# =============================== DATASET CONSTRUCTION =============================== #

def build(
    abundance: Union[pd.DataFrame, Table, Dict],
    taxonomy: pd.DataFrame,
    metadata: pd.DataFrame,
    meta_id_col: Optional[str] = None
) -> CommunityDataset:
    """Validate and align the three input tables into a CommunityDataset.

    Args:
        abundance:   Counts as a samples × taxa DataFrame, a BIOM Table
                     (features × samples) or a dict of columns.
        taxonomy:    Taxonomy table indexed by taxon ID.
        metadata:    Sample metadata indexed by sample ID.
        meta_id_col: Metadata column holding sample IDs, if they are not the
                     index.

    Returns:
        A new CommunityDataset with metadata and taxonomy rows reordered to
        match the abundance matrix.

    Raises:
        AlignmentError:        For duplicate IDs or mismatched ID sets.
        InvalidAbundanceError: For negative, non-finite or non-integer counts.
    """
    table = table_to_df(abundance).copy()
    table.index = table.index.astype(str)
    table.columns = table.columns.astype(str)

    if meta_id_col:
        if meta_id_col not in metadata.columns:
            raise KeyError(f"Metadata ID column '{meta_id_col}' not found")
        metadata = metadata.set_index(meta_id_col)
    metadata = _with_string_index(metadata)
    taxonomy = _with_string_index(taxonomy)

    _check_duplicates(table.index, "abundance sample")
    _check_duplicates(table.columns, "abundance taxon")
    _check_duplicates(taxonomy.index, "taxonomy")
    _check_duplicates(metadata.index, "metadata sample")
    _check_alignment(table.columns, taxonomy.index, "taxon", "abundance matrix", "taxonomy table")
    _check_alignment(table.index, metadata.index, "sample", "abundance matrix", "sample metadata")

    table = _validate_counts(table)
    dataset = CommunityDataset(
        table=table,
        taxonomy=_normalize_taxonomy(taxonomy.loc[table.columns]),
        metadata=metadata.loc[table.index],
    )
    logger.debug(f"Built {dataset!r}")
    return dataset

# ================================= TRANSFORMATIONS ================================== #

def rename_taxa(dataset: CommunityDataset) -> CommunityDataset:
    """Replace taxon IDs with ``ASV1``, ``ASV2``, ... in matrix column order.

    The previous identifier is kept in the taxonomy table: in the ``Sequence``
    column when the IDs are raw nucleotide sequences and no sequence column
    exists yet, otherwise in ``OriginalId``. An existing ``OriginalId`` column
    is left as is, so renaming twice keeps the first identifiers.
    """
    original_ids = dataset.taxon_ids
    new_ids = [f"{constants.FEATURE_PREFIX}{i}" for i in range(1, len(original_ids) + 1)]

    taxonomy = dataset.taxonomy.copy()
    is_sequence = bool(original_ids) and all(
        RAW_SEQUENCE_PATTERN.match(t) for t in original_ids
    )
    if is_sequence and constants.SEQUENCE_COLUMN not in taxonomy.columns:
        taxonomy[constants.SEQUENCE_COLUMN] = original_ids
    elif constants.ORIGINAL_ID_COLUMN not in taxonomy.columns:
        taxonomy[constants.ORIGINAL_ID_COLUMN] = original_ids
    taxonomy.index = pd.Index(new_ids)

    table = dataset.table.copy()
    table.columns = pd.Index(new_ids)
    return replace(dataset, table=table, taxonomy=taxonomy)


def filter_taxa(dataset: CommunityDataset, predicate: TaxonPredicate) -> CommunityDataset:
    """Keep the taxa whose taxonomy record satisfies ``predicate``.

    Args:
        dataset:   Input dataset.
        predicate: Called with a dict of column → value for each taxon.

    Returns:
        New dataset with the same samples and a reduced taxon axis.
    """
    records = dataset.taxonomy.to_dict(orient='records')
    keep = [
        taxon for taxon, record in zip(dataset.taxon_ids, records) if predicate(record)
    ]
    logger.info(
        f"Taxon filter kept {len(keep)}/{dataset.n_taxa} taxa "
        f"({dataset.n_taxa - len(keep)} removed)"
    )
    return subset(dataset, taxa=keep)

# ================================= SAMPLE EXCLUSION ================================= #

def exclude_samples(dataset: CommunityDataset, samples: Iterable[str]) -> CommunityDataset:
    """Remove the given samples from the abundance matrix and the metadata."""
    samples = {str(s) for s in samples}
    unknown = samples.difference(dataset.sample_ids)
    if unknown:
        raise KeyError(f"Unknown sample IDs: {_examples(unknown)}")
    keep = [s for s in dataset.sample_ids if s not in samples]
    return subset(dataset, samples=keep)


def drop_empty_samples(dataset: CommunityDataset) -> CommunityDataset:
    """Remove samples whose total abundance is zero."""
    totals = dataset.sample_totals
    empty = totals.index[totals == 0].tolist()
    if empty:
        logger.warning(
            f"Excluding {len(empty)} samples with zero total abundance: "
            f"{_examples(empty)}"
        )
    return exclude_samples(dataset, empty)
