# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from io import StringIO
from pathlib import Path
from typing import Union

# Third-Party Imports
import h5py
import numpy as np
import pandas as pd
from biom.table import Table

# Local Imports
from diversity_16s import constants
from diversity_16s.amplicon_data.dataset import CommunityDataset, build
from diversity_16s.utils.data import table_to_df, to_biom

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# ==================================== SNAPSHOTS ===================================== #

def snapshot_path(
    directory: Union[str, Path],
    key: str = constants.DEFAULT_SNAPSHOT_KEY
) -> Path:
    return Path(directory) / f"{key}.h5"


def _write_frame(f: h5py.File, name: str, df: pd.DataFrame) -> None:
    f.create_dataset(name, data=df.to_json(orient='split'))


def _read_frame(f: h5py.File, name: str) -> pd.DataFrame:
    text = f[name].asstr()[()]
    return pd.read_json(
        StringIO(text), orient='split', dtype=False,
        convert_axes=False, convert_dates=False
    )


def save_snapshot(
    dataset: CommunityDataset,
    directory: Union[str, Path],
    key: str = constants.DEFAULT_SNAPSHOT_KEY
) -> Path:
    """Write a CommunityDataset to ``<directory>/<key>.h5``.

    The count table is stored as a BIOM HDF5 group; taxonomy and metadata are
    stored as JSON so that absent rank assignments survive as ``null``.

    Args:
        dataset:   Dataset to persist.
        directory: Snapshot directory (created if needed).
        key:       Snapshot name.

    Returns:
        Path of the written file.
    """
    output_path = snapshot_path(directory, key)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    table = to_biom(dataset.table)
    with h5py.File(output_path, 'w') as f:
        table.to_hdf5(f.create_group('table'), generated_by="diversity_16s")
        _write_frame(f, 'taxonomy', dataset.taxonomy)
        _write_frame(f, 'metadata', dataset.metadata)
        f.attrs['key'] = key

    logger.info(f"Saved snapshot '{key}' → {output_path}")
    return output_path


def load_snapshot(
    directory: Union[str, Path],
    key: str = constants.DEFAULT_SNAPSHOT_KEY
) -> CommunityDataset:
    """Reload a dataset written by :func:`save_snapshot`.

    The tables go through :func:`build` again, so a corrupted or hand-edited
    snapshot fails with the same errors as fresh input.

    Raises:
        FileNotFoundError: If no snapshot with this key exists.
    """
    input_path = snapshot_path(directory, key)
    if not input_path.exists():
        raise FileNotFoundError(f"No snapshot '{key}' found in '{directory}'")

    with h5py.File(input_path, 'r') as f:
        table = Table.from_hdf5(f['table'])
        taxonomy = _read_frame(f, 'taxonomy')
        metadata = _read_frame(f, 'metadata')

    counts = table_to_df(table)
    counts = pd.DataFrame(
        np.rint(counts.to_numpy(dtype=float)).astype(np.int64),
        index=counts.index, columns=counts.columns
    )
    dataset = build(counts, taxonomy, metadata)
    logger.info(f"Loaded snapshot '{key}' ← {input_path} ({dataset!r})")
    return dataset
