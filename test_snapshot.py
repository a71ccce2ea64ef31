"""HDF5 snapshots of the filtered dataset."""

import numpy as np
import pandas as pd
import pytest

from diversity_16s.utils.biom import load_snapshot, save_snapshot, snapshot_path


def test_snapshot_round_trip(dataset, tmp_path):
    path = save_snapshot(dataset, tmp_path / 'snapshots', key='filtered')
    assert path == snapshot_path(tmp_path / 'snapshots', 'filtered')
    assert path.exists()

    restored = load_snapshot(tmp_path / 'snapshots', key='filtered')
    assert restored.sample_ids == dataset.sample_ids
    assert restored.taxon_ids == dataset.taxon_ids
    np.testing.assert_array_equal(restored.table.to_numpy(), dataset.table.to_numpy())
    assert restored.table.dtypes.eq(np.int64).all()

    # Absent rank assignments stay absent
    assert restored.taxonomy.loc['T2', 'Genus'] is None
    assert restored.taxonomy.loc['T4'].isna().all()
    assert restored.taxonomy.loc['T1', 'Family'] == 'Lachnospiraceae'

    pd.testing.assert_frame_equal(
        restored.metadata, dataset.metadata, check_names=False
    )


def test_snapshot_keeps_renamed_taxa(dataset, tmp_path):
    renamed = dataset.rename_taxa()
    save_snapshot(renamed, tmp_path)
    restored = load_snapshot(tmp_path)
    assert restored.taxon_ids == ['ASV1', 'ASV2', 'ASV3', 'ASV4']
    assert restored.taxonomy['OriginalId'].tolist() == ['T1', 'T2', 'T3', 'T4']


def test_missing_snapshot(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_snapshot(tmp_path, key='absent')
