# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Dict, Union

# Third-Party Imports
import pandas as pd
from biom import Table

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("diversity_16s")

# ================================= TABLE CONVERSION ================================= #

def table_to_df(table: Union[Dict, Table, pd.DataFrame]) -> pd.DataFrame:
    """Convert various table formats to samples × features DataFrame.

    Handles:
    - Pandas DataFrame (returns unchanged)
    - BIOM Table (transposes to samples × features)
    - Dictionary of {sample_id: {feature: count}} mappings

    Args:
        table: Input table in various formats.

    Returns:
        DataFrame in samples × features orientation.

    Raises:
        TypeError: For unsupported input types
    """
    if isinstance(table, pd.DataFrame):  # samples × features
        return table
    if isinstance(table, Table):         # features × samples
        return table.to_dataframe(dense=True).T
    if isinstance(table, dict):          # samples × features
        return pd.DataFrame.from_dict(table, orient='index').fillna(0)
    raise TypeError("Input must be BIOM Table, dict, or DataFrame.")


def to_biom(table: Union[Table, pd.DataFrame]) -> Table:
    """Convert a samples × features DataFrame to a BIOM Table (features × samples).

    Args:
        table: Input table.

    Returns:
        BIOM Table in features × samples orientation.
    """
    if isinstance(table, Table):
        return table
    if isinstance(table, pd.DataFrame):
        return Table(
            table.T.values,
            observation_ids=table.columns.astype(str).tolist(),
            sample_ids=table.index.astype(str).tolist(),
            type="OTU table"
        )
    raise ValueError(f"Unsupported table type: {type(table)}")
