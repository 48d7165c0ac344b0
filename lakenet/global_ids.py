"""
LAKENET Global Component Numbering
==================================

Turn region-scoped local component ids into one dense global id space.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .exceptions import MergeIntegrityError

ID_MAP_COLUMNS = ["region_id", "local_component_id", "global_id"]


class GlobalIDAssigner:
    """
    Number local components globally.

    Within a region, distinct local ids are ranked in ascending order; each
    region is offset by the number of components in all regions before it,
    so global ids fill ``[0, total_components)`` whatever gaps the local
    numbering has.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def assign(
        self, lake_table: pd.DataFrame, region_order: Optional[Sequence[int]] = None
    ) -> pd.DataFrame:
        """
        Build the (region_id, local_component_id) -> global_id table.

        Args:
            lake_table: Per-lake rows with region_id and local_component_id
            region_order: Region ids in processing order; defaults to order
                of first appearance in ``lake_table``

        Returns:
            DataFrame with region_id, local_component_id and global_id

        Raises:
            MergeIntegrityError: If rows lack a local id or name a region
                missing from ``region_order``
        """
        pairs = lake_table[["region_id", "local_component_id"]].drop_duplicates()
        if pairs["local_component_id"].isna().any():
            raise MergeIntegrityError("Lake table has rows without a local component id")
        if pairs.empty:
            return pd.DataFrame({col: pd.Series([], dtype=np.int64) for col in ID_MAP_COLUMNS})

        if region_order is None:
            region_order = pd.unique(lake_table["region_id"])
        position = {region_id: i for i, region_id in enumerate(region_order)}
        unknown = set(pairs["region_id"]) - set(position)
        if unknown:
            raise MergeIntegrityError(f"Lake table names regions outside the region order: {sorted(unknown)}")

        pairs = pairs.assign(
            region_position=pairs["region_id"].map(position),
            local_component_id=pairs["local_component_id"].astype(np.int64),
        ).sort_values(["region_position", "local_component_id"], kind="mergesort")

        counts = pairs.groupby("region_position", sort=True).size()
        offsets = counts.cumsum() - counts
        dense_rank = pairs.groupby("region_position").cumcount()
        pairs["global_id"] = (dense_rank + pairs["region_position"].map(offsets)).astype(np.int64)

        self.logger.info(
            f"Assigned {len(pairs)} global component ids across {len(counts)} regions"
        )
        return pairs[ID_MAP_COLUMNS].reset_index(drop=True)

    @staticmethod
    def apply(lake_table: pd.DataFrame, id_map: pd.DataFrame) -> pd.DataFrame:
        """
        Attach ``global_id`` to every lake row.

        Raises:
            MergeIntegrityError: If a row has no global id
        """
        table = lake_table.assign(
            local_component_id=lake_table["local_component_id"].astype(np.int64)
        ).merge(id_map, on=["region_id", "local_component_id"], how="left")
        if table["global_id"].isna().any():
            raise MergeIntegrityError("Lake rows reference components missing from the id map")
        table["global_id"] = table["global_id"].astype(np.int64)
        return table
