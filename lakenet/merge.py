"""
LAKENET Network Reconciliation
==============================

Collapse global component ids into province-wide networks.

Two kinds of evidence say that two components are one network:

- boundary fragments from different regions that overlap
  (``CrossRegionMerger``)
- the same named water body observed under different ids
  (``IdentityMerger``)

Each merger can be applied on its own. ``NetworkReconciler`` feeds the
edges of both into a single ``UnionFind`` and resolves them once, which
gives the same partition without depending on the order of the passes.
Every equivalence class is represented by its smallest member id.
"""

import logging
from collections import defaultdict
from itertools import chain
from typing import Dict, Hashable, Iterable, List, Optional, Sequence, Set, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from .exceptions import MergeIntegrityError
from .global_ids import GlobalIDAssigner

Edge = Tuple[int, int]

FINAL_COLUMNS = [
    "global_network_id",
    "waterbody_key",
    "watershed_group_id",
    "name",
    "connection_count",
    "region_id",
]


class UnionFind:
    """Disjoint sets whose representative is always the smallest member."""

    def __init__(self, elements: Optional[Iterable[Hashable]] = None):
        self.parent: Dict[Hashable, Hashable] = {}
        if elements is not None:
            for element in elements:
                self.add(element)

    def __len__(self) -> int:
        return len(self.parent)

    def add(self, element: Hashable) -> None:
        if element not in self.parent:
            self.parent[element] = element

    def find(self, element: Hashable) -> Hashable:
        """Representative of the set holding ``element``, compressing the path."""
        self.add(element)
        root = element
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[element] != root:
            self.parent[element], element = root, self.parent[element]
        return root

    def union(self, a: Hashable, b: Hashable) -> Hashable:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        low, high = (root_a, root_b) if root_a < root_b else (root_b, root_a)
        self.parent[high] = low
        return low

    def union_all(self, edges: Iterable[Tuple[Hashable, Hashable]]) -> None:
        for a, b in edges:
            self.union(a, b)

    def mapping(self) -> Dict[Hashable, Hashable]:
        return {element: self.find(element) for element in list(self.parent)}

    def class_count(self) -> int:
        return sum(1 for element, parent in self.parent.items() if element == parent)


def apply_mapping(ids: pd.Series, mapping: Dict[int, int]) -> pd.Series:
    """Replace ids by their representative; unmapped ids are kept."""
    return ids.map(mapping).fillna(ids).astype(np.int64)


def _resolve(ids: Iterable[int], edges: Iterable[Edge]) -> Dict[int, int]:
    union_find = UnionFind(ids)
    union_find.union_all(edges)
    return union_find.mapping()


class CrossRegionMerger:
    """
    Merge components whose boundary fragments overlap across regions.

    Same-region pairs are never compared; the region's own union already
    joined them.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def tag_fragments(self, fragments: gpd.GeoDataFrame, id_map: pd.DataFrame) -> gpd.GeoDataFrame:
        """
        Attach the global id of each fragment's component.

        Raises:
            MergeIntegrityError: If a fragment's component has no global id
        """
        keys = ["region_id", "local_component_id"]
        tagged = fragments.astype({"local_component_id": np.int64}).merge(
            id_map[keys + ["global_id"]], on=keys, how="left"
        )
        missing = tagged["global_id"].isna()
        if missing.any():
            orphans = tagged.loc[missing, keys].drop_duplicates().to_records(index=False).tolist()
            raise MergeIntegrityError(
                f"{int(missing.sum())} boundary fragments reference components "
                f"absent from the lake table: {orphans[:10]}"
            )
        tagged["global_id"] = tagged["global_id"].astype(np.int64)
        return tagged

    def adjacency(self, fragments: gpd.GeoDataFrame, id_map: pd.DataFrame) -> Dict[int, Set[int]]:
        """Neighbouring global ids of every component touching another region."""
        neighbours: Dict[int, Set[int]] = defaultdict(set)
        if fragments.empty:
            return {}

        tagged = self.tag_fragments(fragments, id_map)[["region_id", "global_id", "geometry"]]
        joined = gpd.sjoin(tagged, tagged, how="inner", predicate="intersects")
        joined = joined[joined["region_id_left"] != joined["region_id_right"]]

        for a, b in zip(joined["global_id_left"], joined["global_id_right"]):
            if a != b:
                neighbours[int(a)].add(int(b))
                neighbours[int(b)].add(int(a))
        return dict(neighbours)

    def edges(self, fragments: gpd.GeoDataFrame, id_map: pd.DataFrame) -> List[Edge]:
        adjacency = self.adjacency(fragments, id_map)
        edges = sorted({(min(a, b), max(a, b)) for a, nbrs in adjacency.items() for b in nbrs})
        self.logger.info(f"Found {len(edges)} cross-region fragment overlaps")
        return edges

    def mapping(self, fragments: gpd.GeoDataFrame, id_map: pd.DataFrame) -> Dict[int, int]:
        return _resolve(id_map["global_id"], self.edges(fragments, id_map))

    def merge(
        self,
        table: pd.DataFrame,
        fragments: gpd.GeoDataFrame,
        id_map: pd.DataFrame,
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Rewrite ``global_id`` of every row to its class representative.

        Returns:
            Tuple of (merged table, merged id map)
        """
        mapping = self.mapping(fragments, id_map)
        merged_table = table.assign(global_id=apply_mapping(table["global_id"], mapping))
        merged_map = id_map.assign(global_id=apply_mapping(id_map["global_id"], mapping))
        return merged_table, merged_map


class IdentityMerger:
    """
    Merge components holding the same named water body.

    Rows are grouped by (waterbody_key, name). Unnamed rows are left out:
    keys repeat across distinct unnamed polygons, so the key alone does not
    identify a real lake.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def named_rows(table: pd.DataFrame) -> pd.DataFrame:
        names = table["name"]
        has_name = names.notna() & names.astype(str).str.strip().ne("")
        return table[has_name]

    def edges(self, table: pd.DataFrame) -> List[Edge]:
        named = self.named_rows(table)
        edges: Set[Edge] = set()
        groups = 0
        for _, ids in named.groupby(["waterbody_key", "name"], sort=False)["global_id"]:
            distinct = sorted(set(int(i) for i in ids))
            if len(distinct) > 1:
                groups += 1
                edges.update((distinct[0], other) for other in distinct[1:])
        self.logger.info(f"Found {groups} named water bodies spanning several components")
        return sorted(edges)

    def mapping(self, table: pd.DataFrame) -> Dict[int, int]:
        return _resolve(table["global_id"], self.edges(table))

    def merge(self, table: pd.DataFrame) -> pd.DataFrame:
        """Rewrite ``global_id`` on all rows, named or not."""
        return table.assign(global_id=apply_mapping(table["global_id"], self.mapping(table)))


class NetworkReconciler:
    """
    Global numbering plus both merges, resolved in a single union-find pass.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.assigner = GlobalIDAssigner(self.logger)
        self.cross_region = CrossRegionMerger(self.logger)
        self.identity = IdentityMerger(self.logger)

    def reconcile(
        self,
        lake_table: pd.DataFrame,
        fragments: gpd.GeoDataFrame,
        region_order: Optional[Sequence[int]] = None,
    ) -> pd.DataFrame:
        """
        Produce the final per-lake network table.

        Args:
            lake_table: Completed per-lake table across all regions
            fragments: All boundary fragments
            region_order: Region ids in processing order

        Returns:
            DataFrame with global_network_id, waterbody_key,
            watershed_group_id, name, connection_count and region_id

        Raises:
            MergeIntegrityError: If fragments or rows reference unknown components
        """
        id_map = self.assigner.assign(lake_table, region_order)
        table = self.assigner.apply(lake_table, id_map)

        union_find = UnionFind(id_map["global_id"])
        union_find.union_all(
            chain(self.cross_region.edges(fragments, id_map), self.identity.edges(table))
        )

        table["global_network_id"] = apply_mapping(table["global_id"], union_find.mapping())
        self.logger.info(
            f"Reconciled {len(id_map)} components into {union_find.class_count()} networks "
            f"covering {len(table)} lake rows"
        )
        return table[FINAL_COLUMNS].reset_index(drop=True)
