"""
LAKENET Region Processing
=========================

Local connected components of lakes and rivers within one region.

Lakes and rivers are cropped to the region, expanded by small tolerances so
that features which visibly touch are treated as connected, unioned, and
split into disjoint polygonal pieces. Pieces holding lake area become local
components; a lake cropped into several parts joins all of its pieces into
one component.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import make_valid

from .exceptions import GeometryError
from .merge import UnionFind
from .provider import Region

LAKE_RESULT_COLUMNS = [
    "waterbody_key",
    "watershed_group_id",
    "name",
    "region_id",
    "local_component_id",
    "connection_count",
]
COMPONENT_COLUMNS = ["region_id", "local_component_id", "watershed_group_id"]


def empty_geoframe(columns: List[str], crs: Any) -> gpd.GeoDataFrame:
    """Empty GeoDataFrame with the given attribute columns and CRS."""
    data = {col: pd.Series([], dtype=object) for col in columns}
    return gpd.GeoDataFrame(data, geometry=gpd.GeoSeries([], crs=crs))


def geometry_sort_key(geom: BaseGeometry):
    """Ordering key derived from the geometry itself, not from row order."""
    minx, miny, maxx, maxy = geom.bounds
    return (minx, miny, maxx, maxy, geom.area)


def _polygonal(geom: BaseGeometry) -> BaseGeometry:
    """Drop line and point parts left over from clipping a polygon."""
    if geom.geom_type in ("Polygon", "MultiPolygon"):
        return geom
    polygons = [p for p in shapely.get_parts(geom) if p.geom_type == "Polygon"]
    if not polygons:
        return Polygon()
    return polygons[0] if len(polygons) == 1 else MultiPolygon(polygons)


def _most_common(values: pd.Series):
    modes = values.mode(dropna=True)
    return modes.iloc[0] if len(modes) else None


@dataclass
class RegionResult:
    """Per-lake rows and local component geometry for one region."""

    region: Region
    region_geometry: BaseGeometry
    lakes: pd.DataFrame
    components: gpd.GeoDataFrame

    @property
    def component_count(self) -> int:
        return len(self.components)


class RegionProcessor:
    """
    Compute local connected components of buffered lakes and rivers.

    Attributes:
        lake_buffer (float): Outward expansion applied to lakes
        river_buffer (float): Outward expansion applied to rivers
        min_region_part_area (float): Parts of a multi-part region smaller
            than this are discarded before processing
        logger (logging.Logger): Logger instance
    """

    def __init__(
        self,
        lake_buffer: float = 3.0,
        river_buffer: float = 7.0,
        min_region_part_area: float = 1_000_000.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.lake_buffer = lake_buffer
        self.river_buffer = river_buffer
        self.min_region_part_area = min_region_part_area
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(
        cls, config: Dict[str, Any], logger: Optional[logging.Logger] = None
    ) -> "RegionProcessor":
        tolerances = config["tolerances"]
        return cls(
            lake_buffer=tolerances["lake_buffer"],
            river_buffer=tolerances["river_buffer"],
            min_region_part_area=tolerances["min_region_part_area"],
            logger=logger,
        )

    def clean_region_geometry(self, geometry: BaseGeometry) -> BaseGeometry:
        """
        Repair the region and discard sliver parts of a multi-part region.

        Invalid outlines (self-intersections, bowties) are made valid and
        only their polygon parts are kept. A single remaining part is kept
        whatever its area.
        """
        if not geometry.is_valid:
            self.logger.warning("Repairing invalid region geometry")
            geometry = make_valid(geometry)

        parts = [p for p in shapely.get_parts(geometry) if p.geom_type == "Polygon"]
        if not parts:
            return Polygon()
        if len(parts) == 1:
            return parts[0]

        kept = [p for p in parts if p.area >= self.min_region_part_area]
        if len(kept) < len(parts):
            self.logger.debug(
                f"Discarded {len(parts) - len(kept)} region parts below "
                f"{self.min_region_part_area:g} m²"
            )
        if not kept:
            return Polygon()
        return kept[0] if len(kept) == 1 else MultiPolygon(kept)

    def _repair(self, gdf: gpd.GeoDataFrame, description: str) -> gpd.GeoDataFrame:
        invalid = ~gdf.geometry.is_valid
        if invalid.any():
            self.logger.warning(f"Repairing {int(invalid.sum())} invalid {description} geometries")
            gdf = gdf.copy()
            gdf["geometry"] = gpd.GeoSeries(
                [make_valid(g) if bad else g for g, bad in zip(gdf.geometry, invalid)],
                index=gdf.index,
                crs=gdf.crs,
            )
        return gdf

    def _clip(self, gdf: gpd.GeoDataFrame, region_geometry: BaseGeometry) -> gpd.GeoDataFrame:
        """Crop features to the region, keeping only those that truly intersect it."""
        inside = gdf[gdf.geometry.intersects(region_geometry)].copy()
        inside["geometry"] = inside.geometry.intersection(region_geometry)
        return inside

    def _clip_lakes(self, lakes: gpd.GeoDataFrame, region_geometry: BaseGeometry) -> gpd.GeoDataFrame:
        lakes = self._clip(self._repair(lakes, "lake"), region_geometry)
        if lakes.empty:
            return lakes.reset_index(drop=True)
        lakes["geometry"] = gpd.GeoSeries(
            [_polygonal(g) for g in lakes.geometry], index=lakes.index, crs=lakes.crs
        )
        return lakes[lakes.geometry.area > 0].reset_index(drop=True)

    def _clip_rivers(self, rivers: gpd.GeoDataFrame, region_geometry: BaseGeometry) -> gpd.GeoDataFrame:
        """Areal rivers must keep area inside the region, linear ones length."""
        rivers = self._repair(rivers, "river")
        areal = rivers.geom_type.isin(["Polygon", "MultiPolygon"])
        rivers = self._clip(rivers, region_geometry)
        if rivers.empty:
            return rivers.reset_index(drop=True)
        keep = np.where(
            areal.loc[rivers.index].to_numpy(),
            rivers.geometry.area.to_numpy() > 0,
            rivers.geometry.length.to_numpy() > 0,
        )
        return rivers[keep].reset_index(drop=True)

    def connection_counts(
        self,
        lake_geometry: gpd.GeoSeries,
        rivers: gpd.GeoDataFrame,
        river_geometry: gpd.GeoSeries,
    ) -> np.ndarray:
        """
        Count distinct river features intersecting each buffered lake.

        Rivers sharing a ``river_id`` count once; rivers without an id count
        individually.
        """
        counts = np.zeros(len(lake_geometry), dtype=np.int64)
        if len(lake_geometry) == 0 or len(river_geometry) == 0:
            return counts

        lake_idx, river_idx = river_geometry.sindex.query(
            lake_geometry.values, predicate="intersects"
        )
        if len(lake_idx) == 0:
            return counts

        if "river_id" in rivers.columns:
            refs = [
                rid if pd.notna(rid) else ("row", i)
                for i, rid in enumerate(rivers["river_id"])
            ]
        else:
            refs = list(range(len(rivers)))

        pairs = pd.DataFrame({"lake": lake_idx, "river": [refs[i] for i in river_idx]})
        per_lake = pairs.groupby("lake")["river"].nunique()
        counts[per_lake.index.to_numpy()] = per_lake.to_numpy()
        return counts

    def process(
        self,
        region: Region,
        lakes: gpd.GeoDataFrame,
        rivers: gpd.GeoDataFrame,
    ) -> RegionResult:
        """
        Compute the local components of one region.

        Args:
            region: Region being processed
            lakes: Lakes intersecting the region (canonical lake schema)
            rivers: Rivers intersecting the region

        Returns:
            RegionResult with one row per lake and the component geometries

        Raises:
            GeometryError: If the geometry engine fails on this region
        """
        crs = lakes.crs
        region_geometry = self.clean_region_geometry(region.geometry)
        if region_geometry.is_empty:
            self.logger.warning(f"Region {region.region_id} has no usable area")
            return self._empty_result(region, region_geometry, crs)

        try:
            lakes = self._clip_lakes(lakes, region_geometry)
            if lakes.empty:
                self.logger.debug(f"Region {region.region_id} has no lakes")
                return self._empty_result(region, region_geometry, crs)

            rivers = self._clip_rivers(rivers, region_geometry)
            lake_buffered = lakes.geometry.buffer(self.lake_buffer)

            if rivers.empty:
                self.logger.debug(
                    f"Region {region.region_id} has no rivers, lakes are singleton components"
                )
                return self._singleton_components(region, region_geometry, lakes, lake_buffered)

            river_buffered = rivers.geometry.buffer(self.river_buffer)
            counts = self.connection_counts(lake_buffered, rivers, river_buffered)
            return self._unioned_components(
                region, region_geometry, lakes, lake_buffered, river_buffered, counts
            )
        except GEOSException as e:
            raise GeometryError(f"Geometry processing failed for region {region.region_id}: {e}")

    def _singleton_components(
        self,
        region: Region,
        region_geometry: BaseGeometry,
        lakes: gpd.GeoDataFrame,
        lake_buffered: gpd.GeoSeries,
    ) -> RegionResult:
        order = sorted(range(len(lakes)), key=lambda i: geometry_sort_key(lake_buffered.iloc[i]))
        local_ids = np.empty(len(lakes), dtype=np.int64)
        local_ids[order] = np.arange(len(lakes))

        rows = self._lake_rows(region, lakes, local_ids, np.zeros(len(lakes), dtype=np.int64))
        components = gpd.GeoDataFrame(
            {
                "region_id": region.region_id,
                "local_component_id": np.arange(len(lakes)),
                "watershed_group_id": lakes["watershed_group_id"].to_numpy()[order],
            },
            geometry=lake_buffered.to_numpy()[order],
            crs=lakes.crs,
        )
        return RegionResult(region, region_geometry, rows, components)

    def _unioned_components(
        self,
        region: Region,
        region_geometry: BaseGeometry,
        lakes: gpd.GeoDataFrame,
        lake_buffered: gpd.GeoSeries,
        river_buffered: gpd.GeoSeries,
        counts: np.ndarray,
    ) -> RegionResult:
        merged = unary_union(list(lake_buffered) + list(river_buffered))
        pieces = [p for p in shapely.get_parts(merged) if p.geom_type == "Polygon"]
        pieces.sort(key=geometry_sort_key)
        piece_series = gpd.GeoSeries(pieces, crs=lakes.crs)

        # A lake cropped into several parts can touch several pieces
        lake_idx, piece_idx = piece_series.sindex.query(
            lakes.geometry.values, predicate="intersects"
        )
        membership = pd.DataFrame({"lake": lake_idx, "piece": piece_idx}).sort_values(
            ["lake", "piece"]
        )
        if membership["lake"].nunique() != len(lakes):
            raise GeometryError(
                f"{len(lakes) - membership['lake'].nunique()} lakes in region "
                f"{region.region_id} fell outside every unioned component"
            )

        pieces_by_root = self._join_lake_pieces(membership)
        used = np.array(sorted(pieces_by_root))
        first_piece = membership.drop_duplicates("lake")["piece"].to_numpy()
        piece_root = {p: root for root, members in pieces_by_root.items() for p in members}
        local_ids = np.searchsorted(used, [piece_root[p] for p in first_piece])

        dropped = len(pieces) - sum(len(members) for members in pieces_by_root.values())
        if dropped:
            self.logger.debug(
                f"Region {region.region_id}: dropped {dropped} components without lakes"
            )

        rows = self._lake_rows(region, lakes, local_ids, counts)
        watershed = (
            pd.Series(lakes["watershed_group_id"].to_numpy())
            .groupby(local_ids)
            .agg(_most_common)
        )
        components = gpd.GeoDataFrame(
            {
                "region_id": region.region_id,
                "local_component_id": np.arange(len(used)),
                "watershed_group_id": watershed.reindex(np.arange(len(used))).to_numpy(),
            },
            geometry=[self._component_geometry(pieces, pieces_by_root[root]) for root in used],
            crs=lakes.crs,
        )
        return RegionResult(region, region_geometry, rows, components)

    @staticmethod
    def _join_lake_pieces(membership: pd.DataFrame) -> Dict[int, List[int]]:
        """
        Group pieces that share a lake.

        Returns:
            Mapping of the smallest (first in geometric order) piece of each
            group to all pieces in the group
        """
        union_find = UnionFind(int(p) for p in membership["piece"])
        for _, lake_pieces in membership.groupby("lake")["piece"]:
            members = [int(p) for p in lake_pieces]
            union_find.union_all(zip(members, members[1:]))

        groups: Dict[int, List[int]] = {}
        for piece, root in sorted(union_find.mapping().items()):
            groups.setdefault(root, []).append(piece)
        return groups

    @staticmethod
    def _component_geometry(pieces: List[BaseGeometry], members: List[int]) -> BaseGeometry:
        if len(members) == 1:
            return pieces[members[0]]
        return MultiPolygon([pieces[i] for i in members])

    def _lake_rows(
        self,
        region: Region,
        lakes: gpd.GeoDataFrame,
        local_ids: np.ndarray,
        counts: np.ndarray,
    ) -> pd.DataFrame:
        rows = pd.DataFrame(
            {
                "waterbody_key": lakes["waterbody_key"].to_numpy(),
                "watershed_group_id": lakes["watershed_group_id"].to_numpy(),
                "name": lakes["name"].to_numpy(),
                "region_id": region.region_id,
                "local_component_id": np.asarray(local_ids, dtype=np.int64),
                "connection_count": np.asarray(counts, dtype=np.int64),
            }
        )
        return rows[LAKE_RESULT_COLUMNS]

    def _empty_result(
        self, region: Region, region_geometry: BaseGeometry, crs: Any
    ) -> RegionResult:
        rows = pd.DataFrame({col: pd.Series([], dtype=object) for col in LAKE_RESULT_COLUMNS})
        return RegionResult(region, region_geometry, rows, empty_geoframe(COMPONENT_COLUMNS, crs))
