"""
LAKENET Geometry Providers
==========================

Sources of region, lake and river features for the per-region pipeline.

The pipeline only depends on the ``GeometryProvider`` interface. Two
implementations ship with the package: ``GeoDataFrameProvider`` for data
already held in memory, and ``FileGeometryProvider`` which reads lakes and
rivers region by region from vector files so the full dataset is never
loaded at once.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import geopandas as gpd
import numpy as np
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from .config import DEFAULT_CONFIG
from .exceptions import DataSourceError, ValidationError

LAKE_COLUMNS = ["waterbody_key", "watershed_group_id", "name", "geometry"]


@dataclass(frozen=True)
class Region:
    """A fixed spatial partition processed as one pipeline unit."""

    index: int
    region_id: int
    geometry: BaseGeometry


def _resolve_columns(columns: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    resolved = dict(DEFAULT_CONFIG["columns"])
    if columns:
        resolved.update(columns)
    return resolved


def _valid(geom: BaseGeometry) -> BaseGeometry:
    return geom if geom.is_valid else make_valid(geom)


def _check_columns(gdf: gpd.GeoDataFrame, required: List[str], description: str) -> None:
    missing = [col for col in required if col not in gdf.columns]
    if missing:
        raise ValidationError(f"{description} is missing required columns: {missing}")


def to_working_crs(gdf: gpd.GeoDataFrame, crs: Any = None) -> gpd.GeoDataFrame:
    """
    Bring a layer into the working CRS.

    A layer without a CRS is taken to be in ``crs`` already. Tolerances are
    lengths and areas in CRS units, so a geographic working CRS is refused.

    Raises:
        ValidationError: If the resulting CRS is geographic
    """
    if crs is not None:
        gdf = gdf.set_crs(crs) if gdf.crs is None else gdf.to_crs(crs)
    if gdf.crs is not None and gdf.crs.is_geographic:
        raise ValidationError(
            f"Working CRS {gdf.crs.to_string()} is geographic; "
            f"tolerances need a projected CRS in metres"
        )
    return gdf


def normalize_regions(
    gdf: gpd.GeoDataFrame, columns: Optional[Dict[str, Any]] = None
) -> List[Region]:
    """
    Convert a region GeoDataFrame into the ordered region enumeration.

    Row order of the frame is the processing order.

    Raises:
        ValidationError: If the id column is missing or ids repeat
    """
    columns = _resolve_columns(columns)
    id_col = columns["region_id"]
    _check_columns(gdf, [id_col], "Region layer")

    ids = gdf[id_col]
    if ids.duplicated().any():
        dupes = sorted(ids[ids.duplicated()].unique().tolist())
        raise ValidationError(f"Region ids must be unique, duplicated: {dupes}")

    return [
        Region(index=i, region_id=int(region_id), geometry=_valid(geom))
        for i, (region_id, geom) in enumerate(zip(ids, gdf.geometry))
    ]


def normalize_lakes(
    gdf: gpd.GeoDataFrame, columns: Optional[Dict[str, Any]] = None
) -> gpd.GeoDataFrame:
    """
    Rename source lake columns onto the canonical lake schema.

    A source without a name column yields unnamed lakes.
    """
    columns = _resolve_columns(columns)
    _check_columns(
        gdf, [columns["waterbody_key"], columns["watershed_group_id"]], "Lake layer"
    )

    lakes = gpd.GeoDataFrame(
        {
            "waterbody_key": gdf[columns["waterbody_key"]].to_numpy(),
            "watershed_group_id": gdf[columns["watershed_group_id"]].to_numpy(),
            "name": (
                gdf[columns["name"]].to_numpy()
                if columns["name"] in gdf.columns
                else np.full(len(gdf), None, dtype=object)
            ),
        },
        geometry=gdf.geometry.to_numpy(),
        crs=gdf.crs,
    )
    return lakes[LAKE_COLUMNS]


def normalize_rivers(
    gdf: gpd.GeoDataFrame, columns: Optional[Dict[str, Any]] = None
) -> gpd.GeoDataFrame:
    """Keep river geometry and, when configured, the river identity column."""
    columns = _resolve_columns(columns)
    data = {}
    river_id_col = columns.get("river_id")
    if river_id_col:
        _check_columns(gdf, [river_id_col], "River layer")
        data["river_id"] = gdf[river_id_col].to_numpy()
    return gpd.GeoDataFrame(data, geometry=gdf.geometry.to_numpy(), crs=gdf.crs)


class GeometryProvider(ABC):
    """Interface between the pipeline and a spatial data source."""

    @abstractmethod
    def regions(self) -> List[Region]:
        """Return the fixed, ordered region enumeration."""

    @abstractmethod
    def query_lakes(self, region: Region) -> gpd.GeoDataFrame:
        """Return lakes intersecting ``region`` in the canonical lake schema."""

    @abstractmethod
    def query_rivers(self, region: Region) -> gpd.GeoDataFrame:
        """Return rivers intersecting ``region``."""

    @property
    @abstractmethod
    def crs(self) -> Any:
        """Coordinate reference system of every returned geometry."""


class GeoDataFrameProvider(GeometryProvider):
    """
    Provider backed by in-memory GeoDataFrames.

    All layers are brought into the working CRS once (``crs``, or the region
    layer's own CRS when not given) and queried through their spatial
    indexes.
    """

    def __init__(
        self,
        regions: gpd.GeoDataFrame,
        lakes: gpd.GeoDataFrame,
        rivers: gpd.GeoDataFrame,
        columns: Optional[Dict[str, Any]] = None,
        crs: Any = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        regions = to_working_crs(regions, crs)
        self._crs = regions.crs
        self._regions = normalize_regions(regions, columns)
        self._lakes = normalize_lakes(to_working_crs(lakes, self._crs), columns)
        self._rivers = normalize_rivers(to_working_crs(rivers, self._crs), columns)

        self.logger.info(
            f"In-memory provider: {len(self._regions)} regions, "
            f"{len(self._lakes)} lakes, {len(self._rivers)} rivers"
        )

    @property
    def crs(self) -> Any:
        return self._crs

    def regions(self) -> List[Region]:
        return list(self._regions)

    def _query(self, gdf: gpd.GeoDataFrame, region: Region) -> gpd.GeoDataFrame:
        hits = gdf.sindex.query(region.geometry, predicate="intersects")
        return gdf.iloc[np.sort(hits)].reset_index(drop=True)

    def query_lakes(self, region: Region) -> gpd.GeoDataFrame:
        return self._query(self._lakes, region)

    def query_rivers(self, region: Region) -> gpd.GeoDataFrame:
        return self._query(self._rivers, region)


class FileGeometryProvider(GeometryProvider):
    """
    Provider reading vector files (GeoPackage, Shapefile, ...) per region.

    Regions are loaded once and brought into the working CRS; lakes and
    rivers are read with the region as a spatial mask on every query and
    reprojected likewise. Read failures surface as DataSourceError and are
    not retried. Lake and river paths may be omitted when only the region
    enumeration is needed (status, reconciliation).
    """

    def __init__(
        self,
        regions_path: Union[str, Path],
        lakes_path: Optional[Union[str, Path]] = None,
        rivers_path: Optional[Union[str, Path]] = None,
        columns: Optional[Dict[str, Any]] = None,
        layers: Optional[Dict[str, Optional[str]]] = None,
        crs: Any = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.columns = _resolve_columns(columns)
        self.layers = {"regions": None, "lakes": None, "rivers": None}
        if layers:
            self.layers.update(layers)
        self.lakes_path = Path(lakes_path) if lakes_path is not None else None
        self.rivers_path = Path(rivers_path) if rivers_path is not None else None

        region_gdf = to_working_crs(self._read(Path(regions_path), self.layers["regions"]), crs)
        self._crs = region_gdf.crs
        self._regions = normalize_regions(region_gdf, self.columns)
        self.logger.info(f"Loaded {len(self._regions)} regions from {regions_path}")

    def _read(
        self, path: Path, layer: Optional[str], region: Optional[Region] = None
    ) -> gpd.GeoDataFrame:
        kwargs = {}
        if layer:
            kwargs["layer"] = layer
        if region is not None:
            kwargs["mask"] = gpd.GeoSeries([region.geometry], crs=self._crs)
        try:
            gdf = gpd.read_file(path, **kwargs)
        except Exception as e:
            where = f" for region {region.region_id}" if region is not None else ""
            raise DataSourceError(f"Failed to read {path}{where}: {e}")

        if region is not None:
            gdf = to_working_crs(gdf, self._crs)
        return gdf

    def _features(self, path: Optional[Path], layer: Optional[str], region: Region, kind: str):
        if path is None:
            raise DataSourceError(f"No {kind} source configured; cannot query region {region.region_id}")
        return self._read(path, layer, region)

    @property
    def crs(self) -> Any:
        return self._crs

    def regions(self) -> List[Region]:
        return list(self._regions)

    def query_lakes(self, region: Region) -> gpd.GeoDataFrame:
        gdf = self._features(self.lakes_path, self.layers["lakes"], region, "lake")
        return normalize_lakes(gdf, self.columns)

    def query_rivers(self, region: Region) -> gpd.GeoDataFrame:
        gdf = self._features(self.rivers_path, self.layers["rivers"], region, "river")
        return normalize_rivers(gdf, self.columns)
