"""
LAKENET Boundary Fragments
==========================

Slices of local components lying in a thin band along a region's border.

Only components reaching the border can continue into a neighbouring
region, so these slices are all the later cross-region merge needs.
"""

import logging
from typing import Any, Dict, Optional

import geopandas as gpd
from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry

from .exceptions import GeometryError
from .region_processor import RegionResult, empty_geoframe

FRAGMENT_COLUMNS = ["region_id", "local_component_id", "watershed_group_id"]


class BoundaryFragmentExtractor:
    """
    Clip local components to the band just inside a region boundary.

    Attributes:
        margin (float): Width of the band, measured inward from the border
        logger (logging.Logger): Logger instance
    """

    def __init__(self, margin: float = 1000.0, logger: Optional[logging.Logger] = None):
        self.margin = margin
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(
        cls, config: Dict[str, Any], logger: Optional[logging.Logger] = None
    ) -> "BoundaryFragmentExtractor":
        return cls(margin=config["tolerances"]["boundary_margin"], logger=logger)

    def boundary_band(self, region_geometry: BaseGeometry) -> BaseGeometry:
        """Region minus its inward erosion by the margin."""
        interior = region_geometry.buffer(-self.margin)
        if interior.is_empty:
            return region_geometry
        return region_geometry.difference(interior)

    def extract(self, result: RegionResult) -> gpd.GeoDataFrame:
        """
        Compute boundary fragments for one processed region.

        Args:
            result: Output of RegionProcessor.process for the region

        Returns:
            GeoDataFrame with region_id, local_component_id,
            watershed_group_id and the clipped geometry

        Raises:
            GeometryError: If the geometry engine fails
        """
        components = result.components
        if components.empty or result.region_geometry.is_empty:
            return empty_geoframe(FRAGMENT_COLUMNS, components.crs)

        try:
            band = self.boundary_band(result.region_geometry)
            clipped = components.geometry.intersection(band)
        except GEOSException as e:
            raise GeometryError(
                f"Boundary extraction failed for region {result.region.region_id}: {e}"
            )

        keep = ~clipped.is_empty
        fragments = gpd.GeoDataFrame(
            components.loc[keep, FRAGMENT_COLUMNS].reset_index(drop=True),
            geometry=clipped[keep].reset_index(drop=True),
        )
        self.logger.debug(
            f"Region {result.region.region_id}: {len(fragments)} of "
            f"{len(components)} components reach the boundary band"
        )
        return fragments
