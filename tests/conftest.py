#!/usr/bin/env python3
"""
Pytest configuration and shared fixtures for LAKENET tests

The synthetic study area is three 10 km square regions side by side in a
metre-based CRS:

    region 101 (index 0)   x 0 - 10000
    region 102 (index 1)   x 10000 - 20000
    region 103 (index 2)   x 20000 - 30000

Lakes and rivers are placed so that every merge rule has something to do:
a river joining two lakes, a lake straddling the 101/102 border, a named
lake observed in two far apart regions, a duplicated unnamed key and a
river reaching no lake.
"""

import os
import sys
import warnings

import geopandas as gpd
import pytest
from shapely.geometry import LineString, box

warnings.filterwarnings("ignore", category=DeprecationWarning, module="pyogrio")
warnings.filterwarnings("ignore", category=DeprecationWarning, module="pyproj")

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from lakenet.config import load_config
from lakenet.provider import GeoDataFrameProvider

CRS = "EPSG:3005"


@pytest.fixture
def regions_gdf():
    """Three adjacent square regions"""
    return gpd.GeoDataFrame(
        {"region_id": [101, 102, 103]},
        geometry=[
            box(0, 0, 10000, 10000),
            box(10000, 0, 20000, 10000),
            box(20000, 0, 30000, 10000),
        ],
        crs=CRS,
    )


@pytest.fixture
def lakes_gdf():
    """Lakes covering every merge case"""
    lakes = [
        # (waterbody_key, watershed_group_id, gnis_name, geometry)
        (1, 10, "Alpha Lake", box(2000, 2000, 3000, 3000)),
        (2, 10, None, box(5000, 2000, 6000, 3000)),
        (3, 10, "Border Lake", box(9500, 5000, 10500, 6000)),
        (4, 20, None, box(14000, 5000, 15000, 6000)),
        (5, 30, None, box(25000, 2000, 26000, 3000)),
        (6, 10, "Mara Lake", box(1000, 8000, 1500, 8500)),
        (6, 30, "Mara Lake", box(22000, 7000, 23000, 8000)),
        (7, 10, None, box(7000, 7000, 7500, 7500)),
        (7, 20, None, box(17000, 2000, 17500, 2500)),
    ]
    return gpd.GeoDataFrame(
        {
            "waterbody_key": [lake[0] for lake in lakes],
            "watershed_group_id": [lake[1] for lake in lakes],
            "gnis_name": [lake[2] for lake in lakes],
        },
        geometry=[lake[3] for lake in lakes],
        crs=CRS,
    )


@pytest.fixture
def rivers_gdf():
    """Rivers: one joining lakes 1 and 2, one crossing into lake 4, one dead end"""
    return gpd.GeoDataFrame(
        {"river_key": [900, 901, 902]},
        geometry=[
            LineString([(3000, 2500), (5000, 2500)]),
            LineString([(10500, 5500), (14000, 5500)]),
            LineString([(27000, 5000), (28000, 5000)]),
        ],
        crs=CRS,
    )


@pytest.fixture
def provider(regions_gdf, lakes_gdf, rivers_gdf):
    """In-memory provider over the synthetic study area"""
    return GeoDataFrameProvider(regions_gdf, lakes_gdf, rivers_gdf)


@pytest.fixture
def test_config(tmp_path):
    """Default configuration with progress bar off and outputs under tmp_path"""
    return load_config(
        overrides={
            "crs": CRS,
            "processing": {"show_progress": False},
            "store": {"directory": str(tmp_path / "store")},
            "output": {
                "final_table": str(tmp_path / "lake_networks.csv"),
                "checkpoint_table": str(tmp_path / "lake_checkpoint.csv"),
            },
        }
    )
