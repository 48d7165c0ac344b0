#!/usr/bin/env python3
"""
Unit tests for region_processor.py
Tests local component computation, connection counts and degenerate regions
"""

import geopandas as gpd
import pytest
from shapely.geometry import LineString, MultiPolygon, Polygon, box

from lakenet.boundary import BoundaryFragmentExtractor
from lakenet.exceptions import GeometryError
from lakenet.provider import Region
from lakenet.region_processor import RegionProcessor

CRS = "EPSG:3005"


def make_lakes(records):
    """records: list of (waterbody_key, watershed_group_id, name, geometry)"""
    return gpd.GeoDataFrame(
        {
            "waterbody_key": [r[0] for r in records],
            "watershed_group_id": [r[1] for r in records],
            "name": [r[2] for r in records],
        },
        geometry=[r[3] for r in records],
        crs=CRS,
    )


def make_rivers(geometries, river_ids=None):
    data = {} if river_ids is None else {"river_id": river_ids}
    return gpd.GeoDataFrame(data, geometry=geometries, crs=CRS)


def component_of(result, key):
    rows = result.lakes[result.lakes["waterbody_key"] == key]
    assert len(rows) == 1
    return int(rows["local_component_id"].iloc[0])


@pytest.fixture
def processor():
    return RegionProcessor()


@pytest.fixture
def square_region():
    return Region(index=0, region_id=1, geometry=box(0, 0, 10000, 10000))


class TestRegionProcessor:
    """Test cases for RegionProcessor"""

    def test_default_tolerances(self, test_config):
        """Test tolerances come from configuration"""
        processor = RegionProcessor.from_config(test_config)
        assert processor.lake_buffer == 3.0
        assert processor.river_buffer == 7.0
        assert processor.min_region_part_area == 1_000_000.0

    def test_zero_rivers_gives_singletons(self, processor, square_region):
        """Test every lake is its own component when the region has no rivers"""
        lakes = make_lakes(
            [
                (11, 1, "East", box(8000, 100, 8100, 200)),
                (12, 1, None, box(1000, 100, 1100, 200)),
                (13, 1, None, box(1100, 100, 1200, 200)),  # touches lake 12
            ]
        )
        result = processor.process(square_region, lakes, make_rivers([]))

        assert len(result.lakes) == 3
        assert (result.lakes["connection_count"] == 0).all()
        assert sorted(result.lakes["local_component_id"]) == [0, 1, 2]
        # Numbered west to east by geometry
        assert component_of(result, 12) == 0
        assert component_of(result, 13) == 1
        assert component_of(result, 11) == 2
        assert result.component_count == 3

    def test_river_joins_lakes(self, processor, provider):
        """Test a river touching two lakes puts them in one component"""
        region = provider.regions()[0]
        result = processor.process(
            region, provider.query_lakes(region), provider.query_rivers(region)
        )

        assert component_of(result, 1) == component_of(result, 2)
        counts = dict(zip(result.lakes["waterbody_key"], result.lakes["connection_count"]))
        assert counts[1] == 1
        assert counts[2] == 1
        assert counts[3] == 0

    def test_component_ids_are_dense_and_geometry_ordered(self, processor, provider):
        """Test the river-only piece is dropped and ids stay dense"""
        region = provider.regions()[2]
        result = processor.process(
            region, provider.query_lakes(region), provider.query_rivers(region)
        )

        assert sorted(result.lakes["local_component_id"]) == [0, 1]
        assert component_of(result, 6) == 0
        assert component_of(result, 5) == 1
        assert list(result.components["local_component_id"]) == [0, 1]

    def test_expected_region_a_numbering(self, processor, provider):
        """Test numbering of region 101 follows component position"""
        region = provider.regions()[0]
        result = processor.process(
            region, provider.query_lakes(region), provider.query_rivers(region)
        )
        assert component_of(result, 6) == 0
        assert component_of(result, 1) == 1
        assert component_of(result, 7) == 2
        assert component_of(result, 3) == 3

    def test_row_order_does_not_change_ids(self, processor, provider):
        """Test shuffled input rows give the same component ids"""
        region = provider.regions()[0]
        lakes = provider.query_lakes(region)
        rivers = provider.query_rivers(region)

        forward = processor.process(region, lakes, rivers)
        backward = processor.process(
            region, lakes.iloc[::-1].reset_index(drop=True), rivers
        )

        def by_key(result):
            return dict(zip(result.lakes["waterbody_key"], result.lakes["local_component_id"]))

        assert by_key(forward) == by_key(backward)

    def test_partial_lake_is_cropped(self, processor, provider):
        """Test a lake straddling the border is cropped, not dropped"""
        region = provider.regions()[1]
        result = processor.process(
            region, provider.query_lakes(region), provider.query_rivers(region)
        )

        assert 3 in set(result.lakes["waterbody_key"])
        border_component = result.components[
            result.components["local_component_id"] == component_of(result, 3)
        ]
        minx = border_component.geometry.iloc[0].bounds[0]
        assert minx == pytest.approx(10000 - processor.lake_buffer)
        # River joins the border lake to lake 4
        assert component_of(result, 3) == component_of(result, 4)

    def test_lake_touching_border_only_is_excluded(self, processor, square_region):
        """Test a lake sharing only an edge with the region is left to the neighbour"""
        lakes = make_lakes(
            [
                (21, 1, None, box(10000, 500, 10500, 1000)),
                (22, 1, None, box(500, 500, 1000, 1000)),
            ]
        )
        result = processor.process(square_region, lakes, make_rivers([]))
        assert list(result.lakes["waterbody_key"]) == [22]

    def test_sliver_region_parts_discarded(self, processor):
        """Test small parts of a multi-part region are ignored"""
        region = Region(
            index=0,
            region_id=5,
            geometry=MultiPolygon([box(0, 0, 10000, 10000), box(20000, 0, 20010, 10)]),
        )
        lakes = make_lakes(
            [
                (31, 1, None, box(1000, 1000, 2000, 2000)),
                (32, 1, None, box(20001, 1, 20005, 5)),
            ]
        )
        result = processor.process(region, lakes, make_rivers([]))
        assert list(result.lakes["waterbody_key"]) == [31]
        assert result.region_geometry.equals(box(0, 0, 10000, 10000))

    def test_single_small_region_is_kept(self, processor):
        """Test a single-part region is never filtered by area"""
        small = box(0, 0, 100, 100)
        assert processor.clean_region_geometry(small).equals(small)

    def test_connection_count_uses_river_identity(self, processor, square_region):
        """Test segments sharing a river id count as one river"""
        lakes = make_lakes([(41, 1, None, box(4000, 4000, 5000, 5000))])
        segments = [
            LineString([(3000, 4200), (4000, 4200)]),
            LineString([(3000, 4800), (4000, 4800)]),
            LineString([(5000, 4500), (6000, 4500)]),
        ]

        with_ids = processor.process(
            square_region, lakes, make_rivers(segments, river_ids=[1, 1, 2])
        )
        without_ids = processor.process(square_region, lakes, make_rivers(segments))

        assert with_ids.lakes["connection_count"].iloc[0] == 2
        assert without_ids.lakes["connection_count"].iloc[0] == 3

    def test_lake_without_river_contact_has_zero_count(self, processor, square_region):
        """Test lakes away from all rivers have zero connections"""
        lakes = make_lakes(
            [
                (51, 1, None, box(1000, 1000, 2000, 2000)),
                (52, 1, None, box(6000, 6000, 7000, 7000)),
            ]
        )
        rivers = make_rivers([LineString([(2000, 1500), (3000, 1500)])])
        result = processor.process(square_region, lakes, rivers)

        counts = dict(zip(result.lakes["waterbody_key"], result.lakes["connection_count"]))
        assert counts == {51: 1, 52: 0}

    def test_region_without_lakes(self, processor, square_region):
        """Test a region with rivers but no lakes produces nothing"""
        result = processor.process(
            square_region,
            make_lakes([]),
            make_rivers([LineString([(0, 5000), (10000, 5000)])]),
        )
        assert result.lakes.empty
        assert result.components.empty

    def test_component_watershed_group_is_most_common(self, processor, square_region):
        """Test a component takes the watershed group most of its lakes carry"""
        lakes = make_lakes(
            [
                (61, "B", None, box(1000, 1000, 1500, 1500)),
                (62, "A", None, box(2000, 1000, 2500, 1500)),
                (63, "A", None, box(3000, 1000, 3500, 1500)),
            ]
        )
        rivers = make_rivers([LineString([(1500, 1250), (3000, 1250)])])
        result = processor.process(square_region, lakes, rivers)

        assert result.component_count == 1
        assert result.components["watershed_group_id"].iloc[0] == "A"

    def test_geometry_engine_failure_is_wrapped(self, processor, square_region, monkeypatch):
        """Test engine errors surface as GeometryError"""
        from shapely.errors import GEOSException

        def failing_union(*args, **kwargs):
            raise GEOSException("TopologyException: side location conflict")

        monkeypatch.setattr("lakenet.region_processor.unary_union", failing_union)
        lakes = make_lakes([(71, 1, None, box(1000, 1000, 2000, 2000))])
        rivers = make_rivers([LineString([(2000, 1500), (3000, 1500)])])

        with pytest.raises(GeometryError, match="region 1"):
            processor.process(square_region, lakes, rivers)

    def test_lake_split_by_border_keeps_every_part(self, processor, square_region):
        """Test all parts of a lake cropped into pieces stay in one component"""
        # U-shaped lake whose bend lies east of the region: two arms inside
        u_lake = Polygon(
            [
                (9000, 1000),
                (10500, 1000),
                (10500, 3500),
                (9000, 3500),
                (9000, 3000),
                (10000, 3000),
                (10000, 1500),
                (9000, 1500),
            ]
        )
        lakes = make_lakes([(81, 1, "Horseshoe Lake", u_lake)])
        # River from the upper arm to the north border
        rivers = make_rivers([LineString([(9500, 3500), (9500, 10000)])])

        result = processor.process(square_region, lakes, rivers)
        assert result.component_count == 1
        assert list(result.lakes["local_component_id"]) == [0]
        assert result.lakes["connection_count"].iloc[0] == 1

        minx, miny, maxx, maxy = result.components.geometry.iloc[0].bounds
        assert miny == pytest.approx(1000 - processor.lake_buffer)
        assert maxy >= 10000

        fragments = BoundaryFragmentExtractor().extract(result)
        assert len(fragments) == 1
        assert fragments.geometry.iloc[0].bounds[3] == pytest.approx(10000.0)

    def test_invalid_region_is_repaired(self, processor):
        """Test a self-intersecting region outline is processed, not rejected"""
        bowtie = Polygon([(0, 0), (10000, 10000), (10000, 0), (0, 10000)])
        region = Region(index=0, region_id=8, geometry=bowtie)
        lakes = make_lakes([(91, 1, None, box(500, 4000, 1500, 6000))])
        rivers = make_rivers([LineString([(1500, 5000), (3000, 5000)])])

        result = processor.process(region, lakes, rivers)
        assert result.region_geometry.is_valid
        assert result.region_geometry.area == pytest.approx(5e7)
        assert list(result.lakes["waterbody_key"]) == [91]
        assert result.lakes["connection_count"].iloc[0] == 1

    def test_areal_river_touching_border_is_excluded(self, processor, square_region):
        """Test a river polygon sharing only an edge with the region is left out"""
        lakes = make_lakes(
            [
                (101, 1, None, box(9000, 5000, 9995, 5500)),
                (102, 1, None, box(2000, 2000, 2500, 2500)),
            ]
        )
        rivers = make_rivers(
            [
                box(10000, 0, 10500, 10000),  # neighbour's river bank
                box(2500, 2200, 4000, 2300),  # river polygon inside the region
            ]
        )

        result = processor.process(square_region, lakes, rivers)
        counts = dict(zip(result.lakes["waterbody_key"], result.lakes["connection_count"]))
        assert counts == {101: 0, 102: 1}
