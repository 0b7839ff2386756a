"""Tests for the states GeoJSON preparation."""

import geopandas as gpd
import pytest
from shapely.geometry import box

from utils.convert_to_geojson import convert_states


@pytest.fixture
def source(tmp_path):
    gdf = gpd.GeoDataFrame(
        {"NAME": ["Alpha", "Beta"], "STATEFP": ["01", "02"], "ALAND": [1, 2]},
        geometry=[box(-100, 30, -90, 40), box(-80, 35, -75, 40)],
        crs="EPSG:4326",
    )
    path = tmp_path / "states_src.geojson"
    gdf.to_file(path, driver="GeoJSON")
    return path


class TestConvertStates:
    def test_keeps_name_and_geometry(self, source, tmp_path):
        out = tmp_path / "out" / "us_states.geojson"
        convert_states(source, out)

        written = gpd.read_file(out)
        assert sorted(written.columns) == ["NAME", "geometry"]
        assert sorted(written["NAME"]) == ["Alpha", "Beta"]

    def test_requires_name(self, tmp_path):
        gdf = gpd.GeoDataFrame({"GEOID": ["01"]}, geometry=[box(0, 0, 1, 1)], crs="EPSG:4326")
        path = tmp_path / "no_name.geojson"
        gdf.to_file(path, driver="GeoJSON")
        with pytest.raises(ValueError):
            convert_states(path, tmp_path / "out.geojson")
