import logging
import sys
from pathlib import Path

import geopandas as gpd

logger = logging.getLogger(__name__)

# Census cartographic boundary file for US states
SHP_PATH = Path("data/cb_2018_us_state_20m.shp")
OUT_PATH = Path("data/us_states.geojson")


def convert_states(shp_path: Path = SHP_PATH, out_path: Path = OUT_PATH) -> gpd.GeoDataFrame:
    """Write a states GeoJSON keyed by NAME, in WGS84, for the choropleth join."""
    gdf = gpd.read_file(shp_path)
    logger.info("Columns: %s", gdf.columns.tolist())

    if "NAME" not in gdf.columns:
        raise ValueError(f"{shp_path} has no NAME column")

    states = gdf[["NAME", "geometry"]].copy()
    if states.crs is not None:
        states = states.to_crs(epsg=4326)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    states.to_file(out_path, driver="GeoJSON")
    logger.info("Saved %d state features to %s", len(states), out_path)
    return states


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    src = Path(sys.argv[1]) if len(sys.argv) > 1 else SHP_PATH
    convert_states(src)
