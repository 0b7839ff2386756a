import json

import numpy as np
import pandas as pd
import pytest

from database import create_tables, get_engine


def make_record(**overrides):
    record = {
        "facility_id": "F-1",
        "hospital_id": "General Hospital",
        "address": "1 Main St",
        "city": "Springfield",
        "state": "Alpha",
        "zip_code": "00001",
        "county_name": "Adams",
        "measure_name": "MRSA Observed Cases",
        "compared_to_national": "No Different than National Benchmark",
        "score": 1.0,
        "start_date": "2023-01-01",
        "end_date": "2023-12-31",
        "original_address": "1 Main St, Springfield",
        "lat": 35.0,
        "lon": -95.0,
    }
    record.update(overrides)
    return record


@pytest.fixture
def records():
    """Two states, three hospitals, synonymous MRSA labels."""
    rows = [
        make_record(hospital_id="General Hospital", measure_name="MRSA Observed Cases", score=10),
        make_record(hospital_id="General Hospital", measure_name="MRSA Bacteremia: Observed Cases", score=5),
        make_record(hospital_id="General Hospital", measure_name="CAUTI: Observed Cases", score=3),
        make_record(hospital_id="County Medical", measure_name="CAUTI: Observed Cases", score=7,
                    lat=36.0, lon=-94.0),
        make_record(hospital_id="Coastal Clinic", state="Beta", measure_name="C.diff Observed Cases",
                    score=4, lat=38.0, lon=-77.0),
    ]
    df = pd.DataFrame(rows)
    df.insert(0, "id", range(1, len(df) + 1))
    return df


@pytest.fixture
def states_geojson(tmp_path):
    def square(x0, y0, x1, y1):
        return {"type": "Polygon", "coordinates": [[[x0, y0], [x1, y0], [x1, y1], [x0, y1], [x0, y0]]]}

    collection = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"NAME": "Alpha"}, "geometry": square(-100, 30, -90, 40)},
            {"type": "Feature", "properties": {"NAME": "Beta"}, "geometry": square(-80, 35, -75, 40)},
            {"type": "Feature", "properties": {"NAME": "Gamma"}, "geometry": square(-120, 40, -110, 48)},
        ],
    }
    path = tmp_path / "states.geojson"
    path.write_text(json.dumps(collection), encoding="utf-8")
    return path


@pytest.fixture
def engine(tmp_path, records):
    engine = get_engine(f"sqlite:///{tmp_path / 'healthcare.db'}")
    create_tables(engine)
    rows = records.drop(columns=["id"]).copy()
    rows.loc[rows["hospital_id"] == "Coastal Clinic", "lat"] = np.nan
    rows.to_sql("infections", engine, if_exists="append", index=False)
    return engine


@pytest.fixture
def record_factory():
    return make_record
