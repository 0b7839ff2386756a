# NOTE: SQLite store for the HAI dataset, loaded once by import_csv_to_db.py
from __future__ import annotations

import logging
import os
from typing import Optional

import pandas as pd
from sqlalchemy import Column, Float, Integer, MetaData, String, Table, create_engine, select, text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///healthcare.db")

metadata = MetaData()

infections = Table(
    "infections",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("facility_id", String),
    Column("hospital_id", String, index=True),
    Column("address", String),
    Column("city", String),
    Column("state", String, index=True),
    Column("zip_code", String),
    Column("county_name", String),
    Column("measure_name", String, index=True),
    Column("compared_to_national", String),
    Column("score", Float),
    Column("start_date", String),
    Column("end_date", String),
    Column("original_address", String),
    Column("lat", Float),
    Column("lon", Float),
)

RECORD_COLUMNS = [c.name for c in infections.columns]


def get_engine(url: Optional[str] = None) -> Engine:
    """Create an engine; SQL echo in development mode."""
    return create_engine(
        url or DATABASE_URL,
        echo=os.getenv("ENVIRONMENT") == "development",
    )


def test_connection(engine: Engine) -> bool:
    """Test database connectivity for health checks."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection failed: %s", e)
        return False


def create_tables(engine: Engine) -> None:
    """Create the infections table if it doesn't exist."""
    metadata.create_all(bind=engine)


def query_infections(
    engine: Engine,
    state: Optional[str] = None,
    hospital: Optional[str] = None,
    infection_type: Optional[str] = None,
) -> pd.DataFrame:
    """
    Parameterized SELECT over the optional equality filters.
    `infection_type` matches the raw measure name as stored.
    """
    query = select(infections)
    if state:
        query = query.where(infections.c.state == state)
    if hospital:
        query = query.where(infections.c.hospital_id == hospital)
    if infection_type:
        query = query.where(infections.c.measure_name == infection_type)
    query = query.order_by(infections.c.id)

    with engine.connect() as conn:
        return pd.read_sql(query, conn)
