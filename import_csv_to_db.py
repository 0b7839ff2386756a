#!/usr/bin/env python3
"""
Script to load the HAI CSV into the infections table.
Run once before starting the dashboard.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pandas as pd
from sqlalchemy.engine import Engine

from database import RECORD_COLUMNS, create_tables, get_engine

logger = logging.getLogger(__name__)

CSV_PATH = Path(os.getenv("HAI_CSV_PATH", "healthcare_data.csv"))

REQUIRED_COLUMNS = {"hospital_id", "state", "measure_name", "score"}
NUMERIC_COLUMNS = ["score", "lat", "lon"]


def import_csv(csv_path: Path, engine: Engine) -> int:
    """
    Append every CSV row to the infections table.

    Returns:
        Number of rows imported
    """
    df = pd.read_csv(csv_path, dtype=str)
    df.rename(columns={c: c.strip() for c in df.columns}, inplace=True)
    df.rename(columns={"original_Address": "original_address"}, inplace=True)

    missing = REQUIRED_COLUMNS.difference(df.columns)
    if missing:
        raise ValueError(f"CSV is missing required columns: {missing}")

    for c in NUMERIC_COLUMNS:
        if c in df.columns:
            df[c] = pd.to_numeric(df[c], errors="coerce")

    # The table assigns its own ids; any source index column is dropped
    keep = [c for c in RECORD_COLUMNS if c != "id" and c in df.columns]
    df = df[keep]

    create_tables(engine)
    df.to_sql("infections", engine, if_exists="append", index=False)

    logger.info("Imported %d rows from %s", len(df), csv_path)
    logger.info("States: %d, hospitals: %d", df["state"].nunique(), df["hospital_id"].nunique())
    return len(df)


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not CSV_PATH.exists():
        logger.error("Input file %s not found!", CSV_PATH)
        raise SystemExit(1)

    import_csv(CSV_PATH, get_engine())
    logger.info("CSV imported into the database.")


if __name__ == "__main__":
    main()
