"""
Infection record processing
- Normalizes raw CMS measure names onto canonical infection types
- Aggregates scores per hospital and per state
- Builds the filtered CSV export
"""

from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np
import pandas as pd


ALL = "all"

# ======================
# Label normalization
# ======================

INFECTION_MAPPING: Dict[str, str] = {
    "MRSA Observed Cases": "MRSA bacteremia",
    "MRSA Bacteremia: Observed Cases": "MRSA bacteremia",
    "C.diff Observed Cases": "Clostridium Difficile",
    "Clostridium Difficile (C.Diff): Observed Cases": "Clostridium Difficile",
    "CLABSI: Observed Cases": "CLABSI",
    "Central Line Associated Bloodstream Infection (ICU + select Wards): Observed Cases": "CLABSI",
    "CAUTI: Observed Cases": "CAUTI",
    "Catheter Associated Urinary Tract Infections (ICU + select Wards): Observed Cases": "CAUTI",
    "SSI: Colon Observed Cases": "SSI: Colon",
    "SSI - Colon Surgery: Observed Cases": "SSI: Colon",
    "SSI: Abdominal Observed Cases": "SSI: Abdominal",
    "SSI - Abdominal Hysterectomy: Observed Cases": "SSI: Abdominal",
}

# Export header, in download order. "l" carries the record id.
EXPORT_COLUMNS: List[str] = [
    "l", "facility_id", "hospital_id", "address", "city", "state",
    "zip_code", "county_name", "measure_name", "compared_to_national",
    "score", "start_date", "end_date", "original_Address", "lat", "lon",
]

AGGREGATE_COLUMNS = ["hospital_id", "total_score", "lon", "lat"]


def normalize_infection_name(name):
    """Exact-match lookup; unmapped names are their own canonical type."""
    return INFECTION_MAPPING.get(name, name)


def coerce_score(x) -> float:
    """Safely coerce to float; missing or non-numeric scores count as 0."""
    try:
        value = float(x)
    except (TypeError, ValueError):
        return 0.0
    return value if np.isfinite(value) else 0.0


def normalize_records(records: pd.DataFrame) -> pd.DataFrame:
    """
    Return a copy of the records with an `infection_type` column holding the
    canonical measure name and `score` coerced to float.
    """
    df = records.copy()
    if "measure_name" not in df.columns:
        df["measure_name"] = pd.Series(dtype=object)
    if "score" not in df.columns:
        df["score"] = pd.Series(dtype=float)
    df["infection_type"] = df["measure_name"].map(normalize_infection_name)
    df["score"] = df["score"].map(coerce_score).astype(float)
    return df


def infection_types(records: pd.DataFrame) -> List[str]:
    """Sorted distinct canonical infection types present in the records."""
    if records.empty or "measure_name" not in records.columns:
        return []
    types = records["measure_name"].dropna().map(normalize_infection_name)
    return sorted(types.unique())


def _apply_filter(df: pd.DataFrame, active_filter: str) -> pd.DataFrame:
    if active_filter == ALL:
        return df
    return df[df["infection_type"] == active_filter]


# ======================
# Aggregation
# ======================

def aggregate_by_hospital(records: pd.DataFrame, active_filter: str = ALL) -> pd.DataFrame:
    """
    Sum infection scores per hospital after label normalization.

    Args:
        records: Infection records (one row per hospital/measure/period)
        active_filter: Canonical infection type, or "all"

    Returns:
        DataFrame with columns hospital_id, total_score, lon, lat, sorted by
        hospital_id. Hospitals without a record of the filtered type are
        absent; lon/lat are NaN when no record carries coordinates.
    """
    if records.empty or "hospital_id" not in records.columns:
        return pd.DataFrame(columns=AGGREGATE_COLUMNS)

    df = _apply_filter(normalize_records(records), active_filter)
    df = df[df["hospital_id"].notna()].copy()
    if df.empty:
        return pd.DataFrame(columns=AGGREGATE_COLUMNS)

    # Synonymous raw labels collapse into one bucket before summation
    buckets = df.groupby(["hospital_id", "infection_type"], sort=False, dropna=False)["score"].sum()
    totals = buckets.groupby(level="hospital_id").sum().rename("total_score")

    for col in ["lon", "lat"]:
        if col not in df.columns:
            df[col] = np.nan
        df[col] = pd.to_numeric(df[col], errors="coerce")
    located = df[df["lon"].notna() & df["lat"].notna()]
    coords = (
        located.drop_duplicates(subset="hospital_id", keep="first")
               .set_index("hospital_id")[["lon", "lat"]]
    )

    out = totals.to_frame().join(coords, how="left")
    out.index.name = "hospital_id"
    return out.reset_index().sort_values("hospital_id").reset_index(drop=True)[AGGREGATE_COLUMNS]


def aggregate_by_state(records: pd.DataFrame, active_filter: str = ALL) -> Dict[str, float]:
    """Summed score per state, scoped to the active infection type."""
    if records.empty or "state" not in records.columns:
        return {}
    df = _apply_filter(normalize_records(records), active_filter)
    df = df[df["state"].notna()]
    totals = df.groupby("state")["score"].sum()
    return {str(state): float(total) for state, total in totals.items()}


# ======================
# Selection helpers
# ======================

def filter_records(
    records: pd.DataFrame,
    state: Optional[str] = None,
    hospital: Optional[str] = None,
    infection_type: Optional[str] = None,
) -> pd.DataFrame:
    """
    In-memory equivalent of the query API: exact equality on each given
    filter. `infection_type` is compared on the canonical type; None or
    "all" leaves that axis unfiltered.
    """
    if records.empty:
        return records
    mask = pd.Series(True, index=records.index)
    if state not in (None, ALL):
        mask &= records["state"] == state
    if hospital not in (None, ALL):
        mask &= records["hospital_id"] == hospital
    if infection_type not in (None, ALL):
        mask &= records["measure_name"].map(normalize_infection_name) == infection_type
    return records[mask]


def hospitals_for_state(records: pd.DataFrame, state: Optional[str]) -> List[str]:
    """Sorted hospital ids within a state, or every hospital under "all"."""
    if records.empty or "hospital_id" not in records.columns:
        return []
    scoped = filter_records(records, state=state)
    return sorted(scoped["hospital_id"].dropna().astype(str).unique())


def states_in(records: pd.DataFrame) -> List[str]:
    if records.empty or "state" not in records.columns:
        return []
    return sorted(records["state"].dropna().astype(str).unique())


# ======================
# CSV export
# ======================

def export_frame(
    records: pd.DataFrame,
    state: Optional[str] = ALL,
    hospital: Optional[str] = ALL,
    infection_type: Optional[str] = ALL,
) -> pd.DataFrame:
    """
    Raw records matching all three panel selections, in export column order.
    A selection of None (a search that matched nothing) matches no records.
    """
    if state is None or hospital is None or infection_type is None:
        return pd.DataFrame(columns=EXPORT_COLUMNS)
    matched = filter_records(records, state=state, hospital=hospital, infection_type=infection_type)
    out = matched.rename(columns={"id": "l", "original_address": "original_Address"})
    out = out.reindex(columns=EXPORT_COLUMNS)
    return out.astype(object).where(out.notna(), "").reset_index(drop=True)


def export_csv(records: pd.DataFrame, **selections) -> str:
    return export_frame(records, **selections).to_csv(index=False)
