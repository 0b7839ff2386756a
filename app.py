"""
HAI Infection Map (Dash)
- Records: infections table (see import_csv_to_db.py), loaded once at startup
- GeoJSON: data/us_states.geojson, joined to records on the NAME property
- Click a state to zoom in and show its hospitals; the filter re-colours the map
"""

from __future__ import annotations

import json
import logging
import math
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import dash
from dash import dcc, html, Input, Output, State, MATCH, ALL as ALL_IDS, no_update
from dash.exceptions import PreventUpdate
import geopandas as gpd
import plotly.express as px
import plotly.graph_objects as go
from sqlalchemy.engine import Engine

from database import RECORD_COLUMNS, get_engine, query_infections
from infections import (
    ALL, export_frame, filter_records, hospitals_for_state, infection_types, states_in,
)
from query_api import register_api
from search_select import BLUR_HIDE_DELAY_MS, LIST_HIDDEN, FilterPanel, SearchableSelect
from view_state import (
    Bounds, RenderState, ResponseGate, Reset, SelectRegion, SetFilter, ViewSelection,
    ZoomTransform, derive_render_state, reduce,
)

logger = logging.getLogger(__name__)


# ======================
# Config / Paths
# ======================

GEOJSON_PATH = Path(os.getenv("HAI_GEOJSON_PATH", "data/us_states.geojson"))
PORT = int(os.getenv("PORT", "3000"))

US_CENTER = {"lat": 39.5, "lon": -98.35}
BASE_ZOOM = 3.0
ZOOM_DURATION_MS = 750

NO_DATA_COLOR = "#eee"
DEEMPHASIZED_COLOR = "#ccc"
MARKER_COLOR = "red"
MARKER_SIZE = 10

EXPORT_FILENAME = "HA-Infections.csv"

# (name, "all" label, placeholder); order is the panel's layout order
SEARCH_FIELDS = [
    ("state", "All States", "Search states…"),
    ("hospital", "All Hospitals", "Search hospitals…"),
    ("infection", "All Infections", "Search infection types…"),
]

MODAL_SHOWN = {"display": "block", "position": "fixed", "top": "30%", "left": "50%",
               "transform": "translate(-50%, 0)", "background": "#fff", "padding": "20px",
               "borderRadius": "10px", "boxShadow": "0 4px 24px #0003", "zIndex": 10}
MODAL_HIDDEN = {"display": "none"}

EMPTY_GEOJSON = {"type": "FeatureCollection", "features": []}


# ======================
# Utilities
# ======================

def map_zoom(zoom: ZoomTransform) -> float:
    """Web-map zoom level for a scale factor relative to the national view."""
    return BASE_ZOOM + math.log2(zoom.scale)


def action_from_event(trigger: str, click_data: Optional[dict], filter_value: Optional[str]):
    """Translate a Dash trigger into a view action, or None when it carries none."""
    if trigger == "resetButton":
        return Reset()
    if trigger == "filter":
        return SetFilter(filter_value or ALL)
    if trigger == "map" and click_data and click_data.get("points"):
        # Only choropleth points carry a location; hospital markers do not
        location = click_data["points"][0].get("location")
        if location:
            return SelectRegion(location)
    return None


# ======================
# Data Loaders
# ======================

def region_bounds(geom) -> Bounds:
    """Bounding box of a state; multipart states split by the antimeridian frame their largest part."""
    minx, miny, maxx, maxy = geom.bounds
    if maxx - minx > 180 and geom.geom_type == "MultiPolygon":
        minx, miny, maxx, maxy = max(geom.geoms, key=lambda part: part.area).bounds
    return minx, miny, maxx, maxy


@lru_cache(maxsize=4)
def load_geojson(path: Path) -> Tuple[dict, Dict[str, Bounds]]:
    """
    Load the US states GeoJSON and each state's bounding box.
    Returns:
        geojson, name_to_bounds
    An unreadable file yields an empty collection (every state renders as no data).
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            geojson = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Could not load GeoJSON %s: %s", path, e)
        return EMPTY_GEOJSON, {}

    features = geojson.get("features", [])
    if not features:
        return geojson, {}

    gdf = gpd.GeoDataFrame.from_features(features)
    if "NAME" not in gdf.columns:
        logger.warning("GeoJSON %s has no NAME property; states cannot be joined", path)
        return geojson, {}

    name_to_bounds = {}
    for name, geom in zip(gdf["NAME"], gdf.geometry):
        if name and geom is not None and not geom.is_empty:
            name_to_bounds[str(name)] = region_bounds(geom)
    return geojson, name_to_bounds


def load_dataset(engine: Engine) -> pd.DataFrame:
    """Fetch every infection record once; a failed fetch renders as no data."""
    try:
        df = query_infections(engine)
    except Exception as e:
        logger.error("Error loading infection data: %s", e)
        return pd.DataFrame(columns=RECORD_COLUMNS)
    logger.info("Loaded %d infection records", len(df))
    return df


def state_names(geojson: dict) -> List[str]:
    names = [str(f.get("properties", {}).get("NAME", "")).strip() for f in geojson.get("features", [])]
    return [n for n in names if n]


# ======================
# Figure Builders
# ======================

def _flat_layer(df: pd.DataFrame, geojson: dict, color: str, name: str) -> go.Choroplethmap:
    """Uniformly coloured state layer (no data / de-emphasized)."""
    return go.Choroplethmap(
        geojson=geojson,
        locations=df["State"],
        z=[0] * len(df),
        featureidkey="properties.NAME",
        colorscale=[[0, color], [1, color]],
        showscale=False,
        marker_opacity=0.86,
        marker_line_width=0.5,
        marker_line_color="#333",
        name=name,
        customdata=df["hover"].to_numpy().reshape(-1, 1),
        hovertemplate="%{customdata[0]}<extra></extra>",
    )


def make_marker_hover(markers: pd.DataFrame, infection_type: str) -> pd.Series:
    def fmt(row):
        if infection_type == ALL:
            return f"<b>{row.hospital_id}</b><br>All Infections: {row.total_score:,.0f}"
        count = f"{row.total_score:,.0f}" if row.total_score else "No data"
        return f"<b>{row.hospital_id}</b><br>Infection Type: {infection_type}<br>Count: {count}"

    if markers.empty:
        return pd.Series(dtype=object)
    return pd.Series([fmt(r) for r in markers.itertuples(index=False)], index=markers.index)


def make_map_figure(render: RenderState, geojson: dict) -> Tuple[go.Figure, str]:
    """Build the choropleth + hospital marker map and the status note."""
    selection = render.selection

    # Every state in the geography appears, with or without data
    base = pd.DataFrame({"State": state_names(geojson)})
    base["total"] = base["State"].map(render.state_totals).astype(float)
    base["muted"] = base["State"].map(render.is_deemphasized).astype(bool)

    def fmt_count(v):
        return f"{v:,.0f}" if pd.notna(v) else "No data"

    base["hover"] = "<b>" + base["State"] + "</b><br>Infections: " + base["total"].map(fmt_count)

    df_muted = base[base["muted"]]
    df_live = base[~base["muted"]]
    df_have = df_live[df_live["total"].notna()].copy()
    df_missing = df_live[df_live["total"].isna()].copy()

    # Colour range spans every state so the selected one keeps its national shade
    totals = [v for v in render.state_totals.values() if np.isfinite(v)]
    vmax = float(np.nanpercentile(totals, 98)) if totals else 1.0
    vmax = max(vmax, 1.0)

    label = "Infection Counts" if selection.infection_type == ALL else f"{selection.infection_type} Cases"
    zoom = render.zoom
    center = US_CENTER if zoom.is_identity else {"lat": zoom.center_lat, "lon": zoom.center_lon}

    fig = px.choropleth_map(
        df_have if not df_have.empty else pd.DataFrame({"State": []}),
        geojson=geojson,
        locations="State",
        featureidkey="properties.NAME",
        color="total" if not df_have.empty else None,
        color_continuous_scale="Blues",
        range_color=(0, vmax),
        labels={"total": label},
        map_style="carto-positron",
        center=center,
        zoom=map_zoom(zoom),
        opacity=0.86,
    )
    if not df_have.empty:
        fig.data[0].customdata = df_have["hover"].to_numpy().reshape(-1, 1)
        fig.data[0].hovertemplate = "%{customdata[0]}<extra></extra>"
        fig.data[0].marker.line.width = 0.5
        fig.data[0].marker.line.color = "#333"

    if not df_missing.empty:
        fig.add_trace(_flat_layer(df_missing, geojson, NO_DATA_COLOR, "No Data"))
    if not df_muted.empty:
        fig.add_trace(_flat_layer(df_muted, geojson, DEEMPHASIZED_COLOR, "Other States"))

    markers = render.markers
    if not markers.empty:
        fig.add_trace(go.Scattermap(
            lon=markers["lon"],
            lat=markers["lat"],
            mode="markers",
            marker=dict(size=MARKER_SIZE, color=MARKER_COLOR, opacity=0.7),
            name="Hospitals",
            customdata=make_marker_hover(markers, selection.infection_type).to_numpy().reshape(-1, 1),
            hovertemplate="%{customdata[0]}<extra></extra>",
        ))

    fig.update_layout(
        margin={"r": 0, "t": 0, "l": 0, "b": 0},
        showlegend=False,
        # Camera is kept across filter changes and moved on region click / reset
        uirevision=f"view-{selection.view_epoch}",
        transition={"duration": ZOOM_DURATION_MS, "easing": "cubic-in-out"},
        coloraxis_colorbar=dict(
            title=dict(text=label, side="right", font=dict(size=14, family="Inter")),
            tickfont=dict(size=12, family="Inter"),
            len=0.7,
            thickness=15,
            x=1.02,
        ) if not df_have.empty else {},
        hoverlabel=dict(
            bgcolor="rgba(255, 255, 255, 0.95)",
            bordercolor="#e5e7eb",
            font_size=13,
            font_family="Inter",
        ),
    )

    n_total = len(base)
    n_missing = int(base["total"].isna().sum())
    note = f"{n_missing}/{n_total} states without data."
    if selection.selected_state is not None:
        note = f"{selection.selected_state}: {len(markers)} hospitals mapped. " + note
    return fig, note


# ======================
# App Factory
# ======================

def build_search_field(name: str, all_label: str, placeholder: str, candidates: List[str]) -> html.Div:
    """
    One searchable select: text input, hidden-until-focused list, candidate store.
    Clicks on the field (and keyboard focus, via assets/search_focus.js) open the list.
    """
    select = SearchableSelect(candidates, all_label=all_label)
    return html.Div([
        html.Label(name.title(), style={"fontWeight": 600, "fontSize": "15px"}),
        html.Div(
            dcc.Input(
                id={"type": "search-input", "name": name},
                type="text",
                value="",
                placeholder=placeholder,
                debounce=False,
                style={"width": "100%", "padding": "6px"},
            ),
            id={"type": "search-field", "name": name},
            className="search-field",
            n_clicks=0,
        ),
        dcc.RadioItems(
            id={"type": "search-list", "name": name},
            options=select.dash_options(),
            value=select.selected,
            style=LIST_HIDDEN,
            labelStyle={"display": "block"},
        ),
        dcc.Store(id={"type": "search-candidates", "name": name}, data=select.to_store()),
    ], style={"flex": "1", "minWidth": "220px", "maxHeight": "260px", "overflowY": "auto"})


def build_layout(
    states: List[str],
    hospitals: List[str],
    types: List[str],
) -> html.Div:
    """Construct the static Dash layout."""
    candidates = {"state": states, "hospital": hospitals, "infection": types}

    controls = html.Div([
        html.Label("Infection type", style={"fontWeight": 600, "marginRight": 8, "fontSize": "16px"}),
        dcc.Dropdown(
            id="filter",
            options=[{"label": "All Infections", "value": ALL}] + [{"label": t, "value": t} for t in types],
            value=ALL,
            clearable=False,
            style={"width": 320, "fontSize": "15px"},
        ),
        html.Button("Reset view", id="resetButton", n_clicks=0, style={"marginLeft": 12, "background": "#e2e8f0", "borderRadius": "6px", "border": "none", "padding": "6px 14px", "fontWeight": 500, "cursor": "pointer"}),
        html.Button("Export CSV", id="exportButton", n_clicks=0, style={"marginLeft": 12, "background": "#2b6cb0", "color": "#fff", "borderRadius": "6px", "border": "none", "padding": "6px 14px", "fontWeight": 500, "cursor": "pointer"}),
        html.Span(id="missing-note", style={"marginLeft": 12, "color": "#555", "fontSize": "14px"}),
    ], style={"display": "flex", "alignItems": "center", "gap": "8px", "flexWrap": "wrap", "marginBottom": "12px"})

    export_modal = html.Div([
        html.H3("Export infection records", style={"marginTop": 0}),
        html.P("Records matching the selected state, hospital and infection type are downloaded as CSV."),
        html.Div([
            html.Div([
                build_search_field(name, all_label, placeholder, candidates[name])
                for name, all_label, placeholder in SEARCH_FIELDS
            ], style={"display": "flex", "gap": "16px", "flexWrap": "wrap"}),
        ]),
        html.Div([
            html.Button("Download CSV", id="exportCsvButton", n_clicks=0, style={"marginRight": 8}),
            html.Button("Close", id="closeModalButton", n_clicks=0),
        ], style={"marginTop": "12px"}),
    ], id="exportModal", style=MODAL_HIDDEN)

    return html.Div(
        style={"fontFamily": "Inter, system-ui, -apple-system, Segoe UI, Roboto, Helvetica, Arial, sans-serif",
               "margin": "0 auto", "maxWidth": "1400px", "padding": "18px", "background": "#f8fafc"},
        children=[
            html.Div([
                html.Div("Healthcare-Associated Infections", className="brand", style={"fontSize": "28px", "fontWeight": 700, "color": "#2b6cb0"}),
                html.Div("Observed cases by state and hospital. Click a state to see its hospitals.", className="brand-sub", style={"color": "#6b7280", "fontSize": "16px"}),
            ], className="header", style={"marginBottom": "18px"}),
            controls,
            dcc.Loading(
                id="map-loading",
                type="dot",
                children=dcc.Graph(id="map", style={"height": "70vh", "background": "#fff", "borderRadius": "12px", "boxShadow": "0 2px 12px #0001"}),
            ),
            export_modal,
            dcc.Download(id="export-download"),
            dcc.Store(id="view-selection", data=ViewSelection().to_dict()),
            dcc.Store(id="search-panel", data={}),
            dcc.Interval(id="search-blur-timer", interval=BLUR_HIDE_DELAY_MS, n_intervals=0, max_intervals=1, disabled=True),
        ],
    )


def register_callbacks(
    app: dash.Dash,
    records: pd.DataFrame,
    geojson: dict,
    bounds: Dict[str, Bounds],
):
    """Wire all Dash callbacks."""
    gate = ResponseGate()

    @app.callback(
        Output("view-selection", "data"),
        Input("map", "clickData"),
        Input("filter", "value"),
        Input("resetButton", "n_clicks"),
        State("view-selection", "data"),
        prevent_initial_call=True,
    )
    def dispatch_view_action(click_data, filter_value, _reset_clicks, selection_data):
        ctx = dash.callback_context
        if not ctx.triggered:
            raise PreventUpdate

        trigger = ctx.triggered[0]["prop_id"].split(".")[0]
        action = action_from_event(trigger, click_data, filter_value)
        if action is None:
            raise PreventUpdate

        current = ViewSelection.from_dict(selection_data)
        selection = reduce(current, action)
        if selection is current:
            raise PreventUpdate
        return selection.to_dict()

    @app.callback(
        Output("map", "figure"),
        Output("missing-note", "children"),
        Input("view-selection", "data"),
    )
    def update_map(selection_data):
        selection = ViewSelection.from_dict(selection_data)
        ticket = gate.issue(selection)
        try:
            region_records = None
            if selection.selected_state is not None:
                region_records = filter_records(records, state=selection.selected_state)
            render = derive_render_state(selection, records, region_records, bounds)
        except Exception as e:
            logger.error("Error deriving map state for %s: %s", selection, e)
            render = RenderState(selection=selection)

        if not gate.accept(ticket):
            raise PreventUpdate
        return make_map_figure(render, geojson)

    @app.callback(
        Output({"type": "search-input", "name": MATCH}, "value"),
        Output({"type": "search-list", "name": MATCH}, "options"),
        Output({"type": "search-list", "name": MATCH}, "value"),
        Input({"type": "search-input", "name": MATCH}, "value"),
        Input({"type": "search-list", "name": MATCH}, "value"),
        Input({"type": "search-candidates", "name": MATCH}, "data"),
        prevent_initial_call=True,
    )
    def sync_search(text, chosen, candidates_data):
        trigger = dash.callback_context.triggered_id
        if not trigger:
            raise PreventUpdate

        select = SearchableSelect.from_store(candidates_data)
        kind = trigger.get("type")
        if kind == "search-input":
            select.search(text)
            return no_update, select.dash_options(), select.selected
        if kind == "search-list":
            if chosen is None:
                raise PreventUpdate
            return select.choose(chosen), no_update, no_update
        if kind == "search-candidates":
            return "", select.dash_options(), select.selected
        raise PreventUpdate

    @app.callback(
        Output({"type": "search-candidates", "name": "hospital"}, "data"),
        Input({"type": "search-list", "name": "state"}, "value"),
        prevent_initial_call=True,
    )
    def update_hospital_candidates(state):
        """Hospital choices follow the chosen state."""
        if state is None:
            raise PreventUpdate
        select = SearchableSelect(hospitals_for_state(records, state), all_label="All Hospitals")
        return select.to_store()

    @app.callback(
        Output({"type": "search-list", "name": ALL_IDS}, "style"),
        Output("search-panel", "data"),
        Output("search-blur-timer", "disabled"),
        Output("search-blur-timer", "n_intervals"),
        Input({"type": "search-field", "name": ALL_IDS}, "n_clicks"),
        Input({"type": "search-input", "name": ALL_IDS}, "n_blur"),
        Input("search-blur-timer", "n_intervals"),
        State("search-panel", "data"),
        prevent_initial_call=True,
    )
    def update_list_visibility(_field_clicks, _blurs, _ticks, panel_data):
        ctx = dash.callback_context
        trigger = ctx.triggered_id
        if not trigger:
            raise PreventUpdate

        names = [o["id"]["name"] for o in ctx.outputs_list[0]]
        panel = FilterPanel.from_store(names, panel_data)
        timer_disabled, ticks = True, no_update

        if trigger == "search-blur-timer":
            panel.expire_blur()
        elif trigger.get("type") == "search-field":
            panel.focus(trigger["name"])
        elif trigger.get("type") == "search-input":
            panel.blur(trigger["name"])
            # Hide after a short delay so a click on the list still registers
            timer_disabled, ticks = panel.pending_blur is None, 0

        return panel.styles(), panel.to_store(), timer_disabled, ticks

    @app.callback(
        Output("exportModal", "style"),
        Input("exportButton", "n_clicks"),
        Input("closeModalButton", "n_clicks"),
        Input("exportCsvButton", "n_clicks"),
        prevent_initial_call=True,
    )
    def toggle_export_modal(_open, _close, _export):
        trigger = dash.callback_context.triggered[0]["prop_id"].split(".")[0]
        return MODAL_SHOWN if trigger == "exportButton" else MODAL_HIDDEN

    @app.callback(
        Output("export-download", "data"),
        Input("exportCsvButton", "n_clicks"),
        State({"type": "search-list", "name": "state"}, "value"),
        State({"type": "search-list", "name": "hospital"}, "value"),
        State({"type": "search-list", "name": "infection"}, "value"),
        prevent_initial_call=True,
    )
    def export_csv_download(_n_clicks, state, hospital, infection):
        frame = export_frame(records, state=state, hospital=hospital, infection_type=infection)
        logger.info("Exporting %d records (state=%s, hospital=%s, infection=%s)",
                    len(frame), state, hospital, infection)
        return dcc.send_data_frame(frame.to_csv, EXPORT_FILENAME, index=False)


def create_app(geojson_path: Path = GEOJSON_PATH,
               engine: Optional[Engine] = None) -> dash.Dash:
    """
    App factory. Loads data, builds layout, and registers callbacks.
    Returns a ready-to-run Dash app with the read API mounted on its server.
    """
    engine = engine if engine is not None else get_engine()

    # Geography and records are loaded once and shared by every view
    geojson, bounds = load_geojson(geojson_path)
    records = load_dataset(engine)

    app = dash.Dash(__name__)
    app.title = "Healthcare-Associated Infections"
    register_api(app.server, engine)

    app.layout = build_layout(
        states_in(records),
        hospitals_for_state(records, ALL),
        infection_types(records),
    )
    register_callbacks(app, records, geojson, bounds)
    return app


# ======================
# Main
# ======================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    logger.info("Server is running on http://localhost:%d", PORT)
    app.run(host="0.0.0.0", port=PORT, debug=False)
