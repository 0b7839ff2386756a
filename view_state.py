"""
Map view state
- ViewSelection: the (selected state, infection filter) pair behind every render
- Typed actions and a single reducer for map interaction
- RenderState derivation (fills, hospital markers, zoom)
- ResponseGate for discarding out-of-order fetch results
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple, Union

import pandas as pd

from infections import ALL, aggregate_by_hospital, aggregate_by_state

logger = logging.getLogger(__name__)

# (minx, miny, maxx, maxy) in lon/lat degrees
Bounds = Tuple[float, float, float, float]

# Lower-48 extent used as the reference viewport for region zoom
VIEWPORT_BOUNDS: Bounds = (-125.0, 24.0, -66.0, 50.0)
MIN_ZOOM_SCALE = 1.0
MAX_ZOOM_SCALE = 8.0
ZOOM_PADDING = 0.9


# ======================
# Selection & Actions
# ======================

@dataclass(frozen=True)
class ViewSelection:
    selected_state: Optional[str] = None
    infection_type: str = ALL
    revision: int = 0
    view_epoch: int = 0

    def to_dict(self) -> dict:
        return {
            "selected_state": self.selected_state,
            "infection_type": self.infection_type,
            "revision": self.revision,
            "view_epoch": self.view_epoch,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping]) -> "ViewSelection":
        if not data:
            return cls()
        return cls(
            selected_state=data.get("selected_state"),
            infection_type=data.get("infection_type") or ALL,
            revision=int(data.get("revision", 0)),
            view_epoch=int(data.get("view_epoch", 0)),
        )


@dataclass(frozen=True)
class SelectRegion:
    code: str


@dataclass(frozen=True)
class SetFilter:
    infection_type: str


@dataclass(frozen=True)
class Reset:
    pass


Action = Union[SelectRegion, SetFilter, Reset]


def reduce(selection: ViewSelection, action: Action) -> ViewSelection:
    """
    Compute the next selection. No-op transitions return the very same
    object, so callers can detect them with an identity check.
    """
    if isinstance(action, SelectRegion):
        if not action.code or action.code == selection.selected_state:
            return selection
        return replace(
            selection,
            selected_state=action.code,
            revision=selection.revision + 1,
            view_epoch=selection.view_epoch + 1,
        )

    if isinstance(action, SetFilter):
        infection_type = action.infection_type or ALL
        if infection_type == selection.infection_type:
            return selection
        return replace(selection, infection_type=infection_type, revision=selection.revision + 1)

    if isinstance(action, Reset):
        return replace(
            selection,
            selected_state=None,
            revision=selection.revision + 1,
            view_epoch=selection.view_epoch + 1,
        )

    raise TypeError(f"Unknown action: {action!r}")


# ======================
# Zoom
# ======================

@dataclass(frozen=True)
class ZoomTransform:
    scale: float = 1.0
    center_lon: Optional[float] = None
    center_lat: Optional[float] = None

    @property
    def is_identity(self) -> bool:
        return self.center_lon is None or self.center_lat is None


IDENTITY_ZOOM = ZoomTransform()


def compute_zoom(bounds: Optional[Bounds], viewport: Bounds = VIEWPORT_BOUNDS) -> ZoomTransform:
    """
    Zoom that frames a region's bounding box inside the viewport.
    The scale factor is clamped to [1, 8].
    """
    if bounds is None:
        return IDENTITY_ZOOM
    x0, y0, x1, y1 = bounds
    dx, dy = x1 - x0, y1 - y0
    if dx > 180:
        # Box wraps the antimeridian (Alaska); keep the national view
        return IDENTITY_ZOOM
    vw, vh = viewport[2] - viewport[0], viewport[3] - viewport[1]
    extent = max(dx / vw, dy / vh)
    scale = MAX_ZOOM_SCALE if extent <= 0 else ZOOM_PADDING / extent
    scale = max(MIN_ZOOM_SCALE, min(MAX_ZOOM_SCALE, scale))
    return ZoomTransform(scale=scale, center_lon=(x0 + x1) / 2, center_lat=(y0 + y1) / 2)


# ======================
# Render state
# ======================

@dataclass
class RenderState:
    selection: ViewSelection
    state_totals: Dict[str, float] = field(default_factory=dict)
    markers: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=["hospital_id", "total_score", "lon", "lat"]))
    zoom: ZoomTransform = IDENTITY_ZOOM

    @property
    def highlighted_state(self) -> Optional[str]:
        return self.selection.selected_state

    def is_deemphasized(self, state: str) -> bool:
        """Every state other than the selected one is drawn in the muted colour."""
        return self.highlighted_state is not None and state != self.highlighted_state


def derive_render_state(
    selection: ViewSelection,
    records: pd.DataFrame,
    region_records: Optional[pd.DataFrame] = None,
    region_bounds: Optional[Mapping[str, Bounds]] = None,
) -> RenderState:
    """
    Everything the map shows, computed from the selection and data alone.

    Args:
        selection: Current ViewSelection
        records: The whole dataset (state fills are never region-scoped)
        region_records: Records fetched for the selected state
        region_bounds: State name -> bounding box

    Returns:
        RenderState with filter-scoped state totals, plottable hospital
        markers for the selected state, and the zoom transform.
    """
    state_totals = aggregate_by_state(records, selection.infection_type)

    if selection.selected_state is None:
        return RenderState(selection=selection, state_totals=state_totals)

    markers = aggregate_by_hospital(
        region_records if region_records is not None else records.iloc[0:0],
        selection.infection_type,
    )
    markers = markers[markers["lon"].notna() & markers["lat"].notna()].reset_index(drop=True)

    bounds = (region_bounds or {}).get(selection.selected_state)
    return RenderState(
        selection=selection,
        state_totals=state_totals,
        markers=markers,
        zoom=compute_zoom(bounds),
    )


# ======================
# Out-of-order responses
# ======================

@dataclass(frozen=True)
class FetchTicket:
    serial: int
    selection: ViewSelection


class ResponseGate:
    """Only the most recently issued fetch may publish its result."""

    def __init__(self):
        self._serials = itertools.count(1)
        self._latest = 0

    def issue(self, selection: ViewSelection) -> FetchTicket:
        ticket = FetchTicket(serial=next(self._serials), selection=selection)
        self._latest = ticket.serial
        return ticket

    def accept(self, ticket: FetchTicket) -> bool:
        if ticket.serial != self._latest:
            logger.info(
                "Discarding stale response for %s / %s (ticket %d, latest %d)",
                ticket.selection.selected_state, ticket.selection.infection_type,
                ticket.serial, self._latest,
            )
            return False
        return True
