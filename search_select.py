"""
Searchable select widget model.

A text input narrows a candidate list; the list control holds the current
choice. Several instances make up the filter panel, where only one list is
open at a time.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping, Optional

from infections import ALL

BLUR_HIDE_DELAY_MS = 200

LIST_SHOWN = {"display": "block"}
LIST_HIDDEN = {"display": "none"}


class SearchableSelect:
    def __init__(
        self,
        candidates: Iterable[str],
        all_label: Optional[str] = None,
        on_change: Optional[Callable[[str], None]] = None,
    ):
        self.candidates: List[str] = list(candidates)
        self.all_label = all_label
        self.on_change = on_change
        self.text = ""
        self.options: List[str] = self._full_options()
        self.selected: Optional[str] = self.options[0] if self.options else None

    def _full_options(self) -> List[str]:
        head = [ALL] if self.all_label else []
        return head + self.candidates

    def _fire(self, value: str) -> None:
        if self.on_change is not None:
            self.on_change(value)

    def search(self, text: Optional[str]) -> List[str]:
        """
        Filter candidates by case-insensitive substring and auto-select the
        first match. With no match the list is empty and nothing fires.
        """
        self.text = text or ""
        needle = self.text.lower()
        if not needle:
            self.options = self._full_options()
        else:
            self.options = [c for c in self.candidates if needle in c.lower()]

        self.selected = self.options[0] if self.options else None
        if self.selected is not None:
            self._fire(self.selected)
        return self.options

    def choose(self, value: str) -> str:
        """Pick an item from the list; the input shows the chosen value."""
        self.selected = value
        self.text = "" if value == ALL else value
        self._fire(value)
        return self.text

    def replace_candidates(self, candidates: Iterable[str]) -> None:
        self.candidates = list(candidates)
        self.text = ""
        self.options = self._full_options()
        self.selected = self.options[0] if self.options else None

    def label(self, value: str) -> str:
        return self.all_label if value == ALL and self.all_label else value

    def dash_options(self) -> List[Dict[str, str]]:
        return [{"label": self.label(v), "value": v} for v in self.options]

    def to_store(self) -> dict:
        return {"candidates": self.candidates, "all_label": self.all_label}

    @classmethod
    def from_store(cls, data: Optional[Mapping]) -> "SearchableSelect":
        data = data or {}
        return cls(data.get("candidates") or [], all_label=data.get("all_label"))


class FilterPanel:
    """Visibility of the lists in a group of searchable selects."""

    def __init__(self, names: Iterable[str], open_name: Optional[str] = None,
                 pending_blur: Optional[str] = None):
        self.names = list(names)
        self.open_name = open_name
        self.pending_blur = pending_blur

    def focus(self, name: str) -> None:
        # Opening one list closes its siblings
        self.open_name = name
        self.pending_blur = None

    def blur(self, name: str) -> None:
        """Schedule a hide; applied by expire_blur after BLUR_HIDE_DELAY_MS."""
        if self.open_name == name:
            self.pending_blur = name

    def expire_blur(self) -> None:
        if self.pending_blur is not None and self.pending_blur == self.open_name:
            self.open_name = None
        self.pending_blur = None

    def is_visible(self, name: str) -> bool:
        return self.open_name == name

    def styles(self) -> List[dict]:
        return [LIST_SHOWN if self.is_visible(n) else LIST_HIDDEN for n in self.names]

    def to_store(self) -> dict:
        return {"open": self.open_name, "pending_blur": self.pending_blur}

    @classmethod
    def from_store(cls, names: Iterable[str], data: Optional[Mapping]) -> "FilterPanel":
        data = data or {}
        return cls(names, open_name=data.get("open"), pending_blur=data.get("pending_blur"))
