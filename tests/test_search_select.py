"""Tests for the searchable select and filter panel models."""

import pytest

from infections import ALL
from search_select import LIST_HIDDEN, LIST_SHOWN, FilterPanel, SearchableSelect

STATES = ["California", "Colorado", "Connecticut", "Texas"]


@pytest.fixture
def changes():
    return []


@pytest.fixture
def state_select(changes):
    return SearchableSelect(STATES, all_label="All States", on_change=changes.append)


class TestSearchableSelect:
    """Test search, choose and candidate replacement."""

    def test_initial_options_lead_with_all(self, state_select):
        assert state_select.options == [ALL] + STATES
        assert state_select.selected == ALL

    def test_case_insensitive_substring(self, state_select, changes):
        assert state_select.search("CO") == ["Colorado", "Connecticut"]
        assert state_select.selected == "Colorado"
        assert changes == ["Colorado"]

    def test_substring_anywhere(self, state_select):
        assert state_select.search("as") == ["Texas"]

    def test_no_match_clears_list_without_callback(self, state_select, changes):
        assert state_select.search("zzz") == []
        assert state_select.selected is None
        assert changes == []

    def test_clearing_search_restores_all(self, state_select, changes):
        state_select.search("tex")
        state_select.search("")
        assert state_select.options[0] == ALL
        assert changes == ["Texas", ALL]

    def test_choose_syncs_input(self, state_select, changes):
        assert state_select.choose("Texas") == "Texas"
        assert state_select.text == "Texas"
        assert changes == ["Texas"]

    def test_choose_all_clears_input(self, state_select):
        state_select.search("tex")
        assert state_select.choose(ALL) == ""

    def test_replace_candidates(self, state_select, changes):
        state_select.search("tex")
        state_select.replace_candidates(["Austin General", "Dallas Medical"])
        assert state_select.text == ""
        assert state_select.options == [ALL, "Austin General", "Dallas Medical"]
        assert state_select.selected == ALL

    def test_without_all_entry(self):
        select = SearchableSelect(["b", "a"])
        assert select.options == ["b", "a"]
        assert select.selected == "b"
        assert select.search("") == ["b", "a"]

    def test_dash_options_label_all(self, state_select):
        options = state_select.dash_options()
        assert options[0] == {"label": "All States", "value": ALL}
        assert options[1] == {"label": "California", "value": "California"}

    def test_store_round_trip(self, state_select):
        restored = SearchableSelect.from_store(state_select.to_store())
        assert restored.candidates == STATES
        assert restored.options == state_select.options

    def test_dependent_child(self, records):
        """A state choice repopulates the hospital select."""
        from infections import hospitals_for_state

        hospitals = SearchableSelect(hospitals_for_state(records, ALL), all_label="All Hospitals")
        states = SearchableSelect(
            ["Alpha", "Beta"],
            all_label="All States",
            on_change=lambda state: hospitals.replace_candidates(hospitals_for_state(records, state)),
        )

        states.choose("Beta")
        assert hospitals.options == [ALL, "Coastal Clinic"]
        states.search("")
        assert hospitals.options == [ALL, "Coastal Clinic", "County Medical", "General Hospital"]


class TestFilterPanel:
    """Test list visibility across sibling selects."""

    NAMES = ["state", "hospital", "infection"]

    def test_all_hidden_initially(self):
        assert FilterPanel(self.NAMES).styles() == [LIST_HIDDEN] * 3

    def test_focus_hides_siblings(self):
        panel = FilterPanel(self.NAMES)
        panel.focus("state")
        panel.focus("hospital")
        assert panel.styles() == [LIST_HIDDEN, LIST_SHOWN, LIST_HIDDEN]

    def test_blur_hides_after_delay(self):
        panel = FilterPanel(self.NAMES)
        panel.focus("infection")
        panel.blur("infection")
        # Still open until the delay expires
        assert panel.is_visible("infection")
        panel.expire_blur()
        assert not panel.is_visible("infection")

    def test_refocus_cancels_pending_hide(self):
        panel = FilterPanel(self.NAMES)
        panel.focus("state")
        panel.blur("state")
        panel.focus("state")
        panel.expire_blur()
        assert panel.is_visible("state")

    def test_blur_of_closed_list_is_ignored(self):
        panel = FilterPanel(self.NAMES)
        panel.focus("hospital")
        panel.blur("state")
        panel.expire_blur()
        assert panel.is_visible("hospital")

    def test_store_round_trip(self):
        panel = FilterPanel(self.NAMES)
        panel.focus("state")
        panel.blur("state")
        restored = FilterPanel.from_store(self.NAMES, panel.to_store())
        assert restored.open_name == "state"
        assert restored.pending_blur == "state"
