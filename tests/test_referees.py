"""Tests for referees.py: organizer pool and team-duty rotation."""

import logging
from datetime import datetime, timedelta

import pytest

from tourneysched.conflicts import detect_referee_conflicts
from tourneysched.errors import ConfigurationError
from tourneysched.models import (
    ConflictDetectionConfig, PlacedMatch, RefereeConfig, RefereeMode, Team,
)
from tourneysched.referees import (
    assign_referees, referee_display_name, referee_pool, validate_referee_config,
)


def _make_match(match_id, slot, field=1, team_a="a", team_b="b", referee=None):
    start = datetime(2026, 6, 13, 9, 0) + timedelta(minutes=12 * slot)
    return PlacedMatch(
        id=match_id, team_a=team_a, team_b=team_b, field=field, slot=slot,
        start_time=start, end_time=start + timedelta(minutes=10), referee=referee,
    )


def _make_teams(n):
    return [Team(f"t{i}", f"Team {i}") for i in range(1, n + 1)]


def _organizer(n=3, cap=1, **kwargs):
    return RefereeConfig(mode=RefereeMode.ORGANIZER, number_of_referees=n,
                         max_consecutive_matches=cap, **kwargs)


def _counts(matches):
    counts = {}
    for m in matches:
        counts[m.referee] = counts.get(m.referee, 0) + 1
    return counts


class TestOrganizerMode:
    def test_even_spread_over_distinct_times(self):
        matches = [_make_match(f"m{i}", slot=i) for i in range(6)]
        result = assign_referees(matches, [], _organizer())
        assert _counts(result) == {1: 2, 2: 2, 3: 2}
        detection = ConflictDetectionConfig(match_minutes=10)
        assert detect_referee_conflicts(result, detection) == []

    def test_parallel_matches_get_different_referees(self):
        matches = [
            _make_match("m0", slot=0, field=1),
            _make_match("m1", slot=0, field=2),
            _make_match("m2", slot=1, field=1),
            _make_match("m3", slot=1, field=2),
        ]
        result = assign_referees(matches, [], _organizer(n=3))
        for slot in (0, 1):
            refs = [m.referee for m in result if m.slot == slot]
            assert len(set(refs)) == 2

    def test_returns_new_list(self):
        matches = [_make_match("m0", slot=0)]
        result = assign_referees(matches, [], _organizer())
        assert result[0].referee == 1
        assert matches[0].referee is None

    def test_manual_assignment_locked(self):
        matches = [_make_match(f"m{i}", slot=i) for i in range(3)]
        result = assign_referees(matches, [], _organizer(manual_assignments={"m0": 3}))
        assert result[0].referee == 3
        # Referee 3 has already worked, so the others come first.
        assert result[1].referee == 1
        assert result[2].referee == 2

    def test_existing_referee_kept(self):
        matches = [_make_match("m0", slot=0, referee=2), _make_match("m1", slot=1)]
        result = assign_referees(matches, [], _organizer())
        assert result[0].referee == 2
        assert result[1].referee == 1

    def test_cap_relaxed_with_warning(self, caplog):
        matches = [_make_match("m0", slot=0), _make_match("m1", slot=1)]
        with caplog.at_level(logging.WARNING, logger="tourneysched.referees"):
            result = assign_referees(matches, [], _organizer(n=1, cap=2))
        assert [m.referee for m in result] == [1, 1]
        assert "relaxed" in caplog.text

    def test_cap_respected_when_possible(self):
        matches = [_make_match(f"m{i}", slot=i) for i in range(4)]
        result = assign_referees(matches, [], _organizer(n=2, cap=2))
        # With a gap of at least 2 slots, two referees alternate.
        assert [m.referee for m in result] == [1, 2, 1, 2]

    def test_no_referees_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            assign_referees([_make_match("m0", 0)], [], _organizer(n=0))

    def test_manual_referee_outside_pool(self):
        with pytest.raises(ConfigurationError):
            assign_referees([_make_match("m0", 0)], [],
                            _organizer(n=2, manual_assignments={"m0": 5}))


class TestTeamsMode:
    def _make_schedule(self):
        return [
            _make_match("m0", slot=0, field=1, team_a="t1", team_b="t2"),
            _make_match("m1", slot=0, field=2, team_a="t3", team_b="t4"),
            _make_match("m2", slot=1, field=1, team_a="t3", team_b="t1"),
            _make_match("m3", slot=1, field=2, team_a="t2", team_b="t4"),
            _make_match("m4", slot=2, field=1, team_a="t4", team_b="t1"),
        ]

    def test_previous_home_team_referees(self):
        config = RefereeConfig(mode=RefereeMode.TEAMS)
        result = assign_referees(self._make_schedule(), _make_teams(4), config)
        by_id = {m.id: m.referee for m in result}
        assert by_id == {"m0": None, "m1": None, "m2": 1, "m3": 3, "m4": 3}

    def test_order_preserved(self):
        config = RefereeConfig(mode=RefereeMode.TEAMS)
        result = assign_referees(self._make_schedule(), _make_teams(4), config)
        assert [m.id for m in result] == ["m0", "m1", "m2", "m3", "m4"]

    def test_placeholder_home_team_gives_no_referee(self):
        matches = [
            _make_match("sf1", slot=0, team_a="A-1st", team_b="B-2nd"),
            _make_match("final", slot=1, team_a="sf1-winner", team_b="sf2-winner"),
        ]
        config = RefereeConfig(mode=RefereeMode.TEAMS)
        result = assign_referees(matches, _make_teams(4), config)
        assert [m.referee for m in result] == [None, None]

    def test_needs_teams(self):
        with pytest.raises(ConfigurationError):
            assign_referees(self._make_schedule(), [], RefereeConfig(mode=RefereeMode.TEAMS))

    def test_pool_size_must_match_teams(self):
        config = RefereeConfig(mode=RefereeMode.TEAMS, number_of_referees=3)
        with pytest.raises(ConfigurationError):
            validate_referee_config(config, _make_teams(4))


class TestNoneMode:
    def test_unchanged(self):
        matches = [_make_match("m0", 0)]
        assert assign_referees(matches, [], RefereeConfig()) == matches
        assert referee_pool(RefereeConfig(), _make_teams(3)) == []


class TestDisplayName:
    def test_custom_name(self):
        config = _organizer(names={2: "Lena"})
        assert referee_display_name(2, config) == "Lena"

    def test_number_fallback(self):
        assert referee_display_name(3, _organizer()) == "3"

    def test_team_name_in_teams_mode(self):
        config = RefereeConfig(mode=RefereeMode.TEAMS)
        assert referee_display_name(2, config, _make_teams(4)) == "Team 2"

    def test_custom_name_beats_team_name(self):
        config = RefereeConfig(mode=RefereeMode.TEAMS, names={2: "Coach Kim"})
        assert referee_display_name(2, config, _make_teams(4)) == "Coach Kim"

    def test_unassigned(self):
        assert referee_display_name(None, _organizer()) == "-"
