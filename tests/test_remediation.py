"""Tests for remediation.py: referee reassignment, rebalancing and field spreading."""

from datetime import datetime, timedelta

import pytest

from tourneysched.conflicts import detect_referee_conflicts
from tourneysched.errors import ConfigurationError
from tourneysched.models import (
    ConflictDetectionConfig, MatchStatus, PlacedMatch, RefereeConfig, RefereeMode,
    Team,
)
from tourneysched.remediation import (
    apply_changes, auto_reassign_referees, balance_workloads, consecutive_run,
    redistribute_after_skip, redistribute_all, redistribute_fields,
    workload_targets,
)


def _at(hour, minute=0):
    return datetime(2026, 6, 13, hour, minute)


def _make_match(match_id, start, field=1, slot=0, referee=None,
                team_a=None, team_b=None, status=MatchStatus.SCHEDULED):
    start_time = _at(*start)
    return PlacedMatch(
        id=match_id,
        team_a=team_a or f"{match_id}-home",
        team_b=team_b or f"{match_id}-away",
        field=field, slot=slot,
        start_time=start_time, end_time=start_time + timedelta(minutes=10),
        referee=referee, status=status,
    )


def _make_referees(n=3, cap=1, **kwargs):
    return RefereeConfig(mode=RefereeMode.ORGANIZER, number_of_referees=n,
                         max_consecutive_matches=cap, **kwargs)


def _make_teams(n=4):
    return [Team(f"t{i}", f"Team {i}") for i in range(1, n + 1)]


def _make_team_referees(teams):
    return RefereeConfig(mode=RefereeMode.TEAMS, number_of_referees=len(teams))


def _make_detection(**kwargs):
    kwargs.setdefault("match_minutes", 10)
    return ConflictDetectionConfig(**kwargs)


def _loads(matches):
    counts = {}
    for m in matches:
        if m.referee is not None:
            counts[m.referee] = counts.get(m.referee, 0) + 1
    return counts


class TestAutoReassign:
    def test_fills_unassigned_without_conflicts(self):
        matches = [
            _make_match(f"m{i}", (10 + i // 2, 0), field=1 + i % 2, slot=i // 2)
            for i in range(6)
        ]
        result = auto_reassign_referees(matches, _make_referees(), _make_detection())
        assert result.success
        assert len(result.changes) == 6
        assert result.unresolved_conflicts == []

        updated = apply_changes(matches, result.changes)
        assert all(m.referee is not None for m in updated)
        assert detect_referee_conflicts(updated, _make_detection()) == []
        assert sorted(_loads(updated).values()) == [2, 2, 2]

    def test_does_not_touch_input(self):
        matches = [_make_match("m0", (10, 0))]
        auto_reassign_referees(matches, _make_referees(), _make_detection())
        assert matches[0].referee is None

    def test_keeps_assigned_without_force(self):
        matches = [
            _make_match("m0", (10, 0), referee=3),
            _make_match("m1", (11, 0)),
        ]
        result = auto_reassign_referees(matches, _make_referees(), _make_detection())
        assert [c.match_id for c in result.changes] == ["m1"]

    def test_force_reassigns_but_never_locked(self):
        matches = [
            _make_match("m0", (10, 0), referee=1),
            _make_match("m1", (11, 0), referee=1),
            _make_match("m2", (12, 0), referee=1),
        ]
        referees = _make_referees(manual_assignments={"m0": 1})
        result = auto_reassign_referees(matches, referees, _make_detection(), force=True)
        assert result.success
        assert "m0" not in [c.match_id for c in result.changes]
        updated = apply_changes(matches, result.changes)
        assert updated[0].referee == 1
        assert sorted(_loads(updated).values()) == [1, 1, 1]

    def test_ignores_finished_and_skipped(self):
        matches = [
            _make_match("m0", (10, 0), status=MatchStatus.FINISHED),
            _make_match("m1", (11, 0), status=MatchStatus.SKIPPED),
            _make_match("m2", (12, 0)),
        ]
        result = auto_reassign_referees(matches, _make_referees(), _make_detection())
        assert [c.match_id for c in result.changes] == ["m2"]

    def test_prefers_lower_workload(self):
        matches = [
            _make_match("m0", (9, 0), referee=1),
            _make_match("m1", (10, 0), referee=1),
            _make_match("m2", (11, 0)),
        ]
        result = auto_reassign_referees(matches, _make_referees(n=2), _make_detection())
        assert result.changes[0].new_value == 2

    def test_reports_uncovered_when_pool_too_small(self):
        matches = [
            _make_match("m0", (10, 0), field=1),
            _make_match("m1", (10, 0), field=2),
        ]
        result = auto_reassign_referees(matches, _make_referees(n=1), _make_detection())
        assert not result.success
        assert len(result.changes) == 1
        assert "m1" in result.message

    def test_cap_relaxed_rather_than_leaving_match_open(self):
        matches = [
            _make_match("m0", (10, 0)),
            _make_match("m1", (10, 15)),
        ]
        result = auto_reassign_referees(matches, _make_referees(n=1), _make_detection())
        assert result.success
        assert [c.new_value for c in result.changes] == [1, 1]

    def test_no_referees(self):
        result = auto_reassign_referees(
            [_make_match("m0", (10, 0))], RefereeConfig(), _make_detection(),
        )
        assert not result.success
        assert result.changes == []


class TestAutoReassignTeamsMode:
    def test_team_never_referees_itself_or_while_playing(self):
        teams = _make_teams()
        matches = [
            _make_match("m1", (10, 0), field=1, team_a="t1", team_b="t2"),
            _make_match("m2", (10, 0), field=2, team_a="t3", team_b="t4"),
        ]
        # All four teams are on the pitch at 10:00.
        result = auto_reassign_referees(matches, _make_team_referees(teams),
                                        _make_detection(), teams)
        assert not result.success
        assert result.changes == []
        assert "m1" in result.message and "m2" in result.message

    def test_free_team_referees(self):
        teams = _make_teams()
        matches = [
            _make_match("m1", (10, 0), team_a="t1", team_b="t2"),
            _make_match("m2", (11, 0), team_a="t3", team_b="t4"),
        ]
        result = auto_reassign_referees(matches, _make_team_referees(teams),
                                        _make_detection(), teams)
        assert result.success
        assert [(c.match_id, c.new_value) for c in result.changes] == [("m1", 3), ("m2", 1)]

    def test_overlapping_own_match_blocks(self):
        teams = _make_teams()
        matches = [
            _make_match("m1", (10, 0), field=1, team_a="t1", team_b="t2"),
            _make_match("m2", (10, 5), field=2, team_a="t3", team_b="x"),
        ]
        result = auto_reassign_referees(matches, _make_team_referees(teams),
                                        _make_detection(), teams)
        # t3 kicks off at 10:05, so only t4 can take m1; nobody is left for m2.
        assert [(c.match_id, c.new_value) for c in result.changes] == [("m1", 4)]
        assert not result.success
        assert "m2" in result.message


class TestConsecutiveRun:
    def test_counts_chain_within_window(self):
        working = [
            _make_match("m0", (10, 0), referee=1),
            _make_match("m1", (10, 20), referee=1),
            _make_match("m3", (11, 30), referee=1),
        ]
        candidate = _make_match("m2", (10, 40))
        config = _make_detection(consecutive_window_minutes=30)
        assert consecutive_run(1, candidate, working, config) == 2
        assert consecutive_run(2, candidate, working, config) == 0


class TestRedistributeAfterSkip:
    def test_freed_referee_takes_first_open_match(self):
        matches = [
            _make_match("m0", (10, 0), referee=2, status=MatchStatus.SKIPPED),
            _make_match("m1", (10, 0), field=2),
            _make_match("m2", (11, 0)),
        ]
        result = redistribute_after_skip(matches, "m0", _make_detection())
        assert result.success
        assert len(result.changes) == 1
        change = result.changes[0]
        assert (change.match_id, change.attribute, change.old_value, change.new_value) == (
            "m1", "referee", None, 2)

    def test_skips_matches_the_referee_cannot_take(self):
        matches = [
            _make_match("m0", (10, 0), referee=2, status=MatchStatus.SKIPPED),
            _make_match("m1", (10, 0), field=2),
            _make_match("m3", (10, 0), field=3, referee=2),
            _make_match("m2", (11, 0)),
        ]
        result = redistribute_after_skip(matches, "m0", _make_detection())
        assert [c.match_id for c in result.changes] == ["m2"]

    def test_nothing_to_take(self):
        matches = [
            _make_match("m0", (10, 0), referee=2, status=MatchStatus.SKIPPED),
            _make_match("m1", (11, 0), referee=1),
        ]
        result = redistribute_after_skip(matches, "m0", _make_detection())
        assert not result.success
        assert result.changes == []

    def test_unknown_or_unrefereed_match(self):
        matches = [_make_match("m0", (10, 0))]
        assert not redistribute_after_skip(matches, "m9", _make_detection()).success
        assert not redistribute_after_skip(matches, "m0", _make_detection()).success

    def test_teams_mode_skips_the_referees_own_match(self):
        teams = _make_teams()
        matches = [
            _make_match("m0", (9, 0), referee=3, team_a="t1", team_b="t2",
                        status=MatchStatus.SKIPPED),
            _make_match("m1", (10, 0), team_a="t3", team_b="t4"),
            _make_match("m2", (11, 0), team_a="t1", team_b="t2"),
        ]
        result = redistribute_after_skip(matches, "m0", _make_detection(),
                                         _make_team_referees(teams), teams)
        assert [(c.match_id, c.new_value) for c in result.changes] == [("m2", 3)]


class TestBalanceWorkloads:
    def test_targets(self):
        assert workload_targets(9, [1, 2, 3]) == {1: 3, 2: 3, 3: 3}
        assert workload_targets(8, [1, 2, 3]) == {1: 3, 2: 3, 3: 2}

    def test_moves_from_overloaded_to_underloaded(self):
        matches = [_make_match(f"m{i}", (9 + i, 0), referee=1) for i in range(9)]
        result = balance_workloads(matches, _make_referees(), _make_detection())
        assert result.success
        assert len(result.changes) == 4
        assert all(c.old_value == 1 for c in result.changes)
        assert _loads(apply_changes(matches, result.changes)) == {1: 5, 2: 2, 3: 2}

    def test_already_balanced(self):
        matches = [_make_match(f"m{i}", (9 + i, 0), referee=1 + i % 3) for i in range(6)]
        result = balance_workloads(matches, _make_referees(), _make_detection())
        assert result.success
        assert result.changes == []

    def test_no_move_that_double_books(self):
        matches = [_make_match(f"m{i}", (10, 0), field=i + 1, referee=1) for i in range(9)]
        matches += [
            _make_match("busy2", (10, 0), field=10, referee=2),
            _make_match("busy3", (10, 0), field=11, referee=3),
        ]
        # Everything is at 10:00, so no receiver is ever free.
        result = balance_workloads(matches, _make_referees(), _make_detection())
        assert not result.success
        assert result.changes == []

    def test_locked_matches_stay(self):
        matches = [_make_match(f"m{i}", (9 + i, 0), referee=1) for i in range(6)]
        locked = {f"m{i}": 1 for i in range(6)}
        result = balance_workloads(matches, _make_referees(manual_assignments=locked),
                                   _make_detection())
        assert result.changes == []
        assert not result.success

    def test_targets_count_unassigned_matches(self):
        matches = [_make_match(f"m{i}", (9 + i, 0), referee=1) for i in range(4)]
        matches += [_make_match(f"m{i}", (9 + i, 0)) for i in range(4, 6)]
        # Six active matches over three referees: everyone should have two.
        result = balance_workloads(matches, _make_referees(), _make_detection())
        assert result.success
        assert [(c.match_id, c.old_value, c.new_value) for c in result.changes] == [
            ("m0", 1, 2)]
        assert "3 still off target" in result.message

    def test_teams_mode_never_hands_a_team_its_own_match(self):
        teams = _make_teams(3)
        matches = [_make_match("m0", (9, 0), referee=1, team_a="t2", team_b="t3")]
        matches += [_make_match(f"m{i}", (9 + i, 0), referee=1) for i in range(1, 6)]
        result = balance_workloads(matches, _make_team_referees(teams),
                                   _make_detection(), teams)
        assert [(c.match_id, c.new_value) for c in result.changes] == [("m1", 2), ("m2", 3)]


class TestRedistributeFields:
    def test_round_robin_within_start_time(self):
        matches = [_make_match(f"m{i}", (10, 0), field=1) for i in range(3)]
        result = redistribute_fields(matches, 2)
        assert result.success
        updated = apply_changes(matches, result.changes)
        assert [m.field for m in updated] == [1, 2, 1]
        assert [m.start_time for m in updated] == [m.start_time for m in matches]

    def test_separate_time_groups(self):
        matches = [
            _make_match("m0", (10, 0), field=2),
            _make_match("m1", (10, 0), field=2),
            _make_match("m2", (10, 15), field=2),
        ]
        updated = apply_changes(matches, redistribute_fields(matches, 3).changes)
        assert [m.field for m in updated] == [1, 2, 1]

    def test_single_field_is_noop(self):
        matches = [_make_match(f"m{i}", (10, 0), field=1) for i in range(3)]
        result = redistribute_fields(matches, 1)
        assert result.success
        assert result.changes == []

    def test_zero_fields_rejected(self):
        with pytest.raises(ConfigurationError):
            redistribute_fields([_make_match("m0", (10, 0))], 0)


class TestRedistributeAll:
    def test_both_parts_reported(self):
        matches = [_make_match(f"m{i}", (10, 0), field=1) for i in range(2)]
        results = redistribute_all(matches, _make_referees(), _make_detection(), 2)
        assert set(results) == {"referees", "fields"}
        assert results["referees"].success
        assert [c.new_value for c in results["fields"].changes] == [2]
