"""Main scheduling engine: round robin -> timetable.

Phases:
1. Generate pairings (roundrobin.py)
2. Placement: every pairing, in generation order, gets the legal
   (field, slot) cell that keeps the spread of average rest smallest
3. Home/away balancing: swap team order inside placed matches; times and
   fields are untouched, so rest fairness is not affected
4. Bracket matches go into slots after the group phase with the same
   placement rules (plus dependency ordering)
5. Referees (referees.py)

Hard constraints: one match per (field, slot); a team plays at most once
per slot; after playing at slot s a team may next play at
s + min_rest_slots + 1. Placement never relaxes these. If a pairing has no
legal cell before the search horizon the run fails with
InfeasibleScheduleError instead of returning a partial schedule.
"""

import logging
import math
from collections import defaultdict
from dataclasses import replace
from typing import Iterable, Optional

from tourneysched.errors import ConfigurationError, InfeasibleScheduleError
from tourneysched.fairness import FairnessTracker
from tourneysched.models import (
    BracketMatch, MatchPairing, PlacedMatch, PlayoffParams, RefereeMode,
    ScheduleParams, SlotClock, Team, TournamentSchedule,
)
from tourneysched.referees import assign_referees
from tourneysched.roundrobin import generate_group_pairings

logger = logging.getLogger(__name__)


class SlotGrid:
    """Occupancy of (slot, field) cells and of teams per slot."""

    def __init__(self, number_of_fields: int):
        self.number_of_fields = number_of_fields
        self._cells: dict[int, dict[int, str]] = defaultdict(dict)
        self._teams: dict[int, set[str]] = defaultdict(set)
        self._exclusive: set[int] = set()
        self._lowest_open = 0

    def free_fields(self, slot: int, exclusive: bool = False) -> list[int]:
        if slot in self._exclusive:
            return []
        used = self._cells.get(slot, {})
        if exclusive:
            return [1] if not used else []
        return [f for f in range(1, self.number_of_fields + 1) if f not in used]

    def teams_at(self, slot: int) -> set[str]:
        return self._teams.get(slot, set())

    def is_free(self, slot: int, field_no: int) -> bool:
        return field_no in self.free_fields(slot)

    def occupy(self, slot: int, field_no: int, match_id: str,
               teams: Iterable[str], exclusive: bool = False) -> None:
        if field_no in self._cells[slot] or slot in self._exclusive:
            raise ValueError(f"Cell (field {field_no}, slot {slot}) is already taken")
        self._cells[slot][field_no] = match_id
        self._teams[slot].update(teams)
        if exclusive:
            self._exclusive.add(slot)
        while not self.free_fields(self._lowest_open):
            self._lowest_open += 1

    def first_open_slot(self, from_slot: int = 0) -> int:
        slot = max(from_slot, self._lowest_open)
        while not self.free_fields(slot):
            slot += 1
        return slot


def validate_params(params: ScheduleParams) -> None:
    """Raise ConfigurationError for unusable scheduling parameters."""
    problems = []
    if params.number_of_fields <= 0:
        problems.append(f"number_of_fields must be >= 1 (got {params.number_of_fields})")
    if params.match_minutes <= 0:
        problems.append(f"match_minutes must be >= 1 (got {params.match_minutes})")
    if params.break_minutes < 0:
        problems.append(f"break_minutes must be >= 0 (got {params.break_minutes})")
    if params.min_rest_slots < 0:
        problems.append(f"min_rest_slots must be >= 0 (got {params.min_rest_slots})")
    if params.fairness_window < 0:
        problems.append(f"fairness_window must be >= 0 (got {params.fairness_window})")
    if params.max_slots is not None and params.max_slots < 1:
        problems.append(f"max_slots must be >= 1 (got {params.max_slots})")
    if problems:
        raise ConfigurationError("Invalid scheduling parameters", problems)


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

def _can_play(team_id: str, slot: int, grid: SlotGrid,
              tracker: FairnessTracker, min_rest: int) -> bool:
    if team_id in grid.teams_at(slot):
        return False
    last = tracker.last_slot(team_id)
    if last is not None and slot - last < min_rest + 1:
        return False
    return True


def _earliest_rest_slot(teams: tuple[str, str], tracker: FairnessTracker,
                        min_rest: int) -> int:
    earliest = 0
    for t in teams:
        last = tracker.last_slot(t)
        if last is not None:
            earliest = max(earliest, last + min_rest + 1)
    return earliest


def _place_pairing(pairing: MatchPairing, grid: SlotGrid,
                   tracker: FairnessTracker, clock: SlotClock,
                   min_rest: int, earliest: int, horizon: int, window: int,
                   exclusive: bool = False) -> Optional[PlacedMatch]:
    """Place one pairing, or return None if no legal cell exists before horizon.

    Candidates are the first legal slot and the ``window`` slots after it.
    The winner minimizes projected rest spread, then slot, then field.
    """
    teams = (pairing.team_a, pairing.team_b)
    slot = grid.first_open_slot(max(earliest, _earliest_rest_slot(teams, tracker, min_rest)))

    first_legal = None
    best = None
    while slot < horizon:
        if first_legal is not None and slot > first_legal + window:
            break
        fields = grid.free_fields(slot, exclusive)
        if fields and all(_can_play(t, slot, grid, tracker, min_rest) for t in teams):
            if first_legal is None:
                first_legal = slot
            projected = {t: tracker.projected_avg_rest(t, slot) for t in teams}
            key = (tracker.projected_variance(projected), slot, fields[0])
            logger.debug("  %s: slot %d field %d spread %.3f",
                         pairing.id, slot, fields[0], key[0])
            if best is None or key < best:
                best = key
        slot += 1

    if best is None:
        return None

    _, slot, field_no = best
    grid.occupy(slot, field_no, pairing.id, teams, exclusive=exclusive)
    for t in teams:
        tracker.record_assignment(t, slot)
    return PlacedMatch.from_pairing(pairing, field_no, slot, clock)


def _ordered(matches: list[PlacedMatch]) -> list[PlacedMatch]:
    return sorted(matches, key=lambda m: (m.slot, m.field))


def balance_home_away(matches: list[PlacedMatch]) -> list[PlacedMatch]:
    """Swap home/away inside matches where that lowers the two teams' imbalance.

    Returns a new list; slot, field and times are unchanged.
    """
    home = defaultdict(int)
    away = defaultdict(int)
    for m in matches:
        home[m.team_a] += 1
        away[m.team_b] += 1

    result = []
    for m in matches:
        a, b = m.team_a, m.team_b
        before = abs(home[a] - away[a]) + abs(home[b] - away[b])
        after = (abs((home[a] - 1) - (away[a] + 1))
                 + abs((home[b] + 1) - (away[b] - 1)))
        if after < before:
            home[a] -= 1
            away[a] += 1
            home[b] += 1
            away[b] -= 1
            m = replace(m, team_a=b, team_b=a)
        result.append(m)
    return result


# ---------------------------------------------------------------------------
# Group phase
# ---------------------------------------------------------------------------

def schedule_group_phase(groups: dict[str, list[Team]],
                         params: ScheduleParams) -> list[PlacedMatch]:
    """Generate and place every round-robin pairing of every group.

    Returns matches ordered by (slot, field). Raises ConfigurationError for
    bad parameters and InfeasibleScheduleError if the horizon
    (params.max_slots, default 2 x number of pairings) is reached.
    """
    validate_params(params)

    seen: set[str] = set()
    duplicates = []
    for teams in groups.values():
        for t in teams:
            if t.id in seen:
                duplicates.append(f"Team id {t.id} appears more than once")
            seen.add(t.id)
    if duplicates:
        raise ConfigurationError("Invalid groups", duplicates)

    team_ids = {label: [t.id for t in teams] for label, teams in groups.items()}
    pairings = generate_group_pairings(team_ids, params.pattern_code)
    if not pairings:
        return []

    horizon = params.max_slots if params.max_slots is not None else 2 * len(pairings)

    tracker = FairnessTracker()
    tracker.bind({t: [] for ids in team_ids.values() for t in ids})
    grid = SlotGrid(params.number_of_fields)
    clock = params.clock()

    placed: list[PlacedMatch] = []
    for i, pairing in enumerate(pairings):
        match = _place_pairing(
            pairing, grid, tracker, clock, params.min_rest_slots,
            earliest=0, horizon=horizon, window=params.fairness_window,
        )
        if match is None:
            left = len(pairings) - i
            logger.warning("Could not place %d of %d matches before slot %d",
                           left, len(pairings), horizon)
            raise InfeasibleScheduleError(
                f"Could not place all matches: {left} of {len(pairings)} have "
                f"no legal slot before slot {horizon} with min rest "
                f"{params.min_rest_slots}",
                placed=_ordered(placed),
                unplaced=pairings[i:],
            )
        placed.append(match)

    placed = _ordered(balance_home_away(placed))
    logger.info("Group phase: %d matches in %d slots on %d fields (rest spread %.2f)",
                len(placed), placed[-1].slot + 1, params.number_of_fields,
                tracker.global_variance())
    return placed


# ---------------------------------------------------------------------------
# Bracket phase
# ---------------------------------------------------------------------------

def playoff_start_slot(group_matches: list[PlacedMatch], slot_minutes: int,
                       break_between_phases: int = 0) -> int:
    """First bracket slot: after the last group slot plus the phase break.

    The break is rounded up to whole slots; without a configured break one
    empty slot is left.
    """
    if not group_matches:
        return 0
    last = max(m.slot for m in group_matches)
    if break_between_phases:
        break_slots = math.ceil(break_between_phases / slot_minutes)
    else:
        break_slots = 1
    return last + 1 + break_slots


def order_bracket(bracket: list[BracketMatch]) -> list[BracketMatch]:
    """Order bracket matches so every match follows its dependencies."""
    by_id = {bm.id: bm for bm in bracket}
    problems = []
    for bm in bracket:
        for dep in bm.depends_on:
            if dep not in by_id:
                problems.append(f"{bm.id} depends on unknown match {dep}")
    if len(by_id) != len(bracket):
        problems.append("Bracket match ids are not unique")
    if problems:
        raise ConfigurationError("Invalid bracket", problems)

    ordered: list[BracketMatch] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(bm: BracketMatch):
        if bm.id in visiting:
            raise ConfigurationError(f"Circular dependency at bracket match {bm.id}")
        if bm.id in visited:
            return
        visiting.add(bm.id)
        for dep in bm.depends_on:
            visit(by_id[dep])
        visiting.discard(bm.id)
        visited.add(bm.id)
        ordered.append(bm)

    for bm in bracket:
        visit(bm)
    return ordered


def schedule_playoffs(bracket: list[BracketMatch], params: ScheduleParams,
                      start_slot: int,
                      prior_matches: Iterable[PlacedMatch] = (),
                      playoff: Optional[PlayoffParams] = None) -> list[PlacedMatch]:
    """Place pre-computed bracket matches from ``start_slot`` on.

    Same legality and fairness rules as the group phase. A match is never
    placed in or before the slot of a match it depends on; sequential
    matches (e.g. the final) get a slot to themselves. Rest is measured
    against ``prior_matches`` too, so real team ids carry their group-phase
    slots into the bracket.
    """
    validate_params(params)
    if not bracket:
        return []
    playoff = playoff or PlayoffParams()
    ordered = order_bracket(bracket)

    match_minutes = playoff.match_minutes or params.match_minutes
    break_minutes = (playoff.break_minutes if playoff.break_minutes is not None
                     else params.break_minutes)
    clock = SlotClock(params.clock().start_of(start_slot), match_minutes,
                      break_minutes, first_slot=start_slot)

    prior = list(prior_matches)
    team_slots: dict[str, list[int]] = defaultdict(list)
    grid = SlotGrid(params.number_of_fields)
    for m in prior:
        team_slots[m.team_a].append(m.slot)
        team_slots[m.team_b].append(m.slot)
        grid.occupy(m.slot, m.field, m.id, m.teams)
    tracker = FairnessTracker()
    tracker.bind(team_slots)

    if params.max_slots is not None:
        horizon = params.max_slots
    else:
        per_match = params.min_rest_slots + 1 + params.fairness_window
        horizon = start_slot + len(ordered) * per_match + 1

    placed: list[PlacedMatch] = []
    slot_of: dict[str, int] = {}
    for i, bm in enumerate(ordered):
        earliest = max([start_slot] + [slot_of[d] + 1 for d in bm.depends_on])
        match = _place_pairing(
            bm.to_pairing(), grid, tracker, clock, params.min_rest_slots,
            earliest=earliest, horizon=horizon, window=params.fairness_window,
            exclusive=bm.sequential,
        )
        if match is None:
            logger.warning("Could not place bracket match %s before slot %d",
                           bm.id, horizon)
            raise InfeasibleScheduleError(
                f"Could not place all bracket matches: {len(ordered) - i} "
                f"left without a legal slot before slot {horizon}",
                placed=_ordered(placed),
                unplaced=[b.to_pairing() for b in ordered[i:]],
            )
        slot_of[bm.id] = match.slot
        placed.append(match)

    logger.info("Bracket phase: %d matches from slot %d", len(placed), start_slot)
    return _ordered(placed)


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------

def schedule(config: dict) -> TournamentSchedule:
    """Run group phase, bracket phase and referee assignment.

    ``config`` is the dict returned by config.load_config.
    """
    params: ScheduleParams = config["params"]
    group_matches = schedule_group_phase(config["groups"], params)

    playoff_matches: list[PlacedMatch] = []
    if config.get("playoffs"):
        pp = config.get("playoff_params") or PlayoffParams()
        start = playoff_start_slot(group_matches, params.clock().slot_minutes,
                                   pp.break_between_phases)
        playoff_matches = schedule_playoffs(
            config["playoffs"], params, start,
            prior_matches=group_matches, playoff=pp,
        )

    all_matches = group_matches + playoff_matches
    referee_config = config.get("referees")
    if referee_config is not None and referee_config.mode != RefereeMode.NONE:
        all_matches = assign_referees(all_matches, config["teams"], referee_config)

    total_slots = max((m.slot for m in all_matches), default=-1) + 1
    timed = [m for m in all_matches if m.start_time is not None]
    if timed and len(timed) == len(all_matches):
        span = max(m.end_time for m in timed) - min(m.start_time for m in timed)
        duration = int(span.total_seconds() // 60)
    else:
        duration = total_slots * params.clock().slot_minutes

    return TournamentSchedule(
        group_matches=[m for m in all_matches if not m.is_playoff],
        playoff_matches=[m for m in all_matches if m.is_playoff],
        all_matches=all_matches,
        total_slots=total_slots,
        duration_minutes=duration,
    )
