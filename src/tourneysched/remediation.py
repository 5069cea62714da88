"""Referee and field remediation after edits, skips and rebalance requests.

None of these routines touch the schedule they are given. Each returns a
RemediationResult whose changes the caller applies (apply_changes does it
copy-on-write). "Nothing possible" is success=False, not an exception.
"""

import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Optional

from tourneysched.conflicts import (
    apply_changes, detect_referee_conflicts, matches_overlap,
)
from tourneysched.errors import ConfigurationError
from tourneysched.models import (
    ConflictDetectionConfig, MatchChange, PlacedMatch, RefereeConfig,
    RefereeMode, RemediationResult, Team,
)
from tourneysched.referees import referee_pool

logger = logging.getLogger(__name__)

__all__ = [
    "apply_changes", "auto_reassign_referees", "balance_workloads",
    "redistribute_after_skip", "redistribute_all", "redistribute_fields",
]


def _order_key(m: PlacedMatch):
    return (m.start_time or datetime.min, m.slot, m.field, m.id)


def _clash(a: PlacedMatch, b: PlacedMatch, config: ConflictDetectionConfig) -> bool:
    """True if the two matches cannot share a referee."""
    if a.start_time is not None and b.start_time is not None:
        return matches_overlap(a, b, config)
    return a.slot == b.slot


def _minutes_between(a: PlacedMatch, b: PlacedMatch,
                     config: ConflictDetectionConfig) -> float:
    """Start-to-start distance, from slots when a start time is missing."""
    if a.start_time is not None and b.start_time is not None:
        return abs((b.start_time - a.start_time).total_seconds()) / 60
    return abs(b.slot - a.slot) * config.match_minutes


def _referee_matches(working: list[PlacedMatch], referee: int,
                     exclude_id: str = "") -> list[PlacedMatch]:
    return [m for m in working
            if m.referee == referee and m.is_active() and m.id != exclude_id]


def _referee_teams(referee_config: Optional[RefereeConfig],
                   teams: Optional[list[Team]]) -> dict[int, str]:
    """Referee number -> team id in teams mode, empty otherwise."""
    if referee_config is None or referee_config.mode != RefereeMode.TEAMS:
        return {}
    return {i: t.id for i, t in enumerate(teams or [], start=1)}


def _is_free(referee: int, match: PlacedMatch, working: list[PlacedMatch],
             config: ConflictDetectionConfig,
             referee_teams: Optional[dict[int, str]] = None) -> bool:
    """No clashing refereed match, and a refereeing team is not playing then."""
    if any(_clash(match, other, config)
           for other in _referee_matches(working, referee, match.id)):
        return False
    team_id = (referee_teams or {}).get(referee)
    if team_id is None:
        return True
    if team_id in match.teams:
        return False
    return not any(team_id in m.teams and _clash(match, m, config)
                   for m in working if m.is_active() and m.id != match.id)


def consecutive_run(referee: int, match: PlacedMatch, working: list[PlacedMatch],
                    config: ConflictDetectionConfig) -> int:
    """How many of the referee's matches directly precede or follow ``match``.

    Matches chain when their starts are within consecutive_window_minutes.
    """
    others = sorted(_referee_matches(working, referee, match.id), key=_order_key)
    before = [m for m in others if _order_key(m) < _order_key(match)]
    after = [m for m in others if _order_key(m) > _order_key(match)]

    run = 0
    current = match
    for m in reversed(before):
        if _minutes_between(m, current, config) > config.consecutive_window_minutes:
            break
        run += 1
        current = m
    current = match
    for m in after:
        if _minutes_between(current, m, config) > config.consecutive_window_minutes:
            break
        run += 1
        current = m
    return run


def _workloads(working: list[PlacedMatch], pool: list[int]) -> dict[int, int]:
    loads = {r: 0 for r in pool}
    for m in working:
        if m.is_active() and m.referee in loads:
            loads[m.referee] += 1
    return loads


def _best_referee(match: PlacedMatch, working: list[PlacedMatch], pool: list[int],
                  cap: int, config: ConflictDetectionConfig, strict: bool,
                  referee_teams: Optional[dict[int, str]] = None) -> Optional[int]:
    loads = _workloads(working, pool)
    best = None
    for r in pool:
        if not _is_free(r, match, working, config, referee_teams):
            continue
        run = consecutive_run(r, match, working, config)
        if strict and cap >= 1 and run + 1 > cap:
            continue
        key = (loads[r] * 10 + run, r)
        if best is None or key < best:
            best = key
    return best[1] if best else None


def auto_reassign_referees(matches: list[PlacedMatch], referee_config: RefereeConfig,
                           detection: ConflictDetectionConfig,
                           teams: Optional[list[Team]] = None,
                           force: bool = False) -> RemediationResult:
    """Give every eligible match the referee with the lowest workload*10 + run.

    Eligible are active matches without a referee, or every active match
    when ``force`` is set. Manual assignments are never changed. The cap on
    consecutive matches is tried strictly first and relaxed only for matches
    no referee could take otherwise.
    """
    pool = referee_pool(referee_config, teams or [])
    if not pool:
        return RemediationResult(False, [], "No referees available")

    locked = set(referee_config.manual_assignments)
    eligible = [m for m in matches
                if m.is_active() and m.id not in locked
                and (force or m.referee is None)]
    eligible.sort(key=_order_key)
    eligible_ids = {m.id for m in eligible}

    working = [m if m.id not in eligible_ids else replace(m, referee=None)
               for m in matches]
    index = {m.id: i for i, m in enumerate(working)}
    cap = referee_config.max_consecutive_matches
    referee_teams = _referee_teams(referee_config, teams)

    changes = []
    uncovered = []
    relaxed = 0
    for original in eligible:
        match = working[index[original.id]]
        ref = _best_referee(match, working, pool, cap, detection, True, referee_teams)
        if ref is None:
            ref = _best_referee(match, working, pool, cap, detection, False, referee_teams)
            if ref is not None:
                relaxed += 1
        if ref is None:
            uncovered.append(original.id)
            logger.debug("No free referee for %s", original.id)
            continue
        working[index[original.id]] = replace(match, referee=ref)
        if ref != original.referee:
            changes.append(MatchChange(original.id, "referee", original.referee, ref))

    if relaxed:
        logger.warning("Consecutive-match cap %d relaxed for %d matches", cap, relaxed)
    unresolved = detect_referee_conflicts(apply_changes(matches, changes), detection)

    message = f"Reassigned {len(changes)} of {len(eligible)} matches"
    if uncovered:
        message += f"; no free referee for {', '.join(uncovered)}"
    if unresolved:
        message += f"; {len(unresolved)} referee conflicts remain"
    logger.info(message)
    return RemediationResult(
        success=not uncovered and not unresolved,
        changes=changes,
        message=message,
        unresolved_conflicts=unresolved,
    )


def redistribute_after_skip(matches: list[PlacedMatch], skipped_match_id: str,
                            detection: ConflictDetectionConfig,
                            referee_config: Optional[RefereeConfig] = None,
                            teams: Optional[list[Team]] = None) -> RemediationResult:
    """Hand the skipped match's referee to the first uncovered match they can take.

    In teams mode ``referee_config`` and ``teams`` are needed so the freed
    team is not given a match it plays in or one overlapping its own.
    """
    skipped = next((m for m in matches if m.id == skipped_match_id), None)
    if skipped is None:
        return RemediationResult(False, [], f"Unknown match {skipped_match_id}")
    if skipped.referee is None:
        return RemediationResult(False, [], f"{skipped_match_id} had no referee to free")

    referee = skipped.referee
    referee_teams = _referee_teams(referee_config, teams)
    working = [m for m in matches if m.id != skipped_match_id]
    for m in sorted(working, key=_order_key):
        if not m.is_active() or m.referee is not None:
            continue
        if _is_free(referee, m, working, detection, referee_teams):
            logger.info("Referee %d moves from skipped %s to %s",
                        referee, skipped_match_id, m.id)
            return RemediationResult(
                True, [MatchChange(m.id, "referee", None, referee)],
                f"Referee {referee} takes over {m.id}",
            )
    return RemediationResult(
        False, [], f"No uncovered match referee {referee} can take"
    )


def workload_targets(total: int, pool: list[int]) -> dict[int, int]:
    """Even split of ``total`` matches; the first total % n referees get one extra."""
    base, extra = divmod(total, len(pool))
    return {r: base + (1 if i < extra else 0) for i, r in enumerate(sorted(pool))}


def balance_workloads(matches: list[PlacedMatch], referee_config: RefereeConfig,
                      detection: ConflictDetectionConfig,
                      teams: Optional[list[Team]] = None) -> RemediationResult:
    """Move single matches from overloaded to underloaded referees.

    Targets split every active match evenly, refereed or not. A referee
    is overloaded above target + 1 and underloaded below target - 1.
    Moves that would double-book the receiver are skipped, as are manually
    locked matches.
    """
    pool = referee_pool(referee_config, teams or [])
    if not pool:
        return RemediationResult(False, [], "No referees available")

    working = list(matches)
    index = {m.id: i for i, m in enumerate(working)}
    active = [m for m in working if m.is_active()]
    targets = workload_targets(len(active), pool)
    referee_teams = _referee_teams(referee_config, teams)
    loads = _workloads(working, pool)
    locked = set(referee_config.manual_assignments)

    def over(r):
        return loads[r] > targets[r] + 1

    def under(r):
        return loads[r] < targets[r] - 1

    changes = []
    moved = True
    while moved:
        moved = False
        for giver in sorted((r for r in pool if over(r)), key=lambda r: (-loads[r], r)):
            for m in sorted(_referee_matches(working, giver), key=_order_key):
                if m.id in locked:
                    continue
                receivers = sorted((r for r in pool if under(r)), key=lambda r: (loads[r], r))
                taker = next((r for r in receivers
                              if _is_free(r, m, working, detection, referee_teams)), None)
                if taker is None:
                    continue
                working[index[m.id]] = replace(m, referee=taker)
                changes.append(MatchChange(m.id, "referee", giver, taker))
                loads[giver] -= 1
                loads[taker] += 1
                moved = True
                break
            if moved:
                break

    unbalanced = sorted(r for r in pool if over(r) or under(r))
    if unbalanced:
        message = (f"Moved {len(changes)} matches; referees "
                   f"{', '.join(str(r) for r in unbalanced)} still off target")
    elif changes:
        message = f"Moved {len(changes)} matches; workloads balanced"
    else:
        message = "Workloads already balanced"
    logger.info(message)
    return RemediationResult(bool(changes) or not unbalanced, changes, message)


def redistribute_fields(matches: list[PlacedMatch],
                        number_of_fields: int) -> RemediationResult:
    """Renumber fields 1..number_of_fields round-robin within each start time."""
    if number_of_fields < 1:
        raise ConfigurationError(f"number_of_fields must be >= 1 (got {number_of_fields})")
    if number_of_fields == 1:
        return RemediationResult(True, [], "Single field: nothing to redistribute")

    by_time: dict[object, list[PlacedMatch]] = defaultdict(list)
    for m in matches:
        if m.is_active():
            key = m.start_time if m.start_time is not None else ("slot", m.slot)
            by_time[key].append(m)

    changes = []
    for group in by_time.values():
        for i, m in enumerate(sorted(group, key=lambda m: m.field)):
            new_field = (i % number_of_fields) + 1
            if new_field != m.field:
                changes.append(MatchChange(m.id, "field", m.field, new_field))

    logger.info("Field redistribution: %d changes over %d start times",
                len(changes), len(by_time))
    return RemediationResult(
        True, changes,
        f"Redistributed {len(changes)} matches over {number_of_fields} fields",
    )


def redistribute_all(matches: list[PlacedMatch], referee_config: RefereeConfig,
                     detection: ConflictDetectionConfig, number_of_fields: int,
                     teams: Optional[list[Team]] = None) -> dict[str, RemediationResult]:
    """Forced referee reassignment and field redistribution, reported separately."""
    return {
        "referees": auto_reassign_referees(matches, referee_config, detection,
                                           teams, force=True),
        "fields": redistribute_fields(matches, number_of_fields),
    }
