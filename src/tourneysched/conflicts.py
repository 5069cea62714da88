"""Conflict detection for a placed schedule.

Every detector is a pure function over a match list. Conflicts are data:
double bookings of a team, referee or field are errors, short breaks
between a team's matches are warnings.

Only active (scheduled or running) matches with a start time take part.
Two matches overlap when start1 < end2 and end1 > start2, where a match
runs for ``match_minutes`` from its start; back-to-back is not an overlap.

Conflict ids are the conflict kind followed by the sorted involved ids
(match ids, plus the team id for team and break conflicts), so detecting
the same situation twice gives the same id.
"""

from collections import defaultdict
from dataclasses import fields as dataclass_fields, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from tourneysched.models import (
    ConflictDetectionConfig, ConflictKind, MatchChange, PlacedMatch,
    ScheduleConflict, Severity, Team,
)

_LABELS = {
    ConflictKind.TEAM_DOUBLE_BOOKING: "Team double booking",
    ConflictKind.REFEREE_DOUBLE_BOOKING: "Referee double booking",
    ConflictKind.FIELD_OVERLAP: "Field overlap",
    ConflictKind.BREAK_VIOLATION: "Break too short",
}

_MATCH_ATTRIBUTES = {f.name for f in dataclass_fields(PlacedMatch)} - {"id"}


def conflict_id(kind: ConflictKind, ids: Iterable[str]) -> str:
    return kind.value + "-" + "-".join(sorted(ids))


def conflict_kind_label(kind: ConflictKind) -> str:
    return _LABELS[kind]


def _window(m: PlacedMatch, config: ConflictDetectionConfig) -> tuple[datetime, datetime]:
    return m.start_time, m.start_time + timedelta(minutes=config.match_minutes)


def matches_overlap(a: PlacedMatch, b: PlacedMatch, config: ConflictDetectionConfig) -> bool:
    start1, end1 = _window(a, config)
    start2, end2 = _window(b, config)
    return start1 < end2 and end1 > start2


def _checkable(matches: list[PlacedMatch]) -> list[PlacedMatch]:
    return [m for m in matches if m.start_time is not None and m.is_active()]


def _overlapping_pairs(matches: list[PlacedMatch], config: ConflictDetectionConfig):
    checkable = _checkable(matches)
    for i, a in enumerate(checkable):
        for b in checkable[i + 1:]:
            if matches_overlap(a, b, config):
                yield a, b


def _names(teams: Optional[list[Team]]) -> dict[str, str]:
    return {t.id: t.name for t in teams or []}


def _clock(m: PlacedMatch) -> str:
    return m.start_time.strftime("%H:%M")


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------

def detect_team_conflicts(matches: list[PlacedMatch],
                          config: ConflictDetectionConfig,
                          teams: Optional[list[Team]] = None) -> list[ScheduleConflict]:
    """One error per team shared by two overlapping matches."""
    names = _names(teams)
    conflicts = []
    for a, b in _overlapping_pairs(matches, config):
        for team_id in sorted(set(a.teams) & set(b.teams)):
            name = names.get(team_id, team_id)
            conflicts.append(ScheduleConflict(
                id=conflict_id(ConflictKind.TEAM_DOUBLE_BOOKING, [a.id, b.id, team_id]),
                kind=ConflictKind.TEAM_DOUBLE_BOOKING,
                severity=Severity.ERROR,
                match_ids=tuple(sorted([a.id, b.id])),
                message=f"{name} plays {a.id} ({_clock(a)}) and {b.id} ({_clock(b)}) at the same time",
                suggestion="Move one of the matches to a slot where the team is free",
                context={"team_id": team_id},
            ))
    return conflicts


def detect_referee_conflicts(matches: list[PlacedMatch],
                             config: ConflictDetectionConfig) -> list[ScheduleConflict]:
    """One error per referee assigned to two overlapping matches."""
    conflicts = []
    for a, b in _overlapping_pairs(matches, config):
        if a.referee is None or a.referee != b.referee:
            continue
        conflicts.append(ScheduleConflict(
            id=conflict_id(ConflictKind.REFEREE_DOUBLE_BOOKING, [a.id, b.id]),
            kind=ConflictKind.REFEREE_DOUBLE_BOOKING,
            severity=Severity.ERROR,
            match_ids=tuple(sorted([a.id, b.id])),
            message=f"Referee {a.referee} is assigned to {a.id} and {b.id} at the same time",
            suggestion="Assign another referee to one of the matches",
            context={"referee": a.referee},
        ))
    return conflicts


def detect_field_overlaps(matches: list[PlacedMatch],
                          config: ConflictDetectionConfig) -> list[ScheduleConflict]:
    """One error per pair of overlapping matches on the same field."""
    conflicts = []
    for a, b in _overlapping_pairs(matches, config):
        if a.field != b.field:
            continue
        conflicts.append(ScheduleConflict(
            id=conflict_id(ConflictKind.FIELD_OVERLAP, [a.id, b.id]),
            kind=ConflictKind.FIELD_OVERLAP,
            severity=Severity.ERROR,
            match_ids=tuple(sorted([a.id, b.id])),
            message=f"{a.id} and {b.id} overlap on field {a.field}",
            suggestion="Move one of the matches to another field or time",
            context={"field": a.field},
        ))
    return conflicts


def detect_break_violations(matches: list[PlacedMatch],
                            config: ConflictDetectionConfig,
                            teams: Optional[list[Team]] = None) -> list[ScheduleConflict]:
    """Warn when a team's break between two matches is positive but too short.

    Overlapping matches (no break at all) are team double bookings instead.
    """
    if config.min_break_minutes <= 0:
        return []
    names = _names(teams)
    by_team: dict[str, list[PlacedMatch]] = defaultdict(list)
    for m in _checkable(matches):
        for t in m.teams:
            by_team[t].append(m)

    conflicts = []
    for team_id in sorted(by_team):
        played = sorted(by_team[team_id], key=lambda m: (m.start_time, m.id))
        for a, b in zip(played, played[1:]):
            _, end_a = _window(a, config)
            gap = (b.start_time - end_a).total_seconds() / 60
            if not 0 < gap < config.min_break_minutes:
                continue
            name = names.get(team_id, team_id)
            conflicts.append(ScheduleConflict(
                id=conflict_id(ConflictKind.BREAK_VIOLATION, [a.id, b.id, team_id]),
                kind=ConflictKind.BREAK_VIOLATION,
                severity=Severity.WARNING,
                match_ids=tuple(sorted([a.id, b.id])),
                message=(f"{name} has only {gap:g} min between {a.id} and {b.id} "
                         f"(minimum {config.min_break_minutes} min)"),
                suggestion="Move the later match back or the earlier one forward",
                context={"team_id": team_id, "actual_minutes": gap,
                         "required_minutes": config.min_break_minutes},
            ))
    return conflicts


def detect_all(matches: list[PlacedMatch], config: ConflictDetectionConfig,
               teams: Optional[list[Team]] = None) -> list[ScheduleConflict]:
    """Team and break checks always run; referee and field checks per config."""
    conflicts = detect_team_conflicts(matches, config, teams)
    if config.check_referees:
        conflicts.extend(detect_referee_conflicts(matches, config))
    if config.check_fields:
        conflicts.extend(detect_field_overlaps(matches, config))
    conflicts.extend(detect_break_violations(matches, config, teams))
    return conflicts


# ---------------------------------------------------------------------------
# What-if validation
# ---------------------------------------------------------------------------

def apply_changes(matches: list[PlacedMatch],
                  changes: Iterable[MatchChange]) -> list[PlacedMatch]:
    """Return a new match list with ``changes`` applied; the input is not touched."""
    index = {m.id: i for i, m in enumerate(matches)}
    result = list(matches)
    for change in changes:
        if change.attribute not in _MATCH_ATTRIBUTES:
            raise ValueError(f"Matches have no attribute {change.attribute!r}")
        if change.match_id not in index:
            raise ValueError(f"Unknown match {change.match_id}")
        i = index[change.match_id]
        result[i] = replace(result[i], **{change.attribute: change.new_value})
    return result


def validate_change(matches: list[PlacedMatch], change: MatchChange,
                    config: ConflictDetectionConfig,
                    teams: Optional[list[Team]] = None) -> list[ScheduleConflict]:
    """Conflicts the changed match would be part of if ``change`` were applied."""
    candidate = apply_changes(matches, [change])
    return conflicts_for_match(detect_all(candidate, config, teams), change.match_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def conflicts_for_match(conflicts: list[ScheduleConflict],
                        match_id: str) -> list[ScheduleConflict]:
    return [c for c in conflicts if c.involves(match_id)]


def has_blocking_conflicts(conflicts: list[ScheduleConflict]) -> bool:
    return any(c.severity == Severity.ERROR for c in conflicts)


def group_conflicts_by_kind(conflicts: list[ScheduleConflict]) -> dict[ConflictKind, list[ScheduleConflict]]:
    grouped: dict[ConflictKind, list[ScheduleConflict]] = defaultdict(list)
    for c in conflicts:
        grouped[c.kind].append(c)
    return dict(grouped)


def format_conflict_report(conflicts: list[ScheduleConflict]) -> str:
    """Format detected conflicts as text."""
    lines = []
    lines.append("=" * 60)
    lines.append("SCHEDULE CONFLICT REPORT")
    lines.append("=" * 60)

    errors = [c for c in conflicts if c.severity == Severity.ERROR]
    warnings = [c for c in conflicts if c.severity == Severity.WARNING]
    if not conflicts:
        lines.append("\nRESULT: NO CONFLICTS")
    elif errors:
        lines.append(f"\nRESULT: BLOCKED ({len(errors)} errors, {len(warnings)} warnings)")
    else:
        lines.append(f"\nRESULT: OK WITH WARNINGS ({len(warnings)})")

    for kind, group in group_conflicts_by_kind(conflicts).items():
        lines.append(f"\n--- {conflict_kind_label(kind).upper()} ({len(group)}) ---")
        for c in group:
            tag = "ERROR" if c.severity == Severity.ERROR else "WARN"
            lines.append(f"  {tag}: {c.message}")
            if c.suggestion:
                lines.append(f"         -> {c.suggestion}")

    return "\n".join(lines)
