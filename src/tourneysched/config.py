"""Config loading and validation for the tournament scheduler."""

import re
from datetime import date, datetime, time
from pathlib import Path

import yaml

from tourneysched.errors import ConfigurationError
from tourneysched.models import (
    BracketMatch, ConflictDetectionConfig, PlayoffParams, RefereeConfig,
    RefereeMode, ScheduleParams, Team,
)
from tourneysched.referees import validate_referee_config
from tourneysched.roundrobin import PATTERNS, pattern_team_count
from tourneysched.scheduler import order_bracket


_TIME_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*([ap]m)?")


def parse_time(s: str) -> time:
    """Parse '5:30pm', '10am' or 24-hour '17:00'."""
    match = _TIME_RE.fullmatch(s.strip().lower())
    if match is None:
        raise ValueError(f"Unrecognized time {s!r}")
    hour, minute, suffix = int(match[1]), int(match[2] or 0), match[3]
    if suffix == "pm" and hour < 12:
        hour += 12
    elif suffix == "am" and hour == 12:
        hour = 0
    return time(hour, minute)


def parse_date(s: str) -> date:
    """YYYY-MM-DD."""
    return date.fromisoformat(s.strip())


def _parse_groups(raw_groups: dict, problems: list[str]) -> dict[str, list[Team]]:
    """Groups are lists of {id, name} mappings or plain names (ids generated)."""
    groups: dict[str, list[Team]] = {}
    seen: set[str] = set()
    for label, entries in raw_groups.items():
        label = str(label)
        teams = []
        for i, entry in enumerate(entries or [], start=1):
            if isinstance(entry, dict):
                name = str(entry.get("name", entry.get("id", "")))
                team_id = str(entry.get("id", f"{label.lower()}{i}"))
            else:
                name = str(entry)
                team_id = f"{label.lower()}{i}"
            if team_id in seen:
                problems.append(f"Duplicate team id {team_id} (group {label})")
            seen.add(team_id)
            teams.append(Team(id=team_id, name=name, group=label))
        if len(teams) < 2:
            problems.append(f"Group {label} needs at least 2 teams (has {len(teams)})")
        groups[label] = teams
    return groups


def _parse_params(t: dict, problems: list[str]) -> ScheduleParams:
    start = None
    if t.get("start_time") is not None:
        try:
            day = parse_date(str(t["date"])) if t.get("date") else date.today()
            start = datetime.combine(day, parse_time(str(t["start_time"])))
        except ValueError as e:
            problems.append(f"Bad start time/date: {e}")

    params = ScheduleParams(
        number_of_fields=int(t.get("number_of_fields", 1)),
        match_minutes=int(t.get("match_minutes", 10)),
        break_minutes=int(t.get("break_minutes", 0)),
        min_rest_slots=int(t.get("min_rest_slots", 1)),
        start_time=start,
        pattern_code=t.get("pattern_code"),
        max_slots=t.get("max_slots"),
        fairness_window=int(t.get("fairness_window", 1)),
    )
    if params.number_of_fields < 1:
        problems.append(f"number_of_fields must be >= 1 (got {params.number_of_fields})")
    if params.match_minutes < 1:
        problems.append(f"match_minutes must be >= 1 (got {params.match_minutes})")
    if params.break_minutes < 0:
        problems.append(f"break_minutes must be >= 0 (got {params.break_minutes})")
    if params.min_rest_slots < 0:
        problems.append(f"min_rest_slots must be >= 0 (got {params.min_rest_slots})")
    if params.pattern_code:
        try:
            pattern_team_count(params.pattern_code)
        except ConfigurationError as e:
            problems.append(str(e))
    return params


def _parse_referees(r: dict, problems: list[str]) -> RefereeConfig:
    try:
        mode = RefereeMode.from_str(str(r.get("mode", "none")))
    except ValueError:
        problems.append(f"Unknown referee mode {r.get('mode')!r}")
        mode = RefereeMode.NONE
    return RefereeConfig(
        mode=mode,
        number_of_referees=int(r.get("number_of_referees", 0)),
        max_consecutive_matches=int(r.get("max_consecutive_matches", 1)),
        names={int(k): str(v) for k, v in (r.get("names") or {}).items()},
        manual_assignments={str(k): int(v)
                            for k, v in (r.get("manual_assignments") or {}).items()},
    )


def _parse_playoffs(entries: list, problems: list[str]) -> list[BracketMatch]:
    bracket = []
    for i, p in enumerate(entries or [], start=1):
        if "team_a" not in p or "team_b" not in p:
            problems.append(f"Playoff entry {i} needs team_a and team_b")
            continue
        bracket.append(BracketMatch(
            id=str(p.get("id", f"PO-{i:03d}")),
            team_a=str(p["team_a"]),
            team_b=str(p["team_b"]),
            label=str(p.get("label", "")),
            stage=p.get("stage"),
            depends_on=[str(d) for d in p.get("depends_on", [])],
            sequential=bool(p.get("sequential", False)),
        ))
    return bracket


def load_config(path: str | Path) -> dict:
    """Load and validate config YAML, returning structured data.

    Returns dict with:
    - params: ScheduleParams
    - groups: dict[label -> list[Team]]
    - teams: flat list[Team] in group order
    - referees: RefereeConfig
    - detection: ConflictDetectionConfig
    - playoffs: list[BracketMatch]
    - playoff_params: PlayoffParams

    Raises ConfigurationError listing every problem found.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    problems: list[str] = []
    for key in ("tournament", "groups"):
        if key not in raw:
            problems.append(f"Missing section: {key}")
    if problems:
        raise ConfigurationError(f"Invalid config {path}", problems)

    t = raw["tournament"]
    params = _parse_params(t, problems)
    groups = _parse_groups(raw["groups"], problems)
    teams = [team for group in groups.values() for team in group]

    if params.pattern_code and params.pattern_code.strip().upper() in PATTERNS:
        expected = pattern_team_count(params.pattern_code)
        for label, group in groups.items():
            if len(group) != expected:
                problems.append(f"Pattern {params.pattern_code} needs {expected} "
                                f"teams, group {label} has {len(group)}")

    referees = _parse_referees(raw.get("referees") or {}, problems)
    try:
        validate_referee_config(referees, teams)
    except ConfigurationError as e:
        problems.extend(e.problems)

    po = t.get("playoffs") or {}
    playoff_params = PlayoffParams(
        match_minutes=po.get("match_minutes"),
        break_minutes=po.get("break_minutes"),
        break_between_phases=int(po.get("break_between_phases", 0)),
    )
    playoffs = _parse_playoffs(raw.get("playoffs"), problems)
    try:
        order_bracket(playoffs)
    except ConfigurationError as e:
        problems.extend(e.problems or [str(e)])

    c = raw.get("conflicts") or {}
    detection = ConflictDetectionConfig(
        match_minutes=params.match_minutes,
        min_break_minutes=int(c.get("min_break_minutes", 0)),
        check_referees=bool(c.get("check_referees", True)),
        check_fields=bool(c.get("check_fields", True)),
        consecutive_window_minutes=int(c.get("consecutive_window_minutes", 30)),
    )

    if problems:
        raise ConfigurationError(f"Invalid config {path}", problems)

    return {
        "params": params,
        "groups": groups,
        "teams": teams,
        "referees": referees,
        "detection": detection,
        "playoffs": playoffs,
        "playoff_params": playoff_params,
    }
