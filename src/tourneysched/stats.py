"""Fairness and referee workload statistics for a schedule."""

from collections import defaultdict
from typing import Optional

from tourneysched.fairness import average_rest
from tourneysched.models import MatchStatus, PlacedMatch, RefereeConfig, Team
from tourneysched.referees import referee_display_name


def _variance(values: list[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def analyze_fairness(matches: list[PlacedMatch],
                     teams: Optional[list[Team]] = None) -> dict:
    """Compute rest and distribution statistics for a schedule.

    Skipped matches are ignored. Rest is measured in slots between a team's
    consecutive matches.

    Returns dict with:
    - teams: team id -> {slots, rests, min_rest, max_rest, avg_rest,
      rest_variance, fields, home, away}
    - min_rest / max_rest / avg_rest: over the teams' average rests
    - rest_spread: max - min of the average rests
    - rest_variance: variance of the average rests
    """
    played = [m for m in matches if m.status != MatchStatus.SKIPPED]

    slots = defaultdict(list)
    fields = defaultdict(lambda: defaultdict(int))
    home = defaultdict(int)
    away = defaultdict(int)
    for m in played:
        home[m.team_a] += 1
        away[m.team_b] += 1
        for t in m.teams:
            slots[t].append(m.slot)
            fields[t][m.field] += 1

    team_ids = [t.id for t in teams] if teams else sorted(slots)
    per_team = {}
    for t in team_ids:
        s = sorted(slots.get(t, []))
        rests = [b - a for a, b in zip(s, s[1:])]
        per_team[t] = {
            "slots": s,
            "rests": rests,
            "min_rest": min(rests, default=0),
            "max_rest": max(rests, default=0),
            "avg_rest": average_rest(s),
            "rest_variance": _variance(rests),
            "fields": dict(fields.get(t, {})),
            "home": home.get(t, 0),
            "away": away.get(t, 0),
        }

    averages = [v["avg_rest"] for v in per_team.values()]
    return {
        "teams": per_team,
        "min_rest": min(averages, default=0.0),
        "max_rest": max(averages, default=0.0),
        "avg_rest": sum(averages) / len(averages) if averages else 0.0,
        "rest_spread": (max(averages) - min(averages)) if averages else 0.0,
        "rest_variance": _variance(averages),
    }


def referee_stats(matches: list[PlacedMatch],
                  config: Optional[RefereeConfig] = None,
                  teams: Optional[list[Team]] = None) -> dict[int, dict]:
    """Per referee: display name, match count and share of active matches."""
    active = [m for m in matches if m.is_active()]
    counts = defaultdict(int)
    for m in active:
        if m.referee is not None:
            counts[m.referee] += 1

    result = {}
    for ref in sorted(counts):
        result[ref] = {
            "name": referee_display_name(ref, config, teams),
            "count": counts[ref],
            "percentage": round(100.0 * counts[ref] / len(active), 1),
        }
    return result


def format_fairness_report(fairness: dict, referees: Optional[dict] = None,
                           teams: Optional[list[Team]] = None) -> str:
    """Format fairness and referee statistics into a human-readable report."""
    names = {t.id: t.name for t in teams or []}
    lines = []
    lines.append("=" * 70)
    lines.append("FAIRNESS STATISTICS")
    lines.append("=" * 70)

    lines.append("\n--- REST PER TEAM (slots) ---")
    lines.append(f"{'Team':<16} {'Games':>5} {'Min':>5} {'Max':>5} {'Avg':>6} "
                 f"{'Home':>5} {'Away':>5}")
    lines.append("-" * 56)
    for t, s in fairness["teams"].items():
        diff = s["home"] - s["away"]
        flag = " ***" if abs(diff) > 1 else ""
        lines.append(f"{names.get(t, t):<16} {len(s['slots']):>5} {s['min_rest']:>5} "
                     f"{s['max_rest']:>5} {s['avg_rest']:>6.2f} "
                     f"{s['home']:>5} {s['away']:>5}{flag}")

    lines.append(f"\nAverage rest: min {fairness['min_rest']:.2f}, "
                 f"max {fairness['max_rest']:.2f}, avg {fairness['avg_rest']:.2f}, "
                 f"spread {fairness['rest_spread']:.2f}")

    if referees:
        lines.append("\n--- REFEREE WORKLOAD ---")
        lines.append(f"{'Referee':<16} {'Games':>5} {'Share':>7}")
        lines.append("-" * 30)
        for s in referees.values():
            lines.append(f"{s['name']:<16} {s['count']:>5} {s['percentage']:>6.1f}%")

    return "\n".join(lines)
