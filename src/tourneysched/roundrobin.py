"""Round-robin pairing generation for the group phase."""

import re
from collections import Counter
from itertools import combinations

from tourneysched.errors import ConfigurationError
from tourneysched.models import MatchPairing, Round

BYE = "__BYE__"

# Fixed fixture orders over 1-based team positions, keyed by pattern code
# "<groups>T<teams>M". Each is a complete round robin.
PATTERNS: dict[str, list[tuple[int, int]]] = {
    "1T03M": [(1, 2), (3, 1), (2, 3)],
    "1T04M": [(1, 2), (3, 4), (4, 1), (2, 3), (1, 3), (2, 4)],
    "1T05M": [(1, 2), (3, 4), (5, 1), (2, 3), (4, 5),
              (1, 3), (2, 5), (4, 1), (3, 5), (2, 4)],
    "1T06M": [(1, 2), (3, 4), (5, 6), (1, 3), (2, 5), (4, 6), (1, 4), (3, 5),
              (2, 6), (1, 5), (4, 2), (6, 3), (1, 6), (5, 4), (2, 3)],
}

_PATTERN_RE = re.compile(r"^(\d+)T(\d+)M$")


def pairing_id(group: str, n: int) -> str:
    return f"{group}-{n:03d}"


def generate_round_robin(teams: list[str], group: str = "") -> list[Round]:
    """Generate a full round robin using the circle method.

    For N teams: N-1 rounds if even, N rounds with one bye each if odd.
    Output depends only on the team order, so identical input gives an
    identical fixture list.
    """
    n = len(teams)
    if n < 2:
        return []

    circle = list(teams)
    if n % 2 == 1:
        circle.append(BYE)
        n += 1

    rounds = []
    counter = 0
    for r in range(n - 1):
        pairings = []
        bye_teams = []
        for i in range(n // 2):
            t1 = circle[i]
            t2 = circle[n - 1 - i]
            if t1 == BYE:
                bye_teams.append(t2)
            elif t2 == BYE:
                bye_teams.append(t1)
            else:
                counter += 1
                pairings.append(MatchPairing(
                    id=pairing_id(group, counter), team_a=t1, team_b=t2,
                    group=group or None,
                ))
        rounds.append(Round(number=r + 1, pairings=pairings, bye_teams=bye_teams))

        # Keep position 0 fixed, rotate the rest
        circle = [circle[0]] + [circle[-1]] + circle[1:-1]

    return rounds


def pattern_team_count(pattern_code: str) -> int:
    m = _PATTERN_RE.match(pattern_code.strip().upper())
    if not m or pattern_code.strip().upper() not in PATTERNS:
        raise ConfigurationError(f"Unknown fixture pattern {pattern_code!r}")
    return int(m.group(2))


def pattern_pairings(teams: list[str], pattern_code: str,
                     group: str = "") -> list[MatchPairing]:
    """Pairings in the fixed order of ``pattern_code``.

    The group must have exactly as many teams as the pattern.
    """
    code = pattern_code.strip().upper()
    expected = pattern_team_count(code)
    if len(teams) != expected:
        raise ConfigurationError(
            f"Pattern {code} needs {expected} teams, group "
            f"{group or '?'} has {len(teams)}"
        )
    pairings = []
    for n, (a, b) in enumerate(PATTERNS[code], start=1):
        pairings.append(MatchPairing(
            id=pairing_id(group, n), team_a=teams[a - 1], team_b=teams[b - 1],
            group=group or None,
        ))
    return pairings


def generate_group_pairings(groups: dict[str, list[str]],
                            pattern_code: str | None = None) -> list[MatchPairing]:
    """All real pairings of all groups, in generation order (group by group)."""
    pairings = []
    for group, teams in groups.items():
        if pattern_code:
            pairings.extend(pattern_pairings(teams, pattern_code, group))
        else:
            for rnd in generate_round_robin(teams, group):
                pairings.extend(rnd.pairings)
    return pairings


def verify_pairings(pairings: list[MatchPairing], teams: list[str]) -> dict:
    """Check that every pair of ``teams`` meets exactly once.

    Returns {"valid": bool, "errors": [str], "games_per_team": {team: n}}.
    """
    errors = []
    meetings = Counter()
    games_per_team = Counter({t: 0 for t in teams})

    for p in pairings:
        if p.team_a == p.team_b:
            errors.append(f"{p.id}: {p.team_a} plays itself")
        meetings[frozenset((p.team_a, p.team_b))] += 1
        games_per_team.update((p.team_a, p.team_b))

    for t1, t2 in combinations(teams, 2):
        n = meetings[frozenset((t1, t2))]
        if n != 1:
            errors.append(f"{t1} - {t2} played {n} times, expected once")

    return {
        "valid": not errors,
        "errors": errors,
        "games_per_team": dict(games_per_team),
    }
