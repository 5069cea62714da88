"""Referee assignment for a placed schedule.

Two modes:
- organizer: a pool of referees 1..N is spread over the matches by workload,
  keeping each referee's slot gap at or above max_consecutive_matches where
  possible (the cap is relaxed rather than leaving a match uncovered)
- teams: the home team of the previous match on the same field referees the
  next one; the first match on each field has no referee

Referees are numbers. In teams mode a number is the 1-based position of the
team in the team list.
"""

import logging
from collections import defaultdict
from dataclasses import replace
from typing import Optional

from tourneysched.errors import ConfigurationError
from tourneysched.models import PlacedMatch, RefereeConfig, RefereeMode, Team

logger = logging.getLogger(__name__)

NEVER_WORKED = -100


def referee_pool(config: RefereeConfig, teams: list[Team]) -> list[int]:
    if config.mode == RefereeMode.ORGANIZER:
        return list(range(1, config.number_of_referees + 1))
    if config.mode == RefereeMode.TEAMS:
        return list(range(1, len(teams) + 1))
    return []


def validate_referee_config(config: RefereeConfig, teams: list[Team]) -> None:
    problems = []
    if config.max_consecutive_matches < 0:
        problems.append(
            f"max_consecutive_matches must be >= 0 (got {config.max_consecutive_matches})"
        )
    if config.mode == RefereeMode.ORGANIZER and config.number_of_referees < 1:
        problems.append("organizer mode needs at least one referee")
    if config.mode == RefereeMode.TEAMS:
        if not teams:
            problems.append("teams mode needs the team list")
        elif config.number_of_referees and config.number_of_referees != len(teams):
            problems.append(
                f"teams mode uses every team as referee: pool size "
                f"{config.number_of_referees} != {len(teams)} teams"
            )
    pool = set(referee_pool(config, teams))
    for match_id, ref in sorted(config.manual_assignments.items()):
        if config.mode != RefereeMode.NONE and ref not in pool:
            problems.append(f"manual referee {ref} for {match_id} is not in the pool")
    if problems:
        raise ConfigurationError("Invalid referee configuration", problems)


def assign_referees(matches: list[PlacedMatch], teams: list[Team],
                    config: RefereeConfig) -> list[PlacedMatch]:
    """Return a new match list with referees filled in.

    Manual assignments from the config are applied first and locked, as is
    any referee a match already carries; neither is ever changed.
    """
    if config.mode == RefereeMode.NONE:
        return list(matches)
    validate_referee_config(config, teams)

    result = []
    for m in matches:
        manual = config.manual_assignments.get(m.id)
        if manual is not None:
            m = replace(m, referee=manual)
        result.append(m)

    if config.mode == RefereeMode.ORGANIZER:
        result = _assign_organizer(result, config)
    else:
        result = _assign_teams(result, teams)

    logger.info("Referees (%s): %d of %d matches covered", config.mode.value,
                sum(1 for m in result if m.referee is not None), len(result))
    return result


def _pick_strict(ranking: list[int], slot: int, last_slot: dict[int, int],
                 cap: int) -> Optional[int]:
    for ref in ranking:
        if slot - last_slot[ref] >= cap:
            return ref
    return None


def _pick_relaxed(ranking: list[int], last_slot: dict[int, int],
                  workload: dict[int, int]) -> int:
    """Longest rest wins once the cap cannot be met."""
    return min(ranking, key=lambda r: (last_slot[r], workload[r], r))


def _assign_organizer(matches: list[PlacedMatch],
                      config: RefereeConfig) -> list[PlacedMatch]:
    refs = list(range(1, config.number_of_referees + 1))
    cap = config.max_consecutive_matches
    workload = {r: 0 for r in refs}
    last_slot = {r: NEVER_WORKED for r in refs}

    result = list(matches)
    order = sorted(range(len(result)), key=lambda i: (result[i].slot, result[i].field))
    relaxed = 0
    for i in order:
        m = result[i]
        if m.referee is not None:
            if m.referee in workload:
                workload[m.referee] += 1
                last_slot[m.referee] = max(last_slot[m.referee], m.slot)
            continue

        ranking = sorted(refs, key=lambda r: (workload[r], last_slot[r], r))
        ref = _pick_strict(ranking, m.slot, last_slot, cap)
        if ref is None:
            ref = _pick_relaxed(ranking, last_slot, workload)
            relaxed += 1
            logger.debug("Cap relaxed for %s at slot %d: referee %d", m.id, m.slot, ref)

        workload[ref] += 1
        last_slot[ref] = m.slot
        result[i] = replace(m, referee=ref)

    if relaxed:
        logger.warning("Consecutive-match cap %d relaxed for %d matches", cap, relaxed)
    return result


def _assign_teams(matches: list[PlacedMatch], teams: list[Team]) -> list[PlacedMatch]:
    number = {t.id: n for n, t in enumerate(teams, start=1)}
    by_field: dict[int, list[int]] = defaultdict(list)
    for i, m in enumerate(matches):
        by_field[m.field].append(i)

    result = list(matches)
    for indices in by_field.values():
        indices.sort(key=lambda i: (matches[i].slot, i))
        for pos, i in enumerate(indices):
            if pos == 0 or result[i].referee is not None:
                continue
            previous = matches[indices[pos - 1]]
            ref = number.get(previous.team_a)
            if ref is not None:
                result[i] = replace(result[i], referee=ref)
    return result


def referee_display_name(referee: Optional[int], config: Optional[RefereeConfig],
                         teams: Optional[list[Team]] = None) -> str:
    """Configured name, else the team's name in teams mode, else the number."""
    if referee is None:
        return "-"
    if config is not None and referee in config.names:
        return config.names[referee]
    if config is not None and config.mode == RefereeMode.TEAMS and teams:
        if 1 <= referee <= len(teams):
            return teams[referee - 1].name
    return str(referee)
