"""Incremental rest-fairness tracking for the placement loop.

A team's average rest is the mean gap between its consecutive slots. The
scheduler's soft objective is the spread (max - min) of those averages over
all teams, evaluated for every candidate cell of every pending match. The
tracker keeps the averages sorted and caches per-(team, slot) projections so
each evaluation is O(1) amortized instead of a rescan of every team.
"""

from bisect import insort
from typing import Iterable, Mapping

from tourneysched.models import TeamScheduleState


def average_rest(slots: list[int]) -> float:
    """Mean gap between consecutive sorted slots; 0 for fewer than two slots."""
    if len(slots) < 2:
        return 0.0
    # Consecutive deltas telescope to last - first.
    return (slots[-1] - slots[0]) / (len(slots) - 1)


class FairnessTracker:
    """Owns its own copy of every team's slot list.

    The scheduler only talks to it through bind / record_assignment /
    projected_avg_rest / global_variance / projected_variance.
    """

    def __init__(self):
        self._slots: dict[str, list[int]] = {}
        self._avg: dict[str, float] = {}
        self._sorted_avgs: list[float] = []
        self._projection_cache: dict[str, dict[int, float]] = {}

    def bind(self, team_states: Mapping[str, TeamScheduleState | Iterable[int]]) -> None:
        """(Re)initialize from a team -> state mapping. The input is copied."""
        self._slots = {}
        self._avg = {}
        self._projection_cache = {}
        for team_id, state in team_states.items():
            slots = state.slots if isinstance(state, TeamScheduleState) else state
            self._slots[team_id] = sorted(slots)
            self._avg[team_id] = average_rest(self._slots[team_id])
        self._sorted_avgs = sorted(self._avg.values())

    def last_slot(self, team_id: str) -> int | None:
        slots = self._slots.get(team_id)
        return slots[-1] if slots else None

    def record_assignment(self, team_id: str, slot: int) -> None:
        """Commit a real placement of ``team_id`` at ``slot``."""
        if team_id not in self._slots:
            self._slots[team_id] = []
            self._avg[team_id] = 0.0
            insort(self._sorted_avgs, 0.0)

        old = self._avg[team_id]
        insort(self._slots[team_id], slot)
        new = average_rest(self._slots[team_id])
        self._avg[team_id] = new

        self._sorted_avgs.remove(old)
        insort(self._sorted_avgs, new)
        self._projection_cache.pop(team_id, None)

    def projected_avg_rest(self, team_id: str, slot: int) -> float:
        """Average rest ``team_id`` would have if also placed at ``slot``.

        Does not change any state apart from the projection cache.
        """
        cache = self._projection_cache.setdefault(team_id, {})
        if slot in cache:
            return cache[slot]

        slots = self._slots.get(team_id, [])
        if not slots:
            value = 0.0
        else:
            first = min(slots[0], slot)
            last = max(slots[-1], slot)
            value = (last - first) / len(slots)
        cache[slot] = value
        return value

    def global_variance(self) -> float:
        """max(avg rest) - min(avg rest) over all teams."""
        if not self._sorted_avgs:
            return 0.0
        return self._sorted_avgs[-1] - self._sorted_avgs[0]

    def projected_variance(self, projected: Mapping[str, float]) -> float:
        """global_variance() if the given teams had the given averages.

        Only the len(projected) + 1 values at each end of the sorted averages
        can become the new extremes, so this stays O(1) in the team count.
        """
        k = len(projected) + 1
        low = self._sorted_avgs[:k]
        high = self._sorted_avgs[-k:]
        for team_id in projected:
            old = self._avg.get(team_id)
            if old is None:
                continue
            if old in low:
                low.remove(old)
            if old in high:
                high.remove(old)
        values = low + high + list(projected.values())
        if not values:
            return 0.0
        return max(values) - min(values)
