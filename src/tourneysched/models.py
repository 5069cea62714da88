"""Data models for the tournament scheduling core."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional


class MatchStatus(Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    FINISHED = "finished"
    SKIPPED = "skipped"

    @classmethod
    def from_str(cls, s: str) -> "MatchStatus":
        return cls(s.strip().lower())

    def is_active(self) -> bool:
        """Finished and skipped matches no longer take part in conflict checks."""
        return self in (MatchStatus.SCHEDULED, MatchStatus.RUNNING)


class RefereeMode(Enum):
    NONE = "none"
    ORGANIZER = "organizer"
    TEAMS = "teams"

    @classmethod
    def from_str(cls, s: str) -> "RefereeMode":
        return cls(s.strip().lower())


class ConflictKind(Enum):
    TEAM_DOUBLE_BOOKING = "team_double_booking"
    REFEREE_DOUBLE_BOOKING = "referee_double_booking"
    FIELD_OVERLAP = "field_overlap"
    BREAK_VIOLATION = "break_violation"


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Team:
    """A team taking part in the tournament."""
    id: str
    name: str
    group: Optional[str] = None


@dataclass
class MatchPairing:
    """Two teams that meet, before a field or slot is chosen."""
    id: str
    team_a: str  # home
    team_b: str  # away
    group: Optional[str] = None
    is_playoff: bool = False
    stage: Optional[str] = None
    label: str = ""

    def involves(self, team_id: str) -> bool:
        return team_id in (self.team_a, self.team_b)

    def opponent(self, team_id: str) -> str:
        if team_id == self.team_a:
            return self.team_b
        return self.team_a


@dataclass
class Round:
    """A set of pairings where each team plays at most once."""
    number: int
    pairings: list[MatchPairing]
    bye_teams: list[str] = field(default_factory=list)


@dataclass
class PlacedMatch:
    """A pairing with its field, slot and (optionally) referee.

    (field, slot) is unique across a schedule.
    """
    id: str
    team_a: str
    team_b: str
    field: int
    slot: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    group: Optional[str] = None
    is_playoff: bool = False
    stage: Optional[str] = None
    label: str = ""
    referee: Optional[int] = None
    score: Optional[tuple[int, int]] = None
    status: MatchStatus = MatchStatus.SCHEDULED

    @classmethod
    def from_pairing(cls, pairing: MatchPairing, field_no: int, slot: int,
                     clock: "SlotClock") -> "PlacedMatch":
        return cls(
            id=pairing.id,
            team_a=pairing.team_a,
            team_b=pairing.team_b,
            field=field_no,
            slot=slot,
            start_time=clock.start_of(slot),
            end_time=clock.end_of(slot),
            group=pairing.group,
            is_playoff=pairing.is_playoff,
            stage=pairing.stage,
            label=pairing.label,
        )

    @property
    def teams(self) -> tuple[str, str]:
        return (self.team_a, self.team_b)

    def is_active(self) -> bool:
        return self.status.is_active()


@dataclass
class TeamScheduleState:
    """Slots a team has been placed in, kept sorted. Derived data only."""
    team_id: str
    slots: list[int] = field(default_factory=list)

    @property
    def last_slot(self) -> Optional[int]:
        return self.slots[-1] if self.slots else None


@dataclass
class SlotClock:
    """Maps slot indices to wall-clock times.

    Slot ``first_slot`` starts at ``start_time``; each later slot starts one
    match plus one break further on.
    """
    start_time: Optional[datetime]
    match_minutes: int
    break_minutes: int = 0
    first_slot: int = 0

    @property
    def slot_minutes(self) -> int:
        return self.match_minutes + self.break_minutes

    def start_of(self, slot: int) -> Optional[datetime]:
        if self.start_time is None:
            return None
        offset = (slot - self.first_slot) * self.slot_minutes
        return self.start_time + timedelta(minutes=offset)

    def end_of(self, slot: int) -> Optional[datetime]:
        start = self.start_of(slot)
        if start is None:
            return None
        return start + timedelta(minutes=self.match_minutes)


@dataclass
class ScheduleParams:
    """Tournament-level parameters for the group phase."""
    number_of_fields: int
    match_minutes: int
    break_minutes: int = 0
    min_rest_slots: int = 1
    start_time: Optional[datetime] = None
    pattern_code: Optional[str] = None
    max_slots: Optional[int] = None
    fairness_window: int = 1

    def clock(self) -> SlotClock:
        return SlotClock(self.start_time, self.match_minutes, self.break_minutes)


@dataclass
class PlayoffParams:
    """Timing overrides for the bracket phase (None = same as group phase)."""
    match_minutes: Optional[int] = None
    break_minutes: Optional[int] = None
    break_between_phases: int = 0


@dataclass
class BracketMatch:
    """A pre-computed bracket match waiting for a slot.

    team_a/team_b may be placeholders such as "A-1st" or "sf1-winner".
    """
    id: str
    team_a: str
    team_b: str
    label: str = ""
    stage: Optional[str] = None
    depends_on: list[str] = field(default_factory=list)
    sequential: bool = False

    def to_pairing(self) -> MatchPairing:
        return MatchPairing(
            id=self.id, team_a=self.team_a, team_b=self.team_b,
            is_playoff=True, stage=self.stage, label=self.label,
        )


@dataclass
class RefereeConfig:
    mode: RefereeMode = RefereeMode.NONE
    number_of_referees: int = 0
    max_consecutive_matches: int = 1
    names: dict[int, str] = field(default_factory=dict)
    manual_assignments: dict[str, int] = field(default_factory=dict)  # match id -> referee


@dataclass
class ConflictDetectionConfig:
    match_minutes: int
    min_break_minutes: int = 0
    check_referees: bool = True
    check_fields: bool = True
    consecutive_window_minutes: int = 30


@dataclass
class ScheduleConflict:
    """A detected problem in a schedule. Conflicts are data, not errors."""
    id: str
    kind: ConflictKind
    severity: Severity
    match_ids: tuple[str, ...]
    message: str
    suggestion: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    def involves(self, match_id: str) -> bool:
        return match_id in self.match_ids


@dataclass
class MatchChange:
    """One proposed attribute change on one match (e.g. referee 2 -> 3)."""
    match_id: str
    attribute: str
    old_value: Any
    new_value: Any


@dataclass
class RemediationResult:
    success: bool
    changes: list[MatchChange]
    message: str
    unresolved_conflicts: list[ScheduleConflict] = field(default_factory=list)


@dataclass
class TournamentSchedule:
    """Output of a full scheduling run."""
    group_matches: list[PlacedMatch]
    playoff_matches: list[PlacedMatch]
    all_matches: list[PlacedMatch]
    total_slots: int
    duration_minutes: int
