"""
Schedule slot document model.

A slot is the atomic unit of the schedule plan: one pool/crossover/playoff
match (or the lunch break) identified by a stable id derived from its stage
and position, never from a generated match id. Participants are tagged
references:

  RankRef     placeholder "team ranked N in X" (X = pool name or "overall")
  TeamRef     resolved team, keeping the rank/outcome it was resolved from
  OutcomeRef  winner/loser of an earlier playoff slot

The plan is stored as a whole-document JSON snapshot; canonical_plan()
gives an order-independent serialization used to detect real changes.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

OVERALL_SOURCE = "overall"

KIND_MATCH = "match"
KIND_LUNCH = "lunch"

LUNCH_SLOT_ID = "lunch:main"
LUNCH_STAGE_KEY = "lunch"


@dataclass(frozen=True)
class RankRef:
    source: str
    rank: int

    def to_json(self) -> Dict[str, Any]:
        return {"type": "rank", "source": self.source, "rank": self.rank}


@dataclass(frozen=True)
class OutcomeRef:
    source_slot_id: str
    role: str  # "WINNER" | "LOSER"

    def to_json(self) -> Dict[str, Any]:
        return {"type": "outcome", "slot_id": self.source_slot_id, "role": self.role}


@dataclass(frozen=True)
class TeamRef:
    team_id: int
    origin: Optional[Union[RankRef, OutcomeRef]] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": "team",
            "team_id": self.team_id,
            "origin": self.origin.to_json() if self.origin is not None else None,
        }


Participant = Union[RankRef, TeamRef, OutcomeRef]


def participant_from_json(data: Optional[Mapping[str, Any]]) -> Optional[Participant]:
    if not data:
        return None
    kind = data.get("type")
    if kind == "rank":
        return RankRef(source=str(data["source"]), rank=int(data["rank"]))
    if kind == "outcome":
        return OutcomeRef(source_slot_id=str(data["slot_id"]), role=str(data["role"]))
    if kind == "team":
        origin = participant_from_json(data.get("origin"))
        if isinstance(origin, TeamRef):
            origin = None
        return TeamRef(team_id=int(data["team_id"]), origin=origin)
    raise ValueError(f"Unknown participant reference type: {kind!r}")


def team_id_of(ref: Optional[Participant]) -> Optional[int]:
    return ref.team_id if isinstance(ref, TeamRef) else None


@dataclass
class Slot:
    slot_id: str
    stage_key: str
    kind: str = KIND_MATCH
    group: Optional[str] = None  # pool name, "C-D" crossover, or bracket key
    round_block: Optional[int] = None
    time_index: Optional[int] = None  # minutes after midnight
    court: Optional[str] = None
    participants: List[Participant] = field(default_factory=list)
    ref: Optional[Participant] = None
    byes: List[Participant] = field(default_factory=list)
    match_id: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return (
            self.kind == KIND_MATCH
            and len(self.participants) == 2
            and all(isinstance(p, TeamRef) for p in self.participants)
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "stage_key": self.stage_key,
            "kind": self.kind,
            "group": self.group,
            "round_block": self.round_block,
            "time_index": self.time_index,
            "court": self.court,
            "participants": [p.to_json() for p in self.participants],
            "ref": self.ref.to_json() if self.ref is not None else None,
            "byes": [b.to_json() for b in self.byes],
            "match_id": self.match_id,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Slot":
        return cls(
            slot_id=str(data["slot_id"]),
            stage_key=str(data["stage_key"]),
            kind=data.get("kind") or KIND_MATCH,
            group=data.get("group"),
            round_block=data.get("round_block"),
            time_index=data.get("time_index"),
            court=data.get("court"),
            participants=[p for p in (participant_from_json(x) for x in data.get("participants") or []) if p],
            ref=participant_from_json(data.get("ref")),
            byes=[b for b in (participant_from_json(x) for x in data.get("byes") or []) if b],
            match_id=data.get("match_id"),
        )


# ----------------------------------------------------------------------------
# Stable slot ids
# ----------------------------------------------------------------------------


def pool_slot_id(stage_key: str, pool_name: str, match_no: int) -> str:
    return f"{stage_key}:{pool_name}:{match_no}"


def crossover_slot_id(left_pool: str, right_pool: str, match_no: int) -> str:
    return f"crossover:{left_pool}:{right_pool}:{match_no}"


def playoff_slot_id(stage_key: str, match_key: str) -> str:
    return f"{stage_key}:{match_key}"


# ----------------------------------------------------------------------------
# Canonical form
# ----------------------------------------------------------------------------


def canonical_plan(slots: Iterable[Slot]) -> str:
    """Order-independent serialization: sorted by slot id, sorted keys."""
    ordered = sorted((s.to_json() for s in slots), key=lambda s: s["slot_id"])
    return json.dumps(ordered, sort_keys=True, separators=(",", ":"))


def plan_document(slots: Iterable[Slot]) -> Dict[str, Any]:
    ordered = sorted(slots, key=lambda s: ((s.round_block or 0), s.court or "", s.slot_id))
    return {"slots": [s.to_json() for s in ordered]}


def slots_from_document(document: Optional[Mapping[str, Any]]) -> List[Slot]:
    if not document:
        return []
    return [Slot.from_json(raw) for raw in document.get("slots") or []]


# ----------------------------------------------------------------------------
# Display
# ----------------------------------------------------------------------------


def format_ref_label(ref: Optional[Participant], team_names: Optional[Mapping[int, str]] = None) -> str:
    """Human label for a participant: "A (#2)", "Winner gold:R1:M1", or the team name."""
    if ref is None:
        return "TBD"
    if isinstance(ref, RankRef):
        source = "Overall" if ref.source == OVERALL_SOURCE else ref.source
        return f"{source} (#{ref.rank})"
    if isinstance(ref, OutcomeRef):
        role = "Winner" if ref.role == "WINNER" else "Loser"
        return f"{role} {ref.source_slot_id.split(':', 1)[-1]}"
    if team_names and ref.team_id in team_names:
        return team_names[ref.team_id]
    if ref.origin is not None:
        return format_ref_label(ref.origin)
    return f"Team {ref.team_id}"


# ----------------------------------------------------------------------------
# Clock
# ----------------------------------------------------------------------------

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_clock_time_to_minutes(value: Optional[str]) -> Optional[int]:
    """'09:30' -> 570. Returns None for empty or malformed input."""
    if not value or not value.strip():
        return None
    match = _CLOCK_RE.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def resolve_round_block_start_minutes(
    round_block: Optional[int],
    day_start_time: Optional[str] = "09:00",
    match_duration_minutes: int = 60,
    lunch_start_time: Optional[str] = None,
    lunch_duration_minutes: int = 45,
) -> Optional[int]:
    """Start time of a round block; a block that would overlap lunch is pushed past it."""
    if round_block is None or round_block <= 0:
        return None
    day_start = parse_clock_time_to_minutes(day_start_time)
    if day_start is None:
        day_start = 9 * 60
    duration = match_duration_minutes if match_duration_minutes and match_duration_minutes > 0 else 60
    lunch_start = parse_clock_time_to_minutes(lunch_start_time)
    lunch_duration = lunch_duration_minutes if lunch_duration_minutes and lunch_duration_minutes > 0 else 0

    cursor = day_start
    lunch_applied = False

    for _ in range(round_block - 1):
        end = cursor + duration
        if not lunch_applied and lunch_start is not None and (cursor >= lunch_start or end > lunch_start):
            cursor = lunch_start + lunch_duration
            lunch_applied = True
        cursor += duration

    if not lunch_applied and lunch_start is not None:
        end = cursor + duration
        if cursor >= lunch_start or end > lunch_start:
            return lunch_start + lunch_duration

    return cursor
