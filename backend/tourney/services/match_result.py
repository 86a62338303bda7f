"""
Best-of-3 match result from a scoreboard's set history.

Accepted set entries:
  [25, 19]                 → a=25, b=19
  {"a": 25, "b": 19}       → keyed variant
  {"scores": [25, 19]}     → nested list variant

A result is produced only for a complete, decisive best-of-3: two or three
sets, no tied set, and exactly one side with two set wins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from tourney.services.errors import PreconditionError, ScoreValidationError


@dataclass(frozen=True)
class SetScore:
    set_no: int
    a: int
    b: int


@dataclass
class MatchResult:
    winner_team_id: int
    loser_team_id: int
    sets_won_a: int
    sets_won_b: int
    sets_played: int
    points_for_a: int
    points_against_a: int
    points_for_b: int
    points_against_b: int
    set_scores: List[SetScore] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "winner_team_id": self.winner_team_id,
            "loser_team_id": self.loser_team_id,
            "sets_won_a": self.sets_won_a,
            "sets_won_b": self.sets_won_b,
            "sets_played": self.sets_played,
            "points_for_a": self.points_for_a,
            "points_against_a": self.points_against_a,
            "points_for_b": self.points_for_b,
            "points_against_b": self.points_against_b,
            "set_scores": [{"set_no": s.set_no, "a": s.a, "b": s.b} for s in self.set_scores],
        }

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> Optional["MatchResult"]:
        if not data or data.get("winner_team_id") is None:
            return None
        return cls(
            winner_team_id=int(data["winner_team_id"]),
            loser_team_id=int(data["loser_team_id"]),
            sets_won_a=int(data.get("sets_won_a", 0)),
            sets_won_b=int(data.get("sets_won_b", 0)),
            sets_played=int(data.get("sets_played", 0)),
            points_for_a=int(data.get("points_for_a", 0)),
            points_against_a=int(data.get("points_against_a", 0)),
            points_for_b=int(data.get("points_for_b", 0)),
            points_against_b=int(data.get("points_against_b", 0)),
            set_scores=[
                SetScore(set_no=int(s["set_no"]), a=int(s["a"]), b=int(s["b"])) for s in data.get("set_scores") or []
            ],
        )


def _to_points(value: Any, set_no: int) -> int:
    try:
        points = int(value)
    except (TypeError, ValueError):
        raise ScoreValidationError(f"Set {set_no} has a non-numeric score: {value!r}") from None
    if points < 0:
        raise ScoreValidationError(f"Set {set_no} has a negative score")
    return points


def parse_set_history(raw_sets: Optional[Sequence[Any]]) -> List[SetScore]:
    """Normalize scoreboard set entries into SetScore rows (1-based set_no)."""
    parsed: List[SetScore] = []
    for index, entry in enumerate(raw_sets or [], start=1):
        if isinstance(entry, dict):
            if "scores" in entry:
                pair = entry["scores"]
            else:
                pair = [entry.get("a"), entry.get("b")]
        else:
            pair = entry
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ScoreValidationError(f"Set {index} must contain exactly two scores")
        parsed.append(SetScore(set_no=index, a=_to_points(pair[0], index), b=_to_points(pair[1], index)))
    return parsed


def compute_match_result(
    team_a_id: Optional[int],
    team_b_id: Optional[int],
    raw_sets: Optional[Sequence[Any]],
) -> MatchResult:
    """
    Derive the Result of a completed best-of-3 match.

    Raises:
        PreconditionError: either team is not assigned
        ScoreValidationError: set count, tied set, or no decisive winner
    """
    if team_a_id is None or team_b_id is None:
        raise PreconditionError("Both teams must be assigned before a result can be computed")

    sets = parse_set_history(raw_sets)
    if len(sets) < 2 or len(sets) > 3:
        raise ScoreValidationError("Scoreboard must contain 2 or 3 completed sets for a best-of-3 match")

    sets_won_a = 0
    sets_won_b = 0
    for s in sets:
        if s.a == s.b:
            raise ScoreValidationError(f"Set {s.set_no} ended in a tie and cannot be finalized")
        if s.a > s.b:
            sets_won_a += 1
        else:
            sets_won_b += 1

    a_won = sets_won_a == 2 and sets_won_b < 2
    b_won = sets_won_b == 2 and sets_won_a < 2
    if a_won == b_won:
        raise ScoreValidationError("Scoreboard does not represent a completed best-of-3 outcome")

    points_a = sum(s.a for s in sets)
    points_b = sum(s.b for s in sets)

    return MatchResult(
        winner_team_id=team_a_id if a_won else team_b_id,
        loser_team_id=team_b_id if a_won else team_a_id,
        sets_won_a=sets_won_a,
        sets_won_b=sets_won_b,
        sets_played=len(sets),
        points_for_a=points_a,
        points_against_a=points_b,
        points_for_b=points_b,
        points_against_b=points_a,
        set_scores=sets,
    )
