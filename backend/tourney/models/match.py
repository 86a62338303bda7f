from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from tourney.utils.clock import utc_now

if TYPE_CHECKING:
    from tourney.models.tournament import Tournament


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    FINAL = "final"


ROLE_WINNER = "WINNER"
ROLE_LOSER = "LOSER"


class Match(SQLModel, table=True):
    # planned_slot_id is the natural key of a materialized slot
    __table_args__ = (
        SAUniqueConstraint("tournament_id", "planned_slot_id", name="uq_match_tournament_slot"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_key: str
    planned_slot_id: Optional[str] = Field(default=None, index=True)

    # Pool stages
    pool_id: Optional[int] = Field(default=None, foreign_key="pool.id")

    # Playoff stages
    bracket: Optional[str] = Field(default=None)  # "gold" | "silver" | ...
    bracket_round: Optional[int] = Field(default=None)
    bracket_match_no: Optional[int] = Field(default=None)
    bracket_match_key: Optional[str] = Field(default=None)  # "gold:R2:M1"
    seed_a: Optional[int] = Field(default=None)
    seed_b: Optional[int] = Field(default=None)

    round_block: Optional[int] = Field(default=None)
    court: Optional[str] = Field(default=None)

    # Participants (nullable only for not-yet-propagated playoff matches)
    team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")
    ref_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    bye_team_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))

    # Upstream match -> participant side (playoffs)
    source_match_a_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_match_b_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_match_ref_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_a_role: Optional[str] = Field(default=None)  # "WINNER" | "LOSER"
    source_b_role: Optional[str] = Field(default=None)
    source_ref_role: Optional[str] = Field(default=None)

    status: str = Field(default=MatchStatus.SCHEDULED.value)
    result_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    scoreboard_id: Optional[int] = Field(default=None, foreign_key="scoreboard.id")

    started_at: Optional[datetime] = Field(default=None)
    ended_at: Optional[datetime] = Field(default=None)
    finalized_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)

    tournament: "Tournament" = Relationship(back_populates="matches")

    @property
    def is_final(self) -> bool:
        return self.status == MatchStatus.FINAL.value

    @property
    def winner_team_id(self) -> Optional[int]:
        return (self.result_json or {}).get("winner_team_id")

    @property
    def loser_team_id(self) -> Optional[int]:
        return (self.result_json or {}).get("loser_team_id")
