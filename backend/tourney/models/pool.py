from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from tourney.utils.clock import utc_now

if TYPE_CHECKING:
    from tourney.models.tournament import Tournament


class Pool(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("tournament_id", "stage_key", "name", name="uq_pool_stage_name"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_key: str
    name: str  # "A", "B", ...
    required_team_count: int  # 3 or 4
    home_court: Optional[str] = Field(default=None)
    # Roster order, NOT bracket seed order
    team_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now)

    tournament: "Tournament" = Relationship(back_populates="pools")

    @property
    def is_full(self) -> bool:
        return len(self.team_ids or []) == self.required_team_count
