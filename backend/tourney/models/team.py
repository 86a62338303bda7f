from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from tourney.utils.clock import utc_now

if TYPE_CHECKING:
    from tourney.models.tournament import Tournament


class Team(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("tournament_id", "name", name="uq_tournament_team_name"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    short_name: Optional[str] = Field(default=None)
    seed: Optional[int] = Field(default=None)  # 1-based entry order; used for serpentine pool fill
    created_at: datetime = Field(default_factory=utc_now)

    tournament: "Tournament" = Relationship(back_populates="teams")

    @property
    def display_name(self) -> str:
        return (self.short_name or self.name or "").strip()
