from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from tourney.utils.clock import utc_now

TBD_LABEL = "TBD"


class Scoreboard(SQLModel, table=True):
    """Live score state owned by the scoring subsystem; one per materialized match."""

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    title: str = Field(default="")
    team_a_name: str = Field(default=TBD_LABEL)
    team_b_name: str = Field(default=TBD_LABEL)
    # Completed sets, each [team_a_points, team_b_points]
    sets: List[List[int]] = Field(default_factory=list, sa_column=Column(JSON))
    score_a: int = Field(default=0)  # points in the set currently being played
    score_b: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    def reset(self) -> None:
        self.sets = []
        self.score_a = 0
        self.score_b = 0
