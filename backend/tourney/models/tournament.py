from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

from tourney.utils.clock import utc_now

if TYPE_CHECKING:
    from tourney.models.match import Match
    from tourney.models.pool import Pool
    from tourney.models.team import Team


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    format_id: Optional[str] = Field(default=None)  # key into services.format_registry
    court_names: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    max_concurrent_courts: Optional[int] = Field(default=None)  # caps playoff chunk width

    # Clock settings used to derive slot time_index ("HH:MM")
    day_start_time: str = Field(default="09:00")
    match_duration_minutes: int = Field(default=60)
    lunch_start_time: Optional[str] = Field(default=None)
    lunch_duration_minutes: int = Field(default=45)

    # {"<stage_key>": {"pools": {"A": [ids]}, "overall": [ids]}, "cumulative": {"overall": [ids]}}
    standings_overrides: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    # Whole-document snapshot: {"slots": [...]}
    schedule_plan: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    # Relationships
    teams: List["Team"] = Relationship(back_populates="tournament")
    pools: List["Pool"] = Relationship(back_populates="tournament")
    matches: List["Match"] = Relationship(back_populates="tournament")
