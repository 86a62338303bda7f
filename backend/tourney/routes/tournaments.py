from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from tourney.database import get_session
from tourney.models.team import Team
from tourney.models.tournament import Tournament
from tourney.services.errors import FormatConfigError
from tourney.services.format_registry import get_format
from tourney.services.schedule_slots import parse_clock_time_to_minutes
from tourney.utils.courts import parse_court_names

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    format_id: Optional[str] = None
    court_names: Optional[List[str]] = None
    max_concurrent_courts: Optional[int] = None
    day_start_time: str = "09:00"
    match_duration_minutes: int = 60
    lunch_start_time: Optional[str] = None
    lunch_duration_minutes: int = 45

    @field_validator("court_names", mode="before")
    @classmethod
    def split_court_names(cls, v):
        """Accept "1,5,6" as well as a list."""
        return parse_court_names(v) if v is not None else None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("day_start_time", "lunch_start_time")
    @classmethod
    def validate_clock(cls, v):
        if v is not None and parse_clock_time_to_minutes(v) is None:
            raise ValueError("times must be HH:MM")
        return v

    @field_validator("match_duration_minutes", "lunch_duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        if v <= 0:
            raise ValueError("durations must be positive")
        return v


class TournamentUpdate(BaseModel):
    name: Optional[str] = None
    format_id: Optional[str] = None
    court_names: Optional[List[str]] = None
    max_concurrent_courts: Optional[int] = None
    lunch_start_time: Optional[str] = None

    @field_validator("court_names", mode="before")
    @classmethod
    def split_court_names(cls, v):
        return parse_court_names(v) if v is not None else None


class TournamentResponse(BaseModel):
    id: int
    name: str
    format_id: Optional[str]
    court_names: Optional[List[str]] = None
    max_concurrent_courts: Optional[int]
    day_start_time: str
    match_duration_minutes: int
    lunch_start_time: Optional[str]
    lunch_duration_minutes: int
    created_at: datetime
    updated_at: datetime

    @field_validator("court_names", mode="before")
    @classmethod
    def normalize_court_names(cls, v):
        """Court names may be stored as '1,2,3' instead of a list."""
        if v is None:
            return None
        return parse_court_names(v)

    class Config:
        from_attributes = True


class TeamCreate(BaseModel):
    name: str
    short_name: Optional[str] = None
    seed: Optional[int] = None


class TeamResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    short_name: Optional[str]
    seed: Optional[int]

    class Config:
        from_attributes = True


def _check_format(format_id: Optional[str]) -> None:
    try:
        get_format(format_id, required=bool(format_id))
    except FormatConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(payload: TournamentCreate, session: Session = Depends(get_session)):
    _check_format(payload.format_id)
    data = payload.model_dump()
    data["court_names"] = parse_court_names(payload.court_names) or None
    tournament = Tournament(**data)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.put("/tournaments/{tournament_id}", response_model=TournamentResponse)
def update_tournament(tournament_id: int, payload: TournamentUpdate, session: Session = Depends(get_session)):
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    update_data = payload.model_dump(exclude_unset=True)
    if "format_id" in update_data:
        _check_format(update_data["format_id"])
    if "court_names" in update_data:
        update_data["court_names"] = parse_court_names(update_data["court_names"]) or None
    for key, value in update_data.items():
        setattr(tournament, key, value)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}/teams", response_model=List[TeamResponse])
def list_teams(tournament_id: int, session: Session = Depends(get_session)):
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    return session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all()


@router.post("/tournaments/{tournament_id}/teams", response_model=TeamResponse, status_code=201)
def create_team(tournament_id: int, payload: TeamCreate, session: Session = Depends(get_session)):
    """Team names are unique within a tournament."""
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Team name is required")
    team = Team(tournament_id=tournament_id, name=name, short_name=payload.short_name, seed=payload.seed)
    session.add(team)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Team {name!r} already exists in this tournament") from exc
    session.refresh(team)
    return team
