"""
Pools, schedule plan, standings and format routes.

Every mutating route runs the synchronizer (directly or through the pool
services) so the stored plan and materialized matches stay current.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from tourney.database import get_session
from tourney.models.pool import Pool
from tourney.routes.errors import http_error
from tourney.services.errors import TourneyError
from tourney.services.format_registry import TournamentFormat, list_formats, suggest_formats
from tourney.services.pool_setup import assign_pool_teams, auto_assign_pools, instantiate_pools
from tourney.services.schedule_plan import describe_slot, load_schedule_plan, sync_schedule_plan
from tourney.services.standings import (
    CUMULATIVE_SCOPE,
    compute_cumulative_standings,
    compute_overall_standings,
    compute_pool_standings,
    set_standings_overrides,
    team_infos,
)

router = APIRouter()


class PoolResponse(BaseModel):
    id: int
    tournament_id: int
    stage_key: str
    name: str
    required_team_count: int
    home_court: Optional[str]
    team_ids: List[int] = []

    class Config:
        from_attributes = True


class PoolRosterUpdate(BaseModel):
    team_ids: List[int]


class OverrideUpdate(BaseModel):
    scope_key: str
    pool_name: Optional[str] = None
    order: List[int] = []


class FormatSummary(BaseModel):
    id: str
    name: str
    description: str
    supported_team_counts: List[int]
    min_courts: int
    max_courts: Optional[int] = None


class SyncResponse(BaseModel):
    slot_count: int
    created_match_ids: List[int]
    schedule_changed: bool
    pools_changed: bool


def _format_summary(fmt: TournamentFormat) -> FormatSummary:
    return FormatSummary(
        id=fmt.id,
        name=fmt.name,
        description=fmt.description,
        supported_team_counts=list(fmt.supported_team_counts),
        min_courts=fmt.min_courts,
        max_courts=fmt.max_courts,
    )


@router.get("/formats", response_model=List[FormatSummary])
def get_formats() -> List[FormatSummary]:
    return [_format_summary(f) for f in list_formats()]


@router.get("/formats/suggest", response_model=List[FormatSummary])
def get_format_suggestions(team_count: int, court_count: int) -> List[FormatSummary]:
    return [_format_summary(f) for f in suggest_formats(team_count, court_count)]


@router.post("/tournaments/{tournament_id}/pools/{stage_key}/setup", response_model=List[PoolResponse])
def setup_pools(tournament_id: int, stage_key: str, session: Session = Depends(get_session)):
    try:
        return instantiate_pools(session, tournament_id, stage_key)
    except TourneyError as exc:
        raise http_error(exc) from exc


@router.post("/tournaments/{tournament_id}/pools/{stage_key}/auto-assign", response_model=List[PoolResponse])
def auto_assign(tournament_id: int, stage_key: str, session: Session = Depends(get_session)):
    """Serpentine-fill the stage's pools from team seeds."""
    try:
        return auto_assign_pools(session, tournament_id, stage_key)
    except TourneyError as exc:
        raise http_error(exc) from exc


@router.put("/tournaments/{tournament_id}/pools/{pool_id}/teams", response_model=PoolResponse)
def assign_teams(
    tournament_id: int,
    pool_id: int,
    payload: PoolRosterUpdate,
    session: Session = Depends(get_session),
):
    pool = session.get(Pool, pool_id)
    if not pool or pool.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Pool not found")
    try:
        return assign_pool_teams(session, pool_id, payload.team_ids)
    except TourneyError as exc:
        raise http_error(exc) from exc


@router.post("/tournaments/{tournament_id}/schedule-plan/sync", response_model=SyncResponse)
def sync_plan(tournament_id: int, session: Session = Depends(get_session)) -> SyncResponse:
    try:
        result = sync_schedule_plan(session, tournament_id)
    except TourneyError as exc:
        raise http_error(exc) from exc
    return SyncResponse(
        slot_count=len(result.slots),
        created_match_ids=result.created_match_ids,
        schedule_changed=result.schedule_changed,
        pools_changed=result.pools_changed,
    )


@router.get("/tournaments/{tournament_id}/schedule-plan", response_model=Dict[str, Any])
def get_plan(tournament_id: int, session: Session = Depends(get_session)) -> Dict[str, Any]:
    """Stored plan with display labels; does not resync."""
    try:
        slots = load_schedule_plan(session, tournament_id)
    except TourneyError as exc:
        raise http_error(exc) from exc
    names = {tid: info.short_name or info.name for tid, info in team_infos(session, tournament_id).items()}
    return {"tournament_id": tournament_id, "slots": [describe_slot(s, names) for s in slots]}


@router.get("/tournaments/{tournament_id}/standings", response_model=Dict[str, Any])
def get_standings(
    tournament_id: int,
    stage_key: Optional[str] = None,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """
    Pool and overall standings for a pool stage, or the cumulative ranking
    (the playoff seed order) when stage_key is omitted or "cumulative".
    """
    try:
        if not stage_key or stage_key == CUMULATIVE_SCOPE:
            entries = compute_cumulative_standings(session, tournament_id)
            return {"scope": CUMULATIVE_SCOPE, "overall": [e.to_json() for e in entries]}
        pools = compute_pool_standings(session, tournament_id, stage_key)
        overall = compute_overall_standings(session, tournament_id, stage_key)
    except TourneyError as exc:
        raise http_error(exc) from exc
    return {
        "scope": stage_key,
        "pools": [
            {
                "pool_id": p.pool_id,
                "pool_name": p.pool_name,
                "is_complete": p.is_complete,
                "entries": [e.to_json() for e in p.entries],
            }
            for p in pools
        ],
        "overall": [e.to_json() for e in overall],
    }


@router.put("/tournaments/{tournament_id}/standings-overrides", response_model=Dict[str, Any])
def put_overrides(
    tournament_id: int,
    payload: OverrideUpdate,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Store a manual order, then resync so seeded slots pick it up."""
    try:
        overrides = set_standings_overrides(
            session, tournament_id, payload.scope_key, payload.order, pool_name=payload.pool_name
        )
        sync_schedule_plan(session, tournament_id)
    except TourneyError as exc:
        raise http_error(exc) from exc
    return overrides
