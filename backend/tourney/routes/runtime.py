"""
Match runtime: start / end / finalize / unfinalize.

Finalize and unfinalize trigger bracket propagation and a schedule plan
resync; the response carries the matches the cascade touched.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from tourney.database import get_session
from tourney.models.match import Match
from tourney.models.scoreboard import Scoreboard
from tourney.models.tournament import Tournament
from tourney.routes.errors import http_error
from tourney.services.advancement_service import resolve_all_dependencies
from tourney.services.errors import NotFoundError, TourneyError
from tourney.services.match_lifecycle import end_match, finalize_match, start_match, unfinalize_match

router = APIRouter()


class MatchState(BaseModel):
    id: int
    tournament_id: int
    stage_key: str
    planned_slot_id: Optional[str] = None
    pool_id: Optional[int] = None
    bracket: Optional[str] = None
    bracket_match_key: Optional[str] = None
    round_block: Optional[int] = None
    court: Optional[str] = None
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    ref_team_id: Optional[int] = None
    bye_team_ids: List[int] = []
    status: str
    result: Optional[Dict[str, Any]] = None
    scoreboard_id: Optional[int] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None


class MatchTransitionResponse(BaseModel):
    match: MatchState
    affected_match_ids: List[int] = []
    created_match_ids: List[int] = []
    schedule_changed: bool = False


class ScoreboardUpdate(BaseModel):
    sets: List[List[int]]
    score_a: int = 0
    score_b: int = 0


def match_to_state(m: Match) -> MatchState:
    return MatchState(
        id=m.id,
        tournament_id=m.tournament_id,
        stage_key=m.stage_key,
        planned_slot_id=m.planned_slot_id,
        pool_id=m.pool_id,
        bracket=m.bracket,
        bracket_match_key=m.bracket_match_key,
        round_block=m.round_block,
        court=m.court,
        team_a_id=m.team_a_id,
        team_b_id=m.team_b_id,
        ref_team_id=m.ref_team_id,
        bye_team_ids=list(m.bye_team_ids or []),
        status=m.status,
        result=m.result_json,
        scoreboard_id=m.scoreboard_id,
        started_at=m.started_at,
        ended_at=m.ended_at,
        finalized_at=m.finalized_at,
    )


@router.get("/tournaments/{tournament_id}/matches", response_model=List[MatchState])
def list_matches(tournament_id: int, session: Session = Depends(get_session)) -> List[MatchState]:
    """Matches in play order: round block, court, slot id."""
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    matches = session.exec(
        select(Match)
        .where(Match.tournament_id == tournament_id)
        .order_by(Match.round_block, Match.court, Match.planned_slot_id)
    ).all()
    return [match_to_state(m) for m in matches]


@router.put("/matches/{match_id}/scoreboard", response_model=Dict[str, Any])
def update_scoreboard(
    match_id: int,
    payload: ScoreboardUpdate,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Overwrite the set history of a match that is not final."""
    match = session.get(Match, match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    if match.is_final:
        raise HTTPException(status_code=409, detail="Unfinalize the match before editing its score")
    scoreboard = session.get(Scoreboard, match.scoreboard_id) if match.scoreboard_id is not None else None
    if scoreboard is None:
        raise HTTPException(status_code=404, detail="Scoreboard not found")
    scoreboard.sets = [list(s) for s in payload.sets]
    scoreboard.score_a = payload.score_a
    scoreboard.score_b = payload.score_b
    session.add(scoreboard)
    session.commit()
    session.refresh(scoreboard)
    return {"id": scoreboard.id, "sets": scoreboard.sets, "score_a": scoreboard.score_a, "score_b": scoreboard.score_b}


@router.post("/matches/{match_id}/start", response_model=MatchState)
def start(match_id: int, session: Session = Depends(get_session)) -> MatchState:
    try:
        return match_to_state(start_match(session, match_id))
    except TourneyError as exc:
        raise http_error(exc) from exc


@router.post("/matches/{match_id}/end", response_model=MatchState)
def end(match_id: int, session: Session = Depends(get_session)) -> MatchState:
    try:
        return match_to_state(end_match(session, match_id))
    except TourneyError as exc:
        raise http_error(exc) from exc


@router.post("/matches/{match_id}/finalize", response_model=MatchTransitionResponse)
def finalize(
    match_id: int,
    override: bool = False,
    session: Session = Depends(get_session),
) -> MatchTransitionResponse:
    """Finalize from the scoreboard. override=true skips the ended-status requirement."""
    try:
        outcome = finalize_match(session, match_id, override=override)
    except TourneyError as exc:
        raise http_error(exc) from exc
    return MatchTransitionResponse(
        match=match_to_state(outcome.match),
        affected_match_ids=outcome.affected_match_ids,
        created_match_ids=outcome.sync.created_match_ids if outcome.sync else [],
        schedule_changed=outcome.sync.schedule_changed if outcome.sync else False,
    )


@router.post("/matches/{match_id}/unfinalize", response_model=MatchTransitionResponse)
def unfinalize(match_id: int, session: Session = Depends(get_session)) -> MatchTransitionResponse:
    try:
        outcome = unfinalize_match(session, match_id)
    except TourneyError as exc:
        raise http_error(exc) from exc
    return MatchTransitionResponse(
        match=match_to_state(outcome.match),
        affected_match_ids=outcome.affected_match_ids,
        created_match_ids=outcome.sync.created_match_ids if outcome.sync else [],
        schedule_changed=outcome.sync.schedule_changed if outcome.sync else False,
    )


@router.post("/tournaments/{tournament_id}/advancement/resolve", response_model=Dict[str, int])
def resolve_dependencies(tournament_id: int, session: Session = Depends(get_session)) -> Dict[str, int]:
    """Re-apply advancement for every final match (repair)."""
    if not session.get(Tournament, tournament_id):
        raise http_error(NotFoundError("Tournament not found"))
    return resolve_all_dependencies(session, tournament_id)
