"""Factories shared by the service and route tests."""
from typing import List, Optional

from sqlmodel import Session, select

from tourney.models.match import Match
from tourney.models.scoreboard import Scoreboard
from tourney.models.team import Team
from tourney.models.tournament import Tournament
from tourney.services.match_lifecycle import finalize_match


def create_tournament(
    session: Session,
    team_count: int,
    format_id: Optional[str] = None,
    **fields,
) -> Tournament:
    """Tournament with team_count teams named "Team 01".. and seeded 1..n."""
    tournament = Tournament(name=f"{team_count}-team test", format_id=format_id, **fields)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    for seed in range(1, team_count + 1):
        session.add(Team(tournament_id=tournament.id, name=f"Team {seed:02d}", seed=seed))
    session.commit()
    return tournament


def teams_by_seed(session: Session, tournament_id: int) -> List[Team]:
    return list(session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.seed)).all())


def seed_of(session: Session, team_id: int) -> int:
    return session.get(Team, team_id).seed


def set_scoreboard(session: Session, match: Match, sets) -> None:
    scoreboard = session.get(Scoreboard, match.scoreboard_id)
    scoreboard.sets = [list(s) for s in sets]
    session.add(scoreboard)
    session.commit()


def play(session: Session, match_id: int, winner_id: Optional[int] = None, notifier=None):
    """
    Score and finalize a match in straight sets.

    Without winner_id the better-seeded team wins.
    """
    match = session.get(Match, match_id)
    if winner_id is None:
        winner_id = min((match.team_a_id, match.team_b_id), key=lambda t: seed_of(session, t))
    if winner_id == match.team_a_id:
        sets = [[25, 18], [25, 21]]
    else:
        sets = [[18, 25], [21, 25]]
    set_scoreboard(session, match, sets)
    return finalize_match(session, match_id, override=True, notifier=notifier)


def matches_for(session: Session, tournament_id: int, stage_key: Optional[str] = None) -> List[Match]:
    session.expire_all()
    query = select(Match).where(Match.tournament_id == tournament_id)
    if stage_key is not None:
        query = query.where(Match.stage_key == stage_key)
    return list(session.exec(query.order_by(Match.id)).all())


def match_for_slot(session: Session, tournament_id: int, slot_id: str) -> Optional[Match]:
    session.expire_all()
    return session.exec(
        select(Match).where(Match.tournament_id == tournament_id, Match.planned_slot_id == slot_id)
    ).first()


def play_stage(session: Session, tournament_id: int, stage_key: str) -> None:
    """Finalize every unfinished match of a stage, better seed winning."""
    for match in matches_for(session, tournament_id, stage_key):
        if not match.is_final:
            play(session, match.id)
