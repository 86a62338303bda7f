"""
Advancement: winner/loser propagation and cascade invalidation.

Playoff matches name their inputs as (source match, WINNER|LOSER) for team
A, team B and the referee. Those links form a BracketGraph. Finalizing a
match pushes its winner/loser along every outgoing edge; unfinalizing walks
the same edges forward and clears whatever the reverted result put there,
unfinalizing downstream matches recursively and resetting their
scoreboards.
"""
import logging
from typing import Dict, List, Optional

from sqlmodel import Session, select

from tourney.models.match import ROLE_WINNER, Match, MatchStatus
from tourney.models.scoreboard import TBD_LABEL, Scoreboard
from tourney.models.team import Team
from tourney.services.bracket_plan import SIDE_A, SIDE_B, SIDE_REF, BracketGraph, DependencyEdge
from tourney.services.match_result import MatchResult

logger = logging.getLogger(__name__)

_SIDE_FIELDS = {SIDE_A: "team_a_id", SIDE_B: "team_b_id", SIDE_REF: "ref_team_id"}


def build_graph(session: Session, tournament_id: int) -> BracketGraph:
    matches = session.exec(
        select(Match).where(
            Match.tournament_id == tournament_id,
            (Match.source_match_a_id.is_not(None))
            | (Match.source_match_b_id.is_not(None))
            | (Match.source_match_ref_id.is_not(None)),
        )
    ).all()
    return BracketGraph.from_matches(matches)


def _propagated_team(result: MatchResult, edge: DependencyEdge) -> int:
    return result.winner_team_id if edge.role == ROLE_WINNER else result.loser_team_id


def revert_to_scheduled(match: Match) -> None:
    """Clear result and timestamps; the match can be played again."""
    match.result_json = None
    match.status = MatchStatus.SCHEDULED.value
    match.started_at = None
    match.ended_at = None
    match.finalized_at = None


def reset_scoreboard(session: Session, match: Match) -> None:
    """Empty the score state and relabel sides from the match's current teams."""
    if match.scoreboard_id is None:
        return
    scoreboard = session.get(Scoreboard, match.scoreboard_id)
    if scoreboard is None:
        return
    scoreboard.reset()
    scoreboard.team_a_name = _team_label(session, match.team_a_id)
    scoreboard.team_b_name = _team_label(session, match.team_b_id)
    session.add(scoreboard)


def _team_label(session: Session, team_id: Optional[int]) -> str:
    if team_id is None:
        return TBD_LABEL
    team = session.get(Team, team_id)
    return team.display_name if team else TBD_LABEL


def _invalidate_target(
    session: Session,
    target: Match,
    graph: BracketGraph,
    affected: List[int],
) -> None:
    """A participant of target changed: undo its own result and everything fed from it."""
    if target.status == MatchStatus.FINAL.value:
        previous = MatchResult.from_json(target.result_json)
        revert_to_scheduled(target)
        session.add(target)
        if previous is not None:
            invalidate_dependents(session, target, previous, graph, affected)
    elif target.status != MatchStatus.SCHEDULED.value:
        revert_to_scheduled(target)
    reset_scoreboard(session, target)
    session.add(target)


def invalidate_dependents(
    session: Session,
    match: Match,
    previous_result: MatchResult,
    graph: Optional[BracketGraph] = None,
    affected: Optional[List[int]] = None,
) -> List[int]:
    """
    Clear every participant that was propagated from previous_result.

    A dependent side is cleared only when it still holds the team the
    reverted result sent there; a side filled from another source is left
    alone and the walk stops there. Cleared matches that were final are
    unfinalized in turn. Referee sides are cleared but never unfinalize.

    Returns:
        Ids of matches touched, in traversal order
    """
    graph = graph if graph is not None else build_graph(session, match.tournament_id)
    affected = affected if affected is not None else []

    for edge in graph.dependents(match.id):
        target = session.get(Match, edge.target_match_id)
        if target is None:
            continue
        team_id = _propagated_team(previous_result, edge)
        attr = _SIDE_FIELDS[edge.side]
        if team_id is None or getattr(target, attr) != team_id:
            continue
        setattr(target, attr, None)
        if target.id not in affected:
            affected.append(target.id)
        logger.info(
            "Cleared %s of match %s (was %s from match %s %s)",
            attr,
            target.id,
            team_id,
            match.id,
            edge.role,
        )
        if edge.side == SIDE_REF:
            session.add(target)
            continue
        _invalidate_target(session, target, graph, affected)

    return affected


def apply_advancement_for_final_match(
    session: Session,
    match: Match,
    graph: Optional[BracketGraph] = None,
) -> List[int]:
    """
    Push a final match's winner/loser into every dependent side.

    A side already holding a different team (left over from an earlier,
    since-corrected result) is replaced and its match invalidated first.
    Idempotent: a side already holding the right team is untouched.

    Returns:
        Ids of downstream matches whose participants changed
    """
    result = MatchResult.from_json(match.result_json)
    if match.status != MatchStatus.FINAL.value or result is None:
        return []
    graph = graph if graph is not None else build_graph(session, match.tournament_id)

    affected: List[int] = []
    for edge in graph.dependents(match.id):
        target = session.get(Match, edge.target_match_id)
        if target is None:
            continue
        team_id = _propagated_team(result, edge)
        attr = _SIDE_FIELDS[edge.side]
        current = getattr(target, attr)
        if current == team_id:
            continue
        if current is not None and edge.side != SIDE_REF:
            logger.warning(
                "Match %s %s held stale team %s; replacing with %s from match %s",
                target.id,
                attr,
                current,
                team_id,
                match.id,
            )
            _invalidate_target(session, target, graph, affected)
        setattr(target, attr, team_id)
        if edge.side != SIDE_REF:
            reset_scoreboard(session, target)
        session.add(target)
        if target.id not in affected:
            affected.append(target.id)

    if affected:
        logger.info("Advanced match %s into matches %s", match.id, affected)
    return affected


def resolve_all_dependencies(session: Session, tournament_id: int) -> Dict[str, int]:
    """
    Re-apply advancement for every final match of a tournament (repair).

    Returns:
        Dict with:
        - matches_processed: number of final matches processed
        - teams_advanced: number of downstream matches changed
        - unknown_before / unknown_after: matches missing a team

    Guarantees:
        - Idempotent (safe to call multiple times)
        - Deterministic ordering (processes by match id)
    """
    all_matches = session.exec(select(Match).where(Match.tournament_id == tournament_id)).all()
    unknown_before = sum(1 for m in all_matches if m.team_a_id is None or m.team_b_id is None)

    graph = BracketGraph.from_matches(all_matches)
    finals = sorted(
        (m for m in all_matches if m.status == MatchStatus.FINAL.value and m.result_json),
        key=lambda m: m.id,
    )
    teams_advanced = 0
    for match in finals:
        teams_advanced += len(apply_advancement_for_final_match(session, match, graph))
    session.commit()

    all_after = session.exec(select(Match).where(Match.tournament_id == tournament_id)).all()
    unknown_after = sum(1 for m in all_after if m.team_a_id is None or m.team_b_id is None)

    return {
        "matches_processed": len(finals),
        "teams_advanced": teams_advanced,
        "unknown_before": unknown_before,
        "unknown_after": unknown_after,
    }
