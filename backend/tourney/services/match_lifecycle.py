"""
Match lifecycle: scheduled -> live -> ended -> final, and final -> scheduled.

finalize_match and unfinalize_match are the triggers that drive bracket
propagation and, through the schedule synchronizer, the resolution of later
stages. Every rejection happens before any write.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlmodel import Session

from tourney.models.match import Match, MatchStatus
from tourney.models.scoreboard import Scoreboard
from tourney.services.advancement_service import (
    apply_advancement_for_final_match,
    build_graph,
    invalidate_dependents,
    revert_to_scheduled,
)
from tourney.services.errors import NotFoundError, PreconditionError
from tourney.services.match_result import MatchResult, compute_match_result
from tourney.services.notifications import ChangeSignal, NotificationContext, ensure_context
from tourney.services.schedule_plan import SyncResult, sync_schedule_plan
from tourney.utils.clock import utc_now

logger = logging.getLogger(__name__)


@dataclass
class LifecycleResult:
    match: Match
    affected_match_ids: List[int] = field(default_factory=list)
    sync: Optional[SyncResult] = None


def _load_match(session: Session, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if not match:
        raise NotFoundError("Match not found")
    return match


def _emit_status(notifier: NotificationContext, match: Match, match_ids: Optional[List[int]] = None) -> None:
    notifier.emit(
        ChangeSignal.MATCH_STATUS_CHANGED,
        match.tournament_id,
        match_ids=match_ids or [match.id],
        status=match.status,
        stage_key=match.stage_key,
    )


def start_match(session: Session, match_id: int, notifier: Optional[NotificationContext] = None) -> Match:
    """scheduled -> live. Both teams must be known."""
    notifier = ensure_context(notifier)
    match = _load_match(session, match_id)
    if match.status != MatchStatus.SCHEDULED.value:
        raise PreconditionError(f"Cannot start a match that is {match.status}")
    if match.team_a_id is None or match.team_b_id is None:
        raise PreconditionError("Both teams must be assigned before the match starts")

    match.status = MatchStatus.LIVE.value
    match.started_at = utc_now()
    session.add(match)
    session.commit()
    session.refresh(match)
    _emit_status(notifier, match)
    return match


def end_match(session: Session, match_id: int, notifier: Optional[NotificationContext] = None) -> Match:
    """live -> ended."""
    notifier = ensure_context(notifier)
    match = _load_match(session, match_id)
    if match.status != MatchStatus.LIVE.value:
        raise PreconditionError(f"Cannot end a match that is {match.status}")

    match.status = MatchStatus.ENDED.value
    match.ended_at = utc_now()
    session.add(match)
    session.commit()
    session.refresh(match)
    _emit_status(notifier, match)
    return match


def finalize_match(
    session: Session,
    match_id: int,
    override: bool = False,
    notifier: Optional[NotificationContext] = None,
) -> LifecycleResult:
    """
    Record the Result of an ended match and propagate it.

    Args:
        override: finalize from scheduled/live without ending first

    Raises:
        NotFoundError: unknown match
        PreconditionError: teams missing, no scoreboard, already final, or
            not ended without override
        ScoreValidationError: scoreboard is not a decisive best-of-3
    """
    notifier = ensure_context(notifier)
    match = _load_match(session, match_id)

    if match.status == MatchStatus.FINAL.value:
        raise PreconditionError("Match is already final")
    if match.team_a_id is None or match.team_b_id is None:
        raise PreconditionError("Both teams must be assigned before finalizing")
    scoreboard = session.get(Scoreboard, match.scoreboard_id) if match.scoreboard_id is not None else None
    if scoreboard is None:
        raise PreconditionError("Match has no scoreboard to finalize from")
    if match.status != MatchStatus.ENDED.value and not override:
        raise PreconditionError("Match must be ended before finalizing")

    result = compute_match_result(match.team_a_id, match.team_b_id, scoreboard.sets)

    now = utc_now()
    match.result_json = result.to_json()
    match.status = MatchStatus.FINAL.value
    if match.ended_at is None:
        match.ended_at = now
    match.finalized_at = now
    session.add(match)

    affected = apply_advancement_for_final_match(session, match, build_graph(session, match.tournament_id))
    session.commit()
    session.refresh(match)

    logger.info(
        "Finalized match %s (%s): winner %s, sets %d-%d",
        match.id,
        match.planned_slot_id,
        result.winner_team_id,
        result.sets_won_a,
        result.sets_won_b,
    )
    _emit_status(notifier, match)
    notifier.emit(
        ChangeSignal.MATCH_FINALIZED,
        match.tournament_id,
        match_id=match.id,
        stage_key=match.stage_key,
        winner_team_id=result.winner_team_id,
    )
    if affected:
        notifier.emit(ChangeSignal.BRACKET_UPDATED, match.tournament_id, match_ids=affected)

    sync = sync_schedule_plan(session, match.tournament_id, notifier)
    session.refresh(match)
    return LifecycleResult(match=match, affected_match_ids=affected, sync=sync)


def unfinalize_match(
    session: Session,
    match_id: int,
    notifier: Optional[NotificationContext] = None,
) -> LifecycleResult:
    """
    Revert a final match to scheduled and undo everything propagated from it.

    Raises:
        NotFoundError: unknown match
        PreconditionError: match is not final
    """
    notifier = ensure_context(notifier)
    match = _load_match(session, match_id)
    if match.status != MatchStatus.FINAL.value:
        raise PreconditionError("Only final matches can be unfinalized")

    previous = MatchResult.from_json(match.result_json)
    revert_to_scheduled(match)
    session.add(match)

    affected: List[int] = []
    if previous is not None:
        affected = invalidate_dependents(session, match, previous, build_graph(session, match.tournament_id))
    session.commit()
    session.refresh(match)

    logger.info("Unfinalized match %s (%s); cascade touched %s", match.id, match.planned_slot_id, affected)
    notifier.emit(
        ChangeSignal.MATCH_UNFINALIZED,
        match.tournament_id,
        match_id=match.id,
        stage_key=match.stage_key,
        affected_match_ids=affected,
    )
    _emit_status(notifier, match, [match.id] + affected)
    if affected:
        notifier.emit(ChangeSignal.BRACKET_UPDATED, match.tournament_id, match_ids=affected)

    sync = sync_schedule_plan(session, match.tournament_id, notifier)
    session.refresh(match)
    return LifecycleResult(match=match, affected_match_ids=affected, sync=sync)
