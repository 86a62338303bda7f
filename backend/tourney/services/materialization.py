"""
Materialization: turn resolved schedule slots into persisted Match rows.

Each slot id is a natural key (unique per tournament at the database
level). A batch looks a slot up by planned_slot_id before inserting, so a
second run never creates a duplicate. When any creation fails the batch is
undone: every match and scoreboard it created is removed and the failure
surfaces as MaterializationError.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlmodel import Session, select

from tourney.models.match import Match, MatchStatus
from tourney.models.pool import Pool
from tourney.models.scoreboard import TBD_LABEL, Scoreboard
from tourney.services.errors import MaterializationError, PreconditionError
from tourney.services.notifications import NotificationContext

logger = logging.getLogger(__name__)


@dataclass
class MatchSpec:
    """Everything needed to create one match for one slot."""

    slot_id: str
    stage_key: str
    title: str
    round_block: Optional[int] = None
    court: Optional[str] = None
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    team_a_name: str = TBD_LABEL
    team_b_name: str = TBD_LABEL
    ref_team_id: Optional[int] = None
    bye_team_ids: List[int] = field(default_factory=list)
    pool_id: Optional[int] = None
    # Playoffs
    bracket: Optional[str] = None
    bracket_round: Optional[int] = None
    bracket_match_no: Optional[int] = None
    bracket_match_key: Optional[str] = None
    seed_a: Optional[int] = None
    seed_b: Optional[int] = None
    source_a_slot_id: Optional[str] = None
    source_a_role: Optional[str] = None
    source_b_slot_id: Optional[str] = None
    source_b_role: Optional[str] = None
    source_ref_slot_id: Optional[str] = None
    source_ref_role: Optional[str] = None


@dataclass
class MaterializationResult:
    created: List[Match] = field(default_factory=list)
    by_slot_id: Dict[str, Match] = field(default_factory=dict)

    @property
    def created_ids(self) -> List[int]:
        return [m.id for m in self.created]


def find_match_for_slot(session: Session, tournament_id: int, slot_id: str) -> Optional[Match]:
    return session.exec(
        select(Match).where(Match.tournament_id == tournament_id, Match.planned_slot_id == slot_id)
    ).first()


def _source_id(slot_id: Optional[str], known: Dict[str, Match]) -> Optional[int]:
    if slot_id is None:
        return None
    source = known.get(slot_id)
    if source is None or source.id is None:
        raise MaterializationError(f"Source slot {slot_id} has no match to link")
    return source.id


def _create_one(session: Session, tournament_id: int, spec: MatchSpec, known: Dict[str, Match]) -> Match:
    scoreboard = Scoreboard(
        tournament_id=tournament_id,
        title=spec.title,
        team_a_name=spec.team_a_name,
        team_b_name=spec.team_b_name,
    )
    session.add(scoreboard)
    session.flush()

    match = Match(
        tournament_id=tournament_id,
        stage_key=spec.stage_key,
        planned_slot_id=spec.slot_id,
        pool_id=spec.pool_id,
        bracket=spec.bracket,
        bracket_round=spec.bracket_round,
        bracket_match_no=spec.bracket_match_no,
        bracket_match_key=spec.bracket_match_key,
        seed_a=spec.seed_a,
        seed_b=spec.seed_b,
        round_block=spec.round_block,
        court=spec.court,
        team_a_id=spec.team_a_id,
        team_b_id=spec.team_b_id,
        ref_team_id=spec.ref_team_id,
        bye_team_ids=list(spec.bye_team_ids),
        source_match_a_id=_source_id(spec.source_a_slot_id, known),
        source_a_role=spec.source_a_role,
        source_match_b_id=_source_id(spec.source_b_slot_id, known),
        source_b_role=spec.source_b_role,
        source_match_ref_id=_source_id(spec.source_ref_slot_id, known),
        source_ref_role=spec.source_ref_role,
        status=MatchStatus.SCHEDULED.value,
        scoreboard_id=scoreboard.id,
    )
    session.add(match)
    session.flush()
    return match


def materialize_matches(
    session: Session,
    tournament_id: int,
    specs: Sequence[MatchSpec],
    notifier: Optional[NotificationContext] = None,
) -> MaterializationResult:
    """
    Create one match + scoreboard per spec whose slot has no match yet.

    Specs that reference source slots (playoff feeders) must come after
    their sources in the sequence. The batch is committed as a unit.

    Returns:
        MaterializationResult with created matches and every spec's match
        keyed by slot id (existing or new)

    Raises:
        MaterializationError: the batch failed; nothing it created remains
    """
    result = MaterializationResult()
    if not specs:
        return result

    created_match_ids: List[int] = []
    created_scoreboard_ids: List[int] = []
    try:
        for spec in specs:
            existing = find_match_for_slot(session, tournament_id, spec.slot_id)
            if existing is not None:
                result.by_slot_id[spec.slot_id] = existing
                continue
            match = _create_one(session, tournament_id, spec, result.by_slot_id)
            created_match_ids.append(match.id)
            created_scoreboard_ids.append(match.scoreboard_id)
            result.by_slot_id[spec.slot_id] = match
            result.created.append(match)
        session.commit()
    except Exception as exc:
        session.rollback()
        _delete_created(session, created_match_ids, created_scoreboard_ids)
        logger.exception(
            "Materialization batch failed for tournament %s after %d creations; rolled back",
            tournament_id,
            len(created_match_ids),
        )
        if isinstance(exc, MaterializationError):
            raise
        raise MaterializationError(
            f"Failed to materialize matches: {exc}", created_match_ids=created_match_ids
        ) from exc

    for match in result.created:
        session.refresh(match)
        if notifier is not None:
            notifier.bind_scoreboard(match.scoreboard_id, match.id)
    if result.created:
        logger.info(
            "Materialized %d matches for tournament %s: %s",
            len(result.created),
            tournament_id,
            [m.planned_slot_id for m in result.created],
        )
    return result


def _delete_created(session: Session, match_ids: Sequence[int], scoreboard_ids: Sequence[int]) -> None:
    """Remove any row from a failed batch that survived the rollback."""
    removed = 0
    for match_id in match_ids:
        match = session.get(Match, match_id)
        if match is not None:
            session.delete(match)
            removed += 1
    for scoreboard_id in scoreboard_ids:
        scoreboard = session.get(Scoreboard, scoreboard_id)
        if scoreboard is not None:
            session.delete(scoreboard)
            removed += 1
    if removed:
        session.commit()


def discard_pool_matches(session: Session, pool: Pool) -> int:
    """
    Delete a pool's matches and their scoreboards before its roster changes.

    Raises:
        PreconditionError: a pool match has already started
    """
    matches = session.exec(select(Match).where(Match.pool_id == pool.id)).all()
    started = [m for m in matches if m.status != MatchStatus.SCHEDULED.value]
    if started:
        raise PreconditionError(f"Pool {pool.name} has matches in progress; roster is locked")
    for match in matches:
        scoreboard_id = match.scoreboard_id
        session.delete(match)
        if scoreboard_id is not None:
            scoreboard = session.get(Scoreboard, scoreboard_id)
            if scoreboard is not None:
                session.delete(scoreboard)
    if matches:
        logger.info("Discarded %d unstarted matches of pool %s (%s)", len(matches), pool.name, pool.stage_key)
    return len(matches)
