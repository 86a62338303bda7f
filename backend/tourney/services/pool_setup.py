"""
Pool setup: pool rows for a pool-play stage and their rosters.

Rosters are roster order, not bracket seeds. A roster can only change while
none of the pool's matches has started; the pool's unstarted matches and
scoreboards are discarded and the synchronizer regenerates them.
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from tourney.models.pool import Pool
from tourney.models.team import Team
from tourney.models.tournament import Tournament
from tourney.services.errors import FormatConfigError, NotFoundError, PreconditionError
from tourney.services.format_registry import PoolPlayStage, TournamentFormat, resolve_format_for_tournament
from tourney.services.materialization import discard_pool_matches
from tourney.services.notifications import ChangeSignal, NotificationContext, ensure_context
from tourney.services.schedule_plan import sync_schedule_plan
from tourney.utils.courts import active_courts, home_court_for_index

logger = logging.getLogger(__name__)


def _load_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError("Tournament not found")
    return tournament


def _tournament_teams(session: Session, tournament_id: int) -> List[Team]:
    return list(session.exec(select(Team).where(Team.tournament_id == tournament_id)).all())


def _pool_stage(session: Session, tournament: Tournament, stage_key: str) -> Tuple[TournamentFormat, PoolPlayStage]:
    fmt = resolve_format_for_tournament(tournament.format_id, len(_tournament_teams(session, tournament.id)))
    if fmt is None:
        raise FormatConfigError("Tournament has no format; set format_id first")
    stage = fmt.stage(stage_key)
    if not isinstance(stage, PoolPlayStage):
        raise FormatConfigError(f"Stage {stage_key!r} is not a pool-play stage of {fmt.id}")
    return fmt, stage


def instantiate_pools(
    session: Session,
    tournament_id: int,
    stage_key: str,
    notifier: Optional[NotificationContext] = None,
) -> List[Pool]:
    """
    Create or refresh the pool rows of a pool-play stage.

    Home courts cycle through the tournament's courts in pool order.
    Existing rosters are kept.

    Returns:
        Pools in declaration order
    """
    notifier = ensure_context(notifier)
    tournament = _load_tournament(session, tournament_id)
    _, stage = _pool_stage(session, tournament, stage_key)
    courts = active_courts(tournament.court_names)

    existing = {
        p.name: p
        for p in session.exec(
            select(Pool).where(Pool.tournament_id == tournament_id, Pool.stage_key == stage_key)
        ).all()
    }
    pools: List[Pool] = []
    for index, pool_def in enumerate(stage.pools):
        pool = existing.get(pool_def.name)
        if pool is None:
            pool = Pool(
                tournament_id=tournament_id,
                stage_key=stage_key,
                name=pool_def.name,
                required_team_count=pool_def.size,
                team_ids=[],
            )
        pool.required_team_count = pool_def.size
        pool.home_court = home_court_for_index(courts, index)
        session.add(pool)
        pools.append(pool)
    session.commit()
    for pool in pools:
        session.refresh(pool)

    logger.info("Instantiated %d pools for tournament %s stage %s", len(pools), tournament_id, stage_key)
    notifier.emit(ChangeSignal.POOLS_CHANGED, tournament_id, pool_ids=[p.id for p in pools], stage_key=stage_key)
    return pools


def _validate_roster(pool: Pool, team_ids: Sequence[int], valid_ids: Sequence[int]) -> List[int]:
    roster = [int(t) for t in team_ids]
    if len(roster) > pool.required_team_count:
        raise PreconditionError(f"Pool {pool.name} holds {pool.required_team_count} teams, got {len(roster)}")
    if len(set(roster)) != len(roster):
        raise PreconditionError(f"Pool {pool.name} roster contains duplicate teams")
    unknown = [t for t in roster if t not in set(valid_ids)]
    if unknown:
        raise PreconditionError(f"Teams {unknown} do not belong to this tournament")
    return roster


def _store_roster(session: Session, pool: Pool, roster: List[int]) -> bool:
    if list(pool.team_ids or []) == roster:
        return False
    discard_pool_matches(session, pool)
    pool.team_ids = roster
    session.add(pool)
    return True


def assign_pool_teams(
    session: Session,
    pool_id: int,
    team_ids: Sequence[int],
    notifier: Optional[NotificationContext] = None,
) -> Pool:
    """
    Replace a pool's roster and resync the schedule plan.

    Raises:
        NotFoundError: unknown pool
        PreconditionError: seeded pool, oversize/duplicate/foreign roster,
            a team already in another pool of the stage, or play started
    """
    notifier = ensure_context(notifier)
    pool = session.get(Pool, pool_id)
    if not pool:
        raise NotFoundError("Pool not found")
    tournament = _load_tournament(session, pool.tournament_id)
    _, stage = _pool_stage(session, tournament, pool.stage_key)
    pool_def = stage.pool(pool.name)
    if pool_def is not None and pool_def.is_seeded:
        raise PreconditionError(f"Pool {pool.name} is filled from earlier placements")

    valid_ids = [t.id for t in _tournament_teams(session, pool.tournament_id)]
    roster = _validate_roster(pool, team_ids, valid_ids)

    siblings = session.exec(
        select(Pool).where(
            Pool.tournament_id == pool.tournament_id,
            Pool.stage_key == pool.stage_key,
            Pool.id != pool.id,
        )
    ).all()
    taken = {tid: other.name for other in siblings for tid in other.team_ids or []}
    clashes = sorted(t for t in roster if t in taken)
    if clashes:
        raise PreconditionError(f"Teams {clashes} are already assigned to another pool")

    if _store_roster(session, pool, roster):
        session.commit()
        session.refresh(pool)
        logger.info("Pool %s (%s) roster set to %s", pool.name, pool.stage_key, roster)
        notifier.emit(ChangeSignal.POOLS_CHANGED, pool.tournament_id, pool_ids=[pool.id], stage_key=pool.stage_key)
        sync_schedule_plan(session, pool.tournament_id, notifier)
        session.refresh(pool)
    return pool


def serpentine_assignments(team_ids: Sequence[int], pool_sizes: Sequence[Tuple[str, int]]) -> Dict[str, List[int]]:
    """
    Snake teams (already in seed order) across pools: A..E, E..A, A..E ...

    Full pools are skipped, so mixed pool sizes fill correctly.
    """
    capacity = {name: size for name, size in pool_sizes}
    assignments: Dict[str, List[int]] = {name: [] for name, _ in pool_sizes}
    forward = [name for name, _ in pool_sizes]
    order: List[str] = []
    direction = forward
    while len(order) < sum(capacity.values()):
        for name in direction:
            if sum(1 for n in order if n == name) < capacity[name]:
                order.append(name)
        direction = list(reversed(direction))
    for team_id, name in zip(team_ids, order):
        assignments[name].append(team_id)
    return assignments


def auto_assign_pools(
    session: Session,
    tournament_id: int,
    stage_key: str,
    notifier: Optional[NotificationContext] = None,
) -> List[Pool]:
    """Serpentine-fill an unseeded pool stage from team seed order (unseeded teams last, by id)."""
    notifier = ensure_context(notifier)
    tournament = _load_tournament(session, tournament_id)
    _, stage = _pool_stage(session, tournament, stage_key)
    if any(p.is_seeded for p in stage.pools):
        raise PreconditionError(f"Stage {stage_key} is filled from earlier placements")

    teams = sorted(
        _tournament_teams(session, tournament_id),
        key=lambda t: (t.seed is None, t.seed if t.seed is not None else 0, t.id),
    )
    capacity = sum(p.size for p in stage.pools)
    if len(teams) > capacity:
        raise PreconditionError(f"Stage {stage_key} holds {capacity} teams, tournament has {len(teams)}")

    pools = instantiate_pools(session, tournament_id, stage_key, notifier)
    plan = serpentine_assignments([t.id for t in teams], [(p.name, p.required_team_count) for p in pools])

    changed = False
    for pool in pools:
        changed = _store_roster(session, pool, plan[pool.name]) or changed
    session.commit()
    for pool in pools:
        session.refresh(pool)

    if changed:
        logger.info("Auto-assigned %d teams across %d pools (%s)", len(teams), len(pools), stage_key)
        notifier.emit(ChangeSignal.POOLS_CHANGED, tournament_id, pool_ids=[p.id for p in pools], stage_key=stage_key)
    sync_schedule_plan(session, tournament_id, notifier)
    for pool in pools:
        session.refresh(pool)
    return pools
