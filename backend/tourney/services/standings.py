"""
Standings engine.

Ranks teams from finalized results only. Ordering:

  1. matches won (desc), matches lost (asc), set percentage (desc,
     compared by cross-multiplication), point differential (desc)
  2. runs of exactly equal primary keys are tie-broken:
       - a two-team run is decided by head-to-head when one side has
         strictly more wins in their meetings
       - a run fully covered by the administrator override follows the
         override's relative order
       - otherwise identity order (short name or name, then id)
  3. dense 1-based ranks

compute_standings() is pure. The loaders below it read a tournament's
pools/matches and apply the stored override for the requested scope.
"""
import logging
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from tourney.models.match import Match, MatchStatus
from tourney.models.pool import Pool
from tourney.models.team import Team
from tourney.models.tournament import Tournament
from tourney.services.errors import NotFoundError, PreconditionError
from tourney.services.match_result import MatchResult

logger = logging.getLogger(__name__)

CUMULATIVE_SCOPE = "cumulative"


@dataclass(frozen=True)
class TeamInfo:
    team_id: int
    name: str
    short_name: Optional[str] = None
    seed: Optional[int] = None

    @property
    def identity_key(self) -> Tuple[str, int]:
        return ((self.short_name or self.name or "").strip().casefold(), self.team_id)


@dataclass(frozen=True)
class FinalizedMatch:
    team_a_id: int
    team_b_id: int
    result: MatchResult


@dataclass
class StandingsEntry:
    team_id: int
    name: str
    short_name: Optional[str] = None
    seed: Optional[int] = None
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    sets_played: int = 0
    points_for: int = 0
    points_against: int = 0
    rank: int = 0

    @property
    def set_pct(self) -> float:
        return round(self.sets_won / max(self.sets_played, 1), 4)

    @property
    def point_diff(self) -> int:
        return self.points_for - self.points_against

    @property
    def identity_key(self) -> Tuple[str, int]:
        return ((self.short_name or self.name or "").strip().casefold(), self.team_id)

    def to_json(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "name": self.name,
            "short_name": self.short_name,
            "seed": self.seed,
            "rank": self.rank,
            "matches_played": self.matches_played,
            "matches_won": self.matches_won,
            "matches_lost": self.matches_lost,
            "sets_won": self.sets_won,
            "sets_lost": self.sets_lost,
            "sets_played": self.sets_played,
            "set_pct": self.set_pct,
            "points_for": self.points_for,
            "points_against": self.points_against,
            "point_diff": self.point_diff,
        }


# ============================================================================
# Pure computation
# ============================================================================


def _compare_primary(a: StandingsEntry, b: StandingsEntry) -> int:
    """Negative when a ranks ahead of b."""
    if a.matches_won != b.matches_won:
        return b.matches_won - a.matches_won
    if a.matches_lost != b.matches_lost:
        return a.matches_lost - b.matches_lost
    left = a.sets_won * max(b.sets_played, 1)
    right = b.sets_won * max(a.sets_played, 1)
    if left != right:
        return right - left
    if a.point_diff != b.point_diff:
        return b.point_diff - a.point_diff
    return 0


def _compare_with_identity(a: StandingsEntry, b: StandingsEntry) -> int:
    primary = _compare_primary(a, b)
    if primary:
        return primary
    if a.identity_key < b.identity_key:
        return -1
    if a.identity_key > b.identity_key:
        return 1
    return 0


def _head_to_head_wins(matches: Sequence[FinalizedMatch], team_id: int, opponent_id: int) -> int:
    wins = 0
    for m in matches:
        if {m.team_a_id, m.team_b_id} == {team_id, opponent_id} and m.result.winner_team_id == team_id:
            wins += 1
    return wins


def _resolve_run(
    run: List[StandingsEntry],
    matches: Sequence[FinalizedMatch],
    override_index: Optional[Dict[int, int]],
) -> List[StandingsEntry]:
    ordered = list(run)
    if len(ordered) == 2:
        first, second = ordered
        first_wins = _head_to_head_wins(matches, first.team_id, second.team_id)
        second_wins = _head_to_head_wins(matches, second.team_id, first.team_id)
        if second_wins > first_wins:
            ordered = [second, first]

    # The administrator's explicit order has the last word
    if override_index and len(ordered) > 1 and all(e.team_id in override_index for e in ordered):
        ordered.sort(key=lambda e: override_index[e.team_id])

    return ordered


def _override_index(override: Optional[Sequence[int]]) -> Optional[Dict[int, int]]:
    if not override:
        return None
    ids = [int(x) for x in override]
    if len(set(ids)) != len(ids):
        logger.warning("Ignoring standings override with duplicate team ids: %s", ids)
        return None
    return {team_id: position for position, team_id in enumerate(ids)}


def compute_standings(
    teams: Iterable[TeamInfo],
    matches: Iterable[FinalizedMatch],
    override: Optional[Sequence[int]] = None,
) -> List[StandingsEntry]:
    """
    Rank the given teams from finalized matches.

    Matches involving a team outside the scope are ignored, so the caller
    can pass a superset (e.g. every final match of a tournament) when
    ranking one pool.

    Returns:
        StandingsEntry list in final order with dense 1-based ranks
    """
    entries: Dict[int, StandingsEntry] = {}
    for team in teams:
        entries[team.team_id] = StandingsEntry(
            team_id=team.team_id,
            name=team.name,
            short_name=team.short_name,
            seed=team.seed,
        )

    in_scope: List[FinalizedMatch] = []
    for m in matches:
        if m.result is None:
            continue
        a = entries.get(m.team_a_id)
        b = entries.get(m.team_b_id)
        if a is None or b is None:
            continue
        in_scope.append(m)
        r = m.result
        a.matches_played += 1
        b.matches_played += 1
        if r.winner_team_id == m.team_a_id:
            a.matches_won += 1
            b.matches_lost += 1
        else:
            b.matches_won += 1
            a.matches_lost += 1
        a.sets_won += r.sets_won_a
        a.sets_lost += r.sets_won_b
        b.sets_won += r.sets_won_b
        b.sets_lost += r.sets_won_a
        a.sets_played += r.sets_played
        b.sets_played += r.sets_played
        a.points_for += r.points_for_a
        a.points_against += r.points_against_a
        b.points_for += r.points_for_b
        b.points_against += r.points_against_b

    ordered = sorted(entries.values(), key=cmp_to_key(_compare_with_identity))
    override_index = _override_index(override)

    final_order: List[StandingsEntry] = []
    i = 0
    while i < len(ordered):
        j = i + 1
        while j < len(ordered) and _compare_primary(ordered[i], ordered[j]) == 0:
            j += 1
        final_order.extend(_resolve_run(ordered[i:j], in_scope, override_index))
        i = j

    for rank, entry in enumerate(final_order, start=1):
        entry.rank = rank
    return final_order


def validate_override(order: Sequence[int], team_ids: Sequence[int]) -> List[int]:
    """Override must be a permutation of exactly the scope's team ids."""
    ids = [int(x) for x in order]
    expected = set(int(x) for x in team_ids)
    if len(ids) != len(expected):
        raise PreconditionError(f"Override must list exactly {len(expected)} teams")
    if len(set(ids)) != len(ids):
        raise PreconditionError("Override contains duplicate teams")
    unknown = [x for x in ids if x not in expected]
    if unknown:
        raise PreconditionError(f"Override references teams outside the scope: {unknown}")
    return ids


# ============================================================================
# Session loaders
# ============================================================================


@dataclass
class PoolStandings:
    pool_id: int
    pool_name: str
    stage_key: str
    is_complete: bool
    entries: List[StandingsEntry]


def team_infos(session: Session, tournament_id: int) -> Dict[int, TeamInfo]:
    teams = session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all()
    return {t.id: TeamInfo(team_id=t.id, name=t.name, short_name=t.short_name, seed=t.seed) for t in teams}


def finalized_views(matches: Iterable[Match]) -> List[FinalizedMatch]:
    views: List[FinalizedMatch] = []
    for m in matches:
        if m.status != MatchStatus.FINAL.value or m.team_a_id is None or m.team_b_id is None:
            continue
        result = MatchResult.from_json(m.result_json)
        if result is None:
            continue
        views.append(FinalizedMatch(team_a_id=m.team_a_id, team_b_id=m.team_b_id, result=result))
    return views


def _overrides(tournament: Tournament) -> Dict[str, Any]:
    return tournament.standings_overrides or {}


def pool_override(tournament: Tournament, stage_key: str, pool_name: str) -> Optional[List[int]]:
    return (_overrides(tournament).get(stage_key) or {}).get("pools", {}).get(pool_name)


def overall_override(tournament: Tournament, scope_key: str) -> Optional[List[int]]:
    return (_overrides(tournament).get(scope_key) or {}).get("overall")


def standings_for_pool(
    pool: Pool,
    teams: Dict[int, TeamInfo],
    matches: Sequence[Match],
    tournament: Tournament,
) -> PoolStandings:
    pool_matches = [m for m in matches if m.pool_id == pool.id]
    roster = [teams[tid] for tid in pool.team_ids or [] if tid in teams]
    expected = len(roster) * (len(roster) - 1) // 2
    finals = [m for m in pool_matches if m.status == MatchStatus.FINAL.value]
    entries = compute_standings(
        roster,
        finalized_views(pool_matches),
        override=pool_override(tournament, pool.stage_key, pool.name),
    )
    return PoolStandings(
        pool_id=pool.id,
        pool_name=pool.name,
        stage_key=pool.stage_key,
        is_complete=pool.is_full and len(pool_matches) >= expected and len(finals) == len(pool_matches),
        entries=entries,
    )


def _load_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError("Tournament not found")
    return tournament


def compute_pool_standings(session: Session, tournament_id: int, stage_key: str) -> List[PoolStandings]:
    tournament = _load_tournament(session, tournament_id)
    teams = team_infos(session, tournament_id)
    pools = session.exec(
        select(Pool).where(Pool.tournament_id == tournament_id, Pool.stage_key == stage_key).order_by(Pool.name)
    ).all()
    matches = session.exec(
        select(Match).where(Match.tournament_id == tournament_id, Match.stage_key == stage_key)
    ).all()
    return [standings_for_pool(pool, teams, matches, tournament) for pool in pools]


def compute_overall_standings(session: Session, tournament_id: int, stage_key: str) -> List[StandingsEntry]:
    """Overall ranking of the teams rostered in one pool stage, from that stage's matches."""
    tournament = _load_tournament(session, tournament_id)
    teams = team_infos(session, tournament_id)
    pools = session.exec(
        select(Pool).where(Pool.tournament_id == tournament_id, Pool.stage_key == stage_key)
    ).all()
    roster_ids = {tid for pool in pools for tid in pool.team_ids or []}
    matches = session.exec(
        select(Match).where(Match.tournament_id == tournament_id, Match.stage_key == stage_key)
    ).all()
    return compute_standings(
        [teams[tid] for tid in sorted(roster_ids) if tid in teams],
        finalized_views(matches),
        override=overall_override(tournament, stage_key),
    )


def compute_cumulative_standings(
    session: Session,
    tournament_id: int,
    exclude_stage_keys: Sequence[str] = ("playoffs",),
) -> List[StandingsEntry]:
    """Every team, every final non-playoff match. Seeds the playoff brackets."""
    tournament = _load_tournament(session, tournament_id)
    teams = team_infos(session, tournament_id)
    matches = session.exec(select(Match).where(Match.tournament_id == tournament_id)).all()
    scoped = [m for m in matches if m.stage_key not in exclude_stage_keys]
    return compute_standings(
        list(teams.values()),
        finalized_views(scoped),
        override=overall_override(tournament, CUMULATIVE_SCOPE),
    )


def set_standings_overrides(
    session: Session,
    tournament_id: int,
    scope_key: str,
    order: Sequence[int],
    pool_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Store an override permutation for a pool, a stage's overall ranking, or
    the cumulative ranking (scope_key="cumulative"). An empty order clears it.

    Raises:
        NotFoundError: unknown tournament or pool
        PreconditionError: order is not a permutation of the scope's teams
    """
    tournament = _load_tournament(session, tournament_id)

    if pool_name is not None:
        pool = session.exec(
            select(Pool).where(
                Pool.tournament_id == tournament_id,
                Pool.stage_key == scope_key,
                Pool.name == pool_name,
            )
        ).first()
        if not pool:
            raise NotFoundError(f"Pool {pool_name} not found in stage {scope_key}")
        scope_team_ids = list(pool.team_ids or [])
    elif scope_key == CUMULATIVE_SCOPE:
        scope_team_ids = list(team_infos(session, tournament_id))
    else:
        pools = session.exec(
            select(Pool).where(Pool.tournament_id == tournament_id, Pool.stage_key == scope_key)
        ).all()
        scope_team_ids = [tid for pool in pools for tid in pool.team_ids or []]

    ids = validate_override(order, scope_team_ids) if order else []

    # Reassign a fresh dict so the JSON column is flagged dirty
    overrides: Dict[str, Any] = {k: dict(v) for k, v in _overrides(tournament).items()}
    scope = overrides.setdefault(scope_key, {})
    if pool_name is not None:
        pools_map = dict(scope.get("pools") or {})
        if ids:
            pools_map[pool_name] = ids
        else:
            pools_map.pop(pool_name, None)
        scope["pools"] = pools_map
    elif ids:
        scope["overall"] = ids
    else:
        scope.pop("overall", None)

    tournament.standings_overrides = overrides
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    logger.info(
        "Stored standings override tournament=%s scope=%s pool=%s teams=%d",
        tournament_id,
        scope_key,
        pool_name,
        len(ids),
    )
    return tournament.standings_overrides or {}
