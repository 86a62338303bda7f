"""
Round-robin templates for pools of 3 and 4.

Templates carry 0-based roster positions; callers bind positions to team
ids. Order is fixed so previews and test fixtures are reproducible.

Pool of 3: every team plays twice and referees once, no byes.
Pool of 4: every team plays three times and is idle three times, refereeing
at least once; each match's referee and bye are the two teams not playing.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from tourney.services.errors import FormatConfigError


@dataclass(frozen=True)
class MatchTemplate:
    match_index: int  # 0-based play order within the pool
    left: int
    right: int
    ref: int
    bye: Optional[int] = None


@dataclass(frozen=True)
class BoundPoolMatch:
    match_index: int
    team_a: int
    team_b: int
    ref: int
    bye: Optional[int] = None


# (left, right, ref, bye)
_TEMPLATES: Dict[int, Tuple[Tuple[int, int, int, Optional[int]], ...]] = {
    3: (
        (0, 2, 1, None),
        (1, 2, 0, None),
        (0, 1, 2, None),
    ),
    4: (
        (0, 2, 1, 3),
        (1, 3, 0, 2),
        (0, 3, 2, 1),
        (1, 2, 0, 3),
        (2, 3, 1, 0),
        (0, 1, 3, 2),
    ),
}

SUPPORTED_POOL_SIZES = tuple(sorted(_TEMPLATES))


def round_robin_match_count(pool_size: int) -> int:
    return pool_size * (pool_size - 1) // 2


def generate_round_robin(
    pool_size: int, team_order: Optional[Sequence[int]] = None
) -> Union[List[MatchTemplate], List[BoundPoolMatch]]:
    """
    Fixed round-robin order for a pool.

    Args:
        pool_size: 3 or 4
        team_order: optional roster (team ids in pool order); when given,
            positions are bound to these ids

    Returns:
        MatchTemplate list (positions) or BoundPoolMatch list (team ids)

    Raises:
        FormatConfigError: unsupported size, or roster length mismatch
    """
    try:
        rows = _TEMPLATES[pool_size]
    except (KeyError, TypeError):
        raise FormatConfigError(
            "Round robin generation currently supports pool sizes 3 and 4."
        ) from None

    templates = [
        MatchTemplate(match_index=i, left=left, right=right, ref=ref, bye=bye)
        for i, (left, right, ref, bye) in enumerate(rows)
    ]
    if team_order is None:
        return templates

    roster = list(team_order)
    if len(roster) != pool_size:
        raise FormatConfigError(f"Pool requires {pool_size} teams but received {len(roster)}.")
    if len(set(roster)) != len(roster):
        raise FormatConfigError("Pool roster contains duplicate teams.")

    return [
        BoundPoolMatch(
            match_index=t.match_index,
            team_a=roster[t.left],
            team_b=roster[t.right],
            ref=roster[t.ref],
            bye=roster[t.bye] if t.bye is not None else None,
        )
        for t in templates
    ]


@dataclass(frozen=True)
class PoolCourtPlan:
    pool_name: str
    home_court: Optional[str]
    match_count: int


def schedule_pool_matches(
    pools: Sequence[PoolCourtPlan],
    start_round_block: int = 1,
) -> Dict[str, List[Tuple[int, Optional[str]]]]:
    """
    Assign (round_block, court) to each pool match.

    Pools on distinct home courts play in parallel: match i of every pool is
    in block start + i. Pools sharing a court play back to back on it, in
    declaration order.

    Returns:
        {pool_name: [(round_block, court), ...]} indexed by match_index
    """
    courts = [p.home_court for p in pools]
    distinct = len(set(courts)) == len(courts) and None not in courts

    schedule: Dict[str, List[Tuple[int, Optional[str]]]] = {}
    if distinct:
        for pool in pools:
            schedule[pool.pool_name] = [
                (start_round_block + i, pool.home_court) for i in range(pool.match_count)
            ]
        return schedule

    cursor: Dict[Optional[str], int] = defaultdict(lambda: start_round_block)
    for pool in pools:
        block = cursor[pool.home_court]
        schedule[pool.pool_name] = [(block + i, pool.home_court) for i in range(pool.match_count)]
        cursor[pool.home_court] = block + pool.match_count
    return schedule
