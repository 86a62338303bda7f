"""
Playoff bracket plans and the match dependency graph.

build_bracket_plan() is a pure structural function over the closed set of
bracket shapes:

  SINGLE_ELIM    4/8/16 teams, standard seeding, winners pair off per round
  SIX_TEAM_BYES  4v5 and 3v6 first; seeds 1 and 2 enter in round 2
  FIVE_TEAM_OPS  4v5 and 2v3 first; seed 1 meets W(4v5) in round 2; the
                 final is W(round 2) vs W(2v3), skipping round 2

Nodes are transient. Once a bracket is persisted as Match rows the source
links on those rows form a BracketGraph, which propagation and cascade
invalidation both walk.
"""
import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from tourney.models.match import ROLE_LOSER, ROLE_WINNER
from tourney.services.errors import FormatConfigError
from tourney.services.format_registry import SHAPE_SIZES, BracketDefinition, BracketShape

logger = logging.getLogger(__name__)

SIDE_A = "a"
SIDE_B = "b"
SIDE_REF = "ref"


@dataclass(frozen=True)
class NodeRef:
    round: int
    match_no: int


@dataclass(frozen=True)
class BracketPlanNode:
    bracket: str  # bracket key, e.g. "gold"
    round: int
    match_no: int
    seed_a: Optional[int] = None
    seed_b: Optional[int] = None
    from_a: Optional[NodeRef] = None
    from_b: Optional[NodeRef] = None
    from_a_role: str = ROLE_WINNER
    from_b_role: str = ROLE_WINNER
    ref_from: Optional[NodeRef] = None
    ref_from_role: str = ROLE_LOSER
    # Round-one referee taken from a (bracket key, bracket seed) position
    ref_seed: Optional[Tuple[str, int]] = None

    @property
    def ref(self) -> NodeRef:
        return NodeRef(self.round, self.match_no)

    @property
    def match_key(self) -> str:
        return node_key(self.bracket, self.round, self.match_no)


def node_key(bracket: str, round_no: int, match_no: int) -> str:
    return f"{bracket}:R{round_no}:M{match_no}"


# ============================================================================
# Shapes
# ============================================================================

STANDARD_ROUND_ONE_PAIRS: Dict[int, Tuple[Tuple[int, int], ...]] = {
    4: ((1, 4), (2, 3)),
    8: ((1, 8), (4, 5), (3, 6), (2, 7)),
    16: ((1, 16), (8, 9), (5, 12), (4, 13), (3, 14), (6, 11), (7, 10), (2, 15)),
}


def _single_elim(definition: BracketDefinition) -> List[BracketPlanNode]:
    pairs = STANDARD_ROUND_ONE_PAIRS.get(definition.size)
    if pairs is None:
        raise FormatConfigError(f"Single elimination supports sizes 4, 8 and 16, got {definition.size}")

    key = definition.key
    nodes = [
        BracketPlanNode(bracket=key, round=1, match_no=i, seed_a=a, seed_b=b)
        for i, (a, b) in enumerate(pairs, start=1)
    ]
    round_no = 1
    in_round = len(pairs)
    while in_round > 1:
        round_no += 1
        in_round //= 2
        for k in range(in_round):
            nodes.append(
                BracketPlanNode(
                    bracket=key,
                    round=round_no,
                    match_no=k + 1,
                    from_a=NodeRef(round_no - 1, 2 * k + 1),
                    from_b=NodeRef(round_no - 1, 2 * k + 2),
                )
            )
    return nodes


def _six_team_byes(definition: BracketDefinition) -> List[BracketPlanNode]:
    key = definition.key
    return [
        BracketPlanNode(bracket=key, round=1, match_no=1, seed_a=4, seed_b=5),
        BracketPlanNode(bracket=key, round=1, match_no=2, seed_a=3, seed_b=6),
        BracketPlanNode(bracket=key, round=2, match_no=1, seed_a=1, from_b=NodeRef(1, 1)),
        BracketPlanNode(bracket=key, round=2, match_no=2, seed_a=2, from_b=NodeRef(1, 2)),
        BracketPlanNode(bracket=key, round=3, match_no=1, from_a=NodeRef(2, 1), from_b=NodeRef(2, 2)),
    ]


def _five_team_ops(definition: BracketDefinition) -> List[BracketPlanNode]:
    key = definition.key
    refs = {r.match_no: (r.bracket, r.seed) for r in definition.round_one_refs}
    # Without a cross-bracket ref, the loser of 4v5 referees 2v3
    m2_ref_from = None if 2 in refs else NodeRef(1, 1)
    return [
        BracketPlanNode(bracket=key, round=1, match_no=1, seed_a=4, seed_b=5, ref_seed=refs.get(1)),
        BracketPlanNode(
            bracket=key, round=1, match_no=2, seed_a=2, seed_b=3, ref_seed=refs.get(2), ref_from=m2_ref_from
        ),
        BracketPlanNode(bracket=key, round=2, match_no=1, seed_a=1, from_b=NodeRef(1, 1), ref_from=NodeRef(1, 2)),
        BracketPlanNode(
            bracket=key,
            round=3,
            match_no=1,
            from_a=NodeRef(2, 1),
            from_b=NodeRef(1, 2),
            ref_from=NodeRef(2, 1),
        ),
    ]


_BUILDERS: Dict[BracketShape, Callable[[BracketDefinition], List[BracketPlanNode]]] = {
    BracketShape.SINGLE_ELIM: _single_elim,
    BracketShape.SIX_TEAM_BYES: _six_team_byes,
    BracketShape.FIVE_TEAM_OPS: _five_team_ops,
}

_missing = set(BracketShape) - set(_BUILDERS)
if _missing:
    raise FormatConfigError(f"No bracket builder for shapes: {sorted(s.value for s in _missing)}")


def build_bracket_plan(definition: BracketDefinition) -> List[BracketPlanNode]:
    """
    Abstract match graph for one bracket, ordered by (round, match_no).

    Raises:
        FormatConfigError: shape unknown or size unsupported for the shape
    """
    builder = _BUILDERS.get(definition.shape)
    if builder is None:
        raise FormatConfigError(f"Unknown bracket shape: {definition.shape!r}")
    if definition.size not in SHAPE_SIZES[definition.shape]:
        raise FormatConfigError(f"Bracket {definition.name}: unsupported size {definition.size}")
    nodes = builder(definition)
    return sorted(nodes, key=lambda n: (n.round, n.match_no))


def resolve_bracket_seeds(definition: BracketDefinition, overall_ranking: Sequence[int]) -> Dict[int, int]:
    """Map bracket seed (1-based) to team id from the overall ranking."""
    seeds: Dict[int, int] = {}
    for bracket_seed, overall_seed in enumerate(definition.seeds_from_overall, start=1):
        if overall_seed - 1 < len(overall_ranking):
            seeds[bracket_seed] = overall_ranking[overall_seed - 1]
    return seeds


# ============================================================================
# Ops scheduling
# ============================================================================


def schedule_playoff_nodes(
    brackets: Sequence[Sequence[BracketPlanNode]],
    courts: Sequence[str],
    start_round_block: int,
    max_concurrent_courts: Optional[int] = None,
) -> Dict[str, Tuple[int, str]]:
    """
    Assign (round_block, court) to every node.

    Rounds go in ascending order. Within a round, nodes are ordered by
    bracket declaration order then match key, and cut into chunks as wide
    as the court count; each chunk takes the next round block and chunk
    position i plays on courts[i].

    Raises:
        FormatConfigError: no courts available
    """
    width = len(courts)
    if max_concurrent_courts:
        width = min(width, max_concurrent_courts)
    if width <= 0:
        raise FormatConfigError("At least one active court is required for playoff scheduling.")

    by_round: Dict[int, List[Tuple[int, BracketPlanNode]]] = defaultdict(list)
    for bracket_index, nodes in enumerate(brackets):
        for node in nodes:
            by_round[node.round].append((bracket_index, node))

    schedule: Dict[str, Tuple[int, str]] = {}
    block = start_round_block
    for round_no in sorted(by_round):
        ordered = [n for _, n in sorted(by_round[round_no], key=lambda item: (item[0], item[1].match_key))]
        for offset in range(0, len(ordered), width):
            for i, node in enumerate(ordered[offset:offset + width]):
                schedule[node.match_key] = (block, courts[i])
            block += 1
    return schedule


# ============================================================================
# Dependency graph over persisted matches
# ============================================================================


@dataclass(frozen=True)
class DependencyEdge:
    source_match_id: int
    target_match_id: int
    side: str  # "a" | "b" | "ref"
    role: str  # "WINNER" | "LOSER"


class BracketGraph:
    """Adjacency list: source match id -> edges to the matches it feeds."""

    def __init__(self, edges: Iterable[DependencyEdge] = ()):
        self._by_source: Dict[int, List[DependencyEdge]] = defaultdict(list)
        for edge in edges:
            self.add(edge)

    def add(self, edge: DependencyEdge) -> None:
        self._by_source[edge.source_match_id].append(edge)

    @classmethod
    def from_matches(cls, matches: Iterable) -> "BracketGraph":
        edges: List[DependencyEdge] = []
        for m in sorted(matches, key=lambda x: x.id):
            for side, source_id, role in (
                (SIDE_A, m.source_match_a_id, m.source_a_role),
                (SIDE_B, m.source_match_b_id, m.source_b_role),
                (SIDE_REF, m.source_match_ref_id, m.source_ref_role),
            ):
                if source_id is not None:
                    edges.append(DependencyEdge(source_id, m.id, side, role or ROLE_WINNER))
        return cls(edges)

    def dependents(self, match_id: int) -> List[DependencyEdge]:
        return list(self._by_source.get(match_id, ()))

    def descendants(self, match_id: int) -> List[int]:
        """Every match reachable from match_id, breadth-first, each once."""
        seen = {match_id}
        order: List[int] = []
        queue = deque([match_id])
        while queue:
            current = queue.popleft()
            for edge in self._by_source.get(current, ()):
                if edge.target_match_id not in seen:
                    seen.add(edge.target_match_id)
                    order.append(edge.target_match_id)
                    queue.append(edge.target_match_id)
        return order

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_source.values())
