"""
Tournament format registry: read-only stage declarations keyed by format id.

A format is a strictly ordered tuple of stages:

  PoolPlayStage   round-robin pools of 3 or 4 (pools may be seeded from
                  placements in an earlier pool stage)
  CrossoverStage  rank-to-rank pairing between two named pools
  PlayoffStage    one or more brackets seeded from the overall ranking

Bracket shapes are a closed enum. Each BracketDefinition validates its own
size against its shape when it is constructed, so a malformed format fails
at import time rather than halfway through a schedule sync.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from tourney.services.errors import FormatConfigError
from tourney.services.schedule_slots import OVERALL_SOURCE, RankRef

DEFAULT_15_TEAM_FORMAT_ID = "odu_15_5courts_v1"

SUPPORTED_POOL_SIZES = (3, 4)


class BracketShape(str, Enum):
    SINGLE_ELIM = "singleElim"
    SIX_TEAM_BYES = "singleElimWithByes"
    FIVE_TEAM_OPS = "oduFiveTeamOps"


SHAPE_SIZES: Dict[BracketShape, Tuple[int, ...]] = {
    BracketShape.SINGLE_ELIM: (4, 8, 16),
    BracketShape.SIX_TEAM_BYES: (6,),
    BracketShape.FIVE_TEAM_OPS: (5,),
}


@dataclass(frozen=True)
class PoolDefinition:
    name: str
    size: int
    # Roster positions filled from earlier placements, e.g. (A#1, B#2, C#3)
    seeded_from: Tuple[RankRef, ...] = ()

    @property
    def is_seeded(self) -> bool:
        return bool(self.seeded_from)


@dataclass(frozen=True)
class PoolPlayStage:
    key: str
    display_name: str
    pools: Tuple[PoolDefinition, ...]

    def pool(self, name: str) -> Optional[PoolDefinition]:
        for pool in self.pools:
            if pool.name == name:
                return pool
        return None


@dataclass(frozen=True)
class CrossoverStage:
    key: str
    display_name: str
    from_pools: Tuple[str, str]
    pairing: str = "rankToRank"


@dataclass(frozen=True)
class RoundOneRef:
    """Round-one referee drawn from another bracket's seed (ops brackets)."""

    match_no: int
    bracket: str  # bracket key, e.g. "bronze"
    seed: int  # 1-based seed within that bracket


@dataclass(frozen=True)
class BracketDefinition:
    name: str
    shape: BracketShape
    size: int
    seeds_from_overall: Tuple[int, ...]
    round_one_refs: Tuple[RoundOneRef, ...] = ()

    def __post_init__(self):
        if not isinstance(self.shape, BracketShape):
            raise FormatConfigError(f"Unknown bracket shape: {self.shape!r}")
        allowed = SHAPE_SIZES[self.shape]
        if self.size not in allowed:
            raise FormatConfigError(
                f"Bracket {self.name}: shape {self.shape.value} supports sizes {list(allowed)}, got {self.size}"
            )
        if len(self.seeds_from_overall) != self.size:
            raise FormatConfigError(
                f"Bracket {self.name}: expected {self.size} overall seeds, got {len(self.seeds_from_overall)}"
            )
        if len(set(self.seeds_from_overall)) != len(self.seeds_from_overall):
            raise FormatConfigError(f"Bracket {self.name}: duplicate overall seeds")

    @property
    def key(self) -> str:
        return self.name.strip().lower()


@dataclass(frozen=True)
class PlayoffStage:
    key: str
    display_name: str
    brackets: Tuple[BracketDefinition, ...]

    def bracket(self, key: str) -> Optional[BracketDefinition]:
        for bracket in self.brackets:
            if bracket.key == key:
                return bracket
        return None


Stage = Union[PoolPlayStage, CrossoverStage, PlayoffStage]


@dataclass(frozen=True)
class TournamentFormat:
    id: str
    name: str
    description: str
    supported_team_counts: Tuple[int, ...]
    min_courts: int
    stages: Tuple[Stage, ...]
    max_courts: Optional[int] = None

    def stage(self, key: str) -> Optional[Stage]:
        for stage in self.stages:
            if stage.key == key:
                return stage
        return None

    def stage_index(self, key: str) -> int:
        for index, stage in enumerate(self.stages):
            if stage.key == key:
                return index
        raise FormatConfigError(f"Format {self.id} has no stage {key!r}")

    @property
    def pool_stages(self) -> List[PoolPlayStage]:
        return [s for s in self.stages if isinstance(s, PoolPlayStage)]

    @property
    def crossover_stages(self) -> List[CrossoverStage]:
        return [s for s in self.stages if isinstance(s, CrossoverStage)]

    @property
    def playoff_stage(self) -> Optional[PlayoffStage]:
        for stage in self.stages:
            if isinstance(stage, PlayoffStage):
                return stage
        return None

    @property
    def non_playoff_stages(self) -> List[Stage]:
        return [s for s in self.stages if not isinstance(s, PlayoffStage)]

    @property
    def team_count(self) -> int:
        first = self.pool_stages[0] if self.pool_stages else None
        return sum(p.size for p in first.pools) if first else 0

    def stage_for_pool(self, pool_name: str) -> Optional[PoolPlayStage]:
        for stage in self.pool_stages:
            if stage.pool(pool_name) is not None:
                return stage
        return None


# ============================================================================
# Validation
# ============================================================================


def validate_format(fmt: TournamentFormat) -> TournamentFormat:
    """Check stage ordering and cross-stage references. Raises FormatConfigError."""
    if not fmt.stages:
        raise FormatConfigError(f"Format {fmt.id} declares no stages")
    if not isinstance(fmt.stages[0], PoolPlayStage):
        raise FormatConfigError(f"Format {fmt.id}: first stage must be pool play")

    seen_keys = set()
    seen_pools: Dict[str, PoolDefinition] = {}
    playoffs_seen = False
    for stage in fmt.stages:
        if stage.key in seen_keys:
            raise FormatConfigError(f"Format {fmt.id}: duplicate stage key {stage.key!r}")
        seen_keys.add(stage.key)
        if playoffs_seen:
            raise FormatConfigError(f"Format {fmt.id}: playoffs must be the last stage")

        if isinstance(stage, PoolPlayStage):
            stage_pools: Dict[str, PoolDefinition] = {}
            for pool in stage.pools:
                if pool.size not in SUPPORTED_POOL_SIZES:
                    raise FormatConfigError(
                        f"Format {fmt.id}: pool {pool.name} has unsupported size {pool.size}"
                    )
                if pool.name in seen_pools or pool.name in stage_pools:
                    raise FormatConfigError(f"Format {fmt.id}: duplicate pool name {pool.name!r}")
                if pool.seeded_from:
                    if len(pool.seeded_from) != pool.size:
                        raise FormatConfigError(
                            f"Format {fmt.id}: pool {pool.name} seeds {len(pool.seeded_from)} of {pool.size} positions"
                        )
                    for ref in pool.seeded_from:
                        source = seen_pools.get(ref.source)
                        if source is None:
                            raise FormatConfigError(
                                f"Format {fmt.id}: pool {pool.name} seeded from unknown earlier pool {ref.source!r}"
                            )
                        if not 1 <= ref.rank <= source.size:
                            raise FormatConfigError(
                                f"Format {fmt.id}: pool {pool.name} references {ref.source}#{ref.rank} out of range"
                            )
                stage_pools[pool.name] = pool
            seen_pools.update(stage_pools)
        elif isinstance(stage, CrossoverStage):
            if stage.pairing != "rankToRank":
                raise FormatConfigError(f"Format {fmt.id}: unsupported crossover pairing {stage.pairing!r}")
            for name in stage.from_pools:
                if name not in seen_pools:
                    raise FormatConfigError(f"Format {fmt.id}: crossover source pool {name!r} is not declared earlier")
        elif isinstance(stage, PlayoffStage):
            playoffs_seen = True
            total = fmt.team_count
            used = set()
            bracket_keys = {b.key for b in stage.brackets}
            for bracket in stage.brackets:
                for seed in bracket.seeds_from_overall:
                    if not 1 <= seed <= total:
                        raise FormatConfigError(
                            f"Format {fmt.id}: bracket {bracket.name} seed {seed} outside 1..{total}"
                        )
                    if seed in used:
                        raise FormatConfigError(f"Format {fmt.id}: overall seed {seed} used twice")
                    used.add(seed)
                for ref in bracket.round_one_refs:
                    if ref.bracket not in bracket_keys:
                        raise FormatConfigError(
                            f"Format {fmt.id}: bracket {bracket.name} referee from unknown bracket {ref.bracket!r}"
                        )
        else:
            raise FormatConfigError(f"Format {fmt.id}: unknown stage type {type(stage).__name__}")
    return fmt


# ============================================================================
# Built-in formats
# ============================================================================


def _seed_range(start: int, end: int) -> Tuple[int, ...]:
    return tuple(range(start, end + 1))


def _pools(names: str, size: int) -> Tuple[PoolDefinition, ...]:
    return tuple(PoolDefinition(name=n, size=size) for n in names)


def _rotated_pool(name: str, first: str, second: str, third: str) -> PoolDefinition:
    return PoolDefinition(
        name=name,
        size=3,
        seeded_from=(RankRef(first, 1), RankRef(second, 2), RankRef(third, 3)),
    )


_FORMATS: Tuple[TournamentFormat, ...] = (
    TournamentFormat(
        id="classic_12_3x4_gold8_silver4_v1",
        name="12 Teams: 3x4 Pools, Gold 8 + Silver 4",
        description="Three pools of four in Pool Play 1, then Gold 8-team and Silver 4-team single elimination brackets.",
        supported_team_counts=(12,),
        min_courts=3,
        stages=(
            PoolPlayStage("poolPlay1", "Pool Play 1", _pools("ABC", 4)),
            PlayoffStage(
                "playoffs",
                "Playoffs",
                (
                    BracketDefinition("Gold", BracketShape.SINGLE_ELIM, 8, _seed_range(1, 8)),
                    BracketDefinition("Silver", BracketShape.SINGLE_ELIM, 4, _seed_range(9, 12)),
                ),
            ),
        ),
    ),
    TournamentFormat(
        id="classic_14_mixedpools_crossover_gold8_silver6_v1",
        name="14 Teams: Mixed Pools + Crossover, Gold 8 + Silver 6",
        description=(
            "Two 4-team pools and two 3-team pools, rank-to-rank crossover for 3-team pools, "
            "then Gold 8 and Silver 6 playoffs."
        ),
        supported_team_counts=(14,),
        min_courts=3,
        stages=(
            PoolPlayStage("poolPlay1", "Pool Play 1", _pools("AB", 4) + _pools("CD", 3)),
            CrossoverStage("crossover", "Crossover", ("C", "D")),
            PlayoffStage(
                "playoffs",
                "Playoffs",
                (
                    BracketDefinition("Gold", BracketShape.SINGLE_ELIM, 8, _seed_range(1, 8)),
                    BracketDefinition("Silver", BracketShape.SIX_TEAM_BYES, 6, _seed_range(9, 14)),
                ),
            ),
        ),
    ),
    TournamentFormat(
        id=DEFAULT_15_TEAM_FORMAT_ID,
        name="ODU 15-Team Classic",
        description=(
            "Pool Play 1 (A-E), Pool Play 2 (F-J) with rematch balancing, "
            "then Gold/Silver/Bronze 5-team ops brackets."
        ),
        supported_team_counts=(15,),
        min_courts=3,
        stages=(
            PoolPlayStage("poolPlay1", "Pool Play 1", _pools("ABCDE", 3)),
            PoolPlayStage(
                "poolPlay2",
                "Pool Play 2",
                (
                    _rotated_pool("F", "A", "B", "C"),
                    _rotated_pool("G", "B", "C", "D"),
                    _rotated_pool("H", "C", "D", "E"),
                    _rotated_pool("I", "D", "E", "A"),
                    _rotated_pool("J", "E", "A", "B"),
                ),
            ),
            PlayoffStage(
                "playoffs",
                "Playoffs",
                (
                    BracketDefinition(
                        "Gold",
                        BracketShape.FIVE_TEAM_OPS,
                        5,
                        _seed_range(1, 5),
                        round_one_refs=(RoundOneRef(1, "bronze", 1), RoundOneRef(2, "silver", 1)),
                    ),
                    BracketDefinition(
                        "Silver",
                        BracketShape.FIVE_TEAM_OPS,
                        5,
                        _seed_range(6, 10),
                        round_one_refs=(RoundOneRef(1, "bronze", 2), RoundOneRef(2, "gold", 1)),
                    ),
                    BracketDefinition(
                        "Bronze",
                        BracketShape.FIVE_TEAM_OPS,
                        5,
                        _seed_range(11, 15),
                        round_one_refs=(RoundOneRef(1, "bronze", 3),),
                    ),
                ),
            ),
        ),
    ),
    TournamentFormat(
        id="classic_16_4x4_all16_v1",
        name="16 Teams: 4x4 Pools + 16-Team Playoffs",
        description="Four pools of four in Pool Play 1, then all teams advance to a 16-team single elimination bracket.",
        supported_team_counts=(16,),
        min_courts=3,
        stages=(
            PoolPlayStage("poolPlay1", "Pool Play 1", _pools("ABCD", 4)),
            PlayoffStage(
                "playoffs",
                "Playoffs",
                (BracketDefinition("All", BracketShape.SINGLE_ELIM, 16, _seed_range(1, 16)),),
            ),
        ),
    ),
)

FORMATS: Dict[str, TournamentFormat] = {f.id: validate_format(f) for f in _FORMATS}


def list_formats() -> List[TournamentFormat]:
    return list(FORMATS.values())


def get_format(format_id: Optional[str], required: bool = False) -> Optional[TournamentFormat]:
    key = (format_id or "").strip()
    fmt = FORMATS.get(key) if key else None
    if fmt is None and required:
        raise FormatConfigError(f"Unknown tournament format: {format_id!r}")
    return fmt


def suggest_formats(team_count: int, court_count: int) -> List[TournamentFormat]:
    """Formats that support exactly team_count teams on court_count courts."""
    try:
        teams = int(team_count)
        courts = int(court_count)
    except (TypeError, ValueError):
        return []
    if teams <= 0 or courts <= 0:
        return []
    suggestions = []
    for fmt in FORMATS.values():
        if teams not in fmt.supported_team_counts:
            continue
        if courts < fmt.min_courts:
            continue
        if fmt.max_courts is not None and courts > fmt.max_courts:
            continue
        suggestions.append(fmt)
    return suggestions


def resolve_format_for_tournament(format_id: Optional[str], team_count: int) -> Optional[TournamentFormat]:
    """Explicit format id wins; a 15-team field without one gets the default ops format."""
    if format_id:
        return get_format(format_id, required=True)
    if team_count == 15:
        return FORMATS[DEFAULT_15_TEAM_FORMAT_ID]
    return None


def playoff_seed_ref(overall_seed: int) -> RankRef:
    return RankRef(OVERALL_SOURCE, overall_seed)
