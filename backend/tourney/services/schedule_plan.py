"""
Schedule plan synchronizer.

sync_schedule_plan() recomputes a tournament's full slot set from its
format and current pool/match state, then reconciles it with storage:

  1. structure   pool-play slots (round-robin templates, home courts),
                 crossover slots (rank-to-rank), playoff slots (bracket
                 plans, court-chunked), and the lunch break
  2. resolve     a rank placeholder becomes a team only once its source
                 pool (or, for "overall", every non-playoff stage) is
                 completely final
  3. link        slots that already have a match follow it; unstarted
                 matches follow the slot
  4. materialize one match per newly resolved slot; playoff brackets are
                 created whole once their seeds resolve so feeder links
                 exist before any result is entered
  5. persist     only when the canonical plan differs from the stored one

Running it twice with no state change in between creates nothing and
reports unchanged.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from tourney.models.match import Match, MatchStatus
from tourney.models.pool import Pool
from tourney.models.scoreboard import TBD_LABEL, Scoreboard
from tourney.models.tournament import Tournament
from tourney.services.bracket_plan import (
    BracketPlanNode,
    build_bracket_plan,
    node_key,
    schedule_playoff_nodes,
)
from tourney.services.errors import NotFoundError
from tourney.services.format_registry import (
    BracketDefinition,
    CrossoverStage,
    PlayoffStage,
    PoolDefinition,
    PoolPlayStage,
    TournamentFormat,
    playoff_seed_ref,
    resolve_format_for_tournament,
)
from tourney.services.materialization import MatchSpec, discard_pool_matches, materialize_matches
from tourney.services.notifications import ChangeSignal, NotificationContext, ensure_context
from tourney.services.round_robin import (
    PoolCourtPlan,
    generate_round_robin,
    round_robin_match_count,
    schedule_pool_matches,
)
from tourney.services.schedule_slots import (
    KIND_LUNCH,
    LUNCH_SLOT_ID,
    LUNCH_STAGE_KEY,
    OVERALL_SOURCE,
    OutcomeRef,
    Participant,
    RankRef,
    Slot,
    TeamRef,
    canonical_plan,
    crossover_slot_id,
    format_ref_label,
    parse_clock_time_to_minutes,
    plan_document,
    playoff_slot_id,
    pool_slot_id,
    resolve_round_block_start_minutes,
    slots_from_document,
    team_id_of,
)
from tourney.services.standings import (
    CUMULATIVE_SCOPE,
    compute_standings,
    finalized_views,
    overall_override,
    standings_for_pool,
    team_infos,
)
from tourney.utils.courts import active_courts, home_court_for_index

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    slots: List[Slot]
    created_match_ids: List[int] = field(default_factory=list)
    schedule_changed: bool = False
    pools_changed: bool = False


@dataclass
class _Planned:
    """A computed slot plus what materialization needs to know about it."""

    slot: Slot
    title: str
    pool: Optional[Pool] = None
    node: Optional[BracketPlanNode] = None
    definition: Optional[BracketDefinition] = None


# ============================================================================
# Snapshot
# ============================================================================


class _PlanState:
    """Tournament state read once at the start of a sync."""

    def __init__(self, session: Session, tournament: Tournament, fmt: Optional[TournamentFormat]):
        self.session = session
        self.tournament = tournament
        self.fmt = fmt
        self.courts = active_courts(tournament.court_names)
        self.teams = team_infos(session, tournament.id)
        self.pools: Dict[Tuple[str, str], Pool] = {
            (p.stage_key, p.name): p
            for p in session.exec(select(Pool).where(Pool.tournament_id == tournament.id)).all()
        }
        self.matches: List[Match] = list(
            session.exec(select(Match).where(Match.tournament_id == tournament.id).order_by(Match.id)).all()
        )
        self.pools_changed = False
        self._rankings: Dict[str, List[int]] = {}

    @property
    def matches_by_slot(self) -> Dict[str, Match]:
        return {m.planned_slot_id: m for m in self.matches if m.planned_slot_id}

    def pool_named(self, name: str) -> Optional[Pool]:
        stage = self.fmt.stage_for_pool(name) if self.fmt else None
        return self.pools.get((stage.key, name)) if stage else None

    def pool_matches(self, pool: Pool) -> List[Match]:
        return [m for m in self.matches if m.pool_id == pool.id]

    def forget_matches(self, pool: Pool) -> None:
        self.matches = [m for m in self.matches if m.pool_id != pool.id]

    # Completion -------------------------------------------------------

    def pool_complete(self, name: str) -> bool:
        pool = self.pool_named(name)
        if pool is None or not pool.is_full:
            return False
        matches = self.pool_matches(pool)
        if len(matches) < round_robin_match_count(pool.required_team_count):
            return False
        return all(m.status == MatchStatus.FINAL.value for m in matches)

    def crossover_complete(self, stage: CrossoverStage) -> bool:
        expected = _crossover_pairing_count(self.fmt, stage)
        matches = [m for m in self.matches if m.stage_key == stage.key]
        if len(matches) < expected:
            return False
        return all(m.status == MatchStatus.FINAL.value for m in matches)

    def stage_complete(self, stage) -> bool:
        if isinstance(stage, PoolPlayStage):
            return all(self.pool_complete(p.name) for p in stage.pools)
        if isinstance(stage, CrossoverStage):
            return self.crossover_complete(stage)
        return False

    def source_ready(self, source: str) -> bool:
        if source == OVERALL_SOURCE:
            return all(self.stage_complete(s) for s in self.fmt.non_playoff_stages)
        return self.pool_complete(source)

    # Resolution -------------------------------------------------------

    def ranking(self, source: str) -> List[int]:
        if source not in self._rankings:
            if source == OVERALL_SOURCE:
                playoff = self.fmt.playoff_stage
                scoped = [m for m in self.matches if playoff is None or m.stage_key != playoff.key]
                entries = compute_standings(
                    list(self.teams.values()),
                    finalized_views(scoped),
                    override=overall_override(self.tournament, CUMULATIVE_SCOPE),
                )
            else:
                pool = self.pool_named(source)
                entries = standings_for_pool(pool, self.teams, self.matches, self.tournament).entries
            self._rankings[source] = [e.team_id for e in entries]
        return self._rankings[source]

    def resolve(self, ref: RankRef) -> Participant:
        if not self.source_ready(ref.source):
            return ref
        ranking = self.ranking(ref.source)
        if not 1 <= ref.rank <= len(ranking):
            logger.warning("Rank reference %s#%d outside ranking of %d", ref.source, ref.rank, len(ranking))
            return ref
        return TeamRef(team_id=ranking[ref.rank - 1], origin=ref)

    def team_name(self, team_id: Optional[int]) -> str:
        info = self.teams.get(team_id) if team_id is not None else None
        return (info.short_name or info.name) if info else TBD_LABEL


def _crossover_pairing_count(fmt: TournamentFormat, stage: CrossoverStage) -> int:
    left, right = (fmt.stage_for_pool(n).pool(n) for n in stage.from_pools)
    return min(left.size, right.size)


def _ensure_pools(state: _PlanState) -> None:
    """Create pool rows a format declares but the tournament does not have yet."""
    for stage in state.fmt.pool_stages:
        for index, pool_def in enumerate(stage.pools):
            if (stage.key, pool_def.name) in state.pools:
                continue
            pool = Pool(
                tournament_id=state.tournament.id,
                stage_key=stage.key,
                name=pool_def.name,
                required_team_count=pool_def.size,
                home_court=home_court_for_index(state.courts, index),
                team_ids=[],
            )
            state.session.add(pool)
            state.session.flush()
            state.pools[(stage.key, pool_def.name)] = pool
            state.pools_changed = True


# ============================================================================
# Structure
# ============================================================================


def _pool_positions(state: _PlanState, pool_def: PoolDefinition, pool: Pool) -> Optional[List[Participant]]:
    """Participant reference for each roster position, or None when the pool has no slots yet."""
    if not pool_def.is_seeded:
        if not pool.is_full:
            return None
        return [TeamRef(team_id=tid) for tid in pool.team_ids]

    positions = [state.resolve(ref) for ref in pool_def.seeded_from]
    if all(isinstance(p, TeamRef) for p in positions):
        roster = [p.team_id for p in positions]
        if list(pool.team_ids or []) != roster:
            started = [m for m in state.pool_matches(pool) if m.status != MatchStatus.SCHEDULED.value]
            if started:
                logger.warning(
                    "Pool %s placements changed after play started; keeping roster %s", pool.name, pool.team_ids
                )
            else:
                discard_pool_matches(state.session, pool)
                state.forget_matches(pool)
                pool.team_ids = roster
                state.session.add(pool)
                state.pools_changed = True
    return positions


def _pool_stage_slots(
    state: _PlanState, stage: PoolPlayStage, start_block: int, last_blocks: Dict[str, int]
) -> List[_Planned]:
    plans = []
    for pool_def in stage.pools:
        pool = state.pools[(stage.key, pool_def.name)]
        plans.append(PoolCourtPlan(pool_def.name, pool.home_court, round_robin_match_count(pool_def.size)))
    blocks = schedule_pool_matches(plans, start_block)
    for pool_name, assigned in blocks.items():
        last_blocks[pool_name] = max(b for b, _ in assigned)

    planned: List[_Planned] = []
    for pool_def in stage.pools:
        pool = state.pools[(stage.key, pool_def.name)]
        positions = _pool_positions(state, pool_def, pool)
        if positions is None:
            continue
        for template in generate_round_robin(pool_def.size):
            block, court = blocks[pool_def.name][template.match_index]
            slot = Slot(
                slot_id=pool_slot_id(stage.key, pool_def.name, template.match_index + 1),
                stage_key=stage.key,
                group=pool_def.name,
                round_block=block,
                court=court,
                participants=[positions[template.left], positions[template.right]],
                ref=positions[template.ref],
                byes=[positions[template.bye]] if template.bye is not None else [],
            )
            title = f"{stage.display_name} Pool {pool_def.name} #{template.match_index + 1}"
            planned.append(_Planned(slot=slot, title=title, pool=pool))
    return planned


def _crossover_roles(pairing_count: int, index: int, left: str, right: str) -> Tuple[RankRef, List[RankRef]]:
    """Referee and byes for the index-th (0-based) crossover pairing."""
    if pairing_count >= 3:
        refs = [RankRef(left, 3), RankRef(right, 3), RankRef(right, 2)]
    else:
        refs = [RankRef(left, 2), RankRef(right, 2)]
    ref = refs[index] if index < len(refs) else refs[-1]
    byes: List[RankRef] = []
    if pairing_count >= 3 and index == 2:
        byes = [RankRef(left, 1), RankRef(right, 1), RankRef(left, 2)]
    return ref, byes


def _crossover_slots(state: _PlanState, stage: CrossoverStage, last_blocks: Dict[str, int]) -> List[_Planned]:
    left, right = stage.from_pools
    pairing_count = _crossover_pairing_count(state.fmt, stage)
    start = max(last_blocks.get(left, 0), last_blocks.get(right, 0)) + 1

    courts: List[str] = []
    for name in (left, right):
        pool = state.pool_named(name)
        if pool is not None and pool.home_court and pool.home_court not in courts:
            courts.append(pool.home_court)
    if not courts:
        courts = state.courts[:1]

    planned: List[_Planned] = []
    for index in range(pairing_count):
        if len(courts) >= 2:
            block = start if index < 2 else start + 1
            court = courts[index] if index < 2 else courts[0]
        else:
            block = start + index
            court = courts[0] if courts else None
        ref, byes = _crossover_roles(pairing_count, index, left, right)
        slot = Slot(
            slot_id=crossover_slot_id(left, right, index + 1),
            stage_key=stage.key,
            group=f"{left}-{right}",
            round_block=block,
            court=court,
            participants=[state.resolve(RankRef(left, index + 1)), state.resolve(RankRef(right, index + 1))],
            ref=state.resolve(ref),
            byes=[state.resolve(b) for b in byes],
        )
        last_blocks[slot.slot_id] = block
        planned.append(_Planned(slot=slot, title=f"{stage.display_name} {left}{index + 1} v {right}{index + 1}"))
    return planned


def _node_side(
    state: _PlanState,
    stage: PlayoffStage,
    definition: BracketDefinition,
    seed: Optional[int],
    source,
    role: str,
) -> Participant:
    if seed is not None:
        return state.resolve(playoff_seed_ref(definition.seeds_from_overall[seed - 1]))
    return OutcomeRef(playoff_slot_id(stage.key, node_key(definition.key, source.round, source.match_no)), role)


def _playoff_slots(state: _PlanState, stage: PlayoffStage, start_block: int) -> List[_Planned]:
    bracket_nodes = [build_bracket_plan(definition) for definition in stage.brackets]
    schedule = schedule_playoff_nodes(
        bracket_nodes, state.courts, start_block, state.tournament.max_concurrent_courts
    )

    planned: List[_Planned] = []
    for definition, nodes in zip(stage.brackets, bracket_nodes):
        for node in nodes:
            block, court = schedule[node.match_key]
            if node.ref_seed is not None:
                ref_bracket, ref_seed = node.ref_seed
                ref = state.resolve(playoff_seed_ref(stage.bracket(ref_bracket).seeds_from_overall[ref_seed - 1]))
            elif node.ref_from is not None:
                ref = _node_side(state, stage, definition, None, node.ref_from, node.ref_from_role)
            else:
                ref = None
            slot = Slot(
                slot_id=playoff_slot_id(stage.key, node.match_key),
                stage_key=stage.key,
                group=definition.key,
                round_block=block,
                court=court,
                participants=[
                    _node_side(state, stage, definition, node.seed_a, node.from_a, node.from_a_role),
                    _node_side(state, stage, definition, node.seed_b, node.from_b, node.from_b_role),
                ],
                ref=ref,
            )
            title = f"{definition.name} R{node.round} M{node.match_no}"
            planned.append(_Planned(slot=slot, title=title, node=node, definition=definition))
    return planned


def _lunch_slot(tournament: Tournament) -> Optional[Slot]:
    start = parse_clock_time_to_minutes(tournament.lunch_start_time)
    if start is None or not tournament.lunch_duration_minutes or tournament.lunch_duration_minutes <= 0:
        return None
    return Slot(slot_id=LUNCH_SLOT_ID, stage_key=LUNCH_STAGE_KEY, kind=KIND_LUNCH, time_index=start)


def build_plan(state: _PlanState) -> List[_Planned]:
    """Structure generation plus participant resolution for every stage."""
    planned: List[_Planned] = []
    last_blocks: Dict[str, int] = {}
    for stage in state.fmt.stages:
        next_block = max(last_blocks.values(), default=0) + 1
        if isinstance(stage, PoolPlayStage):
            planned.extend(_pool_stage_slots(state, stage, next_block, last_blocks))
        elif isinstance(stage, CrossoverStage):
            planned.extend(_crossover_slots(state, stage, last_blocks))
        elif isinstance(stage, PlayoffStage):
            planned.extend(_playoff_slots(state, stage, next_block))
    return planned


# ============================================================================
# Linking & materialization
# ============================================================================


def _follow_or_lead(
    slot_ref: Optional[Participant], current: Optional[int], scheduled: bool
) -> Tuple[Optional[Participant], Optional[int]]:
    """
    Reconcile one participant position with the stored match.

    Returns (slot reference, team id the match should hold).
    """
    if isinstance(slot_ref, TeamRef):
        if current == slot_ref.team_id or scheduled:
            return slot_ref, slot_ref.team_id
        if current is None:
            return slot_ref.origin or slot_ref, current
        return TeamRef(team_id=current, origin=slot_ref.origin), current
    if isinstance(slot_ref, OutcomeRef) and current is not None:
        return TeamRef(team_id=current, origin=slot_ref), current
    # A placement that is no longer final takes its team back off an unstarted match
    if isinstance(slot_ref, RankRef) and scheduled:
        return slot_ref, None
    return slot_ref, current


def _reconcile_existing(state: _PlanState, planned: _Planned, match: Match) -> None:
    slot = planned.slot
    scheduled = match.status == MatchStatus.SCHEDULED.value
    before = (match.team_a_id, match.team_b_id, match.ref_team_id, list(match.bye_team_ids or []))

    slot.participants[0], match.team_a_id = _follow_or_lead(slot.participants[0], match.team_a_id, scheduled)
    slot.participants[1], match.team_b_id = _follow_or_lead(slot.participants[1], match.team_b_id, scheduled)
    slot.ref, match.ref_team_id = _follow_or_lead(slot.ref, match.ref_team_id, scheduled)
    if scheduled and slot.byes:
        if all(isinstance(b, TeamRef) for b in slot.byes):
            match.bye_team_ids = [b.team_id for b in slot.byes]
        else:
            match.bye_team_ids = []

    if scheduled and (match.round_block, match.court) != (slot.round_block, slot.court):
        match.round_block = slot.round_block
        match.court = slot.court
        state.session.add(match)

    after = (match.team_a_id, match.team_b_id, match.ref_team_id, list(match.bye_team_ids or []))
    if after != before:
        state.session.add(match)
        logger.info("Match %s (%s) participants updated to %s", match.id, slot.slot_id, after[:2])
        if match.scoreboard_id is not None:
            scoreboard = state.session.get(Scoreboard, match.scoreboard_id)
            if scoreboard is not None:
                scoreboard.team_a_name = state.team_name(match.team_a_id)
                scoreboard.team_b_name = state.team_name(match.team_b_id)
                state.session.add(scoreboard)

    slot.match_id = match.id if slot.is_resolved else None


def _spec_for(state: _PlanState, planned: _Planned) -> MatchSpec:
    slot = planned.slot
    a, b = slot.participants
    spec = MatchSpec(
        slot_id=slot.slot_id,
        stage_key=slot.stage_key,
        title=planned.title,
        round_block=slot.round_block,
        court=slot.court,
        team_a_id=team_id_of(a),
        team_b_id=team_id_of(b),
        team_a_name=state.team_name(team_id_of(a)),
        team_b_name=state.team_name(team_id_of(b)),
        ref_team_id=team_id_of(slot.ref),
        bye_team_ids=[b.team_id for b in slot.byes if isinstance(b, TeamRef)],
        pool_id=planned.pool.id if planned.pool is not None else None,
    )
    node = planned.node
    if node is not None:
        spec.bracket = node.bracket
        spec.bracket_round = node.round
        spec.bracket_match_no = node.match_no
        spec.bracket_match_key = node.match_key
        spec.seed_a = node.seed_a
        spec.seed_b = node.seed_b
        if isinstance(a, OutcomeRef):
            spec.source_a_slot_id, spec.source_a_role = a.source_slot_id, a.role
        if isinstance(b, OutcomeRef):
            spec.source_b_slot_id, spec.source_b_role = b.source_slot_id, b.role
        if isinstance(slot.ref, OutcomeRef):
            spec.source_ref_slot_id, spec.source_ref_role = slot.ref.source_slot_id, slot.ref.role
    return spec


def _seeds_resolved(planned: _Planned) -> bool:
    node = planned.node
    a, b = planned.slot.participants
    if node.seed_a is not None and not isinstance(a, TeamRef):
        return False
    if node.seed_b is not None and not isinstance(b, TeamRef):
        return False
    return True


def _collect_specs(state: _PlanState, planned: Sequence[_Planned]) -> List[MatchSpec]:
    existing = state.matches_by_slot
    specs: List[MatchSpec] = []

    brackets: Dict[str, List[_Planned]] = {}
    for p in planned:
        match = existing.get(p.slot.slot_id)
        if match is not None:
            _reconcile_existing(state, p, match)
            continue
        if p.node is not None:
            brackets.setdefault(p.slot.group, []).append(p)
        # Seeded pools materialize only once their whole roster is placed
        elif p.slot.is_resolved and (p.pool is None or p.pool.is_full):
            specs.append(_spec_for(state, p))

    # A bracket is created whole, in round order, once every seeded side resolved
    for group, members in brackets.items():
        bracket_all = [p for p in planned if p.node is not None and p.slot.group == group]
        if not all(_seeds_resolved(p) for p in bracket_all):
            continue
        for p in sorted(members, key=lambda x: (x.node.round, x.node.match_no)):
            specs.append(_spec_for(state, p))
    return specs


# ============================================================================
# Entry points
# ============================================================================


def _load_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError("Tournament not found")
    return tournament


def _with_time_index(slots: Sequence[Slot], tournament: Tournament) -> None:
    for slot in slots:
        if slot.kind == KIND_LUNCH:
            continue
        slot.time_index = resolve_round_block_start_minutes(
            slot.round_block,
            tournament.day_start_time,
            tournament.match_duration_minutes,
            tournament.lunch_start_time,
            tournament.lunch_duration_minutes,
        )


def sync_schedule_plan(
    session: Session,
    tournament_id: int,
    notifier: Optional[NotificationContext] = None,
) -> SyncResult:
    """
    Recompute, materialize and persist a tournament's schedule plan.

    Returns:
        SyncResult with the computed slots, ids of matches created by this
        call, and whether the stored plan changed

    Raises:
        NotFoundError: tournament does not exist
        FormatConfigError: the tournament names an unknown format
        MaterializationError: match creation failed; the batch and the
            plan update were both rolled back
    """
    notifier = ensure_context(notifier)
    tournament = _load_tournament(session, tournament_id)
    team_count = len(team_infos(session, tournament_id))
    fmt = resolve_format_for_tournament(tournament.format_id, team_count)

    created: List[Match] = []
    pools_changed = False
    if fmt is None:
        logger.info("Tournament %s has no format for %d teams; plan is empty", tournament_id, team_count)
        slots: List[Slot] = []
    else:
        state = _PlanState(session, tournament, fmt)
        _ensure_pools(state)
        planned = build_plan(state)
        specs = _collect_specs(state, planned)
        pools_changed = state.pools_changed

        outcome = materialize_matches(session, tournament_id, specs, notifier)
        created = outcome.created
        by_slot = {p.slot.slot_id: p for p in planned}
        for slot_id, match in outcome.by_slot_id.items():
            slot = by_slot[slot_id].slot
            slot.match_id = match.id if slot.is_resolved else None
        slots = [p.slot for p in planned]

    lunch = _lunch_slot(tournament)
    if lunch is not None:
        slots.append(lunch)
    _with_time_index(slots, tournament)

    stored = slots_from_document(tournament.schedule_plan)
    changed = canonical_plan(slots) != canonical_plan(stored)
    if changed:
        tournament.schedule_plan = plan_document(slots)
        session.add(tournament)
    session.commit()
    session.refresh(tournament)

    if pools_changed:
        notifier.emit(ChangeSignal.POOLS_CHANGED, tournament_id)
    if created:
        notifier.emit(
            ChangeSignal.MATCHES_GENERATED,
            tournament_id,
            match_ids=[m.id for m in created],
            stage_keys=sorted({m.stage_key for m in created}),
        )
    if changed:
        notifier.emit(ChangeSignal.SCHEDULE_PLAN_CHANGED, tournament_id, slot_count=len(slots))
        logger.info("Schedule plan for tournament %s updated: %d slots", tournament_id, len(slots))

    return SyncResult(
        slots=slots,
        created_match_ids=[m.id for m in created],
        schedule_changed=changed,
        pools_changed=pools_changed,
    )


def load_schedule_plan(session: Session, tournament_id: int) -> List[Slot]:
    tournament = _load_tournament(session, tournament_id)
    return slots_from_document(tournament.schedule_plan)


def describe_slot(slot: Slot, team_names: Dict[int, str]) -> Dict[str, Any]:
    """Stored slot plus display labels for participants, referee and byes."""
    data = slot.to_json()
    data["labels"] = {
        "participants": [format_ref_label(p, team_names) for p in slot.participants],
        "ref": format_ref_label(slot.ref, team_names) if slot.ref is not None else None,
        "byes": [format_ref_label(b, team_names) for b in slot.byes],
    }
    return data
