"""Schedule plan synchronizer: structure, resolution, materialization, idempotence."""
import pytest
from sqlmodel import Session, select

from tests.helpers import (
    create_tournament,
    match_for_slot,
    matches_for,
    play,
    play_stage,
    seed_of,
    teams_by_seed,
)
from tourney.models.match import Match
from tourney.models.pool import Pool
from tourney.models.scoreboard import Scoreboard
from tourney.models.tournament import Tournament
from tourney.services import materialization
from tourney.services.errors import MaterializationError
from tourney.services.match_lifecycle import unfinalize_match
from tourney.services.pool_setup import auto_assign_pools
from tourney.services.schedule_plan import load_schedule_plan, sync_schedule_plan
from tourney.services.schedule_slots import KIND_LUNCH, LUNCH_SLOT_ID, RankRef, TeamRef
from tourney.services.standings import compute_cumulative_standings

ODU = "odu_15_5courts_v1"
FOURTEEN = "classic_14_mixedpools_crossover_gold8_silver6_v1"


def _pool(session: Session, tournament_id: int, name: str) -> Pool:
    session.expire_all()
    return session.exec(select(Pool).where(Pool.tournament_id == tournament_id, Pool.name == name)).one()


def _roster_seeds(session: Session, tournament_id: int, name: str):
    return [seed_of(session, tid) for tid in _pool(session, tournament_id, name).team_ids]


@pytest.fixture
def fifteen(session: Session) -> Tournament:
    """15 teams, no explicit format (defaults to the ODU format), pools filled by serpentine."""
    tournament = create_tournament(session, 15)
    auto_assign_pools(session, tournament.id, "poolPlay1")
    return tournament


class TestFifteenTeamProgression:
    def test_empty_plan_without_a_format(self, session: Session):
        tournament = create_tournament(session, 12)
        result = sync_schedule_plan(session, tournament.id)
        assert result.slots == []
        assert result.created_match_ids == []

    def test_first_sync_materializes_pool_play_one_only(self, session: Session, fifteen):
        assert len(matches_for(session, fifteen.id, "poolPlay1")) == 15
        assert matches_for(session, fifteen.id, "poolPlay2") == []

        slots = load_schedule_plan(session, fifteen.id)
        assert len(slots) == 42
        by_id = {s.slot_id: s for s in slots}
        assert by_id["poolPlay2:F:1"].participants == [RankRef("A", 1), RankRef("C", 3)]
        gold_final = by_id["playoffs:gold:R3:M1"]
        assert gold_final.round_block == 10
        assert gold_final.match_id is None

    def test_pool_play_one_slots_use_home_courts(self, session: Session, fifteen):
        slots = {s.slot_id: s for s in load_schedule_plan(session, fifteen.id)}
        assert [slots[f"poolPlay1:A:{i}"].round_block for i in (1, 2, 3)] == [1, 2, 3]
        assert {slots[f"poolPlay1:{p}:1"].court for p in "ABCDE"} == {"SRC-1", "SRC-2", "SRC-3", "VC-1", "VC-2"}
        assert slots["poolPlay2:F:1"].round_block == 4

    def test_match_id_set_only_for_resolved_slots(self, session: Session, fifteen):
        for slot in load_schedule_plan(session, fifteen.id):
            if slot.match_id is not None:
                assert all(isinstance(p, TeamRef) for p in slot.participants)

    def test_second_sync_is_a_no_op(self, session: Session, fifteen):
        before = session.exec(select(Match)).all()
        result = sync_schedule_plan(session, fifteen.id)
        assert result.created_match_ids == []
        assert result.schedule_changed is False
        assert len(session.exec(select(Match)).all()) == len(before)

    def test_serpentine_rosters(self, session: Session, fifteen):
        assert _roster_seeds(session, fifteen.id, "A") == [1, 10, 11]
        assert _roster_seeds(session, fifteen.id, "E") == [5, 6, 15]

    def test_second_pool_stage_waits_for_every_source_pool(self, session: Session, fifteen):
        pool_a = _pool(session, fifteen.id, "A")
        for match in matches_for(session, fifteen.id, "poolPlay1"):
            if match.pool_id == pool_a.id:
                play(session, match.id)

        slots = {s.slot_id: s for s in load_schedule_plan(session, fifteen.id)}
        # A#1 resolved, C#3 still a placeholder
        first, second = slots["poolPlay2:F:1"].participants
        assert isinstance(first, TeamRef) and seed_of(session, first.team_id) == 1
        assert second == RankRef("C", 3)
        assert matches_for(session, fifteen.id, "poolPlay2") == []

    def test_full_progression_reaches_playoffs(self, session: Session, fifteen):
        play_stage(session, fifteen.id, "poolPlay1")
        assert len(matches_for(session, fifteen.id, "poolPlay2")) == 15
        assert _roster_seeds(session, fifteen.id, "F") == [1, 9, 13]
        assert matches_for(session, fifteen.id, "playoffs") == []

        play_stage(session, fifteen.id, "poolPlay2")
        playoffs = matches_for(session, fifteen.id, "playoffs")
        assert len(playoffs) == 12

        ranking = [e.team_id for e in compute_cumulative_standings(session, fifteen.id)]
        r1m1 = match_for_slot(session, fifteen.id, "playoffs:gold:R1:M1")
        r2m1 = match_for_slot(session, fifteen.id, "playoffs:gold:R2:M1")
        assert (r1m1.team_a_id, r1m1.team_b_id) == (ranking[3], ranking[4])
        assert r1m1.ref_team_id == ranking[10]  # bronze seed 1
        assert r2m1.team_a_id == ranking[0]
        assert r2m1.team_b_id is None
        assert r2m1.source_match_b_id == r1m1.id and r2m1.source_b_role == "WINNER"

        final = match_for_slot(session, fifteen.id, "playoffs:gold:R3:M1")
        r1m2 = match_for_slot(session, fifteen.id, "playoffs:gold:R1:M2")
        assert final.source_match_a_id == r2m1.id
        assert final.source_match_b_id == r1m2.id
        assert final.source_match_ref_id == r2m1.id and final.source_ref_role == "LOSER"

        again = sync_schedule_plan(session, fifteen.id)
        assert again.created_match_ids == []
        assert again.schedule_changed is False

    def test_changed_placement_regenerates_unstarted_seeded_pool(self, session: Session, fifteen):
        play_stage(session, fifteen.id, "poolPlay1")
        teams = teams_by_seed(session, fifteen.id)
        seed_1, seed_10 = teams[0].id, teams[9].id

        decider = [
            m for m in matches_for(session, fifteen.id, "poolPlay1")
            if {m.team_a_id, m.team_b_id} == {seed_1, seed_10}
        ][0]
        unfinalize_match(session, decider.id)
        slots = {s.slot_id: s for s in load_schedule_plan(session, fifteen.id)}
        assert slots["poolPlay2:F:1"].participants[0] == RankRef("A", 1)
        assert slots["poolPlay2:F:1"].match_id is None
        # The unstarted match is kept and unlinked, its pool A placement cleared
        stale = match_for_slot(session, fifteen.id, "poolPlay2:F:1")
        assert stale is not None
        assert stale.team_a_id is None

        play(session, decider.id, winner_id=seed_10)
        assert _roster_seeds(session, fifteen.id, "F") == [10, 9, 13]
        regenerated = match_for_slot(session, fifteen.id, "poolPlay2:F:1")
        assert seed_of(session, regenerated.team_a_id) == 10
        assert len(matches_for(session, fifteen.id, "poolPlay2")) == 15


class TestCrossover:
    def test_crossover_materializes_when_its_pools_finish(self, session: Session):
        tournament = create_tournament(session, 14, format_id=FOURTEEN)
        auto_assign_pools(session, tournament.id, "poolPlay1")
        assert _roster_seeds(session, tournament.id, "A") == [1, 8, 9, 14]
        assert _roster_seeds(session, tournament.id, "C") == [3, 6, 11]
        assert _roster_seeds(session, tournament.id, "D") == [4, 5, 12]

        slots = {s.slot_id: s for s in load_schedule_plan(session, tournament.id)}
        assert [(slots[f"crossover:C:D:{i}"].round_block, slots[f"crossover:C:D:{i}"].court) for i in (1, 2, 3)] == [
            (4, "SRC-3"),
            (4, "VC-1"),
            (5, "SRC-3"),
        ]
        assert slots["playoffs:gold:R1:M1"].round_block == 7

        pool_ids = {_pool(session, tournament.id, n).id for n in ("C", "D")}
        for match in matches_for(session, tournament.id, "poolPlay1"):
            if match.pool_id in pool_ids:
                play(session, match.id)

        crossover = matches_for(session, tournament.id, "crossover")
        assert len(crossover) == 3
        third = match_for_slot(session, tournament.id, "crossover:C:D:3")
        assert [seed_of(session, t) for t in (third.team_a_id, third.team_b_id)] == [11, 12]
        assert seed_of(session, third.ref_team_id) == 5
        assert sorted(seed_of(session, t) for t in third.bye_team_ids) == [3, 4, 6]
        assert matches_for(session, tournament.id, "playoffs") == []

        play_stage(session, tournament.id, "poolPlay1")
        play_stage(session, tournament.id, "crossover")
        assert len(matches_for(session, tournament.id, "playoffs")) == 7 + 5


class TestMaterializationRollback:
    def test_failed_batch_leaves_nothing_behind(self, session: Session, monkeypatch):
        tournament = create_tournament(session, 15)
        original = materialization._create_one
        calls = {"n": 0}

        def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 3:
                raise RuntimeError("disk full")
            return original(*args, **kwargs)

        monkeypatch.setattr(materialization, "_create_one", flaky)
        with pytest.raises(MaterializationError, match="disk full"):
            auto_assign_pools(session, tournament.id, "poolPlay1")

        session.expire_all()
        assert session.exec(select(Match)).all() == []
        assert session.exec(select(Scoreboard)).all() == []
        assert session.get(Tournament, tournament.id).schedule_plan is None

        monkeypatch.setattr(materialization, "_create_one", original)
        result = sync_schedule_plan(session, tournament.id)
        assert len(result.created_match_ids) == 15
        assert result.schedule_changed is True


class TestClock:
    def test_lunch_slot_and_time_index(self, session: Session):
        tournament = create_tournament(session, 15, lunch_start_time="12:00", lunch_duration_minutes=45)
        auto_assign_pools(session, tournament.id, "poolPlay1")

        slots = {s.slot_id: s for s in load_schedule_plan(session, tournament.id)}
        lunch = slots[LUNCH_SLOT_ID]
        assert lunch.kind == KIND_LUNCH
        assert lunch.time_index == 720
        assert slots["poolPlay1:A:1"].time_index == 540
        assert slots["poolPlay1:A:3"].time_index == 660
        assert slots["poolPlay2:F:1"].time_index == 765
