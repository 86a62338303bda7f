"""Pool instantiation, roster assignment and serpentine auto-fill."""
import pytest
from sqlmodel import Session, select

from tests.helpers import create_tournament, matches_for, teams_by_seed
from tourney.models.pool import Pool
from tourney.models.team import Team
from tourney.services.errors import FormatConfigError, PreconditionError
from tourney.services.match_lifecycle import start_match
from tourney.services.pool_setup import (
    assign_pool_teams,
    auto_assign_pools,
    instantiate_pools,
    serpentine_assignments,
)

TWELVE = "classic_12_3x4_gold8_silver4_v1"


def test_serpentine_mixed_pool_sizes():
    plan = serpentine_assignments(list(range(1, 15)), [("A", 4), ("B", 4), ("C", 3), ("D", 3)])
    assert plan == {"A": [1, 8, 9, 14], "B": [2, 7, 10, 13], "C": [3, 6, 11], "D": [4, 5, 12]}


def test_serpentine_short_field_leaves_gaps():
    plan = serpentine_assignments([1, 2, 3, 4, 5], [("A", 3), ("B", 3)])
    assert plan == {"A": [1, 4, 5], "B": [2, 3]}


@pytest.fixture
def twelve(session: Session):
    tournament = create_tournament(session, 12, format_id=TWELVE, court_names=["1", "2"])
    pools = instantiate_pools(session, tournament.id, "poolPlay1")
    return tournament, {p.name: p for p in pools}


def test_instantiate_pools_cycles_home_courts(session: Session, twelve):
    _, pools = twelve
    assert [(n, p.home_court, p.required_team_count) for n, p in sorted(pools.items())] == [
        ("A", "1", 4),
        ("B", "2", 4),
        ("C", "1", 4),
    ]


def test_instantiate_is_repeatable(session: Session, twelve):
    tournament, pools = twelve
    again = instantiate_pools(session, tournament.id, "poolPlay1")
    assert [p.id for p in again] == [pools[n].id for n in "ABC"]


def test_unknown_stage(session: Session, twelve):
    tournament, _ = twelve
    with pytest.raises(FormatConfigError):
        instantiate_pools(session, tournament.id, "poolPlay9")


def test_assigning_full_roster_materializes_pool(session: Session, twelve):
    tournament, pools = twelve
    teams = teams_by_seed(session, tournament.id)
    assign_pool_teams(session, pools["A"].id, [t.id for t in teams[:4]])

    matches = matches_for(session, tournament.id, "poolPlay1")
    assert len(matches) == 6
    assert {m.pool_id for m in matches} == {pools["A"].id}
    # Shared court 1 with pool C; A plays first
    assert [m.round_block for m in matches] == [1, 2, 3, 4, 5, 6]


def test_partial_roster_creates_nothing(session: Session, twelve):
    tournament, pools = twelve
    teams = teams_by_seed(session, tournament.id)
    assign_pool_teams(session, pools["A"].id, [t.id for t in teams[:3]])
    assert matches_for(session, tournament.id) == []


def test_reassigning_unstarted_pool_regenerates(session: Session, twelve):
    tournament, pools = twelve
    ids = [t.id for t in teams_by_seed(session, tournament.id)]
    assign_pool_teams(session, pools["A"].id, ids[:4])
    assign_pool_teams(session, pools["A"].id, [ids[0], ids[1], ids[2], ids[4]])

    matches = matches_for(session, tournament.id, "poolPlay1")
    assert len(matches) == 6
    assert ids[3] not in {t for m in matches for t in (m.team_a_id, m.team_b_id)}


def test_roster_locked_once_play_started(session: Session, twelve):
    tournament, pools = twelve
    ids = [t.id for t in teams_by_seed(session, tournament.id)]
    assign_pool_teams(session, pools["A"].id, ids[:4])
    start_match(session, matches_for(session, tournament.id)[0].id)

    with pytest.raises(PreconditionError, match="roster is locked"):
        assign_pool_teams(session, pools["A"].id, ids[4:8])


class TestRosterValidation:
    def test_oversize(self, session: Session, twelve):
        tournament, pools = twelve
        ids = [t.id for t in teams_by_seed(session, tournament.id)]
        with pytest.raises(PreconditionError, match="holds 4 teams"):
            assign_pool_teams(session, pools["A"].id, ids[:5])

    def test_duplicates(self, session: Session, twelve):
        tournament, pools = twelve
        ids = [t.id for t in teams_by_seed(session, tournament.id)]
        with pytest.raises(PreconditionError, match="duplicate"):
            assign_pool_teams(session, pools["A"].id, [ids[0], ids[0]])

    def test_foreign_team(self, session: Session, twelve):
        tournament, pools = twelve
        other = create_tournament(session, 12)
        foreign = session.exec(select(Team).where(Team.tournament_id == other.id)).first()
        with pytest.raises(PreconditionError, match="do not belong"):
            assign_pool_teams(session, pools["A"].id, [foreign.id])

    def test_team_already_in_sibling_pool(self, session: Session, twelve):
        tournament, pools = twelve
        ids = [t.id for t in teams_by_seed(session, tournament.id)]
        assign_pool_teams(session, pools["A"].id, ids[:2])
        with pytest.raises(PreconditionError, match="already assigned"):
            assign_pool_teams(session, pools["B"].id, [ids[1], ids[5]])


def test_seeded_pools_reject_manual_rosters(session: Session):
    tournament = create_tournament(session, 15)
    auto_assign_pools(session, tournament.id, "poolPlay1")
    pool_f = session.exec(select(Pool).where(Pool.tournament_id == tournament.id, Pool.name == "F")).one()
    with pytest.raises(PreconditionError, match="earlier placements"):
        assign_pool_teams(session, pool_f.id, [])
    with pytest.raises(PreconditionError):
        auto_assign_pools(session, tournament.id, "poolPlay2")


def test_auto_assign_rejects_overfull_field(session: Session):
    tournament = create_tournament(session, 12, format_id=TWELVE)
    session.add(Team(tournament_id=tournament.id, name="Extra", seed=13))
    session.commit()
    with pytest.raises(PreconditionError, match="holds 12 teams"):
        auto_assign_pools(session, tournament.id, "poolPlay1")
