"""Match status transitions and finalize/unfinalize preconditions."""
import pytest
from sqlmodel import Session

from tests.helpers import create_tournament, matches_for, set_scoreboard
from tourney.models.match import Match, MatchStatus
from tourney.services.errors import NotFoundError, PreconditionError, ScoreValidationError
from tourney.services.match_lifecycle import end_match, finalize_match, start_match, unfinalize_match
from tourney.services.pool_setup import auto_assign_pools


@pytest.fixture
def pool_match(session: Session) -> Match:
    tournament = create_tournament(session, 12, format_id="classic_12_3x4_gold8_silver4_v1")
    auto_assign_pools(session, tournament.id, "poolPlay1")
    return matches_for(session, tournament.id, "poolPlay1")[0]


def test_happy_path(session: Session, pool_match):
    match = start_match(session, pool_match.id)
    assert match.status == MatchStatus.LIVE.value and match.started_at is not None

    match = end_match(session, pool_match.id)
    assert match.status == MatchStatus.ENDED.value

    set_scoreboard(session, match, [[25, 23], [19, 25], [15, 12]])
    outcome = finalize_match(session, pool_match.id)
    assert outcome.match.status == MatchStatus.FINAL.value
    assert outcome.match.winner_team_id == outcome.match.team_a_id
    assert outcome.match.result_json["sets_played"] == 3
    assert outcome.match.finalized_at is not None


def test_finalize_requires_ended_without_override(session: Session, pool_match):
    start_match(session, pool_match.id)
    set_scoreboard(session, pool_match, [[25, 20], [25, 20]])
    with pytest.raises(PreconditionError, match="Match must be ended before finalizing"):
        finalize_match(session, pool_match.id)

    outcome = finalize_match(session, pool_match.id, override=True)
    assert outcome.match.status == MatchStatus.FINAL.value


def test_invalid_score_changes_nothing(session: Session, pool_match):
    start_match(session, pool_match.id)
    end_match(session, pool_match.id)
    set_scoreboard(session, pool_match, [[25, 20], [20, 25]])
    with pytest.raises(ScoreValidationError):
        finalize_match(session, pool_match.id)

    session.expire_all()
    match = session.get(Match, pool_match.id)
    assert match.status == MatchStatus.ENDED.value
    assert match.result_json is None


def test_already_final_is_rejected(session: Session, pool_match):
    set_scoreboard(session, pool_match, [[25, 20], [25, 20]])
    finalize_match(session, pool_match.id, override=True)
    with pytest.raises(PreconditionError, match="already final"):
        finalize_match(session, pool_match.id, override=True)


def test_missing_scoreboard(session: Session, pool_match):
    pool_match.scoreboard_id = None
    session.add(pool_match)
    session.commit()
    with pytest.raises(PreconditionError, match="no scoreboard"):
        finalize_match(session, pool_match.id, override=True)


@pytest.mark.parametrize("transition", [end_match, unfinalize_match])
def test_out_of_order_transitions(session: Session, pool_match, transition):
    with pytest.raises(PreconditionError):
        transition(session, pool_match.id)


def test_cannot_start_twice(session: Session, pool_match):
    start_match(session, pool_match.id)
    with pytest.raises(PreconditionError):
        start_match(session, pool_match.id)


def test_unfinalize_clears_result(session: Session, pool_match):
    set_scoreboard(session, pool_match, [[25, 20], [25, 20]])
    finalize_match(session, pool_match.id, override=True)
    outcome = unfinalize_match(session, pool_match.id)
    assert outcome.match.status == MatchStatus.SCHEDULED.value
    assert outcome.match.result_json is None
    assert outcome.match.finalized_at is None
    assert outcome.affected_match_ids == []


def test_unknown_match(session: Session, pool_match):
    with pytest.raises(NotFoundError):
        start_match(session, 9999)
