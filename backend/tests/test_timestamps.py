"""Stored timestamps are timezone-aware UTC."""
from datetime import datetime, timezone

import pytest
from sqlmodel import Session

from tests.helpers import create_tournament, matches_for, set_scoreboard
from tourney.models.match import Match
from tourney.models.pool import Pool
from tourney.models.scoreboard import Scoreboard
from tourney.models.team import Team
from tourney.models.tournament import Tournament
from tourney.services import match_lifecycle
from tourney.services.pool_setup import auto_assign_pools
from tourney.utils.clock import utc_now


def test_utc_now_is_aware():
    assert utc_now().utcoffset() == timezone.utc.utcoffset(None)


@pytest.mark.parametrize("model, field", [
    (Tournament, "created_at"),
    (Tournament, "updated_at"),
    (Team, "created_at"),
    (Pool, "created_at"),
    (Match, "created_at"),
    (Scoreboard, "updated_at"),
])
def test_model_defaults_are_aware(model, field):
    assert getattr(model(), field).tzinfo is not None


def test_lifecycle_stamps_come_from_the_utc_clock(session: Session, monkeypatch):
    fixed = datetime(2026, 5, 2, 14, 30, tzinfo=timezone.utc)
    monkeypatch.setattr(match_lifecycle, "utc_now", lambda: fixed)

    tournament = create_tournament(session, 12, format_id="classic_12_3x4_gold8_silver4_v1")
    auto_assign_pools(session, tournament.id, "poolPlay1")
    match_lifecycle.start_match(session, matches_for(session, tournament.id, "poolPlay1")[0].id)
    match = matches_for(session, tournament.id, "poolPlay1")[0]
    set_scoreboard(session, match, [[25, 20], [25, 20]])
    outcome = match_lifecycle.finalize_match(session, match.id, override=True)

    # SQLite hands datetimes back without tzinfo
    for stamp in (outcome.match.started_at, outcome.match.ended_at, outcome.match.finalized_at):
        assert stamp.replace(tzinfo=None) == fixed.replace(tzinfo=None)
