from tourney.models.match import Match, MatchStatus
from tourney.models.pool import Pool
from tourney.models.scoreboard import Scoreboard
from tourney.models.team import Team
from tourney.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Team",
    "Pool",
    "Match",
    "MatchStatus",
    "Scoreboard",
]
