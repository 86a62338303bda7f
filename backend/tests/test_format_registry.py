"""Format registry: built-in formats, validation and suggestions."""
import pytest

from tourney.services.errors import FormatConfigError
from tourney.services.format_registry import (
    BracketDefinition,
    BracketShape,
    CrossoverStage,
    PlayoffStage,
    PoolDefinition,
    PoolPlayStage,
    TournamentFormat,
    get_format,
    list_formats,
    resolve_format_for_tournament,
    suggest_formats,
    validate_format,
)
from tourney.services.schedule_slots import RankRef


def test_builtin_formats_are_registered():
    ids = {f.id for f in list_formats()}
    assert ids == {
        "classic_12_3x4_gold8_silver4_v1",
        "classic_14_mixedpools_crossover_gold8_silver6_v1",
        "odu_15_5courts_v1",
        "classic_16_4x4_all16_v1",
    }


@pytest.mark.parametrize("fmt", list_formats(), ids=lambda f: f.id)
def test_playoff_seeds_cover_every_team(fmt):
    seeds = sorted(s for b in fmt.playoff_stage.brackets for s in b.seeds_from_overall)
    assert seeds == list(range(1, fmt.team_count + 1))


def test_odu_second_pool_stage_rotates_placements():
    fmt = get_format("odu_15_5courts_v1")
    pool_f = fmt.stage("poolPlay2").pool("F")
    assert pool_f.seeded_from == (RankRef("A", 1), RankRef("B", 2), RankRef("C", 3))
    pool_j = fmt.stage("poolPlay2").pool("J")
    assert pool_j.seeded_from == (RankRef("E", 1), RankRef("A", 2), RankRef("B", 3))


def test_fourteen_team_crossover():
    fmt = get_format("classic_14_mixedpools_crossover_gold8_silver6_v1")
    crossover = fmt.crossover_stages[0]
    assert crossover.from_pools == ("C", "D")
    assert fmt.stage_index("crossover") == 1


def test_get_format_required_unknown():
    assert get_format("nope") is None
    with pytest.raises(FormatConfigError, match="Unknown tournament format"):
        get_format("nope", required=True)


def test_resolve_format_defaults_fifteen_teams():
    assert resolve_format_for_tournament(None, 15).id == "odu_15_5courts_v1"
    assert resolve_format_for_tournament(None, 12) is None
    assert resolve_format_for_tournament("classic_16_4x4_all16_v1", 3).id == "classic_16_4x4_all16_v1"


def test_suggest_formats_by_team_and_court_count():
    assert [f.id for f in suggest_formats(15, 5)] == ["odu_15_5courts_v1"]
    assert suggest_formats(15, 2) == []
    assert suggest_formats(13, 5) == []
    assert suggest_formats("x", 5) == []


def _bad(*stages):
    return TournamentFormat(
        id="bad",
        name="Bad",
        description="",
        supported_team_counts=(8,),
        min_courts=1,
        stages=stages,
    )


class TestValidateFormat:
    def test_rejects_pool_size_five(self):
        with pytest.raises(FormatConfigError, match="unsupported size"):
            validate_format(_bad(PoolPlayStage("p1", "P1", (PoolDefinition("A", 5),))))

    def test_rejects_crossover_from_undeclared_pool(self):
        with pytest.raises(FormatConfigError, match="not declared earlier"):
            validate_format(
                _bad(
                    PoolPlayStage("p1", "P1", (PoolDefinition("A", 4),)),
                    CrossoverStage("x", "X", ("A", "Z")),
                )
            )

    def test_rejects_seeded_pool_referencing_later_pool(self):
        with pytest.raises(FormatConfigError, match="unknown earlier pool"):
            validate_format(
                _bad(
                    PoolPlayStage(
                        "p1",
                        "P1",
                        (PoolDefinition("A", 3, (RankRef("B", 1), RankRef("B", 2), RankRef("B", 3))),),
                    ),
                )
            )

    def test_rejects_stage_after_playoffs(self):
        with pytest.raises(FormatConfigError, match="last stage"):
            validate_format(
                _bad(
                    PoolPlayStage("p1", "P1", (PoolDefinition("A", 4),)),
                    PlayoffStage(
                        "playoffs",
                        "Playoffs",
                        (BracketDefinition("Gold", BracketShape.SINGLE_ELIM, 4, (1, 2, 3, 4)),),
                    ),
                    PoolPlayStage("p2", "P2", (PoolDefinition("B", 4),)),
                )
            )

    def test_rejects_reused_overall_seed(self):
        with pytest.raises(FormatConfigError, match="used twice"):
            validate_format(
                _bad(
                    PoolPlayStage("p1", "P1", (PoolDefinition("A", 4), PoolDefinition("B", 4))),
                    PlayoffStage(
                        "playoffs",
                        "Playoffs",
                        (
                            BracketDefinition("Gold", BracketShape.SINGLE_ELIM, 4, (1, 2, 3, 4)),
                            BracketDefinition("Silver", BracketShape.SINGLE_ELIM, 4, (4, 5, 6, 7)),
                        ),
                    ),
                )
            )
