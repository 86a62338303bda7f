"""Slot references, stable ids, canonical plan form and the round-block clock."""
from tourney.services.schedule_slots import (
    OutcomeRef,
    RankRef,
    Slot,
    TeamRef,
    canonical_plan,
    crossover_slot_id,
    format_ref_label,
    parse_clock_time_to_minutes,
    playoff_slot_id,
    pool_slot_id,
    resolve_round_block_start_minutes,
)


def test_stable_slot_ids():
    assert pool_slot_id("poolPlay1", "A", 2) == "poolPlay1:A:2"
    assert crossover_slot_id("C", "D", 3) == "crossover:C:D:3"
    assert playoff_slot_id("playoffs", "gold:R2:M1") == "playoffs:gold:R2:M1"


def test_slot_json_round_trip_keeps_reference_tags():
    slot = Slot(
        slot_id="playoffs:gold:R2:M1",
        stage_key="playoffs",
        group="gold",
        round_block=9,
        participants=[TeamRef(5, origin=RankRef("overall", 1)), OutcomeRef("playoffs:gold:R1:M1", "WINNER")],
        ref=OutcomeRef("playoffs:gold:R1:M2", "LOSER"),
    )
    restored = Slot.from_json(slot.to_json())
    assert restored == slot
    assert not restored.is_resolved


def test_canonical_plan_ignores_order():
    a = Slot(slot_id="x:1", stage_key="x", participants=[TeamRef(1), TeamRef(2)])
    b = Slot(slot_id="x:2", stage_key="x", participants=[RankRef("A", 1), RankRef("B", 1)])
    assert canonical_plan([a, b]) == canonical_plan([b, a])
    before = canonical_plan([a, b])
    b.participants = [RankRef("A", 2), RankRef("B", 1)]
    assert canonical_plan([a, b]) != before


def test_labels():
    names = {7: "Spikers"}
    assert format_ref_label(RankRef("A", 2)) == "A (#2)"
    assert format_ref_label(RankRef("overall", 3)) == "Overall (#3)"
    assert format_ref_label(OutcomeRef("playoffs:gold:R1:M1", "WINNER")) == "Winner gold:R1:M1"
    assert format_ref_label(OutcomeRef("playoffs:gold:R1:M2", "LOSER")) == "Loser gold:R1:M2"
    assert format_ref_label(TeamRef(7), names) == "Spikers"
    assert format_ref_label(None) == "TBD"


def test_clock_parsing():
    assert parse_clock_time_to_minutes("09:30") == 570
    assert parse_clock_time_to_minutes("9:05") == 545
    assert parse_clock_time_to_minutes("24:00") is None
    assert parse_clock_time_to_minutes("noon") is None


def test_round_blocks_push_past_lunch():
    def start(block):
        return resolve_round_block_start_minutes(block, "09:00", 60, "12:00", 45)

    assert [start(b) for b in (1, 2, 3)] == [540, 600, 660]
    # Block 4 would start at 12:00; it moves to the end of lunch
    assert start(4) == 765
    assert start(5) == 825


def test_round_blocks_without_lunch():
    assert resolve_round_block_start_minutes(3, "08:00", 50) == 480 + 100
    assert resolve_round_block_start_minutes(None) is None
