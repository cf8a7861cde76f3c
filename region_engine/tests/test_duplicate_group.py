from datetime import datetime, timezone

import pytest

from region_engine.domain.duplicate_group import DuplicateGroup, DuplicateMember


def _t(month: int) -> datetime:
    return datetime(2024, month, 1, tzinfo=timezone.utc)


def test_survivor_prefers_count_then_age():
    t1, t2, t3 = _t(1), _t(2), _t(3)
    members = [
        DuplicateMember("reg_x", shipping_option_count=3, country_count=0, created_at=t2),
        DuplicateMember("reg_y", shipping_option_count=3, country_count=0, created_at=t1),
        DuplicateMember("reg_z", shipping_option_count=1, country_count=5, created_at=t3),
    ]

    group = DuplicateGroup.build("US", "usd", members)

    assert group.survivor.region_id == "reg_y"
    assert [d.region_id for d in group.donors] == ["reg_x", "reg_z"]


def test_survivor_selection_is_independent_of_input_order():
    members = [
        DuplicateMember("reg_b", 0, 0, _t(2)),
        DuplicateMember("reg_c", 2, 0, _t(3)),
        DuplicateMember("reg_a", 0, 0, _t(1)),
    ]

    forward = DuplicateGroup.build("EU", "eur", members)
    backward = DuplicateGroup.build("EU", "eur", list(reversed(members)))

    assert forward.members == backward.members
    assert forward.survivor.region_id == "reg_c"
    assert [d.region_id for d in forward.donors] == ["reg_a", "reg_b"]


def test_identical_count_and_timestamp_fall_back_to_id():
    members = [DuplicateMember("reg_2", 1, 0, _t(1)), DuplicateMember("reg_1", 1, 0, _t(1))]
    assert DuplicateGroup.build("US", "usd", members).survivor.region_id == "reg_1"


def test_single_member_is_not_a_group():
    with pytest.raises(ValueError):
        DuplicateGroup.build("US", "usd", [DuplicateMember("reg_1", 0, 0, _t(1))])
