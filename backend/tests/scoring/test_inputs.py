import pytest

from darts_tracker.scoring.darts import Dart, InvalidDart
from darts_tracker.scoring.inputs import DartInputs, parse_face_value, parse_multiplier


@pytest.mark.parametrize(
    "raw, expected",
    [("20", 20), (" 7 ", 7), ("25", 25), (0, 0), ("", None), ("  ", None), (None, None)],
)
def test_parse_face_value(raw, expected):
    assert parse_face_value(raw) == expected


@pytest.mark.parametrize("raw", ["21", "-1", "abc", "2.5", 24, True, 3.0])
def test_parse_face_value_rejects_bad_input(raw):
    with pytest.raises(InvalidDart):
        parse_face_value(raw)


def test_parse_multiplier():
    assert parse_multiplier("2") == 2
    assert parse_multiplier(3) == 3
    for raw in ("0", "4", "x", False):
        with pytest.raises(InvalidDart):
            parse_multiplier(raw)


def test_slots_open_in_order():
    inputs = DartInputs()
    assert inputs.enabled == [True, False, False]

    with pytest.raises(InvalidDart):
        inputs.set_value(1, "20")

    inputs.set_value(0, "20")
    assert inputs.enabled == [True, True, False]
    inputs.set_value(1, "5")
    inputs.set_multiplier(1, "3")
    assert inputs.enabled == [True, True, True]
    assert inputs.darts() == (Dart(20), Dart(5, 3))
    assert inputs.thrown == 2


def test_clearing_a_slot_clears_the_later_ones():
    inputs = DartInputs()
    inputs.set_value(0, "1")
    inputs.set_value(1, "2")
    inputs.set_multiplier(1, 2)
    inputs.set_value(2, "3")

    inputs.set_value(1, "")

    assert inputs.darts() == (Dart(1),)
    assert inputs.enabled == [True, True, False]
    inputs.set_value(1, "2")
    assert inputs.darts() == (Dart(1), Dart(2))


def test_clearing_a_slot_resets_its_multiplier():
    inputs = DartInputs()
    inputs.set_value(0, "20")
    inputs.set_multiplier(0, 3)

    inputs.set_value(0, "")
    inputs.set_value(0, "20")

    assert inputs.darts() == (Dart(20, 1),)


def test_invalid_input_leaves_slots_unchanged():
    inputs = DartInputs()
    inputs.set_value(0, "19")
    with pytest.raises(InvalidDart):
        inputs.set_value(0, "30")
    with pytest.raises(InvalidDart):
        inputs.set_multiplier(0, 5)
    with pytest.raises(InvalidDart):
        inputs.set_value(3, "1")
    assert inputs.darts() == (Dart(19),)


def test_reset():
    inputs = DartInputs()
    inputs.set_value(0, "19")
    inputs.set_multiplier(0, 3)
    inputs.reset()
    assert inputs.darts() == ()
    assert inputs.enabled == [True, False, False]
