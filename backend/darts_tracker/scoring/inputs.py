"""Sequential entry of the (up to) three darts of a turn."""

from __future__ import annotations

from typing import List, Optional, Tuple, Union

from .darts import DARTS_PER_TURN, FACE_VALUES, MULTIPLIERS, Dart, InvalidDart


def parse_face_value(raw: Union[str, int, None]) -> Optional[int]:
    """Return the face value for ``raw``, or ``None`` when the slot is cleared."""

    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidDart("dart value must be a number")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if not text.isdigit():
            raise InvalidDart(f"dart value must be 0-20 or 25, got {raw!r}")
        value = int(text)
    else:
        raise InvalidDart(f"dart value must be 0-20 or 25, got {raw!r}")
    if value not in FACE_VALUES:
        raise InvalidDart(f"dart value must be 0-20 or 25, got {raw!r}")
    return value


def parse_multiplier(raw: Union[str, int]) -> int:
    if isinstance(raw, bool):
        raise InvalidDart("multiplier must be 1, 2 or 3")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise InvalidDart(f"multiplier must be 1, 2 or 3, got {raw!r}")
    if value not in MULTIPLIERS:
        raise InvalidDart(f"multiplier must be 1, 2 or 3, got {raw!r}")
    return value


class DartInputs:
    """Three dart slots filled in order.

    Slot ``i + 1`` only accepts input once slots ``0..i`` hold a value.
    Invalid input raises :class:`InvalidDart` and leaves the slots unchanged.
    """

    def __init__(self) -> None:
        self._values: List[Optional[int]] = [None] * DARTS_PER_TURN
        self._multipliers: List[int] = [1] * DARTS_PER_TURN

    def _check_slot(self, index: int) -> None:
        if not 0 <= index < DARTS_PER_TURN:
            raise InvalidDart(f"dart index must be 0-{DARTS_PER_TURN - 1}")
        if not self.enabled[index]:
            raise InvalidDart(f"dart {index + 1} cannot be entered before dart {index}")

    @property
    def enabled(self) -> List[bool]:
        flags = []
        open_ = True
        for value in self._values:
            flags.append(open_)
            open_ = open_ and value is not None
        return flags

    def set_value(self, index: int, raw: Union[str, int, None]) -> None:
        self._check_slot(index)
        value = parse_face_value(raw)
        self._values[index] = value
        if value is None:
            # A cleared slot starts over; later darts are meaningless without it.
            for i in range(index, DARTS_PER_TURN):
                self._values[i] = None
                self._multipliers[i] = 1

    def set_multiplier(self, index: int, raw: Union[str, int]) -> None:
        self._check_slot(index)
        self._multipliers[index] = parse_multiplier(raw)

    @property
    def thrown(self) -> int:
        return sum(1 for v in self._values if v is not None)

    def darts(self) -> Tuple[Dart, ...]:
        return tuple(
            Dart(v, m)
            for v, m in zip(self._values, self._multipliers)
            if v is not None
        )

    def reset(self) -> None:
        self._values = [None] * DARTS_PER_TURN
        self._multipliers = [1] * DARTS_PER_TURN

    def __repr__(self) -> str:
        return f"DartInputs({list(zip(self._values, self._multipliers))!r})"
