"""Overtype editor for the fixed ``DDD.DDD`` frequency mask.

The buffer only ever holds six digits, so every state renders to a well-formed
frequency string. Key handling is a pure function of ``(digits, cursor, key)``
so it can be tested without a text widget.

Caret positions run over the formatted string: 0-2 are the integer digits,
3 is the separator (never a resting position), 4-6 are the fractional digits
and 7 is the end of the field.
"""

from __future__ import annotations

from dataclasses import dataclass

DIGIT_COUNT = 6
SEPARATOR_POS = 3
END_POS = DIGIT_COUNT + 1
DIGIT_POSITIONS = (0, 1, 2, 4, 5, 6)

MIN_FREQUENCY = 0.001
MAX_FREQUENCY = 999.999

Digits = tuple[int, ...]

ZERO_DIGITS: Digits = (0,) * DIGIT_COUNT


class FrequencyValidationError(ValueError):
    """Submitted frequency is outside the accepted range."""


def position_to_index(pos: int) -> int:
    return pos if pos < SEPARATOR_POS else pos - 1


def format_digits(digits: Digits) -> str:
    text = "".join(str(d) for d in digits)
    return f"{text[:SEPARATOR_POS]}.{text[SEPARATOR_POS:]}"


def parse_frequency(formatted: str) -> float:
    return float(formatted.replace(",", "."))


def format_frequency(value: float) -> str:
    """Render a frequency as ``DDD.DDD`` (rounded to three decimals)."""
    return format_digits(digits_from_value(value))


def digits_from_value(value: float) -> Digits:
    millis = min(max(int(round(value * 1000)), 0), 999_999)
    return tuple(int(ch) for ch in f"{millis:06d}")


def validate_frequency(value: float) -> float:
    if not MIN_FREQUENCY <= value <= MAX_FREQUENCY:
        raise FrequencyValidationError(
            f"Frequency {format_frequency(value)} is outside {MIN_FREQUENCY:07.3f}-{MAX_FREQUENCY:07.3f}"
        )
    return round(value, 3)


def normalize_cursor(pos: int, *, moving_left: bool = False) -> int:
    """Clamp a caret position and move it off the separator."""
    pos = min(max(pos, 0), END_POS)
    if pos == SEPARATOR_POS:
        return SEPARATOR_POS - 1 if moving_left else SEPARATOR_POS + 1
    return pos


def apply_key(digits: Digits, cursor: int, key: str) -> tuple[Digits, int]:
    """Return the buffer and caret after one key press.

    ``key`` is a single character for printable keys or a key name such as
    ``Backspace``, ``ArrowLeft`` or ``ArrowRight``. Unhandled keys leave the
    state unchanged.
    """
    if len(key) == 1 and key in "0123456789":
        if cursor not in DIGIT_POSITIONS:
            return digits, cursor
        index = position_to_index(cursor)
        updated = digits[:index] + (int(key),) + digits[index + 1:]
        return updated, normalize_cursor(cursor + 1)

    if key == "Backspace":
        if cursor <= 0:
            return digits, cursor
        slot = cursor - 1
        # Directly after the separator the first fractional digit is cleared.
        index = slot if slot < SEPARATOR_POS else max(slot - 1, SEPARATOR_POS)
        updated = digits[:index] + (0,) + digits[index + 1:]
        return updated, normalize_cursor(cursor - 1, moving_left=True)

    if key == "ArrowLeft":
        return digits, normalize_cursor(cursor - 1, moving_left=True)

    if key == "ArrowRight":
        return digits, normalize_cursor(cursor + 1)

    return digits, cursor


@dataclass
class FrequencyEditBuffer:
    digits: Digits = ZERO_DIGITS

    def __post_init__(self) -> None:
        if len(self.digits) != DIGIT_COUNT or any(not 0 <= d <= 9 for d in self.digits):
            raise ValueError(f"Frequency buffer needs {DIGIT_COUNT} digits, got {self.digits!r}")

    @classmethod
    def from_value(cls, value: float) -> "FrequencyEditBuffer":
        return cls(digits_from_value(value))

    @property
    def formatted(self) -> str:
        return format_digits(self.digits)

    @property
    def numeric_value(self) -> float:
        return parse_frequency(self.formatted)


class FrequencyMaskEditor:
    """Stateful wrapper around ``apply_key`` for a single input field."""

    def __init__(self, initial: float | None = None):
        self._buffer = FrequencyEditBuffer() if initial is None else FrequencyEditBuffer.from_value(initial)
        self._cursor = 0

    @property
    def digits(self) -> Digits:
        return self._buffer.digits

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def formatted(self) -> str:
        return self._buffer.formatted

    @property
    def numeric_value(self) -> float:
        return self._buffer.numeric_value

    def press(self, key: str) -> str:
        digits, self._cursor = apply_key(self._buffer.digits, self._cursor, key)
        self._buffer = FrequencyEditBuffer(digits)
        return self.formatted

    def type_text(self, text: str) -> str:
        for key in text:
            self.press(key)
        return self.formatted

    def select(self, pos: int) -> int:
        """Place the caret, e.g. after a mouse click."""
        self._cursor = normalize_cursor(pos)
        return self._cursor

    def reset(self) -> None:
        self._buffer = FrequencyEditBuffer()
        self._cursor = 0

    def submit(self) -> float:
        """Validated numeric value; raises ``FrequencyValidationError``."""
        return validate_frequency(self.numeric_value)
