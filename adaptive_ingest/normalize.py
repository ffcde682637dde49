from decimal import Decimal, InvalidOperation
import math
import re

from adaptive_ingest.schemas import Scalar


# Checked in order; the first suffix present in the token wins so that
# "백만" never also triggers the plain "만" rule.
MAGNITUDE_SUFFIXES: tuple[tuple[str, int], ...] = (
    ("억", 100_000_000),
    ("천만", 10_000_000),
    ("백만", 1_000_000),
    ("만", 10_000),
)

_NON_NUMERIC = re.compile(r"[^0-9.\-+]")


def _parse_plain(text: str) -> Decimal | None:
    cleaned = _NON_NUMERIC.sub("", text)
    if not cleaned:
        return None

    sign = cleaned[0] if cleaned[0] in "+-" else ""
    digits = cleaned.replace("+", "").replace("-", "")

    # Keep only the first decimal point.
    whole, dot, fraction = digits.partition(".")
    fraction = fraction.replace(".", "")
    if not whole and not fraction:
        return None

    try:
        return Decimal(f"{sign}{whole or '0'}{dot if fraction else ''}{fraction}")
    except InvalidOperation:
        return None


def _as_number(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def normalize_number(raw: Scalar) -> int | float:
    """Convert a textual or numeric cell into a canonical number, 0 when unparsable."""
    if raw is None:
        return 0
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if math.isnan(raw) or math.isinf(raw):
            return 0
        return int(raw) if raw.is_integer() else raw

    text = str(raw).strip().replace(",", "")
    if not text:
        return 0

    multiplier = 1
    for suffix, factor in MAGNITUDE_SUFFIXES:
        if suffix in text:
            text = text.split(suffix, 1)[0]
            multiplier = factor
            break

    parsed = _parse_plain(text)
    if parsed is None:
        return 0
    return _as_number(parsed * multiplier)
