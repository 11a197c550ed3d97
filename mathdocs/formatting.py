"""
formatting.py — Turns numeric results into display LaTeX.

Numbers whose decimal exponent lies inside ``avoid_exponents_in_range`` are
written as plain decimals; anything outside switches to ``m\\cdot10^{k}``.
"""

import math
from typing import Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

NOTATIONS = {'engineering', 'scientific', 'plain'}


class FormatOptions(BaseModel):
    """Display policy for numeric results."""

    model_config = ConfigDict(frozen=True)

    fractional_digits: int = 5
    notation: str = 'engineering'
    avoid_exponents_in_range: Tuple[int, int] = (-3, 4)

    @field_validator('fractional_digits')
    @classmethod
    def validate_digits(cls, v: int) -> int:
        if v < 0:
            raise ValueError('fractional_digits must be >= 0')
        return v

    @field_validator('notation')
    @classmethod
    def validate_notation(cls, v: str) -> str:
        if v not in NOTATIONS:
            raise ValueError(f'notation must be one of {sorted(NOTATIONS)}')
        return v

    @model_validator(mode='after')
    def validate_range(self):
        low, high = self.avoid_exponents_in_range
        if low > high:
            raise ValueError('avoid_exponents_in_range must be [low, high] with low <= high')
        return self


def _fixed(value, digits):
    """Fixed-point text with trailing zeros trimmed."""
    text = f'{value:.{digits}f}'
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    if text in ('-0', ''):
        text = '0'
    return text


def decimal_exponent(value):
    """Power of ten of the leading digit of ``value`` (0 for zero)."""
    if value == 0:
        return 0
    # Going through %e avoids log10 rounding at exact powers of ten
    return int(f'{abs(value):.14e}'.split('e')[1])


def format_real(value, options=None):
    """Format a finite real number according to ``options``."""
    options = options or FormatOptions()
    value = float(value)
    if math.isnan(value):
        raise ValueError('cannot format NaN')
    if math.isinf(value):
        return r'-\infty' if value < 0 else r'\infty'

    digits = options.fractional_digits
    low, high = options.avoid_exponents_in_range
    exponent = decimal_exponent(value)

    if options.notation == 'plain' or value == 0 or low <= exponent <= high:
        return _fixed(value, digits)

    step = 3 if options.notation == 'engineering' else 1
    limit = 10 ** step
    power = exponent - (exponent % step)
    mantissa = _fixed(value / 10 ** power, digits)
    # Rounding can carry the mantissa up to the next step (9.999995 → 10)
    if abs(float(mantissa)) >= limit:
        power += step
        mantissa = _fixed(value / 10 ** power, digits)
    if power == 0:
        return mantissa
    return f'{mantissa}\\cdot10^{{{power}}}'
