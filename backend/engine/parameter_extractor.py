"""
PARAMETER EXTRACTOR
===================
Finds tunable numeric literals in generated strategy source text and gives
each one a bounded search range for the optimizer.

Extraction is a single line-by-line regex pass. Patterns are checked in
order and the first occurrence of a name wins. Nothing here raises on bad
input: malformed or reserved matches are dropped.
"""
import math
import re
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from config import OPTIMIZATION_EXCLUDE_PATTERN, RESERVED_VARIABLE_NAMES
from models.trade_models import DetectedVariable

_NUMBER = r'(\d+\.?\d*)'

# (compiled pattern, fixed name, suffix with line index)
# A fixed name of None means the name is capture group 1 and the value group 2.
VARIABLE_PATTERNS: List[Tuple[re.Pattern, Optional[str], bool]] = [
    (re.compile(r'(\w+)\s*=\s*' + _NUMBER + r'\s*(?://.*)?$', re.IGNORECASE), None, False),
    (re.compile(r'ONCE\s+(\w+)\s*=\s*' + _NUMBER, re.IGNORECASE), None, False),
    (re.compile(r'SET\s+STOP\s+(?:P)?LOSS\s+' + _NUMBER, re.IGNORECASE), 'StopLoss', False),
    (re.compile(r'SET\s+TARGET\s+(?:P)?PROFIT\s+' + _NUMBER, re.IGNORECASE), 'TakeProfit', False),
    (re.compile(r'Average\[(\d+)\]', re.IGNORECASE), 'AvgPeriod', True),
    (re.compile(r'ExponentialAverage\[(\d+)\]', re.IGNORECASE), 'EMAPeriod', True),
    (re.compile(r'RSI\[(\d+)\]', re.IGNORECASE), 'RSIPeriod', True),
    (re.compile(r'Summation\[.*?,\s*(\d+)\]', re.IGNORECASE), 'SumPeriod', True),
]

_EXCLUDE_RE = re.compile(OPTIMIZATION_EXCLUDE_PATTERN, re.IGNORECASE)

# Standalone numeric token (not the digits inside an identifier like x1)
_LITERAL_RE = re.compile(r'(?<![\w.])\d+\.?\d*')


def decimal_places(value: float) -> int:
    """Digits after the point in the shortest repr of value (7.0 -> 0, 0.25 -> 2)."""
    text = repr(float(value))
    if 'e' in text or 'E' in text:
        return max(0, -Decimal(text).normalize().as_tuple().exponent)
    _, _, frac = text.partition('.')
    return len(frac.rstrip('0'))


def synthesize_range(value: float) -> Tuple[float, float, float]:
    """
    Derive a (min, max, step) search range from a literal's magnitude.

    Bands:
        < 1    -> [max(precision, 0.1v), 5v], step = precision
        < 10   -> [max(0.1, 0.2v), 3v], step = precision or 0.1 for whole numbers
        < 100  -> [max(1, floor(0.2v)), ceil(3v)], step = 1
        >= 100 -> [max(10, floor(0.2v)), ceil(3v)], step = 10

    Always min <= value <= max and step > 0 for value > 0.
    """
    value = float(value)
    decimals = decimal_places(value)
    precision = 10 ** -decimals
    digits = decimals + 2

    if value < 1:
        lo = max(precision, round(value * 0.1, digits))
        hi = round(value * 5, digits)
        step = precision
    elif value < 10:
        lo = max(0.1, round(value * 0.2, digits))
        hi = round(value * 3, digits)
        step = precision if decimals > 0 else 0.1
    elif value < 100:
        lo = float(max(1, math.floor(value * 0.2)))
        hi = float(math.ceil(value * 3))
        step = 1.0
    else:
        lo = float(max(10, math.floor(value * 0.2)))
        hi = float(math.ceil(value * 3))
        step = 10.0

    return lo, hi, float(step)


def is_excluded_from_optimization(name: str) -> bool:
    """Session and clock variables are tuned by hand, not by the optimizer."""
    return bool(_EXCLUDE_RE.match(name))


def detect_variables(code: str) -> List[DetectedVariable]:
    """
    Scan strategy text for tunable numeric literals.

    Args:
        code: Strategy source text

    Returns:
        DetectedVariable list in discovery order, one per distinct name
    """
    variables: List[DetectedVariable] = []
    seen = set()

    for line_index, line in enumerate((code or '').split('\n')):
        if line.strip().startswith('//'):
            continue

        for pattern, fixed_name, suffixed in VARIABLE_PATTERNS:
            for match in pattern.finditer(line):
                if fixed_name is None:
                    name, raw_value = match.group(1), match.group(2)
                else:
                    name = f"{fixed_name}_{line_index}" if suffixed else fixed_name
                    raw_value = match.group(1)

                try:
                    value = float(raw_value)
                except (TypeError, ValueError):
                    continue

                if name in seen or not math.isfinite(value) or value <= 0:
                    continue
                if name in RESERVED_VARIABLE_NAMES:
                    continue

                seen.add(name)
                lo, hi, step = synthesize_range(value)
                variables.append(DetectedVariable(
                    name=name,
                    original_value=value,
                    current_value=value,
                    min=lo,
                    max=hi,
                    step=step,
                    source_pattern=match.group(0),
                    line_index=line_index,
                    include_in_optimization=not is_excluded_from_optimization(name),
                ))

    return variables


def format_value(value: float) -> str:
    """Render a number the way it would be typed in strategy text."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return ('%.10f' % value).rstrip('0').rstrip('.')


def _rewrite_pattern(pattern: str, original: float, current: float) -> str:
    for literal in _LITERAL_RE.finditer(pattern):
        if float(literal.group(0)) == original:
            return pattern[:literal.start()] + format_value(current) + pattern[literal.end():]
    return pattern


def apply_variables_to_code(code: str, variables: Iterable[DetectedVariable]) -> str:
    """
    Write each variable's current value back into the strategy text.

    Only the first occurrence of each variable's source pattern is touched,
    and within it only the literal holding the original value.
    """
    for var in variables:
        if not var.source_pattern or var.current_value == var.original_value:
            continue
        replacement = _rewrite_pattern(var.source_pattern, var.original_value, var.current_value)
        code = code.replace(var.source_pattern, replacement, 1)
    return code
