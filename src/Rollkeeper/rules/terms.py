# rules/terms.py
"""Pure helpers that reshape a list of roll terms before evaluation.

A term is either a die term (``1d20``, ``2d20kh``) or a bonus reference
(``@itemBonus``). The first term of a list is always the primary die.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from typing import Any

from Rollkeeper.rules.types import RollContext

D20 = "1d20"

_FACES_RE = re.compile(r"^\d*d(?P<faces>\d+)")
# Any non-empty key after "@"; it is looked up verbatim in the context.
REFERENCE_RE = re.compile(r"^@(?P<key>.+)$")


def resolve_bonus(value: Any) -> int | None:
    """Return the integer value of a bonus, or None when it is not numeric.

    Form input arrives as strings, so numeric strings count. Fractions are
    truncated toward zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            return None
        return int(parsed) if math.isfinite(parsed) else None
    return None


def reference_key(term: str) -> str:
    match = REFERENCE_RE.match(term)
    if match is None:
        raise ValueError(f"not a bonus reference: {term!r}")
    return match.group("key")


def filter_bonus_terms(terms: Sequence[str], context: RollContext) -> list[str]:
    """Keep only ``@key`` terms whose bonus is numeric and non-zero.

    Anything that is not a reference (a stray die, ``$bonus``) is dropped.
    The primary die is not special-cased here; callers re-prepend it.
    """
    kept: list[str] = []
    for term in terms:
        if not REFERENCE_RE.match(term):
            continue
        value = resolve_bonus(context.lookup(reference_key(term)))
        if value:
            kept.append(term)
    return kept


def apply_advantage(terms: Sequence[str], adv: int = 0) -> list[str]:
    """Rewrite a single primary die to roll twice and keep the high/low one.

    Anything other than exactly one die in the first term is left alone.
    """
    out = list(terms)
    if not out or not adv:
        return out
    out[0] = out[0].strip()
    count, sep, rest = out[0].partition("d")
    if not sep or not count.isdigit() or int(count) != 1:
        return out
    suffix = "kh" if adv > 0 else "kl"
    out[0] = f"{int(count) * 2}d{rest}{suffix}"
    return out


def primary_faces(terms: Sequence[str]) -> int | None:
    if not terms or not isinstance(terms[0], str):
        return None
    m = _FACES_RE.match(terms[0])
    return int(m.group("faces")) if m else None


def is_d20(terms: Sequence[str]) -> bool:
    return primary_faces(terms) == 20


def ensure_d20(terms: Sequence[str]) -> list[str]:
    """Prepend a d20 unless the list already starts with one."""
    out = list(terms)
    if not out or out[0] != D20:
        out.insert(0, D20)
    return out
