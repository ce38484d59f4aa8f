# rules/dice.py

from __future__ import annotations

import random
import re
from collections.abc import Sequence
from typing import Protocol

import structlog

from Rollkeeper.rules.errors import MalformedTermError
from Rollkeeper.rules.terms import (
    REFERENCE_RE,
    filter_bonus_terms,
    reference_key,
    resolve_bonus,
)
from Rollkeeper.rules.types import EvaluatedRoll, RollContext, TermResult

_DIE_RE = re.compile(r"^(?P<count>\d+)d(?P<faces>\d+)(?P<keep>kh|kl)?$")

log = structlog.get_logger()


class DieSource(Protocol):
    def roll_die(self, faces: int) -> int: ...


class DiceRNG:
    """Uniform die source backed by `random.Random`; seed it for replayable rolls."""

    def __init__(self, seed: int | None = None):
        self._rng = random.Random(seed)

    def roll_die(self, faces: int) -> int:
        return self._rng.randint(1, faces)


def normalize_primary(term: str) -> str:
    # "d6" -> "1d6"
    if term.startswith("d"):
        return f"1{term}"
    return term


def _roll_die_term(term: str, rng: DieSource) -> TermResult:
    m = _DIE_RE.match(term)
    if not m:
        if "d" not in term:
            raise MalformedTermError(term, "missing face count")
        raise MalformedTermError(term, "expected <count>d<faces>[kh|kl]")
    count = int(m.group("count"))
    faces = int(m.group("faces"))
    if faces < 1:
        raise MalformedTermError(term, "dice need at least one face")
    results = tuple(rng.roll_die(faces) for _ in range(count))
    keep = m.group("keep")
    if keep and results:
        kept: tuple[int, ...] = (max(results),) if keep == "kh" else (min(results),)
    else:
        kept = results
    return TermResult(
        term=term, kind="dice", total=sum(kept), faces=faces, results=results, kept=kept
    )


def _resolve_term(term: str, context: RollContext, rng: DieSource) -> TermResult:
    if term.startswith("@"):
        if not REFERENCE_RE.match(term):
            raise MalformedTermError(term, "bad bonus reference")
        value = resolve_bonus(context.lookup(reference_key(term)))
        if value is None:
            log.debug("rules.dice.reference.unresolved", term=term)
            value = 0
        return TermResult(term=term, kind="bonus", total=value)
    return _roll_die_term(term, rng)


def evaluate(terms: Sequence[str], context: RollContext, rng: DieSource) -> EvaluatedRoll:
    """Evaluate a primary die plus bonus references into an `EvaluatedRoll`.

    Bonus terms that do not resolve to a non-zero number are dropped before
    the formula is built. Raises `MalformedTermError` for terms outside the
    grammar.
    """
    if not terms:
        raise MalformedTermError("", "no terms to roll")
    if not all(isinstance(t, str) for t in terms):
        raise MalformedTermError(repr(list(terms)), "terms must be strings")
    primary = normalize_primary(terms[0].strip())
    parts = [primary, *filter_bonus_terms([t.strip() for t in terms[1:]], context)]
    formula = " + ".join(parts)
    log.debug("rules.dice.evaluate.start", formula=formula)

    results = tuple(_resolve_term(part, context, rng) for part in parts)
    head = results[0]
    out = EvaluatedRoll(
        formula=formula,
        total=sum(r.total for r in results),
        terms=results,
        primary_faces=head.faces,
        primary_value=head.total,
    )
    log.debug("rules.dice.evaluate.result", formula=formula, total=out.total)
    return out
