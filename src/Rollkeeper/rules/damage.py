# rules/damage.py

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace

import structlog

from Rollkeeper.metrics import inc_counter
from Rollkeeper.rules.errors import MalformedTermError
from Rollkeeper.rules.types import Actor, Critical, EvaluatedRoll, RollBundle, Weapon

log = structlog.get_logger()

RollFn = Callable[[Sequence[str]], EvaluatedRoll]


def damage_dice_count(
    weapon: Weapon,
    *,
    critical: Critical,
    backstab: bool = False,
    actor: Actor | None = None,
) -> int:
    """Number of damage dice after backstab and critical adjustments."""
    num_dice = weapon.num_dice
    if backstab:
        num_dice += 1
        if actor is not None and actor.bonuses.backstab_die:
            num_dice += actor.bonuses.backstab_die + actor.level // 2
    if critical is Critical.SUCCESS:
        num_dice *= weapon.crit_multiplier
    return num_dice


def _damage_term(weapon: Weapon, num_dice: int, die: str | None) -> str:
    if not die:
        raise MalformedTermError(weapon.name, "weapon has no damage die for this grip")
    return f"{num_dice}{die}"


def roll_weapon_damage(
    bundle: RollBundle,
    weapon: Weapon,
    roll: RollFn,
    *,
    actor: Actor | None = None,
    backstab: bool = False,
    damage_parts: Sequence[str] = (),
) -> RollBundle:
    """Return a copy of `bundle` with weapon damage rolls attached.

    Nothing is rolled on a critical failure. Versatile weapons also get a
    secondary roll with the two-handed die.
    """
    critical = bundle.main.critical
    if critical is Critical.FAILURE:
        inc_counter("rolls.damage.skipped")
        log.debug("rules.damage.skipped", weapon=weapon.name, reason="critical_failure")
        return bundle

    num_dice = damage_dice_count(weapon, critical=critical, backstab=backstab, actor=actor)
    log.debug(
        "rules.damage.start",
        weapon=weapon.name,
        num_dice=num_dice,
        critical=critical.value,
        backstab=backstab,
    )

    primary = roll([_damage_term(weapon, num_dice, weapon.damage_die), *damage_parts])
    inc_counter("rolls.damage.primary")
    secondary = None
    if weapon.versatile:
        secondary = roll([_damage_term(weapon, num_dice, weapon.two_handed), *damage_parts])
        inc_counter("rolls.damage.secondary")
    return replace(bundle, primary_damage=primary, secondary_damage=secondary)
