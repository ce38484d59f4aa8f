from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter


class Critical(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NONE = "none"


class RollMode(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    BLIND = "blind"
    SELF = "self"


class Choice(str, Enum):
    """Single outcome of the interactive roll dialog."""

    ADVANTAGE = "advantage"
    NORMAL = "normal"
    DISADVANTAGE = "disadvantage"
    CANCELLED = "cancelled"

    @property
    def indicator(self) -> int | None:
        return _CHOICE_INDICATORS[self]


_CHOICE_INDICATORS = {
    Choice.ADVANTAGE: 1,
    Choice.NORMAL: 0,
    Choice.DISADVANTAGE: -1,
    Choice.CANCELLED: None,
}


# -----------------------------
# Items and actors
# -----------------------------


class Weapon(BaseModel):
    kind: Literal["weapon"] = "weapon"
    name: str
    num_dice: int = Field(default=1, ge=0)
    one_handed: str | None = None
    two_handed: str | None = None
    crit_multiplier: int = Field(default=2, ge=1)
    versatile: bool = False
    # Weapon can only be wielded two-handed; picks the two-handed die.
    two_handed_only: bool = False

    @property
    def damage_die(self) -> str | None:
        return self.two_handed if self.two_handed_only else self.one_handed

    model_config = dict(extra="forbid", frozen=True)


class Spell(BaseModel):
    kind: Literal["spell"] = "spell"
    name: str
    tier: int = Field(ge=0)

    model_config = dict(extra="forbid", frozen=True)


class PlainItem(BaseModel):
    kind: Literal["item"] = "item"
    name: str

    model_config = dict(extra="forbid", frozen=True)


Item = Annotated[Weapon | Spell | PlainItem, Field(discriminator="kind")]

_ITEM_ADAPTER: TypeAdapter[Weapon | Spell | PlainItem] = TypeAdapter(Item)


def parse_item(data: Mapping[str, Any]) -> Weapon | Spell | PlainItem:
    """Build the right item variant from a raw document, keyed on `kind`."""
    return _ITEM_ADAPTER.validate_python(data)


class CriticalThresholds(BaseModel):
    failure_threshold: int | None = None
    success_threshold: int | None = None

    model_config = dict(extra="forbid", frozen=True)


class ActorBonuses(BaseModel):
    backstab_die: int = 0
    critical: CriticalThresholds = Field(default_factory=CriticalThresholds)

    model_config = dict(extra="forbid", frozen=True)


class Actor(BaseModel):
    name: str
    level: int = Field(default=1, ge=0)
    bonuses: ActorBonuses = Field(default_factory=ActorBonuses)
    # Only used to highlight the advantage button in roll dialogs
    has_advantage: bool = False

    model_config = dict(extra="forbid", frozen=True)


# -----------------------------
# Roll context and options
# -----------------------------


@dataclass(frozen=True)
class RollContext:
    """Everything a roll may reference: bonus values, the item and the actor.

    `values` is the flat lookup used for `@key` bonus references.
    """

    values: Mapping[str, Any] = field(default_factory=dict)
    item: Weapon | Spell | PlainItem | None = None
    actor: Actor | None = None
    backstab: bool = False
    damage_parts: tuple[str, ...] = ()

    def lookup(self, key: str) -> Any:
        return self.values.get(key)

    def merged(self, values: Mapping[str, Any] | None = None, **changes: Any) -> RollContext:
        """Return a copy with extra bonus values and field changes applied."""
        new_values = dict(self.values)
        if values:
            new_values.update(values)
        return replace(self, values=new_values, **changes)


class RollOptions(BaseModel):
    fast_forward: bool = False
    # Unknown modes pass through unvalidated
    roll_mode: str | None = None
    flavor: str | None = None
    title: str | None = None
    target: int | Literal[False] | None = None
    speaker: dict[str, Any] | None = None
    chat_message: bool = True
    dialog_title: str | None = None

    model_config = dict(extra="forbid")


class DialogForm(BaseModel):
    """Values collected from a submitted roll dialog."""

    item_bonus: int | str | None = None
    ability_bonus: int | str | None = None
    talent_bonus: int | str | None = None
    backstab: bool | None = None
    roll_mode: str | None = None

    model_config = dict(extra="forbid", frozen=True)

    def bonuses(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.item_bonus is not None:
            out["itemBonus"] = self.item_bonus
        if self.ability_bonus is not None:
            out["abilityBonus"] = self.ability_bonus
        if self.talent_bonus is not None:
            out["talentBonus"] = self.talent_bonus
        return out


@dataclass(frozen=True)
class RollDialog:
    title: str
    formula: str
    roll_mode: str
    roll_modes: tuple[str, ...]
    highlight_advantage: bool = False


@dataclass(frozen=True)
class DialogResponse:
    choice: Choice
    form: DialogForm | None = None


# -----------------------------
# Evaluated rolls
# -----------------------------


@dataclass(frozen=True)
class TermResult:
    term: str
    kind: Literal["dice", "bonus"]
    total: int
    faces: int | None = None
    results: tuple[int, ...] = ()
    kept: tuple[int, ...] = ()


@dataclass(frozen=True)
class EvaluatedRoll:
    formula: str
    total: int
    terms: tuple[TermResult, ...]
    primary_faces: int | None
    primary_value: int
    critical: Critical = Critical.NONE


@dataclass
class RollBundle:
    main: EvaluatedRoll
    primary_damage: EvaluatedRoll | None = None
    secondary_damage: EvaluatedRoll | None = None
    success: bool | None = None

    def attach_success(self, target: int) -> bool:
        self.success = self.main.total >= target
        return self.success


@dataclass(frozen=True)
class RollResult:
    bundle: RollBundle
    context: RollContext
    options: RollOptions
    advantage: int
    rendered: Any = None
