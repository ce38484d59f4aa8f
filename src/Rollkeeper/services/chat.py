"""Default rendering collaborator: turns a RollBundle into a chat card.

Delivery is delegated to a `ChatSink`; everything the card needs from the
host (user, default speaker, display strings) arrives in a `RenderContext`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from pydantic import BaseModel

from Rollkeeper.metrics import inc_counter
from Rollkeeper.rules.types import (
    RollBundle,
    RollContext,
    RollMode,
    RollOptions,
    Spell,
    Weapon,
)

log = structlog.get_logger()


class Titles(BaseModel):
    """Display strings, already localized by the host."""

    default_card: str = "Roll"
    dialog_d20: str = "Roll D20"
    item_roll: str = "Attack with {name}"
    spell_roll: str = "Cast {name} (tier {tier}, DC {spell_dc})"
    advantage: str = "{title} with advantage"
    disadvantage: str = "{title} with disadvantage"

    model_config = dict(extra="forbid", frozen=True)


@dataclass(frozen=True)
class RenderContext:
    user_id: str | None = None
    default_roll_mode: str = RollMode.PUBLIC.value
    default_speaker: dict[str, Any] | None = None
    titles: Titles = field(default_factory=Titles)
    sound: str | None = None


@dataclass(frozen=True)
class ChatFlags:
    is_roll: bool = True
    can_popout: bool = True
    has_target: bool = False
    critical: str = "none"
    success: bool | None = None


@dataclass(frozen=True)
class CardContent:
    title: str
    flavor: str
    formula: str | None = None
    is_spell: bool = False
    is_weapon: bool = False
    is_versatile: bool = False
    is_roll: bool = True


@dataclass(frozen=True)
class ChatCard:
    user: str | None
    speaker: dict[str, Any] | None
    flags: ChatFlags
    content: CardContent
    bundle: RollBundle
    flavor: str | None = None
    blind: bool = False
    sound: str | None = None


class ChatSink(Protocol):
    async def post(self, card: ChatCard) -> None: ...


class RollRenderer(Protocol):
    async def render(
        self,
        bundle: RollBundle,
        context: RollContext,
        adv: int,
        options: RollOptions,
        render_ctx: RenderContext,
    ) -> Any: ...


def has_target(options: RollOptions) -> bool:
    return options.target is not None and options.target is not False


def card_flavor(adv: int, options: RollOptions, titles: Titles) -> str | None:
    if not options.flavor:
        return None
    if adv > 0:
        return titles.advantage.format(title=options.flavor)
    if adv < 0:
        return titles.disadvantage.format(title=options.flavor)
    return options.flavor


def card_content(
    bundle: RollBundle, context: RollContext, options: RollOptions, titles: Titles
) -> CardContent:
    item = context.item
    return CardContent(
        title=options.title or titles.default_card,
        flavor=options.flavor or options.title or titles.default_card,
        formula=bundle.main.formula,
        is_spell=isinstance(item, Spell),
        is_weapon=isinstance(item, Weapon),
        is_versatile=isinstance(item, Weapon) and item.versatile,
    )


class ChatCardRenderer:
    """Builds a chat card for every roll and posts it unless told not to."""

    def __init__(self, sink: ChatSink | None = None):
        self._sink = sink

    async def render(
        self,
        bundle: RollBundle,
        context: RollContext,
        adv: int,
        options: RollOptions,
        render_ctx: RenderContext,
    ) -> ChatCard:
        flags = ChatFlags(has_target=has_target(options), critical=bundle.main.critical.value)
        if flags.has_target:
            success = bundle.attach_success(int(options.target))
            flags = ChatFlags(
                has_target=True, critical=flags.critical, success=success
            )

        card = ChatCard(
            user=render_ctx.user_id,
            speaker=options.speaker or render_ctx.default_speaker,
            flags=flags,
            content=card_content(bundle, context, options, render_ctx.titles),
            bundle=bundle,
            flavor=card_flavor(adv, options, render_ctx.titles),
            blind=options.roll_mode == RollMode.BLIND.value,
            sound=render_ctx.sound,
        )

        if options.chat_message and self._sink is not None:
            await self._sink.post(card)
            inc_counter("rolls.chat.posted")
            log.info(
                "services.chat.posted",
                formula=bundle.main.formula,
                total=bundle.main.total,
                roll_mode=options.roll_mode,
            )
        return card
