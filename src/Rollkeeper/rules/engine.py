from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from typing import Protocol

import structlog

from Rollkeeper.config import Settings
from Rollkeeper.metrics import inc_counter, observe_histogram, record_critical
from Rollkeeper.rules.critical import classify_critical
from Rollkeeper.rules.damage import roll_weapon_damage
from Rollkeeper.rules.dice import DiceRNG, DieSource, evaluate
from Rollkeeper.rules.terms import apply_advantage, ensure_d20, is_d20
from Rollkeeper.rules.types import (
    Choice,
    DialogForm,
    DialogResponse,
    EvaluatedRoll,
    RollBundle,
    RollContext,
    RollDialog,
    RollMode,
    RollOptions,
    RollResult,
    Spell,
    Weapon,
)
from Rollkeeper.services.chat import (
    ChatCardRenderer,
    ChatSink,
    RenderContext,
    RollRenderer,
    Titles,
)

log = structlog.get_logger()

SPELL_DC_BASE = 10


class ChoicePrompt(Protocol):
    """Interactive boundary: shows a roll dialog and reports exactly one choice."""

    async def choose(self, dialog: RollDialog) -> DialogResponse: ...


class RollEngine:
    """
    Resolves a roll end to end: advantage, evaluation, critical
    classification, weapon damage and spell targets, then hands the
    result to the renderer.
    """

    def __init__(
        self,
        rng: DieSource | None = None,
        *,
        renderer: RollRenderer | None = None,
        prompt: ChoicePrompt | None = None,
        render_ctx: RenderContext | None = None,
        seed: int | None = None,
    ):
        self.rng = rng if rng is not None else DiceRNG(seed)
        self.renderer = renderer if renderer is not None else ChatCardRenderer()
        self.prompt = prompt
        self.render_ctx = render_ctx if render_ctx is not None else RenderContext()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        sink: ChatSink | None = None,
        prompt: ChoicePrompt | None = None,
        user_id: str | None = None,
        titles: Titles | None = None,
    ) -> RollEngine:
        render_ctx = RenderContext(
            user_id=user_id,
            default_roll_mode=settings.default_roll_mode,
            titles=titles or Titles(),
            sound=settings.chat_sound,
        )
        return cls(
            DiceRNG(settings.dice_seed),
            renderer=ChatCardRenderer(sink),
            prompt=prompt,
            render_ctx=render_ctx,
        )

    # -----------------------------
    # Evaluation
    # -----------------------------

    def evaluate(self, terms: Sequence[str], context: RollContext) -> EvaluatedRoll:
        """Evaluate terms and classify the result using the actor's crit thresholds."""
        roll = evaluate(terms, context, self.rng)
        thresholds = context.actor.bonuses.critical if context.actor else None
        critical = classify_critical(roll, thresholds)
        inc_counter("rolls.evaluated")
        record_critical(critical.value)
        return replace(roll, critical=critical)

    def roll_advantage(
        self, terms: Sequence[str], context: RollContext, adv: int = 0
    ) -> EvaluatedRoll:
        return self.evaluate(apply_advantage(terms, adv), context)

    # -----------------------------
    # Orchestration
    # -----------------------------

    async def roll(
        self,
        terms: Sequence[str],
        context: RollContext | None = None,
        adv: int = 0,
        options: RollOptions | None = None,
        form: DialogForm | None = None,
    ) -> RollResult:
        context = context if context is not None else RollContext()
        options = options.model_copy() if options is not None else RollOptions()

        if form is not None and not options.fast_forward:
            changes = {} if form.backstab is None else {"backstab": form.backstab}
            context = context.merged(form.bonuses(), **changes)

        if form is not None and form.roll_mode:
            options.roll_mode = form.roll_mode
        elif not options.roll_mode:
            options.roll_mode = self.render_ctx.default_roll_mode

        terms = apply_advantage(terms, adv)
        log.debug("rules.engine.roll.start", terms=terms, adv=adv, roll_mode=options.roll_mode)
        bundle = RollBundle(main=self.evaluate(terms, context))
        observe_histogram("rolls.main.total", bundle.main.total)

        if is_d20(terms):
            titles = self.render_ctx.titles
            item = context.item
            if isinstance(item, Weapon):
                bundle = roll_weapon_damage(
                    bundle,
                    item,
                    lambda parts: self.evaluate(parts, context),
                    actor=context.actor,
                    backstab=context.backstab,
                    damage_parts=context.damage_parts,
                )
                if not options.flavor:
                    options.flavor = titles.item_roll.format(name=item.name)
            elif isinstance(item, Spell):
                options.target = item.tier + SPELL_DC_BASE
                if not options.flavor:
                    options.flavor = titles.spell_roll.format(
                        name=item.name, tier=item.tier, spell_dc=options.target
                    )

        rendered = await self.renderer.render(bundle, context, adv, options, self.render_ctx)
        log.info(
            "rules.engine.roll.completed",
            formula=bundle.main.formula,
            total=bundle.main.total,
            critical=bundle.main.critical.value,
            has_damage=bundle.primary_damage is not None,
            success=bundle.success,
        )
        return RollResult(
            bundle=bundle, context=context, options=options, advantage=adv, rendered=rendered
        )

    async def roll_d20(
        self,
        terms: Sequence[str] = (),
        context: RollContext | None = None,
        adv: int = 0,
        options: RollOptions | None = None,
        form: DialogForm | None = None,
    ) -> RollResult:
        return await self.roll(ensure_d20(terms), context, adv, options, form)

    # -----------------------------
    # Dialogs
    # -----------------------------

    def build_dialog(
        self, terms: Sequence[str], context: RollContext, options: RollOptions
    ) -> RollDialog:
        return RollDialog(
            title=options.dialog_title or self.render_ctx.titles.dialog_d20,
            formula=" + ".join(terms),
            roll_mode=self.render_ctx.default_roll_mode,
            roll_modes=tuple(m.value for m in RollMode),
            highlight_advantage=bool(context.actor and context.actor.has_advantage),
        )

    async def _ask(self, dialog: RollDialog) -> DialogResponse:
        if self.prompt is None:
            raise RuntimeError("RollEngine has no ChoicePrompt configured for dialogs")
        response = await self.prompt.choose(dialog)
        inc_counter(f"rolls.dialog.{response.choice.value}")
        log.debug("rules.engine.dialog.choice", choice=response.choice.value)
        return response

    async def roll_dialog(
        self,
        terms: Sequence[str],
        context: RollContext | None = None,
        options: RollOptions | None = None,
    ) -> RollResult | None:
        """Ask for advantage/normal/disadvantage, then roll. None if cancelled."""
        context = context if context is not None else RollContext()
        options = options if options is not None else RollOptions()
        dialog = self.build_dialog(terms, context, options)
        if options.fast_forward:
            return await self.roll(terms, context, 0, options)
        response = await self._ask(dialog)
        if response.choice is Choice.CANCELLED:
            return None
        return await self.roll(terms, context, response.choice.indicator, options, response.form)

    async def roll_d20_dialog(
        self,
        terms: Sequence[str] = (),
        context: RollContext | None = None,
        options: RollOptions | None = None,
    ) -> RollResult | None:
        context = context if context is not None else RollContext()
        options = options if options is not None else RollOptions()
        dialog = self.build_dialog(terms, context, options)
        if options.fast_forward:
            return await self.roll_d20(terms, context, 0, options)
        response = await self._ask(dialog)
        if response.choice is Choice.CANCELLED:
            return None
        return await self.roll_d20(
            terms, context, response.choice.indicator, options, response.form
        )
