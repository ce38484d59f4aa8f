# test_engine.py
import pytest

from Rollkeeper.metrics import get_counter
from Rollkeeper.rules.engine import RollEngine
from Rollkeeper.rules.errors import MalformedTermError
from Rollkeeper.rules.types import (
    Actor,
    ActorBonuses,
    Choice,
    Critical,
    CriticalThresholds,
    DialogForm,
    DialogResponse,
    PlainItem,
    RollContext,
    RollDialog,
    RollOptions,
    Spell,
    Weapon,
)
from Rollkeeper.services.chat import ChatCardRenderer, RenderContext

SWORD = Weapon(name="Longsword", num_dice=1, one_handed="d8")
VERSATILE = Weapon(name="Bastard Sword", num_dice=1, one_handed="d6", two_handed="d10", versatile=True)


class FakePrompt:
    def __init__(self, response: DialogResponse):
        self.response = response
        self.dialogs: list[RollDialog] = []

    async def choose(self, dialog: RollDialog) -> DialogResponse:
        self.dialogs.append(dialog)
        return self.response


@pytest.mark.asyncio
async def test_d20_with_item_bonus(engine, dice):
    dice.queue(11)
    res = await engine.roll(["1d20", "@itemBonus"], RollContext(values={"itemBonus": 3}))
    main = res.bundle.main
    assert main.formula == "1d20 + @itemBonus"
    assert main.total == 14
    assert main.critical is Critical.NONE
    assert res.bundle.primary_damage is None
    assert res.options.roll_mode == "public"


@pytest.mark.asyncio
async def test_advantage_and_disadvantage(engine, dice):
    dice.queue(5, 17)
    adv = await engine.roll(["1d20"], adv=1)
    assert adv.bundle.main.formula == "2d20kh"
    assert adv.bundle.main.total == 17

    dice.queue(20, 1)
    dis = await engine.roll(["1d20"], adv=-1)
    assert dis.bundle.main.formula == "2d20kl"
    assert dis.bundle.main.critical is Critical.FAILURE


@pytest.mark.asyncio
async def test_advantage_crit_uses_kept_die(engine, dice):
    dice.queue(3, 20)
    res = await engine.roll(["1d20", "@abilityBonus"], RollContext(values={"abilityBonus": 2}), adv=1)
    assert res.bundle.main.critical is Critical.SUCCESS
    assert res.bundle.main.total == 22


@pytest.mark.asyncio
async def test_advantage_applies_to_padded_primary(engine, dice):
    dice.queue(5, 17)
    res = await engine.roll([" 1d20"], adv=1)
    assert res.bundle.main.formula == "2d20kh"
    assert res.bundle.main.total == 17
    assert [t.results for t in res.bundle.main.terms] == [(5, 17)]


@pytest.mark.asyncio
async def test_weapon_hit_rolls_damage_and_sets_flavor(engine, dice):
    dice.queue(12, 6)
    ctx = RollContext(values={"damageBonus": 1}, item=SWORD, damage_parts=("@damageBonus",))
    res = await engine.roll(["1d20"], ctx)
    assert res.bundle.primary_damage.formula == "1d8 + @damageBonus"
    assert res.bundle.primary_damage.total == 7
    assert res.bundle.secondary_damage is None
    assert res.options.flavor == "Attack with Longsword"


@pytest.mark.asyncio
async def test_weapon_critical_doubles_damage_dice(engine, dice):
    dice.queue(20, 2, 3)
    res = await engine.roll(["1d20"], RollContext(item=SWORD))
    assert res.bundle.main.critical is Critical.SUCCESS
    assert res.bundle.primary_damage.formula == "2d8"
    assert res.bundle.primary_damage.total == 5


@pytest.mark.asyncio
async def test_weapon_fumble_has_no_damage(engine, dice):
    dice.queue(1)
    res = await engine.roll(["1d20"], RollContext(item=VERSATILE))
    assert res.bundle.main.critical is Critical.FAILURE
    assert res.bundle.primary_damage is None
    assert res.bundle.secondary_damage is None


@pytest.mark.asyncio
async def test_versatile_weapon_end_to_end(engine, dice):
    dice.queue(14, 4, 8)
    ctx = RollContext(values={"damageBonus": 2}, item=VERSATILE, damage_parts=("@damageBonus",))
    res = await engine.roll(["1d20"], ctx)
    assert res.bundle.primary_damage.formula == "1d6 + @damageBonus"
    assert res.bundle.secondary_damage.formula == "1d10 + @damageBonus"
    assert dice.faces == [20, 6, 10]


@pytest.mark.asyncio
async def test_backstab_and_actor_thresholds(engine, dice):
    actor = Actor(
        name="Quill",
        level=4,
        bonuses=ActorBonuses(backstab_die=1, critical=CriticalThresholds(success_threshold=19)),
    )
    dice.queue(19, *[1] * 10)
    res = await engine.roll(["1d20"], RollContext(item=SWORD, actor=actor, backstab=True))
    assert res.bundle.main.critical is Critical.SUCCESS
    # (1 + 1 + 1 + 2) * 2
    assert res.bundle.primary_damage.formula == "10d8"


@pytest.mark.asyncio
async def test_non_d20_roll_skips_weapon_damage(engine, dice):
    dice.queue(3, 4)
    res = await engine.roll(["2d6"], RollContext(item=SWORD))
    assert res.bundle.main.total == 7
    assert res.bundle.primary_damage is None
    assert res.options.flavor is None


@pytest.mark.asyncio
async def test_spell_sets_target_and_success(engine, dice, sink):
    spell = Spell(name="Magic Missile", tier=1)
    dice.queue(9)
    res = await engine.roll(
        ["1d20", "@abilityBonus"], RollContext(values={"abilityBonus": 2}, item=spell)
    )
    assert res.options.target == 11
    assert res.options.flavor == "Cast Magic Missile (tier 1, DC 11)"
    assert res.bundle.success is True
    assert sink.cards[0].flags.success is True
    assert sink.cards[0].content.is_spell


@pytest.mark.asyncio
async def test_spell_keeps_caller_flavor(engine, dice):
    dice.queue(2)
    res = await engine.roll(
        ["1d20"], RollContext(item=Spell(name="Light", tier=1)), options=RollOptions(flavor="Glow")
    )
    assert res.options.flavor == "Glow"
    assert res.bundle.success is False


@pytest.mark.asyncio
async def test_plain_item_only_rolls(engine, dice):
    dice.queue(10)
    res = await engine.roll(["1d20"], RollContext(item=PlainItem(name="Torch")))
    assert res.bundle.primary_damage is None
    assert res.options.target is None
    assert res.bundle.success is None


@pytest.mark.asyncio
async def test_zero_target_still_attaches_success(engine, dice, sink):
    dice.queue(1)
    res = await engine.roll(["1d20"], options=RollOptions(target=0))
    assert res.options.target == 0
    assert res.bundle.success is True
    assert sink.cards[0].flags.success is True


@pytest.mark.asyncio
async def test_caller_options_are_not_mutated(engine, dice):
    opts = RollOptions()
    dice.queue(10, 3)
    await engine.roll(["1d20"], RollContext(item=SWORD), options=opts)
    assert opts.flavor is None
    assert opts.roll_mode is None


@pytest.mark.asyncio
async def test_malformed_term_propagates(engine):
    with pytest.raises(MalformedTermError):
        await engine.roll(["1dx"])


@pytest.mark.asyncio
async def test_roll_d20_prepends_die(engine, dice):
    dice.queue(8)
    res = await engine.roll_d20(["@abilityBonus"], RollContext(values={"abilityBonus": 1}))
    assert res.bundle.main.formula == "1d20 + @abilityBonus"
    assert res.bundle.main.total == 9


@pytest.mark.asyncio
async def test_form_bonuses_merge_unless_fast_forward(engine, dice):
    form = DialogForm(item_bonus="2", roll_mode="blind", backstab=True)
    dice.queue(10, 1, 1)
    res = await engine.roll(["1d20", "@itemBonus"], RollContext(item=SWORD), form=form)
    assert res.bundle.main.total == 12
    assert res.context.backstab is True
    assert res.bundle.primary_damage.formula == "2d8"
    assert res.options.roll_mode == "blind"
    assert res.rendered.blind is True

    dice.queue(10, 1)
    res = await engine.roll(
        ["1d20", "@itemBonus"],
        RollContext(item=SWORD),
        options=RollOptions(fast_forward=True),
        form=form,
    )
    assert res.bundle.main.total == 10
    assert res.context.backstab is False


@pytest.mark.asyncio
async def test_roll_mode_precedence(dice, sink):
    engine = RollEngine(
        dice,
        renderer=ChatCardRenderer(sink),
        render_ctx=RenderContext(default_roll_mode="private"),
    )
    dice.queue(5, 5)
    assert (await engine.roll(["1d20"])).options.roll_mode == "private"
    res = await engine.roll(["1d20"], options=RollOptions(roll_mode="self"))
    assert res.options.roll_mode == "self"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "choice, formula",
    [(Choice.ADVANTAGE, "2d20kh"), (Choice.NORMAL, "1d20"), (Choice.DISADVANTAGE, "2d20kl")],
)
async def test_d20_dialog_choices(engine, dice, choice, formula, clean_metrics):
    prompt = FakePrompt(DialogResponse(choice=choice))
    engine.prompt = prompt
    dice.queue(7, 13)
    res = await engine.roll_d20_dialog(["@abilityBonus"])
    assert res.bundle.main.formula == formula
    assert res.advantage == choice.indicator
    assert prompt.dialogs[0].formula == "@abilityBonus"
    assert prompt.dialogs[0].title == "Roll D20"
    assert get_counter(f"rolls.dialog.{choice.value}") == 1


@pytest.mark.asyncio
async def test_dialog_cancel_returns_none(engine, sink):
    engine.prompt = FakePrompt(DialogResponse(choice=Choice.CANCELLED))
    assert await engine.roll_dialog(["1d20"]) is None
    assert await engine.roll_d20_dialog([]) is None
    assert sink.cards == []


@pytest.mark.asyncio
async def test_dialog_fast_forward_skips_prompt(engine, dice):
    prompt = FakePrompt(DialogResponse(choice=Choice.ADVANTAGE))
    engine.prompt = prompt
    dice.queue(6)
    res = await engine.roll_dialog(["1d20"], options=RollOptions(fast_forward=True))
    assert res.advantage == 0
    assert res.bundle.main.formula == "1d20"
    assert prompt.dialogs == []


@pytest.mark.asyncio
async def test_dialog_passes_form_and_highlight(engine, dice):
    actor = Actor(name="Quill", has_advantage=True)
    prompt = FakePrompt(DialogResponse(choice=Choice.NORMAL, form=DialogForm(talent_bonus=1)))
    engine.prompt = prompt
    dice.queue(4)
    res = await engine.roll_dialog(
        ["1d20", "@talentBonus"],
        RollContext(actor=actor),
        RollOptions(dialog_title="Sneak"),
    )
    assert prompt.dialogs[0].highlight_advantage is True
    assert prompt.dialogs[0].title == "Sneak"
    assert res.bundle.main.total == 5


@pytest.mark.asyncio
async def test_dialog_without_prompt_raises(engine):
    with pytest.raises(RuntimeError):
        await engine.roll_dialog(["1d20"])


@pytest.mark.asyncio
async def test_metrics_for_critical_weapon_roll(engine, dice, clean_metrics):
    dice.queue(20, 4, 4)
    await engine.roll(["1d20"], RollContext(item=SWORD))
    assert get_counter("rolls.evaluated") == 2
    assert get_counter("rolls.critical.success") == 1
    assert get_counter("rolls.damage.primary") == 1
    assert get_counter("rolls.chat.posted") == 1


def test_from_settings_uses_configured_defaults():
    from Rollkeeper.config import Settings

    settings = Settings(default_roll_mode="private", dice_seed=7, chat_sound="dice.wav")
    engine = RollEngine.from_settings(settings, user_id="u1")
    assert engine.render_ctx.default_roll_mode == "private"
    assert engine.render_ctx.user_id == "u1"
    assert engine.render_ctx.sound == "dice.wav"
    other = RollEngine.from_settings(settings)
    assert [engine.rng.roll_die(20) for _ in range(5)] == [other.rng.roll_die(20) for _ in range(5)]
