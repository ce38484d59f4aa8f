# tests/conftest.py

from collections.abc import Iterable

import pytest

from Rollkeeper.metrics import reset_counters
from Rollkeeper.rules.engine import RollEngine
from Rollkeeper.services.chat import ChatCard, ChatCardRenderer


class ScriptedDice:
    """Die source that returns queued values and records the faces asked for."""

    def __init__(self, values: Iterable[int] = ()):
        self.values = list(values)
        self.faces: list[int] = []

    def queue(self, *values: int) -> None:
        self.values.extend(values)

    def roll_die(self, faces: int) -> int:
        self.faces.append(faces)
        if not self.values:
            raise AssertionError(f"ScriptedDice ran out of values (asked for d{faces})")
        return self.values.pop(0)


class SpySink:
    def __init__(self):
        self.cards: list[ChatCard] = []

    async def post(self, card: ChatCard) -> None:
        self.cards.append(card)


@pytest.fixture
def clean_metrics():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def dice() -> ScriptedDice:
    return ScriptedDice()


@pytest.fixture
def sink() -> SpySink:
    return SpySink()


@pytest.fixture
def engine(dice, sink) -> RollEngine:
    return RollEngine(dice, renderer=ChatCardRenderer(sink))
