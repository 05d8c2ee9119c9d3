"""Tests for the reading session state machine."""

import asyncio

import pytest

from conftest import FakeGenerator, MemoryStore
from arcana.ai import GenerationOrchestrator
from arcana.config import Settings
from arcana.deck import get_spread
from arcana.drawing import CardDrawer
from arcana.errors import EntropyUnavailable, InvalidTransition
from arcana.models import SessionStep, StructuredInterpretation
from arcana.repository import ReadingRepository
from arcana.session import ReadingSessionMachine
from arcana.utils.rng import SeededEntropySource, SequenceEntropySource


class ScriptedGenerator(FakeGenerator):
    """Answers for whatever cards the session actually drew."""

    def bind(self, machine):
        self.machine = machine
        return self

    def _default(self, kind, index):
        self.drawn_cards = self.machine.drawn_cards
        return super()._default(kind, index)


class GatedEntropy:
    """Entropy that waits until the test releases it."""

    def __init__(self):
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def request(self, n):
        self.started.set()
        await self.release.wait()
        return list(range(n))


def make_machine(entropy=None, generator=None, store=None):
    store = store or MemoryStore()
    generator = generator or ScriptedGenerator()
    machine = ReadingSessionMachine(
        CardDrawer(),
        entropy or SeededEntropySource("session-test"),
        GenerationOrchestrator(generator, Settings()),
        ReadingRepository(store),
    )
    if isinstance(generator, ScriptedGenerator):
        generator.bind(machine)
    return machine


async def advance_to_reveal(machine, spread_id="three-card"):
    machine.start_session(get_spread(spread_id))
    machine.set_intention("  How do I handle the new job?  ")
    await machine.draw_cards()


class TestHappyPath:
    async def test_full_lifecycle(self):
        store = MemoryStore()
        machine = make_machine(store=store)
        assert machine.step is SessionStep.SETUP

        machine.start_session(get_spread("three-card"))
        assert machine.step is SessionStep.INTENTION

        machine.set_intention("  How do I handle the new job?  ")
        assert machine.intention == "How do I handle the new job?"

        drawn = await machine.draw_cards()
        assert machine.step is SessionStep.REVEAL
        assert len(drawn) == 3
        assert machine.session.revealed == [False, False, False]

        for i in range(3):
            machine.mark_revealed(i)
        assert machine.all_revealed

        interp = await machine.request_interpretation()
        assert machine.step is SessionStep.COMPLETE
        assert isinstance(interp, StructuredInterpretation)

        reading = await machine.save("user-1")
        assert reading.id == "reading-1"
        assert machine.step is SessionStep.SETUP
        assert machine.session is None
        assert len(store.rows) == 1

    async def test_empty_intention_is_allowed(self):
        machine = make_machine()
        machine.start_session(get_spread("single-card"))
        machine.set_intention("")
        await machine.draw_cards()
        assert machine.step is SessionStep.REVEAL


class TestGuards:
    async def test_operations_outside_their_step(self):
        machine = make_machine()
        with pytest.raises(InvalidTransition):
            machine.set_intention("too early")
        with pytest.raises(InvalidTransition):
            await machine.draw_cards()

        machine.start_session(get_spread("three-card"))
        with pytest.raises(InvalidTransition):
            machine.mark_revealed(0)
        with pytest.raises(InvalidTransition):
            await machine.request_interpretation()
        with pytest.raises(InvalidTransition):
            await machine.save("user-1")

    async def test_interpretation_needs_every_card_revealed(self):
        machine = make_machine()
        await advance_to_reveal(machine)
        machine.mark_revealed(0)
        with pytest.raises(InvalidTransition):
            await machine.request_interpretation()
        assert machine.step is SessionStep.REVEAL

    async def test_reveal_index_out_of_range(self):
        machine = make_machine()
        await advance_to_reveal(machine)
        with pytest.raises(InvalidTransition):
            machine.mark_revealed(3)

    async def test_draw_failure_returns_to_intention(self):
        machine = make_machine(entropy=SequenceEntropySource([]))
        machine.start_session(get_spread("three-card"))
        machine.set_intention("Keep me")

        with pytest.raises(EntropyUnavailable):
            await machine.draw_cards()
        assert machine.step is SessionStep.INTENTION
        assert machine.intention == "Keep me"
        assert machine.drawn_cards == []
        assert machine.session.error

    async def test_start_session_replaces_current(self):
        machine = make_machine()
        await advance_to_reveal(machine)
        old_token = machine.token
        machine.start_session(get_spread("single-card"))
        assert machine.step is SessionStep.INTENTION
        assert machine.token != old_token
        assert machine.drawn_cards == []


class TestClear:
    @pytest.mark.parametrize("target", ["setup", "intention", "reveal", "complete"])
    async def test_clear_from_any_step(self, target):
        machine = make_machine()
        if target != "setup":
            machine.start_session(get_spread("three-card"))
        if target in ("reveal", "complete"):
            await machine.draw_cards()
        if target == "complete":
            for i in range(3):
                machine.mark_revealed(i)
            await machine.request_interpretation()

        assert machine.step.value == target
        machine.clear()
        assert machine.step is SessionStep.SETUP
        assert machine.session is None
        assert machine.token is None

    async def test_late_draw_is_discarded_after_clear(self):
        entropy = GatedEntropy()
        machine = make_machine(entropy=entropy)
        machine.start_session(get_spread("three-card"))

        task = asyncio.create_task(machine.draw_cards())
        await entropy.started.wait()
        assert machine.step is SessionStep.DRAWING
        machine.clear()
        entropy.release.set()

        assert await task is None
        assert machine.session is None

    async def test_late_draw_does_not_touch_restarted_session(self):
        entropy = GatedEntropy()
        machine = make_machine(entropy=entropy)
        machine.start_session(get_spread("three-card"))

        task = asyncio.create_task(machine.draw_cards())
        await entropy.started.wait()
        machine.start_session(get_spread("single-card"))
        entropy.release.set()

        assert await task is None
        assert machine.step is SessionStep.INTENTION
        assert machine.session.spread.id == "single-card"
        assert machine.drawn_cards == []

    async def test_late_interpretation_is_discarded(self):
        generator = ScriptedGenerator(delay=0.05)
        machine = make_machine(generator=generator)
        await advance_to_reveal(machine)
        for i in range(3):
            machine.mark_revealed(i)

        task = asyncio.create_task(machine.request_interpretation())
        await asyncio.sleep(0)
        assert machine.step is SessionStep.INTERPRETING
        machine.clear()

        assert await task is None
        assert machine.session is None
