"""Tests for generation mode selection, fan-out/fan-in and fallback."""

import pytest

from conftest import FakeGenerator
from arcana import ai
from arcana.ai import GenerationOrchestrator, fallback_interpretation
from arcana.config import Settings
from arcana.errors import GenerationTimeout, GenerationUnavailable
from arcana.fallback import fallback_card_insight
from arcana.models import LegacyInterpretation, PersonalizationContext, StructuredInterpretation
from arcana.prompts import CARD_MAX_TOKENS, META_MAX_TOKENS, OVERVIEW_MAX_TOKENS

INTENTION = "What should I focus on this year?"
CONTEXT = PersonalizationContext(current_date="2026-01-01T00:00:00+00:00")


def orchestrator(generator, **settings):
    return GenerationOrchestrator(generator, Settings(**settings))


class TestModeSelection:
    async def test_large_spread_fans_out(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw)
        result = await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)

        assert len(generator.calls) == 12
        kinds = [c["kind"] for c in generator.calls]
        assert kinds.count("overview") == 1
        assert kinds.count("meta") == 1
        assert sorted(c["index"] for c in generator.calls if c["kind"] == "card") == list(range(10))
        assert isinstance(result, StructuredInterpretation)
        assert len(result.full_content.card_insights) == 10

    async def test_small_spread_uses_one_call(self, three_card_draw):
        generator = FakeGenerator(three_card_draw)
        result = await orchestrator(generator).generate(INTENTION, three_card_draw, CONTEXT)

        assert len(generator.calls) == 1
        assert generator.calls[0]["kind"] == "single"
        assert generator.calls[0]["max_output_tokens"] == 2000
        assert isinstance(result, StructuredInterpretation)
        assert result.source == "ai"

    async def test_threshold_is_configurable(self, three_card_draw):
        generator = FakeGenerator(three_card_draw)
        await orchestrator(generator, parallel_threshold=3).generate(INTENTION, three_card_draw, CONTEXT)
        assert len(generator.calls) == 5

    async def test_sub_calls_run_concurrently(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw, delay=0.01)
        await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)
        assert generator.max_in_flight == 12

    async def test_parallel_token_budgets(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw)
        await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)
        budgets = {c["kind"]: c["max_output_tokens"] for c in generator.calls}
        assert budgets == {"overview": OVERVIEW_MAX_TOKENS, "card": CARD_MAX_TOKENS, "meta": META_MAX_TOKENS}

    async def test_legacy_mode_returns_plain_text(self, three_card_draw):
        generator = FakeGenerator(three_card_draw)
        result = await orchestrator(generator, structured_output=False).generate(
            INTENTION, three_card_draw, CONTEXT
        )
        assert generator.calls[0]["kind"] == "legacy"
        assert isinstance(result, LegacyInterpretation)
        assert result.source == "ai"


class TestParallelAssembly:
    async def test_insights_keep_spread_order(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw)
        result = await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)
        assert [i.position for i in result.full_content.card_insights] == [dc.position for dc in celtic_cross_draw]
        assert result.full_content.overview.startswith("This spread tells a story")
        assert result.preview.tone == "Transformative"

    async def test_failed_card_is_replaced_in_place(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw, overrides={
            ("card", 4): GenerationTimeout("slow"),
            ("card", 7): "I cannot interpret this card for you, sorry about that.",
        })
        result = await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)

        assert isinstance(result, StructuredInterpretation)
        insights = result.full_content.card_insights
        assert len(insights) == 10
        assert insights[4] == fallback_card_insight(celtic_cross_draw[4])
        assert insights[7] == fallback_card_insight(celtic_cross_draw[7])
        assert insights[5].interpretation.startswith(celtic_cross_draw[5].card.name)

    async def test_position_and_name_come_from_draw(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw, overrides={
            ("card", 0): '{"position": "Somewhere", "cardName": "Wrong Card", '
                         '"interpretation": "A reading that names the wrong card entirely."}',
        })
        result = await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)
        first = result.full_content.card_insights[0]
        assert first.position == celtic_cross_draw[0].position
        assert first.card_name == celtic_cross_draw[0].label

    @pytest.mark.parametrize("part", ["overview", "meta"])
    async def test_overview_or_meta_failure_degrades(self, celtic_cross_draw, part):
        generator = FakeGenerator(celtic_cross_draw, overrides={part: GenerationUnavailable("down")})
        result = await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)

        assert len(generator.calls) == 12, "every sub-call settles before assembly"
        assert result == fallback_interpretation(INTENTION, celtic_cross_draw)


class TestFallback:
    async def test_service_down_returns_static_reading(self, three_card_draw):
        generator = FakeGenerator(three_card_draw, fail_all=GenerationUnavailable("offline"))
        result = await orchestrator(generator).generate(INTENTION, three_card_draw, CONTEXT)
        assert result == fallback_interpretation(INTENTION, three_card_draw)
        assert result.source == "static"

    async def test_service_down_in_parallel_mode(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw, fail_all=GenerationUnavailable("offline"))
        result = await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)
        assert result == fallback_interpretation(INTENTION, celtic_cross_draw)

    @pytest.mark.parametrize("reply", [
        "",
        "I cannot provide this reading",
        '{"preview": {"title": "Half a document"}}' + " " * 120,
    ])
    async def test_invalid_single_response_falls_back(self, three_card_draw, reply):
        generator = FakeGenerator(three_card_draw, overrides={"single": reply})
        result = await orchestrator(generator).generate(INTENTION, three_card_draw, CONTEXT)
        assert result == fallback_interpretation(INTENTION, three_card_draw)

    async def test_card_count_mismatch_falls_back(self, three_card_draw):
        generator = FakeGenerator(three_card_draw[:2])
        result = await orchestrator(generator).generate(INTENTION, three_card_draw, CONTEXT)
        assert isinstance(result, LegacyInterpretation)
        assert result.source == "static"

    async def test_unexpected_error_falls_back(self, three_card_draw):
        generator = FakeGenerator(three_card_draw, fail_all=RuntimeError("boom"))
        result = await orchestrator(generator).generate(INTENTION, three_card_draw, CONTEXT)
        assert result.source == "static"

    async def test_no_cards(self):
        generator = FakeGenerator()
        result = await orchestrator(generator).generate(INTENTION, [], CONTEXT)
        assert generator.calls == []
        assert result.source == "static"

    async def test_generate_text(self, three_card_draw):
        generator = FakeGenerator(three_card_draw, fail_all=GenerationUnavailable("offline"))
        text = await orchestrator(generator).generate_text(INTENTION, three_card_draw, CONTEXT)
        assert text == fallback_interpretation(INTENTION, three_card_draw).text


class RequestCountingGenerator(FakeGenerator):
    """Counts request coroutines as they are created, awaited or not."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.created = 0

    def submit(self, prompt, max_output_tokens, temperature):
        self.created += 1
        return super().submit(prompt, max_output_tokens, temperature)


class TestPromptFailure:
    async def test_card_prompt_error_creates_no_requests(self, monkeypatch, celtic_cross_draw):
        real_build = ai.build_card_prompt

        def build(dc, index, *args, **kwargs):
            if index == 4:
                raise KeyError("template")
            return real_build(dc, index, *args, **kwargs)

        monkeypatch.setattr(ai, "build_card_prompt", build)
        generator = RequestCountingGenerator(celtic_cross_draw)
        result = await orchestrator(generator).generate(INTENTION, celtic_cross_draw, CONTEXT)

        assert generator.created == 0
        assert generator.calls == []
        assert result == fallback_interpretation(INTENTION, celtic_cross_draw)

    async def test_threshold_above_spread_size_keeps_single_call(self, celtic_cross_draw):
        generator = FakeGenerator(celtic_cross_draw)
        orch = orchestrator(generator, parallel_threshold=11)
        assert orch.parallel_threshold == 11
        assert not orch.uses_parallel(celtic_cross_draw)

        await orch.generate(INTENTION, celtic_cross_draw, CONTEXT)
        assert [c["kind"] for c in generator.calls] == ["single"]
