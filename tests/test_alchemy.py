"""Tests for prompt_alchemy/alchemy.py -- all provider calls mocked."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from prompt_alchemy.alchemy import build_competition_deliberation, generate_drafts, run_alchemy
from prompt_alchemy.providers.base import ProviderError
from prompt_alchemy.schemas import CritiqueResponse, SynthesisResponse, VariantDraft
from tests.conftest import MockProvider, alchemy_scripts, critique_payload


async def test_three_drafts_with_distinct_stances(orchestration_settings):
    provider = MockProvider(scripts=alchemy_scripts())

    drafts = await generate_drafts(provider, "需求摘要", "seed", "markdown", None, orchestration_settings)

    assert [d.variant for d in drafts] == ["A", "B", "C"]
    assert [d.stance for d in drafts] == ["structured", "role-immersive", "reasoning-robust"]
    system_prompts = {r.messages[0].content for r in provider.requests()}
    assert len(system_prompts) == 3
    assert {r.stage for r in provider.requests()} == {"variant_A", "variant_B", "variant_C"}


async def test_seed_and_context_reach_every_draft(orchestration_settings):
    provider = MockProvider(scripts=alchemy_scripts())

    await generate_drafts(provider, "写一个代码审查提示词", "种子草稿", "xml", "GPT", orchestration_settings)

    for request in provider.requests():
        assert "写一个代码审查提示词" in request.messages[1].content
        assert "种子草稿" in request.messages[1].content
        assert "XML 标签结构输出" in request.messages[0].content


async def test_draft_failure_propagates(orchestration_settings):
    scripts = alchemy_scripts()
    scripts[VariantDraft] = [ProviderError("mock", "403 Forbidden")]
    provider = MockProvider(scripts=scripts)

    with pytest.raises(ProviderError, match="403"):
        await run_alchemy(provider, "ctx", "seed", "markdown", None, orchestration_settings)
    assert provider.requests("critique") == []


async def test_draft_failure_waits_for_sibling_cancellation(orchestration_settings):
    cancelled = []

    async def generate(request):
        if request.stage == "variant_A":
            await asyncio.sleep(0)
            raise ProviderError("mock", "403 Forbidden")
        try:
            await asyncio.sleep(9999)
        except asyncio.CancelledError:
            cancelled.append(request.stage)
            raise

    provider = MockProvider()
    provider.generate = AsyncMock(side_effect=generate)

    with pytest.raises(ProviderError, match="403"):
        await generate_drafts(provider, "ctx", "seed", "markdown", None, orchestration_settings)

    assert sorted(cancelled) == ["variant_B", "variant_C"]


async def test_run_alchemy_returns_synthesis(orchestration_settings):
    provider = MockProvider(scripts=alchemy_scripts(final_prompt="FUSED"))

    result = await run_alchemy(provider, "ctx", "seed", "markdown", None, orchestration_settings)

    assert result.final_prompt == "FUSED"
    assert result.critique.winner == "B"
    assert len(result.drafts) == 3
    assert result.deliberation.stage == "competition"
    # one call per draft, one critique, one synthesis
    assert provider.generate.await_count == 5


async def test_critique_and_synthesis_see_all_drafts(orchestration_settings):
    provider = MockProvider(scripts=alchemy_scripts())

    await run_alchemy(provider, "ctx", "seed", "markdown", None, orchestration_settings)

    [critique_request] = provider.requests("critique")
    [synthesis_request] = provider.requests("synthesis")
    for variant in ("A", "B", "C"):
        assert f"--- Variant {variant}" in critique_request.messages[1].content
        assert f"--- Variant {variant}" in synthesis_request.messages[1].content
    assert "胜出方案 B" in synthesis_request.messages[1].content


async def test_invalid_synthesis_propagates(orchestration_settings):
    scripts = alchemy_scripts()
    scripts[SynthesisResponse] = [ProviderError("mock", "Response failed SynthesisResponse validation")]
    provider = MockProvider(scripts=scripts)

    with pytest.raises(ProviderError):
        await run_alchemy(provider, "ctx", "seed", "markdown", None, orchestration_settings)


def test_competition_deliberation_scores_winner():
    critique = CritiqueResponse.model_validate(critique_payload(winner="B"))

    deliberation = build_competition_deliberation(critique)

    assert [a.name for a in deliberation.agents] == ["Architect", "RolePlayer", "Critic"]
    assert [a.score for a in deliberation.agents] == [7.0, 6.0, 8.0]
    assert deliberation.synthesis.startswith("胜出方案：B。")


def test_competition_deliberation_fills_missing_stance():
    payload = critique_payload(winner="A")
    payload["agents"][1]["stance"] = ""
    deliberation = build_competition_deliberation(CritiqueResponse.model_validate(payload))
    assert deliberation.agents[1].stance == "角色沉浸与语气一致性"
    assert deliberation.agents[0].score == 7.0
