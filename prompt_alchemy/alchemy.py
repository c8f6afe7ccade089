"""Three-variant competition: parallel drafts, one critique, one fusion call."""

import asyncio
import logging
from dataclasses import dataclass

from config.config_loader import OrchestrationSettings
from prompt_alchemy.llm import generate_with_retry
from prompt_alchemy.models import Draft, LLMRequest, Message
from prompt_alchemy.prompts import (
    CRITIQUE_AGENTS,
    VARIANT_STANCES,
    VariantStance,
    build_critique_prompt,
    build_synthesis_prompt,
    build_variant_prompt,
)
from prompt_alchemy.providers.base import AIProvider
from prompt_alchemy.schemas import (
    CritiqueResponse,
    Deliberation,
    DeliberationAgent,
    SynthesisResponse,
    VariantDraft,
)

logger = logging.getLogger(__name__)


@dataclass
class AlchemyResult:
    final_prompt: str
    drafts: list[Draft]
    critique: CritiqueResponse
    deliberation: Deliberation


def _format_drafts(drafts: list[Draft]) -> str:
    return "\n\n".join(f"--- Variant {d.variant} ({d.stance}) ---\n{d.prompt}" for d in drafts)


def _seed_block(context: str, seed_prompt: str) -> str:
    return f"需求摘要：\n{context}\n\n参考草稿：\n{seed_prompt}"


async def _generate_variant(
    provider: AIProvider,
    stance: VariantStance,
    context: str,
    seed_prompt: str,
    output_format: str,
    model_label: str | None,
    settings: OrchestrationSettings,
) -> Draft:
    request = LLMRequest(
        model=provider.model_string(),
        messages=[
            Message("system", build_variant_prompt(stance, output_format, model_label, settings.min_prompt_variables)),
            Message("user", _seed_block(context, seed_prompt)),
        ],
        output_schema=VariantDraft,
        stage=f"variant_{stance.variant}",
    )
    response = await generate_with_retry(provider, request, settings)
    return Draft(variant=stance.variant, stance=stance.name, prompt=response.output.draft_prompt)


async def generate_drafts(
    provider: AIProvider,
    context: str,
    seed_prompt: str,
    output_format: str,
    model_label: str | None,
    settings: OrchestrationSettings,
) -> list[Draft]:
    """Run the three stance drafts concurrently. Any failure cancels the rest and propagates."""
    tasks = [
        asyncio.ensure_future(
            _generate_variant(provider, stance, context, seed_prompt, output_format, model_label, settings)
        )
        for stance in VARIANT_STANCES
    ]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def build_competition_deliberation(critique: CritiqueResponse) -> Deliberation:
    """Score each agent by its average axis score for the winning variant."""
    agents: list[DeliberationAgent] = []
    for name in CRITIQUE_AGENTS:
        agent = next(a for a in critique.agents if a.name == name)
        winner_score = next(s for s in agent.scores if s.variant == critique.winner)
        score = (winner_score.clarity + winner_score.robustness + winner_score.alignment) / 3
        agents.append(DeliberationAgent(
            name=name,
            stance=agent.stance or CRITIQUE_AGENTS[name],
            score=round(score, 1),
            rationale=agent.rationale,
        ))
    return Deliberation(
        stage="competition",
        agents=agents,
        synthesis=f"胜出方案：{critique.winner}。{critique.synthesis}",
    )


async def run_alchemy(
    provider: AIProvider,
    context: str,
    seed_prompt: str,
    output_format: str,
    model_label: str | None,
    settings: OrchestrationSettings,
) -> AlchemyResult:
    """Generate, critique and fuse three drafts into one candidate template.

    Args:
        provider: Model used for every call.
        context: Readable summary of the interview so far.
        seed_prompt: The interview model's own draft; used only as reference.
        output_format: "markdown" or "xml".
        model_label: Display label of the selected model.
        settings: Orchestration knobs (timeouts, retries, minimum variables).

    Raises:
        ProviderError: If any draft, the critique, or the synthesis call fails.
    """
    drafts = await generate_drafts(provider, context, seed_prompt, output_format, model_label, settings)
    logger.info("Generated %d drafts", len(drafts))

    critique_request = LLMRequest(
        model=provider.model_string(),
        messages=[
            Message("system", build_critique_prompt(output_format, model_label)),
            Message("user", _format_drafts(drafts)),
        ],
        output_schema=CritiqueResponse,
        stage="critique",
    )
    critique: CritiqueResponse = (await generate_with_retry(provider, critique_request, settings)).output
    logger.info("Critique winner: %s", critique.winner)

    synthesis_request = LLMRequest(
        model=provider.model_string(),
        messages=[
            Message("system", build_synthesis_prompt(output_format, model_label, settings.min_prompt_variables)),
            Message(
                "user",
                "\n\n".join([
                    f"需求摘要：\n{context}",
                    _format_drafts(drafts),
                    f"评审结论（胜出方案 {critique.winner}）：\n{critique.synthesis}",
                ]),
            ),
        ],
        output_schema=SynthesisResponse,
        stage="synthesis",
    )
    synthesis: SynthesisResponse = (await generate_with_retry(provider, synthesis_request, settings)).output

    return AlchemyResult(
        final_prompt=synthesis.final_prompt,
        drafts=drafts,
        critique=critique,
        deliberation=build_competition_deliberation(critique),
    )
