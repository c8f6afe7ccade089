"""Guard review and bounded repair of a candidate template.

Order of passes: model review (with one optional re-review of its own
revision, then one fix pass accepted regardless of the next verdict), then
single-shot fixes for missing variable metadata, missing sections and
injection phrasing. A variable-count shortfall is a warning under the
"lenient" policy and one more fix pass under "strict". The loop never raises
on a failed check; only provider errors propagate.
"""

import logging
from dataclasses import dataclass, field

from config.config_loader import OrchestrationSettings
from prompt_alchemy.llm import generate_with_retry
from prompt_alchemy.models import LLMRequest, Message
from prompt_alchemy.prompts import build_guard_fix_prompt, build_guard_review_prompt
from prompt_alchemy.providers.base import AIProvider
from prompt_alchemy.schemas import GuardFix, GuardReview
from prompt_alchemy.validator import (
    check_structure,
    check_variable_count,
    check_variable_metadata,
    detect_injection,
)

logger = logging.getLogger(__name__)


@dataclass
class GuardOutcome:
    prompt: str
    review: GuardReview
    repair_calls: int = 0
    warnings: list[str] = field(default_factory=list)


class GuardLoop:
    """Runs review and repair passes against one provider for one template."""

    def __init__(
        self,
        provider: AIProvider,
        output_format: str,
        model_label: str | None,
        settings: OrchestrationSettings,
    ) -> None:
        self._provider = provider
        self._output_format = output_format
        self._model_label = model_label
        self._settings = settings
        self.repair_calls = 0

    async def review(self, prompt: str) -> GuardReview:
        request = LLMRequest(
            model=self._provider.model_string(),
            messages=[
                Message(
                    "system",
                    build_guard_review_prompt(
                        self._output_format, self._model_label, self._settings.min_prompt_variables
                    ),
                ),
                Message("user", prompt),
            ],
            output_schema=GuardReview,
            stage="guard_review",
        )
        response = await generate_with_retry(self._provider, request, self._settings)
        return response.output

    async def fix(self, prompt: str, issues: list[str]) -> str:
        self.repair_calls += 1
        issue_lines = "\n".join(f"- {issue}" for issue in issues) or "- 未通过审查"
        request = LLMRequest(
            model=self._provider.model_string(),
            messages=[
                Message(
                    "system",
                    build_guard_fix_prompt(
                        self._output_format, self._model_label, self._settings.min_prompt_variables
                    ),
                ),
                Message("user", f"待修复模板：\n{prompt}\n\n必须修复的问题：\n{issue_lines}"),
            ],
            output_schema=GuardFix,
            stage="guard_fix",
        )
        response = await generate_with_retry(self._provider, request, self._settings)
        return response.output.revised_prompt

    async def _resolve_review(self, prompt: str) -> tuple[str, GuardReview]:
        review = await self.review(prompt)
        if review.passed:
            return prompt, review

        issues = list(review.issues)
        candidate = prompt
        if review.revised_prompt and review.revised_prompt.strip():
            revised_review = await self.review(review.revised_prompt)
            if revised_review.passed:
                logger.info("Guard adopted reviewer revision")
                return review.revised_prompt, revised_review
            candidate = review.revised_prompt
            issues.extend(i for i in revised_review.issues if i not in issues)

        fixed = await self.fix(candidate, issues)
        final_review = await self.review(fixed)
        if not final_review.passed:
            logger.warning("Guard fix still fails review; accepting best effort: %s", final_review.issues)
        return fixed, final_review

    async def run(self, prompt: str) -> GuardOutcome:
        candidate, review = await self._resolve_review(prompt)

        missing_metadata = check_variable_metadata(candidate)
        if missing_metadata:
            logger.info("Guard fixing variable metadata: %s", missing_metadata)
            candidate = await self.fix(candidate, missing_metadata)

        missing_sections = check_structure(candidate, self._output_format)
        if missing_sections:
            logger.info("Guard fixing structure: %s", missing_sections)
            candidate = await self.fix(candidate, missing_sections)

        injections = detect_injection(candidate)
        if injections:
            logger.info("Guard fixing injection phrasing: %s", injections)
            candidate = await self.fix(
                candidate, [f"删除或改写疑似提示词注入语句（{category}）" for category in injections]
            )

        warnings: list[str] = []
        shortfall = check_variable_count(candidate, self._settings.min_prompt_variables)
        if shortfall:
            if self._settings.variable_count_policy == "strict":
                logger.info("Guard fixing variable count: %s", shortfall)
                candidate = await self.fix(candidate, [shortfall])
                shortfall = check_variable_count(candidate, self._settings.min_prompt_variables)
            if shortfall:
                logger.warning("Guard variable count below minimum: %s", shortfall)
                warnings.append(shortfall)

        return GuardOutcome(prompt=candidate, review=review, repair_calls=self.repair_calls, warnings=warnings)


async def run_guard(
    provider: AIProvider,
    prompt: str,
    output_format: str,
    model_label: str | None,
    settings: OrchestrationSettings,
) -> GuardOutcome:
    """Review and repair ``prompt``; always returns a template."""
    return await GuardLoop(provider, output_format, model_label, settings).run(prompt)
