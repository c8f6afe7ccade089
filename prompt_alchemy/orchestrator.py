"""One conversation turn: load session, ask the model, finalize through alchemy + guard, persist."""

import logging
import time
from collections.abc import Callable
from typing import Any

from config.config_loader import AppConfig, ModelConfig
from prompt_alchemy.alchemy import run_alchemy
from prompt_alchemy.catalog import build_provider, resolve_model_config
from prompt_alchemy.errors import ConfigurationError, SessionNotFoundError
from prompt_alchemy.guard import run_guard
from prompt_alchemy.interview import (
    InterviewMode,
    build_user_content,
    build_user_turn,
    count_completed_rounds,
    format_turn_for_model,
    history_to_messages,
    is_finalize_eligible,
    normalize_llm_response,
    resolve_mode,
    trim_history,
    violates_finalize_contract,
)
from prompt_alchemy.llm import generate_with_retry
from prompt_alchemy.models import LLMRequest, Message
from prompt_alchemy.prompts import build_finalize_retry_prompt, build_system_prompt
from prompt_alchemy.providers.base import AIProvider, StructuredOutputError
from prompt_alchemy.schemas import (
    ChatRequest,
    ChatResponse,
    HistoryItem,
    LLMResponse,
    SessionState,
    TextTurn,
)
from prompt_alchemy.store import SessionStore
from prompt_alchemy.template import derive_title_from_prompt

logger = logging.getLogger(__name__)

STAGES = ("start", "load_session", "llm", "llm_retry", "alchemy", "guard", "persist")

StageCallback = Callable[[str, dict[str, Any]], None]


def _conversation_context(history: list[HistoryItem], user_content: str) -> str:
    lines = [
        f"{'助手' if item.role == 'assistant' else '用户'}: {format_turn_for_model(item)}"
        for item in history
    ]
    lines.append(f"用户: {user_content}")
    return "\n".join(lines)


async def _ask_model(
    provider: AIProvider,
    system_prompt: str,
    history_messages: list[Message],
    user_content: str,
    config: AppConfig,
    emit: StageCallback,
    stage: str,
) -> LLMResponse:
    request = LLMRequest(
        model=provider.model_string(),
        messages=[Message("system", system_prompt), *history_messages, Message("user", user_content)],
        output_schema=LLMResponse,
        stage=stage,
    )
    response = await generate_with_retry(
        provider,
        request,
        config.orchestration,
        on_retry=lambda attempt, err: emit("llm_retry", {"attempt": attempt, "error": str(err)}),
    )
    return response.output


async def run_turn(
    request: ChatRequest,
    owner_id: str,
    *,
    config: AppConfig,
    store: SessionStore,
    provider_factory: Callable[[ModelConfig], AIProvider] = build_provider,
    on_stage: StageCallback | None = None,
) -> ChatResponse:
    """Process one user turn end to end.

    Args:
        request: Validated turn submission.
        owner_id: Identity the session must belong to.
        config: Model catalog and orchestration settings.
        store: Session persistence.
        provider_factory: Builds the provider for the resolved model.
        on_stage: Optional callback receiving (stage_name, details) for progress display.

    Returns:
        The turn result, identical to what was persisted in session state.

    Raises:
        ConfigurationError: Missing catalog or credentials.
        SessionNotFoundError: Unknown session for this owner.
        ProviderError: Model call failed (``LLMTimeoutError`` after retries).
        StructuredOutputError: Model output broke the response contract.
    """
    started = time.monotonic()

    def emit(stage: str, details: dict[str, Any] | None = None) -> None:
        if on_stage:
            on_stage(stage, details or {})

    emit("start", {"sessionId": request.session_id})
    if not config.models:
        raise ConfigurationError("Missing model catalog")

    emit("load_session")
    record = await store.get(request.session_id, owner_id)
    if record is None:
        raise SessionNotFoundError(request.session_id)

    state = record.state
    settings = config.orchestration
    model_cfg = resolve_model_config(config, request.model_id or state.model_id)
    provider = provider_factory(model_cfg)
    output_format = request.output_format or state.output_format

    history = record.history
    trimmed = trim_history(history, settings.max_history_items)
    completed_rounds = count_completed_rounds(history)
    mode = resolve_mode(completed_rounds, settings.max_question_rounds)
    force_finalize = mode is InterviewMode.FORCE_FINALIZE

    logger.info(
        "Turn start session=%s model=%s rounds=%d/%d mode=%s answers=%d trace=%s",
        record.id, model_cfg.id, completed_rounds, settings.max_question_rounds,
        mode.value, len(request.answers or []), request.trace_id,
    )

    user_content = build_user_content(request.message, request.answers)
    history_messages = history_to_messages(trimmed)

    emit("llm", {"mode": mode.value})
    raw = await _ask_model(
        provider,
        build_system_prompt(
            completed_rounds=completed_rounds,
            round_limit=settings.max_question_rounds,
            force_finalize=force_finalize,
            output_format=output_format,
            model_label=model_cfg.label,
            min_variables=settings.min_prompt_variables,
        ),
        history_messages,
        user_content,
        config,
        emit,
        stage="interview",
    )

    if force_finalize and violates_finalize_contract(raw):
        logger.warning(
            "Force finalize retry session=%s rounds=%d/%d",
            record.id, completed_rounds, settings.max_question_rounds,
        )
        emit("llm_retry", {"reason": "force_finalize"})
        raw = await _ask_model(
            provider,
            build_finalize_retry_prompt(
                completed_rounds=completed_rounds,
                round_limit=settings.max_question_rounds,
                output_format=output_format,
                model_label=model_cfg.label,
                min_variables=settings.min_prompt_variables,
            ),
            history_messages,
            user_content,
            config,
            emit,
            stage="finalize_retry",
        )
        if violates_finalize_contract(raw):
            raise StructuredOutputError(model_cfg.id, "Model did not produce final_prompt after forced retry")

    response = normalize_llm_response(raw)
    deliberations = list(response.deliberations)
    final_prompt: str | None = None

    if is_finalize_eligible(response):
        mode = InterviewMode.FINALIZING
        emit("alchemy")
        alchemy = await run_alchemy(
            provider,
            _conversation_context(trimmed, user_content),
            response.final_prompt,
            output_format,
            model_cfg.label,
            settings,
        )
        emit("guard")
        outcome = await run_guard(provider, alchemy.final_prompt, output_format, model_cfg.label, settings)
        final_prompt = outcome.prompt
        deliberations.append(alchemy.deliberation)
        mode = InterviewMode.DONE
        logger.info(
            "Finalized session=%s winner=%s repairs=%d warnings=%s",
            record.id, alchemy.critique.winner, outcome.repair_calls, outcome.warnings,
        )

    result = ChatResponse(
        reply=response.reply,
        final_prompt=final_prompt,
        is_finished=final_prompt is not None,
        questions=[] if final_prompt else response.questions,
        deliberations=deliberations,
    )

    emit("persist")
    now = time.time()
    updated_history = trim_history(
        [
            *history,
            HistoryItem(
                role="user",
                content=build_user_turn(request.message, request.answers, state.questions),
                timestamp=now,
            ),
            HistoryItem(role="assistant", content=TextTurn(body=response.reply), timestamp=now),
        ],
        settings.max_history_items,
    )
    updated_state = SessionState(
        questions=result.questions,
        deliberations=result.deliberations,
        final_prompt=result.final_prompt,
        is_finished=result.is_finished,
        model_id=model_cfg.id,
        output_format=output_format,
        title=derive_title_from_prompt(final_prompt) if final_prompt else state.title,
        draft_answers={},
    )
    await store.update(record.id, updated_history, updated_state)

    logger.info(
        "Turn done session=%s mode=%s questions=%d finished=%s in %.2fs",
        record.id, mode.value, len(result.questions), result.is_finished, time.monotonic() - started,
    )
    return result
