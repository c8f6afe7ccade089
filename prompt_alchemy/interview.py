"""Interview state: round counting, finalize decisions, turn encoding for the model."""

import json
import logging
from enum import Enum

from prompt_alchemy.models import Message
from prompt_alchemy.providers.base import StructuredOutputError
from prompt_alchemy.schemas import (
    NONE_SENTINEL,
    OTHER_SENTINEL,
    Answer,
    DraftAnswer,
    FormTurn,
    HistoryItem,
    LLMResponse,
    Question,
    TextTurn,
)

logger = logging.getLogger(__name__)


class InterviewMode(str, Enum):
    INTERVIEW = "INTERVIEW"
    FORCE_FINALIZE = "FORCE_FINALIZE"
    FINALIZING = "FINALIZING"
    DONE = "DONE"


def count_completed_rounds(history: list[HistoryItem]) -> int:
    return sum(1 for item in history if item.role == "assistant")


def should_force_finalize(completed_rounds: int, round_limit: int) -> bool:
    return round_limit > 0 and completed_rounds >= round_limit


def resolve_mode(completed_rounds: int, round_limit: int) -> InterviewMode:
    """Mode requested before the model call; FINALIZING and DONE follow from the response."""
    if should_force_finalize(completed_rounds, round_limit):
        return InterviewMode.FORCE_FINALIZE
    return InterviewMode.INTERVIEW


def trim_history(history: list[HistoryItem], max_items: int) -> list[HistoryItem]:
    """Keep the newest ``max_items`` entries; non-positive means no cap."""
    if max_items > 0:
        return history[-max_items:]
    return list(history)


def build_user_content(message: str | None, answers: list[Answer] | None) -> str:
    """Content sent to the model for the current turn.

    Structured answers are passed as JSON so the model sees option ids and
    sentinels exactly; a free-text message rides along as a supplementary note.
    """
    if answers:
        payload = json.dumps([a.model_dump(exclude_none=True) for a in answers], ensure_ascii=False)
        note = f"\n补充说明: {message}" if message else ""
        return f"用户回答(JSON): {payload}{note}"
    return message or ""


def build_user_turn(
    message: str | None,
    answers: list[Answer] | None,
    questions: list[Question],
) -> TextTurn | FormTurn:
    """History entry for the user side of a turn."""
    if not answers:
        return TextTurn(body=message or "")
    by_id: dict[str, DraftAnswer] = {}
    for index, answer in enumerate(answers):
        key = answer.question_id or (questions[index].id if index < len(questions) else None) or f"q{index + 1}"
        by_id[key] = DraftAnswer(type=answer.type, value=answer.value, other=answer.other)
    return FormTurn(questions=questions, answers=by_id, note=message)


def _describe_value(question: Question | None, value: str, other: str | None) -> str:
    if value == OTHER_SENTINEL:
        return f"其他：{other.strip()}" if other and other.strip() else "其他"
    if value == NONE_SENTINEL:
        return "不需要"
    if question and question.options:
        for option in question.options:
            if option.id == value:
                return option.label
    return value


def format_form_turn(turn: FormTurn) -> str:
    """Readable Q/A summary of a submitted form."""
    questions = {q.id: q for q in turn.questions if q.id}
    lines = ["用户提交了表单："]
    for index, (question_id, answer) in enumerate(turn.answers.items(), start=1):
        question = questions.get(question_id)
        title = question.text if question else question_id
        values = answer.value if isinstance(answer.value, list) else [answer.value]
        described = [_describe_value(question, v, answer.other) for v in values if v]
        lines.append(f"{index}. {title}")
        lines.append(f"   答：{'、'.join(described) if described else '（未作答）'}")
    if turn.note:
        lines.append(f"补充说明：{turn.note}")
    return "\n".join(lines)


def format_turn_for_model(item: HistoryItem) -> str:
    if isinstance(item.content, FormTurn):
        return format_form_turn(item.content)
    return item.content.body


def history_to_messages(history: list[HistoryItem]) -> list[Message]:
    return [
        Message(role="model" if item.role == "assistant" else "user", content=format_turn_for_model(item))
        for item in history
    ]


def normalize_llm_response(response: LLMResponse) -> LLMResponse:
    """Fill question ids and selection defaults; enforce the final_prompt/questions exclusion.

    Raises:
        StructuredOutputError: A single/multi question arrived without options.
    """
    questions: list[Question] = []
    for index, question in enumerate(response.questions):
        question_id = question.id or f"q{index + 1}"
        if question.type == "text":
            questions.append(question.model_copy(update={
                "id": question_id,
                "options": None,
                "max_select": None,
                "allow_other": None,
                "allow_none": None,
            }))
            continue
        if not question.options:
            raise StructuredOutputError("llm", f"Invalid question options for {question_id}")
        questions.append(question.model_copy(update={
            "id": question_id,
            "allow_other": True if question.allow_other is None else question.allow_other,
            "allow_none": True if question.allow_none is None else question.allow_none,
            "max_select": question.max_select if question.type == "multi" else None,
        }))

    final_prompt = response.final_prompt if response.final_prompt and response.final_prompt.strip() else None
    if questions and final_prompt:
        logger.warning("Model returned both questions and final_prompt; keeping questions")
        final_prompt = None

    return response.model_copy(update={
        "questions": questions,
        "final_prompt": final_prompt,
        "is_finished": bool(final_prompt),
    })


def violates_finalize_contract(response: LLMResponse) -> bool:
    return (
        not response.is_finished
        or not (response.final_prompt or "").strip()
        or bool(response.questions)
    )


def is_finalize_eligible(response: LLMResponse) -> bool:
    return bool((response.final_prompt or "").strip()) and not response.questions
