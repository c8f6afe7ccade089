"""Validated shapes: LLM structured outputs, requests, history turns and session state."""

import json
import logging
import time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from prompt_alchemy.prompts import CRITIQUE_AGENTS
from prompt_alchemy.template import VARIABLE_KEY_REGEX

logger = logging.getLogger(__name__)

QuestionType = Literal["single", "multi", "text"]
OutputFormat = Literal["markdown", "xml"]
VariantLabel = Literal["A", "B", "C"]

OTHER_SENTINEL = "__other__"
NONE_SENTINEL = "__none__"
LEGACY_FORM_PREFIX = "__FORM__:"


class QuestionOption(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)


class Question(BaseModel):
    id: str | None = Field(default=None, min_length=1)
    step: str | None = None
    text: str = Field(min_length=1)
    type: QuestionType
    options: list[QuestionOption] | None = None
    allow_other: bool | None = None
    allow_none: bool | None = None
    max_select: int | None = Field(default=None, gt=0)
    placeholder: str | None = None

    @model_validator(mode="after")
    def _check_options(self) -> "Question":
        if self.type == "text":
            if self.options:
                raise ValueError("text questions must not carry options")
            if self.max_select is not None:
                raise ValueError("text questions must not carry max_select")
            return self
        if not self.options:
            raise ValueError("single/multi questions require options")
        if self.type != "multi" and self.max_select is not None:
            raise ValueError("only multi questions may set max_select")
        return self


class DeliberationAgent(BaseModel):
    name: str = Field(min_length=1)
    stance: str = Field(min_length=1)
    score: float = Field(ge=0, le=10)
    rationale: str = Field(min_length=1)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return min(10.0, max(0.0, float(value)))
        return value


class Deliberation(BaseModel):
    stage: str = Field(min_length=1)
    agents: list[DeliberationAgent]
    synthesis: str = Field(min_length=1)


class LLMResponse(BaseModel):
    """Structured output of the interview / generation call."""

    reply: str
    final_prompt: str | None = None
    is_finished: bool = False
    questions: list[Question] = Field(default_factory=list)
    deliberations: list[Deliberation] = Field(min_length=1)


class VariantDraft(BaseModel):
    draft_prompt: str = Field(min_length=1)

    @field_validator("draft_prompt")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("draft_prompt must not be blank")
        return value


class VariantScore(BaseModel):
    variant: VariantLabel
    clarity: float = Field(ge=0, le=10)
    robustness: float = Field(ge=0, le=10)
    alignment: float = Field(ge=0, le=10)
    total: float = Field(ge=0, le=30)


class CritiqueAgent(BaseModel):
    name: str
    stance: str = ""
    scores: list[VariantScore]
    rationale: str = Field(min_length=1)


class CritiqueResponse(BaseModel):
    agents: list[CritiqueAgent]
    winner: VariantLabel
    synthesis: str = Field(min_length=1)

    @model_validator(mode="after")
    def _require_panel(self) -> "CritiqueResponse":
        names = {agent.name for agent in self.agents}
        missing = [name for name in CRITIQUE_AGENTS if name not in names]
        if missing:
            raise ValueError(f"critique missing agents: {', '.join(missing)}")
        for agent in self.agents:
            scored = {score.variant for score in agent.scores}
            if not {"A", "B", "C"} <= scored:
                raise ValueError(f"agent {agent.name} did not score every variant")
        return self


class SynthesisResponse(BaseModel):
    final_prompt: str = Field(min_length=1)


class GuardReview(BaseModel):
    passed: bool
    issues: list[str] = Field(default_factory=list)
    revised_prompt: str | None = None
    variables: list[str] = Field(default_factory=list)


class GuardFix(BaseModel):
    revised_prompt: str = Field(min_length=1)
    variables: list[str] = Field(default_factory=list)

    @field_validator("revised_prompt")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("revised_prompt must not be blank")
        return value


class ArtifactVariable(BaseModel):
    key: str
    label: str = Field(min_length=1)
    type: Literal["string", "text", "number", "boolean", "enum", "list"]
    required: bool = True
    default: str | float | bool | list[str] | None = None
    placeholder: str | None = None
    options: list[str] | None = None
    joiner: str | None = None
    true_label: str | None = None
    false_label: str | None = None

    @field_validator("key")
    @classmethod
    def _valid_key(cls, value: str) -> str:
        if not VARIABLE_KEY_REGEX.match(value):
            raise ValueError(f"invalid variable key: {value!r}")
        return value

    @model_validator(mode="after")
    def _enum_options(self) -> "ArtifactVariable":
        if self.type == "enum" and not self.options:
            raise ValueError(f"enum variable {self.key} requires options")
        return self


class Artifact(BaseModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    prompt_content: str = Field(min_length=1)
    variables: list[ArtifactVariable] = Field(default_factory=list)
    source_session_id: str | None = None


# --- conversation turns -----------------------------------------------------


class Answer(BaseModel):
    question_id: str | None = Field(default=None, min_length=1)
    type: QuestionType
    value: str | list[str]
    other: str | None = None

    @field_validator("value")
    @classmethod
    def _non_empty_value(cls, value: str | list[str]) -> str | list[str]:
        if isinstance(value, str) and not value:
            raise ValueError("answer value must not be empty")
        if isinstance(value, list) and any(not item for item in value):
            raise ValueError("answer values must not be empty")
        return value


class DraftAnswer(BaseModel):
    type: QuestionType
    value: str | list[str]
    other: str | None = None


class TextTurn(BaseModel):
    kind: Literal["text"] = "text"
    body: str


class FormTurn(BaseModel):
    kind: Literal["form"] = "form"
    questions: list[Question] = Field(default_factory=list)
    answers: dict[str, DraftAnswer] = Field(default_factory=dict)
    note: str | None = None


TurnContent = Annotated[TextTurn | FormTurn, Field(discriminator="kind")]


def _upgrade_legacy_content(raw: str) -> dict:
    """Turn a stored string (possibly ``__FORM__:{json}``) into a tagged turn payload."""
    if not raw.startswith(LEGACY_FORM_PREFIX):
        return {"kind": "text", "body": raw}
    try:
        payload = json.loads(raw[len(LEGACY_FORM_PREFIX):])
        if not isinstance(payload, dict) or not isinstance(payload.get("questions"), list):
            raise ValueError("form payload has no questions list")
        return FormTurn(questions=payload["questions"], answers=payload.get("answers") or {}).model_dump()
    except ValueError as exc:
        logger.debug("Keeping malformed form message as text: %s", exc)
        return {"kind": "text", "body": raw}


class HistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: TurnContent
    timestamp: float = Field(default_factory=time.time)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_legacy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _upgrade_legacy_content(value)
        return value


# --- session state & API payloads --------------------------------------------


class SessionState(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    questions: list[Question] = Field(default_factory=list)
    deliberations: list[Deliberation] = Field(default_factory=list)
    final_prompt: str | None = None
    is_finished: bool = False
    model_id: str | None = None
    output_format: OutputFormat = "markdown"
    title: str | None = None
    draft_answers: dict[str, DraftAnswer] = Field(default_factory=dict)

    @field_validator("draft_answers", mode="before")
    @classmethod
    def _drop_bad_drafts(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        kept = {}
        for key, entry in value.items():
            try:
                kept[key] = DraftAnswer.model_validate(entry)
            except ValueError:
                logger.debug("Dropping malformed draft answer %s", key)
        return kept


class SessionRecord(BaseModel):
    id: str
    owner_id: str
    history: list[HistoryItem] = Field(default_factory=list)
    state: SessionState = Field(default_factory=SessionState)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    session_id: str = Field(alias="sessionId", min_length=1)
    message: str | None = Field(default=None, min_length=1, max_length=2000)
    answers: list[Answer] | None = Field(default=None, max_length=40)
    model_id: str | None = Field(default=None, alias="modelId")
    output_format: OutputFormat | None = Field(default=None, alias="outputFormat")
    trace_id: str | None = Field(default=None, alias="traceId", min_length=1)

    @model_validator(mode="after")
    def _message_or_answers(self) -> "ChatRequest":
        if not self.message and not self.answers:
            raise ValueError("message or answers required")
        return self


class ChatResponse(BaseModel):
    reply: str
    final_prompt: str | None = None
    is_finished: bool = False
    questions: list[Question] = Field(default_factory=list)
    deliberations: list[Deliberation] = Field(default_factory=list)


class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str | None = Field(default=None, alias="modelId")
    output_format: OutputFormat | None = Field(default=None, alias="outputFormat")
