"""Plain dataclasses passed between the orchestration stages. No logic."""

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel

Role = Literal["system", "user", "model"]


@dataclass
class Message:
    role: Role
    content: str


@dataclass
class LLMRequest:
    model: str                                   # provider model string
    messages: list[Message]
    output_schema: type[BaseModel] | None = None  # None means free text
    stage: str = "chat"                          # for logs only


@dataclass
class ModelResponse:
    provider: str
    model: str
    content: str
    output: BaseModel | None
    latency_sec: float
    token_count: int | None = None


@dataclass
class TemplateVariable:
    key: str
    label: str | None = None
    type: str | None = None
    required: bool | None = None
    default: str | float | bool | list[str] | None = None
    placeholder: str | None = None
    options: list[str] | None = None
    joiner: str | None = None
    true_label: str | None = None
    false_label: str | None = None


@dataclass
class ValidationReport:
    metadata_issues: list[str] = field(default_factory=list)
    structure_issues: list[str] = field(default_factory=list)
    injection_flags: list[str] = field(default_factory=list)
    variable_count: int = 0
    min_variables: int = 3

    @property
    def variable_shortfall(self) -> bool:
        return self.variable_count < self.min_variables

    @property
    def passed(self) -> bool:
        return not (self.metadata_issues or self.structure_issues or self.injection_flags)


@dataclass
class Draft:
    variant: str        # "A", "B" or "C"
    stance: str
    prompt: str
