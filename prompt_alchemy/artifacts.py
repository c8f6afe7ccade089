"""Reusable prompt artifacts: build from a final prompt, save/load as Markdown, render with inputs."""

import logging
import math
import re
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import frontmatter

from prompt_alchemy.errors import ArtifactInputError, InvalidRequestError
from prompt_alchemy.schemas import Artifact, ArtifactVariable
from prompt_alchemy.template import derive_title_from_prompt, parse_bool, parse_template_variables, render_template

logger = logging.getLogger(__name__)

DEFAULT_LIST_JOINER = "、"
_INPUT_LIST_RE = re.compile(r"[,，]")


def build_artifact(prompt_content: str, title: str | None = None, source_session_id: str | None = None) -> Artifact:
    """Turn a final prompt into an artifact with one entry per declared variable.

    Raises:
        InvalidRequestError: If the prompt is blank.
    """
    prompt = prompt_content.strip()
    if not prompt:
        raise InvalidRequestError("Prompt content is required")

    variables = []
    for var in parse_template_variables(prompt):
        var_type = var.type or "string"
        if var_type == "enum" and not var.options:
            logger.warning("Variable %s is enum without options; treating as string", var.key)
            var_type = "string"
        variables.append(
            ArtifactVariable(
                key=var.key,
                label=var.label or var.key,
                type=var_type,
                required=True if var.required is None else var.required,
                default=var.default,
                placeholder=var.placeholder,
                options=var.options,
                joiner=var.joiner,
                true_label=var.true_label,
                false_label=var.false_label,
            )
        )
    return Artifact(
        id=str(uuid.uuid4()),
        title=(title or "").strip() or derive_title_from_prompt(prompt),
        prompt_content=prompt,
        variables=variables,
        source_session_id=source_session_id,
    )


def save_artifact(artifact: Artifact, directory: Path) -> Path:
    """Write ``<id>.md``: YAML front matter for metadata, prompt body as content."""
    directory.mkdir(parents=True, exist_ok=True)
    post = frontmatter.Post(
        artifact.prompt_content,
        id=artifact.id,
        title=artifact.title,
        source_session_id=artifact.source_session_id,
        variables=[v.model_dump(exclude_none=True) for v in artifact.variables],
    )
    path = directory / f"{artifact.id}.md"
    path.write_text(frontmatter.dumps(post), encoding="utf-8")
    logger.info("Artifact saved to: %s", path)
    return path


def load_artifact(path: Path) -> Artifact:
    post = frontmatter.load(str(path))
    metadata = dict(post.metadata)
    return Artifact(
        id=str(metadata.get("id") or path.stem),
        title=str(metadata.get("title") or derive_title_from_prompt(post.content)),
        prompt_content=post.content.strip(),
        variables=metadata.get("variables") or [],
        source_session_id=metadata.get("source_session_id"),
    )


def _split_input_list(value: str) -> list[str]:
    return [item.strip() for item in _INPUT_LIST_RE.split(value) if item.strip()]


def _format_number(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return str(value)


def _resolve_one(variable: ArtifactVariable, raw: Any) -> tuple[str | None, str | None]:
    """Return (rendered_value, error) for a present, non-empty input."""
    key = variable.key

    if variable.type == "number":
        if isinstance(raw, bool):
            return None, f"变量 {key} 必须为数字"
        try:
            number = float(raw)
        except (TypeError, ValueError):
            return None, f"变量 {key} 必须为数字"
        if math.isnan(number):
            return None, f"变量 {key} 必须为数字"
        return _format_number(number), None

    if variable.type == "boolean":
        flag = raw if isinstance(raw, bool) else parse_bool(raw) if isinstance(raw, str) else None
        if flag is None:
            return None, f"变量 {key} 必须为布尔值"
        if flag:
            return variable.true_label or "true", None
        return variable.false_label or "false", None

    if variable.type == "list":
        if isinstance(raw, list):
            items = [str(item) for item in raw]
        elif isinstance(raw, str):
            items = _split_input_list(raw)
        else:
            items = []
        if variable.required and not items:
            return None, f"变量 {key} 不能为空"
        return (variable.joiner or DEFAULT_LIST_JOINER).join(items), None

    if variable.type == "enum":
        if not isinstance(raw, str):
            return None, f"变量 {key} 必须为字符串"
        value = raw
        if _INPUT_LIST_RE.search(value):
            candidates = _split_input_list(value)
            if candidates and (not variable.options or all(c in variable.options for c in candidates)):
                value = candidates[0]
        if variable.options and value not in variable.options:
            return None, f"变量 {key} 不在可选项中"
        return value, None

    if not isinstance(raw, str):
        return None, f"变量 {key} 必须为字符串"
    return raw, None


def resolve_inputs(
    variables: list[ArtifactVariable],
    inputs: Mapping[str, Any] | None,
) -> tuple[dict[str, str], list[str]]:
    """Coerce user inputs (falling back to defaults) into render-ready strings.

    Returns:
        (rendered_values, errors). Missing optional variables render as "".
    """
    inputs = inputs or {}
    rendered: dict[str, str] = {}
    errors: list[str] = []

    for variable in variables:
        raw = inputs[variable.key] if variable.key in inputs else variable.default
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            if variable.required:
                errors.append(f"变量 {variable.key} 为空")
            rendered[variable.key] = ""
            continue
        value, error = _resolve_one(variable, raw)
        if error:
            errors.append(error)
            continue
        rendered[variable.key] = value

    return rendered, errors


def render_artifact(artifact: Artifact, inputs: Mapping[str, Any] | None = None) -> str:
    """Render the artifact prompt with coerced inputs.

    Raises:
        ArtifactInputError: If any input is missing or malformed.
    """
    values, errors = resolve_inputs(artifact.variables, inputs)
    if errors:
        raise ArtifactInputError(errors)
    return render_template(artifact.prompt_content, values)
