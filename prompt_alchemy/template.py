"""Placeholder micro-language: ``{{ key | label:Name | type:enum | options:a,b }}``.

Extraction merges repeated keys left to right (first non-empty value wins per
field). Rendering substitutes plain values and never falls back to ``default``.
A literal ``{{`` is written ``\\{{`` and rendered back as ``{{``.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import fields
from typing import Any

from prompt_alchemy.models import TemplateVariable

logger = logging.getLogger(__name__)

VARIABLE_KEY_REGEX = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
VARIABLE_TYPES = ("string", "text", "number", "boolean", "enum", "list")
META_KEYS = (
    "label",
    "type",
    "required",
    "default",
    "options",
    "placeholder",
    "joiner",
    "true_label",
    "false_label",
)

_PLACEHOLDER_RE = re.compile(r"\{\{([^{}]*)\}\}")
_META_RE = re.compile(r"^\s*([A-Za-z_]+)\s*[:=]\s*(.*?)\s*$", re.DOTALL)
_LIST_SPLIT_RE = re.compile(r"[,;，]")
_ESCAPED_LEFT_BRACE = "\ue000ESCAPED_LEFT_BRACE\ue000"

_TRUE_TOKENS = {"true", "1", "yes", "y"}
_FALSE_TOKENS = {"false", "0", "no", "n"}

TITLE_FALLBACK = "新对话"
TITLE_MAX_LEN = 24
_TITLE_HEADING_RE = re.compile(r"^#+\s*")
_TITLE_BULLET_RE = re.compile(r"^(?:[-*+•]|\d+[.)、])\s+")
_TITLE_TAG_RE = re.compile(r"</?[A-Za-z_][\w-]*>")
_TITLE_LABEL_RE = re.compile(
    r"^(?:role|角色|title|标题|system\s+prompt|prompt|任务|目标)\s*[:：]\s*",
    re.IGNORECASE,
)


def split_list(value: str) -> list[str]:
    """Split on ``,`` ``;`` or a fullwidth comma, dropping blanks."""
    return [item.strip() for item in _LIST_SPLIT_RE.split(value) if item.strip()]


def parse_bool(value: str) -> bool | None:
    token = value.strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def _coerce_default(raw: str, var_type: str | None) -> str | float | bool | list[str]:
    if var_type == "number":
        try:
            number = float(raw)
        except ValueError:
            return raw
        return int(number) if number.is_integer() and "." not in raw else number
    if var_type == "boolean":
        parsed = parse_bool(raw)
        return raw if parsed is None else parsed
    if var_type == "list":
        return split_list(raw)
    return raw


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def _iter_placeholders(template: str):
    """Yield (match, key, meta_segments) for unescaped placeholders with a valid key."""
    for match in _PLACEHOLDER_RE.finditer(template):
        start = match.start()
        if start > 0 and template[start - 1] == "\\":
            continue
        segments = match.group(1).split("|")
        key = segments[0].strip()
        if not VARIABLE_KEY_REGEX.match(key):
            logger.debug("Skipping placeholder with invalid key: %r", match.group(0))
            continue
        yield match, key, segments[1:]


def _parse_occurrence(key: str, segments: list[str], known_type: str | None) -> TemplateVariable:
    raw: dict[str, str] = {}
    for segment in segments:
        meta = _META_RE.match(segment)
        if not meta:
            continue
        name = meta.group(1).lower()
        if name in META_KEYS and name not in raw:
            raw[name] = meta.group(2)

    occurrence = TemplateVariable(key=key)
    var_type = raw.get("type", "").strip().lower()
    if var_type in VARIABLE_TYPES:
        occurrence.type = var_type

    for name in ("label", "placeholder", "joiner", "true_label", "false_label"):
        if raw.get(name):
            setattr(occurrence, name, raw[name])
    if "required" in raw:
        occurrence.required = parse_bool(raw["required"])
    if raw.get("options"):
        occurrence.options = split_list(raw["options"]) or None
    if raw.get("default"):
        occurrence.default = _coerce_default(raw["default"], occurrence.type or known_type)
    return occurrence


def _merge(target: TemplateVariable, occurrence: TemplateVariable) -> None:
    for f in fields(TemplateVariable):
        if f.name == "key":
            continue
        if _is_empty(getattr(target, f.name)) and not _is_empty(getattr(occurrence, f.name)):
            setattr(target, f.name, getattr(occurrence, f.name))


def parse_template_variables(template: str) -> list[TemplateVariable]:
    """Return declared variables in first-seen order with merged metadata."""
    if not template:
        return []

    merged: dict[str, TemplateVariable] = {}
    for _, key, segments in _iter_placeholders(template):
        current = merged.get(key)
        occurrence = _parse_occurrence(key, segments, current.type if current else None)
        if current is None:
            merged[key] = occurrence
        else:
            _merge(current, occurrence)
    return list(merged.values())


def extract_template_variables(template: str) -> list[str]:
    return [variable.key for variable in parse_template_variables(template)]


def render_template(template: str, values: Mapping[str, Any]) -> str:
    """Substitute placeholders; absent keys become ``""``, invalid keys stay verbatim."""
    if not template:
        return ""

    escaped = template.replace("\\{{", _ESCAPED_LEFT_BRACE)

    def _replace(match: re.Match) -> str:
        key = match.group(1).split("|")[0].strip()
        if not VARIABLE_KEY_REGEX.match(key):
            return match.group(0)
        value = values.get(key)
        return "" if value is None else str(value)

    rendered = _PLACEHOLDER_RE.sub(_replace, escaped)
    return rendered.replace(_ESCAPED_LEFT_BRACE, "{{")


def _clean_title_line(line: str) -> str:
    text = line.strip()
    text = _TITLE_HEADING_RE.sub("", text)
    text = _TITLE_BULLET_RE.sub("", text)
    text = _TITLE_TAG_RE.sub("", text).strip()
    text = _TITLE_LABEL_RE.sub("", text)
    return text.strip().strip("*_`").strip()


def derive_title_from_prompt(prompt: str | None) -> str:
    """Pick a short session title from the first meaningful line of a prompt."""
    for line in (prompt or "").splitlines():
        candidate = _clean_title_line(line)
        if len(candidate) <= 1:
            continue
        if len(candidate) > TITLE_MAX_LEN:
            return candidate[:TITLE_MAX_LEN] + "…"
        return candidate
    return TITLE_FALLBACK
