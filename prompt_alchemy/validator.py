"""Local checks for a candidate template: metadata, sections, injection phrasing, variable count."""

import logging
import re
from dataclasses import dataclass

from prompt_alchemy.models import ValidationReport
from prompt_alchemy.prompts import resolve_min_variables
from prompt_alchemy.template import parse_template_variables

logger = logging.getLogger(__name__)

THINKING_MARKER = "<thinking>"


@dataclass(frozen=True)
class Section:
    name: str            # English name used in headings and issue text
    heading: str         # regex for the markdown heading text
    tag: str             # regex for the xml tag name


REQUIRED_SECTIONS: tuple[Section, ...] = (
    Section("Role", r"Role", r"Role"),
    Section("Context", r"Context", r"Context"),
    Section("Constraints", r"Constraints", r"Constraints"),
    Section("Workflow", r"Workflow", r"Workflow"),
    Section("Examples", r"Examples", r"Examples"),
    Section("Initialization", r"Initiali[sz]ation", r"Initiali[sz]ation"),
    Section("Safe Guard", r"Safe[\s_-]?Guard", r"Safe_?Guard"),
)

# Negation cues that turn a matched phrase into a prohibition ("请勿忽略系统指令").
_NEGATION_RE = re.compile(
    r"(不要|不得|禁止|严禁|请勿|拒绝|不允许|do\s+not|don't|never|must\s+not|refuse)",
    re.IGNORECASE,
)
_NEGATION_WINDOW = 16

INJECTION_PATTERNS: dict[str, tuple[re.Pattern, ...]] = {
    "ignore_previous_instructions": (
        re.compile(
            r"ignore\s+(?:all\s+)?(?:the\s+)?(?:previous|prior|above|earlier|preceding)\s+"
            r"(?:instructions|prompts|rules|messages)",
            re.IGNORECASE,
        ),
        re.compile(r"忽略(?:之前|以上|上述|先前|前面|所有|全部)?的?(?:所有|全部)?(?:系统)?(?:指令|指示|规则|提示)"),
    ),
    "override_system_prompt": (
        re.compile(
            r"(?:override|overwrite|replace|disregard)\s+(?:the\s+|your\s+)?"
            r"(?:system|developer)\s+(?:prompt|instructions|message)",
            re.IGNORECASE,
        ),
        re.compile(r"(?:覆盖|改写|替换|无视)(?:你的)?(?:系统|开发者)(?:提示|指令|设定|消息)"),
    ),
    "jailbreak": (
        re.compile(r"\bjail\s?break(?:ing)?\b|\bDAN\s+mode\b|\bdeveloper\s+mode\s+enabled\b", re.IGNORECASE),
        re.compile(r"越狱"),
    ),
    "bypass_safety_restriction": (
        re.compile(
            r"(?:bypass|circumvent|disable|get\s+around)\s+(?:the\s+|any\s+|all\s+)?"
            r"(?:safety|security|content|moderation)\s*(?:filters?|restrictions?|guard(?:rail)?s?|polic(?:y|ies)|checks?)?",
            re.IGNORECASE,
        ),
        re.compile(r"(?:绕过|规避|关闭|解除)(?:所有|任何)?的?(?:安全|审核|内容)?(?:限制|过滤|策略|审查|防护)"),
    ),
    "reveal_system_prompt": (
        re.compile(
            r"(?:reveal|print|show|leak|output|repeat|display)\s+(?:me\s+)?(?:your\s+|the\s+)?"
            r"(?:system\s+prompt|hidden\s+instructions|initial\s+instructions)",
            re.IGNORECASE,
        ),
        re.compile(r"(?:泄露|透露|输出|显示|打印|告诉我)(?:你的)?(?:系统|隐藏|初始)(?:提示词?|指令|设定)"),
    ),
    "role_override_with_ignore": (
        re.compile(r"(?:you\s+are\s+now|from\s+now\s+on|act\s+as)\b.{0,60}?\bignor(?:e|ing)\b", re.IGNORECASE | re.DOTALL),
        re.compile(r"(?:现在你是|从现在开始你是|你现在是|扮演).{0,30}?(?:忽略|无视)", re.DOTALL),
    ),
}


def check_variable_metadata(template: str) -> list[str]:
    """Every placeholder needs label and type; enum also needs options."""
    issues: list[str] = []
    for variable in parse_template_variables(template):
        if not variable.label:
            issues.append(f"变量 {variable.key} 缺少 label")
        if not variable.type:
            issues.append(f"变量 {variable.key} 缺少 type")
        if variable.type == "enum" and not variable.options:
            issues.append(f"变量 {variable.key} 为 enum 但缺少 options")
    return issues


def _has_markdown_section(template: str, section: Section) -> bool:
    pattern = re.compile(rf"^\s{{0,3}}#{{2,3}}\s*{section.heading}\b", re.IGNORECASE | re.MULTILINE)
    return bool(pattern.search(template))


def _has_xml_section(template: str, section: Section) -> bool:
    opening = re.compile(rf"<\s*{section.tag}\b[^>]*>", re.IGNORECASE)
    closing = re.compile(rf"</\s*{section.tag}\s*>", re.IGNORECASE)
    return bool(opening.search(template)) and bool(closing.search(template))


def check_structure(template: str, output_format: str) -> list[str]:
    """One issue per missing section, plus one if the <thinking> directive is absent."""
    issues: list[str] = []
    for section in REQUIRED_SECTIONS:
        if output_format == "xml":
            if not _has_xml_section(template, section):
                tag = section.name.replace(" ", "")
                issues.append(f"缺少 <{tag}>...</{tag}> 标签")
        elif not _has_markdown_section(template, section):
            issues.append(f"缺少 ## {section.name} 标题")
    if THINKING_MARKER not in template.lower():
        issues.append(f"缺少 {THINKING_MARKER} 思考指令")
    return issues


def _is_negated(text: str, start: int) -> bool:
    window = text[max(0, start - _NEGATION_WINDOW):start]
    return bool(_NEGATION_RE.search(window))


def detect_injection(template: str) -> list[str]:
    """Return injection categories with at least one non-negated match."""
    flagged: list[str] = []
    for category, patterns in INJECTION_PATTERNS.items():
        for pattern in patterns:
            if any(not _is_negated(template, m.start()) for m in pattern.finditer(template)):
                flagged.append(category)
                break
    if flagged:
        logger.debug("Injection categories flagged: %s", flagged)
    return flagged


def check_variable_count(template: str, min_variables: int | None) -> str | None:
    """Shortfall message, using the same positive minimum the instructions demand."""
    minimum = resolve_min_variables(min_variables)
    count = len(parse_template_variables(template))
    if count < minimum:
        return f"占位符数量不足：当前 {count} 个，至少需要 {minimum} 个"
    return None


def validate_template(template: str, output_format: str, min_variables: int | None) -> ValidationReport:
    return ValidationReport(
        metadata_issues=check_variable_metadata(template),
        structure_issues=check_structure(template, output_format),
        injection_flags=detect_injection(template),
        variable_count=len(parse_template_variables(template)),
        min_variables=resolve_min_variables(min_variables),
    )
