"""Tests for prompt_alchemy/prompts.py."""

import math

import pytest

from prompt_alchemy.prompts import (
    VARIANT_STANCES,
    build_critique_prompt,
    build_final_prompt_rules,
    build_finalize_retry_prompt,
    build_guard_fix_prompt,
    build_guard_review_prompt,
    build_synthesis_prompt,
    build_system_prompt,
    build_variant_prompt,
    resolve_min_variables,
)


def _system(**overrides) -> str:
    kwargs = dict(
        completed_rounds=0,
        round_limit=3,
        force_finalize=False,
        output_format="markdown",
        model_label=None,
        min_variables=3,
    )
    kwargs.update(overrides)
    return build_system_prompt(**kwargs)


@pytest.mark.parametrize("value, expected", [(None, 3), (0, 3), (-2, 3), (math.nan, 3), (math.inf, 3), (5, 5), (4.7, 4)])
def test_resolve_min_variables(value, expected):
    assert resolve_min_variables(value) == expected


def test_interview_mode_banner_and_agents():
    prompt = _system()
    assert "[MODE: INTERVIEW]" in prompt
    assert "Questioner" in prompt
    assert "Planner" in prompt
    assert "[MODE: GENERATION]" not in prompt


def test_round_hint_with_limit():
    assert "当前已完成 1/3 轮追问" in _system(completed_rounds=1)


def test_round_hint_without_limit():
    assert "请尽量减少轮次" in _system(round_limit=0)


def test_force_finalize_mode():
    prompt = _system(completed_rounds=3, force_finalize=True)
    assert "[MODE: GENERATION]" in prompt
    assert "当前已达到追问上限 3 轮" in prompt
    assert "已到追问上限：必须输出 final_prompt" in prompt
    for agent in ("Architect", "RolePlayer", "Critic"):
        assert agent in prompt


def test_model_label_defaults():
    assert "当前模型: 默认模型" in _system()
    assert "当前模型: GPT-5.2" in _system(model_label="GPT-5.2")


def test_format_rules_follow_output_format():
    markdown = "\n".join(build_final_prompt_rules("markdown", 3))
    xml = "\n".join(build_final_prompt_rules("xml", 3))
    assert "Markdown 二级标题输出" in markdown
    assert "## Safe Guard" in markdown
    assert "XML 标签结构输出" in xml
    assert "<SafeGuard>" in xml
    assert "输出格式: XML" in _system(output_format="xml")


def test_min_variables_rule():
    assert "至少包含 5 个占位符" in _system(min_variables=5)
    assert "至少包含 3 个占位符" in _system(min_variables=-1)


def test_core_rules_present():
    prompt = _system()
    assert "Safe Guard" in prompt
    assert "<thinking>" in prompt
    assert "enum 变量必须提供 options" in prompt
    assert "{{key|label:字段名|type:string" in prompt
    assert "'__other__'" in prompt


def test_finalize_retry_prompt_extends_generation_prompt():
    prompt = build_finalize_retry_prompt(3, 3, "markdown", None, 3)
    assert "[MODE: GENERATION]" in prompt
    assert prompt.rstrip().splitlines()[-4] == "[FINALIZE ONLY]"


def test_variant_prompts_differ_by_stance():
    prompts = [build_variant_prompt(stance, "markdown", None, 3) for stance in VARIANT_STANCES]
    assert len(set(prompts)) == 3
    assert "方案 A（结构化 / structured）" in prompts[0]
    assert all('"draft_prompt"' in p for p in prompts)


def test_stage_prompts_carry_output_contract():
    assert '"winner"' in build_critique_prompt("markdown", None)
    assert '"final_prompt"' in build_synthesis_prompt("xml", None, 3)
    assert "XML 标签结构输出" in build_synthesis_prompt("xml", None, 3)
    assert '"passed"' in build_guard_review_prompt("markdown", None, 3)
    assert "revised_prompt 必须是完整、非空的模板" in build_guard_fix_prompt("markdown", None, 3)
