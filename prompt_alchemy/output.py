"""Rich console output for interview turns, validation reports and artifacts."""

import logging

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from prompt_alchemy.models import ValidationReport
from prompt_alchemy.schemas import Artifact, ChatResponse, Deliberation, Question

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _question_hint(question: Question) -> str:
    if question.type == "multi":
        limit = f", up to {question.max_select}" if question.max_select else ""
        return f"multi{limit}"
    return question.type


def print_questions(questions: list[Question]) -> None:
    """Print the pending interview questions with numbered options."""
    for index, question in enumerate(questions, start=1):
        lines = [f"[bold]{index}. {question.text}[/bold] [dim]({_question_hint(question)})[/dim]"]
        for opt_index, option in enumerate(question.options or [], start=1):
            lines.append(f"   {opt_index}) {option.label}")
        if question.allow_other:
            lines.append("   [dim]o) 其他（自定义输入）[/dim]")
        if question.allow_none:
            lines.append("   [dim]n) 不需要[/dim]")
        if question.placeholder:
            lines.append(f"   [dim]{question.placeholder}[/dim]")
        console.print("\n".join(lines))


def print_deliberations(deliberations: list[Deliberation]) -> None:
    for deliberation in deliberations:
        table = Table(title=f"Deliberation: {deliberation.stage}", show_lines=False)
        table.add_column("Agent", style="bold")
        table.add_column("Stance")
        table.add_column("Score", justify="right")
        table.add_column("Rationale")
        for agent in deliberation.agents:
            table.add_row(agent.name, agent.stance, f"{agent.score:.1f}", agent.rationale)
        console.print(table)
        console.print(Text(deliberation.synthesis, style="dim"))


def print_turn(response: ChatResponse, *, show_deliberations: bool = False) -> None:
    """Print one orchestrated turn: reply, then questions or the final prompt."""
    console.print(Panel(response.reply, title="[bold cyan]Assistant[/bold cyan]", border_style="cyan"))
    if show_deliberations:
        print_deliberations(response.deliberations)
    if response.is_finished and response.final_prompt:
        print_final_prompt(response.final_prompt)
    elif response.questions:
        print_questions(response.questions)


def print_final_prompt(prompt: str) -> None:
    console.print(Rule("[bold green]Final Prompt[/bold green]"))
    console.print(Markdown(prompt))


def print_validation_report(report: ValidationReport) -> None:
    """Print validator findings; green when the template passes every check."""
    status = "[green]PASS[/green]" if report.passed else "[red]FAIL[/red]"
    console.print(Rule(f"Validation {status}"))
    for title, issues in (
        ("Variable metadata", report.metadata_issues),
        ("Structure", report.structure_issues),
        ("Injection", report.injection_flags),
    ):
        if issues:
            console.print(f"[bold]{title}[/bold]")
            for issue in issues:
                console.print(f"  [red]-[/red] {issue}")
    count_style = "yellow" if report.variable_shortfall else "green"
    console.print(
        f"Variables: [{count_style}]{report.variable_count}[/{count_style}] (minimum {report.min_variables})"
    )


def print_artifact(artifact: Artifact) -> None:
    table = Table(title=artifact.title)
    table.add_column("Key", style="bold")
    table.add_column("Label")
    table.add_column("Type")
    table.add_column("Required")
    table.add_column("Default")
    for variable in artifact.variables:
        table.add_row(
            variable.key,
            variable.label,
            variable.type,
            "yes" if variable.required else "no",
            "" if variable.default is None else str(variable.default),
        )
    console.print(table)
