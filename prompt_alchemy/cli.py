"""Click CLI: interactive interview, template validation, artifact rendering, model listing, API server."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import uvicorn
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from config.config_loader import OUTPUT_FORMATS, AppConfig, load_config
from prompt_alchemy.api import create_app
from prompt_alchemy.artifacts import build_artifact, load_artifact, render_artifact, save_artifact
from prompt_alchemy.catalog import build_provider, resolve_model_config
from prompt_alchemy.errors import AlchemyError, ArtifactInputError
from prompt_alchemy.healthcheck import HealthStatus, check_model, run_health_checks
from prompt_alchemy.orchestrator import run_turn
from prompt_alchemy.output import print_artifact, print_turn, print_validation_report
from prompt_alchemy.providers.base import ProviderError
from prompt_alchemy.schemas import NONE_SENTINEL, OTHER_SENTINEL, Answer, ChatRequest, Question, SessionState
from prompt_alchemy.store import JsonFileSessionStore
from prompt_alchemy.validator import validate_template

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

CLI_OWNER_ID = "local-cli"

_STAGE_LABELS = {
    "start": "Starting turn...",
    "load_session": "Loading session...",
    "llm": "Waiting for the model...",
    "llm_retry": "Retrying model call...",
    "alchemy": "Generating and critiquing three drafts...",
    "guard": "Reviewing final prompt...",
    "persist": "Saving session...",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _load_config_or_exit() -> AppConfig:
    try:
        return load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


def _parse_choices(raw: str, question: Question) -> list[str] | None:
    """Map "1,3" / "o" / "n" to option ids or sentinels; None when the input is invalid."""
    options = question.options or []
    picked: list[str] = []
    for token in (t.strip().lower() for t in raw.split(",") if t.strip()):
        if token == "o" and question.allow_other:
            picked.append(OTHER_SENTINEL)
        elif token == "n" and question.allow_none:
            picked.append(NONE_SENTINEL)
        elif token.isdigit() and 1 <= int(token) <= len(options):
            picked.append(options[int(token) - 1].id)
        else:
            return None
    if not picked:
        return None
    if question.type == "single" and len(picked) != 1:
        return None
    if question.max_select and len(picked) > question.max_select:
        return None
    return picked


def _ask_question(question: Question) -> Answer:
    if question.type == "text":
        value = click.prompt(f"{question.id}", type=str).strip() or "-"
        return Answer(question_id=question.id, type="text", value=value)

    hint = "number" if question.type == "single" else "numbers, comma separated"
    while True:
        raw = click.prompt(f"{question.id} ({hint})", type=str)
        picked = _parse_choices(raw, question)
        if picked is not None:
            break
        console.print("[yellow]Invalid choice, try again.[/yellow]")

    other = click.prompt("其他", type=str) if OTHER_SENTINEL in picked else None
    value: str | list[str] = picked[0] if question.type == "single" else picked
    return Answer(question_id=question.id, type=question.type, value=value, other=other)


async def _run_chat(
    config: AppConfig,
    message: str,
    session_id: str | None,
    model_id: str | None,
    output_format: str | None,
    save: bool,
    show_deliberations: bool,
) -> None:
    store = JsonFileSessionStore(config.defaults.store_dir)
    if session_id:
        record = await store.get(session_id, CLI_OWNER_ID)
        if record is None:
            console.print(f"[bold red]Error:[/bold red] Session not found: {session_id}")
            sys.exit(1)
    else:
        model_cfg = resolve_model_config(config, model_id)
        record = await store.create(
            CLI_OWNER_ID,
            SessionState(model_id=model_cfg.id, output_format=output_format or config.defaults.output_format),
        )
    console.print(f"[dim]Session: {record.id}[/dim]")

    answers: list[Answer] | None = None
    while True:
        request = ChatRequest(
            session_id=record.id,
            message=message or None,
            answers=answers,
            model_id=model_id,
            output_format=output_format,
        )
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Starting turn...", total=None)

            def on_stage(stage: str, details: dict) -> None:
                progress.update(task, description=_STAGE_LABELS.get(stage, stage))

            response = await run_turn(
                request, CLI_OWNER_ID, config=config, store=store, on_stage=on_stage
            )

        print_turn(response, show_deliberations=show_deliberations)
        if response.is_finished:
            break

        answers = [_ask_question(q) for q in response.questions] or None
        message = click.prompt("补充说明 (optional)", default="", show_default=False).strip()
        if not answers and not message:
            message = click.prompt("Reply", type=str)

    if save and response.final_prompt:
        artifact = build_artifact(response.final_prompt, source_session_id=record.id)
        path = save_artifact(artifact, config.defaults.artifact_dir)
        print_artifact(artifact)
        console.print(f"\n[dim]Saved to: {path}[/dim]")


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def cli(verbose: bool) -> None:
    """Prompt Alchemy -- interview-driven prompt template generator.

    \b
    Examples:
      python -m prompt_alchemy.cli chat "A prompt that reviews pull requests"
      python -m prompt_alchemy.cli chat --session <id> "add a security focus"
      python -m prompt_alchemy.cli validate template.md --format xml
      python -m prompt_alchemy.cli render artifacts/<id>.md --set topic=Rust
      python -m prompt_alchemy.cli serve --port 8000
    """
    # Model output is mostly CJK; keep the Windows console from choking on it.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)


@cli.command()
@click.argument("message", required=False)
@click.option("--session", "session_id", default=None, help="Resume an existing session id")
@click.option("--model", "model_id", default=None, help="Catalog model id or model string")
@click.option("--format", "output_format", type=click.Choice(OUTPUT_FORMATS), default=None,
              help="Final prompt format (default: from config)")
@click.option("--save/--no-save", default=True, help="Save the final prompt as an artifact")
@click.option("--deliberations", "show_deliberations", is_flag=True, help="Print agent deliberations")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def chat(
    message: str | None,
    session_id: str | None,
    model_id: str | None,
    output_format: str | None,
    save: bool,
    show_deliberations: bool,
    skip_health_check: bool,
) -> None:
    """Run the interview until a final prompt is produced."""
    config = _load_config_or_exit()

    try:
        model_cfg = resolve_model_config(config, model_id)
        if not skip_health_check:
            provider = build_provider(model_cfg)
            status = asyncio.run(check_model(provider))
            if not status.ok:
                console.print(f"[bold red]Error:[/bold red] {model_cfg.id} failed health check: {status.error[:120]}")
                sys.exit(1)

        if not message:
            message = click.prompt("Describe the prompt you need", type=str)

        asyncio.run(
            _run_chat(
                config=config,
                message=message,
                session_id=session_id,
                model_id=model_id,
                output_format=output_format,
                save=save,
                show_deliberations=show_deliberations,
            )
        )
    except (AlchemyError, ProviderError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)


@cli.command()
@click.argument("template_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "output_format", type=click.Choice(OUTPUT_FORMATS), default="markdown")
@click.option("--min-variables", type=int, default=None, help="Minimum placeholders (default: from config)")
def validate(template_file: Path, output_format: str, min_variables: int | None) -> None:
    """Check a template for metadata, sections and injection phrasing. Exit 1 on failure."""
    config = _load_config_or_exit()
    minimum = min_variables if min_variables is not None else config.orchestration.min_prompt_variables
    report = validate_template(template_file.read_text(encoding="utf-8"), output_format, minimum)
    print_validation_report(report)
    if not report.passed:
        sys.exit(1)


@cli.command()
@click.argument("artifact_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Variable value (repeatable)")
@click.option("--inputs", "inputs_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="JSON file of variable values")
def render(artifact_file: Path, assignments: tuple[str, ...], inputs_file: Path | None) -> None:
    """Render a saved artifact (or a bare template file) with variable values."""
    artifact = load_artifact(artifact_file)
    if not artifact.variables:
        artifact = build_artifact(artifact.prompt_content, title=artifact.title)

    inputs: dict = {}
    if inputs_file:
        inputs.update(json.loads(inputs_file.read_text(encoding="utf-8")))
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got {assignment!r}", param_hint="--set")
        inputs[key.strip()] = value

    try:
        click.echo(render_artifact(artifact, inputs))
    except ArtifactInputError as exc:
        for error in exc.errors:
            console.print(f"[red]-[/red] {error}")
        sys.exit(1)


@cli.command()
@click.option("--check", is_flag=True, help="Ping every available model")
def models(check: bool) -> None:
    """List the model catalog and which models have credentials."""
    config = _load_config_or_exit()

    health: dict[str, HealthStatus] = {}
    if check:
        providers = {}
        for model_id in sorted(config.available_models):
            try:
                providers[model_id] = build_provider(config.models[model_id])
            except AlchemyError as exc:
                health[model_id] = HealthStatus(ok=False, error=str(exc))
        health.update(asyncio.run(run_health_checks(providers)))

    table = Table(title="Models")
    table.add_column("Id", style="bold")
    table.add_column("Label")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Status")
    for model_cfg in config.models.values():
        if model_cfg.id not in config.available_models:
            status = f"[dim]no key ({model_cfg.api_key_env})[/dim]"
        elif model_cfg.id in health:
            result = health[model_cfg.id]
            if result.ok:
                status = f"[green]OK[/green] {result.latency_sec:.1f}s"
            else:
                status = f"[red]FAIL[/red] {result.error.splitlines()[0][:60] if result.error else ''}"
        else:
            status = "[green]available[/green]"
        default_marker = " *" if model_cfg.id == config.defaults.model_id else ""
        table.add_row(model_cfg.id + default_marker, model_cfg.label, model_cfg.provider, model_cfg.model, status)
    console.print(table)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Serve the HTTP API with uvicorn."""
    config = _load_config_or_exit()
    uvicorn.run(create_app(config), host=host, port=port)


if __name__ == "__main__":
    cli()
