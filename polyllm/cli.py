"""Click CLI: orchestrates config loading, model selection, consensus, analytics, and output."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from polyllm.codenames import build_codename_mapping
from polyllm.consensus import ConsensusCancelledError, ConsensusTurnError, NoSuccessfulResponsesError, run_consensus
from polyllm.extraction import ClassificationValidationError, ExtractionError
from polyllm.gateway import DEFAULT_TOKEN_CEILING, QueryCallbacks, query_models
from polyllm.healthcheck import run_health_checks
from polyllm.models import ModelDescriptor, QueryResult
from polyllm.output import RichPresentationAdapter, print_query_results, print_sections, save_to_file
from polyllm.pipeline import ConversionError, analyze_raw_text, convert_consensus
from polyllm.prompt_file import parse_prompt_file
from polyllm.providers.base import ChatProvider, ProviderError
from polyllm.providers.openrouter import OpenRouterProvider
from polyllm.session import ConsensusSession

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _split_ids(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [m.strip() for m in value.split(",") if m.strip()]


def _resolve_selection(
    config: AppConfig,
    models_cli: str | None,
    consensus_cli: str | None,
    json_cli: str | None,
    meta: dict,
) -> tuple[list[ModelDescriptor], ModelDescriptor, ModelDescriptor]:
    """Returns (panel, consensus model, json model).

    Precedence: CLI flag > front matter > config default.
    """
    model_ids = _split_ids(models_cli) or meta.get("models") or config.defaults.selected_models
    consensus_id = consensus_cli or meta.get("consensus_model") or config.defaults.consensus_model
    json_id = json_cli or meta.get("json_model") or config.defaults.json_model

    panel = config.resolve_models(list(dict.fromkeys(model_ids)))
    consensus_model, json_model = config.resolve_models([consensus_id, json_id])
    return panel, consensus_model, json_model


async def _check_and_filter_models(
    provider: ChatProvider,
    panel: list[ModelDescriptor],
    consensus_model: ModelDescriptor,
    json_model: ModelDescriptor,
    token_ceiling: int = DEFAULT_TOKEN_CEILING,
) -> list[ModelDescriptor]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the working panel. Exits if the user declines to continue, no
    panel model passes, or the consensus or JSON model is down.
    """
    console.print("\n[bold]Checking models...[/bold]")
    results = await run_health_checks(provider, [*panel, consensus_model, json_model], token_ceiling)

    failed_ids: list[str] = []
    for model_id, (ok, err) in results.items():
        if ok:
            console.print(f"  [green]OK  [/green] {model_id}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {model_id}: {short_err}")
            failed_ids.append(model_id)

    if not failed_ids:
        console.print()
        return panel

    for role, model in (("Consensus", consensus_model), ("JSON", json_model)):
        if model.id in failed_ids:
            console.print(f"\n[bold red]Error:[/bold red] {role} model {model.id} failed the health check.")
            sys.exit(1)

    working = [m for m in panel if m.id not in failed_ids]
    if not working:
        console.print("\n[bold red]Error:[/bold red] No models passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_ids)} model(s) failed:[/yellow] {', '.join(failed_ids)}")
    console.print(f"Working models: {', '.join(m.id for m in working)}")

    if not click.confirm("Continue with working models only?", default=True):
        sys.exit(0)

    console.print()
    return working


async def _query_panel(provider: ChatProvider, session: ConsensusSession, token_ceiling: int) -> list[QueryResult]:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        tasks: dict[int, int] = {}

        def on_start(index: int, model: ModelDescriptor) -> None:
            tasks[index] = progress.add_task(f"Querying {model.name}...", total=None)

        def on_stop(index: int) -> None:
            progress.remove_task(tasks.pop(index))

        def on_response(index: int, result: QueryResult) -> None:
            if result.success:
                progress.print(f"[green]OK[/green] {result.model.name} ({result.latency_sec:.1f}s)")
            else:
                progress.print(f"[red]FAIL[/red] {result.model.name}: {result.error}")

        return await query_models(
            provider,
            session.models,
            session.user_prompt,
            callbacks=QueryCallbacks(on_start=on_start, on_stop=on_stop, on_response=on_response),
            token_ceiling=token_ceiling,
        )


def _save_raw_for_repair(raw_text: str, report_path: Path) -> Path:
    raw_path = report_path.with_name(report_path.stem + "_raw.txt")
    raw_path.write_text(raw_text, encoding="utf-8")
    return raw_path


async def _run_session(
    session: ConsensusSession,
    config: AppConfig,
    provider: ChatProvider,
    consensus_model: ModelDescriptor,
    json_model: ModelDescriptor,
    output_dir: Path,
    with_analytics: bool,
) -> Path:
    """Fan-out, consensus, conversion. Returns the saved report path."""
    adapter = RichPresentationAdapter(console)
    ceiling = config.api.max_tokens_ceiling

    console.print(f"\n[bold cyan]PolyLLM Consensus[/bold cyan] ({len(session.models)} models)")
    console.print(f"Panel: {', '.join(m.name for m in session.models)}")
    console.print(f"Consensus: {consensus_model.name} | JSON: {json_model.name}")
    prompt_preview = session.user_prompt[:80] + ("..." if len(session.user_prompt) > 80 else "")
    console.print(f"Prompt: [italic]{prompt_preview}[/italic]\n")

    session.results = await _query_panel(provider, session, ceiling)
    print_query_results(session.results, console)

    while True:
        try:
            await run_consensus(
                session,
                provider,
                consensus_model,
                config.prompts.consensus,
                config.codenames,
                on_section=adapter.on_section,
                cooldown_sec=config.defaults.turn_cooldown_sec,
                token_ceiling=ceiling,
            )
            break
        except NoSuccessfulResponsesError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            saved = save_to_file(session, output_dir)
            console.print(f"\n[dim]Saved to: {saved}[/dim]")
            sys.exit(1)
        except (ConsensusTurnError, ConsensusCancelledError) as exc:
            console.print(f"\n[bold red]Consensus stopped:[/bold red] {exc}")
            if exc.completed_sections:
                console.print(f"[yellow]{len(exc.completed_sections)} section(s) completed:[/yellow]")
                print_sections(exc.completed_sections, console)
            saved = save_to_file(session, output_dir)
            console.print(f"[dim]Partial report saved to: {saved}[/dim]")
            if not click.confirm("Retry the consensus from the beginning?", default=False):
                sys.exit(1)

    if not with_analytics:
        saved = save_to_file(session, output_dir)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")
        return saved

    template = config.prompts.conversion
    use_safe = False
    while True:
        raw_text: str | None = None
        try:
            await convert_consensus(
                session,
                provider,
                json_model,
                template,
                adapter=adapter,
                token_ceiling=ceiling,
            )
            break
        except ConversionError as exc:
            console.print(f"[bold red]Conversion failed:[/bold red] {exc}")
        except ExtractionError as exc:
            console.print(f"[bold red]Could not extract JSON:[/bold red] {exc}")
            raw_text = exc.raw_text
        except ClassificationValidationError as exc:
            console.print("[bold red]Classification JSON is invalid:[/bold red]")
            for error in exc.errors:
                console.print(f"  - {error}")
            raw_text = session.conversion_response

        if use_safe or not click.confirm("Retry the conversion with the simplified safe format?", default=True):
            saved = save_to_file(session, output_dir)
            if raw_text is not None:
                raw_path = _save_raw_for_repair(raw_text, saved)
                panel_ids = ",".join(m.id for m in session.models)
                console.print(f"Raw response saved to {raw_path}. Fix it by hand, then run:")
                console.print(f"  polyllm --repair {raw_path} --models {panel_ids}")
            console.print(f"\n[dim]Saved to: {saved}[/dim]")
            return saved
        template = config.prompts.conversion_safe
        use_safe = True

    saved = save_to_file(session, output_dir)
    console.print(f"\n[dim]Saved to: {saved}[/dim]")
    return saved


def _repair(raw_path: Path, panel: list[ModelDescriptor] | None, codenames: dict[str, str]) -> None:
    """Re-run extraction, validation and metrics on a hand-edited response.

    With a panel, model keys must be its display names; codenames are mapped back first.
    """
    raw_text = raw_path.read_text(encoding="utf-8")
    known_models = to_real_name = None
    if panel:
        known_models = [m.name for m in panel]
        to_real_name = build_codename_mapping(panel, codenames).to_real_name
    try:
        analytics = analyze_raw_text(raw_text, known_models, to_real_name)
    except ExtractionError as exc:
        console.print(f"[bold red]Still no usable JSON:[/bold red] {exc}")
        sys.exit(1)
    except ClassificationValidationError as exc:
        console.print("[bold red]Classification JSON is invalid:[/bold red]")
        for error in exc.errors:
            console.print(f"  - {error}")
        sys.exit(1)

    RichPresentationAdapter(console).on_analytics(analytics, raw_path.stem)
    json_path = raw_path.with_suffix(".json")
    json_path.write_text(
        json.dumps(analytics, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    console.print(f"\n[dim]Analytics saved to: {json_path}[/dim]")


@click.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read prompt from .md file")
@click.option("--models", default=None, help="Comma-separated model ids, overrides the default panel")
@click.option("--consensus-model", default=None, help="Model that negotiates the consensus (default: from config)")
@click.option("--json-model", default=None, help="Model that converts the consensus to JSON (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-analytics", is_flag=True, default=False, help="Stop after the consensus document")
@click.option("--repair", "repair_path", type=click.Path(exists=True), default=None,
              help="Re-run analytics on a hand-edited conversion response; add --models to check model names")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    prompt: str | None,
    prompt_file: str | None,
    models: str | None,
    consensus_model: str | None,
    json_model: str | None,
    output_path: str | None,
    no_analytics: bool,
    repair_path: str | None,
    skip_health_check: bool,
    verbose: bool,
) -> None:
    """PolyLLM Consensus -- ask many models, negotiate one answer, score the agreement.

    \b
    Examples:
      polyllm "What are the tradeoffs of event sourcing?"
      polyllm "Rust or Go for a CLI?" --models anthropic/claude-opus-4,openai/gpt-4.1
      polyllm --file prompt.md --no-analytics
      polyllm --repair output/20250101_120000_event-sourcing_raw.txt
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if repair_path:
        try:
            repair_panel = config.resolve_models(_split_ids(models)) if models else None
        except KeyError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc.args[0]}")
            sys.exit(1)
        _repair(Path(repair_path), repair_panel, config.codenames)
        return

    meta: dict = {}
    if prompt_file:
        try:
            prompt_text, meta = parse_prompt_file(Path(prompt_file))
        except ValueError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)
    elif prompt:
        prompt_text = prompt.strip()
    else:
        console.print("[bold red]Error:[/bold red] Provide a PROMPT argument, --file, or --repair.")
        sys.exit(1)

    try:
        panel, consensus_desc, json_desc = _resolve_selection(config, models, consensus_model, json_model, meta)
    except KeyError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc.args[0]}")
        sys.exit(1)

    try:
        provider = OpenRouterProvider(config.api)
    except ProviderError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc.message}. Check your .env file.")
        sys.exit(1)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir

    async def _main() -> None:
        working = panel
        if not skip_health_check:
            working = await _check_and_filter_models(
                provider, panel, consensus_desc, json_desc, config.api.max_tokens_ceiling
            )
        session = ConsensusSession(user_prompt=prompt_text, models=working)
        await _run_session(session, config, provider, consensus_desc, json_desc, output_dir, not no_analytics)

    asyncio.run(_main())


if __name__ == "__main__":
    main()
