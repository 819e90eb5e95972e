"""Rich console presentation and markdown/JSON report save for consensus sessions."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from polyllm.models import ConsensusSection, QueryResult
from polyllm.pipeline import PresentationAdapter
from polyllm.sections import SECTION_ORDER, SECTION_SCHEMA_VERSION, definition_for
from polyllm.session import ConsensusSession

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

CONSENSUS_STYLES = {
    "unanimous": "bold green",
    "majority": "green",
    "split": "yellow",
    "single": "cyan",
    "none": "dim",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _response_preview(text: str, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _section_title(key: str) -> str:
    return next((definition_for(k).title for k in SECTION_ORDER if k.value == key), key)


def print_query_results(results: list[QueryResult], target: Console | None = None) -> None:
    """Print one panel per model: a preview on success, the error otherwise."""
    out = target or console
    out.print(Rule("[bold cyan]Model Responses[/bold cyan]"))
    for result in results:
        if result.success:
            out.print(
                Panel(
                    _response_preview(result.response),
                    title=f"[bold]{result.model.name}[/bold]",
                    subtitle=f"{result.latency_sec:.1f}s",
                    border_style="dim",
                )
            )
        else:
            out.print(
                Panel(
                    Text(result.error, style="red"),
                    title=f"[bold red]{result.model.name} failed[/bold red]",
                    border_style="red",
                )
            )


def print_sections(sections: dict[str, ConsensusSection], target: Console | None = None) -> None:
    """Print completed sections in schema order, with real model names."""
    out = target or console
    for key in SECTION_ORDER:
        section = sections.get(key.value)
        if section is not None:
            out.print(Panel(Markdown(section.display_text), title=definition_for(key).title))


class RichPresentationAdapter(PresentationAdapter):
    """Renders sections and analytics to the terminal as they arrive."""

    def __init__(self, target: Console | None = None) -> None:
        self.console = target or console

    def on_section(self, section_key: str, text: str, mapping: dict[str, str]) -> None:
        self.console.print(
            Panel(
                Markdown(text),
                title=f"[bold green]{_section_title(section_key)}[/bold green]",
                border_style="green",
            )
        )

    def on_analytics(self, analytics: dict[str, Any], user_prompt: str) -> None:
        summary = analytics["summary"]
        insights = analytics["aiGeneratedInsights"]
        self.console.print(Rule("[bold magenta]Consensus Analytics[/bold magenta]"))
        self.console.print(Text(_response_preview(user_prompt, words=30), style="dim"))
        self.console.print(
            Panel(
                f"Consensus score: [bold]{summary['consensusScore']}[/bold] "
                f"({summary['consensusStrength']})\n"
                f"Themes: {summary['totalThemes']} | Models: {summary['totalModels']} | "
                f"Controversies: {summary['controversyCount']} | "
                f"Reliability: {summary['reliabilityIndex']}%\n"
                f"Strongest consensus: {insights['strongestConsensus']}\n"
                f"Biggest controversy: {insights['biggestControversy']}\n"
                f"{insights['modelDiversity']} | {insights['consensusQuality']}",
                title="Summary",
                border_style="magenta",
            )
        )

        themes = Table(title="Themes")
        themes.add_column("Theme")
        themes.add_column("Type")
        themes.add_column("Consensus", justify="right")
        themes.add_column("Controversy", justify="right")
        themes.add_column("Impact", justify="right")
        themes.add_column("Coverage")
        for theme in analytics["themes"]:
            kind = theme["consensusType"]
            themes.add_row(
                theme["name"],
                Text(kind, style=CONSENSUS_STYLES.get(kind, "")),
                f"{theme['consensusStrengthScore']}%",
                f"{theme['controversyScore']}%",
                str(theme["impactScore"]),
                theme["mentionMetrics"]["coverageLabel"],
            )
        self.console.print(themes)

        behavior = analytics["modelBehavior"]
        models = Table(title="Models")
        models.add_column("Model")
        models.add_column("Agreement", justify="right")
        models.add_column("Coverage", justify="right")
        models.add_column("Trust", justify="right")
        models.add_column("Mention style")
        for name, profile in behavior["modelProfiles"].items():
            models.add_row(
                name,
                f"{profile['agreementScore']}%",
                f"{profile['coverageScore']}%",
                str(profile["trustScore"]),
                profile["mentionPatterns"]["mentionStyle"],
            )
        self.console.print(models)


def save_to_file(session: ConsensusSession, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the session as a markdown report, plus analytics JSON when present.

    Args:
        session: The session to save; partial sessions are fine.
        output_dir: Directory to save into.
        slug_override: Filename stem to use instead of one derived from the prompt.

    Returns:
        Path to the markdown file. The JSON file, if written, shares its stem.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(session.user_prompt)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    successful = session.successful_results
    consensus = session.consensus
    lines: list[str] = [
        f"# Multi-LLM Consensus: {session.user_prompt[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Panel:** {', '.join(m.name for m in session.models)}",
        f"**Responses:** {len(successful)}/{len(session.results)}",
    ]
    if consensus is not None:
        lines += [
            f"**Consensus model:** {consensus.consensus_model}",
            f"**Consensus duration:** {consensus.duration_sec:.1f}s",
        ]
    lines += ["", "## Prompt", "", session.user_prompt, "", "---", "", "## Model Responses", ""]

    for result in session.results:
        lines.append(f"### {result.model.name}")
        lines.append("")
        if result.success:
            lines.append(result.response)
            lines.append("")
            tokens = result.usage.get("total_tokens")
            lines.append(
                f"*Latency: {result.latency_sec:.2f}s"
                + (f" | Tokens: {tokens}" if tokens else "")
                + "*"
            )
        else:
            lines.append(f"*Failed: {result.error}*")
        lines.append("")

    if session.sections:
        lines += ["## Consensus", "", f"*Section schema v{SECTION_SCHEMA_VERSION}*", ""]
        for key in SECTION_ORDER:
            section = session.sections.get(key.value)
            if section is None:
                continue
            lines += [f"### {definition_for(key).title}", "", section.display_text, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Report saved to: %s", filepath)

    if session.analytics is not None:
        json_path = filepath.with_suffix(".json")
        json_path.write_text(json.dumps(session.analytics, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Analytics saved to: %s", json_path)

    return filepath
