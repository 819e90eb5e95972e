"""Consensus section schema: ordered section keys, marker delimiters, turn instructions.

The prompt-template validator and the section extractor both read markers from
here, so adding a section is a change to ``SectionKey`` and ``_SECTION_DEFINITIONS``.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

SECTION_SCHEMA_VERSION = 1


class SectionKey(str, Enum):
    COMPARISON_TABLE = "comparisonTable"
    CONSENSUS_SUMMARY = "consensusSummary"
    MENTION_QUALITY = "mentionQuality"
    VOTING_SUMMARY = "votingSummary"
    DISAGREEMENTS = "disagreements"
    SYNTHESIS = "synthesis"


@dataclass(frozen=True)
class SectionDefinition:
    key: SectionKey
    marker: str            # e.g. "COMPARISON_TABLE"
    title: str
    instruction: str       # user turn that asks for this section

    @property
    def start(self) -> str:
        return f"## {self.marker}_START"

    @property
    def end(self) -> str:
        return f"## {self.marker}_END"


FIRST_TURN_INSTRUCTION = (
    "\n\n**IMPORTANT: You will generate this analysis in steps. First, output ONLY the "
    "comparison table section (COMPARISON_TABLE_START to COMPARISON_TABLE_END). After I "
    "confirm receipt, I will ask you to continue with the next section. Do not output "
    "multiple sections in one response.**"
)

_SECTION_DEFINITIONS: dict[SectionKey, SectionDefinition] = {
    SectionKey.COMPARISON_TABLE: SectionDefinition(
        SectionKey.COMPARISON_TABLE,
        "COMPARISON_TABLE",
        "Detailed Comparison",
        "Output the comparison table section (COMPARISON_TABLE_START to COMPARISON_TABLE_END).",
    ),
    SectionKey.CONSENSUS_SUMMARY: SectionDefinition(
        SectionKey.CONSENSUS_SUMMARY,
        "CONSENSUS_SUMMARY",
        "Consensus Summary",
        "Now output the consensus summary section (CONSENSUS_SUMMARY_START to CONSENSUS_SUMMARY_END).",
    ),
    SectionKey.MENTION_QUALITY: SectionDefinition(
        SectionKey.MENTION_QUALITY,
        "MENTION_QUALITY",
        "Mention Quality Analysis",
        "Now output the mention quality analysis section (MENTION_QUALITY_START to "
        "MENTION_QUALITY_END). For each theme, analyze whether each model addressed it "
        "directly (with explicit language), indirectly (implied or alluded to), or omitted "
        "it entirely. Include coverage percentages and insights about engagement patterns.",
    ),
    SectionKey.VOTING_SUMMARY: SectionDefinition(
        SectionKey.VOTING_SUMMARY,
        "VOTING_SUMMARY",
        "Voting Breakdown",
        "Now output the voting summary section (VOTING_SUMMARY_START to VOTING_SUMMARY_END).",
    ),
    SectionKey.DISAGREEMENTS: SectionDefinition(
        SectionKey.DISAGREEMENTS,
        "DISAGREEMENTS",
        "Disagreements",
        "Now output the disagreements section (DISAGREEMENTS_START to DISAGREEMENTS_END).",
    ),
    SectionKey.SYNTHESIS: SectionDefinition(
        SectionKey.SYNTHESIS,
        "SYNTHESIS",
        "Synthesis",
        "Finally, output the synthesis section (SYNTHESIS_START to SYNTHESIS_END).",
    ),
}

SECTION_ORDER: tuple[SectionKey, ...] = tuple(SectionKey)


def definition_for(key: SectionKey) -> SectionDefinition:
    return _SECTION_DEFINITIONS[SectionKey(key)]


def all_markers() -> list[str]:
    """Every start/end delimiter, in section order."""
    markers: list[str] = []
    for key in SECTION_ORDER:
        definition = _SECTION_DEFINITIONS[key]
        markers += [definition.start, definition.end]
    return markers


def block_pattern(key: SectionKey) -> re.Pattern[str]:
    """Regex matching a whole ``## X_START ... ## X_END`` block, markers included."""
    definition = definition_for(key)
    return re.compile(rf"{re.escape(definition.start)}[\s\S]*?{re.escape(definition.end)}")


def extract_section(response: str, key: SectionKey) -> tuple[str, bool]:
    """Pull the body between a section's markers out of a model response.

    Returns:
        (text, markers_found). When the markers are absent the whole trimmed
        response is returned with markers_found=False.
    """
    definition = definition_for(key)
    pattern = re.compile(
        rf"{re.escape(definition.start)}\s*([\s\S]*?)\s*{re.escape(definition.end)}",
        re.IGNORECASE,
    )
    match = pattern.search(response)
    if match:
        return match.group(1).strip(), True

    logger.warning("Section markers not found for %s, using full response", definition.marker)
    return response.strip(), False
