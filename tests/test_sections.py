"""Tests for polyllm/sections.py."""

import logging

from polyllm.sections import (
    SECTION_ORDER,
    SectionKey,
    all_markers,
    block_pattern,
    definition_for,
    extract_section,
)


def test_section_order_is_fixed():
    assert [k.value for k in SECTION_ORDER] == [
        "comparisonTable",
        "consensusSummary",
        "mentionQuality",
        "votingSummary",
        "disagreements",
        "synthesis",
    ]


def test_delimiters_derive_from_marker():
    definition = definition_for(SectionKey.VOTING_SUMMARY)
    assert definition.start == "## VOTING_SUMMARY_START"
    assert definition.end == "## VOTING_SUMMARY_END"


def test_definition_for_accepts_plain_string():
    assert definition_for("synthesis").marker == "SYNTHESIS"


def test_all_markers_covers_every_section():
    markers = all_markers()
    assert len(markers) == 2 * len(SECTION_ORDER)
    assert markers[0] == "## COMPARISON_TABLE_START"
    assert markers[-1] == "## SYNTHESIS_END"


def test_extract_section_returns_body_between_markers():
    response = "Preamble\n## SYNTHESIS_START\n\nThe answer.\n\n## SYNTHESIS_END\ntrailer"
    assert extract_section(response, SectionKey.SYNTHESIS) == ("The answer.", True)


def test_extract_section_is_case_insensitive():
    response = "## synthesis_start\nbody\n## Synthesis_End"
    assert extract_section(response, SectionKey.SYNTHESIS) == ("body", True)


def test_extract_section_falls_back_to_full_response(caplog):
    with caplog.at_level(logging.WARNING, logger="polyllm.sections"):
        text, found = extract_section("  just prose  ", SectionKey.DISAGREEMENTS)
    assert text == "just prose"
    assert found is False
    assert "DISAGREEMENTS" in caplog.text


def test_extract_section_ignores_other_sections():
    response = "## CONSENSUS_SUMMARY_START\nsummary\n## CONSENSUS_SUMMARY_END"
    text, found = extract_section(response, SectionKey.SYNTHESIS)
    assert found is False
    assert text == response


def test_block_pattern_matches_markers_inclusive():
    template = "a\n## DISAGREEMENTS_START\nexample\n## DISAGREEMENTS_END\nb"
    match = block_pattern(SectionKey.DISAGREEMENTS).search(template)
    assert match.group(0) == "## DISAGREEMENTS_START\nexample\n## DISAGREEMENTS_END"
