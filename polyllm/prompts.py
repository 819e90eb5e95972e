"""Prompt construction for the consensus conversation and the structured-data conversion."""

import math

from polyllm.codenames import CodenameMapping, replace_codenames
from polyllm.models import QueryResult
from polyllm.sections import FIRST_TURN_INSTRUCTION, SectionKey, block_pattern, definition_for

ROLE_LABELS = {"user": "USER", "assistant": "ASSISTANT"}


def _replace_block(template: str, key: SectionKey, body: str) -> str:
    definition = definition_for(key)
    replacement = f"{definition.start}\n{body}\n{definition.end}"
    return block_pattern(key).sub(lambda _m: replacement, template, count=1)


def _comparison_table(codes: list[str]) -> str:
    header = f"| Theme/Category | {' | '.join(codes)} | Consensus Type |"
    separator = "|" + "-" * 16 + "|" + "|".join("-" * 9 for _ in codes) + "|" + "-" * 16 + "|"
    return f"{header}\n{separator}"


def _voting_examples(codes: list[str]) -> str:
    agreed_end = math.ceil(len(codes) * 0.6)
    disagreed_end = math.ceil(len(codes) * 0.8)
    agreed = ", ".join(codes[:agreed_end]) or "[List models that agree]"
    disagreed = ", ".join(codes[agreed_end:disagreed_end]) or "None"
    not_addressed = ", ".join(codes[disagreed_end:]) or "None"
    return (
        "**Theme: [Your Theme Name Here]**\n"
        f"- **Agreed:** {agreed}\n"
        f"- **Disagreed:** {disagreed}\n"
        f"- **Not addressed:** {not_addressed}\n"
        "- **Type:** [Unanimous/Majority/Split/Single voice]\n"
        "\n"
        "**Theme: [Another Theme]**\n"
        f"- **Agreed:** {', '.join(codes)}\n"
        "- **Disagreed:** None\n"
        "- **Not addressed:** None\n"
        "- **Type:** Unanimous consensus"
    )


def _disagreement_example(codes: list[str]) -> str:
    first = codes[0] if codes else "llm-X"
    second = codes[1] if len(codes) > 1 else "llm-Y"
    return (
        "### **Theme: [Theme Name]**\n"
        f"- **{first} position:** [their stance]\n"
        f"- **{second} position:** [different stance]\n"
        "- **Significance:** This disagreement matters because [reason]"
    )


def _model_output_block(results: list[QueryResult], mapping: CodenameMapping) -> str:
    parts: list[str] = []
    for result in results:
        code = mapping.codename_for(result.model).upper()
        parts.append(f"\n## {code}_OUTPUT_START\n**Response:**\n{result.response}\n## {code}_OUTPUT_END\n")
    return "".join(parts)


def build_consensus_prompt(
    template: str,
    results: list[QueryResult],
    user_prompt: str,
    mapping: CodenameMapping,
) -> str:
    """Fill the consensus template with codename-only model outputs and examples.

    Only successful results are expected; real model names never appear in
    the returned prompt.
    """
    codes = [mapping.codename_for(r.model) for r in results]

    # User and model text go in last so their content is never rewritten.
    prompt = _replace_block(template, SectionKey.COMPARISON_TABLE, _comparison_table(codes))
    prompt = _replace_block(prompt, SectionKey.VOTING_SUMMARY, _voting_examples(codes))
    prompt = _replace_block(prompt, SectionKey.DISAGREEMENTS, _disagreement_example(codes))
    prompt = prompt.replace("[NUMBER]", str(len(results)))
    prompt = prompt.replace("%%USER_PROMPT%%", user_prompt, 1)
    prompt = prompt.replace("__MODEL_OUTPUT_BLOCK_GOES_HERE__", _model_output_block(results, mapping), 1)
    return prompt


def first_turn_prompt(consensus_prompt: str) -> str:
    return consensus_prompt + FIRST_TURN_INSTRUCTION


def flatten_conversation(history: list[dict[str, str]]) -> str:
    """Render a message history as one prompt; the transport keeps no turn memory."""
    return "\n\n".join(f"{ROLE_LABELS[msg['role']]}: {msg['content']}" for msg in history)


def build_conversion_prompt(template: str, consensus_text: str, mapping: CodenameMapping) -> str:
    """Fill the structured-data conversion template, with codenames already resolved."""
    converted = replace_codenames(consensus_text, mapping.to_real_name)
    return (
        template
        .replace("{{MODEL_CODE_MAPPING}}", mapping.as_text(), 1)
        .replace("{{CONSENSUS_TEXT}}", converted, 1)
    )
