"""Consensus conversation engine: one consensus model, six sequential section turns."""

import asyncio
import logging
import time
from collections.abc import Callable

from polyllm.codenames import CodenameMapping, build_codename_mapping, replace_codenames
from polyllm.gateway import DEFAULT_TOKEN_CEILING, query_models
from polyllm.models import ConsensusResult, ConsensusSection, ModelDescriptor
from polyllm.prompts import build_consensus_prompt, first_turn_prompt, flatten_conversation
from polyllm.providers.base import ChatProvider
from polyllm.sections import SECTION_ORDER, SectionKey, definition_for, extract_section
from polyllm.session import ConsensusSession

logger = logging.getLogger(__name__)

SectionCallback = Callable[[str, str, dict[str, str]], None]


class ConsensusError(Exception):
    """Base class for consensus-run failures."""


class NoSuccessfulResponsesError(ConsensusError):
    """Raised when no model produced a usable response."""

    def __init__(self) -> None:
        super().__init__("No successful responses available for consensus generation")


class ConsensusTurnError(ConsensusError):
    """One turn failed; the remaining turns were not attempted.

    Attributes:
        section: The section whose turn failed.
        completed_sections: Sections finished before the failure, in order.
    """

    def __init__(
        self,
        section: SectionKey,
        message: str,
        completed_sections: dict[str, ConsensusSection],
    ) -> None:
        self.section = section
        self.message = message
        self.completed_sections = dict(completed_sections)
        super().__init__(f"Failed to generate {section.value}: {message}")


class ConsensusCancelledError(ConsensusError):
    """The caller asked to stop; raised before the next turn starts."""

    def __init__(self, section: SectionKey, completed_sections: dict[str, ConsensusSection]) -> None:
        self.section = section
        self.completed_sections = dict(completed_sections)
        super().__init__(f"Consensus cancelled before {section.value}")


async def run_consensus(
    session: ConsensusSession,
    provider: ChatProvider,
    consensus_model: ModelDescriptor,
    template: str,
    codename_assignments: dict[str, str],
    on_section: SectionCallback | None = None,
    cooldown_sec: float = 0.3,
    token_ceiling: int = DEFAULT_TOKEN_CEILING,
    cancel_event: asyncio.Event | None = None,
) -> ConsensusResult:
    """Drive the consensus model through every section, one turn each.

    Each turn after the first appends the previous answer as an assistant turn
    and the next section's instruction as a user turn, then sends the whole
    flattened history. Completed sections are stored on ``session.sections``
    as they arrive, so they survive a later failure.

    Args:
        session: Holds the query results; receives codenames, sections and result.
        provider: Transport used for every turn.
        consensus_model: The single model that negotiates the consensus.
        template: Consensus prompt template.
        codename_assignments: Fixed model id -> codename table.
        on_section: Notified with (section_key, display_text, codename -> name)
            after each section completes.
        cooldown_sec: Pause between turns.
        token_ceiling: Provider-wide output token ceiling.
        cancel_event: When set, the run stops before its next turn.

    Returns:
        ConsensusResult with all six sections.

    Raises:
        NoSuccessfulResponsesError: If session has no successful results.
        ConsensusTurnError: If any turn's request fails.
        ConsensusCancelledError: If cancel_event is set between turns.
    """
    successful = session.successful_results
    if not successful:
        raise NoSuccessfulResponsesError()

    mapping: CodenameMapping = build_codename_mapping(session.models, codename_assignments)
    session.codenames = mapping
    session.sections = {}
    session.consensus = None

    consensus_prompt = build_consensus_prompt(template, successful, session.user_prompt, mapping)
    opening = first_turn_prompt(consensus_prompt)
    history: list[dict[str, str]] = [{"role": "user", "content": opening}]
    transcript: list[str] = []
    start = time.monotonic()

    logger.info(
        "Starting consensus with %s over %d response(s)",
        consensus_model.name,
        len(successful),
    )

    for turn, key in enumerate(SECTION_ORDER):
        if cancel_event is not None and cancel_event.is_set():
            raise ConsensusCancelledError(key, session.sections)

        definition = definition_for(key)
        if turn == 0:
            prompt = opening
        else:
            history.append({"role": "user", "content": definition.instruction})
            prompt = flatten_conversation(history)

        logger.info("Generating %s (turn %d/%d)", key.value, turn + 1, len(SECTION_ORDER))
        results = await query_models(provider, [consensus_model], prompt, token_ceiling=token_ceiling)
        result = results[0]
        if not result.success:
            raise ConsensusTurnError(key, result.error or "unknown error", session.sections)

        text, found = extract_section(result.response, key)
        section = ConsensusSection(
            key=key.value,
            text=text,
            response=result.response,
            display_text=replace_codenames(text, mapping.to_real_name),
            markers_found=found,
        )
        session.sections[key.value] = section
        transcript.append(result.response)
        history.append({"role": "assistant", "content": result.response})

        if on_section:
            on_section(key.value, section.display_text, dict(mapping.to_real_name))

        if turn < len(SECTION_ORDER) - 1 and cooldown_sec > 0:
            await asyncio.sleep(cooldown_sec)

    consensus = ConsensusResult(
        sections=dict(session.sections),
        consensus_text="".join(f"{chunk}\n\n" for chunk in transcript),
        consensus_prompt=consensus_prompt,
        codename_mapping=dict(mapping.to_real_name),
        consensus_model=consensus_model.name,
        duration_sec=time.monotonic() - start,
    )
    session.consensus = consensus
    logger.info("Consensus complete in %.1fs", consensus.duration_sec)
    return consensus
