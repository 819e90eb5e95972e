"""Structured-data conversion stage and the presentation boundary."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from polyllm.extraction import ClassificationValidationError, extract_json, validate_classification
from polyllm.gateway import DEFAULT_TOKEN_CEILING, query_models
from polyllm.metrics import compute_metrics
from polyllm.models import ModelDescriptor
from polyllm.prompts import build_conversion_prompt
from polyllm.providers.base import ChatProvider
from polyllm.session import ConsensusSession

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """The structured-data conversion request itself failed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class PresentationAdapter(ABC):
    """One-way notifications out of the core. Return values are ignored."""

    @abstractmethod
    def on_section(self, section_key: str, text: str, mapping: dict[str, str]) -> None:
        """A consensus section finished. ``text`` already uses real model names."""

    @abstractmethod
    def on_analytics(self, analytics: dict[str, Any], user_prompt: str) -> None:
        """Analytics for the submission are ready."""


def restore_real_names(data: Any, to_real_name: dict[str, str]) -> Any:
    """Rewrite model keys the JSON model left as codenames into real display names.

    Covers ``modelPositions`` keys, v2 ``models[].name``, ``disagreements[].model``
    and ``modelBehavior`` keys. Matching is case-insensitive on the whole key.
    """
    lookup = {code.casefold(): name for code, name in to_real_name.items()}

    def real(name: Any) -> Any:
        return lookup.get(name.strip().casefold(), name) if isinstance(name, str) else name

    if not isinstance(data, dict):
        return data
    for theme in data.get("themes") or []:
        if not isinstance(theme, dict):
            continue
        if isinstance(theme.get("modelPositions"), dict):
            theme["modelPositions"] = {real(k): v for k, v in theme["modelPositions"].items()}
        for entry in theme.get("models") or []:
            if isinstance(entry, dict) and "name" in entry:
                entry["name"] = real(entry["name"])
        for entry in theme.get("disagreements") or []:
            if isinstance(entry, dict) and "model" in entry:
                entry["model"] = real(entry["model"])
    if isinstance(data.get("modelBehavior"), dict):
        data["modelBehavior"] = {real(k): v for k, v in data["modelBehavior"].items()}
    return data


def analyze_raw_text(
    raw_text: str,
    known_models: Iterable[str] | None = None,
    to_real_name: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Extract, validate and score a classification response.

    Used for text a person repaired by hand. Codenames in ``to_real_name`` are
    mapped back to display names before validation.

    Raises:
        ExtractionError: If no JSON object can be recovered.
        ClassificationValidationError: If the recovered object is invalid.
    """
    data = extract_json(raw_text)
    if to_real_name:
        data = restore_real_names(data, to_real_name)
    errors = validate_classification(data, known_models)
    if errors:
        raise ClassificationValidationError(errors, data)
    return compute_metrics(data)


async def convert_consensus(
    session: ConsensusSession,
    provider: ChatProvider,
    json_model: ModelDescriptor,
    template: str,
    adapter: PresentationAdapter | None = None,
    strict_models: bool = True,
    token_ceiling: int = DEFAULT_TOKEN_CEILING,
) -> dict[str, Any]:
    """Turn the finished consensus document into scored analytics.

    Args:
        session: Must hold a completed consensus and its codename mapping.
        provider: Transport for the single conversion call.
        json_model: Model asked to produce the classification JSON.
        template: Conversion prompt template.
        adapter: Notified with the analytics on success.
        strict_models: Reject model keys that are not display names of the
            session. Codenames are mapped back to real names first.
        token_ceiling: Provider-wide output token ceiling.

    Returns:
        The analytics payload, also stored on ``session.analytics``.

    Raises:
        ValueError: If the session has no completed consensus.
        ConversionError: If the conversion request fails.
        ExtractionError: If the response holds no recoverable JSON object.
        ClassificationValidationError: If the JSON fails validation.
    """
    if session.consensus is None or session.codenames is None:
        raise ValueError("Session has no completed consensus to convert")

    prompt = build_conversion_prompt(template, session.consensus.consensus_text, session.codenames)
    session.conversion_prompt = prompt

    logger.info("Converting consensus to structured data via %s", json_model.name)
    result = (await query_models(provider, [json_model], prompt, token_ceiling=token_ceiling))[0]
    if not result.success:
        raise ConversionError(f"Conversion with {json_model.name} failed: {result.error}")

    session.conversion_response = result.response
    data = restore_real_names(extract_json(result.response), session.codenames.to_real_name)
    session.raw_classification = data

    known = session.codenames.to_real_name.values() if strict_models else None
    errors = validate_classification(data, known)
    if errors:
        raise ClassificationValidationError(errors, data)

    analytics = compute_metrics(data)
    session.analytics = analytics
    logger.info(
        "Analytics ready: %d theme(s), consensus score %d",
        analytics["summary"]["totalThemes"],
        analytics["summary"]["consensusScore"],
    )

    if adapter:
        adapter.on_analytics(analytics, session.user_prompt)
    return analytics
