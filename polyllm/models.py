"""Pure dataclasses for the consensus pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ModelDescriptor:
    id: str                # provider identifier, e.g. "openai/gpt-4.1"
    name: str              # display name, e.g. "GPT-4.1"
    max_context_tokens: int
    max_output_tokens: int


@dataclass
class ModelResponse:
    model_id: str
    content: str
    latency_sec: float
    usage: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryResult:
    model: ModelDescriptor
    success: bool
    response: str = ""     # empty when success is False
    error: str = ""        # empty when success is True
    usage: dict[str, Any] = field(default_factory=dict)
    latency_sec: float = 0.0


@dataclass(frozen=True)
class ConsensusSection:
    key: str               # SectionKey value, e.g. "comparisonTable"
    text: str              # extracted section body, codenames intact
    response: str          # full raw model output for this turn
    display_text: str      # text with codenames replaced by real names
    markers_found: bool = True


@dataclass
class ConsensusResult:
    sections: dict[str, ConsensusSection]
    consensus_text: str    # ordered concatenation of every turn's raw output
    consensus_prompt: str  # first-turn prompt
    codename_mapping: dict[str, str]  # codename -> real display name
    consensus_model: str
    duration_sec: float = 0.0
