"""Per-submission state passed by reference through every pipeline stage."""

from dataclasses import dataclass, field
from typing import Any

from polyllm.codenames import CodenameMapping
from polyllm.models import ConsensusResult, ConsensusSection, ModelDescriptor, QueryResult


@dataclass
class ConsensusSession:
    """Owned by the caller. Create one per user submission; reset() before reuse."""

    user_prompt: str
    models: list[ModelDescriptor]
    results: list[QueryResult] = field(default_factory=list)
    codenames: CodenameMapping | None = None
    sections: dict[str, ConsensusSection] = field(default_factory=dict)
    consensus: ConsensusResult | None = None
    conversion_prompt: str = ""
    conversion_response: str = ""
    raw_classification: dict[str, Any] | None = None
    analytics: dict[str, Any] | None = None

    @property
    def successful_results(self) -> list[QueryResult]:
        return [r for r in self.results if r.success]

    def reset(self, user_prompt: str | None = None, models: list[ModelDescriptor] | None = None) -> None:
        """Drop everything derived from the previous submission."""
        if user_prompt is not None:
            self.user_prompt = user_prompt
        if models is not None:
            self.models = list(models)
        self.results = []
        self.codenames = None
        self.sections = {}
        self.consensus = None
        self.conversion_prompt = ""
        self.conversion_response = ""
        self.raw_classification = None
        self.analytics = None
