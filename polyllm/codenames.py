"""Codename mapping: session-scoped aliases that hide real model names from the consensus model."""

import re
from dataclasses import dataclass, field

from polyllm.models import ModelDescriptor


@dataclass(frozen=True)
class CodenameMapping:
    """Bijection between codenames and real display names, plus model id -> codename."""

    by_model_id: dict[str, str] = field(default_factory=dict)   # model id -> codename
    to_real_name: dict[str, str] = field(default_factory=dict)  # codename -> display name

    def codename_for(self, model: ModelDescriptor) -> str:
        return self.by_model_id[model.id]

    def as_text(self) -> str:
        """One ``codename: Real Name`` line per entry."""
        return "\n".join(f"{code}: {name}" for code, name in self.to_real_name.items())


def build_codename_mapping(
    models: list[ModelDescriptor],
    assignments: dict[str, str],
) -> CodenameMapping:
    """Assign each model its codename from the fixed table, ``llm-<index>`` otherwise.

    Raises:
        ValueError: If two models would share a codename or a display name.
    """
    by_model_id: dict[str, str] = {}
    to_real_name: dict[str, str] = {}
    for index, model in enumerate(models):
        code = assignments.get(model.id) or f"llm-{index}"
        if code in to_real_name:
            raise ValueError(f"Codename {code!r} assigned to both {to_real_name[code]} and {model.name}")
        if model.name in to_real_name.values():
            raise ValueError(f"Duplicate model display name: {model.name}")
        by_model_id[model.id] = code
        to_real_name[code] = model.name
    return CodenameMapping(by_model_id=by_model_id, to_real_name=to_real_name)


def replace_codenames(text: str, to_real_name: dict[str, str]) -> str:
    """Replace every codename occurrence (case-insensitive) with the real model name."""
    # Longest first so "llm-1" never eats the prefix of "llm-10".
    for code in sorted(to_real_name, key=len, reverse=True):
        text = re.sub(re.escape(code), lambda _m, name=to_real_name[code]: name, text, flags=re.IGNORECASE)
    return text
