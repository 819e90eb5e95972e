"""Metrics engine: deterministic analytics over a raw theme classification.

``compute_metrics`` is a pure function. It never mutates its input and performs
no I/O. All percentages are rounded half-up to integers.
"""

import copy
import logging
import math
from itertools import combinations
from typing import Any

logger = logging.getLogger(__name__)

AGREE = "agree"
DISAGREE = "disagree"
NEUTRAL = "neutral"
NOT_MENTIONED = "not_mentioned"

DIRECT = "direct"
INDIRECT = "indirect"
OMITTED = "omitted"

IMPORTANCE_BASE = {"high": 8, "medium": 5, "low": 3}

CONTROVERSY_THRESHOLD = 40


def _round(value: float) -> int:
    # Every rounded quantity here is non-negative.
    return math.floor(value + 0.5)


def _percent(part: int, whole: int) -> int:
    return _round(100 * part / whole) if whole else 0


def _token(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().casefold().replace(" ", "_").replace("-", "_")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _normalize_position(position: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(position)
    normalized["stance"] = _token(position.get("stance")) or NOT_MENTIONED
    if "mentionType" in position:
        normalized["mentionType"] = _token(position.get("mentionType"))
    return normalized


def _v2_to_v1(raw: dict[str, Any]) -> dict[str, Any]:
    model_names: list[str] = []
    for theme in raw.get("themes", []):
        for entry in theme.get("models", []):
            if entry["name"] not in model_names:
                model_names.append(entry["name"])

    themes = []
    for theme in raw.get("themes", []):
        positions: dict[str, dict[str, Any]] = {
            name: {"stance": NOT_MENTIONED, "mentionType": OMITTED, "quote": "", "reasoning": ""}
            for name in model_names
        }
        for entry in theme.get("models", []):
            position = {
                "stance": entry.get("stance"),
                "quote": entry.get("quote") or "",
                "reasoning": entry.get("reasoning") or "",
            }
            if "mentionType" in entry:
                position["mentionType"] = entry["mentionType"]
            positions[entry["name"]] = position

        converted = {key: value for key, value in theme.items() if key != "models"}
        converted["modelPositions"] = positions
        themes.append(converted)

    normalized = {key: value for key, value in raw.items() if key != "themes"}
    normalized["themes"] = themes
    if not isinstance(raw.get("insights"), dict):
        summary = raw.get("summary")
        normalized["insights"] = {
            "mainConclusion": summary if isinstance(summary, str) else "",
            "keyFindings": [],
            "surprisingPatterns": "",
            "practicalImplications": "",
        }
    if not isinstance(raw.get("consensusFormation"), dict):
        normalized["consensusFormation"] = {
            "pattern": raw.get("pattern") or "uniform",
            "description": "",
        }
    return normalized


def normalize_classification(raw: dict[str, Any]) -> dict[str, Any]:
    """Return a canonical (``formatVersion: "v1"``) deep copy of ``raw``.

    The simplified ``v2`` form lists ``models: [{name, stance, ...}]`` per theme;
    any model that a theme does not list is recorded as not mentioned.
    """
    data = copy.deepcopy(raw)
    version = data.get("formatVersion", "v1")
    if version == "v2":
        data = _v2_to_v1(data)
    elif version != "v1":
        raise ValueError(f"Unsupported formatVersion: {version!r}")

    data["formatVersion"] = "v1"
    data.setdefault("modelBehavior", {})
    if not isinstance(data["modelBehavior"], dict):
        data["modelBehavior"] = {}

    for theme in data.get("themes", []):
        theme["importance"] = _token(theme.get("importance")) or "medium"
        theme.setdefault("disagreements", [])
        theme["modelPositions"] = {
            model: _normalize_position(position)
            for model, position in theme.get("modelPositions", {}).items()
        }
    return data


def model_names(data: dict[str, Any]) -> list[str]:
    """Self-reported modelBehavior keys first, then models in order of first appearance."""
    names = list(data.get("modelBehavior", {}))
    for theme in data.get("themes", []):
        for model in theme.get("modelPositions", {}):
            if model not in names:
                names.append(model)
    return names


# ---------------------------------------------------------------------------
# Per-theme metrics
# ---------------------------------------------------------------------------

def consensus_type(agree: int, disagree: int, mentioned: int, total: int) -> str:
    """Classify one theme's agreement pattern.

    ``majority`` compares against half of *all* models with a recorded position,
    not half of those that mentioned the theme.
    """
    if mentioned > 0 and agree == mentioned:
        return "unanimous"
    if agree > disagree and agree > total / 2:
        return "majority"
    if agree == disagree and agree > 0:
        return "split"
    if mentioned == 1:
        return "single"
    return "none"


def agreement_level(agree: int, mentioned: int) -> str:
    ratio = agree / mentioned if mentioned else 0
    if ratio == 1:
        return "unanimous"
    if ratio >= 0.75:
        return "strong"
    if ratio >= 0.5:
        return "moderate"
    if ratio > 0:
        return "weak"
    return "single"


def impact_score(importance: str, mentioned: int, total: int) -> int:
    base = IMPORTANCE_BASE.get(importance, IMPORTANCE_BASE["medium"])
    scaled = _round(base * mentioned / total) if total else 0
    return max(1, min(10, scaled))


def theme_metrics(theme: dict[str, Any]) -> dict[str, Any]:
    """Scores for one normalized theme."""
    positions = theme.get("modelPositions", {})
    stances = [p["stance"] for p in positions.values()]
    mention_types = [p.get("mentionType") for p in positions.values()]

    total = len(stances)
    agree = stances.count(AGREE)
    disagree = stances.count(DISAGREE)
    neutral = stances.count(NEUTRAL)
    not_mentioned = stances.count(NOT_MENTIONED)
    mentioned = total - not_mentioned

    direct = mention_types.count(DIRECT)
    indirect = mention_types.count(INDIRECT)
    omitted = mention_types.count(OMITTED)
    addressed = direct + indirect

    return {
        "consensusType": consensus_type(agree, disagree, mentioned, total),
        "agreementLevel": agreement_level(agree, mentioned),
        "consensusStrengthScore": _percent(agree, mentioned),
        "controversyScore": _percent(disagree, mentioned),
        "impactScore": impact_score(theme.get("importance", "medium"), mentioned, total),
        "supportingOutputs": [model for model, p in positions.items() if p["stance"] == AGREE],
        "mentionMetrics": {
            "direct": direct,
            "indirect": indirect,
            "omitted": omitted,
            "coverageScore": _percent(addressed, total),
            "clarityScore": _percent(direct, addressed),
            "coverageLabel": f"{addressed}/{total} models addressed",
        },
        "metrics": {
            "agreeCount": agree,
            "disagreeCount": disagree,
            "neutralCount": neutral,
            "notMentionedCount": not_mentioned,
            "mentionedCount": mentioned,
            "totalModels": total,
        },
    }


# ---------------------------------------------------------------------------
# Roll-ups
# ---------------------------------------------------------------------------

def summary_metrics(themes: list[dict[str, Any]], total_models: int) -> dict[str, Any]:
    score = _round(sum(t["consensusStrengthScore"] for t in themes) / len(themes)) if themes else 0
    if score >= 80:
        strength = "strong"
    elif score >= 60:
        strength = "moderate"
    else:
        strength = "weak"

    unanimous = sum(1 for t in themes if t["consensusType"] == "unanimous")
    return {
        "totalThemes": len(themes),
        "totalModels": total_models,
        "consensusScore": score,
        "consensusStrength": strength,
        "controversyCount": sum(
            1 for t in themes
            if t["consensusType"] == "split" or t["controversyScore"] > CONTROVERSY_THRESHOLD
        ),
        "participationRate": 100,
        "reliabilityIndex": _percent(unanimous, len(themes)),
    }


def confidence_metrics(themes: list[dict[str, Any]]) -> dict[str, Any]:
    def count(kind: str) -> int:
        return sum(1 for t in themes if t["consensusType"] == kind)

    mentions = sum(t["metrics"]["mentionedCount"] for t in themes)
    agreements = sum(t["metrics"]["agreeCount"] for t in themes)
    return {
        "unanimousThemes": count("unanimous"),
        "majorityThemes": count("majority"),
        "splitThemes": count("split"),
        "singleVoiceThemes": count("single"),
        "overallAgreementRate": _percent(agreements, mentions),
    }


def trust_score(agreement: int, coverage: int) -> int:
    return _round(0.7 * agreement + 0.3 * coverage)


def mention_style(directness: int) -> str:
    if directness >= 70:
        return "explicit"
    if directness >= 40:
        return "balanced"
    return "implicit"


def relationship_type(agreement_percentage: int) -> str:
    if agreement_percentage >= 80:
        return "aligned"
    if agreement_percentage >= 60:
        return "complementary"
    if agreement_percentage <= 40:
        return "opposing"
    return "independent"


def _model_profile(
    model: str,
    themes: list[dict[str, Any]],
    reported: dict[str, Any],
) -> dict[str, Any]:
    mentions = agreements = direct = indirect = omitted = 0
    for theme in themes:
        position = theme["modelPositions"].get(model)
        if position is None:
            continue
        kind = position.get("mentionType")
        if kind == DIRECT:
            direct += 1
        elif kind == INDIRECT:
            indirect += 1
        elif kind == OMITTED:
            omitted += 1
        if position["stance"] != NOT_MENTIONED:
            mentions += 1
            if position["stance"] == AGREE:
                agreements += 1

    agreement = _percent(agreements, mentions)
    coverage = _percent(mentions, len(themes))
    directness = _percent(direct, mentions)
    contributions = reported.get("uniqueContributions")
    return {
        "agreementScore": agreement,
        "divergenceScore": 100 - agreement,
        "trustScore": trust_score(agreement, coverage),
        "coverageScore": coverage,
        "uniqueContributions": len(contributions) if isinstance(contributions, list) else 0,
        "responseStyle": reported.get("responseStyle") or "balanced",
        "signatureMoves": list(reported.get("tendencies") or []),
        "mentionPatterns": {
            "direct": direct,
            "indirect": indirect,
            "omitted": omitted,
            "directnessScore": directness,
            "mentionStyle": mention_style(directness),
        },
    }


def _relationship(model_a: str, model_b: str, themes: list[dict[str, Any]]) -> dict[str, Any]:
    both = together = 0
    for theme in themes:
        a = theme["modelPositions"].get(model_a)
        b = theme["modelPositions"].get(model_b)
        if a is None or b is None:
            continue
        if a["stance"] == NOT_MENTIONED or b["stance"] == NOT_MENTIONED:
            continue
        both += 1
        if a["stance"] == b["stance"]:
            together += 1
    percentage = _percent(together, both)
    return {
        "modelA": model_a,
        "modelB": model_b,
        "agreementPercentage": percentage,
        "relationshipType": relationship_type(percentage),
    }


def model_behavior_metrics(
    themes: list[dict[str, Any]],
    names: list[str],
    reported: dict[str, Any],
) -> dict[str, Any]:
    profiles = {
        name: _model_profile(name, themes, reported.get(name) or {})
        for name in names
    }
    ranked = sorted(profiles, key=lambda name: profiles[name]["agreementScore"], reverse=True)
    agreeable = [name for name in ranked if profiles[name]["agreementScore"] >= 70]
    divergent = [name for name in ranked if profiles[name]["divergenceScore"] >= 40]
    return {
        "mostAgreeable": agreeable or ranked[:1],
        "mostDivergent": divergent or ranked[-1:],
        "coverageByModel": {name: profile["coverageScore"] for name, profile in profiles.items()},
        "modelProfiles": profiles,
        "modelRelationships": [_relationship(a, b, themes) for a, b in combinations(names, 2)],
    }


def consensus_evolution_metrics(themes: list[dict[str, Any]]) -> dict[str, Any]:
    mean_controversy = sum(t["controversyScore"] for t in themes) / len(themes) if themes else 0
    return {
        "stabilityScore": _round(100 - mean_controversy),
        "emergentThemes": sum(
            1 for t in themes if t["impactScore"] >= 6 and t["consensusType"] != "unanimous"
        ),
        "unanimousCount": sum(1 for t in themes if t["consensusType"] == "unanimous"),
        "splitCount": sum(1 for t in themes if t["consensusType"] == "split"),
    }


def generated_insights(
    themes: list[dict[str, Any]],
    summary: dict[str, Any],
    confidence: dict[str, Any],
) -> dict[str, str]:
    """Pick headline themes and labels. Ties go to the earlier theme."""
    candidates = [t for t in themes if t["metrics"]["mentionedCount"] > 1]
    strongest = max(candidates, key=lambda t: t["consensusStrengthScore"], default=None)
    controversial = max(themes, key=lambda t: t["controversyScore"], default=None)

    rate = confidence["overallAgreementRate"]
    if rate >= 80:
        diversity = "Low diversity - models largely aligned"
    elif rate >= 60:
        diversity = "Moderate diversity - healthy disagreement"
    else:
        diversity = "High diversity - significant differences in approach"

    return {
        "strongestConsensus": strongest["name"] if strongest else "No clear consensus found",
        "biggestControversy": controversial["name"] if controversial else "No significant controversies",
        "modelDiversity": diversity,
        "consensusQuality": "High reliability" if summary["reliabilityIndex"] >= 50 else "Mixed reliability",
    }


def compute_metrics(raw: dict[str, Any]) -> dict[str, Any]:
    """Enrich a raw classification (v1 or v2) with every derived metric.

    Returns a new dict; ``raw`` is left untouched. ``modelBehavior`` in the
    result holds the calculated profiles; the self-reported block is kept
    under ``reportedModelBehavior``.
    """
    data = normalize_classification(raw)
    names = model_names(data)
    reported = data["modelBehavior"]

    themes = [{**theme, **theme_metrics(theme)} for theme in data.get("themes", [])]
    summary = summary_metrics(themes, len(names))
    confidence = confidence_metrics(themes)

    formation = data.get("consensusFormation")
    evolution = dict(formation) if isinstance(formation, dict) else {}
    evolution.update(consensus_evolution_metrics(themes))

    data["themes"] = themes
    data["summary"] = summary
    data["confidenceMetrics"] = confidence
    data["reportedModelBehavior"] = reported
    data["modelBehavior"] = model_behavior_metrics(themes, names, reported)
    data["consensusEvolution"] = evolution
    data["aiGeneratedInsights"] = generated_insights(themes, summary, confidence)

    logger.debug(
        "Computed metrics for %d theme(s) across %d model(s)", len(themes), len(names)
    )
    return data
