"""
Diet evidence scorer.

Pure functions that turn one diet tag's rules and a restaurant's active menu
items into a score (0-100), a confidence level and an evidence trail. No
database access, no clock, no randomness: identical inputs give identical
output.

The scoring constants below are tuned against real menus; changing any of
them requires bumping ENGINE_VERSION.
"""
import math
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from diet_inference.models.diet import Confidence
from diet_inference.services.diet_rules import (
    CROSS_CONTAMINATION_PATTERNS,
    DAIRY_TERMS,
    DEFAULT_RULE_REGISTRY,
    DietRuleRegistry,
    DietRuleSet,
    MEAT_TERMS,
    claim_pattern,
    find_asserted_terms,
    find_contradictions,
    find_phrases,
    find_terms,
    is_side_mention,
    normalize_text,
    term_pattern,
)
from diet_inference.utils.helpers import parse_string_list, safe_json_parse

ItemId = Union[int, str]

DISH_MATCH_WEIGHT = 1.2
KEYWORD_MATCH_WEIGHT = 1.0
SOFTENED_MATCH_WEIGHT = 0.5
STRONG_EXCLUSION_WEIGHT = 1.2
EXCLUSION_WEIGHT = 1.0
NEGATIVE_EVIDENCE_DISCOUNT = 0.35

CONFIDENCE_MULTIPLIERS = {
    Confidence.HIGH: 1.0,
    Confidence.MEDIUM: 0.92,
    Confidence.LOW: 0.82,
}
CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}

MANUAL_OVERRIDE_TRUE = "manual-override:true"
MANUAL_OVERRIDE_FALSE = "manual-override:false"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class MenuItemEvidence(BaseModel):
    """Read-only projection of an active menu item"""
    id: ItemId
    name: str
    description: Optional[str] = None
    diet_context: Optional[str] = None
    category_name: Optional[str] = None
    allergens: Any = None

    class Config:
        from_attributes = True


class DietTagRules(BaseModel):
    """A diet tag with its stored custom rule lists"""
    id: Optional[ItemId] = None
    key: str
    label: Optional[str] = None
    keyword_whitelist: Any = None
    dish_whitelist: Any = None
    allergen_exclusions: Any = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

class MatchedItem(BaseModel):
    item_id: ItemId
    item_name: str
    keywords: list[str]
    dishes: list[str] = []
    strong_signal: bool = False
    weight: float = KEYWORD_MATCH_WEIGHT
    cross_contamination: list[str] = []
    manual_override: bool = False
    inherited_from: Optional[str] = None


class ExcludedItem(BaseModel):
    item_id: ItemId
    item_name: str
    reasons: list[str]
    strong_signal: bool = False
    manual_override: bool = False


class ScoreBreakdown(BaseModel):
    ratio_score: int = 0
    evidence_boost: int = 0
    evidence_penalty: int = 0
    confidence_multiplier: float = CONFIDENCE_MULTIPLIERS[Confidence.LOW]
    positive_evidence: float = 0.0
    negative_evidence: float = 0.0
    strong_signals: int = 0
    manual_overrides: int = 0
    inherited_from: Optional[str] = None
    pre_inheritance_score: Optional[int] = None


class InferenceReasons(BaseModel):
    matched_items: list[MatchedItem] = []
    excluded_items: list[ExcludedItem] = []
    total_menu_items: int = 0
    match_ratio: float = 0.0
    score_breakdown: ScoreBreakdown = ScoreBreakdown()


class InferenceOutput(BaseModel):
    diet_tag_id: Optional[ItemId] = None
    diet_tag_key: str
    score: int
    confidence: Confidence
    reasons: InferenceReasons


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def compute_confidence(match_ratio: float, total_menu_items: int, strong_signals: int = 0) -> Confidence:
    if total_menu_items == 0:
        return Confidence.LOW
    if strong_signals >= 2 and match_ratio >= 0.2:
        return Confidence.HIGH
    if total_menu_items < 5:
        return Confidence.MEDIUM if match_ratio >= 0.5 else Confidence.LOW
    if match_ratio >= 0.3:
        return Confidence.HIGH
    if match_ratio > 0:
        return Confidence.MEDIUM
    return Confidence.LOW


def compute_score_and_confidence(
    match_ratio: float,
    total_menu_items: int,
    strong_signals: int = 0,
    manual_overrides: int = 0,
    excluded_count: int = 0,
) -> dict:
    """
    Turn a match ratio and evidence counts into a 0-100 score.

    score = round((ratio_score + boost - penalty) * confidence_multiplier)
    """
    confidence = compute_confidence(match_ratio, total_menu_items, strong_signals)
    ratio_score = round_half_up(match_ratio * 100)
    evidence_boost = min(20, round_half_up(3 * strong_signals + 5 * manual_overrides + 4 * match_ratio))
    evidence_penalty = min(18, 2 * excluded_count)
    multiplier = CONFIDENCE_MULTIPLIERS[confidence]
    score = round_half_up((ratio_score + evidence_boost - evidence_penalty) * multiplier)

    return {
        "score": max(0, min(100, score)),
        "confidence": confidence,
        "ratio_score": ratio_score,
        "evidence_boost": evidence_boost,
        "evidence_penalty": evidence_penalty,
        "confidence_multiplier": multiplier,
    }


def parse_allergens(raw: Any) -> list[str]:
    """
    Split an allergen field into normalised tokens.

    Accepts "Eggs, Soy", "gluten;milk", "a|b", a list, or a JSON array string.
    Anything unreadable yields no tokens.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith(("[", "{")):
            parsed = safe_json_parse(text)
            if not isinstance(parsed, list):
                return []
            raw = parsed
        else:
            raw = text.replace(";", ",").replace("|", ",").split(",")
    if not isinstance(raw, (list, tuple)):
        return []
    tokens = []
    for entry in raw:
        if not isinstance(entry, str):
            continue
        token = normalize_text(entry)
        if token and token not in tokens:
            tokens.append(token)
    return tokens


def excluded_allergens(tokens: Iterable[str], exclusions: Iterable[str]) -> list[str]:
    hits = []
    for exclusion in exclusions:
        pattern = term_pattern(exclusion)
        if pattern is None:
            continue
        if any(pattern.search(token) for token in tokens) and exclusion not in hits:
            hits.append(exclusion)
    return hits


# ---------------------------------------------------------------------------
# Per-item evaluation
# ---------------------------------------------------------------------------

def _has_claim(text: str, claim_terms: Iterable[str]) -> bool:
    for term in claim_terms:
        pattern = claim_pattern(term)
        if pattern is not None and pattern.search(text):
            return True
    return False


def _is_context_false_positive(
    context_text: str,
    context_keywords: list[str],
    raw_negatives: list[str],
) -> bool:
    """Every context keyword only describes a side/condiment and the dish carries a disqualifier."""
    if not context_keywords or not raw_negatives:
        return False
    for keyword in context_keywords:
        pattern = term_pattern(keyword)
        for match in pattern.finditer(context_text):
            if not is_side_mention(context_text, match.end()):
                return False
    return True


def evaluate_item(
    rules: DietRuleSet,
    item: MenuItemEvidence,
    manual_verdict: Optional[bool] = None,
) -> Optional[Union[MatchedItem, ExcludedItem]]:
    """
    Classify one menu item against one rule set.

    Returns a MatchedItem, an ExcludedItem, or None when the item carries no
    evidence either way.
    """
    if manual_verdict is True:
        return MatchedItem(
            item_id=item.id,
            item_name=item.name,
            keywords=[MANUAL_OVERRIDE_TRUE],
            strong_signal=True,
            weight=KEYWORD_MATCH_WEIGHT,
            manual_override=True,
        )
    if manual_verdict is False:
        return ExcludedItem(
            item_id=item.id,
            item_name=item.name,
            reasons=[MANUAL_OVERRIDE_FALSE],
            manual_override=True,
        )

    name_text = normalize_text(item.name)
    context_text = normalize_text(" ".join(
        part for part in (item.category_name, item.description, item.diet_context) if part
    ))

    # Positive hits
    name_keywords = find_terms(name_text, rules.keywords)
    context_keywords = find_terms(context_text, rules.keywords)
    dishes = find_terms(name_text, rules.dishes)
    for dish in find_terms(context_text, rules.dishes):
        if dish not in dishes:
            dishes.append(dish)
    keywords = list(name_keywords)
    for keyword in context_keywords:
        if keyword not in keywords:
            keywords.append(keyword)
    if not keywords and not dishes:
        return None

    # Strong signals
    full_text = f"{name_text} {context_text}".strip()
    has_claim = _has_claim(full_text, rules.claim_terms)
    strong = bool(name_keywords) or has_claim or bool(dishes)

    # Negative evidence
    raw_negatives = find_terms(full_text, rules.negative_keywords)
    negatives = find_asserted_terms(name_text, rules.negative_keywords)
    for negative in find_asserted_terms(context_text, rules.negative_keywords):
        if negative not in negatives:
            negatives.append(negative)
    has_dairy_free_phrase = bool(find_terms(full_text, rules.dairy_free_phrases))
    qualified = set(rules.qualified_meat_negatives)
    # only a diet claim in the name ("Plant-based Whopper") qualifies it, not an ingredient
    name_qualifiers = find_terms(name_text, rules.claim_terms)
    unsuppressed = []
    for negative in negatives:
        if name_qualifiers and negative in qualified:
            continue
        if has_dairy_free_phrase and negative in DAIRY_TERMS:
            continue
        if has_claim and negative in MEAT_TERMS:
            continue
        unsuppressed.append(negative)

    # Contradictions, side mentions, cross-contamination
    reasons = [f"contradiction:{phrase}" for phrase in find_contradictions(full_text, rules.contradiction_patterns)]
    if not strong and _is_context_false_positive(context_text, context_keywords, raw_negatives):
        reasons.append("context-false-positive")
    cross_contamination = find_phrases(full_text, CROSS_CONTAMINATION_PATTERNS)

    # Allergens
    allergen_hits = excluded_allergens(parse_allergens(item.allergens), rules.allergen_exclusions)
    reasons.extend(f"allergen:{allergen}" for allergen in allergen_hits)
    reasons.extend(f"negative-keyword:{negative}" for negative in unsuppressed)

    if reasons:
        return ExcludedItem(
            item_id=item.id,
            item_name=item.name,
            reasons=reasons,
            strong_signal=strong,
        )

    if cross_contamination:
        weight = SOFTENED_MATCH_WEIGHT
    elif dishes:
        weight = DISH_MATCH_WEIGHT
    else:
        weight = KEYWORD_MATCH_WEIGHT

    return MatchedItem(
        item_id=item.id,
        item_name=item.name,
        keywords=keywords or list(dishes),
        dishes=dishes,
        strong_signal=strong,
        weight=weight,
        cross_contamination=cross_contamination,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def build_output(
    diet_tag_id: Optional[ItemId],
    diet_tag_key: str,
    matched: list[MatchedItem],
    excluded: list[ExcludedItem],
    total_menu_items: int,
) -> InferenceOutput:
    positive = sum(entry.weight for entry in matched)
    negative = sum(
        STRONG_EXCLUSION_WEIGHT if entry.strong_signal else EXCLUSION_WEIGHT
        for entry in excluded
    )
    strong_signals = sum(1 for entry in matched if entry.strong_signal)
    manual_overrides = sum(1 for entry in matched if entry.manual_override)

    if total_menu_items > 0:
        match_ratio = clamp01((positive - NEGATIVE_EVIDENCE_DISCOUNT * negative) / total_menu_items)
    else:
        match_ratio = 0.0

    scored = compute_score_and_confidence(
        match_ratio,
        total_menu_items,
        strong_signals=strong_signals,
        manual_overrides=manual_overrides,
        excluded_count=len(excluded),
    )

    return InferenceOutput(
        diet_tag_id=diet_tag_id,
        diet_tag_key=diet_tag_key,
        score=scored["score"],
        confidence=scored["confidence"],
        reasons=InferenceReasons(
            matched_items=matched,
            excluded_items=excluded,
            total_menu_items=total_menu_items,
            match_ratio=match_ratio,
            score_breakdown=ScoreBreakdown(
                ratio_score=scored["ratio_score"],
                evidence_boost=scored["evidence_boost"],
                evidence_penalty=scored["evidence_penalty"],
                confidence_multiplier=scored["confidence_multiplier"],
                positive_evidence=round(positive, 4),
                negative_evidence=round(negative, 4),
                strong_signals=strong_signals,
                manual_overrides=manual_overrides,
            ),
        ),
    )


def _coerce_tag(tag: Any) -> DietTagRules:
    if isinstance(tag, DietTagRules):
        return tag
    if isinstance(tag, Mapping):
        return DietTagRules.model_validate(dict(tag))
    return DietTagRules.model_validate(tag, from_attributes=True)


def _coerce_item(item: Any) -> MenuItemEvidence:
    if isinstance(item, MenuItemEvidence):
        return item
    if isinstance(item, Mapping):
        return MenuItemEvidence.model_validate(dict(item))
    return MenuItemEvidence.model_validate(item, from_attributes=True)


def rules_for_tag(tag: Any, registry: DietRuleRegistry = DEFAULT_RULE_REGISTRY) -> DietRuleSet:
    """Built-in rules of the tag key unioned with its stored lists; unreadable lists count as empty."""
    tag = _coerce_tag(tag)
    return registry.for_tag(
        tag.key,
        keyword_whitelist=parse_string_list(tag.keyword_whitelist) or [],
        dish_whitelist=parse_string_list(tag.dish_whitelist) or [],
        allergen_exclusions=parse_string_list(tag.allergen_exclusions) or [],
    )


def infer_for_tag(
    tag: Any,
    items: Iterable[Any],
    item_overrides: Optional[Mapping[ItemId, bool]] = None,
    registry: DietRuleRegistry = DEFAULT_RULE_REGISTRY,
) -> InferenceOutput:
    """
    Score one diet tag against a restaurant's active menu items.

    ``item_overrides`` maps item id to a manual verdict for this tag; a
    verdict replaces every text heuristic for that item.
    """
    tag = _coerce_tag(tag)
    rules = rules_for_tag(tag, registry)
    overrides = item_overrides or {}

    matched: list[MatchedItem] = []
    excluded: list[ExcludedItem] = []
    total = 0
    for raw_item in items:
        try:
            item = _coerce_item(raw_item)
        except ValidationError:
            # An item without id/name cannot carry evidence but still counts toward the menu size
            total += 1
            continue
        total += 1
        verdict = overrides.get(item.id)
        result = evaluate_item(rules, item, verdict)
        if isinstance(result, MatchedItem):
            matched.append(result)
        elif isinstance(result, ExcludedItem):
            excluded.append(result)

    return build_output(tag.id, tag.key, matched, excluded, total)


def confidence_max(first: Confidence, second: Confidence) -> Confidence:
    return first if CONFIDENCE_RANK[first] >= CONFIDENCE_RANK[second] else second
