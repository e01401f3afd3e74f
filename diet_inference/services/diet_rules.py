"""
Diet rule registry and text matching primitives.

Every diet tag key maps to a DietRuleSet: positive keywords, whitelisted dish
names, disqualifying keywords, allergen exclusions, contradiction phrases and
the small allow-lists that keep heuristics from misfiring on names such as
"Vegan Whopper". Rule sets are looked up through a DietRuleRegistry so a
registry can be swapped per engine version or built ad hoc in tests.

Unknown keys resolve to an empty rule set, never to None.
"""
import re
import unicodedata
from functools import lru_cache
from typing import Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel

# Bump whenever a rule, weight or formula of the engine changes.
ENGINE_VERSION = "4.0.0"


# ---------------------------------------------------------------------------
# Text normalisation
# ---------------------------------------------------------------------------

_WHITESPACE_RE = re.compile(r"\s+")
_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "´": "'", "`": "'"})


def normalize_text(text: Optional[str]) -> str:
    """Lower-case, strip accents and collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(text).translate(_APOSTROPHES))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE_RE.sub(" ", stripped.lower()).strip()


def canonical_term(term: str) -> str:
    """Normalised term with hyphens folded to spaces ("plant-based" -> "plant based")."""
    return " ".join(t for t in re.split(r"[\s\-]+", normalize_text(term)) if t)


def normalize_terms(terms: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    result = []
    for term in terms:
        if not isinstance(term, str):
            continue
        canonical = canonical_term(term)
        if canonical and canonical not in seen:
            seen.add(canonical)
            result.append(canonical)
    return tuple(result)


# ---------------------------------------------------------------------------
# Pattern helpers
# ---------------------------------------------------------------------------

def _term_body(term: str) -> str:
    tokens = canonical_term(term).split(" ")
    return r"[\s\-]+".join(re.escape(t) for t in tokens if t)


@lru_cache(maxsize=4096)
def term_pattern(term: str) -> Optional[re.Pattern]:
    """Word-bounded pattern where spaces and hyphens between tokens are interchangeable."""
    body = _term_body(term)
    if not body:
        return None
    return re.compile(rf"(?<![a-z0-9]){body}(?![a-z0-9])")


_CLAIM_LEAD = (
    r"(?:is|are|it'?s|its|totally|fully|completely|entirely|100\s*%?|certified"
    r"|ist|sind|komplett|rein|100\s*prozent)"
)
_CLAIM_FILLER = r"(?:also|too|fully|totally|completely|100\s*%?|auch)"


@lru_cache(maxsize=1024)
def claim_pattern(term: str) -> Optional[re.Pattern]:
    """Explicit compatibility claim such as "is vegan", "it's vegan" or "100% vegetarian"."""
    body = _term_body(term)
    if not body:
        return None
    return re.compile(
        rf"(?<![a-z0-9]){_CLAIM_LEAD}(?:[\s\-]+{_CLAIM_FILLER})?[\s\-]+{body}(?![a-z0-9])"
    )


@lru_cache(maxsize=1024)
def phrase_pattern(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def find_terms(text: str, terms: Iterable[str]) -> list[str]:
    """Terms that occur in already-normalised text, in rule order."""
    hits = []
    for term in terms:
        pattern = term_pattern(term)
        if pattern is not None and pattern.search(text):
            hits.append(term)
    return hits


def find_phrases(text: str, patterns: Iterable[str]) -> list[str]:
    hits = []
    for pattern in patterns:
        match = phrase_pattern(pattern).search(text)
        if match:
            hits.append(match.group(0).strip())
    return hits


# "no milk", "ohne fleisch", "free of gluten", "doesn't contain milk"
_NEGATION_PREFIX_RE = re.compile(
    r"(?:(?:^|[^a-z0-9])(?:no|not|never|cannot|without|ohne|kein|keine|keinen|keiner|sin|sans|senza|non"
    r"|free\s+of|frei\s+von)|n't)(?:[\s\-]+[a-z]+)?[\s\-]+$"
)
# "milk-free", "meat free", "gluten frei"
_FREE_SUFFIX_RE = re.compile(
    r"^[\s\-]*(?:free|frei|freie|freier|freies|freien|less)(?![a-z0-9])"
)
# "vegan cheese", "plant-based pulled pork"; a conjunction ends the qualifier
_PLANT_QUALIFIER_PREFIX_RE = re.compile(
    r"(?:^|[^a-z0-9])(?:vegan|vegane|veganer|veganem|veganen|plant[\s\-]+based|pflanzliche?[mnrs]?)"
    r"(?:[\s\-]+(?!(?:and|or|with|und|oder|mit|plus)(?![a-z]))[a-z]+)?[\s\-]+$"
)
# "oat milk", "coconut cream"; only directly before a dairy term
_DAIRY_ALTERNATIVE_PREFIX_RE = re.compile(
    r"(?:^|[^a-z0-9])(?:coconut|oat|soy|soja|almond|rice|hafer|mandel|cashew|peanut|kokos)[\s\-]+$"
)
# "seitan steak", "tofu chicken"; only directly before a meat term
_PLANT_PROTEIN_PREFIX_RE = re.compile(r"(?:^|[^a-z0-9])(?:tofu|tempeh|seitan)[\s\-]+$")
# "beef alternative", "chicken-style", "fleischersatz" is one word and never matches
_ALTERNATIVE_SUFFIX_RE = re.compile(
    r"^[\s\-]+(?:alternative|alternatives|substitute|substitutes|style|ersatz|imitation)(?![a-z0-9])"
)
# "may contain traces of milk and eggs" mentions allergens without claiming them
_TRACE_PREFIX_RE = re.compile(
    r"(?:may|can|could|might|kann|konnen)(?:\s+(?:also|still|possibly))?\s+(?:contain|include|enthalten)"
    r"(?:\s+traces?\s+of|\s+spuren\s+von)?"
    r"(?:[\s,\-]+[a-z]+){0,3}?[\s,\-]+$"
    r"|(?:traces?\s+of|spuren\s+von)(?:[\s,\-]+[a-z]+){0,3}?[\s,\-]+$"
)


def is_negated(text: str, start: int, end: int) -> bool:
    """True when the match at text[start:end] sits in a negated or "-free" construction."""
    return bool(
        _NEGATION_PREFIX_RE.search(text[:start])
        or _FREE_SUFFIX_RE.match(text[end:])
    )


def is_plant_alternative(text: str, start: int, end: int, term: Optional[str] = None) -> bool:
    prefix = text[:start]
    if _PLANT_QUALIFIER_PREFIX_RE.search(prefix) or _ALTERNATIVE_SUFFIX_RE.match(text[end:]):
        return True
    if term in DAIRY_TERMS:
        return bool(_DAIRY_ALTERNATIVE_PREFIX_RE.search(prefix))
    if term in MEAT_TERMS:
        return bool(_PLANT_PROTEIN_PREFIX_RE.search(prefix))
    return False


def is_trace_mention(text: str, start: int) -> bool:
    return bool(_TRACE_PREFIX_RE.search(text[max(0, start - 80):start]))


def find_asserted_terms(text: str, terms: Iterable[str]) -> list[str]:
    """
    Terms with at least one occurrence that is not negated, not a plant-based
    alternative and not part of a trace warning.
    """
    hits = []
    for term in terms:
        pattern = term_pattern(term)
        if pattern is None:
            continue
        for match in pattern.finditer(text):
            start, end = match.span()
            if is_negated(text, start, end):
                continue
            if is_plant_alternative(text, start, end, term):
                continue
            if is_trace_mention(text, start):
                continue
            hits.append(term)
            break
    return hits


# ---------------------------------------------------------------------------
# Shared vocabularies
# ---------------------------------------------------------------------------

MEAT_TERMS = normalize_terms([
    "meat", "beef", "pork", "chicken", "ham", "bacon", "lamb", "turkey", "duck", "veal",
    "steak", "sausage", "sausages", "salami", "pepperoni", "chorizo", "mince",
    "fish", "salmon", "tuna", "shrimp", "shrimps", "prawn", "prawns", "anchovy", "anchovies",
    "seafood", "whopper", "doner", "kebab", "schnitzel",
    # German
    "fleisch", "rind", "rindfleisch", "schwein", "schweinefleisch", "hahnchen", "huhn",
    "pute", "speck", "schinken", "wurst", "bratwurst", "currywurst", "fisch", "lachs",
    "thunfisch", "garnelen", "hackfleisch",
])

DAIRY_TERMS = normalize_terms([
    "milk", "dairy", "lactose", "cream", "cheese", "butter", "yogurt", "yoghurt", "whey",
    "milch", "laktose", "sahne", "kase", "joghurt", "quark", "molke",
])

CROSS_CONTAMINATION_PATTERNS = (
    r"(?<![a-z0-9])(?:may|can|could|might)(?:\s+(?:also|still|possibly))?\s+contain(?![a-z0-9])",
    r"(?<![a-z0-9])traces?\s+of(?![a-z0-9])",
    r"(?<![a-z0-9])(?:kann|konnen)\s+spuren(?![a-z0-9])",
    r"(?<![a-z0-9])spuren\s+von(?![a-z0-9])",
    r"(?<![a-z0-9])(?:same|shared)\s+(?:grill|grills|fryer|fryers|oil|kitchen|equipment|surface|surfaces|line|oven)(?![a-z0-9])",
    r"(?<![a-z0-9])(?:come|comes|coming|came)\s+into\s+contact(?![a-z0-9])",
    r"(?<![a-z0-9])cross[\s\-]?contamina\w*",
    r"(?<![a-z0-9])(?:prepared|produced|made)\s+in\s+a\s+(?:kitchen|facility)\s+that(?![a-z0-9])",
    r"(?<![a-z0-9])(?:gleichen|selben)\s+(?:grill|fritteuse|kuche|ol)(?![a-z0-9])",
)

# Words that mark a diet keyword as describing a condiment or side only.
SIDE_MENTION_TERMS = (
    "mayo", "mayonnaise", "sauce", "sauces", "dressing", "dressings", "dip", "dips", "aioli",
    "ketchup", "side", "sides", "topping", "toppings", "gravy", "spread", "dipping sauce",
    "sosse", "sose",
)

_SIDE_FOLLOW_RE = re.compile(
    r"^(?:[\s\-]+[a-z]+){0,2}?[\s\-]+(?:"
    + "|".join(re.escape(t) for t in SIDE_MENTION_TERMS)
    + r")(?![a-z0-9])"
)


def is_side_mention(text: str, end: int) -> bool:
    """The keyword ending at ``end`` modifies a condiment or side ("vegan salad mayonnaise")."""
    return bool(_SIDE_FOLLOW_RE.match(text[end:]))


def _contains(body: str) -> str:
    return rf"(?<![a-z0-9])contains?\s+{body}(?![a-z0-9])"


# "might contain", "may also contain"
_MODAL_PREFIX_RE = re.compile(
    r"(?:^|[^a-z0-9])(?:may|might|can|could|kann|konnen|konnte)(?:[\s\-]+[a-z]+)?[\s\-]+$"
)


def find_contradictions(text: str, patterns: Iterable[str]) -> list[str]:
    """Contradiction phrases that are neither hedged by a modal nor negated."""
    hits = []
    for pattern in patterns:
        for match in phrase_pattern(pattern).finditer(text):
            start = match.start()
            prefix = text[max(0, start - 80):start]
            if _MODAL_PREFIX_RE.search(prefix) or _NEGATION_PREFIX_RE.search(prefix):
                continue
            if is_trace_mention(text, start):
                continue
            hits.append(match.group(0).strip())
            break
    return hits


# ---------------------------------------------------------------------------
# Rule sets
# ---------------------------------------------------------------------------

class DietRuleSet(BaseModel):
    """All matching rules of one diet tag; terms are stored in canonical form."""
    key: str
    keywords: tuple[str, ...] = ()
    dishes: tuple[str, ...] = ()
    negative_keywords: tuple[str, ...] = ()
    allergen_exclusions: tuple[str, ...] = ()
    contradiction_patterns: tuple[str, ...] = ()
    qualified_meat_negatives: tuple[str, ...] = ()
    claim_terms: tuple[str, ...] = ()
    dairy_free_phrases: tuple[str, ...] = ()

    class Config:
        frozen = True

    @property
    def is_empty(self) -> bool:
        return not (self.keywords or self.dishes)

    def merged_with(
        self,
        keywords: Optional[Sequence[str]] = None,
        dishes: Optional[Sequence[str]] = None,
        allergen_exclusions: Optional[Sequence[str]] = None,
    ) -> "DietRuleSet":
        """Union with a tag's stored custom lists."""
        return self.model_copy(update={
            "keywords": normalize_terms([*self.keywords, *(keywords or [])]),
            "dishes": normalize_terms([*self.dishes, *(dishes or [])]),
            "allergen_exclusions": normalize_terms(
                [*self.allergen_exclusions, *(allergen_exclusions or [])]
            ),
        })


def build_rule_set(
    key: str,
    keywords: Sequence[str] = (),
    dishes: Sequence[str] = (),
    negative_keywords: Sequence[str] = (),
    allergen_exclusions: Sequence[str] = (),
    contradiction_patterns: Sequence[str] = (),
    qualified_meat_negatives: Sequence[str] = (),
    claim_terms: Sequence[str] = (),
    dairy_free_phrases: Sequence[str] = (),
) -> DietRuleSet:
    return DietRuleSet(
        key=key,
        keywords=normalize_terms(keywords),
        dishes=normalize_terms(dishes),
        negative_keywords=normalize_terms(negative_keywords),
        allergen_exclusions=normalize_terms(allergen_exclusions),
        contradiction_patterns=tuple(contradiction_patterns),
        qualified_meat_negatives=normalize_terms(qualified_meat_negatives),
        claim_terms=normalize_terms(claim_terms),
        dairy_free_phrases=normalize_terms(dairy_free_phrases),
    )


def empty_rule_set(key: str) -> DietRuleSet:
    return DietRuleSet(key=key)


_DAIRY_FREE = [
    "dairy free", "no dairy", "milchfrei", "milchfreie", "milchfreier", "sin lacteos",
]
_LACTOSE_FREE = [
    "lactose free", "no lactose", "laktosefrei", "laktosefreie", "laktosefreier",
    "ohne laktose", "sin lactosa", "sans lactose",
]

BUILTIN_RULE_SETS: tuple[DietRuleSet, ...] = (
    build_rule_set(
        "VEGAN",
        keywords=[
            "vegan", "vegane", "veganer", "veganes", "veganen", "plant-based", "tofu", "tempeh",
            "seitan", "pflanzlich", "pflanzliche", "pflanzlicher", "pflanzenbasiert",
            "rein pflanzlich", "vegano", "vegana", "vegetalien", "vegetalienne",
            "sin ingredientes animales",
        ],
        dishes=[
            "falafel", "hummus", "tofu bowl", "chana masala", "dal tadka", "aloo gobi",
            "veggie sushi roll", "vegetable ramen",
        ],
        negative_keywords=[
            *MEAT_TERMS,
            "egg", "eggs", "cheese", "butter", "cream", "milk", "dairy", "honey", "yogurt",
            "yoghurt", "gelatin", "gelatine", "ei", "eier", "kase", "sahne", "milch", "honig",
            "quark", "joghurt",
        ],
        allergen_exclusions=[
            "egg", "eggs", "ei", "eier", "milk", "milch", "dairy", "fish", "fisch",
            "shellfish", "crustaceans", "molluscs", "weichtiere", "krebstiere",
        ],
        contradiction_patterns=[
            _contains(r"(?:dairy|milk|eggs?|honey|meat|fish|gelatine?|cheese|butter)"),
            r"(?<![a-z0-9])not\s+(?:suitable\s+for\s+)?vegans?(?![a-z0-9])",
            r"(?<![a-z0-9])non[\s\-]?vegan(?![a-z0-9])",
            r"(?<![a-z0-9])nicht\s+vegan(?![a-z0-9])",
            r"(?<![a-z0-9])enthalt\s+(?:milch|ei|eier|honig|fleisch|fisch)(?![a-z0-9])",
        ],
        qualified_meat_negatives=MEAT_TERMS,
        claim_terms=[
            "vegan", "vegane", "veganer", "veganes", "plant-based", "pflanzlich", "pflanzenbasiert",
            "vegano", "vegana",
        ],
        dairy_free_phrases=_DAIRY_FREE,
    ),
    build_rule_set(
        "VEGETARIAN",
        keywords=[
            "vegetarian", "veggie", "vegan", "meat-free", "meatless", "vegetarisch",
            "vegetarische", "vegetarischer", "vegetarisches", "vegetarischen", "fleischlos",
            "ohne fleisch", "sin carne", "vegetariano", "vegetariana", "vegetarien",
            "vegetarienne", "ovo lacto",
        ],
        dishes=[
            "margherita pizza", "caprese salad", "palak paneer", "paneer tikka",
            "vegetable spring rolls", "egg fried rice", "miso soup",
        ],
        negative_keywords=[*MEAT_TERMS, "gelatin", "gelatine", "lard", "schmalz"],
        allergen_exclusions=["fish", "fisch", "shellfish", "crustaceans", "molluscs", "krebstiere"],
        contradiction_patterns=[
            _contains(r"(?:meat|fish|gelatine?|anchovies|anchovy|lard)"),
            r"(?<![a-z0-9])not\s+(?:suitable\s+for\s+)?vegetarians?(?![a-z0-9])",
            r"(?<![a-z0-9])non[\s\-]?vegetarian(?![a-z0-9])",
            r"(?<![a-z0-9])nicht\s+vegetarisch(?![a-z0-9])",
            r"(?<![a-z0-9])enthalt\s+(?:fleisch|fisch|gelatine)(?![a-z0-9])",
        ],
        qualified_meat_negatives=MEAT_TERMS,
        claim_terms=[
            "vegetarian", "veggie", "vegan", "meat-free", "meatless", "vegetarisch", "vegetarische",
            "vegetarischer", "fleischlos", "vegetariano",
        ],
        dairy_free_phrases=_DAIRY_FREE,
    ),
    build_rule_set(
        "GLUTEN_FREE",
        keywords=[
            "gluten-free", "no gluten", "gf", "celiac", "coeliac", "celiac safe", "glutenfrei",
            "glutenfreie", "glutenfreier", "glutenfreies", "ohne gluten", "sin gluten",
            "sans gluten", "senza glutine",
        ],
        dishes=[
            "corn tortilla tacos", "rice bowl", "poke bowl", "sashimi", "dal chawal",
            "quinoa salad",
        ],
        negative_keywords=[
            "gluten", "wheat", "barley", "rye", "spelt", "bulgur", "couscous", "seitan", "malt",
            "semolina", "breaded", "breadcrumbs", "weizen", "gerste", "roggen", "dinkel",
            "paniert", "panade",
        ],
        allergen_exclusions=[
            "gluten", "wheat", "weizen", "barley", "gerste", "rye", "roggen", "spelt", "dinkel",
        ],
        contradiction_patterns=[
            _contains(r"(?:gluten|wheat|barley|rye)"),
            r"(?<![a-z0-9])not\s+gluten[\s\-]+free(?![a-z0-9])",
            r"(?<![a-z0-9])nicht\s+glutenfrei(?![a-z0-9])",
            r"(?<![a-z0-9])enthalt\s+(?:gluten|weizen)(?![a-z0-9])",
        ],
        claim_terms=["gluten-free", "glutenfrei"],
    ),
    build_rule_set(
        "LACTOSE_FREE",
        keywords=[
            "lactose-free", "dairy-free", "no dairy", "no lactose", "laktosefrei",
            "laktosefreie", "laktosefreier", "ohne laktose", "milchfrei", "milchfreie",
            "sin lactosa", "sans lactose",
        ],
        dishes=[
            "sorbet", "coconut curry", "tom yum soup", "olive oil pasta", "avocado salad",
            "oat milk latte",
        ],
        negative_keywords=DAIRY_TERMS,
        allergen_exclusions=["milk", "milch", "dairy", "lactose", "laktose"],
        contradiction_patterns=[
            _contains(r"(?:dairy|milk|lactose|cream|cheese|butter)"),
            r"(?<![a-z0-9])not\s+(?:lactose|dairy)[\s\-]+free(?![a-z0-9])",
            r"(?<![a-z0-9])nicht\s+laktosefrei(?![a-z0-9])",
            r"(?<![a-z0-9])enthalt\s+(?:milch|laktose)(?![a-z0-9])",
        ],
        claim_terms=["lactose-free", "dairy-free", "laktosefrei"],
        dairy_free_phrases=[*_DAIRY_FREE, *_LACTOSE_FREE],
    ),
    build_rule_set(
        "HALAL",
        keywords=["halal", "halal certified", "halal zertifiziert", "100 halal", "helal"],
        dishes=[
            "chicken biryani", "butter chicken halal", "doner kebab halal", "shawarma",
            "lamb tagine", "beef kofta",
        ],
        negative_keywords=[
            "pork", "bacon", "ham", "lard", "pancetta", "prosciutto", "alcohol", "wine", "beer",
            "rum", "schwein", "schweinefleisch", "speck", "schinken", "schmalz", "wein", "bier",
        ],
        allergen_exclusions=["pork", "schwein"],
        contradiction_patterns=[
            _contains(r"(?:pork|alcohol|wine|lard)"),
            r"(?<![a-z0-9])not\s+halal(?![a-z0-9])",
            r"(?<![a-z0-9])non[\s\-]?halal(?![a-z0-9])",
            r"(?<![a-z0-9])nicht\s+halal(?![a-z0-9])",
        ],
        claim_terms=["halal"],
    ),
)

# Parent tag -> stricter child tags that inherit its positive evidence.
BUILTIN_SUBDIETS: dict[str, tuple[str, ...]] = {
    "VEGAN": ("VEGETARIAN",),
}


class DietRuleRegistry:
    """Lookup from diet tag key to DietRuleSet."""

    def __init__(
        self,
        rule_sets: Iterable[DietRuleSet],
        subdiets: Optional[Mapping[str, Sequence[str]]] = None,
        engine_version: str = ENGINE_VERSION,
    ):
        self._rules = {rule_set.key: rule_set for rule_set in rule_sets}
        self._subdiets = {parent: tuple(children) for parent, children in (subdiets or {}).items()}
        self.engine_version = engine_version

    def get(self, key: str) -> DietRuleSet:
        return self._rules.get(key) or empty_rule_set(key)

    def has(self, key: str) -> bool:
        return key in self._rules

    def keys(self) -> list[str]:
        return sorted(self._rules)

    def for_tag(
        self,
        key: str,
        keyword_whitelist: Optional[Sequence[str]] = None,
        dish_whitelist: Optional[Sequence[str]] = None,
        allergen_exclusions: Optional[Sequence[str]] = None,
    ) -> DietRuleSet:
        return self.get(key).merged_with(keyword_whitelist, dish_whitelist, allergen_exclusions)

    def subdiet_pairs(self) -> list[tuple[str, str]]:
        return [
            (parent, child)
            for parent, children in sorted(self._subdiets.items())
            for child in children
        ]


DEFAULT_RULE_REGISTRY = DietRuleRegistry(BUILTIN_RULE_SETS, BUILTIN_SUBDIETS)

# Flat views kept for callers that only need the keyword or allergen tables.
DIET_KEYWORD_RULES: dict[str, list[str]] = {
    rule_set.key: list(rule_set.keywords) for rule_set in BUILTIN_RULE_SETS
}


def _build_allergen_exclusion_map() -> dict[str, list[str]]:
    mapping: dict[str, list[str]] = {}
    for rule_set in BUILTIN_RULE_SETS:
        for allergen in rule_set.allergen_exclusions:
            mapping.setdefault(allergen, []).append(rule_set.key)
    return mapping


ALLERGEN_DIET_EXCLUSIONS = _build_allergen_exclusion_map()
