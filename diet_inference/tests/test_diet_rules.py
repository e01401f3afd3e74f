"""
Rule registry and text matching tests
"""
import re

import pytest

from diet_inference.services.diet_rules import (
    ALLERGEN_DIET_EXCLUSIONS,
    DEFAULT_RULE_REGISTRY,
    DIET_KEYWORD_RULES,
    ENGINE_VERSION,
    DietRuleRegistry,
    build_rule_set,
    canonical_term,
    claim_pattern,
    find_asserted_terms,
    find_contradictions,
    find_phrases,
    find_terms,
    is_side_mention,
    normalize_text,
    CROSS_CONTAMINATION_PATTERNS,
)


# ===================== ENGINE VERSION =====================


def test_engine_version_is_semver():
    assert re.match(r"^\d+\.\d+\.\d+$", ENGINE_VERSION)
    assert ENGINE_VERSION == "4.0.0"


def test_default_registry_uses_engine_version():
    assert DEFAULT_RULE_REGISTRY.engine_version == ENGINE_VERSION


# ===================== NORMALISATION =====================


@pytest.mark.parametrize("raw,expected", [
    ("  hello world  ", "hello world"),
    ("hello    world", "hello world"),
    ("Hello WORLD", "hello world"),
    ("  VEGAN  Friendly   Menu  ", "vegan friendly menu"),
    ("", ""),
    (None, ""),
    ("hello\t\nworld", "hello world"),
    ("  Käsespätzle  Vegetarisch  ", "kasespatzle vegetarisch"),
    ("Vegan  Pflanzlich  Bowl", "vegan pflanzlich bowl"),
    ("It’s vegan", "it's vegan"),
])
def test_normalize_text(raw, expected):
    assert normalize_text(raw) == expected


def test_canonical_term_folds_hyphens():
    assert canonical_term("Plant-Based") == "plant based"
    assert canonical_term("gluten -  free") == "gluten free"


# ===================== KEYWORD TABLES =====================


def test_keyword_rules_cover_default_tags():
    for key in ["VEGAN", "VEGETARIAN", "GLUTEN_FREE", "LACTOSE_FREE", "HALAL"]:
        assert DIET_KEYWORD_RULES[key]


def test_keywords_are_lowercase_and_unique():
    for key, keywords in DIET_KEYWORD_RULES.items():
        assert len(set(keywords)) == len(keywords), key
        for keyword in keywords:
            assert keyword == keyword.lower()


@pytest.mark.parametrize("key,expected", [
    ("VEGAN", ["pflanzlich", "pflanzenbasiert"]),
    ("VEGETARIAN", ["vegetarisch", "fleischlos", "ohne fleisch"]),
    ("GLUTEN_FREE", ["glutenfrei", "ohne gluten"]),
    ("LACTOSE_FREE", ["laktosefrei", "ohne laktose", "milchfrei"]),
])
def test_german_keywords(key, expected):
    for keyword in expected:
        assert keyword in DIET_KEYWORD_RULES[key]


def test_allergen_exclusion_map():
    assert "VEGAN" in ALLERGEN_DIET_EXCLUSIONS["egg"]
    assert "VEGAN" in ALLERGEN_DIET_EXCLUSIONS["eggs"]
    assert "VEGAN" in ALLERGEN_DIET_EXCLUSIONS["ei"]
    assert "VEGAN" in ALLERGEN_DIET_EXCLUSIONS["milk"]
    assert "LACTOSE_FREE" in ALLERGEN_DIET_EXCLUSIONS["milk"]
    assert "GLUTEN_FREE" in ALLERGEN_DIET_EXCLUSIONS["gluten"]
    assert "GLUTEN_FREE" in ALLERGEN_DIET_EXCLUSIONS["wheat"]
    assert "HALAL" in ALLERGEN_DIET_EXCLUSIONS["pork"]
    for allergen in ALLERGEN_DIET_EXCLUSIONS:
        assert allergen == allergen.lower()


# ===================== REGISTRY =====================


class TestRegistry:

    def test_unknown_key_yields_empty_rule_set(self):
        rules = DEFAULT_RULE_REGISTRY.get("UNKNOWN_DIET")
        assert rules.key == "UNKNOWN_DIET"
        assert rules.is_empty
        assert rules.keywords == ()
        assert not DEFAULT_RULE_REGISTRY.has("UNKNOWN_DIET")

    def test_known_keys(self):
        assert DEFAULT_RULE_REGISTRY.keys() == ["GLUTEN_FREE", "HALAL", "LACTOSE_FREE", "VEGAN", "VEGETARIAN"]

    def test_for_tag_unions_custom_lists(self):
        rules = DEFAULT_RULE_REGISTRY.for_tag(
            "VEGAN",
            keyword_whitelist=["Jackfruit", "vegan"],
            dish_whitelist=["Bean Chili"],
            allergen_exclusions=["Honey"],
        )
        assert "jackfruit" in rules.keywords
        assert rules.keywords.count("vegan") == 1
        assert "bean chili" in rules.dishes
        assert "honey" in rules.allergen_exclusions
        # built-in rule set is untouched
        assert "jackfruit" not in DEFAULT_RULE_REGISTRY.get("VEGAN").keywords

    def test_for_tag_on_unknown_key_uses_custom_lists_only(self):
        rules = DEFAULT_RULE_REGISTRY.for_tag("KETO", keyword_whitelist=["keto"])
        assert rules.keywords == ("keto",)
        assert rules.negative_keywords == ()

    def test_subdiet_pairs(self):
        assert DEFAULT_RULE_REGISTRY.subdiet_pairs() == [("VEGAN", "VEGETARIAN")]

    def test_custom_registry(self):
        registry = DietRuleRegistry(
            [build_rule_set("KETO", keywords=["Keto", "low-carb"])],
            engine_version="0.1.0",
        )
        assert registry.has("KETO")
        assert registry.get("KETO").keywords == ("keto", "low carb")
        assert registry.subdiet_pairs() == []
        assert registry.engine_version == "0.1.0"


# ===================== MATCHING =====================


class TestMatching:

    def test_hyphen_and_space_forms_match(self):
        assert find_terms("plant-based patty", ["plant based"]) == ["plant based"]
        assert find_terms("plant based patty", ["plant based"]) == ["plant based"]
        assert find_terms("plant - based patty", ["plant based"]) == ["plant based"]

    def test_word_boundaries(self):
        assert find_terms("hamburger", ["ham"]) == []
        assert find_terms("meatless monday", ["meat"]) == []
        assert find_terms("fleischkase", ["fleisch"]) == []
        assert find_terms("honey ham", ["ham"]) == ["ham"]

    @pytest.mark.parametrize("text", [
        "ohne milch",
        "no milk added",
        "milk-free shake",
        "milk free shake",
        "without any milk",
        "oat milk latte",
        "vegan milk",
        "may contain traces of milk",
        "spuren von milch",
    ])
    def test_non_asserted_mentions(self, text):
        assert find_asserted_terms(text, ["milk", "milch"]) == []

    def test_asserted_mention(self):
        assert find_asserted_terms("latte with whole milk", ["milk"]) == ["milk"]
        # one asserted occurrence is enough
        assert find_asserted_terms("oat milk or cow milk", ["milk"]) == ["milk"]

    def test_alternative_suffix(self):
        assert find_asserted_terms("the beef alternatives", ["beef"]) == []
        assert find_asserted_terms("chicken-style strips", ["chicken"]) == []

    @pytest.mark.parametrize("text", [
        "this dish is vegan",
        "it's vegan too",
        "100% vegan",
        "certified vegan",
    ])
    def test_explicit_claims(self, text):
        assert claim_pattern("vegan").search(text)

    def test_mention_is_not_a_claim(self):
        assert not claim_pattern("vegan").search("our vegan mayonnaise")

    def test_side_mention(self):
        text = "comes with our vegan salad mayonnaise"
        end = text.index("vegan") + len("vegan")
        assert is_side_mention(text, end)
        text = "a vegan patty"
        assert not is_side_mention(text, text.index("vegan") + len("vegan"))

    def test_cross_contamination_phrases(self):
        hits = find_phrases(
            "prepared on the same grill as the beef and may come into contact",
            CROSS_CONTAMINATION_PATTERNS,
        )
        assert "same grill" in hits
        assert "come into contact" in hits
        assert find_phrases("fresh greens", CROSS_CONTAMINATION_PATTERNS) == []

    @pytest.mark.parametrize("text,term", [
        ("rice and wheat noodles", "wheat"),
        ("rice with chicken", "chicken"),
        ("soy-glazed chicken", "chicken"),
        ("coconut chicken curry", "chicken"),
        ("plant-based and chicken options", "chicken"),
    ])
    def test_ordinary_ingredient_is_not_an_alternative(self, text, term):
        assert find_asserted_terms(text, [term]) == [term]

    @pytest.mark.parametrize("text,term", [
        ("coconut cream", "cream"),
        ("almond butter", "butter"),
        ("seitan steak", "steak"),
        ("vegan pulled pork", "pork"),
    ])
    def test_plant_alternatives(self, text, term):
        assert find_asserted_terms(text, [term]) == []

    def test_negated_mentions(self):
        assert find_asserted_terms("doesn't contain dairy", ["dairy"]) == []
        assert find_asserted_terms("may also contain eggs", ["eggs"]) == []


class TestContradictions:

    patterns = DEFAULT_RULE_REGISTRY.get("VEGAN").contradiction_patterns

    @pytest.mark.parametrize("text", [
        "might contain milk",
        "may also contain eggs",
        "does not contain milk",
        "doesn't contain dairy",
        "never contains honey",
        "may contain traces of milk",
    ])
    def test_hedged_or_negated(self, text):
        assert find_contradictions(text, self.patterns) == []

    def test_plain_statement(self):
        assert find_contradictions("the sauce contains milk", self.patterns) == ["contains milk"]

    def test_later_plain_statement_still_counts(self):
        text = "does not contain eggs but contains honey"
        assert find_contradictions(text, self.patterns) == ["contains honey"]
