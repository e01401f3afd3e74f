"""
Diet tag seeding and admin-editable rule lists
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from diet_inference.models.diet import DietTag
from diet_inference.utils.helpers import parse_string_list, dedupe_preserving_order
from diet_inference.utils.logger import get_logger

logger = get_logger(__name__)


# Canonical tags that must exist in every environment.
DEFAULT_DIET_TAGS: list[dict[str, Any]] = [
    {
        "key": "VEGAN",
        "label": "Vegan",
        "keyword_whitelist": [
            "vegan", "pflanzlich", "plant based", "vegano", "vegana",
            "sin ingredientes animales",
        ],
        "dish_whitelist": [
            "falafel", "hummus", "tofu bowl", "chana masala", "dal tadka", "aloo gobi",
            "veggie sushi roll", "vegetable ramen",
        ],
        "allergen_exclusions": [
            "egg", "eggs", "ei", "eier",
            "milk", "milch", "dairy",
            "fish", "fisch",
            "shellfish", "crustaceans",
        ],
    },
    {
        "key": "VEGETARIAN",
        "label": "Vegetarian",
        "keyword_whitelist": [
            "vegetarian", "vegetarisch", "sin carne", "vegetariano", "ovo lacto", "meat free",
        ],
        "dish_whitelist": [
            "margherita pizza", "caprese salad", "palak paneer", "paneer tikka",
            "vegetable spring rolls", "egg fried rice", "miso soup",
        ],
        "allergen_exclusions": ["fish", "fisch", "shellfish", "crustaceans"],
    },
    {
        "key": "GLUTEN_FREE",
        "label": "Gluten-free",
        "keyword_whitelist": ["gluten free", "glutenfrei", "sin gluten", "sans gluten", "celiac safe"],
        "dish_whitelist": [
            "corn tortilla tacos", "rice bowl", "poke bowl", "sashimi", "dal chawal", "quinoa salad",
        ],
        "allergen_exclusions": ["gluten", "wheat", "weizen", "barley", "gerste", "rye", "roggen"],
    },
    {
        "key": "LACTOSE_FREE",
        "label": "Lactose-free",
        "keyword_whitelist": ["lactose free", "laktosefrei", "dairy free", "sin lactosa", "sans lactose"],
        "dish_whitelist": [
            "sorbet", "coconut curry", "tom yum soup", "olive oil pasta", "avocado salad",
            "oat milk latte",
        ],
        "allergen_exclusions": ["milk", "milch", "dairy", "lactose", "laktose"],
    },
    {
        "key": "HALAL",
        "label": "Halal",
        "keyword_whitelist": ["halal", "halal certified", "halal zertifiziert", "100 halal"],
        "dish_whitelist": [
            "chicken biryani", "butter chicken halal", "doner kebab halal", "shawarma",
            "lamb tagine", "beef kofta",
        ],
        "allergen_exclusions": ["pork", "schwein"],
    },
]


class DietTagConfig(BaseModel):
    """A tag with its rule lists parsed into plain string lists"""
    id: int
    key: str
    label: str
    keyword_whitelist: list[str] = []
    dish_whitelist: list[str] = []
    allergen_exclusions: list[str] = []


def clean_rule_list(values: Optional[list[str]]) -> Optional[list[str]]:
    """Trim, drop empties and dedupe; an empty result is stored as NULL."""
    cleaned = dedupe_preserving_order([
        value.strip() for value in (values or []) if isinstance(value, str) and value.strip()
    ])
    return cleaned or None


def read_rule_list(tag: DietTag, field: str) -> list[str]:
    parsed = parse_string_list(getattr(tag, field))
    if parsed is None:
        logger.warning(f"Diet tag {tag.key}: malformed {field}, treating as empty")
        return []
    return parsed


async def list_diet_tags(db: AsyncSession) -> list[DietTag]:
    result = await db.execute(select(DietTag).order_by(DietTag.key))
    return list(result.scalars().all())


async def ensure_default_diet_tags(db: AsyncSession) -> int:
    """
    Insert any default tag that is missing, by key.

    Existing tags are left alone so admin edits to labels and rule lists
    survive restarts. Returns how many tags were missing.
    """
    result = await db.execute(select(DietTag.key))
    existing_keys = set(result.scalars().all())

    missing = [tag for tag in DEFAULT_DIET_TAGS if tag["key"] not in existing_keys]
    for tag in missing:
        db.add(DietTag(
            key=tag["key"],
            label=tag["label"],
            keyword_whitelist=clean_rule_list(tag["keyword_whitelist"]),
            dish_whitelist=clean_rule_list(tag["dish_whitelist"]),
            allergen_exclusions=clean_rule_list(tag["allergen_exclusions"]),
        ))

    if missing:
        await db.commit()
        logger.info(f"Seeded {len(missing)} default diet tags: {[t['key'] for t in missing]}")

    return len(missing)


async def list_diet_tag_configs(db: AsyncSession) -> list[DietTagConfig]:
    tags = await list_diet_tags(db)
    return [
        DietTagConfig(
            id=tag.id,
            key=tag.key,
            label=tag.label,
            keyword_whitelist=read_rule_list(tag, "keyword_whitelist"),
            dish_whitelist=read_rule_list(tag, "dish_whitelist"),
            allergen_exclusions=read_rule_list(tag, "allergen_exclusions"),
        )
        for tag in tags
    ]


async def update_diet_tag_config(
    db: AsyncSession,
    tag_id: int,
    label: Optional[str] = None,
    keyword_whitelist: Optional[list[str]] = None,
    dish_whitelist: Optional[list[str]] = None,
    allergen_exclusions: Optional[list[str]] = None,
) -> Optional[DietTag]:
    """Replace the given rule lists of a tag; lists left as None are untouched."""
    result = await db.execute(select(DietTag).where(DietTag.id == tag_id))
    tag = result.scalar_one_or_none()
    if not tag:
        return None

    if label is not None and label.strip():
        tag.label = label.strip()
    if keyword_whitelist is not None:
        tag.keyword_whitelist = clean_rule_list(keyword_whitelist)
    if dish_whitelist is not None:
        tag.dish_whitelist = clean_rule_list(dish_whitelist)
    if allergen_exclusions is not None:
        tag.allergen_exclusions = clean_rule_list(allergen_exclusions)
    tag.updated_at = datetime.utcnow()

    await db.commit()
    await db.refresh(tag)
    return tag
