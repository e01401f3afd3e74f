"""
Diet inference orchestration.

Loads a restaurant's menu, tag configuration and item overrides, runs the
evidence scorer for every tag, applies subdiet inheritance and upserts one
DietInferenceResult per (restaurant, tag, engine version).
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from diet_inference.config import get_settings
from diet_inference.models.diet import DietTag, DietInferenceResult
from diet_inference.models.restaurant import Restaurant, MenuCategory, MenuItem
from diet_inference.services.diet_rules import DEFAULT_RULE_REGISTRY, DietRuleRegistry
from diet_inference.services.diet_scorer import (
    InferenceOutput,
    MenuItemEvidence,
    build_output,
    confidence_max,
    infer_for_tag,
)
from diet_inference.services.diet_tag_service import list_diet_tags, read_rule_list
from diet_inference.services.menu_item_override_service import list_by_item_ids, group_by_tag
from diet_inference.utils.logger import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Subdiet inheritance
# ---------------------------------------------------------------------------

def inherit_from_parent(parent: InferenceOutput, child: InferenceOutput) -> InferenceOutput:
    """
    Merge the parent's matched items into the child's result.

    Items the child already matched or excluded keep the child's verdict. The
    returned result never scores below the child's own result.
    """
    child_reasons = child.reasons
    seen_ids = {entry.item_id for entry in child_reasons.matched_items}
    seen_ids.update(entry.item_id for entry in child_reasons.excluded_items)

    inherited = [
        entry.model_copy(update={"inherited_from": parent.diet_tag_key})
        for entry in parent.reasons.matched_items
        if entry.item_id not in seen_ids
    ]
    if not inherited:
        return child

    merged = build_output(
        child.diet_tag_id,
        child.diet_tag_key,
        [*child_reasons.matched_items, *inherited],
        list(child_reasons.excluded_items),
        child_reasons.total_menu_items,
    )

    breakdown = merged.reasons.score_breakdown.model_copy(update={
        "inherited_from": parent.diet_tag_key,
        "pre_inheritance_score": child.score,
    })
    reasons = merged.reasons.model_copy(update={
        "match_ratio": max(merged.reasons.match_ratio, child_reasons.match_ratio),
        "score_breakdown": breakdown,
    })
    return merged.model_copy(update={
        "score": max(merged.score, child.score),
        "confidence": confidence_max(merged.confidence, child.confidence),
        "reasons": reasons,
    })


def apply_subdiet_inheritance(
    outputs: dict[str, InferenceOutput],
    registry: DietRuleRegistry = DEFAULT_RULE_REGISTRY,
) -> dict[str, InferenceOutput]:
    """Apply every parent -> child pair of the registry to outputs keyed by tag key."""
    result = dict(outputs)
    for parent_key, child_key in registry.subdiet_pairs():
        parent = result.get(parent_key)
        child = result.get(child_key)
        if parent is None or child is None:
            continue
        result[child_key] = inherit_from_parent(parent, child)
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_active_menu_items(db: AsyncSession, restaurant_id: int) -> list[MenuItemEvidence]:
    """Active items across all active categories of a restaurant"""
    result = await db.execute(
        select(MenuItem, MenuCategory.name)
        .join(MenuCategory, MenuItem.category_id == MenuCategory.id)
        .where(
            MenuCategory.restaurant_id == restaurant_id,
            MenuCategory.is_active == True,
            MenuItem.is_active == True,
        )
        .order_by(MenuCategory.sort_order, MenuCategory.id, MenuItem.sort_order, MenuItem.id)
    )
    return [
        MenuItemEvidence(
            id=item.id,
            name=item.name,
            description=item.description,
            diet_context=item.diet_context,
            category_name=category_name,
            allergens=item.allergens,
        )
        for item, category_name in result.all()
    ]


async def get_results_by_restaurant(
    db: AsyncSession,
    restaurant_id: int,
    engine_version: Optional[str] = None,
) -> list[DietInferenceResult]:
    query = (
        select(DietInferenceResult)
        .options(selectinload(DietInferenceResult.diet_tag))
        .where(DietInferenceResult.restaurant_id == restaurant_id)
    )
    if engine_version:
        query = query.where(DietInferenceResult.engine_version == engine_version)
    query = query.order_by(DietInferenceResult.diet_tag_id, DietInferenceResult.computed_at)
    # rows touched by a recompute in this session must pick up their tag too
    query = query.execution_options(populate_existing=True)

    result = await db.execute(query)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Compute + upsert
# ---------------------------------------------------------------------------

def score_tags(
    tags: list[DietTag],
    items: list[MenuItemEvidence],
    overrides_by_tag: dict[int, dict[int, bool]],
    registry: DietRuleRegistry = DEFAULT_RULE_REGISTRY,
) -> dict[str, InferenceOutput]:
    """Score every tag independently, then apply subdiet inheritance."""
    outputs = {}
    for tag in tags:
        rules = {
            "id": tag.id,
            "key": tag.key,
            "label": tag.label,
            "keyword_whitelist": read_rule_list(tag, "keyword_whitelist"),
            "dish_whitelist": read_rule_list(tag, "dish_whitelist"),
            "allergen_exclusions": read_rule_list(tag, "allergen_exclusions"),
        }
        outputs[tag.key] = infer_for_tag(rules, items, overrides_by_tag.get(tag.id), registry)
    return apply_subdiet_inheritance(outputs, registry)


async def _compute_and_stage(
    db: AsyncSession,
    restaurant_id: int,
    registry: DietRuleRegistry,
) -> list[DietInferenceResult]:
    tags = await list_diet_tags(db)
    items = await get_active_menu_items(db, restaurant_id)
    item_overrides = await list_by_item_ids(db, [item.id for item in items])
    outputs = score_tags(tags, items, group_by_tag(item_overrides), registry)

    computed_at = datetime.utcnow()
    rows = []
    for tag in tags:
        output = outputs[tag.key]
        result = await db.execute(
            select(DietInferenceResult).where(
                DietInferenceResult.restaurant_id == restaurant_id,
                DietInferenceResult.diet_tag_id == tag.id,
                DietInferenceResult.engine_version == registry.engine_version,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = DietInferenceResult(
                restaurant_id=restaurant_id,
                diet_tag_id=tag.id,
                engine_version=registry.engine_version,
            )
            db.add(row)

        row.score = output.score
        row.confidence = output.confidence
        row.reasons = output.reasons.model_dump(mode="json")
        row.computed_at = computed_at
        rows.append(row)

    await db.flush()
    return rows


async def compute_for_restaurant(
    db: AsyncSession,
    restaurant_id: int,
    registry: DietRuleRegistry = DEFAULT_RULE_REGISTRY,
) -> list[DietInferenceResult]:
    """
    Recompute and persist every tag's result for one restaurant in one commit.

    A concurrent writer inserting the same (restaurant, tag, version) row makes
    the flush fail on the unique constraint; the whole unit is then rolled back
    and re-run so the existing row is updated instead. Any other failure rolls
    back and propagates, leaving the previous results untouched.
    """
    restaurant = await db.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise ValueError(f"Restaurant {restaurant_id} not found")

    attempts = 1 + max(0, get_settings().INFERENCE_UPSERT_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            rows = await _compute_and_stage(db, restaurant_id, registry)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if attempt == attempts:
                raise
            logger.warning(
                f"Restaurant {restaurant_id}: inference upsert conflict, retrying ({attempt}/{attempts - 1})"
            )
            continue
        except Exception:
            await db.rollback()
            raise

        supported = [row.diet_tag_id for row in rows if row.score > 0]
        logger.info(
            f"Restaurant {restaurant_id}: computed {len(rows)} diet results "
            f"(engine {registry.engine_version}, {len(supported)} with score > 0)"
        )
        return rows

    return []


async def recompute_after_menu_change(
    db: AsyncSession,
    restaurant_id: int,
    registry: DietRuleRegistry = DEFAULT_RULE_REGISTRY,
) -> list[DietInferenceResult]:
    """Entrypoint for callers that changed a restaurant's menu items"""
    return await compute_for_restaurant(db, restaurant_id, registry)
