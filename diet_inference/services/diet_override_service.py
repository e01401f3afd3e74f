"""
Restaurant-level diet overrides and effective suitability.

A manual override always wins. Without one, the latest inference result at
the current engine version decides. Without either, suitability is unknown.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from diet_inference.models.diet import Confidence, DietTag, DietInferenceResult, DietManualOverride
from diet_inference.services.diet_rules import ENGINE_VERSION
from diet_inference.services.diet_scorer import InferenceReasons
from diet_inference.utils.helpers import safe_json_parse
from diet_inference.utils.logger import get_logger

logger = get_logger(__name__)


class SuitabilitySource(str, Enum):
    OVERRIDE = "override"
    INFERENCE = "inference"
    NONE = "none"


class OverrideDetail(BaseModel):
    id: int
    supported: bool
    author: str
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InferenceDetail(BaseModel):
    id: int
    score: int
    confidence: Confidence
    engine_version: str
    computed_at: Optional[datetime] = None
    reasons: Optional[InferenceReasons] = None


class EffectiveSuitability(BaseModel):
    diet_tag_id: int
    diet_tag_key: str
    diet_tag_label: str
    supported: Optional[bool] = None  # None = no data
    source: SuitabilitySource
    override: Optional[OverrideDetail] = None
    inference: Optional[InferenceDetail] = None


# ---------------------------------------------------------------------------
# Override CRUD
# ---------------------------------------------------------------------------

async def add_override(
    db: AsyncSession,
    restaurant_id: int,
    diet_tag_id: int,
    supported: bool,
    author: str,
    notes: Optional[str] = None,
) -> DietManualOverride:
    """Create the override for (restaurant, tag) or update the existing one"""
    result = await db.execute(
        select(DietManualOverride).where(
            DietManualOverride.restaurant_id == restaurant_id,
            DietManualOverride.diet_tag_id == diet_tag_id,
        )
    )
    override = result.scalar_one_or_none()

    if override:
        override.supported = supported
        override.author = author
        override.notes = notes
        override.updated_at = datetime.utcnow()
    else:
        override = DietManualOverride(
            restaurant_id=restaurant_id,
            diet_tag_id=diet_tag_id,
            supported=supported,
            author=author,
            notes=notes,
        )
        db.add(override)

    await db.commit()
    await db.refresh(override)
    logger.info(
        f"Restaurant {restaurant_id}: diet override tag={diet_tag_id} supported={supported} by {author}"
    )
    return override


async def remove_override(db: AsyncSession, override_id: int, restaurant_id: int) -> bool:
    result = await db.execute(
        select(DietManualOverride).where(
            DietManualOverride.id == override_id,
            DietManualOverride.restaurant_id == restaurant_id,
        )
    )
    override = result.scalar_one_or_none()
    if not override:
        return False

    await db.delete(override)
    await db.commit()
    return True


async def list_by_restaurant(db: AsyncSession, restaurant_id: int) -> list[DietManualOverride]:
    result = await db.execute(
        select(DietManualOverride)
        .where(DietManualOverride.restaurant_id == restaurant_id)
        .order_by(DietManualOverride.created_at, DietManualOverride.id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Effective suitability
# ---------------------------------------------------------------------------

def parse_reasons(raw: Any) -> Optional[InferenceReasons]:
    """Stored evidence as a typed record; None when missing or unreadable."""
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = safe_json_parse(raw)
    if not isinstance(raw, dict):
        logger.warning("Stored inference reasons are not an object, ignoring")
        return None
    try:
        return InferenceReasons.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Stored inference reasons failed validation: {e.error_count()} errors")
        return None


def build_inference_detail(inference: DietInferenceResult) -> InferenceDetail:
    return InferenceDetail(
        id=inference.id,
        score=inference.score,
        confidence=inference.confidence,
        engine_version=inference.engine_version,
        computed_at=inference.computed_at,
        reasons=parse_reasons(inference.reasons),
    )


def latest_by_tag(inferences: Iterable[DietInferenceResult]) -> dict[int, DietInferenceResult]:
    """Most recent result per tag; ties on computed_at go to the higher id."""
    ordered = sorted(
        inferences,
        key=lambda i: (i.computed_at or datetime.min, i.id or 0),
    )
    return {inference.diet_tag_id: inference for inference in ordered}


def resolve_effective_suitability(
    tags: Iterable[DietTag],
    overrides: Iterable[DietManualOverride],
    inferences: Iterable[DietInferenceResult],
) -> list[EffectiveSuitability]:
    """
    Merge overrides and inference results into one verdict per tag, ordered by key.

    ``inferences`` must already be restricted to the current engine version.
    """
    override_map = {override.diet_tag_id: override for override in overrides}
    inference_map = latest_by_tag(inferences)

    results = []
    for tag in sorted(tags, key=lambda t: t.key):
        override = override_map.get(tag.id)
        inference = inference_map.get(tag.id)
        inference_detail = build_inference_detail(inference) if inference else None

        if override:
            results.append(EffectiveSuitability(
                diet_tag_id=tag.id,
                diet_tag_key=tag.key,
                diet_tag_label=tag.label,
                supported=override.supported,
                source=SuitabilitySource.OVERRIDE,
                override=OverrideDetail.model_validate(override),
                inference=inference_detail,
            ))
        elif inference_detail:
            matched_count = len(inference_detail.reasons.matched_items) if inference_detail.reasons else 0
            results.append(EffectiveSuitability(
                diet_tag_id=tag.id,
                diet_tag_key=tag.key,
                diet_tag_label=tag.label,
                supported=inference_detail.score > 0 or matched_count > 0,
                source=SuitabilitySource.INFERENCE,
                inference=inference_detail,
            ))
        else:
            results.append(EffectiveSuitability(
                diet_tag_id=tag.id,
                diet_tag_key=tag.key,
                diet_tag_label=tag.label,
                supported=None,
                source=SuitabilitySource.NONE,
            ))

    return results


async def compute_effective_suitability(
    db: AsyncSession,
    restaurant_id: int,
    engine_version: str = ENGINE_VERSION,
) -> list[EffectiveSuitability]:
    tags = await db.execute(select(DietTag).order_by(DietTag.key))
    overrides = await db.execute(
        select(DietManualOverride).where(DietManualOverride.restaurant_id == restaurant_id)
    )
    inferences = await db.execute(
        select(DietInferenceResult).where(
            DietInferenceResult.restaurant_id == restaurant_id,
            DietInferenceResult.engine_version == engine_version,
        )
    )
    return resolve_effective_suitability(
        tags.scalars().all(),
        overrides.scalars().all(),
        inferences.scalars().all(),
    )
