"""
Diet API endpoints - tag rules, overrides, inference and effective suitability
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from diet_inference.database import get_db
from diet_inference.models.diet import Confidence, DietTag, DietInferenceResult
from diet_inference.models.restaurant import Restaurant, MenuCategory, MenuItem
from diet_inference.services import diet_override_service, menu_item_override_service
from diet_inference.services.diet_inference_service import (
    compute_for_restaurant,
    get_results_by_restaurant,
)
from diet_inference.services.diet_override_service import EffectiveSuitability, parse_reasons
from diet_inference.services.diet_rules import ENGINE_VERSION
from diet_inference.services.diet_scorer import InferenceReasons
from diet_inference.services.diet_tag_service import (
    DietTagConfig,
    list_diet_tag_configs,
    read_rule_list,
    update_diet_tag_config,
)
from diet_inference.services.menu_item_override_service import ItemDietOverrideInput
from diet_inference.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


# --- Pydantic Schemas ---

class DietTagUpdate(BaseModel):
    label: Optional[str] = None
    keyword_whitelist: Optional[List[str]] = None
    dish_whitelist: Optional[List[str]] = None
    allergen_exclusions: Optional[List[str]] = None


class InferenceResultResponse(BaseModel):
    id: int
    restaurant_id: int
    diet_tag_id: int
    diet_tag_key: Optional[str] = None
    score: int
    confidence: Confidence
    engine_version: str
    computed_at: Optional[datetime]
    reasons: Optional[InferenceReasons] = None


class OverrideCreate(BaseModel):
    diet_tag_id: int
    supported: bool
    author: str = Field(min_length=1, max_length=150)
    notes: Optional[str] = None


class OverrideResponse(BaseModel):
    id: int
    restaurant_id: int
    diet_tag_id: int
    supported: bool
    author: str
    notes: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ItemOverridesUpdate(BaseModel):
    overrides: List[ItemDietOverrideInput]


class ItemOverrideResponse(BaseModel):
    id: int
    menu_item_id: int
    diet_tag_id: int
    supported: bool

    class Config:
        from_attributes = True


# --- Helpers ---

async def _get_restaurant_or_404(db: AsyncSession, restaurant_id: int) -> Restaurant:
    restaurant = await db.get(Restaurant, restaurant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    return restaurant


def _build_result_response(row: DietInferenceResult) -> InferenceResultResponse:
    return InferenceResultResponse(
        id=row.id,
        restaurant_id=row.restaurant_id,
        diet_tag_id=row.diet_tag_id,
        diet_tag_key=row.diet_tag.key if row.diet_tag else None,
        score=row.score,
        confidence=row.confidence,
        engine_version=row.engine_version,
        computed_at=row.computed_at,
        reasons=parse_reasons(row.reasons),
    )


# --- Diet tags ---

@router.get("/diet-tags", response_model=List[DietTagConfig])
async def list_diet_tags(db: AsyncSession = Depends(get_db)):
    return await list_diet_tag_configs(db)


@router.put("/diet-tags/{tag_id}", response_model=DietTagConfig)
async def update_diet_tag(
    tag_id: int,
    data: DietTagUpdate,
    db: AsyncSession = Depends(get_db),
):
    tag = await update_diet_tag_config(db, tag_id, **data.model_dump(exclude_none=True))
    if not tag:
        raise HTTPException(status_code=404, detail="Diet tag not found")

    return DietTagConfig(
        id=tag.id,
        key=tag.key,
        label=tag.label,
        keyword_whitelist=read_rule_list(tag, "keyword_whitelist"),
        dish_whitelist=read_rule_list(tag, "dish_whitelist"),
        allergen_exclusions=read_rule_list(tag, "allergen_exclusions"),
    )


# --- Suitability + inference ---

@router.get("/restaurants/{restaurant_id}/diet-suitability", response_model=List[EffectiveSuitability])
async def get_diet_suitability(restaurant_id: int, db: AsyncSession = Depends(get_db)):
    await _get_restaurant_or_404(db, restaurant_id)
    return await diet_override_service.compute_effective_suitability(db, restaurant_id)


@router.get("/restaurants/{restaurant_id}/diet-inference", response_model=List[InferenceResultResponse])
async def list_diet_inference(
    restaurant_id: int,
    engine_version: str = ENGINE_VERSION,
    db: AsyncSession = Depends(get_db),
):
    await _get_restaurant_or_404(db, restaurant_id)
    rows = await get_results_by_restaurant(db, restaurant_id, engine_version)
    return [_build_result_response(row) for row in rows]


@router.post("/restaurants/{restaurant_id}/diet-inference/recompute", response_model=List[InferenceResultResponse])
async def recompute_diet_inference(restaurant_id: int, db: AsyncSession = Depends(get_db)):
    await _get_restaurant_or_404(db, restaurant_id)
    await compute_for_restaurant(db, restaurant_id)
    rows = await get_results_by_restaurant(db, restaurant_id, ENGINE_VERSION)
    return [_build_result_response(row) for row in rows]


# --- Restaurant overrides ---

@router.get("/restaurants/{restaurant_id}/diet-overrides", response_model=List[OverrideResponse])
async def list_diet_overrides(restaurant_id: int, db: AsyncSession = Depends(get_db)):
    await _get_restaurant_or_404(db, restaurant_id)
    return await diet_override_service.list_by_restaurant(db, restaurant_id)


@router.post("/restaurants/{restaurant_id}/diet-overrides", response_model=OverrideResponse)
async def add_diet_override(
    restaurant_id: int,
    data: OverrideCreate,
    db: AsyncSession = Depends(get_db),
):
    await _get_restaurant_or_404(db, restaurant_id)
    tag = await db.get(DietTag, data.diet_tag_id)
    if not tag:
        raise HTTPException(status_code=404, detail="Diet tag not found")

    return await diet_override_service.add_override(
        db,
        restaurant_id=restaurant_id,
        diet_tag_id=data.diet_tag_id,
        supported=data.supported,
        author=data.author.strip(),
        notes=data.notes,
    )


@router.delete("/restaurants/{restaurant_id}/diet-overrides/{override_id}")
async def delete_diet_override(
    restaurant_id: int,
    override_id: int,
    db: AsyncSession = Depends(get_db),
):
    removed = await diet_override_service.remove_override(db, override_id, restaurant_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Diet override not found")
    return {"message": "Diet override removed"}


# --- Item overrides ---

@router.get("/menu-items/{item_id}/diet-overrides", response_model=List[ItemOverrideResponse])
async def list_item_diet_overrides(item_id: int, db: AsyncSession = Depends(get_db)):
    item = await db.get(MenuItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Menu item not found")
    return await menu_item_override_service.list_by_item(db, item_id)


@router.put("/menu-items/{item_id}/diet-overrides", response_model=List[ItemOverrideResponse])
async def replace_item_diet_overrides(
    item_id: int,
    data: ItemOverridesUpdate,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(MenuCategory.restaurant_id)
        .join(MenuItem, MenuItem.category_id == MenuCategory.id)
        .where(MenuItem.id == item_id)
    )
    restaurant_id = result.scalar_one_or_none()
    if restaurant_id is None:
        raise HTTPException(status_code=404, detail="Menu item not found")

    rows = await menu_item_override_service.replace_for_item(db, item_id, data.overrides)
    response = [ItemOverrideResponse.model_validate(row) for row in rows]
    await db.commit()

    # Item verdicts feed the scorer, so the restaurant's results are stale now.
    # The saved overrides stand even if the recompute fails; a later recompute picks them up.
    try:
        await compute_for_restaurant(db, restaurant_id)
    except Exception as e:
        logger.error(f"Menu item {item_id}: diet overrides saved but recompute of restaurant {restaurant_id} failed: {e}")
        return response

    logger.info(f"Menu item {item_id}: {len(response)} diet overrides saved, restaurant {restaurant_id} recomputed")
    return response
