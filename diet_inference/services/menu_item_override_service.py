"""
Item-level diet overrides: a human verdict for one menu item and one tag
"""
from collections import defaultdict
from typing import Iterable

from pydantic import BaseModel
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from diet_inference.models.diet import DietTag, MenuItemDietOverride


class ItemDietOverrideInput(BaseModel):
    diet_tag_id: int
    supported: bool


async def list_by_item(db: AsyncSession, menu_item_id: int) -> list[MenuItemDietOverride]:
    result = await db.execute(
        select(MenuItemDietOverride)
        .where(MenuItemDietOverride.menu_item_id == menu_item_id)
        .order_by(MenuItemDietOverride.created_at, MenuItemDietOverride.id)
    )
    return list(result.scalars().all())


async def list_by_item_ids(db: AsyncSession, menu_item_ids: Iterable[int]) -> list[MenuItemDietOverride]:
    ids = list(menu_item_ids)
    if not ids:
        return []
    result = await db.execute(
        select(MenuItemDietOverride).where(MenuItemDietOverride.menu_item_id.in_(ids))
    )
    return list(result.scalars().all())


def dedupe_overrides(incoming: Iterable[ItemDietOverrideInput]) -> list[ItemDietOverrideInput]:
    """One entry per tag; the last verdict for a tag wins."""
    by_tag: dict[int, bool] = {}
    for entry in incoming:
        by_tag[entry.diet_tag_id] = entry.supported
    return [ItemDietOverrideInput(diet_tag_id=tag_id, supported=supported) for tag_id, supported in by_tag.items()]


async def replace_for_item(
    db: AsyncSession,
    menu_item_id: int,
    incoming: Iterable[ItemDietOverrideInput],
) -> list[MenuItemDietOverride]:
    """
    Replace every override of a menu item with ``incoming``.

    Entries pointing at unknown tags are dropped. Calling twice with the same
    input leaves the same rows behind. The caller commits.
    """
    await db.execute(
        delete(MenuItemDietOverride).where(MenuItemDietOverride.menu_item_id == menu_item_id)
    )

    normalized = dedupe_overrides(incoming)
    if not normalized:
        await db.flush()
        return []

    result = await db.execute(
        select(DietTag.id).where(DietTag.id.in_([entry.diet_tag_id for entry in normalized]))
    )
    valid_tag_ids = set(result.scalars().all())

    rows = [
        MenuItemDietOverride(
            menu_item_id=menu_item_id,
            diet_tag_id=entry.diet_tag_id,
            supported=entry.supported,
        )
        for entry in normalized
        if entry.diet_tag_id in valid_tag_ids
    ]
    db.add_all(rows)
    await db.flush()
    return rows


def group_by_tag(overrides: Iterable[MenuItemDietOverride]) -> dict[int, dict[int, bool]]:
    """diet_tag_id -> {menu_item_id: supported}, the shape the scorer consumes."""
    grouped: dict[int, dict[int, bool]] = defaultdict(dict)
    for override in overrides:
        grouped[override.diet_tag_id][override.menu_item_id] = override.supported
    return dict(grouped)
