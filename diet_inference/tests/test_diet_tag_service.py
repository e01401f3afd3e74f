"""
Diet tag seeding, rule list admin and item-level override tests
"""
import pytest
from sqlalchemy import update

from diet_inference.models.diet import DietTag, MenuItemDietOverride
from diet_inference.services.diet_tag_service import (
    DEFAULT_DIET_TAGS,
    clean_rule_list,
    ensure_default_diet_tags,
    list_diet_tag_configs,
    list_diet_tags,
    update_diet_tag_config,
)
from diet_inference.services.menu_item_override_service import (
    ItemDietOverrideInput,
    dedupe_overrides,
    group_by_tag,
    list_by_item,
    list_by_item_ids,
    replace_for_item,
)
from diet_inference.utils.helpers import parse_string_list


# ===================== SEEDING =====================


async def test_ensure_default_tags_is_idempotent(db_session):
    assert await ensure_default_diet_tags(db_session) == len(DEFAULT_DIET_TAGS)
    assert await ensure_default_diet_tags(db_session) == 0

    tags = await list_diet_tags(db_session)
    assert [t.key for t in tags] == ["GLUTEN_FREE", "HALAL", "LACTOSE_FREE", "VEGAN", "VEGETARIAN"]


async def test_ensure_default_tags_keeps_admin_edits(db_session):
    await ensure_default_diet_tags(db_session)
    tags = {t.key: t for t in await list_diet_tags(db_session)}
    await update_diet_tag_config(db_session, tags["VEGAN"].id, label="Plant based", keyword_whitelist=["jackfruit"])

    assert await ensure_default_diet_tags(db_session) == 0
    vegan = (await list_diet_tags(db_session))[3]
    assert vegan.key == "VEGAN"
    assert vegan.label == "Plant based"
    assert vegan.keyword_whitelist == ["jackfruit"]


async def test_ensure_default_tags_restores_missing_key(db_session):
    db_session.add(DietTag(key="VEGAN", label="Vegan"))
    await db_session.commit()

    assert await ensure_default_diet_tags(db_session) == 4


# ===================== RULE LIST ADMIN =====================


@pytest.mark.parametrize("raw,expected", [
    (["  vegan ", "vegan", "", "tofu"], ["vegan", "tofu"]),
    ([], None),
    (["   "], None),
    (None, None),
])
def test_clean_rule_list(raw, expected):
    assert clean_rule_list(raw) == expected


@pytest.mark.parametrize("raw,expected", [
    (None, []),
    ("", []),
    ('["vegan", 3, " tofu "]', ["vegan", "tofu"]),
    ('{"vegan": true}', None),
    (42, None),
])
def test_parse_string_list(raw, expected):
    assert parse_string_list(raw) == expected


class TestDietTagConfig:

    @pytest.mark.asyncio
    async def test_list_configs(self, db_session, seed_data):
        configs = {c.key: c for c in await list_diet_tag_configs(db_session)}
        assert len(configs) == 5
        assert "falafel" in configs["VEGAN"].dish_whitelist
        assert "pork" in configs["HALAL"].allergen_exclusions

    @pytest.mark.asyncio
    async def test_update_trims_and_dedupes(self, db_session, seed_data):
        tag = seed_data["tags"]["GLUTEN_FREE"]
        updated = await update_diet_tag_config(
            db_session, tag.id,
            keyword_whitelist=[" gluten free ", "gluten free", "gf"],
            dish_whitelist=[],
        )
        assert updated.keyword_whitelist == ["gluten free", "gf"]
        assert updated.dish_whitelist is None
        # untouched list
        assert "wheat" in updated.allergen_exclusions
        assert updated.label == "Gluten-free"

        configs = {c.key: c for c in await list_diet_tag_configs(db_session)}
        assert configs["GLUTEN_FREE"].dish_whitelist == []

    @pytest.mark.asyncio
    async def test_blank_label_is_ignored(self, db_session, seed_data):
        tag = seed_data["tags"]["HALAL"]
        updated = await update_diet_tag_config(db_session, tag.id, label="   ")
        assert updated.label == "Halal"

    @pytest.mark.asyncio
    async def test_malformed_stored_list_reads_empty(self, db_session, seed_data):
        tag = seed_data["tags"]["VEGAN"]
        await db_session.execute(
            update(DietTag).where(DietTag.id == tag.id).values(keyword_whitelist={"not": "a list"})
        )
        await db_session.commit()
        db_session.expire_all()

        configs = {c.key: c for c in await list_diet_tag_configs(db_session)}
        assert configs["VEGAN"].keyword_whitelist == []
        assert configs["VEGAN"].dish_whitelist

    @pytest.mark.asyncio
    async def test_update_missing_tag(self, db_session, seed_data):
        assert await update_diet_tag_config(db_session, 9999, label="Nope") is None


# ===================== ITEM OVERRIDES =====================


def test_dedupe_last_verdict_wins():
    entries = [
        ItemDietOverrideInput(diet_tag_id=1, supported=True),
        ItemDietOverrideInput(diet_tag_id=2, supported=True),
        ItemDietOverrideInput(diet_tag_id=1, supported=False),
    ]
    deduped = {e.diet_tag_id: e.supported for e in dedupe_overrides(entries)}
    assert deduped == {1: False, 2: True}


def test_group_by_tag():
    rows = [
        MenuItemDietOverride(menu_item_id=10, diet_tag_id=1, supported=True),
        MenuItemDietOverride(menu_item_id=11, diet_tag_id=1, supported=False),
        MenuItemDietOverride(menu_item_id=10, diet_tag_id=2, supported=False),
    ]
    assert group_by_tag(rows) == {1: {10: True, 11: False}, 2: {10: False}}
    assert group_by_tag([]) == {}


class TestReplaceForItem:

    @pytest.mark.asyncio
    async def test_replace_drops_unknown_tags(self, db_session, seed_data):
        item = seed_data["caesar"]
        vegan = seed_data["tags"]["VEGAN"]
        rows = await replace_for_item(db_session, item.id, [
            ItemDietOverrideInput(diet_tag_id=vegan.id, supported=False),
            ItemDietOverrideInput(diet_tag_id=9999, supported=True),
        ])
        await db_session.commit()

        assert [(r.diet_tag_id, r.supported) for r in rows] == [(vegan.id, False)]
        stored = await list_by_item(db_session, item.id)
        assert [(r.diet_tag_id, r.supported) for r in stored] == [(vegan.id, False)]

    @pytest.mark.asyncio
    async def test_replace_is_idempotent(self, db_session, seed_data):
        item = seed_data["pizza"]
        tags = seed_data["tags"]
        payload = [
            ItemDietOverrideInput(diet_tag_id=tags["VEGETARIAN"].id, supported=True),
            ItemDietOverrideInput(diet_tag_id=tags["VEGAN"].id, supported=False),
        ]
        await replace_for_item(db_session, item.id, payload)
        await db_session.commit()
        await replace_for_item(db_session, item.id, payload)
        await db_session.commit()

        stored = await list_by_item(db_session, item.id)
        assert sorted((r.diet_tag_id, r.supported) for r in stored) == sorted(
            (p.diet_tag_id, p.supported) for p in payload
        )

    @pytest.mark.asyncio
    async def test_empty_list_clears(self, db_session, seed_data):
        item = seed_data["burger"]
        await replace_for_item(db_session, item.id, [
            ItemDietOverrideInput(diet_tag_id=seed_data["tags"]["HALAL"].id, supported=True),
        ])
        await db_session.commit()

        assert await replace_for_item(db_session, item.id, []) == []
        await db_session.commit()
        assert await list_by_item(db_session, item.id) == []

    @pytest.mark.asyncio
    async def test_other_items_untouched(self, db_session, seed_data):
        vegan = seed_data["tags"]["VEGAN"]
        burger, tofu = seed_data["burger"], seed_data["tofu"]
        await replace_for_item(db_session, burger.id, [ItemDietOverrideInput(diet_tag_id=vegan.id, supported=True)])
        await replace_for_item(db_session, tofu.id, [ItemDietOverrideInput(diet_tag_id=vegan.id, supported=False)])
        await db_session.commit()

        await replace_for_item(db_session, burger.id, [])
        await db_session.commit()

        rows = await list_by_item_ids(db_session, [burger.id, tofu.id])
        assert [(r.menu_item_id, r.supported) for r in rows] == [(tofu.id, False)]
        assert await list_by_item_ids(db_session, []) == []
