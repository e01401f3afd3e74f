"""
Test fixtures - in-memory SQLite database + HTTP client
"""
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from diet_inference.database import Base, get_db, enable_sqlite_foreign_keys
from diet_inference.main import app
from diet_inference.models.restaurant import Restaurant, MenuCategory, MenuItem
from diet_inference.services.diet_tag_service import ensure_default_diet_tags, list_diet_tags


@pytest_asyncio.fixture()
async def db_session():
    """Create a fresh in-memory SQLite database for each test"""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture()
async def seed_data(db_session):
    """Insert baseline test data: default diet tags + 2 restaurants with menus"""
    await ensure_default_diet_tags(db_session)
    tags = {tag.key: tag for tag in await list_diet_tags(db_session)}

    garden = Restaurant(name="Green Garden")
    grill = Restaurant(name="Steak House")
    db_session.add_all([garden, grill])
    await db_session.flush()

    mains = MenuCategory(restaurant_id=garden.id, name="Mains", sort_order=1)
    drinks = MenuCategory(restaurant_id=garden.id, name="Drinks", sort_order=2, is_active=False)
    grill_mains = MenuCategory(restaurant_id=grill.id, name="Grill", sort_order=1)
    db_session.add_all([mains, drinks, grill_mains])
    await db_session.flush()

    burger = MenuItem(
        category_id=mains.id, name="Vegan Burger", description="plant-based patty",
        allergens="Soy, Gluten", price=12.5, sort_order=1,
    )
    caesar = MenuItem(
        category_id=mains.id, name="Caesar Salad", description="Romaine, parmesan, anchovy dressing",
        allergens="Fish, Milk, Eggs", price=9.0, sort_order=2,
    )
    tofu = MenuItem(
        category_id=mains.id, name="Tofu Bowl", description="Crispy tofu with rice",
        allergens="Soy", price=11.0, sort_order=3,
    )
    pizza = MenuItem(
        category_id=mains.id, name="Margherita Pizza", description="Tomato, mozzarella, basil",
        allergens="Gluten, Milk", price=10.0, sort_order=4,
    )
    retired = MenuItem(
        category_id=mains.id, name="Falafel Wrap", description="Retired item",
        sort_order=5, is_active=False,
    )
    latte = MenuItem(
        category_id=drinks.id, name="Oat Milk Latte", description="Dairy-free", sort_order=1,
    )
    ribeye = MenuItem(
        category_id=grill_mains.id, name="Ribeye Steak", description="300g dry-aged", sort_order=1,
    )
    db_session.add_all([burger, caesar, tofu, pizza, retired, latte, ribeye])
    await db_session.commit()

    return {
        "tags": tags,
        "garden": garden,
        "grill": grill,
        "burger": burger,
        "caesar": caesar,
        "tofu": tofu,
        "pizza": pizza,
        "retired": retired,
        "latte": latte,
        "ribeye": ribeye,
    }


@pytest_asyncio.fixture()
async def client(db_session, seed_data):
    """httpx AsyncClient bound to the FastAPI app"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac

    app.dependency_overrides.clear()
