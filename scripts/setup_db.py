"""
Database setup script: create tables, seed diet tags, recompute inference
"""
import asyncio
import sys

from sqlalchemy import select

from diet_inference.database import engine, Base, AsyncSessionLocal
from diet_inference.models import *  # noqa: F401,F403
from diet_inference.models.restaurant import Restaurant
from diet_inference.services.diet_inference_service import compute_for_restaurant
from diet_inference.services.diet_tag_service import ensure_default_diet_tags


async def setup_database(recompute: bool = False):
    """Create tables, seed missing default tags and optionally score every restaurant"""
    print("Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created")

    async with AsyncSessionLocal() as session:
        seeded = await ensure_default_diet_tags(session)
        print(f"Diet tags seeded: {seeded}")

        if recompute:
            result = await session.execute(select(Restaurant.id).order_by(Restaurant.id))
            restaurant_ids = list(result.scalars().all())
            for restaurant_id in restaurant_ids:
                await compute_for_restaurant(session, restaurant_id)
            print(f"Diet inference recomputed for {len(restaurant_ids)} restaurants")

    await engine.dispose()
    print("\nDatabase setup complete!")


if __name__ == "__main__":
    asyncio.run(setup_database(recompute="--recompute" in sys.argv))
