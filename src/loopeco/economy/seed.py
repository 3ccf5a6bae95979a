"""Gift catalog seed data."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.base import dialect_insert
from loopeco.db.models import GiftItem

logger = logging.getLogger(__name__)

GIFT_CATALOG_SEED_DATA: list[dict] = [
    # Premium
    {
        "id": "premium-1week",
        "name": "1 Week Premium",
        "description": "Gift premium features for a week",
        "category": "premium",
        "rarity": "rare",
        "coin_price": 750,
        "grants_inventory": False,
        "sort_order": 1,
    },
    {
        "id": "premium-1month",
        "name": "1 Month Premium",
        "description": "A month of premium access",
        "category": "premium",
        "rarity": "epic",
        "coin_price": 2000,
        "grants_inventory": False,
        "sort_order": 2,
    },
    {
        "id": "premium-3months",
        "name": "3 Months Premium",
        "description": "Extended premium experience",
        "category": "premium",
        "rarity": "legendary",
        "coin_price": 5000,
        "grants_inventory": False,
        "sort_order": 3,
    },
    # Themes
    {
        "id": "theme-neon",
        "name": "Neon Cyber Theme",
        "description": "Futuristic neon theme",
        "category": "theme",
        "rarity": "epic",
        "coin_price": 800,
        "grants_inventory": True,
        "sort_order": 10,
    },
    {
        "id": "theme-sunset",
        "name": "Sunset Dream Theme",
        "description": "Warm sunset colors",
        "category": "theme",
        "rarity": "rare",
        "coin_price": 600,
        "grants_inventory": True,
        "sort_order": 11,
    },
    # Animations & Effects
    {
        "id": "animation-sparkle",
        "name": "Sparkle Trail",
        "description": "Magical sparkles animation",
        "category": "animation",
        "rarity": "epic",
        "coin_price": 1200,
        "grants_inventory": True,
        "sort_order": 20,
    },
    {
        "id": "effect-glow",
        "name": "Golden Glow",
        "description": "Premium golden glow effect",
        "category": "effect",
        "rarity": "legendary",
        "coin_price": 1500,
        "grants_inventory": True,
        "sort_order": 21,
    },
    # Badges
    {
        "id": "badge-supporter",
        "name": "Supporter Badge",
        "description": "Show you support this creator",
        "category": "badge",
        "rarity": "common",
        "coin_price": 300,
        "grants_inventory": True,
        "sort_order": 30,
    },
    {
        "id": "badge-superfan",
        "name": "Super Fan Badge",
        "description": "Ultimate fan recognition",
        "category": "badge",
        "rarity": "rare",
        "coin_price": 1000,
        "grants_inventory": True,
        "sort_order": 31,
    },
]


async def seed_gift_catalog(db: AsyncSession) -> int:
    """Upsert the gift catalog. Returns number of items seeded."""
    seeded = 0
    for item_data in GIFT_CATALOG_SEED_DATA:
        stmt = dialect_insert(db, GiftItem).values(multiplier=1, is_active=True, **item_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "rarity": stmt.excluded.rarity,
                "coin_price": stmt.excluded.coin_price,
                "grants_inventory": stmt.excluded.grants_inventory,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d gift catalog items", seeded)
    return seeded
