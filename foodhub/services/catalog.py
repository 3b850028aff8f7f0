"""
Catalog / Account Lookups

Read-only access to users, restaurants and menu items. The ordering core
only needs identity validation and a one-time price lookup when an order is
built; catalog management itself lives elsewhere.
"""

import uuid
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from foodhub.core.exceptions import NotFoundError
from foodhub.models import MenuItem, Restaurant, User


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


async def get_restaurant(db: AsyncSession, restaurant_id: uuid.UUID) -> Restaurant:
    restaurant = await db.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise NotFoundError(f"Restaurant {restaurant_id} not found")
    return restaurant


async def get_menu_items(db: AsyncSession, item_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, MenuItem]:
    """
    Fetch menu items by id.

    Raises:
        NotFoundError: if any requested item does not exist
    """
    wanted = set(item_ids)
    if not wanted:
        return {}
    result = await db.execute(select(MenuItem).where(MenuItem.id.in_(wanted)))
    items = {item.id: item for item in result.scalars().all()}
    missing = wanted - items.keys()
    if missing:
        listed = ", ".join(sorted(str(m) for m in missing))
        raise NotFoundError(f"Menu item(s) not found: {listed}")
    return items
