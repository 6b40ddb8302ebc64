"""
Startup seeding for roles, the development admin and an optional demo catalog.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .catalog import slugify
from .config import Settings, get_settings
from .identity import IdentityService
from .models import Category, Product, RoleName

logger = logging.getLogger(__name__)

DEMO_CATALOG = {
    "Manga": [
        ("Akira Vol. 1", "Katsuhiro Otomo", "24.99", 12),
        ("Nausicaa of the Valley of the Wind", "Hayao Miyazaki", "39.95", 4),
    ],
    "Concept Art": [
        ("The Art of Spirited Away", "Hayao Miyazaki", "34.99", 8),
        ("The Art of Arcane", "Riot Games", "49.99", 3),
    ],
    "Comics": [
        ("Watchmen", "Alan Moore", "29.99", 15),
    ],
}


async def seed_identity(db: AsyncSession, settings: Optional[Settings] = None):
    """Ensure both roles exist; in development, create or promote the admin user."""
    settings = settings or get_settings()
    identity = IdentityService(db, settings)

    for role in RoleName:
        await identity.ensure_role(role)
    await db.commit()

    if not settings.is_development:
        return
    if not settings.seed_admin_email or not settings.seed_admin_password:
        logger.info("No seed admin configured, skipping")
        return

    user = await identity.find_user_by_email(settings.seed_admin_email)
    if user is None:
        await identity.create_user(
            email=settings.seed_admin_email,
            password=settings.seed_admin_password,
            name="Administrator",
            roles=[RoleName.ADMIN, RoleName.CUSTOMER]
        )
        logger.info(f"Seed admin created: {settings.seed_admin_email}")
    else:
        await identity.assign_role(user.id, RoleName.ADMIN)


async def seed_demo_catalog(db: AsyncSession) -> int:
    """Insert a small catalog when there are no categories yet. Returns products added."""
    existing = (await db.execute(select(func.count(Category.id)))).scalar_one()
    if existing:
        return 0

    added = 0
    for category_name, books in DEMO_CATALOG.items():
        category = Category(name=category_name, slug=slugify(category_name))
        db.add(category)
        for title, author, price, stock in books:
            db.add(Product(
                title=title,
                author=author,
                price=Decimal(price),
                stock_quantity=stock,
                category=category
            ))
            added += 1

    await db.commit()
    logger.info(f"Demo catalog seeded with {added} products")
    return added
