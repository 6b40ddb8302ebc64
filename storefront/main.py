"""
Storefront - artbook catalog, cart, checkout and admin dashboard API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from . import __version__
from . import catalog, dashboard, identity, orders
from .config import get_settings
from .database import AsyncSessionLocal, engine, init_db
from .middleware import setup_observability
from .seed import seed_demo_catalog, seed_identity

settings = get_settings()

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


async def database_ready() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Storefront...")
    await init_db()
    async with AsyncSessionLocal() as session:
        await seed_identity(session, settings)
        if settings.seed_demo_catalog:
            await seed_demo_catalog(session)
    yield
    # Shutdown
    await engine.dispose()
    logger.info("Storefront stopped")


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Storefront",
        description="Artbook store: catalog, cart, checkout and administration",
        version=__version__,
        lifespan=lifespan if use_lifespan else None
    )

    app.include_router(identity.router)
    app.include_router(identity.admin_router)
    app.include_router(catalog.home_router)
    app.include_router(catalog.product_router)
    app.include_router(catalog.category_router)
    app.include_router(catalog.admin_product_router)
    app.include_router(orders.cart_router)
    app.include_router(orders.order_router)
    app.include_router(dashboard.router)

    setup_observability(
        app,
        service_name=settings.service_name,
        version=__version__,
        environment=settings.environment,
        readiness_check=database_ready
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
