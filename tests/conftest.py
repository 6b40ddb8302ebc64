"""
Shared fixtures: an in-memory SQLite database per test, factories and an API client.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool

from storefront.catalog import slugify
from storefront.config import Settings
from storefront.database import create_engine, create_session_factory, get_db, init_db
from storefront.identity import IdentityService
from storefront.main import create_app
from storefront.models import Category, Product, RoleName

TEST_PASSWORD = "secret123"


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        jwt_secret="test-secret",
        products_page_size=8,
        low_stock_threshold=5
    )


@pytest_asyncio.fixture
async def engine():
    test_engine = create_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with create_session_factory(engine)() as db_session:
        yield db_session


@pytest.fixture
def make_user(session, settings):
    async def factory(email="reader@example.com", name="Reader", roles=(RoleName.CUSTOMER,)):
        result = await IdentityService(session, settings).create_user(
            email=email, password=TEST_PASSWORD, name=name, roles=roles
        )
        assert result.succeeded, result.message
        return result.value
    return factory


@pytest.fixture
def make_category(session):
    async def factory(name="Manga"):
        category = Category(name=name, slug=slugify(name))
        session.add(category)
        await session.commit()
        return category
    return factory


@pytest.fixture
def make_product(session, make_category):
    async def factory(title="Akira", price="10.00", stock=10, category=None, author="Katsuhiro Otomo"):
        if category is None:
            category = await make_category()
        product = Product(
            title=title,
            author=author,
            price=Decimal(price),
            stock_quantity=stock,
            category_id=category.id
        )
        session.add(product)
        await session.commit()
        return product
    return factory


@pytest_asyncio.fixture
async def client(engine):
    app = create_app(use_lifespan=False)
    session_factory = create_session_factory(engine)

    async def override_get_db():
        async with session_factory() as db_session:
            yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def login(client):
    async def factory(email, password=TEST_PASSWORD):
        response = await client.post(
            "/api/v1/auth/login",
            data={"username": email, "password": password}
        )
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}
    return factory
