"""
Test Suite Configuration
"""
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from order_engine.config.settings import RedisSettings, Settings, StorefrontSettings
from order_engine.database.models import Base, InventoryItem, ItemSourceType


@pytest.fixture
def test_settings() -> Settings:
    """Test settings: no cache, no storefront credentials, no webhook secret"""
    return Settings(
        redis=RedisSettings(enabled=False),
        storefront=StorefrontSettings(store_id=None, access_token=None, webhook_secret=None),
    )


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so independent sessions see each other's commits"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_item(session_factory):
    """Insert and commit an InventoryItem"""

    async def _make(
        name: str = "Kite Rebel 9m",
        owned_quantity: int = 10,
        cost_price: Optional[str] = "50.00",
        **fields: Any,
    ) -> InventoryItem:
        fields.setdefault("source_type", ItemSourceType.OWNED)
        item = InventoryItem(
            name=name,
            owned_quantity=owned_quantity,
            cost_price=Decimal(cost_price) if cost_price is not None else None,
            **fields,
        )
        async with session_factory() as session:
            session.add(item)
            await session.commit()
        return item

    return _make


@pytest.fixture
def order_payload():
    """Build a storefront order webhook body"""

    def _build(
        order_id: Any = 5001,
        event: str = "order/paid",
        products: Optional[list] = None,
        total: str = "180.00",
        **fields: Any,
    ) -> Dict[str, Any]:
        body = {
            "event": event,
            "id": order_id,
            "number": str(order_id),
            "store_id": "123456",
            "status": "open",
            "payment_status": "paid" if event == "order/paid" else "pending",
            "gateway": "mercadopago",
            "total": total,
            "currency": "BRL",
            "created_at": "2026-03-10T14:22:05+0000",
            "customer": {"id": 77, "name": "Ana Souza", "email": "ana@example.com", "phone": "+5548999990000"},
            "products": products if products is not None else [
                {"product_id": 901, "variant_id": 9011, "name": "Kite Rebel 9m", "quantity": 2, "price": "50.00", "sku": "KITE-REBEL-9"},
            ],
            "shipping_address": {
                "address": "Rua das Gaivotas",
                "number": "120",
                "locality": "Campeche",
                "city": "Florianopolis",
                "province": "SC",
                "zipcode": "88063-000",
                "country": "BR",
            },
        }
        body.update(fields)
        return body

    return _build
