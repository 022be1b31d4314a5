"""
Unit Tests - Raw Event Store
"""
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from order_engine.database.models import RawEvent
from order_engine.ingestion.event_store import AUTH_REJECTED_MESSAGE, MAX_ERROR_LENGTH, EventStore


class TestEventStore:
    """Tests for EventStore"""

    async def test_redelivery_upserts(self, session_factory):
        """Test the same order id never creates a second row"""
        store = EventStore(session_factory)

        first_id = await store.record_raw("5001", "order/created", {"id": 5001, "v": 1})
        second_id = await store.record_raw("5001", "order/paid", {"id": 5001, "v": 2})

        assert first_id == second_id
        stored = await store.get("5001")
        assert stored.event_type == "order/paid"
        assert stored.payload["v"] == 2
        assert stored.delivery_count == 2

        async with session_factory() as db:
            assert (await db.execute(select(func.count(RawEvent.id)))).scalar() == 1

    async def test_mark_processed(self, session_factory):
        """Test the outcome is recorded on the stored event"""
        store = EventStore(session_factory)
        await store.record_raw("5001", "order/paid", {"id": 5001})

        await store.mark_processed("5001", success=True)

        stored = await store.get("5001")
        assert stored.processed
        assert stored.processed_at is not None
        assert stored.error_message is None

    async def test_mark_failed_truncates_error(self, session_factory):
        """Test a failure keeps processed False with a bounded message"""
        store = EventStore(session_factory)
        await store.record_raw("5001", "order/paid", {"id": 5001})

        await store.mark_processed("5001", success=False, error_message="x" * 5000)

        stored = await store.get("5001")
        assert not stored.processed
        assert len(stored.error_message) == MAX_ERROR_LENGTH

    async def test_redelivery_resets_outcome(self, session_factory):
        """Test a new delivery clears the previous outcome"""
        store = EventStore(session_factory)
        await store.record_raw("5001", "order/paid", {"id": 5001})
        await store.mark_processed("5001", success=False, error_message="boom")

        await store.record_raw("5001", "order/paid", {"id": 5001})

        stored = await store.get("5001")
        assert not stored.processed
        assert stored.error_message is None

    async def test_unprocessed_skips_auth_rejections(self, session_factory):
        """Test replay candidates exclude unauthorized deliveries"""
        store = EventStore(session_factory)
        for order_id in ("1", "2", "3"):
            await store.record_raw(order_id, "order/paid", {"id": order_id})
        await store.mark_processed("1", success=True)
        await store.mark_processed("2", success=False, error_message=AUTH_REJECTED_MESSAGE)
        await store.mark_processed("3", success=False, error_message="RuntimeError: boom")

        pending = await store.unprocessed()

        assert [event.external_order_id for event in pending] == ["3"]

    async def test_record_failure_is_swallowed(self, tmp_path):
        """Test a broken store logs and returns None instead of raising"""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        store = EventStore(async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False))

        assert await store.record_raw("5001", "order/paid", {"id": 5001}) is None
        await store.mark_processed("5001", success=True)

        await engine.dispose()
