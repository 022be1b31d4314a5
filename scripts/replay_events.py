"""
Stored Webhook Replay

Re-runs storefront deliveries that failed (or never finished) against the
configured database. Safe to run repeatedly: the order insert, the revenue
transaction and the cancellation compensation are all idempotent.

Usage:
    python scripts/replay_events.py                 # every pending delivery
    python scripts/replay_events.py --order 5001    # one order
    python scripts/replay_events.py --limit 20 --no-sync
"""

import argparse
import asyncio
import sys

import structlog

from order_engine.config import get_settings
from order_engine.config.logging import configure_logging
from order_engine.database.connection import close_database, get_session_factory, init_database
from order_engine.ingestion.dispatcher import WebhookDispatcher
from order_engine.inventory.sync import sync_items

logger = structlog.get_logger("replay_events")


async def replay(order_ids, limit: int, push_stock: bool) -> int:
    settings = get_settings()
    await init_database()
    try:
        session_factory = get_session_factory()
        dispatcher = WebhookDispatcher(session_factory, settings)

        if order_ids:
            outcomes = []
            for order_id in order_ids:
                outcome = await dispatcher.replay(order_id)
                if outcome is None:
                    logger.warning("No stored event for order", external_order_id=order_id)
                    continue
                outcomes.append(outcome)
        else:
            outcomes = await dispatcher.replay_pending(limit=limit)

        for outcome in outcomes:
            print(f"{outcome.external_order_id}\t{outcome.event}\t{outcome.status_code}\t{outcome.message}")

        if push_stock:
            touched = [item_id for outcome in outcomes if outcome.success for item_id in outcome.touched_item_ids]
            await sync_items(session_factory, settings, touched)

        failed = sum(1 for outcome in outcomes if not outcome.success)
        logger.info("Replay finished", replayed=len(outcomes), failed=failed)
        return 1 if failed else 0
    finally:
        await close_database()


def main():
    parser = argparse.ArgumentParser(description="Replay stored storefront webhook deliveries")
    parser.add_argument("--order", action="append", dest="orders", default=[], help="External order id (repeatable)")
    parser.add_argument("--limit", type=int, default=100, help="Max pending deliveries to replay")
    parser.add_argument("--no-sync", action="store_true", help="Skip the storefront stock push")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(replay(args.orders, args.limit, not args.no_sync)))


if __name__ == "__main__":
    main()
