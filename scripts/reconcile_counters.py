"""
Recompute every cached counter (likes, comments, follower counts) from
its source table and report how many rows had drifted.

Run periodically, e.g. from cron:  python -m scripts.reconcile_counters
"""
import asyncio
import logging

from blogcore.cache import cache
from blogcore.database import async_session, engine
from blogcore.services import counter_service

logger = logging.getLogger("reconcile_counters")


async def reconcile() -> dict[str, int]:
    async with async_session() as session:
        drift = await counter_service.reconcile_all(session)
        await session.commit()

    if any(drift.values()):
        await cache.connect()
        await cache.invalidate_content()
        await cache.disconnect()
    await engine.dispose()
    return drift


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    drift = asyncio.run(reconcile())
    for table, rows in drift.items():
        print(f"  {table}: {rows} row(s) corrected")


if __name__ == "__main__":
    main()
