"""
Daily maintenance runner — `python -m feedrank.maintenance`.

Same job bundle as POST /maintenance/run, for schedulers that prefer a
process over an HTTP call:
  1. Decay user interest vectors toward neutral
  2. Decay creator spam signals
  3. Lift expired shadow bans
  4. Delete watch events past retention
  5. Re-evaluate posts still in the TEST phase
"""
import asyncio
import json
import logging

from feedrank.clients.redis_client import close_redis, init_redis
from feedrank.database import create_engine, create_session_factory, init_db
from feedrank.services import build_services
from feedrank.store import Store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


async def main() -> dict:
    engine = create_engine()
    await init_db(engine)
    redis = await init_redis()

    try:
        services = build_services(Store(create_session_factory(engine)), redis)
        results = await services.maintenance.run_daily_maintenance()
        await services.dispatcher.drain()
    finally:
        await close_redis()
        await engine.dispose()

    logger.info("Maintenance finished: %s", json.dumps(results))
    return results


if __name__ == "__main__":
    asyncio.run(main())
