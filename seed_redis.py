import asyncio
import sys

from app.core.config import DEMO_ENVIRONMENTS, settings
from app.services.redis_client import connect_redis
from app.services.redis_store import RedisTenantStore
from app.services.seed import seed_demo_data


async def seed(flush: bool = False):
    if settings.ENV not in DEMO_ENVIRONMENTS:
        sys.exit(f"Refusing to seed demo data with ENV={settings.ENV}")
    client = await connect_redis(settings)
    if flush:
        await client.flushdb()
    sessions = await seed_demo_data(RedisTenantStore(client), settings)
    for email, sid in sessions.items():
        print(f"{email}: {settings.SESSION_COOKIE_NAME}={sid}")
    await client.aclose()

if __name__ == "__main__":
    asyncio.run(seed(flush="--flush" in sys.argv))
