import asyncio
import logging
import os
import time
from pathlib import Path
import sys

# Allow running this demo without installing the package:
#   python examples/demo_fastapi_app.py
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fastapi import FastAPI

from fastapi_stash import (
    NamespaceConfig,
    PileUpPolicy,
    RedisDriverConfig,
    StashConfig,
    StashRegistry,
    cache_evict,
    cache_put,
    cacheable,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# REDIS_URL=redis://:password@localhost:6379/0 selects another server.
# An unreachable Redis is not swapped for another driver: its errors are
# logged and every read misses, so the endpoints answer uncached.
stash = StashRegistry(
    StashConfig(
        drivers=[
            RedisDriverConfig(
                name="default",
                url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
                prefix="demo",
            ),
        ],
        namespaces=[
            NamespaceConfig(
                namespace="users",
                pile_up_policy=PileUpPolicy.SLEEP,
                sleep_time=250,
                sleep_attempts=12,
            ),
        ],
    )
)

app = FastAPI(title="fastapi-stash demo")


@app.on_event("shutdown")
async def _shutdown() -> None:
    await stash.aclose()


@app.get("/users/{user_id}")
@cacheable(stash, namespace="users", key="get_user", ttl=30)
async def get_user(user_id: int) -> dict:
    # Simulate slow work; concurrent requests wait on the first one
    await asyncio.sleep(2)
    logger.info("Fetching user %s from source", user_id)
    return {"user_id": user_id, "name": f"user-{user_id}", "ts": time.time()}


@app.post("/users/{user_id}/refresh")
@cache_put(stash, namespace="users", key="get_user", ttl=30)
async def refresh_user(user_id: int) -> dict:
    await asyncio.sleep(2)
    logger.info("Refreshing user %s data", user_id)
    return {"user_id": user_id, "name": f"user-{user_id}", "refreshed": True, "ts": time.time()}


@app.delete("/users/cache")
@cache_evict(stash, namespace="users", key="get_user", all_calls=True)
async def evict_all_users() -> dict:
    logger.info("Evicting cache for all users")
    return {"evicted": "all"}


@app.delete("/users/{user_id}")
@cache_evict(stash, namespace="users", key="get_user")
async def evict_user(user_id: int) -> dict:
    # This will evict the cache entry for the same namespace+key and args.
    logger.info("Evicting cache for user %s", user_id)
    return {"evicted": True, "user_id": user_id}


@app.get("/pages/{name}")
async def get_page(name: str) -> dict:
    item = stash.load("pages").get_item(f"site.{name}")
    # while another request renders the page, serve a placeholder
    item.pile_up_value({"name": name, "stale": True})

    if await item.is_miss():
        await item.lock()
        await asyncio.sleep(1)
        item.set({"name": name, "stale": False, "ts": time.time()}).expires_after(60)
        await item.save()

    return item.value


@app.delete("/pages")
async def evict_pages() -> dict:
    # removes every page below "site" at once
    await stash.load("pages").delete("site.*")
    return {"evicted": "pages"}


# Run:
#   1) docker run -p 6379:6379 redis:7
#   2) uvicorn examples.demo_fastapi_app:app --reload


if __name__ == "__main__":
    try:
        import uvicorn
    except ImportError as e:
        raise SystemExit(
            "uvicorn is required to run the demo. Install with: pip install uvicorn fastapi"
        ) from e

    uvicorn.run(
        "examples.demo_fastapi_app:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
